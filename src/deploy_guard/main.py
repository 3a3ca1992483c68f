import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from deploy_guard import dependencies
from deploy_guard.config import settings
from deploy_guard.contracts.errors import ProblemDetails
from deploy_guard.middleware.correlation import (
    correlation_id_var,
    correlation_middleware,
    setup_logging,
)
from deploy_guard.routers.policies import router as policies_router
from deploy_guard.routers.proposals import router as proposals_router
from deploy_guard.services.errors import MultisigError, RegistryUnavailableError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _app_lifespan(application: FastAPI):
    application.state.is_draining = False
    sweeper_task: asyncio.Task | None = None
    if settings.expiry_sweep_interval_seconds > 0:
        sweeper_task = asyncio.create_task(dependencies.expiry_sweeper().run())
        logger.info("expiry sweep every %ss", settings.expiry_sweep_interval_seconds)
    yield
    application.state.is_draining = True
    if sweeper_task is not None:
        sweeper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper_task


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=_app_lifespan)
setup_logging()
app.middleware("http")(correlation_middleware)
Instrumentator().instrument(app).expose(app)
app.include_router(policies_router)
app.include_router(proposals_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/live")
async def health_live() -> dict[str, str]:
    return {"status": "live"}


@app.get("/health/ready")
async def health_ready(response: Response) -> dict[str, str]:
    if bool(getattr(app.state, "is_draining", False)):
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "draining"}
    return {"status": "ready"}


def _problem_response(
    request: Request,
    status_code: int,
    title: str,
    detail: str,
    error_code: str,
    resource_id: str | None = None,
) -> JSONResponse:
    problem = ProblemDetails(
        title=title,
        status=status_code,
        detail=detail,
        instance=str(request.url.path),
        correlation_id=correlation_id_var.get() or "",
        error_code=error_code,
        resource_id=resource_id,
    )
    return JSONResponse(
        status_code=status_code,
        media_type="application/problem+json",
        content=problem.model_dump(),
    )


@app.exception_handler(MultisigError)
async def multisig_exception_handler(request: Request, exc: MultisigError) -> JSONResponse:
    logger.info("%s on %s: %s", exc.error_code, request.url.path, exc.detail)
    return _problem_response(
        request,
        status_code=exc.http_status,
        title=exc.title,
        detail=exc.detail,
        error_code=exc.error_code,
        resource_id=exc.resource_id,
    )


@app.exception_handler(RegistryUnavailableError)
async def registry_unavailable_handler(request: Request, exc: RegistryUnavailableError) -> JSONResponse:
    logger.error("registry unavailable on %s: %s", request.url.path, exc.detail)
    return _problem_response(
        request,
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        title="Registry Unavailable",
        detail=exc.detail,
        error_code=exc.error_code,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s", request.url.path)
    return _problem_response(
        request,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        title="Internal Server Error",
        detail="An unexpected error occurred.",
        error_code="INTERNAL_ERROR",
    )
