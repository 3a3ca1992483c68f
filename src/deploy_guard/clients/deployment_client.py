import logging
from typing import Any, Protocol

from fastapi import status

from deploy_guard.clients.http_resilience import request_with_retry
from deploy_guard.contracts.multisig import DeploymentOutcome, Network
from deploy_guard.middleware.correlation import propagation_headers

logger = logging.getLogger(__name__)

_COMMUNICATION_FAILURE_PREFIX = "upstream communication failure"


class Deployer(Protocol):
    async def deploy(
        self,
        contract_id: str,
        wasm_hash: str,
        network: Network,
        idempotency_key: str,
        correlation_id: str = "",
    ) -> DeploymentOutcome: ...


class DeploymentClient:
    """Triggers the deployment on the registry.

    A deployment is not safe to replay blindly, so requests go out once. A
    transport failure means the call may or may not have landed and is
    reported as indeterminate.
    """

    def __init__(self, base_url: str, timeout_seconds: float):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds

    async def deploy(
        self,
        contract_id: str,
        wasm_hash: str,
        network: Network,
        idempotency_key: str,
        correlation_id: str = "",
    ) -> DeploymentOutcome:
        headers = propagation_headers(correlation_id)
        headers["Idempotency-Key"] = idempotency_key
        upstream_status, payload = await request_with_retry(
            method="POST",
            url=f"{self._base_url}/api/contracts/{contract_id}/deployments",
            timeout_seconds=self._timeout,
            max_retries=0,
            headers=headers,
            json_body={"wasm_hash": wasm_hash, "network": network.value},
        )
        return self._to_outcome(upstream_status, payload)

    def _to_outcome(self, upstream_status: int, payload: dict[str, Any]) -> DeploymentOutcome:
        if upstream_status < status.HTTP_400_BAD_REQUEST:
            reference = payload.get("deployment_id") or payload.get("id")
            return DeploymentOutcome(
                succeeded=True,
                reference=str(reference) if reference is not None else None,
                detail=payload.get("status"),
            )
        detail = str(payload.get("detail", payload))
        indeterminate = upstream_status == status.HTTP_503_SERVICE_UNAVAILABLE and detail.startswith(
            _COMMUNICATION_FAILURE_PREFIX
        )
        logger.warning("deployment request returned %s: %s", upstream_status, detail)
        return DeploymentOutcome(succeeded=False, indeterminate=indeterminate, detail=detail)
