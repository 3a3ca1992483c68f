import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUS_CODES = frozenset({502, 503, 504})


def _response_payload(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        payload = response.json()
    except ValueError:
        payload = {"detail": response.text}
    if isinstance(payload, dict):
        return payload
    return {"items": payload} if isinstance(payload, list) else {"detail": payload}


async def request_with_retry(
    *,
    method: str,
    url: str,
    timeout_seconds: float,
    max_retries: int = 2,
    backoff_seconds: float = 0.2,
    retry_status_codes: set[int] | frozenset[int] | None = None,
    params: dict[str, Any] | list[tuple[str, Any]] | None = None,
    headers: dict[str, str] | None = None,
    json_body: dict[str, Any] | None = None,
) -> tuple[int, dict[str, Any]]:
    attempts = max_retries + 1
    for attempt in range(attempts):
        try:
            async with httpx.AsyncClient(timeout=timeout_seconds) as client:
                response = await client.request(
                    method.upper(),
                    url,
                    params=params,
                    headers=headers,
                    json=json_body,
                )

            should_retry_status = retry_status_codes and response.status_code in retry_status_codes
            if should_retry_status and attempt < max_retries:
                logger.warning(
                    "retrying %s %s after status %s (attempt %s/%s)",
                    method.upper(),
                    url,
                    response.status_code,
                    attempt + 1,
                    attempts,
                )
                await asyncio.sleep(backoff_seconds * (2**attempt))
                continue
            return response.status_code, _response_payload(response)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            if attempt >= max_retries:
                logger.error(
                    "%s %s failed after %s attempts: %s",
                    method.upper(),
                    url,
                    attempts,
                    exc.__class__.__name__,
                )
                return 503, {"detail": f"upstream communication failure: {exc.__class__.__name__}"}
            logger.warning(
                "retrying %s %s after %s (attempt %s/%s)",
                method.upper(),
                url,
                exc.__class__.__name__,
                attempt + 1,
                attempts,
            )
            await asyncio.sleep(backoff_seconds * (2**attempt))

    return 503, {"detail": "upstream communication failure: exhausted retries"}
