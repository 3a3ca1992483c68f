import logging
from collections.abc import Iterable
from typing import Any

from fastapi import status
from pydantic import ValidationError

from deploy_guard.clients.http_resilience import DEFAULT_RETRY_STATUS_CODES, request_with_retry
from deploy_guard.contracts.multisig import MultisigPolicy, MultisigProposal, ProposalStatus
from deploy_guard.middleware.correlation import propagation_headers
from deploy_guard.services.errors import RegistryUnavailableError, VersionConflict

logger = logging.getLogger(__name__)


class RegistryRecordStore:
    """Record store backed by the remote registry service.

    Proposal updates are conditional: the expected version travels in an
    If-Match header and the registry answers 409 or 412 when it has moved on.
    """

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float,
        max_retries: int = 2,
        retry_backoff_seconds: float = 0.2,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._retry_backoff_seconds = retry_backoff_seconds

    async def insert_policy(self, policy: MultisigPolicy, correlation_id: str = "") -> MultisigPolicy:
        upstream_status, payload = await self._send(
            "POST",
            "/api/multisig/policies",
            correlation_id=correlation_id,
            json_body=policy.model_dump(mode="json"),
        )
        if upstream_status == status.HTTP_409_CONFLICT:
            raise VersionConflict(policy.id, expected_version=0, actual_version=None)
        self._raise_for_registry_error(upstream_status, payload)
        return self._parse(MultisigPolicy, payload)

    async def get_policy(self, policy_id: str, correlation_id: str = "") -> MultisigPolicy | None:
        upstream_status, payload = await self._send(
            "GET",
            f"/api/multisig/policies/{policy_id}",
            correlation_id=correlation_id,
        )
        if upstream_status == status.HTTP_404_NOT_FOUND:
            return None
        self._raise_for_registry_error(upstream_status, payload)
        return self._parse(MultisigPolicy, payload)

    async def list_policies(self, limit: int, correlation_id: str = "") -> list[MultisigPolicy]:
        upstream_status, payload = await self._send(
            "GET",
            "/api/multisig/policies",
            correlation_id=correlation_id,
            params={"limit": limit},
        )
        self._raise_for_registry_error(upstream_status, payload)
        return [self._parse(MultisigPolicy, item) for item in payload.get("items", [])]

    async def insert_proposal(
        self, proposal: MultisigProposal, correlation_id: str = ""
    ) -> MultisigProposal:
        upstream_status, payload = await self._send(
            "POST",
            "/api/multisig/proposals",
            correlation_id=correlation_id,
            json_body=proposal.model_dump(mode="json"),
        )
        if upstream_status == status.HTTP_409_CONFLICT:
            raise VersionConflict(proposal.id, expected_version=0, actual_version=None)
        self._raise_for_registry_error(upstream_status, payload)
        return self._parse(MultisigProposal, payload)

    async def get_proposal(
        self, proposal_id: str, correlation_id: str = ""
    ) -> MultisigProposal | None:
        upstream_status, payload = await self._send(
            "GET",
            f"/api/multisig/proposals/{proposal_id}",
            correlation_id=correlation_id,
        )
        if upstream_status == status.HTTP_404_NOT_FOUND:
            return None
        self._raise_for_registry_error(upstream_status, payload)
        return self._parse(MultisigProposal, payload)

    async def list_proposals(
        self,
        statuses: Iterable[ProposalStatus] | None = None,
        correlation_id: str = "",
    ) -> list[MultisigProposal]:
        params = [("status", item.value) for item in statuses] if statuses is not None else None
        upstream_status, payload = await self._send(
            "GET",
            "/api/multisig/proposals",
            correlation_id=correlation_id,
            params=params,
        )
        self._raise_for_registry_error(upstream_status, payload)
        proposals = [self._parse(MultisigProposal, item) for item in payload.get("items", [])]
        proposals.sort(key=lambda proposal: proposal.created_at, reverse=True)
        return proposals

    async def update_proposal(
        self,
        proposal: MultisigProposal,
        expected_version: int,
        correlation_id: str = "",
    ) -> MultisigProposal:
        body = proposal.model_copy(update={"version": expected_version + 1}).model_dump(mode="json")
        upstream_status, payload = await self._send(
            "PUT",
            f"/api/multisig/proposals/{proposal.id}",
            correlation_id=correlation_id,
            json_body=body,
            extra_headers={"If-Match": str(expected_version)},
        )
        if upstream_status in (status.HTTP_409_CONFLICT, status.HTTP_412_PRECONDITION_FAILED):
            actual = payload.get("current_version")
            raise VersionConflict(
                proposal.id,
                expected_version,
                actual if isinstance(actual, int) else None,
            )
        self._raise_for_registry_error(upstream_status, payload)
        return self._parse(MultisigProposal, payload)

    async def _send(
        self,
        method: str,
        path: str,
        correlation_id: str,
        params: dict[str, Any] | list[tuple[str, Any]] | None = None,
        json_body: dict[str, Any] | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> tuple[int, dict[str, Any]]:
        headers = propagation_headers(correlation_id)
        if extra_headers:
            headers.update(extra_headers)
        return await request_with_retry(
            method=method,
            url=f"{self._base_url}{path}",
            timeout_seconds=self._timeout,
            max_retries=self._max_retries,
            backoff_seconds=self._retry_backoff_seconds,
            retry_status_codes=DEFAULT_RETRY_STATUS_CODES,
            params=params,
            headers=headers,
            json_body=json_body,
        )

    def _raise_for_registry_error(self, upstream_status: int, payload: dict[str, Any]) -> None:
        if upstream_status < status.HTTP_400_BAD_REQUEST:
            return
        detail = payload.get("detail", payload)
        logger.error("registry request failed with status %s: %s", upstream_status, detail)
        raise RegistryUnavailableError(
            f"registry responded {upstream_status}: {detail}",
            upstream_status=upstream_status,
        )

    def _parse(self, model: type, payload: dict[str, Any]) -> Any:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise RegistryUnavailableError(
                f"invalid registry {model.__name__} payload: {exc}",
                upstream_status=status.HTTP_502_BAD_GATEWAY,
            ) from exc
