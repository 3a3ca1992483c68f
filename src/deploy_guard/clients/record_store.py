import threading
from collections.abc import Iterable
from typing import Protocol

from deploy_guard.contracts.multisig import MultisigPolicy, MultisigProposal, ProposalStatus
from deploy_guard.services.errors import VersionConflict


class RecordStore(Protocol):
    async def insert_policy(self, policy: MultisigPolicy, correlation_id: str = "") -> MultisigPolicy: ...

    async def get_policy(self, policy_id: str, correlation_id: str = "") -> MultisigPolicy | None: ...

    async def list_policies(self, limit: int, correlation_id: str = "") -> list[MultisigPolicy]: ...

    async def insert_proposal(
        self, proposal: MultisigProposal, correlation_id: str = ""
    ) -> MultisigProposal: ...

    async def get_proposal(
        self, proposal_id: str, correlation_id: str = ""
    ) -> MultisigProposal | None: ...

    async def list_proposals(
        self,
        statuses: Iterable[ProposalStatus] | None = None,
        correlation_id: str = "",
    ) -> list[MultisigProposal]: ...

    async def update_proposal(
        self,
        proposal: MultisigProposal,
        expected_version: int,
        correlation_id: str = "",
    ) -> MultisigProposal: ...


class InMemoryRecordStore:
    """Process-local record store with versioned conditional writes.

    Records are copied on the way in and out so callers never share state with
    the store. The lock is held only for the compare-and-set itself.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._policies: dict[str, MultisigPolicy] = {}
        self._proposals: dict[str, MultisigProposal] = {}

    async def insert_policy(self, policy: MultisigPolicy, correlation_id: str = "") -> MultisigPolicy:
        with self._lock:
            if policy.id in self._policies:
                raise VersionConflict(policy.id, expected_version=0, actual_version=1)
            self._policies[policy.id] = policy
        return policy

    async def get_policy(self, policy_id: str, correlation_id: str = "") -> MultisigPolicy | None:
        return self._policies.get(policy_id)

    async def list_policies(self, limit: int, correlation_id: str = "") -> list[MultisigPolicy]:
        with self._lock:
            policies = list(self._policies.values())
        policies.sort(key=lambda policy: policy.created_at, reverse=True)
        return policies[:limit]

    async def insert_proposal(
        self, proposal: MultisigProposal, correlation_id: str = ""
    ) -> MultisigProposal:
        with self._lock:
            if proposal.id in self._proposals:
                raise VersionConflict(proposal.id, expected_version=0, actual_version=1)
            self._proposals[proposal.id] = proposal.model_copy(deep=True)
        return proposal.model_copy(deep=True)

    async def get_proposal(
        self, proposal_id: str, correlation_id: str = ""
    ) -> MultisigProposal | None:
        with self._lock:
            stored = self._proposals.get(proposal_id)
            return stored.model_copy(deep=True) if stored is not None else None

    async def list_proposals(
        self,
        statuses: Iterable[ProposalStatus] | None = None,
        correlation_id: str = "",
    ) -> list[MultisigProposal]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            proposals = [
                proposal.model_copy(deep=True)
                for proposal in self._proposals.values()
                if wanted is None or proposal.status in wanted
            ]
        proposals.sort(key=lambda proposal: proposal.created_at, reverse=True)
        return proposals

    async def update_proposal(
        self,
        proposal: MultisigProposal,
        expected_version: int,
        correlation_id: str = "",
    ) -> MultisigProposal:
        with self._lock:
            stored = self._proposals.get(proposal.id)
            actual_version = stored.version if stored is not None else None
            if actual_version != expected_version:
                raise VersionConflict(proposal.id, expected_version, actual_version)
            committed = proposal.model_copy(update={"version": expected_version + 1}, deep=True)
            self._proposals[proposal.id] = committed
        return committed.model_copy(deep=True)
