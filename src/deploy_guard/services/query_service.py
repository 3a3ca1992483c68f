from deploy_guard.contracts.multisig import (
    MultisigPolicy,
    MultisigProposal,
    ProposalInfo,
    ProposalStatus,
)
from deploy_guard.services.policy_service import PolicyService
from deploy_guard.services.proposal_service import ProposalService
from deploy_guard.services.threshold import pending_signers, signatures_remaining


class QueryService:
    def __init__(
        self,
        proposal_service: ProposalService,
        policy_service: PolicyService,
        max_limit: int = 100,
    ):
        self._proposals = proposal_service
        self._policies = policy_service
        self._max_limit = max_limit

    async def proposal_info(self, proposal_id: str, correlation_id: str = "") -> ProposalInfo:
        proposal = await self._proposals.get_proposal(proposal_id, correlation_id=correlation_id)
        policy = await self._policies.get_policy(proposal.policy_id, correlation_id=correlation_id)
        return ProposalInfo(
            proposal=proposal,
            policy=policy,
            signatures_collected=len(proposal.signatures),
            signatures_required=policy.threshold,
            signatures_remaining=signatures_remaining(policy, proposal),
            pending_signers=pending_signers(policy, proposal),
        )

    async def list_proposals(
        self,
        status_filter: ProposalStatus | None,
        limit: int,
        correlation_id: str = "",
    ) -> list[MultisigProposal]:
        return await self._proposals.list_proposals(
            status_filter,
            self._bounded(limit),
            correlation_id=correlation_id,
        )

    async def get_policy(self, policy_id: str, correlation_id: str = "") -> MultisigPolicy:
        return await self._policies.get_policy(policy_id, correlation_id=correlation_id)

    async def list_policies(self, limit: int, correlation_id: str = "") -> list[MultisigPolicy]:
        return await self._policies.list_policies(self._bounded(limit), correlation_id=correlation_id)

    def _bounded(self, limit: int) -> int:
        return max(1, min(limit, self._max_limit))
