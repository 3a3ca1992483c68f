"""Quorum and expiry evaluation for multisig proposals.

Everything here is pure: status is recomputed from the policy, the stored
proposal and a point in time, so callers can evaluate on every read and write
without a timer.
"""

from datetime import datetime

from deploy_guard.contracts.multisig import MultisigPolicy, MultisigProposal, ProposalStatus
from deploy_guard.services.errors import NotApprovedError, ProposalTerminalError

_ALLOWED_TRANSITIONS: dict[ProposalStatus, frozenset[ProposalStatus]] = {
    ProposalStatus.PENDING: frozenset({ProposalStatus.APPROVED, ProposalStatus.EXPIRED}),
    ProposalStatus.APPROVED: frozenset({ProposalStatus.EXECUTED, ProposalStatus.EXPIRED}),
    ProposalStatus.EXECUTED: frozenset(),
    ProposalStatus.EXPIRED: frozenset(),
}


def is_expired(proposal: MultisigProposal, now: datetime) -> bool:
    return proposal.expires_at is not None and now > proposal.expires_at


def evaluate(policy: MultisigPolicy, proposal: MultisigProposal, now: datetime) -> ProposalStatus:
    if proposal.status.is_terminal:
        return proposal.status
    if is_expired(proposal, now):
        return ProposalStatus.EXPIRED
    if len(proposal.signatures) >= policy.threshold:
        return ProposalStatus.APPROVED
    return ProposalStatus.PENDING


def signatures_remaining(policy: MultisigPolicy, proposal: MultisigProposal) -> int:
    return max(policy.threshold - len(proposal.signatures), 0)


def pending_signers(policy: MultisigPolicy, proposal: MultisigProposal) -> list[str]:
    signed = {signature.signer for signature in proposal.signatures}
    return [signer for signer in policy.signers if signer not in signed]


def can_transition(current: ProposalStatus, target: ProposalStatus) -> bool:
    return current == target or target in _ALLOWED_TRANSITIONS[current]


def assert_transition(current: ProposalStatus, target: ProposalStatus, proposal_id: str) -> None:
    """Reject any move the proposal state machine does not allow.

    Re-asserting the current status is a no-op. Leaving a terminal state
    raises ProposalTerminalError, anything else NotApprovedError.
    """
    if can_transition(current, target):
        return
    if current.is_terminal:
        raise ProposalTerminalError(
            f"proposal is {current.value} and cannot move to {target.value}",
            resource_id=proposal_id,
        )
    raise NotApprovedError(
        f"proposal is {current.value} and cannot move to {target.value}",
        resource_id=proposal_id,
    )


def with_evaluated_status(
    policy: MultisigPolicy,
    proposal: MultisigProposal,
    now: datetime,
) -> MultisigProposal:
    evaluated = evaluate(policy, proposal, now)
    if evaluated == proposal.status:
        return proposal
    return proposal.model_copy(update={"status": evaluated})
