import logging
import re
from datetime import timedelta
from uuid import uuid4

from deploy_guard.clients.record_store import RecordStore
from deploy_guard.clients.signature_verifier import SignatureVerifier, canonical_payload
from deploy_guard.contracts.multisig import (
    MultisigPolicy,
    MultisigProposal,
    Network,
    ProposalSignature,
    ProposalStatus,
)
from deploy_guard.services.clock import Clock, utc_now
from deploy_guard.services.errors import (
    ConcurrentModificationError,
    DuplicateSignatureError,
    InvalidProposalError,
    InvalidSignatureError,
    NotFoundError,
    ProposalTerminalError,
    UnauthorizedSignerError,
    VersionConflict,
)
from deploy_guard.services.policy_service import PolicyService
from deploy_guard.services.threshold import (
    assert_transition,
    evaluate,
    is_expired,
    with_evaluated_status,
)

logger = logging.getLogger(__name__)

_WASM_HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")

# Stored statuses that can evaluate to the requested status once time is applied.
_CANDIDATE_STATUSES: dict[ProposalStatus, tuple[ProposalStatus, ...]] = {
    ProposalStatus.PENDING: (ProposalStatus.PENDING,),
    ProposalStatus.APPROVED: (ProposalStatus.APPROVED,),
    ProposalStatus.EXECUTED: (ProposalStatus.EXECUTED,),
    ProposalStatus.EXPIRED: (
        ProposalStatus.EXPIRED,
        ProposalStatus.PENDING,
        ProposalStatus.APPROVED,
    ),
}

# Fields later writes change; everything else is fixed at creation.
_MUTABLE_FIELDS = {"signatures", "status", "version", "executed_at", "execution"}


def _creation_fields(proposal: MultisigProposal) -> dict:
    return proposal.model_dump(exclude=_MUTABLE_FIELDS)


class ProposalService:
    """Ledger of deployment proposals and the signatures collected on them.

    Every write is a conditional update against the proposal version. A
    conflicting writer reloads the record and re-checks the signing rules, so
    concurrent signers never lose each other's signatures and a signer racing
    itself lands exactly once.
    """

    def __init__(
        self,
        store: RecordStore,
        policy_service: PolicyService,
        signature_verifier: SignatureVerifier,
        clock: Clock = utc_now,
        max_attempts: int = 8,
    ):
        self._store = store
        self._policies = policy_service
        self._verifier = signature_verifier
        self._clock = clock
        self._max_attempts = max_attempts

    async def create_proposal(
        self,
        policy_id: str,
        contract_name: str,
        contract_id: str,
        wasm_hash: str,
        network: Network,
        proposer: str,
        description: str | None = None,
        correlation_id: str = "",
    ) -> MultisigProposal:
        policy = await self._policies.get_policy(policy_id, correlation_id=correlation_id)
        normalized_hash = wasm_hash.strip().lower()
        for field_name, value in (
            ("contract_name", contract_name),
            ("contract_id", contract_id),
            ("proposer", proposer),
        ):
            if not value.strip():
                raise InvalidProposalError(f"{field_name} must not be empty")
        if not _WASM_HASH_PATTERN.match(normalized_hash):
            raise InvalidProposalError("wasm_hash must be a 64 character hex digest")

        created_at = self._clock()
        expires_at = (
            created_at + timedelta(seconds=policy.expiry_seconds)
            if policy.expiry_seconds is not None
            else None
        )
        proposal = MultisigProposal(
            id=str(uuid4()),
            policy_id=policy.id,
            contract_name=contract_name.strip(),
            contract_id=contract_id.strip(),
            wasm_hash=normalized_hash,
            network=network,
            proposer=proposer.strip(),
            description=description,
            created_at=created_at,
            expires_at=expires_at,
        )
        try:
            stored = await self._store.insert_proposal(proposal, correlation_id=correlation_id)
        except VersionConflict:
            stored = await self._recover_insert(proposal, correlation_id)
        logger.info(
            "created proposal %s for contract %s on %s under policy %s",
            stored.id,
            stored.contract_id,
            stored.network.value,
            policy.id,
        )
        return stored

    async def add_signature(
        self,
        proposal_id: str,
        signer: str,
        signature_data: str | None = None,
        correlation_id: str = "",
    ) -> MultisigProposal:
        signer = signer.strip()
        proposal = await self.load(proposal_id, correlation_id=correlation_id)
        policy = await self._policies.get_policy(proposal.policy_id, correlation_id=correlation_id)
        await self._check_can_sign(policy, proposal, signer, correlation_id)

        if signature_data is not None:
            verified = await self._verifier.verify(signer, canonical_payload(proposal), signature_data)
            if not verified:
                logger.warning("rejected signature from %s on proposal %s", signer, proposal_id)
                raise InvalidSignatureError(
                    f"signature from {signer} does not verify against the proposal payload",
                    resource_id=proposal_id,
                )

        attempted: ProposalSignature | None = None
        for attempt in range(self._max_attempts):
            if attempt:
                proposal = await self.load(proposal_id, correlation_id=correlation_id)
                # A retried write can land even though its response was lost.
                if attempted is not None and attempted in proposal.signatures:
                    return proposal
                await self._check_can_sign(policy, proposal, signer, correlation_id)

            now = self._clock()
            attempted = ProposalSignature(signer=signer, signature_data=signature_data, signed_at=now)
            signed = proposal.model_copy(update={"signatures": [*proposal.signatures, attempted]})
            next_status = evaluate(policy, signed, now)
            if next_status == ProposalStatus.EXPIRED:
                await self.expire(proposal, correlation_id=correlation_id)
                raise ProposalTerminalError(f"proposal {proposal_id} has expired", resource_id=proposal_id)
            assert_transition(proposal.status, next_status, proposal_id)
            signed = signed.model_copy(update={"status": next_status})
            try:
                committed = await self._store.update_proposal(
                    signed,
                    expected_version=proposal.version,
                    correlation_id=correlation_id,
                )
            except VersionConflict:
                logger.info("signature from %s on %s hit a version conflict, retrying", signer, proposal_id)
                continue

            logger.info(
                "recorded signature %s/%s from %s on proposal %s (status=%s)",
                len(committed.signatures),
                policy.threshold,
                signer,
                proposal_id,
                committed.status.value,
            )
            return committed

        raise ConcurrentModificationError(
            f"proposal {proposal_id} kept changing while recording the signature",
            resource_id=proposal_id,
        )

    async def get_proposal(self, proposal_id: str, correlation_id: str = "") -> MultisigProposal:
        proposal = await self.load(proposal_id, correlation_id=correlation_id)
        policy = await self._policies.get_policy(proposal.policy_id, correlation_id=correlation_id)
        return with_evaluated_status(policy, proposal, self._clock())

    async def list_proposals(
        self,
        status_filter: ProposalStatus | None,
        limit: int,
        correlation_id: str = "",
    ) -> list[MultisigProposal]:
        candidates = await self._store.list_proposals(
            _CANDIDATE_STATUSES[status_filter] if status_filter is not None else None,
            correlation_id=correlation_id,
        )
        now = self._clock()
        policies: dict[str, MultisigPolicy] = {}
        results: list[MultisigProposal] = []
        for proposal in candidates:
            if proposal.policy_id not in policies:
                policies[proposal.policy_id] = await self._policies.get_policy(
                    proposal.policy_id, correlation_id=correlation_id
                )
            view = with_evaluated_status(policies[proposal.policy_id], proposal, now)
            if status_filter is None or view.status == status_filter:
                results.append(view)
        results.sort(key=lambda proposal: proposal.created_at, reverse=True)
        return results[:limit]

    async def signing_payload(self, proposal_id: str, correlation_id: str = "") -> bytes:
        proposal = await self.load(proposal_id, correlation_id=correlation_id)
        return canonical_payload(proposal)

    async def load(self, proposal_id: str, correlation_id: str = "") -> MultisigProposal:
        proposal = await self._store.get_proposal(proposal_id, correlation_id=correlation_id)
        if proposal is None:
            raise NotFoundError(f"proposal {proposal_id} not found", resource_id=proposal_id)
        return proposal

    async def expire(self, proposal: MultisigProposal, correlation_id: str = "") -> MultisigProposal:
        """Persist the expired status for a proposal whose window has closed.

        Returns the stored record, which may already be terminal if another
        writer got there first.
        """
        current = proposal
        for _ in range(self._max_attempts):
            if current.status.is_terminal or not is_expired(current, self._clock()):
                return current
            try:
                committed = await self._store.update_proposal(
                    current.model_copy(update={"status": ProposalStatus.EXPIRED}),
                    expected_version=current.version,
                    correlation_id=correlation_id,
                )
            except VersionConflict:
                current = await self.load(proposal.id, correlation_id=correlation_id)
                continue
            logger.info("proposal %s expired at %s", committed.id, committed.expires_at)
            return committed

        raise ConcurrentModificationError(
            f"proposal {proposal.id} kept changing while recording expiry",
            resource_id=proposal.id,
        )

    async def _recover_insert(self, proposal: MultisigProposal, correlation_id: str) -> MultisigProposal:
        # A retried insert conflicts with its own first attempt when that response was lost.
        stored = await self._store.get_proposal(proposal.id, correlation_id=correlation_id)
        if stored is None or _creation_fields(stored) != _creation_fields(proposal):
            raise ConcurrentModificationError(
                f"proposal id {proposal.id} is already taken", resource_id=proposal.id
            )
        logger.info("proposal %s was stored by an earlier attempt", proposal.id)
        return stored

    async def _check_can_sign(
        self,
        policy: MultisigPolicy,
        proposal: MultisigProposal,
        signer: str,
        correlation_id: str,
    ) -> None:
        if proposal.status.is_terminal:
            raise ProposalTerminalError(
                f"proposal {proposal.id} is {proposal.status.value}", resource_id=proposal.id
            )
        if is_expired(proposal, self._clock()):
            await self.expire(proposal, correlation_id=correlation_id)
            raise ProposalTerminalError(f"proposal {proposal.id} has expired", resource_id=proposal.id)
        if signer not in policy.signers:
            raise UnauthorizedSignerError(
                f"{signer} is not a signer of policy {policy.id}", resource_id=proposal.id
            )
        if proposal.has_signed(signer):
            raise DuplicateSignatureError(
                f"{signer} already signed proposal {proposal.id}", resource_id=proposal.id
            )
