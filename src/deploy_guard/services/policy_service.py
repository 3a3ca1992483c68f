import logging
from uuid import uuid4

from deploy_guard.clients.record_store import RecordStore
from deploy_guard.contracts.multisig import MAX_EXPIRY_SECONDS, MultisigPolicy
from deploy_guard.services.clock import Clock, utc_now
from deploy_guard.services.errors import (
    ConcurrentModificationError,
    InvalidPolicyError,
    NotFoundError,
    VersionConflict,
)

logger = logging.getLogger(__name__)


class PolicyService:
    """Creates and reads multisig policies.

    Policies are write-once: a changed signer set or threshold is a new
    policy with a new id.
    """

    def __init__(self, store: RecordStore, clock: Clock = utc_now):
        self._store = store
        self._clock = clock

    async def create_policy(
        self,
        name: str,
        signers: list[str],
        threshold: int,
        expiry_seconds: int | None,
        created_by: str,
        correlation_id: str = "",
    ) -> MultisigPolicy:
        cleaned_name = name.strip()
        cleaned_signers = [signer.strip() for signer in signers]
        cleaned_creator = created_by.strip()
        self._validate(cleaned_name, cleaned_signers, threshold, expiry_seconds, cleaned_creator)

        policy = MultisigPolicy(
            id=str(uuid4()),
            name=cleaned_name,
            signers=cleaned_signers,
            threshold=threshold,
            expiry_seconds=expiry_seconds,
            created_by=cleaned_creator,
            created_at=self._clock(),
        )
        try:
            stored = await self._store.insert_policy(policy, correlation_id=correlation_id)
        except VersionConflict:
            stored = await self._recover_insert(policy, correlation_id)
        logger.info(
            "created policy %s (%s-of-%s, expiry=%s)",
            stored.id,
            stored.threshold,
            len(stored.signers),
            stored.expiry_seconds,
        )
        return stored

    async def get_policy(self, policy_id: str, correlation_id: str = "") -> MultisigPolicy:
        policy = await self._store.get_policy(policy_id, correlation_id=correlation_id)
        if policy is None:
            raise NotFoundError(f"policy {policy_id} not found", resource_id=policy_id)
        return policy

    async def list_policies(self, limit: int, correlation_id: str = "") -> list[MultisigPolicy]:
        return await self._store.list_policies(limit, correlation_id=correlation_id)

    def _validate(
        self,
        name: str,
        signers: list[str],
        threshold: int,
        expiry_seconds: int | None,
        created_by: str,
    ) -> None:
        if not name:
            raise InvalidPolicyError("policy name must not be empty")
        if not created_by:
            raise InvalidPolicyError("created_by must not be empty")
        if not signers:
            raise InvalidPolicyError("policy requires at least one signer")
        if any(not signer for signer in signers):
            raise InvalidPolicyError("signer identities must not be empty")
        duplicates = sorted({signer for signer in signers if signers.count(signer) > 1})
        if duplicates:
            raise InvalidPolicyError(f"duplicate signers: {', '.join(duplicates)}")
        if threshold < 1 or threshold > len(signers):
            raise InvalidPolicyError(
                f"threshold must be between 1 and {len(signers)}, got {threshold}"
            )
        if expiry_seconds is not None and expiry_seconds <= 0:
            raise InvalidPolicyError(f"expiry_seconds must be positive, got {expiry_seconds}")
        if expiry_seconds is not None and expiry_seconds > MAX_EXPIRY_SECONDS:
            raise InvalidPolicyError(
                f"expiry_seconds must be at most {MAX_EXPIRY_SECONDS}, got {expiry_seconds}"
            )

    async def _recover_insert(self, policy: MultisigPolicy, correlation_id: str) -> MultisigPolicy:
        # A retried insert conflicts with its own first attempt when that response was lost.
        stored = await self._store.get_policy(policy.id, correlation_id=correlation_id)
        if stored != policy:
            raise ConcurrentModificationError(
                f"policy id {policy.id} is already taken", resource_id=policy.id
            )
        logger.info("policy %s was stored by an earlier attempt", policy.id)
        return stored
