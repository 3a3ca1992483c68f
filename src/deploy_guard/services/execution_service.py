import asyncio
import logging
from uuid import uuid4

from deploy_guard.clients.deployment_client import Deployer
from deploy_guard.clients.record_store import RecordStore
from deploy_guard.contracts.multisig import (
    DeploymentOutcome,
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionResult,
    MultisigPolicy,
    MultisigProposal,
    ProposalStatus,
)
from deploy_guard.services.clock import Clock, utc_now
from deploy_guard.services.errors import (
    AlreadyExecutedError,
    ConcurrentModificationError,
    ExecutionFailedError,
    NotApprovedError,
    ProposalExpiredError,
    VersionConflict,
)
from deploy_guard.services.policy_service import PolicyService
from deploy_guard.services.proposal_service import ProposalService
from deploy_guard.services.threshold import assert_transition, evaluate

logger = logging.getLogger(__name__)


class ExecutionService:
    """Runs an approved proposal's deployment exactly once.

    The approved -> executed flip is a conditional write tagged with a fresh
    execution id; only the caller whose tag is stored goes on to deploy. The
    deployment runs after that commit and its result is recorded on the
    proposal without ever leaving the executed state.
    """

    def __init__(
        self,
        store: RecordStore,
        proposal_service: ProposalService,
        policy_service: PolicyService,
        deployer: Deployer,
        clock: Clock = utc_now,
        max_attempts: int = 8,
        default_timeout_seconds: float = 120.0,
    ):
        self._store = store
        self._proposals = proposal_service
        self._policies = policy_service
        self._deployer = deployer
        self._clock = clock
        self._max_attempts = max_attempts
        self._default_timeout_seconds = default_timeout_seconds

    async def execute(
        self,
        proposal_id: str,
        timeout_seconds: float | None = None,
        correlation_id: str = "",
    ) -> ExecutionResult:
        execution_id = uuid4().hex
        claimed = await self._claim(proposal_id, execution_id, correlation_id)
        logger.info("proposal %s claimed for execution %s", proposal_id, execution_id)

        record = await self._deploy(claimed, execution_id, timeout_seconds, correlation_id)
        stored = await self._record_outcome(claimed, record, correlation_id)
        result = ExecutionResult(
            proposal_id=stored.id,
            status=stored.status,
            executed_at=stored.executed_at,
            outcome=record.outcome,
            deployment_reference=record.deployment_reference,
            detail=record.detail,
        )
        if record.outcome.is_failure:
            raise ExecutionFailedError(
                f"deployment for proposal {proposal_id} is {record.outcome.value}: {record.detail}",
                resource_id=proposal_id,
                outcome=record.outcome.value,
            )
        return result

    async def _claim(
        self,
        proposal_id: str,
        execution_id: str,
        correlation_id: str,
    ) -> MultisigProposal:
        proposal = await self._proposals.load(proposal_id, correlation_id=correlation_id)
        policy = await self._policies.get_policy(proposal.policy_id, correlation_id=correlation_id)

        for _ in range(self._max_attempts):
            await self._ensure_executable(policy, proposal, correlation_id)
            now = self._clock()
            claimed = proposal.model_copy(
                update={
                    "status": ProposalStatus.EXECUTED,
                    "executed_at": now,
                    "execution": ExecutionRecord(
                        execution_id=execution_id,
                        outcome=ExecutionOutcome.IN_FLIGHT,
                    ),
                }
            )
            try:
                return await self._store.update_proposal(
                    claimed,
                    expected_version=proposal.version,
                    correlation_id=correlation_id,
                )
            except VersionConflict:
                proposal = await self._proposals.load(proposal_id, correlation_id=correlation_id)
                # A retried write can land even though its response was lost.
                if proposal.execution is not None and proposal.execution.execution_id == execution_id:
                    return proposal
                logger.info("execute on %s hit a version conflict, re-checking", proposal_id)

        raise ConcurrentModificationError(
            f"proposal {proposal_id} kept changing while claiming execution",
            resource_id=proposal_id,
        )

    async def _ensure_executable(
        self,
        policy: MultisigPolicy,
        proposal: MultisigProposal,
        correlation_id: str,
    ) -> None:
        if proposal.status == ProposalStatus.EXECUTED:
            raise AlreadyExecutedError(
                f"proposal {proposal.id} was already executed at {proposal.executed_at}",
                resource_id=proposal.id,
            )
        current = evaluate(policy, proposal, self._clock())
        if current == ProposalStatus.EXPIRED:
            await self._proposals.expire(proposal, correlation_id=correlation_id)
            raise ProposalExpiredError(
                f"proposal {proposal.id} expired at {proposal.expires_at}",
                resource_id=proposal.id,
            )
        if current != ProposalStatus.APPROVED:
            raise NotApprovedError(
                f"proposal {proposal.id} has {len(proposal.signatures)} of "
                f"{policy.threshold} required signatures",
                resource_id=proposal.id,
            )
        assert_transition(current, ProposalStatus.EXECUTED, proposal.id)

    async def _deploy(
        self,
        proposal: MultisigProposal,
        execution_id: str,
        timeout_seconds: float | None,
        correlation_id: str,
    ) -> ExecutionRecord:
        timeout = timeout_seconds or self._default_timeout_seconds
        try:
            outcome = await asyncio.wait_for(
                self._deployer.deploy(
                    contract_id=proposal.contract_id,
                    wasm_hash=proposal.wasm_hash,
                    network=proposal.network,
                    idempotency_key=proposal.id,
                    correlation_id=correlation_id,
                ),
                timeout=timeout,
            )
        except TimeoutError:
            logger.error("deployment for proposal %s timed out after %ss", proposal.id, timeout)
            return ExecutionRecord(
                execution_id=execution_id,
                outcome=ExecutionOutcome.INDETERMINATE,
                detail=f"deployment did not complete within {timeout}s",
                finished_at=self._clock(),
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("deployment for proposal %s raised", proposal.id)
            return ExecutionRecord(
                execution_id=execution_id,
                outcome=ExecutionOutcome.FAILED,
                detail=f"{exc.__class__.__name__}: {exc}",
                finished_at=self._clock(),
            )
        return self._to_record(outcome, execution_id)

    def _to_record(self, outcome: DeploymentOutcome, execution_id: str) -> ExecutionRecord:
        if outcome.succeeded:
            result = ExecutionOutcome.SUCCEEDED
        elif outcome.indeterminate:
            result = ExecutionOutcome.INDETERMINATE
        else:
            result = ExecutionOutcome.FAILED
        return ExecutionRecord(
            execution_id=execution_id,
            outcome=result,
            detail=outcome.detail,
            deployment_reference=outcome.reference,
            finished_at=self._clock(),
        )

    async def _record_outcome(
        self,
        proposal: MultisigProposal,
        record: ExecutionRecord,
        correlation_id: str,
    ) -> MultisigProposal:
        current = proposal
        for _ in range(self._max_attempts):
            try:
                stored = await self._store.update_proposal(
                    current.model_copy(update={"execution": record}),
                    expected_version=current.version,
                    correlation_id=correlation_id,
                )
            except VersionConflict:
                current = await self._proposals.load(proposal.id, correlation_id=correlation_id)
                continue
            log = logger.info if record.outcome == ExecutionOutcome.SUCCEEDED else logger.error
            log(
                "proposal %s deployment %s (reference=%s)",
                proposal.id,
                record.outcome.value,
                record.deployment_reference,
            )
            return stored

        raise ConcurrentModificationError(
            f"proposal {proposal.id} kept changing while recording the deployment outcome",
            resource_id=proposal.id,
        )
