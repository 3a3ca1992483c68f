import asyncio

import pytest

from deploy_guard.clients.record_store import InMemoryRecordStore
from deploy_guard.contracts.multisig import DeploymentOutcome, ExecutionOutcome, Network, ProposalStatus
from deploy_guard.services.errors import (
    AlreadyExecutedError,
    ExecutionFailedError,
    NotApprovedError,
    NotFoundError,
    ProposalExpiredError,
    VersionConflict,
)
from deploy_guard.services.execution_service import ExecutionService
from deploy_guard.services.policy_service import PolicyService
from deploy_guard.services.proposal_service import ProposalService


async def _approve(proposal_service, proposal_id: str, *signers: str) -> None:
    for signer in signers:
        await proposal_service.add_signature(proposal_id, signer)


@pytest.mark.asyncio
async def test_scenario_a_execute_approved_proposal(open_proposal, proposal_service, execution_service, deployer, clock):
    _, proposal = await open_proposal()
    await _approve(proposal_service, proposal.id, "alice", "bob")

    result = await execution_service.execute(proposal.id)

    assert result.status == ProposalStatus.EXECUTED
    assert result.outcome == ExecutionOutcome.SUCCEEDED
    assert result.deployment_reference == "dep_1"
    assert result.executed_at == clock.now
    assert deployer.calls == [
        {
            "contract_id": proposal.contract_id,
            "wasm_hash": proposal.wasm_hash,
            "network": proposal.network,
            "idempotency_key": proposal.id,
        }
    ]

    stored = await proposal_service.load(proposal.id)
    assert stored.status == ProposalStatus.EXECUTED
    assert stored.execution.outcome == ExecutionOutcome.SUCCEEDED


@pytest.mark.asyncio
async def test_execute_below_threshold_is_not_approved(open_proposal, proposal_service, execution_service, deployer):
    _, proposal = await open_proposal()
    await _approve(proposal_service, proposal.id, "alice")

    with pytest.raises(NotApprovedError):
        await execution_service.execute(proposal.id)

    assert deployer.calls == []
    stored = await proposal_service.load(proposal.id)
    assert stored.status == ProposalStatus.PENDING


@pytest.mark.asyncio
async def test_execute_twice_reports_already_executed(open_proposal, proposal_service, execution_service, deployer):
    _, proposal = await open_proposal(threshold=1)
    await _approve(proposal_service, proposal.id, "alice")
    await execution_service.execute(proposal.id)

    with pytest.raises(AlreadyExecutedError):
        await execution_service.execute(proposal.id)

    assert len(deployer.calls) == 1


@pytest.mark.asyncio
async def test_concurrent_executions_deploy_exactly_once(open_proposal, proposal_service, execution_service, deployer):
    _, proposal = await open_proposal()
    await _approve(proposal_service, proposal.id, "alice", "bob")

    results = await asyncio.gather(
        *(execution_service.execute(proposal.id) for _ in range(8)),
        return_exceptions=True,
    )

    successes = [result for result in results if not isinstance(result, Exception)]
    failures = [result for result in results if isinstance(result, Exception)]
    assert len(successes) == 1
    assert len(failures) == 7
    assert all(isinstance(failure, AlreadyExecutedError) for failure in failures)
    assert len(deployer.calls) == 1


@pytest.mark.asyncio
async def test_execute_after_expiry_persists_expired(open_proposal, proposal_service, execution_service, deployer, clock):
    _, proposal = await open_proposal(expiry_seconds=60)
    await _approve(proposal_service, proposal.id, "alice", "bob")
    clock.advance(61)

    with pytest.raises(ProposalExpiredError):
        await execution_service.execute(proposal.id)

    assert deployer.calls == []
    stored = await proposal_service.load(proposal.id)
    assert stored.status == ProposalStatus.EXPIRED


@pytest.mark.asyncio
async def test_execute_unknown_proposal(execution_service):
    with pytest.raises(NotFoundError):
        await execution_service.execute("missing")


@pytest.mark.asyncio
async def test_rejected_deployment_stays_executed(open_proposal, proposal_service, execution_service, deployer):
    _, proposal = await open_proposal(threshold=1)
    await _approve(proposal_service, proposal.id, "alice")
    deployer.outcome = DeploymentOutcome(succeeded=False, detail="wasm not uploaded")

    with pytest.raises(ExecutionFailedError) as exc_info:
        await execution_service.execute(proposal.id)

    assert exc_info.value.outcome == "failed"
    stored = await proposal_service.load(proposal.id)
    assert stored.status == ProposalStatus.EXECUTED
    assert stored.execution.outcome == ExecutionOutcome.FAILED
    assert stored.execution.detail == "wasm not uploaded"

    with pytest.raises(AlreadyExecutedError):
        await execution_service.execute(proposal.id)
    assert len(deployer.calls) == 1


@pytest.mark.asyncio
async def test_deployer_exception_is_recorded_as_failure(open_proposal, proposal_service, execution_service, deployer):
    _, proposal = await open_proposal(threshold=1)
    await _approve(proposal_service, proposal.id, "alice")
    deployer.error = RuntimeError("registry exploded")

    with pytest.raises(ExecutionFailedError):
        await execution_service.execute(proposal.id)

    stored = await proposal_service.load(proposal.id)
    assert stored.execution.outcome == ExecutionOutcome.FAILED
    assert "registry exploded" in stored.execution.detail


@pytest.mark.asyncio
async def test_deployment_timeout_is_indeterminate(open_proposal, proposal_service, execution_service, deployer):
    _, proposal = await open_proposal(threshold=1)
    await _approve(proposal_service, proposal.id, "alice")
    deployer.delay_seconds = 5.0

    with pytest.raises(ExecutionFailedError) as exc_info:
        await execution_service.execute(proposal.id, timeout_seconds=0.01)

    assert exc_info.value.outcome == "indeterminate"
    stored = await proposal_service.load(proposal.id)
    assert stored.status == ProposalStatus.EXECUTED
    assert stored.execution.outcome == ExecutionOutcome.INDETERMINATE


@pytest.mark.asyncio
async def test_indeterminate_deployer_outcome(open_proposal, proposal_service, execution_service, deployer):
    _, proposal = await open_proposal(threshold=1)
    await _approve(proposal_service, proposal.id, "alice")
    deployer.outcome = DeploymentOutcome(
        succeeded=False,
        indeterminate=True,
        detail="upstream communication failure: ReadTimeout",
    )

    with pytest.raises(ExecutionFailedError) as exc_info:
        await execution_service.execute(proposal.id)

    assert exc_info.value.outcome == "indeterminate"


class _LostClaimStore(InMemoryRecordStore):
    """Commits the execution claim but reports it as a conflict."""

    def __init__(self) -> None:
        super().__init__()
        self.lost = False

    async def update_proposal(self, proposal, expected_version, correlation_id=""):
        committed = await super().update_proposal(proposal, expected_version, correlation_id)
        if proposal.status == ProposalStatus.EXECUTED and not self.lost:
            self.lost = True
            raise VersionConflict(proposal.id, expected_version, committed.version)
        return committed


@pytest.mark.asyncio
async def test_claim_whose_response_was_lost_still_deploys(verifier, deployer, clock):
    store = _LostClaimStore()
    policies = PolicyService(store=store, clock=clock)
    proposals = ProposalService(store=store, policy_service=policies, signature_verifier=verifier, clock=clock)
    executor = ExecutionService(
        store=store,
        proposal_service=proposals,
        policy_service=policies,
        deployer=deployer,
        clock=clock,
    )
    policy = await policies.create_policy(
        name="solo", signers=["alice"], threshold=1, expiry_seconds=None, created_by="ops"
    )
    proposal = await proposals.create_proposal(
        policy_id=policy.id,
        contract_name="token",
        contract_id="C1",
        wasm_hash="ab" * 32,
        network=Network.FUTURENET,
        proposer="alice",
    )
    await proposals.add_signature(proposal.id, "alice")

    result = await executor.execute(proposal.id)

    assert store.lost
    assert result.outcome == ExecutionOutcome.SUCCEEDED
    assert len(deployer.calls) == 1
