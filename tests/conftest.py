import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from deploy_guard.clients.record_store import InMemoryRecordStore
from deploy_guard.contracts.multisig import DeploymentOutcome, MultisigProposal, Network
from deploy_guard.dependencies import get_record_store
from deploy_guard.services.execution_service import ExecutionService
from deploy_guard.services.policy_service import PolicyService
from deploy_guard.services.proposal_service import ProposalService
from deploy_guard.services.query_service import QueryService


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class YieldingRecordStore(InMemoryRecordStore):
    """Gives other tasks a chance to run between every read and write."""

    async def get_proposal(self, proposal_id: str, correlation_id: str = ""):
        proposal = await super().get_proposal(proposal_id, correlation_id)
        await asyncio.sleep(0)
        return proposal

    async def update_proposal(
        self,
        proposal: MultisigProposal,
        expected_version: int,
        correlation_id: str = "",
    ):
        await asyncio.sleep(0)
        return await super().update_proposal(proposal, expected_version, correlation_id)


class RecordingDeployer:
    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.outcome = DeploymentOutcome(succeeded=True, reference="dep_1", detail="submitted")
        self.error: Exception | None = None
        self.delay_seconds = 0.0

    async def deploy(
        self,
        contract_id: str,
        wasm_hash: str,
        network: Network,
        idempotency_key: str,
        correlation_id: str = "",
    ) -> DeploymentOutcome:
        self.calls.append(
            {
                "contract_id": contract_id,
                "wasm_hash": wasm_hash,
                "network": network,
                "idempotency_key": idempotency_key,
            }
        )
        await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        return self.outcome


class StubVerifier:
    def __init__(self) -> None:
        self.valid = True
        self.calls: list[tuple[str, bytes, str]] = []

    async def verify(self, signer: str, payload: bytes, signature: str) -> bool:
        self.calls.append((signer, payload, signature))
        return self.valid


WASM_HASH = "ab" * 32


@pytest.fixture(autouse=True)
def _reset_record_store():
    get_record_store.cache_clear()
    yield
    get_record_store.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def store() -> YieldingRecordStore:
    return YieldingRecordStore()


@pytest.fixture
def deployer() -> RecordingDeployer:
    return RecordingDeployer()


@pytest.fixture
def verifier() -> StubVerifier:
    return StubVerifier()


@pytest.fixture
def policy_service(store, clock) -> PolicyService:
    return PolicyService(store=store, clock=clock)


@pytest.fixture
def proposal_service(store, policy_service, verifier, clock) -> ProposalService:
    return ProposalService(
        store=store,
        policy_service=policy_service,
        signature_verifier=verifier,
        clock=clock,
        max_attempts=16,
    )


@pytest.fixture
def execution_service(store, proposal_service, policy_service, deployer, clock) -> ExecutionService:
    return ExecutionService(
        store=store,
        proposal_service=proposal_service,
        policy_service=policy_service,
        deployer=deployer,
        clock=clock,
        max_attempts=16,
        default_timeout_seconds=1.0,
    )


@pytest.fixture
def query_service(proposal_service, policy_service) -> QueryService:
    return QueryService(proposal_service=proposal_service, policy_service=policy_service, max_limit=50)


@pytest.fixture
def open_proposal(policy_service, proposal_service):
    async def _open(
        signers: tuple[str, ...] = ("alice", "bob", "carol"),
        threshold: int = 2,
        expiry_seconds: int | None = None,
        contract_id: str = "CDLZFC3SYJYDZT7K67VZ75HPJVIEUVNIXF47ZG2FB2RMQQVU2HHGCYSC",
    ):
        policy = await policy_service.create_policy(
            name="core-deployers",
            signers=list(signers),
            threshold=threshold,
            expiry_seconds=expiry_seconds,
            created_by="ops",
        )
        proposal = await proposal_service.create_proposal(
            policy_id=policy.id,
            contract_name="token",
            contract_id=contract_id,
            wasm_hash=WASM_HASH,
            network=Network.TESTNET,
            proposer="alice",
            description="upgrade token to v2",
        )
        return policy, proposal

    return _open
