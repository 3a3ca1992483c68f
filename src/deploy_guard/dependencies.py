from functools import lru_cache

from deploy_guard.clients.deployment_client import Deployer, DeploymentClient
from deploy_guard.clients.record_store import InMemoryRecordStore, RecordStore
from deploy_guard.clients.registry_client import RegistryRecordStore
from deploy_guard.clients.signature_verifier import PresenceSignatureVerifier, SignatureVerifier
from deploy_guard.config import settings
from deploy_guard.services.execution_service import ExecutionService
from deploy_guard.services.expiry_sweeper import ExpirySweeper
from deploy_guard.services.policy_service import PolicyService
from deploy_guard.services.proposal_service import ProposalService
from deploy_guard.services.query_service import QueryService


@lru_cache
def get_record_store() -> RecordStore:
    if settings.record_store_backend == "registry":
        return RegistryRecordStore(
            base_url=settings.registry_base_url,
            timeout_seconds=settings.upstream_timeout_seconds,
            max_retries=settings.upstream_max_retries,
            retry_backoff_seconds=settings.upstream_retry_backoff_seconds,
        )
    return InMemoryRecordStore()


def get_signature_verifier() -> SignatureVerifier:
    return PresenceSignatureVerifier()


def get_deployer() -> Deployer:
    return DeploymentClient(
        base_url=settings.deployment_base_url,
        timeout_seconds=settings.deployment_timeout_seconds,
    )


def policy_service() -> PolicyService:
    return PolicyService(store=get_record_store())


def proposal_service() -> ProposalService:
    return ProposalService(
        store=get_record_store(),
        policy_service=policy_service(),
        signature_verifier=get_signature_verifier(),
        max_attempts=settings.cas_max_attempts,
    )


def execution_service() -> ExecutionService:
    return ExecutionService(
        store=get_record_store(),
        proposal_service=proposal_service(),
        policy_service=policy_service(),
        deployer=get_deployer(),
        max_attempts=settings.cas_max_attempts,
        default_timeout_seconds=settings.deployment_timeout_seconds,
    )


def query_service() -> QueryService:
    return QueryService(
        proposal_service=proposal_service(),
        policy_service=policy_service(),
        max_limit=settings.proposal_list_max_limit,
    )


def expiry_sweeper() -> ExpirySweeper:
    return ExpirySweeper(
        store=get_record_store(),
        proposal_service=proposal_service(),
        interval_seconds=settings.expiry_sweep_interval_seconds,
    )
