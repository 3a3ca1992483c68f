from fastapi import APIRouter, Query, status

from deploy_guard import dependencies
from deploy_guard.config import settings
from deploy_guard.contracts.proposals import (
    PolicyCreateRequest,
    PolicyEnvelopeResponse,
    PolicyListEnvelopeResponse,
)
from deploy_guard.middleware.correlation import correlation_id_var

router = APIRouter(prefix="/api/v1/multisig/policies", tags=["multisig-policies"])


@router.post("", response_model=PolicyEnvelopeResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(request: PolicyCreateRequest) -> PolicyEnvelopeResponse:
    service = dependencies.policy_service()
    correlation_id = correlation_id_var.get()
    policy = await service.create_policy(
        name=request.name,
        signers=request.signers,
        threshold=request.threshold,
        expiry_seconds=request.expiry_seconds,
        created_by=request.created_by,
        correlation_id=correlation_id,
    )
    return PolicyEnvelopeResponse(
        correlation_id=correlation_id,
        contract_version=settings.contract_version,
        data=policy,
    )


@router.get("", response_model=PolicyListEnvelopeResponse)
async def list_policies(
    limit: int = Query(default=settings.proposal_list_default_limit, ge=1),
) -> PolicyListEnvelopeResponse:
    service = dependencies.query_service()
    correlation_id = correlation_id_var.get()
    policies = await service.list_policies(limit=limit, correlation_id=correlation_id)
    return PolicyListEnvelopeResponse(
        correlation_id=correlation_id,
        contract_version=settings.contract_version,
        data=policies,
    )


@router.get("/{policy_id}", response_model=PolicyEnvelopeResponse)
async def get_policy(policy_id: str) -> PolicyEnvelopeResponse:
    service = dependencies.query_service()
    correlation_id = correlation_id_var.get()
    policy = await service.get_policy(policy_id=policy_id, correlation_id=correlation_id)
    return PolicyEnvelopeResponse(
        correlation_id=correlation_id,
        contract_version=settings.contract_version,
        data=policy,
    )
