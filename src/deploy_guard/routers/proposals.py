from typing import Annotated

from fastapi import APIRouter, Query, status
from pydantic import BeforeValidator

from deploy_guard import dependencies
from deploy_guard.config import settings
from deploy_guard.contracts.multisig import ProposalStatus, parse_enum_value
from deploy_guard.contracts.proposals import (
    ExecutionEnvelopeResponse,
    ProposalCreateRequest,
    ProposalEnvelopeResponse,
    ProposalExecuteRequest,
    ProposalInfoEnvelopeResponse,
    ProposalListEnvelopeResponse,
    ProposalSignRequest,
    SigningPayload,
    SigningPayloadEnvelopeResponse,
)
from deploy_guard.middleware.correlation import correlation_id_var

router = APIRouter(prefix="/api/v1/multisig/proposals", tags=["multisig-proposals"])


@router.post("", response_model=ProposalEnvelopeResponse, status_code=status.HTTP_201_CREATED)
async def create_proposal(request: ProposalCreateRequest) -> ProposalEnvelopeResponse:
    service = dependencies.proposal_service()
    correlation_id = correlation_id_var.get()
    proposal = await service.create_proposal(
        policy_id=request.policy_id,
        contract_name=request.contract_name,
        contract_id=request.contract_id,
        wasm_hash=request.wasm_hash,
        network=request.network,
        proposer=request.proposer,
        description=request.description,
        correlation_id=correlation_id,
    )
    return ProposalEnvelopeResponse(
        correlation_id=correlation_id,
        contract_version=settings.contract_version,
        data=proposal,
    )


@router.get("", response_model=ProposalListEnvelopeResponse)
async def list_proposals(
    status_filter: Annotated[
        ProposalStatus | None,
        BeforeValidator(parse_enum_value),
        Query(alias="status"),
    ] = None,
    limit: int = Query(default=settings.proposal_list_default_limit, ge=1),
) -> ProposalListEnvelopeResponse:
    service = dependencies.query_service()
    correlation_id = correlation_id_var.get()
    proposals = await service.list_proposals(
        status_filter=status_filter,
        limit=limit,
        correlation_id=correlation_id,
    )
    return ProposalListEnvelopeResponse(
        correlation_id=correlation_id,
        contract_version=settings.contract_version,
        data=proposals,
    )


@router.get("/{proposal_id}", response_model=ProposalInfoEnvelopeResponse)
async def get_proposal_info(proposal_id: str) -> ProposalInfoEnvelopeResponse:
    service = dependencies.query_service()
    correlation_id = correlation_id_var.get()
    info = await service.proposal_info(proposal_id=proposal_id, correlation_id=correlation_id)
    return ProposalInfoEnvelopeResponse(
        correlation_id=correlation_id,
        contract_version=settings.contract_version,
        data=info,
    )


@router.get("/{proposal_id}/payload", response_model=SigningPayloadEnvelopeResponse)
async def get_signing_payload(proposal_id: str) -> SigningPayloadEnvelopeResponse:
    service = dependencies.proposal_service()
    correlation_id = correlation_id_var.get()
    payload = await service.signing_payload(proposal_id=proposal_id, correlation_id=correlation_id)
    return SigningPayloadEnvelopeResponse(
        correlation_id=correlation_id,
        contract_version=settings.contract_version,
        data=SigningPayload(
            proposal_id=proposal_id,
            payload=payload.decode("utf-8"),
            payload_hex=payload.hex(),
        ),
    )


@router.post("/{proposal_id}/signatures", response_model=ProposalEnvelopeResponse)
async def sign_proposal(proposal_id: str, request: ProposalSignRequest) -> ProposalEnvelopeResponse:
    service = dependencies.proposal_service()
    correlation_id = correlation_id_var.get()
    proposal = await service.add_signature(
        proposal_id=proposal_id,
        signer=request.signer,
        signature_data=request.signature_data,
        correlation_id=correlation_id,
    )
    return ProposalEnvelopeResponse(
        correlation_id=correlation_id,
        contract_version=settings.contract_version,
        data=proposal,
    )


@router.post("/{proposal_id}/execute", response_model=ExecutionEnvelopeResponse)
async def execute_proposal(
    proposal_id: str,
    request: ProposalExecuteRequest | None = None,
) -> ExecutionEnvelopeResponse:
    service = dependencies.execution_service()
    correlation_id = correlation_id_var.get()
    result = await service.execute(
        proposal_id=proposal_id,
        timeout_seconds=request.timeout_seconds if request is not None else None,
        correlation_id=correlation_id,
    )
    return ExecutionEnvelopeResponse(
        correlation_id=correlation_id,
        contract_version=settings.contract_version,
        data=result,
    )
