from typing import Any

from pydantic import BaseModel, Field, field_validator

from deploy_guard.contracts.multisig import (
    MAX_EXPIRY_SECONDS,
    ExecutionResult,
    MultisigPolicy,
    MultisigProposal,
    Network,
    ProposalInfo,
    parse_enum_value,
)


class PolicyCreateRequest(BaseModel):
    name: str = Field(description="Human readable policy label.")
    signers: list[str] = Field(description="Identities allowed to sign proposals under this policy.")
    threshold: int = Field(description="Number of distinct signatures required for approval.")
    expiry_seconds: int | None = Field(
        default=None,
        le=MAX_EXPIRY_SECONDS,
        description="Relative lifetime applied to proposals created under this policy.",
    )
    created_by: str = Field(description="Identity creating the policy.")


class ProposalCreateRequest(BaseModel):
    policy_id: str = Field(description="Policy whose signers must approve the deployment.")
    contract_name: str
    contract_id: str = Field(description="On-chain contract id targeted by the deployment.")
    wasm_hash: str = Field(
        pattern=r"^[0-9a-fA-F]{64}$",
        description="Hex digest of the wasm module to deploy.",
    )
    network: Network
    proposer: str
    description: str | None = None

    @field_validator("network", mode="before")
    @classmethod
    def _normalize_network(cls, value: Any) -> Any:
        return parse_enum_value(value)


class ProposalSignRequest(BaseModel):
    signer: str = Field(description="Signer identity submitting the approval.")
    signature_data: str | None = Field(
        default=None,
        description="Signature over the proposal signing payload, verified when supplied.",
    )


class ProposalExecuteRequest(BaseModel):
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Upper bound for the deployment call. Defaults to the service setting.",
    )


class PolicyEnvelopeResponse(BaseModel):
    correlation_id: str
    contract_version: str = "v1"
    data: MultisigPolicy


class PolicyListEnvelopeResponse(BaseModel):
    correlation_id: str
    contract_version: str = "v1"
    data: list[MultisigPolicy]


class ProposalEnvelopeResponse(BaseModel):
    correlation_id: str
    contract_version: str = "v1"
    data: MultisigProposal


class ProposalListEnvelopeResponse(BaseModel):
    correlation_id: str
    contract_version: str = "v1"
    data: list[MultisigProposal]


class ProposalInfoEnvelopeResponse(BaseModel):
    correlation_id: str
    contract_version: str = "v1"
    data: ProposalInfo


class SigningPayload(BaseModel):
    proposal_id: str
    payload: str = Field(description="Canonical JSON document signers must sign.")
    payload_hex: str


class SigningPayloadEnvelopeResponse(BaseModel):
    correlation_id: str
    contract_version: str = "v1"
    data: SigningPayload


class ExecutionEnvelopeResponse(BaseModel):
    correlation_id: str
    contract_version: str = "v1"
    data: ExecutionResult
