from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Ten years; keeps every expires_at well inside the datetime range.
MAX_EXPIRY_SECONDS = 10 * 365 * 24 * 60 * 60


class Network(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    FUTURENET = "futurenet"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTED = "executed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (ProposalStatus.EXECUTED, ProposalStatus.EXPIRED)


class ExecutionOutcome(str, Enum):
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    INDETERMINATE = "indeterminate"

    @property
    def is_failure(self) -> bool:
        return self in (ExecutionOutcome.FAILED, ExecutionOutcome.INDETERMINATE)


def parse_enum_value(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class MultisigPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    signers: list[str]
    threshold: int
    expiry_seconds: int | None = None
    created_by: str
    created_at: datetime


class ProposalSignature(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    signer: str
    signature_data: str | None = None
    signed_at: datetime


class ExecutionRecord(BaseModel):
    execution_id: str
    outcome: ExecutionOutcome
    detail: str | None = None
    deployment_reference: str | None = None
    finished_at: datetime | None = None


class MultisigProposal(BaseModel):
    id: str
    policy_id: str
    contract_name: str
    contract_id: str
    wasm_hash: str
    network: Network
    proposer: str
    description: str | None = None
    created_at: datetime
    expires_at: datetime | None = None
    signatures: list[ProposalSignature] = Field(default_factory=list)
    status: ProposalStatus = ProposalStatus.PENDING
    version: int = 1
    executed_at: datetime | None = None
    execution: ExecutionRecord | None = None

    @field_validator("network", "status", mode="before")
    @classmethod
    def _normalize_enum(cls, value: Any) -> Any:
        return parse_enum_value(value)

    def has_signed(self, signer: str) -> bool:
        return any(signature.signer == signer for signature in self.signatures)


class DeploymentOutcome(BaseModel):
    succeeded: bool
    indeterminate: bool = False
    reference: str | None = None
    detail: str | None = None


class ExecutionResult(BaseModel):
    proposal_id: str
    status: ProposalStatus
    executed_at: datetime | None = None
    outcome: ExecutionOutcome
    deployment_reference: str | None = None
    detail: str | None = None


class ProposalInfo(BaseModel):
    proposal: MultisigProposal
    policy: MultisigPolicy
    signatures_collected: int
    signatures_required: int
    signatures_remaining: int
    pending_signers: list[str] = Field(default_factory=list)
