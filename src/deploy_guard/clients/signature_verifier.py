import json
from typing import Protocol

from deploy_guard.contracts.multisig import MultisigProposal


def canonical_payload(proposal: MultisigProposal) -> bytes:
    """Bytes a signer approves: the fields that pin one exact deployment."""
    document = {
        "contract_id": proposal.contract_id,
        "network": proposal.network.value,
        "policy_id": proposal.policy_id,
        "wasm_hash": proposal.wasm_hash,
    }
    return json.dumps(document, sort_keys=True, separators=(",", ":")).encode("utf-8")


class SignatureVerifier(Protocol):
    async def verify(self, signer: str, payload: bytes, signature: str) -> bool: ...


class PresenceSignatureVerifier:
    """Accepts any non-blank artifact.

    Chain specific verification plugs in through the SignatureVerifier
    protocol; this default only rejects empty submissions.
    """

    async def verify(self, signer: str, payload: bytes, signature: str) -> bool:
        return bool(signer.strip()) and bool(payload) and bool(signature.strip())
