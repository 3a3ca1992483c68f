from datetime import UTC, datetime, timedelta

import pytest

from deploy_guard.clients.record_store import InMemoryRecordStore
from deploy_guard.contracts.multisig import MultisigPolicy, MultisigProposal, ProposalStatus
from deploy_guard.services.errors import VersionConflict

_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _proposal(proposal_id: str, created_offset: int = 0, status: str = "pending") -> MultisigProposal:
    return MultisigProposal(
        id=proposal_id,
        policy_id="pol_1",
        contract_name="token",
        contract_id="C1",
        wasm_hash="ab" * 32,
        network="Mainnet",
        proposer="alice",
        created_at=_NOW + timedelta(seconds=created_offset),
        status=status,
    )


@pytest.mark.asyncio
async def test_update_requires_matching_version():
    store = InMemoryRecordStore()
    await store.insert_proposal(_proposal("p1"))

    updated = await store.update_proposal(
        _proposal("p1", status="approved"),
        expected_version=1,
    )
    assert updated.version == 2
    assert updated.status == ProposalStatus.APPROVED

    with pytest.raises(VersionConflict) as exc_info:
        await store.update_proposal(_proposal("p1", status="expired"), expected_version=1)
    assert exc_info.value.actual_version == 2
    assert (await store.get_proposal("p1")).status == ProposalStatus.APPROVED


@pytest.mark.asyncio
async def test_update_of_missing_record_conflicts():
    store = InMemoryRecordStore()

    with pytest.raises(VersionConflict):
        await store.update_proposal(_proposal("ghost"), expected_version=1)


@pytest.mark.asyncio
async def test_duplicate_insert_conflicts():
    store = InMemoryRecordStore()
    await store.insert_proposal(_proposal("p1"))

    with pytest.raises(VersionConflict):
        await store.insert_proposal(_proposal("p1"))


@pytest.mark.asyncio
async def test_reads_are_isolated_copies():
    store = InMemoryRecordStore()
    await store.insert_proposal(_proposal("p1"))

    loaded = await store.get_proposal("p1")
    loaded.description = "mutated"

    assert (await store.get_proposal("p1")).description is None
    assert await store.get_proposal("missing") is None


@pytest.mark.asyncio
async def test_list_filters_by_status_newest_first():
    store = InMemoryRecordStore()
    await store.insert_proposal(_proposal("old", created_offset=0))
    await store.insert_proposal(_proposal("new", created_offset=10))
    await store.insert_proposal(_proposal("done", created_offset=5, status="executed"))

    assert [p.id for p in await store.list_proposals()] == ["new", "done", "old"]
    assert [p.id for p in await store.list_proposals([ProposalStatus.PENDING])] == ["new", "old"]


@pytest.mark.asyncio
async def test_policies_round_trip_and_list_limit():
    store = InMemoryRecordStore()
    for index in range(3):
        await store.insert_policy(
            MultisigPolicy(
                id=f"pol_{index}",
                name=f"policy {index}",
                signers=["alice"],
                threshold=1,
                created_by="ops",
                created_at=_NOW + timedelta(seconds=index),
            )
        )

    assert (await store.get_policy("pol_1")).name == "policy 1"
    assert [policy.id for policy in await store.list_policies(limit=2)] == ["pol_2", "pol_1"]
