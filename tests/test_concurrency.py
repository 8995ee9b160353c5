"""Tests for optimistic concurrency on vendor capacity and entry status.

Each simulated request gets its own session, the way concurrent HTTP
requests each get their own unit of work.
"""

from __future__ import annotations

import asyncio

import pytest

from voltvend.errors import ConcurrentModification, CustomerAdditionDenied, InvalidStateTransition
from voltvend.ledger import workflow
from voltvend.ledger.store import LedgerStore
from voltvend.models.upgrade_entry import STATUS_APPROVED
from voltvend.service import CapacityService


async def _add_with_retry(session_factory, vendor_id, meter: str, attempts: int = 5) -> bool:
    """Try to enroll one customer in a fresh unit of work, retrying lost races."""
    for _ in range(attempts):
        async with session_factory() as session:
            service = CapacityService(session)
            try:
                await service.add_customer(vendor_id, meter, str(vendor_id))
                await session.commit()
                return True
            except ConcurrentModification:
                await session.rollback()
            except CustomerAdditionDenied:
                await session.rollback()
                return False
    return False


@pytest.mark.asyncio
async def test_stale_read_cannot_claim_last_slot(make_vendor, session_factory) -> None:
    vendor = await make_vendor(base_capacity=1000, customers=999)
    vendor_id = vendor.id

    # Request A reads the vendor and sees one free slot
    async with session_factory() as session_a:
        store_a = LedgerStore(session_a)
        stale = await store_a.get_vendor(vendor_id)
        await session_a.commit()

        # Request B takes the slot first
        async with session_factory() as session_b:
            await CapacityService(session_b).add_customer(vendor_id, "MTR-B", str(vendor_id))
            await session_b.commit()

        with pytest.raises(ConcurrentModification):
            await store_a.claim_vendor(stale)
        await session_a.rollback()

    # A's retry sees the new count and is refused
    async with session_factory() as session:
        decision = await CapacityService(session).can_add_customer(vendor_id)
    assert decision.allowed is False
    assert decision.reason == "limit_reached"
    assert decision.current == 1000


@pytest.mark.asyncio
async def test_parallel_adds_never_exceed_capacity(make_vendor, session_factory) -> None:
    vendor = await make_vendor(base_capacity=10, customers=7)
    vendor_id = vendor.id

    results = await asyncio.gather(
        *(_add_with_retry(session_factory, vendor_id, f"MTR-P{i}") for i in range(10))
    )

    assert results.count(True) == 3
    async with session_factory() as session:
        service = CapacityService(session)
        summary = await service.get_capacity_summary(vendor_id)
    assert summary.used == 10
    assert summary.remaining == 0


@pytest.mark.asyncio
async def test_stale_entry_transition_is_refused(test_vendor, session_factory) -> None:
    vendor_id = test_vendor.id
    async with session_factory() as session:
        entry = await CapacityService(session).submit_upgrade_request(vendor_id, 500, str(vendor_id))
        entry_id = entry.id
        await session.commit()

    async with session_factory() as session_a:
        store_a = LedgerStore(session_a)
        entry_a, _ = await store_a.get_entry(entry_id)
        change = workflow.plan_approval(entry_a, "admin-a")
        await session_a.commit()

        async with session_factory() as session_b:
            await CapacityService(session_b).decide_upgrade(
                entry_id, "reject", "admin-b", reason="Duplicate request"
            )
            await session_b.commit()

        with pytest.raises(ConcurrentModification):
            await store_a.transition(entry_a, change)
        await session_a.rollback()

    async with session_factory() as session:
        service = CapacityService(session)
        assert await service.get_effective_capacity(vendor_id) == 1000
        entry = await service.get_upgrade(entry_id)
        assert entry.status != STATUS_APPROVED


@pytest.mark.asyncio
async def test_parallel_approvals_apply_once(test_vendor, session_factory) -> None:
    vendor_id = test_vendor.id
    async with session_factory() as session:
        entry = await CapacityService(session).submit_upgrade_request(vendor_id, 500, str(vendor_id))
        entry_id = entry.id
        await session.commit()

    async def approve(admin: str) -> bool:
        async with session_factory() as session:
            try:
                await CapacityService(session).decide_upgrade(entry_id, "approve", admin)
                await session.commit()
                return True
            except (ConcurrentModification, InvalidStateTransition):
                await session.rollback()
                return False

    results = await asyncio.gather(approve("admin-1"), approve("admin-2"))

    assert sorted(results) == [False, True]
    async with session_factory() as session:
        assert await CapacityService(session).get_effective_capacity(vendor_id) == 1500
