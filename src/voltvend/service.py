"""Capacity service — the inbound operations of the capacity ledger.

One :class:`CapacityService` wraps one database session, i.e. one unit of
work.  The transport layer is trusted to have authenticated the actor and
checked its role before calling in; actors are passed explicitly.

Writes are flushed but never committed here; the session owner commits.
Notifications are queued per unit of work and only sent once it commits; a
rollback discards them.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy.event import listen
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from voltvend.errors import CustomerAdditionDenied, ValidationError
from voltvend.ledger import capacity, overrides, quota, workflow
from voltvend.ledger.store import LedgerStore, UpgradeFilter
from voltvend.ledger.workflow import UpgradePolicy
from voltvend.models.base import utcnow
from voltvend.models.customer import Customer
from voltvend.models.upgrade_entry import STATUS_APPROVED, UpgradeEntry
from voltvend.models.vendor import Vendor
from voltvend.notifications import sender
from voltvend.notifications.sender import NotificationSink

logger = logging.getLogger(__name__)

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"

_DECISION_ALIASES = {
    "approve": DECISION_APPROVE,
    "approved": DECISION_APPROVE,
    "complete": DECISION_APPROVE,
    "completed": DECISION_APPROVE,
    "reject": DECISION_REJECT,
    "rejected": DECISION_REJECT,
}


class CapacitySummary(BaseModel):
    """Dashboard figures for one vendor."""

    vendor_id: uuid.UUID
    base_capacity: int
    effective_capacity: int
    used: int
    remaining: int
    pending_units: int
    customers_add_enabled: bool
    restricted_at: datetime | None = None
    restriction_reason: str | None = None
    last_modified_by: str | None = None
    last_modified_at: datetime | None = None
    last_modification_reason: str | None = None


@dataclass
class UpgradePage:
    entries: list[UpgradeEntry]
    total: int


def normalize_decision(decision: str) -> str:
    normalized = _DECISION_ALIASES.get((decision or "").strip().lower())
    if normalized is None:
        raise ValidationError("Decision must be 'approve' or 'reject'.")
    return normalized


class CapacityService:
    def __init__(
        self,
        db: AsyncSession,
        notifier: NotificationSink | None = None,
        policy: UpgradePolicy | None = None,
    ) -> None:
        self.store = LedgerStore(db)
        self.notifier = notifier
        self.policy = policy or UpgradePolicy.from_settings()
        self.background_tasks: list[asyncio.Task[None]] = []
        self._outbox: list[tuple[str, dict[str, Any]]] = []
        if notifier is not None:
            listen(db.sync_session, "after_commit", self._send_outbox)
            listen(db.sync_session, "after_rollback", self._drop_outbox)

    def _notify(self, event: str, payload: dict[str, Any]) -> None:
        # Held until the unit of work commits
        if self.notifier is not None:
            self._outbox.append((event, payload))

    def _send_outbox(self, session: Session) -> None:
        outbox, self._outbox = self._outbox, []
        for event, payload in outbox:
            task = sender.dispatch(self.notifier, event, payload)
            if task is not None:
                self.background_tasks.append(task)

    def _drop_outbox(self, session: Session) -> None:
        if self._outbox:
            logger.info("Dropping %d notification(s) from a rolled-back unit of work", len(self._outbox))
        self._outbox = []

    # -----------------------------------------------------------------------
    # Upgrade workflow
    # -----------------------------------------------------------------------

    async def submit_upgrade_request(
        self,
        vendor_id: uuid.UUID,
        units: int,
        actor_id: str,
        reason: str | None = None,
    ) -> UpgradeEntry:
        """Vendor asks to buy ``units`` more customer slots; entry starts ``pending``."""
        vendor = await self.store.get_vendor(vendor_id)
        entry = workflow.new_request(vendor, units, actor_id, self.policy, reason=reason)
        await self.store.append_entry(vendor, entry)

        logger.info(
            "Vendor %s requested %d more customers (amount due %d)",
            vendor.id,
            units,
            entry.amount_due,
        )
        self._notify(sender.EVENT_UPGRADE_REQUESTED, sender.entry_payload(entry))
        return entry

    async def attach_payment_proof(
        self,
        entry_id: uuid.UUID,
        proof_ref: str,
        actor_id: str,
        reference: str | None = None,
    ) -> UpgradeEntry:
        entry, _vendor = await self.store.get_entry(entry_id)
        change = workflow.plan_payment_proof(entry, proof_ref, reference=reference)
        await self.store.transition(entry, change)

        logger.info("Payment proof attached to upgrade %s by %s", entry.id, actor_id)
        self._notify(sender.EVENT_PAYMENT_PROOF_SUBMITTED, sender.entry_payload(entry))
        return entry

    async def cancel_upgrade(self, entry_id: uuid.UUID, actor_id: str) -> UpgradeEntry:
        """Vendor abandons an undecided request; it becomes ``rejected``."""
        entry, _vendor = await self.store.get_entry(entry_id)
        change = workflow.plan_cancellation(entry, actor_id)
        await self.store.transition(entry, change)

        logger.info("Upgrade %s cancelled by %s", entry.id, actor_id)
        self._notify(sender.EVENT_UPGRADE_CANCELLED, sender.entry_payload(entry))
        return entry

    async def decide_upgrade(
        self,
        entry_id: uuid.UUID,
        decision: str,
        actor_id: str,
        reason: str | None = None,
        notes: str | None = None,
    ) -> UpgradeEntry:
        """Admin approves or rejects an upgrade request.

        Approval takes effect immediately: the next capacity read includes the
        entry.  Rejecting an already-approved entry is allowed as long as the
        vendor's current customers still fit without it.
        """
        decision = normalize_decision(decision)
        entry, vendor = await self.store.get_entry(entry_id)

        if decision == DECISION_APPROVE:
            change = workflow.plan_approval(entry, actor_id, notes=notes)
            event = sender.EVENT_UPGRADE_APPROVED
        else:
            used = 0
            if entry.status == STATUS_APPROVED:
                used = await self.store.count_customers(vendor.id)
            change = workflow.plan_rejection(
                entry,
                actor_id,
                reason,
                effective=capacity.effective_capacity(vendor),
                used=used,
            )
            event = sender.EVENT_UPGRADE_REJECTED

        vendor.mark_modified(actor_id, reason or f"upgrade {change.new_status}")
        await self.store.claim_vendor(vendor)
        await self.store.transition(entry, change)

        logger.info(
            "Upgrade %s for vendor %s %s -> %s by %s",
            entry.id,
            vendor.id,
            change.expected_status,
            change.new_status,
            actor_id,
        )
        self._notify(event, sender.entry_payload(entry))
        return entry

    async def compact_vendor(self, vendor_id: uuid.UUID, actor_id: str) -> list[UpgradeEntry]:
        """Mark every approved entry ``applied``; effective capacity is unchanged."""
        vendor = await self.store.get_vendor(vendor_id)
        approved = [e for e in vendor.entries if e.status == STATUS_APPROVED]
        if not approved:
            return []

        before = capacity.effective_capacity(vendor)
        changes = [workflow.plan_application(e) for e in approved]
        await self.store.claim_vendor(vendor)
        for entry, change in zip(approved, changes):
            await self.store.transition(entry, change)

        logger.info(
            "Compacted %d upgrade(s) for vendor %s at capacity %d (by %s)",
            len(approved),
            vendor.id,
            before,
            actor_id,
        )
        self._notify(
            sender.EVENT_CAPACITY_COMPACTED,
            {"vendor_id": str(vendor.id), "applied": len(approved), "effective_capacity": before},
        )
        return approved

    async def list_pending_upgrades(
        self,
        vendor_id: uuid.UUID | None = None,
        statuses: Iterable[str] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> UpgradePage:
        try:
            flt = UpgradeFilter.build(vendor_id, statuses, limit=limit, offset=offset)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        entries, total = await self.store.list_upgrades(flt)
        return UpgradePage(entries=entries, total=total)

    async def get_upgrade(self, entry_id: uuid.UUID) -> UpgradeEntry:
        entry, _vendor = await self.store.get_entry(entry_id)
        return entry

    async def list_vendor_entries(self, vendor_id: uuid.UUID) -> list[UpgradeEntry]:
        await self.store.get_vendor(vendor_id)
        return await self.store.list_entries(vendor_id)

    # -----------------------------------------------------------------------
    # Quota
    # -----------------------------------------------------------------------

    async def get_effective_capacity(self, vendor_id: uuid.UUID) -> int:
        vendor = await self.store.get_vendor(vendor_id)
        return capacity.effective_capacity(vendor)

    async def get_capacity_summary(self, vendor_id: uuid.UUID) -> CapacitySummary:
        vendor = await self.store.get_vendor(vendor_id)
        used = await self.store.count_customers(vendor.id)
        return CapacitySummary(
            vendor_id=vendor.id,
            base_capacity=vendor.base_capacity,
            effective_capacity=capacity.effective_capacity(vendor),
            used=used,
            remaining=capacity.remaining(vendor, used),
            pending_units=capacity.pending_units(vendor),
            customers_add_enabled=vendor.customers_add_enabled,
            restricted_at=vendor.restricted_at,
            restriction_reason=vendor.restriction_reason,
            last_modified_by=vendor.last_modified_by,
            last_modified_at=vendor.last_modified_at,
            last_modification_reason=vendor.last_modification_reason,
        )

    async def can_add_customer(self, vendor_id: uuid.UUID) -> quota.QuotaDecision:
        vendor = await self.store.get_vendor(vendor_id)
        used = await self.store.count_customers(vendor.id)
        return quota.can_add(vendor, used)

    async def add_customer(
        self,
        vendor_id: uuid.UUID,
        meter_number: str,
        actor_id: str,
        disco: str | None = None,
    ) -> Customer:
        """Enroll a customer if the quota allows it.

        The count check and the insert are one unit of work: the vendor
        version is claimed before inserting, so of two concurrent adds racing
        for the last slot only one can commit.
        """
        if not meter_number or not meter_number.strip():
            raise ValidationError("Meter number is required.")
        meter_number = meter_number.strip()

        vendor = await self.store.get_vendor(vendor_id)
        if await self.store.meter_enrolled(vendor.id, meter_number):
            raise ValidationError(f"Meter {meter_number} is already enrolled for vendor {vendor.id}.")
        used = await self.store.count_customers(vendor.id)
        decision = quota.can_add(vendor, used)
        if not decision.allowed:
            logger.warning(
                "Vendor %s denied new customer: %s (%d/%d)",
                vendor.id,
                decision.reason,
                decision.current,
                decision.limit,
            )
            raise CustomerAdditionDenied(decision)

        await self.store.claim_vendor(vendor)
        customer = Customer(
            vendor_id=vendor.id,
            meter_number=meter_number,
            disco=disco,
            created_by=actor_id,
        )
        await self.store.add_customer(customer)
        logger.info("Vendor %s enrolled meter %s (%d/%d)", vendor.id, customer.meter_number, used + 1, decision.limit)
        return customer

    # -----------------------------------------------------------------------
    # Admin overrides
    # -----------------------------------------------------------------------

    async def admin_adjust_capacity(
        self,
        vendor_id: uuid.UUID,
        op: str,
        amount: int,
        actor_id: str,
        reason: str | None,
    ) -> UpgradeEntry:
        """Grant, reduce or set a vendor's capacity without the payment workflow."""
        vendor = await self.store.get_vendor(vendor_id)
        used = await self.store.count_customers(vendor.id)
        before = capacity.effective_capacity(vendor)
        entry = overrides.plan(vendor, op, amount, actor_id, reason, used=used)

        vendor.mark_modified(actor_id, entry.reason, at=entry.decided_at)
        await self.store.claim_vendor(vendor)
        await self.store.append_entry(vendor, entry)

        after = capacity.effective_capacity(vendor)
        logger.info(
            "Admin %s adjusted vendor %s capacity via %s: %d -> %d",
            actor_id,
            vendor.id,
            op,
            before,
            after,
        )
        self._notify(
            sender.EVENT_CAPACITY_ADJUSTED,
            {**sender.entry_payload(entry), "previous_capacity": before, "effective_capacity": after},
        )
        return entry

    async def set_customer_addition(
        self,
        vendor_id: uuid.UUID,
        enabled: bool,
        actor_id: str,
        reason: str | None = None,
    ) -> Vendor:
        """Freeze or unfreeze customer enrollment for a vendor, independent of capacity."""
        vendor = await self.store.get_vendor(vendor_id)
        if not enabled and (reason is None or not reason.strip()):
            reason = "Administrative restriction"

        reason = reason.strip() if reason else None
        now = utcnow()
        vendor.set_restriction(enabled, reason, at=now)
        vendor.mark_modified(actor_id, reason, at=now)
        await self.store.claim_vendor(vendor)

        logger.info(
            "Customer addition %s for vendor %s by %s",
            "enabled" if enabled else "disabled",
            vendor.id,
            actor_id,
        )
        self._notify(
            sender.EVENT_ADDITION_TOGGLED,
            {"vendor_id": str(vendor.id), "enabled": enabled, "reason": reason},
        )
        return vendor
