"""Upgrade workflow — state machine for vendor capacity purchases.

::

    pending ──proof──▶ pending_verification ──approve──▶ approved ──apply──▶ applied
       │                        │                           │
       └──────reject/cancel─────┴──────────reject───────────┘──▶ rejected

Every function here is pure: it validates an event against the entry's
current status and returns a :class:`Transition` describing the write.  The
store performs that write as a compare-and-swap on ``(entry_id,
expected_status)``, so an illegal event never touches the entry.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from voltvend.config import Settings, settings
from voltvend.errors import CapacityBelowUsage, InvalidStateTransition, ValidationError
from voltvend.models.base import utcnow
from voltvend.models.upgrade_entry import (
    KIND_REQUESTED,
    STATUS_APPLIED,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_PENDING_VERIFICATION,
    STATUS_REJECTED,
    UpgradeEntry,
)
from voltvend.models.vendor import Vendor

EVENT_SUBMIT_PROOF = "submit_proof"
EVENT_APPROVE = "approve"
EVENT_REJECT = "reject"
EVENT_CANCEL = "cancel"
EVENT_APPLY = "apply"

VENDOR_CANCELLED = "vendor_cancelled"

# event -> {from_status: to_status}
TRANSITIONS: dict[str, dict[str, str]] = {
    EVENT_SUBMIT_PROOF: {
        STATUS_PENDING: STATUS_PENDING_VERIFICATION,
    },
    EVENT_APPROVE: {
        STATUS_PENDING: STATUS_APPROVED,
        STATUS_PENDING_VERIFICATION: STATUS_APPROVED,
    },
    EVENT_REJECT: {
        STATUS_PENDING: STATUS_REJECTED,
        STATUS_PENDING_VERIFICATION: STATUS_REJECTED,
        STATUS_APPROVED: STATUS_REJECTED,
    },
    EVENT_CANCEL: {
        STATUS_PENDING: STATUS_REJECTED,
        STATUS_PENDING_VERIFICATION: STATUS_REJECTED,
    },
    EVENT_APPLY: {
        STATUS_APPROVED: STATUS_APPLIED,
    },
}

# Events that only make sense for vendor-requested entries; admin entries
# are born approved and can only be compacted.
_REQUEST_ONLY_EVENTS = frozenset({EVENT_SUBMIT_PROOF, EVENT_APPROVE, EVENT_REJECT, EVENT_CANCEL})


@dataclass(frozen=True)
class UpgradePolicy:
    """Unit size, bounds and price for vendor upgrade requests."""

    unit_size: int = 500
    min_units: int = 500
    max_units: int = 5000
    unit_price: int = 50_000

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> UpgradePolicy:
        cfg = cfg or settings
        return cls(
            unit_size=cfg.upgrade_unit_size,
            min_units=cfg.upgrade_min_units,
            max_units=cfg.upgrade_max_units,
            unit_price=cfg.upgrade_unit_price,
        )

    def validate_units(self, units: int) -> None:
        if isinstance(units, bool) or not isinstance(units, int):
            raise ValidationError("Upgrade size must be a whole number of customers.")
        if units <= 0 or units % self.unit_size != 0:
            raise ValidationError(
                f"Upgrade size must be a positive multiple of {self.unit_size} customers."
            )
        if not self.min_units <= units <= self.max_units:
            raise ValidationError(
                f"Upgrade size must be between {self.min_units} and {self.max_units} customers."
            )

    def price(self, units: int) -> int:
        self.validate_units(units)
        return (units // self.unit_size) * self.unit_price


@dataclass(frozen=True)
class Transition:
    """A validated status change, ready to be written with compare-and-swap."""

    entry_id: uuid.UUID
    event: str
    expected_status: str
    changes: dict[str, Any] = field(default_factory=dict)

    @property
    def new_status(self) -> str:
        return self.changes["status"]


def next_status(entry: UpgradeEntry, event: str) -> str:
    """Return the status ``event`` moves ``entry`` to, or raise."""
    if event in _REQUEST_ONLY_EVENTS and entry.kind != KIND_REQUESTED:
        raise InvalidStateTransition(entry.id, entry.status, event)
    target = TRANSITIONS.get(event, {}).get(entry.status)
    if target is None:
        raise InvalidStateTransition(entry.id, entry.status, event)
    return target


def _require_text(value: str | None, what: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{what} is required.")
    return value.strip()


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def new_request(
    vendor: Vendor,
    units: int,
    actor_id: str,
    policy: UpgradePolicy,
    reason: str | None = None,
    now: datetime | None = None,
) -> UpgradeEntry:
    """Build a ``pending`` entry for a vendor buying ``units`` more customers."""
    amount_due = policy.price(units)
    return UpgradeEntry(
        id=uuid.uuid4(),
        vendor_id=vendor.id,
        kind=KIND_REQUESTED,
        delta=units,
        amount_due=amount_due,
        status=STATUS_PENDING,
        reason=reason,
        requested_by=actor_id,
        requested_at=now or utcnow(),
    )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def plan_payment_proof(
    entry: UpgradeEntry,
    proof_ref: str,
    reference: str | None = None,
) -> Transition:
    proof_ref = _require_text(proof_ref, "Proof of payment")
    target = next_status(entry, EVENT_SUBMIT_PROOF)
    changes: dict[str, Any] = {"status": target, "proof_of_payment": proof_ref}
    if reference:
        changes["payment_reference"] = reference
    return Transition(entry.id, EVENT_SUBMIT_PROOF, entry.status, changes)


def plan_approval(
    entry: UpgradeEntry,
    actor_id: str,
    notes: str | None = None,
    now: datetime | None = None,
) -> Transition:
    target = next_status(entry, EVENT_APPROVE)
    return Transition(
        entry.id,
        EVENT_APPROVE,
        entry.status,
        {
            "status": target,
            "decided_by": actor_id,
            "decided_at": now or utcnow(),
            "admin_notes": notes,
        },
    )


def plan_rejection(
    entry: UpgradeEntry,
    actor_id: str,
    reason: str | None,
    *,
    effective: int,
    used: int,
    now: datetime | None = None,
) -> Transition:
    """Reject an entry; reversing an approval must leave room for current usage."""
    reason = _require_text(reason, "A rejection reason")
    target = next_status(entry, EVENT_REJECT)
    if entry.status == STATUS_APPROVED and effective - entry.delta < used:
        raise CapacityBelowUsage(floor=used, effective=effective)
    return Transition(
        entry.id,
        EVENT_REJECT,
        entry.status,
        {
            "status": target,
            "decided_by": actor_id,
            "decided_at": now or utcnow(),
            "reason": reason,
        },
    )


def plan_cancellation(
    entry: UpgradeEntry,
    actor_id: str,
    now: datetime | None = None,
) -> Transition:
    target = next_status(entry, EVENT_CANCEL)
    return Transition(
        entry.id,
        EVENT_CANCEL,
        entry.status,
        {
            "status": target,
            "decided_by": actor_id,
            "decided_at": now or utcnow(),
            "reason": VENDOR_CANCELLED,
        },
    )


def plan_application(entry: UpgradeEntry, now: datetime | None = None) -> Transition:
    target = next_status(entry, EVENT_APPLY)
    return Transition(
        entry.id,
        EVENT_APPLY,
        entry.status,
        {"status": target, "applied_at": now or utcnow()},
    )


def apply(entry: UpgradeEntry, transition: Transition) -> UpgradeEntry:
    """Copy a transition's changes onto an in-memory entry."""
    if entry.id != transition.entry_id or entry.status != transition.expected_status:
        raise InvalidStateTransition(entry.id, entry.status, transition.event)
    for key, value in transition.changes.items():
        setattr(entry, key, value)
    return entry
