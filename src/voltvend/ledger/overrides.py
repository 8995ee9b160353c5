"""Admin overrides — direct capacity changes that bypass the payment workflow.

Each override is recorded as an already-approved ledger entry with no amount
due, so it takes effect immediately and stays in the vendor's history.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from voltvend.errors import CapacityBelowUsage, ValidationError
from voltvend.ledger.capacity import effective_capacity
from voltvend.models.base import utcnow
from voltvend.models.upgrade_entry import (
    KIND_ADMIN_GRANT,
    KIND_ADMIN_REDUCE,
    KIND_ADMIN_SET,
    STATUS_APPROVED,
    UpgradeEntry,
)
from voltvend.models.vendor import Vendor

OP_GRANT = "grant"
OP_REDUCE = "reduce"
OP_SET = "set"

OPERATIONS = (OP_GRANT, OP_REDUCE, OP_SET)


def _check_amount(amount: int, *, allow_zero: bool = False) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Capacity amount must be a whole number.")
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError("Capacity amount must be greater than zero.")


def _check_floor(vendor: Vendor, delta: int, used: int) -> None:
    effective = effective_capacity(vendor)
    if delta < 0 and effective + delta < used:
        raise CapacityBelowUsage(floor=used, effective=effective)


def _entry(
    vendor: Vendor,
    kind: str,
    delta: int,
    actor_id: str,
    reason: str | None,
    now: datetime | None,
) -> UpgradeEntry:
    if reason is None or not reason.strip():
        raise ValidationError("A reason is required for capacity adjustments.")
    at = now or utcnow()
    return UpgradeEntry(
        id=uuid.uuid4(),
        vendor_id=vendor.id,
        kind=kind,
        delta=delta,
        amount_due=0,
        status=STATUS_APPROVED,
        reason=reason.strip(),
        requested_by=actor_id,
        requested_at=at,
        decided_by=actor_id,
        decided_at=at,
    )


def grant(
    vendor: Vendor,
    amount: int,
    actor_id: str,
    reason: str | None,
    now: datetime | None = None,
) -> UpgradeEntry:
    _check_amount(amount)
    return _entry(vendor, KIND_ADMIN_GRANT, amount, actor_id, reason, now)


def reduce(
    vendor: Vendor,
    amount: int,
    actor_id: str,
    reason: str | None,
    *,
    used: int,
    now: datetime | None = None,
) -> UpgradeEntry:
    _check_amount(amount)
    _check_floor(vendor, -amount, used)
    return _entry(vendor, KIND_ADMIN_REDUCE, -amount, actor_id, reason, now)


def set_absolute(
    vendor: Vendor,
    new_limit: int,
    actor_id: str,
    reason: str | None,
    *,
    used: int,
    now: datetime | None = None,
) -> UpgradeEntry:
    _check_amount(new_limit, allow_zero=True)
    delta = new_limit - effective_capacity(vendor)
    _check_floor(vendor, delta, used)
    return _entry(vendor, KIND_ADMIN_SET, delta, actor_id, reason, now)


def plan(
    vendor: Vendor,
    op: str,
    amount: int,
    actor_id: str,
    reason: str | None,
    *,
    used: int,
    now: datetime | None = None,
) -> UpgradeEntry:
    """Dispatch an override by operation name (``grant``, ``reduce`` or ``set``)."""
    if op == OP_GRANT:
        return grant(vendor, amount, actor_id, reason, now=now)
    if op == OP_REDUCE:
        return reduce(vendor, amount, actor_id, reason, used=used, now=now)
    if op == OP_SET:
        return set_absolute(vendor, amount, actor_id, reason, used=used, now=now)
    raise ValidationError(f"Unknown capacity operation {op!r}. Must be one of: {', '.join(OPERATIONS)}")
