"""Capacity calculator — effective customer capacity from the ledger.

Capacity is always a live fold over the vendor's entries: the base number
plus every approved or applied delta.  There is no running total to keep in
sync, so compaction never changes the result.
"""

from __future__ import annotations

from collections.abc import Iterable

from voltvend.models.upgrade_entry import AWAITING_DECISION, EFFECTIVE_STATUSES, UpgradeEntry
from voltvend.models.vendor import Vendor


def contributes(entry: UpgradeEntry) -> bool:
    """True if the entry's delta counts toward effective capacity."""
    return entry.status in EFFECTIVE_STATUSES


def fold(base_capacity: int, entries: Iterable[UpgradeEntry]) -> int:
    return base_capacity + sum(e.delta for e in entries if contributes(e))


def effective_capacity(vendor: Vendor) -> int:
    """Return ``base_capacity`` plus the deltas of all approved/applied entries."""
    return fold(vendor.base_capacity, vendor.entries)


def pending_units(vendor: Vendor) -> int:
    """Capacity requested by the vendor that is still awaiting an admin decision."""
    return sum(e.delta for e in vendor.entries if e.status in AWAITING_DECISION)


def remaining(vendor: Vendor, used: int) -> int:
    return max(effective_capacity(vendor) - used, 0)
