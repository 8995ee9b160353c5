"""Ledger store — persistence for vendors, upgrade entries and customer counts.

All writes that depend on something read earlier are conditional updates:

* ``claim_vendor`` bumps ``vendors.version`` only if it still matches the
  version that was read, serializing capacity changes per vendor.
* ``transition`` changes an entry's status only if it is still the expected
  status, so two admins deciding the same entry cannot both win.

A lost race raises :class:`~voltvend.errors.ConcurrentModification`; the
caller retries the whole operation from a fresh read.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from voltvend.errors import ConcurrentModification, NotFound, ValidationError
from voltvend.ledger.workflow import Transition
from voltvend.models.customer import Customer
from voltvend.models.upgrade_entry import AWAITING_DECISION, UpgradeEntry, normalize_status
from voltvend.models.vendor import Vendor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpgradeFilter:
    vendor_id: uuid.UUID | None = None
    statuses: frozenset[str] = AWAITING_DECISION
    limit: int = 50
    offset: int = 0

    @classmethod
    def build(
        cls,
        vendor_id: uuid.UUID | None = None,
        statuses: Iterable[str] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> UpgradeFilter:
        normalized = frozenset(normalize_status(s) for s in statuses) if statuses else AWAITING_DECISION
        return cls(vendor_id=vendor_id, statuses=normalized, limit=limit, offset=offset)


class LedgerStore:
    """Async SQLAlchemy access for one unit of work (one session)."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # -- reads ---------------------------------------------------------------

    async def get_vendor(self, vendor_id: uuid.UUID) -> Vendor:
        result = await self.db.execute(
            select(Vendor)
            .where(Vendor.id == vendor_id)
            .execution_options(populate_existing=True)
        )
        vendor = result.scalar_one_or_none()
        if vendor is None:
            raise NotFound("vendor", vendor_id)
        return vendor

    async def get_entry(self, entry_id: uuid.UUID) -> tuple[UpgradeEntry, Vendor]:
        """Return an entry together with its (freshly loaded) owning vendor."""
        result = await self.db.execute(
            select(UpgradeEntry.vendor_id).where(UpgradeEntry.id == entry_id)
        )
        vendor_id = result.scalar_one_or_none()
        if vendor_id is None:
            raise NotFound("upgrade entry", entry_id)

        vendor = await self.get_vendor(vendor_id)
        for entry in vendor.entries:
            if entry.id == entry_id:
                return entry, vendor
        raise NotFound("upgrade entry", entry_id)

    async def meter_enrolled(self, vendor_id: uuid.UUID, meter_number: str) -> bool:
        result = await self.db.execute(
            select(Customer.id).where(
                Customer.vendor_id == vendor_id,
                Customer.meter_number == meter_number,
            )
        )
        return result.first() is not None

    async def count_customers(self, vendor_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Customer).where(Customer.vendor_id == vendor_id)
        )
        return result.scalar() or 0

    async def list_entries(self, vendor_id: uuid.UUID) -> list[UpgradeEntry]:
        result = await self.db.execute(
            select(UpgradeEntry)
            .where(UpgradeEntry.vendor_id == vendor_id)
            .order_by(UpgradeEntry.requested_at.desc())
        )
        return list(result.scalars().all())

    async def list_upgrades(self, flt: UpgradeFilter) -> tuple[list[UpgradeEntry], int]:
        query = select(UpgradeEntry).where(UpgradeEntry.status.in_(sorted(flt.statuses)))
        if flt.vendor_id is not None:
            query = query.where(UpgradeEntry.vendor_id == flt.vendor_id)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(UpgradeEntry.requested_at).limit(flt.limit).offset(flt.offset)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    # -- conditional writes --------------------------------------------------

    async def claim_vendor(self, vendor: Vendor) -> None:
        """Bump the vendor's version if nobody else has since it was read."""
        result = await self.db.execute(
            update(Vendor)
            .where(Vendor.id == vendor.id, Vendor.version == vendor.version)
            .values(version=Vendor.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("Vendor %s changed since version %d was read", vendor.id, vendor.version)
            raise ConcurrentModification("vendor", vendor.id)
        set_committed_value(vendor, "version", vendor.version + 1)

    async def transition(self, entry: UpgradeEntry, change: Transition) -> UpgradeEntry:
        """Write ``change`` only if the entry still has the expected status."""
        result = await self.db.execute(
            update(UpgradeEntry)
            .where(
                UpgradeEntry.id == change.entry_id,
                UpgradeEntry.status == change.expected_status,
            )
            .values(**change.changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                "Upgrade entry %s left status %r before %s could be applied",
                change.entry_id,
                change.expected_status,
                change.event,
            )
            raise ConcurrentModification("upgrade entry", change.entry_id)

        for key, value in change.changes.items():
            set_committed_value(entry, key, value)
        return entry

    # -- appends -------------------------------------------------------------

    async def append_entry(self, vendor: Vendor, entry: UpgradeEntry) -> UpgradeEntry:
        vendor.entries.append(entry)
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def add_customer(self, customer: Customer) -> Customer:
        self.db.add(customer)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            # Lost a race with an enrollment of the same meter
            raise ValidationError(
                f"Meter {customer.meter_number} is already enrolled for vendor {customer.vendor_id}."
            ) from exc
        return customer
