"""Seed development database with vendors and sample upgrade entries.

Usage:
    python -m voltvend.scripts.seed_dev [path/to/vendors.yaml]
"""

from __future__ import annotations

import asyncio
import sys
import uuid
from pathlib import Path
from typing import Any

import yaml
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from voltvend.config import settings
from voltvend.database import async_session_factory, init_db
from voltvend.ledger import workflow
from voltvend.ledger.workflow import UpgradePolicy, new_request
from voltvend.models.upgrade_entry import (
    STATUS_APPLIED,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_PENDING_VERIFICATION,
    STATUS_REJECTED,
    UpgradeEntry,
    normalize_status,
)
from voltvend.models.vendor import Vendor

DEFAULT_SEED_FILE = Path(__file__).with_name("dev_vendors.yaml")
SEED_ACTOR = "seed_dev"


async def seed(path: Path = DEFAULT_SEED_FILE) -> None:
    with open(path) as f:
        doc = yaml.safe_load(f) or {}

    await init_db()
    async with async_session_factory() as db:
        for item in doc.get("vendors", []):
            await _seed_vendor(db, item)
        await db.commit()
    print("\nSeed complete.")


async def _seed_vendor(db: AsyncSession, item: dict[str, Any]) -> None:
    vendor_id = uuid.UUID(str(item["id"]))
    result = await db.execute(select(Vendor).where(Vendor.id == vendor_id))
    if result.scalar_one_or_none():
        print(f"  vendor {vendor_id} already exists, skipping")
        return

    vendor = Vendor(
        id=vendor_id,
        business_name=item.get("business_name"),
        base_capacity=item.get("base_capacity", settings.default_base_capacity),
        customers_add_enabled=True,
        entries=[],
    )
    if not item.get("customers_add_enabled", True):
        reason = item.get("restriction_reason")
        vendor.set_restriction(False, reason)
        vendor.mark_modified(SEED_ACTOR, reason, at=vendor.restricted_at)
    db.add(vendor)

    policy = UpgradePolicy.from_settings()
    for upgrade in item.get("upgrades", []):
        entry = new_request(vendor, upgrade["units"], SEED_ACTOR, policy, reason="seeded")
        _advance(entry, normalize_status(upgrade.get("status", STATUS_PENDING)))
        vendor.entries.append(entry)

    await db.flush()
    print(f"  vendor {vendor_id} created ({vendor.business_name}, {len(vendor.entries)} upgrades)")


def _advance(entry: UpgradeEntry, status: str) -> None:
    """Walk a fresh request through the workflow until it reaches ``status``."""
    if status == STATUS_PENDING_VERIFICATION:
        workflow.apply(entry, workflow.plan_payment_proof(entry, "seeded"))
    elif status == STATUS_REJECTED:
        workflow.apply(
            entry, workflow.plan_rejection(entry, SEED_ACTOR, "seeded", effective=0, used=0)
        )
    elif status in (STATUS_APPROVED, STATUS_APPLIED):
        workflow.apply(entry, workflow.plan_approval(entry, SEED_ACTOR))
        if status == STATUS_APPLIED:
            workflow.apply(entry, workflow.plan_application(entry))


if __name__ == "__main__":
    print("Seeding VoltVend dev database...")
    print(f"  DB: {settings.database_url.split('@')[-1] if '@' in settings.database_url else 'configured'}")
    asyncio.run(seed(Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_SEED_FILE))
