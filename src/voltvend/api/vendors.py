"""Vendor capacity endpoints — summary, quota check, enrollment, admin overrides."""

from __future__ import annotations

import uuid
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from voltvend.api.deps import (
    CAP_GRANT_CAPACITY,
    CAP_REDUCE_CAPACITY,
    CAP_RESTRICT_VENDOR,
    Actor,
    ensure_vendor_access,
    get_actor,
    get_service,
    require_admin,
    require_capability,
)
from voltvend.api.upgrades import UpgradeEntryDetail
from voltvend.ledger.overrides import OP_GRANT, OP_REDUCE, OP_SET
from voltvend.ledger.quota import QuotaDecision
from voltvend.service import CapacityService, CapacitySummary

router = APIRouter(prefix="/v1/vendors", tags=["vendors"])

# Capabilities an admin needs for each override operation
_OP_CAPABILITIES: dict[str, tuple[str, ...]] = {
    OP_GRANT: (CAP_GRANT_CAPACITY,),
    OP_REDUCE: (CAP_REDUCE_CAPACITY,),
    OP_SET: (CAP_GRANT_CAPACITY, CAP_REDUCE_CAPACITY),
}


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class CustomerIn(BaseModel):
    meter_number: str = Field(min_length=1, max_length=64)
    disco: str | None = Field(default=None, max_length=64)


class CustomerOut(BaseModel):
    id: str
    vendor_id: str
    meter_number: str
    disco: str | None = None


class CapacityAdjustmentIn(BaseModel):
    op: Literal["grant", "reduce", "set"]
    amount: int
    reason: str = Field(max_length=1024)


class CapacityAdjustmentOut(BaseModel):
    entry: UpgradeEntryDetail
    capacity: CapacitySummary


class CustomerAdditionIn(BaseModel):
    enabled: bool
    reason: str | None = Field(default=None, max_length=1024)


class CompactionOut(BaseModel):
    applied: int
    capacity: CapacitySummary


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/{vendor_id}/capacity", response_model=CapacitySummary)
async def get_capacity(
    vendor_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    service: CapacityService = Depends(get_service),
) -> CapacitySummary:
    ensure_vendor_access(actor, vendor_id)
    return await service.get_capacity_summary(vendor_id)


@router.get("/{vendor_id}/can-add", response_model=QuotaDecision)
async def can_add_customer(
    vendor_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    service: CapacityService = Depends(get_service),
) -> QuotaDecision:
    ensure_vendor_access(actor, vendor_id)
    return await service.can_add_customer(vendor_id)


@router.post(
    "/{vendor_id}/customers",
    response_model=CustomerOut,
    status_code=status.HTTP_201_CREATED,
)
async def add_customer(
    vendor_id: uuid.UUID,
    body: CustomerIn,
    actor: Actor = Depends(get_actor),
    service: CapacityService = Depends(get_service),
) -> CustomerOut:
    ensure_vendor_access(actor, vendor_id)
    customer = await service.add_customer(vendor_id, body.meter_number, actor.id, disco=body.disco)
    return CustomerOut(
        id=str(customer.id),
        vendor_id=str(customer.vendor_id),
        meter_number=customer.meter_number,
        disco=customer.disco,
    )


@router.post(
    "/{vendor_id}/capacity-adjustments",
    response_model=CapacityAdjustmentOut,
    status_code=status.HTTP_201_CREATED,
)
async def adjust_capacity(
    vendor_id: uuid.UUID,
    body: CapacityAdjustmentIn,
    actor: Actor = Depends(require_admin),
    service: CapacityService = Depends(get_service),
) -> CapacityAdjustmentOut:
    missing = [c for c in _OP_CAPABILITIES[body.op] if not actor.can(c)]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing admin capability {missing[0]!r}.",
        )

    entry = await service.admin_adjust_capacity(vendor_id, body.op, body.amount, actor.id, body.reason)
    summary = await service.get_capacity_summary(vendor_id)
    return CapacityAdjustmentOut(entry=UpgradeEntryDetail.from_model(entry), capacity=summary)


@router.patch("/{vendor_id}/customer-addition", response_model=CapacitySummary)
async def set_customer_addition(
    vendor_id: uuid.UUID,
    body: CustomerAdditionIn,
    actor: Actor = Depends(require_capability(CAP_RESTRICT_VENDOR)),
    service: CapacityService = Depends(get_service),
) -> CapacitySummary:
    await service.set_customer_addition(vendor_id, body.enabled, actor.id, reason=body.reason)
    return await service.get_capacity_summary(vendor_id)


@router.post("/{vendor_id}/compact", response_model=CompactionOut)
async def compact_vendor(
    vendor_id: uuid.UUID,
    actor: Actor = Depends(require_admin),
    service: CapacityService = Depends(get_service),
) -> CompactionOut:
    applied = await service.compact_vendor(vendor_id, actor.id)
    summary = await service.get_capacity_summary(vendor_id)
    return CompactionOut(applied=len(applied), capacity=summary)
