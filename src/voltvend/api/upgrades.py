"""Upgrade endpoints — request, payment proof, cancel, admin decision, queue."""

from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from voltvend.api.deps import (
    CAP_APPROVE_UPGRADE,
    CAP_REJECT_UPGRADE,
    Actor,
    ensure_vendor_access,
    get_actor,
    get_service,
    require_admin,
)
from voltvend.models.upgrade_entry import UpgradeEntry
from voltvend.service import DECISION_APPROVE, CapacityService, normalize_decision

router = APIRouter(prefix="/v1", tags=["upgrades"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class UpgradeEntryDetail(BaseModel):
    id: str
    vendor_id: str
    kind: str
    delta: int
    amount_due: int
    status: str
    proof_of_payment: str | None = None
    payment_reference: str | None = None
    reason: str | None = None
    admin_notes: str | None = None
    requested_by: str | None = None
    requested_at: datetime
    decided_by: str | None = None
    decided_at: datetime | None = None
    applied_at: datetime | None = None

    @classmethod
    def from_model(cls, entry: UpgradeEntry) -> UpgradeEntryDetail:
        return cls(
            id=str(entry.id),
            vendor_id=str(entry.vendor_id),
            kind=entry.kind,
            delta=entry.delta,
            amount_due=entry.amount_due,
            status=entry.status,
            proof_of_payment=entry.proof_of_payment,
            payment_reference=entry.payment_reference,
            reason=entry.reason,
            admin_notes=entry.admin_notes,
            requested_by=entry.requested_by,
            requested_at=entry.requested_at,
            decided_by=entry.decided_by,
            decided_at=entry.decided_at,
            applied_at=entry.applied_at,
        )


class UpgradeRequestIn(BaseModel):
    units: int = Field(gt=0)
    reason: str | None = Field(default=None, max_length=1024)


class PaymentProofIn(BaseModel):
    proof_ref: str = Field(min_length=1, max_length=2048)
    reference: str | None = Field(default=None, max_length=256)


class DecisionIn(BaseModel):
    decision: str  # "approve" or "reject"
    reason: str | None = Field(default=None, max_length=1024)
    notes: str | None = Field(default=None, max_length=2048)


class UpgradeListResponse(BaseModel):
    upgrades: list[UpgradeEntryDetail]
    total: int


# ---------------------------------------------------------------------------
# Vendor endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/vendors/{vendor_id}/upgrades",
    response_model=UpgradeEntryDetail,
    status_code=status.HTTP_201_CREATED,
)
async def submit_upgrade_request(
    vendor_id: uuid.UUID,
    body: UpgradeRequestIn,
    actor: Actor = Depends(get_actor),
    service: CapacityService = Depends(get_service),
) -> UpgradeEntryDetail:
    ensure_vendor_access(actor, vendor_id)
    entry = await service.submit_upgrade_request(vendor_id, body.units, actor.id, reason=body.reason)
    return UpgradeEntryDetail.from_model(entry)


@router.get("/vendors/{vendor_id}/upgrades", response_model=UpgradeListResponse)
async def list_vendor_upgrades(
    vendor_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    service: CapacityService = Depends(get_service),
) -> UpgradeListResponse:
    ensure_vendor_access(actor, vendor_id)
    entries = await service.list_vendor_entries(vendor_id)
    return UpgradeListResponse(
        upgrades=[UpgradeEntryDetail.from_model(e) for e in entries],
        total=len(entries),
    )


@router.post("/upgrades/{entry_id}/payment-proof", response_model=UpgradeEntryDetail)
async def attach_payment_proof(
    entry_id: uuid.UUID,
    body: PaymentProofIn,
    actor: Actor = Depends(get_actor),
    service: CapacityService = Depends(get_service),
) -> UpgradeEntryDetail:
    entry = await service.get_upgrade(entry_id)
    ensure_vendor_access(actor, entry.vendor_id)
    entry = await service.attach_payment_proof(entry_id, body.proof_ref, actor.id, reference=body.reference)
    return UpgradeEntryDetail.from_model(entry)


@router.post("/upgrades/{entry_id}/cancel", response_model=UpgradeEntryDetail)
async def cancel_upgrade(
    entry_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    service: CapacityService = Depends(get_service),
) -> UpgradeEntryDetail:
    entry = await service.get_upgrade(entry_id)
    ensure_vendor_access(actor, entry.vendor_id)
    entry = await service.cancel_upgrade(entry_id, actor.id)
    return UpgradeEntryDetail.from_model(entry)


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------

@router.get("/upgrades", response_model=UpgradeListResponse)
async def list_pending_upgrades(
    actor: Actor = Depends(require_admin),
    service: CapacityService = Depends(get_service),
    upgrade_status: str | None = Query(None, alias="status"),
    vendor_id: uuid.UUID | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> UpgradeListResponse:
    """Upgrade queue; defaults to entries awaiting a decision."""
    statuses = [s.strip() for s in upgrade_status.split(",")] if upgrade_status else None
    page = await service.list_pending_upgrades(
        vendor_id=vendor_id, statuses=statuses, limit=limit, offset=offset
    )
    return UpgradeListResponse(
        upgrades=[UpgradeEntryDetail.from_model(e) for e in page.entries],
        total=page.total,
    )


@router.post("/upgrades/{entry_id}/decision", response_model=UpgradeEntryDetail)
async def decide_upgrade(
    entry_id: uuid.UUID,
    body: DecisionIn,
    actor: Actor = Depends(require_admin),
    service: CapacityService = Depends(get_service),
) -> UpgradeEntryDetail:
    decision = normalize_decision(body.decision)
    needed = CAP_APPROVE_UPGRADE if decision == DECISION_APPROVE else CAP_REJECT_UPGRADE
    if not actor.can(needed):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Missing admin capability {needed!r}.",
        )

    entry = await service.decide_upgrade(
        entry_id, decision, actor.id, reason=body.reason, notes=body.notes
    )
    return UpgradeEntryDetail.from_model(entry)
