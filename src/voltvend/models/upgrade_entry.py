"""Upgrade entry model — append-only ledger of capacity-affecting events."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from voltvend.models.base import Base, utcnow

if TYPE_CHECKING:
    from voltvend.models.vendor import Vendor

# Kinds
KIND_REQUESTED = "requested"
KIND_ADMIN_GRANT = "admin_grant"
KIND_ADMIN_REDUCE = "admin_reduce"
KIND_ADMIN_SET = "admin_set"

# Statuses
STATUS_PENDING = "pending"
STATUS_PENDING_VERIFICATION = "pending_verification"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUS_APPLIED = "applied"

# "completed" is the older label for the approved state
STATUS_ALIASES = {"completed": STATUS_APPROVED}

ENTRY_STATUSES = frozenset({
    STATUS_PENDING,
    STATUS_PENDING_VERIFICATION,
    STATUS_APPROVED,
    STATUS_REJECTED,
    STATUS_APPLIED,
})
AWAITING_DECISION = frozenset({STATUS_PENDING, STATUS_PENDING_VERIFICATION})
EFFECTIVE_STATUSES = frozenset({STATUS_APPROVED, STATUS_APPLIED})


def normalize_status(status: str) -> str:
    """Map legacy labels onto stored ones; unknown labels raise ``ValueError``."""
    status = (status or "").strip().lower()
    status = STATUS_ALIASES.get(status, status)
    if status not in ENTRY_STATUSES:
        raise ValueError(f"Unknown upgrade status {status!r}.")
    return status


class UpgradeEntry(Base):
    __tablename__ = "upgrade_entries"
    __table_args__ = (
        Index("ix_upgrade_entries_vendor_status", "vendor_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    vendor_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("vendors.id"), nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_due: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    proof_of_payment: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default=STATUS_PENDING)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    decided_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    applied_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    # Relationships
    vendor: Mapped[Vendor] = relationship("Vendor", back_populates="entries")
