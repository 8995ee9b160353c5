"""Vendor model — multi-tenant root entity and owner of the capacity ledger."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from voltvend.config import settings
from voltvend.models.base import Base, utcnow

if TYPE_CHECKING:
    from voltvend.models.upgrade_entry import UpgradeEntry


class Vendor(Base):
    __tablename__ = "vendors"
    __table_args__ = (
        CheckConstraint("base_capacity >= 0", name="ck_vendors_base_capacity_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    business_name: Mapped[str | None] = mapped_column(String, nullable=True)
    base_capacity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=lambda: settings.default_base_capacity
    )
    customers_add_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Written only by the enrollment toggle; cleared when enrollment is re-enabled
    restricted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    restriction_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Last capacity-affecting change (who, when, why)
    last_modified_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_modified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    last_modification_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Bumped by every read-then-write operation on the vendor's capacity
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    # Relationships
    entries: Mapped[list[UpgradeEntry]] = relationship(
        "UpgradeEntry",
        back_populates="vendor",
        lazy="selectin",
        order_by="UpgradeEntry.requested_at",
    )

    def mark_modified(self, actor_id: str, reason: str | None, at: datetime | None = None) -> None:
        """Record who last changed this vendor's capacity state, and why."""
        self.last_modified_by = actor_id
        self.last_modified_at = at or utcnow()
        self.last_modification_reason = reason

    def set_restriction(self, enabled: bool, reason: str | None, at: datetime | None = None) -> None:
        """Freeze (``enabled=False``) or unfreeze customer enrollment."""
        self.customers_add_enabled = enabled
        if enabled:
            self.restricted_at = None
            self.restriction_reason = None
        else:
            self.restricted_at = at or utcnow()
            self.restriction_reason = reason
