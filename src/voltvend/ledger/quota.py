"""Quota guard — decide whether a vendor may enroll one more customer."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from voltvend.ledger.capacity import effective_capacity
from voltvend.models.vendor import Vendor

logger = logging.getLogger(__name__)

DenialReason = Literal["restricted", "limit_reached"]


class QuotaDecision(BaseModel):
    """Outcome of a quota check, carrying enough to render "X/Y used"."""

    allowed: bool
    reason: DenialReason | None = None
    current: int
    limit: int
    remaining: int
    restricted_since: datetime | None = None
    restriction_reason: str | None = None


def can_add(vendor: Vendor, current_customer_count: int) -> QuotaDecision:
    """Check an "add customer" against the vendor's flag and capacity.

    Pure: nothing is written.  The caller performing the insert must do the
    check and the insert in one guarded unit of work.
    """
    limit = effective_capacity(vendor)
    left = max(limit - current_customer_count, 0)

    if not vendor.customers_add_enabled:
        logger.debug("Vendor %s is restricted from adding customers", vendor.id)
        return QuotaDecision(
            allowed=False,
            reason="restricted",
            current=current_customer_count,
            limit=limit,
            remaining=left,
            restricted_since=vendor.restricted_at,
            restriction_reason=vendor.restriction_reason or "Administrative restriction",
        )

    if current_customer_count >= limit:
        return QuotaDecision(
            allowed=False,
            reason="limit_reached",
            current=current_customer_count,
            limit=limit,
            remaining=0,
        )

    return QuotaDecision(
        allowed=True,
        current=current_customer_count,
        limit=limit,
        remaining=left,
    )
