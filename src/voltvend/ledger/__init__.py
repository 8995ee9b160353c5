"""Capacity ledger core: pure capacity math, quota guard, workflow and overrides."""

from voltvend.ledger.capacity import effective_capacity
from voltvend.ledger.quota import QuotaDecision, can_add
from voltvend.ledger.workflow import UpgradePolicy

__all__ = ["QuotaDecision", "UpgradePolicy", "can_add", "effective_capacity"]
