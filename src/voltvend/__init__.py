"""VoltVend capacity ledger — vendor customer quotas and paid upgrades.

Tracks how many customer meters each vendor may onboard, how that capacity
grows through paid upgrades, and how admins adjust it directly.

Quick start::

    from voltvend.service import CapacityService

    service = CapacityService(db)
    decision = await service.can_add_customer(vendor_id)
    print(decision.allowed, decision.current, decision.limit)
"""

__version__ = "0.1.0"
