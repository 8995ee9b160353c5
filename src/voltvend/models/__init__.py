"""SQLAlchemy ORM models for VoltVend."""

from voltvend.models.base import Base
from voltvend.models.customer import Customer
from voltvend.models.upgrade_entry import UpgradeEntry
from voltvend.models.vendor import Vendor

__all__ = [
    "Base",
    "Customer",
    "UpgradeEntry",
    "Vendor",
]
