"""SQLAlchemy declarative base and shared column helpers."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all VoltVend ORM models."""

    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
