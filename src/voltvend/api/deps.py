"""Shared FastAPI dependencies — actor identity, capabilities, ledger service.

Authentication happens upstream: the gateway verifies the caller and forwards
``X-Actor-Id``, ``X-Actor-Role`` and, for admins, ``X-Actor-Capabilities``
(comma separated).  These dependencies only read and enforce them.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any, Literal

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from voltvend.database import get_db
from voltvend.notifications.sender import WebhookNotifier
from voltvend.service import CapacityService

Role = Literal["vendor", "admin"]

CAP_GRANT_CAPACITY = "grantCapacity"
CAP_REDUCE_CAPACITY = "reduceCapacity"
CAP_APPROVE_UPGRADE = "approveUpgrade"
CAP_REJECT_UPGRADE = "rejectUpgrade"
CAP_RESTRICT_VENDOR = "restrictVendor"

ADMIN_CAPABILITIES = frozenset({
    CAP_GRANT_CAPACITY,
    CAP_REDUCE_CAPACITY,
    CAP_APPROVE_UPGRADE,
    CAP_REJECT_UPGRADE,
    CAP_RESTRICT_VENDOR,
})


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role
    capabilities: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def can(self, capability: str) -> bool:
        return self.is_admin and capability in self.capabilities


async def get_actor(
    actor_id: str = Header(..., alias="X-Actor-Id"),
    actor_role: str = Header(..., alias="X-Actor-Role"),
    actor_capabilities: str | None = Header(None, alias="X-Actor-Capabilities"),
) -> Actor:
    """Build the calling actor from the gateway headers.

    Raises 401 if the identity headers are blank or the role is unknown.
    """
    actor_id = actor_id.strip()
    role = actor_role.strip().lower()
    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header must not be empty.",
        )
    if role not in ("vendor", "admin"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Role must be 'vendor' or 'admin'.",
        )

    capabilities: frozenset[str] = frozenset()
    if role == "admin" and actor_capabilities:
        capabilities = frozenset(
            c.strip() for c in actor_capabilities.split(",") if c.strip()
        ) & ADMIN_CAPABILITIES

    return Actor(id=actor_id, role=role, capabilities=capabilities)


async def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise PermissionError("Admin role required.")
    return actor


def require_capability(capability: str) -> Callable[..., Coroutine[Any, Any, Actor]]:
    """Dependency factory: the actor must be an admin holding ``capability``."""

    async def _check(actor: Actor = Depends(require_admin)) -> Actor:
        if not actor.can(capability):
            raise PermissionError(f"Missing admin capability {capability!r}.")
        return actor

    return _check


def ensure_vendor_access(actor: Actor, vendor_id: uuid.UUID) -> None:
    """Vendors may only touch their own account; admins may touch any."""
    if actor.is_admin:
        return
    if actor.id != str(vendor_id):
        raise PermissionError("Vendors may only access their own account.")


_notifier = WebhookNotifier.from_settings()


def get_notifier() -> WebhookNotifier | None:
    return _notifier if _notifier.enabled else None


async def get_service(
    db: AsyncSession = Depends(get_db),
    notifier: WebhookNotifier | None = Depends(get_notifier),
) -> CapacityService:
    return CapacityService(db, notifier=notifier)
