"""Error kinds raised by the capacity ledger.

Every operation either completes or raises one of these before anything is
written. ``voltvend.main`` maps them onto HTTP responses.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from voltvend.ledger.quota import QuotaDecision


class LedgerError(Exception):
    """Base class for all capacity ledger errors."""

    code = "ledger_error"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "detail": str(self)}


class ValidationError(LedgerError, ValueError):
    """Malformed input. The caller must correct it; never retried."""

    code = "validation_error"


class NotFound(LedgerError, LookupError):
    """A vendor or upgrade entry id did not resolve."""

    code = "not_found"

    def __init__(self, resource: str, resource_id: uuid.UUID | str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource.capitalize()} {resource_id} not found.")


class InvalidStateTransition(LedgerError):
    """The entry is not in a state that permits the requested event."""

    code = "invalid_state_transition"

    def __init__(self, entry_id: uuid.UUID | None, status: str, event: str) -> None:
        self.entry_id = entry_id
        self.status = status
        self.event = event
        super().__init__(f"Cannot {event} upgrade entry {entry_id} in status {status!r}.")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "status": self.status, "event": self.event}


class CapacityBelowUsage(LedgerError):
    """A reduction would leave capacity under the vendor's current customer count."""

    code = "capacity_below_usage"

    def __init__(self, floor: int, effective: int) -> None:
        self.floor = floor
        self.effective = effective
        self.max_reducible = max(effective - floor, 0)
        super().__init__(
            f"Capacity cannot go below current usage of {floor} customers "
            f"(at most {self.max_reducible} can be removed)."
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "floor": self.floor,
            "effective": self.effective,
            "max_reducible": self.max_reducible,
        }


class ConcurrentModification(LedgerError):
    """An optimistic-concurrency check failed; retry from a fresh read."""

    code = "concurrent_modification"

    def __init__(self, resource: str, resource_id: uuid.UUID | str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource.capitalize()} {resource_id} was modified concurrently.")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "retryable": True}


class CustomerAdditionDenied(LedgerError):
    """The quota guard refused a new customer for the vendor."""

    code = "customer_addition_denied"

    def __init__(self, decision: QuotaDecision) -> None:
        self.decision = decision
        if decision.reason == "restricted":
            message = "Vendor is currently restricted from adding new customers."
        else:
            message = (
                f"Customer limit reached ({decision.current}/{decision.limit}). "
                "Upgrade to add more customers."
            )
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), **self.decision.model_dump(mode="json")}
