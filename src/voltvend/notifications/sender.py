"""Webhook delivery — fire-and-forget capacity ledger notifications.

Ledger operations never wait on, or fail because of, a notification.  Events
are handed to a :class:`NotificationSink` on a background task; failures are
logged and swallowed.  Supports generic JSON webhooks and Slack incoming
webhooks (Block Kit format).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from voltvend.config import Settings, settings
from voltvend.models.upgrade_entry import UpgradeEntry

logger = logging.getLogger(__name__)

EVENT_UPGRADE_REQUESTED = "upgrade.requested"
EVENT_PAYMENT_PROOF_SUBMITTED = "upgrade.payment_proof_submitted"
EVENT_UPGRADE_APPROVED = "upgrade.approved"
EVENT_UPGRADE_REJECTED = "upgrade.rejected"
EVENT_UPGRADE_CANCELLED = "upgrade.cancelled"
EVENT_CAPACITY_ADJUSTED = "capacity.adjusted"
EVENT_CAPACITY_COMPACTED = "capacity.compacted"
EVENT_ADDITION_TOGGLED = "customers.addition_toggled"


class NotificationSink(Protocol):
    async def notify(self, event: str, payload: dict[str, Any]) -> None: ...


def entry_payload(entry: UpgradeEntry) -> dict[str, Any]:
    """Format an upgrade entry as a plain JSON payload."""
    return {
        "entry_id": str(entry.id),
        "vendor_id": str(entry.vendor_id),
        "kind": entry.kind,
        "delta": entry.delta,
        "amount_due": entry.amount_due,
        "status": entry.status,
        "reason": entry.reason,
        "requested_by": entry.requested_by,
        "decided_by": entry.decided_by,
        "requested_at": entry.requested_at.isoformat() if entry.requested_at else None,
        "decided_at": entry.decided_at.isoformat() if entry.decided_at else None,
    }


def _format_slack_block_kit(event: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Format a ledger event as a Slack Block Kit message for incoming webhooks."""
    event_emoji = {
        EVENT_UPGRADE_REQUESTED: ":inbox_tray:",
        EVENT_PAYMENT_PROOF_SUBMITTED: ":receipt:",
        EVENT_UPGRADE_APPROVED: ":white_check_mark:",
        EVENT_UPGRADE_REJECTED: ":x:",
        EVENT_CAPACITY_ADJUSTED: ":wrench:",
        EVENT_ADDITION_TOGGLED: ":no_entry:",
    }
    emoji = event_emoji.get(event, ":bell:")

    fields = [
        {"type": "mrkdwn", "text": f"*{key.replace('_', ' ').capitalize()}:*\n{value}"}
        for key, value in payload.items()
        if key in ("vendor_id", "delta", "amount_due", "status", "reason") and value is not None
    ]
    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"{emoji} VoltVend - {event}"},
        },
    ]
    if fields:
        blocks.append({"type": "section", "fields": fields})

    return {"blocks": blocks}


async def send_webhook(
    url: str,
    payload: dict[str, Any],
    timeout: int | None = None,
) -> bool:
    """POST a JSON payload to a webhook URL.

    Returns True on success (2xx), False otherwise.  Never raises — failures
    are logged and swallowed because webhook delivery is fire-and-forget.
    """
    _timeout = timeout or settings.webhook_timeout_seconds
    try:
        async with httpx.AsyncClient(timeout=_timeout) as client:
            resp = await client.post(url, json=payload)
            if resp.is_success:
                logger.info("Webhook delivered to %s (status=%d)", url, resp.status_code)
                return True
            else:
                logger.warning(
                    "Webhook delivery failed to %s (status=%d body=%s)",
                    url,
                    resp.status_code,
                    resp.text[:200],
                )
                return False
    except Exception:
        logger.exception("Webhook delivery error for %s", url)
        return False


class WebhookNotifier:
    """Posts every ledger event to the configured webhooks."""

    def __init__(
        self,
        urls: list[str] | None = None,
        slack_url: str | None = None,
        timeout: int | None = None,
    ) -> None:
        self.urls = list(urls or [])
        self.slack_url = slack_url
        self.timeout = timeout

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> WebhookNotifier:
        cfg = cfg or settings
        return cls(
            urls=cfg.notification_webhook_urls,
            slack_url=cfg.slack_webhook_url,
            timeout=cfg.webhook_timeout_seconds,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.urls or self.slack_url)

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        for url in self.urls:
            await send_webhook(url, {"event": event, **payload}, timeout=self.timeout)
        if self.slack_url:
            await send_webhook(
                self.slack_url, _format_slack_block_kit(event, payload), timeout=self.timeout
            )


_in_flight: set[asyncio.Task[None]] = set()


async def _deliver(sink: NotificationSink, event: str, payload: dict[str, Any]) -> None:
    try:
        await sink.notify(event, payload)
    except Exception:
        logger.exception("Notification %s could not be delivered", event)


def dispatch(
    sink: NotificationSink | None,
    event: str,
    payload: dict[str, Any],
) -> asyncio.Task[None] | None:
    """Schedule ``sink.notify`` in the background and return the task.

    Call it once the ledger write has committed.  The task is referenced
    until it finishes so it cannot be garbage-collected mid-delivery.
    """
    if sink is None:
        return None
    task = asyncio.create_task(_deliver(sink, event, payload))
    _in_flight.add(task)
    task.add_done_callback(_in_flight.discard)
    return task
