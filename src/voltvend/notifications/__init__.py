"""Outbound notifications for capacity ledger events."""

from voltvend.notifications.sender import NotificationSink, WebhookNotifier, dispatch

__all__ = ["NotificationSink", "WebhookNotifier", "dispatch"]
