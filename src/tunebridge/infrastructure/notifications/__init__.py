"""Event notifier adapters."""

from tunebridge.infrastructure.notifications.logging_notifier import LoggingEventNotifier
from tunebridge.infrastructure.notifications.webhook_notifier import WebhookEventNotifier

__all__ = ["LoggingEventNotifier", "WebhookEventNotifier"]
