"""Webhook event notifier.

Hey future me - this POSTs conversion events to one configured endpoint as
generic JSON:

    {"app_id": "...", "event_type": "playlist_conversion_track", "payload": {...}}

The receiving side fans them out to the app. Errors are logged AND re-raised
here; ConversionService wraps every call and swallows, so the notifier
stays honest and the engine stays fire-and-forget.

Configure via NOTIFIER_WEBHOOK_URL / NOTIFIER_AUTH_HEADER / NOTIFIER_TIMEOUT.
"""

import logging
from typing import Any

import httpx

from tunebridge.config import NotifierSettings
from tunebridge.domain.dtos import LinkInfo, PlaylistMetadata
from tunebridge.domain.ports.notification import IEventNotifier, MetadataEvent, TrackEvent

logger = logging.getLogger(__name__)


class WebhookEventNotifier(IEventNotifier):
    """Delivers events via HTTP POST."""

    def __init__(
        self,
        settings: NotifierSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self._settings.auth_header:
                headers["Authorization"] = self._settings.auth_header
            self._client = httpx.AsyncClient(timeout=self._settings.timeout, headers=headers)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def send_playlist_metadata_event(
        self, info: LinkInfo, meta: PlaylistMetadata
    ) -> None:
        event = MetadataEvent(platform=info.platform, meta=meta)
        await self.send_event(info.app, event.event_type, event.to_dict())

    async def send_track_event(self, app_id: str, event: TrackEvent) -> None:
        await self.send_event(app_id, event.event_type, event.to_dict())

    async def send_event(
        self, app_id: str, event_type: str, payload: dict[str, Any]
    ) -> None:
        if not self._settings.webhook_enabled:
            logger.debug(f"[EVENT] Webhook not configured, dropping {event_type}")
            return

        body = {"app_id": app_id, "event_type": event_type, "payload": payload}
        try:
            response = await self._get_client().post(self._settings.webhook_url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"[EVENT] Webhook delivery of {event_type} for app {app_id} failed: {e}")
            raise
        logger.debug(f"[EVENT] Delivered {event_type} to app {app_id}")
