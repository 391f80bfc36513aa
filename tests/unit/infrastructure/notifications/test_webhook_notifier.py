"""Tests for the event notifier adapters."""

import json

import httpx
import pytest
from conftest import make_track, playlist_link

from tunebridge.config import NotifierSettings
from tunebridge.domain.dtos import PlaylistMetadata
from tunebridge.domain.ports import TrackEvent
from tunebridge.infrastructure.notifications import (
    LoggingEventNotifier,
    WebhookEventNotifier,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWebhookEventNotifier:
    """Test webhook delivery."""

    @pytest.mark.asyncio
    async def test_track_event_posted_as_json(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        notifier = WebhookEventNotifier(
            NotifierSettings(webhook_url="https://hooks.test/events"), client=_client(handler)
        )
        event = TrackEvent(platform="deezer", task_id="task-1", track=make_track(1))

        await notifier.send_track_event("app-1", event)

        assert len(requests) == 1
        body = json.loads(requests[0].content)
        assert body["app_id"] == "app-1"
        assert body["event_type"] == "playlist_conversion_track"
        assert body["payload"]["track"]["title"] == "T1"

    @pytest.mark.asyncio
    async def test_metadata_event_uses_link_app(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200)

        notifier = WebhookEventNotifier(
            NotifierSettings(webhook_url="https://hooks.test/events"), client=_client(handler)
        )

        await notifier.send_playlist_metadata_event(
            playlist_link(), PlaylistMetadata(title="Road Trip", last_updated="v1")
        )

        assert bodies[0]["app_id"] == "app-1"
        assert bodies[0]["event_type"] == "playlist_conversion_metadata"
        assert bodies[0]["payload"]["meta"]["last_updated"] == "v1"

    @pytest.mark.asyncio
    async def test_http_errors_are_raised(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        notifier = WebhookEventNotifier(
            NotifierSettings(webhook_url="https://hooks.test/events"), client=_client(handler)
        )

        with pytest.raises(httpx.HTTPStatusError):
            await notifier.send_event("app-1", "playlist_conversion_done", {})

    @pytest.mark.asyncio
    async def test_disabled_webhook_sends_nothing(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200)

        notifier = WebhookEventNotifier(NotifierSettings(webhook_url=""), client=_client(handler))

        await notifier.send_event("app-1", "playlist_conversion_done", {})

        assert calls == 0


class TestLoggingEventNotifier:
    """The fallback notifier never raises."""

    @pytest.mark.asyncio
    async def test_logs_events(self, caplog: pytest.LogCaptureFixture) -> None:
        notifier = LoggingEventNotifier()

        with caplog.at_level("INFO"):
            await notifier.send_event("app-1", "playlist_conversion_done", {"task_id": "t"})

        assert "playlist_conversion_done" in caplog.text
