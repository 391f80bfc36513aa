"""Event notifier that only logs - used when no webhook is configured."""

import logging
from typing import Any

from tunebridge.domain.dtos import LinkInfo, PlaylistMetadata
from tunebridge.domain.ports.notification import IEventNotifier, TrackEvent

logger = logging.getLogger(__name__)


class LoggingEventNotifier(IEventNotifier):
    """Writes every event to the log at INFO (tracks at DEBUG)."""

    async def send_playlist_metadata_event(
        self, info: LinkInfo, meta: PlaylistMetadata
    ) -> None:
        logger.info(
            f"[EVENT] metadata app={info.app} {info.platform}:{info.entity_id} "
            f"'{meta.title}' ({meta.nb_tracks} tracks)"
        )

    async def send_track_event(self, app_id: str, event: TrackEvent) -> None:
        logger.debug(
            f"[EVENT] track app={app_id} task={event.task_id} "
            f"{event.platform}:{event.track.id} '{event.track.title}'"
        )

    async def send_event(
        self, app_id: str, event_type: str, payload: dict[str, Any]
    ) -> None:
        logger.info(f"[EVENT] {event_type} app={app_id} payload={payload}")
