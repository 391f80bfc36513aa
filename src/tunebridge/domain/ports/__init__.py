"""Domain ports (interfaces) for dependency inversion."""

from abc import ABC, abstractmethod

from tunebridge.domain.dtos import LinkInfo
from tunebridge.domain.ports.notification import (
    DoneEvent,
    EventType,
    IEventNotifier,
    MetadataEvent,
    TrackEvent,
)
from tunebridge.domain.ports.platform import IPlatformService, Platform


class ILinkResolver(ABC):
    """Turns a stored playlist URL back into LinkInfo.

    URL parsing lives outside the engine. The sync pass only needs this
    one call to rebuild a request from a follow record.
    """

    @abstractmethod
    async def resolve(self, url: str) -> LinkInfo:
        """Resolve a URL.

        Raises:
            ValidationError: URL isn't a supported link
        """
        ...


__all__ = [
    "DoneEvent",
    "EventType",
    "IEventNotifier",
    "ILinkResolver",
    "IPlatformService",
    "MetadataEvent",
    "Platform",
    "TrackEvent",
]
