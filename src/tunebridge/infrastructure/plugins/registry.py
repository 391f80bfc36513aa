"""
Platform registry - platform key to capability implementation.

Hey future me - this is where "spotify" turns into an IPlatformService!
The conversion engine never switches on platform strings. It asks the
registry, and the registry answers with whatever was registered at startup.

Usage:
    registry = PlatformRegistry()
    registry.register(SpotifyPlatformService(client))

    spotify = registry.require("spotify")
    track = await spotify.search_track_with_id(info)

Keys are plain strings, so Platform enum members and raw strings both work
(Platform is a str enum and normalizes to its value).

Not thread-safe, fine for a single event loop.
"""

from collections.abc import Iterator

from tunebridge.domain.exceptions import ConfigurationError
from tunebridge.domain.ports.platform import IPlatformService, Platform


def _key(platform: str | Platform) -> str:
    value = platform.value if isinstance(platform, Platform) else platform
    return value.strip().lower()


class PlatformRegistry:
    """Central registry of platform services, one per platform key."""

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._services: dict[str, IPlatformService] = {}

    def register(self, service: IPlatformService) -> None:
        """Register a platform service.

        Overwrites an existing registration for the same key, which is how
        a service with refreshed credentials gets swapped in.
        """
        self._services[_key(service.platform)] = service

    def get(self, platform: str | Platform) -> IPlatformService | None:
        """Get a service by platform key, None if not registered."""
        return self._services.get(_key(platform))

    def require(self, platform: str | Platform) -> IPlatformService:
        """Get a service, raising if nothing is registered for the key.

        Raises:
            ConfigurationError: If the platform is not registered
        """
        service = self.get(platform)
        if service is None:
            raise ConfigurationError(
                f"No platform service registered for '{_key(platform)}'"
            )
        return service

    def unregister(self, platform: str | Platform) -> None:
        self._services.pop(_key(platform), None)

    def all(self) -> Iterator[IPlatformService]:
        yield from self._services.values()

    @property
    def available_platforms(self) -> list[str]:
        """Registered platform keys in registration order."""
        return list(self._services.keys())

    def others(self, platform: str | Platform) -> list[str]:
        """Every registered platform key except the given one."""
        excluded = _key(platform)
        return [key for key in self._services if key != excluded]

    def is_registered(self, platform: str | Platform) -> bool:
        return _key(platform) in self._services

    def __len__(self) -> int:
        return len(self._services)
