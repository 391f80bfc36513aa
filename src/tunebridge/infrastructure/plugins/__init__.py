"""Platform service registry."""

from tunebridge.infrastructure.plugins.registry import PlatformRegistry

__all__ = ["PlatformRegistry"]
