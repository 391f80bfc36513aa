"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, .message lets handlers read the text without str(exc) parsing.
    # Never raise this directly - pick the subclass that says what went wrong.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class ConfigurationError(DomainException):
    """Raised when a request or the runtime is misconfigured.

    Examples: playlist conversion without a target platform, a platform key
    nobody registered an implementation for.
    """

    pass


class ValidationError(DomainException):
    """Raised when input data fails validation (bad payload, bad uuid)."""

    pass


class NotFoundError(DomainException):
    """Raised when an upstream platform has no match for the lookup."""

    def __init__(self, entity_type: str, entity_id: Any, platform: str = "") -> None:
        where = f" on {platform}" if platform else ""
        super().__init__(f"{entity_type} {entity_id} not found{where}")
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.platform = platform


class TransientUpstreamError(DomainException):
    """Raised for network failures and rate limits from a platform.

    Per-track occurrences end up in the omitted track list; per-playlist
    occurrences (metadata fetch) propagate to the caller.
    """

    def __init__(
        self,
        message: str,
        platform: str = "",
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.platform = platform
        self.retry_after = retry_after


class SerializationError(DomainException):
    """Raised when a cache value can't be encoded or decoded."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Cache value for '{key}' could not be (de)serialized: {reason}")
        self.key = key
        self.reason = reason


class AlreadyFollowingError(DomainException):
    """Raised when a single subscriber re-follows an entity they already follow."""

    def __init__(self, entity_id: str, subscriber: Any) -> None:
        super().__init__(f"Subscriber {subscriber} is already following {entity_id}")
        self.entity_id = entity_id
        self.subscriber = subscriber


class TooManySubscribersError(DomainException):
    """Raised when a follow would exceed the subscriber limit."""

    def __init__(self, count: int, limit: int) -> None:
        super().__init__(f"Too many subscribers: {count} (limit is {limit})")
        self.count = count
        self.limit = limit


__all__ = [
    "AlreadyFollowingError",
    "ConfigurationError",
    "DomainException",
    "NotFoundError",
    "SerializationError",
    "TooManySubscribersError",
    "TransientUpstreamError",
    "ValidationError",
]
