"""Pydantic schemas for data crossing the engine boundary.

Hey future me - two shapes come in from the outside as loose JSON: a follow
request (from whatever HTTP layer sits on top) and a sync task payload (from
the job table). Both get validated here before any service touches them.
"""

import uuid

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FollowPlaylistRequest(BaseModel):
    """Follow request as submitted by an app."""

    model_config = ConfigDict(frozen=True)

    developer: str = Field(min_length=1)
    app: str = Field(min_length=1)
    url: str = Field(min_length=1)
    subscribers: list[uuid.UUID] = Field(min_length=1)

    @field_validator("subscribers")
    @classmethod
    def dedupe_subscribers(cls, value: list[uuid.UUID]) -> list[uuid.UUID]:
        """Set semantics: keep first occurrence, drop repeats."""
        return list(dict.fromkeys(value))


class FollowTaskPayload(BaseModel):
    """Payload of a durable follow-sync task.

    user is the follow record id the task was created for.
    """

    user: str
    url: str
    entity_id: str
    platform: str
    app: str
    developer: str
