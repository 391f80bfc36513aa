"""Follow service - subscribe apps' users to playlist changes.

Hey future me - following is create-once, append-forever:

    no follow for entity_id → create it with the requested subscribers
    follow exists           → upsert each requested subscriber into the set

"Already following" is only an error for a single-subscriber request that
changed nothing. A bulk request where everyone was already subscribed is a
silent no-op, so apps can resend their full list without special-casing.

The 20-subscriber limit is checked in submit() before anything touches the
DB. follow_playlist() trusts its caller on request size; the entity still
refuses to grow past the cap.
"""

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tunebridge.application.schemas import FollowPlaylistRequest
from tunebridge.domain.dtos import LinkInfo
from tunebridge.domain.entities import MAX_SUBSCRIBERS, FollowRecord, parse_subscribers
from tunebridge.domain.exceptions import (
    AlreadyFollowingError,
    NotFoundError,
    TooManySubscribersError,
    ValidationError,
)
from tunebridge.infrastructure.persistence.repositories import FollowRepository

logger = logging.getLogger(__name__)


@dataclass
class FollowResult:
    follow: FollowRecord
    created: bool
    added: list[uuid.UUID] = field(default_factory=list)


class FollowService:
    """Creates follows and adds subscribers to them."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_subscribers: int = MAX_SUBSCRIBERS,
    ) -> None:
        self._session_factory = session_factory
        self._max_subscribers = max_subscribers

    async def submit(self, request: FollowPlaylistRequest, info: LinkInfo) -> FollowResult:
        """Boundary entry point: enforce the subscriber limit, then follow.

        Raises:
            TooManySubscribersError: More subscribers than allowed
        """
        if len(request.subscribers) > self._max_subscribers:
            logger.info(
                f"[FOLLOW] Rejected follow for {info.entity_id}: "
                f"{len(request.subscribers)} subscribers"
            )
            raise TooManySubscribersError(len(request.subscribers), self._max_subscribers)
        return await self.follow_playlist(
            developer=request.developer,
            app=request.app,
            url=request.url,
            info=info,
            subscribers=request.subscribers,
        )

    async def follow_playlist(
        self,
        developer: str,
        app: str,
        url: str,
        info: LinkInfo,
        subscribers: list[uuid.UUID] | list[str],
    ) -> FollowResult:
        """Create the follow or add subscribers to the existing one.

        Raises:
            ValidationError: Not a playlist link, or a bad subscriber id
            AlreadyFollowingError: Single subscriber already in the set
            TooManySubscribersError: The set would exceed the cap
        """
        if not info.is_playlist:
            raise ValidationError(f"Only playlists can be followed, got {info.entity!r}")
        requested = parse_subscribers(subscribers)
        if not requested:
            raise ValidationError("At least one subscriber is required")
        if len(requested) > self._max_subscribers:
            raise TooManySubscribersError(len(requested), self._max_subscribers)

        async with self._session_factory() as session:
            repo = FollowRepository(session)

            if await repo.get_by_entity_id(info.entity_id) is None:
                follow = FollowRecord(
                    developer=developer,
                    app=app,
                    entity_id=info.entity_id,
                    entity_url=url,
                    subscribers=requested,
                )
                try:
                    await repo.add(follow)
                    await session.commit()
                except IntegrityError:
                    # Someone created it between our read and insert.
                    await session.rollback()
                    logger.info(f"[FOLLOW] Lost create race for {info.entity_id}, upserting")
                else:
                    logger.info(
                        f"[FOLLOW] Created follow {follow.id} for {info.entity_id} "
                        f"with {len(requested)} subscriber(s)"
                    )
                    return FollowResult(follow=follow, created=True, added=requested)

            added = [
                s
                for s in requested
                if await repo.add_subscriber(info.entity_id, s, self._max_subscribers)
            ]
            if not added and len(requested) == 1:
                await session.rollback()
                raise AlreadyFollowingError(info.entity_id, requested[0])

            follow_after = await repo.get_by_entity_id(info.entity_id)
            if follow_after is None:
                raise NotFoundError("follow", info.entity_id)
            await session.commit()

        logger.info(
            f"[FOLLOW] Added {len(added)}/{len(requested)} subscriber(s) to {info.entity_id}"
        )
        return FollowResult(follow=follow_after, created=False, added=added)
