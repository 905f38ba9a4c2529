from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Protocol, Sequence

from scrob.logging import get_logger
from scrob.service.access import AdminOnly, check
from scrob.service.errors import NotFoundError, StorageError, ValidationError
from scrob.storage.errors import StorageUnavailable
from scrob.storage.models import (
    Play,
    Scrobble,
    SystemStats,
    TopArtist,
    TopTrack,
    User,
    UserSummary,
)

logger = get_logger(__name__)

MAX_LIMIT = 100
DEFAULT_RECENT_LIMIT = 20
DEFAULT_TOP_LIMIT = 10
TOP_USERS = 10


class ScrobbleStore(Protocol):
    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def add_scrobbles(self, user_id: int, plays: Sequence[Play]) -> List[Scrobble]: ...

    def recent_scrobbles(
        self, user_id: int, limit: int, before: Optional[datetime] = None
    ) -> List[Scrobble]: ...

    def top_artists(
        self,
        user_id: int,
        limit: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TopArtist]: ...

    def top_tracks(
        self,
        user_id: int,
        limit: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TopTrack]: ...

    def delete_scrobble(self, scrobble_id: int) -> bool: ...

    def user_summary(self, user_id: int) -> Optional[UserSummary]: ...

    def list_user_summaries(self) -> List[UserSummary]: ...

    def system_stats(self, top_n: int = 10) -> SystemStats: ...


def clamp_limit(limit: Optional[int], default: int) -> int:
    if limit is None:
        return default
    return max(1, min(limit, MAX_LIMIT))


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes from clients as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ScrobbleService:
    """Play ingestion and listening statistics for already-identified callers."""

    def __init__(self, store: ScrobbleStore, *, max_batch: int = 50) -> None:
        self.store = store
        self.max_batch = max_batch

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except StorageUnavailable as exc:
            logger.error(
                "scrobble_storage_failed",
                operation=getattr(func, "__name__", repr(func)),
                error=exc.message,
            )
            raise StorageError() from exc

    def now_playing(self, user: User, play: Play) -> None:
        logger.info(
            "now_playing",
            user_id=user.id,
            artist=play.artist,
            track=play.track,
        )

    async def record(self, user: User, plays: Sequence[Play]) -> List[Scrobble]:
        if len(plays) > self.max_batch:
            raise ValidationError(
                f"Maximum {self.max_batch} scrobbles per batch",
                detail={"submitted": len(plays)},
            )
        if not plays:
            return []
        created = await self._call(self.store.add_scrobbles, user.id, list(plays))
        logger.info("scrobbles_recorded", user_id=user.id, count=len(created))
        return created

    async def recent(
        self,
        user_id: int,
        limit: Optional[int] = None,
        before: Optional[datetime] = None,
    ) -> List[Scrobble]:
        return await self._call(
            self.store.recent_scrobbles,
            user_id,
            clamp_limit(limit, DEFAULT_RECENT_LIMIT),
            as_utc(before),
        )

    async def top_artists(
        self,
        user_id: int,
        limit: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TopArtist]:
        return await self._call(
            self.store.top_artists,
            user_id,
            clamp_limit(limit, DEFAULT_TOP_LIMIT),
            as_utc(start),
            as_utc(end),
        )

    async def top_tracks(
        self,
        user_id: int,
        limit: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TopTrack]:
        return await self._call(
            self.store.top_tracks,
            user_id,
            clamp_limit(limit, DEFAULT_TOP_LIMIT),
            as_utc(start),
            as_utc(end),
        )

    async def public_recent(
        self, viewer: Optional[User], username: str, limit: Optional[int] = None
    ) -> List[Scrobble]:
        """Recent plays of ``username`` as seen by ``viewer`` (may be anonymous).

        Private profiles answer "not found" to everyone except the owner and
        administrators, so their existence is not disclosed.
        """
        owner = await self._call(self.store.get_user_by_username, username)
        visible = owner is not None and (
            not owner.is_private
            or (viewer is not None and (viewer.id == owner.id or viewer.is_admin))
        )
        if not visible:
            raise NotFoundError("User not found")
        return await self.recent(owner.id, limit)

    # admin ---------------------------------------------------------------

    async def list_users(self, actor: Optional[User]) -> List[UserSummary]:
        check(actor, AdminOnly())
        return await self._call(self.store.list_user_summaries)

    async def user_detail(self, actor: Optional[User], user_id: int) -> UserSummary:
        check(actor, AdminOnly())
        summary = await self._call(self.store.user_summary, user_id)
        if not summary:
            raise NotFoundError("User not found")
        return summary

    async def system_stats(self, actor: Optional[User]) -> SystemStats:
        check(actor, AdminOnly())
        return await self._call(self.store.system_stats, TOP_USERS)

    async def delete_scrobble(self, actor: Optional[User], scrobble_id: int) -> None:
        admin = check(actor, AdminOnly())
        deleted = await self._call(self.store.delete_scrobble, scrobble_id)
        if not deleted:
            raise NotFoundError("Scrobble not found")
        logger.info("scrobble_deleted", actor_id=admin.id, scrobble_id=scrobble_id)


__all__ = ["ScrobbleService", "ScrobbleStore", "clamp_limit"]
