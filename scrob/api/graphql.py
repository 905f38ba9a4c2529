"""GraphQL surface over the same services as the REST router.

Failures surface in the GraphQL ``errors`` list with the service message;
anything that is not a :class:`ServiceError` is masked.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import strawberry
from fastapi import Request
from graphql import GraphQLError
from strawberry.extensions import MaskErrors
from strawberry.fastapi import GraphQLRouter
from strawberry.types import Info

from scrob.logging import get_logger
from scrob.service.access import AnyAuthenticated, require
from scrob.service.errors import ServiceError, ValidationError
from scrob.service.identity import Identity
from scrob.service.runtime import Runtime
from scrob.service.scrobbles import as_utc
from scrob.storage import models

logger = get_logger(__name__)

UI_SESSION_LABEL = "UI session"


@strawberry.type
class User:
    id: strawberry.ID
    username: str
    is_admin: bool
    is_private: bool
    created_at: datetime

    @classmethod
    def from_model(cls, user: models.User) -> "User":
        return cls(
            id=strawberry.ID(str(user.id)),
            username=user.username,
            is_admin=user.is_admin,
            is_private=user.is_private,
            created_at=user.created_at,
        )


@strawberry.type
class ApiToken:
    id: strawberry.ID
    label: Optional[str]
    created_at: datetime
    last_used_at: Optional[datetime]
    revoked: bool
    token: Optional[str] = strawberry.field(
        default=None, description="Raw token value; only present on creation"
    )

    @classmethod
    def from_model(cls, record: models.ApiToken, raw: Optional[str] = None) -> "ApiToken":
        return cls(
            id=strawberry.ID(str(record.id)),
            label=record.label,
            created_at=record.created_at,
            last_used_at=record.last_used_at,
            revoked=record.revoked,
            token=raw,
        )


@strawberry.type
class Scrob:
    id: strawberry.ID
    artist: str
    track: str
    album: Optional[str]
    duration: Optional[int]
    timestamp: datetime
    created_at: datetime

    @classmethod
    def from_model(cls, scrobble: models.Scrobble) -> "Scrob":
        return cls(
            id=strawberry.ID(str(scrobble.id)),
            artist=scrobble.artist,
            track=scrobble.track,
            album=scrobble.album,
            duration=scrobble.duration,
            timestamp=scrobble.timestamp,
            created_at=scrobble.created_at,
        )


@strawberry.type
class TopArtist:
    name: str
    count: int


@strawberry.type
class TopTrack:
    artist: str
    track: str
    count: int


@strawberry.type
class AuthPayload:
    token: str
    user: User


@strawberry.input
class ScrobInput:
    artist: str
    track: str
    timestamp: datetime
    album: Optional[str] = None
    duration: Optional[int] = None

    def to_play(self) -> models.Play:
        return models.Play(
            artist=self.artist,
            track=self.track,
            album=self.album,
            duration=self.duration,
            timestamp=as_utc(self.timestamp),
        )


@strawberry.input
class NowPlayingInput:
    artist: str
    track: str
    album: Optional[str] = None
    duration: Optional[int] = None


@strawberry.input
class TimeRangeInput:
    from_: Optional[datetime] = strawberry.field(default=None, name="from")
    to: Optional[datetime] = None


def _runtime(info: Info) -> Runtime:
    return info.context["runtime"]


def _current_user(info: Info) -> Optional[models.User]:
    identity = info.context["identity"]
    return identity.user if isinstance(identity, Identity) else None


def _require_user(info: Info) -> models.User:
    return require(info.context["identity"], AnyAuthenticated())


def _range(range: Optional[TimeRangeInput]) -> tuple[Optional[datetime], Optional[datetime]]:
    if range is None:
        return None, None
    return range.from_, range.to


@strawberry.type
class Query:
    @strawberry.field(description="The authenticated user, or null")
    def me(self, info: Info) -> Optional[User]:
        user = _current_user(info)
        return User.from_model(user) if user else None

    @strawberry.field
    async def api_tokens(self, info: Info) -> List[ApiToken]:
        user = _require_user(info)
        records = await _runtime(info).auth.list_tokens(user.id)
        return [ApiToken.from_model(r) for r in records]

    @strawberry.field
    async def recent_scrobs(
        self, info: Info, limit: int = 20, before: Optional[datetime] = None
    ) -> List[Scrob]:
        user = _require_user(info)
        rows = await _runtime(info).scrobbles.recent(user.id, limit, before)
        return [Scrob.from_model(s) for s in rows]

    @strawberry.field
    async def top_artists(
        self, info: Info, range: Optional[TimeRangeInput] = None, limit: int = 20
    ) -> List[TopArtist]:
        user = _require_user(info)
        start, end = _range(range)
        rows = await _runtime(info).scrobbles.top_artists(user.id, limit, start, end)
        return [TopArtist(name=r.artist, count=r.count) for r in rows]

    @strawberry.field
    async def top_tracks(
        self, info: Info, range: Optional[TimeRangeInput] = None, limit: int = 20
    ) -> List[TopTrack]:
        user = _require_user(info)
        start, end = _range(range)
        rows = await _runtime(info).scrobbles.top_tracks(user.id, limit, start, end)
        return [TopTrack(artist=r.artist, track=r.track, count=r.count) for r in rows]


@strawberry.type
class Mutation:
    @strawberry.mutation
    async def login(self, info: Info, username: str, password: str) -> AuthPayload:
        user, token = await _runtime(info).auth.login(
            username, password, label=UI_SESSION_LABEL
        )
        return AuthPayload(token=token, user=User.from_model(user))

    @strawberry.mutation
    async def scrob(self, info: Info, input: ScrobInput) -> Scrob:
        user = _require_user(info)
        created = await _runtime(info).scrobbles.record(user, [input.to_play()])
        return Scrob.from_model(created[0])

    @strawberry.mutation
    async def scrob_batch(self, info: Info, inputs: List[ScrobInput]) -> List[Scrob]:
        user = _require_user(info)
        created = await _runtime(info).scrobbles.record(
            user, [item.to_play() for item in inputs]
        )
        return [Scrob.from_model(s) for s in created]

    @strawberry.mutation
    def now_playing(self, info: Info, input: NowPlayingInput) -> bool:
        user = _require_user(info)
        play = models.Play(
            artist=input.artist,
            track=input.track,
            album=input.album,
            duration=input.duration,
            timestamp=models.utcnow(),
        )
        _runtime(info).scrobbles.now_playing(user, play)
        return True

    @strawberry.mutation
    async def create_api_token(
        self, info: Info, label: Optional[str] = None
    ) -> ApiToken:
        user = _require_user(info)
        record, raw = await _runtime(info).auth.issue_token(user.id, label)
        return ApiToken.from_model(record, raw)

    @strawberry.mutation
    async def revoke_api_token(self, info: Info, id: strawberry.ID) -> bool:
        user = _require_user(info)
        try:
            token_id = int(id)
        except ValueError:
            raise ValidationError("Invalid token ID")
        return await _runtime(info).auth.revoke_token(user.id, token_id)


def _should_mask(error: GraphQLError) -> bool:
    original = getattr(error, "original_error", None)
    if original is None:
        # Parse and validation errors from graphql-core itself
        return False
    if isinstance(original, ServiceError):
        return False
    logger.error(
        "graphql_unhandled_exception",
        error_type=type(original).__name__,
        error=str(original),
    )
    return True


def _mask_errors() -> MaskErrors:
    return MaskErrors(should_mask_error=_should_mask, error_message="internal server error")


# A fresh extension per request
schema = strawberry.Schema(query=Query, mutation=Mutation, extensions=[_mask_errors])


async def get_context(request: Request) -> Dict[str, Any]:
    runtime: Runtime = request.app.state.runtime
    identity = await runtime.identity.resolve(request.headers.get("Authorization"))
    return {"runtime": runtime, "identity": identity}


def build_graphql_router() -> GraphQLRouter:
    return GraphQLRouter(schema, context_getter=get_context)


__all__ = ["schema", "build_graphql_router", "get_context"]
