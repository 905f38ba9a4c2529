from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from scrob.logging import get_correlation_id
from scrob.storage.models import (
    ApiToken,
    Play,
    Scrobble,
    SystemStats,
    User,
    UserSummary,
)

MAX_TEXT_LENGTH = 1024

_VALID_ERROR_CODES = {
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
}


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ErrorBody(BaseModel):
    """Error envelope body with a stable code value."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: get_correlation_id() or str(uuid4()))


# auth ---------------------------------------------------------------------


class CredentialsRequest(BaseModel):
    # Policy checks live in the auth service so every surface reports the same messages
    username: str
    password: str


class AuthResponse(BaseModel):
    token: str
    username: str
    is_admin: bool


class UserResponse(BaseModel):
    id: int
    username: str
    is_admin: bool
    is_private: bool
    created_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            is_admin=user.is_admin,
            is_private=user.is_private,
            created_at=user.created_at,
        )


class TokenCreateRequest(BaseModel):
    label: Optional[str] = Field(default=None, max_length=128)


class TokenResponse(BaseModel):
    id: int
    label: Optional[str] = None
    created_at: datetime
    last_used_at: Optional[datetime] = None
    revoked: bool = False

    @classmethod
    def from_token(cls, record: ApiToken) -> "TokenResponse":
        return cls(
            id=record.id,
            label=record.label,
            created_at=record.created_at,
            last_used_at=record.last_used_at,
            revoked=record.revoked,
        )


class TokenCreatedResponse(TokenResponse):
    """Returned only by token creation; the raw value is never shown again."""

    token: str


class RevokeResponse(BaseModel):
    revoked: bool


# settings -----------------------------------------------------------------


class PrivacySettings(BaseModel):
    is_private: bool


# scrobbles ----------------------------------------------------------------


class NowPlayingRequest(BaseModel):
    artist: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    track: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    album: Optional[str] = Field(default=None, max_length=MAX_TEXT_LENGTH)
    duration: Optional[int] = Field(default=None, ge=0)

    def to_play(self) -> Play:
        return Play(
            artist=self.artist,
            track=self.track,
            album=self.album,
            duration=self.duration,
            timestamp=datetime.now(timezone.utc),
        )


class ScrobbleRequest(BaseModel):
    artist: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    track: str = Field(..., min_length=1, max_length=MAX_TEXT_LENGTH)
    timestamp: datetime = Field(..., description="ISO 8601 or Unix seconds")
    album: Optional[str] = Field(default=None, max_length=MAX_TEXT_LENGTH)
    duration: Optional[int] = Field(default=None, ge=0)

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return _aware(value)

    def to_play(self) -> Play:
        return Play(
            artist=self.artist,
            track=self.track,
            album=self.album,
            duration=self.duration,
            timestamp=self.timestamp,
        )


class ScrobbleResponse(BaseModel):
    id: int
    artist: str
    track: str
    album: Optional[str] = None
    duration: Optional[int] = None
    timestamp: datetime

    @classmethod
    def from_scrobble(cls, scrobble: Scrobble) -> "ScrobbleResponse":
        return cls(
            id=scrobble.id,
            artist=scrobble.artist,
            track=scrobble.track,
            album=scrobble.album,
            duration=scrobble.duration,
            timestamp=scrobble.timestamp,
        )


class TopArtistResponse(BaseModel):
    name: str
    count: int


class TopTrackResponse(BaseModel):
    artist: str
    track: str
    count: int


# admin --------------------------------------------------------------------


class AdminUserResponse(BaseModel):
    id: int
    username: str
    is_admin: bool
    is_private: bool
    created_at: datetime
    scrobble_count: int
    last_scrobble: Optional[datetime] = None

    @classmethod
    def from_summary(cls, summary: UserSummary) -> "AdminUserResponse":
        user = summary.user
        return cls(
            id=user.id,
            username=user.username,
            is_admin=user.is_admin,
            is_private=user.is_private,
            created_at=user.created_at,
            scrobble_count=summary.scrobble_count,
            last_scrobble=summary.last_scrobble,
        )


class AdminUserListResponse(BaseModel):
    items: List[AdminUserResponse]


class SetAdminRequest(BaseModel):
    is_admin: bool


class TopUserResponse(BaseModel):
    username: str
    scrobble_count: int


class SystemStatsResponse(BaseModel):
    total_users: int
    total_scrobbles: int
    total_artists: int
    total_tracks: int
    top_users: List[TopUserResponse]

    @classmethod
    def from_stats(cls, stats: SystemStats) -> "SystemStatsResponse":
        return cls(
            total_users=stats.total_users,
            total_scrobbles=stats.total_scrobbles,
            total_artists=stats.total_artists,
            total_tracks=stats.total_tracks,
            top_users=[
                TopUserResponse(username=u.username, scrobble_count=u.scrobble_count)
                for u in stats.top_users
            ],
        )
