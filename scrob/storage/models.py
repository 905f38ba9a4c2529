from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: int
    username: str
    password_hash: str = field(repr=False)
    is_admin: bool = False
    is_private: bool = False
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class ApiToken:
    """Read-side view of a bearer token. The raw token value is never part of it."""

    id: int
    user_id: int
    label: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_used_at: Optional[datetime] = None
    revoked: bool = False


@dataclass
class Play:
    """A play submitted by a client, before it is stored."""

    artist: str
    track: str
    timestamp: datetime
    album: Optional[str] = None
    duration: Optional[int] = None


@dataclass
class Scrobble:
    id: int
    user_id: int
    artist: str
    track: str
    timestamp: datetime
    album: Optional[str] = None
    duration: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class TopArtist:
    artist: str
    count: int


@dataclass
class TopTrack:
    artist: str
    track: str
    count: int


@dataclass
class UserSummary:
    user: User
    scrobble_count: int = 0
    last_scrobble: Optional[datetime] = None


@dataclass
class TopUser:
    username: str
    scrobble_count: int


@dataclass
class SystemStats:
    total_users: int
    total_scrobbles: int
    total_artists: int
    total_tracks: int
    top_users: List[TopUser] = field(default_factory=list)
