from __future__ import annotations

import itertools
import threading
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from scrob.logging import get_logger
from scrob.storage.errors import ConstraintViolation
from scrob.storage.models import (
    ApiToken,
    Play,
    Scrobble,
    SystemStats,
    TopArtist,
    TopTrack,
    TopUser,
    User,
    UserSummary,
    utcnow,
)


class MemoryStore:
    """In-process backing store used by tests and local development.

    Nothing is persisted; state lives for the lifetime of the instance.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[int, User] = {}
        self.tokens: Dict[int, ApiToken] = {}
        # raw token value -> token id
        self.token_values: Dict[str, int] = {}
        self.scrobbles: Dict[int, Scrobble] = {}
        self._user_ids = itertools.count(1)
        self._token_ids = itertools.count(1)
        self._scrobble_ids = itertools.count(1)
        # RLock for all data operations; nested acquisition is allowed
        self._data_lock = threading.RLock()

    def close(self) -> None:
        return None

    # users -----------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            for user in self.users.values():
                if user.username == username:
                    return user
            return None

    def create_user(
        self, username: str, password_hash: str, *, is_admin: Optional[bool] = None
    ) -> User:
        with self._data_lock:
            if any(u.username == username for u in self.users.values()):
                raise ConstraintViolation(
                    "username already exists", {"field": "username"}
                )
            if is_admin is None:
                is_admin = not self.users
            user = User(
                id=next(self._user_ids),
                username=username,
                password_hash=password_hash,
                is_admin=is_admin,
            )
            self.users[user.id] = user
            return user

    def set_user_privacy(self, user_id: int, is_private: bool) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.is_private = is_private
            return user

    def set_user_admin(self, user_id: int, is_admin: bool) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.is_admin = is_admin
            return user

    def delete_user(self, user_id: int) -> bool:
        with self._data_lock:
            if user_id not in self.users:
                return False
            for scrobble_id, scrobble in list(self.scrobbles.items()):
                if scrobble.user_id == user_id:
                    self.scrobbles.pop(scrobble_id, None)
            for value, token_id in list(self.token_values.items()):
                if self.tokens[token_id].user_id == user_id:
                    self.token_values.pop(value, None)
                    self.tokens.pop(token_id, None)
            self.users.pop(user_id, None)
            return True

    # tokens ----------------------------------------------------------------

    def create_token(
        self, user_id: int, token: str, label: Optional[str] = None
    ) -> ApiToken:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            if token in self.token_values:
                raise ConstraintViolation("token already exists", {"field": "token"})
            record = ApiToken(id=next(self._token_ids), user_id=user_id, label=label)
            self.tokens[record.id] = record
            self.token_values[token] = record.id
            return record

    def get_active_token_owner(self, token: str) -> Optional[int]:
        with self._data_lock:
            token_id = self.token_values.get(token)
            if token_id is None:
                return None
            record = self.tokens[token_id]
            if record.revoked:
                return None
            return record.user_id

    def touch_token(self, token: str, used_at: datetime) -> None:
        with self._data_lock:
            token_id = self.token_values.get(token)
            if token_id is not None:
                self.tokens[token_id].last_used_at = used_at

    def list_tokens(self, user_id: int) -> List[ApiToken]:
        with self._data_lock:
            records = [t for t in self.tokens.values() if t.user_id == user_id]
        return sorted(records, key=lambda t: (t.created_at, t.id), reverse=True)

    def revoke_token(self, token_id: int, user_id: int) -> bool:
        with self._data_lock:
            record = self.tokens.get(token_id)
            if not record or record.user_id != user_id or record.revoked:
                return False
            record.revoked = True
            return True

    def revoke_token_value(self, token: str, user_id: int) -> bool:
        with self._data_lock:
            token_id = self.token_values.get(token)
            if token_id is None:
                return False
            return self.revoke_token(token_id, user_id)

    # scrobbles -------------------------------------------------------------

    def add_scrobbles(self, user_id: int, plays: Sequence[Play]) -> List[Scrobble]:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            created = []
            for play in plays:
                scrobble = Scrobble(
                    id=next(self._scrobble_ids),
                    user_id=user_id,
                    artist=play.artist,
                    track=play.track,
                    album=play.album,
                    duration=play.duration,
                    timestamp=play.timestamp,
                )
                self.scrobbles[scrobble.id] = scrobble
                created.append(scrobble)
            return created

    def _user_scrobbles(
        self,
        user_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Scrobble]:
        with self._data_lock:
            rows = [s for s in self.scrobbles.values() if s.user_id == user_id]
        if start is not None:
            rows = [s for s in rows if s.timestamp >= start]
        if end is not None:
            rows = [s for s in rows if s.timestamp <= end]
        return rows

    def recent_scrobbles(
        self, user_id: int, limit: int, before: Optional[datetime] = None
    ) -> List[Scrobble]:
        rows = self._user_scrobbles(user_id)
        if before is not None:
            rows = [s for s in rows if s.timestamp < before]
        rows.sort(key=lambda s: (s.timestamp, s.id), reverse=True)
        return rows[:limit]

    def top_artists(
        self,
        user_id: int,
        limit: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TopArtist]:
        counts = Counter(s.artist for s in self._user_scrobbles(user_id, start, end))
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [TopArtist(artist=name, count=count) for name, count in ranked[:limit]]

    def top_tracks(
        self,
        user_id: int,
        limit: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TopTrack]:
        counts = Counter(
            (s.artist, s.track) for s in self._user_scrobbles(user_id, start, end)
        )
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [
            TopTrack(artist=artist, track=track, count=count)
            for (artist, track), count in ranked[:limit]
        ]

    def delete_scrobble(self, scrobble_id: int) -> bool:
        with self._data_lock:
            return self.scrobbles.pop(scrobble_id, None) is not None

    # admin reads -----------------------------------------------------------

    def _summary(self, user: User) -> UserSummary:
        rows = self._user_scrobbles(user.id)
        last = max((s.timestamp for s in rows), default=None)
        return UserSummary(user=user, scrobble_count=len(rows), last_scrobble=last)

    def user_summary(self, user_id: int) -> Optional[UserSummary]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            return self._summary(user)

    def list_user_summaries(self) -> List[UserSummary]:
        with self._data_lock:
            users = sorted(
                self.users.values(), key=lambda u: (u.created_at, u.id), reverse=True
            )
            return [self._summary(user) for user in users]

    def system_stats(self, top_n: int = 10) -> SystemStats:
        with self._data_lock:
            scrobbles = list(self.scrobbles.values())
            per_user = Counter(s.user_id for s in scrobbles)
            ranked = sorted(
                (
                    (self.users[uid].username, count)
                    for uid, count in per_user.items()
                    if uid in self.users
                ),
                key=lambda item: (-item[1], item[0]),
            )
            return SystemStats(
                total_users=len(self.users),
                total_scrobbles=len(scrobbles),
                total_artists=len({s.artist for s in scrobbles}),
                total_tracks=len({(s.artist, s.track) for s in scrobbles}),
                top_users=[
                    TopUser(username=name, scrobble_count=count)
                    for name, count in ranked[:top_n]
                ],
            )


__all__ = ["MemoryStore"]
