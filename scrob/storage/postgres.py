from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from scrob.logging import get_logger
from scrob.storage.errors import ConstraintViolation, StorageUnavailable
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
)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# Advisory lock keys (arbitrary, but stable across releases)
_FIRST_USER_LOCK = 0x5C0B_0001
_MIGRATION_LOCK = 0x5C0B_0002

_USER_COLUMNS = "id, username, password_hash, is_admin, is_private, created_at"
_TOKEN_COLUMNS = "id, user_id, label, created_at, last_used_at, revoked"
_SCROBBLE_COLUMNS = "id, user_id, artist, track, album, duration, timestamp, created_at"


class PostgresStore:
    """Postgres-backed store for users, API tokens and scrobbles."""

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        migrate: bool = True,
    ) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=True,
        )
        if migrate:
            self.apply_migrations()

    def close(self) -> None:
        self.pool.close()

    @contextmanager
    def _connect(self) -> Iterator[psycopg.Connection]:
        """Borrow a pooled connection for one transaction.

        The transaction commits when the block exits cleanly and rolls back on
        any exception. Driver failures surface as :class:`StorageUnavailable`.
        """
        try:
            with self.pool.connection() as conn:
                yield conn
        except psycopg.Error as exc:
            self.logger.error(
                "postgres_operation_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StorageUnavailable("database operation failed") from exc

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def apply_migrations(self) -> List[str]:
        """Apply pending ``migrations/*.sql`` files in name order."""

        applied: List[str] = []
        with self._connect() as conn:
            conn.execute("SELECT pg_advisory_xact_lock(%s)", (_MIGRATION_LOCK,))
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version TEXT PRIMARY KEY,
                    applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
            rows = conn.execute("SELECT version FROM schema_migrations").fetchall()
            done = {row["version"] for row in rows}
            for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
                version = path.stem
                if version in done:
                    continue
                conn.execute(path.read_text())
                conn.execute(
                    "INSERT INTO schema_migrations (version) VALUES (%s)", (version,)
                )
                applied.append(version)
        if applied:
            self.logger.info("migrations_applied", versions=applied)
        return applied

    # row mapping -----------------------------------------------------------

    @staticmethod
    def _user_from_row(row: Dict[str, Any]) -> User:
        return User(
            id=row["id"],
            username=row["username"],
            password_hash=row["password_hash"],
            is_admin=row["is_admin"],
            is_private=row["is_private"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _token_from_row(row: Dict[str, Any]) -> ApiToken:
        return ApiToken(
            id=row["id"],
            user_id=row["user_id"],
            label=row.get("label"),
            created_at=row["created_at"],
            last_used_at=row.get("last_used_at"),
            revoked=row["revoked"],
        )

    @staticmethod
    def _scrobble_from_row(row: Dict[str, Any]) -> Scrobble:
        return Scrobble(
            id=row["id"],
            user_id=row["user_id"],
            artist=row["artist"],
            track=row["track"],
            album=row.get("album"),
            duration=row.get("duration"),
            timestamp=row["timestamp"],
            created_at=row["created_at"],
        )

    # users -----------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s", (user_id,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE username = %s", (username,)
            ).fetchone()
        return self._user_from_row(row) if row else None

    def create_user(
        self, username: str, password_hash: str, *, is_admin: Optional[bool] = None
    ) -> User:
        """Insert a user; ``is_admin=None`` grants admin only to the first user.

        The advisory lock serializes concurrent first signups so the emptiness
        check and the insert observe the same table state.
        """
        with self._connect() as conn:
            conn.execute("SELECT pg_advisory_xact_lock(%s)", (_FIRST_USER_LOCK,))
            try:
                row = conn.execute(
                    f"""
                    INSERT INTO users (username, password_hash, is_admin)
                    VALUES (%s, %s, COALESCE(%s, NOT EXISTS (SELECT 1 FROM users)))
                    RETURNING {_USER_COLUMNS}
                    """,
                    (username, password_hash, is_admin),
                ).fetchone()
            except errors.UniqueViolation:
                raise ConstraintViolation(
                    "username already exists", {"field": "username"}
                )
        return self._user_from_row(row)

    def set_user_privacy(self, user_id: int, is_private: bool) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE users SET is_private = %s WHERE id = %s RETURNING {_USER_COLUMNS}",
                (is_private, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def set_user_admin(self, user_id: int, is_admin: bool) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE users SET is_admin = %s WHERE id = %s RETURNING {_USER_COLUMNS}",
                (is_admin, user_id),
            ).fetchone()
        return self._user_from_row(row) if row else None

    def delete_user(self, user_id: int) -> bool:
        with self._connect() as conn:
            conn.execute("DELETE FROM scrobs WHERE user_id = %s", (user_id,))
            conn.execute("DELETE FROM api_tokens WHERE user_id = %s", (user_id,))
            cur = conn.execute("DELETE FROM users WHERE id = %s", (user_id,))
            return cur.rowcount > 0

    # tokens ----------------------------------------------------------------

    def create_token(
        self, user_id: int, token: str, label: Optional[str] = None
    ) -> ApiToken:
        with self._connect() as conn:
            try:
                row = conn.execute(
                    f"""
                    INSERT INTO api_tokens (user_id, token, label)
                    VALUES (%s, %s, %s)
                    RETURNING {_TOKEN_COLUMNS}
                    """,
                    (user_id, token, label),
                ).fetchone()
            except errors.UniqueViolation:
                raise ConstraintViolation("token already exists", {"field": "token"})
            except errors.ForeignKeyViolation:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
        return self._token_from_row(row)

    def get_active_token_owner(self, token: str) -> Optional[int]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT user_id FROM api_tokens WHERE token = %s AND NOT revoked",
                (token,),
            ).fetchone()
        return row["user_id"] if row else None

    def touch_token(self, token: str, used_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE api_tokens SET last_used_at = %s WHERE token = %s",
                (used_at, token),
            )

    def list_tokens(self, user_id: int) -> List[ApiToken]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_TOKEN_COLUMNS} FROM api_tokens
                WHERE user_id = %s
                ORDER BY created_at DESC, id DESC
                """,
                (user_id,),
            ).fetchall()
        return [self._token_from_row(row) for row in rows]

    def revoke_token(self, token_id: int, user_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE api_tokens SET revoked = true
                WHERE id = %s AND user_id = %s AND NOT revoked
                """,
                (token_id, user_id),
            )
            return cur.rowcount > 0

    def revoke_token_value(self, token: str, user_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE api_tokens SET revoked = true
                WHERE token = %s AND user_id = %s AND NOT revoked
                """,
                (token, user_id),
            )
            return cur.rowcount > 0

    # scrobbles -------------------------------------------------------------

    def add_scrobbles(self, user_id: int, plays: Sequence[Play]) -> List[Scrobble]:
        created: List[Scrobble] = []
        with self._connect() as conn:
            for play in plays:
                try:
                    row = conn.execute(
                        f"""
                        INSERT INTO scrobs (user_id, artist, track, album, duration, timestamp)
                        VALUES (%s, %s, %s, %s, %s, %s)
                        RETURNING {_SCROBBLE_COLUMNS}
                        """,
                        (
                            user_id,
                            play.artist,
                            play.track,
                            play.album,
                            play.duration,
                            play.timestamp,
                        ),
                    ).fetchone()
                except errors.ForeignKeyViolation:
                    raise ConstraintViolation(
                        "user does not exist", {"user_id": user_id}
                    )
                created.append(self._scrobble_from_row(row))
        return created

    def recent_scrobbles(
        self, user_id: int, limit: int, before: Optional[datetime] = None
    ) -> List[Scrobble]:
        clauses = ["user_id = %s"]
        params: List[Any] = [user_id]
        if before is not None:
            clauses.append("timestamp < %s")
            params.append(before)
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT {_SCROBBLE_COLUMNS} FROM scrobs
                WHERE {' AND '.join(clauses)}
                ORDER BY timestamp DESC, id DESC
                LIMIT %s
                """,
                params,
            ).fetchall()
        return [self._scrobble_from_row(row) for row in rows]

    @staticmethod
    def _range_filter(
        user_id: int, start: Optional[datetime], end: Optional[datetime]
    ) -> tuple[str, List[Any]]:
        clauses = ["user_id = %s"]
        params: List[Any] = [user_id]
        if start is not None:
            clauses.append("timestamp >= %s")
            params.append(start)
        if end is not None:
            clauses.append("timestamp <= %s")
            params.append(end)
        return " AND ".join(clauses), params

    def top_artists(
        self,
        user_id: int,
        limit: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TopArtist]:
        where, params = self._range_filter(user_id, start, end)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT artist, COUNT(*) AS count FROM scrobs
                WHERE {where}
                GROUP BY artist
                ORDER BY count DESC, artist ASC
                LIMIT %s
                """,
                [*params, limit],
            ).fetchall()
        return [TopArtist(artist=row["artist"], count=row["count"]) for row in rows]

    def top_tracks(
        self,
        user_id: int,
        limit: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TopTrack]:
        where, params = self._range_filter(user_id, start, end)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT artist, track, COUNT(*) AS count FROM scrobs
                WHERE {where}
                GROUP BY artist, track
                ORDER BY count DESC, artist ASC, track ASC
                LIMIT %s
                """,
                [*params, limit],
            ).fetchall()
        return [
            TopTrack(artist=row["artist"], track=row["track"], count=row["count"])
            for row in rows
        ]

    def delete_scrobble(self, scrobble_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM scrobs WHERE id = %s", (scrobble_id,))
            return cur.rowcount > 0

    # admin reads -----------------------------------------------------------

    _SUMMARY_SQL = """
        SELECT u.id, u.username, u.password_hash, u.is_admin, u.is_private, u.created_at,
               COUNT(s.id) AS scrobble_count, MAX(s.timestamp) AS last_scrobble
        FROM users u
        LEFT JOIN scrobs s ON s.user_id = u.id
    """

    def _summary_from_row(self, row: Dict[str, Any]) -> UserSummary:
        return UserSummary(
            user=self._user_from_row(row),
            scrobble_count=row["scrobble_count"],
            last_scrobble=row.get("last_scrobble"),
        )

    def user_summary(self, user_id: int) -> Optional[UserSummary]:
        with self._connect() as conn:
            row = conn.execute(
                self._SUMMARY_SQL + " WHERE u.id = %s GROUP BY u.id", (user_id,)
            ).fetchone()
        return self._summary_from_row(row) if row else None

    def list_user_summaries(self) -> List[UserSummary]:
        with self._connect() as conn:
            rows = conn.execute(
                self._SUMMARY_SQL + " GROUP BY u.id ORDER BY u.created_at DESC, u.id DESC"
            ).fetchall()
        return [self._summary_from_row(row) for row in rows]

    def system_stats(self, top_n: int = 10) -> SystemStats:
        with self._connect() as conn:
            totals = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM users) AS total_users,
                    COUNT(*) AS total_scrobbles,
                    COUNT(DISTINCT artist) AS total_artists,
                    COUNT(DISTINCT (artist, track)) AS total_tracks
                FROM scrobs
                """
            ).fetchone()
            rows = conn.execute(
                """
                SELECT u.username, COUNT(s.id) AS scrobble_count
                FROM users u
                JOIN scrobs s ON s.user_id = u.id
                GROUP BY u.id, u.username
                HAVING COUNT(s.id) > 0
                ORDER BY scrobble_count DESC, u.username ASC
                LIMIT %s
                """,
                (top_n,),
            ).fetchall()
        return SystemStats(
            total_users=totals["total_users"],
            total_scrobbles=totals["total_scrobbles"],
            total_artists=totals["total_artists"],
            total_tracks=totals["total_tracks"],
            top_users=[
                TopUser(username=row["username"], scrobble_count=row["scrobble_count"])
                for row in rows
            ],
        )


__all__ = ["PostgresStore"]
