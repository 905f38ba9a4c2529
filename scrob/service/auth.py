from __future__ import annotations

import asyncio
import re
import secrets
from typing import Any, Callable, List, Optional, Protocol, Tuple

from scrob.logging import get_logger
from scrob.service.access import AdminNotSelf, check
from scrob.service.errors import (
    AuthorizationDenied,
    ConflictError,
    InvalidCredentials,
    NotFoundError,
    StorageError,
    ValidationError,
)
from scrob.service.passwords import PasswordCodec
from scrob.service.tokens import generate_token
from scrob.storage.errors import ConstraintViolation, StorageUnavailable
from scrob.storage.models import ApiToken, User, utcnow

logger = get_logger(__name__)

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20
PASSWORD_MIN_BYTES = 8
# argon2 itself has no limit; 72 keeps parity with bcrypt-era clients
PASSWORD_MAX_BYTES = 72

SESSION_LABEL = "session"

_USERNAME_RE = re.compile(r"[A-Za-z0-9_]+")

USERNAME_LENGTH_MESSAGE = "Username must be between 3 and 20 characters"
USERNAME_CHARSET_MESSAGE = "Username can only contain letters, numbers, and underscores"
PASSWORD_SHORT_MESSAGE = "Password must be at least 8 characters"
PASSWORD_LONG_MESSAGE = "Password must be at most 72 characters"
PASSWORD_COMPLEXITY_MESSAGE = (
    "Password must contain at least one lowercase letter, one uppercase letter, "
    "and one number"
)
USERNAME_TAKEN_MESSAGE = "Username already exists"


class AuthStore(Protocol):
    def get_user(self, user_id: int) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def create_user(
        self, username: str, password_hash: str, *, is_admin: Optional[bool] = None
    ) -> User: ...

    def set_user_privacy(self, user_id: int, is_private: bool) -> Optional[User]: ...

    def set_user_admin(self, user_id: int, is_admin: bool) -> Optional[User]: ...

    def delete_user(self, user_id: int) -> bool: ...

    def create_token(
        self, user_id: int, token: str, label: Optional[str] = None
    ) -> ApiToken: ...

    def get_active_token_owner(self, token: str) -> Optional[int]: ...

    def touch_token(self, token: str, used_at: Any) -> None: ...

    def list_tokens(self, user_id: int) -> List[ApiToken]: ...

    def revoke_token(self, token_id: int, user_id: int) -> bool: ...

    def revoke_token_value(self, token: str, user_id: int) -> bool: ...


def validate_username(username: str) -> None:
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise ValidationError(USERNAME_LENGTH_MESSAGE, detail={"field": "username"})
    if not _USERNAME_RE.fullmatch(username):
        raise ValidationError(USERNAME_CHARSET_MESSAGE, detail={"field": "username"})


def validate_password(password: str) -> None:
    """Length is counted in UTF-8 bytes, the unit the hash actually consumes."""
    size = len(password.encode("utf-8"))
    if size < PASSWORD_MIN_BYTES:
        raise ValidationError(PASSWORD_SHORT_MESSAGE, detail={"field": "password"})
    if size > PASSWORD_MAX_BYTES:
        raise ValidationError(PASSWORD_LONG_MESSAGE, detail={"field": "password"})
    if not (
        any(c.islower() for c in password)
        and any(c.isupper() for c in password)
        and any(c.isdigit() for c in password)
    ):
        raise ValidationError(PASSWORD_COMPLEXITY_MESSAGE, detail={"field": "password"})


class AuthService:
    """Account creation, login, and bearer token lifecycle.

    Store calls and password hashing are blocking, so every one of them runs
    in a worker thread. Nothing about users or tokens is cached here: each
    ``resolve`` reads the store, which makes revocation visible immediately.
    """

    def __init__(self, store: AuthStore, passwords: PasswordCodec) -> None:
        self.store: AuthStore = store
        self.passwords = passwords
        # Built once up front so an unknown-user login costs exactly one verify
        self._dummy_hash = passwords.hash(secrets.token_urlsafe(16))

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except ConstraintViolation as exc:
            raise ConflictError(exc.message, detail=exc.detail) from exc
        except StorageUnavailable as exc:
            logger.error(
                "auth_storage_failed",
                operation=getattr(func, "__name__", repr(func)),
                error=exc.message,
            )
            raise StorageError() from exc

    async def _issue(self, user_id: int, label: Optional[str]) -> Tuple[ApiToken, str]:
        raw = generate_token()
        record = await self._call(self.store.create_token, user_id, raw, label)
        return record, raw

    async def signup(self, username: str, password: str) -> Tuple[User, str]:
        validate_username(username)
        validate_password(password)
        # Fast path only; the unique constraint is what actually guards the name
        existing = await self._call(self.store.get_user_by_username, username)
        if existing:
            raise ConflictError(USERNAME_TAKEN_MESSAGE, detail={"field": "username"})
        pwd_hash = await asyncio.to_thread(self.passwords.hash, password)
        try:
            user = await self._call(self.store.create_user, username, pwd_hash)
        except ConflictError as exc:
            raise ConflictError(USERNAME_TAKEN_MESSAGE, detail={"field": "username"}) from exc
        _, raw = await self._issue(user.id, SESSION_LABEL)
        logger.info("user_signed_up", user_id=user.id, is_admin=user.is_admin)
        return user, raw

    async def login(
        self, username: str, password: str, *, label: str = SESSION_LABEL
    ) -> Tuple[User, str]:
        """Verify credentials and issue a new token. Existing tokens stay valid."""
        user = await self._call(self.store.get_user_by_username, username)
        if user is None:
            # Spend the same hashing work as a real check before failing
            await asyncio.to_thread(self.passwords.verify, password, self._dummy_hash)
            logger.info("login_failed", reason="unknown_user")
            raise InvalidCredentials()
        ok = await asyncio.to_thread(self.passwords.verify, password, user.password_hash)
        if not ok:
            logger.info("login_failed", reason="bad_password", user_id=user.id)
            raise InvalidCredentials()
        _, raw = await self._issue(user.id, label)
        logger.info("user_logged_in", user_id=user.id, label=label)
        return user, raw

    async def create_user(
        self, username: str, password: str, *, is_admin: Optional[bool] = None
    ) -> User:
        """Create an account without issuing a token (operator tooling)."""
        validate_username(username)
        validate_password(password)
        pwd_hash = await asyncio.to_thread(self.passwords.hash, password)
        try:
            user = await self._call(
                self.store.create_user, username, pwd_hash, is_admin=is_admin
            )
        except ConflictError as exc:
            raise ConflictError(USERNAME_TAKEN_MESSAGE, detail={"field": "username"}) from exc
        logger.info("user_created", user_id=user.id, is_admin=user.is_admin)
        return user

    async def issue_token(
        self, user_id: int, label: Optional[str] = None
    ) -> Tuple[ApiToken, str]:
        record, raw = await self._issue(user_id, label)
        logger.info("token_issued", user_id=user_id, token_id=record.id, label=label)
        return record, raw

    async def list_tokens(self, user_id: int) -> List[ApiToken]:
        return await self._call(self.store.list_tokens, user_id)

    async def revoke_token(self, user_id: int, token_id: int) -> bool:
        """Revoke one of the caller's tokens.

        Returns False when the token is missing, belongs to someone else, or is
        already revoked; callers cannot tell these apart.
        """
        revoked = await self._call(self.store.revoke_token, token_id, user_id)
        if revoked:
            logger.info("token_revoked", user_id=user_id, token_id=token_id)
        return revoked

    async def revoke_presented_token(self, user_id: int, token: str) -> bool:
        revoked = await self._call(self.store.revoke_token_value, token, user_id)
        if revoked:
            logger.info("user_logged_out", user_id=user_id)
        return revoked

    async def resolve(self, token: str) -> Optional[User]:
        if not token:
            return None
        user_id = await self._call(self.store.get_active_token_owner, token)
        if user_id is None:
            return None
        try:
            await asyncio.to_thread(self.store.touch_token, token, utcnow())
        except StorageUnavailable as exc:
            logger.warning("token_touch_failed", user_id=user_id, error=exc.message)
        return await self._call(self.store.get_user, user_id)

    async def get_user(self, user_id: int) -> User:
        user = await self._call(self.store.get_user, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    async def set_privacy(self, user_id: int, is_private: bool) -> User:
        user = await self._call(self.store.set_user_privacy, user_id, is_private)
        if not user:
            raise NotFoundError("User not found")
        logger.info("privacy_updated", user_id=user_id, is_private=is_private)
        return user

    @staticmethod
    def _guard_admin_action(actor: Optional[User], target_user_id: int, message: str) -> User:
        if actor is not None and actor.is_admin and actor.id == target_user_id:
            raise AuthorizationDenied(message)
        return check(actor, AdminNotSelf(target_user_id))

    async def set_admin(
        self, actor: Optional[User], target_user_id: int, is_admin: bool
    ) -> User:
        admin = self._guard_admin_action(
            actor, target_user_id, "Cannot change your own admin status"
        )
        user = await self._call(self.store.set_user_admin, target_user_id, is_admin)
        if not user:
            raise NotFoundError("User not found")
        logger.info(
            "admin_flag_changed",
            actor_id=admin.id,
            target_user_id=target_user_id,
            is_admin=is_admin,
        )
        return user

    async def delete_user(self, actor: Optional[User], target_user_id: int) -> None:
        admin = self._guard_admin_action(actor, target_user_id, "Cannot delete yourself")
        deleted = await self._call(self.store.delete_user, target_user_id)
        if not deleted:
            raise NotFoundError("User not found")
        logger.info("user_deleted", actor_id=admin.id, target_user_id=target_user_id)


__all__ = [
    "AuthStore",
    "AuthService",
    "validate_username",
    "validate_password",
    "SESSION_LABEL",
]
