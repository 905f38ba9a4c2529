"""Per-operation privilege checks.

``authorize`` is a pure decision over the resolved caller; ``require`` turns a
resolver result into the caller or the matching service error.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from scrob.service.errors import AuthenticationRequired, AuthorizationDenied
from scrob.service.identity import Identity, IdentityResult
from scrob.storage.models import User


@dataclass(frozen=True)
class AnyAuthenticated:
    pass


@dataclass(frozen=True)
class ResourceOwner:
    user_id: int


@dataclass(frozen=True)
class AdminOnly:
    pass


@dataclass(frozen=True)
class AdminNotSelf:
    target_user_id: int


Requirement = Union[AnyAuthenticated, ResourceOwner, AdminOnly, AdminNotSelf]


@dataclass(frozen=True)
class Allow:
    pass


@dataclass(frozen=True)
class Deny:
    reason: str
    authenticated: bool = True


Decision = Union[Allow, Deny]

NOT_AUTHENTICATED = "Authentication required"
NOT_OWNER = "Access denied"
NOT_ADMIN = "Admin access required"
SELF_ADMIN_ACTION = "Administrators cannot perform this action on themselves"


def authorize(user: Optional[User], required: Requirement) -> Decision:
    if user is None:
        return Deny(NOT_AUTHENTICATED, authenticated=False)
    if isinstance(required, AnyAuthenticated):
        return Allow()
    if isinstance(required, ResourceOwner):
        return Allow() if user.id == required.user_id else Deny(NOT_OWNER)
    if isinstance(required, AdminOnly):
        return Allow() if user.is_admin else Deny(NOT_ADMIN)
    if isinstance(required, AdminNotSelf):
        if not user.is_admin:
            return Deny(NOT_ADMIN)
        if user.id == required.target_user_id:
            return Deny(SELF_ADMIN_ACTION)
        return Allow()
    raise TypeError(f"unknown requirement: {required!r}")


def check(user: Optional[User], required: Requirement, *, reason: Optional[str] = None) -> User:
    """Return ``user`` when allowed, otherwise raise the matching error."""
    decision = authorize(user, required)
    if isinstance(decision, Deny):
        if not decision.authenticated:
            raise AuthenticationRequired()
        raise AuthorizationDenied(reason or decision.reason)
    return user


def require(result: IdentityResult, required: Requirement) -> User:
    """Resolve a request's identity against ``required``.

    Missing and invalid credentials both raise :class:`AuthenticationRequired`.
    """
    user = result.user if isinstance(result, Identity) else None
    return check(user, required)


__all__ = [
    "AnyAuthenticated",
    "ResourceOwner",
    "AdminOnly",
    "AdminNotSelf",
    "Requirement",
    "Allow",
    "Deny",
    "Decision",
    "authorize",
    "check",
    "require",
]
