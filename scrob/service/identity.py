from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

from scrob.logging import get_logger
from scrob.storage.models import User

if TYPE_CHECKING:
    from scrob.service.auth import AuthService

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class NoCredential:
    """The request carried no usable Authorization header."""


@dataclass(frozen=True)
class InvalidCredential:
    """A well-formed bearer token that is unknown or revoked."""


@dataclass(frozen=True)
class Identity:
    user: User


IdentityResult = Union[NoCredential, InvalidCredential, Identity]


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header.

    The scheme is matched case-sensitively. Anything else, including an empty
    token after trimming, counts as no credential.
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


class RequestIdentityResolver:
    def __init__(self, auth: "AuthService") -> None:
        self.auth = auth

    async def resolve(self, authorization: Optional[str]) -> IdentityResult:
        token = extract_bearer(authorization)
        if token is None:
            return NoCredential()
        user = await self.auth.resolve(token)
        if user is None:
            logger.info("bearer_token_rejected")
            return InvalidCredential()
        return Identity(user=user)


__all__ = [
    "NoCredential",
    "InvalidCredential",
    "Identity",
    "IdentityResult",
    "extract_bearer",
    "RequestIdentityResolver",
]
