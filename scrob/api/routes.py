from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Path, Query, Request, Response

from scrob.api.schemas import (
    AdminUserListResponse,
    AdminUserResponse,
    AuthResponse,
    CredentialsRequest,
    Envelope,
    NowPlayingRequest,
    PrivacySettings,
    RevokeResponse,
    ScrobbleRequest,
    ScrobbleResponse,
    SetAdminRequest,
    SystemStatsResponse,
    TokenCreatedResponse,
    TokenCreateRequest,
    TokenResponse,
    TopArtistResponse,
    TopTrackResponse,
    UserResponse,
)
from scrob.logging import get_logger
from scrob.service.access import AdminOnly, AnyAuthenticated, require
from scrob.service.errors import AuthenticationRequired
from scrob.service.identity import (
    Identity,
    IdentityResult,
    InvalidCredential,
    extract_bearer,
)
from scrob.service.runtime import Runtime
from scrob.service.scrobbles import MAX_LIMIT
from scrob.storage.models import User

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


async def get_identity(
    runtime: Runtime = Depends(get_runtime),
    authorization: Optional[str] = Header(None),
) -> IdentityResult:
    return await runtime.identity.resolve(authorization)


async def get_user(identity: IdentityResult = Depends(get_identity)) -> User:
    return require(identity, AnyAuthenticated())


async def get_admin_user(identity: IdentityResult = Depends(get_identity)) -> User:
    return require(identity, AdminOnly())


async def get_optional_user(
    identity: IdentityResult = Depends(get_identity),
) -> Optional[User]:
    """Caller for routes open to anonymous readers.

    A presented but unknown or revoked token is still rejected.
    """
    if isinstance(identity, InvalidCredential):
        raise AuthenticationRequired()
    return identity.user if isinstance(identity, Identity) else None


# auth ---------------------------------------------------------------------


@router.post("/auth/signup", response_model=Envelope, status_code=201, tags=["auth"])
async def signup(body: CredentialsRequest, runtime: Runtime = Depends(get_runtime)):
    """Create an account and return its first session token.

    The first account created on an empty instance is an administrator.
    """
    user, token = await runtime.auth.signup(body.username, body.password)
    return Envelope(
        status="ok",
        data=AuthResponse(token=token, username=user.username, is_admin=user.is_admin),
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: CredentialsRequest, runtime: Runtime = Depends(get_runtime)):
    user, token = await runtime.auth.login(body.username, body.password)
    return Envelope(
        status="ok",
        data=AuthResponse(token=token, username=user.username, is_admin=user.is_admin),
    )


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(
    user: User = Depends(get_user),
    runtime: Runtime = Depends(get_runtime),
    authorization: Optional[str] = Header(None),
):
    """Revoke the token presented with this request. Other sessions stay active."""
    token = extract_bearer(authorization) or ""
    revoked = await runtime.auth.revoke_presented_token(user.id, token)
    return Envelope(status="ok", data=RevokeResponse(revoked=revoked))


@router.get("/me", response_model=Envelope, tags=["auth"])
async def me(user: User = Depends(get_user)):
    return Envelope(status="ok", data=UserResponse.from_user(user))


# tokens -------------------------------------------------------------------


@router.get("/tokens", response_model=Envelope, tags=["tokens"])
async def list_tokens(
    user: User = Depends(get_user), runtime: Runtime = Depends(get_runtime)
):
    records = await runtime.auth.list_tokens(user.id)
    return Envelope(
        status="ok", data={"items": [TokenResponse.from_token(r) for r in records]}
    )


@router.post("/tokens", response_model=Envelope, status_code=201, tags=["tokens"])
async def create_token(
    body: Optional[TokenCreateRequest] = None,
    user: User = Depends(get_user),
    runtime: Runtime = Depends(get_runtime),
):
    """Issue an API token for scrobbling clients.

    The raw token is part of this response only.
    """
    record, raw = await runtime.auth.issue_token(user.id, body.label if body else None)
    base = TokenResponse.from_token(record)
    return Envelope(
        status="ok", data=TokenCreatedResponse(**base.model_dump(), token=raw)
    )


@router.delete("/tokens/{token_id}", response_model=Envelope, tags=["tokens"])
async def revoke_token(
    token_id: int = Path(..., ge=1),
    user: User = Depends(get_user),
    runtime: Runtime = Depends(get_runtime),
):
    revoked = await runtime.auth.revoke_token(user.id, token_id)
    return Envelope(status="ok", data=RevokeResponse(revoked=revoked))


# settings -----------------------------------------------------------------


@router.get("/settings/privacy", response_model=Envelope, tags=["settings"])
async def get_privacy(user: User = Depends(get_user)):
    return Envelope(status="ok", data=PrivacySettings(is_private=user.is_private))


@router.put("/settings/privacy", response_model=Envelope, tags=["settings"])
async def update_privacy(
    body: PrivacySettings,
    user: User = Depends(get_user),
    runtime: Runtime = Depends(get_runtime),
):
    updated = await runtime.auth.set_privacy(user.id, body.is_private)
    return Envelope(status="ok", data=PrivacySettings(is_private=updated.is_private))


# scrobbles ----------------------------------------------------------------


@router.post("/now-playing", response_model=Envelope, tags=["scrobbles"])
async def now_playing(
    body: NowPlayingRequest,
    user: User = Depends(get_user),
    runtime: Runtime = Depends(get_runtime),
):
    runtime.scrobbles.now_playing(user, body.to_play())
    return Envelope(status="ok", data={"accepted": True})


@router.post("/scrobble", response_model=Envelope, tags=["scrobbles"])
async def scrobble(
    body: List[ScrobbleRequest],
    user: User = Depends(get_user),
    runtime: Runtime = Depends(get_runtime),
):
    created = await runtime.scrobbles.record(user, [item.to_play() for item in body])
    return Envelope(
        status="ok", data={"items": [ScrobbleResponse.from_scrobble(s) for s in created]}
    )


@router.get("/stats/recent", response_model=Envelope, tags=["stats"])
async def recent_scrobbles(
    limit: int = Query(20, ge=1, le=MAX_LIMIT),
    before: Optional[datetime] = Query(None),
    user: User = Depends(get_user),
    runtime: Runtime = Depends(get_runtime),
):
    rows = await runtime.scrobbles.recent(user.id, limit, before)
    return Envelope(
        status="ok", data={"items": [ScrobbleResponse.from_scrobble(s) for s in rows]}
    )


@router.get("/stats/top-artists", response_model=Envelope, tags=["stats"])
async def top_artists(
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    user: User = Depends(get_user),
    runtime: Runtime = Depends(get_runtime),
):
    rows = await runtime.scrobbles.top_artists(user.id, limit, start, end)
    return Envelope(
        status="ok",
        data={"items": [TopArtistResponse(name=r.artist, count=r.count) for r in rows]},
    )


@router.get("/stats/top-tracks", response_model=Envelope, tags=["stats"])
async def top_tracks(
    limit: int = Query(10, ge=1, le=MAX_LIMIT),
    start: Optional[datetime] = Query(None, alias="from"),
    end: Optional[datetime] = Query(None, alias="to"),
    user: User = Depends(get_user),
    runtime: Runtime = Depends(get_runtime),
):
    rows = await runtime.scrobbles.top_tracks(user.id, limit, start, end)
    return Envelope(
        status="ok",
        data={
            "items": [
                TopTrackResponse(artist=r.artist, track=r.track, count=r.count)
                for r in rows
            ]
        },
    )


@router.get("/users/{username}/recent", response_model=Envelope, tags=["stats"])
async def public_recent(
    username: str = Path(..., min_length=1, max_length=64),
    limit: int = Query(20, ge=1, le=MAX_LIMIT),
    viewer: Optional[User] = Depends(get_optional_user),
    runtime: Runtime = Depends(get_runtime),
):
    rows = await runtime.scrobbles.public_recent(viewer, username, limit)
    return Envelope(
        status="ok", data={"items": [ScrobbleResponse.from_scrobble(s) for s in rows]}
    )


# admin --------------------------------------------------------------------


@router.get("/admin/users", response_model=Envelope, tags=["admin"])
async def admin_list_users(
    admin: User = Depends(get_admin_user), runtime: Runtime = Depends(get_runtime)
):
    summaries = await runtime.scrobbles.list_users(admin)
    return Envelope(
        status="ok",
        data=AdminUserListResponse(
            items=[AdminUserResponse.from_summary(s) for s in summaries]
        ),
    )


@router.get("/admin/users/{user_id}", response_model=Envelope, tags=["admin"])
async def admin_get_user(
    user_id: int = Path(..., ge=1),
    admin: User = Depends(get_admin_user),
    runtime: Runtime = Depends(get_runtime),
):
    summary = await runtime.scrobbles.user_detail(admin, user_id)
    return Envelope(status="ok", data=AdminUserResponse.from_summary(summary))


@router.delete(
    "/admin/users/{user_id}", status_code=204, response_class=Response, tags=["admin"]
)
async def admin_delete_user(
    user_id: int = Path(..., ge=1),
    admin: User = Depends(get_admin_user),
    runtime: Runtime = Depends(get_runtime),
):
    await runtime.auth.delete_user(admin, user_id)
    return Response(status_code=204)


@router.put("/admin/users/{user_id}/admin", response_model=Envelope, tags=["admin"])
async def admin_set_admin(
    body: SetAdminRequest,
    user_id: int = Path(..., ge=1),
    admin: User = Depends(get_admin_user),
    runtime: Runtime = Depends(get_runtime),
):
    updated = await runtime.auth.set_admin(admin, user_id, body.is_admin)
    return Envelope(status="ok", data=UserResponse.from_user(updated))


@router.get("/admin/stats", response_model=Envelope, tags=["admin"])
async def admin_stats(
    admin: User = Depends(get_admin_user), runtime: Runtime = Depends(get_runtime)
):
    stats = await runtime.scrobbles.system_stats(admin)
    return Envelope(status="ok", data=SystemStatsResponse.from_stats(stats))


@router.delete(
    "/admin/scrobbles/{scrobble_id}",
    status_code=204,
    response_class=Response,
    tags=["admin"],
)
async def admin_delete_scrobble(
    scrobble_id: int = Path(..., ge=1),
    admin: User = Depends(get_admin_user),
    runtime: Runtime = Depends(get_runtime),
):
    await runtime.scrobbles.delete_scrobble(admin, scrobble_id)
    return Response(status_code=204)
