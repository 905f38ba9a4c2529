from __future__ import annotations

from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from scrob.config import Settings, get_settings
from scrob.logging import get_logger
from scrob.service.auth import AuthService
from scrob.service.identity import RequestIdentityResolver
from scrob.service.passwords import PasswordCodec
from scrob.service.scrobbles import ScrobbleService
from scrob.storage.memory import MemoryStore
from scrob.storage.postgres import PostgresStore

logger = get_logger(__name__)

Store = Union[MemoryStore, PostgresStore]


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of a DSN with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


def build_store(settings: Settings) -> Store:
    store_type = "memory" if settings.use_memory_store else "postgres"
    try:
        if settings.use_memory_store:
            store: Store = MemoryStore()
        else:
            store = PostgresStore(
                settings.database_url,
                min_size=settings.db_pool_min_size,
                max_size=settings.db_pool_max_size,
            )
    except Exception as exc:
        logger.error(
            "runtime_store_init_failed",
            store_type=store_type,
            database_url=_mask_url_password(settings.database_url),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        raise
    logger.info("runtime_store_initialized", store_type=store_type)
    return store


class Runtime:
    """Service wiring for one application instance.

    Built explicitly and handed to ``create_app``; nothing here is global.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[Store] = None,
        passwords: Optional[PasswordCodec] = None,
    ) -> None:
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )
        self.store = store if store is not None else build_store(self.settings)
        self.passwords = passwords or PasswordCodec.from_settings(self.settings)
        self.auth = AuthService(self.store, self.passwords)
        self.identity = RequestIdentityResolver(self.auth)
        self.scrobbles = ScrobbleService(
            self.store, max_batch=self.settings.max_scrobble_batch
        )

    def close(self) -> None:
        self.store.close()
        logger.info("runtime_closed")


__all__ = ["Runtime", "build_store"]
