from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process settings read from the environment and an optional .env file."""

    database_url: str = env_field(
        "postgresql://localhost:5432/scrob", "DATABASE_URL"
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    test_mode: bool = env_field(False, "TEST_MODE")

    host: str = env_field("127.0.0.1", "HOST")
    port: int = env_field(3000, "PORT", ge=1, le=65535)

    db_pool_min_size: int = env_field(
        1,
        "DB_POOL_MIN_SIZE",
        ge=0,
        description="Connections kept open by the Postgres pool",
    )
    db_pool_max_size: int = env_field(
        10,
        "DB_POOL_MAX_SIZE",
        ge=1,
        description="Upper bound on concurrent Postgres connections",
    )

    # argon2id work factor; lower these only for tests
    password_hash_time_cost: int = env_field(2, "PASSWORD_HASH_TIME_COST", ge=1)
    password_hash_memory_cost: int = env_field(
        19456, "PASSWORD_HASH_MEMORY_COST", ge=8, description="KiB"
    )
    password_hash_parallelism: int = env_field(1, "PASSWORD_HASH_PARALLELISM", ge=1)

    max_scrobble_batch: int = env_field(50, "MAX_SCROBBLE_BATCH", ge=1)

    cors_allow_origins: list[str] = env_field(
        ["http://localhost:5173"],
        "CORS_ALLOW_ORIGINS",
        description="Comma separated list of allowed browser origins",
    )
    cors_allow_credentials: bool = env_field(False, "CORS_ALLOW_CREDENTIALS")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("db_pool_max_size")
    @classmethod
    def _pool_bounds(cls, value: int, info) -> int:
        min_size = info.data.get("db_pool_min_size", 0)
        if value < min_size:
            raise ValueError("DB_POOL_MAX_SIZE must be >= DB_POOL_MIN_SIZE")
        return value


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
