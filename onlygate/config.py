"""Environment-driven configuration via Pydantic settings."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core import NotInitializedError
from .engine import Registry
from .log import configure_logging
from .store import FileStore, MemoryStore, SqliteStore, Store


class Settings(BaseSettings):
    """Bootstrap values sourced from ONLYGATE_* environment variables."""

    app_id: str = Field(default="app", min_length=1)
    version: str | None = None
    debug: bool = False
    store: Literal["memory", "file", "sqlite"] = "file"
    storage_dir: Path = Path(".onlygate")
    log_format: Literal["json", "console"] = "json"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="ONLYGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def store_path(self) -> Path:
        suffix = ".sqlite3" if self.store == "sqlite" else ".json"
        return self.storage_dir / f"{self.app_id}{suffix}"


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


def build_store(settings: Settings) -> Store:
    if settings.store == "memory":
        return MemoryStore()
    settings.storage_dir.mkdir(parents=True, exist_ok=True)
    if settings.store == "sqlite":
        return SqliteStore(settings.store_path)
    return FileStore(settings.store_path)


def open_registry(settings: Settings | None = None, *, configure_logs: bool = True) -> Registry:
    """Build an initialized Registry from settings.

    Raises NotInitializedError if no version is configured.
    """
    settings = settings or get_settings()
    if settings.version is None:
        raise NotInitializedError("ONLYGATE_VERSION is not set")
    if configure_logs:
        configure_logging(settings.log_format, settings.log_level)

    registry = Registry(store=build_store(settings), debug=settings.debug)
    registry.initialize(settings.version, app_id=settings.app_id)
    return registry
