"""
Settings, read from PROPSYNC_* environment variables (and a `.env` file
when present).
"""

from __future__ import annotations

from typing import Literal

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PROPSYNC_", env_ignore_empty=True, extra="ignore"
    )

    database_url: str = "sqlite:///./propsync.db"
    # inline: sync before save() returns; queued: hand off to the DBOS queue
    sync_mode: Literal["inline", "queued"] = "inline"
    cross_tenant_sync: bool = Field(
        default=False,
        validation_alias=AliasChoices("cross_tenant_sync", "PROPSYNC_CROSS_TENANT"),
    )
    queue_name: str = "propsync_sync"
    queue_concurrency: int = Field(default=1, ge=1)
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()
        return cls()
