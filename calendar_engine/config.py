"""Runtime settings, read from the environment (and an optional .env file)."""

from __future__ import annotations

import os
from uuid import UUID

from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_ORGANIZATION_ID = "00000000-0000-4000-8000-000000000000"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_ids(name: str) -> list[str]:
    """Comma-separated ids; blanks are skipped and pydantic parses the rest."""
    raw = os.environ.get(name, "")
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseModel):
    database_url: str = "sqlite:///./calendar.db"
    database_echo: bool = False
    log_level: str = "INFO"
    default_organization_id: UUID = UUID(DEFAULT_ORGANIZATION_ID)
    max_availability_slots: int = Field(default=2000, gt=0)
    # Strict directories only accept the known ids below.
    strict_directory: bool = False
    known_user_ids: list[UUID] = Field(default_factory=list)
    known_team_ids: list[UUID] = Field(default_factory=list)

    @classmethod
    def from_env(cls) -> Settings:
        load_dotenv()
        return cls(
            database_url=os.environ.get("DATABASE_URL", "sqlite:///./calendar.db"),
            database_echo=_env_flag("DATABASE_ECHO", False),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            default_organization_id=os.environ.get(
                "DEFAULT_ORGANIZATION_ID", DEFAULT_ORGANIZATION_ID
            ),
            max_availability_slots=int(os.environ.get("MAX_AVAILABILITY_SLOTS", "2000")),
            strict_directory=_env_flag("STRICT_DIRECTORY", False),
            known_user_ids=_env_ids("KNOWN_USER_IDS"),
            known_team_ids=_env_ids("KNOWN_TEAM_IDS"),
        )
