"""Tests for id/timestamp parsing and settings."""

from datetime import datetime, timezone
from uuid import UUID

import pytest

from calendar_engine.config import Settings
from calendar_engine.domain.errors import ValidationError
from calendar_engine.services.validation import (
    parse_optional_timestamp,
    parse_timestamp,
    parse_uuid,
    parse_uuid_list,
)

A = "3f2b8c1e-9d4a-4b6f-8e2d-1a7c5b9e0f31"
B = "7c1d2e3f-4a5b-4c6d-9e7f-8a9b0c1d2e3f"


def test_parse_uuid_accepts_canonical_form():
    assert parse_uuid(A) == UUID(A)
    assert parse_uuid(A.upper()) == UUID(A)


@pytest.mark.parametrize("raw", ["", "123", A.replace("-", ""), "{" + A + "}", A + "0"])
def test_parse_uuid_rejects_other_forms(raw):
    with pytest.raises(ValidationError) as exc_info:
        parse_uuid(raw, "event id")
    assert exc_info.value.details == {"field": "event id"}


def test_parse_uuid_list_splits_and_dedupes():
    assert parse_uuid_list([f"{A},{B}", A, " "]) == [UUID(A), UUID(B)]


def test_parse_timestamp_normalizes_to_utc():
    assert parse_timestamp("2030-03-01T10:00:00+02:00", "start") == datetime(
        2030, 3, 1, 8, 0, tzinfo=timezone.utc
    )
    assert parse_timestamp("2030-03-01T10:00:00", "start").tzinfo == timezone.utc
    assert parse_timestamp("2030-03-01T10:00:00Z", "start").hour == 10


def test_parse_timestamp_rejects_garbage():
    with pytest.raises(ValidationError):
        parse_timestamp("next tuesday", "start")


def test_parse_optional_timestamp():
    assert parse_optional_timestamp(None, "start") is None
    assert parse_optional_timestamp("", "start") is None


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///tmp.db")
    monkeypatch.setenv("DATABASE_ECHO", "yes")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("MAX_AVAILABILITY_SLOTS", "96")
    monkeypatch.setenv("STRICT_DIRECTORY", "false")
    monkeypatch.setenv("DEFAULT_ORGANIZATION_ID", A)

    settings = Settings.from_env()
    assert settings.database_url == "sqlite:///tmp.db"
    assert settings.database_echo is True
    assert settings.log_level == "DEBUG"
    assert settings.max_availability_slots == 96
    assert settings.strict_directory is False
    assert settings.default_organization_id == UUID(A)


def test_settings_directory_defaults(monkeypatch):
    monkeypatch.delenv("STRICT_DIRECTORY", raising=False)
    monkeypatch.delenv("KNOWN_USER_IDS", raising=False)
    monkeypatch.delenv("KNOWN_TEAM_IDS", raising=False)
    settings = Settings.from_env()
    assert settings.strict_directory is False
    assert settings.known_user_ids == []
    assert settings.known_team_ids == []


def test_settings_known_ids(monkeypatch):
    monkeypatch.setenv("STRICT_DIRECTORY", "true")
    monkeypatch.setenv("KNOWN_USER_IDS", f"{A}, {B},")
    monkeypatch.setenv("KNOWN_TEAM_IDS", B)
    settings = Settings.from_env()
    assert settings.strict_directory is True
    assert settings.known_user_ids == [UUID(A), UUID(B)]
    assert settings.known_team_ids == [UUID(B)]
