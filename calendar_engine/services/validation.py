"""Parsing helpers for identifiers and timestamps arriving as raw strings."""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from dateutil.parser import isoparse

from calendar_engine.domain.errors import ValidationError
from calendar_engine.domain.models import ensure_utc

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def parse_uuid(raw: str, field_name: str = "id") -> UUID:
    """Parse a canonical hyphenated UUID string or raise ValidationError."""
    if not isinstance(raw, str) or not _UUID_RE.match(raw):
        raise ValidationError(f"Invalid {field_name} format", field_name=field_name)
    return UUID(raw)


def parse_uuid_list(raw: Iterable[str], field_name: str = "ids") -> list[UUID]:
    """Parse ids given as repeated values and/or comma-separated lists, de-duplicated."""
    parsed: list[UUID] = []
    for chunk in raw:
        for piece in chunk.split(","):
            piece = piece.strip()
            if piece:
                parsed.append(parse_uuid(piece, field_name))
    return list(dict.fromkeys(parsed))


def parse_timestamp(raw: str, field_name: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    try:
        value = isoparse(raw)
    except (ValueError, OverflowError, TypeError) as exc:
        raise ValidationError(
            f"Invalid date format for {field_name}", field_name=field_name
        ) from exc
    return ensure_utc(value)


def parse_optional_timestamp(raw: str | None, field_name: str) -> datetime | None:
    if raw is None or raw == "":
        return None
    return parse_timestamp(raw, field_name)


def require_window(start: datetime, end: datetime) -> None:
    if end < start:
        raise ValidationError("end cannot be before start", field_name="end")
