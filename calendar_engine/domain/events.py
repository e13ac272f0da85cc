"""Domain events published after a scheduling command commits."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field

from calendar_engine.domain.models import AttendanceStatus, EventStatus


class EventCreated(BaseModel):
    """Fired when a new Event and its links are persisted."""

    event_id: UUID
    title: str
    attendee_ids: list[UUID] = Field(default_factory=list)


class EventUpdated(BaseModel):
    """Fired after an update commits; ``changes`` names the fields that moved."""

    event_id: UUID
    title: str
    changes: list[str]
    attendee_ids: list[UUID] = Field(default_factory=list)


class EventStatusChanged(BaseModel):
    event_id: UUID
    title: str
    previous: EventStatus
    current: EventStatus
    attendee_ids: list[UUID] = Field(default_factory=list)


class EventDeleted(BaseModel):
    """Carries the attendee list because the rows are already gone."""

    event_id: UUID
    title: str
    attendee_ids: list[UUID] = Field(default_factory=list)


class ParticipantAdded(BaseModel):
    event_id: UUID
    user_id: UUID
    status: AttendanceStatus


class ParticipantRemoved(BaseModel):
    event_id: UUID
    user_id: UUID


class ParticipantStatusChanged(BaseModel):
    event_id: UUID
    user_id: UUID
    status: AttendanceStatus
    absence_reason: str | None = None
