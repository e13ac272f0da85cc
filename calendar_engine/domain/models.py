"""Domain models for the scheduling and conflict-detection engine."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import StrEnum
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


class EventType(StrEnum):
    ICE_TRAINING = "ice-training"
    PHYSICAL_TRAINING = "physical-training"
    GAME = "game"
    MEETING = "meeting"
    MEDICAL = "medical"
    TRAVEL = "travel"
    OTHER = "other"


class EventStatus(StrEnum):
    SCHEDULED = "scheduled"
    CANCELED = "canceled"
    COMPLETED = "completed"


class AttendanceStatus(StrEnum):
    INVITED = "invited"
    ATTENDING = "attending"
    ABSENT = "absent"
    MAYBE = "maybe"


class RepetitionKind(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ConflictReason(StrEnum):
    RESOURCE = "resource"
    TEAM = "team"
    LOCATION = "location"


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Catalog records (referenced by id from events)
# ---------------------------------------------------------------------------


class Location(BaseModel):
    id: UUID
    organization_id: UUID
    name: str
    description: str | None = None


class ResourceType(BaseModel):
    id: UUID
    organization_id: UUID
    name: str
    description: str | None = None


class Resource(BaseModel):
    id: UUID
    organization_id: UUID
    resource_type_id: UUID
    location_id: UUID
    name: str
    capacity: int | None = None
    is_bookable: bool = True


# ---------------------------------------------------------------------------
# Events and their links
# ---------------------------------------------------------------------------


class Repetition(BaseModel):
    """Stored as-is. Occurrences are never expanded from it."""

    kind: RepetitionKind
    end_date: date | None = None


class EventResourceLink(BaseModel):
    event_id: UUID
    resource_id: UUID


class EventAttendee(BaseModel):
    event_id: UUID
    user_id: UUID
    status: AttendanceStatus = AttendanceStatus.INVITED
    absence_reason: str | None = None


class NewEvent(BaseModel):
    """Scalar fields of an event about to be inserted."""

    organization_id: UUID
    team_ids: list[UUID] = Field(default_factory=list)
    title: str
    description: str | None = None
    event_type: EventType
    status: EventStatus = EventStatus.SCHEDULED
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    location_id: UUID | None = None
    repetition: Repetition | None = None
    parent_id: UUID | None = None
    training_session_id: UUID | None = None
    game_id: UUID | None = None

    @model_validator(mode="after")
    def _end_not_before_start(self) -> NewEvent:
        if self.end_time < self.start_time:
            raise ValueError("end_time cannot be before start_time")
        return self


class Event(NewEvent):
    id: UUID
    resources: list[EventResourceLink] = Field(default_factory=list)
    attendees: list[EventAttendee] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @computed_field
    @property
    def resource_ids(self) -> list[UUID]:
        return [link.resource_id for link in self.resources]

    @property
    def attendee_ids(self) -> list[UUID]:
        return [attendee.user_id for attendee in self.attendees]


class EventFilter(BaseModel):
    organization_id: UUID | None = None
    start: datetime | None = None
    end: datetime | None = None
    team_id: UUID | None = None
    attendee_id: UUID | None = None
    event_type: EventType | None = None
    location_id: UUID | None = None
    status: EventStatus | None = None
    search: str | None = None
    exclude_canceled: bool = False
    limit: int | None = Field(default=None, gt=0)
    offset: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Conflicts and availability
# ---------------------------------------------------------------------------


class ConflictQuery(BaseModel):
    start_time: datetime
    end_time: datetime
    organization_id: UUID | None = None
    resource_ids: list[UUID] = Field(default_factory=list)
    team_ids: list[UUID] = Field(default_factory=list)
    location_id: UUID | None = None
    exclude_event_id: UUID | None = None


class ConflictingEvent(BaseModel):
    id: UUID
    title: str
    start_time: datetime
    end_time: datetime
    event_type: EventType
    conflict_reason: ConflictReason
    conflict_identifier: UUID


class ResourceAvailability(BaseModel):
    available: bool
    conflicts: list[ConflictingEvent] = Field(default_factory=list)


class ResourceAvailabilityEntry(BaseModel):
    id: UUID
    available: bool


class AvailabilitySlot(BaseModel):
    start: datetime
    end: datetime
    unavailable_resource_ids: list[UUID] = Field(
        default_factory=list, serialization_alias="unavailableResourceIds"
    )


class BulkAvailability(BaseModel):
    resources: list[ResourceAvailabilityEntry]
    slots: list[AvailabilitySlot] | None = None


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class NotificationKind(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    STATUS_CHANGED = "status_changed"
    CANCELED = "canceled"
    DELETED = "deleted"
    PARTICIPANT_ADDED = "participant_added"
    PARTICIPANT_REMOVED = "participant_removed"
    PARTICIPANT_STATUS_CHANGED = "participant_status_changed"


class Notification(BaseModel):
    id: UUID
    event_id: UUID
    kind: NotificationKind
    recipients: list[UUID] = Field(default_factory=list)
    payload: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Request DTOs
# ---------------------------------------------------------------------------


class RequestModel(BaseModel):
    """Request bodies use camelCase keys; snake_case names are accepted too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _Timestamps(RequestModel):
    @field_validator("start_time", "end_time", mode="after", check_fields=False)
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None


class CreateEventRequest(_Timestamps):
    title: str
    description: str | None = None
    event_type: EventType
    status: EventStatus = EventStatus.SCHEDULED
    start_time: datetime
    end_time: datetime
    is_all_day: bool = False
    location_id: UUID | None = None
    team_id: UUID | None = None
    team_ids: list[UUID] | None = None
    resource_ids: list[UUID] | None = None
    repetition: Repetition | None = None
    parent_id: UUID | None = None
    training_session_id: UUID | None = None
    game_id: UUID | None = None


class UpdateEventRequest(_Timestamps):
    """Every field is optional; only the keys present in the body are applied."""

    title: str | None = None
    description: str | None = None
    event_type: EventType | None = None
    status: EventStatus | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    is_all_day: bool | None = None
    location_id: UUID | None = None
    team_id: UUID | None = None
    team_ids: list[UUID] | None = None
    resource_ids: list[UUID] | None = None
    repetition: Repetition | None = None
    parent_id: UUID | None = None
    training_session_id: UUID | None = None
    game_id: UUID | None = None


class StatusUpdateRequest(RequestModel):
    status: EventStatus


class AddParticipantRequest(RequestModel):
    user_id: UUID
    status: AttendanceStatus = AttendanceStatus.INVITED
    absence_reason: str | None = None


class BulkAddParticipantsRequest(RequestModel):
    participants: list[AddParticipantRequest] = Field(min_length=1)


class UpdateParticipantRequest(RequestModel):
    status: AttendanceStatus
    absence_reason: str | None = None


class CheckConflictsRequest(_Timestamps):
    start_time: datetime
    end_time: datetime
    resource_ids: list[UUID] = Field(default_factory=list)
    team_id: UUID | None = None
    team_ids: list[UUID] = Field(default_factory=list)
    location_id: UUID | None = None
    exclude_event_id: UUID | None = None


class CreateLocationRequest(RequestModel):
    name: str
    description: str | None = None


class CreateResourceTypeRequest(RequestModel):
    name: str
    description: str | None = None


class CreateResourceRequest(RequestModel):
    name: str
    resource_type_id: UUID
    location_id: UUID
    capacity: int | None = Field(default=None, ge=0)
    is_bookable: bool = True
