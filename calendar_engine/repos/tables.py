"""SQLModel table definitions (persistence layer).

Domain objects live in calendar_engine/domain/models.py; the stores convert
between the two.
"""

from datetime import date, datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel

from calendar_engine.domain.models import utcnow


class UTCDateTime(TypeDecorator):
    """Timestamps go in as UTC and always come back timezone-aware.

    SQLite has no timezone support, so values are stored there as naive UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class LocationRow(SQLModel, table=True):
    __tablename__ = "locations"
    __table_args__ = (UniqueConstraint("organization_id", "name", name="uq_location_name"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(index=True)
    name: str
    description: str | None = None


class ResourceTypeRow(SQLModel, table=True):
    __tablename__ = "resource_types"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_resource_type_name"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(index=True)
    name: str
    description: str | None = None


class ResourceRow(SQLModel, table=True):
    __tablename__ = "resources"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(index=True)
    resource_type_id: UUID = Field(foreign_key="resource_types.id", ondelete="RESTRICT")
    # Referenced by id only; removing a location does not touch its resources.
    location_id: UUID = Field(index=True)
    name: str
    capacity: int | None = None
    is_bookable: bool = True


class EventRow(SQLModel, table=True):
    __tablename__ = "events"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(index=True)
    title: str
    description: str | None = None
    event_type: str
    status: str = Field(index=True)
    start_time: datetime = Field(sa_column=Column(UTCDateTime, nullable=False, index=True))
    end_time: datetime = Field(sa_column=Column(UTCDateTime, nullable=False, index=True))
    is_all_day: bool = False
    location_id: UUID | None = Field(
        default=None, foreign_key="locations.id", ondelete="RESTRICT", index=True
    )
    repetition: str | None = None
    repetition_end_date: date | None = None
    parent_id: UUID | None = Field(default=None, foreign_key="events.id", ondelete="RESTRICT")
    training_session_id: UUID | None = None
    game_id: UUID | None = None
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False)
    )


class EventTeamRow(SQLModel, table=True):
    __tablename__ = "event_teams"

    event_id: UUID = Field(foreign_key="events.id", ondelete="CASCADE", primary_key=True)
    team_id: UUID = Field(primary_key=True, index=True)


class EventResourceRow(SQLModel, table=True):
    __tablename__ = "event_resources"

    event_id: UUID = Field(foreign_key="events.id", ondelete="CASCADE", primary_key=True)
    resource_id: UUID = Field(
        foreign_key="resources.id", ondelete="RESTRICT", primary_key=True, index=True
    )


class EventAttendeeRow(SQLModel, table=True):
    __tablename__ = "event_attendees"

    event_id: UUID = Field(foreign_key="events.id", ondelete="CASCADE", primary_key=True)
    user_id: UUID = Field(primary_key=True)
    status: str
    absence_reason: str | None = None
