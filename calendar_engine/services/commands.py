"""Event command handlers: all scheduling business rules live here.

Handlers:
- Validate input and referenced entities before touching the store
- Run the conflict check and the write in one locked transaction
- Map store constraint violations to domain errors
- Publish domain events once the write has committed
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from calendar_engine.domain.bus import EventBus
from calendar_engine.domain.errors import (
    ConflictError,
    DomainError,
    ErrorCode,
    EventConflictError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from calendar_engine.domain.events import (
    EventCreated,
    EventDeleted,
    EventStatusChanged,
    EventUpdated,
    ParticipantAdded,
    ParticipantRemoved,
    ParticipantStatusChanged,
)
from calendar_engine.domain.models import (
    AddParticipantRequest,
    BulkAddParticipantsRequest,
    CheckConflictsRequest,
    ConflictingEvent,
    ConflictQuery,
    CreateEventRequest,
    CreateLocationRequest,
    CreateResourceRequest,
    CreateResourceTypeRequest,
    Event,
    EventAttendee,
    EventFilter,
    EventStatus,
    Location,
    NewEvent,
    Resource,
    ResourceType,
    UpdateEventRequest,
    UpdateParticipantRequest,
    ensure_utc,
    utcnow,
)
from calendar_engine.repos.catalog import CatalogStore
from calendar_engine.repos.database import Database
from calendar_engine.repos.events import EventStore
from calendar_engine.repos.memory import TeamDirectory, UserDirectory
from calendar_engine.services.conflicts import ConflictDetector
from calendar_engine.services.locking import booking_keys

logger = logging.getLogger(__name__)

# Fields compared when reporting what an update changed.
_TRACKED_FIELDS = ("title", "description", "start_time", "end_time", "location_id")

# Attempts at locking a footprint that keeps moving under a concurrent update.
_MAX_LOCK_ATTEMPTS = 3


@contextmanager
def translate_store_errors(
    on_integrity: Callable[[IntegrityError], DomainError],
) -> Iterator[None]:
    """Turn constraint violations into domain errors and anything else into InternalError."""
    try:
        yield
    except IntegrityError as exc:
        raise on_integrity(exc) from exc
    except SQLAlchemyError as exc:
        logger.exception("Unexpected store failure")
        raise InternalError() from exc


def _reference_conflict(_: IntegrityError) -> DomainError:
    return ConflictError(
        "Referenced records changed while saving the event",
        code=ErrorCode.REFERENCE_CONFLICT,
    )


def _internal(_: IntegrityError) -> DomainError:
    logger.exception("Unexpected constraint violation")
    return InternalError()


def _merge_teams(team_id: UUID | None, team_ids: Iterable[UUID] | None) -> list[UUID]:
    merged = list(team_ids or [])
    if team_id is not None:
        merged.insert(0, team_id)
    return list(dict.fromkeys(merged))


def _require_title(title: str | None) -> str:
    if title is None or not title.strip():
        raise ValidationError("title is required", field_name="title")
    return title.strip()


def _merged_window(
    event: Event, request: UpdateEventRequest, provided: set[str]
) -> tuple[datetime, datetime]:
    start = request.start_time if "start_time" in provided else event.start_time
    end = request.end_time if "end_time" in provided else event.end_time
    if end < start:
        raise ValidationError("endTime cannot be before startTime", field_name="endTime")
    return start, end


def _footprint(
    event: Event,
    request: UpdateEventRequest,
    provided: set[str],
    new_resources: list[UUID] | None,
    new_teams: list[UUID] | None,
) -> tuple[list[UUID], list[UUID], UUID | None]:
    """Resources, teams and location the event holds once the patch is applied."""
    resources = new_resources if new_resources is not None else event.resource_ids
    teams = new_teams if new_teams is not None else event.team_ids
    location = request.location_id if "location_id" in provided else event.location_id
    return resources, teams, location


class EventCommands:
    """Create, update, delete, status and participant operations on events."""

    def __init__(
        self,
        database: Database,
        store: EventStore,
        catalog: CatalogStore,
        detector: ConflictDetector,
        users: UserDirectory,
        teams: TeamDirectory,
        bus: EventBus,
    ) -> None:
        self._database = database
        self._store = store
        self._catalog = catalog
        self._detector = detector
        self._users = users
        self._teams = teams
        self._bus = bus

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_events(self, filters: EventFilter) -> list[Event]:
        if filters.start and filters.end and filters.end < filters.start:
            raise ValidationError("end cannot be before start", field_name="end")
        with translate_store_errors(_internal):
            return self._store.find_all(filters)

    def get_event(self, event_id: UUID, organization_id: UUID | None = None) -> Event:
        """Return an event with its links.

        Raises:
            NotFoundError: If the event does not exist (or belongs to another tenant).
        """
        with translate_store_errors(_internal):
            event = self._store.find_by_id(event_id)
        if event is None or (
            organization_id is not None and event.organization_id != organization_id
        ):
            raise NotFoundError("Event", event_id)
        return event

    def check_conflicts(
        self, request: CheckConflictsRequest, organization_id: UUID | None = None
    ) -> list[ConflictingEvent]:
        """Dry run of the detector; nothing is locked or written.

        With an organization, referenced resources and location must belong to
        it and only that organization's events are reported.
        """
        if request.end_time < request.start_time:
            raise ValidationError("endTime cannot be before startTime", field_name="endTime")
        resource_ids = list(dict.fromkeys(request.resource_ids))
        if organization_id is not None:
            self._validate_references(
                organization_id,
                location_id=request.location_id,
                resource_ids=resource_ids,
                team_ids=[],
                parent_id=None,
            )
        query = ConflictQuery(
            start_time=request.start_time,
            end_time=request.end_time,
            resource_ids=resource_ids,
            team_ids=_merge_teams(request.team_id, request.team_ids),
            location_id=request.location_id,
            exclude_event_id=request.exclude_event_id,
            organization_id=organization_id,
        )
        with translate_store_errors(_internal):
            return self._detector.find_conflicts(query)

    def upcoming_events(
        self,
        organization_id: UUID,
        user_id: UUID,
        days: int = 7,
        *,
        limit: int | None = None,
        offset: int = 0,
        now: datetime | None = None,
    ) -> list[Event]:
        """Live events the user attends that overlap the next ``days`` days."""
        if days < 1 or days > 366:
            raise ValidationError("days must be between 1 and 366", field_name="days")
        start = ensure_utc(now) if now is not None else utcnow()
        filters = EventFilter(
            organization_id=organization_id,
            start=start,
            end=start + timedelta(days=days),
            attendee_id=user_id,
            exclude_canceled=True,
            limit=limit,
            offset=offset,
        )
        with translate_store_errors(_internal):
            return self._store.find_all(filters)

    # ------------------------------------------------------------------
    # Create / update / delete
    # ------------------------------------------------------------------

    def create_event(self, organization_id: UUID, request: CreateEventRequest) -> Event:
        """Validate, check for conflicts and insert an event with its links.

        Raises:
            ValidationError: Bad title or window.
            NotFoundError: A referenced location, resource, team or parent is missing.
            EventConflictError: The window overlaps a live booking.
        """
        title = _require_title(request.title)
        if request.end_time < request.start_time:
            raise ValidationError("endTime cannot be before startTime", field_name="endTime")
        resource_ids = list(dict.fromkeys(request.resource_ids or []))
        team_ids = _merge_teams(request.team_id, request.team_ids)

        self._validate_references(
            organization_id,
            location_id=request.location_id,
            resource_ids=resource_ids,
            team_ids=team_ids,
            parent_id=request.parent_id,
        )

        draft = NewEvent(
            organization_id=organization_id,
            team_ids=team_ids,
            title=title,
            description=request.description,
            event_type=request.event_type,
            status=request.status,
            start_time=request.start_time,
            end_time=request.end_time,
            is_all_day=request.is_all_day,
            location_id=request.location_id,
            repetition=request.repetition,
            parent_id=request.parent_id,
            training_session_id=request.training_session_id,
            game_id=request.game_id,
        )
        query = ConflictQuery(
            start_time=draft.start_time,
            end_time=draft.end_time,
            resource_ids=resource_ids,
            team_ids=team_ids,
            location_id=draft.location_id,
            organization_id=organization_id,
        )
        keys = booking_keys(resource_ids, team_ids, draft.location_id)
        with translate_store_errors(_reference_conflict):
            with self._database.booking_transaction(keys) as session:
                if draft.status != EventStatus.CANCELED:
                    self._ensure_no_conflicts(query, session)
                event = self._store.create(draft, resource_ids, session=session)

        logger.info("Created event %s (%s)", event.id, event.event_type.value)
        self._bus.publish(
            EventCreated(event_id=event.id, title=event.title, attendee_ids=event.attendee_ids)
        )
        return event

    def update_event(
        self,
        event_id: UUID,
        request: UpdateEventRequest,
        organization_id: UUID | None = None,
    ) -> Event:
        """Merge the patch over the stored event and re-check the final footprint.

        Fields absent from the request keep their stored value. Resource and
        team links are replaced only when the request names them. The stored
        event is read again once the booking locks are held, and the final
        footprint is rebuilt from that read. When it needs keys that were not
        taken, the transaction is abandoned and retried with the wider set.
        """
        provided = request.model_fields_set
        for name in ("title", "event_type", "status", "start_time", "end_time", "is_all_day"):
            if name in provided and getattr(request, name) is None:
                raise ValidationError(f"{name} cannot be null", field_name=name)
        for name in ("resource_ids", "team_ids"):
            if name in provided and getattr(request, name) is None:
                raise ValidationError(f"{name} must be an array", field_name=name)
        title = _require_title(request.title) if "title" in provided else None

        existing = self.get_event(event_id, organization_id)
        _merged_window(existing, request, provided)

        new_resources: list[UUID] | None = None
        if "resource_ids" in provided:
            new_resources = list(dict.fromkeys(request.resource_ids or []))
        new_teams: list[UUID] | None = None
        if "team_ids" in provided or "team_id" in provided:
            new_teams = _merge_teams(request.team_id, request.team_ids)
        if "parent_id" in provided and request.parent_id == event_id:
            raise ValidationError("An event cannot be its own parent", field_name="parentId")

        self._validate_references(
            existing.organization_id,
            location_id=request.location_id if "location_id" in provided else None,
            resource_ids=new_resources or [],
            team_ids=new_teams or [],
            parent_id=request.parent_id if "parent_id" in provided else None,
        )

        changes: dict[str, Any] = {}
        for name in provided - {"team_id", "team_ids", "resource_ids"}:
            changes[name] = getattr(request, name)
        if title is not None:
            changes["title"] = title

        keys = booking_keys(
            *_footprint(existing, request, provided, new_resources, new_teams),
            event_id=event_id,
        )
        before: Event | None = None
        updated: Event | None = None
        for _ in range(_MAX_LOCK_ATTEMPTS):
            with translate_store_errors(_reference_conflict):
                with self._database.booking_transaction(keys) as session:
                    current = self._store.find_by_id(event_id, session=session)
                    if current is None:
                        raise NotFoundError("Event", event_id)
                    footprint = _footprint(current, request, provided, new_resources, new_teams)
                    needed = booking_keys(*footprint, event_id=event_id)
                    if not set(needed) <= set(keys):
                        keys = sorted(set(keys) | set(needed))
                        continue

                    start, end = _merged_window(current, request, provided)
                    status = request.status if "status" in provided else current.status
                    if status != EventStatus.CANCELED:
                        resources, teams, location = footprint
                        query = ConflictQuery(
                            start_time=start,
                            end_time=end,
                            resource_ids=resources,
                            team_ids=teams,
                            location_id=location,
                            exclude_event_id=event_id,
                            organization_id=current.organization_id,
                        )
                        self._ensure_no_conflicts(query, session)
                    before = current
                    updated = self._store.update(
                        event_id,
                        changes,
                        resource_ids=new_resources,
                        team_ids=new_teams,
                        session=session,
                    )
            break
        else:
            raise ConflictError(
                "Event changed repeatedly while saving; try again",
                code=ErrorCode.REFERENCE_CONFLICT,
            )
        if before is None or updated is None:
            raise NotFoundError("Event", event_id)

        changed = [f for f in _TRACKED_FIELDS if getattr(before, f) != getattr(updated, f)]
        if sorted(before.team_ids) != sorted(updated.team_ids):
            changed.append("team_ids")
        if sorted(before.resource_ids) != sorted(updated.resource_ids):
            changed.append("resource_ids")
        logger.info("Updated event %s (changed: %s)", event_id, ", ".join(changed) or "none")
        self._bus.publish(
            EventUpdated(
                event_id=updated.id,
                title=updated.title,
                changes=changed,
                attendee_ids=updated.attendee_ids,
            )
        )
        if before.status != updated.status:
            self._publish_status_change(before, updated)
        return updated

    def delete_event(self, event_id: UUID, organization_id: UUID | None = None) -> None:
        """Delete an event; links cascade. Still-referenced events are a ConflictError."""
        existing = self.get_event(event_id, organization_id)

        def still_referenced(_: IntegrityError) -> DomainError:
            return ConflictError(
                "Event is still referenced by other records",
                code=ErrorCode.STILL_REFERENCED,
            )

        with translate_store_errors(still_referenced):
            with self._database.transaction() as session:
                removed = self._store.delete(event_id, session=session)
        if not removed:
            raise NotFoundError("Event", event_id)

        logger.info("Deleted event %s", event_id)
        self._bus.publish(
            EventDeleted(
                event_id=event_id, title=existing.title, attendee_ids=existing.attendee_ids
            )
        )

    def update_status(
        self,
        event_id: UUID,
        status: EventStatus,
        organization_id: UUID | None = None,
    ) -> Event:
        """Overwrite the status only. The footprint is unchanged, so no conflict check."""
        existing = self.get_event(event_id, organization_id)
        with translate_store_errors(_internal):
            updated = self._store.update(event_id, {"status": status})
        if updated is None:
            raise NotFoundError("Event", event_id)
        logger.info(
            "Event %s status %s -> %s", event_id, existing.status.value, updated.status.value
        )
        self._publish_status_change(existing, updated)
        return updated

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def list_participants(
        self, event_id: UUID, organization_id: UUID | None = None
    ) -> list[EventAttendee]:
        self.get_event(event_id, organization_id)
        with translate_store_errors(_internal):
            return self._store.list_attendees(event_id)

    def add_participant(
        self,
        event_id: UUID,
        request: AddParticipantRequest,
        organization_id: UUID | None = None,
    ) -> EventAttendee:
        """Add one attendee row. A second row for the same user is a ConflictError."""
        self.get_event(event_id, organization_id)
        if not self._users.exists(request.user_id):
            raise NotFoundError("User", request.user_id)

        attendee = EventAttendee(
            event_id=event_id,
            user_id=request.user_id,
            status=request.status,
            absence_reason=request.absence_reason,
        )
        with translate_store_errors(self._attendee_rejected(event_id)):
            added = self._store.add_attendee(attendee)
        logger.info("Added participant %s to event %s", request.user_id, event_id)
        self._bus.publish(
            ParticipantAdded(event_id=event_id, user_id=added.user_id, status=added.status)
        )
        return added

    def add_participants(
        self,
        event_id: UUID,
        request: BulkAddParticipantsRequest,
        organization_id: UUID | None = None,
    ) -> list[EventAttendee]:
        """Add several attendees in one transaction; either all rows land or none do."""
        self.get_event(event_id, organization_id)
        user_ids = [p.user_id for p in request.participants]
        if len(set(user_ids)) != len(user_ids):
            raise ValidationError("participants lists a user twice", field_name="participants")
        missing = self._users.missing(user_ids)
        if missing:
            raise NotFoundError("Users", missing)

        attendees = [
            EventAttendee(
                event_id=event_id,
                user_id=p.user_id,
                status=p.status,
                absence_reason=p.absence_reason,
            )
            for p in request.participants
        ]
        with translate_store_errors(self._attendee_rejected(event_id)):
            added = self._store.add_attendees(attendees)
        logger.info("Added %d participants to event %s", len(added), event_id)
        for attendee in added:
            self._bus.publish(
                ParticipantAdded(
                    event_id=event_id, user_id=attendee.user_id, status=attendee.status
                )
            )
        return added

    def update_participant(
        self,
        event_id: UUID,
        user_id: UUID,
        request: UpdateParticipantRequest,
        organization_id: UUID | None = None,
    ) -> EventAttendee:
        self.get_event(event_id, organization_id)
        with translate_store_errors(_internal):
            attendee = self._store.update_attendee(
                event_id, user_id, request.status, request.absence_reason
            )
        if attendee is None:
            raise NotFoundError("Participant", user_id)
        self._bus.publish(
            ParticipantStatusChanged(
                event_id=event_id,
                user_id=user_id,
                status=attendee.status,
                absence_reason=attendee.absence_reason,
            )
        )
        return attendee

    def remove_participant(
        self, event_id: UUID, user_id: UUID, organization_id: UUID | None = None
    ) -> None:
        self.get_event(event_id, organization_id)
        with translate_store_errors(_internal):
            removed = self._store.remove_attendee(event_id, user_id)
        if not removed:
            raise NotFoundError("Participant", user_id)
        logger.info("Removed participant %s from event %s", user_id, event_id)
        self._bus.publish(ParticipantRemoved(event_id=event_id, user_id=user_id))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_no_conflicts(self, query: ConflictQuery, session) -> None:
        conflicts = self._detector.find_conflicts(query, session=session)
        if conflicts:
            logger.info(
                "Rejected booking %s-%s: %d conflicts",
                query.start_time.isoformat(),
                query.end_time.isoformat(),
                len(conflicts),
            )
            raise EventConflictError(conflicts)

    def _attendee_rejected(self, event_id: UUID) -> Callable[[IntegrityError], DomainError]:
        """Attendee inserts fail on the unique pair or on the event FK if it was deleted."""

        def translate(_: IntegrityError) -> DomainError:
            if not self._store.exists(event_id):
                return NotFoundError("Event", event_id)
            return ConflictError(
                "User is already a participant of this event",
                code=ErrorCode.DUPLICATE_ATTENDEE,
            )

        return translate

    def _validate_references(
        self,
        organization_id: UUID,
        *,
        location_id: UUID | None,
        resource_ids: list[UUID],
        team_ids: list[UUID],
        parent_id: UUID | None,
    ) -> None:
        with translate_store_errors(_internal):
            if location_id is not None:
                location = self._catalog.get_location(location_id)
                if location is None or location.organization_id != organization_id:
                    raise NotFoundError("Location", location_id)
            if resource_ids:
                found = self._catalog.get_resources(resource_ids)
                missing = [
                    rid
                    for rid in resource_ids
                    if rid not in found or found[rid].organization_id != organization_id
                ]
                if missing:
                    raise NotFoundError("Resources", missing)
            if parent_id is not None:
                parent = self._store.find_by_id(parent_id, include_links=False)
                if parent is None or parent.organization_id != organization_id:
                    raise NotFoundError("Parent event", parent_id)
        missing_teams = self._teams.missing(team_ids)
        if missing_teams:
            raise NotFoundError("Teams", missing_teams)

    def _publish_status_change(self, existing: Event, updated: Event) -> None:
        self._bus.publish(
            EventStatusChanged(
                event_id=updated.id,
                title=updated.title,
                previous=existing.status,
                current=updated.status,
                attendee_ids=updated.attendee_ids,
            )
        )


class CatalogCommands:
    """Minimal catalog operations; deletes refuse records still linked to events."""

    def __init__(self, catalog: CatalogStore) -> None:
        self._catalog = catalog

    def create_location(self, organization_id: UUID, request: CreateLocationRequest) -> Location:
        name = request.name.strip()
        if not name:
            raise ValidationError("name is required", field_name="name")

        def duplicate(_: IntegrityError) -> DomainError:
            return ConflictError("Location name already exists", code=ErrorCode.DUPLICATE_NAME)

        with translate_store_errors(duplicate):
            return self._catalog.create_location(organization_id, name, request.description)

    def get_location(self, location_id: UUID, organization_id: UUID) -> Location:
        with translate_store_errors(_internal):
            location = self._catalog.get_location(location_id)
        if location is None or location.organization_id != organization_id:
            raise NotFoundError("Location", location_id)
        return location

    def delete_location(self, location_id: UUID, organization_id: UUID) -> None:
        self.get_location(location_id, organization_id)

        def still_referenced(_: IntegrityError) -> DomainError:
            return ConflictError(
                "Location is still referenced by events", code=ErrorCode.STILL_REFERENCED
            )

        with translate_store_errors(still_referenced):
            removed = self._catalog.delete_location(location_id)
        if not removed:
            raise NotFoundError("Location", location_id)
        logger.info("Deleted location %s", location_id)

    def create_resource_type(
        self, organization_id: UUID, request: CreateResourceTypeRequest
    ) -> ResourceType:
        name = request.name.strip()
        if not name:
            raise ValidationError("name is required", field_name="name")

        def duplicate(_: IntegrityError) -> DomainError:
            return ConflictError(
                "Resource type name already exists", code=ErrorCode.DUPLICATE_NAME
            )

        with translate_store_errors(duplicate):
            return self._catalog.create_resource_type(organization_id, name, request.description)

    def create_resource(self, organization_id: UUID, request: CreateResourceRequest) -> Resource:
        name = request.name.strip()
        if not name:
            raise ValidationError("name is required", field_name="name")
        resource_type = self._catalog.get_resource_type(request.resource_type_id)
        if resource_type is None or resource_type.organization_id != organization_id:
            raise NotFoundError("Resource type", request.resource_type_id)
        self.get_location(request.location_id, organization_id)

        with translate_store_errors(_reference_conflict):
            return self._catalog.create_resource(
                organization_id,
                name,
                request.resource_type_id,
                request.location_id,
                capacity=request.capacity,
                is_bookable=request.is_bookable,
            )

    def get_resource(self, resource_id: UUID, organization_id: UUID) -> Resource:
        with translate_store_errors(_internal):
            resource = self._catalog.get_resource(resource_id)
        if resource is None or resource.organization_id != organization_id:
            raise NotFoundError("Resource", resource_id)
        return resource

    def delete_resource(self, resource_id: UUID, organization_id: UUID) -> None:
        self.get_resource(resource_id, organization_id)

        def still_referenced(_: IntegrityError) -> DomainError:
            return ConflictError(
                "Resource is still booked by events", code=ErrorCode.STILL_REFERENCED
            )

        with translate_store_errors(still_referenced):
            removed = self._catalog.delete_resource(resource_id)
        if not removed:
            raise NotFoundError("Resource", resource_id)
        logger.info("Deleted resource %s", resource_id)
