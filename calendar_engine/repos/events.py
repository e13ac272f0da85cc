"""SQL-backed event store: events plus their team, resource and attendee links.

Every method accepts an optional ``session``. When given, the work joins the
caller's transaction (the command handlers use this to run the conflict check
and the write under one lock); otherwise the store opens its own.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any
from uuid import UUID

from sqlalchemy import delete, insert, or_, update
from sqlmodel import Session, col, select

from calendar_engine.domain.models import (
    AttendanceStatus,
    Event,
    EventAttendee,
    EventFilter,
    EventResourceLink,
    EventStatus,
    NewEvent,
    Repetition,
    utcnow,
)
from calendar_engine.repos.database import Database
from calendar_engine.repos.tables import (
    EventAttendeeRow,
    EventResourceRow,
    EventRow,
    EventTeamRow,
)

# Scalar fields an update may overwrite directly.
_SCALAR_FIELDS = {
    "title",
    "description",
    "event_type",
    "status",
    "start_time",
    "end_time",
    "is_all_day",
    "location_id",
    "parent_id",
    "training_session_id",
    "game_id",
}


class EventStore:
    """Durable CRUD for events and their join tables."""

    def __init__(self, database: Database) -> None:
        self._database = database

    @contextmanager
    def _writing(self, session: Session | None) -> Iterator[Session]:
        if session is not None:
            yield session
        else:
            with self._database.transaction() as own:
                yield own

    @contextmanager
    def _reading(self, session: Session | None) -> Iterator[Session]:
        if session is not None:
            yield session
        else:
            with self._database.read_session() as own:
                yield own

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_all(
        self,
        filters: EventFilter | None = None,
        *,
        include_links: bool = True,
        session: Session | None = None,
    ) -> list[Event]:
        """Return matching events ordered by start time ascending."""
        filters = filters or EventFilter()
        statement = select(EventRow)
        if filters.organization_id is not None:
            statement = statement.where(EventRow.organization_id == filters.organization_id)
        # Half-open overlap with [start, end).
        if filters.start is not None:
            statement = statement.where(col(EventRow.end_time) > filters.start)
        if filters.end is not None:
            statement = statement.where(col(EventRow.start_time) < filters.end)
        if filters.team_id is not None:
            team_events = select(EventTeamRow.event_id).where(
                EventTeamRow.team_id == filters.team_id
            )
            statement = statement.where(col(EventRow.id).in_(team_events))
        if filters.attendee_id is not None:
            attended = select(EventAttendeeRow.event_id).where(
                EventAttendeeRow.user_id == filters.attendee_id
            )
            statement = statement.where(col(EventRow.id).in_(attended))
        if filters.event_type is not None:
            statement = statement.where(EventRow.event_type == filters.event_type.value)
        if filters.location_id is not None:
            statement = statement.where(EventRow.location_id == filters.location_id)
        if filters.status is not None:
            statement = statement.where(EventRow.status == filters.status.value)
        if filters.exclude_canceled:
            statement = statement.where(EventRow.status != EventStatus.CANCELED.value)
        if filters.search:
            pattern = f"%{filters.search}%"
            statement = statement.where(
                or_(col(EventRow.title).ilike(pattern), col(EventRow.description).ilike(pattern))
            )
        statement = statement.order_by(
            col(EventRow.start_time), col(EventRow.created_at), col(EventRow.id)
        )
        if filters.offset:
            statement = statement.offset(filters.offset)
        if filters.limit is not None:
            statement = statement.limit(filters.limit)

        with self._reading(session) as s:
            rows = list(s.exec(statement).all())
            return self._assemble(s, rows, include_links)

    def find_by_id(
        self,
        event_id: UUID,
        *,
        include_links: bool = True,
        session: Session | None = None,
    ) -> Event | None:
        with self._reading(session) as s:
            row = s.get(EventRow, event_id)
            if row is None:
                return None
            return self._assemble(s, [row], include_links)[0]

    def exists(self, event_id: UUID, *, session: Session | None = None) -> bool:
        with self._reading(session) as s:
            return s.get(EventRow, event_id) is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        draft: NewEvent,
        resource_ids: Iterable[UUID] = (),
        *,
        session: Session | None = None,
    ) -> Event:
        """Insert the event row, then its team and resource links, atomically."""
        with self._writing(session) as s:
            now = utcnow()
            row = EventRow(
                organization_id=draft.organization_id,
                title=draft.title,
                description=draft.description,
                event_type=draft.event_type.value,
                status=draft.status.value,
                start_time=draft.start_time,
                end_time=draft.end_time,
                is_all_day=draft.is_all_day,
                location_id=draft.location_id,
                repetition=draft.repetition.kind.value if draft.repetition else None,
                repetition_end_date=draft.repetition.end_date if draft.repetition else None,
                parent_id=draft.parent_id,
                training_session_id=draft.training_session_id,
                game_id=draft.game_id,
                created_at=now,
                updated_at=now,
            )
            s.add(row)
            s.flush()
            self._insert_teams(s, row.id, draft.team_ids)
            self._insert_resource_links(s, row.id, list(resource_ids))
            return self._assemble(s, [row], include_links=True)[0]

    def update(
        self,
        event_id: UUID,
        changes: dict[str, Any],
        resource_ids: Iterable[UUID] | None = None,
        team_ids: Iterable[UUID] | None = None,
        *,
        session: Session | None = None,
    ) -> Event | None:
        """Apply scalar *changes*; replace link sets only when they are given.

        ``resource_ids=None`` leaves the resource links untouched, while an
        empty list removes all of them. ``team_ids`` follows the same rule.
        """
        with self._writing(session) as s:
            row = s.get(EventRow, event_id)
            if row is None:
                return None
            for name, value in changes.items():
                if name == "repetition":
                    repetition = Repetition.model_validate(value) if value is not None else None
                    row.repetition = repetition.kind.value if repetition else None
                    row.repetition_end_date = repetition.end_date if repetition else None
                elif name in _SCALAR_FIELDS:
                    setattr(row, name, getattr(value, "value", value))
                else:
                    raise KeyError(f"Unknown event field: {name}")
            row.updated_at = utcnow()
            s.add(row)
            s.flush()

            if team_ids is not None:
                s.connection().execute(
                    delete(EventTeamRow).where(col(EventTeamRow.event_id) == event_id)
                )
                self._insert_teams(s, event_id, list(team_ids))
            if resource_ids is not None:
                s.connection().execute(
                    delete(EventResourceRow).where(col(EventResourceRow.event_id) == event_id)
                )
                self._insert_resource_links(s, event_id, list(resource_ids))
            return self._assemble(s, [row], include_links=True)[0]

    def delete(self, event_id: UUID, *, session: Session | None = None) -> bool:
        """Delete the event; its link rows go with it. False if it did not exist."""
        with self._writing(session) as s:
            row = s.get(EventRow, event_id)
            if row is None:
                return False
            s.delete(row)
            s.flush()
            return True

    # ------------------------------------------------------------------
    # Attendees
    # ------------------------------------------------------------------

    def add_attendee(
        self, attendee: EventAttendee, *, session: Session | None = None
    ) -> EventAttendee:
        """Insert one attendee row. A repeated (event, user) pair raises IntegrityError."""
        return self.add_attendees([attendee], session=session)[0]

    def add_attendees(
        self, attendees: list[EventAttendee], *, session: Session | None = None
    ) -> list[EventAttendee]:
        """Insert several attendee rows at once; one bad row rolls back all of them."""
        if not attendees:
            return []
        with self._writing(session) as s:
            s.connection().execute(
                insert(EventAttendeeRow),
                [
                    {
                        "event_id": a.event_id,
                        "user_id": a.user_id,
                        "status": a.status.value,
                        "absence_reason": a.absence_reason,
                    }
                    for a in attendees
                ],
            )
            return list(attendees)

    def update_attendee(
        self,
        event_id: UUID,
        user_id: UUID,
        status: AttendanceStatus,
        absence_reason: str | None = None,
        *,
        session: Session | None = None,
    ) -> EventAttendee | None:
        with self._writing(session) as s:
            result = s.connection().execute(
                update(EventAttendeeRow)
                .where(col(EventAttendeeRow.event_id) == event_id)
                .where(col(EventAttendeeRow.user_id) == user_id)
                .values(status=status.value, absence_reason=absence_reason)
            )
            if result.rowcount == 0:
                return None
            return EventAttendee(
                event_id=event_id,
                user_id=user_id,
                status=status,
                absence_reason=absence_reason,
            )

    def remove_attendee(
        self, event_id: UUID, user_id: UUID, *, session: Session | None = None
    ) -> bool:
        with self._writing(session) as s:
            result = s.connection().execute(
                delete(EventAttendeeRow)
                .where(col(EventAttendeeRow.event_id) == event_id)
                .where(col(EventAttendeeRow.user_id) == user_id)
            )
            return result.rowcount > 0

    def list_attendees(
        self, event_id: UUID, *, session: Session | None = None
    ) -> list[EventAttendee]:
        with self._reading(session) as s:
            return self._load_attendees(s, [event_id])[event_id]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _insert_teams(s: Session, event_id: UUID, team_ids: list[UUID]) -> None:
        if team_ids:
            s.connection().execute(
                insert(EventTeamRow),
                [{"event_id": event_id, "team_id": tid} for tid in team_ids],
            )

    @staticmethod
    def _insert_resource_links(s: Session, event_id: UUID, resource_ids: list[UUID]) -> None:
        if resource_ids:
            s.connection().execute(
                insert(EventResourceRow),
                [{"event_id": event_id, "resource_id": rid} for rid in resource_ids],
            )

    @staticmethod
    def _load_attendees(s: Session, event_ids: list[UUID]) -> dict[UUID, list[EventAttendee]]:
        attendees: dict[UUID, list[EventAttendee]] = defaultdict(list)
        if not event_ids:
            return attendees
        rows = s.exec(
            select(EventAttendeeRow)
            .where(col(EventAttendeeRow.event_id).in_(event_ids))
            .order_by(col(EventAttendeeRow.user_id))
        ).all()
        for row in rows:
            attendees[row.event_id].append(
                EventAttendee(
                    event_id=row.event_id,
                    user_id=row.user_id,
                    status=AttendanceStatus(row.status),
                    absence_reason=row.absence_reason,
                )
            )
        return attendees

    def _assemble(self, s: Session, rows: list[EventRow], include_links: bool) -> list[Event]:
        event_ids = [row.id for row in rows]
        teams: dict[UUID, list[UUID]] = defaultdict(list)
        resources: dict[UUID, list[EventResourceLink]] = defaultdict(list)
        attendees: dict[UUID, list[EventAttendee]] = defaultdict(list)

        if event_ids:
            # Team membership is part of the event itself, not an optional link.
            for team_row in s.exec(
                select(EventTeamRow)
                .where(col(EventTeamRow.event_id).in_(event_ids))
                .order_by(col(EventTeamRow.team_id))
            ).all():
                teams[team_row.event_id].append(team_row.team_id)

        if include_links and event_ids:
            for link in s.exec(
                select(EventResourceRow)
                .where(col(EventResourceRow.event_id).in_(event_ids))
                .order_by(col(EventResourceRow.resource_id))
            ).all():
                resources[link.event_id].append(
                    EventResourceLink(event_id=link.event_id, resource_id=link.resource_id)
                )
            attendees = self._load_attendees(s, event_ids)

        return [
            _to_domain(row, teams[row.id], resources[row.id], attendees[row.id])
            for row in rows
        ]


def _to_domain(
    row: EventRow,
    team_ids: list[UUID],
    resources: list[EventResourceLink],
    attendees: list[EventAttendee],
) -> Event:
    repetition = None
    if row.repetition is not None:
        repetition = Repetition(kind=row.repetition, end_date=row.repetition_end_date)
    return Event(
        id=row.id,
        organization_id=row.organization_id,
        team_ids=list(team_ids),
        title=row.title,
        description=row.description,
        event_type=row.event_type,
        status=row.status,
        start_time=row.start_time,
        end_time=row.end_time,
        is_all_day=row.is_all_day,
        location_id=row.location_id,
        repetition=repetition,
        parent_id=row.parent_id,
        training_session_id=row.training_session_id,
        game_id=row.game_id,
        resources=list(resources),
        attendees=list(attendees),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
