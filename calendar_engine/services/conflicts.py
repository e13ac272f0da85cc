"""Service for detecting scheduling conflicts between events.

Overlap rule (half-open): an existing event conflicts with a candidate window
iff ``existing.start < candidate.end AND existing.end > candidate.start``.
Exact boundary touches (end == start) are NOT considered conflicts.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlmodel import Session, col, select

from calendar_engine.domain.models import (
    ConflictingEvent,
    ConflictQuery,
    ConflictReason,
    EventStatus,
)
from calendar_engine.repos.database import Database
from calendar_engine.repos.tables import EventResourceRow, EventRow, EventTeamRow


def overlaps(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """True when [start_a, end_a) and [start_b, end_b) overlap. Symmetric."""
    return start_a < end_b and end_a > start_b


def find_conflicts(
    new_start: datetime,
    new_end: datetime,
    existing: Iterable[ConflictingEvent],
) -> list[ConflictingEvent]:
    """Return the already-fetched conflicts that overlap the given time range."""
    return [
        conflict
        for conflict in existing
        if overlaps(conflict.start_time, conflict.end_time, new_start, new_end)
    ]


class ConflictDetector:
    """Queries live bookings along the resource, team and location dimensions.

    Never raises business errors: it only reports what overlaps. The result is
    a flat list, so one event can appear several times under different reasons.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    def find_conflicts(
        self, query: ConflictQuery, *, session: Session | None = None
    ) -> list[ConflictingEvent]:
        if session is not None:
            return self._collect(session, query, first_only=False)
        with self._database.read_session() as s:
            return self._collect(s, query, first_only=False)

    def has_conflicts(self, query: ConflictQuery, *, session: Session | None = None) -> bool:
        if session is not None:
            return bool(self._collect(session, query, first_only=True))
        with self._database.read_session() as s:
            return bool(self._collect(s, query, first_only=True))

    # ------------------------------------------------------------------

    def _collect(
        self, s: Session, query: ConflictQuery, first_only: bool
    ) -> list[ConflictingEvent]:
        conflicts: list[ConflictingEvent] = []
        dimensions = (
            (ConflictReason.RESOURCE, query.resource_ids),
            (ConflictReason.TEAM, query.team_ids),
            (ConflictReason.LOCATION, [query.location_id] if query.location_id else []),
        )
        for reason, identifiers in dimensions:
            if not identifiers:
                continue
            conflicts.extend(self._dimension(s, query, reason, identifiers, first_only))
            if first_only and conflicts:
                break
        return conflicts

    def _dimension(
        self,
        s: Session,
        query: ConflictQuery,
        reason: ConflictReason,
        identifiers: list[UUID],
        first_only: bool,
    ) -> list[ConflictingEvent]:
        if reason is ConflictReason.RESOURCE:
            key = col(EventResourceRow.resource_id)
            statement = select(EventRow, key).join(
                EventResourceRow, col(EventResourceRow.event_id) == col(EventRow.id)
            )
        elif reason is ConflictReason.TEAM:
            key = col(EventTeamRow.team_id)
            statement = select(EventRow, key).join(
                EventTeamRow, col(EventTeamRow.event_id) == col(EventRow.id)
            )
        else:
            key = col(EventRow.location_id)
            statement = select(EventRow, key)

        statement = (
            statement.where(key.in_(list(dict.fromkeys(identifiers))))
            .where(col(EventRow.status) != EventStatus.CANCELED.value)
            .where(col(EventRow.start_time) < query.end_time)
            .where(col(EventRow.end_time) > query.start_time)
        )
        if query.organization_id is not None:
            statement = statement.where(col(EventRow.organization_id) == query.organization_id)
        if query.exclude_event_id is not None:
            statement = statement.where(col(EventRow.id) != query.exclude_event_id)
        statement = statement.order_by(col(EventRow.start_time), col(EventRow.id), key)
        if first_only:
            statement = statement.limit(1)

        return [
            ConflictingEvent(
                id=row.id,
                title=row.title,
                start_time=row.start_time,
                end_time=row.end_time,
                event_type=row.event_type,
                conflict_reason=reason,
                conflict_identifier=identifier,
            )
            for row, identifier in s.exec(statement).all()
        ]
