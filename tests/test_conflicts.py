"""Tests for the conflict-detection service."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from calendar_engine.domain.models import (
    ConflictingEvent,
    ConflictQuery,
    ConflictReason,
    EventStatus,
    EventType,
)
from calendar_engine.services.conflicts import find_conflicts, overlaps

from conftest import at


def _existing(start: datetime, end: datetime, title: str = "Existing") -> ConflictingEvent:
    return ConflictingEvent(
        id=uuid4(),
        title=title,
        start_time=start,
        end_time=end,
        event_type=EventType.GAME,
        conflict_reason=ConflictReason.RESOURCE,
        conflict_identifier=uuid4(),
    )


# ---------------------------------------------------------------------------
# Overlap rule
# ---------------------------------------------------------------------------


def test_no_overlap():
    """Events that don't overlap should not be returned as conflicts."""
    existing = [
        _existing(
            datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc),
            datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc),
        ),
    ]
    conflicts = find_conflicts(
        new_start=datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc),
        new_end=datetime(2025, 1, 1, 11, 0, tzinfo=timezone.utc),
        existing=existing,
    )
    assert conflicts == []


def test_partial_overlap():
    existing = [
        _existing(
            datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc),
            datetime(2025, 1, 1, 10, 30, tzinfo=timezone.utc),
        ),
    ]
    conflicts = find_conflicts(
        new_start=datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc),
        new_end=datetime(2025, 1, 1, 11, 0, tzinfo=timezone.utc),
        existing=existing,
    )
    assert len(conflicts) == 1
    assert conflicts[0].start_time == datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


def test_exact_boundary_no_conflict():
    """When existing.end == new start, the two windows only touch."""
    start, end = at(0), at(1)
    assert not overlaps(start, end, end, at(2))
    assert not overlaps(end, at(2), start, end)


def test_overlap_is_symmetric():
    a = (at(0), at(2))
    b = (at(1), at(3))
    assert overlaps(*a, *b)
    assert overlaps(*b, *a)


def test_containment_overlaps():
    assert overlaps(at(0), at(4), at(1), at(2))
    assert overlaps(at(1), at(2), at(0), at(4))


# ---------------------------------------------------------------------------
# ConflictDetector against the database
# ---------------------------------------------------------------------------


def test_resource_conflict_and_boundaries(env):
    existing = env.store.create(env.draft(start_time=at(1), end_time=at(2)), [env.rink.id])

    def query(start, end):
        return ConflictQuery(start_time=start, end_time=end, resource_ids=[env.rink.id])

    found = env.detector.find_conflicts(query(at(1, 30), at(3)))
    assert [c.id for c in found] == [existing.id]
    assert found[0].conflict_reason == ConflictReason.RESOURCE
    assert found[0].conflict_identifier == env.rink.id

    assert env.detector.find_conflicts(query(at(2), at(3))) == []
    assert env.detector.find_conflicts(query(at(0), at(1))) == []

    tick = timedelta(microseconds=1)
    assert len(env.detector.find_conflicts(query(at(2) - tick, at(3)))) == 1
    assert len(env.detector.find_conflicts(query(at(0), at(1) + tick))) == 1


def test_other_resource_is_not_a_conflict(env):
    env.store.create(env.draft(), [env.rink.id])
    query = ConflictQuery(start_time=at(1), end_time=at(2), resource_ids=[env.rink_b.id])
    assert env.detector.find_conflicts(query) == []


def test_canceled_events_are_ignored(env):
    env.store.create(env.draft(status=EventStatus.CANCELED), [env.rink.id])
    query = ConflictQuery(start_time=at(1), end_time=at(2), resource_ids=[env.rink.id])
    assert env.detector.find_conflicts(query) == []
    assert not env.detector.has_conflicts(query)


def test_completed_events_still_block(env):
    env.store.create(env.draft(status=EventStatus.COMPLETED), [env.rink.id])
    query = ConflictQuery(start_time=at(1), end_time=at(2), resource_ids=[env.rink.id])
    assert env.detector.has_conflicts(query)


def test_excluded_event_does_not_conflict_with_itself(env):
    event = env.store.create(env.draft(team_ids=[env.team]), [env.rink.id])
    query = ConflictQuery(
        start_time=at(1),
        end_time=at(2),
        resource_ids=[env.rink.id],
        team_ids=[env.team],
        exclude_event_id=event.id,
    )
    assert env.detector.find_conflicts(query) == []


def test_one_event_reported_once_per_reason(env):
    event = env.store.create(
        env.draft(team_ids=[env.team], location_id=env.location.id), [env.rink.id]
    )
    query = ConflictQuery(
        start_time=at(0),
        end_time=at(3),
        resource_ids=[env.rink.id],
        team_ids=[env.team],
        location_id=env.location.id,
    )
    found = env.detector.find_conflicts(query)
    assert {c.id for c in found} == {event.id}
    assert sorted(c.conflict_reason.value for c in found) == ["location", "resource", "team"]


def test_team_dimension_checks_every_team(env):
    env.store.create(env.draft(team_ids=[env.other_team]))
    query = ConflictQuery(start_time=at(1), end_time=at(2), team_ids=[env.team, env.other_team])
    found = env.detector.find_conflicts(query)
    assert [c.conflict_identifier for c in found] == [env.other_team]
    assert found[0].conflict_reason == ConflictReason.TEAM


def test_empty_footprint_never_conflicts(env):
    env.store.create(env.draft(location_id=env.location.id), [env.rink.id])
    assert env.detector.find_conflicts(ConflictQuery(start_time=at(0), end_time=at(5))) == []


def test_has_conflicts_short_circuits(env):
    env.store.create(env.draft(team_ids=[env.team]), [env.rink.id])
    query = ConflictQuery(
        start_time=at(1), end_time=at(2), resource_ids=[env.rink.id], team_ids=[env.team]
    )
    assert env.detector.has_conflicts(query)
    assert len(env.detector.find_conflicts(query)) == 2
