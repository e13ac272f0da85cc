"""Tests for the SQL event store and its link tables."""

from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from calendar_engine.domain.models import (
    AttendanceStatus,
    EventAttendee,
    EventFilter,
    EventStatus,
    EventType,
    Repetition,
    RepetitionKind,
)
from calendar_engine.repos.events import EventStore

from conftest import ORG, at


def test_create_persists_links(env):
    event = env.store.create(
        env.draft(team_ids=[env.team], location_id=env.location.id),
        [env.rink.id, env.rink_b.id],
    )
    loaded = env.store.find_by_id(event.id)
    assert loaded is not None
    assert loaded.team_ids == [env.team]
    assert sorted(loaded.resource_ids) == sorted([env.rink.id, env.rink_b.id])
    assert loaded.location_id == env.location.id
    assert loaded.start_time == at(1)
    assert loaded.start_time.tzinfo is not None


def test_find_by_id_unknown_returns_none(env):
    assert env.store.find_by_id(uuid4()) is None
    assert not env.store.exists(uuid4())


def test_repetition_is_stored_as_is(env):
    repetition = Repetition(kind=RepetitionKind.WEEKLY)
    event = env.store.create(env.draft(repetition=repetition))
    assert env.store.find_by_id(event.id).repetition == repetition
    # Nothing is expanded into occurrences.
    assert len(env.store.find_all()) == 1


def test_update_without_links_keeps_them(env):
    event = env.store.create(env.draft(team_ids=[env.team]), [env.rink.id])
    updated = env.store.update(event.id, {"title": "Renamed"})
    assert updated.title == "Renamed"
    assert updated.resource_ids == [env.rink.id]
    assert updated.team_ids == [env.team]


def test_update_with_empty_list_clears_links(env):
    event = env.store.create(env.draft(team_ids=[env.team]), [env.rink.id])
    updated = env.store.update(event.id, {}, resource_ids=[], team_ids=[])
    assert updated.resource_ids == []
    assert updated.team_ids == []


def test_update_replaces_links(env):
    event = env.store.create(env.draft(), [env.rink.id])
    updated = env.store.update(event.id, {}, resource_ids=[env.rink_b.id])
    assert updated.resource_ids == [env.rink_b.id]


def test_update_unknown_event_returns_none(env):
    assert env.store.update(uuid4(), {"title": "x"}) is None


def test_update_rejects_unknown_field(env):
    event = env.store.create(env.draft())
    with pytest.raises(KeyError):
        env.store.update(event.id, {"organization_id": uuid4()})


def test_update_advances_updated_at(env):
    event = env.store.create(env.draft())
    updated = env.store.update(event.id, {"status": EventStatus.COMPLETED})
    assert updated.status == EventStatus.COMPLETED
    assert updated.updated_at >= event.updated_at
    assert updated.created_at == event.created_at


def test_delete_cascades_links(env):
    event = env.store.create(env.draft(team_ids=[env.team]), [env.rink.id])
    user = uuid4()
    env.store.add_attendee(EventAttendee(event_id=event.id, user_id=user))

    assert env.store.delete(event.id)
    assert env.store.find_by_id(event.id) is None
    assert env.store.list_attendees(event.id) == []
    # The resource is free to delete once nothing links to it.
    assert env.catalog.delete_resource(env.rink.id)


def test_delete_unknown_returns_false(env):
    assert env.store.delete(uuid4()) is False


def test_duplicate_attendee_raises_integrity_error(env):
    event = env.store.create(env.draft())
    user = uuid4()
    env.store.add_attendee(EventAttendee(event_id=event.id, user_id=user))
    with pytest.raises(IntegrityError):
        env.store.add_attendee(EventAttendee(event_id=event.id, user_id=user))
    assert len(env.store.list_attendees(event.id)) == 1


def test_duplicate_resource_link_raises_integrity_error(env):
    with pytest.raises(IntegrityError):
        env.store.create(env.draft(), [env.rink.id, env.rink.id])
    assert env.store.find_all() == []


def test_unknown_resource_link_raises_integrity_error(env):
    with pytest.raises(IntegrityError):
        env.store.create(env.draft(), [uuid4()])
    assert env.store.find_all() == []


def test_create_is_atomic_when_links_fail(env, monkeypatch):
    def boom(s, event_id, resource_ids):
        raise RuntimeError("link insert failed")

    monkeypatch.setattr(EventStore, "_insert_resource_links", staticmethod(boom))
    with pytest.raises(RuntimeError):
        env.store.create(env.draft(team_ids=[env.team]), [env.rink.id])
    assert env.store.find_all() == []


def test_update_and_remove_attendee(env):
    event = env.store.create(env.draft())
    user = uuid4()
    env.store.add_attendee(EventAttendee(event_id=event.id, user_id=user))

    updated = env.store.update_attendee(event.id, user, AttendanceStatus.ABSENT, "Injured")
    assert updated.status == AttendanceStatus.ABSENT
    assert env.store.list_attendees(event.id)[0].absence_reason == "Injured"

    assert env.store.update_attendee(event.id, uuid4(), AttendanceStatus.MAYBE) is None
    assert env.store.remove_attendee(event.id, user)
    assert not env.store.remove_attendee(event.id, user)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def test_find_all_orders_by_start_time(env):
    late = env.store.create(env.draft(title="Late", start_time=at(5), end_time=at(6)))
    early = env.store.create(env.draft(title="Early", start_time=at(1), end_time=at(2)))
    assert [e.id for e in env.store.find_all()] == [early.id, late.id]


def test_find_all_window_is_half_open(env):
    env.store.create(env.draft(start_time=at(1), end_time=at(2)))
    assert env.store.find_all(EventFilter(start=at(2), end=at(3))) == []
    assert env.store.find_all(EventFilter(start=at(0), end=at(1))) == []
    assert len(env.store.find_all(EventFilter(start=at(1, 59), end=at(3)))) == 1


def test_find_all_filters(env):
    game = env.store.create(
        env.draft(
            title="Home game",
            event_type=EventType.GAME,
            team_ids=[env.team],
            location_id=env.location.id,
        )
    )
    env.store.create(env.draft(title="Physio", event_type=EventType.MEDICAL))
    env.store.create(env.draft(organization_id=uuid4(), title="Other tenant"))

    assert [e.id for e in env.store.find_all(EventFilter(team_id=env.team))] == [game.id]
    assert [
        e.id for e in env.store.find_all(EventFilter(event_type=EventType.GAME))
    ] == [game.id]
    assert [
        e.id for e in env.store.find_all(EventFilter(location_id=env.location.id))
    ] == [game.id]
    assert [e.id for e in env.store.find_all(EventFilter(search="home"))] == [game.id]
    assert len(env.store.find_all(EventFilter(organization_id=ORG))) == 2


def test_find_all_by_attendee_and_live_status(env):
    user = uuid4()
    going = env.store.create(env.draft(title="Going"))
    dropped = env.store.create(env.draft(title="Dropped", status=EventStatus.CANCELED))
    env.store.create(env.draft(title="Someone else's"))
    env.store.add_attendees(
        [
            EventAttendee(event_id=going.id, user_id=user),
            EventAttendee(event_id=dropped.id, user_id=user),
        ]
    )

    mine = env.store.find_all(EventFilter(attendee_id=user))
    assert {e.title for e in mine} == {"Going", "Dropped"}
    live = env.store.find_all(EventFilter(attendee_id=user, exclude_canceled=True))
    assert [e.id for e in live] == [going.id]


def test_add_attendees_rolls_back_on_duplicate(env):
    event = env.store.create(env.draft())
    user = uuid4()
    env.store.add_attendee(EventAttendee(event_id=event.id, user_id=user))
    with pytest.raises(IntegrityError):
        env.store.add_attendees(
            [
                EventAttendee(event_id=event.id, user_id=uuid4()),
                EventAttendee(event_id=event.id, user_id=user),
            ]
        )
    assert [a.user_id for a in env.store.list_attendees(event.id)] == [user]
    assert env.store.add_attendees([]) == []


def test_find_all_paginates(env):
    for hour in range(5):
        env.store.create(env.draft(title=f"E{hour}", start_time=at(hour), end_time=at(hour + 1)))
    page = env.store.find_all(EventFilter(limit=2, offset=1))
    assert [e.title for e in page] == ["E1", "E2"]


def test_find_all_without_links(env):
    event = env.store.create(env.draft(team_ids=[env.team]), [env.rink.id])
    listed = env.store.find_all(include_links=False)
    assert listed[0].id == event.id
    assert listed[0].resources == []
    assert listed[0].team_ids == [env.team]
