"""Tests for booking keys and the keyed lock."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from uuid import UUID

from calendar_engine.domain.errors import EventConflictError
from calendar_engine.domain.models import CreateEventRequest, EventType, UpdateEventRequest
from calendar_engine.services.locking import KeyedLock, advisory_key, booking_keys

from conftest import ORG, Env, at

R = UUID("aaaaaaaa-aaaa-4aaa-8aaa-aaaaaaaaaaaa")
T = UUID("bbbbbbbb-bbbb-4bbb-8bbb-bbbbbbbbbbbb")
L = UUID("cccccccc-cccc-4ccc-8ccc-cccccccccccc")


def test_booking_keys_are_sorted_and_unique():
    keys = booking_keys([R, R], [T], L)
    assert keys == sorted(keys)
    assert keys == [f"location:{L}", f"resource:{R}", f"team:{T}"]


def test_booking_keys_empty_footprint():
    assert booking_keys() == []


def test_booking_keys_include_updated_event():
    event_id = UUID("dddddddd-dddd-4ddd-8ddd-dddddddddddd")
    assert booking_keys([R], event_id=event_id) == [f"event:{event_id}", f"resource:{R}"]


def test_advisory_key_is_stable_signed_64_bit():
    key = advisory_key(f"resource:{R}")
    assert key == advisory_key(f"resource:{R}")
    assert -(2**63) <= key < 2**63
    assert key != advisory_key(f"resource:{T}")


def test_hold_releases_and_forgets_keys():
    locks = KeyedLock()
    with locks.hold(["b", "a"]):
        assert locks.is_held("a")
        assert locks.is_held("b")
    assert not locks.is_held("a")
    assert locks._locks == {}


def test_hold_releases_on_error():
    locks = KeyedLock()
    try:
        with locks.hold(["a"]):
            raise RuntimeError("boom")
    except RuntimeError:
        pass
    assert not locks.is_held("a")


def test_hold_blocks_overlapping_holder():
    locks = KeyedLock()
    entered = threading.Event()
    release = threading.Event()

    def first():
        with locks.hold(["x", "y"]):
            entered.set()
            release.wait(timeout=5)

    def second():
        with locks.hold(["y"]):
            return release.is_set()

    with ThreadPoolExecutor(max_workers=2) as pool:
        holder = pool.submit(first)
        assert entered.wait(timeout=5)
        waiter = pool.submit(second)
        time.sleep(0.05)
        assert not waiter.done()
        release.set()
        holder.result(timeout=5)
        # The second holder only got in after the first let go.
        assert waiter.result(timeout=5) is True


def test_concurrent_bookings_of_one_resource(tmp_path):
    # A file database, so each thread gets its own connection.
    env = Env(f"sqlite:///{tmp_path / 'race.db'}")
    request = CreateEventRequest(
        title="Practice",
        event_type=EventType.ICE_TRAINING,
        start_time=at(1),
        end_time=at(2),
        resource_ids=[env.rink.id],
    )

    def book():
        try:
            env.commands.create_event(ORG, request)
            return "booked"
        except EventConflictError:
            return "conflict"

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(lambda _: book(), range(4)))

    assert outcomes.count("booked") == 1
    assert outcomes.count("conflict") == 3
    assert len(env.store.find_all()) == 1


def test_concurrent_updates_never_leave_an_overlap(tmp_path):
    env = Env(f"sqlite:///{tmp_path / 'updates.db'}")
    moving = env.store.create(env.draft(title="E"), [env.rink.id])
    env.store.create(env.draft(title="F", start_time=at(3), end_time=at(4)), [env.rink_b.id])
    patches = [
        UpdateEventRequest(resource_ids=[env.rink_b.id]),
        UpdateEventRequest(start_time=at(3), end_time=at(4)),
    ]

    def apply(patch):
        try:
            env.commands.update_event(moving.id, patch, ORG)
            return "updated"
        except EventConflictError:
            return "conflict"

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(pool.map(apply, patches))

    # Whichever update lands second must see the first one's footprint.
    assert sorted(outcomes) == ["conflict", "updated"]
    on_rink_b = sorted(
        (e.start_time, e.end_time)
        for e in env.store.find_all()
        if env.rink_b.id in e.resource_ids
    )
    assert all(end <= nxt for (_, end), (nxt, _) in zip(on_rink_b, on_rink_b[1:]))
