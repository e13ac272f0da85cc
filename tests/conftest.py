"""Shared fixtures: an in-memory SQLite database and a seeded catalog."""

from __future__ import annotations

import os

# Must be set before calendar_engine.main is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

from calendar_engine.domain.bus import EventBus
from calendar_engine.domain.handlers import HandlerRegistry
from calendar_engine.domain.models import EventType, NewEvent
from calendar_engine.repos.catalog import CatalogStore
from calendar_engine.repos.database import Database
from calendar_engine.repos.events import EventStore
from calendar_engine.repos.memory import NotificationOutbox, TeamDirectory, UserDirectory
from calendar_engine.services.commands import CatalogCommands, EventCommands
from calendar_engine.services.conflicts import ConflictDetector

NOW = datetime(2030, 3, 1, 9, 0, tzinfo=timezone.utc)
ORG = UUID("11111111-1111-4111-8111-111111111111")


def at(hours: float = 0, minutes: float = 0) -> datetime:
    return NOW + timedelta(hours=hours, minutes=minutes)


class Env:
    """Everything a service-level test needs, wired against one fresh database."""

    def __init__(self, url: str = "sqlite://") -> None:
        self.database = Database(url)
        self.database.create_all()
        self.store = EventStore(self.database)
        self.catalog = CatalogStore(self.database)
        self.detector = ConflictDetector(self.database)
        self.users = UserDirectory()
        self.teams = TeamDirectory()
        self.bus = EventBus()
        self.outbox = NotificationOutbox()
        self.registry = HandlerRegistry(bus=self.bus, outbox=self.outbox)
        self.commands = EventCommands(
            database=self.database,
            store=self.store,
            catalog=self.catalog,
            detector=self.detector,
            users=self.users,
            teams=self.teams,
            bus=self.bus,
        )
        self.catalog_commands = CatalogCommands(self.catalog)

        self.location = self.catalog.create_location(ORG, "Main Arena")
        self.other_location = self.catalog.create_location(ORG, "Gym")
        self.resource_type = self.catalog.create_resource_type(ORG, "Ice sheet")
        self.rink = self.catalog.create_resource(
            ORG, "Rink A", self.resource_type.id, self.location.id
        )
        self.rink_b = self.catalog.create_resource(
            ORG, "Rink B", self.resource_type.id, self.location.id
        )
        self.team = uuid4()
        self.other_team = uuid4()
        self.teams.register(self.team, self.other_team)

    def draft(self, **overrides) -> NewEvent:
        values = dict(
            organization_id=ORG,
            title="Practice",
            event_type=EventType.ICE_TRAINING,
            start_time=at(1),
            end_time=at(2),
        )
        values.update(overrides)
        return NewEvent(**values)


@pytest.fixture()
def env() -> Env:
    return Env()
