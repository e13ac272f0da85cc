"""In-memory stand-ins for external collaborators and the notification outbox."""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from calendar_engine.domain.models import Notification


class _Directory:
    """Set-backed registry of known ids.

    With ``strict=False`` every id is reported as existing, which suits a
    deployment where the owning service is not wired in.
    """

    def __init__(self, known: Iterable[UUID] = (), strict: bool = True) -> None:
        self._known: set[UUID] = set(known)
        self.strict = strict

    def register(self, *ids: UUID) -> None:
        self._known.update(ids)

    def exists(self, identifier: UUID) -> bool:
        return not self.strict or identifier in self._known

    def missing(self, identifiers: Iterable[UUID]) -> list[UUID]:
        return [i for i in identifiers if not self.exists(i)]

    def clear(self) -> None:
        self._known.clear()


class UserDirectory(_Directory):
    """Users owned by the user service."""


class TeamDirectory(_Directory):
    """Teams owned by the organization service."""


class NotificationOutbox:
    """List-backed store of notifications waiting to be delivered."""

    def __init__(self) -> None:
        self._items: list[Notification] = []

    def add(self, notification: Notification) -> None:
        self._items.append(notification)

    def list_all(self) -> list[Notification]:
        return list(self._items)

    def list_for_event(self, event_id: UUID) -> list[Notification]:
        return sorted(
            [n for n in self._items if n.event_id == event_id],
            key=lambda n: n.created_at,
        )

    def clear(self) -> None:
        self._items.clear()
