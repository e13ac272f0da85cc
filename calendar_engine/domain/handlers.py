"""Domain event handlers, wired up at application startup."""

from __future__ import annotations

import logging
import uuid

from calendar_engine.domain.bus import EventBus
from calendar_engine.domain.events import (
    EventCreated,
    EventDeleted,
    EventStatusChanged,
    EventUpdated,
    ParticipantAdded,
    ParticipantRemoved,
    ParticipantStatusChanged,
)
from calendar_engine.domain.models import EventStatus, Notification, NotificationKind
from calendar_engine.repos.memory import NotificationOutbox

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Turns committed changes into attendee notifications."""

    def __init__(self, bus: EventBus, outbox: NotificationOutbox) -> None:
        self.bus = bus
        self.outbox = outbox
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(EventCreated, self.on_event_created)
        self.bus.subscribe(EventUpdated, self.on_event_updated)
        self.bus.subscribe(EventStatusChanged, self.on_status_changed)
        self.bus.subscribe(EventDeleted, self.on_event_deleted)
        self.bus.subscribe(ParticipantAdded, self.on_participant_added)
        self.bus.subscribe(ParticipantRemoved, self.on_participant_removed)
        self.bus.subscribe(ParticipantStatusChanged, self.on_participant_status_changed)

    def _notify(self, notification: Notification) -> None:
        self.outbox.add(notification)
        logger.info(
            "Queued %s notification for event %s (%d recipients)",
            notification.kind.value,
            notification.event_id,
            len(notification.recipients),
        )

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_event_created(self, event: EventCreated) -> None:
        self._notify(
            Notification(
                id=uuid.uuid4(),
                event_id=event.event_id,
                kind=NotificationKind.CREATED,
                recipients=event.attendee_ids,
                payload={"title": event.title},
            )
        )

    def on_event_updated(self, event: EventUpdated) -> None:
        if not event.changes:
            return
        self._notify(
            Notification(
                id=uuid.uuid4(),
                event_id=event.event_id,
                kind=NotificationKind.UPDATED,
                recipients=event.attendee_ids,
                payload={"title": event.title, "changes": event.changes},
            )
        )

    def on_status_changed(self, event: EventStatusChanged) -> None:
        if event.previous == event.current:
            return
        kind = (
            NotificationKind.CANCELED
            if event.current == EventStatus.CANCELED
            else NotificationKind.STATUS_CHANGED
        )
        self._notify(
            Notification(
                id=uuid.uuid4(),
                event_id=event.event_id,
                kind=kind,
                recipients=event.attendee_ids,
                payload={
                    "title": event.title,
                    "previous": event.previous.value,
                    "current": event.current.value,
                },
            )
        )

    def on_event_deleted(self, event: EventDeleted) -> None:
        self._notify(
            Notification(
                id=uuid.uuid4(),
                event_id=event.event_id,
                kind=NotificationKind.DELETED,
                recipients=event.attendee_ids,
                payload={"title": event.title},
            )
        )

    def on_participant_added(self, event: ParticipantAdded) -> None:
        self._notify(
            Notification(
                id=uuid.uuid4(),
                event_id=event.event_id,
                kind=NotificationKind.PARTICIPANT_ADDED,
                recipients=[event.user_id],
                payload={"status": event.status.value},
            )
        )

    def on_participant_removed(self, event: ParticipantRemoved) -> None:
        self._notify(
            Notification(
                id=uuid.uuid4(),
                event_id=event.event_id,
                kind=NotificationKind.PARTICIPANT_REMOVED,
                recipients=[event.user_id],
            )
        )

    def on_participant_status_changed(self, event: ParticipantStatusChanged) -> None:
        payload = {"status": event.status.value}
        if event.absence_reason:
            payload["absence_reason"] = event.absence_reason
        self._notify(
            Notification(
                id=uuid.uuid4(),
                event_id=event.event_id,
                kind=NotificationKind.PARTICIPANT_STATUS_CHANGED,
                recipients=[event.user_id],
                payload=payload,
            )
        )
