"""Service answering resource availability questions over a time window."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from uuid import UUID

from calendar_engine.domain.errors import NotFoundError, ValidationError
from calendar_engine.domain.models import (
    AvailabilitySlot,
    BulkAvailability,
    ConflictingEvent,
    ConflictQuery,
    ConflictReason,
    Resource,
    ResourceAvailability,
    ResourceAvailabilityEntry,
)
from calendar_engine.repos.catalog import CatalogStore
from calendar_engine.services.conflicts import ConflictDetector, find_conflicts
from calendar_engine.services.validation import require_window

logger = logging.getLogger(__name__)

DEFAULT_MAX_SLOTS = 2000


def build_slots(
    start: datetime, end: datetime, granularity_minutes: int
) -> list[tuple[datetime, datetime]]:
    """Cut [start, end) into consecutive slots; the last one is clipped to *end*."""
    if granularity_minutes <= 0:
        raise ValidationError(
            "granularityMinutes must be a positive integer", field_name="granularityMinutes"
        )
    step = timedelta(minutes=granularity_minutes)
    slots: list[tuple[datetime, datetime]] = []
    cursor = start
    while cursor < end:
        slot_end = min(cursor + step, end)
        slots.append((cursor, slot_end))
        cursor = slot_end
    return slots


def compute_slots(
    start: datetime,
    end: datetime,
    granularity_minutes: int,
    resource_ids: Sequence[UUID],
    conflicts: Sequence[ConflictingEvent],
    max_slots: int = DEFAULT_MAX_SLOTS,
) -> list[AvailabilitySlot]:
    """Mark each resource unavailable in every slot one of its conflicts overlaps."""
    if (end - start) > timedelta(minutes=granularity_minutes) * max_slots:
        raise ValidationError(
            f"Window would produce more than {max_slots} slots",
            field_name="granularityMinutes",
        )
    per_resource = _partition(resource_ids, conflicts)
    result: list[AvailabilitySlot] = []
    for slot_start, slot_end in build_slots(start, end, granularity_minutes):
        busy = [
            rid
            for rid in resource_ids
            if find_conflicts(slot_start, slot_end, per_resource[rid])
        ]
        result.append(
            AvailabilitySlot(start=slot_start, end=slot_end, unavailable_resource_ids=busy)
        )
    return result


def _partition(
    resource_ids: Sequence[UUID], conflicts: Sequence[ConflictingEvent]
) -> dict[UUID, list[ConflictingEvent]]:
    per_resource: dict[UUID, list[ConflictingEvent]] = {rid: [] for rid in resource_ids}
    for conflict in conflicts:
        if conflict.conflict_reason is ConflictReason.RESOURCE:
            per_resource.setdefault(conflict.conflict_identifier, []).append(conflict)
    return per_resource


def _usable(resource: Resource | None, organization_id: UUID | None) -> bool:
    if resource is None or not resource.is_bookable:
        return False
    return organization_id is None or resource.organization_id == organization_id


class AvailabilityCalculator:
    """Single-resource, bulk and slot-granular availability, built on the detector."""

    def __init__(
        self,
        catalog: CatalogStore,
        detector: ConflictDetector,
        max_slots: int = DEFAULT_MAX_SLOTS,
    ) -> None:
        self._catalog = catalog
        self._detector = detector
        self._max_slots = max_slots

    def check_resource(
        self,
        resource_id: UUID,
        start: datetime,
        end: datetime,
        organization_id: UUID | None = None,
    ) -> ResourceAvailability:
        """Is one bookable resource free over [start, end)?

        Raises:
            ValidationError: If end is before start.
            NotFoundError: If the resource does not exist, is not bookable or
                belongs to another organization.
        """
        require_window(start, end)
        resource = self._catalog.get_resource(resource_id)
        if not _usable(resource, organization_id):
            raise NotFoundError("Resource", resource_id)

        conflicts = self._detector.find_conflicts(
            ConflictQuery(
                start_time=start,
                end_time=end,
                organization_id=organization_id,
                resource_ids=[resource_id],
            )
        )
        return ResourceAvailability(available=not conflicts, conflicts=conflicts)

    def check_resources(
        self,
        resource_ids: Sequence[UUID],
        start: datetime,
        end: datetime,
        granularity_minutes: int | None = None,
        organization_id: UUID | None = None,
    ) -> BulkAvailability:
        """Availability of several resources with one detector query.

        Missing or non-bookable ids are reported together in a single
        NotFoundError rather than as a partial result.
        """
        require_window(start, end)
        ids = list(dict.fromkeys(resource_ids))
        if not ids:
            raise ValidationError("At least one resource id is required", field_name="ids")
        if granularity_minutes is not None and granularity_minutes <= 0:
            raise ValidationError(
                "granularityMinutes must be a positive integer", field_name="granularityMinutes"
            )

        found = self._catalog.get_resources(ids)
        unusable = [rid for rid in ids if not _usable(found.get(rid), organization_id)]
        if unusable:
            raise NotFoundError("Resources", unusable)

        conflicts = self._detector.find_conflicts(
            ConflictQuery(
                start_time=start,
                end_time=end,
                organization_id=organization_id,
                resource_ids=ids,
            )
        )
        per_resource = _partition(ids, conflicts)
        entries = [
            ResourceAvailabilityEntry(id=rid, available=not per_resource[rid]) for rid in ids
        ]

        slots = None
        if granularity_minutes is not None:
            slots = compute_slots(
                start, end, granularity_minutes, ids, conflicts, max_slots=self._max_slots
            )
        logger.debug(
            "Availability for %d resources: %d conflicts", len(ids), len(conflicts)
        )
        return BulkAvailability(resources=entries, slots=slots)
