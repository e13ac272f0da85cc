"""FastAPI entry point for the event scheduling service."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TypeVar
from uuid import UUID

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from calendar_engine.config import Settings
from calendar_engine.domain.bus import EventBus
from calendar_engine.domain.errors import (
    ConflictError,
    DomainError,
    ErrorCode,
    EventConflictError,
    NotFoundError,
    ValidationError,
)
from calendar_engine.domain.handlers import HandlerRegistry
from calendar_engine.domain.models import (
    AddParticipantRequest,
    BulkAddParticipantsRequest,
    CheckConflictsRequest,
    CreateEventRequest,
    CreateLocationRequest,
    CreateResourceRequest,
    CreateResourceTypeRequest,
    EventFilter,
    EventStatus,
    EventType,
    StatusUpdateRequest,
    UpdateEventRequest,
    UpdateParticipantRequest,
)
from calendar_engine.repos.catalog import CatalogStore
from calendar_engine.repos.database import Database
from calendar_engine.repos.events import EventStore
from calendar_engine.repos.memory import NotificationOutbox, TeamDirectory, UserDirectory
from calendar_engine.services.availability import AvailabilityCalculator
from calendar_engine.services.commands import CatalogCommands, EventCommands
from calendar_engine.services.conflicts import ConflictDetector
from calendar_engine.services.validation import (
    parse_optional_timestamp,
    parse_timestamp,
    parse_uuid,
    parse_uuid_list,
)

settings = Settings.from_env()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ── Singletons (created at import time for simplicity) ────────────────
database = Database(settings.database_url, echo=settings.database_echo)
database.create_all()

event_store = EventStore(database)
catalog_store = CatalogStore(database)
conflict_detector = ConflictDetector(database)
availability_calculator = AvailabilityCalculator(
    catalog_store, conflict_detector, max_slots=settings.max_availability_slots
)
user_directory = UserDirectory(settings.known_user_ids, strict=settings.strict_directory)
team_directory = TeamDirectory(settings.known_team_ids, strict=settings.strict_directory)
event_bus = EventBus()
notification_outbox = NotificationOutbox()
handler_registry = HandlerRegistry(bus=event_bus, outbox=notification_outbox)

event_commands = EventCommands(
    database=database,
    store=event_store,
    catalog=catalog_store,
    detector=conflict_detector,
    users=user_directory,
    teams=team_directory,
    bus=event_bus,
)
catalog_commands = CatalogCommands(catalog_store)

app = FastAPI(title="Calendar Scheduling Engine")


# ── Error mapping ─────────────────────────────────────────────────────


def _status_for(exc: DomainError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    return 500


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    body: dict = {"error": True, "code": exc.code.value, "message": exc.message}
    if exc.details:
        body["details"] = exc.details
    if isinstance(exc, EventConflictError):
        body["conflicts"] = [c.model_dump(mode="json") for c in exc.conflicts]
    return JSONResponse(status_code=_status_for(exc), content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": True,
            "code": ErrorCode.VALIDATION_ERROR.value,
            "message": "Invalid request",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )


# ── Dependencies and helpers ──────────────────────────────────────────

E = TypeVar("E", bound=StrEnum)


def current_organization(
    x_organization_id: str | None = Header(default=None),
) -> UUID:
    """Tenant of the caller. Authentication itself happens upstream."""
    if x_organization_id is None:
        return settings.default_organization_id
    return parse_uuid(x_organization_id, "X-Organization-Id")


def _parse_enum(enum_type: type[E], raw: str | None, field_name: str) -> E | None:
    if raw is None or raw == "":
        return None
    try:
        return enum_type(raw)
    except ValueError as exc:
        raise ValidationError(f"Invalid {field_name}", field_name=field_name) from exc


def _optional_uuid(raw: str | None, field_name: str) -> UUID | None:
    if raw is None or raw == "":
        return None
    return parse_uuid(raw, field_name)


# ── Events ────────────────────────────────────────────────────────────


@app.get("/events")
def list_events(
    start: str | None = None,
    end: str | None = None,
    team_id: str | None = Query(default=None, alias="teamId"),
    event_type: str | None = Query(default=None, alias="eventType"),
    location_id: str | None = Query(default=None, alias="locationId"),
    status: str | None = None,
    search: str | None = None,
    limit: int | None = Query(default=None, gt=0),
    offset: int = Query(default=0, ge=0),
    organization_id: UUID = Depends(current_organization),
) -> dict:
    """Return events in the caller's organization, ordered by start time."""
    filters = EventFilter(
        organization_id=organization_id,
        start=parse_optional_timestamp(start, "start"),
        end=parse_optional_timestamp(end, "end"),
        team_id=_optional_uuid(team_id, "teamId"),
        event_type=_parse_enum(EventType, event_type, "eventType"),
        location_id=_optional_uuid(location_id, "locationId"),
        status=_parse_enum(EventStatus, status, "status"),
        search=search or None,
        limit=limit,
        offset=offset,
    )
    events = event_commands.list_events(filters)
    return {"success": True, "data": [e.model_dump(mode="json") for e in events]}


@app.post("/events/check-conflicts")
def check_conflicts(
    body: CheckConflictsRequest, organization_id: UUID = Depends(current_organization)
) -> dict:
    """Report what a booking would collide with, without writing anything."""
    conflicts = event_commands.check_conflicts(body, organization_id)
    return {
        "success": True,
        "hasConflicts": bool(conflicts),
        "conflicts": [c.model_dump(mode="json") for c in conflicts],
    }


@app.get("/events/upcoming")
def upcoming_events(
    user_id: str = Query(alias="userId"),
    days: int = 7,
    limit: int | None = Query(default=None, gt=0),
    offset: int = Query(default=0, ge=0),
    organization_id: UUID = Depends(current_organization),
) -> dict:
    """Live events the user attends over the next *days* days."""
    events = event_commands.upcoming_events(
        organization_id, parse_uuid(user_id, "userId"), days, limit=limit, offset=offset
    )
    return {"success": True, "data": [e.model_dump(mode="json") for e in events]}


@app.get("/events/{event_id}")
def get_event(event_id: str, organization_id: UUID = Depends(current_organization)) -> dict:
    event = event_commands.get_event(parse_uuid(event_id, "event id"), organization_id)
    return {"success": True, "data": event.model_dump(mode="json")}


@app.post("/events", status_code=201)
def create_event(
    body: CreateEventRequest, organization_id: UUID = Depends(current_organization)
) -> dict:
    event = event_commands.create_event(organization_id, body)
    return {"success": True, "data": event.model_dump(mode="json")}


@app.put("/events/{event_id}")
def update_event(
    event_id: str,
    body: UpdateEventRequest,
    organization_id: UUID = Depends(current_organization),
) -> dict:
    event = event_commands.update_event(
        parse_uuid(event_id, "event id"), body, organization_id
    )
    return {"success": True, "data": event.model_dump(mode="json")}


@app.delete("/events/{event_id}")
def delete_event(event_id: str, organization_id: UUID = Depends(current_organization)) -> dict:
    event_commands.delete_event(parse_uuid(event_id, "event id"), organization_id)
    return {"success": True, "message": "Event deleted successfully"}


@app.patch("/events/{event_id}/status")
def update_event_status(
    event_id: str,
    body: StatusUpdateRequest,
    organization_id: UUID = Depends(current_organization),
) -> dict:
    event = event_commands.update_status(
        parse_uuid(event_id, "event id"), body.status, organization_id
    )
    return {"success": True, "data": event.model_dump(mode="json")}


# ── Participants ──────────────────────────────────────────────────────


@app.get("/events/{event_id}/participants")
def list_participants(
    event_id: str, organization_id: UUID = Depends(current_organization)
) -> dict:
    attendees = event_commands.list_participants(
        parse_uuid(event_id, "event id"), organization_id
    )
    return {"success": True, "data": [a.model_dump(mode="json") for a in attendees]}


@app.post("/events/{event_id}/participants", status_code=201)
def add_participant(
    event_id: str,
    body: AddParticipantRequest | BulkAddParticipantsRequest,
    organization_id: UUID = Depends(current_organization),
) -> dict:
    """Add one participant, or several at once when the body has a participants list."""
    parsed_id = parse_uuid(event_id, "event id")
    if isinstance(body, BulkAddParticipantsRequest):
        added = event_commands.add_participants(parsed_id, body, organization_id)
        return {"success": True, "data": [a.model_dump(mode="json") for a in added]}
    attendee = event_commands.add_participant(parsed_id, body, organization_id)
    return {"success": True, "data": attendee.model_dump(mode="json")}


@app.put("/events/{event_id}/participants/{user_id}")
def update_participant(
    event_id: str,
    user_id: str,
    body: UpdateParticipantRequest,
    organization_id: UUID = Depends(current_organization),
) -> dict:
    attendee = event_commands.update_participant(
        parse_uuid(event_id, "event id"),
        parse_uuid(user_id, "user id"),
        body,
        organization_id,
    )
    return {"success": True, "data": attendee.model_dump(mode="json")}


@app.delete("/events/{event_id}/participants/{user_id}")
def remove_participant(
    event_id: str, user_id: str, organization_id: UUID = Depends(current_organization)
) -> dict:
    event_commands.remove_participant(
        parse_uuid(event_id, "event id"), parse_uuid(user_id, "user id"), organization_id
    )
    return {"success": True, "message": "Participant removed"}


# ── Availability ──────────────────────────────────────────────────────


@app.get("/resources/availability")
def bulk_availability(
    start: str,
    end: str,
    ids: list[str] = Query(default=[]),
    granularity_minutes: int | None = Query(default=None, alias="granularityMinutes"),
    organization_id: UUID = Depends(current_organization),
) -> dict:
    """Availability of several resources, optionally cut into fixed-length slots."""
    result = availability_calculator.check_resources(
        parse_uuid_list(ids, "ids"),
        parse_timestamp(start, "start"),
        parse_timestamp(end, "end"),
        granularity_minutes=granularity_minutes,
        organization_id=organization_id,
    )
    body: dict = {"resources": [r.model_dump(mode="json") for r in result.resources]}
    if result.slots is not None:
        body["slots"] = [s.model_dump(mode="json", by_alias=True) for s in result.slots]
    return body


@app.get("/resources/{resource_id}/availability")
def resource_availability(
    resource_id: str,
    start: str,
    end: str,
    organization_id: UUID = Depends(current_organization),
) -> dict:
    result = availability_calculator.check_resource(
        parse_uuid(resource_id, "resource id"),
        parse_timestamp(start, "start"),
        parse_timestamp(end, "end"),
        organization_id=organization_id,
    )
    return result.model_dump(mode="json")


# ── Catalog ───────────────────────────────────────────────────────────


@app.post("/locations", status_code=201)
def create_location(
    body: CreateLocationRequest, organization_id: UUID = Depends(current_organization)
) -> dict:
    location = catalog_commands.create_location(organization_id, body)
    return {"success": True, "data": location.model_dump(mode="json")}


@app.get("/locations/{location_id}")
def get_location(
    location_id: str, organization_id: UUID = Depends(current_organization)
) -> dict:
    location = catalog_commands.get_location(
        parse_uuid(location_id, "location id"), organization_id
    )
    return {"success": True, "data": location.model_dump(mode="json")}


@app.delete("/locations/{location_id}")
def delete_location(
    location_id: str, organization_id: UUID = Depends(current_organization)
) -> dict:
    catalog_commands.delete_location(parse_uuid(location_id, "location id"), organization_id)
    return {"success": True, "message": "Location deleted successfully"}


@app.post("/resource-types", status_code=201)
def create_resource_type(
    body: CreateResourceTypeRequest, organization_id: UUID = Depends(current_organization)
) -> dict:
    resource_type = catalog_commands.create_resource_type(organization_id, body)
    return {"success": True, "data": resource_type.model_dump(mode="json")}


@app.post("/resources", status_code=201)
def create_resource(
    body: CreateResourceRequest, organization_id: UUID = Depends(current_organization)
) -> dict:
    resource = catalog_commands.create_resource(organization_id, body)
    return {"success": True, "data": resource.model_dump(mode="json")}


@app.get("/resources/{resource_id}")
def get_resource(
    resource_id: str, organization_id: UUID = Depends(current_organization)
) -> dict:
    resource = catalog_commands.get_resource(
        parse_uuid(resource_id, "resource id"), organization_id
    )
    return {"success": True, "data": resource.model_dump(mode="json")}


@app.delete("/resources/{resource_id}")
def delete_resource(
    resource_id: str, organization_id: UUID = Depends(current_organization)
) -> dict:
    catalog_commands.delete_resource(parse_uuid(resource_id, "resource id"), organization_id)
    return {"success": True, "message": "Resource deleted successfully"}
