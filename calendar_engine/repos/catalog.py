"""Locations, resource types and resources: plain records referenced by events."""

from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlmodel import Session, col, select

from calendar_engine.domain.models import Location, Resource, ResourceType
from calendar_engine.repos.database import Database
from calendar_engine.repos.tables import LocationRow, ResourceRow, ResourceTypeRow


def _location(row: LocationRow) -> Location:
    return Location(
        id=row.id,
        organization_id=row.organization_id,
        name=row.name,
        description=row.description,
    )


def _resource_type(row: ResourceTypeRow) -> ResourceType:
    return ResourceType(
        id=row.id,
        organization_id=row.organization_id,
        name=row.name,
        description=row.description,
    )


def _resource(row: ResourceRow) -> Resource:
    return Resource(
        id=row.id,
        organization_id=row.organization_id,
        resource_type_id=row.resource_type_id,
        location_id=row.location_id,
        name=row.name,
        capacity=row.capacity,
        is_bookable=row.is_bookable,
    )


class CatalogStore:
    """CRUD for the bookable catalog. Deletes surface IntegrityError when still referenced."""

    def __init__(self, database: Database) -> None:
        self._database = database

    # -- locations -------------------------------------------------------

    def create_location(
        self, organization_id: UUID, name: str, description: str | None = None
    ) -> Location:
        with self._database.transaction() as s:
            row = LocationRow(organization_id=organization_id, name=name, description=description)
            s.add(row)
            s.flush()
            return _location(row)

    def get_location(self, location_id: UUID, *, session: Session | None = None) -> Location | None:
        if session is not None:
            row = session.get(LocationRow, location_id)
            return _location(row) if row else None
        with self._database.read_session() as s:
            row = s.get(LocationRow, location_id)
            return _location(row) if row else None

    def delete_location(self, location_id: UUID) -> bool:
        with self._database.transaction() as s:
            row = s.get(LocationRow, location_id)
            if row is None:
                return False
            s.delete(row)
            s.flush()
            return True

    # -- resource types --------------------------------------------------

    def create_resource_type(
        self, organization_id: UUID, name: str, description: str | None = None
    ) -> ResourceType:
        with self._database.transaction() as s:
            row = ResourceTypeRow(
                organization_id=organization_id, name=name, description=description
            )
            s.add(row)
            s.flush()
            return _resource_type(row)

    def get_resource_type(self, resource_type_id: UUID) -> ResourceType | None:
        with self._database.read_session() as s:
            row = s.get(ResourceTypeRow, resource_type_id)
            return _resource_type(row) if row else None

    # -- resources -------------------------------------------------------

    def create_resource(
        self,
        organization_id: UUID,
        name: str,
        resource_type_id: UUID,
        location_id: UUID,
        capacity: int | None = None,
        is_bookable: bool = True,
    ) -> Resource:
        with self._database.transaction() as s:
            row = ResourceRow(
                organization_id=organization_id,
                name=name,
                resource_type_id=resource_type_id,
                location_id=location_id,
                capacity=capacity,
                is_bookable=is_bookable,
            )
            s.add(row)
            s.flush()
            return _resource(row)

    def get_resource(self, resource_id: UUID) -> Resource | None:
        with self._database.read_session() as s:
            row = s.get(ResourceRow, resource_id)
            return _resource(row) if row else None

    def get_resources(
        self, resource_ids: Iterable[UUID], *, session: Session | None = None
    ) -> dict[UUID, Resource]:
        """Return the resources that exist, keyed by id. Missing ids are simply absent."""
        ids = list(dict.fromkeys(resource_ids))
        if not ids:
            return {}
        statement = select(ResourceRow).where(col(ResourceRow.id).in_(ids))
        if session is not None:
            return {row.id: _resource(row) for row in session.exec(statement).all()}
        with self._database.read_session() as s:
            return {row.id: _resource(row) for row in s.exec(statement).all()}

    def delete_resource(self, resource_id: UUID) -> bool:
        with self._database.transaction() as s:
            row = s.get(ResourceRow, resource_id)
            if row is None:
                return False
            s.delete(row)
            s.flush()
            return True
