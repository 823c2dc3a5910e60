"""Property listing persistence."""

import logging
import uuid
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from property_sales.errors import NotFoundError, StorageError, ValidationError
from property_sales.models import PropertyRecord
from property_sales.state import Address, PropertySnapshot, PropertyType


logger = logging.getLogger(__name__)

_ADDRESS_FIELDS = ("street", "city", "state", "zip_code", "country")


class PropertyInput(BaseModel):
    """Listing attributes accepted when creating a property."""

    title: str
    description: str | None = None
    address: Address
    price: float
    bedrooms: int | None = Field(default=None, ge=0)
    bathrooms: float | None = Field(default=None, ge=0)
    square_feet: int | None = Field(default=None, ge=0)
    property_type: PropertyType = "house"
    year_built: int | None = None
    images: list[str] = Field(default_factory=list)
    videos: list[str] = Field(default_factory=list)


def _validate(data: PropertyInput) -> None:
    if not data.title.strip():
        raise ValidationError("Property title is required")
    if data.price <= 0:
        raise ValidationError("Property price must be greater than zero")
    if not data.address.street.strip() or not data.address.city.strip():
        raise ValidationError("Property address requires street and city")


def _parse_id(property_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(property_id)
    except ValueError:
        return None


def _to_snapshot(record: PropertyRecord) -> PropertySnapshot:
    return PropertySnapshot(
        id=str(record.id),
        title=record.title,
        description=record.description,
        address=Address(
            street=record.street,
            city=record.city,
            state=record.state,
            zip_code=record.zip_code,
            country=record.country,
        ),
        price=record.price,
        bedrooms=record.bedrooms,
        bathrooms=record.bathrooms,
        square_feet=record.square_feet,
        property_type=record.property_type,
        year_built=record.year_built,
        images=list(record.images or []),
        videos=list(record.videos or []),
    )


class PropertyRepository:
    """CRUD access to property listings."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_by_id(self, property_id: str) -> PropertySnapshot | None:
        uid = _parse_id(property_id)
        if uid is None:
            return None
        try:
            async with self._session_factory() as session:
                record = await session.get(PropertyRecord, uid)
        except SQLAlchemyError as e:
            raise StorageError("Property lookup failed") from e
        return _to_snapshot(record) if record else None

    async def find_all(self, limit: int = 100, offset: int = 0) -> list[PropertySnapshot]:
        stmt = (
            select(PropertyRecord)
            .order_by(PropertyRecord.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        try:
            async with self._session_factory() as session:
                records = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise StorageError("Property listing failed") from e
        return [_to_snapshot(r) for r in records]

    async def create(self, data: PropertyInput) -> PropertySnapshot:
        _validate(data)
        fields = data.model_dump(exclude={"address"})
        record = PropertyRecord(
            **fields,
            **data.address.model_dump(include=set(_ADDRESS_FIELDS)),
            status="draft",
        )
        try:
            async with self._session_factory() as session, session.begin():
                session.add(record)
                await session.flush()
        except SQLAlchemyError as e:
            raise StorageError("Property create failed") from e

        logger.info("Created property %s: %s", record.id, record.title)
        return _to_snapshot(record)

    async def update(self, property_id: str, changes: dict[str, Any]) -> PropertySnapshot:
        uid = _parse_id(property_id)
        if uid is None:
            raise NotFoundError(f"Property {property_id} not found")
        try:
            async with self._session_factory() as session, session.begin():
                record = await session.get(PropertyRecord, uid)
                if record is None:
                    raise NotFoundError(f"Property {property_id} not found")
                address = changes.get("address") or {}
                for key, value in {**changes, **address}.items():
                    if key != "address" and hasattr(record, key):
                        setattr(record, key, value)
                if record.price <= 0 or not record.title.strip():
                    raise ValidationError("Property title and a positive price are required")
                await session.flush()
                snapshot = _to_snapshot(record)
        except SQLAlchemyError as e:
            raise StorageError("Property update failed") from e
        return snapshot

    async def delete(self, property_id: str) -> None:
        uid = _parse_id(property_id)
        if uid is None:
            raise NotFoundError(f"Property {property_id} not found")
        try:
            async with self._session_factory() as session, session.begin():
                record = await session.get(PropertyRecord, uid)
                if record is None:
                    raise NotFoundError(f"Property {property_id} not found")
                await session.delete(record)
        except SQLAlchemyError as e:
            raise StorageError("Property delete failed") from e
        logger.info("Deleted property %s", property_id)
