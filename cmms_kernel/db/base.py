"""
Declarative base and portable column types.

Every table gets a uuid4 primary key stored as String(36) and aware-UTC
timestamps, so the same models run on PostgreSQL and on the SQLite
databases used by the tests and single-site installs.

Column precision comes from ``type_annotation_map``: a model annotates
``Mapped[Quantity]`` or ``Mapped[Money]`` and gets Numeric(18, 4) or
Numeric(38, 9) without repeating the type.  Floats are never mapped.

Kernel > DB: imported by models; imports nothing else from the kernel
except the type aliases.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from cmms_kernel.db.types import Money, Quantity, Sequence


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, 36-character text in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    # SQLite hands back naive text; those values were written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class UTCDateTime(TypeDecorator):
    """DateTime that binds and loads as aware UTC on every backend."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return _as_utc(value)

    def process_result_value(self, value, dialect):
        return _as_utc(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Quantity: Numeric(18, 4),
        Money: Numeric(38, 9),
        Sequence: BigInteger,
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds who/when audit columns.

    ``created_at`` and ``created_by_id`` are written once; ``updated_at``
    moves on every UPDATE and ``updated_by_id`` is set by the service
    that made the change.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())
    created_by_id: Mapped[UUID]
    updated_by_id: Mapped[UUID | None]
