"""
Module: billing_kernel.db.base
Responsibility: Declarative bases shared by every billing table.
Architecture position: Kernel > DB.  Imported by every model; imports
    nothing from the rest of the kernel.

Conventions:
    - Primary keys are uuid4 values stored as 36-char strings, so the same
      schema runs on PostgreSQL and SQLite.
    - ``Decimal`` annotations map to Numeric(18, 2); floats never reach a
      money column.
    - Rows that belong to a condominium derive from TrackedBase and carry
      a non-null tenant_id plus creator/updater ids.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import String, TypeDecorator


class UUIDString(TypeDecorator):
    """UUID column stored as its canonical 36-char text form.

    Strings are accepted on bind and normalized through ``UUID()``, so a
    malformed id fails at flush time rather than being stored.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(value if isinstance(value, PyUUID) else PyUUID(str(value)))

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    """Root of the model registry.  Every table gets a uuid4 ``id``."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, 2),
        datetime: DateTime(timezone=True),
        date: Date,
        int: BigInteger,
        PyUUID: UUIDString(),
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Tenant-owned row with creation and modification tracking.

    created_at defaults to the database clock; services that depend on
    ordering (credit lots) set it from the injected Clock instead.
    """

    __abstract__ = True

    tenant_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )

    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString())


UUID = PyUUID

__all__ = ["Base", "TrackedBase", "UUIDString", "UUID"]
