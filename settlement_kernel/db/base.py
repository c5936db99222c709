"""
Declarative bases for the settlement schema.

``Base`` gives every table a uuid4 primary key.  ``TrackedBase`` adds who
created a row and when, plus the last updater; those columns stay writable
on rows whose money fields are frozen by ``db.immutability``.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from settlement_kernel.db.types import UUIDString, money_column_type


class Base(DeclarativeBase):

    type_annotation_map: ClassVar[dict] = {
        Decimal: money_column_type(),
        datetime: DateTime(timezone=True),
        date: Date,
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())
    created_by_id: Mapped[UUID] = mapped_column(UUIDString())
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString())
