"""
SQLAlchemy declarative base and common model mixins.

This module provides the SQLAlchemy DeclarativeBase, mixins for UUID keys and
timestamps, and a ``to_dict`` serializer used for audit snapshots. Types are
the dialect-neutral ``Uuid``/``JSON`` variants so the same metadata runs on
PostgreSQL in production and SQLite in the test suite.
"""

import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Type

from sqlalchemy import DateTime, Enum as SQLEnum, Uuid, func
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


def utcnow() -> datetime:
    """Timezone-aware current time used for Python-side column defaults."""
    return datetime.now(timezone.utc)


def db_enum(enum_cls: Type[enum.Enum], name: str) -> SQLEnum:
    """
    Enum column type persisting member values (``"in_queue"``) not names.

    Args:
        enum_cls: Python enum class
        name: Database type / constraint name
    """
    return SQLEnum(
        enum_cls,
        name=name,
        create_constraint=True,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all SQLAlchemy models with async support.

    Provides async attribute loading and serialization helpers.
    """

    __abstract__ = True

    def to_dict(self, exclude: Optional[set[str]] = None) -> Dict[str, Any]:
        """
        Convert model instance to a JSON-safe dictionary.

        Args:
            exclude: Set of attribute names to exclude from output

        Returns:
            Dictionary representation of the model

        Example:
            batch = ProductionBatch(human_uid="GTB-2511-001", ...)
            snapshot = batch.to_dict(exclude={"created_at", "updated_at"})
        """
        exclude = exclude or set()
        result: Dict[str, Any] = {}

        for column in self.__table__.columns:
            if column.name in exclude:
                continue
            value = getattr(self, column.key)
            if isinstance(value, datetime):
                result[column.name] = value.isoformat()
            elif isinstance(value, uuid.UUID):
                result[column.name] = str(value)
            elif isinstance(value, Decimal):
                result[column.name] = str(value)
            elif isinstance(value, enum.Enum):
                result[column.name] = value.value
            else:
                result[column.name] = value

        return result

    def __repr__(self) -> str:
        pk_values = []
        for column in self.__table__.primary_key.columns:
            value = getattr(self, column.key, None)
            if value is not None:
                pk_values.append(f"{column.name}={value!r}")

        pk_str = ", ".join(pk_values) if pk_values else "no primary key"
        return f"<{self.__class__.__name__}({pk_str})>"


class UUIDMixin:
    """Mixin for a UUID primary key generated client-side."""

    @declared_attr
    def id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            Uuid(as_uuid=True),
            primary_key=True,
            default=uuid.uuid4,
            nullable=False,
            comment="Unique identifier for the record",
        )


class CreatedAtMixin:
    """Mixin for an insert timestamp."""

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            default=utcnow,
            server_default=func.now(),
            comment="Timestamp when record was created",
        )


class TimestampMixin(CreatedAtMixin):
    """
    Mixin for automatic timestamp management.

    Values are produced Python-side as well as server-side so they are
    populated on the instance right after flush, without a refresh.
    """

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            default=utcnow,
            onupdate=utcnow,
            server_default=func.now(),
            comment="Timestamp when record was last updated",
        )


class BaseModel(Base, UUIDMixin, TimestampMixin):
    """
    Base model with UUID primary key and created/updated timestamps.

    Example:
        class Sku(BaseModel):
            __tablename__ = "skus"

            code: Mapped[str] = mapped_column(String(50), unique=True)
    """

    __abstract__ = True


class AppendOnlyModel(Base, UUIDMixin, CreatedAtMixin):
    """Base model for rows that are written once and never updated."""

    __abstract__ = True
