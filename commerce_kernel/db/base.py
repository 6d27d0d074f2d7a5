"""
Module: commerce_kernel.db.base
Responsibility: the declarative ``Base`` every ORM model derives from, the
    portable ``UUIDString`` column type, and ``TrackedBase`` with the audit
    columns shared by products, orders, relations and conversations.
Architecture position: Kernel > DB.  Imported by every model file.  MUST NOT
    import models/, services/, selectors/, domain/, or outer layers.

Column conventions:
    - Primary keys are uuid4 values kept in a 36-character string column, so
      the same schema runs on SQLite and PostgreSQL.
    - A bare ``Mapped[Decimal]`` becomes Numeric(18, 2) and a bare
      ``Mapped[datetime]`` is timezone-aware.
    - ``created_by`` is required.  Actors are identity strings supplied by
      the caller; the kernel does not issue them.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUIDs in a String(36) column.  Accepts UUID objects or their text form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> str | None:
        if value is None:
            return None
        if not isinstance(value, UUID):
            # reject malformed ids before they reach the database
            value = UUID(str(value))
        return str(value)

    def process_result_value(self, value: Any, dialect) -> UUID | None:
        if value is None or isinstance(value, UUID):
            return value
        return UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        Decimal: Numeric(18, 2),
        datetime: DateTime(timezone=True),
        int: Integer,
    }

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.id}>"


class TrackedBase(Base):
    """
    Abstract base adding who/when audit columns.

    ``created_at`` is filled by the database on insert; ``updated_at`` is
    refreshed on every UPDATE.  ``updated_by`` stays NULL until the row is
    first modified.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    created_by: Mapped[str] = mapped_column(String(100))
    updated_by: Mapped[str | None] = mapped_column(String(100))
