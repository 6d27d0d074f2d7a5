"""
Module: commerce_kernel.selectors.base
Responsibility: shared plumbing for the read-only selectors behind the
    merchant dashboard and the notifiers.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    the domain DTOs.  MUST NOT import from services/ or outer layers.

Selectors never add, delete, flush or commit.  They hand back frozen DTOs
rather than ORM rows, and a missing row is ``None`` or an empty list, not an
error.
"""

from typing import Any, ClassVar, Generic, TypeVar
from uuid import UUID

from sqlalchemy import Select
from sqlalchemy.orm import Session

from commerce_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(Generic[ModelType]):

    model: ClassVar[type[Base]]

    def __init__(self, session: Session):
        self.session = session

    def get(self, row_id: UUID) -> Any | None:
        row = self.session.get(self.model, row_id)
        return row.to_dto() if row is not None else None

    def _dtos(self, stmt: Select) -> list[Any]:
        return [row.to_dto() for row in self.session.scalars(stmt)]
