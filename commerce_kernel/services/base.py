"""
Common base for the kernel's write services.

A service works inside the caller's transaction: it receives a Session and
a Clock, persists with ``session.flush()``, and leaves commit and rollback
to WorkflowOrchestrator (or the test harness).  Savepoints via
``session.begin_nested()`` are fine for steps that must be undone alone.

Read-side queries for the dashboard live in ``commerce_kernel/selectors/``.
"""

from typing import ClassVar, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from commerce_kernel.db.base import Base
from commerce_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(Generic[ModelType]):
    """Holds the session and clock; ``model`` names the row type the service owns."""

    model: ClassVar[type[Base]]

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _select_for_update(self, row_id: UUID) -> ModelType | None:
        """
        Load a row under a write lock, refreshing any stale identity-map copy.

        FOR UPDATE is a no-op on SQLite; there the BEGIN IMMEDIATE write lock
        already serializes the transaction.
        """
        return self.session.execute(
            select(self.model)
            .where(self.model.id == row_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
