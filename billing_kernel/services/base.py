"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor, row-locking helper and lock-error
    translation for every service in the kernel layer.  All concrete
    services receive a SQLAlchemy ``Session`` that they use via
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The caller
      (BillingOperations or a test harness) owns commit/rollback, so a
      failure anywhere in a multi-row operation rolls back every row.
    - Tenant isolation: _lock_row() filters on tenant_id, so a row of
      another tenant is reported as not found.

Failure modes:
    - ConcurrencyConflict when the database reports a deadlock, lock
      timeout or busy database (translate_lock_errors).
"""

from abc import ABC
from contextlib import contextmanager
from typing import Generator, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from billing_kernel.db.base import Base
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import ConcurrencyConflict, NotFoundError

ModelType = TypeVar("ModelType", bound=Base)

_LOCK_ERROR_MARKERS = (
    "deadlock detected",
    "could not obtain lock",
    "could not serialize access",
    "lock timeout",
    "database is locked",
    "database table is locked",
)


def is_lock_error(exc: DBAPIError) -> bool:
    """True if a driver error reports lock contention rather than bad SQL."""
    text = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in text for marker in _LOCK_ERROR_MARKERS)


@contextmanager
def translate_lock_errors(operation: str) -> Generator[None, None, None]:
    """Re-raise lock contention as ConcurrencyConflict; other errors pass."""
    try:
        yield
    except DBAPIError as exc:
        if is_lock_error(exc):
            raise ConcurrencyConflict(operation, str(exc.orig)) from exc
        raise


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` and an injectable ``Clock`` from
        the caller.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
        - Timestamps come from ``self.clock``, never from ``datetime.now()``.

    Non-goals:
        - Does NOT provide read-only query methods; those belong in
          ``billing_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    def _lock_row(
        self,
        model: type[ModelType],
        entity_id: UUID,
        tenant_id: UUID,
        not_found: type[NotFoundError],
        *,
        read: bool = False,
    ) -> ModelType:
        """Load one tenant row with FOR UPDATE (or FOR SHARE when ``read``).

        populate_existing refreshes an instance already in the identity map
        so the values seen are the ones the lock protects.
        """
        row = self.session.execute(
            select(model)
            .where(model.id == entity_id, model.tenant_id == tenant_id)
            .with_for_update(read=read)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise not_found(entity_id)
        return row
