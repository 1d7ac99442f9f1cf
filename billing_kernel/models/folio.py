"""
Module: billing_kernel.models.folio
Responsibility: ORM persistence for per-tenant document number counters.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Exactly one counter per (tenant_id, document_type) (uq_folio_counter).
    - current_value is the last folio handed out; the next one is
      current_value + 1.  Only FolioService mutates it, under a row lock.

Failure modes:
    - A missing row means the tenant was never provisioned; FolioService
      raises FolioCounterMissingError instead of creating it lazily.
"""

from enum import Enum

from sqlalchemy import BigInteger, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase


class DocumentType(str, Enum):
    """Numbered document series."""

    REC = "REC"
    """Payment receipt (ingreso)."""

    EG = "EG"
    """Egress voucher."""


class FolioCounter(TrackedBase):
    """Last issued folio for one tenant and document type."""

    __tablename__ = "folio_counters"

    __table_args__ = (
        UniqueConstraint("tenant_id", "document_type", name="uq_folio_counter"),
    )

    document_type: Mapped[DocumentType] = mapped_column(String(10), nullable=False)

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<FolioCounter {self.document_type}: {self.current_value}>"
