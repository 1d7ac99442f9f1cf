"""
Module: billing_kernel.models.audit_log
Responsibility: ORM persistence for the append-only audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Rows are written by AuditService in the same transaction as the change
      they describe, so a rolled-back operation leaves no audit row.
    - Rows are never updated or deleted by the kernel.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Auditable actions.  One member per state-changing operation."""

    TENANT_PROVISIONED = "tenant_provisioned"

    CHARGE_CREATED = "charge_created"
    CHARGES_COMMITTED = "charges_committed"
    CHARGE_CANCELLED = "charge_cancelled"

    PAYMENT_APPLIED = "payment_applied"
    PAYMENT_CANCELLED = "payment_cancelled"

    PAYABLE_CREATED = "payable_created"
    PAYABLE_APPROVED = "payable_approved"
    PAYABLE_CANCELLED = "payable_cancelled"
    EGRESS_REGISTERED = "egress_registered"
    EGRESS_CANCELLED = "egress_cancelled"

    CREDIT_CREATED = "credit_created"
    CREDIT_APPLIED = "credit_applied"
    CREDIT_APPLICATION_REVERSED = "credit_application_reversed"
    CREDIT_CANCELLED = "credit_cancelled"
    CREDIT_TRANSFERRED = "credit_transferred"
    CREDIT_REFUNDED = "credit_refunded"
    CREDIT_TRANSFER_REPAIRED = "credit_transfer_repaired"

    RECONCILIATION_COMPUTED = "reconciliation_computed"
    RECONCILIATION_UPDATED = "reconciliation_updated"
    RECONCILIATION_CLOSED = "reconciliation_closed"
    RECONCILIATION_DELETED = "reconciliation_deleted"


class AuditLog(Base):
    """One audited state change."""

    __tablename__ = "audit_logs"

    __table_args__ = (
        Index("idx_audit_log_entity", "entity_type", "entity_id"),
        Index("idx_audit_log_tenant_action", "tenant_id", "action"),
    )

    tenant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} on {self.entity_type}:{self.entity_id}>"
