"""
AuditService -- append-only audit trail writer.

Responsibility:
    Writes one AuditLog row per state-changing operation, inside the
    caller's transaction.

Architecture position:
    Kernel > Services.  Called by every mutating kernel service and by
    billing_services orchestrators.

Invariants enforced:
    - The audit row commits or rolls back with the change it describes.
    - Payloads are JSON-safe: Decimal, UUID and dates are stored as strings.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_log import AuditAction, AuditLog
from billing_kernel.services.base import BaseService

logger = get_logger("services.audit")


def _json_safe(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(v) for v in value]
    return value


class AuditService(BaseService):
    """Records AuditLog rows.  Flushes, never commits."""

    def record(
        self,
        tenant_id: UUID,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self.clock.now(),
            payload=_json_safe(payload) if payload is not None else None,
        )
        self.session.add(entry)
        self.session.flush()
        logger.debug(
            "audit_recorded",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
            },
        )
        return entry
