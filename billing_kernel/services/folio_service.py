"""
FolioService -- gapless per-tenant document numbering via locked counter rows.

Responsibility:
    Hands out REC (payment receipt) and EG (egress voucher) folios that are
    unique, strictly increasing and gapless per tenant and document type,
    under any number of concurrent callers.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by PaymentService and EgressService in the same transaction that
    inserts the numbered document.

Invariants enforced:
    - Gapless monotonicity: the locked counter row is the sole source of
      truth.  The aggregate-max-plus-one pattern is never used.
    - Transactional: the increment is only visible after the caller's
      transaction commits.  Rollback returns the number, so a failed
      payment never burns a folio.
    - Counters are provisioned with the tenant (provision_tenant) and are
      never created lazily.

Failure modes:
    - FolioCounterMissingError (FatalConfigurationError) when the tenant has
      no counter row.  Logged at CRITICAL: it means provisioning was skipped.
    - ConcurrencyConflict on lock timeout (translated by the caller).

Audit relevance:
    Folio allocation is logged at DEBUG with tenant, type and value.
"""

from uuid import UUID

from sqlalchemy import select

from billing_kernel.exceptions import FolioCounterMissingError, ValidationError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_log import AuditAction
from billing_kernel.models.folio import DocumentType, FolioCounter
from billing_kernel.services.audit_service import AuditService
from billing_kernel.services.base import BaseService

logger = get_logger("services.folio")


def _document_type(document_type: DocumentType | str) -> DocumentType:
    try:
        return DocumentType(document_type)
    except ValueError:
        raise ValidationError(
            f"Unknown document type: {document_type!r}", field="document_type"
        ) from None


class FolioService(BaseService):
    """
    Service for issuing folios.

    Contract:
        next_folio() returns current_value + 1 for the (tenant, type) counter
        and stores it, holding the row lock until the caller's transaction
        ends.

    Guarantees:
        - ``SELECT ... FOR UPDATE`` serializes concurrent allocations for
          the same counter (BEGIN IMMEDIATE on SQLite).
        - No value is skipped or repeated across committed transactions.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT create missing counters on demand.
    """

    def next_folio(self, tenant_id: UUID, document_type: DocumentType | str) -> int:
        """
        Reserve the next folio for a tenant and document type.

        Preconditions:
            - The caller is within an active transaction that will also
              insert the numbered document.

        Postconditions:
            - Returns an integer > 0 strictly greater than every folio
              previously committed for this (tenant, type).

        Raises:
            FolioCounterMissingError: If the tenant was never provisioned.
        """
        doc_type = _document_type(document_type)

        counter = self.session.execute(
            select(FolioCounter)
            .where(
                FolioCounter.tenant_id == tenant_id,
                FolioCounter.document_type == doc_type.value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if counter is None:
            logger.critical(
                "folio_counter_missing",
                extra={"tenant_id": str(tenant_id), "document_type": doc_type.value},
            )
            raise FolioCounterMissingError(tenant_id, doc_type.value)

        counter.current_value += 1
        self.session.flush()
        logger.debug(
            "folio_allocated",
            extra={
                "tenant_id": str(tenant_id),
                "document_type": doc_type.value,
                "value": counter.current_value,
            },
        )
        return counter.current_value

    def current_folio(self, tenant_id: UUID, document_type: DocumentType | str) -> int:
        """Last issued folio, without incrementing."""
        doc_type = _document_type(document_type)
        value = self.session.execute(
            select(FolioCounter.current_value).where(
                FolioCounter.tenant_id == tenant_id,
                FolioCounter.document_type == doc_type.value,
            )
        ).scalar_one_or_none()
        if value is None:
            raise FolioCounterMissingError(tenant_id, doc_type.value)
        return value

    def provision_tenant(self, tenant_id: UUID, actor_id: UUID) -> list[FolioCounter]:
        """
        Create the REC and EG counters for a new tenant at 0.

        Idempotent: existing counters are left untouched.
        """
        existing = {
            counter.document_type: counter
            for counter in self.session.execute(
                select(FolioCounter).where(FolioCounter.tenant_id == tenant_id)
            ).scalars()
        }

        counters = []
        created = []
        for doc_type in DocumentType:
            counter = existing.get(doc_type.value)
            if counter is None:
                counter = FolioCounter(
                    tenant_id=tenant_id,
                    document_type=doc_type.value,
                    current_value=0,
                    created_by_id=actor_id,
                )
                self.session.add(counter)
                created.append(doc_type.value)
            counters.append(counter)

        self.session.flush()

        if created:
            AuditService(self.session, self.clock).record(
                tenant_id,
                "tenant",
                tenant_id,
                AuditAction.TENANT_PROVISIONED,
                actor_id,
                {"document_types": created},
            )
            logger.info(
                "tenant_provisioned",
                extra={"tenant_id": str(tenant_id), "document_types": created},
            )
        return counters
