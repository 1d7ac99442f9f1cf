"""
billing_services.operations -- the BillingOperations facade.

Responsibility:
    The outer surface of the billing engine.  Each operation runs in its
    own transaction (session_scope), builds the kernel/engine services it
    needs on that session, and returns an OperationResult instead of
    raising kernel errors.

Architecture position:
    Services -- top of the stack.  The only module that owns transaction
    boundaries; every service below it only flushes.

Invariants enforced:
    - One transaction per attempt.  A failed attempt is rolled back in
      full before the next one starts.
    - Only ConcurrencyConflict is retried, at most ``max_retries`` times
      (BILLING_MAX_RETRIES, default 3).  Every other kernel error is
      returned on the first failure.
    - Each call binds a fresh correlation_id, the tenant, the actor and
      the operation name into LogContext.

Failure modes:
    - Kernel errors -> OperationResult(ok=False, error=ErrorInfo(...)).
    - Anything else (driver errors, programming errors) propagates after
      rollback.

Usage:
    ops = BillingOperations(session_factory=get_session_factory())
    result = ops.apply_payment(
        tenant_id, account_id, Decimal("150.00"),
        [{"charge_id": charge_id, "amount": Decimal("150.00")}],
        actor_id,
    )
    if result.ok:
        print(result.value.folio_rec)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from billing_config import get_runtime_settings, get_tenant_settings
from billing_config.bridges import build_distribution_method, build_late_fee_policy
from billing_engines.billing_rules import LateFeePolicy
from billing_engines.distribution import ChargePreview, DistributionMethod
from billing_kernel.db.engine import (
    build_engine,
    build_session_factory,
    create_tables,
    get_session_factory,
    session_scope,
)
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import BillingKernelError, ConcurrencyConflict
from billing_kernel.logging_config import LogContext, configure_logging, get_logger
from billing_kernel.models.charge import ChargeType
from billing_kernel.models.folio import DocumentType
from billing_kernel.services.base import translate_lock_errors
from billing_kernel.services.cancellation_service import CancellationService
from billing_kernel.services.charge_service import ChargeService
from billing_kernel.services.credit_ledger_service import CreditLedgerService
from billing_kernel.services.egress_service import EgressService
from billing_kernel.services.folio_service import FolioService
from billing_kernel.services.payable_service import PayableService
from billing_kernel.services.payment_service import PaymentService
from billing_services.charge_run_service import ChargeRunService
from billing_services.reconciliation_service import ReconciliationService
from billing_services.results import OperationResult

logger = get_logger("services.operations")

T = TypeVar("T")


class BillingOperations:
    """
    Transactional facade over the billing kernel.

    Contract:
        Every public method returns an OperationResult.  Returned ORM
        objects are detached; the session factory must be configured with
        ``expire_on_commit=False`` (get_session_factory() is).

    Non-goals:
        - Does NOT authenticate the actor; actor_id is recorded only.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        max_retries: int | None = None,
        config_dir: Path | None = None,
    ) -> None:
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()
        self._max_retries = (
            max_retries if max_retries is not None else get_runtime_settings().max_retries
        )
        self._config_dir = config_dir

    @classmethod
    def from_environment(
        cls,
        environ: Mapping[str, str] | None = None,
        clock: Clock | None = None,
        create_schema: bool = False,
    ) -> BillingOperations:
        """
        Build a facade from BILLING_* environment variables.

        Opens its own engine on BILLING_DATABASE_URL and configures JSON
        logging at BILLING_LOG_LEVEL.  With ``create_schema`` the billing
        tables are created if missing.
        """
        settings = get_runtime_settings(environ)
        configure_logging(level=settings.log_level)
        engine = build_engine(settings.database_url)
        if create_schema:
            create_tables(engine)
        logger.info(
            "operations_configured",
            extra={"dialect": engine.dialect.name, "max_retries": settings.max_retries},
        )
        return cls(
            session_factory=build_session_factory(engine),
            clock=clock,
            max_retries=settings.max_retries,
            config_dir=Path(settings.config_dir) if settings.config_dir else None,
        )

    # ------------------------------------------------------------------
    # Transaction runner
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        tenant_id: UUID,
        actor_id: UUID | None,
        work: Callable[[Session], T],
    ) -> OperationResult[T]:
        correlation_id = str(uuid4())
        with LogContext.bind(
            correlation_id=correlation_id,
            tenant_id=tenant_id,
            actor_id=actor_id,
            operation=operation,
        ):
            attempt = 0
            while True:
                attempt += 1
                try:
                    with translate_lock_errors(operation):
                        with session_scope(self._session_factory) as session:
                            value = work(session)
                except ConcurrencyConflict as exc:
                    if attempt <= self._max_retries:
                        logger.warning(
                            "operation_retry",
                            extra={"attempt": attempt, "detail": exc.detail},
                        )
                        continue
                    logger.error(
                        "operation_retries_exhausted",
                        extra={"attempts": attempt, "error_code": exc.code},
                    )
                    return OperationResult.failure(exc, attempts=attempt)
                except BillingKernelError as exc:
                    logger.info(
                        "operation_failed",
                        extra={"error_kind": exc.kind, "error_code": exc.code},
                    )
                    return OperationResult.failure(exc, attempts=attempt)
                logger.debug("operation_succeeded", extra={"attempts": attempt})
                return OperationResult.success(value, attempts=attempt)

    # ------------------------------------------------------------------
    # Folios and tenants
    # ------------------------------------------------------------------

    def provision_tenant(self, tenant_id: UUID, actor_id: UUID) -> OperationResult:
        return self._run(
            "provision_tenant",
            tenant_id,
            actor_id,
            lambda s: FolioService(s, self._clock).provision_tenant(tenant_id, actor_id),
        )

    def next_folio(
        self, tenant_id: UUID, document_type: DocumentType | str
    ) -> OperationResult[int]:
        return self._run(
            "next_folio",
            tenant_id,
            None,
            lambda s: FolioService(s, self._clock).next_folio(tenant_id, document_type),
        )

    # ------------------------------------------------------------------
    # Charges
    # ------------------------------------------------------------------

    def _distribution_method(
        self, tenant_id: UUID, method: DistributionMethod | str | None
    ) -> DistributionMethod | str:
        if method is not None:
            return method
        return build_distribution_method(get_tenant_settings(tenant_id, self._config_dir))

    def distribute_charges(
        self,
        tenant_id: UUID,
        total: Decimal | None,
        method: DistributionMethod | str | None = None,
        unit_ids: Sequence[UUID] | None = None,
        consumption: Mapping[UUID, Decimal] | None = None,
        unit_rate: Decimal | None = None,
    ) -> OperationResult[list[ChargePreview]]:
        """Preview a distribution.  ``method`` defaults to the tenant's setting."""
        return self._run(
            "distribute_charges",
            tenant_id,
            None,
            lambda s: ChargeRunService(s, self._clock).preview_distribution(
                tenant_id,
                total,
                self._distribution_method(tenant_id, method),
                unit_ids,
                consumption,
                unit_rate,
            ),
        )

    def commit_charges(
        self,
        tenant_id: UUID,
        previews: Iterable[ChargePreview],
        due_date: date,
        description: str,
        actor_id: UUID,
        charge_type: ChargeType | str = ChargeType.MONTHLY_FEE,
        period: str | None = None,
        posted_date: date | None = None,
    ) -> OperationResult:
        previews = list(previews)
        return self._run(
            "commit_charges",
            tenant_id,
            actor_id,
            lambda s: ChargeRunService(s, self._clock).commit_previews(
                tenant_id,
                previews,
                due_date,
                description,
                actor_id,
                charge_type=charge_type,
                period=period,
                posted_date=posted_date,
            ),
        )

    def create_charge(
        self,
        tenant_id: UUID,
        unit_id: UUID,
        amount: Decimal,
        due_date: date,
        description: str,
        actor_id: UUID,
        charge_type: ChargeType | str = ChargeType.MONTHLY_FEE,
        period: str | None = None,
    ) -> OperationResult:
        return self._run(
            "create_charge",
            tenant_id,
            actor_id,
            lambda s: ChargeService(s, self._clock).create_charge(
                tenant_id,
                unit_id,
                amount,
                due_date,
                description,
                actor_id,
                charge_type=charge_type,
                period=period,
            ),
        )

    def cancel_charge(
        self, tenant_id: UUID, charge_id: UUID, reason: str, actor_id: UUID
    ) -> OperationResult:
        return self._run(
            "cancel_charge",
            tenant_id,
            actor_id,
            lambda s: ChargeService(s, self._clock).cancel_charge(
                tenant_id, charge_id, reason, actor_id
            ),
        )

    def assess_late_fee(
        self,
        tenant_id: UUID,
        charge_id: UUID,
        as_of: date,
        actor_id: UUID,
        policy: LateFeePolicy | None = None,
    ) -> OperationResult:
        """
        Post the late fee owed on ``as_of``.  Without an explicit policy
        the tenant's configured one is used; value is None when late fees
        are disabled or nothing new is owed.
        """

        def work(session: Session):
            late_policy = policy or build_late_fee_policy(
                get_tenant_settings(tenant_id, self._config_dir)
            )
            if late_policy is None:
                return None
            return ChargeRunService(session, self._clock).assess_late_fee(
                tenant_id, charge_id, as_of, late_policy, actor_id
            )

        return self._run("assess_late_fee", tenant_id, actor_id, work)

    # ------------------------------------------------------------------
    # Payments, payables and egresses
    # ------------------------------------------------------------------

    def apply_payment(
        self,
        tenant_id: UUID,
        account_id: UUID,
        total_amount: Decimal,
        allocations: Iterable[Any],
        actor_id: UUID,
        **options: Any,
    ) -> OperationResult:
        """Options are passed through to PaymentService.apply_payment."""
        allocations = list(allocations)
        return self._run(
            "apply_payment",
            tenant_id,
            actor_id,
            lambda s: PaymentService(s, self._clock).apply_payment(
                tenant_id, account_id, total_amount, allocations, actor_id, **options
            ),
        )

    def create_payable(
        self,
        tenant_id: UUID,
        supplier_name: str,
        total_amount: Decimal,
        actor_id: UUID,
        **options: Any,
    ) -> OperationResult:
        return self._run(
            "create_payable",
            tenant_id,
            actor_id,
            lambda s: PayableService(s, self._clock).create_payable(
                tenant_id, supplier_name, total_amount, actor_id, **options
            ),
        )

    def approve_payable(
        self, tenant_id: UUID, payable_id: UUID, actor_id: UUID
    ) -> OperationResult:
        return self._run(
            "approve_payable",
            tenant_id,
            actor_id,
            lambda s: PayableService(s, self._clock).approve_payable(
                tenant_id, payable_id, actor_id
            ),
        )

    def cancel_payable(
        self, tenant_id: UUID, payable_id: UUID, reason: str, actor_id: UUID
    ) -> OperationResult:
        return self._run(
            "cancel_payable",
            tenant_id,
            actor_id,
            lambda s: PayableService(s, self._clock).cancel_payable(
                tenant_id, payable_id, reason, actor_id
            ),
        )

    def register_egress(
        self,
        tenant_id: UUID,
        account_id: UUID,
        allocations: Iterable[Any],
        actor_id: UUID,
        **options: Any,
    ) -> OperationResult:
        """Options are passed through to EgressService.register_egress."""
        allocations = list(allocations)
        return self._run(
            "register_egress",
            tenant_id,
            actor_id,
            lambda s: EgressService(s, self._clock).register_egress(
                tenant_id, account_id, allocations, actor_id, **options
            ),
        )

    def cancel_payment(
        self, tenant_id: UUID, payment_id: UUID, reason: str, actor_id: UUID
    ) -> OperationResult:
        return self._run(
            "cancel_payment",
            tenant_id,
            actor_id,
            lambda s: CancellationService(s, self._clock).cancel_payment(
                tenant_id, payment_id, reason, actor_id
            ),
        )

    def cancel_egress(
        self, tenant_id: UUID, egress_id: UUID, reason: str, actor_id: UUID
    ) -> OperationResult:
        return self._run(
            "cancel_egress",
            tenant_id,
            actor_id,
            lambda s: CancellationService(s, self._clock).cancel_egress(
                tenant_id, egress_id, reason, actor_id
            ),
        )

    # ------------------------------------------------------------------
    # Credits
    # ------------------------------------------------------------------

    def _credits(self, session: Session) -> CreditLedgerService:
        return CreditLedgerService(session, self._clock)

    def create_manual_credit(
        self,
        tenant_id: UUID,
        unit_id: UUID,
        amount: Decimal,
        description: str,
        actor_id: UUID,
    ) -> OperationResult:
        return self._run(
            "create_manual_credit",
            tenant_id,
            actor_id,
            lambda s: self._credits(s).create_manual_credit(
                tenant_id, unit_id, amount, description, actor_id
            ),
        )

    def apply_credit_to_charge(
        self,
        tenant_id: UUID,
        credit_id: UUID,
        charge_id: UUID,
        amount: Decimal,
        actor_id: UUID,
    ) -> OperationResult:
        return self._run(
            "apply_credit_to_charge",
            tenant_id,
            actor_id,
            lambda s: self._credits(s).apply_credit_to_charge(
                tenant_id, credit_id, charge_id, amount, actor_id
            ),
        )

    def auto_apply_fifo(
        self,
        tenant_id: UUID,
        charge_id: UUID,
        actor_id: UUID,
        max_amount: Decimal | None = None,
    ) -> OperationResult:
        return self._run(
            "auto_apply_fifo",
            tenant_id,
            actor_id,
            lambda s: self._credits(s).auto_apply_fifo(
                tenant_id, charge_id, actor_id, max_amount=max_amount
            ),
        )

    def reverse_credit_application(
        self, tenant_id: UUID, debit_entry_id: UUID, reason: str, actor_id: UUID
    ) -> OperationResult:
        return self._run(
            "reverse_credit_application",
            tenant_id,
            actor_id,
            lambda s: self._credits(s).reverse_credit_application(
                tenant_id, debit_entry_id, reason, actor_id
            ),
        )

    def transfer_credit(
        self,
        tenant_id: UUID,
        from_unit_id: UUID,
        to_unit_id: UUID,
        amount: Decimal,
        reason: str,
        actor_id: UUID,
    ) -> OperationResult:
        return self._run(
            "transfer_credit",
            tenant_id,
            actor_id,
            lambda s: self._credits(s).transfer_credit(
                tenant_id, from_unit_id, to_unit_id, amount, reason, actor_id
            ),
        )

    def refund_credit(
        self,
        tenant_id: UUID,
        unit_id: UUID,
        amount: Decimal,
        reason: str,
        actor_id: UUID,
        credit_id: UUID | None = None,
    ) -> OperationResult:
        return self._run(
            "refund_credit",
            tenant_id,
            actor_id,
            lambda s: self._credits(s).refund_credit(
                tenant_id, unit_id, amount, reason, actor_id, credit_id=credit_id
            ),
        )

    def cancel_credit(
        self, tenant_id: UUID, credit_id: UUID, reason: str, actor_id: UUID
    ) -> OperationResult:
        return self._run(
            "cancel_credit",
            tenant_id,
            actor_id,
            lambda s: self._credits(s).cancel_credit(tenant_id, credit_id, reason, actor_id),
        )

    def repair_half_applied_transfers(
        self, tenant_id: UUID, actor_id: UUID
    ) -> OperationResult[list[UUID]]:
        return self._run(
            "repair_half_applied_transfers",
            tenant_id,
            actor_id,
            lambda s: self._credits(s).repair_half_applied_transfers(tenant_id, actor_id),
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def compute_reconciliation(
        self,
        tenant_id: UUID,
        account_id: UUID,
        cutoff_date: date,
        bank_closing_balance: Decimal,
        selected_payments: Iterable[UUID],
        selected_egresses: Iterable[Any],
        actor_id: UUID,
        notes: str | None = None,
    ) -> OperationResult:
        selected_payments = list(selected_payments)
        selected_egresses = list(selected_egresses)
        return self._run(
            "compute_reconciliation",
            tenant_id,
            actor_id,
            lambda s: ReconciliationService(s, self._clock).compute_reconciliation(
                tenant_id,
                account_id,
                cutoff_date,
                bank_closing_balance,
                selected_payments,
                selected_egresses,
                actor_id,
                notes=notes,
            ),
        )

    def update_reconciliation_draft(
        self,
        tenant_id: UUID,
        reconciliation_id: UUID,
        selected_payments: Iterable[UUID],
        selected_egresses: Iterable[Any],
        actor_id: UUID,
        bank_closing_balance: Decimal | None = None,
    ) -> OperationResult:
        selected_payments = list(selected_payments)
        selected_egresses = list(selected_egresses)
        return self._run(
            "update_reconciliation_draft",
            tenant_id,
            actor_id,
            lambda s: ReconciliationService(s, self._clock).update_draft(
                tenant_id,
                reconciliation_id,
                selected_payments,
                selected_egresses,
                actor_id,
                bank_closing_balance=bank_closing_balance,
            ),
        )

    def close_reconciliation(
        self, tenant_id: UUID, reconciliation_id: UUID, actor_id: UUID
    ) -> OperationResult:
        return self._run(
            "close_reconciliation",
            tenant_id,
            actor_id,
            lambda s: ReconciliationService(s, self._clock).close_reconciliation(
                tenant_id, reconciliation_id, actor_id
            ),
        )

    def delete_reconciliation(
        self, tenant_id: UUID, reconciliation_id: UUID, actor_id: UUID
    ) -> OperationResult:
        return self._run(
            "delete_reconciliation",
            tenant_id,
            actor_id,
            lambda s: ReconciliationService(s, self._clock).delete_reconciliation(
                tenant_id, reconciliation_id, actor_id
            ),
        )
