"""
ChargeService -- creation and cancellation of charges.

Responsibility:
    Persists charges entered manually, charges committed from a
    distribution preview (one batch per commit), and cancels charges that
    have nothing applied to them.

Architecture position:
    Kernel > Services.  Previews are accepted duck-typed (``unit_id``,
    ``final_amount``, ``include``) so the kernel does not import the
    distribution engine; billing_services.ChargeRunService wires the two.

Invariants enforced:
    - Every new charge starts PENDING with balance == total_amount.
    - A charge with live payment allocations or unreversed credit
      applications cannot be cancelled (ChargeHasAllocationsError).
    - Charges are never deleted.

Failure modes:
    - ValidationError for non-positive amounts or an empty batch.
    - UnitNotFoundError / ChargeNotFoundError for rows of another tenant.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID, uuid4

from sqlalchemy import select

from billing_kernel.db.types import ZERO, to_money
from billing_kernel.exceptions import (
    ChargeHasAllocationsError,
    ChargeNotFoundError,
    UnitNotFoundError,
    ValidationError,
)
from billing_kernel.invariants import assert_charge_consistent
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_log import AuditAction
from billing_kernel.models.charge import Charge, ChargeStatus, ChargeType
from billing_kernel.models.unit import Unit
from billing_kernel.selectors.charge_selector import ChargeSelector
from billing_kernel.services.audit_service import AuditService
from billing_kernel.services.base import BaseService

logger = get_logger("services.charge")


def _charge_type(charge_type: ChargeType | str) -> ChargeType:
    try:
        return ChargeType(charge_type)
    except ValueError:
        raise ValidationError(
            f"Unknown charge type: {charge_type!r}", field="charge_type"
        ) from None


class ChargeService(BaseService):
    """
    Creates and cancels charges.

    Guarantees:
        - Every mutation is audited in the same transaction.
        - Flushes, never commits.
    """

    def _require_units(self, tenant_id: UUID, unit_ids: Iterable[UUID]) -> None:
        wanted = set(unit_ids)
        if not wanted:
            return
        found = set(
            self.session.execute(
                select(Unit.id).where(Unit.tenant_id == tenant_id, Unit.id.in_(wanted))
            ).scalars()
        )
        missing = sorted(wanted - found, key=str)
        if missing:
            raise UnitNotFoundError(missing[0])

    def _new_charge(
        self,
        tenant_id: UUID,
        unit_id: UUID,
        amount: Decimal,
        due_date: date,
        description: str,
        actor_id: UUID,
        charge_type: ChargeType,
        period: str | None,
        posted_date: date | None,
        batch_id: UUID | None = None,
        parent_charge_id: UUID | None = None,
    ) -> Charge:
        charge = Charge(
            tenant_id=tenant_id,
            unit_id=unit_id,
            charge_type=charge_type.value,
            period=period,
            posted_date=posted_date or self.clock.today(),
            due_date=due_date,
            description=description,
            total_amount=amount,
            paid_amount=ZERO,
            balance=amount,
            status=ChargeStatus.PENDING.value,
            batch_id=batch_id,
            parent_charge_id=parent_charge_id,
            created_by_id=actor_id,
        )
        self.session.add(charge)
        return charge

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
        posted_date: date | None = None,
        parent_charge_id: UUID | None = None,
    ) -> Charge:
        """Create one pending charge for a unit."""
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError("Charge amount must be positive", field="amount")
        if not description:
            raise ValidationError("Charge description is required", field="description")
        kind = _charge_type(charge_type)

        self._require_units(tenant_id, [unit_id])
        charge = self._new_charge(
            tenant_id,
            unit_id,
            amount,
            due_date,
            description,
            actor_id,
            kind,
            period,
            posted_date,
            parent_charge_id=parent_charge_id,
        )
        self.session.flush()
        assert_charge_consistent(charge)

        AuditService(self.session, self.clock).record(
            tenant_id,
            "charge",
            charge.id,
            AuditAction.CHARGE_CREATED,
            actor_id,
            {"unit_id": unit_id, "amount": amount, "charge_type": kind},
        )
        logger.info(
            "charge_created",
            extra={"charge_id": str(charge.id), "amount": str(amount)},
        )
        return charge

    def commit_previews(
        self,
        tenant_id: UUID,
        previews: Iterable[Any],
        due_date: date,
        description: str,
        actor_id: UUID,
        charge_type: ChargeType | str = ChargeType.MONTHLY_FEE,
        period: str | None = None,
        posted_date: date | None = None,
    ) -> tuple[UUID, list[Charge]]:
        """
        Persist included distribution previews as charges under one batch.

        Preconditions:
            Each preview has ``unit_id``, ``final_amount`` and ``include``.

        Returns:
            (batch_id, charges) in preview order.

        Raises:
            ValidationError: If no preview is included with a positive amount.
        """
        kind = _charge_type(charge_type)
        selected = [
            (p.unit_id, to_money(p.final_amount))
            for p in previews
            if p.include
        ]
        if any(amount < ZERO for _, amount in selected):
            raise ValidationError("Preview amounts cannot be negative", field="final_amount")
        selected = [(unit_id, amount) for unit_id, amount in selected if amount > ZERO]
        if not selected:
            raise ValidationError("No charges selected to commit", field="previews")

        self._require_units(tenant_id, [unit_id for unit_id, _ in selected])

        batch_id = uuid4()
        charges = [
            self._new_charge(
                tenant_id,
                unit_id,
                amount,
                due_date,
                description,
                actor_id,
                kind,
                period,
                posted_date,
                batch_id=batch_id,
            )
            for unit_id, amount in selected
        ]
        self.session.flush()
        for charge in charges:
            assert_charge_consistent(charge)

        total = sum((amount for _, amount in selected), ZERO)
        AuditService(self.session, self.clock).record(
            tenant_id,
            "charge_batch",
            batch_id,
            AuditAction.CHARGES_COMMITTED,
            actor_id,
            {"count": len(charges), "total": total, "charge_type": kind},
        )
        logger.info(
            "charges_committed",
            extra={"batch_id": str(batch_id), "count": len(charges), "total": str(total)},
        )
        return batch_id, charges

    def cancel_charge(
        self, tenant_id: UUID, charge_id: UUID, reason: str, actor_id: UUID
    ) -> Charge:
        """
        Cancel a charge nothing has been applied to.

        Already-cancelled charges are returned unchanged.

        Raises:
            ChargeHasAllocationsError: live payments or credits reference it.
        """
        charge = self._lock_row(Charge, charge_id, tenant_id, ChargeNotFoundError)
        if charge.status == ChargeStatus.CANCELLED:
            return charge

        selector = ChargeSelector(self.session)
        if (
            to_money(charge.paid_amount) > ZERO
            or selector.live_payment_allocation_total(charge.id) > ZERO
            or selector.live_credit_application_total(charge.id) > ZERO
        ):
            raise ChargeHasAllocationsError(charge.id)

        charge.cancel(actor_id, reason, self.clock.now())
        self.session.flush()

        AuditService(self.session, self.clock).record(
            tenant_id,
            "charge",
            charge.id,
            AuditAction.CHARGE_CANCELLED,
            actor_id,
            {"reason": reason},
        )
        logger.info("charge_cancelled", extra={"charge_id": str(charge.id)})
        return charge
