"""
CreditLedgerService -- per-unit credit balances (saldo a favor).

Responsibility:
    Appends signed UnitCredit entries for every credit movement and keeps
    the unit's cached balance and the remaining amount of each credit lot
    in step with the ledger.  Covers manual credits, overpayment credits,
    targeted and FIFO application to charges, refunds, cancellations,
    transfers between units and reversal of applications.

Architecture position:
    Kernel > Services.  Called directly, by PaymentService (overpayment)
    and by CancellationService (credits created from a cancelled payment).

Invariants enforced:
    - Non-negativity: before every debit the unit row is locked and the
      balance must cover the amount, else InsufficientCreditError.
    - Ledger consistency: Unit.credit_balance == sum(UnitCredit.amount) ==
      sum(remaining_amount of ACTIVE lots), asserted before returning.
    - FIFO: untargeted debits consume ACTIVE lots ordered by
      (created_at, entry_seq) ascending.
    - Transfers write the debit and the credit in the caller's transaction
      under one transfer_id; both commit or neither does.

Failure modes:
    - InsufficientCreditError when the balance (or the targeted lot)
      cannot cover the debit.
    - ChargeNotPendingError / ChargeAlreadySettledError when applying to a
      cancelled or settled charge.
    - CreditAlreadyConsumedError when cancelling a lot that was used.

Audit relevance:
    CreditApplication rows link each debit to the lots it consumed.  Repair
    of a half-applied transfer is logged at ERROR and audited.

Lock order:
    charge -> unit(s) in ascending id order.  Charges are always locked
    before units so credit operations and payments never wait on each other
    in opposite order.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select

from billing_kernel.db.types import MONEY_EPSILON, ZERO, round_money, to_money
from billing_kernel.exceptions import (
    BusinessRuleViolation,
    ChargeAlreadySettledError,
    ChargeNotFoundError,
    ChargeNotPendingError,
    CreditAlreadyConsumedError,
    CreditNotFoundError,
    InsufficientCreditError,
    UnitNotFoundError,
    ValidationError,
)
from billing_kernel.invariants import (
    assert_charge_consistent,
    assert_credit_cache_matches,
    assert_credit_lots_consistent,
    assert_credit_non_negative,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.audit_log import AuditAction
from billing_kernel.models.charge import Charge, ChargeStatus
from billing_kernel.models.credit import (
    CreditApplication,
    CreditSource,
    CreditStatus,
    MovementType,
    UnitCredit,
)
from billing_kernel.models.unit import Unit
from billing_kernel.selectors.credit_selector import CreditSelector
from billing_kernel.services.audit_service import AuditService
from billing_kernel.services.base import BaseService

logger = get_logger("services.credit_ledger")


@dataclass(frozen=True)
class CreditApplicationResult:
    """Outcome of applying credit to a charge."""

    charge_id: UUID
    debit_entry_id: UUID | None
    amount_applied: Decimal
    charge_balance: Decimal
    unit_credit_balance: Decimal


@dataclass(frozen=True)
class TransferResult:
    transfer_id: UUID
    debit_entry_id: UUID
    credit_entry_id: UUID
    amount: Decimal


def _positive(amount: Decimal, field: str = "amount") -> Decimal:
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError("Amount must be greater than zero", field=field)
    return amount


class CreditLedgerService(BaseService):
    """
    Append-only credit ledger.

    Contract:
        Every public mutator locks the affected unit row(s), appends one or
        more entries, adjusts lots, asserts ledger consistency and writes
        one audit row.  Flushes, never commits.

    Non-goals:
        - Does NOT decide when credit should be applied automatically;
          callers (or the facade) invoke auto_apply_fifo explicitly.
    """

    # ------------------------------------------------------------------
    # Locking and entry primitives
    # ------------------------------------------------------------------

    def _lock_unit(self, tenant_id: UUID, unit_id: UUID) -> Unit:
        return self._lock_row(Unit, unit_id, tenant_id, UnitNotFoundError)

    def _lock_charge(self, tenant_id: UUID, charge_id: UUID) -> Charge:
        return self._lock_row(Charge, charge_id, tenant_id, ChargeNotFoundError)

    def _lock_credit(self, tenant_id: UUID, credit_id: UUID) -> UnitCredit:
        return self._lock_row(UnitCredit, credit_id, tenant_id, CreditNotFoundError)

    def _credit_unit_id(self, tenant_id: UUID, credit_id: UUID) -> UUID:
        """Owning unit of a ledger entry, read without a lock so the unit can
        be locked first."""
        unit_id = self.session.execute(
            select(UnitCredit.unit_id).where(
                UnitCredit.id == credit_id, UnitCredit.tenant_id == tenant_id
            )
        ).scalar_one_or_none()
        if unit_id is None:
            raise CreditNotFoundError(credit_id)
        return unit_id

    def _append_entry(
        self,
        unit: Unit,
        movement_type: MovementType,
        source: CreditSource,
        amount: Decimal,
        actor_id: UUID,
        *,
        as_lot: bool = True,
        description: str | None = None,
        charge_id: UUID | None = None,
        source_payment_id: UUID | None = None,
        transfer_id: UUID | None = None,
        reverses_entry_id: UUID | None = None,
    ) -> UnitCredit:
        """Append one signed entry and move the unit's cached balance.

        Positive entries become ACTIVE lots unless ``as_lot`` is False (a
        reversal that restores an existing lot instead).
        """
        new_balance = round_money(to_money(unit.credit_balance) + amount)
        assert_credit_non_negative(unit.id, new_balance)

        unit.last_credit_seq += 1
        is_lot = amount > ZERO and as_lot
        entry = UnitCredit(
            tenant_id=unit.tenant_id,
            unit_id=unit.id,
            movement_type=movement_type.value,
            source=source.value,
            amount=amount,
            running_balance=new_balance,
            entry_seq=unit.last_credit_seq,
            remaining_amount=amount if is_lot else ZERO,
            status=CreditStatus.ACTIVE.value if is_lot else None,
            description=description,
            charge_id=charge_id,
            source_payment_id=source_payment_id,
            transfer_id=transfer_id,
            reverses_entry_id=reverses_entry_id,
            created_by_id=actor_id,
            created_at=self.clock.now(),
        )
        unit.credit_balance = new_balance
        unit.updated_by_id = actor_id
        self.session.add(entry)
        self.session.flush()
        return entry

    def _active_lots(self, unit_id: UUID) -> list[UnitCredit]:
        return list(
            self.session.execute(
                select(UnitCredit)
                .where(
                    UnitCredit.unit_id == unit_id,
                    UnitCredit.status == CreditStatus.ACTIVE.value,
                    UnitCredit.remaining_amount > 0,
                )
                .order_by(UnitCredit.created_at, UnitCredit.entry_seq)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _debit(
        self,
        unit: Unit,
        amount: Decimal,
        movement_type: MovementType,
        source: CreditSource,
        actor_id: UUID,
        *,
        exhausted_status: CreditStatus = CreditStatus.APPLIED,
        lots: list[UnitCredit] | None = None,
        charge_id: UUID | None = None,
        transfer_id: UUID | None = None,
        reverses_entry_id: UUID | None = None,
        description: str | None = None,
    ) -> tuple[UnitCredit, list[CreditApplication]]:
        """Append a negative entry and consume lots for it.

        ``lots`` defaults to the unit's ACTIVE lots in FIFO order.
        """
        available = to_money(unit.credit_balance)
        if amount - available >= MONEY_EPSILON:
            raise InsufficientCreditError(unit.id, amount, available)
        if lots is None:
            lots = self._active_lots(unit.id)

        entry = self._append_entry(
            unit,
            movement_type,
            source,
            -amount,
            actor_id,
            charge_id=charge_id,
            transfer_id=transfer_id,
            reverses_entry_id=reverses_entry_id,
            description=description,
        )

        applications = []
        left = amount
        for lot in lots:
            if left <= ZERO:
                break
            take = min(left, to_money(lot.remaining_amount))
            if take <= ZERO:
                continue
            lot.remaining_amount = round_money(lot.remaining_amount - take)
            if lot.remaining_amount <= ZERO:
                lot.status = exhausted_status.value
            application = CreditApplication(
                credit_id=lot.id,
                debit_entry_id=entry.id,
                charge_id=charge_id,
                amount_applied=take,
                is_reversed=False,
                applied_at=self.clock.now(),
            )
            self.session.add(application)
            applications.append(application)
            left = round_money(left - take)

        if left > ZERO:
            # Lots did not cover a debit the balance allowed.
            raise InsufficientCreditError(unit.id, amount, round_money(amount - left))

        self.session.flush()
        return entry, applications

    def _restore_lots(self, debit_entry: UnitCredit) -> list[CreditApplication]:
        """Give consumed amounts back to the lots a debit drew from.

        Returns the applications whose lot could not be reactivated
        (cancelled or refunded since); the caller re-creates that value as
        a fresh lot.
        """
        orphaned = []
        applications = self.session.execute(
            select(CreditApplication).where(
                CreditApplication.debit_entry_id == debit_entry.id,
                CreditApplication.is_reversed.is_(False),
            )
        ).scalars()
        for application in applications:
            application.is_reversed = True
            lot = self.session.get(
                UnitCredit, application.credit_id, populate_existing=True
            )
            if lot.status in (CreditStatus.ACTIVE, CreditStatus.APPLIED):
                lot.remaining_amount = round_money(
                    lot.remaining_amount + application.amount_applied
                )
                lot.status = CreditStatus.ACTIVE.value
            else:
                orphaned.append(application)
        self.session.flush()
        return orphaned

    def _assert_consistent(self, unit: Unit) -> None:
        selector = CreditSelector(self.session)
        ledger = selector.ledger_balance(unit.id)
        assert_credit_non_negative(unit.id, ledger)
        assert_credit_cache_matches(unit.id, unit.credit_balance, ledger)
        assert_credit_lots_consistent(unit.id, ledger, [selector.active_lots_total(unit.id)])

    def _audit(self, tenant_id, entity_id, action, actor_id, payload) -> None:
        AuditService(self.session, self.clock).record(
            tenant_id, "unit_credit", entity_id, action, actor_id, payload
        )

    def _charge_for_credit(self, tenant_id: UUID, charge_id: UUID) -> Charge:
        charge = self._lock_charge(tenant_id, charge_id)
        if charge.status == ChargeStatus.CANCELLED:
            raise ChargeNotPendingError(charge.id, charge.status)
        return charge

    # ------------------------------------------------------------------
    # Credits in
    # ------------------------------------------------------------------

    def create_manual_credit(
        self,
        tenant_id: UUID,
        unit_id: UUID,
        amount: Decimal,
        description: str,
        actor_id: UUID,
    ) -> UnitCredit:
        """Administrative credit adjustment for a unit."""
        amount = _positive(amount)
        if not description:
            raise ValidationError("A description is required", field="description")

        unit = self._lock_unit(tenant_id, unit_id)
        entry = self._append_entry(
            unit,
            MovementType.ADJUSTMENT,
            CreditSource.MANUAL,
            amount,
            actor_id,
            description=description,
        )
        self._assert_consistent(unit)
        self._audit(
            tenant_id,
            entry.id,
            AuditAction.CREDIT_CREATED,
            actor_id,
            {"unit_id": unit.id, "amount": amount, "source": CreditSource.MANUAL},
        )
        logger.info(
            "credit_created",
            extra={"unit_id": str(unit.id), "credit_id": str(entry.id), "amount": str(amount)},
        )
        return entry

    def credit_from_payment(
        self,
        tenant_id: UUID,
        unit_id: UUID,
        payment_id: UUID,
        amount: Decimal,
        actor_id: UUID,
    ) -> UnitCredit:
        """Turn the unallocated part of a payment into a credit lot."""
        amount = _positive(amount)
        unit = self._lock_unit(tenant_id, unit_id)
        entry = self._append_entry(
            unit,
            MovementType.CREDIT_IN,
            CreditSource.OVERPAYMENT,
            amount,
            actor_id,
            source_payment_id=payment_id,
            description="Payment overpayment",
        )
        self._assert_consistent(unit)
        self._audit(
            tenant_id,
            entry.id,
            AuditAction.CREDIT_CREATED,
            actor_id,
            {"unit_id": unit.id, "amount": amount, "payment_id": payment_id},
        )
        logger.info(
            "credit_from_payment",
            extra={"unit_id": str(unit.id), "payment_id": str(payment_id), "amount": str(amount)},
        )
        return entry

    # ------------------------------------------------------------------
    # Application to charges
    # ------------------------------------------------------------------

    def apply_credit_to_charge(
        self,
        tenant_id: UUID,
        credit_id: UUID,
        charge_id: UUID,
        amount: Decimal,
        actor_id: UUID,
        notes: str | None = None,
    ) -> CreditApplicationResult:
        """
        Apply part of one specific credit lot to a charge.

        The amount is clamped to the charge balance, the same explicit clamp
        payments use.

        Raises:
            InsufficientCreditError: amount exceeds the lot's remaining amount.
            ChargeAlreadySettledError: the charge has no balance left.
        """
        amount = _positive(amount)
        charge = self._charge_for_credit(tenant_id, charge_id)
        unit = self._lock_unit(tenant_id, self._credit_unit_id(tenant_id, credit_id))
        lot = self._lock_credit(tenant_id, credit_id)

        if lot.unit_id != charge.unit_id:
            raise BusinessRuleViolation(
                f"Credit {lot.id} belongs to another unit than charge {charge.id}"
            )
        if lot.status != CreditStatus.ACTIVE:
            raise InsufficientCreditError(unit.id, amount, ZERO)
        remaining = to_money(lot.remaining_amount)
        if amount - remaining >= MONEY_EPSILON:
            raise InsufficientCreditError(unit.id, amount, remaining)

        applied = min(amount, to_money(charge.balance))
        if applied <= ZERO:
            raise ChargeAlreadySettledError(charge.id)

        entry, _ = self._debit(
            unit,
            applied,
            MovementType.CREDIT_OUT,
            CreditSource.APPLICATION,
            actor_id,
            lots=[lot],
            charge_id=charge.id,
            description=notes,
        )
        charge.apply_amount(applied)
        self.session.flush()

        assert_charge_consistent(charge)
        self._assert_consistent(unit)
        self._audit(
            tenant_id,
            entry.id,
            AuditAction.CREDIT_APPLIED,
            actor_id,
            {"credit_id": lot.id, "charge_id": charge.id, "amount": applied},
        )
        logger.info(
            "credit_applied",
            extra={
                "credit_id": str(lot.id),
                "charge_id": str(charge.id),
                "amount": str(applied),
            },
        )
        return CreditApplicationResult(
            charge_id=charge.id,
            debit_entry_id=entry.id,
            amount_applied=applied,
            charge_balance=to_money(charge.balance),
            unit_credit_balance=to_money(unit.credit_balance),
        )

    def auto_apply_fifo(
        self,
        tenant_id: UUID,
        charge_id: UUID,
        actor_id: UUID,
        max_amount: Decimal | None = None,
    ) -> CreditApplicationResult:
        """
        Apply the unit's credit to a charge, oldest lot first.

        Applies min(max_amount, charge balance, unit credit).  A settled
        charge or an empty balance applies nothing and is not an error.
        """
        if max_amount is not None:
            max_amount = _positive(max_amount, field="max_amount")

        charge = self._charge_for_credit(tenant_id, charge_id)
        unit = self._lock_unit(tenant_id, charge.unit_id)

        target = to_money(charge.balance)
        if max_amount is not None:
            target = min(target, max_amount)
        target = min(target, to_money(unit.credit_balance))

        if target <= ZERO:
            return CreditApplicationResult(
                charge_id=charge.id,
                debit_entry_id=None,
                amount_applied=ZERO,
                charge_balance=to_money(charge.balance),
                unit_credit_balance=to_money(unit.credit_balance),
            )

        entry, applications = self._debit(
            unit,
            target,
            MovementType.CREDIT_OUT,
            CreditSource.APPLICATION,
            actor_id,
            charge_id=charge.id,
            description="Automatic application",
        )
        charge.apply_amount(target)
        self.session.flush()

        assert_charge_consistent(charge)
        self._assert_consistent(unit)
        self._audit(
            tenant_id,
            entry.id,
            AuditAction.CREDIT_APPLIED,
            actor_id,
            {
                "charge_id": charge.id,
                "amount": target,
                "lots": [
                    {"credit_id": a.credit_id, "amount": a.amount_applied}
                    for a in applications
                ],
            },
        )
        logger.info(
            "credit_auto_applied",
            extra={
                "charge_id": str(charge.id),
                "amount": str(target),
                "lots_used": len(applications),
            },
        )
        return CreditApplicationResult(
            charge_id=charge.id,
            debit_entry_id=entry.id,
            amount_applied=target,
            charge_balance=to_money(charge.balance),
            unit_credit_balance=to_money(unit.credit_balance),
        )

    def reverse_credit_application(
        self,
        tenant_id: UUID,
        debit_entry_id: UUID,
        reason: str,
        actor_id: UUID,
    ) -> UnitCredit:
        """
        Undo a credit application: the charge balance goes back up and the
        consumed lots regain their remaining amount.
        """
        debit = self.session.execute(
            select(UnitCredit).where(
                UnitCredit.id == debit_entry_id, UnitCredit.tenant_id == tenant_id
            )
        ).scalar_one_or_none()
        if debit is None:
            raise CreditNotFoundError(debit_entry_id)
        if debit.amount >= ZERO or debit.charge_id is None:
            raise BusinessRuleViolation(
                f"Ledger entry {debit.id} is not a credit application"
            )

        amount = round_money(-debit.amount)
        charge = self._lock_charge(tenant_id, debit.charge_id)
        unit = self._lock_unit(tenant_id, debit.unit_id)

        already = self.session.execute(
            select(UnitCredit.id).where(UnitCredit.reverses_entry_id == debit.id)
        ).first()
        if already is not None:
            raise BusinessRuleViolation(
                f"Credit application {debit.id} has already been reversed"
            )

        orphaned = self._restore_lots(debit)
        orphaned_total = sum((a.amount_applied for a in orphaned), ZERO)
        restored_total = round_money(amount - orphaned_total)

        entry = None
        if restored_total > ZERO:
            entry = self._append_entry(
                unit,
                MovementType.REVERSAL,
                CreditSource.APPLICATION,
                restored_total,
                actor_id,
                as_lot=False,
                charge_id=charge.id,
                reverses_entry_id=debit.id,
                description=reason,
            )
        if orphaned_total > ZERO:
            entry = self._append_entry(
                unit,
                MovementType.REVERSAL,
                CreditSource.APPLICATION,
                round_money(orphaned_total),
                actor_id,
                charge_id=charge.id,
                reverses_entry_id=debit.id,
                description=reason,
            )

        charge.reverse_amount(amount)
        self.session.flush()

        assert_charge_consistent(charge)
        self._assert_consistent(unit)
        self._audit(
            tenant_id,
            debit.id,
            AuditAction.CREDIT_APPLICATION_REVERSED,
            actor_id,
            {"charge_id": charge.id, "amount": amount, "reason": reason},
        )
        logger.info(
            "credit_application_reversed",
            extra={"debit_entry_id": str(debit.id), "amount": str(amount)},
        )
        return entry

    # ------------------------------------------------------------------
    # Credits out
    # ------------------------------------------------------------------

    def refund_credit(
        self,
        tenant_id: UUID,
        unit_id: UUID,
        amount: Decimal,
        reason: str,
        actor_id: UUID,
        credit_id: UUID | None = None,
    ) -> UnitCredit:
        """Pay credit back to the resident.  Consumes lots FIFO unless a
        specific lot is named."""
        amount = _positive(amount)
        unit = self._lock_unit(tenant_id, unit_id)

        lots = None
        if credit_id is not None:
            lot = self._lock_credit(tenant_id, credit_id)
            if lot.unit_id != unit.id:
                raise BusinessRuleViolation(f"Credit {lot.id} belongs to another unit")
            remaining = to_money(lot.remaining_amount) if lot.status == CreditStatus.ACTIVE else ZERO
            if amount - remaining >= MONEY_EPSILON:
                raise InsufficientCreditError(unit.id, amount, remaining)
            lots = [lot]

        entry, _ = self._debit(
            unit,
            amount,
            MovementType.CREDIT_OUT,
            CreditSource.REFUND,
            actor_id,
            exhausted_status=CreditStatus.REFUNDED,
            lots=lots,
            description=reason,
        )
        self._assert_consistent(unit)
        self._audit(
            tenant_id,
            entry.id,
            AuditAction.CREDIT_REFUNDED,
            actor_id,
            {"unit_id": unit.id, "amount": amount, "reason": reason},
        )
        logger.info(
            "credit_refunded",
            extra={"unit_id": str(unit.id), "amount": str(amount)},
        )
        return entry

    def cancel_credit(
        self,
        tenant_id: UUID,
        credit_id: UUID,
        reason: str,
        actor_id: UUID,
    ) -> UnitCredit:
        """
        Cancel what is left of a credit lot with a reversal entry.

        Already-cancelled lots are returned unchanged.

        Raises:
            CreditAlreadyConsumedError: nothing remains to cancel.
        """
        unit = self._lock_unit(tenant_id, self._credit_unit_id(tenant_id, credit_id))
        lot = self._lock_credit(tenant_id, credit_id)

        if lot.status == CreditStatus.CANCELLED:
            return lot
        if lot.amount <= ZERO:
            raise BusinessRuleViolation(f"Ledger entry {lot.id} is not a credit lot")
        remaining = to_money(lot.remaining_amount)
        if lot.status != CreditStatus.ACTIVE or remaining <= ZERO:
            raise CreditAlreadyConsumedError(lot.id, remaining, to_money(lot.amount))

        self._cancel_lot(unit, lot, remaining, reason, actor_id)
        self._assert_consistent(unit)
        logger.info(
            "credit_cancelled",
            extra={"credit_id": str(lot.id), "amount": str(remaining)},
        )
        return lot

    def _cancel_lot(
        self, unit: Unit, lot: UnitCredit, remaining: Decimal, reason: str, actor_id: UUID
    ) -> UnitCredit:
        lot.remaining_amount = ZERO
        lot.status = CreditStatus.CANCELLED.value
        lot.updated_by_id = actor_id
        entry = self._append_entry(
            unit,
            MovementType.REVERSAL,
            CreditSource.CANCELLATION,
            -remaining,
            actor_id,
            reverses_entry_id=lot.id,
            source_payment_id=lot.source_payment_id,
            description=reason,
        )
        self._audit(
            unit.tenant_id,
            lot.id,
            AuditAction.CREDIT_CANCELLED,
            actor_id,
            {"amount": remaining, "reason": reason},
        )
        return entry

    def cancel_payment_credits(
        self,
        tenant_id: UUID,
        payment_id: UUID,
        reason: str,
        actor_id: UUID,
    ) -> Decimal:
        """
        Cancel the credit lots a payment created.  Called when the payment
        is cancelled.

        Raises:
            CreditAlreadyConsumedError: a lot from the payment was used.
        """
        lots = list(
            self.session.execute(
                select(UnitCredit)
                .where(
                    UnitCredit.tenant_id == tenant_id,
                    UnitCredit.source_payment_id == payment_id,
                    UnitCredit.amount > 0,
                )
                .order_by(UnitCredit.unit_id, UnitCredit.entry_seq)
            ).scalars()
        )
        cancelled = ZERO
        for lot in lots:
            unit = self._lock_unit(tenant_id, lot.unit_id)
            lot = self._lock_credit(tenant_id, lot.id)
            if lot.status == CreditStatus.CANCELLED:
                continue
            remaining = to_money(lot.remaining_amount)
            if lot.status != CreditStatus.ACTIVE or remaining != to_money(lot.amount):
                raise CreditAlreadyConsumedError(lot.id, remaining, to_money(lot.amount))
            self._cancel_lot(unit, lot, remaining, reason, actor_id)
            self._assert_consistent(unit)
            cancelled += remaining
        return cancelled

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def transfer_credit(
        self,
        tenant_id: UUID,
        from_unit_id: UUID,
        to_unit_id: UUID,
        amount: Decimal,
        reason: str,
        actor_id: UUID,
    ) -> TransferResult:
        """
        Move credit from one unit to another.

        Both entries are written in the caller's transaction with a shared
        transfer_id, so the transfer is all-or-nothing.
        """
        amount = _positive(amount)
        if from_unit_id == to_unit_id:
            raise ValidationError("Cannot transfer credit to the same unit", field="to_unit_id")

        first, second = sorted([from_unit_id, to_unit_id], key=str)
        locked = {
            first: self._lock_unit(tenant_id, first),
            second: self._lock_unit(tenant_id, second),
        }
        source, destination = locked[from_unit_id], locked[to_unit_id]

        transfer_id = uuid4()
        debit, _ = self._debit(
            source,
            amount,
            MovementType.CREDIT_OUT,
            CreditSource.TRANSFER,
            actor_id,
            transfer_id=transfer_id,
            description=reason,
        )
        credit = self._append_entry(
            destination,
            MovementType.CREDIT_IN,
            CreditSource.TRANSFER,
            amount,
            actor_id,
            transfer_id=transfer_id,
            description=reason,
        )

        self._assert_consistent(source)
        self._assert_consistent(destination)
        self._audit(
            tenant_id,
            transfer_id,
            AuditAction.CREDIT_TRANSFERRED,
            actor_id,
            {
                "from_unit_id": source.id,
                "to_unit_id": destination.id,
                "amount": amount,
                "reason": reason,
            },
        )
        logger.info(
            "credit_transferred",
            extra={
                "transfer_id": str(transfer_id),
                "from_unit_id": str(source.id),
                "to_unit_id": str(destination.id),
                "amount": str(amount),
            },
        )
        return TransferResult(
            transfer_id=transfer_id,
            debit_entry_id=debit.id,
            credit_entry_id=credit.id,
            amount=amount,
        )

    def repair_half_applied_transfers(
        self, tenant_id: UUID, actor_id: UUID
    ) -> list[UUID]:
        """
        Compensate transfers whose entries do not net to zero.

        Transfers written by this service are atomic, so this only finds
        rows imported from elsewhere or written by hand.  A debit without
        its matching credit is reversed back to the source unit; a credit
        without its debit is reversed out of the destination unit.  Each
        compensation is logged at ERROR and audited.
        """
        repaired = []
        for transfer_id in CreditSelector(self.session).unbalanced_transfer_ids(tenant_id):
            entries = list(
                self.session.execute(
                    select(UnitCredit)
                    .where(UnitCredit.transfer_id == transfer_id)
                    .order_by(UnitCredit.entry_seq)
                ).scalars()
            )
            net = round_money(sum((e.amount for e in entries), ZERO))
            if net == ZERO:
                continue

            if net < ZERO:
                debit = next(e for e in entries if e.amount < ZERO)
                unit = self._lock_unit(tenant_id, debit.unit_id)
                orphaned = self._restore_lots(debit)
                orphaned_total = round_money(sum((a.amount_applied for a in orphaned), ZERO))
                restored_total = round_money(-net - orphaned_total)
                if restored_total > ZERO:
                    self._append_entry(
                        unit,
                        MovementType.REVERSAL,
                        CreditSource.REPAIR,
                        restored_total,
                        actor_id,
                        as_lot=False,
                        transfer_id=transfer_id,
                        reverses_entry_id=debit.id,
                        description="Compensation of half-applied transfer",
                    )
                if orphaned_total > ZERO:
                    self._append_entry(
                        unit,
                        MovementType.REVERSAL,
                        CreditSource.REPAIR,
                        orphaned_total,
                        actor_id,
                        transfer_id=transfer_id,
                        reverses_entry_id=debit.id,
                        description="Compensation of half-applied transfer",
                    )
                reversed_entry = debit
            else:
                credit = next(e for e in entries if e.amount > ZERO)
                unit = self._lock_unit(tenant_id, credit.unit_id)
                self._debit(
                    unit,
                    net,
                    MovementType.REVERSAL,
                    CreditSource.REPAIR,
                    actor_id,
                    transfer_id=transfer_id,
                    reverses_entry_id=credit.id,
                    description="Compensation of half-applied transfer",
                )
                reversed_entry = credit

            self._assert_consistent(unit)
            self._audit(
                tenant_id,
                transfer_id,
                AuditAction.CREDIT_TRANSFER_REPAIRED,
                actor_id,
                {"unit_id": unit.id, "reversed_entry_id": reversed_entry.id, "net": net},
            )
            logger.error(
                "credit_transfer_compensated",
                extra={
                    "transfer_id": str(transfer_id),
                    "unit_id": str(unit.id),
                    "net": str(net),
                },
            )
            repaired.append(transfer_id)
        return repaired

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, tenant_id: UUID, unit_id: UUID) -> Decimal:
        """Current credit balance of a unit."""
        unit = self.session.execute(
            select(Unit).where(Unit.id == unit_id, Unit.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if unit is None:
            raise UnitNotFoundError(unit_id)
        return to_money(unit.credit_balance)
