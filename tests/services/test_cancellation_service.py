"""
Tests for CancellationService.

Covers:
- Payment cancellation reverses charges, the account and overpayment credit
- Egress cancellation reverses payables and the account
- Cancelling twice changes nothing
- Documents in a finalized reconciliation cannot be cancelled
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.exceptions import (
    CreditAlreadyConsumedError,
    DocumentReconciledError,
    EgressNotFoundError,
    PaymentNotFoundError,
)
from billing_kernel.models.charge import ChargeStatus
from billing_kernel.models.egress import EgressStatus
from billing_kernel.models.payable import PayableStatus
from billing_kernel.models.payment import PaymentStatus
from billing_kernel.services.cancellation_service import CancellationService
from billing_kernel.services.credit_ledger_service import CreditLedgerService
from billing_kernel.services.egress_service import EgressService
from billing_kernel.services.payment_service import PaymentService
from billing_services.reconciliation_service import ReconciliationService


@pytest.fixture
def cancellations(session, deterministic_clock):
    return CancellationService(session, deterministic_clock)


@pytest.fixture
def pay(session, provisioned_tenant, account, test_actor_id, deterministic_clock):
    service = PaymentService(session, deterministic_clock)

    def _pay(charge, amount, **options):
        return service.apply_payment(
            provisioned_tenant,
            account.id,
            Decimal(amount),
            [{"charge_id": charge.id, "amount": Decimal(amount)}],
            test_actor_id,
            **options,
        )

    return _pay


@pytest.fixture
def pay_supplier(session, provisioned_tenant, account, test_actor_id, deterministic_clock):
    service = EgressService(session, deterministic_clock)

    def _pay(payable, amount, **options):
        return service.register_egress(
            provisioned_tenant,
            account.id,
            [{"payable_id": payable.id, "amount": Decimal(amount)}],
            test_actor_id,
            **options,
        )

    return _pay


class TestCancelPayment:

    def test_reverses_charge_and_account(
        self, cancellations, provisioned_tenant, account, unit, create_charge, pay, test_actor_id
    ):
        charge = create_charge(unit.id, "100.00")
        payment = pay(charge, "100.00")

        result = cancellations.cancel_payment(
            provisioned_tenant, payment.id, "Bounced transfer", test_actor_id
        )

        assert result.already_cancelled is False
        assert result.reversed_amount == Decimal("100.00")
        assert result.folio == payment.folio_rec
        assert payment.status == PaymentStatus.CANCELLED
        assert payment.cancellation_reason == "Bounced transfer"
        assert charge.balance == Decimal("100.00")
        assert charge.status == ChargeStatus.PENDING
        assert account.current_balance == Decimal("0.00")

    def test_allocation_rows_kept(
        self, cancellations, provisioned_tenant, unit, create_charge, pay, test_actor_id
    ):
        charge = create_charge(unit.id, "100.00")
        payment = pay(charge, "60.00")

        cancellations.cancel_payment(provisioned_tenant, payment.id, "x", test_actor_id)

        assert [a.amount_allocated for a in payment.allocations] == [Decimal("60.00")]

    def test_second_cancel_is_noop(
        self, cancellations, provisioned_tenant, account, unit, create_charge, pay, test_actor_id
    ):
        charge = create_charge(unit.id, "100.00")
        payment = pay(charge, "100.00")
        cancellations.cancel_payment(provisioned_tenant, payment.id, "x", test_actor_id)

        again = cancellations.cancel_payment(provisioned_tenant, payment.id, "x", test_actor_id)

        assert again.already_cancelled is True
        assert again.reversed_amount == Decimal("0")
        assert charge.balance == Decimal("100.00")
        assert account.current_balance == Decimal("0.00")

    def test_overpayment_credit_cancelled(
        self, session, cancellations, provisioned_tenant, account, unit, create_charge, test_actor_id,
        deterministic_clock,
    ):
        charge = create_charge(unit.id, "80.00")
        payment = PaymentService(session, deterministic_clock).apply_payment(
            provisioned_tenant,
            account.id,
            Decimal("100.00"),
            [{"charge_id": charge.id, "amount": Decimal("80.00")}],
            test_actor_id,
            unit_id=unit.id,
            credit_overpayment=True,
        )
        assert unit.credit_balance == Decimal("20.00")

        result = cancellations.cancel_payment(provisioned_tenant, payment.id, "x", test_actor_id)

        assert result.cancelled_credit == Decimal("20.00")
        assert unit.credit_balance == Decimal("0.00")
        assert account.current_balance == Decimal("0.00")

    def test_consumed_overpayment_credit_blocks(
        self, session, cancellations, provisioned_tenant, account, unit, create_charge, test_actor_id,
        deterministic_clock,
    ):
        first = create_charge(unit.id, "80.00")
        second = create_charge(unit.id, "50.00")
        payment = PaymentService(session, deterministic_clock).apply_payment(
            provisioned_tenant,
            account.id,
            Decimal("100.00"),
            [{"charge_id": first.id, "amount": Decimal("80.00")}],
            test_actor_id,
            unit_id=unit.id,
            credit_overpayment=True,
        )
        CreditLedgerService(session, deterministic_clock).auto_apply_fifo(
            provisioned_tenant, second.id, test_actor_id
        )

        with pytest.raises(CreditAlreadyConsumedError):
            cancellations.cancel_payment(provisioned_tenant, payment.id, "x", test_actor_id)

    def test_blocked_by_conciliada_reconciliation(
        self, session, cancellations, provisioned_tenant, account, unit, create_charge, pay,
        test_actor_id, deterministic_clock,
    ):
        charge = create_charge(unit.id, "100.00")
        payment = pay(charge, "100.00")
        reconciliation = ReconciliationService(session, deterministic_clock).compute_reconciliation(
            provisioned_tenant, account.id, date(2024, 1, 31), Decimal("100.00"),
            [payment.id], [], test_actor_id,
        )
        assert reconciliation.status == "conciliada"

        with pytest.raises(DocumentReconciledError) as exc_info:
            cancellations.cancel_payment(provisioned_tenant, payment.id, "x", test_actor_id)

        assert exc_info.value.reconciliation_id == str(reconciliation.id)
        assert exc_info.value.to_dict()["code"] == "DOCUMENT_RECONCILED"
        assert payment.status == PaymentStatus.AVAILABLE
        assert charge.balance == Decimal("0.00")

    def test_borrador_reconciliation_does_not_block(
        self, session, cancellations, provisioned_tenant, account, unit, create_charge, pay,
        test_actor_id, deterministic_clock,
    ):
        charge = create_charge(unit.id, "100.00")
        payment = pay(charge, "100.00")
        reconciliation = ReconciliationService(session, deterministic_clock).compute_reconciliation(
            provisioned_tenant, account.id, date(2024, 1, 31), Decimal("90.00"),
            [payment.id], [], test_actor_id,
        )
        assert reconciliation.status == "borrador"

        result = cancellations.cancel_payment(provisioned_tenant, payment.id, "x", test_actor_id)
        assert result.already_cancelled is False

    def test_unknown_payment(self, cancellations, provisioned_tenant, test_actor_id):
        with pytest.raises(PaymentNotFoundError):
            cancellations.cancel_payment(provisioned_tenant, uuid4(), "x", test_actor_id)

    def test_other_tenant_payment_not_found(
        self, cancellations, provisioned_tenant, unit, create_charge, pay, test_actor_id
    ):
        charge = create_charge(unit.id, "100.00")
        payment = pay(charge, "100.00")

        with pytest.raises(PaymentNotFoundError):
            cancellations.cancel_payment(uuid4(), payment.id, "x", test_actor_id)


class TestCancelEgress:

    def test_reverses_payable_and_account(
        self, cancellations, provisioned_tenant, account, create_payable, pay_supplier, test_actor_id
    ):
        payable = create_payable("300.00")
        egress = pay_supplier(payable, "300.00")
        assert account.current_balance == Decimal("-300.00")
        assert payable.status == PayableStatus.PAID

        result = cancellations.cancel_egress(provisioned_tenant, egress.id, "Wrong supplier", test_actor_id)

        assert result.reversed_amount == Decimal("300.00")
        assert result.folio == egress.folio_eg
        assert egress.status == EgressStatus.CANCELLED
        assert payable.paid_amount == Decimal("0.00")
        assert payable.status == PayableStatus.APPROVED
        assert account.current_balance == Decimal("0.00")

    def test_partial_payable_back_to_partially_paid(
        self, cancellations, provisioned_tenant, create_payable, pay_supplier, test_actor_id
    ):
        payable = create_payable("300.00")
        pay_supplier(payable, "100.00")
        second = pay_supplier(payable, "50.00")

        cancellations.cancel_egress(provisioned_tenant, second.id, "x", test_actor_id)

        assert payable.paid_amount == Decimal("100.00")
        assert payable.status == PayableStatus.PARTIALLY_PAID

    def test_second_cancel_is_noop(
        self, cancellations, provisioned_tenant, account, create_payable, pay_supplier, test_actor_id
    ):
        payable = create_payable("300.00")
        egress = pay_supplier(payable, "300.00")
        cancellations.cancel_egress(provisioned_tenant, egress.id, "x", test_actor_id)

        again = cancellations.cancel_egress(provisioned_tenant, egress.id, "x", test_actor_id)

        assert again.already_cancelled is True
        assert account.current_balance == Decimal("0.00")

    def test_blocked_by_conciliada_reconciliation(
        self, session, cancellations, provisioned_tenant, account, create_payable, pay_supplier,
        test_actor_id, deterministic_clock,
    ):
        payable = create_payable("300.00")
        egress = pay_supplier(payable, "300.00")
        ReconciliationService(session, deterministic_clock).compute_reconciliation(
            provisioned_tenant, account.id, date(2024, 1, 31), Decimal("-300.00"),
            [], [egress.id], test_actor_id,
        )

        with pytest.raises(DocumentReconciledError):
            cancellations.cancel_egress(provisioned_tenant, egress.id, "x", test_actor_id)

    def test_unknown_egress(self, cancellations, provisioned_tenant, test_actor_id):
        with pytest.raises(EgressNotFoundError):
            cancellations.cancel_egress(provisioned_tenant, uuid4(), "x", test_actor_id)
