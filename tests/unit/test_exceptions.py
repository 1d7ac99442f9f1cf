"""
Unit tests for the kernel exception hierarchy and the invariant assertions.
"""

from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest

from billing_kernel.exceptions import (
    BillingKernelError,
    BusinessRuleViolation,
    ChargeNotFoundError,
    ChargeNotPendingError,
    ConcurrencyConflict,
    DocumentReconciledError,
    FatalConfigurationError,
    FolioCounterMissingError,
    InsufficientBalanceError,
    InsufficientCreditError,
    InvariantViolationError,
    NotFoundError,
    ValidationError,
)
from billing_kernel.invariants import (
    BillingInvariant,
    assert_allocation_sum,
    assert_charge_consistent,
    assert_credit_cache_matches,
    assert_credit_lots_consistent,
    assert_credit_non_negative,
)
from billing_kernel.models.charge import ChargeStatus


class TestHierarchy:

    @pytest.mark.parametrize(
        "exc, base, kind",
        [
            (ValidationError("bad"), BillingKernelError, "validation"),
            (ChargeNotFoundError(uuid4()), NotFoundError, "not_found"),
            (InsufficientCreditError(uuid4(), Decimal("5"), Decimal("1")), InsufficientBalanceError,
             "insufficient_balance"),
            (ChargeNotPendingError(uuid4(), ChargeStatus.CANCELLED), BusinessRuleViolation, "business_rule"),
            (ConcurrencyConflict("op"), BillingKernelError, "concurrency"),
            (FolioCounterMissingError(uuid4(), "REC"), FatalConfigurationError, "fatal_configuration"),
            (InvariantViolationError("x", "y"), BillingKernelError, "invariant"),
        ],
    )
    def test_kind_and_base(self, exc, base, kind):
        assert isinstance(exc, base)
        assert exc.kind == kind

    def test_codes_are_unique(self):
        def _walk(cls):
            for sub in cls.__subclasses__():
                yield sub
                yield from _walk(sub)

        codes = [cls.code for cls in _walk(BillingKernelError)]
        assert len(codes) == len(set(codes))


class TestStructuredData:

    def test_status_is_plain_text(self):
        exc = ChargeNotPendingError("c-1", ChargeStatus.CANCELLED)
        assert exc.status == "cancelled"
        assert "cancelled" in str(exc)

    def test_to_dict(self):
        reconciliation_id = uuid4()
        exc = DocumentReconciledError("payment", "p-1", reconciliation_id)

        payload = exc.to_dict()

        assert payload["kind"] == "business_rule"
        assert payload["code"] == "DOCUMENT_RECONCILED"
        assert payload["details"] == {
            "document_type": "payment",
            "document_id": "p-1",
            "reconciliation_id": str(reconciliation_id),
        }
        assert "Delete the reconciliation first" in payload["message"]

    def test_decimal_details_are_stringified(self):
        payload = InsufficientCreditError("u-1", Decimal("50.00"), Decimal("20.00")).to_dict()

        assert payload["code"] == "INSUFFICIENT_CREDIT"
        assert payload["details"]["requested"] == "50.00"
        assert payload["details"]["available"] == "20.00"
        assert payload["details"]["target_id"] == "u-1"

    def test_concurrency_detail_in_message(self):
        assert str(ConcurrencyConflict("apply_payment", "deadlock")).endswith(": deadlock")
        assert str(ConcurrencyConflict("apply_payment")).endswith("apply_payment")


def _charge(total, paid, balance, status="pending"):
    return SimpleNamespace(
        id="c-1",
        total_amount=Decimal(total),
        paid_amount=Decimal(paid),
        balance=Decimal(balance),
        status=status,
    )


class TestInvariantAssertions:

    def test_consistent_charges_pass(self):
        assert_charge_consistent(_charge("100", "40", "60"))
        assert_charge_consistent(_charge("100", "100", "0", "paid"))
        assert_charge_consistent(_charge("100", "0", "100", "cancelled"))

    def test_conservation_broken(self):
        with pytest.raises(InvariantViolationError) as exc_info:
            assert_charge_consistent(_charge("100", "40", "50"))
        assert exc_info.value.invariant == BillingInvariant.CHARGE_CONSERVATION.value

    def test_status_out_of_sync(self):
        with pytest.raises(InvariantViolationError) as exc_info:
            assert_charge_consistent(_charge("100", "100", "0", "pending"))
        assert exc_info.value.invariant == BillingInvariant.CHARGE_STATUS.value

    def test_over_allocation(self):
        assert_allocation_sum("p-1", Decimal("100"), [Decimal("60"), Decimal("40")])
        with pytest.raises(InvariantViolationError):
            assert_allocation_sum("p-1", Decimal("100"), [Decimal("60"), Decimal("40.01")])

    def test_credit_checks(self):
        assert_credit_non_negative("u-1", Decimal("0"))
        assert_credit_lots_consistent("u-1", Decimal("30"), [Decimal("10"), Decimal("20")])
        assert_credit_cache_matches("u-1", Decimal("30"), Decimal("30.00"))

        with pytest.raises(InvariantViolationError):
            assert_credit_non_negative("u-1", Decimal("-0.01"))
        with pytest.raises(InvariantViolationError):
            assert_credit_lots_consistent("u-1", Decimal("30"), [Decimal("10")])
        with pytest.raises(InvariantViolationError):
            assert_credit_cache_matches("u-1", Decimal("30"), Decimal("29"))
