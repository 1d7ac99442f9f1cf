"""Tests for billing_kernel/logging_config.py: JSON lines, context, setup."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from billing_kernel.exceptions import InsufficientCreditError, ReconciliationLockedError
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def log_lines():
    """Configure logging onto a buffer; returns a reader of parsed lines."""
    stream = StringIO()

    def _setup(level=logging.INFO):
        configure_logging(stream=stream, level=level)

        def _read():
            return [json.loads(line) for line in stream.getvalue().splitlines() if line]

        return _read

    return _setup


class TestEnvelope:

    def test_fixed_fields(self, log_lines):
        read = log_lines()
        get_logger("services.payment").info("payment_applied")

        (record,) = read()
        assert record["level"] == "INFO"
        assert record["message"] == "payment_applied"
        assert record["logger"] == "billing_kernel.services.payment"
        assert record["ts"].endswith("+00:00")

    def test_extra_values_serialized(self, log_lines):
        read = log_lines()
        charge_id = uuid4()
        get_logger("t").info(
            "allocation_clamped", extra={"charge_id": charge_id, "applied": Decimal("80.00"), "folio": 3}
        )

        (record,) = read()
        assert record["charge_id"] == str(charge_id)
        assert record["applied"] == "80.00"
        assert record["folio"] == 3

    def test_context_wins_over_extra(self, log_lines):
        read = log_lines()
        with LogContext.bind(tenant_id="t-ctx"):
            get_logger("t").info("x", extra={"tenant_id": "t-extra"})

        assert read()[0]["tenant_id"] == "t-ctx"

    def test_level_filtering(self, log_lines):
        read = log_lines()
        logger = get_logger("t")
        logger.debug("hidden")
        logger.warning("shown")

        assert [r["message"] for r in read()] == ["shown"]

    def test_level_by_name(self, log_lines):
        read = log_lines(level="debug")
        get_logger("t").debug("visible")

        assert read()[0]["message"] == "visible"


class TestExceptions:

    def test_plain_exception(self, log_lines):
        read = log_lines()
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("t").error("failed", exc_info=True)

        record = read()[0]
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record
        assert "Traceback" in record["traceback"]

    def test_kernel_error_details(self, log_lines):
        read = log_lines()
        reconciliation_id = uuid4()
        try:
            raise ReconciliationLockedError(reconciliation_id, "cerrada")
        except ReconciliationLockedError:
            get_logger("t").warning("edit_rejected", exc_info=True)

        record = read()[0]
        assert record["exc_code"] == "RECONCILIATION_LOCKED"
        assert record["exc_kind"] == "business_rule"
        assert record["exc_status"] == "cerrada"
        assert record["exc_reconciliation_id"] == str(reconciliation_id)

    def test_decimal_details(self, log_lines):
        read = log_lines()
        try:
            raise InsufficientCreditError("u-1", Decimal("5.00"), Decimal("1.00"))
        except InsufficientCreditError:
            get_logger("t").info("rejected", exc_info=True)

        assert read()[0]["exc_requested"] == "5.00"


class TestLogContext:

    def test_set_ignores_none(self):
        LogContext.set(correlation_id="c", tenant_id=None)
        assert LogContext.get_all() == {"correlation_id": "c"}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.set(request_path="/x")
        with pytest.raises(TypeError):
            with LogContext.bind(request_path="/x"):
                pass

    def test_clear(self):
        LogContext.set(operation="apply_payment", document_id="d")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_nests_and_restores(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner", actor_id=uuid4()):
            assert LogContext.get_all()["correlation_id"] == "inner"
        assert LogContext.get_all() == {"correlation_id": "outer"}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(operation="cancel_payment"):
                raise RuntimeError
        assert "operation" not in LogContext.get_all()

    def test_values_are_strings(self):
        tenant = uuid4()
        with LogContext.bind(tenant_id=tenant):
            assert LogContext.get_all()["tenant_id"] == str(tenant)


class TestConfigureLogging:

    def test_only_first_call_counts(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))
        configure_logging(handler=logging.StreamHandler(StringIO()))

        handlers = logging.getLogger("billing_kernel").handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, StructuredFormatter)

    def test_does_not_propagate(self):
        configure_logging(stream=StringIO())
        assert logging.getLogger("billing_kernel").propagate is False
