"""
Tests for the charge distribution engine.

Covers:
- By-aliquot, equal and by-consumption splits
- Per-unit rounding and the accepted drift bound
- Preview editing (exclude, override)
- Input validation
- Engine trace records
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from billing_engines.distribution import (
    ChargePreview,
    DistributionMethod,
    UnitShare,
    distribute,
    preview_total,
    rounding_drift,
)


def _units(*aliquots: str) -> list[UnitShare]:
    return [
        UnitShare(unit_id=f"u{i}", label=f"A-{i}", aliquot=Decimal(a))
        for i, a in enumerate(aliquots)
    ]


class TestByAliquot:
    """Split proportionally to ownership share."""

    def test_exact_split(self):
        previews = distribute(_units("60", "40"), Decimal("1000.00"), DistributionMethod.BY_ALIQUOT)

        assert [p.suggested_amount for p in previews] == [Decimal("600.00"), Decimal("400.00")]
        assert all(p.final_amount == p.suggested_amount for p in previews)
        assert all(p.include for p in previews)

    def test_accepts_method_value_string(self):
        previews = distribute(_units("1", "3"), Decimal("100"), "by_aliquot")
        assert [p.suggested_amount for p in previews] == [Decimal("25.00"), Decimal("75.00")]

    def test_rounding_drift_within_bound(self):
        """Each share is rounded on its own; the sum may miss the total by cents."""
        total = Decimal("100.00")
        previews = distribute(_units("33.34", "33.33", "33.33"), total, DistributionMethod.BY_ALIQUOT)

        for p in previews:
            assert p.suggested_amount == p.suggested_amount.quantize(Decimal("0.01"))
        assert abs(rounding_drift(total, previews)) <= Decimal("0.01") * len(previews)

    def test_remainder_is_not_reassigned(self):
        """Three equal shares of 100.00 stay at 33.33 each."""
        previews = distribute(_units("1", "1", "1"), Decimal("100.00"), DistributionMethod.BY_ALIQUOT)

        assert [p.suggested_amount for p in previews] == [Decimal("33.33")] * 3
        assert rounding_drift(Decimal("100.00"), previews) == Decimal("-0.01")

    def test_all_zero_aliquots_rejected(self):
        with pytest.raises(ValueError, match="aliquot"):
            distribute(_units("0", "0"), Decimal("500.00"), DistributionMethod.BY_ALIQUOT)

    def test_zero_aliquot_unit_gets_nothing(self):
        previews = distribute(_units("0", "2"), Decimal("500.00"), DistributionMethod.BY_ALIQUOT)

        assert [p.suggested_amount for p in previews] == [Decimal("0.00"), Decimal("500.00")]

    def test_preview_carries_unit_data(self):
        unit_id = uuid4()
        previews = distribute(
            [UnitShare(unit_id=unit_id, label="B-2", aliquot=Decimal("10"))],
            Decimal("50"),
            DistributionMethod.BY_ALIQUOT,
        )
        assert previews[0].unit_id == unit_id
        assert previews[0].label == "B-2"
        assert previews[0].aliquot == Decimal("10")


class TestEqual:

    def test_equal_split(self):
        previews = distribute(_units("0", "0", "0", "0"), Decimal("1000.00"), DistributionMethod.EQUAL)
        assert [p.suggested_amount for p in previews] == [Decimal("250.00")] * 4

    def test_equal_rounds_half_up(self):
        previews = distribute(_units("0", "0", "0"), Decimal("0.05"), DistributionMethod.EQUAL)
        # 0.016666... rounds to 0.02
        assert [p.suggested_amount for p in previews] == [Decimal("0.02")] * 3


class TestByConsumption:

    def test_with_unit_rate(self):
        units = [
            UnitShare(unit_id="a", consumption=Decimal("10")),
            UnitShare(unit_id="b", consumption=Decimal("30")),
        ]
        previews = distribute(units, None, DistributionMethod.BY_CONSUMPTION, unit_rate=Decimal("2.5"))
        assert [p.suggested_amount for p in previews] == [Decimal("25.00"), Decimal("75.00")]

    def test_rate_derived_from_total(self):
        units = [
            UnitShare(unit_id="a", consumption=Decimal("10")),
            UnitShare(unit_id="b", consumption=Decimal("30")),
        ]
        previews = distribute(units, Decimal("100.00"), DistributionMethod.BY_CONSUMPTION)
        assert [p.suggested_amount for p in previews] == [Decimal("25.00"), Decimal("75.00")]

    def test_missing_reading_rejected(self):
        units = [UnitShare(unit_id="a", consumption=Decimal("10")), UnitShare(unit_id="b")]
        with pytest.raises(ValueError, match="Consumption reading missing"):
            distribute(units, Decimal("100"), DistributionMethod.BY_CONSUMPTION)

    def test_zero_consumption_without_rate_rejected(self):
        units = [UnitShare(unit_id="a", consumption=Decimal("0"))]
        with pytest.raises(ValueError, match="zero total consumption"):
            distribute(units, Decimal("100"), DistributionMethod.BY_CONSUMPTION)


class TestValidation:

    def test_negative_total_rejected(self):
        with pytest.raises(ValueError):
            distribute(_units("1"), Decimal("-1"), DistributionMethod.EQUAL)

    def test_total_required_outside_consumption(self):
        with pytest.raises(ValueError, match="total is required"):
            distribute(_units("1"), None, DistributionMethod.BY_ALIQUOT)

    def test_unknown_method_rejected(self):
        with pytest.raises(ValueError):
            distribute(_units("1"), Decimal("10"), "by_magic")

    def test_negative_aliquot_rejected(self):
        with pytest.raises(ValueError):
            UnitShare(unit_id="a", aliquot=Decimal("-1"))

    def test_float_aliquot_rejected(self):
        with pytest.raises(ValueError, match="float"):
            UnitShare(unit_id="a", aliquot=0.5)

    def test_no_units_returns_empty(self, captured_logs):
        assert distribute([], Decimal("100"), DistributionMethod.EQUAL) == []
        assert any(r["message"] == "distribution_no_units" for r in captured_logs())


class TestPreviews:

    def setup_method(self):
        self.previews = distribute(_units("50", "30", "20"), Decimal("1000.00"), DistributionMethod.BY_ALIQUOT)

    def test_exclude_returns_new_preview(self):
        excluded = self.previews[0].exclude()
        assert excluded.include is False
        assert self.previews[0].include is True

    def test_override_amount_keeps_suggestion(self):
        edited = self.previews[1].with_amount("275.50")
        assert edited.final_amount == Decimal("275.50")
        assert edited.suggested_amount == Decimal("300.00")

    def test_negative_override_rejected(self):
        with pytest.raises(ValueError):
            self.previews[0].with_amount("-5")

    def test_preview_total_skips_excluded(self):
        edited = [self.previews[0].exclude(), self.previews[1], self.previews[2].with_amount("150")]
        assert preview_total(edited) == Decimal("450.00")

    def test_previews_are_frozen(self):
        with pytest.raises(AttributeError):
            self.previews[0].final_amount = Decimal("1")

    def test_preview_is_plain_dataclass(self):
        preview = ChargePreview("u", Decimal("1.00"), Decimal("1.00"))
        assert preview.include is True


class TestTrace:

    def test_trace_record_emitted(self, captured_logs):
        distribute(_units("1", "1"), Decimal("10"), DistributionMethod.EQUAL)

        traces = [r for r in captured_logs() if r["message"] == "BILLING_ENGINE_TRACE"]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "distribution"
        assert traces[0]["engine_version"] == "1.0"
        assert len(traces[0]["input_fingerprint"]) == 16


class TestDistributionProperties:
    """Drift stays within half a cent per unit."""

    @settings(max_examples=200)
    @given(
        cents=st.integers(min_value=0, max_value=10_000_000),
        aliquots=st.lists(st.integers(min_value=1, max_value=100_000), min_size=1, max_size=30),
    )
    def test_aliquot_drift_bound(self, cents, aliquots):
        total = Decimal(cents) / 100
        units = [UnitShare(unit_id=str(i), aliquot=Decimal(a) / 1000) for i, a in enumerate(aliquots)]
        previews = distribute(units, total, DistributionMethod.BY_ALIQUOT)

        assert len(previews) == len(units)
        assert all(p.suggested_amount >= 0 for p in previews)
        assert abs(rounding_drift(total, previews)) <= Decimal("0.005") * len(units) + Decimal("0.000001")

    @settings(max_examples=200)
    @given(
        cents=st.integers(min_value=0, max_value=10_000_000),
        count=st.integers(min_value=1, max_value=50),
    )
    def test_equal_shares_identical(self, cents, count):
        total = Decimal(cents) / 100
        previews = distribute([UnitShare(unit_id=str(i)) for i in range(count)], total, DistributionMethod.EQUAL)

        assert len({p.suggested_amount for p in previews}) == 1
        assert abs(rounding_drift(total, previews)) <= Decimal("0.005") * count
