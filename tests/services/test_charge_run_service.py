"""
Tests for ChargeRunService: distribution runs over stored units and
incremental late-fee assessment.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_engines.billing_rules import LateFeePolicy
from billing_kernel.exceptions import UnitNotFoundError, ValidationError
from billing_kernel.models.charge import ChargeType
from billing_kernel.services.charge_service import ChargeService
from billing_services.charge_run_service import ChargeRunService

DUE = date(2024, 1, 10)


@pytest.fixture
def runs(session, deterministic_clock):
    return ChargeRunService(session, deterministic_clock)


@pytest.fixture
def two_units(create_unit):
    return create_unit("A-1", "60"), create_unit("A-2", "40")


class TestPreviewDistribution:

    def test_by_aliquot(self, runs, provisioned_tenant, two_units):
        previews = runs.preview_distribution(provisioned_tenant, Decimal("1000"), "by_aliquot")

        assert [p.final_amount for p in previews] == [Decimal("600.00"), Decimal("400.00")]
        assert [p.label for p in previews] == ["A-1", "A-2"]

    def test_inactive_units_skipped(self, session, runs, provisioned_tenant, two_units):
        two_units[1].is_active = False
        session.flush()

        previews = runs.preview_distribution(provisioned_tenant, Decimal("90"), "equal")
        assert [p.unit_id for p in previews] == [two_units[0].id]

    def test_explicit_unit_selection(self, runs, provisioned_tenant, two_units):
        previews = runs.preview_distribution(
            provisioned_tenant, Decimal("90"), "equal", unit_ids=[two_units[1].id]
        )
        assert [p.final_amount for p in previews] == [Decimal("90.00")]

    def test_unknown_unit(self, runs, provisioned_tenant, two_units):
        with pytest.raises(UnitNotFoundError):
            runs.preview_distribution(provisioned_tenant, Decimal("90"), "equal", unit_ids=[uuid4()])

    def test_by_consumption(self, runs, provisioned_tenant, two_units):
        consumption = {two_units[0].id: Decimal("10"), two_units[1].id: Decimal("30")}

        previews = runs.preview_distribution(
            provisioned_tenant, None, "by_consumption", consumption=consumption, unit_rate=Decimal("2.5")
        )
        assert [p.final_amount for p in previews] == [Decimal("25.00"), Decimal("75.00")]

    def test_engine_errors_become_validation_errors(self, runs, provisioned_tenant, two_units):
        with pytest.raises(ValidationError):
            runs.preview_distribution(provisioned_tenant, Decimal("-1"), "equal")

    def test_units_without_aliquots_rejected(self, runs, provisioned_tenant, create_unit):
        create_unit("B-1", "0")
        create_unit("B-2", "0")

        with pytest.raises(ValidationError) as exc_info:
            runs.preview_distribution(provisioned_tenant, Decimal("500"), "by_aliquot")
        assert exc_info.value.field == "distribution"

    def test_no_side_effects(self, session, runs, provisioned_tenant, two_units):
        runs.preview_distribution(provisioned_tenant, Decimal("1000"), "by_aliquot")
        assert not session.new and not session.dirty


class TestDistributeAndCommit:

    def test_commits_one_batch(self, runs, provisioned_tenant, two_units, test_actor_id, captured_logs):
        batch_id, charges = runs.distribute_and_commit(
            provisioned_tenant, Decimal("1000"), "by_aliquot", DUE, "January fee", test_actor_id,
            period="2024-01",
        )

        assert len(charges) == 2
        assert {c.batch_id for c in charges} == {batch_id}
        assert sum(c.total_amount for c in charges) == Decimal("1000.00")
        assert any(r["message"] == "distribution_committed" for r in captured_logs())

    def test_edited_previews(self, runs, provisioned_tenant, two_units, test_actor_id):
        previews = runs.preview_distribution(provisioned_tenant, Decimal("1000"), "by_aliquot")
        edited = [previews[0].with_amount("650.00"), previews[1].exclude()]

        _, charges = runs.commit_previews(provisioned_tenant, edited, DUE, "January fee", test_actor_id)

        assert [c.total_amount for c in charges] == [Decimal("650.00")]


class TestAssessLateFee:

    def setup_method(self):
        self.policy = LateFeePolicy(type="percentage", value=Decimal("1.5"), grace_days=5)

    def test_nothing_within_grace(self, runs, provisioned_tenant, unit, create_charge, test_actor_id):
        charge = create_charge(unit.id, "1000.00", due_date=DUE)
        assert runs.assess_late_fee(provisioned_tenant, charge.id, date(2024, 1, 15), self.policy, test_actor_id) is None

    def test_posts_interest_charge(self, runs, provisioned_tenant, unit, create_charge, test_actor_id):
        charge = create_charge(unit.id, "1000.00", due_date=DUE)

        fee = runs.assess_late_fee(provisioned_tenant, charge.id, date(2024, 1, 16), self.policy, test_actor_id)

        assert fee.total_amount == Decimal("15.00")
        assert fee.charge_type == ChargeType.INTEREST
        assert fee.parent_charge_id == charge.id
        assert fee.unit_id == unit.id

    def test_incremental_and_idempotent(self, runs, provisioned_tenant, unit, create_charge, test_actor_id):
        charge = create_charge(unit.id, "1000.00", due_date=DUE)

        runs.assess_late_fee(provisioned_tenant, charge.id, date(2024, 1, 16), self.policy, test_actor_id)
        assert runs.assess_late_fee(provisioned_tenant, charge.id, date(2024, 1, 16), self.policy, test_actor_id) is None

        second = runs.assess_late_fee(provisioned_tenant, charge.id, date(2024, 2, 15), self.policy, test_actor_id)
        assert second.total_amount == Decimal("15.00")

    def test_cancelled_fee_is_reassessed(
        self, session, runs, provisioned_tenant, unit, create_charge, test_actor_id, deterministic_clock
    ):
        charge = create_charge(unit.id, "1000.00", due_date=DUE)
        fee = runs.assess_late_fee(provisioned_tenant, charge.id, date(2024, 1, 16), self.policy, test_actor_id)
        ChargeService(session, deterministic_clock).cancel_charge(provisioned_tenant, fee.id, "Waived", test_actor_id)

        again = runs.assess_late_fee(provisioned_tenant, charge.id, date(2024, 1, 16), self.policy, test_actor_id)
        assert again.total_amount == Decimal("15.00")

    def test_not_assessed_on_interest(self, runs, provisioned_tenant, unit, create_charge, test_actor_id):
        charge = create_charge(unit.id, "1000.00", due_date=DUE)
        fee = runs.assess_late_fee(provisioned_tenant, charge.id, date(2024, 1, 16), self.policy, test_actor_id)

        with pytest.raises(ValidationError):
            runs.assess_late_fee(provisioned_tenant, fee.id, date(2024, 6, 1), self.policy, test_actor_id)
