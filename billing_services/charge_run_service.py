"""
billing_services.charge_run_service -- charge distribution runs and late fees.

Responsibility:
    Loads units from the database, runs the pure distribution engine to
    produce editable previews, and commits the chosen previews through
    the kernel's ChargeService.  Assesses late fees on overdue charges
    with the billing rule engine and posts them as interest charges.

Architecture position:
    Services -- orchestration over engines + kernel.  The kernel never
    imports engines; this module is where the two meet.

Invariants enforced:
    - Committed charges come only from included previews with a positive
      final amount, all under one batch id.
    - Late fees are posted incrementally: the new interest charge is the
      cumulative fee minus non-cancelled interest already charged on the
      same parent, so assessing twice for the same date posts nothing.
    - No late fee is assessed on an interest charge.

Failure modes:
    - ValidationError: unknown units, missing consumption readings, an
      interest charge passed to assess_late_fee.
    - ChargeNotFoundError: unknown or foreign charge.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from billing_engines.billing_rules import LateFeePolicy, compute_late_fee
from billing_engines.distribution import ChargePreview, DistributionMethod, UnitShare, distribute
from billing_kernel.db.types import MONEY_EPSILON, round_money
from billing_kernel.exceptions import ChargeNotFoundError, UnitNotFoundError, ValidationError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.charge import Charge, ChargeType
from billing_kernel.models.unit import Unit
from billing_kernel.selectors.charge_selector import ChargeSelector
from billing_kernel.services.base import BaseService
from billing_kernel.services.charge_service import ChargeService

logger = get_logger("services.charge_run")


class ChargeRunService(BaseService):
    """
    Distribution runs and late-fee assessment.

    Contract:
        preview_distribution() has no side effects.  distribute_and_commit()
        and assess_late_fee() flush in the caller's transaction.
    """

    def _load_units(self, tenant_id: UUID, unit_ids: Sequence[UUID] | None) -> list[Unit]:
        stmt = select(Unit).where(Unit.tenant_id == tenant_id)
        if unit_ids is None:
            stmt = stmt.where(Unit.is_active.is_(True))
        else:
            stmt = stmt.where(Unit.id.in_(list(unit_ids)))
        units = list(self.session.execute(stmt.order_by(Unit.identifier)).scalars())
        if unit_ids is not None:
            missing = sorted(set(unit_ids) - {u.id for u in units}, key=str)
            if missing:
                raise UnitNotFoundError(missing[0])
        return units

    def preview_distribution(
        self,
        tenant_id: UUID,
        total: Decimal | None,
        method: DistributionMethod | str,
        unit_ids: Sequence[UUID] | None = None,
        consumption: Mapping[UUID, Decimal] | None = None,
        unit_rate: Decimal | None = None,
    ) -> list[ChargePreview]:
        """
        Compute previews for the tenant's units (active units by default).

        ``consumption`` maps unit id to its meter reading and is required
        for by_consumption runs.
        """
        units = self._load_units(tenant_id, unit_ids)
        consumption = consumption or {}
        shares = [
            UnitShare(
                unit_id=unit.id,
                label=unit.identifier,
                aliquot=unit.aliquot,
                consumption=consumption.get(unit.id),
            )
            for unit in units
        ]
        try:
            return distribute(shares, total, method, unit_rate=unit_rate)
        except ValueError as exc:
            raise ValidationError(str(exc), field="distribution") from exc

    def commit_previews(
        self,
        tenant_id: UUID,
        previews: Iterable[ChargePreview],
        due_date: date,
        description: str,
        actor_id: UUID,
        charge_type: ChargeType | str = ChargeType.MONTHLY_FEE,
        period: str | None = None,
        posted_date: date | None = None,
    ) -> tuple[UUID, list[Charge]]:
        return ChargeService(self.session, self.clock).commit_previews(
            tenant_id,
            previews,
            due_date,
            description,
            actor_id,
            charge_type=charge_type,
            period=period,
            posted_date=posted_date,
        )

    def distribute_and_commit(
        self,
        tenant_id: UUID,
        total: Decimal | None,
        method: DistributionMethod | str,
        due_date: date,
        description: str,
        actor_id: UUID,
        charge_type: ChargeType | str = ChargeType.MONTHLY_FEE,
        period: str | None = None,
        posted_date: date | None = None,
        unit_ids: Sequence[UUID] | None = None,
        consumption: Mapping[UUID, Decimal] | None = None,
        unit_rate: Decimal | None = None,
    ) -> tuple[UUID, list[Charge]]:
        """Distribute ``total`` and commit every preview unchanged."""
        previews = self.preview_distribution(
            tenant_id, total, method, unit_ids, consumption, unit_rate
        )
        batch_id, charges = self.commit_previews(
            tenant_id,
            previews,
            due_date,
            description,
            actor_id,
            charge_type=charge_type,
            period=period,
            posted_date=posted_date,
        )
        logger.info(
            "distribution_committed",
            extra={
                "batch_id": str(batch_id),
                "method": DistributionMethod(method).value,
                "charge_count": len(charges),
            },
        )
        return batch_id, charges

    def assess_late_fee(
        self,
        tenant_id: UUID,
        charge_id: UUID,
        as_of: date,
        policy: LateFeePolicy,
        actor_id: UUID,
    ) -> Charge | None:
        """
        Post the not-yet-charged part of the late fee due on ``as_of``.

        Returns:
            The new interest charge, or None when nothing is owed.
        """
        charge = self._lock_row(Charge, charge_id, tenant_id, ChargeNotFoundError)
        if charge.charge_type == ChargeType.INTEREST:
            raise ValidationError(
                "Late fees are not assessed on interest charges", field="charge_id"
            )

        cumulative = compute_late_fee(charge, as_of, policy)
        already_charged = ChargeSelector(self.session).child_charge_total(charge.id)
        due = round_money(cumulative - already_charged)
        if due < MONEY_EPSILON:
            logger.info(
                "late_fee_nothing_due",
                extra={
                    "charge_id": str(charge.id),
                    "cumulative_fee": str(cumulative),
                    "already_charged": str(already_charged),
                },
            )
            return None

        fee_charge = ChargeService(self.session, self.clock).create_charge(
            tenant_id,
            charge.unit_id,
            due,
            as_of,
            f"Late fee: {charge.description}",
            actor_id,
            charge_type=ChargeType.INTEREST,
            period=charge.period,
            posted_date=as_of,
            parent_charge_id=charge.id,
        )
        logger.info(
            "late_fee_assessed",
            extra={
                "charge_id": str(charge.id),
                "fee_charge_id": str(fee_charge.id),
                "amount": str(due),
                "cumulative_fee": str(cumulative),
            },
        )
        return fee_charge
