from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Callable, Iterable

from domain import months
from domain.errors import NotEditable, invalid_amount
from domain.models import (
    PAYOFF_CATEGORY_ID,
    PAYOFF_DUE_DAY,
    BillingPeriod,
    MonthlyData,
    ObligationInstance,
    ObligationKind,
    PaymentSource,
    utcnow,
)
from domain.schedule import new_occurrence
from infrastructure.persistence.month_store import MonthStore
from application.reconciliation import locate_instance, settle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayoffPaymentResult:
    instance: ObligationInstance
    new_balance: int
    paid_so_far: int
    remaining: int


def payoff_instance_name(source: PaymentSource) -> str:
    return f"{source.name} Payoff"


def _open_for_remaining(instance: ObligationInstance, month: str, remaining: int) -> None:
    occ = new_occurrence(
        expected_date=months.clamp_day(month, PAYOFF_DUE_DAY),
        expected_amount=remaining,
        sequence=instance.next_sequence(),
    )
    occ.payment_source_id = instance.payoff_source_id
    instance.occurrences.append(occ)


def create_payoff_instance(month: str, source: PaymentSource, debt: int) -> ObligationInstance:
    now = utcnow()
    instance = ObligationInstance(
        id=str(uuid.uuid4()),
        month=month,
        kind=ObligationKind.BILL,
        name=payoff_instance_name(source),
        category_id=PAYOFF_CATEGORY_ID,
        payment_source_id=source.id,
        billing_period=BillingPeriod.MONTHLY,
        is_payoff_bill=True,
        payoff_source_id=source.id,
        created_at=now,
        updated_at=now,
    )
    _open_for_remaining(instance, month, debt)
    return instance


def reconcile_payoff_bills(data: MonthlyData, sources: Iterable[PaymentSource]) -> None:
    """
    Bring every payoff bill of `data` in line with the month's balance snapshot.

    The snapshot is the debt still owed, so closed occurrences (earlier payments)
    are left alone and only the single open occurrence tracks `abs(balance)`.
    """
    for source in sources:
        if not (source.is_active and source.pay_off_monthly):
            continue
        if source.id not in data.bank_balances:
            continue
        debt = abs(int(data.bank_balances[source.id]))
        instance = data.payoff_instance_for(source.id)

        if instance is None:
            if debt > 0:
                data.instances.append(create_payoff_instance(data.month, source, debt))
                logger.info("Created payoff bill month=%s source=%s amount=%d", data.month, source.id, debt)
            continue

        open_occ = instance.open_occurrence()
        if debt > 0:
            if open_occ is not None:
                open_occ.expected_amount = debt
                open_occ.updated_at = utcnow()
            else:
                _open_for_remaining(instance, data.month, debt)
        elif open_occ is not None:
            # Debt is gone: drop the open occurrence without recording a payment.
            instance.occurrences.remove(open_occ)
            if not instance.occurrences:
                data.instances.remove(instance)
                logger.info("Removed payoff bill month=%s instance=%s", data.month, instance.id)
                continue
        instance.resequence()
        instance.updated_at = utcnow()
        logger.info("Reconciled payoff bill month=%s instance=%s remaining=%d", data.month, instance.id, debt)


class PayoffSynchronizer:
    """Payments against auto-managed credit card payoff bills."""

    def __init__(self, store: MonthStore, today: Callable[[], date] | None = None):
        self._store = store
        self._today = today or date.today

    def pay(
        self,
        month: str,
        instance_id: str,
        amount: int,
        paid_on: date | None = None,
        new_balance_override: int | None = None,
    ) -> PayoffPaymentResult:
        if amount is None or int(amount) <= 0:
            raise invalid_amount()
        amount = int(amount)
        today = self._today()
        with self._store.transaction(month) as data:
            instance = locate_instance(data, instance_id, ObligationKind.BILL)
            if not instance.is_payoff_bill or not instance.payoff_source_id:
                raise NotEditable(f"Instance {instance_id} is not a payoff bill", code="not_payoff_bill")
            source_id = instance.payoff_source_id
            closed_on = (
                months.validate_closing_date(month, paid_on, today, field="date")
                if paid_on is not None
                else months.default_closing_date(month, today)
            )

            current_debt = abs(int(data.bank_balances.get(source_id, 0)))
            if new_balance_override is not None:
                new_debt = abs(int(new_balance_override))
            else:
                new_debt = max(0, current_debt - amount)

            open_occ = instance.open_occurrence()
            if open_occ is not None:
                settle(open_occ, amount, closed_on, source_id)
            else:
                occ = new_occurrence(
                    expected_date=closed_on,
                    expected_amount=amount,
                    sequence=instance.next_sequence(),
                    is_adhoc=True,
                )
                settle(occ, amount, closed_on, source_id)
                instance.occurrences.append(occ)

            if new_debt > 0:
                _open_for_remaining(instance, month, new_debt)
            instance.resequence()
            instance.updated_at = utcnow()
            data.bank_balances[source_id] = -new_debt

        logger.info(
            "Payoff payment month=%s instance=%s amount=%d new_balance=%d override=%s",
            month, instance_id, amount, -new_debt, new_balance_override is not None,
        )
        return PayoffPaymentResult(
            instance=instance,
            new_balance=-new_debt,
            paid_so_far=instance.total_paid,
            remaining=instance.remaining,
        )
