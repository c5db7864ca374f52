from __future__ import annotations

import uuid
from datetime import date, timedelta

from domain import months
from domain.models import BillingPeriod, ObligationInstance, Occurrence, RecurringDefinition, utcnow

_INTERVAL_DAYS = {
    BillingPeriod.WEEKLY: 7,
    BillingPeriod.BI_WEEKLY: 14,
}

_TYPICAL_COUNTS = {
    BillingPeriod.MONTHLY: 1,
    BillingPeriod.BI_WEEKLY: 2,
    BillingPeriod.WEEKLY: 4,
    BillingPeriod.SEMI_ANNUALLY: 0,
}


def occurrence_dates(
    billing_period: BillingPeriod,
    month: str,
    start_date: date | None = None,
    day_of_month: int | None = None,
) -> list[date]:
    """Dates on which a schedule falls inside `month`, ascending."""
    if billing_period in _INTERVAL_DAYS:
        return _interval_dates(_INTERVAL_DAYS[billing_period], month, start_date)
    if billing_period == BillingPeriod.SEMI_ANNUALLY:
        return _semi_annual_dates(month, start_date)
    return [months.clamp_day(month, day_of_month or 1)]


def _interval_dates(interval: int, month: str, anchor: date | None) -> list[date]:
    start = months.first_day(month)
    end = months.last_day(month)
    if anchor is None:
        if interval == 14:
            return [start, months.clamp_day(month, 15)]
        # Every Monday.
        anchor = start + timedelta(days=(7 - start.weekday()) % 7)

    # First step of the series on or after the 1st; works for anchors on either side of the month.
    offset = (start - anchor).days
    steps = -((-offset) // interval)
    current = anchor + timedelta(days=steps * interval)

    dates: list[date] = []
    while current <= end:
        dates.append(current)
        current += timedelta(days=interval)
    return dates


def _semi_annual_dates(month: str, anchor: date | None) -> list[date]:
    year, month_number = months.parse_month(month)
    if anchor is None:
        return [months.first_day(month)] if month_number in (1, 7) else []

    months_diff = (year - anchor.year) * 12 + (month_number - anchor.month)
    if months_diff >= 0 and months_diff % 6 == 0:
        return [months.clamp_day(month, anchor.day)]
    return []


def is_extra_occurrence_month(billing_period: BillingPeriod, occurrence_count: int) -> bool:
    if billing_period in (BillingPeriod.BI_WEEKLY, BillingPeriod.WEEKLY):
        return occurrence_count > _TYPICAL_COUNTS[billing_period]
    return False


def new_occurrence(
    expected_date: date,
    expected_amount: int,
    sequence: int = 0,
    is_adhoc: bool = False,
    occurrence_id: str | None = None,
) -> Occurrence:
    now = utcnow()
    return Occurrence(
        id=occurrence_id or str(uuid.uuid4()),
        sequence=sequence,
        expected_date=expected_date,
        expected_amount=expected_amount,
        is_adhoc=is_adhoc,
        created_at=now,
        updated_at=now,
    )


def generate_occurrences(definition: RecurringDefinition, month: str) -> list[Occurrence]:
    dates = occurrence_dates(
        definition.billing_period,
        month,
        start_date=definition.start_date,
        day_of_month=definition.day_of_month or definition.due_day,
    )
    return [
        new_occurrence(expected_date=day, expected_amount=definition.amount, sequence=index)
        for index, day in enumerate(dates, start=1)
    ]


def instance_from_definition(definition: RecurringDefinition, month: str) -> ObligationInstance:
    now = utcnow()
    return ObligationInstance(
        id=str(uuid.uuid4()),
        month=month,
        kind=definition.kind,
        name=definition.name,
        definition_id=definition.id,
        category_id=definition.category_id,
        payment_source_id=definition.payment_source_id,
        billing_period=definition.billing_period,
        occurrences=generate_occurrences(definition, month),
        created_at=now,
        updated_at=now,
    )
