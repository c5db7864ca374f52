from __future__ import annotations

from datetime import date, datetime
from typing import Any

from domain.models import (
    BillingPeriod,
    MonthlyData,
    ObligationInstance,
    ObligationKind,
    Occurrence,
    Payment,
    PaymentSource,
    PaymentSourceType,
    RecurringDefinition,
    utcnow,
)


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_date(value: Any) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return utcnow()
    return datetime.fromisoformat(str(value))


def payment_to_dict(payment: Payment) -> dict[str, Any]:
    return {
        "id": payment.id,
        "amount": payment.amount,
        "date": _iso(payment.date),
        "payment_source_id": payment.payment_source_id,
        "created_at": _iso(payment.created_at),
    }


def payment_from_dict(row: dict[str, Any]) -> Payment:
    return Payment(
        id=str(row["id"]),
        amount=int(row["amount"]),
        date=_parse_date(row["date"]),
        payment_source_id=row.get("payment_source_id"),
        created_at=_parse_datetime(row.get("created_at")),
    )


def occurrence_to_dict(occ: Occurrence) -> dict[str, Any]:
    return {
        "id": occ.id,
        "sequence": occ.sequence,
        "expected_date": _iso(occ.expected_date),
        "expected_amount": occ.expected_amount,
        "is_closed": occ.is_closed,
        "closed_date": _iso(occ.closed_date),
        "is_adhoc": occ.is_adhoc,
        "notes": occ.notes,
        "payment_source_id": occ.payment_source_id,
        "payments": [payment_to_dict(p) for p in occ.payments],
        "created_at": _iso(occ.created_at),
        "updated_at": _iso(occ.updated_at),
    }


def occurrence_from_dict(row: dict[str, Any]) -> Occurrence:
    return Occurrence(
        id=str(row["id"]),
        sequence=int(row.get("sequence") or 0),
        expected_date=_parse_date(row["expected_date"]),
        expected_amount=int(row.get("expected_amount") or 0),
        is_closed=bool(row.get("is_closed")),
        closed_date=_parse_date(row.get("closed_date")),
        is_adhoc=bool(row.get("is_adhoc")),
        notes=row.get("notes"),
        payment_source_id=row.get("payment_source_id"),
        payments=[payment_from_dict(p) for p in row.get("payments") or []],
        created_at=_parse_datetime(row.get("created_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
    )


def instance_to_dict(inst: ObligationInstance) -> dict[str, Any]:
    return {
        "id": inst.id,
        "month": inst.month,
        "kind": inst.kind.value,
        "name": inst.name,
        "definition_id": inst.definition_id,
        "category_id": inst.category_id,
        "payment_source_id": inst.payment_source_id,
        "billing_period": inst.billing_period.value,
        "is_adhoc": inst.is_adhoc,
        "is_payoff_bill": inst.is_payoff_bill,
        "payoff_source_id": inst.payoff_source_id,
        "occurrences": [occurrence_to_dict(o) for o in inst.occurrences],
        "created_at": _iso(inst.created_at),
        "updated_at": _iso(inst.updated_at),
    }


def instance_from_dict(row: dict[str, Any]) -> ObligationInstance:
    return ObligationInstance(
        id=str(row["id"]),
        month=str(row["month"]),
        kind=ObligationKind(row["kind"]),
        name=str(row.get("name") or ""),
        definition_id=row.get("definition_id"),
        category_id=row.get("category_id"),
        payment_source_id=row.get("payment_source_id"),
        billing_period=BillingPeriod(row.get("billing_period") or BillingPeriod.MONTHLY.value),
        is_adhoc=bool(row.get("is_adhoc")),
        is_payoff_bill=bool(row.get("is_payoff_bill")),
        payoff_source_id=row.get("payoff_source_id"),
        occurrences=[occurrence_from_dict(o) for o in row.get("occurrences") or []],
        created_at=_parse_datetime(row.get("created_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
    )


def month_to_dict(data: MonthlyData) -> dict[str, Any]:
    return {
        "month": data.month,
        "instances": [instance_to_dict(i) for i in data.instances],
        "bank_balances": dict(data.bank_balances),
        "created_at": _iso(data.created_at),
        "updated_at": _iso(data.updated_at),
    }


def month_from_dict(row: dict[str, Any]) -> MonthlyData:
    return MonthlyData(
        month=str(row["month"]),
        instances=[instance_from_dict(i) for i in row.get("instances") or []],
        bank_balances={str(k): int(v) for k, v in (row.get("bank_balances") or {}).items()},
        created_at=_parse_datetime(row.get("created_at")),
        updated_at=_parse_datetime(row.get("updated_at")),
    )


def payment_source_to_dict(source: PaymentSource) -> dict[str, Any]:
    return {
        "id": source.id,
        "name": source.name,
        "type": source.type.value,
        "is_active": source.is_active,
        "exclude_from_leftover": source.exclude_from_leftover,
        "pay_off_monthly": source.pay_off_monthly,
    }


def payment_source_from_dict(row: dict[str, Any]) -> PaymentSource:
    return PaymentSource(
        id=str(row["id"]),
        name=str(row.get("name") or row["id"]),
        type=PaymentSourceType(row.get("type") or PaymentSourceType.BANK_ACCOUNT.value),
        is_active=bool(row.get("is_active", True)),
        exclude_from_leftover=bool(row.get("exclude_from_leftover")),
        pay_off_monthly=bool(row.get("pay_off_monthly")),
    )


def definition_to_dict(definition: RecurringDefinition) -> dict[str, Any]:
    return {
        "id": definition.id,
        "name": definition.name,
        "kind": definition.kind.value,
        "amount": definition.amount,
        "billing_period": definition.billing_period.value,
        "start_date": _iso(definition.start_date),
        "day_of_month": definition.day_of_month,
        "due_day": definition.due_day,
        "category_id": definition.category_id,
        "payment_source_id": definition.payment_source_id,
        "is_active": definition.is_active,
        "created_at": _iso(definition.created_at),
    }


def definition_from_dict(row: dict[str, Any]) -> RecurringDefinition:
    return RecurringDefinition(
        id=str(row["id"]),
        name=str(row["name"]),
        kind=ObligationKind(row["kind"]),
        amount=int(row["amount"]),
        billing_period=BillingPeriod(row.get("billing_period") or BillingPeriod.MONTHLY.value),
        start_date=_parse_date(row.get("start_date")),
        day_of_month=row.get("day_of_month"),
        due_day=row.get("due_day"),
        category_id=row.get("category_id"),
        payment_source_id=row.get("payment_source_id"),
        is_active=bool(row.get("is_active", True)),
        created_at=_parse_datetime(row.get("created_at")),
    )
