from __future__ import annotations

import uuid
from datetime import date

from domain.models import (
    MonthlyData,
    ObligationInstance,
    ObligationKind,
    Occurrence,
    PaymentSource,
    PaymentSourceType,
)
from infrastructure.persistence.entity_store import EntityStore
from infrastructure.persistence.month_store import MonthStore

TODAY = date(2026, 3, 15)
MONTH = "2026-03"


def fixed_today() -> date:
    return TODAY


def occurrence(day: int, amount: int, sequence: int = 1, is_adhoc: bool = False, occ_id: str | None = None) -> Occurrence:
    return Occurrence(
        id=occ_id or f"occ-{uuid.uuid4().hex[:8]}",
        sequence=sequence,
        expected_date=date(2026, 3, day),
        expected_amount=amount,
        is_adhoc=is_adhoc,
    )


def instance(
    name: str,
    occurrences: list[Occurrence],
    kind: ObligationKind = ObligationKind.BILL,
    instance_id: str | None = None,
    **fields,
) -> ObligationInstance:
    fields.setdefault("definition_id", None if fields.get("is_adhoc") else f"def-{name.lower()}")
    return ObligationInstance(
        id=instance_id or f"inst-{name.lower().replace(' ', '-')}",
        month=MONTH,
        kind=kind,
        name=name,
        occurrences=occurrences,
        **fields,
    )


def seed_month(store: MonthStore, instances: list[ObligationInstance], bank_balances: dict[str, int] | None = None) -> MonthlyData:
    data = MonthlyData(month=MONTH, instances=instances, bank_balances=dict(bank_balances or {}))
    store.save(data)
    return data


def seed_sources(entities: EntityStore) -> None:
    entities.upsert_payment_source(PaymentSource(id="checking", name="Checking"))
    entities.upsert_payment_source(
        PaymentSource(id="visa", name="Visa", type=PaymentSourceType.CREDIT_CARD, pay_off_monthly=True)
    )
    entities.upsert_payment_source(PaymentSource(id="savings", name="Savings", exclude_from_leftover=True))
