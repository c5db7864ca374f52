from __future__ import annotations

import json
import os
from datetime import date

from application.engine import TallyMindEngine
from domain import months
from infrastructure.ledger_providers.provider import BalanceProvider
from infrastructure.persistence.entity_store import build_entity_store
from infrastructure.persistence.month_store import build_month_store


def build_balance_provider() -> BalanceProvider | None:
    if not os.getenv("ACTUAL_SERVER_URL"):
        return None
    from infrastructure.ledger_providers.actual_provider import ActualBalanceProvider

    return ActualBalanceProvider()


def build_engine() -> TallyMindEngine:
    return TallyMindEngine(
        store=build_month_store(),
        entities=build_entity_store(),
        balance_provider=build_balance_provider(),
    )


def main() -> None:
    month = input("TallyMind month (YYYY-MM) > ").strip()
    if not month:
        month = months.month_of(date.today())

    engine = build_engine()
    engine.months.generate(month)
    view = engine.months.detailed(month)
    print(json.dumps({"tallies": view["tallies"], "leftover": view["leftoverBreakdown"]}, indent=2))


if __name__ == "__main__":
    main()
