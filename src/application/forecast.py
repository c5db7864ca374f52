from __future__ import annotations

from collections import defaultdict
from datetime import date, timedelta
from typing import Any, Iterable

from domain import months
from domain.errors import invalid_amount
from domain.models import MonthlyData, ObligationKind, PaymentSource
from application.aggregation import leftover

RUN_RATE_EVENT_NAME = "Daily Run Rate"


def _event(name: str, amount: int, event_type: str, kind: str, moves_balance: bool = True) -> dict[str, Any]:
    return {
        "name": name,
        "amount": amount,
        "type": event_type,
        "kind": kind,
        "_moves_balance": moves_balance,
    }


def project(
    data: MonthlyData,
    sources: Iterable[PaymentSource],
    today: date,
    run_rate: int = 0,
) -> dict[str, Any]:
    """
    Walk every day of `data.month` and project the running balance.

    Starts from the month's counted bank balances. Closed occurrences land on
    their closed date and open ones on their expected date; open items already
    past due when the balance series starts are folded into its first day.
    The result depends only on the arguments.
    """
    if run_rate is None:
        run_rate = 0
    if int(run_rate) < 0:
        raise invalid_amount("Run rate cannot be negative", field="run_rate")
    run_rate = int(run_rate)

    month = data.month
    first = months.first_day(month)
    last = months.last_day(month)
    is_current_month = months.contains(month, today)
    balance_start = today if is_current_month else first
    # Activity on or before this day is already in the bank snapshot.
    snapshot_date = today if is_current_month else first - timedelta(days=1)

    breakdown = leftover(data, sources)
    is_valid = bool(breakdown["isValid"])
    starting_balance = breakdown["bankBalances"] if is_valid else None

    events_by_date: dict[date, list[dict[str, Any]]] = defaultdict(list)
    overdue_bills: list[dict[str, Any]] = []

    for inst in data.instances:
        is_income = inst.kind == ObligationKind.INCOME
        event_type = "income" if is_income else "expense"
        for occ in sorted(inst.occurrences, key=lambda o: o.sequence):
            if occ.is_closed:
                closed_on = occ.closed_date or occ.expected_date
                if occ.expected_amount <= 0:
                    continue
                events_by_date[closed_on].append(
                    _event(inst.name, occ.expected_amount, event_type, "actual", moves_balance=closed_on > snapshot_date)
                )
                continue

            if occ.expected_amount <= 0:
                continue
            if occ.expected_date < balance_start:
                if is_income:
                    events_by_date[balance_start].append(_event(inst.name, occ.expected_amount, event_type, "scheduled"))
                else:
                    overdue_bills.append(
                        {
                            "name": inst.name,
                            "amount": occ.expected_amount,
                            "due_date": occ.expected_date.isoformat(),
                            "instance_id": inst.id,
                            "occurrence_id": occ.id,
                        }
                    )
                    events_by_date[balance_start].append(_event(inst.name, occ.expected_amount, event_type, "overdue"))
            else:
                events_by_date[occ.expected_date].append(_event(inst.name, occ.expected_amount, event_type, "scheduled"))

    days: list[dict[str, Any]] = []
    balance = starting_balance
    for current in months.iter_days(month):
        events = list(events_by_date.get(current, []))
        has_balance = is_valid and current >= balance_start
        income = sum(e["amount"] for e in events if e["type"] == "income")
        expense = sum(e["amount"] for e in events if e["type"] == "expense")

        if has_balance:
            for e in events:
                if e["_moves_balance"]:
                    balance += e["amount"] if e["type"] == "income" else -e["amount"]
            if run_rate:
                events.append(_event(RUN_RATE_EVENT_NAME, run_rate, "expense", "simulated"))
                expense += run_rate
                # Cumulative: balance day n sits n * rate below the series without it.
                balance -= run_rate

        days.append(
            {
                "date": current.isoformat(),
                "income": income,
                "expense": expense,
                "balance": balance if has_balance else None,
                "has_balance": has_balance,
                "is_deficit": bool(has_balance and balance < 0),
                "events": [{k: v for k, v in e.items() if not k.startswith("_")} for e in events],
            }
        )

    return {
        "month": month,
        "start_date": first.isoformat(),
        "end_date": last.isoformat(),
        "balance_start_date": balance_start.isoformat(),
        "starting_balance": starting_balance,
        "run_rate": run_rate,
        "is_valid": is_valid,
        "missing_balances": breakdown["missingBalances"],
        "error_message": breakdown["errorMessage"],
        "overdue_bills": overdue_bills,
        "days": days,
    }
