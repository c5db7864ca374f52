from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Any, Iterable

from domain.models import MonthlyData, ObligationInstance, ObligationKind, Occurrence, PaymentSource
from domain.schedule import is_extra_occurrence_month

UNCATEGORIZED = "uncategorized"


def tally(instances: Iterable[ObligationInstance]) -> dict[str, int]:
    expected = actual = remaining = 0
    for inst in instances:
        expected += inst.expected_amount
        actual += inst.actual_amount
        remaining += inst.remaining
    return {"expected": expected, "actual": actual, "remaining": remaining}


def combine_tallies(*tallies: dict[str, int]) -> dict[str, int]:
    return {
        key: sum(t[key] for t in tallies)
        for key in ("expected", "actual", "remaining")
    }


def month_tallies(data: MonthlyData) -> dict[str, dict[str, int]]:
    """The seven month buckets. Regular, ad-hoc and payoff bills never overlap."""
    bills = data.instances_of(ObligationKind.BILL)
    incomes = data.instances_of(ObligationKind.INCOME)

    regular_bills = tally(b for b in bills if not b.is_adhoc and not b.is_payoff_bill)
    adhoc_bills = tally(b for b in bills if b.is_adhoc and not b.is_payoff_bill)
    cc_payoffs = tally(b for b in bills if b.is_payoff_bill)
    regular_income = tally(i for i in incomes if not i.is_adhoc)
    adhoc_income = tally(i for i in incomes if i.is_adhoc)

    return {
        "bills": regular_bills,
        "adhocBills": adhoc_bills,
        "ccPayoffs": cc_payoffs,
        "totalExpenses": combine_tallies(regular_bills, adhoc_bills, cc_payoffs),
        "income": regular_income,
        "adhocIncome": adhoc_income,
        "totalIncome": combine_tallies(regular_income, adhoc_income),
    }


# ---- overdue ----
def overdue_since(instance: ObligationInstance, today: date) -> date | None:
    dates = [occ.expected_date for occ in instance.occurrences if not occ.is_closed and occ.expected_date < today]
    return min(dates) if dates else None


def days_overdue(instance: ObligationInstance, today: date) -> int:
    since = overdue_since(instance, today)
    return (today - since).days if since else 0


# ---- views ----
def occurrence_view(occ: Occurrence, today: date) -> dict[str, Any]:
    return {
        "id": occ.id,
        "sequence": occ.sequence,
        "expected_date": occ.expected_date.isoformat(),
        "expected_amount": occ.expected_amount,
        "actual_amount": occ.actual_amount,
        "state": occ.state,
        "is_closed": occ.is_closed,
        "closed_date": occ.closed_date.isoformat() if occ.closed_date else None,
        "is_adhoc": occ.is_adhoc,
        "is_overdue": not occ.is_closed and occ.expected_date < today,
        "notes": occ.notes,
        "payment_source_id": occ.payment_source_id,
        "payments": [
            {
                "id": p.id,
                "amount": p.amount,
                "date": p.date.isoformat(),
                "payment_source_id": p.payment_source_id,
            }
            for p in occ.payments
        ],
    }


def instance_view(instance: ObligationInstance, today: date) -> dict[str, Any]:
    settled_key = "total_paid" if instance.kind == ObligationKind.BILL else "total_received"
    since = overdue_since(instance, today)
    closed_date = instance.closed_date
    return {
        "id": instance.id,
        "month": instance.month,
        "kind": instance.kind.value,
        "name": instance.name,
        "definition_id": instance.definition_id,
        "category_id": instance.category_id,
        "payment_source_id": instance.payment_source_id,
        "billing_period": instance.billing_period.value,
        "is_adhoc": instance.is_adhoc,
        "is_payoff_bill": instance.is_payoff_bill,
        "payoff_source_id": instance.payoff_source_id,
        "expected_amount": instance.expected_amount,
        "actual_amount": instance.actual_amount,
        settled_key: instance.actual_amount,
        "remaining": instance.remaining,
        "is_closed": instance.is_closed,
        "closed_date": closed_date.isoformat() if closed_date else None,
        "occurrence_count": len(instance.occurrences),
        "is_extra_occurrence_month": is_extra_occurrence_month(instance.billing_period, len(instance.occurrences)),
        "is_overdue": since is not None,
        "days_overdue": (today - since).days if since else 0,
        "occurrences": [occurrence_view(occ, today) for occ in sorted(instance.occurrences, key=lambda o: o.sequence)],
    }


def category_sections(instances: Iterable[ObligationInstance], today: date) -> list[dict[str, Any]]:
    groups: dict[str, list[ObligationInstance]] = defaultdict(list)
    for inst in instances:
        groups[inst.category_id or UNCATEGORIZED].append(inst)

    sections = []
    for category_id in sorted(groups):
        items = sorted(groups[category_id], key=lambda i: (i.name.lower(), i.id))
        subtotal = tally(items)
        sections.append(
            {
                "category_id": category_id,
                "items": [instance_view(inst, today) for inst in items],
                "subtotal": {"expected": subtotal["expected"], "actual": subtotal["actual"]},
            }
        )
    return sections


# ---- leftover ----
def missing_balances(data: MonthlyData, sources: Iterable[PaymentSource]) -> list[str]:
    return [s.id for s in sources if s.counts_toward_leftover and s.id not in data.bank_balances]


def has_actuals(data: MonthlyData) -> bool:
    return any(occ.is_closed or occ.payments for inst in data.instances for occ in inst.occurrences)


def leftover(data: MonthlyData, sources: Iterable[PaymentSource]) -> dict[str, Any]:
    """
    Projected month-end cash position:
        leftover = bank balances + remaining income - remaining expenses

    Bank balances skip pay-off-monthly and excluded accounts. When any counted
    account lacks a snapshot the numbers are zeroed and `isValid` is false.
    """
    sources = list(sources)
    missing = missing_balances(data, sources)
    if missing:
        names = {s.id: s.name for s in sources}
        return {
            "bankBalances": 0,
            "remainingIncome": 0,
            "remainingExpenses": 0,
            "leftover": 0,
            "isValid": False,
            "missingBalances": missing,
            "errorMessage": "Enter bank balances to calculate leftover. Missing: "
            + ", ".join(names.get(source_id, source_id) for source_id in missing),
            "hasActuals": has_actuals(data),
        }

    excluded = {s.id for s in sources if s.pay_off_monthly or s.exclude_from_leftover}
    bank_balances = sum(amount for source_id, amount in data.bank_balances.items() if source_id not in excluded)
    remaining_income = sum(i.remaining for i in data.instances_of(ObligationKind.INCOME) if not i.is_closed)
    remaining_expenses = sum(b.remaining for b in data.instances_of(ObligationKind.BILL) if not b.is_closed)

    return {
        "bankBalances": bank_balances,
        "remainingIncome": remaining_income,
        "remainingExpenses": remaining_expenses,
        "leftover": bank_balances + remaining_income - remaining_expenses,
        "isValid": True,
        "missingBalances": [],
        "errorMessage": None,
        "hasActuals": has_actuals(data),
    }


# ---- payoff ----
def payoff_summaries(data: MonthlyData, sources: Iterable[PaymentSource]) -> list[dict[str, Any]]:
    names = {s.id: s.name for s in sources}
    summaries = []
    for inst in data.instances:
        if not inst.is_payoff_bill or not inst.payoff_source_id:
            continue
        summaries.append(
            {
                "paymentSourceId": inst.payoff_source_id,
                "paymentSourceName": names.get(inst.payoff_source_id, "Unknown"),
                "balance": inst.expected_amount,
                "paid": inst.total_paid,
                "remaining": inst.remaining,
            }
        )
    return summaries
