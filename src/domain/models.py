from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum


class ObligationKind(str, Enum):
    BILL = "bill"
    INCOME = "income"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    BI_WEEKLY = "bi_weekly"
    WEEKLY = "weekly"
    SEMI_ANNUALLY = "semi_annually"


class PaymentSourceType(str, Enum):
    BANK_ACCOUNT = "bank_account"
    CREDIT_CARD = "credit_card"
    LINE_OF_CREDIT = "line_of_credit"
    CASH = "cash"


DEBT_ACCOUNT_TYPES = {PaymentSourceType.CREDIT_CARD, PaymentSourceType.LINE_OF_CREDIT}

ADHOC_BILL_CATEGORY_ID = "adhoc-bill-category"
ADHOC_INCOME_CATEGORY_ID = "adhoc-income-category"
PAYOFF_CATEGORY_ID = "cc-payoff-category"
PAYOFF_DUE_DAY = 28


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@dataclass
class Payment:
    """One settlement event recorded against an occurrence. History only, never summed."""

    id: str
    amount: int
    date: date
    payment_source_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Occurrence:
    id: str
    sequence: int
    expected_date: date
    expected_amount: int
    is_closed: bool = False
    closed_date: date | None = None
    is_adhoc: bool = False
    notes: str | None = None
    payment_source_id: str | None = None
    payments: list[Payment] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def actual_amount(self) -> int:
        # Closing is the payment event: a closed occurrence realized its expected amount.
        return self.expected_amount if self.is_closed else 0

    @property
    def state(self) -> str:
        return "closed" if self.is_closed else "open"


@dataclass
class ObligationInstance:
    """A bill or income active in one month. Aggregates are derived from occurrences, never stored."""

    id: str
    month: str
    kind: ObligationKind
    name: str
    definition_id: str | None = None
    category_id: str | None = None
    payment_source_id: str | None = None
    billing_period: BillingPeriod = BillingPeriod.MONTHLY
    is_adhoc: bool = False
    is_payoff_bill: bool = False
    payoff_source_id: str | None = None
    occurrences: list[Occurrence] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def expected_amount(self) -> int:
        return sum(occ.expected_amount for occ in self.occurrences)

    @property
    def actual_amount(self) -> int:
        return sum(occ.actual_amount for occ in self.occurrences)

    @property
    def total_paid(self) -> int:
        return self.actual_amount

    @property
    def total_received(self) -> int:
        return self.actual_amount

    @property
    def remaining(self) -> int:
        return max(0, self.expected_amount - self.actual_amount)

    @property
    def is_closed(self) -> bool:
        return bool(self.occurrences) and all(occ.is_closed for occ in self.occurrences)

    @property
    def closed_date(self) -> date | None:
        if not self.is_closed:
            return None
        dates = [occ.closed_date for occ in self.occurrences if occ.closed_date is not None]
        return max(dates) if dates else None

    def find_occurrence(self, occurrence_id: str) -> Occurrence | None:
        for occ in self.occurrences:
            if occ.id == occurrence_id:
                return occ
        return None

    def open_occurrence(self) -> Occurrence | None:
        for occ in self.occurrences:
            if not occ.is_closed:
                return occ
        return None

    def next_sequence(self) -> int:
        return max((occ.sequence for occ in self.occurrences), default=0) + 1

    def resequence(self) -> None:
        """Order by expected date (ties keep sequence order) and renumber 1..n."""
        self.occurrences.sort(key=lambda occ: (occ.expected_date, occ.sequence))
        for index, occ in enumerate(self.occurrences, start=1):
            occ.sequence = index


@dataclass
class PaymentSource:
    id: str
    name: str
    type: PaymentSourceType = PaymentSourceType.BANK_ACCOUNT
    is_active: bool = True
    exclude_from_leftover: bool = False
    pay_off_monthly: bool = False

    @property
    def is_debt(self) -> bool:
        return self.type in DEBT_ACCOUNT_TYPES

    @property
    def counts_toward_leftover(self) -> bool:
        return self.is_active and not self.pay_off_monthly and not self.exclude_from_leftover


@dataclass
class RecurringDefinition:
    id: str
    name: str
    kind: ObligationKind
    amount: int
    billing_period: BillingPeriod = BillingPeriod.MONTHLY
    start_date: date | None = None
    day_of_month: int | None = None
    due_day: int | None = None
    category_id: str | None = None
    payment_source_id: str | None = None
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class MonthlyData:
    month: str
    instances: list[ObligationInstance] = field(default_factory=list)
    bank_balances: dict[str, int] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def instances_of(self, kind: ObligationKind) -> list[ObligationInstance]:
        return [inst for inst in self.instances if inst.kind == kind]

    def find_instance(self, instance_id: str) -> ObligationInstance | None:
        for inst in self.instances:
            if inst.id == instance_id:
                return inst
        return None

    def occurrence_owner(self, occurrence_id: str) -> ObligationInstance | None:
        for inst in self.instances:
            if inst.find_occurrence(occurrence_id) is not None:
                return inst
        return None

    def payoff_instance_for(self, source_id: str) -> ObligationInstance | None:
        for inst in self.instances:
            if inst.is_payoff_bill and inst.payoff_source_id == source_id:
                return inst
        return None

    def touch(self) -> None:
        self.updated_at = utcnow()
