from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable

from domain import months
from domain.errors import (
    NotDeletable,
    NotEditable,
    NotFound,
    StateConflict,
    ValidationError,
    already_closed,
    invalid_amount,
    not_closed,
)
from domain.models import MonthlyData, ObligationInstance, ObligationKind, Occurrence, Payment, utcnow
from domain.schedule import new_occurrence
from infrastructure.persistence.month_store import MonthStore

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass(frozen=True)
class SplitResult:
    instance: ObligationInstance
    closed_occurrence: Occurrence
    remainder_occurrence: Occurrence


def locate_instance(data: MonthlyData, instance_id: str, kind: ObligationKind | None = None) -> ObligationInstance:
    instance = data.find_instance(instance_id)
    if instance is None or (kind is not None and instance.kind != kind):
        raise NotFound("Instance", instance_id)
    return instance


def locate_occurrence(instance: ObligationInstance, occurrence_id: str) -> Occurrence:
    occ = instance.find_occurrence(occurrence_id)
    if occ is None:
        raise NotFound("Occurrence", occurrence_id)
    return occ


def settle(occ: Occurrence, amount: int, closed_on: date, payment_source_id: str | None = None) -> Payment:
    """Close `occ` at `amount`. The appended payment is history; totals come from the closed flag."""
    now = utcnow()
    occ.expected_amount = amount
    occ.is_closed = True
    occ.closed_date = closed_on
    if payment_source_id:
        occ.payment_source_id = payment_source_id
    payment = Payment(
        id=str(uuid.uuid4()),
        amount=amount,
        date=closed_on,
        payment_source_id=payment_source_id or occ.payment_source_id,
        created_at=now,
    )
    occ.payments.append(payment)
    occ.updated_at = now
    return payment


class ReconciliationService:
    """
    Occurrence state machine: Open <-> Closed.

    Every operation runs in one month-store transaction, touches one occurrence
    (two for split) and leaves the instance's derived totals consistent because
    they are computed from the occurrences themselves.
    """

    def __init__(self, store: MonthStore, today: Callable[[], date] | None = None):
        self._store = store
        self._today = today or date.today

    # ---- settle ----
    def record_payment(
        self,
        month: str,
        instance_id: str,
        occurrence_id: str,
        amount: int,
        paid_on: date | None = None,
        payment_source_id: str | None = None,
        notes: str | None = None,
        kind: ObligationKind | None = None,
    ) -> ObligationInstance:
        if amount is None or int(amount) <= 0:
            raise invalid_amount()
        amount = int(amount)
        today = self._today()
        with self._store.transaction(month) as data:
            instance = locate_instance(data, instance_id, kind)
            self._ensure_user_managed(instance)
            occ = locate_occurrence(instance, occurrence_id)
            if occ.is_closed:
                raise already_closed(occ.id)
            closed_on = self._closing_date(month, paid_on, today)

            if amount < occ.expected_amount:
                self._split_in_place(month, instance, occ, amount, closed_on, payment_source_id, notes)
            else:
                settle(occ, amount, closed_on, payment_source_id)
                self._apply_notes(occ, notes)
            instance.updated_at = utcnow()

        logger.info(
            "Recorded payment month=%s instance=%s occurrence=%s amount=%d date=%s",
            month, instance_id, occurrence_id, amount, closed_on.isoformat(),
        )
        return instance

    def pay_full(
        self,
        month: str,
        instance_id: str,
        occurrence_id: str,
        closed_date: date | None = None,
        notes: str | None = None,
        payment_source_id: str | None = None,
        kind: ObligationKind | None = None,
    ) -> ObligationInstance:
        """Settle the whole expected amount. Payment and close are one transaction, so neither half can be left behind."""
        today = self._today()
        with self._store.transaction(month) as data:
            instance = locate_instance(data, instance_id, kind)
            self._ensure_user_managed(instance)
            occ = locate_occurrence(instance, occurrence_id)
            if occ.is_closed:
                raise already_closed(occ.id)
            closed_on = self._closing_date(month, closed_date, today)
            settle(occ, occ.expected_amount, closed_on, payment_source_id)
            self._apply_notes(occ, notes)
            instance.updated_at = utcnow()
            amount = occ.expected_amount

        logger.info(
            "Paid in full month=%s instance=%s occurrence=%s amount=%d date=%s",
            month, instance_id, occurrence_id, amount, closed_on.isoformat(),
        )
        return instance

    def close(
        self,
        month: str,
        instance_id: str,
        occurrence_id: str,
        closed_date: date | None = None,
        notes: str | None = None,
        payment_source_id: str | None = None,
        kind: ObligationKind | None = None,
    ) -> ObligationInstance:
        today = self._today()
        with self._store.transaction(month) as data:
            instance = locate_instance(data, instance_id, kind)
            self._ensure_user_managed(instance)
            occ = locate_occurrence(instance, occurrence_id)
            if occ.is_closed:
                raise already_closed(occ.id)
            closed_on = self._closing_date(month, closed_date, today)
            settle(occ, occ.expected_amount, closed_on, payment_source_id)
            self._apply_notes(occ, notes)
            instance.updated_at = utcnow()

        logger.info("Closed occurrence month=%s instance=%s occurrence=%s date=%s", month, instance_id, occurrence_id, closed_on)
        return instance

    def reopen(
        self,
        month: str,
        instance_id: str,
        occurrence_id: str,
        kind: ObligationKind | None = None,
    ) -> ObligationInstance:
        with self._store.transaction(month) as data:
            instance = locate_instance(data, instance_id, kind)
            self._ensure_user_managed(instance)
            occ = locate_occurrence(instance, occurrence_id)
            if not occ.is_closed:
                raise not_closed(occ.id)
            occ.is_closed = False
            occ.closed_date = None
            occ.updated_at = utcnow()
            instance.updated_at = occ.updated_at

        logger.info("Reopened occurrence month=%s instance=%s occurrence=%s", month, instance_id, occurrence_id)
        return instance

    def split(
        self,
        month: str,
        instance_id: str,
        occurrence_id: str,
        paid_amount: int,
        closed_date: date | None = None,
        notes: str | None = None,
        payment_source_id: str | None = None,
        kind: ObligationKind | None = None,
    ) -> SplitResult:
        today = self._today()
        with self._store.transaction(month) as data:
            instance = locate_instance(data, instance_id, kind)
            self._ensure_user_managed(instance)
            occ = locate_occurrence(instance, occurrence_id)
            if occ.is_closed:
                raise already_closed(occ.id)
            if paid_amount is None or int(paid_amount) <= 0:
                raise invalid_amount("Paid amount must be greater than 0", field="paid_amount")
            if int(paid_amount) >= occ.expected_amount:
                raise invalid_amount("Paid amount must be less than expected amount", field="paid_amount")
            closed_on = self._closing_date(month, closed_date, today)
            remainder = self._split_in_place(
                month, instance, occ, int(paid_amount), closed_on, payment_source_id, notes
            )
            instance.updated_at = utcnow()

        logger.info(
            "Split occurrence month=%s instance=%s occurrence=%s paid=%d remainder=%d",
            month, instance_id, occurrence_id, occ.expected_amount, remainder.expected_amount,
        )
        return SplitResult(instance=instance, closed_occurrence=occ, remainder_occurrence=remainder)

    def _split_in_place(
        self,
        month: str,
        instance: ObligationInstance,
        occ: Occurrence,
        paid_amount: int,
        closed_on: date,
        payment_source_id: str | None,
        notes: str | None,
    ) -> Occurrence:
        original = occ.expected_amount
        remainder_sequence = occ.sequence + 1
        for other in instance.occurrences:
            if other is not occ and other.sequence >= remainder_sequence:
                other.sequence += 1

        remainder = new_occurrence(
            expected_date=occ.expected_date,
            expected_amount=original - paid_amount,
            sequence=remainder_sequence,
            is_adhoc=True,
        )
        remainder.payment_source_id = occ.payment_source_id
        settle(occ, paid_amount, closed_on, payment_source_id)
        self._apply_notes(occ, notes)

        instance.occurrences.insert(instance.occurrences.index(occ) + 1, remainder)
        instance.occurrences.sort(key=lambda o: o.sequence)
        return remainder

    # ---- structure ----
    def add_occurrence(
        self,
        month: str,
        instance_id: str,
        expected_date: date,
        expected_amount: int,
        occurrence_id: str | None = None,
        kind: ObligationKind | None = None,
    ) -> ObligationInstance:
        if expected_amount is None or int(expected_amount) <= 0:
            raise invalid_amount(field="expected_amount")
        if not months.contains(month, expected_date):
            raise ValidationError(
                f"expected_date {expected_date.isoformat()} is outside month {month}",
                code="out_of_month",
                field="expected_date",
            )
        with self._store.transaction(month) as data:
            instance = locate_instance(data, instance_id, kind)
            if instance.is_payoff_bill:
                raise NotEditable("Payoff bill occurrences are generated from the account balance", code="payoff_managed")
            owner = data.occurrence_owner(occurrence_id) if occurrence_id else None
            if owner is instance:
                logger.info("AddOccurrence replay month=%s instance=%s occurrence=%s", month, instance_id, occurrence_id)
                return instance
            if owner is not None:
                raise StateConflict(
                    f"Occurrence id {occurrence_id} already belongs to instance {owner.id}",
                    code="duplicate_id",
                )
            occ = new_occurrence(
                expected_date=expected_date,
                expected_amount=int(expected_amount),
                sequence=instance.next_sequence(),
                is_adhoc=True,
                occurrence_id=occurrence_id,
            )
            instance.occurrences.append(occ)
            instance.resequence()
            instance.updated_at = utcnow()

        logger.info(
            "Added occurrence month=%s instance=%s occurrence=%s date=%s amount=%d",
            month, instance_id, occ.id, expected_date.isoformat(), occ.expected_amount,
        )
        return instance

    def delete_occurrence(
        self,
        month: str,
        instance_id: str,
        occurrence_id: str,
        kind: ObligationKind | None = None,
    ) -> ObligationInstance | None:
        """Remove an open ad-hoc occurrence. Returns None when that emptied, and removed, an ad-hoc instance."""
        with self._store.transaction(month) as data:
            instance = locate_instance(data, instance_id, kind)
            occ = locate_occurrence(instance, occurrence_id)
            if instance.is_payoff_bill:
                raise NotDeletable("Payoff bill occurrences cannot be deleted", code="payoff_managed")
            if not occ.is_adhoc:
                raise NotDeletable("Only ad-hoc occurrences can be deleted", code="not_adhoc")
            if occ.is_closed:
                raise NotDeletable("Closed occurrences cannot be deleted; reopen first", code="closed")

            instance.occurrences.remove(occ)
            removed_instance = instance.is_adhoc and not instance.occurrences
            if removed_instance:
                data.instances.remove(instance)
            else:
                instance.resequence()
                instance.updated_at = utcnow()

        logger.info(
            "Deleted occurrence month=%s instance=%s occurrence=%s instance_removed=%s",
            month, instance_id, occurrence_id, removed_instance,
        )
        return None if removed_instance else instance

    def update_occurrence(
        self,
        month: str,
        instance_id: str,
        occurrence_id: str,
        expected_amount: int | None = None,
        expected_date: date | None = None,
        notes: Any = _UNSET,
        kind: ObligationKind | None = None,
    ) -> ObligationInstance:
        """EditExpected / EditExpectedDate / notes. `notes=None` clears the note; omit it to leave it alone."""
        if expected_amount is not None and int(expected_amount) < 0:
            raise invalid_amount("Expected amount cannot be negative", field="expected_amount")
        if expected_date is not None and not months.contains(month, expected_date):
            raise ValidationError(
                f"expected_date {expected_date.isoformat()} is outside month {month}",
                code="out_of_month",
                field="expected_date",
            )
        with self._store.transaction(month) as data:
            instance = locate_instance(data, instance_id, kind)
            occ = locate_occurrence(instance, occurrence_id)
            if instance.is_payoff_bill:
                raise NotEditable("Payoff bill occurrences are synced from the account balance", code="payoff_managed")
            edits_expectation = expected_amount is not None or expected_date is not None
            if edits_expectation and occ.is_closed:
                raise StateConflict(
                    f"Occurrence {occ.id} is closed; reopen it before editing", code="already_closed"
                )

            if expected_amount is not None:
                occ.expected_amount = int(expected_amount)
            if expected_date is not None:
                occ.expected_date = expected_date
            if notes is not _UNSET:
                occ.notes = notes.strip() if isinstance(notes, str) and notes.strip() else None
            occ.updated_at = utcnow()
            if expected_date is not None:
                instance.resequence()
            instance.updated_at = occ.updated_at

        logger.info(
            "Updated occurrence month=%s instance=%s occurrence=%s amount=%s date=%s",
            month, instance_id, occurrence_id, expected_amount, expected_date,
        )
        return instance

    # ---- helpers ----
    def _closing_date(self, month: str, requested: date | None, today: date) -> date:
        if requested is None:
            return months.default_closing_date(month, today)
        return months.validate_closing_date(month, requested, today)

    def _ensure_user_managed(self, instance: ObligationInstance) -> None:
        if instance.is_payoff_bill:
            raise NotEditable(
                "Payoff bills are settled through the payoff payment flow", code="payoff_managed"
            )

    def _apply_notes(self, occ: Occurrence, notes: str | None) -> None:
        if notes is not None and notes.strip():
            occ.notes = notes.strip()
