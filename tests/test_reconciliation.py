from __future__ import annotations

import threading
import unittest
from datetime import date

from application.reconciliation import ReconciliationService
from domain.errors import NotDeletable, NotEditable, NotFound, StateConflict, ValidationError
from domain.models import ObligationKind
from infrastructure.persistence.month_store import InMemoryMonthStore
from month_fixtures import MONTH, fixed_today, instance, occurrence, seed_month


class ReconciliationTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryMonthStore()
        self.service = ReconciliationService(self.store, today=fixed_today)
        seed_month(
            self.store,
            [
                instance("Phone", [occurrence(10, 150_00, occ_id="phone-1")]),
                instance("Rent", [occurrence(1, 200_00, sequence=1, occ_id="rent-1"),
                                  occurrence(20, 50_00, sequence=2, occ_id="rent-2")]),
                instance("Lunch", [occurrence(12, 30_00, is_adhoc=True, occ_id="lunch-1")], is_adhoc=True),
                instance("Salary", [occurrence(5, 1_000_00, occ_id="salary-1")], kind=ObligationKind.INCOME),
                instance(
                    "Visa Payoff",
                    [occurrence(28, 500_00, occ_id="visa-1")],
                    is_payoff_bill=True,
                    payoff_source_id="visa",
                    definition_id=None,
                ),
            ],
        )

    def stored(self, instance_id: str):
        return self.store.load(MONTH).find_instance(instance_id)

    def assertSumInvariant(self, inst) -> None:
        self.assertEqual(inst.expected_amount, sum(o.expected_amount for o in inst.occurrences))


class PayFullReopenTests(ReconciliationTestCase):
    def test_pay_full_then_reopen_keeps_history(self) -> None:
        inst = self.service.pay_full(MONTH, "inst-phone", "phone-1")
        occ = inst.find_occurrence("phone-1")
        self.assertTrue(occ.is_closed)
        self.assertEqual(occ.closed_date, date(2026, 3, 15))
        self.assertEqual(inst.total_paid, 150_00)
        self.assertEqual(inst.remaining, 0)
        self.assertTrue(inst.is_closed)

        inst = self.service.reopen(MONTH, "inst-phone", "phone-1")
        occ = inst.find_occurrence("phone-1")
        self.assertFalse(occ.is_closed)
        self.assertIsNone(occ.closed_date)
        self.assertEqual(len(occ.payments), 1)
        self.assertEqual(inst.remaining, 150_00)
        self.assertEqual(self.stored("inst-phone").remaining, 150_00)

    def test_pay_full_twice_conflicts(self) -> None:
        self.service.pay_full(MONTH, "inst-phone", "phone-1")
        with self.assertRaises(StateConflict) as ctx:
            self.service.pay_full(MONTH, "inst-phone", "phone-1")
        self.assertEqual(ctx.exception.code, "already_closed")

    def test_concurrent_pay_full_only_one_succeeds(self) -> None:
        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        lock = threading.Lock()

        def worker() -> None:
            barrier.wait()
            try:
                self.service.pay_full(MONTH, "inst-phone", "phone-1")
                result = "ok"
            except StateConflict:
                result = "conflict"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(sorted(outcomes), ["conflict", "ok"])
        self.assertEqual(len(self.stored("inst-phone").find_occurrence("phone-1").payments), 1)

    def test_reopen_open_occurrence_fails(self) -> None:
        with self.assertRaises(StateConflict) as ctx:
            self.service.reopen(MONTH, "inst-phone", "phone-1")
        self.assertEqual(ctx.exception.code, "not_closed")


class CloseTests(ReconciliationTestCase):
    def test_close_rejects_future_date(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.service.close(MONTH, "inst-phone", "phone-1", closed_date=date(2026, 3, 20))
        self.assertEqual(ctx.exception.code, "invalid_date")
        self.assertFalse(self.stored("inst-phone").find_occurrence("phone-1").is_closed)

    def test_close_rejects_date_outside_month(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.close(MONTH, "inst-phone", "phone-1", closed_date=date(2026, 2, 27))

    def test_close_with_notes(self) -> None:
        inst = self.service.close(MONTH, "inst-phone", "phone-1", closed_date=date(2026, 3, 9), notes=" autopay ")
        occ = inst.find_occurrence("phone-1")
        self.assertEqual(occ.closed_date, date(2026, 3, 9))
        self.assertEqual(occ.notes, "autopay")

    def test_past_month_defaults_to_last_day(self) -> None:
        service = ReconciliationService(self.store, today=lambda: date(2026, 4, 2))
        inst = service.close(MONTH, "inst-phone", "phone-1")
        self.assertEqual(inst.find_occurrence("phone-1").closed_date, date(2026, 3, 31))

    def test_unknown_month_and_ids(self) -> None:
        with self.assertRaises(NotFound):
            self.service.close("2026-05", "inst-phone", "phone-1")
        with self.assertRaises(NotFound):
            self.service.close(MONTH, "missing", "phone-1")
        with self.assertRaises(NotFound):
            self.service.close(MONTH, "inst-phone", "missing")

    def test_kind_mismatch_is_not_found(self) -> None:
        with self.assertRaises(NotFound):
            self.service.close(MONTH, "inst-phone", "phone-1", kind=ObligationKind.INCOME)
        inst = self.service.close(MONTH, "inst-salary", "salary-1", kind=ObligationKind.INCOME)
        self.assertEqual(inst.total_received, 1_000_00)


class SplitTests(ReconciliationTestCase):
    def test_split_scenario(self) -> None:
        result = self.service.split(MONTH, "inst-rent", "rent-1", 120_00)

        closed, remainder = result.closed_occurrence, result.remainder_occurrence
        self.assertTrue(closed.is_closed)
        self.assertEqual(closed.expected_amount, 120_00)
        self.assertFalse(remainder.is_closed)
        self.assertEqual(remainder.expected_amount, 80_00)
        self.assertTrue(remainder.is_adhoc)
        self.assertEqual(closed.expected_amount + remainder.expected_amount, 200_00)

        stored = self.stored("inst-rent")
        self.assertSumInvariant(stored)
        self.assertEqual(stored.expected_amount, 250_00)
        sequences = {o.id: o.sequence for o in stored.occurrences}
        self.assertEqual(sequences["rent-1"], 1)
        self.assertEqual(sequences[remainder.id], 2)
        self.assertEqual(sequences["rent-2"], 3)
        self.assertEqual(len(set(sequences.values())), 3)

    def test_split_rejects_out_of_range_amounts(self) -> None:
        for paid in (0, -5, 200_00, 250_00):
            with self.subTest(paid=paid):
                with self.assertRaises(ValidationError):
                    self.service.split(MONTH, "inst-rent", "rent-1", paid)
        self.assertEqual(len(self.stored("inst-rent").occurrences), 2)

    def test_split_closed_occurrence_conflicts(self) -> None:
        self.service.close(MONTH, "inst-rent", "rent-1")
        with self.assertRaises(StateConflict):
            self.service.split(MONTH, "inst-rent", "rent-1", 10_00)


class RecordPaymentTests(ReconciliationTestCase):
    def test_non_positive_amount_rejected(self) -> None:
        for amount in (0, -100):
            with self.subTest(amount=amount):
                with self.assertRaises(ValidationError) as ctx:
                    self.service.record_payment(MONTH, "inst-phone", "phone-1", amount)
                self.assertEqual(ctx.exception.code, "invalid_amount")

    def test_partial_payment_splits_remainder(self) -> None:
        inst = self.service.record_payment(MONTH, "inst-phone", "phone-1", 100_00, paid_on=date(2026, 3, 14))
        self.assertEqual(len(inst.occurrences), 2)
        self.assertEqual(inst.total_paid, 100_00)
        self.assertEqual(inst.remaining, 50_00)
        self.assertSumInvariant(inst)
        self.assertEqual(inst.find_occurrence("phone-1").closed_date, date(2026, 3, 14))

    def test_overpayment_records_realized_amount(self) -> None:
        inst = self.service.record_payment(MONTH, "inst-phone", "phone-1", 175_00)
        self.assertEqual(inst.expected_amount, 175_00)
        self.assertEqual(inst.total_paid, 175_00)
        self.assertEqual(inst.remaining, 0)

    def test_closed_immutability_until_reopen(self) -> None:
        self.service.pay_full(MONTH, "inst-phone", "phone-1")
        with self.assertRaises(StateConflict):
            self.service.record_payment(MONTH, "inst-phone", "phone-1", 10_00)
        with self.assertRaises(StateConflict):
            self.service.update_occurrence(MONTH, "inst-phone", "phone-1", expected_amount=99_00)
        with self.assertRaises(StateConflict):
            self.service.update_occurrence(MONTH, "inst-phone", "phone-1", expected_date=date(2026, 3, 11))

        self.service.reopen(MONTH, "inst-phone", "phone-1")
        inst = self.service.update_occurrence(MONTH, "inst-phone", "phone-1", expected_amount=99_00)
        self.assertEqual(inst.expected_amount, 99_00)
        inst = self.service.record_payment(MONTH, "inst-phone", "phone-1", 99_00)
        self.assertTrue(inst.is_closed)


class EditTests(ReconciliationTestCase):
    def test_notes_editable_when_closed_and_clearable(self) -> None:
        self.service.pay_full(MONTH, "inst-phone", "phone-1")
        inst = self.service.update_occurrence(MONTH, "inst-phone", "phone-1", notes="paid by card")
        self.assertEqual(inst.find_occurrence("phone-1").notes, "paid by card")
        inst = self.service.update_occurrence(MONTH, "inst-phone", "phone-1", notes=None)
        self.assertIsNone(inst.find_occurrence("phone-1").notes)

    def test_date_edit_resequences(self) -> None:
        inst = self.service.update_occurrence(MONTH, "inst-rent", "rent-1", expected_date=date(2026, 3, 25))
        self.assertEqual([o.id for o in inst.occurrences], ["rent-2", "rent-1"])
        self.assertEqual([o.sequence for o in inst.occurrences], [1, 2])

    def test_edit_validation(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.update_occurrence(MONTH, "inst-phone", "phone-1", expected_amount=-1)
        with self.assertRaises(ValidationError) as ctx:
            self.service.update_occurrence(MONTH, "inst-phone", "phone-1", expected_date=date(2026, 4, 1))
        self.assertEqual(ctx.exception.code, "out_of_month")


class StructureTests(ReconciliationTestCase):
    def test_add_occurrence_and_replay(self) -> None:
        inst = self.service.add_occurrence(MONTH, "inst-phone", date(2026, 3, 3), 20_00, occurrence_id="extra-1")
        self.assertEqual([o.id for o in inst.occurrences], ["extra-1", "phone-1"])
        self.assertTrue(inst.find_occurrence("extra-1").is_adhoc)
        self.assertEqual(inst.expected_amount, 170_00)

        replay = self.service.add_occurrence(MONTH, "inst-phone", date(2026, 3, 3), 20_00, occurrence_id="extra-1")
        self.assertEqual(len(replay.occurrences), 2)
        self.assertEqual(len(self.stored("inst-phone").occurrences), 2)

    def test_add_occurrence_id_taken_by_other_instance(self) -> None:
        self.service.add_occurrence(MONTH, "inst-phone", date(2026, 3, 3), 20_00, occurrence_id="dup")

        with self.assertRaises(StateConflict) as ctx:
            self.service.add_occurrence(MONTH, "inst-rent", date(2026, 3, 3), 20_00, occurrence_id="dup")
        self.assertEqual(ctx.exception.code, "duplicate_id")
        with self.assertRaises(StateConflict):
            self.service.add_occurrence(MONTH, "inst-rent", date(2026, 3, 3), 20_00, occurrence_id="phone-1")

        ids = [o.id for inst in self.store.load(MONTH).instances for o in inst.occurrences]
        self.assertEqual(ids.count("dup"), 1)
        self.assertEqual([o.id for o in self.stored("inst-rent").occurrences], ["rent-1", "rent-2"])

    def test_add_occurrence_outside_month(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.service.add_occurrence(MONTH, "inst-phone", date(2026, 4, 3), 20_00)
        self.assertEqual(ctx.exception.code, "out_of_month")
        with self.assertRaises(ValidationError):
            self.service.add_occurrence(MONTH, "inst-phone", date(2026, 3, 3), 0)

    def test_delete_scheduled_occurrence_is_refused(self) -> None:
        with self.assertRaises(NotDeletable):
            self.service.delete_occurrence(MONTH, "inst-phone", "phone-1")

    def test_delete_closed_adhoc_occurrence_is_refused(self) -> None:
        self.service.close(MONTH, "inst-lunch", "lunch-1")
        with self.assertRaises(NotDeletable):
            self.service.delete_occurrence(MONTH, "inst-lunch", "lunch-1")

    def test_delete_added_occurrence_keeps_regular_instance(self) -> None:
        self.service.add_occurrence(MONTH, "inst-phone", date(2026, 3, 3), 20_00, occurrence_id="extra-1")
        inst = self.service.delete_occurrence(MONTH, "inst-phone", "extra-1")
        self.assertIsNotNone(inst)
        self.assertEqual([o.id for o in inst.occurrences], ["phone-1"])

    def test_delete_last_adhoc_occurrence_removes_instance(self) -> None:
        result = self.service.delete_occurrence(MONTH, "inst-lunch", "lunch-1")
        self.assertIsNone(result)
        self.assertIsNone(self.stored("inst-lunch"))


class PayoffGuardTests(ReconciliationTestCase):
    def test_payoff_occurrences_are_machine_managed(self) -> None:
        with self.assertRaises(NotEditable):
            self.service.close(MONTH, "inst-visa-payoff", "visa-1")
        with self.assertRaises(NotEditable):
            self.service.pay_full(MONTH, "inst-visa-payoff", "visa-1")
        with self.assertRaises(NotEditable):
            self.service.split(MONTH, "inst-visa-payoff", "visa-1", 10_00)
        with self.assertRaises(NotEditable):
            self.service.update_occurrence(MONTH, "inst-visa-payoff", "visa-1", expected_amount=1)
        with self.assertRaises(NotEditable):
            self.service.add_occurrence(MONTH, "inst-visa-payoff", date(2026, 3, 3), 10_00)
        with self.assertRaises(NotDeletable):
            self.service.delete_occurrence(MONTH, "inst-visa-payoff", "visa-1")
        self.assertEqual(self.stored("inst-visa-payoff").expected_amount, 500_00)


if __name__ == "__main__":
    unittest.main()
