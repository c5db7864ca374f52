from __future__ import annotations

import unittest
from datetime import date

from domain.models import BillingPeriod, ObligationKind, RecurringDefinition
from domain.schedule import (
    instance_from_definition,
    is_extra_occurrence_month,
    occurrence_dates,
)


class OccurrenceDatesTests(unittest.TestCase):
    def test_monthly_day_is_clamped_to_short_month(self) -> None:
        self.assertEqual(occurrence_dates(BillingPeriod.MONTHLY, "2026-02", day_of_month=31), [date(2026, 2, 28)])
        self.assertEqual(occurrence_dates(BillingPeriod.MONTHLY, "2026-03", day_of_month=31), [date(2026, 3, 31)])

    def test_monthly_defaults_to_first(self) -> None:
        self.assertEqual(occurrence_dates(BillingPeriod.MONTHLY, "2026-03"), [date(2026, 3, 1)])

    def test_bi_weekly_steps_forward_from_earlier_anchor(self) -> None:
        dates = occurrence_dates(BillingPeriod.BI_WEEKLY, "2026-03", start_date=date(2026, 1, 2))
        self.assertEqual(dates, [date(2026, 3, 13), date(2026, 3, 27)])

    def test_bi_weekly_steps_backward_from_later_anchor(self) -> None:
        dates = occurrence_dates(BillingPeriod.BI_WEEKLY, "2026-03", start_date=date(2026, 4, 10))
        self.assertEqual(dates, [date(2026, 3, 13), date(2026, 3, 27)])

    def test_bi_weekly_without_anchor_uses_first_and_fifteenth(self) -> None:
        self.assertEqual(
            occurrence_dates(BillingPeriod.BI_WEEKLY, "2026-03"),
            [date(2026, 3, 1), date(2026, 3, 15)],
        )

    def test_weekly_without_anchor_is_every_monday(self) -> None:
        dates = occurrence_dates(BillingPeriod.WEEKLY, "2026-03")
        self.assertEqual([d.day for d in dates], [2, 9, 16, 23, 30])
        self.assertTrue(all(d.weekday() == 0 for d in dates))
        self.assertTrue(is_extra_occurrence_month(BillingPeriod.WEEKLY, len(dates)))

    def test_semi_annual_follows_anchor_month(self) -> None:
        anchor = date(2025, 9, 10)
        self.assertEqual(occurrence_dates(BillingPeriod.SEMI_ANNUALLY, "2026-03", start_date=anchor), [date(2026, 3, 10)])
        self.assertEqual(occurrence_dates(BillingPeriod.SEMI_ANNUALLY, "2026-04", start_date=anchor), [])
        self.assertEqual(occurrence_dates(BillingPeriod.SEMI_ANNUALLY, "2025-03", start_date=anchor), [])

    def test_semi_annual_without_anchor_is_january_and_july(self) -> None:
        self.assertEqual(occurrence_dates(BillingPeriod.SEMI_ANNUALLY, "2026-07"), [date(2026, 7, 1)])
        self.assertEqual(occurrence_dates(BillingPeriod.SEMI_ANNUALLY, "2026-03"), [])


class InstanceFromDefinitionTests(unittest.TestCase):
    def test_occurrences_are_numbered_and_carry_definition_amount(self) -> None:
        definition = RecurringDefinition(
            id="def-pay",
            name="Paycheck",
            kind=ObligationKind.INCOME,
            amount=2_000_00,
            billing_period=BillingPeriod.BI_WEEKLY,
            start_date=date(2026, 1, 2),
            category_id="salary",
        )
        inst = instance_from_definition(definition, "2026-03")

        self.assertEqual(inst.definition_id, "def-pay")
        self.assertEqual(inst.kind, ObligationKind.INCOME)
        self.assertEqual([o.sequence for o in inst.occurrences], [1, 2])
        self.assertEqual(inst.expected_amount, 4_000_00)
        self.assertFalse(any(o.is_adhoc for o in inst.occurrences))
        self.assertFalse(inst.is_closed)


if __name__ == "__main__":
    unittest.main()
