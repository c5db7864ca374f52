from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Callable

from domain import months
from domain.errors import NotEditable, StateConflict, ValidationError, invalid_amount
from domain.models import (
    ADHOC_BILL_CATEGORY_ID,
    ADHOC_INCOME_CATEGORY_ID,
    BillingPeriod,
    ObligationInstance,
    ObligationKind,
    RecurringDefinition,
    utcnow,
)
from domain.schedule import new_occurrence
from infrastructure.persistence.entity_store import EntityStore
from infrastructure.persistence.month_store import MonthStore
from application.reconciliation import locate_instance, settle

logger = logging.getLogger(__name__)


class AdHocService:
    """One-off bills and incomes, and promoting them to recurring definitions."""

    def __init__(self, store: MonthStore, entities: EntityStore, today: Callable[[], date] | None = None):
        self._store = store
        self._entities = entities
        self._today = today or date.today

    def create(
        self,
        month: str,
        kind: ObligationKind,
        name: str,
        amount: int,
        category_id: str | None = None,
        payment_source_id: str | None = None,
        settled_on: date | None = None,
        instance_id: str | None = None,
    ) -> ObligationInstance:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Name is required", code="invalid_name", field="name")
        if amount is None or int(amount) <= 0:
            raise invalid_amount()
        amount = int(amount)
        if payment_source_id:
            self._entities.get_payment_source(payment_source_id)
        today = self._today()
        if settled_on is not None:
            settled_on = months.validate_closing_date(month, settled_on, today, field="date")

        with self._store.transaction(month) as data:
            if instance_id:
                existing = data.find_instance(instance_id)
                if existing is not None:
                    if existing.kind != kind or not existing.is_adhoc:
                        raise StateConflict(
                            f"Instance id {instance_id} is already used by {existing.kind.value} {existing.name!r}",
                            code="duplicate_id",
                        )
                    logger.info("CreateAdHoc replay month=%s instance=%s", month, instance_id)
                    return existing

            occ = new_occurrence(
                expected_date=settled_on or months.default_expected_date(month, today),
                expected_amount=amount,
                sequence=1,
                is_adhoc=True,
            )
            occ.payment_source_id = payment_source_id
            if settled_on is not None:
                settle(occ, amount, settled_on, payment_source_id)

            now = utcnow()
            instance = ObligationInstance(
                id=instance_id or str(uuid.uuid4()),
                month=month,
                kind=kind,
                name=name,
                category_id=category_id
                or (ADHOC_BILL_CATEGORY_ID if kind == ObligationKind.BILL else ADHOC_INCOME_CATEGORY_ID),
                payment_source_id=payment_source_id,
                is_adhoc=True,
                occurrences=[occ],
                created_at=now,
                updated_at=now,
            )
            data.instances.append(instance)

        logger.info(
            "Created ad-hoc month=%s kind=%s instance=%s amount=%d settled=%s",
            month, kind.value, instance.id, amount, settled_on is not None,
        )
        return instance

    def promote(
        self,
        month: str,
        instance_id: str,
        kind: ObligationKind,
        billing_period: BillingPeriod = BillingPeriod.MONTHLY,
        due_day: int | None = None,
        start_date: date | None = None,
        category_id: str | None = None,
        payment_source_id: str | None = None,
        amount: int | None = None,
    ) -> tuple[ObligationInstance, RecurringDefinition]:
        """Create a recurring definition from an ad-hoc item. The current month's occurrences stay as they are."""
        if due_day is not None and not 1 <= int(due_day) <= 31:
            raise ValidationError("due_day must be between 1 and 31", code="invalid_day_of_month", field="due_day")
        if amount is not None and int(amount) <= 0:
            raise invalid_amount()
        if payment_source_id:
            self._entities.get_payment_source(payment_source_id)

        added: RecurringDefinition | None = None
        try:
            with self._store.transaction(month) as data:
                instance = locate_instance(data, instance_id, kind)
                if instance.is_payoff_bill:
                    raise NotEditable("Payoff bills cannot be made recurring", code="payoff_managed")
                if instance.definition_id is not None:
                    raise StateConflict(
                        f"Instance {instance_id} is already linked to a recurring definition",
                        code="already_recurring",
                    )

                first_occ = min(instance.occurrences, key=lambda o: o.expected_date, default=None)
                anchor = start_date or (first_occ.expected_date if first_occ else months.first_day(month))
                monthly = billing_period == BillingPeriod.MONTHLY
                definition = RecurringDefinition(
                    id=str(uuid.uuid4()),
                    name=instance.name,
                    kind=instance.kind,
                    amount=int(amount) if amount is not None else (first_occ.expected_amount if first_occ else 0),
                    billing_period=billing_period,
                    start_date=None if monthly else anchor,
                    day_of_month=int(due_day or 1) if monthly else None,
                    due_day=int(due_day) if due_day is not None else None,
                    category_id=category_id or instance.category_id,
                    payment_source_id=payment_source_id or instance.payment_source_id,
                )
                if definition.amount <= 0:
                    raise invalid_amount()
                added = self._entities.add_definition(definition)

                instance.definition_id = definition.id
                instance.updated_at = utcnow()
        except Exception:
            # The month was not written, so the definition would be orphaned.
            if added is not None:
                self._entities.remove_definition(added.id)
                logger.warning("Promote rolled back month=%s instance=%s definition=%s", month, instance_id, added.id)
            raise

        logger.info(
            "Promoted ad-hoc month=%s instance=%s definition=%s period=%s",
            month, instance_id, definition.id, billing_period.value,
        )
        return instance, definition
