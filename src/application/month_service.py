from __future__ import annotations

import logging
import os
import time
from datetime import date
from typing import Any, Callable, Mapping, TypeVar

from domain import months
from domain.errors import NotFound, StorageError, ValidationError
from domain.models import MonthlyData, ObligationKind
from domain.schedule import instance_from_definition
from infrastructure.ledger_providers.provider import BalanceProvider
from infrastructure.persistence.entity_store import EntityStore
from infrastructure.persistence.month_store import MonthStore
from application import aggregation, forecast
from application.payoff import reconcile_payoff_bills

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MonthService:
    """Month generation, balance snapshots and the read-only month queries."""

    def __init__(
        self,
        store: MonthStore,
        entities: EntityStore,
        today: Callable[[], date] | None = None,
        retry_backoff_seconds: float | None = None,
    ):
        self._store = store
        self._entities = entities
        self._today = today or date.today
        if retry_backoff_seconds is None:
            retry_backoff_seconds = float(os.getenv("TALLYMIND_READ_RETRY_BACKOFF_SECONDS", "0.2"))
        self._retry_backoff_seconds = retry_backoff_seconds

    # ---- lifecycle ----
    def generate(self, month: str) -> MonthlyData:
        """Create `month` from the active recurring definitions. An existing month is returned untouched."""
        months.parse_month(month)
        existing = self._store.load(month)
        if existing is not None:
            return existing

        def build() -> MonthlyData:
            definitions = self._entities.list_definitions(active_only=True)
            instances = [instance_from_definition(d, month) for d in definitions]
            return MonthlyData(month=month, instances=[i for i in instances if i.occurrences])

        with self._store.transaction(month, create=build) as data:
            pass
        logger.info(
            "Generated month=%s bills=%d incomes=%d",
            month,
            len(data.instances_of(ObligationKind.BILL)),
            len(data.instances_of(ObligationKind.INCOME)),
        )
        return data

    def get(self, month: str) -> MonthlyData:
        months.parse_month(month)
        return self._read(month, lambda: self._load_or_raise(month))

    # ---- balances ----
    def update_bank_balances(self, month: str, balances: Mapping[str, Any], merge: bool = False) -> MonthlyData:
        snapshot: dict[str, int] = {}
        for source_id, amount in balances.items():
            if isinstance(amount, bool) or not isinstance(amount, int):
                raise ValidationError(
                    f"Balance for {source_id} must be an integer amount in cents",
                    code="invalid_amount",
                    field=f"balances.{source_id}",
                )
            snapshot[str(source_id)] = amount

        sources = self._entities.list_payment_sources()
        with self._store.transaction(month) as data:
            if merge:
                data.bank_balances.update(snapshot)
            else:
                data.bank_balances = snapshot
            reconcile_payoff_bills(data, sources)

        logger.info("Updated bank balances month=%s accounts=%d merge=%s", month, len(snapshot), merge)
        return data

    def sync_balances(self, month: str, provider: BalanceProvider) -> MonthlyData:
        """Pull balances from an external feed for the known payment sources and merge them into the snapshot."""
        known = {s.id for s in self._entities.list_payment_sources()}
        t = time.perf_counter()
        fetched = provider.fetch_balances()
        logger.info(
            "Balance provider=%s fetched=%d in %.2fs",
            provider.name, len(fetched), time.perf_counter() - t,
        )
        balances = {b.account_id: b.balance for b in fetched if b.account_id in known}
        skipped = len(fetched) - len(balances)
        if skipped:
            logger.info("Balance sync skipped unknown accounts count=%d", skipped)
        return self.update_bank_balances(month, balances, merge=True)

    # ---- queries ----
    def detailed(self, month: str) -> dict[str, Any]:
        t = time.perf_counter()
        data = self.get(month)
        sources = self._entities.list_payment_sources()
        today = self._today()
        view = {
            "month": data.month,
            "billSections": aggregation.category_sections(data.instances_of(ObligationKind.BILL), today),
            "incomeSections": aggregation.category_sections(data.instances_of(ObligationKind.INCOME), today),
            "tallies": aggregation.month_tallies(data),
            "leftoverBreakdown": aggregation.leftover(data, sources),
            "payoffSummaries": aggregation.payoff_summaries(data, sources),
            "bankBalances": dict(data.bank_balances),
            "lastUpdated": data.updated_at.isoformat(),
        }
        logger.info("Month view month=%s instances=%d in %.3fs", month, len(data.instances), time.perf_counter() - t)
        return view

    def leftover(self, month: str) -> dict[str, Any]:
        data = self.get(month)
        return aggregation.leftover(data, self._entities.list_payment_sources())

    def projection(self, month: str, run_rate: int = 0) -> dict[str, Any]:
        t = time.perf_counter()
        data = self.get(month)
        result = forecast.project(data, self._entities.list_payment_sources(), self._today(), run_rate=run_rate)
        logger.info(
            "Projection month=%s valid=%s run_rate=%d in %.3fs",
            month, result["is_valid"], result["run_rate"], time.perf_counter() - t,
        )
        return result

    # ---- helpers ----
    def _load_or_raise(self, month: str) -> MonthlyData:
        data = self._store.load(month)
        if data is None:
            raise NotFound("Month", month)
        return data

    def _read(self, month: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except StorageError as exc:
            logger.warning(
                "Read failed month=%s error=%s; retrying in %.2fs",
                month, exc.message, self._retry_backoff_seconds,
            )
            time.sleep(self._retry_backoff_seconds)
            return fn()
