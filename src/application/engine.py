from __future__ import annotations

import logging
from datetime import date
from typing import Callable

from domain.errors import MissingDependency
from domain.models import MonthlyData
from application.adhoc import AdHocService
from application.month_service import MonthService
from application.payoff import PayoffSynchronizer
from application.reconciliation import ReconciliationService
from infrastructure.ledger_providers.provider import BalanceProvider
from infrastructure.persistence.entity_store import EntityStore
from infrastructure.persistence.month_store import MonthStore

logger = logging.getLogger(__name__)


class TallyMindEngine:
    """Wires the month services over one month store, entity store and clock."""

    def __init__(
        self,
        store: MonthStore,
        entities: EntityStore,
        balance_provider: BalanceProvider | None = None,
        today: Callable[[], date] | None = None,
        retry_backoff_seconds: float | None = None,
    ):
        today = today or date.today
        self.today = today
        self.store = store
        self.entities = entities
        self.balance_provider = balance_provider
        self.months = MonthService(store, entities, today=today, retry_backoff_seconds=retry_backoff_seconds)
        self.reconciliation = ReconciliationService(store, today=today)
        self.payoff = PayoffSynchronizer(store, today=today)
        self.adhoc = AdHocService(store, entities, today=today)
        logger.info(
            "Engine ready store=%s balance_provider=%s",
            type(store).__name__,
            balance_provider.name if balance_provider else None,
        )

    def sync_balances(self, month: str) -> MonthlyData:
        if self.balance_provider is None:
            raise MissingDependency("No balance provider is configured", code="no_balance_provider")
        return self.months.sync_balances(month, self.balance_provider)
