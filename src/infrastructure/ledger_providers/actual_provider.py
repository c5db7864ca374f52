from __future__ import annotations

import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from infrastructure.ledger_providers.provider import AccountBalance, BalanceProvider

logger = logging.getLogger(__name__)


class ActualProviderError(RuntimeError):
    pass


class ActualBalanceProvider(BalanceProvider):
    """Adapter for pulling account balances from Actual via the Python bridge helpers."""

    name = "actual"

    def __init__(
        self,
        timeout_seconds: float | None = None,
    ) -> None:
        repo_root = Path(__file__).resolve().parents[3]
        self._repo_root = repo_root
        self._timeout_seconds = timeout_seconds or float(os.getenv("ACTUAL_SCRIPT_TIMEOUT_SECONDS", "120"))

    def fetch_balances(self) -> list[AccountBalance]:
        logger.info("Actual provider calling accounts bridge (python)")
        try:
            rows = self._fetch_accounts_via_python()
        except ActualProviderError:
            raise
        except Exception as exc:
            raise ActualProviderError(f"Actual python bridge failed for accounts: {exc}") from exc

        balances = [self._normalize_account_row(row) for row in rows if isinstance(row, dict)]
        balances = [b for b in balances if not b.closed]
        logger.info("Actual provider normalized balances count=%d", len(balances))
        return balances

    def _import_actualpy_bridge(self) -> Any:
        if str(self._repo_root) not in sys.path:
            sys.path.insert(0, str(self._repo_root))
        try:
            from scripts.actual.get_accounts import fetch_account_balances
        except Exception as exc:
            raise ActualProviderError(f"Unable to import Python Actual bridge modules: {exc}") from exc
        return fetch_account_balances

    def _fetch_accounts_via_python(self) -> list[dict[str, Any]]:
        fetch_account_balances = self._import_actualpy_bridge()
        # A timed-out worker cannot be cancelled; it is left to finish on its own.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="actual-bridge")
        try:
            rows = executor.submit(fetch_account_balances).result(timeout=self._timeout_seconds)
        except FutureTimeout as exc:
            raise ActualProviderError(
                f"Actual accounts bridge timed out after {self._timeout_seconds:g}s"
            ) from exc
        finally:
            executor.shutdown(wait=False)
        if not isinstance(rows, list):
            raise ActualProviderError(f"Expected list account payload from python bridge, got {type(rows).__name__}")
        return rows

    def _normalize_account_row(self, row: dict[str, Any]) -> AccountBalance:
        account_id = str(row.get("id") or "").strip()
        if not account_id:
            raise ActualProviderError("Account row missing id")
        return AccountBalance(
            account_id=account_id,
            name=str(row.get("name") or account_id),
            balance=self._to_minor_units(row.get("balance")),
            closed=bool(row.get("closed")),
        )

    def _to_minor_units(self, raw: Any) -> int:
        # actualpy reports balances as Decimal major units; the bridge serializes them as floats.
        if raw is None or raw == "":
            return 0
        try:
            amount = Decimal(str(raw))
        except InvalidOperation as exc:
            raise ActualProviderError(f"Unsupported Actual balance value: {raw!r}") from exc
        return int((amount * 100).quantize(Decimal("1")))
