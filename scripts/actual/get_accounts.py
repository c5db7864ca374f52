#!/usr/bin/env python3
from __future__ import annotations

import json
import sys
from decimal import Decimal
from typing import Any

try:
    from ._actualpy_common import log, normalize_query_result, open_actual_client
except ImportError:
    from _actualpy_common import log, normalize_query_result, open_actual_client


def _account_balance(account: Any) -> str:
    # Newer actualpy exposes `balance` in major units; bank-synced accounts also carry
    # `balance_current` in minor units.
    balance = getattr(account, "balance", None)
    if balance is not None:
        return str(balance)
    current = getattr(account, "balance_current", None)
    if current is not None:
        return str(Decimal(int(current)) / Decimal("100"))
    return "0"


def _account_row(account: Any) -> dict[str, Any]:
    return {
        "id": str(getattr(account, "id", "") or ""),
        "name": getattr(account, "name", None),
        "balance": _account_balance(account),
        "closed": bool(getattr(account, "closed", False)),
        "offbudget": bool(getattr(account, "offbudget", False)),
    }


def fetch_account_balances() -> list[dict[str, Any]]:
    from actual.queries import get_accounts  # type: ignore

    with open_actual_client() as actual:
        log("[actual-py] get_accounts")
        accounts = normalize_query_result(get_accounts(actual.session))
        return [_account_row(account) for account in accounts]


def main() -> int:
    try:
        rows = fetch_account_balances()
    except Exception as exc:
        log(f"[actual-py] error: {exc}")
        return 1
    json.dump(rows, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
