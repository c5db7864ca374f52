from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class AccountBalance:
    account_id: str
    name: str
    balance: int  # minor units; debt accounts are negative
    closed: bool = False


class BalanceProvider(ABC):
    """Base contract for external account-balance feeds."""

    name: str = "provider"

    @abstractmethod
    def fetch_balances(self) -> list[AccountBalance]:
        raise NotImplementedError
