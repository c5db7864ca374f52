from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from domain.errors import NotFound, StorageError
from domain.models import MonthlyData
from infrastructure.persistence.codec import month_from_dict, month_to_dict

logger = logging.getLogger(__name__)


class MonthStore(ABC):
    """
    Month documents keyed by YYYY-MM.

    Reads hand out independent copies, so callers never observe a half-applied
    mutation. Writes go through `transaction`, which serializes all writers of
    one month and persists only when the block exits without raising.
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ---- backend contract ----
    @abstractmethod
    def _read_raw(self, month: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def _write_raw(self, month: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_months(self) -> list[str]:
        raise NotImplementedError

    # ---- public API ----
    def load(self, month: str) -> MonthlyData | None:
        with self._lock_for(month):
            return self._decode(month, self._read_raw(month))

    def save(self, data: MonthlyData) -> None:
        with self._lock_for(data.month):
            self._write_raw(data.month, month_to_dict(data))

    @contextmanager
    def transaction(
        self,
        month: str,
        create: Callable[[], MonthlyData] | None = None,
    ) -> Iterator[MonthlyData]:
        with self._lock_for(month):
            data = self._decode(month, self._read_raw(month))
            if data is None:
                if create is None:
                    raise NotFound("Month", month)
                data = create()
            yield data
            data.touch()
            self._write_raw(month, month_to_dict(data))

    def _lock_for(self, month: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(month)
            if lock is None:
                lock = self._locks[month] = threading.Lock()
            return lock

    def _decode(self, month: str, payload: dict[str, Any] | None) -> MonthlyData | None:
        if payload is None:
            return None
        try:
            return month_from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"Stored month {month} is malformed: {exc}") from exc


class InMemoryMonthStore(MonthStore):
    def __init__(self) -> None:
        super().__init__()
        self._store: dict[str, str] = {}

    def _read_raw(self, month: str) -> dict[str, Any] | None:
        raw = self._store.get(month)
        return json.loads(raw) if raw is not None else None

    def _write_raw(self, month: str, payload: dict[str, Any]) -> None:
        self._store[month] = json.dumps(payload)

    def list_months(self) -> list[str]:
        return sorted(self._store.keys())


class JsonMonthStore(MonthStore):
    """One JSON file per month under `<base>/months/`."""

    def __init__(self, base_path: str | Path) -> None:
        super().__init__()
        self._months_dir = Path(base_path) / "months"
        self._months_dir.mkdir(parents=True, exist_ok=True)
        logger.info("JsonMonthStore initialized months_dir=%s", self._months_dir)

    def _path(self, month: str) -> Path:
        return self._months_dir / f"{month}.json"

    def _read_raw(self, month: str) -> dict[str, Any] | None:
        path = self._path(month)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Failed to read month {month}: {exc}", path=str(path)) from exc

    def _write_raw(self, month: str, payload: dict[str, Any]) -> None:
        path = self._path(month)
        tmp_name: str | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{month}.", suffix=".tmp", dir=self._months_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Failed to write month {month}: {exc}", path=str(path)) from exc

    def list_months(self) -> list[str]:
        return sorted(p.stem for p in self._months_dir.glob("*.json"))


def build_month_store(base_path: str | None = None) -> MonthStore:
    base_path = base_path or os.getenv("TALLYMIND_DATA_DIR")
    if base_path:
        return JsonMonthStore(base_path)
    logger.info("TALLYMIND_DATA_DIR not set; using in-memory month store")
    return InMemoryMonthStore()
