#!/usr/bin/env python3
from __future__ import annotations

import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

REPO_ROOT = Path(__file__).resolve().parents[2]


def log(msg: str) -> None:
    print(msg, file=sys.stderr)


@dataclass(frozen=True)
class ActualSettings:
    """Connection settings for one Actual budget file."""

    base_url: str
    password: str
    file: str
    data_dir: Path
    encryption_password: str | None = None

    @classmethod
    def from_env(cls) -> "ActualSettings":
        from dotenv import load_dotenv

        load_dotenv(REPO_ROOT / ".env", override=False)
        missing = [name for name in ("ACTUAL_SERVER_URL", "ACTUAL_PASSWORD", "ACTUAL_DATA_DIR") if not os.getenv(name)]
        file_ref = os.getenv("ACTUAL_FILE") or os.getenv("ACTUAL_SYNC_ID")
        if not file_ref:
            missing.append("ACTUAL_FILE or ACTUAL_SYNC_ID")
        if missing:
            raise RuntimeError(f"Missing Actual settings: {', '.join(missing)}")

        data_dir = Path(os.environ["ACTUAL_DATA_DIR"])
        if not data_dir.is_absolute():
            data_dir = REPO_ROOT / data_dir
        return cls(
            base_url=os.environ["ACTUAL_SERVER_URL"],
            password=os.environ["ACTUAL_PASSWORD"],
            file=file_ref,
            data_dir=data_dir,
            encryption_password=os.getenv("ACTUAL_BUDGET_ENCRYPTION_PASSWORD") or None,
        )


@contextmanager
def open_actual_client(settings: ActualSettings | None = None) -> Iterator[Any]:
    settings = settings or ActualSettings.from_env()
    try:
        from actual import Actual  # type: ignore
    except ImportError as exc:
        raise RuntimeError("actualpy is not installed. Install with: pip install 'tallymind[actual]'") from exc

    settings.data_dir.mkdir(parents=True, exist_ok=True)
    kwargs: dict[str, Any] = {
        "base_url": settings.base_url,
        "password": settings.password,
        "file": settings.file,
        "data_dir": settings.data_dir,
    }
    if settings.encryption_password:
        kwargs["encryption_password"] = settings.encryption_password

    log(f"[actual-py] open server={settings.base_url} file={settings.file}")
    with Actual(**kwargs) as actual:
        yield actual


def normalize_query_result(result: Any) -> list[Any]:
    # Some actualpy queries wrap the result set in a single-element tuple/list.
    if isinstance(result, (tuple, list)):
        if len(result) == 1 and isinstance(result[0], list):
            return list(result[0])
        return list(result)
    return [result] if result is not None else []
