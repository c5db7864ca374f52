from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from domain.errors import NotFound, StorageError
from domain.models import ObligationKind, PaymentSource, RecurringDefinition
from infrastructure.persistence.codec import (
    definition_from_dict,
    definition_to_dict,
    payment_source_from_dict,
    payment_source_to_dict,
)

logger = logging.getLogger(__name__)


class EntityStore:
    """Payment sources and recurring definitions. Backed by `<base>/entities.json` when a path is given."""

    def __init__(self, base_path: str | Path | None = None) -> None:
        self._path = Path(base_path) / "entities.json" if base_path else None
        self._lock = threading.Lock()
        self._payment_sources: dict[str, PaymentSource] = {}
        self._definitions: dict[str, RecurringDefinition] = {}
        if self._path is not None and self._path.exists():
            self._load()

    # ---- payment sources ----
    def list_payment_sources(self) -> list[PaymentSource]:
        with self._lock:
            return list(self._payment_sources.values())

    def get_payment_source(self, source_id: str) -> PaymentSource:
        with self._lock:
            source = self._payment_sources.get(source_id)
        if source is None:
            raise NotFound("PaymentSource", source_id)
        return source

    def upsert_payment_source(self, source: PaymentSource) -> PaymentSource:
        with self._lock:
            self._payment_sources[source.id] = source
            self._flush()
        return source

    # ---- recurring definitions ----
    def list_definitions(self, kind: ObligationKind | None = None, active_only: bool = True) -> list[RecurringDefinition]:
        with self._lock:
            definitions = list(self._definitions.values())
        return [
            d for d in definitions
            if (kind is None or d.kind == kind) and (d.is_active or not active_only)
        ]

    def add_definition(self, definition: RecurringDefinition) -> RecurringDefinition:
        with self._lock:
            self._definitions[definition.id] = definition
            try:
                self._flush()
            except StorageError:
                del self._definitions[definition.id]
                raise
        logger.info("EntityStore added definition id=%s kind=%s name=%s", definition.id, definition.kind.value, definition.name)
        return definition

    def remove_definition(self, definition_id: str) -> None:
        with self._lock:
            if self._definitions.pop(definition_id, None) is None:
                return
            self._flush()
        logger.info("EntityStore removed definition id=%s", definition_id)

    # ---- persistence ----
    def _load(self) -> None:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Failed to read entities: {exc}", path=str(self._path)) from exc
        for row in payload.get("payment_sources") or []:
            source = payment_source_from_dict(row)
            self._payment_sources[source.id] = source
        for row in payload.get("definitions") or []:
            definition = definition_from_dict(row)
            self._definitions[definition.id] = definition
        logger.info(
            "EntityStore loaded payment_sources=%d definitions=%d",
            len(self._payment_sources),
            len(self._definitions),
        )

    def _flush(self) -> None:
        if self._path is None:
            return
        payload: dict[str, Any] = {
            "payment_sources": [payment_source_to_dict(s) for s in self._payment_sources.values()],
            "definitions": [definition_to_dict(d) for d in self._definitions.values()],
        }
        tmp = self._path.with_suffix(".json.tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise StorageError(f"Failed to write entities: {exc}", path=str(self._path)) from exc


def build_entity_store(base_path: str | None = None) -> EntityStore:
    return EntityStore(base_path or os.getenv("TALLYMIND_DATA_DIR"))
