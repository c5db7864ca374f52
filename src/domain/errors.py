from __future__ import annotations

from typing import Any


class TallyError(Exception):
    """Base for every error the reconciliation core raises on purpose."""

    kind = "TallyError"

    def __init__(self, message: str, code: str = "error", field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "code": self.code,
            "message": self.message,
            "field": self.field,
        }


class ValidationError(TallyError):
    """Bad amount, date, month, day-of-month or name."""

    kind = "ValidationError"


class StateConflict(TallyError):
    """Operation not allowed in the occurrence's or instance's current state."""

    kind = "StateConflict"


class NotFound(TallyError):
    kind = "NotFound"

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        message = f"{resource} with id {resource_id} not found" if resource_id else f"{resource} not found"
        super().__init__(message, code="not_found")
        self.resource = resource
        self.resource_id = resource_id


class NotDeletable(TallyError):
    kind = "NotDeletable"


class NotEditable(TallyError):
    kind = "NotEditable"


class MissingDependency(TallyError):
    """A balance snapshot required by the operation is absent."""

    kind = "MissingDependency"


class StorageError(TallyError):
    kind = "StorageError"

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message, code="storage_error")
        self.path = path


def invalid_amount(message: str = "Amount must be greater than 0", field: str = "amount") -> ValidationError:
    return ValidationError(message, code="invalid_amount", field=field)


def invalid_date(message: str, field: str = "date") -> ValidationError:
    return ValidationError(message, code="invalid_date", field=field)


def already_closed(occurrence_id: str) -> StateConflict:
    return StateConflict(f"Occurrence {occurrence_id} is already closed", code="already_closed")


def not_closed(occurrence_id: str) -> StateConflict:
    return StateConflict(f"Occurrence {occurrence_id} is not closed", code="not_closed")
