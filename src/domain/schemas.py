from __future__ import annotations

import datetime as dt
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from domain.models import BillingPeriod

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d")


def coerce_date(value: Any) -> Any:
    if isinstance(value, dt.date) or not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return value


class AddOccurrenceRequest(BaseModel):
    expected_date: dt.date = Field(description="Date inside the target month, YYYY-MM-DD.")
    expected_amount: int = Field(description="Amount in cents, > 0.")
    id: Optional[str] = Field(default=None, description="Client-supplied id; a replay with the same id is a no-op.")

    @field_validator("expected_date", mode="before")
    @classmethod
    def parse_expected_date(cls, value: Any) -> Any:
        return coerce_date(value)


class RecordPaymentRequest(BaseModel):
    amount: int
    date: Optional[dt.date] = None
    payment_source_id: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Any:
        return coerce_date(value)


class CloseOccurrenceRequest(BaseModel):
    """Body for close and pay-full. `closed_date` defaults to today (or the month's last day for past months)."""

    closed_date: Optional[dt.date] = None
    notes: Optional[str] = None
    payment_source_id: Optional[str] = None

    @field_validator("closed_date", mode="before")
    @classmethod
    def parse_closed_date(cls, value: Any) -> Any:
        return coerce_date(value)


class SplitOccurrenceRequest(BaseModel):
    paid_amount: int
    closed_date: Optional[dt.date] = None
    notes: Optional[str] = None
    payment_source_id: Optional[str] = None

    @field_validator("closed_date", mode="before")
    @classmethod
    def parse_closed_date(cls, value: Any) -> Any:
        return coerce_date(value)


class UpdateOccurrenceRequest(BaseModel):
    """Omitted fields are left alone; an explicit `"notes": null` clears the note."""

    expected_amount: Optional[int] = None
    expected_date: Optional[dt.date] = None
    notes: Optional[str] = None

    @field_validator("expected_date", mode="before")
    @classmethod
    def parse_expected_date(cls, value: Any) -> Any:
        return coerce_date(value)


class CreateAdHocRequest(BaseModel):
    name: str
    amount: int
    category_id: Optional[str] = None
    payment_source_id: Optional[str] = None
    date: Optional[dt.date] = Field(default=None, description="When given, the item is recorded as already settled.")
    id: Optional[str] = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Any:
        return coerce_date(value)


class MakeRegularRequest(BaseModel):
    billing_period: BillingPeriod = BillingPeriod.MONTHLY
    due_day: Optional[int] = None
    start_date: Optional[dt.date] = None
    amount: Optional[int] = None
    category_id: Optional[str] = None
    payment_source_id: Optional[str] = None

    @field_validator("start_date", mode="before")
    @classmethod
    def parse_start_date(cls, value: Any) -> Any:
        return coerce_date(value)


class PayoffPaymentRequest(BaseModel):
    amount: int
    date: Optional[dt.date] = None
    new_balance: Optional[int] = Field(
        default=None,
        description="Statement balance after the payment; stored instead of the computed one when given.",
    )

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, value: Any) -> Any:
        return coerce_date(value)
