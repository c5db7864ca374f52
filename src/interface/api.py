from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse

from application import aggregation
from application.engine import TallyMindEngine
from domain.errors import (
    MissingDependency,
    NotDeletable,
    NotEditable,
    NotFound,
    StateConflict,
    StorageError,
    TallyError,
    ValidationError,
)
from domain.models import ObligationInstance, ObligationKind
from domain.schemas import (
    AddOccurrenceRequest,
    CloseOccurrenceRequest,
    CreateAdHocRequest,
    MakeRegularRequest,
    PayoffPaymentRequest,
    RecordPaymentRequest,
    SplitOccurrenceRequest,
    UpdateOccurrenceRequest,
)
from infrastructure.persistence.codec import definition_to_dict
from interface.cli import build_engine

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    ValidationError: 400,
    NotDeletable: 403,
    NotEditable: 403,
    NotFound: 404,
    StateConflict: 409,
    MissingDependency: 424,
    StorageError: 503,
}

_KINDS = {"bills": ObligationKind.BILL, "incomes": ObligationKind.INCOME}


def status_for(exc: TallyError) -> int:
    for error_type, status in STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status
    return 400


def _kind(segment: str) -> ObligationKind:
    kind = _KINDS.get(segment)
    if kind is None:
        raise NotFound("Collection", segment)
    return kind


def create_app(engine: TallyMindEngine) -> FastAPI:
    app = FastAPI(title="TallyMind API")

    def view(instance: Optional[ObligationInstance]) -> Optional[dict[str, Any]]:
        return aggregation.instance_view(instance, engine.today()) if instance is not None else None

    @app.exception_handler(TallyError)
    async def tally_error_handler(request: Request, exc: TallyError) -> JSONResponse:
        status = status_for(exc)
        logger.info(
            "Request failed method=%s path=%s status=%d type=%s code=%s",
            request.method, request.url.path, status, exc.kind, exc.code,
        )
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error method=%s path=%s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": {"type": "InternalError", "code": "internal_error", "message": str(exc), "field": None}},
        )

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # ---- months ----
    @app.post("/months/{month}")
    def generate_month(month: str) -> dict:
        engine.months.generate(month)
        return engine.months.detailed(month)

    @app.get("/months/{month}")
    def get_month(month: str) -> dict:
        return engine.months.detailed(month)

    @app.get("/months/{month}/leftover")
    def get_leftover(month: str) -> dict:
        return engine.months.leftover(month)

    @app.get("/months/{month}/projection")
    def get_projection(month: str, run_rate: int = 0) -> dict:
        return engine.months.projection(month, run_rate=run_rate)

    @app.put("/months/{month}/bank-balances")
    def put_bank_balances(month: str, balances: Dict[str, Any] = Body(...)) -> dict:
        data = engine.months.update_bank_balances(month, balances)
        return {"month": month, "bank_balances": data.bank_balances, "leftover": engine.months.leftover(month)}

    @app.post("/months/{month}/bank-balances/sync")
    def sync_bank_balances(month: str) -> dict:
        data = engine.sync_balances(month)
        return {"month": month, "bank_balances": data.bank_balances, "leftover": engine.months.leftover(month)}

    # ---- occurrences ----
    @app.post("/months/{month}/{kind}/{instance_id}/occurrences")
    def add_occurrence(month: str, kind: str, instance_id: str, body: AddOccurrenceRequest) -> dict:
        instance = engine.reconciliation.add_occurrence(
            month, instance_id, body.expected_date, body.expected_amount,
            occurrence_id=body.id, kind=_kind(kind),
        )
        return view(instance)

    @app.post("/months/{month}/{kind}/{instance_id}/occurrences/{occurrence_id}/payments")
    def record_payment(month: str, kind: str, instance_id: str, occurrence_id: str, body: RecordPaymentRequest) -> dict:
        instance = engine.reconciliation.record_payment(
            month, instance_id, occurrence_id, body.amount,
            paid_on=body.date, payment_source_id=body.payment_source_id, notes=body.notes, kind=_kind(kind),
        )
        return view(instance)

    @app.post("/months/{month}/{kind}/{instance_id}/occurrences/{occurrence_id}/pay-full")
    def pay_full(
        month: str, kind: str, instance_id: str, occurrence_id: str,
        body: Optional[CloseOccurrenceRequest] = None,
    ) -> dict:
        body = body or CloseOccurrenceRequest()
        instance = engine.reconciliation.pay_full(
            month, instance_id, occurrence_id,
            closed_date=body.closed_date, notes=body.notes, payment_source_id=body.payment_source_id,
            kind=_kind(kind),
        )
        return view(instance)

    @app.post("/months/{month}/{kind}/{instance_id}/occurrences/{occurrence_id}/close")
    def close_occurrence(
        month: str, kind: str, instance_id: str, occurrence_id: str,
        body: Optional[CloseOccurrenceRequest] = None,
    ) -> dict:
        body = body or CloseOccurrenceRequest()
        instance = engine.reconciliation.close(
            month, instance_id, occurrence_id,
            closed_date=body.closed_date, notes=body.notes, payment_source_id=body.payment_source_id,
            kind=_kind(kind),
        )
        return view(instance)

    @app.post("/months/{month}/{kind}/{instance_id}/occurrences/{occurrence_id}/reopen")
    def reopen_occurrence(month: str, kind: str, instance_id: str, occurrence_id: str) -> dict:
        return view(engine.reconciliation.reopen(month, instance_id, occurrence_id, kind=_kind(kind)))

    @app.post("/months/{month}/{kind}/{instance_id}/occurrences/{occurrence_id}/split")
    def split_occurrence(
        month: str, kind: str, instance_id: str, occurrence_id: str, body: SplitOccurrenceRequest
    ) -> dict:
        result = engine.reconciliation.split(
            month, instance_id, occurrence_id, body.paid_amount,
            closed_date=body.closed_date, notes=body.notes, payment_source_id=body.payment_source_id,
            kind=_kind(kind),
        )
        today = engine.today()
        return {
            "instance": view(result.instance),
            "closed_occurrence": aggregation.occurrence_view(result.closed_occurrence, today),
            "remainder_occurrence": aggregation.occurrence_view(result.remainder_occurrence, today),
        }

    @app.put("/months/{month}/{kind}/{instance_id}/occurrences/{occurrence_id}")
    def update_occurrence(
        month: str, kind: str, instance_id: str, occurrence_id: str, body: UpdateOccurrenceRequest
    ) -> dict:
        changes: dict[str, Any] = {
            "expected_amount": body.expected_amount,
            "expected_date": body.expected_date,
        }
        if "notes" in body.model_fields_set:
            changes["notes"] = body.notes
        instance = engine.reconciliation.update_occurrence(
            month, instance_id, occurrence_id, kind=_kind(kind), **changes
        )
        return view(instance)

    @app.delete("/months/{month}/{kind}/{instance_id}/occurrences/{occurrence_id}")
    def delete_occurrence(month: str, kind: str, instance_id: str, occurrence_id: str) -> dict:
        instance = engine.reconciliation.delete_occurrence(month, instance_id, occurrence_id, kind=_kind(kind))
        return {"deleted": True, "instance_removed": instance is None, "instance": view(instance)}

    # ---- ad-hoc ----
    @app.post("/months/{month}/adhoc/{kind}")
    def create_adhoc(month: str, kind: str, body: CreateAdHocRequest) -> dict:
        instance = engine.adhoc.create(
            month, _kind(kind), body.name, body.amount,
            category_id=body.category_id, payment_source_id=body.payment_source_id,
            settled_on=body.date, instance_id=body.id,
        )
        return view(instance)

    @app.post("/months/{month}/adhoc/{kind}/{instance_id}/make-regular")
    def make_regular(month: str, kind: str, instance_id: str, body: MakeRegularRequest) -> dict:
        instance, definition = engine.adhoc.promote(
            month, instance_id, _kind(kind),
            billing_period=body.billing_period, due_day=body.due_day, start_date=body.start_date,
            category_id=body.category_id, payment_source_id=body.payment_source_id, amount=body.amount,
        )
        return {"instance": view(instance), "definition": definition_to_dict(definition)}

    # ---- payoff bills ----
    @app.post("/months/{month}/payoff-bills/{instance_id}/pay")
    def pay_payoff_bill(month: str, instance_id: str, body: PayoffPaymentRequest) -> dict:
        result = engine.payoff.pay(
            month, instance_id, body.amount, paid_on=body.date, new_balance_override=body.new_balance
        )
        return {
            "instance": view(result.instance),
            "new_balance": result.new_balance,
            "paid_so_far": result.paid_so_far,
            "remaining": result.remaining,
        }

    return app


engine = build_engine()
app = create_app(engine)
