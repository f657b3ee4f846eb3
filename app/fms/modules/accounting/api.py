from __future__ import annotations

from flask import Blueprint, current_app, request

from app.fms.db import db_session
from app.fms.errors import NotFound, ValidationError
from app.fms.modules.accounting.service import (
    learn_recommendation,
    list_items,
    recommendations_for,
    save_work_accounting,
    serialize_item,
    work_accounting_summary,
)
from app.fms.modules.work_reports.models import WorkReport
from app.fms.rbac import require_permission
from app.fms.tenancy import require_company_access, resolve_company_id
from app.fms.utils import current_user, json_ok, parse_float, parse_int, request_payload

bp = Blueprint("accounting_api", __name__)


def _load_report(s, report_id: int | None) -> WorkReport:
    if not report_id:
        raise ValidationError("work_report_id is required")
    report = s.get(WorkReport, report_id)
    if report is None or report.deleted_at is not None:
        raise NotFound("Work report not found")
    require_company_access(s, report.company_id)
    return report


@bp.get("/accounting-items")
@require_permission("accounting.view")
def accounting_items():
    s = db_session()
    item_type = (request.args.get("type") or "").strip() or None
    items = list_items(s, item_type)
    return json_ok([serialize_item(i) for i in items])


@bp.get("/accounting-recommendations")
@require_permission("accounting.view")
def recommendations_get():
    s = db_session()
    company_id = resolve_company_id()
    work_type = (request.args.get("work_type") or "").strip()
    if not company_id or not work_type:
        raise ValidationError("company_id and work_type are required")
    require_company_access(s, company_id)
    return json_ok(recommendations_for(s, company_id, work_type))


@bp.post("/accounting-recommendations")
@require_permission("accounting.edit")
def recommendations_learn():
    s = db_session()
    payload = request_payload()
    company_id = resolve_company_id(payload)
    work_type = (payload.get("work_type") or "").strip()
    item_id = parse_int(payload.get("accounting_item_id"))
    if not company_id or not work_type or not item_id:
        raise ValidationError("company_id, work_type and accounting_item_id are required")
    require_company_access(s, company_id)

    rec = learn_recommendation(
        s,
        company_id=company_id,
        work_type=work_type,
        accounting_item_id=item_id,
        amount=abs(parse_float(payload.get("amount"), 0.0) or 0.0),
        confidence_score=parse_float(payload.get("confidence_score"), 0.5),
    )
    s.commit()
    return json_ok(
        {
            "id": rec.id,
            "confidence": rec.confidence_score,
            "usage_count": rec.usage_count,
            "avg_amount": rec.avg_amount,
        }
    )


@bp.get("/work-accounting")
@require_permission("accounting.view")
def work_accounting_get():
    s = db_session()
    report = _load_report(s, parse_int(request.args.get("work_report_id")))
    return json_ok(work_accounting_summary(report))


@bp.post("/work-accounting")
@require_permission("accounting.edit")
def work_accounting_save():
    s = db_session()
    payload = request_payload()
    report = _load_report(s, parse_int(payload.get("work_report_id")))
    income = payload.get("income_items") or []
    expense = payload.get("expense_items") or []
    if not isinstance(income, list) or not isinstance(expense, list):
        raise ValidationError("income_items and expense_items must be lists")

    work_type = (payload.get("work_type") or "").strip() or None
    entries = save_work_accounting(
        s,
        report,
        income + expense,
        current_user(),
        work_type=work_type,
        learn=bool(payload.get("company_id") and work_type),
    )
    s.commit()
    current_app.logger.info("work-accounting saved report=%s entries=%s", report.id, len(entries))
    return json_ok({"count": len(entries)}, message="Accounting data saved")
