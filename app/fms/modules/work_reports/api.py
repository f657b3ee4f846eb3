from __future__ import annotations

from flask import Blueprint, request

from app.fms.db import db_session
from app.fms.errors import NotFound, ValidationError
from app.fms.modules.vegetables.service import get_active_vegetable
from app.fms.modules.work_reports.models import WorkReport
from app.fms.modules.work_reports.service import (
    create_report,
    list_reports,
    serialize_report,
    soft_delete_report,
    update_report,
)
from app.fms.rbac import require_permission
from app.fms.tenancy import require_company_access, resolve_company_id
from app.fms.utils import current_user, json_ok, pagination_args, parse_date, parse_int, request_payload

bp = Blueprint("work_reports_api", __name__)


def _load(s, report_id: int) -> WorkReport:
    report = s.get(WorkReport, report_id)
    if report is None or report.deleted_at is not None:
        raise NotFound("Work report not found")
    require_company_access(s, report.company_id)
    return report


def _check_vegetable(s, payload: dict, company_id: int) -> None:
    vegetable_id = parse_int(payload.get("vegetable_id"))
    if vegetable_id and get_active_vegetable(s, vegetable_id, company_id) is None:
        raise ValidationError("Vegetable not found")


@bp.get("/reports")
@require_permission("reports.view")
def reports_list():
    s = db_session()
    company_id = require_company_access(s, resolve_company_id())
    limit, offset = pagination_args(default_limit=50)
    reports = list_reports(
        s,
        company_id,
        vegetable_id=parse_int(request.args.get("vegetable_id")),
        start_date=parse_date(request.args.get("start_date")),
        end_date=parse_date(request.args.get("end_date")),
        work_type=(request.args.get("work_type") or "").strip(),
        limit=limit,
        offset=offset,
    )
    return json_ok([serialize_report(r) for r in reports], count=len(reports))


@bp.post("/reports")
@require_permission("reports.edit")
def reports_create():
    s = db_session()
    if not request.is_json or not isinstance(request.get_json(silent=True), dict):
        raise ValidationError("Invalid JSON in request body")
    payload = request_payload()
    if not payload.get("company_id"):
        raise ValidationError("Company ID is required")
    company_id = require_company_access(s, parse_int(payload.get("company_id")))
    _check_vegetable(s, payload, company_id)

    report = create_report(s, payload, current_user())
    s.commit()
    return json_ok(serialize_report(report), 201, message="Work report created successfully")


@bp.get("/reports/<int:report_id>")
@require_permission("reports.view")
def reports_get(report_id: int):
    s = db_session()
    report = _load(s, report_id)
    return json_ok(serialize_report(report, with_accounting=True))


@bp.put("/reports/<int:report_id>")
@require_permission("reports.edit")
def reports_update(report_id: int):
    s = db_session()
    report = _load(s, report_id)
    payload = request_payload()
    _check_vegetable(s, payload, report.company_id)
    update_report(s, report, payload, current_user())
    s.commit()
    return json_ok(serialize_report(report, with_accounting=True), message="Work report updated successfully")


@bp.delete("/reports/<int:report_id>")
@require_permission("reports.edit")
def reports_delete(report_id: int):
    s = db_session()
    report = _load(s, report_id)
    payload = request.get_json(silent=True) or {}
    soft_delete_report(s, report, current_user(), reason=(payload.get("reason") or None))
    s.commit()
    return json_ok(message="Work report deleted")
