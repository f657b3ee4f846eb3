from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.fms.constants import HARVEST_QUALITIES, WORK_TYPE_LABELS
from app.fms.db import db_session
from app.fms.errors import ValidationError
from app.fms.modules.vegetables.models import Vegetable
from app.fms.modules.vegetables.service import get_active_vegetable
from app.fms.modules.work_reports.completion import missing_steps, next_suggested_action
from app.fms.modules.work_reports.models import WorkReport
from app.fms.modules.work_reports.service import create_report, list_reports, serialize_report
from app.fms.rbac import require_permission
from app.fms.tenancy import default_company_id
from app.fms.utils import current_user, pagination_args, parse_date, parse_int

bp = Blueprint("work_reports", __name__)


def _vegetable_choices(s, company_id: int) -> list[Vegetable]:
    return (
        s.query(Vegetable)
        .filter(Vegetable.company_id == company_id)
        .filter(Vegetable.deleted_at.is_(None))
        .order_by(Vegetable.name.asc())
        .all()
    )


@bp.get("/reports")
@require_permission("reports.view")
def reports_list():
    s = db_session()
    company_id = default_company_id(s)
    vegetable_id = parse_int(request.args.get("vegetable_id"))
    work_type = (request.args.get("work_type") or "").strip()
    date_from_raw = (request.args.get("date_from") or "").strip()
    date_to_raw = (request.args.get("date_to") or "").strip()
    try:
        date_from = parse_date(date_from_raw)
        date_to = parse_date(date_to_raw)
    except ValidationError:
        flash("Dates must be YYYY-MM-DD", "danger")
        date_from = date_to = None
    limit, offset = pagination_args(default_limit=100)

    reports = list_reports(
        s,
        company_id,
        vegetable_id=vegetable_id,
        start_date=date_from,
        end_date=date_to,
        work_type=work_type,
        limit=limit,
        offset=offset,
    )
    return render_template(
        "admin/reports/list.html",
        reports=[serialize_report(r) for r in reports],
        vegetables=_vegetable_choices(s, company_id),
        vegetable_id=vegetable_id,
        work_type=work_type,
        work_types=WORK_TYPE_LABELS,
        date_from=date_from_raw,
        date_to=date_to_raw,
    )


@bp.get("/reports/new")
@require_permission("reports.edit")
def reports_new_get():
    s = db_session()
    company_id = default_company_id(s)
    return render_template(
        "admin/reports/new.html",
        vegetables=_vegetable_choices(s, company_id),
        work_types=WORK_TYPE_LABELS,
        qualities=HARVEST_QUALITIES,
        vegetable_id=parse_int(request.args.get("vegetable_id")),
    )


@bp.post("/reports/new")
@require_permission("reports.edit")
def reports_new_post():
    s = db_session()
    payload = request.form.to_dict()
    payload["company_id"] = default_company_id(s)
    vegetable_id = parse_int(payload.get("vegetable_id"))
    if vegetable_id and get_active_vegetable(s, vegetable_id, payload["company_id"]) is None:
        flash("Vegetable not found.", "danger")
        return redirect(url_for("work_reports.reports_new_get"))
    try:
        report = create_report(s, payload, current_user())
    except ValidationError as e:
        s.rollback()
        for msg in e.details or [e.message]:
            flash(msg, "danger")
        return redirect(url_for("work_reports.reports_new_get"))
    s.commit()
    flash("Work report saved.", "success")
    return redirect(url_for("work_reports.report_detail", report_id=report.id))


@bp.get("/reports/<int:report_id>")
@require_permission("reports.view")
def report_detail(report_id: int):
    s = db_session()
    report = s.get(WorkReport, report_id)
    if not report or report.deleted_at is not None or report.company_id != default_company_id(s):
        abort(404)
    data = serialize_report(report, with_accounting=True)
    return render_template(
        "admin/reports/detail.html",
        report=data,
        missing_steps=missing_steps(data),
        suggestion=next_suggested_action(data),
        work_types=WORK_TYPE_LABELS,
    )
