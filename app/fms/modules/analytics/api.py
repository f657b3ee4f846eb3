from __future__ import annotations

import io

from flask import Blueprint, request, send_file

from app.fms.audit import record_event
from app.fms.db import db_session
from app.fms.errors import ValidationError
from app.fms.modules.analytics.service import (
    accounting_summary_data,
    build_export,
    dashboard_data,
    financial_performance_data,
)
from app.fms.rbac import require_permission
from app.fms.tenancy import require_company_access, resolve_company_id
from app.fms.utils import current_user, json_ok, parse_date, parse_int, request_payload

bp = Blueprint("analytics_api", __name__)


@bp.get("/analytics")
@require_permission("analytics.view")
def analytics_dashboard():
    s = db_session()
    company_id = require_company_access(s, resolve_company_id())
    vegetable = (request.args.get("vegetable") or "").strip()
    data = dashboard_data(
        s,
        company_id,
        period=(request.args.get("period") or "3months").strip(),
        vegetable_id=parse_int(vegetable) if vegetable != "all" else None,
        plot_name=(request.args.get("plot") or "").strip(),
    )
    return json_ok(data)


@bp.get("/analytics/accounting-summary")
@require_permission("analytics.view")
def analytics_accounting_summary():
    s = db_session()
    company_id = require_company_access(s, resolve_company_id())
    data = accounting_summary_data(
        s,
        company_id,
        start_date=parse_date(request.args.get("start_date")),
        end_date=parse_date(request.args.get("end_date")),
    )
    return json_ok(**data)


@bp.post("/financial-performance")
@require_permission("analytics.view")
def financial_performance():
    s = db_session()
    payload = request_payload()
    company_id = require_company_access(s, resolve_company_id(payload))
    raw_ids = payload.get("work_report_ids") or []
    if not isinstance(raw_ids, list):
        raise ValidationError("work_report_ids must be a list")
    report_ids = [i for i in (parse_int(x) for x in raw_ids) if i]
    data, count = financial_performance_data(s, company_id, report_ids)
    return json_ok(data, count=count)


@bp.post("/analytics/export")
@require_permission("analytics.export")
def analytics_export():
    s = db_session()
    payload = request_payload()
    company_id = require_company_access(s, resolve_company_id(payload))
    data_type = (payload.get("data_type") or "").strip()
    fmt = (payload.get("format") or "csv").strip().lower()
    if fmt == "excel":
        fmt = "xlsx"

    content, mimetype, filename = build_export(s, company_id, data_type, fmt)
    record_event(
        s,
        actor=current_user(),
        action=f"{data_type}.export",
        entity_type="Company",
        entity_id=str(company_id),
        company_id=company_id,
        metadata={"format": fmt, "bytes": len(content)},
    )
    s.commit()
    return send_file(
        io.BytesIO(content),
        mimetype=mimetype,
        as_attachment=True,
        download_name=filename,
        max_age=0,
    )
