from __future__ import annotations

from flask import Blueprint, render_template, request

from app.fms.constants import ANALYTICS_PERIOD_DAYS
from app.fms.db import db_session
from app.fms.modules.analytics.service import accounting_summary_data, dashboard_data
from app.fms.rbac import require_permission
from app.fms.tenancy import default_company_id

bp = Blueprint("analytics", __name__)


@bp.get("/analytics")
@require_permission("analytics.view")
def analytics_index():
    s = db_session()
    company_id = default_company_id(s)
    period = (request.args.get("period") or "3months").strip()
    if period not in ANALYTICS_PERIOD_DAYS:
        period = "3months"
    plot = (request.args.get("plot") or "").strip()
    data = dashboard_data(s, company_id, period=period, plot_name=plot)
    accounting = accounting_summary_data(s, company_id)
    return render_template(
        "admin/analytics/index.html",
        data=data,
        accounting=accounting["accountingSummary"],
        categories=accounting["categoryAnalysis"],
        company_id=company_id,
        period=period,
        periods=list(ANALYTICS_PERIOD_DAYS),
        plot=plot,
    )
