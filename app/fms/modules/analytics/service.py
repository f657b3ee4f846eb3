from __future__ import annotations

import csv
import io
import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING

from openpyxl import Workbook

from app.fms.constants import ANALYTICS_PERIOD_DAYS, DEFAULT_ANALYTICS_PERIOD_DAYS
from app.fms.errors import ValidationError
from app.fms.modules.analytics import calculations
from app.fms.modules.growing_tasks.models import GrowingTask
from app.fms.modules.growing_tasks.service import serialize_task
from app.fms.modules.vegetables.models import Vegetable
from app.fms.modules.vegetables.service import serialize_vegetable
from app.fms.modules.work_reports.models import WorkReport
from app.fms.modules.work_reports.service import serialize_report

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

EXPORT_DATA_TYPES = ("vegetables", "work_reports")
EXPORT_FORMATS = ("csv", "xlsx")

VEGETABLE_EXPORT_COLUMNS = (
    ("id", "ID"),
    ("name", "Name"),
    ("variety_name", "Variety"),
    ("plot_name", "Plot"),
    ("area_size", "Area (m2)"),
    ("status", "Status"),
    ("planting_date", "Planting date"),
    ("expected_harvest_start", "Expected harvest start"),
    ("expected_harvest_end", "Expected harvest end"),
    ("created_at", "Created at"),
)
REPORT_EXPORT_COLUMNS = (
    ("id", "ID"),
    ("vegetable_name", "Vegetable"),
    ("plot_name", "Plot"),
    ("work_type", "Work type"),
    ("work_date", "Work date"),
    ("description", "Description"),
    ("duration_hours", "Hours"),
    ("worker_count", "Workers"),
    ("weather", "Weather"),
    ("temperature", "Temperature"),
    ("harvest_amount", "Harvest amount"),
    ("harvest_unit", "Harvest unit"),
    ("completion_rate", "Completion %"),
    ("created_at", "Created at"),
)


def period_start(period: str | None, today: date) -> date:
    days = ANALYTICS_PERIOD_DAYS.get(period or "", DEFAULT_ANALYTICS_PERIOD_DAYS)
    return today - timedelta(days=days)


def _active_reports(s: "Session", company_id: int):
    return (
        s.query(WorkReport)
        .filter(WorkReport.company_id == company_id)
        .filter(WorkReport.deleted_at.is_(None))
    )


def dashboard_data(
    s: "Session",
    company_id: int,
    *,
    period: str | None = None,
    vegetable_id: int | None = None,
    plot_name: str = "",
    today: date | None = None,
) -> dict:
    today = today or date.today()
    start = period_start(period, today)
    start_dt = datetime.combine(start, datetime.min.time())

    vq = (
        s.query(Vegetable)
        .filter(Vegetable.company_id == company_id)
        .filter(Vegetable.deleted_at.is_(None))
        .filter(Vegetable.created_at >= start_dt)
    )
    if vegetable_id:
        vq = vq.filter(Vegetable.id == vegetable_id)
    if plot_name and plot_name != "all":
        vq = vq.filter(Vegetable.plot_name.ilike(f"%{plot_name}%"))
    vegetables = [serialize_vegetable(v) for v in vq.all()]

    all_reports = [serialize_report(r) for r in _active_reports(s, company_id).all()]
    period_reports = [r for r in all_reports if r["work_date"] and r["work_date"] >= start.isoformat()]

    tasks = [
        serialize_task(t)
        for t in s.query(GrowingTask)
        .filter(GrowingTask.company_id == company_id)
        .filter(GrowingTask.deleted_at.is_(None))
        .filter(GrowingTask.created_at >= start_dt)
        .all()
    ]

    return {
        "summary": calculations.summary(vegetables, period_reports, tasks),
        "harvest_analysis": calculations.harvest_analysis(period_reports),
        "cost_analysis": calculations.cost_analysis(period_reports),
        "efficiency_trends": calculations.efficiency_trends(tasks),
        "seasonal_performance": calculations.seasonal_performance(all_reports),
        "vegetable_performance": calculations.vegetable_performance(vegetables, period_reports),
        "recent_activities": calculations.recent_activities(all_reports),
    }


def accounting_summary_data(
    s: "Session",
    company_id: int,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    today: date | None = None,
) -> dict:
    q = _active_reports(s, company_id)
    if start_date:
        q = q.filter(WorkReport.work_date >= start_date)
    if end_date:
        q = q.filter(WorkReport.work_date <= end_date)
    reports = [serialize_report(r, with_accounting=True) for r in q.order_by(WorkReport.work_date.desc()).all()]
    return calculations.accounting_summary(reports, today or date.today())


def financial_performance_data(s: "Session", company_id: int, report_ids: list[int]) -> tuple[dict, int]:
    if not report_ids:
        return {}, 0
    reports = _active_reports(s, company_id).filter(WorkReport.id.in_(report_ids)).all()
    entries = []
    for report in reports:
        for e in serialize_report(report, with_accounting=True)["accounting"]:
            if e["accounting_item_id"] is None:
                continue
            entries.append({**e, "work_date": report.work_date})
    return calculations.financial_performance(entries), len(entries)


def _export_rows(s: "Session", company_id: int, data_type: str) -> tuple[tuple, list[dict]]:
    if data_type == "vegetables":
        rows = [
            serialize_vegetable(v)
            for v in s.query(Vegetable)
            .filter(Vegetable.company_id == company_id)
            .filter(Vegetable.deleted_at.is_(None))
            .order_by(Vegetable.created_at.desc())
            .all()
        ]
        return VEGETABLE_EXPORT_COLUMNS, rows

    rows = []
    for r in _active_reports(s, company_id).order_by(WorkReport.work_date.desc(), WorkReport.id.desc()).all():
        data = serialize_report(r)
        veg = data.get("vegetable") or {}
        data["vegetable_name"] = veg.get("name")
        data["plot_name"] = veg.get("plot_name")
        rows.append(data)
    return REPORT_EXPORT_COLUMNS, rows


def build_export(s: "Session", company_id: int, data_type: str, fmt: str) -> tuple[bytes, str, str]:
    """Returns (content, mimetype, filename)."""
    if data_type not in EXPORT_DATA_TYPES:
        raise ValidationError(f"Invalid data_type. Must be one of: {', '.join(EXPORT_DATA_TYPES)}")
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Invalid format. Must be one of: {', '.join(EXPORT_FORMATS)}")

    columns, rows = _export_rows(s, company_id, data_type)
    filename = f"{data_type}_export_{date.today().strftime('%Y%m%d')}.{fmt}"
    headers = [label for _, label in columns]

    if fmt == "csv":
        out = io.StringIO()
        w = csv.writer(out)
        w.writerow(headers)
        for row in rows:
            w.writerow(["" if row.get(key) is None else row.get(key) for key, _ in columns])
        # BOM so spreadsheet apps pick up UTF-8 (crop names are usually Japanese).
        return out.getvalue().encode("utf-8-sig"), "text/csv", filename

    wb = Workbook()
    ws = wb.active
    ws.title = data_type
    ws.append(headers)
    for row in rows:
        ws.append([row.get(key) for key, _ in columns])
    buf = io.BytesIO()
    wb.save(buf)
    logger.info("Built %s export: company_id=%s rows=%s", fmt, company_id, len(rows))
    return (
        buf.getvalue(),
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename,
    )
