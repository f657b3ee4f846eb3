from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import TYPE_CHECKING, Any

from app.fms.audit import record_event
from app.fms.constants import HARVEST_QUALITIES, WORK_TYPES
from app.fms.errors import ValidationError
from app.fms.modules.work_reports.completion import completion_level, completion_rate
from app.fms.utils import clean_str, iso, parse_date, parse_float, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fms.models import User
    from app.fms.modules.work_reports.models import WorkReport

logger = logging.getLogger(__name__)

_FLOAT_FIELDS = (
    "duration_hours",
    "temperature",
    "humidity",
    "harvest_amount",
    "expected_price",
    "fertilizer_qty",
    "soil_ph",
    "soil_ec",
    "available_phosphorus",
    "humus_content",
)
_TEXT_FIELDS = (
    "description",
    "weather",
    "harvest_unit",
    "harvest_quality",
    "fertilizer_type",
    "soil_notes",
    "notes",
)


def parse_time(value: Any) -> time | None:
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"Invalid time: {value}") from e


def validate_report_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate work report create/update payload. Returns list of errors."""
    errors: list[str] = []
    if not partial:
        if not payload.get("company_id"):
            errors.append("Company ID is required")
        if not (payload.get("work_type") or "").strip():
            errors.append("Work type is required")
        if not payload.get("work_date"):
            errors.append("Work date is required")

    work_type = (payload.get("work_type") or "").strip()
    if work_type and work_type not in WORK_TYPES:
        errors.append(f"Invalid work_type. Must be one of: {', '.join(WORK_TYPES)}")
    quality = (payload.get("harvest_quality") or "").strip()
    if quality and quality not in HARVEST_QUALITIES:
        errors.append(f"Invalid harvest_quality. Must be one of: {', '.join(HARVEST_QUALITIES)}")

    for field in _FLOAT_FIELDS:
        raw = payload.get(field)
        if raw not in (None, "") and parse_float(raw) is None:
            errors.append(f"{field} must be a number.")
    if payload.get("worker_count") not in (None, ""):
        workers = parse_int(payload.get("worker_count"))
        if workers is None or workers < 1:
            errors.append("worker_count must be a positive integer.")
    humidity = parse_float(payload.get("humidity"))
    if humidity is not None and not 0 <= humidity <= 100:
        errors.append("humidity must be between 0 and 100.")

    try:
        parse_date(payload.get("work_date"))
        parse_time(payload.get("start_time"))
        parse_time(payload.get("end_time"))
    except ValidationError as e:
        errors.append(e.message)
    return errors


def _duration_from_times(start: time | None, end: time | None) -> float | None:
    if start is None or end is None:
        return None
    base = date.today()
    delta = datetime.combine(base, end) - datetime.combine(base, start)
    if delta.total_seconds() <= 0:
        return None
    return round(delta.total_seconds() / 3600, 2)


def serialize_report(report: "WorkReport", *, with_accounting: bool = False) -> dict:
    veg = report.vegetable
    data = {
        "id": report.id,
        "company_id": report.company_id,
        "vegetable_id": report.vegetable_id,
        "work_type": report.work_type,
        "description": report.description,
        "work_date": iso(report.work_date),
        "start_time": report.start_time.isoformat(timespec="minutes") if report.start_time else None,
        "end_time": report.end_time.isoformat(timespec="minutes") if report.end_time else None,
        "duration_hours": report.duration_hours,
        "worker_count": report.worker_count,
        "weather": report.weather,
        "temperature": report.temperature,
        "humidity": report.humidity,
        "harvest_amount": report.harvest_amount,
        "harvest_unit": report.harvest_unit,
        "harvest_quality": report.harvest_quality,
        "expected_price": report.expected_price,
        "expected_revenue": (report.harvest_amount or 0) * (report.expected_price or 0) or None,
        "fertilizer_type": report.fertilizer_type,
        "fertilizer_qty": report.fertilizer_qty,
        "soil_ph": report.soil_ph,
        "soil_ec": report.soil_ec,
        "available_phosphorus": report.available_phosphorus,
        "humus_content": report.humus_content,
        "soil_notes": report.soil_notes,
        "notes": report.notes,
        "photos": [p.id for p in report.photos],
        "created_at": iso(report.created_at),
        "updated_at": iso(report.updated_at),
        "vegetable": {
            "id": veg.id,
            "name": veg.name,
            "variety_name": veg.variety_name,
            "plot_name": veg.plot_name,
        }
        if veg is not None
        else None,
    }
    rate = completion_rate(data)
    data["completion_rate"] = rate
    data["completion_level"] = completion_level(rate)
    if with_accounting:
        data["accounting"] = [
            {
                "id": e.id,
                "accounting_item_id": e.accounting_item_id,
                "code": e.accounting_item.code if e.accounting_item else None,
                "name": e.accounting_item.name if e.accounting_item else e.custom_item_name,
                "custom_item_name": e.custom_item_name,
                "item_type": e.accounting_item.type if e.accounting_item else None,
                "category": e.accounting_item.category if e.accounting_item else None,
                "cost_type": e.accounting_item.cost_type if e.accounting_item else None,
                "amount": e.amount,
                "notes": e.notes,
                "is_ai_recommended": e.is_ai_recommended,
            }
            for e in report.accounting_entries
        ]
    return data


def list_reports(
    s: "Session",
    company_id: int,
    *,
    vegetable_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    work_type: str = "",
    limit: int = 50,
    offset: int = 0,
) -> list["WorkReport"]:
    from app.fms.modules.work_reports.models import WorkReport

    q = s.query(WorkReport).filter(WorkReport.company_id == company_id).filter(WorkReport.deleted_at.is_(None))
    if vegetable_id:
        q = q.filter(WorkReport.vegetable_id == vegetable_id)
    if start_date:
        q = q.filter(WorkReport.work_date >= start_date)
    if end_date:
        q = q.filter(WorkReport.work_date <= end_date)
    if work_type and work_type != "all":
        q = q.filter(WorkReport.work_type == work_type)
    return (
        q.order_by(WorkReport.work_date.desc(), WorkReport.created_at.desc(), WorkReport.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def _apply_fields(report: "WorkReport", payload: dict, changes: dict, *, partial: bool) -> None:
    def _set(field: str, value: Any) -> None:
        old = getattr(report, field)
        if value != old:
            changes[field] = {"old": old, "new": value}
            setattr(report, field, value)

    for field in _FLOAT_FIELDS:
        if not partial or field in payload:
            _set(field, parse_float(payload.get(field)))
    for field in _TEXT_FIELDS:
        if not partial or field in payload:
            _set(field, clean_str(payload.get(field)))
    if not partial or "worker_count" in payload:
        _set("worker_count", parse_int(payload.get("worker_count")))
    for field in ("start_time", "end_time"):
        if not partial or field in payload:
            _set(field, parse_time(payload.get(field)))
    if report.duration_hours is None:
        derived = _duration_from_times(report.start_time, report.end_time)
        if derived is not None:
            _set("duration_hours", derived)


def create_report(s: "Session", payload: dict, user: "User") -> "WorkReport":
    """Create a work report. Caller has already checked company access."""
    from app.fms.modules.work_reports.models import WorkReport

    errors = validate_report_payload(payload)
    if errors:
        raise ValidationError.from_errors(errors)

    now = datetime.utcnow()
    report = WorkReport(
        company_id=parse_int(payload.get("company_id")),
        vegetable_id=parse_int(payload.get("vegetable_id")),
        work_type=payload["work_type"].strip(),
        work_date=parse_date(payload.get("work_date")),
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    _apply_fields(report, payload, {}, partial=False)
    s.add(report)
    s.flush()

    record_event(
        s,
        actor=user,
        action="work_report.create",
        entity_type="WorkReport",
        entity_id=str(report.id),
        company_id=report.company_id,
        metadata={"work_type": report.work_type, "work_date": report.work_date, "vegetable_id": report.vegetable_id},
    )
    return report


def update_report(s: "Session", report: "WorkReport", payload: dict, user: "User") -> "WorkReport":
    errors = validate_report_payload(payload, partial=True)
    if errors:
        raise ValidationError.from_errors(errors)

    changes: dict[str, Any] = {}
    if (payload.get("work_type") or "").strip() and payload["work_type"].strip() != report.work_type:
        changes["work_type"] = {"old": report.work_type, "new": payload["work_type"].strip()}
        report.work_type = payload["work_type"].strip()
    if payload.get("work_date"):
        new_date = parse_date(payload.get("work_date"))
        if new_date != report.work_date:
            changes["work_date"] = {"old": report.work_date, "new": new_date}
            report.work_date = new_date
    if "vegetable_id" in payload:
        new_veg = parse_int(payload.get("vegetable_id"))
        if new_veg != report.vegetable_id:
            changes["vegetable_id"] = {"old": report.vegetable_id, "new": new_veg}
            report.vegetable_id = new_veg
    _apply_fields(report, payload, changes, partial=True)
    report.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="work_report.edit",
        entity_type="WorkReport",
        entity_id=str(report.id),
        company_id=report.company_id,
        metadata={"changes": changes},
    )
    return report


def soft_delete_report(s: "Session", report: "WorkReport", user: "User", reason: str | None = None) -> None:
    report.deleted_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="work_report.delete",
        entity_type="WorkReport",
        entity_id=str(report.id),
        company_id=report.company_id,
        reason=reason,
        metadata={"work_type": report.work_type, "work_date": report.work_date},
    )


def purge_deleted_reports(s: "Session", *, older_than_days: int = 180, now: datetime | None = None) -> int:
    """Hard-delete reports soft-deleted before the cutoff (accounting entries cascade)."""
    from app.fms.modules.work_reports.models import WorkReport

    cutoff = (now or datetime.utcnow()) - timedelta(days=older_than_days)
    expired = (
        s.query(WorkReport)
        .filter(WorkReport.deleted_at.isnot(None))
        .filter(WorkReport.deleted_at < cutoff)
        .all()
    )
    for report in expired:
        for photo in report.photos:
            photo.work_report_id = None
        s.delete(report)
    if expired:
        logger.info("Purged %s soft-deleted work reports (cutoff=%s)", len(expired), cutoff.isoformat())
    return len(expired)
