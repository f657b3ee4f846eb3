from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from app.fms.audit import record_event
from app.fms.constants import TASK_PRIORITIES, TASK_STATUS_COLORS, TASK_STATUSES
from app.fms.errors import ValidationError
from app.fms.utils import clean_str, iso, parse_date, parse_float, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fms.models import User
    from app.fms.modules.growing_tasks.models import GrowingTask
    from app.fms.modules.vegetables.models import Vegetable

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("vegetable_id", "name", "start_date", "end_date")


def validate_task_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate growing task create/update payload. Returns list of errors."""
    errors: list[str] = []
    if not partial:
        missing = [f for f in REQUIRED_FIELDS if not str(payload.get(f) or "").strip()]
        if missing:
            errors.append(f"Missing required fields: {', '.join(missing)}")

    status = (payload.get("status") or "").strip()
    if status and status not in TASK_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(TASK_STATUSES)}")
    priority = (payload.get("priority") or "").strip()
    if priority and priority not in TASK_PRIORITIES:
        errors.append(f"Invalid priority. Must be one of: {', '.join(TASK_PRIORITIES)}")
    if len((payload.get("task_type") or "").strip()) > 32:
        errors.append("task_type must be at most 32 characters.")

    if payload.get("progress") not in (None, ""):
        if parse_int(payload.get("progress")) is None:
            errors.append("progress must be an integer.")

    try:
        start = parse_date(payload.get("start_date"))
        end = parse_date(payload.get("end_date"))
    except ValidationError as e:
        errors.append(e.message)
    else:
        if start and end and end < start:
            errors.append("end_date must be on or after start_date.")
    return errors


def clamp_progress(raw: Any) -> int:
    return max(0, min(100, parse_int(raw, 0) or 0))


def _color(status: str) -> str:
    return TASK_STATUS_COLORS.get(status, TASK_STATUS_COLORS["pending"])


def serialize_task(task: "GrowingTask") -> dict:
    veg = task.vegetable
    return {
        "id": task.id,
        "company_id": task.company_id,
        "vegetable_id": task.vegetable_id,
        "name": task.name,
        "start_date": iso(task.start_date),
        "end_date": iso(task.end_date),
        "progress": task.progress or 0,
        "status": task.status,
        "priority": task.priority,
        "task_type": task.task_type,
        "description": task.description,
        "assigned_user_id": task.assigned_user_id,
        "estimated_hours": task.estimated_hours,
        "actual_hours": task.actual_hours,
        "created_at": iso(task.created_at),
        "updated_at": iso(task.updated_at),
        "vegetable": {
            "id": veg.id,
            "name": veg.name,
            "variety": veg.variety_name,
            "plot": veg.plot_name,
        }
        if veg is not None
        else None,
    }


def gantt_bar(task: "GrowingTask") -> dict:
    veg = task.vegetable
    return {
        "id": task.id,
        "name": task.name,
        "start": iso(task.start_date),
        "end": iso(task.end_date),
        "progress": task.progress or 0,
        "status": task.status,
        "priority": task.priority,
        "vegetable": {"id": veg.id, "name": veg.name, "variety": veg.variety_name} if veg is not None else None,
        "description": task.description,
        "workType": task.task_type,
        "color": _color(task.status),
    }


def _base_query(s: "Session", company_id: int):
    from app.fms.modules.growing_tasks.models import GrowingTask
    from app.fms.modules.vegetables.models import Vegetable

    return (
        s.query(GrowingTask)
        .join(Vegetable, GrowingTask.vegetable_id == Vegetable.id)
        .filter(GrowingTask.company_id == company_id)
        .filter(GrowingTask.deleted_at.is_(None))
        .filter(Vegetable.deleted_at.is_(None))
    )


def list_tasks(
    s: "Session",
    company_id: int,
    *,
    vegetable_id: int | None = None,
    status: str = "",
    limit: int = 100,
) -> list["GrowingTask"]:
    from app.fms.modules.growing_tasks.models import GrowingTask

    q = _base_query(s, company_id)
    if vegetable_id:
        q = q.filter(GrowingTask.vegetable_id == vegetable_id)
    if status and status != "all":
        q = q.filter(GrowingTask.status == status)
    return q.order_by(GrowingTask.start_date.asc(), GrowingTask.id.asc()).limit(limit).all()


def gantt_tasks(
    s: "Session",
    company_id: int,
    *,
    vegetable_id: int | None = None,
    status: str = "",
    start_date: date | None = None,
    end_date: date | None = None,
) -> list["GrowingTask"]:
    """Tasks whose [start, end] span overlaps the requested window."""
    from app.fms.modules.growing_tasks.models import GrowingTask

    q = _base_query(s, company_id)
    if vegetable_id:
        q = q.filter(GrowingTask.vegetable_id == vegetable_id)
    if status and status != "all":
        q = q.filter(GrowingTask.status == status)
    if end_date:
        q = q.filter(GrowingTask.start_date <= end_date)
    if start_date:
        q = q.filter(GrowingTask.end_date >= start_date)
    return q.order_by(GrowingTask.start_date.asc(), GrowingTask.id.asc()).all()


def create_task(s: "Session", vegetable: "Vegetable", payload: dict, user: "User") -> "GrowingTask":
    """Create a task under `vegetable`; the company comes from the vegetable."""
    from app.fms.modules.growing_tasks.models import GrowingTask

    errors = validate_task_payload(payload)
    if errors:
        raise ValidationError.from_errors(errors)

    now = datetime.utcnow()
    task = GrowingTask(
        company_id=vegetable.company_id,
        vegetable_id=vegetable.id,
        name=(payload.get("name") or "").strip(),
        start_date=parse_date(payload.get("start_date")),
        end_date=parse_date(payload.get("end_date")),
        priority=(payload.get("priority") or "medium").strip(),
        task_type=(payload.get("task_type") or "other").strip(),
        description=clean_str(payload.get("description")),
        assigned_user_id=parse_int(payload.get("assigned_user_id")),
        estimated_hours=parse_float(payload.get("estimated_hours")),
        status="pending",
        progress=0,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    task.vegetable = vegetable
    s.add(task)
    s.flush()

    record_event(
        s,
        actor=user,
        action="growing_task.create",
        entity_type="GrowingTask",
        entity_id=str(task.id),
        company_id=task.company_id,
        metadata={"name": task.name, "vegetable_id": task.vegetable_id},
    )
    return task


def update_task(s: "Session", task: "GrowingTask", payload: dict, user: "User") -> "GrowingTask":
    errors = validate_task_payload(payload, partial=True)
    if errors:
        raise ValidationError.from_errors(errors)

    changes: dict[str, Any] = {}

    def _set(field: str, value: Any) -> None:
        old = getattr(task, field)
        if value != old:
            changes[field] = {"old": old, "new": value}
            setattr(task, field, value)

    for field in ("name", "status", "priority", "task_type"):
        if field in payload and (payload.get(field) or "").strip():
            _set(field, payload[field].strip())
    if "description" in payload:
        _set("description", clean_str(payload.get("description")))
    if "progress" in payload and payload.get("progress") not in (None, ""):
        _set("progress", clamp_progress(payload.get("progress")))
    for field in ("start_date", "end_date"):
        if field in payload and payload.get(field):
            _set(field, parse_date(payload.get(field)))
    for field in ("estimated_hours", "actual_hours"):
        if field in payload:
            _set(field, parse_float(payload.get(field)))
    if "assigned_user_id" in payload:
        _set("assigned_user_id", parse_int(payload.get("assigned_user_id")))

    if task.end_date < task.start_date:
        raise ValidationError("end_date must be on or after start_date.")
    # completing a task pins its progress
    if task.status == "completed" and task.progress != 100:
        _set("progress", 100)

    task.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="growing_task.edit",
        entity_type="GrowingTask",
        entity_id=str(task.id),
        company_id=task.company_id,
        metadata={"name": task.name, "changes": changes},
    )
    return task


def delete_task(s: "Session", task: "GrowingTask", user: "User") -> None:
    record_event(
        s,
        actor=user,
        action="growing_task.delete",
        entity_type="GrowingTask",
        entity_id=str(task.id),
        company_id=task.company_id,
        metadata={"name": task.name, "vegetable_id": task.vegetable_id},
    )
    s.delete(task)
    logger.info("Growing task deleted id=%s company_id=%s", task.id, task.company_id)


def deletion_check(task: "GrowingTask | None") -> dict:
    if task is None or task.deleted_at is not None:
        return {"can_delete": False, "warnings": ["Task does not exist"]}
    warnings: list[str] = []
    if task.status == "in_progress":
        warnings.append("Task is in progress")
    return {
        "can_delete": True,
        "task_info": {
            "id": task.id,
            "name": task.name,
            "vegetable": task.vegetable.name if task.vegetable else None,
        },
        "warnings": warnings,
    }
