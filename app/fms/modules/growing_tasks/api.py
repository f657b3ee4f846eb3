from __future__ import annotations

from flask import Blueprint, request

from app.fms.db import db_session
from app.fms.errors import NotFound, ValidationError
from app.fms.modules.growing_tasks.models import GrowingTask
from app.fms.modules.growing_tasks.service import (
    create_task,
    delete_task,
    deletion_check,
    gantt_bar,
    gantt_tasks,
    list_tasks,
    serialize_task,
    update_task,
    validate_task_payload,
)
from app.fms.modules.vegetables.models import Vegetable
from app.fms.modules.vegetables.service import get_active_vegetable
from app.fms.rbac import require_permission
from app.fms.tenancy import require_company_access, resolve_company_id
from app.fms.utils import current_user, json_ok, pagination_args, parse_date, parse_int, request_payload

bp = Blueprint("growing_tasks_api", __name__)

_NO_CACHE = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _load(s, task_id: int | None) -> GrowingTask:
    if not task_id:
        raise ValidationError("Task ID is required")
    task = s.get(GrowingTask, task_id)
    if task is None or task.deleted_at is not None:
        raise NotFound("Task not found")
    require_company_access(s, task.company_id)
    return task


@bp.get("/growing-tasks")
@require_permission("tasks.view")
def tasks_list():
    s = db_session()
    company_id = require_company_access(s, resolve_company_id())
    limit, _ = pagination_args(default_limit=100)
    tasks = list_tasks(
        s,
        company_id,
        vegetable_id=parse_int(request.args.get("vegetable_id")),
        status=(request.args.get("status") or "").strip(),
        limit=limit,
    )
    return json_ok([serialize_task(t) for t in tasks])


@bp.post("/growing-tasks")
@require_permission("tasks.edit")
def tasks_create():
    s = db_session()
    payload = request_payload()
    errors = validate_task_payload(payload)
    if errors:
        raise ValidationError.from_errors(errors)
    veg = get_active_vegetable(s, parse_int(payload.get("vegetable_id")))
    if veg is None:
        raise ValidationError("Vegetable not found")
    require_company_access(s, veg.company_id)

    task = create_task(s, veg, payload, current_user())
    s.commit()
    return json_ok(serialize_task(task), 201)


@bp.get("/growing-tasks/<int:task_id>")
@require_permission("tasks.view")
def tasks_deletion_check(task_id: int):
    s = db_session()
    task = s.get(GrowingTask, task_id)
    if task is not None:
        require_company_access(s, task.company_id)
    return json_ok(**deletion_check(task))


@bp.put("/growing-tasks")
@bp.put("/growing-tasks/<int:task_id>")
@require_permission("tasks.edit")
def tasks_update(task_id: int | None = None):
    s = db_session()
    payload = request_payload()
    task = _load(s, task_id or parse_int(payload.get("id")))
    update_task(s, task, payload, current_user())
    s.commit()
    return json_ok(serialize_task(task))


@bp.delete("/growing-tasks")
@bp.delete("/growing-tasks/<int:task_id>")
@require_permission("tasks.edit")
def tasks_delete(task_id: int | None = None):
    s = db_session()
    payload = request.get_json(silent=True) or {}
    task = _load(s, task_id or parse_int(payload.get("id")) or parse_int(request.args.get("id")))
    delete_task(s, task, current_user())
    s.commit()
    resp, status = json_ok(message="Task deleted")
    resp.headers.update(_NO_CACHE)
    return resp, status


@bp.get("/gantt")
@require_permission("tasks.view")
def gantt():
    s = db_session()
    company_id = require_company_access(s, resolve_company_id())
    vegetable_id = parse_int(request.args.get("vegetable_id"))
    tasks = gantt_tasks(
        s,
        company_id,
        vegetable_id=vegetable_id,
        status=(request.args.get("status") or "").strip(),
        start_date=parse_date(request.args.get("start_date")),
        end_date=parse_date(request.args.get("end_date")),
    )
    vegetables = (
        s.query(Vegetable)
        .filter(Vegetable.company_id == company_id)
        .filter(Vegetable.deleted_at.is_(None))
        .order_by(Vegetable.name.asc())
        .all()
    )
    return json_ok(
        {
            "tasks": [gantt_bar(t) for t in tasks],
            "vegetables": [
                {
                    "id": v.id,
                    "name": v.name,
                    "variety_name": v.variety_name,
                    "plot_name": v.plot_name,
                    "status": v.status,
                }
                for v in vegetables
            ],
        }
    )
