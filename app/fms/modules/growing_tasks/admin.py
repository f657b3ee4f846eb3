from __future__ import annotations

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.fms.constants import TASK_PRIORITIES, TASK_STATUSES, WORK_TYPE_LABELS
from app.fms.db import db_session
from app.fms.errors import ValidationError
from app.fms.modules.growing_tasks.models import GrowingTask
from app.fms.modules.growing_tasks.service import create_task, delete_task, list_tasks, update_task
from app.fms.modules.vegetables.models import Vegetable
from app.fms.modules.vegetables.service import get_active_vegetable
from app.fms.rbac import require_permission
from app.fms.tenancy import default_company_id
from app.fms.utils import current_user, parse_int

bp = Blueprint("growing_tasks", __name__)


@bp.get("/tasks")
@require_permission("tasks.view")
def tasks_list():
    s = db_session()
    company_id = default_company_id(s)
    vegetable_id = parse_int(request.args.get("vegetable_id"))
    status_filter = (request.args.get("status") or "").strip()
    tasks = list_tasks(s, company_id, vegetable_id=vegetable_id, status=status_filter, limit=500)
    vegetables = (
        s.query(Vegetable)
        .filter(Vegetable.company_id == company_id)
        .filter(Vegetable.deleted_at.is_(None))
        .order_by(Vegetable.name.asc())
        .all()
    )
    return render_template(
        "admin/tasks/list.html",
        tasks=tasks,
        vegetables=vegetables,
        vegetable_id=vegetable_id,
        status_filter=status_filter,
        statuses=TASK_STATUSES,
        priorities=TASK_PRIORITIES,
        work_types=WORK_TYPE_LABELS,
    )


@bp.post("/tasks/new")
@require_permission("tasks.edit")
def tasks_new_post():
    s = db_session()
    company_id = default_company_id(s)
    payload = request.form.to_dict()
    veg = get_active_vegetable(s, parse_int(payload.get("vegetable_id")), company_id)
    if veg is None:
        flash("Vegetable not found.", "danger")
        return redirect(url_for("growing_tasks.tasks_list"))
    try:
        create_task(s, veg, payload, current_user())
    except ValidationError as e:
        s.rollback()
        for msg in e.details or [e.message]:
            flash(msg, "danger")
        return redirect(url_for("growing_tasks.tasks_list"))
    s.commit()
    flash("Task created.", "success")
    return redirect(url_for("growing_tasks.tasks_list", vegetable_id=veg.id))


@bp.post("/tasks/<int:task_id>/status")
@require_permission("tasks.edit")
def task_status_post(task_id: int):
    s = db_session()
    task = s.get(GrowingTask, task_id)
    if not task or task.deleted_at is not None or task.company_id != default_company_id(s):
        abort(404)
    payload = {k: request.form.get(k) for k in ("status", "progress") if request.form.get(k)}
    try:
        update_task(s, task, payload, current_user())
    except ValidationError as e:
        s.rollback()
        flash(e.message, "danger")
        return redirect(url_for("growing_tasks.tasks_list"))
    s.commit()
    flash("Task updated.", "success")
    referrer = request.referrer
    if referrer and referrer.startswith(request.host_url):
        return redirect(referrer)
    return redirect(url_for("growing_tasks.tasks_list"))


@bp.post("/tasks/<int:task_id>/delete")
@require_permission("tasks.edit")
def task_delete_post(task_id: int):
    s = db_session()
    task = s.get(GrowingTask, task_id)
    if not task or task.company_id != default_company_id(s):
        abort(404)
    delete_task(s, task, current_user())
    s.commit()
    flash("Task deleted.", "success")
    return redirect(url_for("growing_tasks.tasks_list"))
