from __future__ import annotations

from datetime import date

from flask import Blueprint, abort, flash, redirect, render_template, request, url_for

from app.fms.constants import VEGETABLE_STATUSES
from app.fms.db import db_session
from app.fms.errors import ValidationError
from app.fms.modules.vegetables.models import Vegetable
from app.fms.modules.vegetables.service import (
    create_vegetable,
    deletion_impact,
    list_vegetables,
    soft_delete_vegetable,
    update_vegetable,
    vegetable_stats,
)
from app.fms.rbac import require_permission
from app.fms.tenancy import default_company_id
from app.fms.utils import current_user, pagination_args

bp = Blueprint("vegetables", __name__)

_FORM_FIELDS = (
    "name",
    "variety_name",
    "plot_name",
    "area_size",
    "plant_count",
    "planting_date",
    "expected_harvest_date",
    "status",
    "notes",
)


def _form_payload() -> dict:
    return {k: request.form.get(k) for k in _FORM_FIELDS if k in request.form}


def _get_vegetable_or_404(s, vegetable_id: int, company_id: int) -> Vegetable:
    veg = s.get(Vegetable, vegetable_id)
    if not veg or veg.deleted_at is not None or veg.company_id != company_id:
        abort(404)
    return veg


# ---------- List ----------
@bp.get("/vegetables")
@require_permission("vegetables.view")
def vegetables_list():
    s = db_session()
    company_id = default_company_id(s)
    search = (request.args.get("q") or "").strip()
    status_filter = (request.args.get("status") or "").strip()
    plot_filter = (request.args.get("plot_name") or "").strip()
    limit, offset = pagination_args(default_limit=50)

    vegetables, summary = list_vegetables(
        s, company_id, search=search, status=status_filter, plot_name=plot_filter, limit=limit, offset=offset
    )
    s.commit()
    today = date.today()
    return render_template(
        "admin/vegetables/list.html",
        vegetables=vegetables,
        stats={v.id: vegetable_stats(v, today) for v in vegetables},
        summary=summary,
        search=search,
        status_filter=status_filter,
        plot_filter=plot_filter,
        statuses=VEGETABLE_STATUSES,
        limit=limit,
        offset=offset,
    )


# ---------- New ----------
@bp.get("/vegetables/new")
@require_permission("vegetables.edit")
def vegetables_new_get():
    return render_template("admin/vegetables/new.html", statuses=VEGETABLE_STATUSES)


@bp.post("/vegetables/new")
@require_permission("vegetables.edit")
def vegetables_new_post():
    s = db_session()
    payload = _form_payload()
    payload["company_id"] = default_company_id(s)
    try:
        veg = create_vegetable(s, payload, current_user())
    except ValidationError as e:
        s.rollback()
        for msg in e.details or [e.message]:
            flash(msg, "danger")
        return redirect(url_for("vegetables.vegetables_new_get"))
    s.commit()
    flash("Vegetable created.", "success")
    return redirect(url_for("vegetables.vegetable_detail", vegetable_id=veg.id))


# ---------- Detail ----------
@bp.get("/vegetables/<int:vegetable_id>")
@require_permission("vegetables.view")
def vegetable_detail(vegetable_id: int):
    s = db_session()
    veg = _get_vegetable_or_404(s, vegetable_id, default_company_id(s))
    tasks = sorted((t for t in veg.tasks if t.deleted_at is None), key=lambda t: (t.start_date, t.id))
    reports = sorted(
        (r for r in veg.reports if r.deleted_at is None), key=lambda r: (r.work_date, r.id), reverse=True
    )
    return render_template(
        "admin/vegetables/detail.html",
        vegetable=veg,
        stats=vegetable_stats(veg),
        tasks=tasks,
        reports=reports,
    )


# ---------- Edit ----------
@bp.get("/vegetables/<int:vegetable_id>/edit")
@require_permission("vegetables.edit")
def vegetable_edit_get(vegetable_id: int):
    s = db_session()
    veg = _get_vegetable_or_404(s, vegetable_id, default_company_id(s))
    return render_template("admin/vegetables/edit.html", vegetable=veg, statuses=VEGETABLE_STATUSES)


@bp.post("/vegetables/<int:vegetable_id>/edit")
@require_permission("vegetables.edit")
def vegetable_edit_post(vegetable_id: int):
    s = db_session()
    veg = _get_vegetable_or_404(s, vegetable_id, default_company_id(s))
    reason = (request.form.get("reason") or "").strip() or None
    try:
        update_vegetable(s, veg, _form_payload(), current_user(), reason=reason)
    except ValidationError as e:
        s.rollback()
        for msg in e.details or [e.message]:
            flash(msg, "danger")
        return redirect(url_for("vegetables.vegetable_edit_get", vegetable_id=vegetable_id))
    s.commit()
    flash("Vegetable updated.", "success")
    return redirect(url_for("vegetables.vegetable_detail", vegetable_id=vegetable_id))


# ---------- Delete ----------
@bp.get("/vegetables/<int:vegetable_id>/delete")
@require_permission("vegetables.delete")
def vegetable_delete_get(vegetable_id: int):
    s = db_session()
    veg = _get_vegetable_or_404(s, vegetable_id, default_company_id(s))
    return render_template("admin/vegetables/delete.html", vegetable=veg, impact=deletion_impact(s, veg))


@bp.post("/vegetables/<int:vegetable_id>/delete")
@require_permission("vegetables.delete")
def vegetable_delete_post(vegetable_id: int):
    s = db_session()
    veg = _get_vegetable_or_404(s, vegetable_id, default_company_id(s))
    reason = (request.form.get("reason") or "").strip()
    if not reason:
        flash("Reason is required for deletes.", "danger")
        return redirect(url_for("vegetables.vegetable_delete_get", vegetable_id=vegetable_id))
    soft_delete_vegetable(s, veg, current_user(), reason=reason)
    s.commit()
    flash("Vegetable deleted.", "success")
    return redirect(url_for("vegetables.vegetables_list"))
