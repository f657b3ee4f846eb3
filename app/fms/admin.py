from datetime import date, datetime, time, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for
from sqlalchemy import text

from app.fms.audit import record_event
from app.fms.db import db_session
from app.fms.models import AuditEvent, CompanyMembership, User
from app.fms.modules.growing_tasks.models import GrowingTask
from app.fms.modules.vegetables.models import Vegetable
from app.fms.modules.work_reports.models import WorkReport
from app.fms.rbac import require_permission
from app.fms.tenancy import MEMBERSHIP_ROLES, MEMBERSHIP_STATUSES, active_membership, default_company_id

bp = Blueprint("admin", __name__)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _can_manage_members(s, company_id: int) -> bool:
    m = active_membership(s, g.current_user, company_id)
    return m is not None and m.role in ("owner", "admin")


@bp.get("/")
@require_permission("admin.view")
def index():
    s = db_session()
    company_id = default_company_id(s)
    status = {
        "env": (current_app.config.get("ENV") or "development").strip().lower(),
        "db_connected": False,
        "db_error": None,
        "storage_backend": current_app.config.get("STORAGE_BACKEND") or "local",
    }

    try:
        s.execute(text("SELECT 1"))
        status["db_connected"] = True
    except Exception as e:
        status["db_error"] = str(e)

    counts = {
        "vegetables": s.query(Vegetable)
        .filter(Vegetable.company_id == company_id)
        .filter(Vegetable.deleted_at.is_(None))
        .count(),
        "growing": s.query(Vegetable)
        .filter(Vegetable.company_id == company_id)
        .filter(Vegetable.deleted_at.is_(None))
        .filter(Vegetable.status == "growing")
        .count(),
        "open_tasks": s.query(GrowingTask)
        .filter(GrowingTask.company_id == company_id)
        .filter(GrowingTask.status.in_(("pending", "in_progress")))
        .count(),
        "reports": s.query(WorkReport)
        .filter(WorkReport.company_id == company_id)
        .filter(WorkReport.deleted_at.is_(None))
        .count(),
    }
    recent_reports = (
        s.query(WorkReport)
        .filter(WorkReport.company_id == company_id)
        .filter(WorkReport.deleted_at.is_(None))
        .order_by(WorkReport.work_date.desc(), WorkReport.id.desc())
        .limit(5)
        .all()
    )
    s.commit()
    return render_template(
        "admin/index.html",
        system_status=status,
        counts=counts,
        recent_reports=recent_reports,
        company_id=company_id,
    )


@bp.get("/me")
@require_permission("admin.view")
def me():
    user = getattr(g, "current_user", None)
    role_keys: list[str] = []
    perm_keys: list[str] = []
    if user:
        role_keys = sorted({r.key for r in (user.roles or [])})
        perms = set()
        for r in user.roles or []:
            for p in r.permissions or []:
                perms.add(p.key)
        perm_keys = sorted(perms)
    return render_template(
        "admin/me.html",
        user=user,
        role_keys=role_keys,
        perm_keys=perm_keys,
        memberships=list(user.memberships or []) if user else [],
    )


@bp.post("/me")
@require_permission("admin.view")
def me_update():
    """Update the current user's display name."""
    s = db_session()
    user = g.current_user
    full_name = (request.form.get("full_name") or "").strip()
    if len(full_name) > 255:
        flash("Name is too long.", "danger")
        return redirect(url_for("admin.me"))
    user.full_name = full_name or None
    record_event(
        s,
        actor=user,
        action="user.update_profile",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"full_name": user.full_name},
    )
    s.commit()
    flash("Profile updated.", "success")
    return redirect(url_for("admin.me"))


@bp.get("/audit")
@require_permission("admin.view")
def audit_list():
    """
    Audit trail for the current company (last 200 events) with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    company_id = default_company_id(s)
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        flash("date_from must be YYYY-MM-DD", "danger")
    if (request.args.get("date_to") or "").strip() and not date_to:
        flash("date_to must be YYYY-MM-DD", "danger")

    q = s.query(AuditEvent).filter(AuditEvent.company_id == company_id)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    s.commit()
    return render_template(
        "admin/audit/list.html",
        events=events,
        action=action,
        actor_email=actor_email,
        date_from=(request.args.get("date_from") or "").strip(),
        date_to=(request.args.get("date_to") or "").strip(),
    )


@bp.get("/members")
@require_permission("admin.view")
def members():
    s = db_session()
    company_id = default_company_id(s)
    rows = (
        s.query(CompanyMembership)
        .filter(CompanyMembership.company_id == company_id)
        .order_by(CompanyMembership.created_at.asc(), CompanyMembership.id.asc())
        .all()
    )
    s.commit()
    return render_template(
        "admin/members.html",
        memberships=rows,
        roles=MEMBERSHIP_ROLES,
        statuses=MEMBERSHIP_STATUSES,
        can_manage=_can_manage_members(s, company_id),
        company_id=company_id,
    )


@bp.post("/members")
@require_permission("admin.view")
def members_add():
    s = db_session()
    company_id = default_company_id(s)
    if not _can_manage_members(s, company_id):
        flash("Only company owners and admins can manage members.", "danger")
        return redirect(url_for("admin.members"))

    email = (request.form.get("email") or "").strip().lower()
    role = (request.form.get("role") or "member").strip()
    if role not in MEMBERSHIP_ROLES:
        flash(f"Role must be one of: {', '.join(MEMBERSHIP_ROLES)}", "danger")
        return redirect(url_for("admin.members"))
    user = s.query(User).filter(User.email == email).one_or_none()
    if user is None:
        flash("No user with that email.", "danger")
        return redirect(url_for("admin.members"))

    existing = (
        s.query(CompanyMembership)
        .filter(CompanyMembership.user_id == user.id)
        .filter(CompanyMembership.company_id == company_id)
        .one_or_none()
    )
    if existing is not None:
        flash("User is already a member.", "warning")
        return redirect(url_for("admin.members"))

    m = CompanyMembership(user_id=user.id, company_id=company_id, role=role, status="active")
    s.add(m)
    s.flush()
    record_event(
        s,
        actor=g.current_user,
        action="company.member_add",
        entity_type="CompanyMembership",
        entity_id=str(m.id),
        company_id=company_id,
        metadata={"email": email, "role": role},
    )
    s.commit()
    flash(f"Added {email}.", "success")
    return redirect(url_for("admin.members"))


@bp.post("/members/<int:membership_id>")
@require_permission("admin.view")
def members_update(membership_id: int):
    s = db_session()
    company_id = default_company_id(s)
    m = s.get(CompanyMembership, membership_id)
    if m is None or m.company_id != company_id:
        flash("Membership not found.", "danger")
        return redirect(url_for("admin.members"))
    if not _can_manage_members(s, company_id):
        flash("Only company owners and admins can manage members.", "danger")
        return redirect(url_for("admin.members"))

    role = (request.form.get("role") or m.role).strip()
    status = (request.form.get("status") or m.status).strip()
    if role not in MEMBERSHIP_ROLES or status not in MEMBERSHIP_STATUSES:
        flash("Invalid role or status.", "danger")
        return redirect(url_for("admin.members"))
    if m.user_id == g.current_user.id and (role not in ("owner", "admin") or status != "active"):
        flash("You cannot remove your own management access.", "danger")
        return redirect(url_for("admin.members"))

    before = {"role": m.role, "status": m.status}
    m.role = role
    m.status = status
    record_event(
        s,
        actor=g.current_user,
        action="company.member_update",
        entity_type="CompanyMembership",
        entity_id=str(m.id),
        company_id=company_id,
        metadata={"before": before, "after": {"role": role, "status": status}},
    )
    s.commit()
    flash("Membership updated.", "success")
    return redirect(url_for("admin.members"))
