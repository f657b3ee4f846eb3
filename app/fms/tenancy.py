"""
Company (tenant) scoping.

Every farm record carries a company_id. API handlers resolve the company from the
request and check that the current user holds an active membership before touching
any rows.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from flask import current_app, g, request
from sqlalchemy.orm import Session

from app.fms.audit import record_event
from app.fms.errors import AccessDenied, ValidationError
from app.fms.models import Company, CompanyMembership, User
from app.fms.utils import parse_int

logger = logging.getLogger(__name__)

MEMBERSHIP_ROLES = ("owner", "admin", "member", "viewer")
MEMBERSHIP_STATUSES = ("active", "invited", "suspended")


def resolve_company_id(payload: dict[str, Any] | None = None) -> int | None:
    """company_id from the query string, then the JSON/form payload."""
    raw = request.args.get("company_id")
    if not raw and payload:
        raw = payload.get("company_id")
    if not raw and request.form:
        raw = request.form.get("company_id")
    return parse_int(raw)


def active_membership(s: Session, user: User, company_id: int) -> CompanyMembership | None:
    return (
        s.query(CompanyMembership)
        .filter(CompanyMembership.user_id == user.id)
        .filter(CompanyMembership.company_id == company_id)
        .filter(CompanyMembership.status == "active")
        .one_or_none()
    )


def user_company_ids(s: Session, user: User) -> list[int]:
    rows = (
        s.query(CompanyMembership.company_id)
        .filter(CompanyMembership.user_id == user.id)
        .filter(CompanyMembership.status == "active")
        .order_by(CompanyMembership.created_at.asc(), CompanyMembership.id.asc())
        .all()
    )
    return [r[0] for r in rows]


def require_company_access(s: Session, company_id: int | None) -> int:
    """
    Return company_id when the current user may act on it.
    Raises ValidationError (400) when missing and AccessDenied (403) without an active membership.
    """
    if not company_id:
        raise ValidationError("company_id is required")
    user: User | None = getattr(g, "current_user", None)
    if user is None or active_membership(s, user, company_id) is None:
        logger.warning(
            "Company access denied: user=%s company_id=%s request_id=%s",
            getattr(user, "id", None),
            company_id,
            getattr(g, "request_id", None),
        )
        raise AccessDenied("Access denied to this company")
    return company_id


def resolve_user_company(s: Session, user: User) -> Company:
    """
    Company the user works in: first active membership, otherwise attach the user to
    the first active company (or create a default one) as owner.
    """
    ids = user_company_ids(s, user)
    if ids:
        company = s.get(Company, ids[0])
        if company is not None:
            return company

    company = s.query(Company).filter(Company.is_active.is_(True)).order_by(Company.id.asc()).first()
    if company is None:
        now = datetime.utcnow()
        company = Company(
            name=current_app.config.get("DEFAULT_COMPANY_NAME") or "My Farm",
            contact_email=user.email,
            created_at=now,
            updated_at=now,
        )
        s.add(company)
        s.flush()
        record_event(
            s,
            actor=user,
            action="company.create_default",
            entity_type="Company",
            entity_id=str(company.id),
            company_id=company.id,
            metadata={"name": company.name},
        )

    existing = (
        s.query(CompanyMembership)
        .filter(CompanyMembership.user_id == user.id)
        .filter(CompanyMembership.company_id == company.id)
        .one_or_none()
    )
    if existing is None:
        s.add(CompanyMembership(user_id=user.id, company_id=company.id, role="owner", status="active"))
    else:
        existing.status = "active"
    s.flush()
    logger.info("Attached user %s to company %s", user.id, company.id)
    return company


def default_company_id(s: Session) -> int | None:
    """Company used by HTML pages: ?company_id= when allowed, else the user's first company."""
    user: User | None = getattr(g, "current_user", None)
    if user is None:
        return None
    requested = parse_int(request.args.get("company_id"))
    if requested and active_membership(s, user, requested) is not None:
        return requested
    return resolve_user_company(s, user).id
