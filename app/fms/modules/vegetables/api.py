from __future__ import annotations

from datetime import date

from flask import Blueprint, current_app, request

from app.fms.db import db_session
from app.fms.errors import NotFound, ValidationError
from app.fms.modules.vegetables.models import Vegetable
from app.fms.modules.vegetables.service import (
    create_vegetable,
    deletion_impact,
    list_vegetables,
    serialize_vegetable,
    soft_delete_vegetable,
    update_vegetable,
)
from app.fms.rbac import require_permission
from app.fms.tenancy import require_company_access, resolve_company_id
from app.fms.utils import current_user, json_ok, pagination_args, parse_int, request_payload

bp = Blueprint("vegetables_api", __name__)


def _load(s, vegetable_id: int | None) -> Vegetable:
    if not vegetable_id:
        raise ValidationError("Vegetable ID is required")
    veg = s.get(Vegetable, vegetable_id)
    if veg is None or veg.deleted_at is not None:
        raise NotFound("Vegetable not found")
    require_company_access(s, veg.company_id)
    return veg


@bp.get("/vegetables")
@require_permission("vegetables.view")
def vegetables_list():
    s = db_session()
    company_id = require_company_access(s, resolve_company_id())
    limit, offset = pagination_args(default_limit=50)

    rows, summary = list_vegetables(
        s,
        company_id,
        search=(request.args.get("search") or "").strip(),
        status=(request.args.get("status") or "").strip(),
        plot_name=(request.args.get("plot_name") or "").strip(),
        limit=limit,
        offset=offset,
    )
    today = date.today()
    return json_ok(
        [serialize_vegetable(v, with_stats=True, today=today) for v in rows],
        pagination={
            "total": summary["total_vegetables"],
            "offset": offset,
            "limit": limit,
            "hasMore": len(rows) == limit,
        },
        summary=summary,
    )


@bp.post("/vegetables")
@require_permission("vegetables.edit")
def vegetables_create():
    s = db_session()
    payload = request_payload()
    require_company_access(s, resolve_company_id(payload))

    veg = create_vegetable(s, payload, current_user())
    s.commit()
    return json_ok(serialize_vegetable(veg), 201, message="Vegetable created successfully")


@bp.get("/vegetables/<int:vegetable_id>")
@require_permission("vegetables.view")
def vegetables_get(vegetable_id: int):
    s = db_session()
    veg = _load(s, vegetable_id)
    return json_ok(serialize_vegetable(veg, with_stats=True))


@bp.put("/vegetables")
@bp.put("/vegetables/<int:vegetable_id>")
@require_permission("vegetables.edit")
def vegetables_update(vegetable_id: int | None = None):
    s = db_session()
    payload = request_payload()
    veg = _load(s, vegetable_id or parse_int(payload.get("id")))

    update_vegetable(s, veg, payload, current_user(), reason=(payload.get("reason") or None))
    s.commit()
    return json_ok(serialize_vegetable(veg), message="Vegetable updated successfully")


@bp.delete("/vegetables")
@bp.delete("/vegetables/<int:vegetable_id>")
@require_permission("vegetables.delete")
def vegetables_delete(vegetable_id: int | None = None):
    s = db_session()
    payload = request.get_json(silent=True) or {}
    veg = _load(s, vegetable_id or parse_int(request.args.get("id")) or parse_int(payload.get("id")))

    reason = (request.args.get("reason") or payload.get("reason") or "").strip() or None
    soft_delete_vegetable(s, veg, current_user(), reason=reason)
    s.commit()
    current_app.logger.info("Vegetable %s deleted via API", veg.id)
    return json_ok(message="Vegetable deleted")


@bp.get("/vegetables/<int:vegetable_id>/deletion-impact")
@require_permission("vegetables.view")
def vegetables_deletion_impact(vegetable_id: int):
    s = db_session()
    veg = _load(s, vegetable_id)
    return json_ok(deletion_impact(s, veg))
