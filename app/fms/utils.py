from __future__ import annotations

from datetime import date, datetime
from typing import Any

from flask import g, jsonify, request

from app.fms.errors import ValidationError
from app.fms.models import User


def current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def parse_date(s: Any) -> date | None:
    """Parse a YYYY-MM-DD string (a full ISO timestamp is accepted and truncated)."""
    if s is None:
        return None
    if isinstance(s, datetime):
        return s.date()
    if isinstance(s, date):
        return s
    s = str(s).strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError as e:
        raise ValidationError(f"Invalid date: {s}") from e


def parse_int(value: Any, default: int | None = None) -> int | None:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_float(value: Any, default: float | None = None) -> float | None:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


def clean_str(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip()
    return v or None


def iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def request_payload() -> dict:
    """JSON body for API calls, form fields for HTML posts."""
    if request.is_json:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON body")
        return data
    return request.form.to_dict()


def pagination_args(default_limit: int = 50, max_limit: int = 500) -> tuple[int, int]:
    limit = parse_int(request.args.get("limit"), default_limit) or default_limit
    offset = parse_int(request.args.get("offset"), 0) or 0
    return max(1, min(limit, max_limit)), max(0, offset)


def json_ok(data: Any = None, status: int = 200, **extra: Any):
    """Standard success envelope for /api handlers: {"success": true, "data": ...}."""
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    body.update(extra)
    return jsonify(body), status
