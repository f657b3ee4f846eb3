from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.fms.audit import record_event
from app.fms.constants import VEGETABLE_STATUSES
from app.fms.errors import ValidationError
from app.fms.utils import clean_str, iso, parse_date, parse_float, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fms.models import User
    from app.fms.modules.vegetables.models import Vegetable
    from app.fms.storage import Storage

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("name", "variety_name", "plot_name", "planting_date", "company_id")
PLOT_IN_USE_MESSAGE = "Plot name already in use for active cultivation"


def _area_from_payload(payload: dict) -> float | None:
    raw = payload.get("area_size")
    if raw in (None, ""):
        raw = payload.get("plot_size")
    return parse_float(raw)


def validate_vegetable_payload(payload: dict, *, partial: bool = False) -> list[str]:
    """Validate vegetable create/update payload. Returns list of errors."""
    errors: list[str] = []
    if not partial:
        missing = [f for f in REQUIRED_FIELDS if not str(payload.get(f) or "").strip()]
        if _area_from_payload(payload) is None:
            missing.append("area_size")
        if missing:
            errors.append(f"Missing required fields: {', '.join(missing)}")

    status = (payload.get("status") or "").strip()
    if status and status not in VEGETABLE_STATUSES:
        errors.append(f"Invalid status. Must be one of: {', '.join(VEGETABLE_STATUSES)}")

    area = _area_from_payload(payload)
    if area is not None and area < 0:
        errors.append("area_size must be zero or positive.")

    try:
        planting = parse_date(payload.get("planting_date"))
        harvest = parse_date(payload.get("expected_harvest_date") or payload.get("expected_harvest_start"))
    except ValidationError as e:
        errors.append(e.message)
    else:
        if planting and harvest and harvest <= planting:
            errors.append("Expected harvest date must be after planting date.")
    return errors


def polygon_from_feature(farm_area_data: Any) -> tuple[list | None, float | None, float | None]:
    """
    Pull the outer ring and bbox centre out of a drawn GeoJSON feature.

    Accepts a Feature, a bare Polygon geometry or the editor's wrapped
    {"geometry": Feature} form. Coordinates are [lng, lat].
    """
    if not isinstance(farm_area_data, dict):
        return None, None, None
    geometry = farm_area_data.get("geometry") or farm_area_data
    if isinstance(geometry, dict) and isinstance(geometry.get("geometry"), dict):
        geometry = geometry["geometry"]
    coords = geometry.get("coordinates") if isinstance(geometry, dict) else None
    if not coords or not isinstance(coords, list) or not coords[0]:
        return None, None, None
    ring = coords[0]
    try:
        lngs = [float(pt[0]) for pt in ring]
        lats = [float(pt[1]) for pt in ring]
    except (TypeError, ValueError, IndexError):
        return None, None, None
    center_lat = (min(lats) + max(lats)) / 2
    center_lng = (min(lngs) + max(lngs)) / 2
    return ring, center_lat, center_lng


def active_plot_conflict(
    s: "Session", company_id: int, plot_name: str, *, exclude_id: int | None = None
) -> "Vegetable | None":
    """Another non-completed, non-deleted vegetable on the same plot, if any."""
    from app.fms.modules.vegetables.models import Vegetable

    q = (
        s.query(Vegetable)
        .filter(Vegetable.company_id == company_id)
        .filter(Vegetable.plot_name == plot_name)
        .filter(Vegetable.status != "completed")
        .filter(Vegetable.deleted_at.is_(None))
    )
    if exclude_id is not None:
        q = q.filter(Vegetable.id != exclude_id)
    return q.first()


def get_active_vegetable(s: "Session", vegetable_id: int | None, company_id: int | None = None) -> "Vegetable | None":
    from app.fms.modules.vegetables.models import Vegetable

    if not vegetable_id:
        return None
    veg = s.get(Vegetable, vegetable_id)
    if veg is None or veg.deleted_at is not None:
        return None
    if company_id is not None and veg.company_id != company_id:
        return None
    return veg


def _filtered_query(s: "Session", company_id: int, *, search: str = "", status: str = "", plot_name: str = ""):
    from app.fms.modules.vegetables.models import Vegetable

    q = s.query(Vegetable).filter(Vegetable.company_id == company_id).filter(Vegetable.deleted_at.is_(None))
    if search:
        like = f"%{search}%"
        q = q.filter(
            or_(
                Vegetable.name.ilike(like),
                Vegetable.variety_name.ilike(like),
                Vegetable.plot_name.ilike(like),
            )
        )
    if status and status != "all":
        q = q.filter(Vegetable.status == status)
    if plot_name:
        q = q.filter(Vegetable.plot_name.ilike(f"%{plot_name}%"))
    return q


def list_vegetables(
    s: "Session",
    company_id: int,
    *,
    search: str = "",
    status: str = "",
    plot_name: str = "",
    limit: int = 50,
    offset: int = 0,
) -> tuple[list["Vegetable"], dict]:
    """Page of vegetables (newest first) plus summary over the whole filtered set."""
    from app.fms.modules.vegetables.models import Vegetable

    q = _filtered_query(s, company_id, search=search, status=status, plot_name=plot_name)
    rows = q.order_by(Vegetable.created_at.desc(), Vegetable.id.desc()).offset(offset).limit(limit).all()

    total = q.count()
    total_area = q.with_entities(func.coalesce(func.sum(Vegetable.area_size), 0)).scalar() or 0
    distribution = {st: 0 for st in VEGETABLE_STATUSES}
    for st, n in q.with_entities(Vegetable.status, func.count(Vegetable.id)).group_by(Vegetable.status).all():
        distribution[st] = n

    summary = {
        "total_vegetables": total,
        "total_plot_size": float(total_area),
        "status_distribution": distribution,
    }
    return rows, summary


def vegetable_stats(veg: "Vegetable", today: date | None = None) -> dict:
    today = today or date.today()
    tasks = [t for t in veg.tasks if t.deleted_at is None]
    reports = [r for r in veg.reports if r.deleted_at is None]
    days_since_planting = max(0, (today - veg.planting_date).days) if veg.planting_date else 0
    days_to_harvest = 0
    if veg.expected_harvest_start:
        days_to_harvest = max(0, (veg.expected_harvest_start - today).days)
    return {
        "total_tasks": len(tasks),
        "completed_tasks": sum(1 for t in tasks if t.status == "completed"),
        "reports_count": len(reports),
        "days_since_planting": days_since_planting,
        "estimated_days_to_harvest": days_to_harvest,
    }


def serialize_vegetable(veg: "Vegetable", *, with_stats: bool = False, today: date | None = None) -> dict:
    data = {
        "id": veg.id,
        "company_id": veg.company_id,
        "name": veg.name,
        "variety_name": veg.variety_name,
        "plot_name": veg.plot_name,
        "area_size": veg.area_size,
        "plant_count": veg.plant_count,
        "planting_date": iso(veg.planting_date),
        "expected_harvest_start": iso(veg.expected_harvest_start),
        "expected_harvest_end": iso(veg.expected_harvest_end),
        "actual_harvest_start": iso(veg.actual_harvest_start),
        "actual_harvest_end": iso(veg.actual_harvest_end),
        "status": veg.status,
        "notes": veg.notes,
        "spatial_data": veg.spatial_data,
        "polygon_coordinates": veg.polygon_coordinates,
        "plot_center_lat": veg.plot_center_lat,
        "plot_center_lng": veg.plot_center_lng,
        "polygon_color": veg.polygon_color,
        "farm_plot_id": veg.farm_plot_id,
        "custom_fields": veg.custom_fields or {},
        "created_at": iso(veg.created_at),
        "updated_at": iso(veg.updated_at),
    }
    if with_stats:
        data["stats"] = vegetable_stats(veg, today)
    return data


def create_vegetable(s: "Session", payload: dict, user: "User") -> "Vegetable":
    """Create a cultivation record. Caller has already checked company access."""
    from app.fms.modules.vegetables.models import Vegetable

    errors = validate_vegetable_payload(payload)
    if errors:
        raise ValidationError.from_errors(errors)

    company_id = parse_int(payload.get("company_id"))
    plot_name = (payload.get("plot_name") or "").strip()
    if active_plot_conflict(s, company_id, plot_name) is not None:
        raise ValidationError(PLOT_IN_USE_MESSAGE)

    harvest = parse_date(payload.get("expected_harvest_date") or payload.get("expected_harvest_start"))
    harvest_end = parse_date(payload.get("expected_harvest_end")) or harvest
    ring, center_lat, center_lng = polygon_from_feature(payload.get("farm_area_data"))

    now = datetime.utcnow()
    veg = Vegetable(
        company_id=company_id,
        name=(payload.get("name") or "").strip(),
        variety_name=(payload.get("variety_name") or "").strip(),
        plot_name=plot_name,
        area_size=_area_from_payload(payload) or 0,
        plant_count=parse_int(payload.get("plant_count")),
        planting_date=parse_date(payload.get("planting_date")),
        expected_harvest_start=harvest,
        expected_harvest_end=harvest_end,
        status=(payload.get("status") or "planning").strip(),
        notes=clean_str(payload.get("notes")),
        spatial_data=payload.get("farm_area_data") if ring else None,
        polygon_coordinates=ring,
        plot_center_lat=center_lat,
        plot_center_lng=center_lng,
        polygon_color=clean_str(payload.get("polygon_color")) or "#22c55e",
        farm_plot_id=parse_int(payload.get("farm_plot_id")),
        custom_fields=payload.get("custom_fields") if isinstance(payload.get("custom_fields"), dict) else {},
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
        updated_by_user_id=user.id,
    )
    s.add(veg)
    s.flush()

    record_event(
        s,
        actor=user,
        action="vegetable.create",
        entity_type="Vegetable",
        entity_id=str(veg.id),
        company_id=veg.company_id,
        metadata={"name": veg.name, "plot_name": veg.plot_name, "status": veg.status},
    )
    logger.info("Vegetable created id=%s company_id=%s plot=%s", veg.id, veg.company_id, veg.plot_name)
    return veg


def _set(veg: "Vegetable", field: str, value: Any, changes: dict) -> None:
    old = getattr(veg, field)
    if value != old:
        changes[field] = {"old": old, "new": value}
        setattr(veg, field, value)


def update_vegetable(s: "Session", veg: "Vegetable", payload: dict, user: "User", reason: str | None = None) -> "Vegetable":
    """Partial update: only keys present in payload are applied."""
    errors = validate_vegetable_payload(payload, partial=True)
    if errors:
        raise ValidationError.from_errors(errors)

    new_status = (payload.get("status") or "").strip() or veg.status
    new_plot = (payload.get("plot_name") or "").strip() or veg.plot_name
    # a completed crop coming back into cultivation must also claim its plot
    if new_status != "completed" and (new_status != veg.status or new_plot != veg.plot_name):
        if active_plot_conflict(s, veg.company_id, new_plot, exclude_id=veg.id) is not None:
            raise ValidationError(PLOT_IN_USE_MESSAGE)

    changes: dict[str, Any] = {}
    for field in ("name", "variety_name", "status"):
        if field in payload and (payload.get(field) or "").strip():
            _set(veg, field, payload[field].strip(), changes)
    _set(veg, "plot_name", new_plot, changes)

    if "area_size" in payload or "plot_size" in payload:
        area = _area_from_payload(payload)
        if area is not None:
            _set(veg, "area_size", area, changes)
    if "plant_count" in payload:
        _set(veg, "plant_count", parse_int(payload.get("plant_count")), changes)
    if "notes" in payload:
        _set(veg, "notes", clean_str(payload.get("notes")), changes)
    if "polygon_color" in payload and clean_str(payload.get("polygon_color")):
        _set(veg, "polygon_color", clean_str(payload.get("polygon_color")), changes)

    for field in ("planting_date", "actual_harvest_start", "actual_harvest_end", "expected_harvest_end"):
        if field in payload:
            value = parse_date(payload.get(field))
            if value is not None or field != "planting_date":
                _set(veg, field, value, changes)
    if "expected_harvest_date" in payload or "expected_harvest_start" in payload:
        harvest = parse_date(payload.get("expected_harvest_date") or payload.get("expected_harvest_start"))
        _set(veg, "expected_harvest_start", harvest, changes)
        if "expected_harvest_end" not in payload:
            _set(veg, "expected_harvest_end", harvest, changes)

    if veg.expected_harvest_start and veg.planting_date and veg.expected_harvest_start <= veg.planting_date:
        raise ValidationError("Expected harvest date must be after planting date.")

    if "farm_area_data" in payload:
        ring, center_lat, center_lng = polygon_from_feature(payload.get("farm_area_data"))
        if ring:
            veg.spatial_data = payload.get("farm_area_data")
            veg.polygon_coordinates = ring
            veg.plot_center_lat = center_lat
            veg.plot_center_lng = center_lng
            changes["polygon"] = {"old": None, "new": "updated"}
    if isinstance(payload.get("custom_fields"), dict):
        veg.custom_fields = payload["custom_fields"]
        changes["custom_fields"] = {"old": None, "new": "updated"}

    veg.updated_at = datetime.utcnow()
    veg.updated_by_user_id = user.id

    record_event(
        s,
        actor=user,
        action="vegetable.edit",
        entity_type="Vegetable",
        entity_id=str(veg.id),
        company_id=veg.company_id,
        reason=reason,
        metadata={"name": veg.name, "changes": changes},
    )
    return veg


def soft_delete_vegetable(s: "Session", veg: "Vegetable", user: "User", reason: str | None = None) -> None:
    """Hide the vegetable everywhere; the row is purged later by the cleanup script."""
    now = datetime.utcnow()
    veg.deleted_at = now
    veg.deleted_by_user_id = user.id
    veg.updated_at = now

    record_event(
        s,
        actor=user,
        action="vegetable.delete",
        entity_type="Vegetable",
        entity_id=str(veg.id),
        company_id=veg.company_id,
        reason=reason,
        metadata={"name": veg.name, "plot_name": veg.plot_name},
    )
    logger.info("Vegetable soft-deleted id=%s company_id=%s", veg.id, veg.company_id)


def deletion_impact(s: "Session", veg: "Vegetable", today: date | None = None) -> dict:
    """What would be lost by deleting this vegetable, and safer alternatives."""
    from app.fms.modules.photos.models import Photo

    today = today or date.today()
    tasks = [t for t in veg.tasks if t.deleted_at is None]
    reports = [r for r in veg.reports if r.deleted_at is None]

    tasks_by_status: dict[str, int] = {}
    for t in tasks:
        tasks_by_status[t.status] = tasks_by_status.get(t.status, 0) + 1
    critical = [
        t for t in tasks if t.status == "in_progress" or (t.priority == "high" and t.status == "pending")
    ]

    reports_by_type: dict[str, int] = {}
    for r in reports:
        reports_by_type[r.work_type] = reports_by_type.get(r.work_type, 0) + 1
    harvests = [r for r in reports if r.work_type == "harvesting"]
    harvest_amount = sum(r.harvest_amount or 0 for r in harvests)
    harvest_revenue = sum((r.harvest_amount or 0) * (r.expected_price or 0) for r in harvests)
    last_harvest = max((r.work_date for r in harvests), default=None)

    photo_count, photo_bytes = (
        s.query(func.count(Photo.id), func.coalesce(func.sum(Photo.size_bytes), 0))
        .filter(Photo.vegetable_id == veg.id)
        .one()
    )
    storage_mb = round((photo_bytes or 0) / (1024 * 1024), 2)

    warnings: list[str] = []
    alternatives: list[str] = []
    risk = "low"
    if critical:
        warnings.append(f"{len(critical)} in-progress or high-priority tasks will be lost")
        risk = "high"
    if harvests:
        warnings.append(f"{len(harvests)} harvest records (revenue ¥{harvest_revenue:,.0f}) will be lost")
        if risk != "high":
            risk = "medium"
    if tasks_by_status.get("completed", 0) > 5:
        warnings.append(f"History of {tasks_by_status['completed']} completed tasks will be lost")
    if photo_count > 10:
        warnings.append(f"{photo_count} photos ({storage_mb:.1f}MB) will be deleted")

    if veg.status != "completed":
        alternatives.append("Mark the vegetable as completed and keep it")
    if critical:
        alternatives.append("Move the critical tasks to another vegetable")
    if harvests:
        alternatives.append("Export the harvest data to CSV before deleting")
    alternatives.append("Take a database backup first")

    return {
        "vegetable": {
            "id": veg.id,
            "name": veg.name,
            "variety_name": veg.variety_name,
            "plot_name": veg.plot_name,
            "planting_date": iso(veg.planting_date),
            "area_size": veg.area_size,
            "plant_count": veg.plant_count,
            "growth_period_days": (today - veg.planting_date).days if veg.planting_date else 0,
            "status": veg.status,
        },
        "relatedData": {
            "growingTasks": {
                "total": len(tasks),
                "byStatus": tasks_by_status,
                "criticalTasks": [
                    {"id": t.id, "name": t.name, "status": t.status, "priority": t.priority} for t in critical
                ],
            },
            "workReports": {
                "total": len(reports),
                "byType": reports_by_type,
                "harvestData": {
                    "totalAmount": harvest_amount,
                    "totalRevenue": harvest_revenue,
                    "lastHarvestDate": iso(last_harvest),
                },
            },
            "photos": {"total": photo_count, "storageSize": storage_mb},
        },
        "businessImpact": {
            "dataLossWarning": warnings,
            "alternativeActions": alternatives,
            "riskLevel": risk,
        },
    }


def purge_deleted_vegetables(
    s: "Session",
    *,
    storage: "Storage | None" = None,
    older_than_days: int = 180,
    now: datetime | None = None,
) -> int:
    """Hard-delete vegetables soft-deleted before the cutoff (with their photos). Returns the number purged."""
    from app.fms.modules.photos.models import Photo
    from app.fms.modules.vegetables.models import Vegetable
    from app.fms.storage import StorageError

    cutoff = (now or datetime.utcnow()) - timedelta(days=older_than_days)
    expired = (
        s.query(Vegetable)
        .filter(Vegetable.deleted_at.isnot(None))
        .filter(Vegetable.deleted_at < cutoff)
        .all()
    )
    for veg in expired:
        for photo in s.query(Photo).filter(Photo.vegetable_id == veg.id).all():
            if storage is not None:
                try:
                    storage.delete(photo.storage_key)
                except StorageError as e:
                    logger.warning("Photo object delete failed key=%s: %s", photo.storage_key, e)
            s.delete(photo)
        for r in veg.reports:
            r.vegetable_id = None
        s.delete(veg)
        record_event(
            s,
            actor=None,
            action="vegetable.purge",
            entity_type="Vegetable",
            entity_id=str(veg.id),
            company_id=veg.company_id,
            metadata={"name": veg.name, "deleted_at": iso(veg.deleted_at)},
        )
    if expired:
        logger.info("Purged %s soft-deleted vegetables (cutoff=%s)", len(expired), cutoff.isoformat())
    return len(expired)
