from __future__ import annotations

import hashlib
import logging
from datetime import date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError
from werkzeug.utils import secure_filename

from app.fms.audit import record_event
from app.fms.constants import PHOTO_ALLOWED_CONTENT_TYPES, PHOTO_MAX_BYTES
from app.fms.errors import ValidationError
from app.fms.storage import StorageError
from app.fms.utils import clean_str, iso, parse_bool, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fms.models import User
    from app.fms.modules.photos.models import Photo
    from app.fms.modules.vegetables.models import Vegetable
    from app.fms.storage import Storage

logger = logging.getLogger(__name__)


def file_digest_and_size(data: bytes) -> tuple[str, int]:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest(), len(data)


def parse_tags(raw: Any) -> list[str]:
    """Tags from a list or a comma-separated string; blanks dropped, order kept."""
    if raw is None or raw == "":
        return []
    items = raw if isinstance(raw, (list, tuple)) else str(raw).split(",")
    out: list[str] = []
    for item in items:
        tag = str(item).strip()
        if tag and tag not in out:
            out.append(tag)
    return out


def validate_photo_file(filename: str | None, content_type: str | None, size: int, *, max_bytes: int = PHOTO_MAX_BYTES) -> list[str]:
    errors: list[str] = []
    if not filename:
        errors.append("File is required")
    if size <= 0:
        errors.append("File is empty")
    elif size > max_bytes:
        errors.append(f"File size exceeds {max_bytes // (1024 * 1024)}MB limit")
    if (content_type or "").lower() not in PHOTO_ALLOWED_CONTENT_TYPES:
        errors.append("Only JPEG, PNG and WebP images are allowed")
    return errors


def display_filename(filename: str | None) -> str:
    """Basename as the user named it; non-ASCII names are kept."""
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    return name[:255] or "photo.jpg"


def build_photo_storage_key(company_id: int, vegetable_id: int, filename: str, *, now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    stem, dot, ext = display_filename(filename).rpartition(".")
    if not dot:
        stem, ext = ext, ""
    safe_stem = secure_filename(stem) or "photo"
    safe_ext = secure_filename(ext).lower()
    safe = f"{safe_stem}.{safe_ext}" if safe_ext else safe_stem
    stamp = int(now.timestamp() * 1000)
    return f"photos/{company_id}/{vegetable_id}/{stamp}_{safe}"


def photo_key_prefix(company_id: int) -> str:
    return f"photos/{company_id}/"


def validate_storage_key(storage_key: str, company_id: int) -> list[str]:
    """Registered objects must live under the owning company's prefix."""
    if ".." in storage_key.split("/") or not storage_key.startswith(photo_key_prefix(company_id)):
        return [f"storage_path must be under {photo_key_prefix(company_id)}"]
    return []


def resolve_work_report_id(s: "Session", raw: Any, company_id: int) -> int | None:
    """Optional work report link; the report must belong to the same company."""
    from app.fms.modules.work_reports.models import WorkReport

    report_id = parse_int(raw)
    if not report_id:
        return None
    report = s.get(WorkReport, report_id)
    if report is None or report.deleted_at is not None or report.company_id != company_id:
        raise ValidationError("Work report not found")
    return report.id


def photo_url(photo: "Photo", storage: "Storage | None") -> str:
    url = storage.public_url(photo.storage_key) if storage is not None else None
    return url or f"/api/photos/{photo.id}/file"


def serialize_photo(photo: "Photo", storage: "Storage | None" = None) -> dict:
    veg = photo.vegetable
    return {
        "id": photo.id,
        "company_id": photo.company_id,
        "vegetable_id": photo.vegetable_id,
        "work_report_id": photo.work_report_id,
        "storage_path": photo.storage_key,
        "original_filename": photo.original_filename,
        "file_size": photo.size_bytes,
        "mime_type": photo.content_type,
        "sha256": photo.sha256,
        "taken_at": iso(photo.taken_at),
        "description": photo.description,
        "tags": photo.tags or [],
        "is_primary": photo.is_primary,
        "created_at": iso(photo.created_at),
        "url": photo_url(photo, storage),
        "vegetable": {"id": veg.id, "name": veg.name, "variety_name": veg.variety_name, "plot_name": veg.plot_name}
        if veg is not None
        else None,
    }


def _parse_taken_at(raw: Any) -> datetime:
    if not raw:
        return datetime.utcnow()
    if isinstance(raw, datetime):
        return raw
    try:
        return datetime.fromisoformat(str(raw).strip().replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError as e:
        raise ValidationError(f"Invalid taken_at: {raw}") from e


def _clear_primary(s: "Session", vegetable_id: int, keep_id: int | None = None) -> None:
    from app.fms.modules.photos.models import Photo

    q = s.query(Photo).filter(Photo.vegetable_id == vegetable_id).filter(Photo.is_primary.is_(True))
    if keep_id is not None:
        q = q.filter(Photo.id != keep_id)
    for other in q.all():
        other.is_primary = False


def upload_photo(
    s: "Session",
    storage: "Storage",
    *,
    vegetable: "Vegetable",
    file_bytes: bytes,
    filename: str,
    content_type: str,
    user: "User",
    description: str | None = None,
    tags: Any = None,
    work_report_id: int | None = None,
    taken_at: Any = None,
    is_primary: bool = False,
    max_bytes: int = PHOTO_MAX_BYTES,
) -> "Photo":
    """
    Store the image bytes, then insert the metadata row.
    If the insert fails the stored object is removed again before the error propagates.
    """
    from app.fms.modules.photos.models import Photo

    errors = validate_photo_file(filename, content_type, len(file_bytes), max_bytes=max_bytes)
    if errors:
        raise ValidationError.from_errors(errors)

    work_report_id = resolve_work_report_id(s, work_report_id, vegetable.company_id)
    sha256, size_bytes = file_digest_and_size(file_bytes)
    storage_key = build_photo_storage_key(vegetable.company_id, vegetable.id, filename)
    storage.put_bytes(storage_key, file_bytes, content_type=content_type)

    try:
        if is_primary:
            _clear_primary(s, vegetable.id)
        photo = Photo(
            company_id=vegetable.company_id,
            vegetable_id=vegetable.id,
            work_report_id=work_report_id,
            storage_key=storage_key,
            original_filename=display_filename(filename),
            content_type=content_type.lower(),
            size_bytes=size_bytes,
            sha256=sha256,
            taken_at=_parse_taken_at(taken_at),
            description=clean_str(description),
            tags=parse_tags(tags),
            is_primary=bool(is_primary),
            created_by_user_id=user.id,
        )
        s.add(photo)
        s.flush()
    except (SQLAlchemyError, ValidationError):
        try:
            storage.delete(storage_key)
        except StorageError as cleanup_error:
            logger.warning("Orphaned photo object key=%s: %s", storage_key, cleanup_error)
        raise

    record_event(
        s,
        actor=user,
        action="photo.upload",
        entity_type="Photo",
        entity_id=str(photo.id),
        company_id=photo.company_id,
        metadata={"vegetable_id": vegetable.id, "storage_key": storage_key, "sha256": sha256, "size_bytes": size_bytes},
    )
    logger.info("Uploaded photo id=%s vegetable_id=%s size=%s", photo.id, vegetable.id, size_bytes)
    return photo


def register_photo(s: "Session", *, vegetable: "Vegetable", payload: dict, user: "User", max_bytes: int = PHOTO_MAX_BYTES) -> "Photo":
    """Insert metadata for an object that is already in storage."""
    from app.fms.modules.photos.models import Photo

    errors: list[str] = []
    storage_key = clean_str(payload.get("storage_path"))
    filename = clean_str(payload.get("original_filename"))
    if not storage_key:
        errors.append("storage_path is required")
    else:
        errors.extend(validate_storage_key(storage_key, vegetable.company_id))
    if not filename:
        errors.append("original_filename is required")
    size = parse_int(payload.get("file_size"), 0) or 0
    if size > max_bytes:
        errors.append(f"File size exceeds {max_bytes // (1024 * 1024)}MB limit")
    content_type = (clean_str(payload.get("mime_type")) or "image/jpeg").lower()
    if content_type not in PHOTO_ALLOWED_CONTENT_TYPES:
        errors.append("Only JPEG, PNG and WebP images are allowed")
    if errors:
        raise ValidationError.from_errors(errors)

    work_report_id = resolve_work_report_id(s, payload.get("work_report_id"), vegetable.company_id)
    is_primary = parse_bool(payload.get("is_primary"))
    if is_primary:
        _clear_primary(s, vegetable.id)
    photo = Photo(
        company_id=vegetable.company_id,
        vegetable_id=vegetable.id,
        work_report_id=work_report_id,
        storage_key=storage_key,
        original_filename=filename,
        content_type=content_type,
        size_bytes=size,
        taken_at=_parse_taken_at(payload.get("taken_at")),
        description=clean_str(payload.get("description")),
        tags=parse_tags(payload.get("tags")),
        is_primary=is_primary,
        created_by_user_id=user.id,
    )
    s.add(photo)
    s.flush()
    record_event(
        s,
        actor=user,
        action="photo.register",
        entity_type="Photo",
        entity_id=str(photo.id),
        company_id=photo.company_id,
        metadata={"vegetable_id": vegetable.id, "storage_key": storage_key},
    )
    return photo


def list_photos(
    s: "Session",
    company_id: int,
    *,
    vegetable_id: int | None = None,
    work_report_id: int | None = None,
    tags: list[str] | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list["Photo"]:
    from app.fms.modules.photos.models import Photo

    q = s.query(Photo).filter(Photo.company_id == company_id)
    if vegetable_id:
        q = q.filter(Photo.vegetable_id == vegetable_id)
    if work_report_id:
        q = q.filter(Photo.work_report_id == work_report_id)
    if start_date:
        q = q.filter(Photo.taken_at >= datetime.combine(start_date, datetime.min.time()))
    if end_date:
        q = q.filter(Photo.taken_at < datetime.combine(end_date + timedelta(days=1), datetime.min.time()))
    q = q.order_by(Photo.taken_at.desc(), Photo.id.desc())
    if not tags:
        return q.offset(offset).limit(limit).all()
    # Tags live in a JSON column; match in Python so sqlite and postgres agree.
    wanted = set(tags)
    matched = [p for p in q.all() if wanted.intersection(p.tags or [])]
    return matched[offset : offset + limit]


def update_photo(s: "Session", photo: "Photo", payload: dict, user: "User") -> "Photo":
    changes: dict[str, Any] = {}
    if "description" in payload:
        value = clean_str(payload.get("description"))
        if value != photo.description:
            changes["description"] = {"old": photo.description, "new": value}
            photo.description = value
    if "tags" in payload:
        value = parse_tags(payload.get("tags"))
        if value != (photo.tags or []):
            changes["tags"] = {"old": photo.tags, "new": value}
            photo.tags = value
    if "is_primary" in payload:
        value = parse_bool(payload.get("is_primary"))
        if value and not photo.is_primary:
            _clear_primary(s, photo.vegetable_id, keep_id=photo.id)
        if value != photo.is_primary:
            changes["is_primary"] = {"old": photo.is_primary, "new": value}
            photo.is_primary = value
    record_event(
        s,
        actor=user,
        action="photo.edit",
        entity_type="Photo",
        entity_id=str(photo.id),
        company_id=photo.company_id,
        metadata={"changes": changes},
    )
    return photo


def delete_photos(s: "Session", storage: "Storage | None", photos: list["Photo"], user: "User") -> int:
    """Remove storage objects (failures are logged, not fatal) and then the rows."""
    for photo in photos:
        if storage is not None:
            try:
                storage.delete(photo.storage_key)
            except StorageError as e:
                logger.warning("Photo object delete failed key=%s: %s", photo.storage_key, e)
        record_event(
            s,
            actor=user,
            action="photo.delete",
            entity_type="Photo",
            entity_id=str(photo.id),
            company_id=photo.company_id,
            metadata={"vegetable_id": photo.vegetable_id, "storage_key": photo.storage_key},
        )
        s.delete(photo)
    s.flush()
    return len(photos)
