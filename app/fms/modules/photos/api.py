from __future__ import annotations

from flask import Blueprint, current_app, request, send_file

from app.fms.constants import PHOTO_MAX_BYTES
from app.fms.db import db_session
from app.fms.errors import NotFound, ValidationError
from app.fms.modules.photos.models import Photo
from app.fms.modules.photos.service import (
    delete_photos,
    list_photos,
    parse_tags,
    register_photo,
    serialize_photo,
    update_photo,
    upload_photo,
)
from app.fms.modules.vegetables.service import get_active_vegetable
from app.fms.rbac import require_permission
from app.fms.storage import StorageError, storage_from_config
from app.fms.tenancy import require_company_access, resolve_company_id
from app.fms.utils import current_user, json_ok, pagination_args, parse_bool, parse_date, parse_int, request_payload

bp = Blueprint("photos_api", __name__)


def _vegetable_for(s, vegetable_id: int | None, company_id: int | None):
    if not vegetable_id:
        raise ValidationError("vegetable_id is required")
    veg = get_active_vegetable(s, vegetable_id, company_id)
    if veg is None:
        raise NotFound("Vegetable not found")
    require_company_access(s, veg.company_id)
    return veg


def _load(s, photo_id: int | None) -> Photo:
    if not photo_id:
        raise ValidationError("Photo ID is required")
    photo = s.get(Photo, photo_id)
    if photo is None:
        raise NotFound("Photo not found")
    require_company_access(s, photo.company_id)
    return photo


@bp.post("/photos/storage")
@require_permission("photos.edit")
def photos_upload():
    s = db_session()
    file = request.files.get("file")
    if file is None or not file.filename:
        raise ValidationError("File is required")
    company_id = require_company_access(s, parse_int(request.form.get("company_id")))
    veg = _vegetable_for(s, parse_int(request.form.get("vegetable_id")), company_id)

    storage = storage_from_config(current_app.config)
    photo = upload_photo(
        s,
        storage,
        vegetable=veg,
        file_bytes=file.read(),
        filename=file.filename,
        content_type=file.mimetype or "",
        user=current_user(),
        description=request.form.get("description"),
        tags=request.form.get("tags"),
        work_report_id=parse_int(request.form.get("work_report_id")),
        taken_at=request.form.get("taken_at"),
        is_primary=parse_bool(request.form.get("is_primary")),
        max_bytes=current_app.config.get("PHOTO_MAX_BYTES", PHOTO_MAX_BYTES),
    )
    s.commit()
    return json_ok(serialize_photo(photo, storage), 201, message="Photo uploaded successfully")


@bp.post("/photos")
@require_permission("photos.edit")
def photos_register():
    s = db_session()
    payload = request_payload()
    veg = _vegetable_for(s, parse_int(payload.get("vegetable_id")), None)
    photo = register_photo(
        s,
        vegetable=veg,
        payload=payload,
        user=current_user(),
        max_bytes=current_app.config.get("PHOTO_MAX_BYTES", PHOTO_MAX_BYTES),
    )
    s.commit()
    return json_ok(serialize_photo(photo, storage_from_config(current_app.config)), 201)


@bp.get("/photos")
@require_permission("photos.view")
def photos_list():
    s = db_session()
    company_id = require_company_access(s, resolve_company_id())
    limit, offset = pagination_args(default_limit=50)
    photos = list_photos(
        s,
        company_id,
        vegetable_id=parse_int(request.args.get("vegetable_id")),
        work_report_id=parse_int(request.args.get("work_report_id")),
        tags=parse_tags(request.args.get("tags")),
        start_date=parse_date(request.args.get("start_date")),
        end_date=parse_date(request.args.get("end_date")),
        limit=limit,
        offset=offset,
    )
    storage = storage_from_config(current_app.config)
    return json_ok([serialize_photo(p, storage) for p in photos], count=len(photos))


@bp.put("/photos")
@require_permission("photos.edit")
def photos_update():
    s = db_session()
    payload = request_payload()
    photo = _load(s, parse_int(payload.get("id")))
    update_photo(s, photo, payload, current_user())
    s.commit()
    return json_ok(serialize_photo(photo, storage_from_config(current_app.config)))


@bp.delete("/photos")
@require_permission("photos.edit")
def photos_delete():
    s = db_session()
    raw = request.args.get("ids") or request.args.get("id") or ""
    ids = [i for i in (parse_int(x.strip()) for x in raw.split(",")) if i]
    if not ids:
        raise ValidationError("Photo ID(s) required")

    photos = s.query(Photo).filter(Photo.id.in_(ids)).all()
    if not photos:
        raise NotFound("No photos found")
    for company_id in {p.company_id for p in photos}:
        require_company_access(s, company_id)

    deleted = delete_photos(s, storage_from_config(current_app.config), photos, current_user())
    s.commit()
    return json_ok({"deleted_count": deleted}, message=f"{deleted} photo(s) deleted")


@bp.get("/photos/<int:photo_id>/file")
@require_permission("photos.view")
def photos_file(photo_id: int):
    s = db_session()
    photo = _load(s, photo_id)
    storage = storage_from_config(current_app.config)
    try:
        fobj = storage.open(photo.storage_key)
    except StorageError as e:
        current_app.logger.warning("Photo object missing id=%s key=%s: %s", photo.id, photo.storage_key, e)
        raise NotFound("Photo file not found") from e
    return send_file(fobj, mimetype=photo.content_type, download_name=photo.original_filename, max_age=0)
