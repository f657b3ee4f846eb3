from __future__ import annotations

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for

from app.fms.constants import PHOTO_MAX_BYTES
from app.fms.db import db_session
from app.fms.errors import ValidationError
from app.fms.modules.photos.models import Photo
from app.fms.modules.photos.service import delete_photos, list_photos, serialize_photo, upload_photo
from app.fms.modules.vegetables.models import Vegetable
from app.fms.modules.vegetables.service import get_active_vegetable
from app.fms.rbac import require_permission
from app.fms.storage import StorageError, storage_from_config
from app.fms.tenancy import default_company_id
from app.fms.utils import current_user, pagination_args, parse_bool, parse_int

bp = Blueprint("photos", __name__)


@bp.get("/photos")
@require_permission("photos.view")
def photos_gallery():
    s = db_session()
    company_id = default_company_id(s)
    vegetable_id = parse_int(request.args.get("vegetable_id"))
    limit, offset = pagination_args(default_limit=60)
    storage = storage_from_config(current_app.config)
    photos = list_photos(s, company_id, vegetable_id=vegetable_id, limit=limit, offset=offset)
    vegetables = (
        s.query(Vegetable)
        .filter(Vegetable.company_id == company_id)
        .filter(Vegetable.deleted_at.is_(None))
        .order_by(Vegetable.name.asc())
        .all()
    )
    return render_template(
        "admin/photos/gallery.html",
        photos=[serialize_photo(p, storage) for p in photos],
        vegetables=vegetables,
        vegetable_id=vegetable_id,
    )


@bp.post("/photos/upload")
@require_permission("photos.edit")
def photos_upload_post():
    s = db_session()
    company_id = default_company_id(s)
    veg = get_active_vegetable(s, parse_int(request.form.get("vegetable_id")), company_id)
    if veg is None:
        flash("Choose a vegetable for the photo.", "danger")
        return redirect(url_for("photos.photos_gallery"))

    files = [f for f in request.files.getlist("files") if f and f.filename]
    if not files:
        flash("Choose at least one image.", "danger")
        return redirect(url_for("photos.photos_gallery", vegetable_id=veg.id))

    storage = storage_from_config(current_app.config)
    uploaded = 0
    for f in files:
        try:
            upload_photo(
                s,
                storage,
                vegetable=veg,
                file_bytes=f.read(),
                filename=f.filename,
                content_type=f.mimetype or "",
                user=current_user(),
                description=request.form.get("description"),
                tags=request.form.get("tags"),
                is_primary=parse_bool(request.form.get("is_primary")) and uploaded == 0,
                max_bytes=current_app.config.get("PHOTO_MAX_BYTES", PHOTO_MAX_BYTES),
            )
            uploaded += 1
        except (ValidationError, StorageError) as e:
            flash(f"{f.filename}: {getattr(e, 'message', str(e))}", "danger")
    s.commit()
    if uploaded:
        flash(f"Uploaded {uploaded} photo(s).", "success")
    return redirect(url_for("photos.photos_gallery", vegetable_id=veg.id))


@bp.post("/photos/<int:photo_id>/delete")
@require_permission("photos.edit")
def photos_delete_post(photo_id: int):
    s = db_session()
    company_id = default_company_id(s)
    photo = s.get(Photo, photo_id)
    if photo is None or photo.company_id != company_id:
        flash("Photo not found.", "danger")
        return redirect(url_for("photos.photos_gallery"))
    vegetable_id = photo.vegetable_id
    delete_photos(s, storage_from_config(current_app.config), [photo], current_user())
    s.commit()
    flash("Photo deleted.", "success")
    return redirect(url_for("photos.photos_gallery", vegetable_id=vegetable_id))
