import io
from datetime import date, datetime
from pathlib import Path

from app.fms.db import session_scope
from app.fms.modules.photos.service import build_photo_storage_key, parse_tags, validate_photo_file
from app.fms.modules.work_reports.models import WorkReport
from app.fms.storage import storage_from_config

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def _upload(client, company_id, vegetable_id, *, data=PNG, filename="leaf.png", mimetype="image/png", **fields):
    form = {
        "file": (io.BytesIO(data), filename, mimetype),
        "company_id": str(company_id),
        "vegetable_id": str(vegetable_id),
    }
    form.update(fields)
    return client.post("/api/photos/storage", data=form, content_type="multipart/form-data")


def test_parse_tags():
    assert parse_tags(None) == []
    assert parse_tags("leaf, pest ,,leaf") == ["leaf", "pest"]
    assert parse_tags(["a", " b "]) == ["a", "b"]


def test_validate_photo_file():
    assert validate_photo_file("a.png", "image/png", 10) == []
    assert validate_photo_file("a.gif", "image/gif", 10) == ["Only JPEG, PNG and WebP images are allowed"]
    assert validate_photo_file("a.png", "image/png", 0) == ["File is empty"]
    assert validate_photo_file("a.png", "image/png", 3 * 1024 * 1024, max_bytes=2 * 1024 * 1024) == [
        "File size exceeds 2MB limit"
    ]


def test_storage_key_is_scoped_and_safe():
    key = build_photo_storage_key(3, 7, "../../etc/トマト leaf.png", now=datetime(2024, 5, 1))
    assert key.startswith("photos/3/7/")
    assert ".." not in key
    assert key.endswith("leaf.png")

    key = build_photo_storage_key(3, 7, "トマト収穫.JPG", now=datetime(2024, 5, 1))
    assert key.endswith("_photo.jpg")


def test_upload_list_and_download(app, admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    r = _upload(admin_client, company_id, veg["id"], tags="leaf, pest", description="first leaves", is_primary="true")
    assert r.status_code == 201, r.json
    photo = r.json["data"]
    assert photo["file_size"] == len(PNG)
    assert photo["mime_type"] == "image/png"
    assert photo["tags"] == ["leaf", "pest"]
    assert photo["is_primary"] is True
    assert photo["url"] == f"/api/photos/{photo['id']}/file"
    assert (Path(app.config["STORAGE_ROOT"]) / photo["storage_path"]).exists()

    r = admin_client.get(f"/api/photos?company_id={company_id}&vegetable_id={veg['id']}")
    assert r.status_code == 200
    assert r.json["count"] == 1

    r = admin_client.get(f"/api/photos?company_id={company_id}&tags=pest")
    assert [p["id"] for p in r.json["data"]] == [photo["id"]]
    r = admin_client.get(f"/api/photos?company_id={company_id}&tags=fruit")
    assert r.json["data"] == []

    r = admin_client.get(photo["url"])
    assert r.status_code == 200
    assert r.data == PNG


def test_only_one_primary_photo(admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    first = _upload(admin_client, company_id, veg["id"], is_primary="true").json["data"]
    second = _upload(admin_client, company_id, veg["id"], filename="b.png").json["data"]

    r = admin_client.put("/api/photos", json={"id": second["id"], "is_primary": True, "tags": "fruit"})
    assert r.status_code == 200
    assert r.json["data"]["is_primary"] is True
    assert r.json["data"]["tags"] == ["fruit"]

    photos = admin_client.get(f"/api/photos?company_id={company_id}").json["data"]
    primary = {p["id"]: p["is_primary"] for p in photos}
    assert primary == {first["id"]: False, second["id"]: True}


def test_upload_rejects_bad_files(admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    r = _upload(admin_client, company_id, veg["id"], data=b"hello", filename="notes.txt", mimetype="text/plain")
    assert r.status_code == 400
    assert r.json["error"] == "Only JPEG, PNG and WebP images are allowed"

    r = admin_client.post(
        "/api/photos/storage",
        data={"company_id": str(company_id), "vegetable_id": str(veg["id"])},
        content_type="multipart/form-data",
    )
    assert r.status_code == 400
    assert r.json["error"] == "File is required"

    r = _upload(admin_client, company_id, 9999)
    assert r.status_code == 404


def test_register_existing_object(admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    r = admin_client.post(
        "/api/photos",
        json={
            "vegetable_id": veg["id"],
            "storage_path": f"photos/{company_id}/{veg['id']}/1.jpg",
            "original_filename": "1.jpg",
            "file_size": 2048,
            "mime_type": "image/jpeg",
        },
    )
    assert r.status_code == 201
    assert r.json["data"]["storage_path"] == f"photos/{company_id}/{veg['id']}/1.jpg"

    r = admin_client.post("/api/photos", json={"vegetable_id": veg["id"]})
    assert r.status_code == 400
    assert r.json["details"] == ["storage_path is required", "original_filename is required"]


def test_delete_removes_object(app, admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    photo = _upload(admin_client, company_id, veg["id"]).json["data"]
    path = Path(app.config["STORAGE_ROOT"]) / photo["storage_path"]
    assert path.exists()

    r = admin_client.delete(f"/api/photos?ids={photo['id']}")
    assert r.status_code == 200
    assert r.json["data"]["deleted_count"] == 1
    assert not path.exists()

    r = admin_client.delete(f"/api/photos?ids={photo['id']}")
    assert r.status_code == 404
    r = admin_client.delete("/api/photos")
    assert r.status_code == 400


def test_gallery_page(admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    _upload(admin_client, company_id, veg["id"])
    r = admin_client.get("/admin/photos")
    assert r.status_code == 200


def test_register_rejects_objects_of_other_companies(app, admin_client, company_id, other_company_id, new_vegetable):
    veg = new_vegetable()
    foreign_key = f"photos/{other_company_id}/99/secret.jpg"
    storage = storage_from_config(app.config)
    storage.put_bytes(foreign_key, b"OTHER-TENANT-BYTES", content_type="image/jpeg")

    for path in (foreign_key, "uploads/secret.jpg", f"photos/{company_id}/../{other_company_id}/99/secret.jpg"):
        r = admin_client.post(
            "/api/photos",
            json={"vegetable_id": veg["id"], "storage_path": path, "original_filename": "secret.jpg"},
        )
        assert r.status_code == 400
        assert r.json["error"] == f"storage_path must be under photos/{company_id}/"

    assert storage.exists(foreign_key)


def test_work_report_must_belong_to_the_company(app, admin_client, company_id, other_company_id, new_vegetable, new_report):
    veg = new_vegetable()
    with session_scope(app) as s:
        foreign = WorkReport(company_id=other_company_id, work_type="watering", work_date=date(2024, 5, 1))
        s.add(foreign)
        s.flush()
        foreign_id = foreign.id

    r = _upload(admin_client, company_id, veg["id"], work_report_id=str(foreign_id))
    assert r.status_code == 400
    assert r.json["error"] == "Work report not found"

    r = admin_client.post(
        "/api/photos",
        json={
            "vegetable_id": veg["id"],
            "storage_path": f"photos/{company_id}/{veg['id']}/1.jpg",
            "original_filename": "1.jpg",
            "work_report_id": foreign_id,
        },
    )
    assert r.status_code == 400

    own = new_report(vegetable_id=veg["id"])
    r = _upload(admin_client, company_id, veg["id"], work_report_id=str(own["id"]))
    assert r.status_code == 201
    assert r.json["data"]["work_report_id"] == own["id"]


def test_upload_keeps_japanese_filename(admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    r = _upload(admin_client, company_id, veg["id"], filename="トマト収穫.jpg", mimetype="image/jpeg")
    assert r.status_code == 201
    photo = r.json["data"]
    assert photo["original_filename"] == "トマト収穫.jpg"
    assert photo["storage_path"].startswith(f"photos/{company_id}/{veg['id']}/")
    assert photo["storage_path"].endswith(".jpg")

    r = admin_client.get(photo["url"])
    assert r.status_code == 200
