from app.fms.db import session_scope
from app.fms.modules.vegetables.models import Vegetable
from app.fms.modules.vegetables.service import validate_vegetable_payload


def test_validate_vegetable_payload():
    assert validate_vegetable_payload({}) == [
        "Missing required fields: name, variety_name, plot_name, planting_date, company_id, area_size"
    ]
    errors = validate_vegetable_payload(
        {
            "company_id": 1,
            "name": "トマト",
            "variety_name": "桃太郎",
            "plot_name": "A-1",
            "plot_size": 50,
            "planting_date": "2024-04-01",
            "expected_harvest_date": "2024-04-01",
        }
    )
    assert errors == ["Expected harvest date must be after planting date."]
    assert validate_vegetable_payload({"status": "rotten"}, partial=True)[0].startswith("Invalid status")


def test_create_list_and_get(admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    assert veg["name"] == "トマト"
    assert veg["company_id"] == company_id
    assert veg["area_size"] == 100

    r = admin_client.get(f"/api/vegetables?company_id={company_id}")
    assert r.status_code == 200
    assert r.json["success"] is True
    assert [v["id"] for v in r.json["data"]] == [veg["id"]]
    assert r.json["pagination"]["total"] == 1
    assert r.json["summary"]["total_vegetables"] == 1

    r = admin_client.get(f"/api/vegetables/{veg['id']}")
    assert r.status_code == 200
    assert r.json["data"]["plot_name"] == "A-1"
    assert "stats" in r.json["data"]


def test_create_reports_missing_fields(admin_client, company_id):
    r = admin_client.post("/api/vegetables", json={"company_id": company_id, "name": "レタス"})
    assert r.status_code == 400
    assert r.json["error"].startswith("Missing required fields:")
    assert "variety_name" in r.json["error"]


def test_active_plot_name_must_be_unique(admin_client, company_id, new_vegetable):
    new_vegetable()
    r = admin_client.post(
        "/api/vegetables",
        json={
            "company_id": company_id,
            "name": "ナス",
            "variety_name": "千両",
            "plot_name": "A-1",
            "area_size": 20,
            "planting_date": "2024-05-01",
        },
    )
    assert r.status_code == 400
    assert r.json["error"] == "Plot name already in use for active cultivation"

    # a completed crop frees the plot
    new_vegetable(plot_name="B-2", status="completed")
    new_vegetable(name="ナス", plot_name="B-2")


def test_update_vegetable(admin_client, new_vegetable):
    veg = new_vegetable()
    r = admin_client.put(f"/api/vegetables/{veg['id']}", json={"status": "harvesting", "notes": "first fruit"})
    assert r.status_code == 200
    assert r.json["data"]["status"] == "harvesting"
    assert r.json["data"]["notes"] == "first fruit"

    r = admin_client.put(f"/api/vegetables/{veg['id']}", json={"expected_harvest_date": "2024-03-01"})
    assert r.status_code == 400


def test_soft_delete(app, admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    r = admin_client.delete(f"/api/vegetables/{veg['id']}?reason=test")
    assert r.status_code == 200

    r = admin_client.get(f"/api/vegetables/{veg['id']}")
    assert r.status_code == 404
    r = admin_client.get(f"/api/vegetables?company_id={company_id}")
    assert r.json["data"] == []

    with session_scope(app) as s:
        row = s.get(Vegetable, veg["id"])
        assert row is not None
        assert row.deleted_at is not None


def test_deletion_impact(admin_client, company_id, new_vegetable, new_report):
    veg = new_vegetable()
    new_report(vegetable_id=veg["id"], work_type="harvesting", harvest_amount=10, expected_price=500)
    admin_client.post(
        "/api/growing-tasks",
        json={
            "vegetable_id": veg["id"],
            "name": "Stake plants",
            "start_date": "2024-04-10",
            "end_date": "2024-04-12",
            "priority": "high",
        },
    )

    r = admin_client.get(f"/api/vegetables/{veg['id']}/deletion-impact")
    assert r.status_code == 200
    data = r.json["data"]
    assert set(data) == {"vegetable", "relatedData", "businessImpact"}
    assert data["relatedData"]["growingTasks"]["total"] == 1
    assert data["relatedData"]["workReports"]["harvestData"]["totalRevenue"] == 5000
    assert data["businessImpact"]["riskLevel"] == "high"


def test_company_scoping(admin_client, company_id, other_company_id):
    r = admin_client.get("/api/vegetables")
    assert r.status_code == 400
    assert r.json["error"] == "company_id is required"

    r = admin_client.get(f"/api/vegetables?company_id={other_company_id}")
    assert r.status_code == 403
    assert r.json["error"] == "Access denied to this company"

    r = admin_client.post(
        "/api/vegetables",
        json={
            "company_id": other_company_id,
            "name": "トマト",
            "variety_name": "桃太郎",
            "plot_name": "A-1",
            "area_size": 10,
            "planting_date": "2024-04-01",
        },
    )
    assert r.status_code == 403


def test_admin_pages(admin_client, new_vegetable):
    veg = new_vegetable()
    r = admin_client.get("/admin/vegetables")
    assert r.status_code == 200
    assert b"Vegetables" in r.data
    assert b"Showing" in r.data

    r = admin_client.get(f"/admin/vegetables/{veg['id']}")
    assert r.status_code == 200
    r = admin_client.get(f"/admin/vegetables/{veg['id']}/delete")
    assert r.status_code == 200


def test_admin_create_and_delete_via_forms(app, admin_client):
    r = admin_client.post(
        "/admin/vegetables/new",
        data={
            "name": "キュウリ",
            "variety_name": "夏すずみ",
            "plot_name": "C-3",
            "area_size": "30",
            "planting_date": "2024-05-01",
            "status": "growing",
        },
    )
    assert r.status_code == 302
    with session_scope(app) as s:
        veg = s.query(Vegetable).filter(Vegetable.plot_name == "C-3").one()
        veg_id = veg.id

    # a reason is required
    r = admin_client.post(f"/admin/vegetables/{veg_id}/delete", data={"reason": ""})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Vegetable, veg_id).deleted_at is None

    r = admin_client.post(f"/admin/vegetables/{veg_id}/delete", data={"reason": "crop failed"})
    assert r.status_code == 302
    with session_scope(app) as s:
        assert s.get(Vegetable, veg_id).deleted_at is not None


def test_reactivating_completed_crop_checks_plot(admin_client, new_vegetable):
    old = new_vegetable(plot_name="P-1", status="completed")
    new_vegetable(name="ナス", plot_name="P-1")

    r = admin_client.put(f"/api/vegetables/{old['id']}", json={"status": "growing"})
    assert r.status_code == 400
    assert r.json["error"] == "Plot name already in use for active cultivation"

    # moving to a free plot while reactivating is fine
    r = admin_client.put(f"/api/vegetables/{old['id']}", json={"status": "growing", "plot_name": "P-2"})
    assert r.status_code == 200
    assert (r.json["data"]["status"], r.json["data"]["plot_name"]) == ("growing", "P-2")


def test_list_filters(admin_client, company_id, new_vegetable):
    tomato = new_vegetable(plot_name="A棟-1")
    lettuce = new_vegetable(name="レタス", variety_name="サニー", plot_name="B棟-2", status="planning")

    def ids(query: str) -> list[int]:
        r = admin_client.get(f"/api/vegetables?company_id={company_id}&{query}")
        assert r.status_code == 200
        return [v["id"] for v in r.json["data"]]

    assert ids("plot_name=A棟") == [tomato["id"]]
    assert ids("search=サニー") == [lettuce["id"]]
    assert ids("search=b棟") == [lettuce["id"]]
    assert ids("status=planning") == [lettuce["id"]]
    assert ids("status=all") == [lettuce["id"], tomato["id"]]


def test_list_pagination(admin_client, company_id, new_vegetable):
    created = [new_vegetable(plot_name=f"P-{i}")["id"] for i in range(3)]

    r = admin_client.get(f"/api/vegetables?company_id={company_id}&limit=2")
    assert [v["id"] for v in r.json["data"]] == created[::-1][:2]
    assert r.json["pagination"] == {"total": 3, "offset": 0, "limit": 2, "hasMore": True}

    r = admin_client.get(f"/api/vegetables?company_id={company_id}&limit=2&offset=2")
    assert [v["id"] for v in r.json["data"]] == [created[0]]
    assert r.json["pagination"]["hasMore"] is False
    assert r.json["summary"]["total_vegetables"] == 3


def test_stats_default_to_zero_without_harvest_date(admin_client, new_vegetable):
    veg = new_vegetable(expected_harvest_date=None)
    r = admin_client.get(f"/api/vegetables/{veg['id']}")
    stats = r.json["data"]["stats"]
    assert stats["estimated_days_to_harvest"] == 0
    assert stats["days_since_planting"] >= 0
