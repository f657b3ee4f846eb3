from app.fms.db import session_scope
from app.fms.modules.work_reports.completion import (
    completion_level,
    completion_rate,
    missing_steps,
    next_suggested_action,
)
from app.fms.modules.work_reports.models import WorkReport


def test_completion_rate_weights():
    assert completion_rate({}) == 0
    # a required step contributes nothing until something is filled
    assert completion_rate({"weather": "sunny"}) == 6
    assert completion_rate({"work_date": "2024-05-01", "work_type": "watering", "notes": "ok"}) == 40

    full = {
        "work_date": "2024-05-01",
        "work_type": "harvesting",
        "notes": "ok",
        "weather": "sunny",
        "temperature": 21.5,
        "humidity": 60,
        "duration_hours": 2,
        "worker_count": 2,
        "expected_price": 500,
        "harvest_amount": 12,
        "harvest_unit": "kg",
        "harvest_quality": "good",
        "photos": [1],
    }
    assert completion_rate(full) == 100
    assert missing_steps(full) == []
    assert next_suggested_action(full) == "Record is complete."


def test_completion_level_thresholds():
    assert completion_level(0) == "incomplete"
    assert completion_level(39) == "incomplete"
    assert completion_level(40) == "basic"
    assert completion_level(60) == "detailed"
    assert completion_level(90) == "complete"


def test_next_suggested_action_points_at_first_gap():
    report = {"work_date": "2024-05-01", "work_type": "watering", "notes": "ok"}
    assert [s.key for s in missing_steps(report)] == ["details", "accounting", "analysis"]
    assert next_suggested_action(report) == "Add details to enrich this record."


def test_create_and_get_report(admin_client, company_id, new_vegetable, new_report):
    veg = new_vegetable()
    report = new_report(vegetable_id=veg["id"], start_time="08:00", end_time="10:30", duration_hours=None)
    assert report["work_type"] == "watering"
    assert report["duration_hours"] == 2.5
    assert report["vegetable"]["id"] == veg["id"]
    assert report["completion_level"] in ("basic", "detailed")

    r = admin_client.get(f"/api/reports/{report['id']}")
    assert r.status_code == 200
    assert r.json["data"]["accounting"] == []

    r = admin_client.get(f"/api/reports?company_id={company_id}&work_type=watering")
    assert r.status_code == 200
    assert r.json["count"] == 1


def test_create_validation(admin_client, company_id):
    r = admin_client.post("/api/reports", data={"company_id": company_id})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid JSON in request body"

    r = admin_client.post("/api/reports", json={"work_type": "watering"})
    assert r.status_code == 400
    assert r.json["error"] == "Company ID is required"

    r = admin_client.post("/api/reports", json={"company_id": company_id, "work_type": "dancing", "work_date": "2024-05-01"})
    assert r.status_code == 400
    assert r.json["error"].startswith("Invalid work_type")

    r = admin_client.post(
        "/api/reports",
        json={"company_id": company_id, "work_type": "watering", "work_date": "2024-05-01", "humidity": 140},
    )
    assert r.status_code == 400
    assert r.json["error"] == "humidity must be between 0 and 100."

    r = admin_client.post(
        "/api/reports",
        json={"company_id": company_id, "work_type": "watering", "work_date": "2024-05-01", "vegetable_id": 9999},
    )
    assert r.status_code == 400
    assert r.json["error"] == "Vegetable not found"


def test_update_and_soft_delete(app, admin_client, company_id, new_report):
    report = new_report()
    r = admin_client.put(f"/api/reports/{report['id']}", json={"weather": "rain", "temperature": 14})
    assert r.status_code == 200
    assert r.json["data"]["weather"] == "rain"
    assert r.json["data"]["temperature"] == 14

    r = admin_client.delete(f"/api/reports/{report['id']}", json={"reason": "duplicate"})
    assert r.status_code == 200
    r = admin_client.get(f"/api/reports/{report['id']}")
    assert r.status_code == 404
    r = admin_client.get(f"/api/reports?company_id={company_id}")
    assert r.json["count"] == 0

    with session_scope(app) as s:
        assert s.get(WorkReport, report["id"]).deleted_at is not None


def test_reports_are_company_scoped(admin_client, other_company_id):
    r = admin_client.post(
        "/api/reports", json={"company_id": other_company_id, "work_type": "watering", "work_date": "2024-05-01"}
    )
    assert r.status_code == 403


def test_report_pages(admin_client, new_report):
    report = new_report()
    r = admin_client.get("/admin/reports")
    assert r.status_code == 200
    r = admin_client.get(f"/admin/reports/{report['id']}")
    assert r.status_code == 200
    r = admin_client.get("/admin/reports/new")
    assert r.status_code == 200
