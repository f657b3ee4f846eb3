from app.fms.db import session_scope
from app.fms.modules.growing_tasks.models import GrowingTask
from app.fms.modules.growing_tasks.service import validate_task_payload


def _task(client, vegetable_id: int, **overrides):
    payload = {
        "vegetable_id": vegetable_id,
        "name": "Thin seedlings",
        "start_date": "2024-04-10",
        "end_date": "2024-04-20",
        "priority": "medium",
        "task_type": "weeding",
    }
    payload.update(overrides)
    return client.post("/api/growing-tasks", json=payload)


def test_validate_task_payload():
    assert validate_task_payload({}) == ["Missing required fields: vegetable_id, name, start_date, end_date"]
    errors = validate_task_payload(
        {"vegetable_id": 1, "name": "x", "start_date": "2024-05-02", "end_date": "2024-05-01", "progress": "lots"}
    )
    assert "end_date must be on or after start_date." in errors
    assert "progress must be an integer." in errors
    assert validate_task_payload({"status": "done"}, partial=True)[0].startswith("Invalid status")


def test_create_defaults_to_pending(admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    r = _task(admin_client, veg["id"])
    assert r.status_code == 201
    task = r.json["data"]
    assert task["status"] == "pending"
    assert task["progress"] == 0
    assert task["company_id"] == company_id

    r = admin_client.get(f"/api/growing-tasks?company_id={company_id}")
    assert r.status_code == 200
    assert [t["id"] for t in r.json["data"]] == [task["id"]]


def test_create_rejects_end_before_start(admin_client, new_vegetable):
    veg = new_vegetable()
    r = _task(admin_client, veg["id"], start_date="2024-04-20", end_date="2024-04-10")
    assert r.status_code == 400
    assert r.json["error"] == "end_date must be on or after start_date."


def test_create_requires_existing_vegetable(admin_client):
    r = _task(admin_client, 9999)
    assert r.status_code == 400
    assert r.json["error"] == "Vegetable not found"


def test_update_progress_and_complete(admin_client, new_vegetable):
    veg = new_vegetable()
    task_id = _task(admin_client, veg["id"]).json["data"]["id"]

    r = admin_client.put(f"/api/growing-tasks/{task_id}", json={"status": "in_progress", "progress": 40})
    assert r.status_code == 200
    assert r.json["data"]["status"] == "in_progress"
    assert r.json["data"]["progress"] == 40

    # completing pins progress at 100
    r = admin_client.put("/api/growing-tasks", json={"id": task_id, "status": "completed"})
    assert r.status_code == 200
    assert r.json["data"]["progress"] == 100

    r = admin_client.put(f"/api/growing-tasks/{task_id}", json={"end_date": "2024-01-01"})
    assert r.status_code == 400


def test_gantt_window(admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    _task(admin_client, veg["id"], name="April", start_date="2024-04-01", end_date="2024-04-30")
    _task(admin_client, veg["id"], name="June", start_date="2024-06-01", end_date="2024-06-30")

    r = admin_client.get(f"/api/gantt?company_id={company_id}&start_date=2024-04-15&end_date=2024-05-15")
    assert r.status_code == 200
    bars = r.json["data"]["tasks"]
    assert [b["name"] for b in bars] == ["April"]
    assert bars[0]["vegetable"]["id"] == veg["id"]
    assert bars[0]["color"] == "#94a3b8"
    assert [v["id"] for v in r.json["data"]["vegetables"]] == [veg["id"]]


def test_deletion_check_and_delete(app, admin_client, new_vegetable):
    veg = new_vegetable()
    task_id = _task(admin_client, veg["id"]).json["data"]["id"]

    r = admin_client.get(f"/api/growing-tasks/{task_id}")
    assert r.status_code == 200
    assert r.json["success"] is True

    r = admin_client.delete(f"/api/growing-tasks/{task_id}")
    assert r.status_code == 200
    assert r.headers["Cache-Control"].startswith("no-cache")

    with session_scope(app) as s:
        assert s.get(GrowingTask, task_id) is None

    r = admin_client.delete(f"/api/growing-tasks/{task_id}")
    assert r.status_code == 404


def test_tasks_page(admin_client, new_vegetable):
    veg = new_vegetable()
    _task(admin_client, veg["id"], name="Mulch rows")
    r = admin_client.get("/admin/tasks")
    assert r.status_code == 200
    assert "Mulch rows".encode() in r.data


def test_progress_is_clamped(admin_client, new_vegetable):
    veg = new_vegetable()
    task_id = _task(admin_client, veg["id"]).json["data"]["id"]

    r = admin_client.put(f"/api/growing-tasks/{task_id}", json={"progress": 150})
    assert r.status_code == 200
    assert r.json["data"]["progress"] == 100

    r = admin_client.put(f"/api/growing-tasks/{task_id}", json={"progress": -5})
    assert r.json["data"]["progress"] == 0

    r = admin_client.put(f"/api/growing-tasks/{task_id}", json={"progress": "half"})
    assert r.status_code == 400


def test_free_form_task_type(admin_client, new_vegetable):
    veg = new_vegetable()
    r = _task(admin_client, veg["id"], task_type="netting")
    assert r.status_code == 201
    assert r.json["data"]["task_type"] == "netting"

    r = _task(admin_client, veg["id"], task_type=None)
    assert r.json["data"]["task_type"] == "other"


def test_list_status_filter(admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    first = _task(admin_client, veg["id"], name="Sow").json["data"]["id"]
    _task(admin_client, veg["id"], name="Weed", start_date="2024-04-11")
    admin_client.put(f"/api/growing-tasks/{first}", json={"status": "completed"})

    r = admin_client.get(f"/api/growing-tasks?company_id={company_id}&status=completed")
    assert [t["name"] for t in r.json["data"]] == ["Sow"]
    r = admin_client.get(f"/api/growing-tasks?company_id={company_id}&status=all")
    assert [t["name"] for t in r.json["data"]] == ["Sow", "Weed"]


def test_gantt_window_edges(admin_client, company_id, new_vegetable):
    veg = new_vegetable()
    _task(admin_client, veg["id"], name="Ends on start", start_date="2024-04-01", end_date="2024-04-15")
    _task(admin_client, veg["id"], name="Starts on end", start_date="2024-05-15", end_date="2024-05-20")
    _task(admin_client, veg["id"], name="Spans", start_date="2024-03-01", end_date="2024-06-30")
    _task(admin_client, veg["id"], name="Before", start_date="2024-04-01", end_date="2024-04-14")
    _task(admin_client, veg["id"], name="After", start_date="2024-05-16", end_date="2024-05-20")

    r = admin_client.get(f"/api/gantt?company_id={company_id}&start_date=2024-04-15&end_date=2024-05-15")
    assert [b["name"] for b in r.json["data"]["tasks"]] == ["Spans", "Ends on start", "Starts on end"]
