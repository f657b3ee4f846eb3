import pytest

from app.fms.db import session_scope
from app.fms.modules.accounting.models import AccountingItem
from app.fms.modules.accounting.seed import FARM_ACCOUNTING_ITEMS, ensure_accounting_items
from app.fms.modules.accounting.service import entry_side


@pytest.fixture()
def item_ids(admin_client):
    r = admin_client.get("/api/accounting-items")
    assert r.status_code == 200
    return {i["code"]: i["id"] for i in r.json["data"]}


def test_seed_is_idempotent(app):
    with session_scope(app) as s:
        assert ensure_accounting_items(s) == 0
        assert s.query(AccountingItem).count() == len(FARM_ACCOUNTING_ITEMS) == 23


def test_items_filter_by_type(admin_client):
    r = admin_client.get("/api/accounting-items")
    items = r.json["data"]
    assert len(items) == 23
    assert [i["code"] for i in items][:3] == ["①", "②", "③"]

    income = admin_client.get("/api/accounting-items?type=income").json["data"]
    assert [i["code"] for i in income] == ["①", "②", "③", "㉓"]
    expense = admin_client.get("/api/accounting-items?type=expense").json["data"]
    assert len(expense) == 20
    assert expense[-1]["type"] == "both"


def test_default_recommendations(admin_client, company_id):
    r = admin_client.get(f"/api/accounting-recommendations?company_id={company_id}&work_type=harvesting")
    assert r.status_code == 200
    recs = r.json["data"]
    assert [rec["accounting_item"]["code"] for rec in recs] == ["①", "⑰"]
    assert all(rec["is_default"] and rec["stars"] == 2 for rec in recs)

    r = admin_client.get(f"/api/accounting-recommendations?company_id={company_id}&work_type=other")
    assert [rec["accounting_item"]["code"] for rec in r.json["data"]] == ["⑬", "㉓"]

    r = admin_client.get(f"/api/accounting-recommendations?company_id={company_id}")
    assert r.status_code == 400
    assert r.json["error"] == "company_id and work_type are required"


def test_learn_recommendation_running_average(admin_client, company_id, item_ids):
    payload = {"company_id": company_id, "work_type": "weeding", "accounting_item_id": item_ids["⑱"]}
    r = admin_client.post("/api/accounting-recommendations", json={**payload, "amount": 100})
    assert r.status_code == 200
    assert r.json["data"]["usage_count"] == 1
    assert r.json["data"]["confidence"] == 0.5

    r = admin_client.post("/api/accounting-recommendations", json={**payload, "amount": -300})
    data = r.json["data"]
    assert data["usage_count"] == 2
    assert data["avg_amount"] == 200
    assert data["confidence"] == pytest.approx(0.6)


def test_save_and_read_work_accounting(admin_client, company_id, item_ids, new_report):
    report = new_report(work_type="harvesting", harvest_amount=12)
    r = admin_client.post(
        "/api/work-accounting",
        json={
            "work_report_id": report["id"],
            "company_id": company_id,
            "work_type": "harvesting",
            "income_items": [{"accounting_item_id": item_ids["①"], "amount": 6000}],
            "expense_items": [
                {"accounting_item_id": item_ids["⑦"], "amount": 1200, "is_ai_recommended": True},
                {"accounting_item_id": item_ids["㉓"], "amount": -300},
                {"custom_item_name": "Twine", "amount": 0},
                {"amount": 50},
            ],
        },
    )
    assert r.status_code == 200
    assert r.json["data"]["count"] == 4

    r = admin_client.get(f"/api/work-accounting?work_report_id={report['id']}")
    assert r.status_code == 200
    summary = r.json["data"]
    assert summary["income_total"] == 6000
    assert summary["expense_total"] == 1500
    assert summary["net_income"] == 4500
    assert [e["accounting_item"]["code"] for e in summary["expense_items"]] == ["⑦", "㉓"]

    # non-zero lines were learned; AI-suggested ones start with higher confidence
    r = admin_client.get(f"/api/accounting-recommendations?company_id={company_id}&work_type=harvesting")
    recs = r.json["data"]
    assert recs[0]["accounting_item"]["code"] == "⑦"
    assert recs[0]["stars"] == 3
    assert {rec["accounting_item"]["code"] for rec in recs} >= {"①", "⑦", "㉓"}


def test_save_replaces_previous_entries(admin_client, item_ids, new_report):
    report = new_report()
    for amount in (100, 250):
        r = admin_client.post(
            "/api/work-accounting",
            json={
                "work_report_id": report["id"],
                "income_items": [],
                "expense_items": [{"accounting_item_id": item_ids["⑬"], "amount": amount}],
            },
        )
        assert r.status_code == 200

    r = admin_client.get(f"/api/reports/{report['id']}")
    entries = r.json["data"]["accounting"]
    assert [e["amount"] for e in entries] == [250]


def test_unknown_item_is_rejected(admin_client, new_report):
    report = new_report()
    r = admin_client.post(
        "/api/work-accounting",
        json={"work_report_id": report["id"], "expense_items": [{"accounting_item_id": 9999, "amount": 10}]},
    )
    assert r.status_code == 400
    assert r.json["error"] == "Unknown accounting_item_id: 9999"


def test_work_accounting_requires_report(admin_client):
    r = admin_client.get("/api/work-accounting")
    assert r.status_code == 400
    assert r.json["error"] == "work_report_id is required"
    r = admin_client.get("/api/work-accounting?work_report_id=9999")
    assert r.status_code == 404


def test_entry_side():
    assert entry_side("income", 100) == "income"
    assert entry_side("expense", 100) == "expense"
    assert entry_side("both", 100) == "income"
    assert entry_side("both", -100) == "expense"
    assert entry_side("both", 0) is None
    assert entry_side(None, 100) is None
