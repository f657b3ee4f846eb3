import csv
import io
from datetime import date

import pytest
from openpyxl import load_workbook

from app.fms.modules.analytics import calculations as calc


def test_vegetable_price_matches_partial_names():
    assert calc.vegetable_price("ミニトマト") == 650
    assert calc.vegetable_price("トマト") == 650
    assert calc.vegetable_price("ゴーヤ") == 450
    assert calc.vegetable_price(None) == 450


def test_labor_and_material_cost():
    assert calc.labor_cost({"work_type": "harvesting", "duration_hours": 2, "worker_count": 3}) == 9000
    # missing hours/workers count as one
    assert calc.labor_cost({}) == 800
    assert calc.material_cost({"work_type": "fertilizing", "fertilizer_type": "堆肥", "fertilizer_qty": 10}) == 500
    assert calc.material_cost({"work_type": "fertilizing", "fertilizer_qty": 10}) == 1200
    assert calc.material_cost({"work_type": "watering", "fertilizer_qty": 10}) == 0


def test_season_of():
    assert calc.season_of(date(2024, 1, 5)) == "winter"
    assert calc.season_of(date(2024, 3, 1)) == "spring"
    assert calc.season_of(date(2024, 8, 31)) == "summer"
    assert calc.season_of(date(2024, 11, 30)) == "autumn"
    assert calc.season_of(date(2024, 12, 1)) == "winter"


def test_summary():
    vegetables = [
        {"id": 1, "name": "トマト", "area_size": 50, "status": "growing"},
        {"id": 2, "name": "レタス", "area_size": 50, "status": "completed"},
    ]
    reports = [
        {"work_type": "harvesting", "harvest_amount": 10, "vegetable": {"name": "トマト"}, "duration_hours": 1},
        {"work_type": "watering", "duration_hours": 2, "worker_count": 1},
    ]
    tasks = [{"status": "completed"}, {"status": "pending"}]
    out = calc.summary(vegetables, reports, tasks)
    assert out["total_revenue"] == 6500
    assert out["total_cost"] == 1500 + 1200
    assert out["profit_margin"] == pytest.approx((6500 - 2700) / 6500 * 100)
    assert out["total_harvest"] == 10
    assert out["avg_yield_per_sqm"] == pytest.approx(0.1)
    assert out["active_plots"] == 1
    assert out["completed_harvests"] == 1
    assert out["efficiency_score"] == 50


def test_summary_without_revenue():
    out = calc.summary([], [], [])
    assert out["profit_margin"] == 0
    assert out["efficiency_score"] == 0


def test_harvest_analysis_buckets_quality():
    reports = [
        {"work_type": "harvesting", "work_date": "2024-06-02", "harvest_amount": 5, "harvest_quality": "excellent"},
        {"work_type": "harvesting", "work_date": "2024-06-20", "harvest_amount": 3, "harvest_quality": "poor"},
        {"work_type": "harvesting", "work_date": "2024-05-20", "harvest_amount": 2},
        {"work_type": "watering", "work_date": "2024-05-21"},
    ]
    assert calc.harvest_analysis(reports) == [
        {"label": "2024-05", "value": 2, "premium": 0, "good": 2, "fair": 0},
        {"label": "2024-06", "value": 8, "premium": 5, "good": 0, "fair": 3},
    ]


def test_cost_analysis_sorted_by_total():
    reports = [
        {"work_type": "watering", "duration_hours": 1},
        {"work_type": "fertilizing", "fertilizer_type": "化成肥料", "fertilizer_qty": 20, "duration_hours": 1},
    ]
    rows = calc.cost_analysis(reports)
    assert [r["work_type"] for r in rows] == ["fertilizing", "watering"]
    assert rows[0]["material_cost"] == 3000
    assert rows[0]["labor_cost"] == 800
    assert rows[1]["avg_cost_per_operation"] == 600


def test_vegetable_performance_skips_unharvested():
    vegetables = [
        {"id": 1, "name": "トマト", "area_size": 10},
        {"id": 2, "name": "レタス", "area_size": 10},
    ]
    reports = [
        {"vegetable_id": 1, "work_type": "harvesting", "harvest_amount": 10, "harvest_quality": "premium"},
        {"vegetable_id": 2, "work_type": "watering"},
    ]
    rows = calc.vegetable_performance(vegetables, reports)
    assert [r["id"] for r in rows] == [1]
    assert rows[0]["revenue"] == round(10 * 650 * 1.3)
    assert rows[0]["cost"] == 1500
    assert rows[0]["status"] == "excellent"


def test_performance_status():
    assert calc.performance_status(151) == "excellent"
    assert calc.performance_status(101) == "good"
    assert calc.performance_status(75) == "average"
    assert calc.performance_status(10) == "poor"


def test_financial_performance_groups_by_month_and_item():
    entries = [
        {"work_date": "2024-05-03", "cost_type": "income", "accounting_item_id": 1, "name": "販売金額", "amount": 100},
        {"work_date": "2024-05-09", "cost_type": "income", "accounting_item_id": 1, "name": "販売金額", "amount": 50},
        {"work_date": "2024-05-09", "cost_type": "variable_cost", "accounting_item_id": 7, "name": "肥料費", "amount": 30},
        {"work_date": "2024-06-01", "cost_type": "fixed_cost", "accounting_item_id": 16, "name": "減価償却費", "amount": 9},
    ]
    out = calc.financial_performance(entries)
    assert list(out) == ["2024-05", "2024-06"]
    assert out["2024-05"]["income"] == [{"id": 1, "name": "販売金額", "value": 150, "category": "income"}]
    assert out["2024-05"]["variable_costs"][0]["value"] == 30
    assert out["2024-06"]["fixed_costs"][0]["category"] == "fixed_costs"


def test_empty_accounting_summary():
    out = calc.accounting_summary([], date(2024, 5, 1))
    assert out["accountingSummary"]["recordCount"] == 0
    assert out["accountingSummary"]["dataQuality"]["estimationFallbackRate"] == 100
    assert out["monthlyCostData"] == []


def test_consistency_score():
    assert calc.consistency_score([], [{"amount": 10}]) == 0
    assert calc.consistency_score([{"amount": 10}], [{"amount": -10}]) == 100
    assert calc.consistency_score([{"amount": 10}], [{"amount": 30}]) == 0


# API ------------------------------------------------------------------------


def test_dashboard(admin_client, company_id, new_vegetable, new_report):
    veg = new_vegetable()
    new_report(
        vegetable_id=veg["id"],
        work_type="harvesting",
        work_date=date.today().isoformat(),
        harvest_amount=10,
        harvest_quality="good",
    )
    r = admin_client.get(f"/api/analytics?company_id={company_id}&period=1month")
    assert r.status_code == 200
    data = r.json["data"]
    assert set(data) == {
        "summary",
        "harvest_analysis",
        "cost_analysis",
        "efficiency_trends",
        "seasonal_performance",
        "vegetable_performance",
        "recent_activities",
    }
    assert data["summary"]["total_harvest"] == 10
    assert data["summary"]["total_revenue"] == 6500
    assert data["vegetable_performance"][0]["id"] == veg["id"]
    assert data["recent_activities"][0]["type"] == "harvest"


def test_accounting_summary_and_financial_performance(admin_client, company_id, new_report):
    r = admin_client.get(f"/api/analytics/accounting-summary?company_id={company_id}")
    assert r.status_code == 200
    assert r.json["accountingSummary"]["recordCount"] == 0

    items = {i["code"]: i["id"] for i in admin_client.get("/api/accounting-items").json["data"]}
    report = new_report(work_type="harvesting", work_date="2024-05-10")
    admin_client.post(
        "/api/work-accounting",
        json={
            "work_report_id": report["id"],
            "income_items": [{"accounting_item_id": items["①"], "amount": 6000}],
            "expense_items": [{"accounting_item_id": items["⑰"], "amount": 800, "is_ai_recommended": True}],
        },
    )

    r = admin_client.get(f"/api/analytics/accounting-summary?company_id={company_id}")
    summary = r.json["accountingSummary"]
    assert summary["actualIncome"] == 6000
    assert summary["actualExpense"] == 800
    assert summary["netIncome"] == 5200
    assert summary["aiUsageRate"] == 50
    assert r.json["aiAnalysis"]["aiRecommendedEntries"] == 1

    r = admin_client.post(
        "/api/financial-performance", json={"company_id": company_id, "work_report_ids": [report["id"]]}
    )
    assert r.status_code == 200
    assert r.json["count"] == 2
    month = r.json["data"]["2024-05"]
    assert month["income"][0]["value"] == 6000
    assert month["variable_costs"][0]["value"] == 800

    r = admin_client.post("/api/financial-performance", json={"company_id": company_id, "work_report_ids": "1"})
    assert r.status_code == 400


def test_csv_export(admin_client, company_id, new_vegetable):
    new_vegetable()
    r = admin_client.post("/api/analytics/export", json={"company_id": company_id, "data_type": "vegetables", "format": "csv"})
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    assert "attachment" in r.headers["Content-Disposition"]
    text = r.data.decode("utf-8-sig")
    rows = list(csv.reader(io.StringIO(text)))
    assert rows[0][:3] == ["ID", "Name", "Variety"]
    assert rows[1][1] == "トマト"


def test_xlsx_export(admin_client, company_id, new_report):
    new_report()
    r = admin_client.post(
        "/api/analytics/export", json={"company_id": company_id, "data_type": "work_reports", "format": "excel"}
    )
    assert r.status_code == 200
    wb = load_workbook(io.BytesIO(r.data))
    ws = wb.active
    assert ws.title == "work_reports"
    assert ws.cell(row=1, column=4).value == "Work type"
    assert ws.cell(row=2, column=4).value == "watering"


def test_export_validation_and_permission(admin_client, staff_client, company_id):
    r = admin_client.post("/api/analytics/export", json={"company_id": company_id, "data_type": "photos"})
    assert r.status_code == 400
    assert r.json["error"].startswith("Invalid data_type")

    r = staff_client.post("/api/analytics/export", json={"company_id": company_id, "data_type": "vegetables"})
    assert r.status_code == 403


def test_analytics_page(admin_client):
    r = admin_client.get("/admin/analytics")
    assert r.status_code == 200


def test_accounting_summary_applies_sign_rule_to_mixed_items():
    today = date(2024, 5, 20)
    reports = [
        {
            "work_type": "harvesting",
            "work_date": "2024-05-10",
            "accounting": [
                {"item_type": "both", "category": "other", "name": "雑収入・雑費", "amount": 5000},
                {"item_type": "both", "category": "other", "name": "雑収入・雑費", "amount": -1200},
                {"item_type": "expense", "category": "materials", "name": "肥料費", "amount": 300},
            ],
        }
    ]
    out = calc.accounting_summary(reports, today)
    summary = out["accountingSummary"]
    assert summary["actualIncome"] == 5000
    assert summary["actualExpense"] == 1500
    assert summary["netIncome"] == 3500
    assert [c["amount"] for c in summary["topIncomeCategories"]] == [5000]
    assert {c["category"]: c["amount"] for c in summary["topExpenseCategories"]} == {"other": 1200, "materials": 300}

    other = next(c for c in out["categoryAnalysis"] if c["category"] == "other")
    assert (other["incomeAmount"], other["expenseAmount"]) == (5000, 1200)

    may = next(m for m in out["monthlyCostData"] if m["month"] == "2024-05")
    assert sum(may["data"].values()) == 1500


def test_accounting_summary_counts_mixed_item_income(admin_client, company_id, new_report):
    items = {i["code"]: i["id"] for i in admin_client.get("/api/accounting-items").json["data"]}
    report = new_report(work_date=date.today().isoformat())
    admin_client.post(
        "/api/work-accounting",
        json={"work_report_id": report["id"], "income_items": [{"accounting_item_id": items["㉓"], "amount": 5000}]},
    )

    r = admin_client.get(f"/api/analytics/accounting-summary?company_id={company_id}")
    summary = r.json["accountingSummary"]
    assert summary["actualIncome"] == 5000
    assert summary["netIncome"] == 5000
