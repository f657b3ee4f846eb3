"""
Pure aggregation over already-fetched rows.

Inputs are plain dicts (the shapes produced by the service layer) so everything here
can be unit tested without a database. Money is JPY, harvest amounts are kg.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from typing import Any, Iterable

from app.fms.constants import (
    DEFAULT_FERTILIZER_COST_PER_KG,
    DEFAULT_LABOR_COST_PER_HOUR,
    DEFAULT_QUALITY_PRICE_MULTIPLIER,
    DEFAULT_VEGETABLE_PRICE_PER_KG,
    FERTILIZER_COST_PER_KG,
    LABOR_COST_PER_HOUR,
    QUALITY_PRICE_MULTIPLIER,
    VEGETABLE_PRICE_PER_KG,
    WORK_TYPE_LABELS,
)
from app.fms.modules.accounting.service import entry_side

SEASONS = ("spring", "summer", "autumn", "winter")

# Variance lines smaller than this (percent) are not reported as significant.
SIGNIFICANT_VARIANCE_PCT = 20

# Category used in the monthly cost chart for each work type.
WORK_TYPE_COST_CATEGORY = {
    "seeding": "seeds_and_seedlings",
    "planting": "cultivation",
    "fertilizing": "materials",
    "watering": "cultivation",
    "weeding": "cultivation",
    "pruning": "cultivation",
    "harvesting": "harvest_and_shipping",
    "other": "other",
}


def _num(value: Any) -> float:
    return float(value) if value not in (None, "") else 0.0


def _round1(value: float) -> float:
    return round(value * 10) / 10


def _as_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def month_key(value: Any) -> str | None:
    d = _as_date(value)
    return f"{d.year:04d}-{d.month:02d}" if d else None


def vegetable_price(name: str | None) -> int:
    """Market price per kg; the first table entry that is a substring of the name (or vice versa) wins."""
    name = name or ""
    if name:
        for key, price in VEGETABLE_PRICE_PER_KG.items():
            if key in name or name in key:
                return price
    return DEFAULT_VEGETABLE_PRICE_PER_KG


def quality_bucket(quality: str | None) -> str:
    quality = quality or "good"
    if quality in ("premium", "excellent"):
        return "premium"
    if quality == "good":
        return "good"
    return "fair"


def labor_cost(report: dict) -> float:
    hours = _num(report.get("duration_hours")) or 1
    workers = _num(report.get("worker_count")) or 1
    rate = LABOR_COST_PER_HOUR.get(report.get("work_type") or "other", DEFAULT_LABOR_COST_PER_HOUR)
    return hours * workers * rate


def material_cost(report: dict) -> float:
    if report.get("work_type") != "fertilizing":
        return 0.0
    rate = FERTILIZER_COST_PER_KG.get(report.get("fertilizer_type") or "", DEFAULT_FERTILIZER_COST_PER_KG)
    return _num(report.get("fertilizer_qty")) * rate


def operation_cost(report: dict) -> float:
    return labor_cost(report) + material_cost(report)


def _harvests(reports: Iterable[dict]) -> list[dict]:
    return [r for r in reports if r.get("work_type") == "harvesting"]


def _vegetable_name(report: dict) -> str:
    veg = report.get("vegetable") or {}
    return veg.get("name") or ""


def summary(vegetables: list[dict], reports: list[dict], tasks: list[dict]) -> dict:
    harvests = _harvests(reports)
    total_harvest = sum(_num(r.get("harvest_amount")) for r in harvests)
    total_revenue = sum(_num(r.get("harvest_amount")) * vegetable_price(_vegetable_name(r)) for r in harvests)
    total_cost = sum(operation_cost(r) for r in reports)
    total_area = sum(_num(v.get("area_size")) for v in vegetables) or 1
    total_tasks = len(tasks)
    completed_tasks = sum(1 for t in tasks if t.get("status") == "completed")
    return {
        "total_revenue": total_revenue,
        "total_cost": total_cost,
        "profit_margin": ((total_revenue - total_cost) / total_revenue * 100) if total_revenue > 0 else 0,
        "total_harvest": total_harvest,
        "avg_yield_per_sqm": total_harvest / total_area,
        "active_plots": sum(1 for v in vegetables if v.get("status") == "growing"),
        "completed_harvests": sum(1 for v in vegetables if v.get("status") == "completed"),
        "efficiency_score": round(completed_tasks / total_tasks * 100) if total_tasks else 0,
    }


def harvest_analysis(reports: list[dict]) -> list[dict]:
    """Monthly harvest totals split into premium/good/fair."""
    months: dict[str, dict[str, float]] = {}
    for r in _harvests(reports):
        key = month_key(r.get("work_date"))
        if key is None:
            continue
        bucket = months.setdefault(key, {"total": 0.0, "premium": 0.0, "good": 0.0, "fair": 0.0})
        amount = _num(r.get("harvest_amount"))
        bucket["total"] += amount
        bucket[quality_bucket(r.get("harvest_quality"))] += amount
    return [
        {"label": key, "value": b["total"], "premium": b["premium"], "good": b["good"], "fair": b["fair"]}
        for key, b in sorted(months.items())
    ]


def cost_analysis(reports: list[dict]) -> list[dict]:
    by_type: dict[str, dict[str, float]] = {}
    for r in reports:
        work_type = r.get("work_type") or "other"
        bucket = by_type.setdefault(work_type, {"labor": 0.0, "material": 0.0, "count": 0})
        bucket["labor"] += labor_cost(r)
        bucket["material"] += material_cost(r)
        bucket["count"] += 1

    rows = []
    for work_type, b in by_type.items():
        total = b["labor"] + b["material"]
        rows.append(
            {
                "work_type": work_type,
                "label": WORK_TYPE_LABELS.get(work_type, work_type),
                "value": round(total),
                "labor_cost": round(b["labor"]),
                "material_cost": round(b["material"]),
                "operation_count": int(b["count"]),
                "avg_cost_per_operation": round(total / b["count"]) if b["count"] else 0,
            }
        )
    return sorted((r for r in rows if r["value"] > 0), key=lambda r: r["value"], reverse=True)


def efficiency_trends(tasks: list[dict]) -> list[dict]:
    """Percent of tasks completed, grouped by the month the task was created."""
    months: dict[str, list[int]] = {}
    for t in tasks:
        key = month_key(t.get("created_at"))
        if key is None:
            continue
        total_done = months.setdefault(key, [0, 0])
        total_done[0] += 1
        if t.get("status") == "completed":
            total_done[1] += 1
    return [
        {"label": key, "value": round(done / total * 100) if total else 0}
        for key, (total, done) in sorted(months.items())
    ]


def season_of(d: date) -> str:
    if 3 <= d.month <= 5:
        return "spring"
    if 6 <= d.month <= 8:
        return "summer"
    if 9 <= d.month <= 11:
        return "autumn"
    return "winter"


def seasonal_performance(reports: list[dict]) -> list[dict]:
    stats = {season: {"harvest": 0.0, "operations": 0, "varieties": set()} for season in SEASONS}
    for r in _harvests(reports):
        d = _as_date(r.get("work_date"))
        if d is None:
            continue
        bucket = stats[season_of(d)]
        bucket["harvest"] += _num(r.get("harvest_amount"))
        bucket["operations"] += 1
        bucket["varieties"].add(_vegetable_name(r) or "unknown")
    return [
        {
            "label": season,
            "value": _round1(b["harvest"]),
            "operations": b["operations"],
            "variety_count": len(b["varieties"]),
            "avg_harvest_per_operation": _round1(b["harvest"] / b["operations"]) if b["operations"] else 0,
        }
        for season, b in stats.items()
    ]


def performance_status(roi: float) -> str:
    if roi > 150:
        return "excellent"
    if roi > 100:
        return "good"
    if roi < 50:
        return "poor"
    return "average"


def vegetable_performance(vegetables: list[dict], reports: list[dict]) -> list[dict]:
    """Per-vegetable revenue/cost/ROI; vegetables without any harvest are left out."""
    by_vegetable: dict[Any, list[dict]] = defaultdict(list)
    for r in reports:
        if r.get("vegetable_id") is not None:
            by_vegetable[r["vegetable_id"]].append(r)

    rows = []
    for veg in vegetables:
        logs = by_vegetable.get(veg.get("id"), [])
        harvests = _harvests(logs)
        breakdown = {"premium": 0.0, "good": 0.0, "fair": 0.0}
        for h in harvests:
            breakdown[quality_bucket(h.get("harvest_quality"))] += _num(h.get("harvest_amount"))
        total_harvest = sum(breakdown.values())
        if total_harvest <= 0:
            continue

        price = vegetable_price(veg.get("name"))
        revenue = sum(
            amount * price * QUALITY_PRICE_MULTIPLIER.get(bucket, DEFAULT_QUALITY_PRICE_MULTIPLIER)
            for bucket, amount in breakdown.items()
        )
        cost = sum(operation_cost(log) for log in logs)
        profit = revenue - cost
        area = _num(veg.get("area_size")) or 1
        roi = (profit / cost * 100) if cost > 0 else 0
        rows.append(
            {
                "id": veg.get("id"),
                "name": veg.get("name"),
                "variety": veg.get("variety_name"),
                "plot_name": veg.get("plot_name"),
                "area_size": area,
                "harvest_amount": _round1(total_harvest),
                "quality_breakdown": breakdown,
                "revenue": round(revenue),
                "cost": round(cost),
                "profit": round(profit),
                "yield_per_sqm": _round1(total_harvest / area),
                "roi": _round1(roi),
                "harvest_operations": len(harvests),
                "total_operations": len(logs),
                "status": performance_status(roi),
            }
        )
    return sorted(rows, key=lambda r: r["roi"], reverse=True)


def _activity_type(work_type: str) -> str:
    if work_type == "harvesting":
        return "harvest"
    if work_type == "pruning":
        return "maintenance"
    if work_type in ("seeding", "planting"):
        return "efficiency"
    return "cost"


def recent_activities(reports: list[dict], limit: int = 10) -> list[dict]:
    ordered = sorted(reports, key=lambda r: str(r.get("work_date") or ""), reverse=True)[:limit]
    out = []
    for r in ordered:
        work_type = r.get("work_type") or "other"
        label = WORK_TYPE_LABELS.get(work_type, work_type)
        veg = r.get("vegetable") or {}
        description = r.get("notes") or r.get("description") or ""
        if work_type == "harvesting":
            value, unit = _num(r.get("harvest_amount")), r.get("harvest_unit") or "kg"
            description = description or f"Harvested {value:g}{unit} ({r.get('harvest_quality') or 'good'})"
        elif work_type == "fertilizing":
            value, unit = _num(r.get("fertilizer_qty")), "kg"
            description = description or f"Applied {value:g}{unit} of {r.get('fertilizer_type') or 'fertilizer'}"
        else:
            value, unit = _num(r.get("duration_hours")) or 1, "h"
            description = description or f"{label} for {value:g}{unit}"
        out.append(
            {
                "id": r.get("id"),
                "type": _activity_type(work_type),
                "title": f"{label}: {veg.get('name') or 'crop'}",
                "description": description,
                "value": _round1(value),
                "unit": unit,
                "vegetable": {
                    "name": veg.get("name"),
                    "variety": veg.get("variety_name"),
                    "plot": veg.get("plot_name"),
                },
                "timestamp": r.get("work_date"),
                "work_type": work_type,
            }
        )
    return out


# Accounting summary -------------------------------------------------------


def _entries(reports: list[dict]) -> list[dict]:
    return [e for r in reports for e in (r.get("accounting") or [])]


def _abs_amount(entry: dict) -> float:
    return abs(_num(entry.get("amount")))


def _side(entry: dict) -> str | None:
    return entry_side(entry.get("item_type"), _num(entry.get("amount")))


def _category(entry: dict) -> str:
    return entry.get("category") or "other"


def _ai_rate(entries: list[dict]) -> float:
    if not entries:
        return 0
    return sum(1 for e in entries if e.get("is_ai_recommended")) / len(entries) * 100


def top_categories(entries: list[dict], item_type: str | None, limit: int = 5) -> list[dict]:
    if item_type:
        entries = [e for e in entries if _side(e) == item_type]
    grouped: dict[str, list[dict]] = defaultdict(list)
    for e in entries:
        grouped[_category(e)].append(e)
    total = sum(_abs_amount(e) for e in entries)
    rows = []
    for category, items in grouped.items():
        amount = sum(_abs_amount(e) for e in items)
        rows.append(
            {
                "category": category,
                "amount": amount,
                "count": len(items),
                "percentage": amount / total * 100 if total > 0 else 0,
                "aiRecommendedPercentage": _ai_rate(items),
            }
        )
    return sorted(rows, key=lambda r: r["amount"], reverse=True)[:limit]


def _expense_total(report: dict) -> float:
    return sum(_abs_amount(e) for e in (report.get("accounting") or []) if _side(e) == "expense")


def variance_analysis(reports: list[dict]) -> dict:
    # Estimates are never derived, so the estimated side stays at zero.
    by_type: dict[str, dict] = {}
    total_actual = 0.0
    for r in reports:
        actual = _expense_total(r)
        total_actual += actual
        row = by_type.setdefault(
            r.get("work_type") or "other",
            {"workType": r.get("work_type") or "other", "estimated": 0.0, "actual": 0.0, "reportCount": 0},
        )
        row["actual"] += actual
        row["reportCount"] += 1

    significant = []
    for row in by_type.values():
        pct = (row["actual"] - row["estimated"]) / row["estimated"] * 100 if row["estimated"] > 0 else 0
        if abs(pct) > SIGNIFICANT_VARIANCE_PCT:
            significant.append({**row, "variance": row["actual"] - row["estimated"], "variancePercentage": pct})
    significant.sort(key=lambda r: abs(r["variancePercentage"]), reverse=True)
    return {
        "totalEstimated": 0,
        "totalActual": total_actual,
        "variance": total_actual,
        "variancePercentage": 0,
        "significantVariances": significant,
    }


def data_quality(reports: list[dict]) -> dict:
    with_accounting = sum(1 for r in reports if r.get("accounting"))
    completeness = with_accounting / len(reports) * 100 if reports else 0
    return {
        "completenessRate": completeness,
        "accountingCoverageRate": completeness,
        "estimationFallbackRate": 100 - completeness,
        "inconsistencyCount": 0,
    }


def category_analysis(reports: list[dict]) -> list[dict]:
    grouped: dict[str, dict] = {}
    for e in _entries(reports):
        category = _category(e)
        row = grouped.setdefault(
            category,
            {
                "category": category,
                "totalAmount": 0.0,
                "incomeAmount": 0.0,
                "expenseAmount": 0.0,
                "entryCount": 0,
                "aiRecommendedCount": 0,
                "items": [],
            },
        )
        amount = _num(e.get("amount"))
        row["totalAmount"] += abs(amount)
        row["entryCount"] += 1
        side = _side(e)
        if side == "income":
            row["incomeAmount"] += amount
        elif side == "expense":
            row["expenseAmount"] += abs(amount)
        if e.get("is_ai_recommended"):
            row["aiRecommendedCount"] += 1
        row["items"].append(
            {
                "itemName": e.get("name") or e.get("custom_item_name") or "unknown",
                "amount": e.get("amount"),
                "isAIRecommended": bool(e.get("is_ai_recommended")),
                "notes": e.get("notes"),
            }
        )
    rows = [
        {
            **row,
            "averageAmount": row["totalAmount"] / row["entryCount"] if row["entryCount"] else 0,
            "aiUsageRate": row["aiRecommendedCount"] / row["entryCount"] * 100 if row["entryCount"] else 0,
        }
        for row in grouped.values()
    ]
    return sorted(rows, key=lambda r: r["totalAmount"], reverse=True)


def _avg_abs(entries: list[dict]) -> float:
    return sum(_abs_amount(e) for e in entries) / len(entries) if entries else 0


def consistency_score(ai_entries: list[dict], manual_entries: list[dict]) -> float:
    """100 when AI-suggested and manual entries average the same amount, falling with the gap."""
    if not ai_entries or not manual_entries:
        return 0
    ai_avg, manual_avg = _avg_abs(ai_entries), _avg_abs(manual_entries)
    mean = (ai_avg + manual_avg) / 2
    if mean <= 0:
        return 0
    return max(0.0, 100 - abs(ai_avg - manual_avg) / mean * 100)


def ai_analysis(reports: list[dict]) -> dict:
    entries = _entries(reports)
    ai = [e for e in entries if e.get("is_ai_recommended")]
    manual = [e for e in entries if not e.get("is_ai_recommended")]
    return {
        "totalEntries": len(entries),
        "aiRecommendedEntries": len(ai),
        "manualEntries": len(manual),
        "aiUsageRate": _ai_rate(entries),
        "aiAverage": _avg_abs(ai),
        "manualAverage": _avg_abs(manual),
        "aiTotal": sum(_abs_amount(e) for e in ai),
        "manualTotal": sum(_abs_amount(e) for e in manual),
        "topAICategories": top_categories(ai, None),
        "accuracyMetrics": {
            "aiAverageAmount": _avg_abs(ai),
            "manualAverageAmount": _avg_abs(manual),
            "consistencyScore": consistency_score(ai, manual),
        },
    }


def month_labels(start: date, count: int = 12) -> list[str]:
    year, month = start.year, start.month
    labels = []
    for _ in range(count):
        labels.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            month, year = 1, year + 1
    return labels


def monthly_cost_data(reports: list[dict], start: date) -> list[dict]:
    rows = []
    for label in month_labels(start):
        totals: dict[str, float] = {}
        sources: dict[str, dict[str, float]] = {}
        for r in reports:
            if month_key(r.get("work_date")) != label:
                continue
            category = WORK_TYPE_COST_CATEGORY.get(r.get("work_type") or "other", "other")
            amount = _expense_total(r)
            totals[category] = totals.get(category, 0.0) + amount
            sources.setdefault(category, {"estimated": 0.0, "actual": 0.0})["actual"] += amount
        rows.append({"month": label, "data": totals, "sources": sources})
    return rows


def empty_accounting_summary() -> dict:
    return {
        "accountingSummary": {
            "actualIncome": 0,
            "actualExpense": 0,
            "netIncome": 0,
            "aiUsageRate": 0,
            "recordCount": 0,
            "topIncomeCategories": [],
            "topExpenseCategories": [],
            "dataQuality": {
                "completenessRate": 0,
                "accountingCoverageRate": 0,
                "estimationFallbackRate": 100,
                "inconsistencyCount": 0,
            },
            "variance": {
                "totalEstimated": 0,
                "totalActual": 0,
                "variance": 0,
                "variancePercentage": 0,
                "significantVariances": [],
            },
        },
        "categoryAnalysis": [],
        "aiAnalysis": {
            "totalEntries": 0,
            "aiRecommendedEntries": 0,
            "manualEntries": 0,
            "aiUsageRate": 0,
            "aiAverage": 0,
            "manualAverage": 0,
            "aiTotal": 0,
            "manualTotal": 0,
            "topAICategories": [],
            "accuracyMetrics": {"consistencyScore": 0},
        },
        "monthlyCostData": [],
    }


def accounting_summary(reports: list[dict], today: date) -> dict:
    """
    Summary of recorded accounting lines across work reports.

    Each report dict carries `accounting`: a list of entries with item_type, category,
    name, amount and is_ai_recommended.
    """
    if not reports:
        return empty_accounting_summary()
    entries = _entries(reports)
    income = sum(_num(e.get("amount")) for e in entries if _side(e) == "income")
    expense = sum(_abs_amount(e) for e in entries if _side(e) == "expense")
    return {
        "accountingSummary": {
            "actualIncome": income,
            "actualExpense": expense,
            "netIncome": income - expense,
            "aiUsageRate": _ai_rate(entries),
            "recordCount": len(entries),
            "topIncomeCategories": top_categories(entries, "income"),
            "topExpenseCategories": top_categories(entries, "expense"),
            "dataQuality": data_quality(reports),
            "variance": variance_analysis(reports),
        },
        "categoryAnalysis": category_analysis(reports),
        "aiAnalysis": ai_analysis(reports),
        "monthlyCostData": monthly_cost_data(reports, today.replace(day=1)),
    }


def financial_performance(entries: list[dict]) -> dict[str, dict]:
    """
    Group accounting lines by YYYY-MM of their work date into income, variable_costs and
    fixed_costs, summing amounts per accounting item.
    """
    months: dict[str, dict] = {}
    for e in entries:
        key = month_key(e.get("work_date"))
        if key is None:
            continue
        month = months.setdefault(key, {"month": key, "income": [], "variable_costs": [], "fixed_costs": []})
        cost_type = e.get("cost_type")
        bucket = "income" if cost_type == "income" else "variable_costs" if cost_type == "variable_cost" else "fixed_costs"
        item_id = e.get("accounting_item_id")
        existing = next((row for row in month[bucket] if item_id is not None and row["id"] == item_id), None)
        if existing is not None:
            existing["value"] += _num(e.get("amount"))
        else:
            month[bucket].append(
                {
                    "id": item_id,
                    "name": e.get("name") or e.get("custom_item_name"),
                    "value": _num(e.get("amount")),
                    "category": bucket,
                }
            )
    return dict(sorted(months.items()))
