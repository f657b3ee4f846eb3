from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.fms.audit import record_event
from app.fms.errors import ValidationError
from app.fms.utils import clean_str, iso, parse_bool, parse_float, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fms.models import User
    from app.fms.modules.accounting.models import AccountingItem, AccountingRecommendation, WorkReportAccounting
    from app.fms.modules.work_reports.models import WorkReport

logger = logging.getLogger(__name__)

ITEM_TYPES = ("income", "expense", "both")

MIN_RECOMMENDATION_CONFIDENCE = 0.3
HIGH_CONFIDENCE = 0.7
MAX_RECOMMENDATIONS = 6
DEFAULT_CONFIDENCE = 0.5
LEARNED_CONFIDENCE_AI = 0.8
LEARNED_CONFIDENCE_MANUAL = 0.6

# Items suggested for a work type before the company has any history.
DEFAULT_RECOMMENDATION_CODES: dict[str, tuple[str, ...]] = {
    "fertilizing": ("⑦", "⑬"),
    "weeding": ("⑬", "⑱"),
    "harvesting": ("①", "⑰"),
    "planting": ("⑤", "⑬"),
    "pruning": ("⑨", "⑬"),
    "watering": ("⑬",),
    "seeding": ("⑤", "⑬"),
}
FALLBACK_RECOMMENDATION_CODES = ("⑬", "㉓")


def serialize_item(item: "AccountingItem | None") -> dict | None:
    if item is None:
        return None
    return {
        "id": item.id,
        "code": item.code,
        "name": item.name,
        "type": item.type,
        "category": item.category,
        "cost_type": item.cost_type,
        "is_active": item.is_active,
        "sort_order": item.sort_order,
    }


def list_items(s: "Session", item_type: str | None = None) -> list["AccountingItem"]:
    """Active items; income/expense filters also include items usable as both."""
    from app.fms.modules.accounting.models import AccountingItem

    q = s.query(AccountingItem).filter(AccountingItem.is_active.is_(True))
    if item_type in ("income", "expense"):
        q = q.filter(AccountingItem.type.in_((item_type, "both")))
    return q.order_by(AccountingItem.sort_order.asc(), AccountingItem.id.asc()).all()


def _stars(confidence: float) -> int:
    if confidence >= HIGH_CONFIDENCE:
        return 3
    if confidence >= DEFAULT_CONFIDENCE:
        return 2
    return 1


def _serialize_recommendation(rec: "AccountingRecommendation") -> dict:
    return {
        "id": rec.id,
        "accounting_item": serialize_item(rec.accounting_item),
        "confidence": rec.confidence_score,
        "avg_amount": rec.avg_amount,
        "usage_count": rec.usage_count,
        "last_used_at": iso(rec.last_used_at),
        "is_high_confidence": rec.confidence_score >= HIGH_CONFIDENCE,
        "stars": _stars(rec.confidence_score),
    }


def default_recommendations(s: "Session", work_type: str) -> list[dict]:
    from app.fms.modules.accounting.models import AccountingItem

    codes = DEFAULT_RECOMMENDATION_CODES.get(work_type, FALLBACK_RECOMMENDATION_CODES)
    items = (
        s.query(AccountingItem)
        .filter(AccountingItem.code.in_(codes))
        .filter(AccountingItem.is_active.is_(True))
        .order_by(AccountingItem.sort_order.asc())
        .all()
    )
    return [
        {
            "id": f"default-{item.id}",
            "accounting_item": serialize_item(item),
            "confidence": DEFAULT_CONFIDENCE,
            "avg_amount": 0,
            "usage_count": 0,
            "is_high_confidence": False,
            "stars": 2,
            "is_default": True,
        }
        for item in items
    ]


def recommendations_for(s: "Session", company_id: int, work_type: str) -> list[dict]:
    """Learned items for this work type, topped up with defaults while history is thin."""
    from app.fms.modules.accounting.models import AccountingRecommendation

    learned = (
        s.query(AccountingRecommendation)
        .filter(AccountingRecommendation.company_id == company_id)
        .filter(AccountingRecommendation.work_type == work_type)
        .filter(AccountingRecommendation.confidence_score >= MIN_RECOMMENDATION_CONFIDENCE)
        .order_by(AccountingRecommendation.confidence_score.desc(), AccountingRecommendation.usage_count.desc())
        .limit(MAX_RECOMMENDATIONS)
        .all()
    )
    result = [_serialize_recommendation(r) for r in learned]
    if len(result) < 3:
        seen = {r["accounting_item"]["id"] for r in result if r["accounting_item"]}
        defaults = [d for d in default_recommendations(s, work_type) if d["accounting_item"]["id"] not in seen]
        result.extend(defaults[: max(0, 4 - len(result))])
    return result


def learn_recommendation(
    s: "Session",
    *,
    company_id: int,
    work_type: str,
    accounting_item_id: int,
    amount: float,
    confidence_score: float = DEFAULT_CONFIDENCE,
) -> "AccountingRecommendation":
    """Record one use of an item: bump usage, fold amount into the running mean, raise confidence."""
    from app.fms.modules.accounting.models import AccountingRecommendation

    now = datetime.utcnow()
    rec = (
        s.query(AccountingRecommendation)
        .filter(AccountingRecommendation.company_id == company_id)
        .filter(AccountingRecommendation.work_type == work_type)
        .filter(AccountingRecommendation.accounting_item_id == accounting_item_id)
        .one_or_none()
    )
    if rec is not None:
        usage = rec.usage_count + 1
        rec.avg_amount = (rec.avg_amount * rec.usage_count + amount) / usage
        rec.usage_count = usage
        rec.confidence_score = min(rec.confidence_score + 0.1, 1.0)
        rec.last_used_at = now
        rec.updated_at = now
    else:
        rec = AccountingRecommendation(
            company_id=company_id,
            work_type=work_type,
            accounting_item_id=accounting_item_id,
            confidence_score=min(max(confidence_score, 0.0), 1.0),
            usage_count=1,
            avg_amount=amount,
            last_used_at=now,
            created_at=now,
            updated_at=now,
        )
        s.add(rec)
    s.flush()
    return rec


def serialize_entry(entry: "WorkReportAccounting") -> dict:
    return {
        "id": entry.id,
        "work_report_id": entry.work_report_id,
        "accounting_item_id": entry.accounting_item_id,
        "accounting_item": serialize_item(entry.accounting_item),
        "amount": entry.amount,
        "custom_item_name": entry.custom_item_name,
        "notes": entry.notes,
        "is_ai_recommended": entry.is_ai_recommended,
        "created_at": iso(entry.created_at),
    }


def entry_side(item_type: str | None, amount: float | None) -> str | None:
    """
    "income" or "expense" for one accounting line. Items of type "both" count as
    income when positive and as expense when negative; zero and custom lines count as neither.
    """
    if item_type in ("income", "expense"):
        return item_type
    if item_type == "both" and amount:
        return "income" if amount > 0 else "expense"
    return None


def _entry_item_type(entry: "WorkReportAccounting") -> str | None:
    return entry.accounting_item.type if entry.accounting_item else None


def is_income_entry(entry: "WorkReportAccounting") -> bool:
    return entry_side(_entry_item_type(entry), entry.amount) == "income"


def is_expense_entry(entry: "WorkReportAccounting") -> bool:
    return entry_side(_entry_item_type(entry), entry.amount) == "expense"


def work_accounting_summary(report: "WorkReport") -> dict:
    entries = sorted(report.accounting_entries, key=lambda e: (e.created_at, e.id))
    income = [e for e in entries if is_income_entry(e)]
    expense = [e for e in entries if is_expense_entry(e)]
    income_total = sum(e.amount or 0 for e in income)
    expense_total = sum(abs(e.amount or 0) for e in expense)
    return {
        "income_items": [serialize_entry(e) for e in income],
        "expense_items": [serialize_entry(e) for e in expense],
        "income_total": income_total,
        "expense_total": expense_total,
        "net_income": income_total - expense_total,
    }


def _entry_fields(item: dict) -> dict | None:
    """Normalized entry, or None when it names neither a catalog item nor a custom item."""
    item_id = parse_int(item.get("accounting_item_id"))
    custom_name = clean_str(item.get("custom_item_name"))
    if not item_id and not custom_name:
        return None
    return {
        "accounting_item_id": item_id,
        "amount": parse_float(item.get("amount"), 0.0) or 0.0,
        "custom_item_name": custom_name,
        "notes": clean_str(item.get("notes")),
        "is_ai_recommended": parse_bool(item.get("is_ai_recommended")),
    }


def save_work_accounting(
    s: "Session",
    report: "WorkReport",
    items: list[dict[str, Any]],
    user: "User",
    *,
    work_type: str | None = None,
    learn: bool = True,
) -> list["WorkReportAccounting"]:
    """Replace every accounting entry of `report` and feed non-zero lines to the recommender."""
    from app.fms.modules.accounting.models import AccountingItem, WorkReportAccounting

    if not isinstance(items, list):
        raise ValidationError("income_items and expense_items must be lists")

    normalized = [f for f in (_entry_fields(i) for i in items if isinstance(i, dict)) if f is not None]
    item_ids = {f["accounting_item_id"] for f in normalized if f["accounting_item_id"]}
    if item_ids:
        known = {i for (i,) in s.query(AccountingItem.id).filter(AccountingItem.id.in_(item_ids)).all()}
        unknown = sorted(item_ids - known)
        if unknown:
            raise ValidationError(f"Unknown accounting_item_id: {', '.join(str(i) for i in unknown)}")

    report.accounting_entries.clear()
    s.flush()
    now = datetime.utcnow()
    entries = []
    for fields in normalized:
        entry = WorkReportAccounting(work_report_id=report.id, created_at=now, **fields)
        report.accounting_entries.append(entry)
        entries.append(entry)
    s.flush()

    learned = 0
    work_type = work_type or report.work_type
    if learn and work_type:
        for fields in normalized:
            if fields["accounting_item_id"] and fields["amount"]:
                learn_recommendation(
                    s,
                    company_id=report.company_id,
                    work_type=work_type,
                    accounting_item_id=fields["accounting_item_id"],
                    amount=abs(fields["amount"]),
                    confidence_score=LEARNED_CONFIDENCE_AI if fields["is_ai_recommended"] else LEARNED_CONFIDENCE_MANUAL,
                )
                learned += 1

    record_event(
        s,
        actor=user,
        action="work_report.accounting_save",
        entity_type="WorkReport",
        entity_id=str(report.id),
        company_id=report.company_id,
        metadata={"entries": len(entries), "learned": learned},
    )
    logger.info("Saved %s accounting entries for work report %s", len(entries), report.id)
    return entries
