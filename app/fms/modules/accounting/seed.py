"""
Standard chart of accounts for a blue-return farm income statement.

Codes are the circled numbers printed on the statement; sort_order follows them.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

# (code, name, type, category, cost_type)
FARM_ACCOUNTING_ITEMS: tuple[tuple[str, str, str, str, str], ...] = (
    ("①", "販売金額", "income", "sales", "income"),
    ("②", "家事・事業消費金額", "income", "sales", "income"),
    ("③", "雑収入", "income", "other_income", "income"),
    ("④", "租税公課", "expense", "taxes", "fixed_cost"),
    ("⑤", "種苗費", "expense", "materials", "variable_cost"),
    ("⑥", "素畜費", "expense", "materials", "variable_cost"),
    ("⑦", "肥料費", "expense", "materials", "variable_cost"),
    ("⑧", "飼料費", "expense", "materials", "variable_cost"),
    ("⑨", "農具費", "expense", "equipment", "fixed_cost"),
    ("⑩", "農薬・衛生費", "expense", "materials", "variable_cost"),
    ("⑪", "諸材料費", "expense", "materials", "variable_cost"),
    ("⑫", "修繕費", "expense", "equipment", "fixed_cost"),
    ("⑬", "動力光熱費", "expense", "utilities", "variable_cost"),
    ("⑭", "作業用衣料費", "expense", "other", "variable_cost"),
    ("⑮", "農業共済掛金", "expense", "insurance", "fixed_cost"),
    ("⑯", "減価償却費", "expense", "depreciation", "fixed_cost"),
    ("⑰", "荷造運賃手数料", "expense", "shipping", "variable_cost"),
    ("⑱", "雇人費", "expense", "labor", "variable_cost"),
    ("⑲", "利子割引料", "expense", "finance", "fixed_cost"),
    ("⑳", "地代・賃借料", "expense", "rent", "fixed_cost"),
    ("㉑", "土地改良費", "expense", "land", "fixed_cost"),
    ("㉒", "貸倒金", "expense", "other", "fixed_cost"),
    ("㉓", "雑費", "both", "other", "variable_cost"),
)


def ensure_accounting_items(s: "Session") -> int:
    """Insert any missing standard items (idempotent). Returns the number inserted."""
    from app.fms.modules.accounting.models import AccountingItem

    existing = {code for (code,) in s.query(AccountingItem.code).all()}
    added = 0
    for order, (code, name, item_type, category, cost_type) in enumerate(FARM_ACCOUNTING_ITEMS, start=1):
        if code in existing:
            continue
        s.add(
            AccountingItem(
                code=code,
                name=name,
                type=item_type,
                category=category,
                cost_type=cost_type,
                is_active=True,
                sort_order=order,
            )
        )
        added += 1
    if added:
        s.flush()
    return added
