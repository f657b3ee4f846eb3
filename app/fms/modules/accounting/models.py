from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fms.models import Base

if TYPE_CHECKING:
    from app.fms.modules.work_reports.models import WorkReport


class AccountingItem(Base):
    __tablename__ = "accounting_items"
    __table_args__ = (
        UniqueConstraint("code", name="uq_accounting_items_code"),
        Index("idx_accounting_items_type", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(16), nullable=False)  # e.g. "⑦"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # income, expense, both
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cost_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # income, variable_cost, fixed_cost
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class WorkReportAccounting(Base):
    """One income/expense line attached to a work report."""

    __tablename__ = "work_report_accounting"
    __table_args__ = (Index("idx_work_report_accounting_report", "work_report_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    work_report_id: Mapped[int] = mapped_column(ForeignKey("work_reports.id", ondelete="CASCADE"), nullable=False)
    accounting_item_id: Mapped[int | None] = mapped_column(
        ForeignKey("accounting_items.id", ondelete="SET NULL"), nullable=True
    )
    amount: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    custom_item_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_ai_recommended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    work_report: Mapped["WorkReport"] = relationship("WorkReport", back_populates="accounting_entries", lazy="selectin")
    accounting_item: Mapped[AccountingItem | None] = relationship(AccountingItem, lazy="selectin")


class AccountingRecommendation(Base):
    __tablename__ = "accounting_recommendations"
    __table_args__ = (
        UniqueConstraint(
            "company_id", "work_type", "accounting_item_id", name="uq_accounting_recommendations_company_type_item"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    work_type: Mapped[str] = mapped_column(String(32), nullable=False)
    accounting_item_id: Mapped[int] = mapped_column(ForeignKey("accounting_items.id", ondelete="CASCADE"), nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)  # 0..1
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    accounting_item: Mapped[AccountingItem] = relationship(AccountingItem, lazy="selectin")
