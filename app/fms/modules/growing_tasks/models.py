from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fms.models import Base

if TYPE_CHECKING:
    from app.fms.modules.vegetables.models import Vegetable


class GrowingTask(Base):
    __tablename__ = "growing_tasks"
    __table_args__ = (
        Index("idx_growing_tasks_company", "company_id"),
        Index("idx_growing_tasks_vegetable", "vegetable_id"),
        Index("idx_growing_tasks_dates", "start_date", "end_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    vegetable_id: Mapped[int] = mapped_column(ForeignKey("vegetables.id", ondelete="CASCADE"), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0..100
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")  # pending, in_progress, completed, cancelled
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")  # low, medium, high
    task_type: Mapped[str] = mapped_column(String(32), nullable=False, default="other")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    assigned_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    actual_hours: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    vegetable: Mapped["Vegetable"] = relationship("Vegetable", back_populates="tasks", lazy="selectin")
