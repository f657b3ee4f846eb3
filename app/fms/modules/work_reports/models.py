from __future__ import annotations

from datetime import date, datetime, time
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fms.models import Base

if TYPE_CHECKING:
    from app.fms.modules.accounting.models import WorkReportAccounting
    from app.fms.modules.photos.models import Photo
    from app.fms.modules.vegetables.models import Vegetable


class WorkReport(Base):
    __tablename__ = "work_reports"
    __table_args__ = (
        Index("idx_work_reports_company_date", "company_id", "work_date"),
        Index("idx_work_reports_vegetable", "vegetable_id"),
        Index("idx_work_reports_work_type", "work_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    vegetable_id: Mapped[int | None] = mapped_column(ForeignKey("vegetables.id", ondelete="SET NULL"), nullable=True)

    # Required
    work_type: Mapped[str] = mapped_column(String(32), nullable=False)
    work_date: Mapped[date] = mapped_column(Date, nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    duration_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    worker_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Conditions
    weather: Mapped[str | None] = mapped_column(String(64), nullable=True)
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)  # celsius
    humidity: Mapped[float | None] = mapped_column(Float, nullable=True)  # percent

    # Harvest
    harvest_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    harvest_unit: Mapped[str | None] = mapped_column(String(16), nullable=True)
    harvest_quality: Mapped[str | None] = mapped_column(String(16), nullable=True)  # premium, excellent, good, fair, poor
    expected_price: Mapped[float | None] = mapped_column(Float, nullable=True)  # JPY per unit

    # Inputs
    fertilizer_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    fertilizer_qty: Mapped[float | None] = mapped_column(Float, nullable=True)  # kg

    # Soil
    soil_ph: Mapped[float | None] = mapped_column(Float, nullable=True)
    soil_ec: Mapped[float | None] = mapped_column(Float, nullable=True)
    available_phosphorus: Mapped[float | None] = mapped_column(Float, nullable=True)
    humus_content: Mapped[float | None] = mapped_column(Float, nullable=True)
    soil_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    vegetable: Mapped["Vegetable | None"] = relationship("Vegetable", back_populates="reports", lazy="selectin")
    accounting_entries: Mapped[list["WorkReportAccounting"]] = relationship(
        "WorkReportAccounting",
        back_populates="work_report",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    photos: Mapped[list["Photo"]] = relationship("Photo", back_populates="work_report", lazy="selectin")
