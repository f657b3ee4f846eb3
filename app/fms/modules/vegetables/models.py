from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fms.models import Base, JSONType

if TYPE_CHECKING:
    from app.fms.modules.growing_tasks.models import GrowingTask
    from app.fms.modules.work_reports.models import WorkReport


class Vegetable(Base):
    __tablename__ = "vegetables"
    __table_args__ = (
        Index("idx_vegetables_company", "company_id"),
        Index("idx_vegetables_status", "status"),
        Index("idx_vegetables_plot_name", "company_id", "plot_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)

    # Required
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    variety_name: Mapped[str] = mapped_column(String(255), nullable=False)
    plot_name: Mapped[str] = mapped_column(String(255), nullable=False)
    area_size: Mapped[float] = mapped_column(Float, nullable=False, default=0)  # square metres
    planting_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="planning")  # planning, growing, harvesting, completed

    plant_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expected_harvest_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    expected_harvest_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_harvest_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    actual_harvest_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Map data (GeoJSON feature as drawn, polygon ring, bbox centre)
    spatial_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    polygon_coordinates: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    plot_center_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    plot_center_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    polygon_color: Mapped[str] = mapped_column(String(16), nullable=False, default="#22c55e")
    farm_plot_id: Mapped[int | None] = mapped_column(ForeignKey("farm_plots.id", ondelete="SET NULL"), nullable=True)

    custom_fields: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Soft delete
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    deleted_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    tasks: Mapped[list["GrowingTask"]] = relationship(
        "GrowingTask",
        back_populates="vegetable",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    reports: Mapped[list["WorkReport"]] = relationship(
        "WorkReport",
        back_populates="vegetable",
        lazy="selectin",
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
