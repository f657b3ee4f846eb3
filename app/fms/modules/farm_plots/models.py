from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fms.models import Base, JSONType

if TYPE_CHECKING:
    from app.fms.modules.vegetables.models import Vegetable


class FarmPlot(Base):
    __tablename__ = "farm_plots"
    __table_args__ = (Index("idx_farm_plots_company", "company_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    area_hectares: Mapped[float | None] = mapped_column(Float, nullable=True)
    geometry: Mapped[dict] = mapped_column(JSONType, nullable=False)  # GeoJSON Polygon

    prefecture: Mapped[str | None] = mapped_column(String(64), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(16), nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")  # active, archived
    is_mesh_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mesh_size_meters: Mapped[float] = mapped_column(Float, nullable=False, default=5)
    mesh_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    cells: Mapped[list["PlotCell"]] = relationship(
        back_populates="farm_plot",
        cascade="all, delete-orphan",
        lazy="select",
    )


class PlotCell(Base):
    __tablename__ = "plot_cells"
    __table_args__ = (
        UniqueConstraint("farm_plot_id", "row_index", "col_index", name="uq_plot_cells_plot_row_col"),
        Index("idx_plot_cells_plot", "farm_plot_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    farm_plot_id: Mapped[int] = mapped_column(ForeignKey("farm_plots.id", ondelete="CASCADE"), nullable=False)
    cell_index: Mapped[int] = mapped_column(Integer, nullable=False)
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)
    col_index: Mapped[int] = mapped_column(Integer, nullable=False)
    geometry: Mapped[dict] = mapped_column(JSONType, nullable=False)  # GeoJSON Polygon
    center_lat: Mapped[float] = mapped_column(Float, nullable=False)
    center_lng: Mapped[float] = mapped_column(Float, nullable=False)
    area_sqm: Mapped[float] = mapped_column(Float, nullable=False)
    is_cultivated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    vegetable_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    farm_plot: Mapped[FarmPlot] = relationship(back_populates="cells", lazy="selectin")
    vegetable_cells: Mapped[list["VegetableCell"]] = relationship(
        back_populates="plot_cell",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class VegetableCell(Base):
    __tablename__ = "vegetable_cells"
    __table_args__ = (
        UniqueConstraint("vegetable_id", "plot_cell_id", name="uq_vegetable_cells_vegetable_cell"),
        Index("idx_vegetable_cells_cell", "plot_cell_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vegetable_id: Mapped[int] = mapped_column(ForeignKey("vegetables.id", ondelete="CASCADE"), nullable=False)
    plot_cell_id: Mapped[int] = mapped_column(ForeignKey("plot_cells.id", ondelete="CASCADE"), nullable=False)
    planting_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    plant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    growth_stage: Mapped[str | None] = mapped_column(String(32), nullable=True)
    health_status: Mapped[str] = mapped_column(String(32), nullable=False, default="healthy")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    plot_cell: Mapped[PlotCell] = relationship(back_populates="vegetable_cells", lazy="selectin")
    vegetable: Mapped["Vegetable"] = relationship("Vegetable", lazy="selectin")
