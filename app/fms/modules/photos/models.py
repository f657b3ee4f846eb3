from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fms.models import Base, JSONType

if TYPE_CHECKING:
    from app.fms.modules.vegetables.models import Vegetable
    from app.fms.modules.work_reports.models import WorkReport


class Photo(Base):
    __tablename__ = "photos"
    __table_args__ = (
        Index("idx_photos_company", "company_id"),
        Index("idx_photos_vegetable_taken", "vegetable_id", "taken_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    vegetable_id: Mapped[int] = mapped_column(ForeignKey("vegetables.id", ondelete="CASCADE"), nullable=False)
    work_report_id: Mapped[int | None] = mapped_column(ForeignKey("work_reports.id", ondelete="SET NULL"), nullable=True)

    storage_key: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(64), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)

    taken_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list | None] = mapped_column(JSONType, nullable=True, default=list)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    vegetable: Mapped["Vegetable"] = relationship("Vegetable", lazy="selectin")
    work_report: Mapped["WorkReport | None"] = relationship("WorkReport", back_populates="photos", lazy="selectin")
