from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, PrimaryKeyConstraint, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class StoredProfile(Base):
    __tablename__ = "profiles"

    year: Mapped[str] = mapped_column(String(10), nullable=False)  # admission year the grades were entered for
    id: Mapped[str] = mapped_column(String(64), nullable=False)
    subjects_json: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        PrimaryKeyConstraint("year", "id", name="pk_profiles"),
        Index("ix_profiles_year", "year"),
    )

    def to_profile(self) -> dict:
        return {"id": self.id, "subjects": dict(self.subjects_json or {})}
