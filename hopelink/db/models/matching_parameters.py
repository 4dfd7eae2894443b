"""Matching parameter records, one active row per context."""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, Float, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from hopelink.db.base import Base


class MatchingParameterRecord(Base):
    """
    Admin-tunable weights and thresholds for one matching context.

    Stored as flat columns so operators can inspect and patch them directly.
    """

    __tablename__ = "matching_parameters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    parameter_group: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True,
        comment="Matching context (e.g. 'DONOR_RECIPIENT_VOLUNTEER')"
    )

    # Weights
    geographic_weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.30)
    item_compatibility_weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.25)
    urgency_weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.20)
    reliability_weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.15)
    delivery_compatibility_weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.10)

    # Gate
    auto_match_enabled: Mapped[bool] = mapped_column(default=False, nullable=False)
    auto_match_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=0.75)
    auto_claim_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=0.85)

    # Filters and boosts
    max_matching_distance_km: Mapped[float] = mapped_column(Float, nullable=False, default=50.0)
    min_quantity_match_ratio: Mapped[float] = mapped_column(Float, nullable=False, default=0.8)
    perishable_geographic_boost: Mapped[float] = mapped_column(Float, nullable=False, default=0.35)
    critical_urgency_boost: Mapped[float] = mapped_column(Float, nullable=False, default=0.30)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    updated_by: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True,
        comment="Admin user who last saved this record"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("idx_params_group_active", "parameter_group", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<MatchingParameterRecord(id={self.id}, group={self.parameter_group}, "
            f"active={self.is_active})>"
        )
