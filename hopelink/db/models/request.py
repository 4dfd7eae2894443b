"""Donation request model: needs posted by recipients."""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import JSON, String, Text, DateTime, Float, Integer, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from hopelink.db.base import Base


class DonationRequest(Base):
    """A recipient's request for items."""

    __tablename__ = "donation_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    requester_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    tags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    quantity_needed: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    urgency: Mapped[str] = mapped_column(
        String(20), nullable=False, default="medium",
        comment="'low', 'medium', 'high' or 'critical'"
    )

    delivery_mode: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pickup",
        comment="Preferred way of receiving the items"
    )
    delivery_location: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    barangay: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="open", index=True,
        comment="'open', 'claimed', 'fulfilled', 'cancelled'"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("idx_request_status_urgency", "status", "urgency"),
    )

    def __repr__(self) -> str:
        return (
            f"<DonationRequest(id={self.id}, title={self.title!r}, "
            f"urgency={self.urgency}, status={self.status})>"
        )
