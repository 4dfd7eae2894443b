"""Donation model: items offered by donors."""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import JSON, String, Text, DateTime, Float, Integer, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from hopelink.db.base import Base


class Donation(Base):
    """
    An offer of items by a donor.

    ``quantity`` is the quantity still available. Claiming a match decrements
    it, and the donation flips to ``matched`` once nothing is left.
    """

    __tablename__ = "donations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    donor_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Item
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(
        String(50), nullable=False, index=True,
        comment="Item category (e.g. 'food', 'clothing', 'electronics')"
    )
    tags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    quantity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1,
        comment="Remaining quantity on offer"
    )
    is_urgent: Mapped[bool] = mapped_column(default=False, nullable=False)
    is_perishable: Mapped[Optional[bool]] = mapped_column(
        nullable=True,
        comment="Explicit perishability flag; null means infer from category"
    )

    # Logistics
    delivery_mode: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pickup",
        comment="'pickup', 'volunteer' or 'direct'"
    )
    pickup_location: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    barangay: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="available", index=True,
        comment="'available', 'matched', 'completed', 'cancelled'"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("idx_donation_status_category", "status", "category"),
    )

    def __repr__(self) -> str:
        return (
            f"<Donation(id={self.id}, title={self.title!r}, category={self.category}, "
            f"quantity={self.quantity}, status={self.status})>"
        )
