"""Match model linking a request to a donation and optionally a volunteer."""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime, Numeric, Integer, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hopelink.db.base import Base


class Match(Base):
    """
    A claimed pairing of a request with a donation.

    One row per (request, donation) pair; retries of the same claim return
    this row instead of inserting a second one.
    """

    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    request_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("donation_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    donation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("donations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    volunteer_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
        comment="Volunteer assigned to deliver (null until assigned)"
    )

    quantity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1,
        comment="Quantity taken from the donation for this match"
    )
    score: Mapped[float] = mapped_column(
        Numeric(precision=5, scale=4), nullable=False, default=0.0,
        comment="Compatibility score at claim time (0-1)"
    )
    state: Mapped[str] = mapped_column(
        String(30), nullable=False, default="claimed",
        comment="Gate state at claim time"
    )
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="claimed", index=True,
        comment="'claimed', 'in_transit', 'delivered' or 'cancelled'"
    )
    delivery_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="pickup")

    match_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    match_details: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True,
        comment="JSON blob with the per-factor score breakdown"
    )
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        UniqueConstraint("request_id", "donation_id", name="uq_match_request_donation"),
        Index("idx_match_volunteer_status", "volunteer_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Match(id={self.id}, request_id={self.request_id}, "
            f"donation_id={self.donation_id}, volunteer_id={self.volunteer_id}, "
            f"score={self.score}, status={self.status})>"
        )
