"""User model for donors, recipients, volunteers and admins."""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import JSON, String, DateTime, Float, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from hopelink.db.base import Base


class User(Base):
    """
    A HopeLink community member.

    Carries the profile fields the matcher reads: location, rating history
    and the role-specific preferences (donation types for donors, assistance
    needs for recipients, delivery preferences for volunteers).
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    role: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True,
        comment="One of 'donor', 'recipient', 'volunteer', 'admin'"
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="active",
        comment="Account status ('active', 'suspended')"
    )

    # Location
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    barangay: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True,
        comment="District within the city, used for address-based proximity"
    )
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Reputation
    rating_average: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0,
        comment="Average feedback rating on a 0-5 scale"
    )
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Preferences
    donation_types: Mapped[Optional[list]] = mapped_column(
        JSON, nullable=True,
        comment="Donor: kinds of items they usually give (e.g. 'Food', 'Clothing')"
    )
    assistance_needs: Mapped[Optional[list]] = mapped_column(
        JSON, nullable=True,
        comment="Recipient: kinds of help they usually need"
    )
    preferred_delivery_types: Mapped[Optional[list]] = mapped_column(
        JSON, nullable=True,
        comment="Volunteer: item kinds they are willing to carry"
    )
    urgency_preference: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True,
        comment="Volunteer: urgency level they prefer to serve"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("idx_user_role_status", "role", "status"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role={self.role}, name={self.name})>"
