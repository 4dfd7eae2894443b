"""User repository with matching-specific queries."""

from typing import List, Optional
from sqlalchemy import case, func, select

from hopelink.db.models.donation import Donation
from hopelink.db.models.match import Match
from hopelink.db.models.request import DonationRequest
from hopelink.db.models.user import User
from hopelink.db.repository import BaseRepository

ACTIVE_DELIVERY_STATUSES = ("claimed", "in_transit")


class UserRepository(BaseRepository[User]):
    """Repository for User model with specialized queries."""

    async def get_active_volunteers(self) -> List[User]:
        """Get every volunteer whose account is active."""
        return await self.filter(role="volunteer", status="active")

    async def count_active_deliveries(self, volunteer_id: int) -> int:
        """Count matches assigned to a volunteer that are not yet delivered."""
        query = select(func.count(Match.id)).where(
            Match.volunteer_id == volunteer_id,
            Match.status.in_(ACTIVE_DELIVERY_STATUSES),
        )
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def get_task_history(self, user: User) -> dict:
        """
        Summarise a user's match history for reliability scoring.

        Donors are counted through their donations, recipients through their
        requests and volunteers through the deliveries assigned to them.

        Args:
            user: User to summarise

        Returns:
            Dict with ``total`` and ``completed`` match counts
        """
        query = select(
            func.count(Match.id),
            func.sum(case((Match.status == "delivered", 1), else_=0)),
        ).select_from(Match)
        if user.role == "donor":
            query = query.join(Donation, Donation.id == Match.donation_id).where(
                Donation.donor_id == user.id
            )
        elif user.role == "recipient":
            query = query.join(
                DonationRequest, DonationRequest.id == Match.request_id
            ).where(DonationRequest.requester_id == user.id)
        else:
            query = query.where(Match.volunteer_id == user.id)

        total, completed = (await self.session.execute(query)).one()
        return {"total": total or 0, "completed": completed or 0}

    async def get_many(self, ids: List[int]) -> dict[int, User]:
        """Load several users at once, keyed by ID."""
        if not ids:
            return {}
        users = await self.filter(id__in=set(ids))
        return {u.id: u for u in users}

    async def get_with_role(self, user_id: int, role: str) -> Optional[User]:
        """Get a user only if they hold the given role."""
        user = await self.get_by_id(user_id)
        if user is None or user.role != role:
            return None
        return user
