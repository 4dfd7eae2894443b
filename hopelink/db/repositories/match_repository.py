"""Match repository with specialized queries."""

from typing import Optional, List

from hopelink.db.models.match import Match
from hopelink.db.repository import BaseRepository


class MatchRepository(BaseRepository[Match]):
    """Repository for Match model with specialized queries."""

    async def get_for_pair(self, request_id: int, donation_id: int) -> Optional[Match]:
        """Get the match for a (request, donation) pair, cancelled or not."""
        matches = await self.filter(request_id=request_id, donation_id=donation_id)
        return matches[0] if matches else None

    async def get_matched_donation_ids(self, request_id: int) -> set[int]:
        """IDs of donations already matched to a request."""
        matches = await self.filter(request_id=request_id, status__ne="cancelled")
        return {m.donation_id for m in matches}

    async def get_matched_request_ids(self, donation_id: int) -> set[int]:
        """IDs of requests already matched to a donation."""
        matches = await self.filter(donation_id=donation_id, status__ne="cancelled")
        return {m.request_id for m in matches}

    async def get_awaiting_volunteer(self, limit: Optional[int] = None) -> List[Match]:
        """
        Get claimed volunteer-delivery matches with nobody assigned yet.

        Args:
            limit: Maximum number of matches to return

        Returns:
            Matches ordered oldest first
        """
        matches = await self.filter(
            status="claimed", delivery_mode="volunteer", volunteer_id__isnull=True
        )
        return matches[:limit] if limit else matches

    async def assign_volunteer(self, match_id: int, volunteer_id: int) -> bool:
        """
        Atomically assign a volunteer to a match that has none.

        Returns:
            True if assigned, False if someone else was assigned first
        """
        updated = await self.update_where(
            {"id": match_id, "volunteer_id__isnull": True, "status": "claimed"},
            volunteer_id=volunteer_id,
        )
        return updated == 1

    async def get_match_statistics(self) -> dict:
        """Count matches per status."""
        stats = {}
        for status in ("claimed", "in_transit", "delivered", "cancelled"):
            stats[status] = await self.count(status=status)
        stats["total"] = sum(stats.values())
        return stats
