"""Donation request repository with specialized queries."""

from typing import List

from hopelink.db.models.request import DonationRequest
from hopelink.db.repository import BaseRepository


class DonationRequestRepository(BaseRepository[DonationRequest]):
    """Repository for DonationRequest model with specialized queries."""

    async def get_open(self, exclude_requester_id: int | None = None) -> List[DonationRequest]:
        """Get every open request, optionally skipping one requester."""
        filters: dict = {"status": "open"}
        if exclude_requester_id is not None:
            filters["requester_id__ne"] = exclude_requester_id
        return await self.filter(**filters)

    async def get_open_for_requester(self, requester_id: int) -> List[DonationRequest]:
        """Get a recipient's own open requests."""
        return await self.filter(requester_id=requester_id, status="open")

    async def claim(self, request_id: int) -> bool:
        """
        Atomically move a request from ``open`` to ``claimed``.

        Returns:
            True if this caller claimed it, False if it was no longer open
        """
        updated = await self.update_where(
            {"id": request_id, "status": "open"}, status="claimed"
        )
        return updated == 1
