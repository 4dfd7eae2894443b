"""Donation repository with specialized queries."""

from typing import List

from hopelink.db.models.donation import Donation
from hopelink.db.repository import BaseRepository


class DonationRepository(BaseRepository[Donation]):
    """Repository for Donation model with specialized queries."""

    async def get_available(self, exclude_donor_id: int | None = None) -> List[Donation]:
        """
        Get donations that can still be claimed.

        Args:
            exclude_donor_id: Skip donations from this donor

        Returns:
            Available donations with quantity left, oldest first
        """
        filters: dict = {"status": "available", "quantity__gt": 0}
        if exclude_donor_id is not None:
            filters["donor_id__ne"] = exclude_donor_id
        return await self.filter(**filters)

    async def get_available_for_donor(self, donor_id: int) -> List[Donation]:
        """Get a donor's own donations that are still available."""
        return await self.filter(donor_id=donor_id, status="available", quantity__gt=0)

    async def claim_quantity(
        self, donation_id: int, observed_quantity: int, take: int
    ) -> bool:
        """
        Atomically take ``take`` units from a donation.

        Succeeds only while the donation is still available with exactly the
        quantity the caller scored against. The donation moves to ``matched``
        once nothing is left.

        Args:
            donation_id: Donation to claim from
            observed_quantity: Remaining quantity seen when scoring
            take: Units to claim

        Returns:
            True if the row was updated, False if it changed underneath us
        """
        remaining = observed_quantity - take
        updated = await self.update_where(
            {"id": donation_id, "status": "available", "quantity": observed_quantity},
            quantity=remaining,
            status="available" if remaining > 0 else "matched",
        )
        return updated == 1
