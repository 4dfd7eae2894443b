"""Matching parameter repository."""

from typing import Any, List, Optional

from hopelink.db.models.matching_parameters import MatchingParameterRecord
from hopelink.db.repository import BaseRepository


class MatchingParametersRepository(BaseRepository[MatchingParameterRecord]):
    """Repository for MatchingParameterRecord with per-context queries."""

    async def get_active(self, parameter_group: str) -> Optional[MatchingParameterRecord]:
        """Get the active record for a context, newest first if duplicated."""
        records = await self.filter(parameter_group=parameter_group, is_active=True)
        return records[-1] if records else None

    async def get_all_active(self) -> List[MatchingParameterRecord]:
        """Get the active record of every context."""
        return await self.filter(is_active=True)

    async def upsert(
        self,
        parameter_group: str,
        values: dict[str, Any],
        updated_by: Optional[int] = None,
    ) -> MatchingParameterRecord:
        """
        Create or update the active record for a context.

        Args:
            parameter_group: Matching context
            values: Column values to store
            updated_by: Admin user ID for the audit trail

        Returns:
            The stored record
        """
        existing = await self.get_active(parameter_group)
        if existing:
            updated = await self.update(existing.id, updated_by=updated_by, **values)
            if updated is not None:
                return updated
            # Row removed since it was read; fall through and recreate it

        return await self.create(
            parameter_group=parameter_group,
            is_active=True,
            updated_by=updated_by,
            **values,
        )
