"""Generic repository shared by every table of the matching service."""

from typing import Generic, TypeVar, Type, Optional, List
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hopelink.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Row access for one model over a caller-owned session.

    Repositories flush but never commit; the Unit of Work (or the request's
    ``get_db`` session) decides when a transaction ends.

    Filter keywords take an optional operator suffix:
    - quantity__gt=0, rating_average__gte=4.0 (lt / lte / gt / gte)
    - status__ne="cancelled"
    - id__in=[1, 2, 3]
    - volunteer_id__isnull=True
    - status="open" (no suffix means equality)
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    async def create(self, **kwargs) -> ModelType:
        """
        Insert a row and return it with database defaults loaded.

        Raises:
            IntegrityError: On a unique constraint clash (flushed immediately)
        """
        row = self.model(**kwargs)
        self.session.add(row)
        await self.session.flush()
        await self.session.refresh(row)
        return row

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        """Primary-key lookup; None when the row does not exist."""
        result = await self.session.execute(
            select(self.model).where(self.model.id == id)  # type: ignore
        )
        return result.scalar_one_or_none()

    async def filter(self, **filters) -> List[ModelType]:
        """
        Rows matching every filter, oldest id first.

        Examples:
            await repo.filter(status="open", urgency="critical")
            await repo.filter(quantity__gt=0, donor_id__ne=3)
        """
        query = (
            select(self.model)
            .where(*self._conditions(filters))
            .order_by(self.model.id)  # type: ignore
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    def _conditions(self, filters: dict) -> list:
        clauses = []
        for key, value in filters.items():
            name, _, op = key.partition("__")
            column = getattr(self.model, name)

            if op == "":
                clauses.append(column == value)
            elif op == "ne":
                clauses.append(column != value)
            elif op == "lt":
                clauses.append(column < value)
            elif op == "lte":
                clauses.append(column <= value)
            elif op == "gt":
                clauses.append(column > value)
            elif op == "gte":
                clauses.append(column >= value)
            elif op == "in":
                clauses.append(column.in_(list(value)))
            elif op == "isnull":
                clauses.append(column.is_(None) if value else column.is_not(None))
            else:
                raise ValueError(f"Unknown filter operator {op!r} in {key!r}")
        return clauses

    async def update(self, id: int, **values) -> Optional[ModelType]:
        """
        Set columns on one row and return the refreshed row.

        Returns:
            The row, or None if no row has that id
        """
        await self.session.execute(
            update(self.model).where(self.model.id == id).values(**values)  # type: ignore
        )
        await self.session.flush()
        row = await self.get_by_id(id)
        if row is not None:
            await self.session.refresh(row)
        return row

    async def update_where(self, where: dict, **values) -> int:
        """
        Conditionally update rows and report how many changed.

        Used as a compare-and-swap: callers put the state they observed in
        ``where`` and treat a zero return as "someone else got there first".

        Args:
            where: Filters the rows must still satisfy
            **values: Columns to set

        Returns:
            Number of rows updated
        """
        stmt = (
            update(self.model)
            .where(*self._conditions(where))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount or 0  # type: ignore

    async def count(self, **filters) -> int:
        """Number of rows matching the filters."""
        query = select(func.count(self.model.id)).where(  # type: ignore
            *self._conditions(filters)
        )
        result = await self.session.execute(query)
        return result.scalar() or 0
