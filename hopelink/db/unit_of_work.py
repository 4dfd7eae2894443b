"""Unit of Work pattern for managing database transactions."""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession

from hopelink.db import base
from hopelink.db.models import (
    User,
    Donation,
    DonationRequest,
    Match,
    MatchingParameterRecord,
)
from hopelink.db.repositories import (
    UserRepository,
    DonationRepository,
    DonationRequestRepository,
    MatchRepository,
    MatchingParametersRepository,
)


class UnitOfWork:
    """
    Single entry point for repository operations sharing one session.

    Usage:
        async with UnitOfWork() as uow:
            request = await uow.requests.get_by_id(1)
            donations = await uow.donations.get_available()
            await uow.commit()
    """

    def __init__(self, session: Optional[AsyncSession] = None):
        """
        Initialize Unit of Work.

        Args:
            session: Optional existing session (useful for testing)
        """
        self._session = session
        self._owned_session = session is None

        # Repositories (initialized in __aenter__)
        self.users: UserRepository = None  # type: ignore
        self.donations: DonationRepository = None  # type: ignore
        self.requests: DonationRequestRepository = None  # type: ignore
        self.matches: MatchRepository = None  # type: ignore
        self.parameters: MatchingParametersRepository = None  # type: ignore

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("UnitOfWork used outside its context")
        return self._session

    async def __aenter__(self):
        """Enter async context manager."""
        if self._owned_session:
            self._session = base.AsyncSessionLocal()

        session = self.session
        self.users = UserRepository(User, session)
        self.donations = DonationRepository(Donation, session)
        self.requests = DonationRequestRepository(DonationRequest, session)
        self.matches = MatchRepository(Match, session)
        self.parameters = MatchingParametersRepository(MatchingParameterRecord, session)

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        if exc_type is not None:
            await self.rollback()
        elif self._owned_session:
            await self.commit()

        if self._owned_session and self._session:
            await self._session.close()

    async def commit(self):
        """Commit the current transaction."""
        if self._session:
            await self._session.commit()

    async def rollback(self):
        """Rollback the current transaction."""
        if self._session:
            await self._session.rollback()
