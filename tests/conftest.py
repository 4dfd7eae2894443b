import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Ensure project root is on sys.path so `import hopelink` works when running pytest from root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Force test database URL before any hopelink imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("ENV", "development")

from hopelink.db import base  # noqa: E402
from hopelink.db.models import Donation, DonationRequest, Match, User  # noqa: E402
from hopelink.matching.metrics import reset_metrics  # noqa: E402
from hopelink.matching.parameters import reset_parameter_store  # noqa: E402

# Lapasan, Cagayan de Oro
BASE_LAT = 8.4822
BASE_LON = 124.6630
# Degrees of latitude per kilometre
KM = 1 / 111.195


@pytest.fixture(autouse=True)
def clean_matching_state():
    """Fresh parameter cache and metrics for every test."""
    reset_parameter_store()
    reset_metrics()
    yield
    reset_parameter_store()


@pytest_asyncio.fixture
async def test_db(tmp_path, monkeypatch):
    """
    Provide a session factory bound to a fresh database file.

    The module-level engine and session factory are patched so UnitOfWork,
    get_db and the recommendation refresh all use the test database.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'hopelink_test.db'}", echo=False, future=True
    )
    async with engine.begin() as conn:
        await conn.run_sync(base.Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(base, "engine", engine)
    monkeypatch.setattr(base, "AsyncSessionLocal", session_factory)

    yield session_factory

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_db):
    """Get a database session for a test."""
    async with test_db() as session:
        yield session
        await session.rollback()


class DataFactory:
    """Creates committed rows with sensible defaults."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._counter = 0

    async def _add(self, instance):
        self.session.add(instance)
        await self.session.commit()
        return instance

    async def user(self, role: str = "donor", **kwargs) -> User:
        self._counter += 1
        values = {
            "name": f"{role.title()} {self._counter}",
            "city": "Cagayan de Oro",
            "barangay": "Lapasan",
            "latitude": BASE_LAT,
            "longitude": BASE_LON,
        }
        values.update(kwargs)
        return await self._add(User(role=role, **values))

    async def volunteer(self, **kwargs) -> User:
        return await self.user(role="volunteer", **kwargs)

    async def donation(self, donor: User, **kwargs) -> Donation:
        values = {
            "title": "Rice sacks",
            "category": "food",
            "tags": ["rice"],
            "quantity": 10,
            "delivery_mode": "pickup",
            "city": donor.city,
            "barangay": donor.barangay,
            "latitude": donor.latitude,
            "longitude": donor.longitude,
        }
        values.update(kwargs)
        return await self._add(Donation(donor_id=donor.id, **values))

    async def request(self, requester: User, **kwargs) -> DonationRequest:
        values = {
            "title": "Rice",
            "category": "food",
            "tags": ["rice"],
            "quantity_needed": 10,
            "urgency": "medium",
            "delivery_mode": "pickup",
            "city": requester.city,
            "barangay": requester.barangay,
            "latitude": requester.latitude,
            "longitude": requester.longitude,
        }
        values.update(kwargs)
        return await self._add(DonationRequest(requester_id=requester.id, **values))

    async def match(self, request: DonationRequest, donation: Donation, **kwargs) -> Match:
        values = {
            "quantity": 1,
            "score": 0.5,
            "status": "claimed",
            "delivery_mode": "volunteer",
        }
        values.update(kwargs)
        return await self._add(
            Match(request_id=request.id, donation_id=donation.id, **values)
        )

    async def reload(self, instance):
        """Re-read a row to see changes committed by other sessions."""
        await self.session.refresh(instance)
        return instance


@pytest_asyncio.fixture
async def factory(test_db):
    """Row factory on its own session."""
    async with test_db() as session:
        yield DataFactory(session)


def at(hour: int) -> datetime:
    """A fixed UTC timestamp on a fixed day."""
    return datetime(2025, 11, 5, hour, 0, 0, tzinfo=timezone.utc)
