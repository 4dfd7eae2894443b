"""Seed database with a sample community for development and testing."""

import asyncio

from hopelink.db.init import create_tables
from hopelink.db.unit_of_work import UnitOfWork
from hopelink.matching.config import DEFAULT_CONTEXT, MatchingParameters

SAMPLE_USERS = [
    {
        "role": "donor",
        "name": "Maria Santos",
        "city": "Cagayan de Oro",
        "barangay": "Lapasan",
        "latitude": 8.4822,
        "longitude": 124.6630,
        "rating_average": 4.8,
        "rating_count": 12,
        "donation_types": ["Food & Beverages", "Household Items"],
    },
    {
        "role": "donor",
        "name": "Jose Ramirez",
        "city": "Opol",
        "barangay": "Poblacion",
        "latitude": 8.5200,
        "longitude": 124.5710,
        "rating_average": 4.1,
        "rating_count": 5,
        "donation_types": ["Clothing & Accessories"],
    },
    {
        "role": "recipient",
        "name": "Ana Dela Cruz",
        "city": "Cagayan de Oro",
        "barangay": "Kauswagan",
        "latitude": 8.4960,
        "longitude": 124.6300,
        "assistance_needs": ["Food & Beverages", "Medical Supplies"],
    },
    {
        "role": "recipient",
        "name": "Pedro Bautista",
        "city": "Cagayan de Oro",
        "barangay": "Macabalan",
        "latitude": 8.4990,
        "longitude": 124.6570,
        "assistance_needs": ["Clothing & Accessories"],
    },
    {
        "role": "volunteer",
        "name": "Liza Mercado",
        "city": "Cagayan de Oro",
        "barangay": "Canitoan",
        "latitude": 8.4700,
        "longitude": 124.6000,
        "rating_average": 4.6,
        "rating_count": 8,
        "preferred_delivery_types": ["Food Items", "Clothing"],
        "urgency_preference": "high",
    },
]

# Indexes refer to SAMPLE_USERS
SAMPLE_DONATIONS = [
    {
        "donor": 0,
        "title": "Rice and canned goods",
        "category": "food",
        "tags": ["rice", "canned"],
        "quantity": 20,
        "is_urgent": True,
        "delivery_mode": "volunteer",
    },
    {
        "donor": 1,
        "title": "Children's winter jackets",
        "category": "clothing",
        "tags": ["jackets", "kids"],
        "quantity": 10,
        "delivery_mode": "pickup",
    },
]

SAMPLE_REQUESTS = [
    {
        "requester": 2,
        "title": "Rice for family of five",
        "category": "food",
        "tags": ["rice"],
        "quantity_needed": 15,
        "urgency": "critical",
        "delivery_mode": "volunteer",
    },
    {
        "requester": 3,
        "title": "Jackets for kids",
        "category": "clothing",
        "tags": ["jackets"],
        "quantity_needed": 8,
        "urgency": "medium",
        "delivery_mode": "pickup",
    },
]


def _located_like(user) -> dict:
    return {
        "city": user.city,
        "barangay": user.barangay,
        "latitude": user.latitude,
        "longitude": user.longitude,
    }


async def seed_database():
    """Seed the database with default parameters and a small sample community."""
    await create_tables()

    async with UnitOfWork() as uow:
        print("Seeding database with sample data...")

        user_count = await uow.users.count()
        if user_count > 0:
            print(f"Database already contains {user_count} users")
            response = input("Do you want to continue and add more data? (y/n): ")
            if response.lower() != "y":
                print("Seeding cancelled.")
                return

        # Default parameters
        print(f"\nSeeding parameters for {DEFAULT_CONTEXT}...")
        if await uow.parameters.get_active(DEFAULT_CONTEXT):
            print(f"  - Skipping {DEFAULT_CONTEXT} (already exists)")
        else:
            defaults = MatchingParameters(
                context=DEFAULT_CONTEXT, description="Default weights for the community"
            )
            await uow.parameters.upsert(DEFAULT_CONTEXT, defaults.to_record_values())
            print(f"  ✓ Created parameters: {defaults.weights.as_dict()}")

        print(f"\nSeeding {len(SAMPLE_USERS)} users...")
        users = []
        for user_data in SAMPLE_USERS:
            user = await uow.users.create(**user_data)
            users.append(user)
            print(f"  ✓ Created {user.role}: {user.name} ({user.barangay}, {user.city})")

        print(f"\nSeeding {len(SAMPLE_DONATIONS)} donations...")
        for data in SAMPLE_DONATIONS:
            data = dict(data)
            donor = users[data.pop("donor")]
            donation = await uow.donations.create(
                donor_id=donor.id, **data, **_located_like(donor)
            )
            print(f"  ✓ Created donation: {donation.title} x{donation.quantity}")

        print(f"\nSeeding {len(SAMPLE_REQUESTS)} requests...")
        for data in SAMPLE_REQUESTS:
            data = dict(data)
            requester = users[data.pop("requester")]
            request = await uow.requests.create(
                requester_id=requester.id, **data, **_located_like(requester)
            )
            print(f"  ✓ Created request: {request.title} ({request.urgency})")

        await uow.commit()
        print("\n✅ Database seeding completed successfully!")

        print("\nDatabase summary:")
        print(f"  - Total users: {await uow.users.count()}")
        print(f"  - Total donations: {await uow.donations.count()}")
        print(f"  - Total requests: {await uow.requests.count()}")


if __name__ == "__main__":
    asyncio.run(seed_database())
