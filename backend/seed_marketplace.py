"""
Database seeding script for a demo marketplace.

Creates a shipper, a carrier, a dispatcher and an admin with funded
wallets, one posted truck, one open load and the Addis Ababa - Djibouti
corridor. Prints an access token per user for trying the API.
Run this script after database is set up but before first use.
"""

import asyncio
import sys
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.core.jwt import create_token_for_user
from backend.app.models.organization import Organization
from backend.app.models.user import User
from backend.app.models.truck import Truck
from backend.app.models.truck_posting import TruckPosting
from backend.app.models.load import Load
from backend.app.models.corridor import Corridor
from backend.app.models.financial_account import FinancialAccount
from backend.app.models.enums import OrganizationType, UserRole
from backend.app.models.load_enums import LoadStatus, TruckType
from backend.app.models.billing_enums import AccountType
from sqlalchemy import select


async def seed_marketplace():
    """
    Seed one of each actor plus a truck, a load and a corridor.

    Creates:
    - Shipper organization with a 100,000 ETB wallet and a POSTED load
    - Carrier organization with a wallet and an ACTIVE truck posting
    - Dispatcher and admin users without an organization
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting marketplace seeding...")

        result = await db.execute(select(User).where(User.username == "admin"))
        if result.scalar_one_or_none():
            print("ℹ️  Marketplace already seeded, skipping")
            return

        shipper_org = Organization(name="Abyssinia Coffee Exporters", type=OrganizationType.SHIPPER)
        carrier_org = Organization(name="Awash Trucking", type=OrganizationType.CARRIER)
        db.add_all([shipper_org, carrier_org])
        await db.flush()

        users = [
            User(email="admin@freight.test", username="admin", role=UserRole.ADMIN),
            User(email="dispatch@freight.test", username="dispatcher", role=UserRole.DISPATCHER),
            User(
                email="shipper@freight.test", username="shipper",
                role=UserRole.SHIPPER, organization_id=shipper_org.id,
            ),
            User(
                email="carrier@freight.test", username="carrier",
                role=UserRole.CARRIER, organization_id=carrier_org.id,
            ),
        ]
        db.add_all(users)

        db.add_all([
            FinancialAccount(
                organization_id=shipper_org.id,
                account_type=AccountType.SHIPPER_WALLET,
                balance=Decimal("100000.00"),
            ),
            FinancialAccount(
                organization_id=carrier_org.id,
                account_type=AccountType.CARRIER_WALLET,
                balance=Decimal("0.00"),
            ),
        ])

        truck = Truck(
            carrier_id=carrier_org.id,
            license_plate="AA-3-12345",
            truck_type=TruckType.DRY_VAN,
            capacity_kg=20000,
            current_city="Addis Ababa",
            gps_device_id="GPS-0001",
            gps_verified_at=datetime.utcnow(),
        )
        db.add(truck)
        await db.flush()

        db.add(TruckPosting(
            truck_id=truck.id,
            carrier_id=carrier_org.id,
            origin_city="Addis Ababa",
            destination_city="Djibouti",
            available_from=datetime.utcnow(),
            available_to=datetime.utcnow() + timedelta(days=7),
            max_weight_kg=20000,
        ))

        db.add(Load(
            shipper_id=shipper_org.id,
            status=LoadStatus.POSTED,
            pickup_city="Addis Ababa",
            delivery_city="Djibouti",
            pickup_date=datetime.utcnow() + timedelta(days=1),
            truck_type=TruckType.DRY_VAN,
            weight_kg=18000,
            cargo_description="Green coffee, 300 bags",
            estimated_trip_km=910,
            rate=Decimal("45000.00"),
        ))

        db.add(Corridor(
            name="Addis Ababa - Djibouti",
            origin_region="Addis Ababa",
            destination_region="Djibouti",
            distance_km=910,
            shipper_price_per_km=Decimal("2.5000"),
            carrier_price_per_km=Decimal("1.5000"),
        ))

        await db.commit()

        print("\n🎉 Marketplace seeding completed successfully!")
        print("\nAccess tokens:")
        for user in users:
            print(f"  - {user.role.value:<10} {user.username}: {create_token_for_user(user, timedelta(days=1))}")


if __name__ == "__main__":
    asyncio.run(seed_marketplace())
