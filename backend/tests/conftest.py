"""
Centralized Test Configuration.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from backend.app.main import app
from backend.app.db.session import get_db, Base
from backend.app.core.redis_client import get_redis
from backend.app.core.jwt import create_token_for_user
import backend.app.core.redis_client as redis_client_module
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

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def exists(self, key):
        if self._closed:
            return 0
        return 1 if key in self.store else 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}

# Redis Fixture (Session Scope)
@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()

@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session.
    Global override is safer here than per-test override to avoid app state flux.
    """

    # Patch the global redis client used by the cache
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield

    # Restore and clear
    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client

@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# Marketplace fixtures

class Actor:
    """A seeded user with the payload get_current_user would return and a bearer header."""

    def __init__(self, user: User):
        self.id = user.id
        self.organization_id = user.organization_id
        self.role = user.role
        self.payload = {
            "sub": user.username,
            "user_id": user.id,
            "role": user.role.value,
            "organization_id": user.organization_id,
        }
        self.headers = {"Authorization": f"Bearer {create_token_for_user(user)}"}


async def _make_actor(db, username: str, role: UserRole, organization_id=None) -> Actor:
    user = User(
        email=f"{username}@freight.test",
        username=username,
        role=role,
        organization_id=organization_id,
    )
    db.add(user)
    await db.commit()
    return Actor(user)


@pytest.fixture
async def shipper_org(db_session):
    org = Organization(name="Abyssinia Coffee Exporters", type=OrganizationType.SHIPPER)
    db_session.add(org)
    await db_session.commit()
    return org

@pytest.fixture
async def carrier_org(db_session):
    org = Organization(name="Awash Trucking", type=OrganizationType.CARRIER)
    db_session.add(org)
    await db_session.commit()
    return org

@pytest.fixture
async def other_carrier_org(db_session):
    org = Organization(name="Rift Valley Haulage", type=OrganizationType.CARRIER)
    db_session.add(org)
    await db_session.commit()
    return org

@pytest.fixture
async def shipper(db_session, shipper_org):
    return await _make_actor(db_session, "shipper", UserRole.SHIPPER, shipper_org.id)

@pytest.fixture
async def carrier(db_session, carrier_org):
    return await _make_actor(db_session, "carrier", UserRole.CARRIER, carrier_org.id)

@pytest.fixture
async def other_carrier(db_session, other_carrier_org):
    return await _make_actor(db_session, "other_carrier", UserRole.CARRIER, other_carrier_org.id)

@pytest.fixture
async def dispatcher(db_session):
    return await _make_actor(db_session, "dispatcher", UserRole.DISPATCHER)

@pytest.fixture
async def admin(db_session):
    return await _make_actor(db_session, "admin", UserRole.ADMIN)


@pytest.fixture
async def wallets(db_session, shipper_org, carrier_org):
    """Shipper wallet with 100,000 and an empty carrier wallet."""
    shipper_wallet = FinancialAccount(
        organization_id=shipper_org.id,
        account_type=AccountType.SHIPPER_WALLET,
        balance=Decimal("100000.00"),
    )
    carrier_wallet = FinancialAccount(
        organization_id=carrier_org.id,
        account_type=AccountType.CARRIER_WALLET,
        balance=Decimal("0.00"),
    )
    db_session.add_all([shipper_wallet, carrier_wallet])
    await db_session.commit()
    return {"shipper": shipper_wallet.id, "carrier": carrier_wallet.id}


@pytest.fixture
async def corridor(db_session):
    row = Corridor(
        name="Addis Ababa - Djibouti",
        origin_region="Addis Ababa",
        destination_region="Djibouti",
        distance_km=910,
        shipper_price_per_km=Decimal("2.5000"),
        carrier_price_per_km=Decimal("1.5000"),
    )
    db_session.add(row)
    await db_session.commit()
    return row


async def make_truck(db, carrier_org_id: int, plate: str, truck_type=TruckType.DRY_VAN,
                     city="Addis Ababa", capacity_kg=20000, posted=True, gps=False) -> Truck:
    truck = Truck(
        carrier_id=carrier_org_id,
        license_plate=plate,
        truck_type=truck_type,
        capacity_kg=capacity_kg,
        current_city=city,
        gps_device_id="GPS-" + plate if gps else None,
        gps_verified_at=datetime.utcnow() if gps else None,
    )
    db.add(truck)
    await db.flush()
    if posted:
        db.add(TruckPosting(
            truck_id=truck.id,
            carrier_id=carrier_org_id,
            origin_city=city,
            destination_city="Djibouti",
            available_from=datetime.utcnow(),
            available_to=datetime.utcnow() + timedelta(days=7),
            max_weight_kg=capacity_kg,
        ))
    await db.commit()
    return truck


async def make_load(db, shipper_org_id: int, status=LoadStatus.POSTED, pickup="Addis Ababa",
                    delivery="Djibouti", rate="10000.00", weight_kg=18000,
                    truck_type=TruckType.DRY_VAN, estimated_trip_km=None) -> Load:
    load = Load(
        shipper_id=shipper_org_id,
        status=status,
        pickup_city=pickup,
        delivery_city=delivery,
        pickup_date=datetime.utcnow() + timedelta(days=1),
        truck_type=truck_type,
        weight_kg=weight_kg,
        rate=Decimal(rate) if rate is not None else None,
        estimated_trip_km=estimated_trip_km,
    )
    db.add(load)
    await db.commit()
    return load


@pytest.fixture
async def truck(db_session, carrier_org):
    return await make_truck(db_session, carrier_org.id, "AA-3-10001")

@pytest.fixture
async def second_truck(db_session, carrier_org):
    return await make_truck(db_session, carrier_org.id, "AA-3-10002")

@pytest.fixture
async def load(db_session, shipper_org):
    return await make_load(db_session, shipper_org.id)

@pytest.fixture
def truck_factory(db_session):
    """make_truck bound to the fixture session."""
    async def factory(carrier_org_id: int, plate: str, **kwargs) -> Truck:
        return await make_truck(db_session, carrier_org_id, plate, **kwargs)
    return factory

@pytest.fixture
def load_factory(db_session):
    """make_load bound to the fixture session."""
    async def factory(shipper_org_id: int, **kwargs) -> Load:
        return await make_load(db_session, shipper_org_id, **kwargs)
    return factory
