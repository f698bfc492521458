"""
Concurrent assignment tests against PostgreSQL.

SQLite serializes writers, so row locks and deadlocks only show up on a real
server. Set TEST_POSTGRES_URL (postgresql+asyncpg://...) to run these; the
database is emptied before and after.
"""

import asyncio
import os
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from backend.app.core.exceptions import AppException
from backend.app.db.session import Base
from backend.app.domain.assignment.coordinator import AssignmentCoordinator
from backend.app.domain.assignment.offers import LOAD_REQUEST, OfferService
from backend.app.models.enums import OrganizationType, UserRole
from backend.app.models.load import Load
from backend.app.models.load_enums import LoadStatus, TruckType
from backend.app.models.load_request import LoadRequest
from backend.app.models.offer_enums import RequestStatus, ResponseAction
from backend.app.models.organization import Organization
from backend.app.models.trip import Trip
from backend.app.models.truck import Truck
from backend.app.models.truck_posting import TruckPosting
from backend.app.models.user import User

POSTGRES_URL = os.getenv("TEST_POSTGRES_URL")
ROUNDS = 5

pytestmark = pytest.mark.skipif(not POSTGRES_URL, reason="TEST_POSTGRES_URL not set")


@pytest.fixture
async def pg_sessions():
    engine = create_async_engine(POSTGRES_URL, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


def _payload(user: User) -> dict:
    return {
        "sub": user.username,
        "user_id": user.id,
        "role": user.role.value,
        "organization_id": user.organization_id,
    }


async def _seed_parties(sessions):
    async with sessions() as db:
        shipper_org = Organization(name="Abyssinia Coffee Exporters", type=OrganizationType.SHIPPER)
        carrier_org = Organization(name="Awash Trucking", type=OrganizationType.CARRIER)
        db.add_all([shipper_org, carrier_org])
        await db.flush()
        shipper = User(email="shipper@freight.test", username="shipper",
                       role=UserRole.SHIPPER, organization_id=shipper_org.id)
        carrier = User(email="carrier@freight.test", username="carrier",
                       role=UserRole.CARRIER, organization_id=carrier_org.id)
        db.add_all([shipper, carrier])
        await db.commit()
        return _payload(shipper), _payload(carrier)


async def _seed_round(sessions, shipper: dict, carrier: dict, round_no: int):
    """One POSTED load, two posted trucks and a pending load request per truck."""
    now = datetime.utcnow()
    async with sessions() as db:
        load = Load(
            shipper_id=shipper["organization_id"],
            status=LoadStatus.POSTED,
            pickup_city="Addis Ababa",
            delivery_city="Djibouti",
            pickup_date=now + timedelta(days=1),
            truck_type=TruckType.DRY_VAN,
            weight_kg=18000,
            rate=Decimal("10000.00"),
        )
        db.add(load)
        truck_ids = []
        for n in (1, 2):
            truck = Truck(
                carrier_id=carrier["organization_id"],
                license_plate=f"AA-3-{round_no}{n:04d}",
                truck_type=TruckType.DRY_VAN,
                capacity_kg=20000,
                current_city="Addis Ababa",
            )
            db.add(truck)
            await db.flush()
            db.add(TruckPosting(
                truck_id=truck.id,
                carrier_id=carrier["organization_id"],
                origin_city="Addis Ababa",
                destination_city="Djibouti",
                available_from=now,
                available_to=now + timedelta(days=7),
                max_weight_kg=20000,
            ))
            truck_ids.append(truck.id)
        await db.flush()

        request_ids = []
        for truck_id in truck_ids:
            request = LoadRequest(
                load_id=load.id,
                truck_id=truck_id,
                carrier_id=carrier["organization_id"],
                requested_by_id=carrier["user_id"],
                expires_at=now + timedelta(hours=24),
            )
            db.add(request)
            await db.flush()
            request_ids.append(request.id)
        await db.commit()
        return load.id, truck_ids, request_ids


async def _approve(sessions, offer_id: int, actor: dict):
    async with sessions() as db:
        return await OfferService.respond(db, LOAD_REQUEST, offer_id, ResponseAction.APPROVE, actor)


async def _direct_assign(sessions, load_id: int, truck_id: int, actor: dict):
    async with sessions() as db:
        return await AssignmentCoordinator.assign(db, load_id, truck_id, actor)


def _split(outcomes):
    wins = [o for o in outcomes if not isinstance(o, BaseException)]
    losses = [o for o in outcomes if isinstance(o, BaseException)]
    return wins, losses


async def _assert_single_binding(sessions, load_id: int, truck_ids):
    async with sessions() as db:
        load = await db.get(Load, load_id)
        assert load.status == LoadStatus.ASSIGNED
        assert load.assigned_truck_id in truck_ids

        trips = (await db.execute(
            select(func.count()).select_from(Trip).where(Trip.load_id == load_id)
        )).scalar_one()
        assert trips == 1

        statuses = (await db.execute(
            select(LoadRequest.status).where(LoadRequest.load_id == load_id)
        )).scalars().all()
        assert RequestStatus.PENDING not in statuses
        assert statuses.count(RequestStatus.APPROVED) <= 1
        return load.assigned_truck_id


async def test_two_approvals_for_one_load(pg_sessions):
    shipper, carrier = await _seed_parties(pg_sessions)

    for round_no in range(1, ROUNDS + 1):
        load_id, truck_ids, request_ids = await _seed_round(pg_sessions, shipper, carrier, round_no)

        outcomes = await asyncio.gather(
            *(_approve(pg_sessions, request_id, shipper) for request_id in request_ids),
            return_exceptions=True,
        )

        wins, losses = _split(outcomes)
        assert len(wins) == 1
        assert wins[0].status == RequestStatus.APPROVED
        assert len(losses) == 1
        assert isinstance(losses[0], AppException), repr(losses[0])
        assert losses[0].status_code in (400, 409)

        bound = await _assert_single_binding(pg_sessions, load_id, truck_ids)
        assert bound == wins[0].assignment.truck_id


async def test_direct_assign_races_an_approval(pg_sessions):
    shipper, carrier = await _seed_parties(pg_sessions)

    for round_no in range(1, ROUNDS + 1):
        load_id, truck_ids, request_ids = await _seed_round(pg_sessions, shipper, carrier, round_no)

        outcomes = await asyncio.gather(
            _direct_assign(pg_sessions, load_id, truck_ids[0], carrier),
            _approve(pg_sessions, request_ids[1], shipper),
            return_exceptions=True,
        )

        wins, losses = _split(outcomes)
        assert len(wins) == 1
        assert len(losses) == 1
        assert isinstance(losses[0], AppException), repr(losses[0])
        assert losses[0].status_code in (400, 409)

        await _assert_single_binding(pg_sessions, load_id, truck_ids)
