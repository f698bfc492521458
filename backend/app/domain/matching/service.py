"""
Matching Service.

Fetches candidates from the database, hands them to the pure engine and
caches the ranked result for the default parameters.
"""

import logging
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from backend.app.core.config import settings
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.domain.loads.state_machine import ASSIGNABLE_STATUSES
from backend.app.domain.matching.engine import (
    LoadProfile,
    MatchResult,
    TruckProfile,
    find_matching_loads,
    find_matching_trucks,
)
from backend.app.models.load import Load
from backend.app.models.load_enums import PostingStatus
from backend.app.models.truck import Truck
from backend.app.models.truck_posting import TruckPosting
from backend.app.services.cache import CacheService, load_matches_key, posting_matches_key

logger = logging.getLogger(__name__)


def load_profile(load: Load) -> LoadProfile:
    return LoadProfile(
        load_id=load.id,
        truck_type=load.truck_type.value,
        pickup_city=load.pickup_city,
        delivery_city=load.delivery_city,
        weight_kg=load.weight_kg,
        pickup_date=load.pickup_date,
        pickup_lat=load.pickup_lat,
        pickup_lng=load.pickup_lng,
        delivery_lat=load.delivery_lat,
        delivery_lng=load.delivery_lng,
        shipper_id=load.shipper_id,
    )


def truck_profile(posting: TruckPosting, truck: Truck) -> TruckProfile:
    return TruckProfile(
        truck_id=truck.id,
        truck_type=truck.truck_type.value,
        current_city=posting.origin_city,
        max_weight_kg=posting.max_weight_kg or truck.capacity_kg,
        destination_city=posting.destination_city,
        available_date=posting.available_from,
        current_lat=posting.origin_lat,
        current_lng=posting.origin_lng,
        preferred_dh_to_origin_km=posting.preferred_dh_to_origin_km,
        preferred_dh_after_delivery_km=posting.preferred_dh_after_delivery_km,
        posting_id=posting.id,
        carrier_id=truck.carrier_id,
    )


def serialize_match(result: MatchResult) -> Dict[str, Any]:
    return {
        "load_id": result.load.load_id,
        "truck_id": result.truck.truck_id,
        "posting_id": result.truck.posting_id,
        "carrier_id": result.truck.carrier_id,
        "pickup_city": result.load.pickup_city,
        "delivery_city": result.load.delivery_city,
        "truck_city": result.truck.current_city,
        "score": result.score,
        "is_exact_match": result.is_exact_match,
        "dh_origin_km": result.dh_origin_km,
        "dh_destination_km": result.dh_destination_km,
        "within_dh_limits": result.within_dh_limits,
        "reasons": list(result.reasons),
    }


def _is_default(min_score: Optional[int]) -> bool:
    return min_score is None or min_score == settings.default_min_match_score


async def _open_posting_ids(db: AsyncSession, posting_ids: List[int]) -> Set[int]:
    """Postings still ACTIVE on an available truck."""
    if not posting_ids:
        return set()
    result = await db.execute(
        select(TruckPosting.id)
        .join(Truck, Truck.id == TruckPosting.truck_id)
        .where(
            TruckPosting.id.in_(posting_ids),
            TruckPosting.status == PostingStatus.ACTIVE,
            Truck.is_available == True,
        )
    )
    return set(result.scalars().all())


async def _open_load_ids(db: AsyncSession, load_ids: List[int]) -> Set[int]:
    """Loads still assignable and unbound."""
    if not load_ids:
        return set()
    result = await db.execute(
        select(Load.id).where(
            Load.id.in_(load_ids),
            Load.status.in_(list(ASSIGNABLE_STATUSES)),
            Load.assigned_truck_id.is_(None),
        )
    )
    return set(result.scalars().all())


async def _revalidate(key: str, cached: List[Dict[str, Any]], field: str, open_ids: Set[int]) -> List[Dict[str, Any]]:
    """
    Drop cached matches whose counterpart was taken since the entry was written.

    Assignment only clears the keys of the load and truck involved, so other
    entries can still list a truck or load that is now busy.
    """
    fresh = [match for match in cached if match[field] in open_ids]
    if len(fresh) != len(cached):
        await CacheService.set(key, fresh)
    return fresh


class MatchingService:

    @staticmethod
    async def trucks_for_load(
        db: AsyncSession,
        load_id: int,
        min_score: Optional[int] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Rank ACTIVE postings of available trucks for a load."""
        cacheable = _is_default(min_score)
        if cacheable:
            key = load_matches_key(load_id)
            cached = await CacheService.get(key)
            if cached is not None:
                open_ids = await _open_posting_ids(db, [m["posting_id"] for m in cached])
                return (await _revalidate(key, cached, "posting_id", open_ids))[:limit]

        load = await db.get(Load, load_id)
        if load is None:
            raise ResourceNotFoundError("Load", load_id)

        result = await db.execute(
            select(TruckPosting, Truck)
            .join(Truck, Truck.id == TruckPosting.truck_id)
            .where(TruckPosting.status == PostingStatus.ACTIVE, Truck.is_available == True)
            .order_by(TruckPosting.id)
        )
        candidates = [truck_profile(posting, truck) for posting, truck in result.all()]

        ranked = find_matching_trucks(
            load_profile(load),
            candidates,
            min_score=min_score if min_score is not None else settings.default_min_match_score,
            max_dh_origin_km=settings.max_dh_origin_km,
        )
        matches = [serialize_match(r) for r in ranked]
        logger.info("Load %s: %d of %d postings matched", load_id, len(matches), len(candidates))

        if cacheable:
            await CacheService.set(load_matches_key(load_id), matches)
        return matches[:limit]

    @staticmethod
    async def loads_for_posting(
        db: AsyncSession,
        posting_id: int,
        min_score: Optional[int] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Rank open, unassigned loads for a truck posting."""
        cacheable = _is_default(min_score)
        if cacheable:
            key = posting_matches_key(posting_id)
            cached = await CacheService.get(key)
            if cached is not None:
                open_ids = await _open_load_ids(db, [m["load_id"] for m in cached])
                return (await _revalidate(key, cached, "load_id", open_ids))[:limit]

        row = await db.execute(
            select(TruckPosting, Truck)
            .join(Truck, Truck.id == TruckPosting.truck_id)
            .where(TruckPosting.id == posting_id)
        )
        pair = row.first()
        if pair is None:
            raise ResourceNotFoundError("Truck posting", posting_id)
        posting, truck = pair

        result = await db.execute(
            select(Load)
            .where(Load.status.in_(list(ASSIGNABLE_STATUSES)), Load.assigned_truck_id.is_(None))
            .order_by(Load.id)
        )
        candidates = [load_profile(load) for load in result.scalars().all()]

        ranked = find_matching_loads(
            truck_profile(posting, truck),
            candidates,
            min_score=min_score if min_score is not None else settings.default_min_match_score,
            max_dh_origin_km=settings.max_dh_origin_km,
        )
        matches = [serialize_match(r) for r in ranked]
        logger.info("Posting %s: %d of %d loads matched", posting_id, len(matches), len(candidates))

        if cacheable:
            await CacheService.set(posting_matches_key(posting_id), matches)
        return matches[:limit]
