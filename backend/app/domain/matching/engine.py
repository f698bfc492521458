"""
Matching Engine.

Scores truck/load pairs over an already-fetched candidate set. Pure and
deterministic: no database, no clock.

Hard filters (candidate excluded, score 0):
1. Truck type outside the load's compatibility group
2. Deadhead to origin (DH-O) unknown between different cities, or above
   the ceiling (200 km by default)
3. Load weight above the truck's maximum

Score (0-100) for survivors:
- Route alignment 30%
- DH-O 30%
- Capacity utilization 20%
- Pickup timing 20%
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from backend.app.core.timeutils import as_naive_utc
from backend.app.domain.matching.distances import city_distance_km, is_same_city

logger = logging.getLogger(__name__)


DEFAULT_MAX_DH_ORIGIN_KM = 200.0
DEFAULT_MIN_SCORE = 50
EXACT_MATCH_MIN_SCORE = 85
EXACT_MATCH_MAX_DH_KM = 50.0

ROUTE_WEIGHT = 0.30
DH_WEIGHT = 0.30
CAPACITY_WEIGHT = 0.20
TIME_WEIGHT = 0.20

TRUCK_TYPE_GROUPS = {
    "GENERAL": frozenset({"DRY_VAN", "FLATBED", "CONTAINER", "VAN"}),
    "COLD_CHAIN": frozenset({"REFRIGERATED", "REEFER"}),
}

EXACT = "exact"
COMPATIBLE = "compatible"
INCOMPATIBLE = "incompatible"


@dataclass
class TruckProfile:
    """What the engine needs to know about an available truck."""
    truck_id: int
    truck_type: str
    current_city: str
    max_weight_kg: Optional[float] = None
    destination_city: Optional[str] = None
    available_date: Optional[datetime] = None
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    preferred_dh_to_origin_km: Optional[float] = None
    preferred_dh_after_delivery_km: Optional[float] = None
    posting_id: Optional[int] = None
    carrier_id: Optional[int] = None


@dataclass
class LoadProfile:
    """What the engine needs to know about a load."""
    load_id: int
    truck_type: str
    pickup_city: str
    delivery_city: str
    weight_kg: Optional[float] = None
    pickup_date: Optional[datetime] = None
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    delivery_lat: Optional[float] = None
    delivery_lng: Optional[float] = None
    shipper_id: Optional[int] = None


@dataclass
class MatchResult:
    truck: TruckProfile
    load: LoadProfile
    score: int
    reasons: List[str] = field(default_factory=list)
    is_exact_match: bool = False
    dh_origin_km: Optional[float] = None
    dh_destination_km: Optional[float] = None
    within_dh_limits: bool = True
    excluded: bool = False
    exclude_reason: Optional[str] = None


def _type_name(value) -> str:
    return str(getattr(value, "value", value) or "").strip().upper()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _format_km(km: float) -> str:
    return f"{km:g}"


def check_truck_type_compatibility(load_type, truck_type) -> str:
    """
    Compare a load's required truck type with a truck's type.

    Returns:
        'exact', 'compatible' (same group) or 'incompatible'
    """
    load_norm = _type_name(load_type)
    truck_norm = _type_name(truck_type)

    if load_norm and load_norm == truck_norm:
        return EXACT

    load_group = next((g for g, types in TRUCK_TYPE_GROUPS.items() if load_norm in types), None)
    truck_group = next((g for g, types in TRUCK_TYPE_GROUPS.items() if truck_norm in types), None)

    if load_group is not None and load_group == truck_group:
        return COMPATIBLE
    return INCOMPATIBLE


def calculate_dh_origin_score(dh_km: float) -> int:
    if dh_km <= 50:
        return 100
    if dh_km <= 100:
        return 70
    if dh_km <= 200:
        return 30
    return 0


def calculate_route_score(
    load_pickup: str,
    load_delivery: str,
    truck_origin: str,
    truck_destination: Optional[str],
) -> int:
    """Origin alignment weighs 60%, destination 40%; no destination counts as flexible (70)."""
    origin_match = 100 if is_same_city(load_pickup, truck_origin) else 0

    dest_match = 70
    if truck_destination:
        dest_match = 100 if is_same_city(load_delivery, truck_destination) else 0

    return _round_half_up(origin_match * 0.6 + dest_match * 0.4)


def calculate_capacity_score(load_weight: Optional[float], truck_max_weight: Optional[float]) -> int:
    """Reward near-full utilization over large slack. Neutral when unknown."""
    if not load_weight or not truck_max_weight:
        return 50
    if truck_max_weight < load_weight:
        return 0

    utilization = load_weight / truck_max_weight * 100
    if utilization >= 80:
        return 100
    if utilization >= 60:
        return 90
    if utilization >= 40:
        return 70
    return 50


def calculate_time_score(load_date: Optional[datetime], truck_date: Optional[datetime]) -> int:
    """Score how late the truck becomes available relative to the pickup date."""
    load_date, truck_date = as_naive_utc(load_date), as_naive_utc(truck_date)
    if load_date is None or truck_date is None:
        return 50

    if truck_date <= load_date:
        return 100

    days_late = (truck_date - load_date).total_seconds() / 86400
    if days_late <= 1:
        return 80
    if days_late <= 3:
        return 50
    if days_late <= 7:
        return 20
    return 0


def _excluded(truck: TruckProfile, load: LoadProfile, reason: str, dh_km: Optional[float] = None) -> MatchResult:
    return MatchResult(
        truck=truck,
        load=load,
        score=0,
        dh_origin_km=dh_km,
        within_dh_limits=False,
        excluded=True,
        exclude_reason=reason,
    )


def _within_dh_limits(truck: TruckProfile, dh_origin: float, dh_destination: Optional[float]) -> bool:
    if truck.preferred_dh_to_origin_km and dh_origin > truck.preferred_dh_to_origin_km:
        return False
    if (
        truck.preferred_dh_after_delivery_km
        and dh_destination is not None
        and dh_destination > truck.preferred_dh_after_delivery_km
    ):
        return False
    return True


def score_match(
    truck: TruckProfile,
    load: LoadProfile,
    max_dh_origin_km: float = DEFAULT_MAX_DH_ORIGIN_KM,
) -> MatchResult:
    """
    Score a single truck/load pair.

    Always returns a result; excluded pairs have excluded=True and an
    exclude_reason so callers can report why a candidate was dropped.
    """
    # 1. Truck type compatibility
    compatibility = check_truck_type_compatibility(load.truck_type, truck.truck_type)
    if compatibility == INCOMPATIBLE:
        return _excluded(
            truck, load,
            f"Incompatible truck type: {_type_name(truck.truck_type)} cannot carry {_type_name(load.truck_type)} loads",
        )

    # 2. Deadhead to origin
    dh_origin = city_distance_km(
        truck.current_city,
        load.pickup_city,
        (truck.current_lat, truck.current_lng),
        (load.pickup_lat, load.pickup_lng),
    )
    if dh_origin is None:
        return _excluded(truck, load, f"Unknown distance: {truck.current_city} to {load.pickup_city}")
    if dh_origin > max_dh_origin_km:
        return _excluded(
            truck, load,
            f"DH-O too far: {_format_km(dh_origin)}km (max {_format_km(max_dh_origin_km)}km)",
            dh_origin,
        )

    # 3. Capacity
    if load.weight_kg and truck.max_weight_kg and truck.max_weight_kg < load.weight_kg:
        return _excluded(
            truck, load,
            f"Insufficient capacity: {_format_km(truck.max_weight_kg)}kg < {_format_km(load.weight_kg)}kg needed",
            dh_origin,
        )

    reasons: List[str] = []

    route_score = calculate_route_score(
        load.pickup_city, load.delivery_city, truck.current_city, truck.destination_city
    )
    if route_score == 100:
        reasons.append("Perfect route match")
    elif route_score >= 60:
        reasons.append("Good route alignment")

    dh_score = calculate_dh_origin_score(dh_origin)
    if dh_origin == 0:
        reasons.append("Same city pickup")
    elif dh_origin <= 50:
        reasons.append(f"Nearby: {_format_km(dh_origin)}km to pickup")
    elif dh_origin <= 100:
        reasons.append(f"Acceptable: {_format_km(dh_origin)}km to pickup")
    else:
        reasons.append(f"Far: {_format_km(dh_origin)}km to pickup")

    capacity_score = calculate_capacity_score(load.weight_kg, truck.max_weight_kg)
    if capacity_score == 100:
        reasons.append("Optimal capacity utilization")

    time_score = calculate_time_score(load.pickup_date, truck.available_date)
    if time_score == 100:
        reasons.append("Available on time")
    elif time_score >= 50:
        reasons.append("Available soon")

    if compatibility == EXACT:
        reasons.append(f"Exact {_type_name(truck.truck_type)} match")
    else:
        reasons.append(f"Compatible: {_type_name(truck.truck_type)} for {_type_name(load.truck_type)}")

    score = _round_half_up(
        route_score * ROUTE_WEIGHT
        + dh_score * DH_WEIGHT
        + capacity_score * CAPACITY_WEIGHT
        + time_score * TIME_WEIGHT
    )
    score = max(0, min(100, score))

    is_exact = (
        score >= EXACT_MATCH_MIN_SCORE
        and compatibility == EXACT
        and dh_origin <= EXACT_MATCH_MAX_DH_KM
    )
    if is_exact:
        reasons.insert(0, "Excellent Match")

    # Deadhead after delivery, only meaningful with a destination preference
    dh_destination = None
    if truck.destination_city:
        dh_destination = city_distance_km(
            load.delivery_city,
            truck.destination_city,
            (load.delivery_lat, load.delivery_lng),
            None,
        )

    return MatchResult(
        truck=truck,
        load=load,
        score=score,
        reasons=reasons,
        is_exact_match=is_exact,
        dh_origin_km=dh_origin,
        dh_destination_km=dh_destination,
        within_dh_limits=_within_dh_limits(truck, dh_origin, dh_destination),
    )


def _rank(results: List[MatchResult], min_score: int, key_id) -> List[MatchResult]:
    excluded = sum(1 for r in results if r.excluded)
    kept = [r for r in results if not r.excluded and r.score >= min_score]
    logger.debug(
        "Matching scored %d candidates: %d excluded, %d kept (min_score=%d)",
        len(results), excluded, len(kept), min_score,
    )
    kept.sort(key=lambda r: (-r.score, r.dh_origin_km, key_id(r)))
    return kept


def find_matching_loads(
    truck: TruckProfile,
    loads: Iterable[LoadProfile],
    min_score: int = DEFAULT_MIN_SCORE,
    max_dh_origin_km: float = DEFAULT_MAX_DH_ORIGIN_KM,
) -> List[MatchResult]:
    """
    Rank loads for one truck.

    Every candidate is scored before min_score is applied. Sorted by score
    descending, then DH-O ascending, then load id for a stable order.
    """
    scored = [score_match(truck, load, max_dh_origin_km) for load in loads]
    return _rank(scored, min_score, lambda r: r.load.load_id)


def find_matching_trucks(
    load: LoadProfile,
    trucks: Iterable[TruckProfile],
    min_score: int = DEFAULT_MIN_SCORE,
    max_dh_origin_km: float = DEFAULT_MAX_DH_ORIGIN_KM,
) -> List[MatchResult]:
    """Rank trucks for one load. Same scoring and ordering as find_matching_loads."""
    scored = [score_match(truck, load, max_dh_origin_km) for truck in trucks]
    return _rank(scored, min_score, lambda r: (r.truck.truck_id, r.truck.posting_id or 0))

