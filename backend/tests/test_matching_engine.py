"""
Matching engine tests.

Hard filters, scoring and ordering over in-memory profiles.
"""

from datetime import datetime, timedelta

from backend.app.domain.matching.distances import city_distance_km, normalize_city
from backend.app.domain.matching.engine import (
    COMPATIBLE,
    EXACT,
    INCOMPATIBLE,
    LoadProfile,
    TruckProfile,
    calculate_capacity_score,
    calculate_time_score,
    check_truck_type_compatibility,
    find_matching_loads,
    find_matching_trucks,
    score_match,
)

NOW = datetime(2026, 3, 1, 8, 0)


def _truck(**overrides) -> TruckProfile:
    values = dict(
        truck_id=1,
        truck_type="DRY_VAN",
        current_city="Addis Ababa",
        destination_city="Djibouti",
        max_weight_kg=20000,
        available_date=NOW,
    )
    values.update(overrides)
    return TruckProfile(**values)


def _load(load_id=1, **overrides) -> LoadProfile:
    values = dict(
        load_id=load_id,
        truck_type="DRY_VAN",
        pickup_city="Addis Ababa",
        delivery_city="Djibouti",
        weight_kg=18000,
        pickup_date=NOW + timedelta(days=1),
    )
    values.update(overrides)
    return LoadProfile(**values)


def test_city_normalization():
    assert normalize_city("  MEKELLE ") == normalize_city("Mekele")
    assert normalize_city("Nazret") == "adama"
    assert city_distance_km("Djibouti", "addis") == 910.0
    assert city_distance_km("Gambela", "Jinka") is None


def test_truck_type_groups():
    assert check_truck_type_compatibility("DRY_VAN", "DRY_VAN") == EXACT
    assert check_truck_type_compatibility("FLATBED", "CONTAINER") == COMPATIBLE
    assert check_truck_type_compatibility("REEFER", "REFRIGERATED") == COMPATIBLE
    assert check_truck_type_compatibility("REEFER", "DRY_VAN") == INCOMPATIBLE
    assert check_truck_type_compatibility("TANKER", "FLATBED") == INCOMPATIBLE


def test_perfect_match_is_exact():
    result = score_match(_truck(), _load())
    assert not result.excluded
    assert result.score == 100
    assert result.is_exact_match
    assert result.reasons[0] == "Excellent Match"
    assert "Same city pickup" in result.reasons
    assert result.dh_origin_km == 0


def test_nearby_pickup_scores_lower():
    result = score_match(_truck(), _load(pickup_city="Adama"))
    # route 40, DH-O 70, capacity 100, time 100
    assert result.score == 73
    assert result.dh_origin_km == 100
    assert "Acceptable: 100km to pickup" in result.reasons
    assert not result.is_exact_match


def test_deadhead_ceiling_excludes():
    result = score_match(_truck(), _load(pickup_city="Hawassa"))
    assert result.excluded
    assert result.score == 0
    assert result.exclude_reason == "DH-O too far: 275km (max 200km)"


def test_straight_line_distance_over_ceiling_excludes():
    truck = _truck(current_city="Alpha", current_lat=9.0, current_lng=38.7)
    load = _load(pickup_city="Beta", pickup_lat=11.7, pickup_lng=38.7)
    result = score_match(truck, load)
    assert result.excluded
    assert result.dh_origin_km > 200


def test_unknown_distance_excludes():
    result = score_match(_truck(current_city="Gambela"), _load(pickup_city="Jinka"))
    assert result.excluded
    assert result.exclude_reason.startswith("Unknown distance")


def test_incompatible_type_excludes():
    result = score_match(_truck(), _load(truck_type="REEFER"))
    assert result.excluded
    assert "Incompatible truck type" in result.exclude_reason


def test_overweight_excludes():
    result = score_match(_truck(), _load(weight_kg=25000))
    assert result.excluded
    assert result.exclude_reason == "Insufficient capacity: 20000kg < 25000kg needed"


def test_deadhead_preference_is_a_soft_flag():
    result = score_match(_truck(preferred_dh_to_origin_km=50), _load(pickup_city="Adama"))
    assert not result.excluded
    assert result.within_dh_limits is False


def test_capacity_and_time_scores():
    assert calculate_capacity_score(None, 20000) == 50
    assert calculate_capacity_score(5000, 20000) == 50
    assert calculate_capacity_score(13000, 20000) == 90
    assert calculate_time_score(NOW, NOW - timedelta(hours=1)) == 100
    assert calculate_time_score(NOW, NOW + timedelta(days=2)) == 50
    assert calculate_time_score(NOW, NOW + timedelta(days=10)) == 0


def test_loads_ranked_by_score_then_deadhead():
    loads = [
        _load(1, pickup_city="Adama"),
        _load(2),
        _load(3, pickup_city="Hawassa"),
        _load(4, truck_type="REEFER"),
        _load(5),
    ]
    results = find_matching_loads(_truck(), loads, min_score=0)
    assert [r.load.load_id for r in results] == [2, 5, 1]
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)


def test_min_score_filters_after_scoring():
    loads = [_load(1, pickup_city="Adama"), _load(2)]
    assert [r.load.load_id for r in find_matching_loads(_truck(), loads, min_score=80)] == [2]


def test_ranking_is_deterministic():
    trucks = [_truck(truck_id=i, current_city=city) for i, city in enumerate(["Adama", "Addis Ababa", "Adama"], 1)]
    first = [r.truck.truck_id for r in find_matching_trucks(_load(), trucks, min_score=0)]
    second = [r.truck.truck_id for r in find_matching_trucks(_load(), list(reversed(trucks)), min_score=0)]
    assert first == second == [2, 1, 3]
