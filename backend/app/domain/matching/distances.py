"""
City distances for deadhead calculation.

Road distances between the main Ethiopian freight cities, looked up
symmetrically after name normalization, with a great-circle fallback when
both points carry coordinates.
"""

import math
import re
from typing import Dict, Optional, Tuple


# Road distances in km. Each pair is listed once; lookups are symmetric.
_ROAD_DISTANCES_KM: Dict[Tuple[str, str], float] = {
    ("addis ababa", "dire dawa"): 450,
    ("addis ababa", "djibouti"): 910,
    ("addis ababa", "mekelle"): 780,
    ("addis ababa", "hawassa"): 275,
    ("addis ababa", "bahir dar"): 565,
    ("addis ababa", "gondar"): 740,
    ("addis ababa", "jimma"): 350,
    ("addis ababa", "adama"): 100,
    ("dire dawa", "djibouti"): 310,
    ("dire dawa", "mekelle"): 850,
    ("dire dawa", "hawassa"): 725,
    ("dire dawa", "harar"): 55,
    ("djibouti", "mekelle"): 1100,
    ("djibouti", "hawassa"): 1000,
    ("mekelle", "gondar"): 440,
    ("mekelle", "bahir dar"): 570,
}

# Alternative names for the same place
_CITY_ALIASES: Dict[str, str] = {
    "addis": "addis ababa",
    "finfinne": "addis ababa",
    "nazret": "adama",
    "nazareth": "adama",
    "awasa": "hawassa",
}

_REPEATED_LETTERS = re.compile(r"(.)\1+")
_WHITESPACE = re.compile(r"\s+")

EARTH_RADIUS_KM = 6371.0


def normalize_city(name: Optional[str]) -> str:
    """
    Canonical lookup key for a city name.

    Case, surrounding and repeated whitespace, aliases and doubled letters
    (Mekelle / Mekele) all collapse to the same key.
    """
    if not name:
        return ""
    key = _WHITESPACE.sub(" ", name.strip().lower())
    key = _CITY_ALIASES.get(key, key)
    return _REPEATED_LETTERS.sub(r"\1", key)


def _build_table() -> Dict[str, Dict[str, float]]:
    table: Dict[str, Dict[str, float]] = {}
    for (a, b), km in _ROAD_DISTANCES_KM.items():
        a_key, b_key = normalize_city(a), normalize_city(b)
        table.setdefault(a_key, {})[b_key] = km
        table.setdefault(b_key, {})[a_key] = km
    return table


_DISTANCE_TABLE = _build_table()


def is_same_city(city1: Optional[str], city2: Optional[str]) -> bool:
    if not city1 or not city2:
        return False
    return normalize_city(city1) == normalize_city(city2)


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates (degrees)
        lat2, lon2: Second point coordinates (degrees)

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = lat2_rad - lat1_rad
    dlon = math.radians(lon2) - math.radians(lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def city_distance_km(
    city1: Optional[str],
    city2: Optional[str],
    coords1: Optional[Tuple[float, float]] = None,
    coords2: Optional[Tuple[float, float]] = None,
) -> Optional[float]:
    """
    Distance between two cities in km.

    Same city is 0. Otherwise the road table, then great-circle distance
    when both coordinates are known.

    Returns:
        Distance in km, or None when it cannot be determined
    """
    if is_same_city(city1, city2):
        return 0.0

    key1, key2 = normalize_city(city1), normalize_city(city2)
    known = _DISTANCE_TABLE.get(key1, {}).get(key2)
    if known is not None:
        return float(known)

    if coords1 is not None and coords2 is not None and None not in coords1 and None not in coords2:
        return round(haversine_distance(coords1[0], coords1[1], coords2[0], coords2[1]), 1)

    return None
