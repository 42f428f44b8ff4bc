"""
Name and distance similarity used to pick the right place among provider results.

compare_two_strings is the Sørensen–Dice coefficient over character bigrams,
ignoring whitespace and case. Distances use the haversine formula on the WGS84
equatorial radius and are rounded to the meter.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

# Earth's radius in meters (WGS84)
EARTH_RADIUS = 6378137


@dataclass(frozen=True)
class SimilarityConfiguration:
    name_weight: float = 0.4
    location_weight: float = 0.6
    max_distance_in_meters: int = 50
    min_score_threshold: float = 0.0


@dataclass
class SimilarityResult:
    total_score: float
    name_score: float
    distance_score: float
    distance_in_meters: float


def compare_two_strings(first: Optional[str], second: Optional[str]) -> float:
    """Dice coefficient between two strings, in [0, 1]."""
    first = "".join((first or "").split()).lower()
    second = "".join((second or "").split()).lower()

    if first == second:
        return 1.0
    if len(first) < 2 or len(second) < 2:
        return 0.0

    first_bigrams: Dict[str, int] = {}
    for i in range(len(first) - 1):
        bigram = first[i : i + 2]
        first_bigrams[bigram] = first_bigrams.get(bigram, 0) + 1

    intersection_size = 0
    for i in range(len(second) - 1):
        bigram = second[i : i + 2]
        count = first_bigrams.get(bigram, 0)
        if count > 0:
            first_bigrams[bigram] = count - 1
            intersection_size += 1

    return (2.0 * intersection_size) / (len(first) - 1 + len(second) - 1)


def compute_distance_in_meters(from_: Tuple[float, float], to: Tuple[float, float]) -> int:
    """Haversine distance between two (latitude, longitude) pairs."""
    lat1, lon1 = from_
    lat2, lon2 = to
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = math.sin(d_lat / 2) ** 2 + math.sin(d_lon / 2) ** 2 * math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS * c)


def compute_viewport_from_circle(
    latitude: float, longitude: float, radius_in_meters: float
) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    """Bounding box ((low_lat, low_lon), (high_lat, high_lon)) of a circle."""
    latitude_offset = math.degrees(radius_in_meters / EARTH_RADIUS)
    longitude_offset = math.degrees(radius_in_meters / (EARTH_RADIUS * math.cos(math.radians(latitude))))
    return (
        (latitude - latitude_offset, longitude - longitude_offset),
        (latitude + latitude_offset, longitude + longitude_offset),
    )


def score(
    name: Optional[str],
    other_name: Optional[str],
    distance_in_meters: float,
    configuration: SimilarityConfiguration,
) -> SimilarityResult:
    name_score = compare_two_strings(name, other_name)
    if configuration.max_distance_in_meters > 0:
        distance_score = max(0.0, 1 - distance_in_meters / configuration.max_distance_in_meters)
    else:
        distance_score = 0.0
    total_score = name_score * configuration.name_weight + distance_score * configuration.location_weight
    return SimilarityResult(
        total_score=total_score,
        name_score=name_score,
        distance_score=distance_score,
        distance_in_meters=distance_in_meters,
    )
