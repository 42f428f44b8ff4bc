"""
Geocoding clients (Nominatim, Photon) used by the address search box.

Both are OpenStreetMap based and free to use; they answer a free text query with a
short list of places. Results are biased toward the device location when the
caller knows it.

API:
    Nominatim: GET {instance_url}?q=...&format=json
    Photon:    GET {instance_url}?q=...&lat=...&lon=...
Docs:
    https://nominatim.org/release-docs/develop/api/Search/
    https://github.com/komoot/photon
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.core.cancellation import CancellationToken
from app.core.circuit_breaker import DEFAULT_FAILOVER, FailoverConfiguration
from app.scraper.http import request_json
from app.services.similarity import compute_viewport_from_circle

logger = logging.getLogger(__name__)

NOMINATIM_LABEL = "Nominatim"
PHOTON_LABEL = "Photon"

UNKNOWN_LOCATION = "Unknown Location"

# Nominatim results precise enough to center a search on
APPROXIMATE_LOCATION_CLASSES = {"place", "boundary", "highway"}
EXCLUDED_TYPES = {"house", "residential"}

PHOTON_PLACE_TAGS = ("place:city", "place:town", "place:village", "place:suburb")

# Half-width of the Nominatim viewbox drawn around the device location
BIAS_RADIUS_IN_METERS = 50_000


@dataclass(frozen=True)
class NominatimConfiguration:
    enabled: bool = True
    instance_urls: Tuple[str, ...] = ("https://nominatim.openstreetmap.org/search",)
    user_agent: str = "bite-roulette/0.1"
    max_number_of_addresses: int = 5
    bottom_note: str = "by OpenStreetMap"
    failover: FailoverConfiguration = DEFAULT_FAILOVER


@dataclass(frozen=True)
class PhotonConfiguration:
    enabled: bool = True
    instance_urls: Tuple[str, ...] = ("https://photon.komoot.io/api",)
    max_number_of_addresses: int = 5
    bottom_note: str = "by Photon & OpenStreetMap"
    failover: FailoverConfiguration = DEFAULT_FAILOVER


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass
class Location:
    display: str
    compact: str
    latitude: float
    longitude: float


@dataclass
class LocationSuggestions:
    locations: List[Location] = field(default_factory=list)
    note: Optional[str] = None


# --- Nominatim ---


def build_nominatim_params(
    query: str, max_number_of_addresses: int, bias: Optional[Coordinates] = None
) -> Dict[str, Any]:
    params: Dict[str, Any] = {
        "q": query,
        "format": "json",
        "limit": max_number_of_addresses,
        "addressdetails": 1,
        "extratags": 0,
        "namedetails": 0,
        "polygon_geojson": 0,
        "bounded": 0,
        "dedupe": 1,
        "layer": "address",
    }
    if bias is not None:
        (low_lat, low_lon), (high_lat, high_lon) = compute_viewport_from_circle(
            bias.latitude, bias.longitude, BIAS_RADIUS_IN_METERS
        )
        # left,top,right,bottom
        params["viewbox"] = f"{low_lon},{high_lat},{high_lon},{low_lat}"
    return params


def parse_nominatim_places(body: Any) -> List[Location]:
    if not isinstance(body, list):
        return []
    locations = []
    for place in body:
        if not isinstance(place, dict) or not place.get("lat") or not place.get("lon"):
            continue
        if place.get("class") not in APPROXIMATE_LOCATION_CLASSES or place.get("type") in EXCLUDED_TYPES:
            continue
        display = place.get("display_name") or ""
        try:
            latitude, longitude = float(place["lat"]), float(place["lon"])
        except (TypeError, ValueError):
            continue
        locations.append(
            Location(
                display=display,
                compact=place.get("name") or display.split(",")[0].strip(),
                latitude=latitude,
                longitude=longitude,
            )
        )
    return locations


async def fetch_locations_from_nominatim(
    client: httpx.AsyncClient,
    instance_url: str,
    query: str,
    configuration: NominatimConfiguration = NominatimConfiguration(),
    bias: Optional[Coordinates] = None,
    token: Optional[CancellationToken] = None,
) -> LocationSuggestions:
    logger.debug(f"[Nominatim] {instance_url}: q='{query}'")
    body = await request_json(
        client,
        NOMINATIM_LABEL,
        "GET",
        instance_url,
        f"q='{query}'",
        token=token,
        params=build_nominatim_params(query, configuration.max_number_of_addresses, bias),
        headers={"User-Agent": configuration.user_agent},
    )
    locations = parse_nominatim_places(body)
    logger.debug(f"[Nominatim] {instance_url}: {len(locations)} locations for '{query}'")
    return LocationSuggestions(locations=locations, note=configuration.bottom_note)


# --- Photon ---


def build_photon_params(
    query: str, max_number_of_addresses: int, bias: Optional[Coordinates] = None
) -> List[Tuple[str, Any]]:
    # osm_tag repeats, hence a list of pairs
    params: List[Tuple[str, Any]] = [("q", query), ("limit", max_number_of_addresses)]
    params.extend(("osm_tag", tag) for tag in PHOTON_PLACE_TAGS)
    if bias is not None:
        params.extend([("lat", bias.latitude), ("lon", bias.longitude)])
    return params


def convert_photon_feature(feature: Dict[str, Any]) -> Optional[Location]:
    coordinates = (feature.get("geometry") or {}).get("coordinates")
    if not isinstance(coordinates, list) or len(coordinates) != 2:
        return None

    properties = feature.get("properties") or {}
    primary = properties.get("name") or f"{properties.get('street') or ''} {properties.get('housenumber') or ''}".strip()
    display = ", ".join(part for part in (primary, properties.get("city"), properties.get("country")) if part)
    # GeoJSON order is [lon, lat]
    return Location(
        display=display or UNKNOWN_LOCATION,
        compact=properties.get("name") or properties.get("city") or display or UNKNOWN_LOCATION,
        latitude=float(coordinates[1]),
        longitude=float(coordinates[0]),
    )


def parse_photon_features(body: Any) -> List[Location]:
    features = body.get("features") if isinstance(body, dict) else None
    locations = []
    for feature in features or []:
        if not isinstance(feature, dict):
            continue
        location = convert_photon_feature(feature)
        if location is not None:
            locations.append(location)
    return locations


async def fetch_locations_from_photon(
    client: httpx.AsyncClient,
    instance_url: str,
    query: str,
    configuration: PhotonConfiguration = PhotonConfiguration(),
    bias: Optional[Coordinates] = None,
    token: Optional[CancellationToken] = None,
) -> LocationSuggestions:
    logger.debug(f"[Photon] {instance_url}: q='{query}'")
    body = await request_json(
        client,
        PHOTON_LABEL,
        "GET",
        instance_url,
        f"q='{query}'",
        token=token,
        params=build_photon_params(query, configuration.max_number_of_addresses, bias),
    )
    locations = parse_photon_features(body)
    logger.debug(f"[Photon] {instance_url}: {len(locations)} locations for '{query}'")
    return LocationSuggestions(locations=locations, note=configuration.bottom_note)
