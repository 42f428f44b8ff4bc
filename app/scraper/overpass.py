"""
Overpass (OpenStreetMap) client used for restaurant discovery.

Queries every named restaurant, fast food and food court around a point. Elements
already seen by the current search are removed server side with a set difference,
so the payload never grows with the exclusion list.

API: POST {instance_url} with form field `data=<Overpass QL>`
Docs: https://wiki.openstreetmap.org/wiki/Overpass_API/Overpass_QL
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from app.core.cancellation import CancellationToken
from app.core.circuit_breaker import FailoverConfiguration, SLOW_NETWORK_FAILOVER
from app.scraper.http import request_json

logger = logging.getLogger(__name__)

OVERPASS_SOURCE_NAME = "osm"
PROVIDER_LABEL = "Overpass"

OVERPASS_ELEMENT_TYPES = ("node", "way", "relation")

# Countries writing "street, number, postcode city"
EURO_CODES = {"be", "fr", "de", "nl", "es", "it", "at", "ch", "pl", "dk", "no", "se", "fi"}


@dataclass(frozen=True)
class OverpassConfiguration:
    enabled: bool = True
    instance_urls: Tuple[str, ...] = (
        "https://overpass-api.de/api/interpreter",
        "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
        "https://overpass.private.coffee/api/interpreter",
    )
    failover: FailoverConfiguration = SLOW_NETWORK_FAILOVER


@dataclass
class OverpassRestaurant:
    """One restaurant element returned by Overpass, flattened from its OSM tags."""

    id: int
    type: str  # node, way, relation
    name: Optional[str]
    latitude: float
    longitude: float
    open_street_map_url: str
    amenity: Optional[str] = None
    cuisine: List[str] = field(default_factory=list)
    vegan: Optional[str] = None
    vegetarian: Optional[str] = None
    country_code: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    post_code: Optional[str] = None
    address_state: Optional[str] = None
    formatted_address: Optional[str] = None
    phone_number: Optional[str] = None
    website: Optional[str] = None
    opening_hours: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    operational: bool = True  # Overpass only returns mapped, existing amenities


@dataclass
class OverpassResponse:
    generator: Optional[str]
    version: Optional[float]
    copyright: Optional[str]
    timestamp_in_utc: Optional[str]
    duration_ms: float
    restaurants: List[OverpassRestaurant]


def build_exclusion_query(ids_to_exclude: Iterable[Tuple[str, str]]) -> Optional[str]:
    """
    Build the Overpass statements selecting elements to remove from the result.

    Args:
        ids_to_exclude: (osm_id, osm_type) pairs; unknown types are ignored

    Returns:
        "node(id:1,2);way(id:3);" style statements, or None when nothing to exclude
    """
    by_type: Dict[str, List[str]] = {element_type: [] for element_type in OVERPASS_ELEMENT_TYPES}
    for osm_id, osm_type in ids_to_exclude:
        ids = by_type.get(osm_type)
        if ids is not None and osm_id not in ids:
            ids.append(osm_id)

    query = ""
    if by_type["node"]:
        query += f"node(id:{','.join(by_type['node'])});"
    if by_type["way"]:
        query += f"way(id:{','.join(by_type['way'])});"
    if by_type["relation"]:
        query += f"rel(id:{','.join(by_type['relation'])});"
    return query or None


def build_nearby_query(
    latitude: float,
    longitude: float,
    radius_in_meters: int,
    timeout_in_seconds: int,
    ids_to_exclude: Iterable[Tuple[str, str]] = (),
) -> str:
    exclusion_query = build_exclusion_query(ids_to_exclude)
    exclusion_block = f"({exclusion_query})->.excludeSet;" if exclusion_query else ""
    output_logic = "(.allRestaurants; - .excludeSet;);" if exclusion_query else ".allRestaurants;"

    return "\n".join(
        line
        for line in (
            f"[out:json][timeout:{timeout_in_seconds}];",
            "(",
            f'  nwr["amenity"~"restaurant|fast_food|food_court"]["name"]'
            f"(around:{radius_in_meters}, {latitude}, {longitude});",
            ")->.allRestaurants;",
            exclusion_block,
            output_logic,
            "out tags center qt;",
        )
        if line
    )


def format_address(
    street: Optional[str],
    house_number: Optional[str],
    city: Optional[str],
    post_code: Optional[str],
    country_code: Optional[str],
) -> Optional[str]:
    """Format an OSM address, postcode first for most European countries."""
    if not street and not city and not post_code:
        return None

    clean_street = (street or "").strip()
    clean_house_number = (house_number or "").strip()
    clean_city = (city or "").strip()
    clean_post_code = (post_code or "").strip()
    code = (country_code or "").strip().lower()

    if code in EURO_CODES:
        locality = " ".join(part for part in (clean_post_code, clean_city) if part)
    else:
        locality = " ".join(part for part in (clean_city, clean_post_code) if part)
    return ", ".join(part for part in (clean_street, clean_house_number, locality) if part)


def build_open_street_map_url(element_id: Any, element_type: str) -> str:
    return f"https://www.openstreetmap.org/{element_type}/{element_id}"


def parse_restaurant(element: Dict[str, Any]) -> Optional[OverpassRestaurant]:
    """Parse one Overpass element; elements without coordinates are dropped."""
    center = element.get("center") or {}
    latitude = element.get("lat") or center.get("lat")
    longitude = element.get("lon") or center.get("lon")
    if not latitude or not longitude:
        return None

    tags: Dict[str, str] = element.get("tags") or {}
    country_code = tags.get("addr:country")
    street = tags.get("addr:street")
    city = tags.get("addr:city")
    post_code = tags.get("addr:postcode")
    cuisine = tags.get("cuisine")

    return OverpassRestaurant(
        id=element["id"],
        type=element["type"],
        name=tags.get("name"),
        latitude=float(latitude),
        longitude=float(longitude),
        open_street_map_url=build_open_street_map_url(element["id"], element["type"]),
        amenity=tags.get("amenity"),
        cuisine=[item.strip() for item in re.split(r"[;,]", cuisine) if item.strip()] if cuisine else [],
        vegan=tags.get("diet:vegan") or None,
        vegetarian=tags.get("diet:vegetarian") or None,
        country_code=country_code.lower() if country_code else None,
        street=street,
        city=city,
        post_code=post_code,
        address_state=tags.get("state") or tags.get("addr:state"),
        formatted_address=format_address(street, tags.get("addr:housenumber"), city, post_code, country_code),
        phone_number=tags.get("phone") or tags.get("contact:phone"),
        website=tags.get("website") or tags.get("contact:website") or tags.get("contact:facebook") or tags.get("url"),
        opening_hours=tags.get("opening_hours"),
        description=tags.get("description"),
        image_url=tags.get("image") or tags.get("mapillary"),
    )


def parse_response(body: Dict[str, Any], duration_ms: float) -> OverpassResponse:
    osm3s = body.get("osm3s") or {}
    restaurants = [parse_restaurant(element) for element in body.get("elements") or []]
    return OverpassResponse(
        generator=body.get("generator"),
        version=body.get("version"),
        copyright=osm3s.get("copyright"),
        timestamp_in_utc=osm3s.get("timestamp_osm_base"),
        duration_ms=duration_ms,
        restaurants=[restaurant for restaurant in restaurants if restaurant is not None],
    )


async def fetch_restaurants_nearby(
    client: httpx.AsyncClient,
    instance_url: str,
    latitude: float,
    longitude: float,
    radius_in_meters: int,
    timeout_in_seconds: int,
    ids_to_exclude: Iterable[Tuple[str, str]] = (),
    token: Optional[CancellationToken] = None,
) -> OverpassResponse:
    """
    Fetch every restaurant around a point from one Overpass instance.

    Args:
        client: Shared AsyncClient
        instance_url: Interpreter endpoint of the Overpass instance
        latitude, longitude: Center of the search
        radius_in_meters: Search radius
        timeout_in_seconds: Server side query timeout
        ids_to_exclude: (osm_id, osm_type) pairs already seen by the caller
        token: Cancels the request in flight

    Returns:
        OverpassResponse with the parsed restaurants
    """
    exclusions = list(ids_to_exclude)
    query = build_nearby_query(latitude, longitude, radius_in_meters, timeout_in_seconds, exclusions)
    logger.debug(
        f"[Overpass] {instance_url}: restaurants near [{latitude}, {longitude}] "
        f"(radius {radius_in_meters}m, {len(exclusions)} exclusions)"
    )

    start = time.monotonic()
    body = await request_json(
        client,
        PROVIDER_LABEL,
        "POST",
        instance_url,
        query,
        token=token,
        data={"data": query},
        headers={"Content-Type": "application/x-www-form-urlencoded;charset=UTF-8"},
    )
    response = parse_response(body, duration_ms=(time.monotonic() - start) * 1000)
    logger.debug(f"[Overpass] {instance_url}: parsed {len(response.restaurants)} restaurants")
    return response
