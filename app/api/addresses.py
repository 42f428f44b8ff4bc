"""
Address search endpoint backing the location box of the search form.

- GET /address-searches?query=...&latitude_bias=...&longitude_bias=...

Provider failures are not HTTP errors: the form shows the `error` message and
keeps the previous suggestions.
"""

from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from app.api import deps
from app.core.logging_config import get_logger
from app.scraper.geocoding import Coordinates
from app.schemas import AddressSearchOut, LocationOut
from app.services.address import search_locations
from app.services.factory import Runtime

logger = get_logger(__name__)

router = APIRouter()

SEARCH_FAILED_MESSAGE = "Unable to fetch addresses at this time. Please try again."


def parse_location_bias(latitude: Optional[str], longitude: Optional[str]) -> Optional[Coordinates]:
    """Device location used to rank nearby results first; ignored unless both parts parse."""
    if not latitude or not longitude:
        return None
    try:
        bias = Coordinates(latitude=float(latitude), longitude=float(longitude))
    except ValueError:
        return None
    if not (-90 <= bias.latitude <= 90 and -180 <= bias.longitude <= 180):
        return None
    return bias


@router.get("", response_model=AddressSearchOut)
async def search_addresses(
    query: str = Query(default="", max_length=200),
    latitude_bias: Optional[str] = Query(default=None, max_length=32),
    longitude_bias: Optional[str] = Query(default=None, max_length=32),
    runtime: Runtime = Depends(deps.get_runtime),
) -> Any:
    bias = parse_location_bias(latitude_bias, longitude_bias)
    try:
        suggestions = await search_locations(runtime.address, query, bias)
    except Exception as e:
        logger.error("address search failed", query=query, error=str(e))
        return AddressSearchOut(error=SEARCH_FAILED_MESSAGE)

    return AddressSearchOut(
        locations=[LocationOut(**asdict(location)) for location in suggestions.locations],
        note=suggestions.note,
    )
