"""
Decide whether a reconciled restaurant can be returned for a search.

Rules are checked in order and the first failing one gives the rejection reason:
no restaurant, missing coordinates, blocklisted name, unknown opening hours,
closed at the service instant, no image, fast food (when avoided), takeaway
(when avoided).
"""

import re
from dataclasses import dataclass
from typing import Optional, Protocol

from app.models.restaurant import RestaurantAndProfiles
from app.models.search import RejectionReason, Search
from app.services.view import build_restaurant_view

FAST_FOOD_TAGS = {"fast_food", "fastfood", "friture", "friterie", "kebab", "sandwich_shop"}
TAKEAWAY_TAGS = {"meal_takeaway", "meal_delivery", "food_delivery", "takeaway", "delivery"}

BLOCKLISTED_NAME_PATTERNS = [
    re.compile(r"pizza\s*hut", re.IGNORECASE),
    re.compile(r"o['’]?\s*tacos", re.IGNORECASE),
]


@dataclass(frozen=True)
class RestaurantValidation:
    valid: bool
    rejection_reason: Optional[RejectionReason] = None


SUCCESS = RestaurantValidation(valid=True)


def failed(reason: RejectionReason) -> RestaurantValidation:
    return RestaurantValidation(valid=False, rejection_reason=reason)


class Validator(Protocol):
    def __call__(self, restaurant: Optional[RestaurantAndProfiles], search: Search) -> RestaurantValidation: ...


def validate_restaurant(restaurant: Optional[RestaurantAndProfiles], search: Search) -> RestaurantValidation:
    if restaurant is None:
        return failed(RejectionReason.NO_RESTAURANT_FOUND)
    if restaurant.latitude is None or restaurant.longitude is None:
        return failed(RejectionReason.MISSING_COORDINATES)

    view = build_restaurant_view(restaurant, search.service_instant)
    tags = {tag.lower() for tag in view.tags}

    if any(pattern.search(view.name) for pattern in BLOCKLISTED_NAME_PATTERNS):
        return failed(RejectionReason.BLOCKLISTED_NAME)
    if view.opening_hours is None or view.opening_hours.unknown:
        return failed(RejectionReason.UNKNOWN_OPENING_HOURS)
    if view.opening_hours.open is False:
        return failed(RejectionReason.CLOSED)
    if not view.image_url:
        return failed(RejectionReason.NO_IMAGE)
    if search.avoid_fast_food and tags & FAST_FOOD_TAGS:
        return failed(RejectionReason.FAST_FOOD)
    if search.avoid_takeaway and tags & TAKEAWAY_TAGS:
        return failed(RejectionReason.TAKEAWAY)
    return SUCCESS
