"""
Restaurant and profile persistence.

Every write returns a fresh RestaurantAndProfiles so matchers can pass the
aggregate along without sharing mutable state.
"""

from dataclasses import replace
from typing import Any, Dict, List, Optional, Protocol

from sqlmodel import Session, select

from app.core.typing import ensure_int, utc_now
from app.models.restaurant import Restaurant, RestaurantAndProfiles, RestaurantProfile
from app.services.discovery import DiscoveredRestaurantProfile

# Fields a payload may set on a profile; anything else is ignored
PROFILE_FIELDS = (
    "source",
    "external_id",
    "external_type",
    "version",
    "latitude",
    "longitude",
    "name",
    "address",
    "country_code",
    "state",
    "description",
    "image_url",
    "map_url",
    "rating",
    "rating_count",
    "phone_number",
    "international_phone_number",
    "price_range",
    "price_label",
    "opening_hours",
    "tags",
    "operational",
    "website",
    "source_url",
)


def _profile_values(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in payload.items() if key in PROFILE_FIELDS}


class RestaurantRepository(Protocol):
    def find_by_id(self, restaurant_id: int) -> Optional[RestaurantAndProfiles]: ...

    def find_restaurant_with_external_identity(
        self, external_id: str, external_type: str, source: str
    ) -> Optional[RestaurantAndProfiles]: ...

    def create_restaurant_from_discovery(
        self, discovered: DiscoveredRestaurantProfile, tags: List[str]
    ) -> RestaurantAndProfiles: ...

    def create_profile(self, payload: Dict[str, Any], restaurant: RestaurantAndProfiles) -> RestaurantAndProfiles: ...

    def update_profile(
        self, profile_id: int, payload: Dict[str, Any], restaurant: RestaurantAndProfiles
    ) -> RestaurantAndProfiles: ...


class SqlRestaurantRepository:
    def __init__(self, session: Session):
        self.session = session

    def _profiles_of(self, restaurant_id: int) -> List[RestaurantProfile]:
        return list(
            self.session.exec(
                select(RestaurantProfile)
                .where(RestaurantProfile.restaurant_id == restaurant_id)
                .order_by(RestaurantProfile.id)
            ).all()
        )

    def find_by_id(self, restaurant_id: int) -> Optional[RestaurantAndProfiles]:
        restaurant = self.session.get(Restaurant, restaurant_id)
        if restaurant is None:
            return None
        return RestaurantAndProfiles.of(restaurant, self._profiles_of(restaurant_id))

    def find_restaurant_with_external_identity(
        self, external_id: str, external_type: str, source: str
    ) -> Optional[RestaurantAndProfiles]:
        profile = self.session.exec(
            select(RestaurantProfile).where(
                RestaurantProfile.source == source,
                RestaurantProfile.external_id == str(external_id),
                RestaurantProfile.external_type == external_type,
            )
        ).first()
        if profile is None:
            return None
        return self.find_by_id(profile.restaurant_id)

    def create_restaurant_from_discovery(
        self, discovered: DiscoveredRestaurantProfile, tags: List[str]
    ) -> RestaurantAndProfiles:
        restaurant = Restaurant(
            name=discovered.name[:100] if discovered.name else None,
            latitude=discovered.latitude,
            longitude=discovered.longitude,
        )
        self.session.add(restaurant)
        self.session.flush()

        values = _profile_values(vars(discovered))
        values.update(version=1, tags=list(tags))
        profile = RestaurantProfile(restaurant_id=ensure_int(restaurant.id), **values)
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(restaurant)
        self.session.refresh(profile)
        return RestaurantAndProfiles.of(restaurant, [profile])

    def create_profile(self, payload: Dict[str, Any], restaurant: RestaurantAndProfiles) -> RestaurantAndProfiles:
        profile = RestaurantProfile(restaurant_id=restaurant.id, **_profile_values(payload))
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(profile)
        return replace(restaurant, profiles=[*restaurant.profiles, profile])

    def update_profile(
        self, profile_id: int, payload: Dict[str, Any], restaurant: RestaurantAndProfiles
    ) -> RestaurantAndProfiles:
        profile = self.session.get(RestaurantProfile, profile_id)
        if profile is None:
            raise ValueError(f"Restaurant profile {profile_id} does not exist")

        for key, value in _profile_values(payload).items():
            setattr(profile, key, value)
        profile.updated_at = utc_now()
        self.session.add(profile)
        self.session.commit()
        self.session.refresh(profile)

        profiles = [profile if p.id == profile_id else p for p in restaurant.profiles]
        return replace(restaurant, profiles=profiles)
