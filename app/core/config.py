from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


def split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    PROJECT_NAME: str = "Bite Roulette"
    API_V1_STR: str = "/api/v1"

    # Database (SQLite for local dev, Postgres in production)
    DATABASE_URL: str = "sqlite:///./bite_roulette.db"

    ENVIRONMENT: str = "development"  # "production" switches logs to JSON
    LOG_LEVEL: str = "INFO"

    # Comma-separated origins allowed to call the API from a browser
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # Discovery
    DISCOVERY_RANGE_INCREASE_METERS: int = 2_000
    DISCOVERY_MAX_ITERATIONS: int = 3
    DISCOVERY_IDLE_WAIT_SECONDS: float = 0.5

    # Distance bands (initial radius / per-call timeout)
    RANGE_CLOSE_METERS: int = 1_500
    RANGE_CLOSE_TIMEOUT_MS: int = 5_000
    RANGE_MID_RANGE_METERS: int = 12_000
    RANGE_MID_RANGE_TIMEOUT_MS: int = 10_000
    RANGE_FAR_METERS: int = 30_000
    RANGE_FAR_TIMEOUT_MS: int = 25_000

    # Tag filtering (comma-separated)
    TAGS_HIDDEN: str = "restaurant,establishment,point_of_interest,food"
    TAGS_PRIORITY: str = ""
    TAGS_MAX: int = 5

    # Matchers only refresh a profile once it is older than this
    MATCHING_FRESHNESS_DAYS: int = 30

    # Overpass (OpenStreetMap) - discovery
    OVERPASS_ENABLED: bool = True
    OVERPASS_INSTANCE_URLS: str = (
        "https://overpass-api.de/api/interpreter,"
        "https://maps.mail.ru/osm/tools/overpass/api/interpreter,"
        "https://overpass.private.coffee/api/interpreter"
    )
    OVERPASS_SLOW_NETWORK: bool = True  # public instances are often slow

    # Address search (Nominatim, Photon)
    NOMINATIM_ENABLED: bool = True
    NOMINATIM_INSTANCE_URLS: str = "https://nominatim.openstreetmap.org/search"
    NOMINATIM_USER_AGENT: str = "bite-roulette/0.1"
    NOMINATIM_MAX_ADDRESSES: int = 5
    NOMINATIM_SLOW_NETWORK: bool = False
    PHOTON_ENABLED: bool = True
    PHOTON_INSTANCE_URLS: str = "https://photon.komoot.io/api"
    PHOTON_MAX_ADDRESSES: int = 5
    PHOTON_SLOW_NETWORK: bool = False

    # Google Place - matching
    GOOGLE_PLACE_ENABLED: bool = False
    GOOGLE_PLACE_API_KEY: str = ""
    GOOGLE_PLACE_BASE_URL: str = "https://places.googleapis.com/v1"
    GOOGLE_PLACE_MAX_ATTEMPTS_PER_MONTH: int = 200
    GOOGLE_PLACE_SEARCH_RADIUS_METERS: int = 50
    GOOGLE_PLACE_PHOTO_MAX_WIDTH_PX: int = 1024
    GOOGLE_PLACE_PHOTO_MAX_HEIGHT_PX: int = 512
    GOOGLE_PLACE_SIMILARITY_NAME_WEIGHT: float = 0.4
    GOOGLE_PLACE_SIMILARITY_LOCATION_WEIGHT: float = 0.6
    GOOGLE_PLACE_SIMILARITY_MAX_DISTANCE_METERS: int = 50
    GOOGLE_PLACE_SLOW_NETWORK: bool = False

    # TripAdvisor - matching
    TRIPADVISOR_ENABLED: bool = False
    TRIPADVISOR_API_KEY: str = ""
    TRIPADVISOR_BASE_URL: str = "https://api.content.tripadvisor.com/api/v1"
    TRIPADVISOR_MAX_ATTEMPTS_PER_MONTH: int = 200
    TRIPADVISOR_SEARCH_RADIUS_METERS: int = 50
    TRIPADVISOR_PHOTO_SIZE: str = "large"  # thumbnail, small, medium, large, original
    TRIPADVISOR_SIMILARITY_NAME_WEIGHT: float = 0.4
    TRIPADVISOR_SIMILARITY_LOCATION_WEIGHT: float = 0.6
    TRIPADVISOR_SIMILARITY_MAX_DISTANCE_METERS: int = 50
    TRIPADVISOR_SIMILARITY_MIN_SCORE: float = 0.6
    TRIPADVISOR_SLOW_NETWORK: bool = False

    # Circuit breaker shared state
    CIRCUIT_BREAKER_STATE_BACKEND: str = "memory"  # "memory" or "database"
    CIRCUIT_BREAKER_STATE_TTL_SECONDS: int = 60

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        return split_csv(self.CORS_ORIGINS)

    @property
    def overpass_instance_urls(self) -> List[str]:
        return split_csv(self.OVERPASS_INSTANCE_URLS)

    @property
    def nominatim_instance_urls(self) -> List[str]:
        return split_csv(self.NOMINATIM_INSTANCE_URLS)

    @property
    def photon_instance_urls(self) -> List[str]:
        return split_csv(self.PHOTON_INSTANCE_URLS)

    @property
    def hidden_tags(self) -> List[str]:
        return split_csv(self.TAGS_HIDDEN)

    @property
    def priority_tags(self) -> List[str]:
        return split_csv(self.TAGS_PRIORITY)


settings = Settings()
