"""
Tag filtering applied before tags are stored on a restaurant profile.

Providers return noisy tags ("restaurant", "point_of_interest", "italian_restaurant").
Hidden tags are dropped case-insensitively, "_restaurant" suffixes are removed,
priority tags are moved first (stable) and the list is capped at max_tags.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

DEFAULT_HIDDEN_TAGS = ("restaurant", "establishment", "point_of_interest", "food")


@dataclass(frozen=True)
class RestaurantTagConfiguration:
    hidden_tags: Tuple[str, ...] = DEFAULT_HIDDEN_TAGS
    priority_tags: Tuple[str, ...] = ()
    max_tags: int = 5  # 0 disables the cap


DEFAULT_TAG_CONFIGURATION = RestaurantTagConfiguration()


def filter_tags(
    tags: Optional[Iterable[str]],
    configuration: RestaurantTagConfiguration = DEFAULT_TAG_CONFIGURATION,
) -> List[str]:
    processed = [tag for tag in tags or [] if tag]
    if not processed:
        return []

    hidden = {tag.lower() for tag in configuration.hidden_tags}
    processed = [tag for tag in processed if tag.lower() not in hidden]

    processed = [tag.replace("_restaurant", "") for tag in processed]
    processed = [tag for tag in processed if tag.strip()]

    if configuration.priority_tags:
        priority = {tag.lower() for tag in configuration.priority_tags}
        # sorted() is stable: non-priority tags keep their relative order
        processed = sorted(processed, key=lambda tag: 0 if tag.lower() in priority else 1)

    if configuration.max_tags > 0:
        processed = processed[: configuration.max_tags]
    return processed
