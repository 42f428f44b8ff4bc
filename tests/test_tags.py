"""
Tests for restaurant tag filtering.

Tests cover:
1. Hidden tags (case-insensitive) and "_restaurant" suffix removal
2. Stable priority ordering
3. max_tags cap
"""

from app.services.tags import RestaurantTagConfiguration, filter_tags


class TestFilterTags:
    """Tests for filter_tags."""

    def test_empty_input(self):
        assert filter_tags(None) == []
        assert filter_tags([]) == []
        assert filter_tags(["", None]) == []

    def test_hides_default_tags_case_insensitively(self):
        tags = ["Restaurant", "italian_restaurant", "point_of_interest", "FOOD", "pizza"]
        assert filter_tags(tags) == ["italian", "pizza"]

    def test_priority_tags_move_first_and_keep_order(self):
        config = RestaurantTagConfiguration(hidden_tags=(), priority_tags=("vegan", "Vegetarian"), max_tags=0)
        tags = ["pizza", "vegetarian", "burger", "vegan", "sushi"]
        assert filter_tags(tags, config) == ["vegetarian", "vegan", "pizza", "burger", "sushi"]

    def test_caps_at_max_tags(self):
        config = RestaurantTagConfiguration(hidden_tags=(), max_tags=2)
        assert filter_tags(["a", "b", "c"], config) == ["a", "b"]

    def test_zero_max_tags_disables_cap(self):
        config = RestaurantTagConfiguration(hidden_tags=(), max_tags=0)
        assert filter_tags(["a", "b", "c", "d", "e", "f"], config) == ["a", "b", "c", "d", "e", "f"]
