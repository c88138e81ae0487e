"""
List filter schema tests
"""

import pytest
from pydantic import ValidationError

from storefront.schemas.filters import (
    EmailSearchQuery,
    InventoryFilter,
    ReviewFilter,
    ShipmentFilter,
    SortOrder,
    WishlistFilter,
)


class TestListFilter:

    @pytest.mark.unit
    def test_defaults(self):
        filters = InventoryFilter()

        assert filters.limit == 20
        assert filters.offset == 0
        assert filters.order_column == "created_at"
        assert filters.descending

    @pytest.mark.unit
    def test_sort_whitelist_is_not_a_field(self):
        assert "SORT_FIELDS" not in InventoryFilter.model_fields
        assert "DEFAULT_SORT" not in ReviewFilter.model_fields
        assert "quantity_on_hand" in InventoryFilter.SORT_FIELDS

    @pytest.mark.unit
    def test_sort_by_is_normalised(self):
        filters = ShipmentFilter(sort_by=" Carrier ", sort_order="asc")

        assert filters.order_column == "carrier"
        assert filters.sort_order == SortOrder.ASC.value
        assert not filters.descending

    @pytest.mark.unit
    @pytest.mark.parametrize("model, column", [
        (InventoryFilter, "rating"),
        (ReviewFilter, "quantity_on_hand"),
        (WishlistFilter, "id; DROP TABLE users"),
        (EmailSearchQuery, "subject"),
    ])
    def test_sort_by_whitelist(self, model, column):
        with pytest.raises(ValidationError):
            model(sort_by=column)

    @pytest.mark.unit
    @pytest.mark.parametrize("kwargs", [
        {"limit": -1},
        {"limit": 1001},
        {"offset": -5},
        {"sort_order": "sideways"},
    ])
    def test_bounds(self, kwargs):
        with pytest.raises(ValidationError):
            InventoryFilter(**kwargs)

    @pytest.mark.unit
    def test_review_rating_range(self):
        assert ReviewFilter(min_rating=4).min_rating == 4
        with pytest.raises(ValidationError):
            ReviewFilter(rating=6)

    @pytest.mark.unit
    def test_model_copy_keeps_paging(self):
        filters = ReviewFilter(limit=5, sort_by="helpful_count")

        scoped = filters.model_copy(update={"product_id": 12})

        assert (scoped.product_id, scoped.limit, scoped.order_column) == (12, 5, "helpful_count")
