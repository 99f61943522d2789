"""Tests for the option extractors."""

from __future__ import annotations

from typing import Any

import pytest

from searchbridge.adapters.base.exceptions import TranslationError
from searchbridge.query.options import (
    extract_all,
    extract_attributes_to_retrieve,
    extract_embedding,
    extract_facets,
    extract_geo,
    extract_highlight,
    extract_histogram,
    extract_pagination,
    extract_sort,
    extract_stats,
    is_range_filter,
    is_unified_sort,
    native_pagination,
    numeric_bound,
    range_bounds,
)


class TestPagination:
    def test_defaults(self) -> None:
        assert extract_pagination({}) == ((1, 20), {})

    def test_reads_and_strips(self) -> None:
        (page, per_page), remaining = extract_pagination({"page": 3, "perPage": 50, "typoTolerance": False})
        assert (page, per_page) == (3, 50)
        assert remaining == {"typoTolerance": False}

    @pytest.mark.parametrize(
        ("options", "expected"),
        [
            ({"page": 0}, (1, 20)),
            ({"page": -4, "perPage": 0}, (1, 20)),
            ({"page": "2", "perPage": "15"}, (2, 15)),
            ({"page": "two", "perPage": None}, (1, 20)),
            ({"page": True}, (1, 20)),
        ],
    )
    def test_clamps_invalid_values(self, options: dict[str, Any], expected: tuple[int, int]) -> None:
        assert extract_pagination(options)[0] == expected

    def test_custom_default_per_page(self) -> None:
        assert extract_pagination({}, default_per_page=10)[0] == (1, 10)

    def test_input_not_mutated(self) -> None:
        options = {"page": 2, "perPage": 5}
        extract_pagination(options)
        assert options == {"page": 2, "perPage": 5}

    def test_native_pagination(self) -> None:
        assert native_pagination({"from": 40, "size": 20}, "from", "size") == (40, 20)
        assert native_pagination({"size": 5}, "from", "size") == (0, 5)
        assert native_pagination({"from": 40}, "from", "size") is None


class TestSortAndAttributes:
    def test_unified_sort(self) -> None:
        sort, remaining = extract_sort({"sort": {"price": "desc"}, "q": 1})
        assert sort == {"price": "desc"}
        assert remaining == {"q": 1}
        assert is_unified_sort(sort)

    @pytest.mark.parametrize(
        "sort",
        [["price:asc", "_score"], [{"price": "asc"}], {"price": "descending"}, {}],
    )
    def test_native_sorts_are_not_unified(self, sort: Any) -> None:
        assert not is_unified_sort(sort)

    def test_scalar_sort_discarded(self) -> None:
        assert extract_sort({"sort": "price:asc"})[0] == []

    def test_attributes_to_retrieve(self) -> None:
        assert extract_attributes_to_retrieve({"attributesToRetrieve": ["title"]})[0] == ["title"]
        assert extract_attributes_to_retrieve({"attributesToRetrieve": "title"})[0] is None

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(True, True), (["title"], ["title"]), (False, None), ("yes", None)],
    )
    def test_highlight(self, value: Any, expected: Any) -> None:
        assert extract_highlight({"highlight": value}) == (expected, {})


class TestEmbedding:
    def test_vector_and_field(self) -> None:
        embedding, remaining = extract_embedding(
            {"embedding": [1, 0.5], "embeddingField": "embedding", "vectorSearch": True, "voyageModel": "v3"}
        )
        assert embedding is not None
        assert embedding.vector == [1.0, 0.5]
        assert embedding.field == "embedding"
        assert remaining == {}

    @pytest.mark.parametrize("vector", [[], "0.1,0.2", [0.1, "x"], [True, 0.2]])
    def test_invalid_vectors_ignored(self, vector: Any) -> None:
        assert extract_embedding({"embedding": vector})[0] is None


class TestFacetsAndFilters:
    def test_facets_and_filters(self) -> None:
        (facets, filters), remaining = extract_facets({"facets": "brand", "filters": {"brand": "Ridge"}, "x": 1})
        assert facets == ["brand"]
        assert filters == {"brand": "Ridge"}
        assert remaining == {"x": 1}

    def test_filters_must_be_a_mapping(self) -> None:
        with pytest.raises(TranslationError):
            extract_facets({"filters": ["brand:Ridge"]})

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ({"min": 1}, True),
            ({"min": 1, "max": 2}, True),
            ({}, False),
            ({"min": 1, "gte": 2}, False),
            ([1, 2], False),
        ],
    )
    def test_is_range_filter(self, value: Any, expected: bool) -> None:
        assert is_range_filter(value) is expected

    def test_empty_bounds_are_open(self) -> None:
        assert range_bounds({"min": "", "max": 10}) == (None, 10)

    def test_numeric_bound(self) -> None:
        assert numeric_bound("price", 10.0) == "10"
        assert numeric_bound("price", "99.5") == "99.5"
        assert numeric_bound("published_at", "2024-06-15T00:00:00Z", is_date=True) == "1718409600"
        assert numeric_bound("published_at", 1718409600000, is_date=True) == "1718409600"

    @pytest.mark.parametrize(
        ("value", "is_date"),
        [(True, False), ("cheap", False), ([1], False), ("yesterday", True)],
    )
    def test_invalid_bounds(self, value: Any, is_date: bool) -> None:
        with pytest.raises(TranslationError):
            numeric_bound("price", value, is_date)


class TestGeo:
    def test_all_geo_options(self) -> None:
        geo, remaining = extract_geo(
            {
                "geoFilter": {"lat": 48.85, "lng": 2.35, "radius": 1000},
                "geoSort": {"lat": 48.85, "lng": 2.35, "direction": "desc"},
                "geoGrid": {"precision": 7},
            }
        )
        assert remaining == {}
        assert geo.filter is not None and geo.filter.radius == 1000
        assert geo.sort is not None and geo.sort.direction == "desc"
        assert geo.grid is not None and geo.grid.precision == 7

    def test_grid_shorthand(self) -> None:
        geo, _ = extract_geo({"geoGrid": True})
        assert geo.grid is not None and geo.grid.precision == 5
        assert not geo.empty

    def test_no_geo(self) -> None:
        assert extract_geo({})[0].empty

    @pytest.mark.parametrize(
        "options",
        [
            {"geoFilter": {"lat": 48.85, "lng": 2.35}},
            {"geoFilter": {"lat": 48.85, "lng": 2.35, "radius": 0}},
            {"geoSort": {"lat": 1, "lng": 2, "direction": "nearest"}},
            {"geoGrid": {"precision": 40}},
            {"geoFilter": "48.85,2.35"},
        ],
    )
    def test_malformed(self, options: dict[str, Any]) -> None:
        with pytest.raises(TranslationError):
            extract_geo(options)


class TestStatsAndHistogram:
    def test_stats(self) -> None:
        assert extract_stats({"stats": ["price"]}) == (["price"], {})
        assert extract_stats({"stats": "price"}) == ([], {})

    def test_histogram_forms(self) -> None:
        specs, remaining = extract_histogram(
            {"histogram": {"price": 50, "stock": {"interval": 5, "min": 0, "max": 100}}}
        )
        assert remaining == {}
        assert specs["price"].interval == 50.0
        assert specs["price"].min is None
        assert (specs["stock"].min, specs["stock"].max) == (0.0, 100.0)

    @pytest.mark.parametrize("config", [0, -5, True, "50", {"interval": None}, {"min": 0}, float("inf")])
    def test_invalid_intervals_dropped(self, config: Any) -> None:
        assert extract_histogram({"histogram": {"price": config}})[0] == {}


class TestExtractAll:
    def test_splits_unified_from_native(self) -> None:
        params, native = extract_all(
            {
                "page": 2,
                "perPage": 10,
                "sort": {"price": "asc"},
                "highlight": True,
                "suggest": True,
                "facets": ["brand"],
                "filters": {"in_stock": True},
                "stats": ["price"],
                "histogram": {"price": 50},
                "typoTolerance": False,
                "track_total_hits": True,
            }
        )
        assert native == {"typoTolerance": False, "track_total_hits": True}
        assert (params.page, params.per_page) == (2, 10)
        assert params.unified_sort == {"price": "asc"}
        assert params.highlight is True
        assert params.suggest is True
        assert params.facets == ["brand"]
        assert params.filters == {"in_stock": True}
        assert params.stats == ["price"]
        assert set(params.histogram) == {"price"}
        assert params.geo.empty

    def test_none_options(self) -> None:
        params, native = extract_all(None)
        assert native == {}
        assert params.page == 1
        assert params.unified_sort is None
