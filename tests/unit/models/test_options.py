"""Tests for SearchOptions and HistogramSpec."""

from __future__ import annotations

import pytest

from searchsync.exceptions import ValidationError
from searchsync.models.options import HistogramSpec, SearchOptions


class TestSearchOptionsDefaults:
    def test_defaults(self) -> None:
        options = SearchOptions()
        assert options.per_page == 20
        assert options.page == 1
        assert options.offset == 0
        assert options.highlight_fields() is None
        assert options.vector_search is False

    def test_offset(self) -> None:
        assert SearchOptions(page=3, per_page=25).offset == 50


class TestSearchOptionsCoercion:
    def test_sort_direction_is_lowercased(self) -> None:
        assert SearchOptions(sort={"postDate": "DESC"}).sort == {"postDate": "desc"}

    def test_scalar_filters_are_wrapped(self) -> None:
        options = SearchOptions(filters={"status": "live", "tags": ["a", "b"], "ids": (1, 2)})
        assert options.filters == {"status": ["live"], "tags": ["a", "b"], "ids": [1, 2]}

    def test_integer_histogram_means_bucket_count(self) -> None:
        options = SearchOptions(histogram={"price": 5, "year": {"interval": 10, "min": 1900}})
        assert options.histogram["price"].buckets == 5
        assert options.histogram["year"].interval == 10
        assert options.histogram["year"].min == 1900

    def test_highlight_fields(self) -> None:
        assert SearchOptions(highlight=True).highlight_fields() == []
        assert SearchOptions(highlight=["title"]).highlight_fields() == ["title"]


class TestSearchOptionsValidation:
    @pytest.mark.parametrize(
        ("data", "option"),
        [
            ({"per_page": 0}, "per_page"),
            ({"page": 0}, "page"),
            ({"sort": {"title": "sideways"}}, "sort"),
            ({"histogram": {"price": {"buckets": 3, "interval": 5}}}, "histogram"),
            ({"embedding": [], "vector_search": True}, "embedding"),
            ({"colour": "red"}, "colour"),
        ],
    )
    def test_parse_names_offending_option(self, data: dict, option: str) -> None:
        with pytest.raises(ValidationError) as excinfo:
            SearchOptions.parse(data)
        assert excinfo.value.option == option

    def test_embedding_requires_vector_search(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            SearchOptions(embedding=[0.1, 0.2])
        assert excinfo.value.option == "embedding"

    def test_embedding_field_requires_vector_search(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            SearchOptions.parse({"embedding_field": "vector"})
        assert excinfo.value.option == "embedding_field"

    def test_parse_passthrough(self) -> None:
        options = SearchOptions(page=2)
        assert SearchOptions.parse(options) is options
        assert SearchOptions.parse(None) == SearchOptions()


class TestHistogramSpec:
    def test_requires_exactly_one_of_buckets_or_interval(self) -> None:
        with pytest.raises(ValueError):
            HistogramSpec()
        with pytest.raises(ValueError):
            HistogramSpec(buckets=4, interval=2.0)

    def test_bounds_order(self) -> None:
        with pytest.raises(ValueError):
            HistogramSpec(interval=1, min=10, max=5)
        assert HistogramSpec(interval=1, min=5, max=5).max == 5


class TestWithEmbedding:
    def test_resolved(self) -> None:
        options = SearchOptions(vector_search=True).with_embedding("vector", [0.5, 0.5])
        assert options.vector_search is True
        assert options.embedding_field == "vector"
        assert options.embedding == [0.5, 0.5]

    def test_unresolvable_falls_back_to_text(self) -> None:
        options = SearchOptions(vector_search=True, embedding_field="vector").with_embedding("vector", None)
        assert options.vector_search is False
        assert options.embedding is None
        assert options.embedding_field is None
