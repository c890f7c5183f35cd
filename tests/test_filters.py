"""
tests/test_filters.py -- Unit tests for core/filters.py.

Covers:
  - query parsing defaults and field errors (collected, first message wins)
  - exact-match sort safelist
  - ORDER BY rendering with the id tie-breaker
  - pagination metadata and the zero-value shortcut
"""

from __future__ import annotations

import pytest

from core.database import movies
from core.filters import Filters, Metadata, calculate_metadata, parse_filters, read_csv

SAFELIST = ("id", "title", "year", "-id", "-title", "-year")


class TestParseFilters:
    def test_defaults(self):
        filters, errors = parse_filters({}, SAFELIST)
        assert errors == {}
        assert (filters.page, filters.page_size, filters.sort) == (1, 20, "id")

    def test_descending_sort_is_accepted(self):
        filters, errors = parse_filters({"sort": "-title"}, SAFELIST)
        assert errors == {}
        assert filters.sort_column() == "title"
        assert filters.sort_direction() == "DESC"

    @pytest.mark.parametrize("sort", ["runtime", "TITLE", "title ", "-id;drop table movies", "--id"])
    def test_sort_outside_safelist(self, sort):
        _, errors = parse_filters({"sort": sort}, SAFELIST)
        assert errors == {"sort": "invalid sort value"}

    def test_all_problems_reported_together(self):
        _, errors = parse_filters({"page": "0", "page_size": "101", "sort": "nope"}, SAFELIST)
        assert errors == {
            "page": "must be greater than zero",
            "page_size": "must be a maximum of 100",
            "sort": "invalid sort value",
        }

    def test_page_upper_bound(self):
        _, errors = parse_filters({"page": "10000001"}, SAFELIST)
        assert errors == {"page": "must be a maximum of 10 million"}

    def test_non_integer_page_size(self):
        _, errors = parse_filters({"page_size": "ten"}, SAFELIST)
        assert errors == {"page_size": "must be an integer value"}

    @pytest.mark.parametrize("raw", ["1_0", " 5", "5 ", "+5", "\u0665", "5.0"])
    def test_page_must_be_plain_ascii_digits(self, raw):
        _, errors = parse_filters({"page": raw}, SAFELIST)
        assert errors == {"page": "must be an integer value"}

    def test_negative_page_is_a_range_error(self):
        _, errors = parse_filters({"page": "-2"}, SAFELIST)
        assert errors == {"page": "must be greater than zero"}


class TestOrderBy:
    def test_unsafe_sort_raises(self):
        with pytest.raises(ValueError):
            Filters(sort="runtime", sort_safelist=SAFELIST).sort_column()

    def test_ascending_with_id_tiebreak(self):
        primary, tiebreak = Filters(sort="year", sort_safelist=SAFELIST).order_by(movies)
        assert str(primary) == "movies.year ASC"
        assert str(tiebreak) == "movies.id ASC"

    def test_descending(self):
        primary, tiebreak = Filters(sort="-title", sort_safelist=SAFELIST).order_by(movies)
        assert str(primary) == "movies.title DESC"
        assert str(tiebreak) == "movies.id ASC"

    def test_limit_and_offset(self):
        f = Filters(page=3, page_size=25, sort_safelist=SAFELIST)
        assert f.limit() == 25
        assert f.offset() == 50


class TestMetadata:
    def test_zero_records_is_zero_value(self):
        assert calculate_metadata(0, 4, 20) == Metadata()

    def test_partial_last_page(self):
        meta = calculate_metadata(45, 2, 20)
        assert meta == Metadata(current_page=2, page_size=20, first_page=1, last_page=3, total_records=45)

    def test_exact_last_page(self):
        assert calculate_metadata(40, 1, 20).last_page == 2


def test_read_csv_strips_and_drops_empty_parts():
    assert read_csv({"genres": "drama, comedy,,"}, "genres", []) == ["drama", "comedy"]
    assert read_csv({}, "genres", []) == []
