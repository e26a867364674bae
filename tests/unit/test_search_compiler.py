"""
Unit tests for the search compiler.

The compiler is pure: these tests inspect the generated SQL and parameters
without a database.
"""

from __future__ import annotations

import pytest

from crm_double.errors import ValidationError
from crm_double.store.search import (
    DEFAULT_SEARCH_LIMIT,
    MAX_SEARCH_TOTAL,
    SearchCompiler,
    like_pattern,
    searchable_properties,
)


def _filter(name: str, operator: str, **extra) -> dict:
    return {"propertyName": name, "operator": operator, **extra}


def _groups(*groups) -> dict:
    return {"filterGroups": [{"filters": list(filters)} for filters in groups]}


class TestValidation:
    """Requests the compiler must reject before producing SQL."""

    def test_rejects_more_than_five_filter_groups(self):
        request = _groups(*[[_filter("email", "HAS_PROPERTY")] for _ in range(6)])
        with pytest.raises(ValidationError, match="at most 5 filter groups"):
            SearchCompiler().compile("0-1", request)

    def test_rejects_more_than_six_filters_in_a_group(self):
        request = _groups([_filter("email", "HAS_PROPERTY") for _ in range(7)])
        with pytest.raises(ValidationError, match="at most 6"):
            SearchCompiler().compile("0-1", request)

    def test_accepts_the_limits_exactly(self):
        request = _groups(*[[_filter("email", "HAS_PROPERTY") for _ in range(6)] for _ in range(5)])
        compiled = SearchCompiler().compile("0-1", request)
        assert compiled.where_clause.count(" OR ") == 4

    def test_rejects_unknown_operator_by_name(self):
        with pytest.raises(ValidationError, match="LIKE"):
            SearchCompiler().compile("0-1", _groups([_filter("email", "LIKE", value="a")]))

    def test_rejects_missing_property_name(self):
        with pytest.raises(ValidationError, match="propertyName"):
            SearchCompiler().compile("0-1", _groups([{"operator": "EQ", "value": "a"}]))

    @pytest.mark.parametrize(
        "flt",
        [
            _filter("email", "EQ"),
            _filter("amount", "BETWEEN", value="1"),
            _filter("email", "IN"),
            _filter("email", "NOT_IN", values=[]),
        ],
    )
    def test_rejects_missing_operand(self, flt):
        with pytest.raises(ValidationError):
            SearchCompiler().compile("0-1", _groups([flt]))

    def test_rejects_unknown_sort_direction(self):
        request = {"sorts": [{"propertyName": "email", "direction": "SIDEWAYS"}]}
        with pytest.raises(ValidationError, match="SIDEWAYS"):
            SearchCompiler().compile("0-1", request)

    def test_rejects_limit_above_200(self):
        with pytest.raises(ValidationError, match="200"):
            SearchCompiler().compile("0-1", {"limit": 201})

    @pytest.mark.parametrize("after", ["abc", "-1", "1.5"])
    def test_rejects_malformed_cursor(self, after):
        with pytest.raises(ValidationError, match="cursor"):
            SearchCompiler().compile("0-1", {"after": after})

    def test_rejects_offset_at_total_cap(self):
        with pytest.raises(ValidationError):
            SearchCompiler().compile("0-1", {"after": str(MAX_SEARCH_TOTAL)})

    def test_number_property_requires_numeric_operand(self):
        compiler = SearchCompiler(number_properties={"amount"})
        with pytest.raises(ValidationError, match="not a number"):
            compiler.compile("0-3", _groups([_filter("amount", "GT", value="lots")]))


class TestCompilation:
    """Shape of the generated SQL."""

    def test_defaults_to_id_order_and_default_limit(self):
        compiled = SearchCompiler().compile("0-1", {})
        assert compiled.order_clause == " ORDER BY o.id ASC"
        assert compiled.limit == DEFAULT_SEARCH_LIMIT
        assert compiled.offset == 0
        assert compiled.params == ["0-1"]

    def test_page_window_clamps_to_total_cap(self):
        compiled = SearchCompiler().compile("0-1", {"after": "9950", "limit": 100})
        assert (compiled.limit, compiled.offset) == (50, 9950)

    def test_joins_each_property_once(self):
        request = _groups(
            [_filter("email", "HAS_PROPERTY"), _filter("email", "NEQ", value="x")],
            [_filter("firstname", "EQ", value="Ada")],
        )
        request["sorts"] = [{"propertyName": "email", "direction": "DESCENDING"}]
        compiled = SearchCompiler().compile("0-1", request)
        assert compiled.from_clause.count("LEFT JOIN property_values") == 2
        assert compiled.params[:2] == ["email", "firstname"]
        assert compiled.order_clause == " ORDER BY pv0.value DESC, o.id ASC"

    def test_groups_are_ored_and_filters_anded(self):
        request = _groups(
            [_filter("email", "EQ", value="a"), _filter("firstname", "EQ", value="b")],
            [_filter("lastname", "EQ", value="c")],
        )
        compiled = SearchCompiler().compile("0-1", request)
        assert ") OR (" in compiled.where_clause
        assert "= ?) AND ((" in compiled.where_clause

    def test_values_are_bound_not_inlined(self):
        hostile = "x' OR 1=1 --"
        compiled = SearchCompiler().compile("0-1", _groups([_filter("email", "EQ", value=hostile)]))
        assert hostile not in compiled.page_sql
        assert hostile in compiled.params

    def test_number_properties_compare_numerically(self):
        compiler = SearchCompiler(number_properties={"amount"})
        compiled = compiler.compile(
            "0-3",
            {
                **_groups([_filter("amount", "BETWEEN", value="10", highValue=20)]),
                "sorts": ["-amount"],
            },
        )
        assert "CAST(pv0.value AS REAL) BETWEEN ? AND ?" in compiled.where_clause
        assert compiled.params[-2:] == [10.0, 20.0]
        assert compiled.order_clause == " ORDER BY CAST(pv0.value AS REAL) DESC, o.id ASC"

    def test_in_expands_one_placeholder_per_value(self):
        compiled = SearchCompiler().compile(
            "0-1", _groups([_filter("lifecyclestage", "IN", values=["lead", "customer"])])
        )
        assert "IN (?,?)" in compiled.where_clause
        assert compiled.params[-2:] == ["lead", "customer"]

    def test_query_matches_searchable_properties(self):
        compiler = SearchCompiler(searchable=["email", "firstname"])
        compiled = compiler.compile("0-1", {"query": "ada"})
        assert "EXISTS (SELECT 1 FROM property_values q" in compiled.where_clause
        assert compiled.params == ["0-1", "email", "firstname", "%ada%"]

    def test_page_sql_appends_limit_and_offset(self):
        compiled = SearchCompiler().compile("0-1", {"limit": 5, "after": "10"})
        assert compiled.page_sql.endswith("LIMIT ? OFFSET ?")
        assert compiled.page_params[-2:] == [5, 10]


class TestHelpers:
    def test_like_pattern_wraps_plain_tokens(self):
        assert like_pattern("ada") == "%ada%"

    def test_like_pattern_escapes_metacharacters(self):
        assert like_pattern("50%_off") == "%50\\%\\_off%"

    def test_like_pattern_star_anchors(self):
        assert like_pattern("*@example.com") == "%@example.com"
        assert like_pattern("ada*") == "ada%"

    def test_searchable_properties_include_primary_display(self):
        assert "email" in searchable_properties("0-1", "email")
        assert searchable_properties("2-1", "pet_name")[-1] == "pet_name"
