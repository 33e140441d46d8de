"""Value normalization tests for the (Empty) / (N/A) / NULL duality."""
from __future__ import annotations

import math

import pytest

from dataset_explorer.analytics.errors import FilterCompilationError
from dataset_explorer.analytics.values import (
    EMPTY_LABEL,
    NA_LABEL,
    ensure_numeric,
    equality_condition,
    membership_condition,
    normalize_category,
    quote_string,
)


class TestLiterals:
    def test_quote_escapes_quotes_and_backslashes(self):
        assert quote_string("O'Brien") == "'O''Brien'"
        assert quote_string("a\\b") == "'a\\\\b'"

    def test_ensure_numeric_parses_strings(self):
        assert ensure_numeric("42") == 42
        assert ensure_numeric(" 3.5 ") == 3.5

    @pytest.mark.parametrize("bad", [True, "abc", None, math.nan, math.inf, [1]])
    def test_ensure_numeric_rejects(self, bad):
        with pytest.raises(FilterCompilationError):
            ensure_numeric(bad)


class TestEquality:
    def test_empty_label(self):
        assert equality_condition("c", EMPTY_LABEL) == "(c = '' OR isNull(c))"
        assert equality_condition("c", "") == "(c = '' OR isNull(c))"

    def test_na_label_maps_to_stored_value(self):
        assert equality_condition("c", NA_LABEL) == "c = 'N/A'"

    def test_none_is_null(self):
        assert equality_condition("c", None) == "isNull(c)"

    def test_integral_float_renders_as_int(self):
        assert equality_condition("c", 5.0) == "c = 5"


class TestMembership:
    def test_empty_list_is_false(self):
        assert membership_condition("c", []) == "0"

    def test_null_only(self):
        assert membership_condition("c", [None]) == "isNull(c)"

    def test_null_merged_with_literals(self):
        assert membership_condition("c", [None, "value"]) == "(c IN ('value') OR isNull(c))"

    def test_duplicate_literals_collapse(self):
        assert membership_condition("c", ["(N/A)", "N/A"]) == "c IN ('N/A')"


class TestNormalizeCategory:
    @pytest.mark.parametrize("raw, expected", [
        (None, ("", "(Empty)")),
        ("   ", ("", "(Empty)")),
        ("n/a", ("N/A", "(N/A)")),
        (" N/A ", ("N/A", "(N/A)")),
        (" Tumor ", ("Tumor", "Tumor")),
        (7, ("7", "7")),
    ])
    def test_cases(self, raw, expected):
        assert normalize_category(raw) == expected
