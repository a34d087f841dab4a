from __future__ import annotations

import math

import pytest

from databuilder.data_utils import (
    format_number,
    is_empty_string,
    is_number_like,
    round_half_up,
    to_number,
)


@pytest.mark.parametrize("value", [0, -3, 1.5, "12", "-0.25", ".5", "0", "1234.56"])
def test_number_like_values(value):
    assert is_number_like(value)


@pytest.mark.parametrize(
    "value", ["", " ", "007", "1e3", "+5", "(D)", None, True, math.nan, math.inf, [1]]
)
def test_values_that_are_not_numbers(value):
    assert not is_number_like(value)


def test_to_number_keeps_integers_integral():
    assert to_number("12") == 12
    assert isinstance(to_number("12"), int)
    assert to_number("12.50") == 12.5
    with pytest.raises(ValueError):
        to_number("(X)")


def test_round_half_up_goes_toward_positive_infinity():
    assert round_half_up(2.5) == 3
    assert round_half_up(-2.5) == -2
    assert round_half_up(1.005, 2) == 1.01
    assert round_half_up(1234, -2) == 1200


def test_format_number():
    assert format_number(1234567.891, 2) == "1,234,567.89"
    assert format_number(1234.5, use_commas=False) == "1235"


def test_is_empty_string():
    assert is_empty_string(None)
    assert is_empty_string("   ")
    assert not is_empty_string(0)
