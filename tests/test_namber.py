from __future__ import annotations

import math

import pytest

from databuilder import namber as nambers
from databuilder.namber import (
    DIVIDE_BY_ZERO,
    INPUT_VALUE_NA,
    NA,
    NEGATIVE_SQRT,
    Namber,
    to_namber,
)

BINARY_OPERATORS = [
    nambers.add,
    nambers.sub,
    nambers.mul,
    nambers.div,
    nambers.pow_,
    nambers.min_,
    nambers.max_,
]


def test_to_namber_construction_rules():
    assert to_namber(3) == Namber(3)
    assert to_namber("12.5") == Namber(12.5)

    na = to_namber("n/a")
    assert na.value == NA
    assert na.errors == ()
    assert na.message == ""

    suppressed = to_namber("Suppressed (D)")
    assert nambers.is_na(suppressed)
    assert suppressed.message == "Suppressed (D)"

    undefined = to_namber(None)
    assert nambers.is_na(undefined)
    assert undefined.errors

    assert nambers.is_na(to_namber(float("nan")))


@pytest.mark.parametrize("operator", BINARY_OPERATORS)
def test_na_operand_absorbs_and_unions_errors(operator):
    left = to_namber(["left broken"], "left")
    right = to_namber(["right broken"], "right")

    assert nambers.is_na(operator(left, 2))
    assert nambers.is_na(operator(2, right))

    both = operator(left, right)
    assert nambers.is_na(both)
    assert both.message == INPUT_VALUE_NA
    assert set(both.errors) == {"left broken", "right broken"}


def test_validators_replace_the_generic_message():
    divided = nambers.div(10, 0)
    assert nambers.is_na(divided)
    assert divided.message == DIVIDE_BY_ZERO

    rooted = nambers.sqrt(-4)
    assert nambers.is_na(rooted)
    assert rooted.message == NEGATIVE_SQRT


def test_arithmetic_and_operators():
    assert nambers.add(1, Namber(2)) == Namber(3)
    assert Namber(10) / 4 == Namber(2.5)
    assert Namber(3) ** 2 == Namber(9)
    assert 5 - Namber(2) == Namber(3)
    assert nambers.sqrt(16) == Namber(4.0)
    assert nambers.sum_([1, 2, Namber(3)]) == Namber(6)


def test_equal_is_false_for_na():
    assert nambers.equal(Namber(2), 2)
    assert not nambers.equal(nambers.na_namber(), nambers.na_namber())
    assert not nambers.equal(nambers.na_namber(), 0)


@pytest.mark.parametrize("value", [0, 1.005, 2.5, -2.5, 1234.5678, -0.049, 1e6 + 0.25])
@pytest.mark.parametrize("decimals", [0, 1, 2])
def test_round_is_idempotent(value, decimals):
    once = nambers.round_(value, decimals)
    assert nambers.round_(once, decimals) == once


def test_round_matches_half_up_rule():
    assert nambers.round_(2.5) == Namber(3)
    assert nambers.round_(-2.5) == Namber(-2)
    assert nambers.round_(1.25, 1) == Namber(1.3)


def test_non_finite_result_becomes_na():
    overflow = nambers.pow_(10.0, 400)
    assert nambers.is_na(overflow)


def test_to_dict_shapes():
    assert Namber(5).to_dict() == {"value": 5}
    assert nambers.na_namber("Suppressed (D)").to_dict() == {
        "value": NA,
        "errors": [],
        "message": "Suppressed (D)",
    }
    assert math.isclose(Namber(0.1 + 0.2).to_dict()["value"], 0.3)
