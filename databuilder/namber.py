"""Namber: a number that may instead be 'n/a', carrying the reasons it became unavailable.

A valid Namber holds a finite number. An n/a Namber holds the ``NA`` sentinel, a
short human-readable ``message`` (usually shown to the user in place of the
value) and ``errors``, the underlying causes accumulated as values flow through
arithmetic. Every arithmetic helper accepts plain numbers or Nambers and always
returns a Namber, so no raw float escapes once data is ingested.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Callable, Iterable, Union

from .data_utils import is_number_like, round_half_up, to_number

NA = "n/a"

INPUT_VALUE_NA = "An input value is already n/a"
DIVIDE_BY_ZERO = "Cannot divide by zero"
NEGATIVE_SQRT = "Cannot take the sqrt() of a negative number"


@dataclass(frozen=True)
class Namber:
    value: Union[int, float, str]
    errors: tuple[str, ...] = field(default=())
    message: str = ""

    def __add__(self, other: NamberLike) -> Namber:
        return add(self, other)

    def __radd__(self, other: NamberLike) -> Namber:
        return add(other, self)

    def __sub__(self, other: NamberLike) -> Namber:
        return sub(self, other)

    def __rsub__(self, other: NamberLike) -> Namber:
        return sub(other, self)

    def __mul__(self, other: NamberLike) -> Namber:
        return mul(self, other)

    def __rmul__(self, other: NamberLike) -> Namber:
        return mul(other, self)

    def __truediv__(self, other: NamberLike) -> Namber:
        return div(self, other)

    def __rtruediv__(self, other: NamberLike) -> Namber:
        return div(other, self)

    def __pow__(self, other: NamberLike) -> Namber:
        return pow_(self, other)

    def to_dict(self) -> dict:
        if has_value(self):
            return {"value": self.value}
        return {"value": NA, "errors": list(self.errors), "message": self.message}


NamberLike = Union[Namber, int, float]


def to_namber(arg: object, message: str | None = None) -> Namber:
    """Build a Namber from a number, a string, a list of errors, None or a Namber.

    - ``to_namber(1)`` is valid with value 1
    - ``to_namber("12.5")`` is valid with value 12.5
    - ``to_namber("n/a")`` is n/a with no errors and an empty message
    - ``to_namber("Suppressed (D)")`` is n/a with that string as message
    - ``to_namber(["e1"], "msg")`` is n/a with the given errors and message
    - ``to_namber(None)`` is n/a with a fixed diagnostic error
    """
    if isinstance(arg, Namber):
        return arg
    if isinstance(arg, bool):
        return Namber(NA, (f"Boolean argument {arg!r} is not a number",), message or "")
    if isinstance(arg, (int, float)):
        if isinstance(arg, float) and math.isnan(arg):
            return Namber(NA, ("Number argument was NaN",), message or "")
        if isinstance(arg, float) and math.isinf(arg):
            return Namber(NA, ("Number argument was not finite",), message or "")
        return Namber(arg)
    if isinstance(arg, str):
        if is_number_like(arg):
            return Namber(to_number(arg))
        if arg == NA:
            return Namber(NA, (), message or "")
        return Namber(NA, (), arg)
    if isinstance(arg, (list, tuple)):
        return Namber(NA, tuple(str(error) for error in arg), message or "")
    if arg is None:
        return Namber(NA, ("undefined value passed to Namber constructor",), message or "")
    raise TypeError(f"Cannot build a Namber from {type(arg).__name__}")


def na_namber(message: str | None = None) -> Namber:
    return Namber(NA, (), message or "")


def has_value(namber: Namber) -> bool:
    return not isinstance(namber.value, str)


def is_na(namber: Namber) -> bool:
    return namber.value == NA


ZERO = Namber(0)


# Validators return an error message when the (valid) operand is out of range.
UnaryValidator = Callable[[Union[int, float]], Union[str, None]]


def _non_zero(value: int | float) -> str | None:
    return None if value != 0 else DIVIDE_BY_ZERO


def _non_negative(value: int | float) -> str | None:
    return None if value >= 0 else NEGATIVE_SQRT


def _input_errors(*args: Namber) -> list[str]:
    errors: list[str] = []
    for arg in args:
        if is_na(arg):
            errors.extend(arg.errors)
    return errors


def _result(value: float | int) -> Namber:
    if isinstance(value, complex):
        return Namber(NA, ("Result was not a real number",), INPUT_VALUE_NA)
    return to_namber(value)


def _unary(
    a: NamberLike,
    func: Callable[[int | float], int | float],
    validators: Iterable[UnaryValidator] = (),
) -> Namber:
    arg = to_namber(a)
    if is_na(arg):
        return Namber(NA, tuple(_input_errors(arg)), INPUT_VALUE_NA)
    failures = [msg for msg in (v(arg.value) for v in validators) if msg]
    if failures:
        return Namber(NA, tuple(failures), failures[0])
    return _result(func(arg.value))


def _binary(
    a: NamberLike,
    b: NamberLike,
    func: Callable[[int | float, int | float], int | float],
    right: Iterable[UnaryValidator] = (),
) -> Namber:
    left_arg = to_namber(a)
    right_arg = to_namber(b)
    if is_na(left_arg) or is_na(right_arg):
        return Namber(NA, tuple(_input_errors(left_arg, right_arg)), INPUT_VALUE_NA)
    failures = [msg for msg in (v(right_arg.value) for v in right) if msg]
    if failures:
        return Namber(NA, tuple(failures), failures[0])
    try:
        return _result(func(left_arg.value, right_arg.value))
    except (OverflowError, ZeroDivisionError) as exc:
        return Namber(NA, (str(exc),), INPUT_VALUE_NA)


def equal(a: NamberLike, b: NamberLike) -> bool:
    # Same rule as NaN: n/a never equals anything, itself included.
    left_arg = to_namber(a)
    right_arg = to_namber(b)
    if is_na(left_arg) or is_na(right_arg):
        return False
    return left_arg.value == right_arg.value


def add(a: NamberLike, b: NamberLike) -> Namber:
    return _binary(a, b, lambda left, right: left + right)


def sub(a: NamberLike, b: NamberLike) -> Namber:
    return _binary(a, b, lambda left, right: left - right)


def mul(a: NamberLike, b: NamberLike) -> Namber:
    return _binary(a, b, lambda left, right: left * right)


def div(a: NamberLike, b: NamberLike) -> Namber:
    return _binary(a, b, lambda left, right: left / right, right=(_non_zero,))


def pow_(a: NamberLike, exp: NamberLike) -> Namber:
    return _binary(a, exp, lambda left, right: left**right)


def min_(a: NamberLike, b: NamberLike) -> Namber:
    return _binary(a, b, min)


def max_(a: NamberLike, b: NamberLike) -> Namber:
    return _binary(a, b, max)


def sqrt(a: NamberLike) -> Namber:
    return _unary(a, math.sqrt, validators=(_non_negative,))


def round_(a: NamberLike, decimals: int = 0) -> Namber:
    return _unary(a, lambda value: round_half_up(value, decimals))


def sum_(values: Iterable[NamberLike]) -> Namber:
    total = ZERO
    for value in values:
        total = add(total, value)
    return total
