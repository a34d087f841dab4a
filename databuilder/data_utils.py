"""Validation and conversion of the loosely typed values that arrive from upstream APIs.

Upstream providers hand back numbers as strings, blanks, nulls and annotation
codes. These helpers decide what counts as a number; anything else is turned
into an n/a value by the caller.
"""

from __future__ import annotations

import math
import re
from decimal import ROUND_FLOOR, Decimal
from typing import Any

# Plain decimal notation only: no exponents, no leading '+', no leading zeros.
_NUMBER_RE = re.compile(
    r"^((-(([1-9][0-9]*(\.\d+)?)|(0(\.\d+))|(\.\d+)))|(([1-9][0-9]*(\.\d+)?)|(0(\.\d+)?)|(\.\d+)))$"
)


def is_number_like(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, str):
        return bool(_NUMBER_RE.match(value))
    return False


def to_number(value: Any) -> int | float:
    if not is_number_like(value):
        raise ValueError(
            f"Input {value!r} can't be converted to a number. Validate it with is_number_like first."
        )
    if isinstance(value, (int, float)):
        return value
    number = float(value)
    if number.is_integer() and "." not in value:
        return int(value)
    return number


def round_half_up(value: int | float, decimals: int = 0) -> int | float:
    """Round like JavaScript's Math.round: halves go toward positive infinity."""
    scaled = Decimal(repr(to_number(value))).scaleb(decimals)
    rounded = (scaled + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR)
    if decimals <= 0:
        return int(rounded.scaleb(-decimals))
    return float(rounded.scaleb(-decimals))


def format_number(value: int | float, decimals: int = 0, use_commas: bool = True) -> str:
    rounded = round_half_up(value, decimals)
    if use_commas:
        return f"{rounded:,.{max(decimals, 0)}f}"
    return f"{rounded:.{max(decimals, 0)}f}"


def is_empty_string(value: Any) -> bool:
    if value is None:
        return True
    return str(value).strip() == ""
