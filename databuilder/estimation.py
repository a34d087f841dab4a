"""Stat and margin-of-error formulas over collected operand values.

Margins of error follow the Census Bureau's approximation formulas for
aggregated ACS estimates: root-sum-of-squares for sums, and the derived
proportion / ratio formulas for PERCENT and RATIO variables.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

from . import namber as nambers
from .models import NO_INDUSTRY_ID, ApiRecord, ApiVariable, DataRecord, DataVariableGeoTypeVintage
from .namber import Namber
from .service_utils import get_api_data

# MOE messages that mean the single-source estimate itself is not publishable.
UNPUBLISHABLE_MOE_MESSAGES = ("**", "***", "")

NO_VALID_VALUES = "No valid values present in estimates and estimatesMOE"


@dataclass
class OperandValues:
    stat_values: list[Namber] = field(default_factory=list)
    moe_values: list[Namber] = field(default_factory=list)


@dataclass
class DataVariableValues:
    """Operand values pooled over one or more records.

    ``op1_terms`` / ``op2_terms`` hold each record's own stat list so a
    record that contributes nothing can be lined up with its denominator.
    """

    op1_values: list[Namber] = field(default_factory=list)
    op1_moes: list[Namber] = field(default_factory=list)
    op1_terms: list[list[Namber]] = field(default_factory=list)
    op2_values: list[Namber] = field(default_factory=list)
    op2_moes: list[Namber] = field(default_factory=list)
    op2_terms: list[list[Namber]] = field(default_factory=list)

    def combine(self, other: DataVariableValues) -> DataVariableValues:
        return DataVariableValues(
            op1_values=[*self.op1_values, *other.op1_values],
            op1_moes=[*self.op1_moes, *other.op1_moes],
            op1_terms=[*self.op1_terms, *other.op1_terms],
            op2_values=[*self.op2_values, *other.op2_values],
            op2_moes=[*self.op2_moes, *other.op2_moes],
            op2_terms=[*self.op2_terms, *other.op2_terms],
        )


def collect_operand_values(
    record: ApiRecord,
    sources: Sequence[ApiVariable],
    industry_ids: Sequence[str],
    moe_na: bool,
) -> OperandValues:
    values = OperandValues()
    for source in sources:
        industry_like_ids = list(
            dict.fromkeys(
                industry_id if source.sector_field is not None else NO_INDUSTRY_ID
                for industry_id in industry_ids
            )
        )
        for industry_like_id in industry_like_ids:
            values.stat_values.append(
                get_api_data(industry_like_id, source.var_parts.stat_variable.alias, record.data)
            )
            if not moe_na and source.var_parts.moe_variable is not None:
                values.moe_values.append(
                    get_api_data(
                        industry_like_id, source.var_parts.moe_variable.alias, record.data
                    )
                )
    return values


def collect_values(
    records: Sequence[ApiRecord],
    vintage: DataVariableGeoTypeVintage,
    industry_ids: Sequence[str],
    moe_na: bool,
) -> DataVariableValues:
    collected = DataVariableValues()
    for record in records:
        operand1 = collect_operand_values(record, vintage.operand1.sources, industry_ids, moe_na)
        collected.op1_values.extend(operand1.stat_values)
        collected.op1_moes.extend(operand1.moe_values)
        collected.op1_terms.append(list(operand1.stat_values))
        if vintage.operand2 is not None:
            operand2 = collect_operand_values(record, vintage.operand2.sources, industry_ids, moe_na)
            collected.op2_values.extend(operand2.stat_values)
            collected.op2_moes.extend(operand2.moe_values)
            collected.op2_terms.append(list(operand2.stat_values))
    return collected


def calculate_data_value(values: Sequence[Namber]) -> Namber:
    # A lone value keeps its own n/a message (e.g. "Suppressed (D)").
    if len(values) == 1:
        return values[0]
    return nambers.sum_(values)


def calculate_moe_for_sum(estimates: Sequence[Namber], estimates_moe: Sequence[Namber]) -> Namber:
    # A single pair is an identity; its MOE passes through untouched.
    if len(estimates) == 1 and len(estimates_moe) == 1:
        return estimates_moe[0]
    if all(nambers.is_na(e) for e in estimates) and all(nambers.is_na(m) for m in estimates_moe):
        return nambers.to_namber(NO_VALID_VALUES)

    # n/a entries count as zero.
    est = [e.value if nambers.has_value(e) else 0 for e in estimates]
    moes = [m.value if nambers.has_value(m) else 0 for m in estimates_moe]

    sum_of_squares = sum(moe**2 for index, moe in enumerate(moes) if est[index] != 0)
    max_zero_estimate_moe = max(
        [0, *(moe for index, moe in enumerate(moes) if est[index] == 0)]
    )
    return nambers.to_namber(math.sqrt(sum_of_squares + max_zero_estimate_moe**2))


def calculate_moe_for_percent(
    numerators: Sequence[Namber],
    numerators_moe: Sequence[Namber],
    denominators: Sequence[Namber],
    denominators_moe: Sequence[Namber],
) -> Namber:
    sum_num = nambers.sum_(numerators)
    sum_den = nambers.sum_(denominators)
    moe_num = calculate_moe_for_sum(numerators, numerators_moe)
    moe_den = calculate_moe_for_sum(denominators, denominators_moe)

    if nambers.equal(sum_num, sum_den):
        return nambers.mul(nambers.div(moe_num, sum_den), 100)

    lhs = nambers.pow_(moe_num, 2)
    rhs = nambers.mul(nambers.pow_(nambers.div(sum_num, sum_den), 2), nambers.pow_(moe_den, 2))
    radicand = nambers.sub(lhs, rhs)
    if nambers.has_value(radicand) and radicand.value <= 0:
        radicand = nambers.add(lhs, rhs)

    return nambers.mul(nambers.div(nambers.sqrt(radicand), sum_den), 100)


def calculate_moe_for_ratio(
    numerators: Sequence[Namber],
    numerators_moe: Sequence[Namber],
    denominators: Sequence[Namber],
    denominators_moe: Sequence[Namber],
) -> Namber:
    sum_num = nambers.sum_(numerators)
    sum_den = nambers.sum_(denominators)
    moe_num = calculate_moe_for_sum(numerators, numerators_moe)
    moe_den = calculate_moe_for_sum(denominators, denominators_moe)

    radicand = nambers.add(
        nambers.pow_(moe_num, 2),
        nambers.mul(nambers.pow_(nambers.div(sum_num, sum_den), 2), nambers.pow_(moe_den, 2)),
    )
    return nambers.div(nambers.sqrt(radicand), sum_den)


def update_denominators(
    op1_terms: Sequence[Sequence[Namber]], processor: str, op2_values: list[Namber]
) -> None:
    """Overwrite a denominator entry with its numerator term when that term is zero or n/a."""
    for index, terms in enumerate(op1_terms):
        if not terms:
            continue
        if len(terms) > 1 and processor == "SUM":
            value = nambers.sum_(terms)
        else:
            value = terms[0]
        if nambers.is_na(value) or value.value == 0:
            if index >= len(op2_values):
                op2_values.extend([nambers.na_namber()] * (index + 1 - len(op2_values)))
            op2_values[index] = value


def _identity_value(values: DataVariableValues, moe_na: bool) -> Namber:
    if (
        not moe_na
        and len(values.op1_values) == 1
        and len(values.op1_moes) == 1
        and nambers.has_value(values.op1_values[0])
        and nambers.is_na(values.op1_moes[0])
        and values.op1_moes[0].message in UNPUBLISHABLE_MOE_MESSAGES
    ):
        return nambers.to_namber(nambers.NA)
    return calculate_data_value(values.op1_values)


def _percent_ratio_value(processor: str, values: DataVariableValues) -> Namber:
    # The adjusted denominators are kept for the MOE calculation that follows.
    update_denominators(values.op1_terms, processor, values.op2_values)
    numerator = calculate_data_value(values.op1_values)
    denominator = calculate_data_value(values.op2_values)
    if numerator.value == 0:
        return nambers.Namber(0)
    if denominator.value == 0:
        return nambers.to_namber(nambers.NA)
    if processor == "PERCENT":
        return nambers.div(nambers.mul(numerator, 100), denominator)
    return nambers.div(numerator, denominator)


def calculate_stat(processor: str, values: DataVariableValues, moe_na: bool) -> Namber:
    if processor == "IDENTITY":
        return _identity_value(values, moe_na)
    if processor == "SUM":
        return calculate_data_value([*values.op1_values, *values.op2_values])
    if processor in ("PERCENT", "RATIO"):
        return _percent_ratio_value(processor, values)
    return nambers.to_namber(f"Unknown processor {processor}")


def calculate_moe(processor: str, values: DataVariableValues) -> Namber:
    if processor == "IDENTITY":
        return calculate_moe_for_sum(values.op1_values, values.op1_moes)
    if processor == "SUM":
        return calculate_moe_for_sum(
            [*values.op1_values, *values.op2_values], [*values.op1_moes, *values.op2_moes]
        )
    if processor == "PERCENT":
        return calculate_moe_for_percent(
            values.op1_values, values.op1_moes, values.op2_values, values.op2_moes
        )
    if processor == "RATIO":
        return calculate_moe_for_ratio(
            values.op1_values, values.op1_moes, values.op2_values, values.op2_moes
        )
    return nambers.to_namber(f"Unknown processor {processor}")


def calculate_stat_and_moe(processor: str, values: DataVariableValues, moe_na: bool) -> DataRecord:
    stat = calculate_stat(processor, values, moe_na)
    if moe_na:
        return DataRecord(stat=stat)
    return DataRecord(stat=stat, moe=calculate_moe(processor, values))
