"""Helpers shared by the fetchers and the tabulators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from . import namber as nambers
from .data_utils import is_number_like, to_number
from .models import (
    CLUSTER_INDUSTRY_ID,
    NO_INDUSTRY_ID,
    ApiRecord,
    ApiVariable,
    ClusteredVariableMap,
    DataRecord,
    DetailedGeo,
    GeoRecord,
    VariableMap,
)
from .namber import Namber

# Numeric codes the data API sends in MOE columns in place of a margin.
MOE_ANNOTATIONS = {
    -999999999: "N",
    -888888888: "X",
    -666666666: "-",
    -555555555: "*****",
    -333333333: "***",
    -222222222: "**",
}


@dataclass
class VarIdsAndAliases:
    var_ids: list[str] = field(default_factory=list)
    var_aliases: list[str] = field(default_factory=list)
    moe_ids: list[str] = field(default_factory=list)
    moe_id_aliases: list[str] = field(default_factory=list)


def get_industry_like_id(selected_industry_id: str | None) -> str:
    if selected_industry_id is None or selected_industry_id == NO_INDUSTRY_ID:
        return NO_INDUSTRY_ID
    return f"sector{selected_industry_id}"


def get_api_variable_ids_and_aliases(sources: Iterable[ApiVariable]) -> VarIdsAndAliases:
    result = VarIdsAndAliases()
    for source in sources:
        parts = source.var_parts
        result.var_ids.append(parts.stat_variable.name)
        result.var_aliases.append(parts.stat_variable.alias)
        if parts.moe_variable is not None:
            result.moe_ids.append(parts.moe_variable.name)
            result.moe_id_aliases.append(parts.moe_variable.alias)
    return result


def _is_moe_applicable_for_operand(ids: VarIdsAndAliases) -> bool:
    return len(ids.moe_ids) > 0 and len(ids.var_ids) == len(ids.moe_ids)


def is_moe_na(op1: VarIdsAndAliases, op2: VarIdsAndAliases) -> bool:
    op1_applicable = _is_moe_applicable_for_operand(op1)
    op2_applicable = _is_moe_applicable_for_operand(op2) if op2.var_ids else True
    return not (op1_applicable and op2_applicable)


def get_api_data(industry_like_id: str, variable_id: str, api_data: VariableMap) -> Namber:
    value = api_data.get(variable_id, {}).get(industry_like_id)
    if value is None:
        return nambers.na_namber()
    return value


def set_api_data(
    industry_id: str,
    api_data: VariableMap,
    stat: tuple[str, Namber],
    moe: tuple[str, Namber] | None = None,
) -> None:
    stat_alias, stat_value = stat
    api_data.setdefault(stat_alias, {})[industry_id] = stat_value
    if moe is not None:
        moe_alias, moe_value = moe
        api_data.setdefault(moe_alias, {})[industry_id] = moe_value


def set_computed_data(
    cluster_or_industry_like_id: str,
    geo_record_data: ClusteredVariableMap,
    variable_id: str,
    stat: Namber,
    moe: Namber | None = None,
) -> None:
    industries, cluster = geo_record_data.get(variable_id, ({}, None))
    record = DataRecord(stat=stat, moe=moe)
    if cluster_or_industry_like_id == CLUSTER_INDUSTRY_ID:
        cluster = record
    else:
        industries[cluster_or_industry_like_id] = record
    geo_record_data[variable_id] = (industries, cluster)


def translate_to_annotation(moe_value: Any) -> Any:
    if is_number_like(moe_value):
        return MOE_ANNOTATIONS.get(to_number(moe_value), moe_value)
    return moe_value


def scale_and_round(value: Namber, scale_factor: float = 1, round_to: int = 0) -> Namber:
    if nambers.is_na(value):
        return value
    return nambers.round_(nambers.mul(value, scale_factor), round_to)


def create_out_fields(*args: str) -> list[str]:
    """Split comma separated field lists and drop repeats, keeping first-seen order."""
    out_fields: list[str] = []
    for arg in args:
        for part in arg.split(","):
            name = part.strip()
            if name not in out_fields:
                out_fields.append(name)
    return out_fields


def build_api_record(geo_type_id: str, geo: DetailedGeo) -> ApiRecord:
    return ApiRecord(id=geo.id, name=geo.name, geo_type=geo_type_id)


def build_geo_record_from_api_record(geo_type_id: str, record: ApiRecord) -> GeoRecord:
    return GeoRecord(id=record.id, name=record.name, geo_type=geo_type_id)


def chunked(values: Sequence[Any], size: int) -> list[list[Any]]:
    return [list(values[start : start + size]) for start in range(0, len(values), size)]
