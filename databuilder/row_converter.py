"""Turn merged data API rows into dicts keyed by variable alias."""

from __future__ import annotations

from typing import Any, Sequence

from .column_merger import ApiResult
from .errors import UnhandledCaseError
from .models import DataVariablePartition, VarParts

DataObject = dict[str, Any]


def find_aliases(all_var_parts: Sequence[VarParts], column: str) -> list[str]:
    """All aliases reading ``column``; id columns (state, NAICS2017 ...) keep their own name."""
    aliases: list[str] = []
    for parts in all_var_parts:
        if parts.stat_variable.name == column:
            aliases.append(parts.stat_variable.alias)
        if parts.moe_variable is not None and parts.moe_variable.name == column:
            aliases.append(parts.moe_variable.alias)
        if parts.flag_variable is not None and parts.flag_variable.name == column:
            aliases.append(parts.flag_variable.alias)
    return aliases or [column]


def _repopulate_duplicates(merged: ApiResult, select_columns: Sequence[str]) -> ApiResult:
    # The query deduplicated select columns; put each one back at its requested position.
    rows = [list(row) for row in merged]
    for col_index, column in enumerate(select_columns):
        if col_index < len(rows[0]) and rows[0][col_index] == column:
            continue
        original_index = rows[0].index(column)
        for row in rows:
            row.insert(col_index, row[original_index])
    return rows


def _columns_to_objects(
    var_parts: Sequence[VarParts],
    merged: ApiResult,
    include_places: bool,
    include_geo_ids: Sequence[str],
) -> list[DataObject]:
    if not merged:
        return []
    columns, *rows = merged
    aliases_by_column = [find_aliases(var_parts, column) for column in columns]

    objects: list[DataObject] = []
    for row in rows:
        obj: DataObject = {}
        for index, aliases in enumerate(aliases_by_column):
            for alias in aliases:
                obj[alias] = row[index]
        objects.append(obj)

    if not include_places:
        return objects

    # Places answered through a county subdivision query are keyed back as places.
    wanted = set(include_geo_ids)
    places: list[DataObject] = []
    for obj in objects:
        if f"{obj.get('state')}{obj.get('county subdivision')}" in wanted:
            obj["place"] = obj.get("county subdivision")
            places.append(obj)
    return places


def _group_index(
    columns: Sequence[str], row: Sequence[Any], group_column: str, groups: Sequence[int | str]
) -> int:
    column_index = -1
    for index, column in enumerate(columns):
        if column == group_column:
            column_index = index
    value = row[column_index] if column_index >= 0 else None

    match = -1
    for index, group in enumerate(groups):
        if isinstance(group, int):
            try:
                if group == int(str(value)):
                    match = index
            except ValueError:
                continue
        elif value is not None and group.find(str(value)) > 0:
            match = index
    return match


def _group_columns_to_objects(
    merged: ApiResult, partition: DataVariablePartition
) -> list[DataObject]:
    if not merged:
        return []
    columns, *rows = merged

    if partition.race_groups is not None:
        group_column, groups = "RACE_GROUP", list(partition.race_groups)
    elif partition.sex_groups is not None:
        group_column, groups = "SEX", list(partition.sex_groups)
    else:
        group_column, groups = "VET_GROUP", list(partition.vet_groups or [])

    objects: list[DataObject] = []
    for row in rows:
        index = _group_index(columns, row, group_column, groups)
        if index < 0:
            raise UnhandledCaseError(
                f"Row value for {group_column} does not match any requested group {groups}"
            )
        parts = partition.variable_parts[index]
        flag = parts.flag_variable

        obj: DataObject = {}
        for col_index, column in enumerate(columns):
            if column == parts.stat_variable.name:
                obj[parts.stat_variable.alias] = row[col_index]
            elif flag is not None and column == flag.name:
                obj[flag.alias] = row[col_index]
            else:
                obj[column] = row[col_index]
        objects.append(obj)
    return objects


def api_rows_to_data_objects(
    partition: DataVariablePartition,
    merged: ApiResult,
    *,
    duplicates: bool,
    select_columns: Sequence[str],
    include_places: bool = False,
    include_geo_ids: Sequence[str] = (),
) -> list[DataObject]:
    if partition.race_groups or partition.sex_groups or partition.vet_groups:
        return _group_columns_to_objects(merged, partition)

    if duplicates and merged:
        merged = _repopulate_duplicates(merged, select_columns)
    return _columns_to_objects(partition.variable_parts, merged, include_places, include_geo_ids)
