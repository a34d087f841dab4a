"""Reassemble data API results that were split by column chunks or geography subsets.

Each result is ``[header, *rows]``. Columns named in the requested data column
set are data columns; every other column (state, county, ...) is an id column.
Rows are matched across results by the ``/``-joined values of their id columns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

DataElement = Optional[Any]
ApiResult = list[list[DataElement]]


@dataclass
class _ParsedResult:
    rows: dict[str, tuple[list[DataElement], list[DataElement]]] = field(default_factory=dict)
    id_column_names: list[str] = field(default_factory=list)
    data_column_names: list[str] = field(default_factory=list)


def _row_key(id_values: Sequence[DataElement]) -> str:
    return "/".join("" if value is None else str(value) for value in id_values)


def _parse_result(result: ApiResult, data_columns: set[str]) -> _ParsedResult:
    parsed = _ParsedResult()
    if not result:
        return parsed

    header = result[0]
    id_indexes: list[int] = []
    data_indexes: list[int] = []
    for index, column in enumerate(header):
        if column in data_columns:
            data_indexes.append(index)
            parsed.data_column_names.append(column)
        else:
            id_indexes.append(index)
            parsed.id_column_names.append(column)

    for row in result[1:]:
        id_values = [row[index] for index in id_indexes]
        data_values = [row[index] for index in data_indexes]
        parsed.rows[_row_key(id_values)] = (id_values, data_values)
    return parsed


def _insert_unique(ordered: list[str], seen: set[str], value: str) -> None:
    if value not in seen:
        seen.add(value)
        ordered.append(value)


def merge_column_partitions(results: Sequence[ApiResult], cols_unique: Sequence[str]) -> ApiResult:
    """Merge results into one table: distinct data columns, then distinct id columns.

    A key missing from one result is padded with ``None`` for that result's data
    columns, so no row is ever dropped.

    Data columns are expected to be disjoint across results: a column present in
    two results is listed once in the header but its values appear once per result.
    """
    data_columns = set(cols_unique)
    parsed_results = [_parse_result(result, data_columns) for result in results]

    key_id_values: dict[str, list[DataElement]] = {}
    id_column_names: list[str] = []
    data_column_names: list[str] = []
    seen_id_columns: set[str] = set()
    seen_data_columns: set[str] = set()
    for parsed in parsed_results:
        for key, (id_values, _) in parsed.rows.items():
            key_id_values[key] = id_values
        for column in parsed.id_column_names:
            _insert_unique(id_column_names, seen_id_columns, column)
        for column in parsed.data_column_names:
            _insert_unique(data_column_names, seen_data_columns, column)

    header: list[DataElement] = [*data_column_names, *id_column_names]
    rows: ApiResult = []
    for key, id_values in key_id_values.items():
        values: list[DataElement] = []
        for parsed in parsed_results:
            components = parsed.rows.get(key)
            if components is not None:
                values.extend(components[1])
            else:
                values.extend([None] * len(parsed.data_column_names))
        values.extend(id_values)
        rows.append(values)

    return [header, *rows]
