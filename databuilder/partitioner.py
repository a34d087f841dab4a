"""Group the sources behind a set of data variables into per-endpoint fetch units."""

from __future__ import annotations

import logging

from .metadata import MetadataRepository
from .models import ApiVariable, DataVariablePartition

logger = logging.getLogger(__name__)


def _append_param_to_key(url_key: str, param: str | None, static_key: str | None = None) -> str:
    if param is None:
        return url_key
    return url_key + (static_key if static_key is not None else param)


def get_partition_key(source: ApiVariable) -> str:
    # Group codes only mark the partition as grouped; their values are query parameters.
    key = source.api_url
    key = _append_param_to_key(key, source.race_group, "raceGroup")
    key = _append_param_to_key(key, source.sex_group, "sexGroup")
    key = _append_param_to_key(key, source.vet_group, "vetGroup")
    key = _append_param_to_key(key, source.url_parameters)
    key = _append_param_to_key(key, source.sector_field)
    return key


def _create_partition(source: ApiVariable) -> DataVariablePartition:
    return DataVariablePartition(
        api_url=f"{source.api_url}{source.url_parameters or ''}",
        data_source=source.source,
        geo_format=source.geo_format if source.source == "CENSUS_DATA_API" else "",
        param_ind=source.sector_field,
    )


def _insert_source(partition: DataVariablePartition, source: ApiVariable) -> None:
    partition.map_tiger_ids.append(source.map_tiger_id)
    partition.map_state_ids.append(source.map_state_id)
    partition.variable_parts.append(source.var_parts)

    if source.race_group is not None:
        if partition.race_groups is None:
            partition.race_groups = []
        partition.race_groups.append(int(source.race_group))
    if source.sex_group is not None:
        if partition.sex_groups is None:
            partition.sex_groups = []
        partition.sex_groups.append(source.sex_group)
    if source.vet_group is not None:
        if partition.vet_groups is None:
            partition.vet_groups = []
        partition.vet_groups.append(source.vet_group)


def get_data_partitions_by_end_points(
    metadata: MetadataRepository,
    data_variable_ids: list[str],
    geo_type_id: str,
    vintage: str,
) -> dict[str, DataVariablePartition]:
    """Return partition key -> partition for every source the variables need.

    An empty map means at least one variable has no such vintage for the geo type.
    """
    if not all(
        metadata.is_vintage_available_for_variable(variable_id, geo_type_id, vintage)
        for variable_id in data_variable_ids
    ):
        logger.debug(
            "Vintage %s unavailable for some of %s on geo type %s",
            vintage,
            data_variable_ids,
            geo_type_id,
        )
        return {}

    sources: list[ApiVariable] = []
    for variable_id in data_variable_ids:
        geo_vintage = metadata.get_vintage_for_variable(variable_id, geo_type_id, vintage)
        sources.extend(geo_vintage.all_sources)

    partitions: dict[str, DataVariablePartition] = {}
    for source in sources:
        key = get_partition_key(source)
        if key not in partitions:
            partitions[key] = _create_partition(source)
        _insert_source(partitions[key], source)
    return partitions
