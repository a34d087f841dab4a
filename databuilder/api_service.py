"""Fan fetches out over geo types, geography batches and partitions, then merge by geography."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Mapping, Protocol

from .errors import assert_never
from .metadata import GeoType, MetadataRepository
from .models import (
    ApiRecord,
    DataVariablePartition,
    DetailedGeo,
    GeographyPartitions,
    GeographyPartitionsMap,
)
from .partitioner import get_data_partitions_by_end_points
from .service_utils import build_api_record

logger = logging.getLogger(__name__)

# geo type id -> merged records
GeoTypeApiRecords = dict[str, list[ApiRecord]]


class DataFetcher(Protocol):
    source: str

    def fetch(
        self,
        partition: DataVariablePartition,
        geo_type: GeoType,
        geos: list[DetailedGeo],
        industry_id_list: list[str],
    ) -> Awaitable[list[ApiRecord]]: ...


def recursive_merge(a: dict[str, Any], b: dict[str, Any]) -> dict[str, Any]:
    """Keys only in ``b`` are added; nested dicts on both sides merge; otherwise ``a`` wins."""
    merged = dict(a)
    for key, value in b.items():
        if key not in a:
            merged[key] = value
        elif isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = recursive_merge(merged[key], value)
    return merged


def merge_api_records(records: list[ApiRecord]) -> ApiRecord:
    first, *rest = records
    data = first.data
    for record in rest:
        data = recursive_merge(data, record.data)
    return ApiRecord(id=first.id, name=first.name, geo_type=first.geo_type, data=data)


def map_to_api_records(
    metadata: MetadataRepository,
    geographies_map: GeographyPartitionsMap,
    api_records_map: GeoTypeApiRecords,
) -> GeoTypeApiRecords:
    """Give every requested geography a record, even when nothing was fetched for it."""
    for geo_type_id, partitions in geographies_map.items():
        geo_type = metadata.get_geo_type(geo_type_id)
        api_geos = api_records_map.setdefault(geo_type_id, [])
        known = {record.id for record in api_geos}
        for geo in (geo for batch in partitions for geo in batch):
            if geo.id not in known:
                api_geos.append(build_api_record(geo_type.id, geo))
                known.add(geo.id)
    return api_records_map


class ApiService:
    def __init__(self, metadata: MetadataRepository, fetchers: Mapping[str, DataFetcher]):
        self.metadata = metadata
        self.fetchers = dict(fetchers)

    async def create_api_queries(
        self,
        geographies_map: GeographyPartitionsMap,
        industry_id_list: list[str],
        data_variable_ids: list[str],
        vintage: str,
    ) -> GeoTypeApiRecords:
        geo_type_ids = list(geographies_map)
        results = await asyncio.gather(
            *(
                self._queries_for_geo_type(
                    self.metadata.get_geo_type(geo_type_id),
                    geographies_map[geo_type_id],
                    industry_id_list,
                    data_variable_ids,
                    vintage,
                )
                for geo_type_id in geo_type_ids
            )
        )
        return dict(zip(geo_type_ids, results))

    async def _queries_for_geo_type(
        self,
        geo_type: GeoType,
        all_partitions: GeographyPartitions,
        industry_id_list: list[str],
        data_variable_ids: list[str],
        vintage: str,
    ) -> list[ApiRecord]:
        partitions = get_data_partitions_by_end_points(
            self.metadata, data_variable_ids, geo_type.id, vintage
        )

        fetches = []
        for geos in all_partitions:
            for partition in partitions.values():
                if partition.map_state_ids and partition.map_state_ids[0]:
                    # Endpoints keyed by state postal code are queried one geography at a time.
                    fetches.extend(
                        self._fetch(partition, geo_type, [geo], industry_id_list) for geo in geos
                    )
                else:
                    fetches.append(self._fetch(partition, geo_type, list(geos), industry_id_list))

        logger.debug(
            "Dispatching %d fetches for geo type %s across %d partitions",
            len(fetches),
            geo_type.id,
            len(partitions),
        )
        results = await asyncio.gather(*fetches)
        flat = [record for records in results for record in records]

        merged: list[ApiRecord] = []
        for geos in all_partitions:
            for geo in geos:
                matches = [record for record in flat if record.id == geo.id]
                if matches:
                    merged.append(merge_api_records(matches))
        return merged

    def _fetch(
        self,
        partition: DataVariablePartition,
        geo_type: GeoType,
        geos: list[DetailedGeo],
        industry_id_list: list[str],
    ) -> Awaitable[list[ApiRecord]]:
        fetcher = self.fetchers.get(partition.data_source)
        if fetcher is None:
            assert_never(partition.data_source, "Missing program source code path")
        return fetcher.fetch(partition, geo_type, geos, industry_id_list)
