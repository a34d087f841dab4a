"""Fetcher for the statistical data API (api.census.gov style endpoints).

One partition becomes one query per geography group and column chunk. Chunks
are merged back into one table, rows are keyed by the FIPS fields of their
geography, and each requested geography receives a value (or n/a) for every
variable alias in the partition.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Optional, Sequence

from . import namber as nambers
from .column_merger import ApiResult, merge_column_partitions
from .data_api_client import DataApiClient
from .data_utils import is_number_like, to_number
from .errors import UpstreamAPIError
from .logging_config import get_user_message_logger
from .metadata import GeoType, MetadataRepository
from .models import NO_INDUSTRY_ID, ApiRecord, DataVariablePartition, DetailedGeo, VarParts
from .row_converter import DataObject, api_rows_to_data_objects
from .service_utils import (
    build_api_record,
    chunked,
    create_out_fields,
    get_industry_like_id,
    set_api_data,
    translate_to_annotation,
)

logger = logging.getLogger(__name__)
user_messages = get_user_message_logger()

# geography key ("STATE=06COUNTY=001") -> industry-like id -> rows
CensusApiGeoData = dict[str, dict[str, list[DataObject]]]

# Endpoints that only answer the nation level with the id "1".
NATION_AS_ONE_PATHS = ("/2018/nonemp", "/2018/cbp", "/2017/cbp", "/2017/abscs", "/2017/ecnbasic")


@dataclass(frozen=True)
class _GeoQuery:
    query_field: str
    geo_attributes: dict[str, Any]
    api_fields: list[str]
    geo_fields: list[str]
    geo_ids: list[str]
    include_geo_ids: Optional[list[str]] = None


def select_columns_for(variable_parts: Sequence[VarParts]) -> list[str]:
    """Stat columns first, then flag columns, then MOE columns."""
    stats = [parts.stat_variable.name for parts in variable_parts if parts.stat_variable.name]
    flags = [
        parts.flag_variable.name
        for parts in variable_parts
        if parts.flag_variable is not None and parts.flag_variable.name
    ]
    moes = [
        parts.moe_variable.name
        for parts in variable_parts
        if parts.moe_variable is not None and parts.moe_variable.name
    ]
    return [*stats, *flags, *moes]


def _with_param(url: str, param: str) -> str:
    return f"{url}{'&' if '?' in url else '?'}{param}"


def build_api_url(partition: DataVariablePartition, industry_id_list: Sequence[str]) -> str:
    url = partition.api_url
    if partition.param_ind and industry_id_list:
        for industry_id in industry_id_list:
            url = _with_param(url, f"{partition.param_ind}={industry_id}")
    if partition.race_groups:
        for race_group in partition.race_groups:
            url = _with_param(url, f"RACE_GROUP={race_group}")
    if partition.sex_groups:
        url = _with_param(url, "&".join(partition.sex_groups))
    if partition.vet_groups:
        url = _with_param(url, "&".join(partition.vet_groups))
    return url


def delay_message(geo_type: GeoType, geo_ids: Sequence[str]) -> str:
    message = "Experiencing delay while fetching data for "
    if len(geo_ids) > 1:
        field = geo_type.data_api_id_field
        return message + ("Counties" if field == "County" else f"{field}s")
    return message + geo_type.data_api_id_field


def _geo_key(fields: Sequence[str], values: Sequence[Any]) -> str:
    return "".join(f"{field}={value}" for field, value in zip(fields, values))


class CensusFetcher:
    source = "CENSUS_DATA_API"

    def __init__(
        self,
        client: DataApiClient,
        metadata: MetadataRepository,
        column_chunk_size: int = 50,
    ):
        self.client = client
        self.metadata = metadata
        self.column_chunk_size = column_chunk_size

    async def fetch(
        self,
        partition: DataVariablePartition,
        geo_type: GeoType,
        geos: list[DetailedGeo],
        industry_id_list: list[str],
    ) -> list[ApiRecord]:
        if not geos:
            return []

        if not geo_type.map_tiger_id:
            return await self._execute_queries(
                False, industry_id_list, False, partition, geo_type, geos, partition.variable_parts
            )

        geos = self._with_place_counties(geo_type, geos)
        mappable = [
            parts
            for parts, mapped in zip(partition.variable_parts, partition.map_tiger_ids)
            if mapped
        ]
        regular = [
            parts
            for parts, mapped in zip(partition.variable_parts, partition.map_tiger_ids)
            if not mapped
        ]
        queries = []
        if mappable:
            queries.append(
                self._execute_queries(
                    True, industry_id_list, True, partition, geo_type, geos, mappable
                )
            )
        if regular:
            queries.append(
                self._execute_queries(
                    True, industry_id_list, False, partition, geo_type, geos, regular
                )
            )
        results = await asyncio.gather(*queries)
        return [record for records in results for record in records]

    def _with_place_counties(self, geo_type: GeoType, geos: list[DetailedGeo]) -> list[DetailedGeo]:
        # Places that are really county subdivisions carry their county from the mapping table.
        updated: list[DetailedGeo] = []
        for geo in geos:
            mapping = self.metadata.get_place_mapping_for_geo_id(
                str(geo.attributes.get(geo_type.geo_id_field))
            )
            if mapping is not None and mapping.county:
                geo = replace(geo, attributes={**geo.attributes, "COUNTY": mapping.county})
            updated.append(geo)
        return updated

    async def _execute_queries(
        self,
        is_places: bool,
        industry_id_list: list[str],
        map_tiger_ids: bool,
        partition: DataVariablePartition,
        geo_type: GeoType,
        geos: list[DetailedGeo],
        variable_parts: Sequence[VarParts],
    ) -> list[ApiRecord]:
        results = await self._execute_partition_queries(
            industry_id_list, map_tiger_ids, partition, geo_type, geos
        )
        geo_data: CensusApiGeoData = {}
        for result in results:
            if is_places:
                geo_data.update(result)
            else:
                geo_data = result
        return self.merge_census_data_api_results(
            geo_type, geos, geo_data, partition, industry_id_list, variable_parts
        )

    def merge_census_data_api_results(
        self,
        geo_type: GeoType,
        geos: list[DetailedGeo],
        geo_data: CensusApiGeoData,
        partition: DataVariablePartition,
        industry_id_list: list[str],
        variable_parts: Sequence[VarParts],
    ) -> list[ApiRecord]:
        tiger_fips_fields = create_out_fields(*geo_type.tiger_fips_fields)
        industry_ids = industry_id_list if partition.param_ind is not None else [NO_INDUSTRY_ID]

        records: list[ApiRecord] = []
        for geo in geos:
            record = build_api_record(geo_type.id, geo)
            if geo_type.id == "nation":
                geo_name = geo_type.id
            else:
                geo_name = _geo_key(
                    tiger_fips_fields, [geo.attributes.get(field) for field in tiger_fips_fields]
                )
            self._set_data(industry_ids, variable_parts, record, geo_data.get(geo_name))
            records.append(record)
        return records

    @staticmethod
    def _set_data(
        industry_ids: Sequence[str],
        variable_parts: Sequence[VarParts],
        record: ApiRecord,
        api_data: dict[str, list[DataObject]] | None,
    ) -> None:
        for industry_id in industry_ids:
            for parts in variable_parts:
                stat_alias = parts.stat_variable.alias
                moe_alias = parts.moe_variable.alias if parts.moe_variable is not None else None

                if api_data is None:
                    # Geography missing from the response; data not released or not available.
                    set_api_data(
                        industry_id,
                        record.data,
                        (stat_alias, nambers.na_namber()),
                        (moe_alias, nambers.na_namber()) if moe_alias else None,
                    )
                    continue

                for var_data in api_data.get(get_industry_like_id(industry_id), []):
                    if stat_alias not in var_data:
                        continue
                    flag_value = (
                        var_data.get(parts.flag_variable.alias)
                        if parts.flag_variable is not None
                        else None
                    )
                    if parts.flag_variable is not None and flag_value not in (None, ""):
                        set_api_data(
                            industry_id,
                            record.data,
                            (stat_alias, nambers.na_namber(f"Suppressed ({flag_value})")),
                            (moe_alias, nambers.na_namber()) if moe_alias else None,
                        )
                        continue

                    stat_value = var_data.get(stat_alias)
                    moe_value = nambers.na_namber()
                    if moe_alias is not None:
                        raw_moe = var_data.get(moe_alias)
                        if raw_moe:
                            moe_value = nambers.to_namber(translate_to_annotation(raw_moe))

                    if is_number_like(stat_value):
                        set_api_data(
                            industry_id,
                            record.data,
                            (stat_alias, nambers.Namber(to_number(stat_value))),
                            (moe_alias, moe_value) if moe_alias else None,
                        )
                    else:
                        set_api_data(
                            industry_id,
                            record.data,
                            (stat_alias, nambers.na_namber()),
                            (moe_alias, nambers.na_namber()) if moe_alias else None,
                        )

    async def _execute_partition_queries(
        self,
        industry_id_list: list[str],
        map_tiger_ids: bool,
        partition: DataVariablePartition,
        geo_type: GeoType,
        geos: list[DetailedGeo],
    ) -> list[CensusApiGeoData]:
        api_fields = create_out_fields(*geo_type.data_api_partition_fields)
        geo_fields = create_out_fields(*geo_type.tiger_partition_fields)
        queries: list[_GeoQuery] = []

        if map_tiger_ids:
            regular_ids: list[str] = []
            regular_geos: list[DetailedGeo] = []
            mcd_ids: list[str] = []
            mcd_geos: list[DetailedGeo] = []
            for geo in geos:
                mapping = self.metadata.get_place_mapping_for_geo_id(
                    str(geo.attributes.get(geo_type.geo_id_field))
                )
                if mapping is not None and mapping.county:
                    mcd_ids.append(str(geo.attributes.get(geo_type.geo_id_field)))
                    mcd_geos.append(geo)
                else:
                    regular_ids.append(str(geo.attributes.get(geo_type.tiger_id_field)))
                    regular_geos.append(geo)

            if regular_ids:
                queries.append(
                    _GeoQuery(
                        query_field=geo_type.data_api_id_field,
                        geo_attributes=regular_geos[0].attributes,
                        api_fields=api_fields,
                        geo_fields=geo_fields,
                        geo_ids=regular_ids,
                    )
                )
            if mcd_ids:
                queries.append(
                    _GeoQuery(
                        query_field="county subdivision",
                        geo_attributes=mcd_geos[0].attributes,
                        api_fields=["state"],
                        geo_fields=["STATE"],
                        geo_ids=["*"],
                        include_geo_ids=mcd_ids,
                    )
                )
        else:
            queries.append(
                _GeoQuery(
                    query_field=geo_type.data_api_id_field,
                    geo_attributes=geos[0].attributes,
                    api_fields=api_fields,
                    geo_fields=geo_fields,
                    geo_ids=self.get_geo_ids(geos, partition, geo_type),
                )
            )

        return list(
            await asyncio.gather(
                *(
                    self._execute_query(query, partition, geo_type, industry_id_list)
                    for query in queries
                )
            )
        )

    def get_geo_ids(
        self, geos: list[DetailedGeo], partition: DataVariablePartition, geo_type: GeoType
    ) -> list[str]:
        if partition.map_state_ids and partition.map_state_ids[0] and geo_type.map_state_id:
            return [
                self.metadata.get_state_postal_code(str(geo.attributes.get(geo_type.tiger_id_field)))
                for geo in geos
            ]

        geo_ids: list[str] = []
        for geo in geos:
            geo_id = geo.attributes.get(geo_type.tiger_id_field)
            if geo_type.id == "nation":
                if "/intltrade" in partition.api_url:
                    geo_ids.append("")
                    continue
                if "/acs5" not in partition.api_url:
                    geo_id = "00"
                if any(path in partition.api_url for path in NATION_AS_ONE_PATHS):
                    geo_id = "1"
            geo_ids.append("" if geo_id is None else str(geo_id))
        return geo_ids

    async def _execute_query(
        self,
        query: _GeoQuery,
        partition: DataVariablePartition,
        geo_type: GeoType,
        industry_id_list: list[str],
    ) -> CensusApiGeoData:
        in_clause = None
        if query.geo_fields and query.geo_fields[0]:
            in_clause = " ".join(
                f"{query.api_fields[index]}:{query.geo_attributes.get(field)}"
                for index, field in enumerate(query.geo_fields)
            )

        select_columns = select_columns_for(partition.variable_parts)
        cols_unique = list(dict.fromkeys(select_columns))
        duplicates = len(select_columns) != len(cols_unique)

        api_url = build_api_url(partition, industry_id_list)
        message = delay_message(geo_type, query.geo_ids)

        results = await asyncio.gather(
            *(
                self._fetch_columns(api_url, columns, query, in_clause, partition.geo_format, message)
                for columns in chunked(cols_unique, self.column_chunk_size)
            )
        )

        merged = merge_column_partitions(results, cols_unique)
        objects = api_rows_to_data_objects(
            partition,
            merged,
            duplicates=duplicates,
            select_columns=select_columns,
            include_places=geo_type.id == "place" and query.include_geo_ids is not None,
            include_geo_ids=query.include_geo_ids or [],
        )
        return self._data_by_geo_and_industry(geo_type, objects, partition, industry_id_list)

    async def _fetch_columns(
        self,
        api_url: str,
        columns: list[str],
        query: _GeoQuery,
        in_clause: str | None,
        geo_format: str,
        message: str,
    ) -> ApiResult:
        try:
            return await self.client.fetch_data(
                api_url, columns, query.query_field, list(query.geo_ids), in_clause, geo_format
            )
        except UpstreamAPIError:
            user_messages.warning(message)
            raise

    def _data_by_geo_and_industry(
        self,
        geo_type: GeoType,
        objects: list[DataObject],
        partition: DataVariablePartition,
        industry_id_list: list[str],
    ) -> CensusApiGeoData:
        data_fips_fields = create_out_fields(*geo_type.data_api_fips_fields)
        tiger_fips_fields = create_out_fields(*geo_type.tiger_fips_fields)
        maps_state_ids = bool(partition.map_state_ids and partition.map_state_ids[0])

        data_by_geo: CensusApiGeoData = {}
        for row in objects:
            if geo_type.id == "nation":
                geo_name = geo_type.id
            else:
                values = [
                    self.metadata.get_state_fips_code(str(row.get(field.upper())))
                    if maps_state_ids
                    else row.get(field)
                    for field in data_fips_fields
                ]
                geo_name = _geo_key(tiger_fips_fields, values)

            if geo_name not in data_by_geo:
                data_by_geo[geo_name] = {NO_INDUSTRY_ID: []}
                for industry_id in industry_id_list:
                    data_by_geo[geo_name][get_industry_like_id(industry_id)] = []

            if partition.param_ind:
                key = get_industry_like_id(row.get(partition.param_ind))
            else:
                key = NO_INDUSTRY_ID
            data_by_geo[geo_name].setdefault(key, []).append(row)
        return data_by_geo
