"""Fetcher for the consumer-data feature service.

All declared columns come back in one filtered query, so there is no column
chunking. Each geography and industry pair is matched to the first feature
with the same id and, when the feature carries one, the same NAICS code.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from . import namber as nambers
from .config import EngineConfig
from .data_api_client import interpolate
from .data_utils import is_number_like, to_number
from .metadata import GeoType
from .models import NO_INDUSTRY_ID, ApiRecord, DataVariablePartition, DetailedGeo, VarParts
from .query_utils import create_in_sql_query, create_query, run_query
from .service_utils import build_api_record, set_api_data

logger = logging.getLogger(__name__)

INDUSTRY_ATTRIBUTE = "NAICS"


def find_feature(
    features: Sequence[dict[str, Any]], id_field: str, geo_id: str, industry_id: str
) -> dict[str, Any] | None:
    for attributes in features:
        if str(attributes.get(id_field)) != str(geo_id):
            continue
        feature_industry = attributes.get(INDUSTRY_ATTRIBUTE)
        if feature_industry is None or str(feature_industry) == industry_id:
            return attributes
    return None


class ConsumerDataFetcher:
    source = "ESRI_CONSUMER_DATA"

    def __init__(self, client: httpx.AsyncClient, config: EngineConfig):
        self.client = client
        self.config = config

    def build_query(
        self,
        partition: DataVariablePartition,
        geo_type: GeoType,
        geos: Sequence[DetailedGeo],
        industry_id_list: Sequence[str],
    ) -> dict[str, Any]:
        geo_ids = [str(geo.attributes.get(geo_type.geo_id_field)) for geo in geos]
        where = create_in_sql_query(
            geo_type.consumer_data_id_field, geo_ids, True, self.config.in_clause_chunk_size
        )
        if partition.param_ind:
            industry_clause = create_in_sql_query(
                partition.param_ind, list(industry_id_list), True, self.config.in_clause_chunk_size
            )
            where = f"{where} AND {industry_clause}"

        out_fields = [geo_type.consumer_data_id_field]
        for parts in partition.variable_parts:
            out_fields.append(parts.stat_variable.name)
            if parts.flag_variable is not None:
                out_fields.append(parts.flag_variable.name)
            if parts.moe_variable is not None:
                out_fields.append(parts.moe_variable.name)
        if partition.param_ind:
            out_fields.append(partition.param_ind)

        return create_query(
            out_fields=list(dict.fromkeys(out_fields)),
            where=where,
            order_by_fields=[geo_type.consumer_data_id_field],
        )

    async def fetch(
        self,
        partition: DataVariablePartition,
        geo_type: GeoType,
        geos: list[DetailedGeo],
        industry_id_list: list[str],
    ) -> list[ApiRecord]:
        query_url = interpolate(
            partition.api_url, {"consumerDataAPIUrl": self.config.consumer_data_api_url}
        )
        features = await run_query(
            self.client,
            query_url,
            self.build_query(partition, geo_type, geos, industry_id_list),
            config=self.config,
            page_size=self.config.consumer_page_size,
        )
        logger.debug("Consumer data query for %d geos returned %d features", len(geos), len(features))

        industry_ids = industry_id_list if partition.param_ind else [NO_INDUSTRY_ID]
        records = []
        for geo in geos:
            record = build_api_record(geo_type.id, geo)
            for industry_id in industry_ids:
                attributes = find_feature(
                    features, geo_type.consumer_data_id_field, geo.id, industry_id
                )
                self._set_data(industry_id, partition.variable_parts, record, attributes)
            records.append(record)
        return records

    @staticmethod
    def _set_data(
        industry_id: str,
        variable_parts: Sequence[VarParts],
        record: ApiRecord,
        attributes: dict[str, Any] | None,
    ) -> None:
        for parts in variable_parts:
            stat_alias = parts.stat_variable.alias
            moe_alias = parts.moe_variable.alias if parts.moe_variable is not None else None
            na_moe = (moe_alias, nambers.na_namber()) if moe_alias else None

            if attributes is None:
                set_api_data(industry_id, record.data, (stat_alias, nambers.na_namber()), na_moe)
                continue

            flag_value = (
                attributes.get(parts.flag_variable.name) if parts.flag_variable is not None else None
            )
            if flag_value not in (None, ""):
                set_api_data(
                    industry_id,
                    record.data,
                    (stat_alias, nambers.na_namber(f"Suppressed ({flag_value})")),
                    na_moe,
                )
                continue

            stat_value = attributes.get(parts.stat_variable.name)
            if not is_number_like(stat_value):
                set_api_data(industry_id, record.data, (stat_alias, nambers.na_namber()), na_moe)
                continue

            moe = None
            if moe_alias is not None:
                raw_moe = attributes.get(parts.moe_variable.name)
                moe_value = (
                    nambers.Namber(to_number(raw_moe)) if is_number_like(raw_moe) else nambers.na_namber()
                )
                moe = (moe_alias, moe_value)
            set_api_data(
                industry_id, record.data, (stat_alias, nambers.Namber(to_number(stat_value))), moe
            )
