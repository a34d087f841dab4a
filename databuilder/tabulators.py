"""Turn merged api records into per-geography, summarized, comparison, ranking and time-series results."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .api_service import ApiService, GeoTypeApiRecords, map_to_api_records
from .estimation import DataVariableValues, calculate_stat_and_moe, collect_values
from .metadata import MetadataRepository
from .models import (
    CLUSTER_INDUSTRY_ID,
    DataRecord,
    DataVariableGeoTypeVintage,
    GeographicComparisonParameters,
    GeographicComparisonResult,
    GeographicRankingParameters,
    GeographicRankingResult,
    GeographyPartitionsMap,
    GeoRecord,
    SummaryResult,
    TabularParameters,
    TabularResult,
    TimeSeriesParameters,
    TimeSeriesRecord,
)
from .namber import Namber, is_na
from .service_utils import (
    build_geo_record_from_api_record,
    get_api_variable_ids_and_aliases,
    is_moe_na,
    scale_and_round,
    set_computed_data,
)

logger = logging.getLogger(__name__)


def moe_na_for_vintage(vintage: DataVariableGeoTypeVintage) -> bool:
    op1 = get_api_variable_ids_and_aliases(vintage.operand1.sources)
    op2 = get_api_variable_ids_and_aliases(
        vintage.operand2.sources if vintage.operand2 is not None else ()
    )
    return is_moe_na(op1, op2)


def _scaled(
    result: DataRecord, scale_factor: float, round_to: int
) -> tuple[Namber, Optional[Namber]]:
    stat = scale_and_round(result.stat, scale_factor, round_to)
    moe = scale_and_round(result.moe, scale_factor, round_to) if result.moe is not None else None
    return stat, moe


class BaseTabulator:
    def __init__(self, api_service: ApiService, metadata: MetadataRepository):
        self.api_service = api_service
        self.metadata = metadata

    async def get_api_data(self, params: TabularParameters) -> GeoTypeApiRecords:
        records = await self.api_service.create_api_queries(
            params.geographies_map,
            params.industry_id_list,
            params.data_variable_ids,
            params.vintage,
        )
        return map_to_api_records(self.metadata, params.geographies_map, records)


class Tabulator(BaseTabulator):
    async def get_tabular_data(self, params: TabularParameters) -> TabularResult:
        api_records_map = await self.get_api_data(params)

        result: TabularResult = {}
        for geo_type_id in params.geographies_map:
            geo_records: list[GeoRecord] = []
            for api_record in api_records_map.get(geo_type_id, []):
                geo_record = build_geo_record_from_api_record(geo_type_id, api_record)
                for variable_id in params.data_variable_ids:
                    vintage = self.metadata.get_vintage_for_variable(
                        variable_id, geo_type_id, params.vintage
                    )
                    moe_na = moe_na_for_vintage(vintage)

                    for industry_id in params.industry_id_list:
                        values = collect_values([api_record], vintage, [industry_id], moe_na)
                        stat, moe = _scaled(
                            calculate_stat_and_moe(vintage.processor, values, moe_na),
                            vintage.scale_factor,
                            vintage.round,
                        )
                        set_computed_data(
                            self.metadata.get_industry_like_id_for_vgtv(vintage, industry_id),
                            geo_record.data,
                            vintage.variable_id,
                            stat,
                            moe,
                        )

                    values = collect_values(
                        [api_record], vintage, params.industry_id_list, moe_na
                    )
                    stat, moe = _scaled(
                        calculate_stat_and_moe(vintage.processor, values, moe_na),
                        vintage.scale_factor,
                        vintage.round,
                    )
                    set_computed_data(
                        CLUSTER_INDUSTRY_ID, geo_record.data, vintage.variable_id, stat, moe
                    )
                geo_records.append(geo_record)
            result[geo_type_id] = geo_records
        return result


class Summarizer(Tabulator):
    """Pools every geography of every geo type into one region-level result per variable."""

    async def get_summarized_data(self, params: TabularParameters) -> SummaryResult:
        api_records_map = await self.get_api_data(params)
        summarized: SummaryResult = {}

        for variable_id in params.data_variable_ids:
            data_variable = self.metadata.get_data_variable(variable_id)
            vintages = [
                self.metadata.get_vintage_for_variable(variable_id, geo_type_id, params.vintage)
                for geo_type_id in params.geographies_map
            ]
            if not vintages:
                continue
            # MOE must be applicable for every geo type to be applicable for the region.
            moe_na = any(moe_na_for_vintage(vintage) for vintage in vintages)
            vintage = vintages[0]
            processors = list(dict.fromkeys(v.processor for v in vintages))
            if len(processors) > 1:
                logger.warning(
                    "Variable %s mixes processors %s across geo types; using %s",
                    variable_id,
                    processors,
                    processors[0],
                )
            processor = processors[0]

            for industry_id in params.industry_id_list:
                values = self._pooled_values(api_records_map, vintage, [industry_id], moe_na)
                stat, moe = _scaled(
                    calculate_stat_and_moe(processor, values, moe_na),
                    data_variable.scale_factor,
                    data_variable.round,
                )
                set_computed_data(
                    self.metadata.get_industry_like_id_for_vgtv(vintage, industry_id),
                    summarized,
                    variable_id,
                    stat,
                    moe,
                )

            values = self._pooled_values(
                api_records_map, vintage, params.industry_id_list, moe_na
            )
            stat, moe = _scaled(
                calculate_stat_and_moe(processor, values, moe_na),
                data_variable.scale_factor,
                data_variable.round,
            )
            set_computed_data(CLUSTER_INDUSTRY_ID, summarized, variable_id, stat, moe)
        return summarized

    @staticmethod
    def _pooled_values(
        api_records_map: GeoTypeApiRecords,
        vintage: DataVariableGeoTypeVintage,
        industry_ids: list[str],
        moe_na: bool,
    ) -> DataVariableValues:
        pooled = DataVariableValues()
        for records in api_records_map.values():
            pooled = pooled.combine(collect_values(records, vintage, industry_ids, moe_na))
        return pooled


class GeographicComparisonTabulator(Summarizer):
    async def get_geographic_comparison_data(
        self, params: GeographicComparisonParameters
    ) -> GeographicComparisonResult:
        base = self.get_summarized_data(
            TabularParameters(
                data_variable_ids=[params.data_variable_id],
                industry_id_list=params.industry_id_list,
                geographies_map=params.geographies_map,
                vintage=params.vintage,
            )
        )

        # Parents are only tabulated for geo types that carry the same vintage.
        parent_geos: GeographyPartitionsMap = {
            geo_type_id: partitions
            for geo_type_id, partitions in params.parent_geos.items()
            if self.metadata.is_vintage_available_for_variable(
                params.data_variable_id, self.metadata.get_geo_type(geo_type_id).id, params.vintage
            )
        }
        parents = self.get_tabular_data(
            TabularParameters(
                data_variable_ids=[params.data_variable_id],
                industry_id_list=params.industry_id_list,
                geographies_map=parent_geos,
                vintage=params.vintage,
            )
        )
        summary, tabular = await asyncio.gather(base, parents)
        return summary, tabular


def _cluster_stat(record: GeoRecord, variable_id: str) -> Optional[Namber]:
    _, cluster = record.data.get(variable_id, ({}, None))
    return cluster.stat if cluster is not None else None


class GeographicRankingTabulator(Summarizer):
    def __init__(
        self,
        api_service: ApiService,
        metadata: MetadataRepository,
        ranking_batch_size: int = 1100,
    ):
        super().__init__(api_service, metadata)
        self.ranking_batch_size = ranking_batch_size

    async def get_geographic_ranking_data(
        self, params: GeographicRankingParameters
    ) -> GeographicRankingResult:
        variable_id = params.data_variable_id
        selected = params.selected_geography
        geo_type_id = selected.geo_type_id

        peer_geo_types = [
            peer_type_id
            for peer_type_id in params.geographies_map
            if self.metadata.is_vintage_available_for_variable(
                variable_id, self.metadata.get_geo_type(peer_type_id).id, params.vintage
            )
        ]
        logger.debug("Ranking %s over peer geo types %s", variable_id, peer_geo_types)

        peers = params.geographies_map[geo_type_id][0]
        requests = []
        if len(peers) > params.geography_per_request_limit:
            # Large peer sets (zip codes in big states) are tabulated in slices.
            for start in range(0, len(peers), self.ranking_batch_size):
                batch = peers[start : start + params.geography_per_request_limit]
                requests.append(self._tabulate({geo_type_id: [batch]}, params))
        else:
            requests.append(self._tabulate(params.geographies_map, params))

        results = await asyncio.gather(*requests)
        merged: list[GeoRecord] = [
            record for result in results for record in result.get(geo_type_id, [])
        ]

        selected_result = [record for record in merged if record.id == selected.id]
        ranked = []
        for record in merged:
            if record.id == selected.id:
                continue
            stat = _cluster_stat(record, variable_id)
            if stat is None or is_na(stat):
                continue
            ranked.append((stat.value, record))

        ranked.sort(key=lambda pair: pair[0], reverse=params.result_order != "ASCENDING")
        return selected_result, [record for _, record in ranked[: params.result_count]]

    def _tabulate(
        self, geographies_map: GeographyPartitionsMap, params: GeographicRankingParameters
    ):
        return self.get_tabular_data(
            TabularParameters(
                data_variable_ids=[params.data_variable_id],
                industry_id_list=params.industry_id_list,
                geographies_map=geographies_map,
                vintage=params.vintage,
            )
        )


class TimeSeriesTabulator(Summarizer):
    async def get_time_series_data(self, params: TimeSeriesParameters) -> list[TimeSeriesRecord]:
        # Time series is always requested for a single geo type.
        geo_type = self.metadata.get_geo_type(next(iter(params.geographies_map)))
        vintages = [
            vintage
            for vintage in self.metadata.get_geo_vintages_for_variable(params.data_variable_id)
            if vintage.geo_type_id == geo_type.id
        ]
        results = await asyncio.gather(
            *(
                self.get_summarized_data(
                    TabularParameters(
                        data_variable_ids=[params.data_variable_id],
                        industry_id_list=params.industry_id_list,
                        geographies_map=params.geographies_map,
                        vintage=vintage.vintage_id,
                    )
                )
                for vintage in vintages
            )
        )
        series = [
            TimeSeriesRecord(vintage=vintage.vintage_id, name=";".join(vintage.years), data=data)
            for vintage, data in zip(vintages, results)
        ]
        return sorted(series, key=lambda record: record.name)
