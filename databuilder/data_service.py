"""Entry point for callers: wires fetchers, orchestrator and tabulators together."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import httpx

from . import namber as nambers
from .api_service import ApiService
from .census_fetcher import CensusFetcher
from .config import EngineConfig
from .consumer_data_fetcher import ConsumerDataFetcher
from .data_api_client import DataApiClient
from .metadata import GeoType, MetadataRepository
from .models import (
    CLUSTER_INDUSTRY_ID,
    ClusteredVariableMap,
    DataRecord,
    DataVariableGeoTypeVintage,
    DetailedGeo,
    GeographicComparisonParameters,
    GeographicComparisonResult,
    GeographicRankingParameters,
    GeographicRankingResult,
    GeographyPartitions,
    GeoRecord,
    SummaryResult,
    TabularParameters,
    TabularResult,
    TimeSeriesParameters,
    TimeSeriesRecord,
    UploadInfo,
    UserUploadedData,
)
from .namber import Namber
from .service_utils import chunked
from .tabulators import (
    GeographicComparisonTabulator,
    GeographicRankingTabulator,
    Summarizer,
    Tabulator,
    TimeSeriesTabulator,
)
from .user_fetcher import UserDataStore, UserFetcher

logger = logging.getLogger(__name__)


class DataService:
    def __init__(
        self,
        metadata: MetadataRepository,
        config: EngineConfig,
        api_service: ApiService,
        user_data: Optional[UserDataStore] = None,
    ):
        self.metadata = metadata
        self.config = config
        self.api_service = api_service
        self.user_data = user_data or UserDataStore()

    @classmethod
    def create(
        cls,
        metadata: MetadataRepository,
        config: EngineConfig,
        client: httpx.AsyncClient,
        user_data: Optional[UserDataStore] = None,
    ) -> DataService:
        """Build a service with the three standard fetchers sharing one HTTP client."""
        user_data = user_data or UserDataStore()
        fetchers = {
            CensusFetcher.source: CensusFetcher(
                DataApiClient(client, config), metadata, config.column_chunk_size
            ),
            ConsumerDataFetcher.source: ConsumerDataFetcher(client, config),
            UserFetcher.source: UserFetcher(user_data),
        }
        return cls(metadata, config, ApiService(metadata, fetchers), user_data)

    def set_uploaded_user_data(self, data: UserUploadedData, upload_info: UploadInfo) -> None:
        self.user_data.set_uploaded_user_data(data, upload_info, self.metadata)

    async def get_tabular_data(self, params: TabularParameters) -> TabularResult:
        return await Tabulator(self.api_service, self.metadata).get_tabular_data(params)

    async def get_summarized_data(self, params: TabularParameters) -> SummaryResult:
        return await Summarizer(self.api_service, self.metadata).get_summarized_data(params)

    async def get_time_series_data(self, params: TimeSeriesParameters) -> list[TimeSeriesRecord]:
        return await TimeSeriesTabulator(self.api_service, self.metadata).get_time_series_data(
            params
        )

    async def get_geographic_comparison_data(
        self, params: GeographicComparisonParameters
    ) -> GeographicComparisonResult:
        tabulator = GeographicComparisonTabulator(self.api_service, self.metadata)
        return await tabulator.get_geographic_comparison_data(params)

    async def get_geographic_ranking_data(
        self, params: GeographicRankingParameters
    ) -> GeographicRankingResult:
        tabulator = GeographicRankingTabulator(
            self.api_service, self.metadata, self.config.ranking_batch_size
        )
        return await tabulator.get_geographic_ranking_data(params)


def build_geography_partitions(
    geos: Sequence[DetailedGeo], geo_type: GeoType, limit: int
) -> GeographyPartitions:
    """Split geographies into request-sized batches that share the same parent (``in=``) values."""
    groups: dict[tuple, list[DetailedGeo]] = {}
    for geo in geos:
        key = tuple(geo.attributes.get(field) for field in geo_type.tiger_partition_fields)
        groups.setdefault(key, []).append(geo)
    return [batch for group in groups.values() for batch in chunked(group, max(limit, 1))]


def get_data_record(
    data: ClusteredVariableMap,
    vintage: DataVariableGeoTypeVintage,
    industry_id: str,
    metadata: MetadataRepository,
) -> Optional[DataRecord]:
    industries, cluster = data[vintage.variable_id]
    if industry_id == CLUSTER_INDUSTRY_ID:
        return cluster
    return industries.get(metadata.get_industry_like_id_for_vgtv(vintage, industry_id))


def find_stat(record: Optional[DataRecord]) -> Optional[float]:
    if record is not None and nambers.has_value(record.stat):
        return record.stat.value
    return None


def find_moe(record: Optional[DataRecord]) -> Optional[float]:
    if record is not None and record.moe is not None and nambers.has_value(record.moe):
        return record.moe.value
    return None


def find_feature_stat(
    feature: GeoRecord,
    vintage: Optional[DataVariableGeoTypeVintage],
    industry_id: str,
    metadata: MetadataRepository,
) -> Optional[float]:
    if vintage is None:
        return None
    return find_stat(get_data_record(feature.data, vintage, industry_id, metadata))


def find_feature_stat_as_namber(
    feature: GeoRecord,
    vintage: Optional[DataVariableGeoTypeVintage],
    industry_id: str,
    metadata: MetadataRepository,
) -> Namber:
    if vintage is None:
        return nambers.na_namber()
    record = get_data_record(feature.data, vintage, industry_id, metadata)
    return record.stat if record is not None else nambers.na_namber()


def find_feature_moe(
    feature: GeoRecord,
    vintage: Optional[DataVariableGeoTypeVintage],
    industry_id: str,
    metadata: MetadataRepository,
) -> Optional[float]:
    if vintage is None:
        return None
    return find_moe(get_data_record(feature.data, vintage, industry_id, metadata))


def find_feature_moe_as_namber(
    feature: GeoRecord,
    vintage: Optional[DataVariableGeoTypeVintage],
    industry_id: str,
    metadata: MetadataRepository,
) -> Optional[Namber]:
    if vintage is None:
        return nambers.na_namber()
    record = get_data_record(feature.data, vintage, industry_id, metadata)
    return record.moe if record is not None else None
