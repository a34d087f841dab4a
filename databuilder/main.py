"""HTTP surface for the data engine.

Run standalone: uvicorn databuilder.main:app --reload
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .config import EngineConfig, get_config, get_metadata_path
from .data_service import DataService, build_geography_partitions
from .errors import MetadataNotFoundError, UpstreamAPIError
from .logging_config import configure_logging
from .metadata import MetadataRepository
from .models import (
    GeographicComparisonParameters,
    GeographicRankingParameters,
    GeographyPartitionsMap,
    TabularParameters,
    TimeSeriesParameters,
    clustered_map_to_dict,
)
from .schemas import (
    ComparisonRequest,
    GeographiesByType,
    RankingRequest,
    TabularRequest,
    TimeSeriesRequest,
    UploadRequest,
)
from .user_fetcher import UserDataStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

configure_logging(
    level=getattr(logging, os.getenv("DATABUILDER_LOG_LEVEL", "INFO").upper(), logging.INFO)
)

app = FastAPI(title="Databuilder API", version="0.1.0")

raw_origins = os.getenv("CORS_ORIGINS", "*")
allow_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]
if not allow_origins:
    allow_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

user_data_store = UserDataStore()


@lru_cache(maxsize=1)
def get_metadata() -> MetadataRepository:
    path = get_metadata_path()
    if path is None:
        raise MetadataNotFoundError("DATABUILDER_METADATA_PATH is not set")
    return MetadataRepository.from_file(path)


def create_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(follow_redirects=True)


def _partition_geographies(
    metadata: MetadataRepository, config: EngineConfig, geographies: GeographiesByType
) -> GeographyPartitionsMap:
    partitions: GeographyPartitionsMap = {}
    for geo_type_id, geos in geographies.items():
        geo_type = metadata.get_geo_type(geo_type_id)
        partitions[geo_type.id] = build_geography_partitions(
            [geo.to_detailed_geo(geo_type.id) for geo in geos],
            geo_type,
            config.geography_per_request_limit,
        )
    return partitions


async def _run(handler: Callable[[DataService, MetadataRepository, EngineConfig], Awaitable[T]]) -> T:
    config = get_config()
    try:
        metadata = get_metadata()
        async with create_http_client() as client:
            service = DataService.create(metadata, config, client, user_data_store)
            return await handler(service, metadata, config)
    except MetadataNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except UpstreamAPIError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/data/tabular")
async def tabular_data(payload: TabularRequest) -> dict[str, Any]:
    async def handler(service: DataService, metadata: MetadataRepository, config: EngineConfig):
        result = await service.get_tabular_data(
            TabularParameters(
                data_variable_ids=payload.data_variable_ids,
                industry_id_list=payload.industry_ids,
                geographies_map=_partition_geographies(metadata, config, payload.geographies),
                vintage=payload.vintage,
            )
        )
        return {
            "data": {
                geo_type_id: [record.to_dict() for record in records]
                for geo_type_id, records in result.items()
            }
        }

    return await _run(handler)


@app.post("/api/data/summary")
async def summary_data(payload: TabularRequest) -> dict[str, Any]:
    async def handler(service: DataService, metadata: MetadataRepository, config: EngineConfig):
        result = await service.get_summarized_data(
            TabularParameters(
                data_variable_ids=payload.data_variable_ids,
                industry_id_list=payload.industry_ids,
                geographies_map=_partition_geographies(metadata, config, payload.geographies),
                vintage=payload.vintage,
            )
        )
        return {"data": clustered_map_to_dict(result)}

    return await _run(handler)


@app.post("/api/data/time-series")
async def time_series_data(payload: TimeSeriesRequest) -> dict[str, Any]:
    async def handler(service: DataService, metadata: MetadataRepository, config: EngineConfig):
        series = await service.get_time_series_data(
            TimeSeriesParameters(
                data_variable_id=payload.data_variable_id,
                industry_id_list=payload.industry_ids,
                geographies_map=_partition_geographies(metadata, config, payload.geographies),
            )
        )
        return {
            "series": [
                {
                    "vintage": record.vintage,
                    "name": record.name,
                    "data": clustered_map_to_dict(record.data),
                }
                for record in series
            ]
        }

    return await _run(handler)


@app.post("/api/data/comparison")
async def comparison_data(payload: ComparisonRequest) -> dict[str, Any]:
    async def handler(service: DataService, metadata: MetadataRepository, config: EngineConfig):
        summary, tabular = await service.get_geographic_comparison_data(
            GeographicComparisonParameters(
                data_variable_id=payload.data_variable_id,
                industry_id_list=payload.industry_ids,
                geographies_map=_partition_geographies(metadata, config, payload.geographies),
                parent_geos=_partition_geographies(metadata, config, payload.parent_geographies),
                vintage=payload.vintage,
                geo_or_region_name=payload.geo_or_region_name,
            )
        )
        return {
            "summary": clustered_map_to_dict(summary),
            "parents": {
                geo_type_id: [record.to_dict() for record in records]
                for geo_type_id, records in tabular.items()
            },
        }

    return await _run(handler)


@app.post("/api/data/ranking")
async def ranking_data(payload: RankingRequest) -> dict[str, Any]:
    async def handler(service: DataService, metadata: MetadataRepository, config: EngineConfig):
        geographies_map = _partition_geographies(metadata, config, payload.geographies)
        selected = next(
            (
                geo
                for batches in geographies_map.values()
                for batch in batches
                for geo in batch
                if geo.id == payload.selected_geography_id
            ),
            None,
        )
        if selected is None:
            raise HTTPException(
                status_code=422,
                detail=f"Selected geography {payload.selected_geography_id} is not among the peers",
            )
        selected_records, ranked = await service.get_geographic_ranking_data(
            GeographicRankingParameters(
                data_variable_id=payload.data_variable_id,
                industry_id_list=payload.industry_ids,
                geographies_map=geographies_map,
                selected_geography=selected,
                result_count=payload.result_count,
                result_order=payload.result_order,
                vintage=payload.vintage,
                geography_per_request_limit=config.geography_per_request_limit,
            )
        )
        return {
            "selected": [record.to_dict() for record in selected_records],
            "peers": [record.to_dict() for record in ranked],
        }

    return await _run(handler)


@app.post("/api/data/uploads")
async def upload_user_data(payload: UploadRequest) -> dict[str, Any]:
    async def handler(service: DataService, metadata: MetadataRepository, config: EngineConfig):
        metadata.get_geo_type(payload.geo_type_id)
        upload_info, data = payload.to_upload()
        service.set_uploaded_user_data(data, upload_info)
        return {
            "upload_id": upload_info.upload_id,
            "variables": [variable.id for variable in data.data_variables],
        }

    return await _run(handler)
