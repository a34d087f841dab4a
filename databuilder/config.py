from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

DEFAULT_URL_LENGTH_LIMIT = 2000
DEFAULT_GEOGRAPHY_PER_REQUEST_LIMIT = 50
# Peer sets for ranking are split with this size, not the per-request limit.
DEFAULT_RANKING_BATCH_SIZE = 1100
DEFAULT_COLUMN_CHUNK_SIZE = 50
DEFAULT_CONSUMER_PAGE_SIZE = 1000
DEFAULT_IN_CLAUSE_CHUNK_SIZE = 500


@dataclass(frozen=True)
class EngineConfig:
    data_api_host: str | None = None
    census_api_key: str = ""
    data_api_proxy_url: str = ""
    url_length_limit: int = DEFAULT_URL_LENGTH_LIMIT
    geography_per_request_limit: int = DEFAULT_GEOGRAPHY_PER_REQUEST_LIMIT
    ranking_batch_size: int = DEFAULT_RANKING_BATCH_SIZE
    column_chunk_size: int = DEFAULT_COLUMN_CHUNK_SIZE
    consumer_data_api_url: str = ""
    consumer_page_size: int = DEFAULT_CONSUMER_PAGE_SIZE
    in_clause_chunk_size: int = DEFAULT_IN_CLAUSE_CHUNK_SIZE
    geo_type_replacements_for_path: dict[str, dict[str, str]] = field(default_factory=dict)
    timeout: float = 20.0
    retries: int = 3


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def get_config() -> EngineConfig:
    raw_replacements = os.getenv("DATABUILDER_GEO_TYPE_REPLACEMENTS", "").strip()
    replacements = json.loads(raw_replacements) if raw_replacements else {}
    return EngineConfig(
        data_api_host=os.getenv("DATABUILDER_DATA_API_HOST") or None,
        census_api_key=os.getenv("DATABUILDER_CENSUS_API_KEY", ""),
        data_api_proxy_url=os.getenv("DATABUILDER_DATA_API_PROXY_URL", ""),
        url_length_limit=_int_env("DATABUILDER_URL_LENGTH_LIMIT", DEFAULT_URL_LENGTH_LIMIT),
        geography_per_request_limit=_int_env(
            "DATABUILDER_GEOGRAPHY_PER_REQUEST_LIMIT", DEFAULT_GEOGRAPHY_PER_REQUEST_LIMIT
        ),
        ranking_batch_size=_int_env("DATABUILDER_RANKING_BATCH_SIZE", DEFAULT_RANKING_BATCH_SIZE),
        column_chunk_size=_int_env("DATABUILDER_COLUMN_CHUNK_SIZE", DEFAULT_COLUMN_CHUNK_SIZE),
        consumer_data_api_url=os.getenv("DATABUILDER_CONSUMER_DATA_API_URL", ""),
        consumer_page_size=_int_env("DATABUILDER_CONSUMER_PAGE_SIZE", DEFAULT_CONSUMER_PAGE_SIZE),
        in_clause_chunk_size=_int_env(
            "DATABUILDER_IN_CLAUSE_CHUNK_SIZE", DEFAULT_IN_CLAUSE_CHUNK_SIZE
        ),
        geo_type_replacements_for_path=replacements,
        timeout=_float_env("DATABUILDER_TIMEOUT", 20.0),
        retries=_int_env("DATABUILDER_RETRIES", 3),
    )


def get_metadata_path() -> str | None:
    return os.getenv("DATABUILDER_METADATA_PATH") or None
