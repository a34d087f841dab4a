"""Filtered, paged queries against ArcGIS-style REST ``query`` endpoints."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from .config import EngineConfig
from .data_api_client import request_json
from .errors import UpstreamAPIError
from .service_utils import chunked

logger = logging.getLogger(__name__)

SQL_NO_OP = "1=1"
ALL_FIELDS = ["*"]


def create_in_sql_query(
    column: str,
    values: Sequence[str | int | float],
    quote_values: bool,
    chunk_size: int = 500,
) -> str:
    """``(col IN (a,b) OR col IN (c,d))``, or the no-op clause when there are no values."""
    if not values:
        return SQL_NO_OP
    clauses = []
    for values_chunk in chunked(values, chunk_size):
        joined = ",".join(f"'{value}'" if quote_values else str(value) for value in values_chunk)
        clauses.append(f"{column} IN ({joined})")
    return f"({' OR '.join(clauses)})"


def create_query(
    out_fields: Sequence[str] | None = None,
    where: str = SQL_NO_OP,
    order_by_fields: Sequence[str] = (),
    return_geometry: bool = False,
) -> dict[str, Any]:
    fields = [name for name in (out_fields or ALL_FIELDS) if name.strip()]
    order_by = [name for name in order_by_fields if name.strip()]
    params: dict[str, Any] = {
        "where": where.strip() or SQL_NO_OP,
        "outFields": ",".join(fields or ALL_FIELDS),
        "returnGeometry": "true" if return_geometry else "false",
        "f": "json",
    }
    if order_by:
        params["orderByFields"] = ",".join(order_by)
    return params


def _query_endpoint(query_url: str) -> str:
    stripped = query_url.rstrip("/")
    return stripped if stripped.endswith("/query") else f"{stripped}/query"


async def run_query(
    client: httpx.AsyncClient,
    query_url: str,
    params: dict[str, Any],
    *,
    config: EngineConfig,
    page_size: int = 1000,
    fetch_all: bool = True,
    max_pages: int | None = None,
) -> list[dict[str, Any]]:
    """Return the attribute dicts of every feature matching the query.

    Pages are requested while the service reports ``exceededTransferLimit``; with
    ``fetch_all=False`` only ``max_pages`` pages (default one) are read.
    """
    endpoint = _query_endpoint(query_url)
    features: list[dict[str, Any]] = []
    pages_fetched = 0
    while True:
        page_params = {
            **params,
            "resultOffset": pages_fetched * page_size,
            "resultRecordCount": page_size,
        }
        payload = await request_json(
            client, endpoint, params=page_params, stage="consumer_data", config=config
        )
        if isinstance(payload, dict) and "error" in payload:
            error = payload["error"] or {}
            raise UpstreamAPIError(
                "consumer_data", f"Query failed: {error.get('message', 'unknown error')}"
            )

        page = payload if isinstance(payload, dict) else {}
        features.extend(
            feature.get("attributes", {}) for feature in page.get("features", []) or []
        )
        pages_fetched += 1

        if not page.get("exceededTransferLimit"):
            break
        if not fetch_all and pages_fetched >= (max_pages or 1):
            break

    logger.debug("Query %s returned %d features in %d pages", endpoint, len(features), pages_fetched)
    return features
