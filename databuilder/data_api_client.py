from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Sequence
from urllib.parse import urlsplit

import httpx

from .config import EngineConfig
from .errors import UpstreamAPIError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
USER_AGENT = "databuilder/0.1"

QWI_PATHS = ("/data/timeseries/qwi/sa", "/data/timeseries/qwi/se")
# QWI status flags that do not mean suppression.
QWI_NON_SUPPRESSING_FLAGS = {"1", "9"}

ResponseRecord = list[list[Any]]


def _backoff_seconds(attempt: int) -> float:
    return min(8.0, 0.5 * (2**attempt))


def _short_error_text(text: str, limit: int = 240) -> str:
    one_line = " ".join(text.split())
    if len(one_line) <= limit:
        return one_line
    return one_line[:limit] + "..."


async def request_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    method: str = "GET",
    params: dict[str, Any] | None = None,
    content: str | None = None,
    stage: str,
    config: EngineConfig,
) -> Any:
    last_error: Exception | None = None
    headers = {"User-Agent": USER_AGENT}
    if content is not None:
        headers["Content-Type"] = "text/plain"
    for attempt in range(config.retries + 1):
        try:
            response = await client.request(
                method,
                url,
                params=params,
                content=content,
                timeout=config.timeout,
                headers=headers,
            )
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            last_error = exc
            if attempt < config.retries:
                await asyncio.sleep(_backoff_seconds(attempt))
                continue
            raise UpstreamAPIError(stage, f"Network error after retries: {exc!s}") from exc

        status = response.status_code
        if status in RETRYABLE_STATUS_CODES:
            last_error = UpstreamAPIError(
                stage, f"HTTP {status}: {_short_error_text(response.text)}"
            )
            if attempt < config.retries:
                await asyncio.sleep(_backoff_seconds(attempt))
                continue
            raise last_error

        if 400 <= status < 500:
            raise UpstreamAPIError(stage, f"HTTP {status}: {_short_error_text(response.text)}")

        if status == 204:
            return []

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamAPIError(
                stage, f"Invalid JSON in upstream response (HTTP {status})"
            ) from exc

    if last_error is not None:
        raise UpstreamAPIError(stage, f"Failed request after retries: {last_error!s}")
    raise UpstreamAPIError(stage, "Failed request")


def interpolate(template: str, params: dict[str, Any]) -> str:
    output = template
    for name, value in params.items():
        if isinstance(value, (list, tuple)):
            value = ",".join(str(item) for item in value)
        output = output.replace("${" + name + "}", str(value))
    return output


def replace_host(url: str, host: str | None) -> str:
    if not host:
        return url
    return url.replace(urlsplit(url).netloc, host, 1)


def filter_qwi_row(url: str, headers: Sequence[str], row: Sequence[Any]) -> list[Any]:
    if not any(path in url for path in QWI_PATHS):
        return list(row)
    return [
        "" if header.startswith("s") and row[index] in QWI_NON_SUPPRESSING_FLAGS else row[index]
        for index, header in enumerate(headers)
    ]


class DataApiClient:
    """Query builder and transport for the statistical data API.

    Long URLs are sent through the proxy as a POST with the URL as a plain text
    body; everything else is a GET with the API key appended.
    """

    stage = "data_api"

    def __init__(self, client: httpx.AsyncClient, config: EngineConfig):
        self.client = client
        self.config = config

    def build_geo_param(
        self,
        geo_type_id: str,
        geo_ids: list[str],
        in_clause: str | None = None,
        geo_format: str | None = None,
    ) -> str:
        if geo_format:
            pieces: list[str] = []
            for piece in geo_format.split("?"):
                if (
                    (piece.startswith("&for=") or piece.startswith("&${GEOTYPEID}"))
                    and geo_type_id
                    and geo_ids
                ):
                    if geo_type_id == "us" and geo_ids[0] == "":
                        geo_ids = ["1", *geo_ids[1:]]
                    pieces.append(
                        interpolate(
                            piece,
                            {
                                "geoTypeId": geo_type_id,
                                "geotypeId": geo_type_id,
                                "GEOTYPEID": geo_type_id.upper(),
                                "geoIds": geo_ids,
                            },
                        )
                    )
                if piece.startswith("&in=") and in_clause:
                    pieces.append(interpolate(piece, {"inClause": in_clause}))
            return "".join(pieces)

        if not geo_ids:
            return ""
        param = f"&for={geo_type_id}:{','.join(geo_ids)}"
        if in_clause is not None:
            param = f"{param}&in={in_clause}"
        return param

    def build_url(
        self,
        canonical_url: str,
        variables: Sequence[str],
        geo_type_id: str,
        geo_ids: list[str],
        in_clause: str | None = None,
        geo_format: str | None = None,
    ) -> tuple[str, dict[str, str]]:
        """Return the request URL and the header renames to undo in the response."""
        header_reverse_map: dict[str, str] = {}
        path = urlsplit(canonical_url).path
        api_url = replace_host(canonical_url, self.config.data_api_host)

        replaced = self.config.geo_type_replacements_for_path.get(path, {}).get(geo_type_id)
        query_geo_type = replaced or geo_type_id
        if query_geo_type != geo_type_id:
            header_reverse_map[query_geo_type] = geo_type_id

        geo_param = self.build_geo_param(query_geo_type, list(geo_ids), in_clause, geo_format)
        separator = "&" if "?" in api_url else "?"
        return f"{api_url}{separator}get={','.join(variables)}{geo_param}", header_reverse_map

    async def fetch_data(
        self,
        canonical_url: str,
        variables: Sequence[str],
        geo_type_id: str,
        geo_ids: list[str],
        in_clause: str | None = None,
        geo_format: str | None = None,
    ) -> ResponseRecord:
        url, header_reverse_map = self.build_url(
            canonical_url, variables, geo_type_id, geo_ids, in_clause, geo_format
        )
        using_proxy = len(url) >= self.config.url_length_limit
        started = time.perf_counter()
        try:
            if using_proxy:
                raw = await request_json(
                    self.client,
                    self.config.data_api_proxy_url,
                    method="POST",
                    content=url,
                    stage=self.stage,
                    config=self.config,
                )
            else:
                raw = await request_json(
                    self.client,
                    f"{url}&key={self.config.census_api_key}",
                    stage=self.stage,
                    config=self.config,
                )
        except UpstreamAPIError:
            logger.error("Data API request failed url=%s proxy=%s", url, using_proxy)
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            "Data API request ok url=%s proxy=%s elapsed_ms=%.1f", url, using_proxy, elapsed_ms
        )
        if not raw:
            return []

        headers, *body = raw
        headers = ["zip code tabulation area" if h == "zip code" else h for h in headers]
        headers = [header_reverse_map.get(h, h) for h in headers]
        rows = [filter_qwi_row(url, headers, row) for row in body]
        return [headers, *rows]
