from __future__ import annotations

import httpx
import pytest

from databuilder import namber as nambers
from databuilder.consumer_data_fetcher import ConsumerDataFetcher
from databuilder.errors import UpstreamAPIError
from databuilder.models import NO_INDUSTRY_ID, DataVariablePartition, VarInfo, VarParts
from databuilder.partitioner import get_data_partitions_by_end_points
from databuilder.query_utils import create_in_sql_query, create_query, run_query

from conftest import CONSUMER_URL, county, mock_client


def test_in_clause_chunks_and_no_op():
    assert create_in_sql_query("ID", [], True) == "1=1"
    assert create_in_sql_query("ID", ["55001", "55003"], True) == "(ID IN ('55001','55003'))"
    assert create_in_sql_query("NAICS", [1, 2, 3], False, chunk_size=2) == (
        "(NAICS IN (1,2) OR NAICS IN (3))"
    )


def test_create_query_defaults():
    params = create_query()
    assert params == {"where": "1=1", "outFields": "*", "returnGeometry": "false", "f": "json"}

    params = create_query(["ID", "X1001_X"], "ID = '1'", ["ID"])
    assert params["outFields"] == "ID,X1001_X"
    assert params["orderByFields"] == "ID"


@pytest.mark.asyncio
async def test_run_query_follows_transfer_limit(config):
    offsets: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        offsets.append(request.url.params["resultOffset"])
        if request.url.params["resultOffset"] == "0":
            return httpx.Response(
                200,
                json={"features": [{"attributes": {"ID": "1"}}], "exceededTransferLimit": True},
            )
        return httpx.Response(200, json={"features": [{"attributes": {"ID": "2"}}]})

    async with mock_client(handler) as http:
        rows = await run_query(http, f"{CONSUMER_URL}/spending", create_query(), config=config, page_size=1)

    assert offsets == ["0", "1"]
    assert rows == [{"ID": "1"}, {"ID": "2"}]


@pytest.mark.asyncio
async def test_run_query_service_error(config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": {"code": 400, "message": "Invalid query"}})

    async with mock_client(handler) as http:
        with pytest.raises(UpstreamAPIError) as exc_info:
            await run_query(http, f"{CONSUMER_URL}/spending", create_query(), config=config)
    assert "Invalid query" in str(exc_info.value)


@pytest.mark.asyncio
async def test_fetcher_matches_features_by_geo_id(metadata, config):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json={"features": [{"attributes": {"ID": "55001", "X1001_X": 104.2}}]}
        )

    partition = get_data_partitions_by_end_points(metadata, ["SPEND"], "county", "current")[
        "${consumerDataAPIUrl}/spending"
    ]
    geos = [county("001", "Adams County"), county("003", "Ashland County")]

    async with mock_client(handler) as http:
        records = await ConsumerDataFetcher(http, config).fetch(
            partition, metadata.get_geo_type("county"), geos, ["31-33"]
        )

    request = seen[0]
    assert request.url.path == "/arcgis/rest/services/spending/query"
    assert request.url.params["where"] == "(ID IN ('55001','55003'))"
    assert request.url.params["outFields"] == "ID,X1001_X"

    alias = "SPEND_X1001_X_1_1"
    assert records[0].data[alias][NO_INDUSTRY_ID] == nambers.Namber(104.2)
    assert nambers.is_na(records[1].data[alias][NO_INDUSTRY_ID])


@pytest.mark.asyncio
async def test_fetcher_industry_filter_and_flags(metadata, config):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "features": [
                    {"attributes": {"ID": "55001", "NAICS": "44-45", "SALES": "12", "SALES_F": None}},
                    {"attributes": {"ID": "55001", "NAICS": "31-33", "SALES": "30", "SALES_F": "D"}},
                ]
            },
        )

    partition = DataVariablePartition(
        api_url="${consumerDataAPIUrl}/sales",
        data_source="ESRI_CONSUMER_DATA",
        param_ind="NAICS",
        variable_parts=[
            VarParts(
                stat_variable=VarInfo("SALES", "SALES_SALES_1_1"),
                flag_variable=VarInfo("SALES_F", "SALES_SALES_F_1_1"),
            )
        ],
    )

    async with mock_client(handler) as http:
        records = await ConsumerDataFetcher(http, config).fetch(
            partition, metadata.get_geo_type("county"), [county("001", "Adams County")], ["31-33", "44-45"]
        )

    assert seen[0].url.params["where"] == "(ID IN ('55001')) AND (NAICS IN ('31-33','44-45'))"
    values = records[0].data["SALES_SALES_1_1"]
    assert values["44-45"] == nambers.Namber(12)
    assert values["31-33"].message == "Suppressed (D)"


@pytest.mark.asyncio
async def test_empty_flag_is_not_a_suppression(metadata, config):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"features": [{"attributes": {"ID": "55001", "SALES": "12", "SALES_F": ""}}]}
        )

    partition = DataVariablePartition(
        api_url="${consumerDataAPIUrl}/sales",
        data_source="ESRI_CONSUMER_DATA",
        variable_parts=[
            VarParts(
                stat_variable=VarInfo("SALES", "SALES_SALES_1_1"),
                flag_variable=VarInfo("SALES_F", "SALES_SALES_F_1_1"),
            )
        ],
    )

    async with mock_client(handler) as http:
        records = await ConsumerDataFetcher(http, config).fetch(
            partition, metadata.get_geo_type("county"), [county("001", "Adams County")], []
        )

    assert records[0].data["SALES_SALES_1_1"][NO_INDUSTRY_ID] == nambers.Namber(12)
