from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from databuilder.config import EngineConfig
from databuilder.metadata import MetadataRepository
from databuilder.models import DetailedGeo

ACS_URL = "https://api.census.gov/data/2022/acs/acs5"
ACS_2017_URL = "https://api.census.gov/data/2017/acs/acs5"
CBP_URL = "https://api.census.gov/data/2021/cbp"
CONSUMER_URL = "https://consumer.example.com/arcgis/rest/services"


def metadata_document() -> dict[str, Any]:
    return {
        "programs": [
            {
                "ID": "acs",
                "Name": "American Community Survey",
                "Source": "CENSUS_DATA_API",
                "Year": "2018-2022",
                "Dataset": "ACS 5-year",
                "API_URL": ACS_URL,
                "ReliabilityStrategy": "ACS_MOE",
            },
            {
                "ID": "acs2017",
                "Name": "American Community Survey 2017",
                "Source": "CENSUS_DATA_API",
                "Year": "2013-2017",
                "Dataset": "ACS 5-year",
                "API_URL": ACS_2017_URL,
                "ReliabilityStrategy": "ACS_MOE",
            },
            {
                "ID": "cbp",
                "Name": "County Business Patterns",
                "Source": "CENSUS_DATA_API",
                "Year": "2021",
                "Dataset": "CBP",
                "API_URL": CBP_URL,
                "FlagStrategy": "UNDERSCORE_F",
            },
            {
                "ID": "spending",
                "Name": "Consumer Spending",
                "Source": "ESRI_CONSUMER_DATA",
                "Year": "2023",
                "Dataset": "Consumer Spending",
                "API_URL": "${consumerDataAPIUrl}/spending",
            },
        ],
        "geoTypes": [
            {
                "ID": "county",
                "Name": "County",
                "GeoIdField": "GEOID",
                "TigerIdField": "COUNTY",
                "TigerPartitionFields": ["STATE"],
                "TigerFIPSFields": ["STATE", "COUNTY"],
                "DataAPIIdField": "county",
                "DataAPIPartitionFields": ["state"],
                "DataAPIFIPSFields": ["state", "county"],
                "ConsumerDataIdField": "ID",
            },
            {
                "ID": "state",
                "Name": "State",
                "GeoIdField": "GEOID",
                "TigerIdField": "STATE",
                "TigerFIPSFields": ["STATE"],
                "DataAPIIdField": "state",
                "DataAPIFIPSFields": ["state"],
                "ConsumerDataIdField": "ID",
            },
        ],
        "dataVariables": [
            {"ID": "POP", "Name": "Total population"},
            {"ID": "EMP", "Name": "Employees"},
            {"ID": "POV_PCT", "Name": "Percent below poverty", "Round": 1},
            {"ID": "SPEND", "Name": "Spending index", "Round": 1},
        ],
        "dataVariableGeoTypeVintages": [
            {
                "variableId": "POP",
                "geoTypeId": "county",
                "vintageId": "current",
                "Processor": "IDENTITY",
                "operand1": {"sources": [{"programId": "acs", "Variable": "B01003_001E"}]},
            },
            {
                "variableId": "POP",
                "geoTypeId": "county",
                "vintageId": "2017",
                "Processor": "IDENTITY",
                "operand1": {"sources": [{"programId": "acs2017", "Variable": "B01003_001E"}]},
            },
            {
                "variableId": "POP",
                "geoTypeId": "state",
                "vintageId": "current",
                "Processor": "IDENTITY",
                "operand1": {"sources": [{"programId": "acs", "Variable": "B01003_001E"}]},
            },
            {
                "variableId": "EMP",
                "geoTypeId": "county",
                "vintageId": "current",
                "Processor": "IDENTITY",
                "operand1": {
                    "sources": [
                        {"programId": "cbp", "Variable": "EMP", "Sector_Field": "NAICS2017"}
                    ]
                },
            },
            {
                "variableId": "POV_PCT",
                "geoTypeId": "county",
                "vintageId": "current",
                "Processor": "PERCENT",
                "Round": 1,
                "operand1": {"sources": [{"programId": "acs", "Variable": "B17001_002E"}]},
                "operand2": {"sources": [{"programId": "acs", "Variable": "B17001_001E"}]},
            },
            {
                "variableId": "SPEND",
                "geoTypeId": "county",
                "vintageId": "current",
                "Processor": "IDENTITY",
                "Round": 1,
                "operand1": {"sources": [{"programId": "spending", "Variable": "X1001_X"}]},
            },
        ],
        "placeMapping": {},
        "usStates": [
            {"name": "Wisconsin", "abbreviation": "WI", "FIPS": "55"},
            {"name": "Illinois", "abbreviation": "IL", "FIPS": "17"},
        ],
    }


@pytest.fixture
def metadata() -> MetadataRepository:
    return MetadataRepository(metadata_document())


@pytest.fixture
def metadata_path(tmp_path) -> str:
    path = tmp_path / "metadata.json"
    path.write_text(json.dumps(metadata_document()), encoding="utf-8")
    return str(path)


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(
        census_api_key="test-key",
        data_api_proxy_url="https://proxy.example.com/data",
        consumer_data_api_url=CONSUMER_URL,
        retries=0,
        timeout=5.0,
    )


def county(county_fips: str, name: str, state_fips: str = "55") -> DetailedGeo:
    geoid = f"{state_fips}{county_fips}"
    return DetailedGeo(
        id=geoid,
        name=name,
        geo_type_id="county",
        attributes={"GEOID": geoid, "STATE": state_fips, "COUNTY": county_fips},
    )


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
