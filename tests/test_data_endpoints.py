"""Tests for the /api/data endpoints.

Uses FastAPI TestClient with an httpx MockTransport standing in for the
statistical data API, so no real network calls are made.
"""
from __future__ import annotations

import importlib

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import mock_client

ADAMS = {
    "id": "55001",
    "name": "Adams County",
    "attributes": {"GEOID": "55001", "STATE": "55", "COUNTY": "001"},
}
ASHLAND = {
    "id": "55003",
    "name": "Ashland County",
    "attributes": {"GEOID": "55003", "STATE": "55", "COUNTY": "003"},
}


def _census_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json=[
            ["B01003_001E", "B01003_001M", "state", "county"],
            ["1234", "45", "55", "001"],
            ["800", "30", "55", "003"],
        ],
    )


def _load_app(monkeypatch, metadata_path, handler):
    monkeypatch.setenv("DATABUILDER_METADATA_PATH", metadata_path)
    monkeypatch.setenv("DATABUILDER_CENSUS_API_KEY", "test-key")
    monkeypatch.setenv("DATABUILDER_RETRIES", "0")

    import databuilder.main as main_module

    importlib.reload(main_module)
    main_module.get_metadata.cache_clear()
    monkeypatch.setattr(main_module, "create_http_client", lambda: mock_client(handler))
    return main_module


@pytest.fixture()
def client(monkeypatch, metadata_path):
    main_module = _load_app(monkeypatch, metadata_path, _census_handler)
    return TestClient(main_module.app)


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_tabular_returns_stat_and_moe_per_geography(client):
    resp = client.post(
        "/api/data/tabular",
        json={
            "data_variable_ids": ["POP"],
            "industry_ids": ["_NO_INDUSTRY_"],
            "geographies": {"county": [ADAMS, ASHLAND]},
        },
    )

    assert resp.status_code == 200
    records = resp.json()["data"]["county"]
    assert [record["id"] for record in records] == ["55001", "55003"]
    industries, cluster = records[0]["data"]["POP"]
    assert cluster == {"stat": {"value": 1234}, "moe": {"value": 45}}
    assert industries["_NO_INDUSTRY_"]["stat"] == {"value": 1234}


def test_summary_pools_geographies(client):
    resp = client.post(
        "/api/data/summary",
        json={
            "data_variable_ids": ["POP"],
            "industry_ids": ["_NO_INDUSTRY_"],
            "geographies": {"county": [ADAMS, ASHLAND]},
        },
    )

    assert resp.status_code == 200
    _, cluster = resp.json()["data"]["POP"]
    assert cluster["stat"] == {"value": 2034}


def test_ranking_rejects_selected_geography_outside_peers(client):
    resp = client.post(
        "/api/data/ranking",
        json={
            "data_variable_id": "POP",
            "industry_ids": ["_NO_INDUSTRY_"],
            "geographies": {"county": [ADAMS, ASHLAND]},
            "selected_geography_id": "55999",
        },
    )
    assert resp.status_code == 422


def test_ranking_lists_peers(client):
    resp = client.post(
        "/api/data/ranking",
        json={
            "data_variable_id": "POP",
            "industry_ids": ["_NO_INDUSTRY_"],
            "geographies": {"county": [ADAMS, ASHLAND]},
            "selected_geography_id": "55001",
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    assert [record["id"] for record in body["selected"]] == ["55001"]
    assert [record["id"] for record in body["peers"]] == ["55003"]


def test_unknown_geo_type_is_404(client):
    resp = client.post(
        "/api/data/tabular",
        json={
            "data_variable_ids": ["POP"],
            "industry_ids": ["_NO_INDUSTRY_"],
            "geographies": {"tract": [ADAMS]},
        },
    )
    assert resp.status_code == 404
    assert "tract" in resp.json()["detail"]


def test_empty_geographies_are_rejected(client):
    resp = client.post(
        "/api/data/tabular",
        json={"data_variable_ids": ["POP"], "industry_ids": ["_NO_INDUSTRY_"], "geographies": {}},
    )
    assert resp.status_code == 422


def test_upstream_failure_is_502(monkeypatch, metadata_path):
    main_module = _load_app(
        monkeypatch, metadata_path, lambda request: httpx.Response(500, text="unavailable")
    )
    client = TestClient(main_module.app)

    resp = client.post(
        "/api/data/tabular",
        json={
            "data_variable_ids": ["POP"],
            "industry_ids": ["_NO_INDUSTRY_"],
            "geographies": {"county": [ADAMS]},
        },
    )

    assert resp.status_code == 502
    assert resp.json()["detail"].startswith("[data_api]")


def test_missing_metadata_path_is_404(monkeypatch, metadata_path):
    main_module = _load_app(monkeypatch, metadata_path, _census_handler)
    monkeypatch.delenv("DATABUILDER_METADATA_PATH")
    main_module.get_metadata.cache_clear()
    client = TestClient(main_module.app)

    resp = client.post(
        "/api/data/summary",
        json={
            "data_variable_ids": ["POP"],
            "industry_ids": ["_NO_INDUSTRY_"],
            "geographies": {"county": [ADAMS]},
        },
    )
    assert resp.status_code == 404


def test_uploaded_columns_become_variables(client):
    resp = client.post(
        "/api/data/uploads",
        json={
            "upload_id": 1,
            "geo_type_id": "county",
            "attribute_data": [["GEOID", "stores"], ["55001", 12], ["55003", "n/a"]],
        },
    )
    assert resp.status_code == 200
    assert resp.json() == {"upload_id": 1, "variables": ["stores"]}

    resp = client.post(
        "/api/data/tabular",
        json={
            "data_variable_ids": ["stores"],
            "industry_ids": ["_NO_INDUSTRY_"],
            "geographies": {"county": [ADAMS, ASHLAND]},
        },
    )

    assert resp.status_code == 200
    records = resp.json()["data"]["county"]
    assert records[0]["data"]["stores"][1]["stat"] == {"value": 12}
    assert records[1]["data"]["stores"][1]["stat"]["value"] == "n/a"


def test_upload_requires_header_row(client):
    resp = client.post(
        "/api/data/uploads",
        json={"upload_id": 1, "geo_type_id": "county", "attribute_data": [[1, 2]]},
    )
    assert resp.status_code == 422
