from __future__ import annotations

import httpx
import pytest

from databuilder import namber as nambers
from databuilder.data_service import (
    DataService,
    build_geography_partitions,
    find_feature_moe,
    find_feature_moe_as_namber,
    find_feature_stat,
    find_feature_stat_as_namber,
    get_data_record,
)
from databuilder.models import CLUSTER_INDUSTRY_ID, NO_INDUSTRY_ID, DataRecord, GeoRecord
from databuilder.namber import Namber

from conftest import county


def test_partitions_group_by_parent_then_chunk(metadata):
    geos = [
        county("001", "Adams County"),
        county("031", "Cook County", state_fips="17"),
        county("003", "Ashland County"),
        county("005", "Barron County"),
    ]

    partitions = build_geography_partitions(geos, metadata.get_geo_type("county"), limit=2)

    assert [[geo.id for geo in batch] for batch in partitions] == [
        ["55001", "55003"],
        ["55005"],
        ["17031"],
    ]


def test_partitions_without_parent_fields_only_chunk(metadata):
    states = [county("", "Wisconsin"), county("", "Illinois", state_fips="17")]
    partitions = build_geography_partitions(states, metadata.get_geo_type("state"), limit=1)
    assert len(partitions) == 2


def _feature() -> GeoRecord:
    return GeoRecord(
        id="55001",
        name="Adams County",
        geo_type="county",
        data={
            "EMP": (
                {
                    "31-33": DataRecord(stat=Namber(10)),
                    "44-45": DataRecord(stat=nambers.na_namber("Suppressed (D)")),
                },
                DataRecord(stat=Namber(10)),
            ),
            "POP": (
                {NO_INDUSTRY_ID: DataRecord(stat=Namber(1234), moe=Namber(45))},
                DataRecord(stat=Namber(1234), moe=Namber(45)),
            ),
        },
    )


def test_data_record_lookup_uses_industry_like_id(metadata):
    emp = metadata.get_vintage_for_variable("EMP", "county", "current")
    pop = metadata.get_vintage_for_variable("POP", "county", "current")
    feature = _feature()

    assert get_data_record(feature.data, emp, "31-33", metadata).stat == Namber(10)
    assert get_data_record(feature.data, emp, "11", metadata) is None
    # Non-industry variables answer every industry from the same record.
    assert get_data_record(feature.data, pop, "31-33", metadata).stat == Namber(1234)
    assert get_data_record(feature.data, pop, CLUSTER_INDUSTRY_ID, metadata).moe == Namber(45)


def test_find_feature_values(metadata):
    emp = metadata.get_vintage_for_variable("EMP", "county", "current")
    pop = metadata.get_vintage_for_variable("POP", "county", "current")
    feature = _feature()

    assert find_feature_stat(feature, emp, "31-33", metadata) == 10
    assert find_feature_stat(feature, emp, "44-45", metadata) is None
    assert find_feature_stat(feature, None, "31-33", metadata) is None
    assert find_feature_stat_as_namber(feature, emp, "44-45", metadata).message == "Suppressed (D)"
    assert nambers.is_na(find_feature_stat_as_namber(feature, emp, "11", metadata))

    assert find_feature_moe(feature, pop, NO_INDUSTRY_ID, metadata) == 45
    assert find_feature_moe(feature, emp, "31-33", metadata) is None
    assert find_feature_moe_as_namber(feature, emp, "31-33", metadata) is None
    assert nambers.is_na(find_feature_moe_as_namber(feature, None, "31-33", metadata))


@pytest.mark.asyncio
async def test_create_wires_one_fetcher_per_source(metadata, config):
    async with httpx.AsyncClient() as client:
        service = DataService.create(metadata, config, client)

    assert set(service.api_service.fetchers) == {
        "CENSUS_DATA_API",
        "ESRI_CONSUMER_DATA",
        "USER_UPLOADED_DATA",
    }
