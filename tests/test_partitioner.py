from __future__ import annotations

from databuilder.metadata import MetadataRepository
from databuilder.partitioner import get_data_partitions_by_end_points, get_partition_key

from conftest import ACS_URL, CBP_URL, metadata_document


def _with_variables(*vintages: dict, variables: list[dict] | None = None) -> MetadataRepository:
    document = metadata_document()
    document["dataVariables"].extend(variables or [])
    document["dataVariableGeoTypeVintages"].extend(vintages)
    return MetadataRepository(document)


def test_same_endpoint_lands_in_one_partition(metadata):
    partitions = get_data_partitions_by_end_points(
        metadata, ["POP", "POV_PCT"], "county", "current"
    )

    assert list(partitions) == [ACS_URL]
    partition = partitions[ACS_URL]
    assert partition.data_source == "CENSUS_DATA_API"
    assert [parts.stat_variable.name for parts in partition.variable_parts] == [
        "B01003_001E",
        "B17001_002E",
        "B17001_001E",
    ]
    assert partition.map_tiger_ids == [False, False, False]
    assert partition.param_ind is None


def test_sector_field_splits_partitions():
    repo = _with_variables(
        {
            "variableId": "ESTAB_RETAIL",
            "geoTypeId": "county",
            "vintageId": "current",
            "Processor": "IDENTITY",
            "operand1": {
                "sources": [{"programId": "cbp", "Variable": "ESTAB", "Sector_Field": "NAICS2017"}]
            },
        },
        {
            "variableId": "ESTAB_TOTAL",
            "geoTypeId": "county",
            "vintageId": "current",
            "Processor": "IDENTITY",
            "operand1": {"sources": [{"programId": "cbp", "Variable": "ESTAB"}]},
        },
        variables=[
            {"ID": "ESTAB_RETAIL", "Name": "Retail establishments"},
            {"ID": "ESTAB_TOTAL", "Name": "All establishments"},
        ],
    )

    partitions = get_data_partitions_by_end_points(
        repo, ["ESTAB_RETAIL", "ESTAB_TOTAL"], "county", "current"
    )

    assert len(partitions) == 2
    assert partitions[f"{CBP_URL}NAICS2017"].param_ind == "NAICS2017"
    assert partitions[CBP_URL].param_ind is None


def test_race_groups_share_a_partition_and_collect_codes():
    repo = _with_variables(
        *(
            {
                "variableId": variable_id,
                "geoTypeId": "state",
                "vintageId": "current",
                "Processor": "IDENTITY",
                "operand1": {
                    "sources": [
                        {"programId": "cbp", "Variable": "FIRMPDEMP", "RACE_GROUP": race_group}
                    ]
                },
            }
            for variable_id, race_group in (("FIRMS_WHITE", "30"), ("FIRMS_BLACK", "40"))
        ),
        variables=[
            {"ID": "FIRMS_WHITE", "Name": "White-owned firms"},
            {"ID": "FIRMS_BLACK", "Name": "Black-owned firms"},
        ],
    )

    partitions = get_data_partitions_by_end_points(
        repo, ["FIRMS_WHITE", "FIRMS_BLACK"], "state", "current"
    )

    assert list(partitions) == [f"{CBP_URL}raceGroup"]
    assert partitions[f"{CBP_URL}raceGroup"].race_groups == [30, 40]


def test_missing_vintage_returns_no_partitions(metadata):
    assert get_data_partitions_by_end_points(metadata, ["POP", "EMP"], "county", "2017") == {}


def test_partition_key_appends_url_parameters(metadata):
    source = metadata.get_vintage_for_variable("EMP", "county", "current").operand1.sources[0]
    assert get_partition_key(source) == f"{CBP_URL}NAICS2017"
