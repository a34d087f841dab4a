"""Runtime types shared by the partitioner, fetchers, orchestrator and tabulators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

from .namber import Namber

NO_INDUSTRY_ID = "_NO_INDUSTRY_"
CLUSTER_INDUSTRY_ID = "_INDUSTRY_CLUSTER_"
CURRENT_VINTAGE = "current"

ProgramSource = Literal["CENSUS_DATA_API", "ESRI_CONSUMER_DATA", "USER_UPLOADED_DATA"]
DataVariableProcessor = Literal["IDENTITY", "SUM", "RATIO", "PERCENT"]
OperandProcessor = Literal["IDENTITY", "SUM"]
ResultOrder = Literal["ASCENDING", "DESCENDING"]


@dataclass(frozen=True)
class VarInfo:
    name: str
    alias: str


@dataclass(frozen=True)
class VarParts:
    stat_variable: VarInfo
    moe_variable: VarInfo | None = None
    flag_variable: VarInfo | None = None


@dataclass(frozen=True)
class ApiVariable:
    """One concrete upstream column, plus everything needed to query and alias it."""

    source: str
    api_url: str
    var_parts: VarParts
    program_name: str = ""
    program: str = ""
    year: str = ""
    dataset: str = ""
    map_tiger_id: bool = False
    map_state_id: bool = False
    geo_format: str = ""
    url_parameters: str | None = None
    sector_field: str | None = None
    race_group: str | None = None
    sex_group: str | None = None
    vet_group: str | None = None
    reliability_strategy: str | None = None
    flag_strategy: str | None = None


@dataclass(frozen=True)
class DataVariableOperand:
    sources: tuple[ApiVariable, ...]
    operand_processor: str = "IDENTITY"


@dataclass(frozen=True)
class DataVariableGeoTypeVintage:
    variable_id: str
    geo_type_id: str
    vintage_id: str
    processor: str
    operand1: DataVariableOperand
    operand2: DataVariableOperand | None = None
    scale_factor: float = 1
    round: int = 0
    uom_prefix: str = ""
    uom_suffix: str = ""
    years: tuple[str, ...] = ()
    datasets: tuple[str, ...] = ()

    @property
    def all_sources(self) -> tuple[ApiVariable, ...]:
        operand2 = self.operand2.sources if self.operand2 is not None else ()
        return (*self.operand1.sources, *operand2)


@dataclass
class DataVariablePartition:
    """Sources that can be fetched from one endpoint with one set of static parameters."""

    api_url: str
    data_source: str
    geo_format: str = ""
    param_ind: str | None = None
    map_tiger_ids: list[bool] = field(default_factory=list)
    map_state_ids: list[bool] = field(default_factory=list)
    variable_parts: list[VarParts] = field(default_factory=list)
    race_groups: list[int] | None = None
    sex_groups: list[str] | None = None
    vet_groups: list[str] | None = None


@dataclass
class DetailedGeo:
    id: str
    name: str
    geo_type_id: str
    attributes: dict[str, Any] = field(default_factory=dict)


# variable alias -> industry id -> value
VariableMap = dict[str, dict[str, Namber]]


@dataclass
class ApiRecord:
    id: str
    name: str
    geo_type: str
    data: VariableMap = field(default_factory=dict)


@dataclass(frozen=True)
class DataRecord:
    stat: Namber
    moe: Namber | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"stat": self.stat.to_dict()}
        if self.moe is not None:
            out["moe"] = self.moe.to_dict()
        return out


# variable id -> (per-industry records, cluster record)
ClusteredVariableMap = dict[str, tuple[dict[str, DataRecord], Union[DataRecord, None]]]


@dataclass
class GeoRecord:
    id: str
    name: str
    geo_type: str
    data: ClusteredVariableMap = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "geo_type": self.geo_type,
            "data": clustered_map_to_dict(self.data),
        }


def clustered_map_to_dict(data: ClusteredVariableMap) -> dict[str, Any]:
    return {
        variable_id: [
            {industry_id: record.to_dict() for industry_id, record in industries.items()},
            cluster.to_dict() if cluster is not None else None,
        ]
        for variable_id, (industries, cluster) in data.items()
    }


# geo type id -> batches of geographies sized for one upstream request
GeographyPartitions = list[list[DetailedGeo]]
GeographyPartitionsMap = dict[str, GeographyPartitions]

TabularResult = dict[str, list[GeoRecord]]
SummaryResult = ClusteredVariableMap


@dataclass(frozen=True)
class TabularParameters:
    data_variable_ids: list[str]
    industry_id_list: list[str]
    geographies_map: GeographyPartitionsMap
    vintage: str = CURRENT_VINTAGE


@dataclass(frozen=True)
class TimeSeriesParameters:
    data_variable_id: str
    industry_id_list: list[str]
    geographies_map: GeographyPartitionsMap


@dataclass(frozen=True)
class GeographicComparisonParameters:
    data_variable_id: str
    industry_id_list: list[str]
    geographies_map: GeographyPartitionsMap
    parent_geos: GeographyPartitionsMap
    vintage: str = CURRENT_VINTAGE
    geo_or_region_name: str | None = None


@dataclass(frozen=True)
class GeographicRankingParameters:
    data_variable_id: str
    industry_id_list: list[str]
    geographies_map: GeographyPartitionsMap
    selected_geography: DetailedGeo
    result_count: int
    result_order: ResultOrder = "DESCENDING"
    vintage: str = CURRENT_VINTAGE
    geography_per_request_limit: int = 1100


@dataclass(frozen=True)
class TimeSeriesRecord:
    vintage: str
    name: str
    data: SummaryResult


GeographicComparisonResult = tuple[SummaryResult, TabularResult]
GeographicRankingResult = tuple[list[GeoRecord], list[GeoRecord]]


@dataclass(frozen=True)
class UploadInfo:
    upload_id: int
    geo_type_id: str


@dataclass(frozen=True)
class UploadedDataVariable:
    id: str
    name: str
    round: int = 0


@dataclass
class UserUploadedData:
    """Header row followed by data rows; the first column is the geography id."""

    attribute_data: list[list[Any]] = field(default_factory=lambda: [[]])
    data_variables: list[UploadedDataVariable] = field(default_factory=list)
