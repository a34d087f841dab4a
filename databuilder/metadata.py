"""Read-only metadata catalog: programs, geo types, data variables and their vintages.

The over-the-wire document keeps the spreadsheet column names (``ID``,
``GeoIdField``, ``API_URL`` ...). The pydantic models below accept those names
as aliases and expose snake_case attributes. ``MetadataRepository`` resolves a
variable's operand sources into concrete ``ApiVariable`` references with the
aliases the fetchers and tabulators use as merge keys.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import MetadataNotFoundError, assert_never
from .models import (
    CURRENT_VINTAGE,
    NO_INDUSTRY_ID,
    ApiVariable,
    DataVariableGeoTypeVintage,
    DataVariableOperand,
    UploadedDataVariable,
    UploadInfo,
    VarInfo,
    VarParts,
)


class _MetadataModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class Program(_MetadataModel):
    id: str = Field(..., alias="ID")
    name: str = Field(..., alias="Name")
    source: Literal["CENSUS_DATA_API", "ESRI_CONSUMER_DATA"] = Field(..., alias="Source")
    program: str = Field(default="", alias="Program")
    year: str = Field(default="", alias="Year")
    dataset: str = Field(default="", alias="Dataset")
    api_url: str = Field(..., alias="API_URL")
    map_tiger_id: bool = Field(default=False, alias="MapTigerId")
    map_state_id: bool = Field(default=False, alias="MapStateId")
    geo_format: str = Field(default="", alias="GeoFormat")
    reliability_strategy: Optional[str] = Field(default=None, alias="ReliabilityStrategy")
    flag_strategy: Optional[str] = Field(default=None, alias="FlagStrategy")


class GeoType(_MetadataModel):
    id: str = Field(..., alias="ID")
    name: str = Field(..., alias="Name")
    geo_id_field: str = Field(..., alias="GeoIdField")
    display_field: str = Field(default="NAME", alias="DisplayField")
    state_field: Optional[str] = Field(default=None, alias="StateField")
    tiger_id_field: str = Field(..., alias="TigerIdField")
    tiger_partition_fields: list[str] = Field(default_factory=list, alias="TigerPartitionFields")
    tiger_fips_fields: list[str] = Field(default_factory=list, alias="TigerFIPSFields")
    data_api_id_field: str = Field(..., alias="DataAPIIdField")
    data_api_partition_fields: list[str] = Field(default_factory=list, alias="DataAPIPartitionFields")
    data_api_fips_fields: list[str] = Field(default_factory=list, alias="DataAPIFIPSFields")
    consumer_data_id_field: str = Field(default="", alias="ConsumerDataIdField")
    map_tiger_id: bool = Field(default=False, alias="MapTigerId")
    map_state_id: bool = Field(default=False, alias="MapStateId")


class DataVariable(_MetadataModel):
    id: str = Field(..., alias="ID")
    name: str = Field(..., alias="Name")
    round: int = Field(default=0, alias="Round")
    scale_factor: float = Field(default=1, alias="ScaleFactor")
    uom_prefix: str = Field(default="", alias="UOM_Prefix")
    uom_suffix: str = Field(default="", alias="UOM_Suffix")
    format_number: bool = Field(default=True, alias="Format_Number")
    disable_multi_industry_cluster: bool = Field(default=False, alias="DisableMultiIndustryCluster")
    upload_info: Optional[UploadInfo] = None


class DataVariableSource(_MetadataModel):
    program_id: str = Field(..., alias="programId")
    variable: str = Field(..., alias="Variable")
    url_parameters: Optional[str] = Field(default=None, alias="URL_Parameters")
    sector_field: Optional[str] = Field(default=None, alias="Sector_Field")
    race_group: Optional[str] = Field(default=None, alias="RACE_GROUP")
    sex: Optional[str] = Field(default=None, alias="SEX")
    vet_group: Optional[str] = Field(default=None, alias="VET_GROUP")


class DataVariableOperandDoc(_MetadataModel):
    sources: list[DataVariableSource]
    operand_processor: Literal["IDENTITY", "SUM"] = Field(default="IDENTITY", alias="operandProcessor")


class DataVariableGeoTypeVintageDoc(_MetadataModel):
    variable_id: str = Field(..., alias="variableId")
    geo_type_id: str = Field(..., alias="geoTypeId")
    vintage_id: str = Field(..., alias="vintageId")
    processor: Literal["IDENTITY", "SUM", "RATIO", "PERCENT"] = Field(..., alias="Processor")
    operand1: DataVariableOperandDoc
    operand2: Optional[DataVariableOperandDoc] = None
    round: int = Field(default=0, alias="Round")
    scale_factor: float = Field(default=1, alias="ScaleFactor")
    uom_prefix: str = Field(default="", alias="UOM_Prefix")
    uom_suffix: str = Field(default="", alias="UOM_Suffix")


class PlaceMappingEntry(_MetadataModel):
    county: Optional[str] = Field(default=None, alias="COUNTY")
    acs_geoid: Optional[str] = Field(default=None, alias="ACS_GEOID")


class USState(_MetadataModel):
    name: str
    abbreviation: str
    fips: str = Field(..., alias="FIPS")


class MetadataDocument(_MetadataModel):
    programs: list[Program] = Field(default_factory=list)
    geo_types: list[GeoType] = Field(default_factory=list, alias="geoTypes")
    data_variables: list[DataVariable] = Field(default_factory=list, alias="dataVariables")
    data_variable_geo_type_vintages: list[DataVariableGeoTypeVintageDoc] = Field(
        default_factory=list, alias="dataVariableGeoTypeVintages"
    )
    place_mapping: dict[str, PlaceMappingEntry] = Field(default_factory=dict, alias="placeMapping")
    us_states: list[USState] = Field(default_factory=list, alias="usStates")


def _find_by_id(records: list[Any], record_id: str, object_type: str) -> Any:
    if not isinstance(record_id, str):
        raise TypeError(f"ID {record_id!r} is not of type string")
    if not record_id.strip():
        raise ValueError("ID cannot be an empty string")
    for record in records:
        if record.id == record_id:
            return record
    raise MetadataNotFoundError(f"{object_type} {record_id} not found")


class MetadataRepository:
    """Lookups over one loaded metadata document.

    Built once at startup and passed to every component that needs it. Only
    ``register_user_variables`` changes its contents, by adding fabricated
    variables for uploaded data.
    """

    def __init__(self, document: MetadataDocument | dict[str, Any]):
        if not isinstance(document, MetadataDocument):
            document = MetadataDocument.model_validate(document)
        self._document = document
        self._data_variables: list[DataVariable] = list(document.data_variables)
        self._programs = {program.id: program for program in document.programs}
        self._vintage_cache: dict[str, tuple[DataVariableGeoTypeVintage, ...]] = {}

    @classmethod
    def from_file(cls, path: str | Path) -> MetadataRepository:
        with open(path, "r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    @property
    def document(self) -> MetadataDocument:
        return self._document

    def get_geo_type(self, geo_type_id: str) -> GeoType:
        return _find_by_id(self._document.geo_types, geo_type_id, "Geo Type")

    def get_data_variable(self, variable_id: str) -> DataVariable:
        return _find_by_id(self._data_variables, variable_id, "Data Variable")

    def get_program(self, program_id: str) -> Program:
        return _find_by_id(self._document.programs, program_id, "Program")

    def get_geo_vintages_for_variable(
        self, variable_id: str
    ) -> tuple[DataVariableGeoTypeVintage, ...]:
        cached = self._vintage_cache.get(variable_id)
        if cached is not None:
            return cached

        data_variable = self.get_data_variable(variable_id)
        if data_variable.upload_info is not None:
            vintages: tuple[DataVariableGeoTypeVintage, ...] = (
                self._user_variable_vintage(data_variable, data_variable.upload_info),
            )
        else:
            vintages = tuple(
                self._resolve_vintage(doc)
                for doc in self._document.data_variable_geo_type_vintages
                if doc.variable_id == variable_id
            )
        self._vintage_cache[variable_id] = vintages
        return vintages

    def find_vintage_for_variable(
        self, variable_id: str, geo_type_id: str, vintage_id: str
    ) -> DataVariableGeoTypeVintage | None:
        for vintage in self.get_geo_vintages_for_variable(variable_id):
            if vintage.geo_type_id == geo_type_id and vintage.vintage_id == vintage_id:
                return vintage
        return None

    def get_vintage_for_variable(
        self, variable_id: str, geo_type_id: str, vintage_id: str
    ) -> DataVariableGeoTypeVintage:
        vintage = self.find_vintage_for_variable(variable_id, geo_type_id, vintage_id)
        if vintage is None:
            raise MetadataNotFoundError(
                f"Cannot find vintage {vintage_id} on variable {variable_id} with geoType {geo_type_id}"
            )
        return vintage

    def is_vintage_available_for_variable(
        self, variable_id: str, geo_type_id: str, vintage_id: str
    ) -> bool:
        return self.find_vintage_for_variable(variable_id, geo_type_id, vintage_id) is not None

    def is_variable_available_for_geo_type(self, variable_id: str, geo_type_id: str) -> bool:
        return self.is_vintage_available_for_variable(variable_id, geo_type_id, CURRENT_VINTAGE)

    @staticmethod
    def is_vgtv_industry_based(vintage: DataVariableGeoTypeVintage) -> bool:
        return any(source.sector_field is not None for source in vintage.all_sources)

    def get_industry_like_id_for_vgtv(
        self, vintage: DataVariableGeoTypeVintage, selected_industry_id: str
    ) -> str:
        if self.is_vgtv_industry_based(vintage):
            return selected_industry_id
        return NO_INDUSTRY_ID

    def get_place_mapping_for_geo_id(self, geo_id: str) -> PlaceMappingEntry | None:
        return self._document.place_mapping.get(geo_id)

    def get_state_fips_code(self, state_postal: str) -> str:
        for state in self._document.us_states:
            if state.abbreviation == state_postal:
                return state.fips
        raise MetadataNotFoundError(f"Postal Code {state_postal} not found in metadata")

    def get_state_postal_code(self, fips_code: str) -> str:
        for state in self._document.us_states:
            if state.fips == fips_code:
                return state.abbreviation
        raise MetadataNotFoundError(f"FIPS Code {fips_code} not found in metadata")

    def register_user_variables(
        self, upload_info: UploadInfo, uploaded_variables: list[UploadedDataVariable]
    ) -> list[DataVariable]:
        """Add one fabricated data variable per uploaded column."""
        created = [
            DataVariable(
                ID=uploaded.id,
                Name=uploaded.id,
                Round=0,
                ScaleFactor=1,
                upload_info=upload_info,
            )
            for uploaded in uploaded_variables
        ]
        self._data_variables.extend(created)
        for variable in created:
            self._vintage_cache.pop(variable.id, None)
        return created

    def _user_variable_vintage(
        self, data_variable: DataVariable, upload_info: UploadInfo
    ) -> DataVariableGeoTypeVintage:
        source = ApiVariable(
            source="USER_UPLOADED_DATA",
            api_url="",
            var_parts=VarParts(
                stat_variable=VarInfo(
                    name=data_variable.name, alias=f"1_{data_variable.name}_1"
                )
            ),
        )
        return DataVariableGeoTypeVintage(
            variable_id=data_variable.id,
            geo_type_id=upload_info.geo_type_id,
            vintage_id=CURRENT_VINTAGE,
            processor="IDENTITY",
            operand1=DataVariableOperand(sources=(source,), operand_processor="IDENTITY"),
            scale_factor=1,
            round=0,
        )

    def _resolve_vintage(self, doc: DataVariableGeoTypeVintageDoc) -> DataVariableGeoTypeVintage:
        years: list[str] = []
        datasets: list[str] = []
        operand1 = DataVariableOperand(
            sources=self._operand_sources(doc.variable_id, doc.operand1.sources, years, datasets, 1),
            operand_processor=doc.operand1.operand_processor,
        )
        operand2 = None
        if doc.operand2 is not None:
            operand2 = DataVariableOperand(
                sources=self._operand_sources(
                    doc.variable_id, doc.operand2.sources, years, datasets, 2
                ),
                operand_processor=doc.operand2.operand_processor,
            )
        return DataVariableGeoTypeVintage(
            variable_id=doc.variable_id,
            geo_type_id=doc.geo_type_id,
            vintage_id=doc.vintage_id,
            processor=doc.processor,
            operand1=operand1,
            operand2=operand2,
            scale_factor=doc.scale_factor,
            round=doc.round,
            uom_prefix=doc.uom_prefix,
            uom_suffix=doc.uom_suffix,
            years=tuple(years),
            datasets=tuple(datasets),
        )

    def _operand_sources(
        self,
        variable_id: str,
        sources: list[DataVariableSource],
        years: list[str],
        datasets: list[str],
        operand: int,
    ) -> tuple[ApiVariable, ...]:
        resolved: list[ApiVariable] = []
        for index, source in enumerate(sources, start=1):
            program = self.get_program(source.program_id)
            if program.year not in years:
                years.append(program.year)
            if program.dataset not in datasets:
                datasets.append(program.dataset)

            column = source.variable
            stat = VarInfo(name=column, alias=f"{variable_id}_{column}_{operand}_{index}")

            flag = None
            if program.flag_strategy is not None:
                if program.flag_strategy == "PREFIX_S":
                    flag = VarInfo(
                        name=f"s{column}",
                        alias=f"{variable_id}_s{column}_S_{operand}_{index}",
                    )
                elif program.flag_strategy == "UNDERSCORE_F":
                    flag = VarInfo(
                        name=f"{column}_F",
                        alias=f"{variable_id}_{column}_F_{operand}_{index}",
                    )
                else:
                    assert_never(program.flag_strategy, f"Unknown flag strategy {program.flag_strategy}")

            moe = None
            if program.reliability_strategy is not None:
                if program.reliability_strategy == "ACS_MOE":
                    moe_column = f"{column[:-1]}M"
                    moe = VarInfo(
                        name=moe_column, alias=f"{variable_id}_{moe_column}_{operand}_{index}"
                    )
                else:
                    assert_never(
                        program.reliability_strategy,
                        f"Unknown reliability strategy {program.reliability_strategy}",
                    )

            if program.source not in ("CENSUS_DATA_API", "ESRI_CONSUMER_DATA"):
                assert_never(program.source, f"Unknown program source {program.source}")

            resolved.append(
                ApiVariable(
                    source=program.source,
                    api_url=program.api_url,
                    var_parts=VarParts(stat_variable=stat, moe_variable=moe, flag_variable=flag),
                    program_name=program.name,
                    program=program.program,
                    year=program.year,
                    dataset=program.dataset,
                    map_tiger_id=program.map_tiger_id,
                    map_state_id=program.map_state_id,
                    geo_format=program.geo_format if program.source == "CENSUS_DATA_API" else "",
                    url_parameters=source.url_parameters,
                    sector_field=source.sector_field,
                    race_group=source.race_group,
                    sex_group=source.sex,
                    vet_group=source.vet_group,
                    reliability_strategy=program.reliability_strategy,
                    flag_strategy=program.flag_strategy,
                )
            )
        return tuple(resolved)
