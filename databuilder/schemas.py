from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import CURRENT_VINTAGE, DetailedGeo, UploadedDataVariable, UploadInfo, UserUploadedData


class ErrorResponse(BaseModel):
    detail: str


class GeographyInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    name: str = Field(default="")
    attributes: dict[str, Any] = Field(default_factory=dict)

    def to_detailed_geo(self, geo_type_id: str) -> DetailedGeo:
        return DetailedGeo(
            id=self.id, name=self.name, geo_type_id=geo_type_id, attributes=dict(self.attributes)
        )


GeographiesByType = dict[str, list[GeographyInput]]


def _validate_geographies(geographies: GeographiesByType) -> GeographiesByType:
    if not geographies:
        raise ValueError("geographies must contain at least one geo type")
    for geo_type_id, geos in geographies.items():
        if not geos:
            raise ValueError(f"geographies for {geo_type_id} must not be empty")
    return geographies


class _DataRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    industry_ids: list[str] = Field(..., min_length=1)
    geographies: GeographiesByType

    @field_validator("geographies")
    @classmethod
    def validate_geographies(cls, geographies: GeographiesByType) -> GeographiesByType:
        return _validate_geographies(geographies)


class TabularRequest(_DataRequest):
    data_variable_ids: list[str] = Field(..., min_length=1)
    vintage: str = Field(default=CURRENT_VINTAGE)


class TimeSeriesRequest(_DataRequest):
    data_variable_id: str = Field(..., min_length=1)


class ComparisonRequest(_DataRequest):
    data_variable_id: str = Field(..., min_length=1)
    parent_geographies: GeographiesByType = Field(default_factory=dict)
    vintage: str = Field(default=CURRENT_VINTAGE)
    geo_or_region_name: Optional[str] = None


class RankingRequest(_DataRequest):
    data_variable_id: str = Field(..., min_length=1)
    selected_geography_id: str = Field(..., min_length=1)
    result_count: int = Field(default=10, ge=0, le=10000)
    result_order: Literal["ASCENDING", "DESCENDING"] = "DESCENDING"
    vintage: str = Field(default=CURRENT_VINTAGE)


class UploadRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    upload_id: int
    geo_type_id: str = Field(..., min_length=1)
    attribute_data: list[list[Any]] = Field(..., min_length=1)
    variable_ids: list[str] = Field(default_factory=list)

    @field_validator("attribute_data")
    @classmethod
    def validate_header_row(cls, attribute_data: list[list[Any]]) -> list[list[Any]]:
        headers = attribute_data[0]
        if not headers or not all(isinstance(header, str) for header in headers):
            raise ValueError("attribute_data must start with a header row of column names")
        return attribute_data

    def to_upload(self) -> tuple[UploadInfo, UserUploadedData]:
        # Every column after the geography id is a variable unless a subset is named.
        variable_ids = self.variable_ids or [str(header) for header in self.attribute_data[0][1:]]
        return (
            UploadInfo(upload_id=self.upload_id, geo_type_id=self.geo_type_id),
            UserUploadedData(
                attribute_data=[list(row) for row in self.attribute_data],
                data_variables=[
                    UploadedDataVariable(id=variable_id, name=variable_id)
                    for variable_id in variable_ids
                ],
            ),
        )
