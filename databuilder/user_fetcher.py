"""Fetcher for user-uploaded tables held in memory."""

from __future__ import annotations

import logging

from . import namber as nambers
from .data_utils import is_number_like, to_number
from .metadata import GeoType, MetadataRepository
from .models import (
    NO_INDUSTRY_ID,
    ApiRecord,
    DataVariablePartition,
    DetailedGeo,
    UploadInfo,
    UserUploadedData,
)
from .service_utils import build_api_record, set_api_data

logger = logging.getLogger(__name__)


class UserDataStore:
    """Holds the most recent upload for the lifetime of the process."""

    def __init__(self) -> None:
        self._data = UserUploadedData()

    def set_uploaded_user_data(
        self,
        data: UserUploadedData,
        upload_info: UploadInfo | None = None,
        metadata: MetadataRepository | None = None,
    ) -> None:
        self._data = data
        if upload_info is not None and metadata is not None:
            metadata.register_user_variables(upload_info, data.data_variables)
        logger.info(
            "Stored uploaded data rows=%d variables=%d",
            max(len(data.attribute_data) - 1, 0),
            len(data.data_variables),
        )

    def get_uploaded_user_data(self) -> UserUploadedData:
        return self._data


class UserFetcher:
    source = "USER_UPLOADED_DATA"

    def __init__(self, store: UserDataStore):
        self.store = store

    async def fetch(
        self,
        partition: DataVariablePartition,
        geo_type: GeoType,
        geos: list[DetailedGeo],
        industry_id_list: list[str],
    ) -> list[ApiRecord]:
        attribute_data = self.store.get_uploaded_user_data().attribute_data
        headers = attribute_data[0] if attribute_data else []
        rows = attribute_data[1:]

        records: list[ApiRecord] = []
        for geo in geos:
            record = build_api_record(geo_type.id, geo)
            row = next((row for row in rows if row and str(row[0]) == str(geo.id)), None)
            for parts in partition.variable_parts:
                value = nambers.na_namber()
                if row is not None and parts.stat_variable.name in headers:
                    index = headers.index(parts.stat_variable.name)
                    raw = row[index] if index < len(row) else None
                    if is_number_like(raw):
                        value = nambers.Namber(to_number(raw))
                set_api_data(NO_INDUSTRY_ID, record.data, (parts.stat_variable.alias, value))
            records.append(record)
        return records
