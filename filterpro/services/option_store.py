# filterpro/services/option_store.py
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from filterpro.config import OPTION_RECORDS_COLLECTION
from filterpro.errors import QueryValidationError
from filterpro.models import Datasource, OptionRecord

# Shape returned to filter option consumers.
OPTION_PROJECTION = {"_id": 0, "value": 1, "label": 1, "metadata": 1}
DATA_PROJECTION = {"_id": 0, "value": 1, "label": 1, "externalCode": 1, "metadata": 1, "enabled": 1}

# Fields a caller may filter on through the raw data endpoint.
QUERYABLE_FIELDS = {"value", "label", "externalCode", "enabled"}
METADATA_PATH_RE = re.compile(r"^metadata(\.[A-Za-z0-9_\-]+)+$")


def validate_field_name(field: str) -> str:
    """
    Only whitelisted top-level fields and metadata.<path> are accepted, so a
    query string can never smuggle in an operator.
    """
    if not isinstance(field, str) or not field:
        raise QueryValidationError("Field name cannot be empty")
    if field.startswith("$") or ".$" in field:
        raise QueryValidationError(f"Field name '{field}' cannot contain operators")
    if field in QUERYABLE_FIELDS or METADATA_PATH_RE.match(field):
        return field
    raise QueryValidationError(f"Field '{field}' is not queryable")


class OptionStore:
    """
    Synchronized option rows per datasource, keyed by (datasourceId, externalCode).
    Records are soft-disabled, never deleted.
    """

    def __init__(self, database: AsyncIOMotorDatabase):
        self.collection = database[OPTION_RECORDS_COLLECTION]

    async def upsert_record(
        self,
        datasource: Datasource,
        external_code: str,
        label: str,
        value: str,
        metadata: Dict[str, Any],
        now: datetime,
    ) -> bool:
        """
        Creates or refreshes one record and re-enables it if it was disabled.
        Returns True when the record was created.
        """
        result = await self.collection.update_one(
            {"datasourceId": datasource.id, "externalCode": external_code},
            {
                "$set": {
                    "label": label,
                    "value": value,
                    "metadata": metadata,
                    "enabled": True,
                    "lastSeenAt": now,
                },
                "$setOnInsert": {
                    "projectKey": datasource.project_key,
                    "firstSeenAt": now,
                },
                "$unset": {"disabledAt": ""},
            },
            upsert=True,
        )
        return result.upserted_id is not None

    async def disable_missing(self, datasource_id: str, seen_codes: Iterable[str], now: datetime) -> int:
        """Soft-disables every live record whose external code was not seen. Returns the count."""
        result = await self.collection.update_many(
            {
                "datasourceId": datasource_id,
                "enabled": True,
                "externalCode": {"$nin": list(seen_codes)},
            },
            {"$set": {"enabled": False, "disabledAt": now}},
        )
        return result.modified_count

    async def has_records(self, datasource_id: str) -> bool:
        return await self.collection.find_one({"datasourceId": datasource_id}, {"_id": 1}) is not None

    async def get_record(self, datasource_id: str, external_code: str) -> Optional[OptionRecord]:
        doc = await self.collection.find_one({"datasourceId": datasource_id, "externalCode": external_code})
        return OptionRecord.model_validate(doc) if doc else None

    async def find_options(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        cursor = self.collection.find(query, OPTION_PROJECTION).sort("label", 1)
        return await cursor.to_list(length=None)

    async def find_source_rows(self, datasource_id: str, values: List[str]) -> List[Dict[str, Any]]:
        """
        Returns the live rows of a datasource whose value is one of `values`.
        Values without an exact match are retried case-insensitively against
        value and then label, so 'BR', 'br' and 'Brazil' reach the same row.
        """
        base = {"datasourceId": datasource_id, "enabled": True}
        exact = await self.collection.find({**base, "value": {"$in": values}}, {"_id": 0}).to_list(length=None)

        matched = {row.get("value") for row in exact}
        unmatched = {v.casefold() for v in values if v not in matched}
        if not unmatched:
            return exact

        seen_codes = {row.get("externalCode") for row in exact}
        candidates = await self.collection.find(base, {"_id": 0}).to_list(length=None)
        for row in candidates:
            if row.get("externalCode") in seen_codes:
                continue
            if str(row.get("value", "")).casefold() in unmatched or str(row.get("label", "")).casefold() in unmatched:
                exact.append(row)
                seen_codes.add(row.get("externalCode"))
        return exact

    async def query_records(self, datasource_id: str, filters: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """
        Raw read of a datasource's records with optional equality filters,
        sorted by label. Disabled records are included unless 'enabled' is filtered.
        """
        query: Dict[str, Any] = {}
        for field, value in (filters or {}).items():
            field = validate_field_name(field)
            if field == "enabled":
                query[field] = str(value).lower() in ("true", "1", "yes")
            else:
                query[field] = value
        query["datasourceId"] = datasource_id

        cursor = self.collection.find(query, DATA_PROJECTION).sort("label", 1)
        return await cursor.to_list(length=None)
