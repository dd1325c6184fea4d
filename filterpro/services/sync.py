# filterpro/services/sync.py
import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError

from filterpro.config import DATASOURCES_COLLECTION, DEFAULT_HISTORY_LIMIT, SYNC_HISTORY_COLLECTION
from filterpro.database import stringify_ids
from filterpro.errors import (
    ConfigurationError,
    DatasourceDisabledError,
    DatasourceNotFoundError,
    SyncInProgressError,
)
from filterpro.logging_setup import logger
from filterpro.models import (
    Datasource,
    DatasourceType,
    LastSync,
    SyncConfig,
    SyncHistoryEntry,
    SyncResult,
    SyncStats,
    SyncStatus,
    TriggeredBy,
)
from filterpro.services.fetchers import mongodb, rest_api, sql, static
from filterpro.services.option_store import OptionStore
from filterpro.store import Store

Fetcher = Callable[[Any], Awaitable[List[Dict[str, Any]]]]

DEFAULT_FETCHERS: Dict[DatasourceType, Fetcher] = {
    DatasourceType.REST_API: rest_api.fetch_rows,
    DatasourceType.MONGODB: mongodb.fetch_rows,
    DatasourceType.SQL: sql.fetch_rows,
    DatasourceType.STATIC: static.fetch_rows,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _as_text(value: Any, fallback: str) -> str:
    if value is None or value == "":
        return fallback
    return str(value)


def build_metadata(row: Dict[str, Any], field_mapping: Optional[Dict[str, str]]) -> Dict[str, Any]:
    """
    Metadata is the whole source row, or only the mapped fields
    ({metadataKey: rowField}) when a mapping is configured.
    """
    if not field_mapping:
        return dict(row)
    return {key: row[source] for key, source in field_mapping.items() if source in row}


class SyncEngine:
    """
    Fetches rows from a datasource's external source and reconciles them
    into the Option Store: new codes are added, known codes refreshed,
    codes missing from the fetch soft-disabled. Every attempt past the
    existence checks leaves one SyncHistory row.
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        store: Store,
        fetchers: Optional[Dict[DatasourceType, Fetcher]] = None,
    ):
        self.datasources = database[DATASOURCES_COLLECTION]
        self.history = database[SYNC_HISTORY_COLLECTION]
        self.option_store = OptionStore(database)
        self.store = store
        self.fetchers: Dict[DatasourceType, Fetcher] = {**DEFAULT_FETCHERS, **(fetchers or {})}

    async def get_datasource(self, datasource_id: str) -> Datasource:
        doc = await self.datasources.find_one({"id": datasource_id})
        if not doc:
            raise DatasourceNotFoundError(datasource_id)
        try:
            return Datasource.model_validate(doc)
        except ValidationError as e:
            raise ConfigurationError(f"Datasource '{datasource_id}' is malformed: {e.error_count()} invalid fields") from e

    async def sync_datasource(
        self, datasource_id: str, triggered_by: TriggeredBy = TriggeredBy.MANUAL
    ) -> SyncResult:
        """
        Runs one sync for a datasource.
        Raises DatasourceNotFoundError, DatasourceDisabledError or
        SyncInProgressError before anything is written; every later failure
        is recorded and returned as an error result.
        """
        datasource = await self.get_datasource(datasource_id)
        if not datasource.enabled:
            raise DatasourceDisabledError(datasource_id)

        if not self.store.try_begin_sync(datasource_id):
            logger.warning(
                "Sync rejected, another run is in progress",
                extra={"datasource_id": datasource_id, "triggered_by": triggered_by.value},
            )
            raise SyncInProgressError(datasource_id)
        try:
            return await self._run_sync(datasource, triggered_by)
        finally:
            self.store.end_sync(datasource_id)

    async def _run_sync(self, datasource: Datasource, triggered_by: TriggeredBy) -> SyncResult:
        started = time.perf_counter()
        logger.info(
            "Sync started",
            extra={"datasource_id": datasource.id, "project_key": datasource.project_key, "triggered_by": triggered_by.value},
        )
        history_id = await self._start_history(datasource, triggered_by)

        try:
            self._check_sync_config(datasource)
            rows = await self.fetch_external_rows(datasource)
            stats = await self.reconcile(datasource, rows)
        except asyncio.CancelledError:
            # Close the history row before the cancellation propagates.
            cancelled_stats = SyncStats(duration=_elapsed_ms(started))
            logger.warning("Sync cancelled", extra={"datasource_id": datasource.id})
            await self._finish_history(history_id, SyncStatus.ERROR, cancelled_stats, "Sync cancelled")
            await self._record_last_sync(datasource.id, SyncStatus.ERROR, cancelled_stats, "Sync cancelled")
            raise
        except Exception as e:
            message = str(e) or e.__class__.__name__
            failed_stats = SyncStats(duration=_elapsed_ms(started))
            logger.error(
                "Sync failed",
                extra={"datasource_id": datasource.id, "error": message},
                exc_info=True,
            )
            await self._finish_history(history_id, SyncStatus.ERROR, failed_stats, message)
            await self._record_last_sync(datasource.id, SyncStatus.ERROR, failed_stats, message)
            return SyncResult(status=SyncStatus.ERROR, stats=failed_stats, error=message)

        stats.duration = _elapsed_ms(started)
        await self._finish_history(history_id, SyncStatus.SUCCESS, stats)
        await self._record_last_sync(datasource.id, SyncStatus.SUCCESS, stats)
        logger.info(
            "Sync completed",
            extra={"datasource_id": datasource.id, **stats.to_document()},
        )
        return SyncResult(status=SyncStatus.SUCCESS, stats=stats)

    @staticmethod
    def _check_sync_config(datasource: Datasource) -> SyncConfig:
        sync_config = datasource.sync_config
        if not sync_config.external_code_field:
            raise ConfigurationError(f"Datasource '{datasource.id}' has no syncConfig.externalCodeField configured")
        return sync_config

    async def fetch_external_rows(self, datasource: Datasource) -> List[Dict[str, Any]]:
        fetcher = self.fetchers.get(datasource.type)
        if fetcher is None:
            raise ConfigurationError(f"Unsupported datasource type: {datasource.type.value}")
        return await fetcher(datasource.typed_config())

    async def reconcile(self, datasource: Datasource, rows: List[Dict[str, Any]]) -> SyncStats:
        """
        Upserts every fetched row, then disables the live records whose
        external code did not come back in this fetch.
        """
        sync_config = self._check_sync_config(datasource)
        code_field = sync_config.external_code_field
        now = utcnow()
        stats = SyncStats(records_found=len(rows))
        seen_codes = set()

        for row in rows:
            raw_code = row.get(code_field)
            if raw_code is None or raw_code == "":
                logger.warning(
                    f"Skipping row without '{code_field}'",
                    extra={"datasource_id": datasource.id},
                )
                continue

            external_code = str(raw_code)
            seen_codes.add(external_code)
            added = await self.option_store.upsert_record(
                datasource,
                external_code=external_code,
                label=_as_text(row.get(sync_config.label_field), external_code),
                value=_as_text(row.get(sync_config.value_field), external_code),
                metadata=build_metadata(row, sync_config.metadata_field_mapping),
                now=now,
            )
            if added:
                stats.records_added += 1
            else:
                stats.records_updated += 1

        stats.records_disabled = await self.option_store.disable_missing(datasource.id, seen_codes, now)
        return stats

    # --- HISTORY ---

    async def _start_history(self, datasource: Datasource, triggered_by: TriggeredBy) -> Any:
        entry = SyncHistoryEntry(
            datasource_id=datasource.id,
            project_key=datasource.project_key,
            status=SyncStatus.IN_PROGRESS,
            triggered_by=triggered_by,
            started_at=utcnow(),
        )
        result = await self.history.insert_one(entry.to_document())
        return result.inserted_id

    async def _finish_history(
        self, history_id: Any, status: SyncStatus, stats: SyncStats, error: Optional[str] = None
    ) -> None:
        update: Dict[str, Any] = {
            "status": status.value,
            "stats": stats.to_document(),
            "completedAt": utcnow(),
        }
        if error:
            update["error"] = error
        await self.history.update_one({"_id": history_id}, {"$set": update})

    async def _record_last_sync(
        self, datasource_id: str, status: SyncStatus, stats: SyncStats, error: Optional[str] = None
    ) -> None:
        last_sync = LastSync(date=utcnow(), status=status, stats=stats, error=error)
        await self.datasources.update_one({"id": datasource_id}, {"$set": {"lastSync": last_sync.to_document()}})

    async def get_sync_history(self, datasource_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[Dict[str, Any]]:
        cursor = self.history.find({"datasourceId": datasource_id}).sort([("startedAt", -1), ("_id", -1)]).limit(limit)
        return stringify_ids(await cursor.to_list(length=None))

    async def get_datasource_data(self, datasource_id: str, filters: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        return await self.option_store.query_records(datasource_id, filters)
