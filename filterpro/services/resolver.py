# filterpro/services/resolver.py
from typing import Any, Dict, List, Optional, Union, cast

from motor.motor_asyncio import AsyncIOMotorDatabase

from filterpro.config import DATASOURCES_COLLECTION, FILTERS_COLLECTION
from filterpro.errors import ConfigurationError, FilterNotFoundError, SyncInProgressError
from filterpro.logging_setup import logger
from filterpro.models import (
    AppliedDependency,
    Datasource,
    DatasourceType,
    DependencyMapping,
    DependencyMode,
    Filter,
    ResolutionResult,
    SkippedDependency,
    SkipReason,
    StaticConfig,
    SyncStatus,
    TriggeredBy,
)
from filterpro.services.sync import SyncEngine

DependencyOutcome = Union[AppliedDependency, SkippedDependency]


def split_values(raw_value: Union[str, List[str], None]) -> List[str]:
    """
    A comma-separated param is a multi-select; anything else is a single
    value. Blank entries are dropped.
    """
    if raw_value is None:
        return []
    items = raw_value if isinstance(raw_value, list) else str(raw_value).split(",")
    return [item.strip() for item in items if item and item.strip()]


def _unique(values: List[Any]) -> List[Any]:
    result: List[Any] = []
    for value in values:
        if value not in result:
            result.append(value)
    return result


def static_option(option: Dict[str, Any]) -> Dict[str, Any]:
    value = option.get("value")
    return {
        "value": value,
        "label": option.get("label", value),
        "metadata": option.get("metadata") or {},
    }


class DependencyResolver:
    """
    Computes the options of a filter given the values selected in the other
    filters of the project. Each selected value narrows the Option Store
    query through the target filter's 'affected-by' dependencies; params
    that cannot be applied are skipped and reported, never raised.
    """

    def __init__(self, database: AsyncIOMotorDatabase, sync_engine: SyncEngine):
        self.filters = database[FILTERS_COLLECTION]
        self.datasources = database[DATASOURCES_COLLECTION]
        self.sync_engine = sync_engine
        self.option_store = sync_engine.option_store

    async def find_filter(self, project_key: str, slug: str) -> Optional[Filter]:
        doc = await self.filters.find_one({"projectKey": project_key, "slug": slug})
        return Filter.model_validate(doc) if doc else None

    async def get_filter(self, project_key: str, slug: str) -> Filter:
        filter_ = await self.find_filter(project_key, slug)
        if filter_ is None:
            raise FilterNotFoundError(project_key, slug)
        return filter_

    async def list_filters(self, project_key: str) -> List[Filter]:
        docs = await self.filters.find({"projectKey": project_key}).sort("order", 1).to_list(length=None)
        return [Filter.model_validate(doc) for doc in docs]

    async def resolve_options(
        self,
        project_key: str,
        filter_slug: str,
        selected_values: Optional[Dict[str, Union[str, List[str]]]] = None,
    ) -> ResolutionResult:
        target = await self.get_filter(project_key, filter_slug)
        datasource_id = target.datasource_id()
        if not datasource_id:
            raise ConfigurationError(f"Filter '{filter_slug}' has no datasource configured")

        result = ResolutionResult(datasource_id=datasource_id)

        # Datasources never synced yet: static lists are served as configured,
        # anything else gets an initial sync before the query.
        static_options = await self._prepare_datasource(datasource_id)
        if static_options is not None:
            result.options = static_options
            return result

        query: Dict[str, Any] = {"datasourceId": datasource_id, "enabled": True}
        for param, raw_value in (selected_values or {}).items():
            outcome = await self._resolve_param(project_key, target, param, raw_value)
            if isinstance(outcome, SkippedDependency):
                result.skipped.append(outcome)
                logger.info(
                    f"Dependency param '{param}' not applied to '{filter_slug}'",
                    extra={"reason": outcome.reason.value, "detail": outcome.detail},
                )
                continue

            if len(outcome.values) > 1:
                query[outcome.query_key] = {"$in": outcome.values}
            else:
                query[outcome.query_key] = outcome.values[0]
            result.applied.append(outcome)
            logger.info(
                f"Dependency param '{param}' applied to '{filter_slug}'",
                extra={"query_key": outcome.query_key, "source": outcome.source, "values": outcome.values},
            )

        result.options = await self.option_store.find_options(query)
        logger.info(
            f"Resolved {len(result.options)} options for '{filter_slug}'",
            extra={"project_key": project_key, "datasource_id": datasource_id},
        )
        return result

    async def _resolve_param(
        self,
        project_key: str,
        target: Filter,
        param: str,
        raw_value: Union[str, List[str], None],
    ) -> DependencyOutcome:
        values = split_values(raw_value)
        if not values:
            return SkippedDependency(param=param, reason=SkipReason.EMPTY_VALUE)

        dependency = target.find_dependency(param, DependencyMode.AFFECTED_BY)
        if dependency is None:
            return SkippedDependency(
                param=param,
                reason=SkipReason.NO_DEPENDENCY,
                detail=f"'{target.slug}' has no affected-by dependency on '{param}'",
            )

        affecting = await self.find_filter(project_key, param)
        if affecting is None:
            return SkippedDependency(
                param=param,
                reason=SkipReason.AFFECTING_FILTER_MISSING,
                detail=f"filter '{param}' does not exist in project '{project_key}'",
            )

        affecting_datasource_id = affecting.datasource_id()
        if not affecting_datasource_id:
            return SkippedDependency(
                param=param,
                reason=SkipReason.AFFECTING_DATASOURCE_MISSING,
                detail=f"filter '{param}' has no datasource configured",
            )

        mapping = dependency.mapping or DependencyMapping()
        problem = mapping.validation_error()
        if problem:
            return SkippedDependency(param=param, reason=SkipReason.INVALID_MAPPING, detail=problem)

        source_rows = await self.option_store.find_source_rows(affecting_datasource_id, values)
        if not source_rows:
            return SkippedDependency(
                param=param,
                reason=SkipReason.NO_SOURCE_ROWS,
                detail=f"no live rows in '{affecting_datasource_id}' for {values}",
            )

        target_values = _unique([
            value for value in (mapping.extract_target(row) for row in source_rows) if value is not None
        ])
        if not target_values:
            return SkippedDependency(
                param=param,
                reason=SkipReason.NO_TARGET_VALUES,
                detail=f"{mapping.source_description} is empty on every matching row",
            )

        return AppliedDependency(
            param=param,
            query_key=mapping.query_key,
            source=mapping.source_description,
            values=target_values,
        )

    async def _prepare_datasource(self, datasource_id: str) -> Optional[List[Dict[str, Any]]]:
        """
        Returns the configured options of a never-synced static datasource.
        For other never-synced datasources, runs an initial sync and returns None.
        """
        if await self.option_store.has_records(datasource_id):
            return None

        doc = await self.datasources.find_one({"id": datasource_id})
        if not doc:
            logger.warning(f"Datasource '{datasource_id}' referenced by a filter does not exist")
            return None
        datasource = Datasource.model_validate(doc)

        if datasource.type == DatasourceType.STATIC:
            config = cast(StaticConfig, datasource.typed_config())
            return [static_option(option) for option in config.options]

        if not datasource.enabled:
            return None

        logger.info(f"No synced options for '{datasource_id}', running initial sync")
        try:
            sync_result = await self.sync_engine.sync_datasource(datasource_id, TriggeredBy.SYSTEM)
        except SyncInProgressError:
            logger.info(f"Initial sync for '{datasource_id}' already running, serving current rows")
            return None
        if sync_result.status == SyncStatus.ERROR:
            logger.warning(f"Initial sync for '{datasource_id}' failed: {sync_result.error}")
        return None

    async def validate_filter_dependencies(self, project_key: str, slug: str) -> List[Dict[str, Any]]:
        """
        Reports, per declared dependency, the problems that would make the
        resolver skip it. Nothing is queried beyond the filter definitions.
        """
        target = await self.get_filter(project_key, slug)
        report = []
        for dependency in target.dependencies:
            problems = []
            if dependency.mode == DependencyMode.AFFECTED_BY:
                problem = (dependency.mapping or DependencyMapping()).validation_error()
                if problem:
                    problems.append(problem)
            affecting = await self.find_filter(project_key, dependency.filter_slug)
            if affecting is None:
                problems.append(f"filter '{dependency.filter_slug}' does not exist")
            elif not affecting.datasource_id():
                problems.append(f"filter '{dependency.filter_slug}' has no datasource configured")
            report.append({
                "filterSlug": dependency.filter_slug,
                "mode": dependency.mode.value,
                "valid": not problems,
                "problems": problems,
            })
        return report
