from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from filterpro.config import DEFAULT_LABEL_FIELD, DEFAULT_SYNC_INTERVAL, DEFAULT_VALUE_FIELD
from filterpro.errors import ConfigurationError


class DocumentModel(BaseModel):
    """
    Base for models persisted in MongoDB. Documents use camelCase keys,
    Python code uses snake_case attributes; both are accepted on input.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_document(self) -> Dict[str, Any]:
        return _plain_values(self.model_dump(by_alias=True, exclude_none=True, mode="python"))


def _plain_values(value: Any) -> Any:
    """Replaces Enum members with their values so documents hold plain BSON types."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain_values(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain_values(v) for v in value]
    return value


# -ENUMS for validation and type safety
class FilterType(str, Enum):
    SELECT = "select"
    MULTISELECT = "multiselect"
    RANGE = "range"
    TEXT = "text"

class DependencyMode(str, Enum):
    AFFECTS = "affects"
    AFFECTED_BY = "affected-by"

class DatasourceType(str, Enum):
    REST_API = "rest_api"
    MONGODB = "mongodb"
    SQL = "sql"
    STATIC = "static"

class SyncStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    IN_PROGRESS = "in_progress"

class TriggeredBy(str, Enum):
    CRON = "cron"
    MANUAL = "manual"
    SYSTEM = "system"

class AuthType(str, Enum):
    BEARER = "bearer"
    BASIC = "basic"
    API_KEY = "apikey"

class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"

class SqlEngine(str, Enum):
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"

class SkipReason(str, Enum):
    NO_DEPENDENCY = "no-dependency"
    AFFECTING_FILTER_MISSING = "affecting-filter-missing"
    AFFECTING_DATASOURCE_MISSING = "affecting-datasource-missing"
    INVALID_MAPPING = "invalid-mapping"
    NO_SOURCE_ROWS = "no-source-rows"
    NO_TARGET_VALUES = "no-target-values"
    EMPTY_VALUE = "empty-value"


# --- FILTERS AND DEPENDENCIES ---

class DependencyMapping(DocumentModel):
    my_field: Optional[str] = None
    my_metadata_field: Optional[str] = None
    target_field: Optional[str] = None
    target_metadata_field: Optional[str] = None

    def validation_error(self) -> Optional[str]:
        """
        Returns a description of why the mapping cannot be applied, or None
        when exactly one "my" field and exactly one "target" field are set.
        """
        my_count = int(bool(self.my_field)) + int(bool(self.my_metadata_field))
        target_count = int(bool(self.target_field)) + int(bool(self.target_metadata_field))

        if my_count == 0 or target_count == 0:
            return (
                'mapping must set exactly one "my" field and one "target" field '
                f"(found {my_count} my, {target_count} target)"
            )
        if my_count > 1:
            return 'set only one "my" field: myField or myMetadataField, not both'
        if target_count > 1:
            return 'set only one "target" field: targetField or targetMetadataField, not both'
        return None

    @property
    def query_key(self) -> str:
        if self.my_field:
            return self.my_field
        return f"metadata.{self.my_metadata_field}"

    @property
    def source_description(self) -> str:
        if self.target_field:
            return self.target_field
        return f"metadata.{self.target_metadata_field}"

    def extract_target(self, row: Dict[str, Any]) -> Any:
        """Reads the mapped target value from an option row; None when absent."""
        if self.target_field:
            return row.get(self.target_field)
        metadata = row.get("metadata") or {}
        return metadata.get(self.target_metadata_field)


class Dependency(DocumentModel):
    filter_slug: str
    mode: DependencyMode
    mapping: Optional[DependencyMapping] = None


class Filter(DocumentModel):
    project_key: str
    slug: str
    name: str
    type: FilterType = FilterType.SELECT
    description: Optional[str] = None
    active: bool = True
    order: int = 0
    dependencies: List[Dependency] = Field(default_factory=list)
    data_source: Optional[Union[str, Dict[str, Any]]] = None
    options_config: Optional[Dict[str, Any]] = None
    ui_config: Optional[Dict[str, Any]] = None
    query_key: Optional[str] = None

    def datasource_id(self) -> Optional[str]:
        """
        Resolves the datasource backing this filter. Checked in order: a plain
        string dataSource, dataSource.datasourceId, then the legacy
        optionsConfig.dynamic.datasourceId.
        """
        if isinstance(self.data_source, str) and self.data_source:
            return self.data_source
        if isinstance(self.data_source, dict) and self.data_source.get("datasourceId"):
            return self.data_source["datasourceId"]
        dynamic = (self.options_config or {}).get("dynamic") or {}
        return dynamic.get("datasourceId") or None

    def find_dependency(self, filter_slug: str, mode: DependencyMode) -> Optional[Dependency]:
        for dependency in self.dependencies:
            if dependency.filter_slug == filter_slug and dependency.mode == mode:
                return dependency
        return None


# --- DATASOURCE CONFIG VARIANTS ---

class RestAuth(DocumentModel):
    type: Optional[AuthType] = None
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[str] = None
    api_key_header: Optional[str] = None

class RestApiConfig(DocumentModel):
    base_url: str
    method: HttpMethod = HttpMethod.GET
    headers: Dict[str, str] = Field(default_factory=dict)
    query_params: Dict[str, Any] = Field(default_factory=dict)
    body: Optional[Any] = None
    auth: Optional[RestAuth] = None
    response_path: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def normalize_method(cls, values):
        if isinstance(values, dict) and isinstance(values.get("method"), str):
            values = {**values, "method": values["method"].upper()}
        return values

class MongoConfig(DocumentModel):
    connection_string: str
    database: str
    collection: str
    query: Dict[str, Any] = Field(default_factory=dict)
    projection: Optional[Dict[str, Any]] = None

class SqlConfig(DocumentModel):
    engine: SqlEngine
    host: str
    database: str
    username: str
    query: str
    port: Optional[int] = None
    password: Optional[str] = None
    ssl: bool = False

class StaticConfig(DocumentModel):
    options: List[Dict[str, Any]] = Field(default_factory=list)

DatasourceConfig = Union[RestApiConfig, MongoConfig, SqlConfig, StaticConfig]

CONFIG_MODELS: Dict[DatasourceType, Type[DocumentModel]] = {
    DatasourceType.REST_API: RestApiConfig,
    DatasourceType.MONGODB: MongoConfig,
    DatasourceType.SQL: SqlConfig,
    DatasourceType.STATIC: StaticConfig,
}


# --- DATASOURCES ---

class SyncConfig(DocumentModel):
    enabled: bool = False
    interval: str = DEFAULT_SYNC_INTERVAL
    external_code_field: Optional[str] = None
    label_field: str = DEFAULT_LABEL_FIELD
    value_field: str = DEFAULT_VALUE_FIELD
    metadata_field_mapping: Optional[Dict[str, str]] = None

class SyncStats(DocumentModel):
    records_found: int = 0
    records_added: int = 0
    records_updated: int = 0
    records_disabled: int = 0
    duration: Optional[int] = None

class LastSync(DocumentModel):
    date: Optional[datetime] = None
    status: Optional[SyncStatus] = None
    stats: Optional[SyncStats] = None
    error: Optional[str] = None

class Datasource(DocumentModel):
    project_key: str
    id: str
    name: str
    type: DatasourceType
    enabled: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)
    sync_config: SyncConfig = Field(default_factory=SyncConfig)
    sample_schema: Optional[Any] = None
    last_sync: Optional[LastSync] = None

    @property
    def is_schedulable(self) -> bool:
        return self.enabled and self.sync_config.enabled

    def typed_config(self) -> DatasourceConfig:
        """
        Parses the raw config blob into the variant matching the datasource type.
        Raises ConfigurationError when required keys are missing or malformed.
        """
        model = CONFIG_MODELS[self.type]
        try:
            return model.model_validate(self.config or {})
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) or "config" for err in e.errors())
            raise ConfigurationError(
                f"Invalid {self.type.value} config for datasource '{self.id}': {fields}"
            ) from e

class DatasourceCreate(DocumentModel):
    id: str
    name: str
    type: DatasourceType
    enabled: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)
    sync_config: SyncConfig = Field(default_factory=SyncConfig)
    sample_schema: Optional[Any] = None

class DatasourceUpdate(DocumentModel):
    name: Optional[str] = None
    type: Optional[DatasourceType] = None
    enabled: Optional[bool] = None
    config: Optional[Dict[str, Any]] = None
    sync_config: Optional[SyncConfig] = None
    sample_schema: Optional[Any] = None


# --- OPTION STORE AND SYNC HISTORY ---

class OptionRecord(DocumentModel):
    datasource_id: str
    project_key: str
    external_code: str
    label: str
    value: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    disabled_at: Optional[datetime] = None

class SyncHistoryEntry(DocumentModel):
    datasource_id: str
    project_key: str
    status: SyncStatus
    triggered_by: TriggeredBy
    started_at: datetime
    stats: Optional[SyncStats] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None

class SyncResult(DocumentModel):
    status: SyncStatus
    stats: SyncStats = Field(default_factory=SyncStats)
    error: Optional[str] = None


# --- DEPENDENCY RESOLUTION RESULTS ---

class AppliedDependency(DocumentModel):
    param: str
    query_key: str
    source: str
    values: List[Any]

class SkippedDependency(DocumentModel):
    param: str
    reason: SkipReason
    detail: Optional[str] = None

class ResolutionResult(DocumentModel):
    datasource_id: str
    options: List[Dict[str, Any]] = Field(default_factory=list)
    applied: List[AppliedDependency] = Field(default_factory=list)
    skipped: List[SkippedDependency] = Field(default_factory=list)


# --- PYDANTIC MODELS for API requests

class GenerateQueryOptions(BaseModel):
    format: Optional[str] = None

class GenerateQueryRequest(BaseModel):
    filters: Dict[str, Any]
    options: Optional[GenerateQueryOptions] = None
