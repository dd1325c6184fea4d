# filterpro/errors.py
"""
Domain exceptions. Routes translate them into HTTP status codes.
"""


class FilterProError(Exception):
    """Base class for every error raised by the option resolution core."""


class NotFoundError(FilterProError):
    pass


class FilterNotFoundError(NotFoundError):
    def __init__(self, project_key: str, slug: str):
        self.project_key = project_key
        self.slug = slug
        super().__init__(f"Filter '{slug}' not found in project '{project_key}'")


class DatasourceNotFoundError(NotFoundError):
    def __init__(self, datasource_id: str):
        self.datasource_id = datasource_id
        super().__init__(f"Datasource '{datasource_id}' not found")


class ConfigurationError(FilterProError):
    """A filter or datasource is configured in a way that cannot be used."""


class DatasourceDisabledError(ConfigurationError):
    def __init__(self, datasource_id: str):
        self.datasource_id = datasource_id
        super().__init__(f"Datasource '{datasource_id}' is disabled")


class QueryValidationError(FilterProError):
    """A caller-supplied query contains a field or value that is not allowed."""


class SyncInProgressError(FilterProError):
    def __init__(self, datasource_id: str):
        self.datasource_id = datasource_id
        super().__init__(f"A sync for datasource '{datasource_id}' is already running")


class ExternalFetchError(FilterProError):
    """Fetching rows from an external source failed (network, HTTP status, DB connection)."""
