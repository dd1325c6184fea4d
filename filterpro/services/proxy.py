# filterpro/services/proxy.py
from typing import Any, Dict, Optional, cast

import httpx

from filterpro.errors import ConfigurationError
from filterpro.logging_setup import logger
from filterpro.models import DatasourceType, RestApiConfig, StaticConfig
from filterpro.services.fetchers.rest_api import extract_response_path, request_json
from filterpro.services.sync import SyncEngine


async def proxy_options(
    sync_engine: SyncEngine,
    datasource_id: str,
    params: Optional[Dict[str, str]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Any:
    """
    Reads options straight from the external source, bypassing the Option
    Store. Request params fill the {{name}} templates of the configured
    query params. Only REST and static datasources can be proxied.
    """
    datasource = await sync_engine.get_datasource(datasource_id)
    config = datasource.typed_config()

    if datasource.type == DatasourceType.REST_API:
        rest_config = cast(RestApiConfig, config)
        data = await request_json(rest_config, params=params or {}, client=client)
        data = extract_response_path(data, rest_config.response_path)
        logger.info(f"Proxied options for '{datasource_id}' from {rest_config.base_url}")
        return data if data is not None else []

    if datasource.type == DatasourceType.STATIC:
        return list(cast(StaticConfig, config).options)

    raise ConfigurationError(
        f"Datasource type '{datasource.type.value}' cannot be read directly, sync it instead"
    )
