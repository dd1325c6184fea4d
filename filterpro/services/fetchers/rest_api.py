# filterpro/services/fetchers/rest_api.py
import base64
from typing import Any, Dict, List, Optional

import httpx

from filterpro.config import DEFAULT_API_KEY_HEADER
from filterpro.errors import ExternalFetchError
from filterpro.http_client import get_async_client, request_with_retry
from filterpro.logging_setup import logger
from filterpro.models import AuthType, HttpMethod, RestApiConfig, RestAuth


def build_auth_headers(auth: Optional[RestAuth]) -> Dict[str, str]:
    """
    Builds the authentication headers for a REST datasource.
    Incomplete credentials produce no header.
    """
    if not auth or not auth.type:
        return {}

    if auth.type == AuthType.BEARER and auth.token:
        return {"Authorization": f"Bearer {auth.token}"}

    if auth.type == AuthType.API_KEY and auth.api_key:
        return {auth.api_key_header or DEFAULT_API_KEY_HEADER: auth.api_key}

    if auth.type == AuthType.BASIC and auth.username and auth.password:
        credentials = base64.b64encode(f"{auth.username}:{auth.password}".encode()).decode()
        return {"Authorization": f"Basic {credentials}"}

    return {}


def resolve_query_params(configured: Dict[str, Any], params: Dict[str, str]) -> Dict[str, str]:
    """
    Fills {{name}} placeholders in the configured query params with caller
    values. A param whose placeholders cannot all be resolved is dropped, as
    are empty values.
    """
    resolved: Dict[str, str] = {}
    for key, value in configured.items():
        if value is None or value == "":
            continue
        if isinstance(value, str) and "{{" in value and "}}" in value:
            candidate = value
            for param_key, param_value in params.items():
                candidate = candidate.replace(f"{{{{{param_key}}}}}", str(param_value))
            if "{{" in candidate and "}}" in candidate:
                logger.debug(f"Dropping query param '{key}': unresolved template '{value}'")
                continue
            if candidate:
                resolved[key] = candidate
        else:
            resolved[key] = str(value)
    return resolved


def extract_response_path(data: Any, response_path: Optional[str]) -> Any:
    """
    Walks a dot-separated path (e.g. 'data.items') into a JSON payload.
    Numeric segments index into lists.
    """
    if not response_path:
        return data
    for segment in response_path.split("."):
        if isinstance(data, dict):
            data = data.get(segment)
        elif isinstance(data, list) and segment.isdigit() and int(segment) < len(data):
            data = data[int(segment)]
        else:
            return None
    return data


def as_rows(data: Any) -> List[Dict[str, Any]]:
    if data is None:
        return []
    items = data if isinstance(data, list) else [data]
    # Scalar lists (e.g. ["BR", "US"]) become rows keyed by 'value'.
    return [item if isinstance(item, dict) else {"value": item} for item in items]


async def request_json(
    config: RestApiConfig,
    params: Optional[Dict[str, str]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Any:
    """
    Calls the configured endpoint and returns the decoded JSON body.
    The client is closed afterwards unless it was supplied by the caller.
    """
    headers = {"Content-Type": "application/json", **config.headers}
    headers.update(build_auth_headers(config.auth))
    query_params = resolve_query_params(config.query_params, params or {})

    request_kwargs: Dict[str, Any] = {"headers": headers, "params": query_params}
    if config.method != HttpMethod.GET and config.body is not None:
        request_kwargs["json"] = config.body

    owns_client = client is None
    client = client or get_async_client()
    try:
        response = await request_with_retry(client, config.method.value, config.base_url, **request_kwargs)
        return response.json()
    except httpx.HTTPStatusError as e:
        raise ExternalFetchError(
            f"HTTP {e.response.status_code}: {e.response.reason_phrase} from {config.base_url}"
        ) from e
    except httpx.RequestError as e:
        raise ExternalFetchError(f"Could not connect to {config.base_url}: {e}") from e
    except ValueError as e:
        raise ExternalFetchError(f"Response from {config.base_url} is not valid JSON") from e
    finally:
        if owns_client:
            await client.aclose()


async def fetch_rows(config: RestApiConfig, client: Optional[httpx.AsyncClient] = None) -> List[Dict[str, Any]]:
    data = await request_json(config, client=client)
    rows = as_rows(extract_response_path(data, config.response_path))
    logger.info(f"Fetched {len(rows)} rows from {config.base_url}")
    return rows
