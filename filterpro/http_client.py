# filterpro/http_client.py
import asyncio

import httpx
from filterpro.config import DEFAULT_TIMEOUT, RETRY_ATTEMPTS, RETRY_BACKOFF_FACTOR
from filterpro.logging_setup import logger

SUPPORTED_METHODS = ("GET", "POST", "PUT")
# Client errors are final, except rate limiting.
RETRIABLE_CLIENT_STATUSES = {408, 429}


def get_async_client() -> httpx.AsyncClient:
    """
    HTTP/2 client used for external REST datasources, with the default timeout.
    """
    return httpx.AsyncClient(http2=True, timeout=DEFAULT_TIMEOUT, follow_redirects=True)


def is_retriable(error: Exception) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code
        return status_code >= 500 or status_code in RETRIABLE_CLIENT_STATUSES
    return isinstance(error, httpx.RequestError)


async def request_with_retry(client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
    """
    Sends one request, retrying connection failures, timeouts and 5xx/429
    responses with exponential backoff. The last error is re-raised.
    """
    method = method.upper()
    if method not in SUPPORTED_METHODS:
        raise ValueError(f"Unsupported HTTP method: {method}")

    for attempt in range(1, RETRY_ATTEMPTS + 1):
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except (httpx.RequestError, httpx.HTTPStatusError) as e:
            if not is_retriable(e):
                logger.error(f"{method} {url} failed, not retrying: {e}")
                raise
            if attempt == RETRY_ATTEMPTS:
                logger.error(f"{method} {url} failed after {attempt} attempts: {e}")
                raise

            wait_time = RETRY_BACKOFF_FACTOR * (2 ** (attempt - 1))
            logger.warning(
                f"{method} {url} failed ({attempt}/{RETRY_ATTEMPTS}), retrying in {wait_time:.2f}s",
                extra={"error": str(e)},
            )
            await asyncio.sleep(wait_time)
    raise RuntimeError("request_with_retry exhausted without a result")
