# filterpro/services/fetchers/sql.py
import ssl
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Callable, Dict, List

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from filterpro.config import SQL_DEFAULT_PORTS, SQL_DRIVERS
from filterpro.errors import ConfigurationError, ExternalFetchError
from filterpro.logging_setup import logger
from filterpro.models import SqlConfig


def build_sql_url(config: SqlConfig) -> URL:
    engine = config.engine.value
    driver = SQL_DRIVERS.get(engine)
    if not driver:
        raise ConfigurationError(f"Unsupported SQL engine: {engine}. Use 'postgresql' or 'mysql'")
    return URL.create(
        drivername=driver,
        username=config.username,
        password=config.password,
        host=config.host,
        port=config.port or SQL_DEFAULT_PORTS[engine],
        database=config.database,
    )


def _connect_args(config: SqlConfig) -> Dict[str, Any]:
    if not config.ssl:
        return {}
    # Certificates of external databases are not verified.
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return {"ssl": context}


def _normalize_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    return value


def normalize_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """Converts driver-specific column types into values MongoDB can store."""
    return {str(key): _normalize_value(value) for key, value in row.items()}


async def fetch_rows(
    config: SqlConfig,
    engine_factory: Callable[..., AsyncEngine] = create_async_engine,
) -> List[Dict[str, Any]]:
    """
    Runs the configured raw query and returns its rows as dictionaries.
    The engine and its pool are disposed whatever the outcome.
    """
    url = build_sql_url(config)
    engine = engine_factory(url, connect_args=_connect_args(config))
    try:
        async with engine.connect() as connection:
            result = await connection.execute(text(config.query))
            rows = [normalize_row(dict(row)) for row in result.mappings().all()]
    except (SQLAlchemyError, OSError) as e:
        raise ExternalFetchError(f"{config.engine.value} query failed on {config.host}/{config.database}: {e}") from e
    finally:
        await engine.dispose()

    logger.info(f"Fetched {len(rows)} rows from {config.engine.value} database {config.database}")
    return rows
