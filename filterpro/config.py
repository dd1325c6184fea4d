# filterpro/config.py
import os
from typing import Dict

# --- DATABASE CONFIGURATION ---
MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017/")
#MONGO_URI: str = "mongodb://db:27017/" # for docker containers
MONGO_DB_NAME: str = os.getenv("MONGO_DB_NAME", "filterpro")

# --- COLLECTIONS ---
FILTERS_COLLECTION: str = "filters"
DATASOURCES_COLLECTION: str = "datasources"
OPTION_RECORDS_COLLECTION: str = "datasource_data"
SYNC_HISTORY_COLLECTION: str = "sync_history"

# --- LOGGING ---
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# --- HTTP CLIENT (external REST datasources) ---
DEFAULT_TIMEOUT: float = 30.0
RETRY_ATTEMPTS: int = 3
RETRY_BACKOFF_FACTOR: float = 0.5
DEFAULT_API_KEY_HEADER: str = "X-API-Key"

# --- SYNC SCHEDULING ---
# Human-readable sync intervals mapped to their cron expressions.
SYNC_INTERVAL_TO_CRON: Dict[str, str] = {
    "5m": "*/5 * * * *",
    "15m": "*/15 * * * *",
    "1h": "0 * * * *",
    "6h": "0 */6 * * *",
    "24h": "0 0 * * *",
}
DEFAULT_SYNC_INTERVAL: str = "1h"
SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "UTC")

# --- SYNC DEFAULTS ---
DEFAULT_LABEL_FIELD: str = "label"
DEFAULT_VALUE_FIELD: str = "value"
DEFAULT_HISTORY_LIMIT: int = 10
MAX_HISTORY_LIMIT: int = 500

# --- SQL DATASOURCES ---
# SQLAlchemy async driver per supported engine, and the engine's default port.
SQL_DRIVERS: Dict[str, str] = {
    "postgresql": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
}
SQL_DEFAULT_PORTS: Dict[str, int] = {
    "postgresql": 5432,
    "mysql": 3306,
}

# --- QUERY GENERATION ---
DEFAULT_QUERY_FORMAT: str = "mongodb"
