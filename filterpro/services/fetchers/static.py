# filterpro/services/fetchers/static.py
from typing import Any, Dict, List

from filterpro.models import StaticConfig


async def fetch_rows(config: StaticConfig) -> List[Dict[str, Any]]:
    """Static datasources carry their rows in the config itself."""
    return [dict(option) for option in config.options]
