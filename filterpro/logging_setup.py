# filterpro/logging_setup.py
import logging
import logging.config
from typing import Any, Dict

from filterpro.config import LOG_LEVEL

LOGGER_NAME = "filterpro"


def build_logging_config(level: str = LOG_LEVEL) -> Dict[str, Any]:
    """
    JSON lines on stdout, each tagged with the request's correlation id
    ('-' outside a request, e.g. scheduled syncs).
    """
    json_handler = {"handlers": ["stdout"], "propagate": False}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "correlation_id": {
                "()": "asgi_correlation_id.CorrelationIdFilter",
                "uuid_length": 32,
                "default_value": "-",
            },
        },
        "formatters": {
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(levelname)s %(correlation_id)s %(name)s %(message)s",
                "rename_fields": {"levelname": "level", "asctime": "time"},
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "json",
                "filters": ["correlation_id"],
            },
        },
        "loggers": {
            LOGGER_NAME: {**json_handler, "level": level},
            "uvicorn": {**json_handler, "level": "INFO"},
            "uvicorn.access": {**json_handler, "level": "WARNING"},
            # Request lines from external datasource calls are noise at INFO.
            "httpx": {**json_handler, "level": "WARNING"},
        },
    }


logger = logging.getLogger(LOGGER_NAME)


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.config.dictConfig(build_logging_config(level))
