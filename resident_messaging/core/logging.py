import logging
from logging.config import dictConfig
from typing import Any, Dict, Literal

LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]

# Loggers that get their own console handler from uvicorn unless cleared.
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
# Chatty third-party loggers held at WARNING unless the app itself runs at DEBUG.
_NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "python_http_client")


def _formatter(json_logs: bool) -> Dict[str, Any]:
    if json_logs:
        return {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(request_id)s %(message)s",
            "rename_fields": {"levelname": "level", "name": "logger"},
        }
    return {"format": "%(asctime)s %(levelname)-8s [%(request_id)s] %(name)s: %(message)s"}


def configure_logging(level: LogLevel = "INFO", json_logs: bool = True) -> None:
    """Route every log record through one console handler tagged with the request id."""
    level = level.upper()
    third_party_level = "DEBUG" if level == "DEBUG" else "WARNING"
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "request_id": {"()": "resident_messaging.core.request_context.RequestIdLogFilter"},
            },
            "formatters": {"messaging": _formatter(json_logs)},
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "messaging",
                    "filters": ["request_id"],
                }
            },
            "loggers": {name: {"level": third_party_level} for name in _NOISY_LOGGERS},
            "root": {"handlers": ["console"], "level": level},
        }
    )

    for name in _SERVER_LOGGERS:
        logging.getLogger(name).handlers = []
