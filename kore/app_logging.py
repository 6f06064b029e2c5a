"""Application and audit logging setup.

This module centralizes logging configuration for KORE ERP. It provides:

- A simple JSON formatter (opt-in via LOG_JSON) or a human-readable formatter.
- Timed rotation of log files for application logs (app.log) and the scope
  bypass audit trail (audit.log), honoring retention and timezone options.
- A filter stamping every record with the agency active when it was emitted.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_RETENTION_DAYS,
LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast

from fastapi import FastAPI

from kore.core.tenant_context import get_current_tenant_id

APP_LOGGER = "kore"
AUDIT_LOGGER = "kore.audit"


class TenantLogFilter(logging.Filter):
    """Attach ``agency_id`` (or ``-``) to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        agency_id = get_current_tenant_id()
        record.agency_id = agency_id if agency_id is not None else "-"
        return True


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:
        log_record: dict[str, Any] = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "agency_id": getattr(record, "agency_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter(
        "[%(asctime)s] %(levelname)s in %(name)s [agency=%(agency_id)s]: %(message)s"
    )


def get_log_config() -> dict[str, Any]:
    """Return the effective logging settings read from the environment."""

    log_dir = os.getenv("LOG_DIR", "logs")
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    return {
        "log_dir": os.path.abspath(log_dir),
        "log_level": logging.getLevelName(log_level),
        "log_json": os.getenv("LOG_JSON", "false").lower() == "true",
        "retention_days": int(os.getenv("LOG_RETENTION_DAYS", "7")),
        "rotate_utc": os.getenv("LOG_ROTATE_UTC", "false").lower() == "true",
    }


def _rotating_handler(
    path: str, formatter: logging.Formatter, retention_days: int, rotate_utc: bool
) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        path,
        when="midnight",
        backupCount=retention_days,
        utc=rotate_utc,
    )
    handler.setFormatter(formatter)
    handler.addFilter(TenantLogFilter())
    return handler


def init_logging(app: FastAPI | None = None) -> None:
    """Initialise application and audit loggers."""

    config = get_log_config()
    log_dir = config["log_dir"]
    os.makedirs(log_dir, exist_ok=True)

    formatter = _get_formatter(config["log_json"])
    log_level = getattr(logging, config["log_level"], logging.INFO)

    app_logger = logging.getLogger(APP_LOGGER)
    if not app_logger.handlers:
        app_logger.addHandler(
            _rotating_handler(
                os.path.join(log_dir, "app.log"),
                formatter,
                config["retention_days"],
                config["rotate_utc"],
            )
        )
    app_logger.setLevel(log_level)

    # Audit entries go to their own file; they still propagate to ``kore``.
    audit_logger = logging.getLogger(AUDIT_LOGGER)
    audit_logger.handlers.clear()
    audit_logger.addHandler(
        _rotating_handler(
            os.path.join(log_dir, "audit.log"),
            formatter,
            config["retention_days"],
            config["rotate_utc"],
        )
    )
    audit_logger.setLevel(logging.INFO)

    if app is not None:
        cast(Any, app).logger = app_logger
