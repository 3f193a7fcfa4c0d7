"""
Shelfsignal Structured Logging
==============================

One logging setup for the tracking client, the ingestion API and the CLIs.

- JSON lines (log aggregation) or human-readable console output
- Optional rotating log file
- Per-module level overrides, e.g. LOG_MODULE_LEVELS="src.tracking=DEBUG,redis=ERROR"

Engagement and sentiment code passes context through `extra=`; the JSON
formatter lifts those keys to the top level:

    logger.warning("sync failed", extra={"entity_id": 42, "event_type": "impression"})

Usage:
    from src.config import get_settings, configure_logging

    configure_logging(get_settings().logging)
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Dict, Mapping, Optional


# Context keys promoted to top-level JSON fields
EXTRA_FIELDS = ("entity_id", "event_type", "criterion", "attempts", "duration", "status_code")

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = {
    "urllib3": "WARNING",
    "apscheduler": "WARNING",
    "redis": "WARNING",
    "uvicorn.access": "WARNING",
}

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def parse_module_levels(raw: Optional[str]) -> Dict[str, str]:
    """
    Parse "module=LEVEL,module=LEVEL" into a dict.

    Entries without '=' are ignored.
    """
    levels = {}
    for item in (raw or "").split(","):
        name, sep, level = item.partition("=")
        if sep and name.strip() and level.strip():
            levels[name.strip()] = level.strip().upper()
    return levels


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Output format:
        {"ts": "...", "level": "WARNING", "logger": "src.tracking.dispatcher",
         "service": "shelfsignal", "msg": "...", "entity_id": 42}
    """

    def __init__(self, service: str = "shelfsignal"):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "service": self.service,
            "msg": record.getMessage(),
        }

        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            entry["exc_type"] = record.exc_info[0].__name__
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
    module_levels: Optional[Mapping[str, str]] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Replace the root handlers with console (and optional file) output.

    Args:
        level: Root level name
        json_output: JSON lines instead of the console format
        log_file: Rotating file path; its directory is created if missing
        module_levels: Level overrides by logger name (applied after QUIET_LOGGERS)
        max_bytes: Rotation size
        backup_count: Rotated files kept
    """
    formatter = JSONFormatter() if json_output else logging.Formatter(CONSOLE_FORMAT)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr if json_output else sys.stdout)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    overrides = dict(QUIET_LOGGERS)
    overrides.update(module_levels or {})
    for name, module_level in overrides.items():
        logging.getLogger(name).setLevel(getattr(logging, module_level.upper(), logging.INFO))

    root.debug(f"Logging ready: level={level} json={json_output} file={log_file or '-'}")


def configure_logging(config, verbose: bool = False) -> None:
    """setup_logging() from a LoggingConfig; `verbose` forces DEBUG."""
    setup_logging(
        level="DEBUG" if verbose else config.level,
        json_output=config.json_logs,
        log_file=config.log_file,
        module_levels=parse_module_levels(config.module_levels),
    )
