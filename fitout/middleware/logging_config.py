"""
Logging for the workflow engine.

Services log one line per transition and pass the workflow context through
``extra``:

    logger.info("Quotation approved", extra={"case_id": 3, "entity_type": "quotation",
                "entity_id": 7, "action": "quotation.approve", "actor_id": "u-proc"})

The request timing middleware adds the request fields. Production writes JSON
lines; development and tests write one readable line with the context as
``key=value`` pairs. ``LOG_LEVEL`` overrides the level.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

WORKFLOW_FIELDS = ("case_id", "entity_type", "entity_id", "action", "actor_id")
REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms", "remote_addr")


def _context(record: logging.LogRecord, fields) -> dict:
    return {
        key: getattr(record, key)
        for key in fields
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_context(record, REQUEST_FIELDS))
        entry.update(_context(record, WORKFLOW_FIELDS))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``HH:MM:SS LEVEL logger: message  case_id=3 action=quotation.approve``"""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{stamp} {record.levelname:<7} {record.name}: {record.getMessage()}"
        pairs = " ".join(f"{k}={v}" for k, v in _context(record, WORKFLOW_FIELDS).items())
        if pairs:
            line += f"  {pairs}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger."""
    is_testing = app.config.get("TESTING", False)
    json_lines = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if json_lines else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_lines else ReadableFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # SQL echo and werkzeug access lines duplicate the timing middleware
    for name in ("sqlalchemy.engine", "werkzeug"):
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)
