"""
Structured logging configuration for the Q-Builder PDF service.
Import and call setup_logging() once at app startup.
"""
import logging
import logging.handlers
import os
import json
from datetime import datetime, timezone

from qbuilder.core.paths import LOG_DIR

EXTRA_FIELDS = ("route", "method", "status", "tenant_id", "quote_id",
                "cache_key", "duration_ms", "level_name")


class JSONFormatter(logging.Formatter):
    """Structured JSON log lines for machine parsing."""
    def format(self, record):
        entry = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        return json.dumps(entry, default=str, ensure_ascii=False)


class HumanFormatter(logging.Formatter):
    """Readable console format with color."""
    COLORS = {
        "DEBUG": "\033[36m", "INFO": "\033[32m",
        "WARNING": "\033[33m", "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, "")
        ts = datetime.now(timezone.utc).strftime("%H:%M:%S")
        ctx = ""
        if hasattr(record, "quote_id"):
            ctx = f" [t={getattr(record, 'tenant_id', '?')} q={record.quote_id}]"
        line = f"{color}{ts} [{record.levelname[0]}] {record.name}{ctx}: {record.getMessage()}{self.RESET}"
        if record.exc_info and record.exc_info[0]:
            line += "\n" + self.formatException(record.exc_info)
        return line


_configured = False


def setup_logging(level=None, json_logs=None, log_dir=None):
    """
    Configure logging for the full application.

    Args:
        level: Override log level (default: from LOG_LEVEL env or INFO)
        json_logs: Force JSON format (default: LOG_FORMAT=json)
        log_dir: Where the rotating file lives (default: <data>/logs)
    """
    if level is None:
        level = os.environ.get("LOG_LEVEL", "INFO").upper()
    if json_logs is None:
        json_logs = os.environ.get("LOG_FORMAT", "").lower() == "json"
    log_dir = log_dir or LOG_DIR

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler()
    console.setFormatter(JSONFormatter() if json_logs else HumanFormatter())
    root.addHandler(console)

    # File handler: rotates at 5MB, keeps 5 backups
    try:
        os.makedirs(log_dir, exist_ok=True)
        fh = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, "qbuilder.log"),
            maxBytes=5_000_000, backupCount=5, encoding="utf-8",
        )
        fh.setFormatter(JSONFormatter())
        root.addHandler(fh)
    except OSError as e:
        logging.getLogger("qbuilder").warning("File logging disabled (%s): %s", log_dir, e)

    # Quiet noisy libs
    for name in ("urllib3", "werkzeug", "PIL", "reportlab", "fontTools"):
        logging.getLogger(name).setLevel(logging.WARNING)

    global _configured
    _configured = True
    logging.getLogger("qbuilder").info("Logging initialized", extra={"level_name": level})


def ensure_logging():
    """setup_logging() unless it already ran in this process."""
    if not _configured:
        setup_logging()
