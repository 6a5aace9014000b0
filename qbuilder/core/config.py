"""
qbuilder/core/config.py — Process-wide configuration

Built once at startup by load_config() and handed to create_app(); nothing
below reads the environment after that.

Env vars:
  QBUILDER_USER / QBUILDER_PASS   — Basic auth for the API
  SECRET_KEY                      — Flask session key
  QBUILDER_PDF_CACHE_HOURS        — PDF cache retention window (default 24)
  DISABLE_RATE_LIMIT              — "true" turns the rate limiter off
"""

import os
import logging
from dataclasses import dataclass

from qbuilder.core.paths import DB_PATH, FONTS_DIR, PDF_CACHE_DIR

log = logging.getLogger("qbuilder.config")

DEFAULT_CACHE_HOURS = 24


@dataclass(frozen=True)
class AppConfig:
    db_path: str
    pdf_cache_dir: str
    fonts_dir: str
    cache_hours: float = DEFAULT_CACHE_HOURS
    api_user: str = "qbuilder"
    api_pass: str = "changeme"
    secret_key: str = "qbuilder-dev"
    rate_limit_enabled: bool = True


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning("%s=%r is not a number — using %s", name, raw, default)
        return default
    if value <= 0:
        log.warning("%s must be positive — using %s", name, default)
        return default
    return value


def mask(value: str) -> str:
    """Mask a secret for logging: first 2 chars + ****."""
    if not value:
        return "(not set)"
    return value[:2] + "****"


def load_config(**overrides) -> AppConfig:
    """Read the environment into an AppConfig. Keyword overrides win (tests)."""
    values = {
        "db_path": DB_PATH,
        "pdf_cache_dir": PDF_CACHE_DIR,
        "fonts_dir": FONTS_DIR,
        "cache_hours": _env_float("QBUILDER_PDF_CACHE_HOURS", DEFAULT_CACHE_HOURS),
        "api_user": os.environ.get("QBUILDER_USER", "qbuilder"),
        "api_pass": os.environ.get("QBUILDER_PASS", "changeme"),
        "secret_key": os.environ.get("SECRET_KEY", "qbuilder-dev"),
        "rate_limit_enabled": os.environ.get("DISABLE_RATE_LIMIT", "").lower() != "true",
    }
    values.update(overrides)
    config = AppConfig(**values)
    log.info("Config loaded: db=%s cache=%s (%sh) fonts=%s user=%s pass=%s",
             config.db_path, config.pdf_cache_dir, config.cache_hours,
             config.fonts_dir, config.api_user, mask(config.api_pass))
    return config
