#!/usr/bin/env python3
"""
Q-Builder PDF Service — Application Entry Point
Creates the Flask app, wires the PDF cache to the quote store and registers
the API Blueprint.
"""

import os
import time
import logging
from datetime import timedelta

from flask import Flask, request

from logging_config import ensure_logging
from qbuilder.core.config import AppConfig, load_config
from qbuilder.core.db import SqliteQuoteProvider
from qbuilder.core.paths import validate_paths
from qbuilder.core.pdf_cache import PdfCache

log = logging.getLogger("qbuilder")


def _log_request_start():
    request._start_time = time.time()


def _log_request_end(response):
    if hasattr(request, "_start_time"):
        duration_ms = round((time.time() - request._start_time) * 1000, 1)
        # Skip health spam
        if request.path != "/api/health":
            log.info("%s %s → %d (%.0fms)",
                     request.method, request.path, response.status_code, duration_ms,
                     extra={"route": request.path, "method": request.method,
                            "status": response.status_code, "duration_ms": duration_ms})
    return response


def create_app(config: AppConfig = None, init_logging: bool = True):
    """Application factory. Logging is configured on the first call (gunicorn
    imports the factory, so __main__ never runs there)."""
    if init_logging:
        ensure_logging()
    config = config or load_config()

    app = Flask(__name__)
    app.secret_key = config.secret_key
    app.config.update(
        API_USER=config.api_user,
        API_PASS=config.api_pass,
        RATE_LIMIT_ENABLED=config.rate_limit_enabled,
    )

    paths = validate_paths()
    for warning in paths["warnings"]:
        log.warning("STARTUP: %s", warning)
    for error in paths["errors"]:
        log.error("STARTUP: %s", error)

    cache = PdfCache(config.pdf_cache_dir, retention=timedelta(hours=config.cache_hours))
    provider = SqliteQuoteProvider(config.db_path, on_change=cache.invalidate_all)
    app.extensions["qbuilder"] = {"config": config, "cache": cache, "provider": provider}

    app.before_request(_log_request_start)
    app.after_request(_log_request_end)

    from qbuilder.api.routes import bp
    app.register_blueprint(bp)

    from qbuilder.core.security import init_security
    init_security(app)

    log.info("App ready: db=%s cache=%s", config.db_path, config.pdf_cache_dir)
    return app


# gunicorn "app:create_app()"
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, debug=False)
