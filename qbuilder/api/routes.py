"""
qbuilder/api/routes.py — HTTP surface

Every /api route except /api/health requires Basic auth and an X-Tenant-Id
header naming the tenant the request acts for. Errors come back as
{"ok": false, "error": ..., "code": ...} with the error's status.
"""

import hmac
import logging
import functools

from flask import Blueprint, Response, current_app, jsonify, request

from qbuilder import __version__
from qbuilder.core.errors import AppError
from qbuilder.core.security import rate_limit
from qbuilder.forms.quote_documents import get_quote_pdf, parse_id

log = logging.getLogger("qbuilder.api")

bp = Blueprint("qbuilder", __name__)

PDF_NO_CACHE_HEADERS = {
    "Cache-Control": "private, no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


# ═══════════════════════════════════════════════════════════════════════
# Auth + request context
# ═══════════════════════════════════════════════════════════════════════

def check_auth(username, password):
    cfg = current_app.config
    return (hmac.compare_digest(username or "", cfg["API_USER"])
            and hmac.compare_digest(password or "", cfg["API_PASS"]))


def auth_required(f):
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        auth = request.authorization
        if not auth or not check_auth(auth.username, auth.password):
            return Response(
                "Q-Builder API — Login Required",
                401, {"WWW-Authenticate": 'Basic realm="Q-Builder"'})
        return f(*args, **kwargs)
    return decorated


def _services():
    return current_app.extensions["qbuilder"]


def _tenant_id() -> int:
    return parse_id("tenant_id", request.headers.get("X-Tenant-Id", ""))


@bp.app_errorhandler(AppError)
def _handle_app_error(e: AppError):
    if e.status_code >= 500:
        log.error("%s %s failed: %s (%s)", request.method, request.path, e.message, e.details)
    else:
        log.info("%s %s → %d %s", request.method, request.path, e.status_code, e.code)
    return jsonify(e.to_dict()), e.status_code


# ═══════════════════════════════════════════════════════════════════════
# Quote PDF
# ═══════════════════════════════════════════════════════════════════════

@bp.route("/api/quotes/<quote_id>/pdf")
@auth_required
@rate_limit("heavy")
def api_quote_pdf(quote_id):
    """Download the quote as PDF. X-PDF-Cache tells whether it was re-rendered."""
    svc = _services()
    pdf = get_quote_pdf(_tenant_id(), quote_id, svc["provider"], svc["cache"],
                        fonts_dir=svc["config"].fonts_dir)
    headers = {
        "Content-Disposition": f'attachment; filename="{pdf.filename}"',
        "Content-Length": str(len(pdf.content)),
        "X-PDF-Cache": "hit" if pdf.cached else "miss",
        **PDF_NO_CACHE_HEADERS,
    }
    return Response(pdf.content, mimetype="application/pdf", headers=headers)


# ═══════════════════════════════════════════════════════════════════════
# Quote mutations: each one drops the quote's cached PDFs
# ═══════════════════════════════════════════════════════════════════════

@bp.route("/api/quotes/<quote_id>", methods=["PUT"])
@auth_required
@rate_limit("api")
def api_quote_update(quote_id):
    """Body: editable header fields, optional "items" list replacing all items."""
    data = request.get_json(silent=True) or {}
    items = data.get("items")
    if items is not None and not isinstance(items, list):
        raise AppError("items must be a list", 400, "INVALID_ITEMS")
    fields = {k: v for k, v in data.items() if k != "items"}
    result = _services()["provider"].update_quote(
        _tenant_id(), parse_id("quote_id", quote_id), fields, items=items)
    return jsonify(result)


@bp.route("/api/quotes/<quote_id>/status", methods=["PATCH"])
@auth_required
@rate_limit("api")
def api_quote_status(quote_id):
    data = request.get_json(silent=True) or {}
    status = (data.get("status") or "").strip()
    if not status:
        raise AppError("status is required", 400, "STATUS_REQUIRED")
    result = _services()["provider"].update_quote_status(
        _tenant_id(), parse_id("quote_id", quote_id), status)
    return jsonify(result)


# ═══════════════════════════════════════════════════════════════════════
# Cache maintenance
# ═══════════════════════════════════════════════════════════════════════

@bp.route("/api/admin/pdf-cache/stats")
@auth_required
def api_cache_stats():
    stats = _services()["cache"].stats()
    return jsonify({"ok": True, **stats.to_dict()})


@bp.route("/api/admin/pdf-cache/sweep", methods=["POST"])
@auth_required
def api_cache_sweep():
    cache = _services()["cache"]
    before = cache.stats()
    removed = cache.sweep_expired()
    after = cache.stats()
    return jsonify({"ok": True, "removed": removed,
                    "before": before.to_dict(), "after": after.to_dict()})


@bp.route("/api/health")
def api_health():
    """Liveness probe. No auth."""
    return jsonify({"ok": True, "status": "healthy", "version": __version__})
