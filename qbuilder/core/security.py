"""
Security Middleware — Rate Limiting + Response Headers
======================================================

Rate Limiting:
- In-memory token bucket per client IP and tier; idle buckets pruned every few hundred checks
- "heavy" tier for PDF rendering, "api" for everything else
- 429 JSON response when exceeded; off when config disables it

Headers:
- nosniff / frame / referrer headers on every response
- Cache-Control defaults to no-store unless the route set its own
"""

import time
import logging
import functools
from threading import Lock

from flask import current_app, jsonify, request

log = logging.getLogger("qbuilder.security")

# ═══════════════════════════════════════════════════════════════════════════════
# Rate Limiting
# ═══════════════════════════════════════════════════════════════════════════════

class RateLimiter:
    """Simple in-memory rate limiter using token bucket algorithm."""

    CLEANUP_EVERY = 500   # checks between stale-bucket sweeps

    def __init__(self):
        self._buckets = {}
        self._lock = Lock()
        self._checks = 0

    def check(self, key: str, max_tokens: int = 60, refill_rate: float = 1.0) -> bool:
        """Check if request is allowed. Returns True if allowed, False if rate limited.

        Args:
            key: Unique key for the bucket (usually IP + tier)
            max_tokens: Maximum burst capacity
            refill_rate: Tokens added per second
        """
        with self._lock:
            now = time.time()
            bucket = self._buckets.setdefault(key, {"tokens": max_tokens, "last_refill": now})
            elapsed = now - bucket["last_refill"]

            bucket["tokens"] = min(max_tokens, bucket["tokens"] + elapsed * refill_rate)
            bucket["last_refill"] = now

            allowed = bucket["tokens"] >= 1
            if allowed:
                bucket["tokens"] -= 1
            self._checks += 1
            sweep = self._checks % self.CLEANUP_EVERY == 0

        if sweep:
            removed = self.cleanup()
            if removed:
                log.debug("Rate limiter: dropped %d stale buckets", removed)
        return allowed

    def cleanup(self, max_age: int = 3600) -> int:
        """Remove stale buckets older than max_age seconds."""
        now = time.time()
        with self._lock:
            stale = [k for k, v in self._buckets.items() if now - v["last_refill"] > max_age]
            for k in stale:
                del self._buckets[k]
        return len(stale)

    def reset(self):
        with self._lock:
            self._buckets.clear()
            self._checks = 0


# Global rate limiter instance
_limiter = RateLimiter()


# Rate limit tiers
RATE_LIMITS = {
    "default":     {"max_tokens": 60,  "refill_rate": 2.0},   # 120/min
    "api":         {"max_tokens": 30,  "refill_rate": 1.0},   # 60/min
    "heavy":       {"max_tokens": 10,  "refill_rate": 0.2},   # 12/min (PDF render)
}


def rate_limit(tier: str = "default"):
    """Decorator to apply rate limiting to a route."""
    def decorator(f):
        @functools.wraps(f)
        def wrapper(*args, **kwargs):
            if not current_app.config.get("RATE_LIMIT_ENABLED", True):
                return f(*args, **kwargs)

            ip = request.remote_addr or "unknown"
            key = f"{ip}:{tier}"
            limits = RATE_LIMITS.get(tier, RATE_LIMITS["default"])

            if not _limiter.check(key, **limits):
                log.warning("Rate limit exceeded: %s tier=%s", ip, tier)
                return jsonify({"ok": False, "error": "Rate limit exceeded. Please try again shortly.",
                                "code": "RATE_LIMITED"}), 429

            return f(*args, **kwargs)
        return wrapper
    return decorator


# ═══════════════════════════════════════════════════════════════════════════════
# Security Headers Middleware
# ═══════════════════════════════════════════════════════════════════════════════

def add_security_headers(response):
    """Add security headers to every response."""
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "SAMEORIGIN"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if not response.headers.get("Cache-Control"):
        response.headers["Cache-Control"] = "no-store"
    return response


def init_security(app):
    """Initialize security middleware on the Flask app."""
    app.after_request(add_security_headers)
    log.info("Security middleware initialized: rate limiting=%s, security headers",
             "on" if app.config.get("RATE_LIMIT_ENABLED", True) else "off")
