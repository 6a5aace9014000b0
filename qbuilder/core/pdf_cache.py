"""
qbuilder/core/pdf_cache.py — Rendered quote PDF cache

One file per (tenant, quote, last_modified) under cache_dir:

    <tenant>-<quote>-<md5(tenant-quote-epoch_ms)>.pdf

The readable prefix lets invalidate_all() find every version of a quote by
name; the hash keeps names fixed-length. File mtime is the entry's creation
clock. Expiry is lazy (is_cached/get delete what they find stale) plus an
explicit sweep_expired() for the maintenance script.

Nothing here raises into the caller: a cache that cannot read or write is
a cache miss, logged at WARNING.
"""

import os
import time
import hashlib
import logging
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

log = logging.getLogger("qbuilder.pdf_cache")

PDF_SUFFIX = ".pdf"
DEFAULT_RETENTION = timedelta(hours=24)


@dataclass(frozen=True)
class CacheStats:
    file_count: int = 0
    total_bytes: int = 0
    oldest_mtime: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "file_count": self.file_count,
            "total_bytes": self.total_bytes,
            "total_mb": round(self.total_bytes / (1024 * 1024), 2),
            "oldest_entry": self.oldest_mtime.isoformat() if self.oldest_mtime else None,
        }


def epoch_ms(last_modified) -> int:
    """datetime (naive = UTC) or int epoch-ms → int epoch-ms."""
    if isinstance(last_modified, datetime):
        if last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=timezone.utc)
        return int(last_modified.timestamp() * 1000)
    return int(last_modified)


class PdfCache:
    """Filesystem read-through cache for rendered quote PDFs."""

    def __init__(self, cache_dir: str, retention: timedelta = DEFAULT_RETENTION,
                 clock: Callable[[], float] = time.time):
        self.cache_dir = cache_dir
        self.retention = retention
        self._clock = clock

    # ── Keys ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _prefix(tenant_id, quote_id) -> str:
        return f"{tenant_id}-{quote_id}-"

    def cache_key(self, tenant_id, quote_id, last_modified) -> str:
        raw = f"{tenant_id}-{quote_id}-{epoch_ms(last_modified)}"
        return self._prefix(tenant_id, quote_id) + hashlib.md5(raw.encode("utf-8")).hexdigest()

    def path_for(self, tenant_id, quote_id, last_modified) -> str:
        return os.path.join(self.cache_dir,
                            self.cache_key(tenant_id, quote_id, last_modified) + PDF_SUFFIX)

    def _is_expired(self, mtime: float) -> bool:
        return self._clock() - mtime > self.retention.total_seconds()

    # ── Lookup ───────────────────────────────────────────────────────────────

    def is_cached(self, tenant_id, quote_id, last_modified) -> bool:
        """True when a fresh entry exists. A stale entry is deleted on sight."""
        path = self.path_for(tenant_id, quote_id, last_modified)
        try:
            mtime = os.path.getmtime(path)
        except OSError:
            return False
        if self._is_expired(mtime):
            self._remove(path)
            log.debug("Expired PDF cache entry removed: %s", os.path.basename(path))
            return False
        return True

    def get(self, tenant_id, quote_id, last_modified) -> Optional[bytes]:
        if not self.is_cached(tenant_id, quote_id, last_modified):
            return None
        path = self.path_for(tenant_id, quote_id, last_modified)
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            log.warning("PDF cache read failed for %s: %s", os.path.basename(path), e)
            return None
        log.debug("PDF cache hit", extra={"tenant_id": tenant_id, "quote_id": quote_id,
                                          "cache_key": os.path.basename(path)})
        return data

    # ── Writes ───────────────────────────────────────────────────────────────

    def put(self, tenant_id, quote_id, last_modified, content: bytes) -> bool:
        """Store content atomically (temp file + rename). Failures are logged, never raised."""
        path = self.path_for(tenant_id, quote_id, last_modified)
        tmp = None
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.cache_dir, suffix=".tmp")
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            os.replace(tmp, path)
            tmp = None
            log.debug("PDF cached: %s (%d bytes)", os.path.basename(path), len(content),
                      extra={"tenant_id": tenant_id, "quote_id": quote_id})
            return True
        except OSError as e:
            log.warning("PDF cache write failed for %s: %s", os.path.basename(path), e)
            return False
        finally:
            if tmp:
                self._remove(tmp)

    def invalidate_all(self, tenant_id, quote_id) -> int:
        """Remove every cached version of one quote, fresh or stale."""
        prefix = self._prefix(tenant_id, quote_id)
        removed = 0
        for name in self._entries():
            if name.startswith(prefix) and self._remove(os.path.join(self.cache_dir, name)):
                removed += 1
        if removed:
            log.info("Invalidated %d cached PDF(s)", removed,
                     extra={"tenant_id": tenant_id, "quote_id": quote_id})
        return removed

    def sweep_expired(self) -> int:
        """Remove every entry older than the retention window."""
        removed = 0
        for name in self._entries():
            path = os.path.join(self.cache_dir, name)
            try:
                mtime = os.path.getmtime(path)
            except OSError:
                continue
            if self._is_expired(mtime) and self._remove(path):
                removed += 1
        log.info("PDF cache sweep removed %d expired file(s)", removed)
        return removed

    def stats(self) -> CacheStats:
        count = 0
        total = 0
        oldest = None
        for name in self._entries():
            try:
                st = os.stat(os.path.join(self.cache_dir, name))
            except OSError:
                continue
            count += 1
            total += st.st_size
            if oldest is None or st.st_mtime < oldest:
                oldest = st.st_mtime
        return CacheStats(
            file_count=count,
            total_bytes=total,
            oldest_mtime=datetime.fromtimestamp(oldest, tz=timezone.utc) if oldest is not None else None,
        )

    # ── Internals ────────────────────────────────────────────────────────────

    def _entries(self) -> list:
        try:
            return sorted(n for n in os.listdir(self.cache_dir) if n.endswith(PDF_SUFFIX))
        except FileNotFoundError:
            return []
        except OSError as e:
            log.warning("PDF cache directory unreadable (%s): %s", self.cache_dir, e)
            return []

    def _remove(self, path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            log.warning("PDF cache delete failed for %s: %s", os.path.basename(path), e)
            return False
