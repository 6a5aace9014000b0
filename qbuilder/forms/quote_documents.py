"""
Quote PDF request orchestration: cache lookup → render on miss → store.

The cache entry is keyed by the quote's last_modified as read *before*
rendering. A mutation that lands between that read and the full fetch gets
its newer content stored under the older key; the next request reads the new
timestamp, misses and re-renders, so the stale-looking entry is never served
for the newer version and ages out on its own.
"""

import re
import time
import logging

from qbuilder.core.errors import (
    DocumentBuildError, InvalidIdentifierError, PdfGenerationError, QuoteNotFoundError,
)
from qbuilder.core.models import QuotePdf
from qbuilder.forms.quote_pdf import render_quote_pdf

log = logging.getLogger("qbuilder.quote_documents")

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_ASCII_DIGITS = re.compile(r"[0-9]+")


def parse_id(name: str, value) -> int:
    """Positive int (or all-digit string) → int; anything else → InvalidIdentifierError."""
    if isinstance(value, bool):
        raise InvalidIdentifierError(name, value)
    if isinstance(value, int):
        ident = value
    elif isinstance(value, str) and _ASCII_DIGITS.fullmatch(value):
        ident = int(value)
    else:
        raise InvalidIdentifierError(name, value)
    if ident <= 0:
        raise InvalidIdentifierError(name, value)
    return ident


def pdf_filename(display_number, fallback=None) -> str:
    """'Q-2024/001' → 'quote-Q-2024001.pdf'. Nothing usable left → the fallback id."""
    safe = _UNSAFE_FILENAME_CHARS.sub("", str(display_number or ""))
    if not safe:
        safe = _UNSAFE_FILENAME_CHARS.sub("", str(fallback or "")) or "document"
    return f"quote-{safe}.pdf"


def get_quote_pdf(tenant_id, quote_id, provider, cache, fonts_dir=None) -> QuotePdf:
    """Return the quote's PDF, from cache when fresh, rendering it otherwise.

    Raises InvalidIdentifierError (400), QuoteNotFoundError (404) or
    PdfGenerationError (500). Cache problems never surface here.
    """
    tenant_id = parse_id("tenant_id", tenant_id)
    quote_id = parse_id("quote_id", quote_id)
    ctx = {"tenant_id": tenant_id, "quote_id": quote_id}

    meta = provider.get_metadata(tenant_id, quote_id)
    if not meta.exists:
        raise QuoteNotFoundError()
    filename = pdf_filename(meta.display_number, quote_id)

    content = cache.get(tenant_id, quote_id, meta.last_modified)
    if content is not None:
        log.info("Serving cached PDF for quote %s", meta.display_number, extra=ctx)
        return QuotePdf(content=content, filename=filename, cached=True)

    t0 = time.time()
    document = provider.get_full_document(tenant_id, quote_id)
    try:
        content = render_quote_pdf(document, fonts_dir=fonts_dir)
    except DocumentBuildError as e:
        log.error("PDF generation failed for quote %s: %s", meta.display_number, e, extra=ctx)
        raise PdfGenerationError(str(e), font_error=e.is_font_error) from e

    cache.put(tenant_id, quote_id, meta.last_modified, content)
    log.info("Generated PDF for quote %s (%d bytes)", meta.display_number, len(content),
             extra={**ctx, "duration_ms": int((time.time() - t0) * 1000)})
    return QuotePdf(content=content, filename=filename, cached=False)
