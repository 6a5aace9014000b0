"""
Q-Builder Quote PDF Composer
============================
Renders a QuoteDocument into a single-file, right-to-left Hebrew A4 quote.

Sections, top to bottom:
  - Business header (logo left, name/contact right), thin rule
  - Title block: "הצעת מחיר", quote number, issue and expiry dates
  - Client panel
  - Line-items table (columns laid out right to left, header repeats on
    every page the table spans)
  - Totals box: subtotal, VAT, grand total
  - Terms panel (default terms when the quote has none)
  - Signature boxes + footer on the last page, "עמוד N" on every page

Coordinates below are top-origin (pdfkit/pdfplumber style) and converted
with Y() at draw time. Output is byte-stable for identical input: the canvas
is created with invariant=1 so no creation timestamp or random ID is written.
"""

import io
import os
import logging
from collections import namedtuple
from dataclasses import dataclass
from typing import Optional

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from qbuilder.core.errors import DocumentBuildError
from qbuilder.core.models import QuoteDocument
from qbuilder.core.paths import FONTS_DIR, HEBREW_FONT_BOLD, HEBREW_FONT_REGULAR
from qbuilder.forms.hebrew import (
    format_currency, format_date, format_number, format_percent, rtl,
)

log = logging.getLogger("qbuilder.quote_pdf")

# ═══════════════════════════════════════════════════════════════════════════════
# COLORS
# ═══════════════════════════════════════════════════════════════════════════════
HEADER_FILL  = HexColor("#E3F2FD")   # table header background
ACCENT       = HexColor("#1976D2")   # header border, grand total
ZEBRA        = HexColor("#F5F5F5")   # odd rows
GRID         = HexColor("#CCCCCC")   # table border, separators, rules
PANEL_FILL   = HexColor("#F8F9FA")   # client + totals panels
PANEL_BD     = HexColor("#E9ECEF")
TERMS_FILL   = HexColor("#FFFBF0")
TERMS_BD     = HexColor("#FFC107")
FOOTER_GRAY  = HexColor("#666666")
PAGE_GRAY    = HexColor("#999999")
BLACK        = HexColor("#000000")

# ═══════════════════════════════════════════════════════════════════════════════
# PAGE GEOMETRY: A4 portrait, 50pt margins, content 50 → 550
# ═══════════════════════════════════════════════════════════════════════════════
W, H = A4
ML = 50            # left margin
MR = 550           # right edge of content
CONTENT_TOP = 50   # where a continuation page starts

LOGO_W, LOGO_H = 120, 80

HEADER_H = 25      # table header band
ROW_H = 20         # one table row
BODY_PAD = 5       # gap between header band and first row / last row and border

TABLE_MIN_TOP = 320
TOTALS_MIN_TOP = 500
TERMS_MIN_TOP = 620
SECTION_GAP = 20

FOOTER_Y = H - 70                  # top-origin y of the signature band
CONTENT_LIMIT = FOOTER_Y - 65      # last page: nothing may cross the signatures
TABLE_LIMIT = H - 80               # any page: table rows stop above the page marker

TOTALS_X, TOTALS_W, TOTALS_H = 290, 250, 90
TERMS_W = MR - ML
TERMS_LINE_H = 14

METADATA_TITLE = "הצעת מחיר"
METADATA_AUTHOR = "Q-Builder System"
METADATA_SUBJECT = "Price Quote Document"

DEFAULT_TERMS = (
    'תנאי תשלום: 30 יום מתאריך הוצאת החשבונית. '
    'המחירים כוללים מע"מ. '
    'העבודה תבוצע בהתאם למפרט הטכני.'
)

# ═══════════════════════════════════════════════════════════════════════════════
# FONTS
# ═══════════════════════════════════════════════════════════════════════════════
FontPair = namedtuple("FontPair", "regular bold")

FALLBACK_FONTS = FontPair("Helvetica", "Helvetica-Bold")
_registered = {}       # fonts_dir → FontPair
_warned_dirs = set()


def register_fonts(fonts_dir: Optional[str] = None) -> FontPair:
    """Register the Hebrew TTFs under fonts_dir once per process.

    Missing files → Helvetica fallback (logged once per directory).
    Present but unreadable files → DocumentBuildError naming the font.
    """
    fonts_dir = fonts_dir or FONTS_DIR
    if fonts_dir in _registered:
        return _registered[fonts_dir]

    regular = os.path.join(fonts_dir, HEBREW_FONT_REGULAR)
    bold = os.path.join(fonts_dir, HEBREW_FONT_BOLD)
    if not (os.path.isfile(regular) and os.path.isfile(bold)):
        if fonts_dir not in _warned_dirs:
            _warned_dirs.add(fonts_dir)
            log.warning("Hebrew fonts not found in %s, falling back to Helvetica", fonts_dir)
        return FALLBACK_FONTS

    suffix = len(_registered)
    pair = FontPair(f"HebrewRegular{suffix or ''}", f"HebrewBold{suffix or ''}")
    for name, path in ((pair.regular, regular), (pair.bold, bold)):
        try:
            pdfmetrics.registerFont(TTFont(name, path))
        except Exception as e:
            raise DocumentBuildError(f"Hebrew font load failed ({os.path.basename(path)}): {e}") from e
    _registered[fonts_dir] = pair
    log.info("Registered Hebrew fonts from %s", fonts_dir)
    return pair


# ═══════════════════════════════════════════════════════════════════════════════
# TABLE LAYOUT: pure geometry, no canvas
# ═══════════════════════════════════════════════════════════════════════════════
Column = namedtuple("Column", "key label width align")

# Reading order: the first column sits at the right edge
TABLE_COLUMNS = (
    Column("line_total", 'סה"כ', 90, "center"),
    Column("unit_price", "מחיר יחידה", 90, "center"),
    Column("quantity", "כמות", 70, "center"),
    Column("unit", "יחידה", 70, "center"),
    Column("description", "תיאור", 180, "right"),
)
TABLE_W = sum(col.width for col in TABLE_COLUMNS)


@dataclass(frozen=True)
class ColumnBox:
    key: str
    label: str
    x: float
    width: float
    align: str


@dataclass(frozen=True)
class TableSegment:
    """The part of the table drawn on one page."""
    header_top: float
    first_item: int
    row_tops: tuple
    bottom: float


@dataclass(frozen=True)
class TableLayout:
    columns: tuple
    segments: tuple

    @property
    def body_rows(self) -> int:
        return sum(len(s.row_tops) for s in self.segments)

    @property
    def bottom(self) -> float:
        return self.segments[-1].bottom

    @property
    def page_breaks(self) -> int:
        return len(self.segments) - 1


def column_boxes(right_edge: float = ML + TABLE_W) -> tuple:
    """Accumulate column x positions leftward from right_edge."""
    boxes = []
    x = right_edge
    for col in TABLE_COLUMNS:
        x -= col.width
        boxes.append(ColumnBox(col.key, col.label, x, col.width, col.align))
    return tuple(boxes)


def layout_items_table(items, top: float,
                       limit: float = TABLE_LIMIT,
                       restart_top: float = CONTENT_TOP) -> TableLayout:
    """Place the header and one row per item starting at top-origin y=top.

    Only len(items) matters here. Rows that would cross `limit` move to a new segment (next page) whose
    header starts at restart_top. Zero items → header plus an empty body.
    """
    segments = []
    header_top = top
    first = 0
    rows = []
    y = header_top + HEADER_H + BODY_PAD
    for idx in range(len(items)):
        if y + ROW_H > limit and rows:
            segments.append(TableSegment(header_top, first, tuple(rows), y + BODY_PAD))
            header_top = restart_top
            first = idx
            rows = []
            y = header_top + HEADER_H + BODY_PAD
        rows.append(y)
        y += ROW_H
    segments.append(TableSegment(header_top, first, tuple(rows), y + BODY_PAD))
    return TableLayout(column_boxes(), tuple(segments))


# ═══════════════════════════════════════════════════════════════════════════════
# DRAW HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def Y(top_y):
    """Top-origin y → reportlab y."""
    return H - top_y


def _text(c, x, yt, txt, font, size=10, color=BLACK, align="right"):
    """Draw txt with its baseline at top-origin yt. Directional text → rtl() first."""
    c.setFont(font, size)
    c.setFillColor(color)
    s = rtl(txt)
    if align == "right":
        c.drawRightString(x, Y(yt), s)
    elif align == "center":
        c.drawCentredString(x, Y(yt), s)
    else:
        c.drawString(x, Y(yt), s)


def _box(c, x, yt, w, h, fill=None, stroke=None, lw=0.5):
    c.setLineWidth(lw)
    if fill is not None:
        c.setFillColor(fill)
    if stroke is not None:
        c.setStrokeColor(stroke)
    c.rect(x, Y(yt) - h, w, h, fill=1 if fill is not None else 0,
           stroke=1 if stroke is not None else 0)


def _hline(c, x1, x2, yt, color=GRID, lw=0.5):
    c.setStrokeColor(color)
    c.setLineWidth(lw)
    c.line(x1, Y(yt), x2, Y(yt))


def _fit_line(text, font, size, width):
    """First wrapped line of text; '...' marks anything cut."""
    lines = simpleSplit(str(text or ""), font, size, width)
    if not lines:
        return ""
    if len(lines) == 1:
        return lines[0]
    return lines[0] + "..."


class _Pages:
    """Page counter; stamps the "עמוד N" marker before every page turn."""

    def __init__(self, c, fonts):
        self.c = c
        self.fonts = fonts
        self.number = 1

    def marker(self):
        _text(self.c, MR - 15, FOOTER_Y + 43, f"עמוד {self.number}",
              self.fonts.regular, 8, PAGE_GRAY, "center")

    def turn(self):
        self.marker()
        self.c.showPage()
        self.number += 1
        return CONTENT_TOP


# ═══════════════════════════════════════════════════════════════════════════════
# SECTIONS: each returns the top-origin y of its bottom edge
# ═══════════════════════════════════════════════════════════════════════════════

def _draw_logo(c, path) -> bool:
    """Fit the logo into 120x80 at the top-left corner. Unreadable → skipped."""
    if not path or not os.path.isfile(path):
        return False
    try:
        img = ImageReader(path)
        iw, ih = img.getSize()
        scale = min(LOGO_W / iw, LOGO_H / ih)
        dw, dh = iw * scale, ih * scale
        c.drawImage(img, ML, Y(CONTENT_TOP) - dh, width=dw, height=dh,
                    preserveAspectRatio=True, mask="auto")
        return True
    except Exception as e:
        log.warning("Logo load failed (%s): %s", path, e)
        return False


def _draw_header(c, fonts, doc: QuoteDocument) -> float:
    biz = doc.business
    _draw_logo(c, biz.logo_path)

    _text(c, MR, 66, biz.name, fonts.bold, 16)
    yt = 88
    for line in (biz.address,
                 f"טלפון: {biz.phone}" if biz.phone else "",
                 f'דוא"ל: {biz.email}' if biz.email else ""):
        if line:
            _text(c, MR, yt, line, fonts.regular, 10)
            yt += 18

    rule_y = max(CONTENT_TOP + LOGO_H + 10, yt)
    _hline(c, ML, MR, rule_y)
    return rule_y


def _draw_title(c, fonts, doc: QuoteDocument, top: float) -> float:
    _text(c, MR, top + 28, "הצעת מחיר", fonts.bold, 18)
    yt = top + 52
    for label, value in (("מספר הצעה:", doc.quote_number),
                         ("תאריך הנפקה:", format_date(doc.issue_date)),
                         ("תוקף עד:", format_date(doc.expiry_date))):
        _text(c, MR, yt, f"{label} {value}", fonts.regular, 11)
        yt += 18
    return yt


def _draw_client(c, fonts, doc: QuoteDocument, top: float) -> float:
    """Client panel in the left column, beside the title block."""
    cl = doc.client
    px, pw = ML - 10, 250
    right = px + pw - 10

    _text(c, right, top + 14, "פרטי לקוח:", fonts.bold, 12)

    lines = [(cl.name, fonts.bold, 12)]
    if cl.contact_person and cl.contact_person.strip() != cl.name.strip():
        lines.append((f"איש קשר: {cl.contact_person}", fonts.regular, 10))
    if cl.phone:
        lines.append((f"טלפון: {cl.phone}", fonts.regular, 10))
    if cl.address:
        lines.append((f"כתובת: {cl.address}", fonts.regular, 10))

    panel_top = top + 22
    panel_h = max(80, 16 * len(lines) + 14)
    _box(c, px, panel_top, pw, panel_h, fill=PANEL_FILL, stroke=PANEL_BD)

    yt = panel_top + 18
    for txt, font, size in lines:
        _text(c, right, yt, _fit_line(txt, font, size, pw - 20), font, size)
        yt += 16
    return panel_top + panel_h


def _draw_table_header(c, fonts, layout: TableLayout, seg: TableSegment):
    _box(c, ML, seg.header_top, TABLE_W, HEADER_H, fill=HEADER_FILL, stroke=ACCENT, lw=1)
    for col in layout.columns:
        _text(c, col.x + col.width / 2, seg.header_top + 17, col.label,
              fonts.bold, 11, BLACK, "center")


def _cell_text(item, col: ColumnBox, fonts) -> str:
    value = getattr(item, col.key)
    if col.key in ("line_total", "unit_price"):
        return format_currency(value)
    if col.key == "quantity":
        return format_number(value)
    return _fit_line(value, fonts.regular, 10, col.width - 10)


def _draw_items_table(c, fonts, pages: _Pages, doc: QuoteDocument, top: float) -> float:
    layout = layout_items_table(doc.items, top)
    for n, seg in enumerate(layout.segments):
        if n:
            pages.turn()
        _draw_table_header(c, fonts, layout, seg)

        for offset, row_top in enumerate(seg.row_tops):
            idx = seg.first_item + offset
            item = doc.items[idx]
            if idx % 2 == 1:
                _box(c, ML, row_top, TABLE_W, ROW_H, fill=ZEBRA)
            for col in layout.columns:
                txt = _cell_text(item, col, fonts)
                if col.align == "right":
                    _text(c, col.x + col.width - 5, row_top + 14, txt, fonts.regular, 10)
                else:
                    _text(c, col.x + col.width / 2, row_top + 14, txt,
                          fonts.regular, 10, BLACK, "center")

        # Outer border + column separators over the fills
        _box(c, ML, seg.header_top, TABLE_W, seg.bottom - seg.header_top, stroke=GRID)
        c.setStrokeColor(GRID)
        c.setLineWidth(0.5)
        for col in layout.columns[:-1]:
            c.line(col.x, Y(seg.header_top), col.x, Y(seg.bottom))
    return layout.bottom


def _draw_totals(c, fonts, pages: _Pages, doc: QuoteDocument, prev_bottom: float) -> float:
    top = max(TOTALS_MIN_TOP, prev_bottom + SECTION_GAP)
    if top + TOTALS_H > CONTENT_LIMIT:
        top = pages.turn()

    _box(c, TOTALS_X, top, TOTALS_W, TOTALS_H, fill=PANEL_FILL, stroke=GRID)
    label_x = TOTALS_X + TOTALS_W - 10
    amount_x = TOTALS_X + 10

    _text(c, label_x, top + 22, "סכום ביניים:", fonts.regular, 12)
    _text(c, amount_x, top + 22, format_currency(doc.subtotal), fonts.regular, 12, align="left")

    _text(c, label_x, top + 42, f'מע"מ ({format_percent(doc.vat_rate)}%):', fonts.regular, 12)
    _text(c, amount_x, top + 42, format_currency(doc.vat_amount), fonts.regular, 12, align="left")

    _hline(c, TOTALS_X + 10, TOTALS_X + TOTALS_W - 10, top + 54, GRID, 1)

    _text(c, label_x, top + 76, "סה\"כ לתשלום:", fonts.bold, 14, ACCENT)
    _text(c, amount_x, top + 76, format_currency(doc.total), fonts.bold, 14, ACCENT, "left")
    return top + TOTALS_H


def _draw_terms(c, fonts, pages: _Pages, doc: QuoteDocument, prev_bottom: float) -> float:
    terms = doc.terms if doc.terms and doc.terms.strip() else DEFAULT_TERMS
    lines = []
    for para in terms.splitlines() or [""]:
        lines.extend(simpleSplit(para, fonts.regular, 10, TERMS_W - 20) or [""])

    top = max(TERMS_MIN_TOP, prev_bottom + SECTION_GAP)
    if top + 22 + _terms_panel_h(len(lines)) > CONTENT_LIMIT:
        top = pages.turn()

    # Longer than a page: one panel per page, heading repeated
    while True:
        room = max(1, int((CONTENT_LIMIT - top - 22 - 16) // TERMS_LINE_H))
        chunk, lines = lines[:room], lines[room:]

        _text(c, MR, top + 14, "תנאים והערות:", fonts.bold, 12)
        panel_top = top + 22
        panel_h = _terms_panel_h(len(chunk))
        _box(c, ML, panel_top, TERMS_W, panel_h, fill=TERMS_FILL, stroke=TERMS_BD)
        yt = panel_top + 18
        for line in chunk:
            _text(c, MR - 10, yt, line, fonts.regular, 10)
            yt += TERMS_LINE_H
        if not lines:
            return panel_top + panel_h
        top = pages.turn()


def _terms_panel_h(n_lines: int) -> float:
    return max(50, TERMS_LINE_H * n_lines + 16)


def _draw_signature_footer(c, fonts, doc: QuoteDocument):
    sig_top = FOOTER_Y - 45
    _text(c, 145, sig_top + 14, "חתימת הלקוח:", fonts.regular, 10)
    _box(c, 150, sig_top, 120, 20, stroke=GRID)
    _text(c, 345, sig_top + 14, "תאריך:", fonts.regular, 10)
    _box(c, 350, sig_top, 80, 20, stroke=GRID)
    _text(c, MR, sig_top - 6, "חתימת הקבלן:", fonts.regular, 10)
    _box(c, 450, FOOTER_Y - 20, 100, 20, stroke=GRID)

    _hline(c, ML, MR, FOOTER_Y + 10)
    biz = doc.business
    parts = [biz.name]
    if biz.phone:
        parts.append(f"טלפון: {biz.phone}")
    if biz.email:
        parts.append(f'דוא"ל: {biz.email}')
    _text(c, (ML + MR) / 2, FOOTER_Y + 26, " • ".join(parts),
          fonts.regular, 9, FOOTER_GRAY, "center")


# ═══════════════════════════════════════════════════════════════════════════════
# ENTRY POINT
# ═══════════════════════════════════════════════════════════════════════════════

def render_quote_pdf(document: QuoteDocument, fonts_dir: Optional[str] = None) -> bytes:
    """Compose the quote and return the complete PDF bytes.

    Never consults a store or cache. Raises DocumentBuildError when anything
    prevents a complete document; no partial bytes are returned.
    """
    fonts = register_fonts(fonts_dir)
    buf = io.BytesIO()
    try:
        c = canvas.Canvas(buf, pagesize=A4, invariant=1)
        c.setTitle(METADATA_TITLE)
        c.setAuthor(METADATA_AUTHOR)
        c.setSubject(METADATA_SUBJECT)

        pages = _Pages(c, fonts)
        header_bottom = _draw_header(c, fonts, document)
        title_bottom = _draw_title(c, fonts, document, header_bottom)
        client_bottom = _draw_client(c, fonts, document, header_bottom + 10)

        table_top = max(TABLE_MIN_TOP, title_bottom + SECTION_GAP, client_bottom + SECTION_GAP)
        table_bottom = _draw_items_table(c, fonts, pages, document, table_top)
        totals_bottom = _draw_totals(c, fonts, pages, document, table_bottom)
        _draw_terms(c, fonts, pages, document, totals_bottom)

        _draw_signature_footer(c, fonts, document)
        pages.marker()
        c.showPage()
        c.save()
    except DocumentBuildError:
        raise
    except Exception as e:
        raise DocumentBuildError(f"PDF composition failed: {e}") from e

    data = buf.getvalue()
    log.debug("Rendered quote %s: %d items, %d pages, %d bytes",
              document.quote_number, len(document.items), pages.number, len(data))
    return data
