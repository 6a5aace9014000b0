"""Tests for the quote PDF composer: layout geometry, determinism, content."""

import io
import re
from decimal import Decimal

import pytest
from pypdf import PdfReader

from qbuilder.core.errors import DocumentBuildError
from qbuilder.core.models import BusinessInfo, ClientInfo
from qbuilder.forms import quote_pdf
from qbuilder.forms.quote_pdf import (
    BODY_PAD, CONTENT_LIMIT, CONTENT_TOP, DEFAULT_TERMS, H, HEADER_H, ML, ROW_H, TABLE_LIMIT,
    layout_items_table, register_fonts, render_quote_pdf,
)


def _reader(data: bytes) -> PdfReader:
    return PdfReader(io.BytesIO(data))


def _text(data: bytes) -> str:
    return "\n".join(page.extract_text() or "" for page in _reader(data).pages)


# ═══════════════════════════════════════════════════════════════════════════════
# Table geometry
# ═══════════════════════════════════════════════════════════════════════════════

class TestLayoutItemsTable:
    def test_columns_run_right_to_left(self):
        layout = layout_items_table([], 320)
        keys = [c.key for c in layout.columns]
        assert keys == ["line_total", "unit_price", "quantity", "unit", "description"]
        xs = [c.x for c in layout.columns]
        assert xs == [460, 370, 300, 230, 50]
        assert layout.columns[-1].x == ML

    def test_column_widths(self):
        widths = [c.width for c in layout_items_table([], 320).columns]
        assert widths == [90, 90, 70, 70, 180]

    def test_empty_items_header_only(self):
        layout = layout_items_table([], 320)
        assert layout.body_rows == 0
        assert layout.page_breaks == 0
        assert layout.bottom == 320 + HEADER_H + 2 * BODY_PAD

    def test_row_pitch_and_bottom(self):
        layout = layout_items_table(["a", "b", "c"], 320)
        seg = layout.segments[0]
        assert seg.row_tops == (350, 370, 390)
        assert layout.bottom == 390 + ROW_H + BODY_PAD

    def test_long_table_continues_on_new_page(self):
        items = list(range(100))
        layout = layout_items_table(items, 320)
        assert layout.body_rows == 100
        assert layout.page_breaks >= 2
        for seg in layout.segments[1:]:
            assert seg.header_top == CONTENT_TOP
        for seg in layout.segments:
            for top in seg.row_tops:
                assert top + ROW_H <= TABLE_LIMIT

    def test_segments_cover_items_in_order(self):
        layout = layout_items_table(list(range(75)), 320)
        expected_first = 0
        for seg in layout.segments:
            assert seg.first_item == expected_first
            expected_first += len(seg.row_tops)
        assert expected_first == 75


# ═══════════════════════════════════════════════════════════════════════════════
# Rendering
# ═══════════════════════════════════════════════════════════════════════════════

class TestRenderQuotePdf:
    def test_returns_pdf_bytes(self, sample_document, fonts_dir):
        data = render_quote_pdf(sample_document, fonts_dir=fonts_dir)
        assert data.startswith(b"%PDF")
        assert data.rstrip().endswith(b"%%EOF")

    def test_idempotent(self, sample_document, fonts_dir):
        first = render_quote_pdf(sample_document, fonts_dir=fonts_dir)
        second = render_quote_pdf(sample_document, fonts_dir=fonts_dir)
        assert first == second

    def test_metadata(self, sample_document, fonts_dir):
        meta = _reader(render_quote_pdf(sample_document, fonts_dir=fonts_dir)).metadata
        assert meta.title == "הצעת מחיר"
        assert meta.author == "Q-Builder System"
        assert meta.subject == "Price Quote Document"

    def test_end_to_end_amounts(self, sample_document, fonts_dir):
        data = render_quote_pdf(sample_document, fonts_dir=fonts_dir)
        assert len(_reader(data).pages) == 1
        text = _text(data)
        for amount in ("200.00", "50.00", "250.00", "45.00", "295.00"):
            assert amount in text
        assert "Q-2024-0001" in text
        assert "01/03/2024" in text
        assert "31/03/2024" in text

    def test_empty_items_still_renders(self, make_document, fonts_dir):
        data = render_quote_pdf(make_document(0), fonts_dir=fonts_dir)
        assert data.startswith(b"%PDF")
        assert len(_reader(data).pages) == 1

    def test_arithmetic_not_validated(self, make_document, fonts_dir):
        doc = make_document(2, total=Decimal("1"), vat_amount=Decimal("999"))
        assert "999.00" in _text(render_quote_pdf(doc, fonts_dir=fonts_dir))

    def test_many_items_paginate(self, make_document, fonts_dir):
        data = render_quote_pdf(make_document(60), fonts_dir=fonts_dir)
        pages = _reader(data).pages
        assert len(pages) >= 2
        assert "600.00" in _text(data)

    def test_default_terms_when_missing_or_blank(self, make_document, fonts_dir):
        explicit = render_quote_pdf(make_document(1, terms=DEFAULT_TERMS), fonts_dir=fonts_dir)
        assert render_quote_pdf(make_document(1, terms=None), fonts_dir=fonts_dir) == explicit
        assert render_quote_pdf(make_document(1, terms="   "), fonts_dir=fonts_dir) == explicit

    def test_custom_terms_change_output(self, make_document, fonts_dir):
        default = render_quote_pdf(make_document(1), fonts_dir=fonts_dir)
        custom = render_quote_pdf(make_document(1, terms="Net 60"), fonts_dir=fonts_dir)
        assert default != custom
        assert "Net 60" in _text(custom)


# ═══════════════════════════════════════════════════════════════════════════════
# Logo
# ═══════════════════════════════════════════════════════════════════════════════

class TestLogo:
    def _doc_with_logo(self, make_document, sample_business, path):
        biz = BusinessInfo(sample_business.name, sample_business.address,
                           sample_business.phone, sample_business.email, logo_path=path)
        return make_document(1, business=biz)

    def test_logo_embedded(self, tmp_path, make_document, sample_business, fonts_dir):
        from PIL import Image
        path = str(tmp_path / "logo.png")
        Image.new("RGB", (300, 100), (25, 118, 210)).save(path)
        data = render_quote_pdf(self._doc_with_logo(make_document, sample_business, path),
                                fonts_dir=fonts_dir)
        assert b"/Subtype /Image" in data

    def test_missing_logo_skipped(self, tmp_path, make_document, sample_business, fonts_dir):
        doc = self._doc_with_logo(make_document, sample_business, str(tmp_path / "nope.png"))
        data = render_quote_pdf(doc, fonts_dir=fonts_dir)
        assert data.startswith(b"%PDF")
        assert b"/Subtype /Image" not in data

    def test_corrupt_logo_skipped(self, tmp_path, make_document, sample_business, fonts_dir):
        path = tmp_path / "broken.png"
        path.write_bytes(b"definitely not an image")
        doc = self._doc_with_logo(make_document, sample_business, str(path))
        data = render_quote_pdf(doc, fonts_dir=fonts_dir)
        assert data.startswith(b"%PDF")
        assert b"/Subtype /Image" not in data


# ═══════════════════════════════════════════════════════════════════════════════
# Fonts
# ═══════════════════════════════════════════════════════════════════════════════

class TestFonts:
    def test_missing_fonts_fall_back_to_helvetica(self, fonts_dir):
        fonts = register_fonts(fonts_dir)
        assert fonts == quote_pdf.FALLBACK_FONTS

    def test_unreadable_font_is_build_error(self, tmp_path, sample_document):
        bad = tmp_path / "bad_fonts"
        bad.mkdir()
        for name in ("NotoSansHebrew-Regular.ttf", "NotoSansHebrew-Bold.ttf"):
            (bad / name).write_bytes(b"not a truetype file")
        with pytest.raises(DocumentBuildError) as exc:
            render_quote_pdf(sample_document, fonts_dir=str(bad))
        assert exc.value.is_font_error
        assert "NotoSansHebrew-Regular.ttf" in str(exc.value)
        assert str(bad) not in quote_pdf._registered

    def test_is_font_error_flag(self):
        assert DocumentBuildError("TTF table missing").is_font_error
        assert not DocumentBuildError("disk full").is_font_error



# ═══════════════════════════════════════════════════════════════════════════════
# Production font path (embedded TrueType subsets)
# ═══════════════════════════════════════════════════════════════════════════════

class TestTrueTypeFonts:
    def test_registers_truetype_pair(self, ttf_fonts_dir):
        fonts = register_fonts(ttf_fonts_dir)
        assert fonts != quote_pdf.FALLBACK_FONTS
        assert fonts.regular.startswith("HebrewRegular")
        assert register_fonts(ttf_fonts_dir) == fonts

    def test_font_embedded(self, sample_document, ttf_fonts_dir):
        data = render_quote_pdf(sample_document, fonts_dir=ttf_fonts_dir)
        assert b"/FontFile2" in data

    def test_idempotent(self, sample_document, ttf_fonts_dir):
        first = render_quote_pdf(sample_document, fonts_dir=ttf_fonts_dir)
        second = render_quote_pdf(sample_document, fonts_dir=ttf_fonts_dir)
        assert first == second

    def test_metadata(self, sample_document, ttf_fonts_dir):
        meta = _reader(render_quote_pdf(sample_document, fonts_dir=ttf_fonts_dir)).metadata
        assert meta.title == "הצעת מחיר"
        assert meta.author == "Q-Builder System"

    def test_end_to_end_amounts(self, sample_document, ttf_fonts_dir):
        data = render_quote_pdf(sample_document, fonts_dir=ttf_fonts_dir)
        assert len(_reader(data).pages) == 1
        text = _text(data)
        for amount in ("200.00", "50.00", "250.00", "45.00", "295.00"):
            assert amount in text
        assert "Q-2024-0001" in text


# ═══════════════════════════════════════════════════════════════════════════════
# Client panel
# ═══════════════════════════════════════════════════════════════════════════════

class TestClientPanel:
    def _render(self, make_document, fonts_dir, contact):
        client = ClientInfo(name="David Cohen", phone="050-1111111", contact_person=contact)
        return render_quote_pdf(make_document(1, client=client), fonts_dir=fonts_dir)

    def test_distinct_contact_shown(self, make_document, fonts_dir):
        text = _text(self._render(make_document, fonts_dir, "Ruth Levi"))
        assert "Ruth Levi" in text
        assert text.count("David Cohen") == 1

    def test_contact_same_as_name_omitted(self, make_document, fonts_dir):
        without = self._render(make_document, fonts_dir, None)
        assert self._render(make_document, fonts_dir, "David Cohen") == without
        assert self._render(make_document, fonts_dir, " David Cohen ") == without
        assert _text(without).count("David Cohen") == 1

    def test_contact_line_changes_output(self, make_document, fonts_dir):
        without = self._render(make_document, fonts_dir, None)
        assert self._render(make_document, fonts_dir, "Ruth Levi") != without


# ═══════════════════════════════════════════════════════════════════════════════
# Terms longer than a page
# ═══════════════════════════════════════════════════════════════════════════════

def _clause_positions(data: bytes) -> list:
    """(page index, bottom-origin y) of every drawn "Clause NNN" line."""
    found = []
    for n, page in enumerate(_reader(data).pages):
        def visit(text, cm, tm, font_dict, font_size, n=n):
            if "Clause" in text:
                y = cm[1] * tm[4] + cm[3] * tm[5] + cm[5]
                found.append((n, y, text.strip()))
        page.extract_text(visitor_text=visit)
    return found


class TestLongTerms:
    TERMS = "\n".join(f"Clause {i:03d} payable net thirty" for i in range(80))

    def test_terms_split_across_pages(self, make_document, fonts_dir):
        data = render_quote_pdf(make_document(1, terms=self.TERMS), fonts_dir=fonts_dir)
        positions = _clause_positions(data)
        assert len(positions) == 80
        assert len({page for page, _, _ in positions}) >= 2

    def test_no_clause_below_content_limit(self, make_document, fonts_dir):
        data = render_quote_pdf(make_document(1, terms=self.TERMS), fonts_dir=fonts_dir)
        floor = H - CONTENT_LIMIT
        low = [text for _, y, text in _clause_positions(data) if y < floor]
        assert not low

    def test_clauses_keep_order(self, make_document, fonts_dir):
        data = render_quote_pdf(make_document(1, terms=self.TERMS), fonts_dir=fonts_dir)
        numbers = [int(re.search(r"Clause (\d+)", text).group(1))
                   for _, _, text in _clause_positions(data)]
        assert numbers == list(range(80))
