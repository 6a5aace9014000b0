"""
qbuilder/core/paths.py — Centralized Path Configuration

Single source of truth for every directory the service touches.
Modules import from here instead of computing their own DATA_DIR.

Layout under DATA_DIR:
    qbuilder.db     SQLite quote store
    cache/pdfs/     rendered quote PDFs (owned by PdfCache only)
    logs/           rotating JSON log files
"""

import os
import logging

log = logging.getLogger("qbuilder.paths")

# ── Project Root ──────────────────────────────────────────────────────────────
_THIS_FILE = os.path.abspath(__file__)
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(_THIS_FILE)))

_DEFAULT_DATA_DIR = os.path.join(PROJECT_ROOT, "data")
_DEFAULT_FONTS_DIR = os.path.join(PROJECT_ROOT, "assets", "fonts")


# Priority: QBUILDER_DATA_DIR env → project data/
def _resolve_data_dir() -> str:
    """Find the data directory; an env override wins when it is set."""
    env_dir = os.environ.get("QBUILDER_DATA_DIR", "")
    if env_dir:
        return env_dir
    return _DEFAULT_DATA_DIR


DATA_DIR = _resolve_data_dir()

# ── Key Paths ────────────────────────────────────────────────────────────────
DB_PATH = os.path.join(DATA_DIR, "qbuilder.db")
LOG_DIR = os.path.join(DATA_DIR, "logs")
PDF_CACHE_DIR = os.environ.get("QBUILDER_PDF_CACHE_DIR", "") or os.path.join(DATA_DIR, "cache", "pdfs")
FONTS_DIR = os.environ.get("QBUILDER_FONTS_DIR", "") or _DEFAULT_FONTS_DIR

HEBREW_FONT_REGULAR = "NotoSansHebrew-Regular.ttf"
HEBREW_FONT_BOLD = "NotoSansHebrew-Bold.ttf"

os.makedirs(DATA_DIR, exist_ok=True)


def validate_paths() -> dict:
    """Runtime validation — call at app startup to catch path issues early.

    Returns:
        {"ok": bool, "errors": [str], "warnings": [str], "resolved": {name: path}}
    """
    result = {"ok": True, "errors": [], "warnings": [], "resolved": {}}

    result["resolved"] = {
        "PROJECT_ROOT": PROJECT_ROOT,
        "DATA_DIR": DATA_DIR,
        "DB_PATH": DB_PATH,
        "PDF_CACHE_DIR": PDF_CACHE_DIR,
        "FONTS_DIR": FONTS_DIR,
    }

    test_file = os.path.join(DATA_DIR, ".write_test")
    try:
        with open(test_file, "w") as f:
            f.write("ok")
        os.remove(test_file)
    except OSError as e:
        result["errors"].append(f"DATA_DIR not writable: {e}")
        result["ok"] = False

    # Missing fonts are a warning: the composer falls back to Helvetica
    for name in (HEBREW_FONT_REGULAR, HEBREW_FONT_BOLD):
        if not os.path.exists(os.path.join(FONTS_DIR, name)):
            result["warnings"].append(
                f"{name} not found in {FONTS_DIR} — Hebrew text renders with Helvetica")

    return result
