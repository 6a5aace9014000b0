"""
Shared pytest fixtures for the Q-Builder PDF test suite.

Every test runs against its own temp data dir: SQLite file, PDF cache and
fonts dir (empty, so the composer uses its Helvetica fallback).
"""
import os
import sys
import base64
import shutil
from datetime import date, timedelta
from decimal import Decimal

import pytest

_PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from qbuilder.core.models import BusinessInfo, ClientInfo, QuoteDocument, QuoteItem  # noqa: E402

API_USER = "qbuilder"
API_PASS = "changeme"


# ── Temp data directory (per-test isolation) ──────────────────────────────────

@pytest.fixture(autouse=True)
def temp_data_dir(tmp_path, monkeypatch):
    """Point every path the service touches at an isolated tmp directory."""
    data = tmp_path / "data"
    fonts = tmp_path / "fonts"
    data.mkdir()
    fonts.mkdir()
    monkeypatch.setenv("QBUILDER_DATA_DIR", str(data))
    monkeypatch.setenv("QBUILDER_FONTS_DIR", str(fonts))
    monkeypatch.setenv("QBUILDER_PDF_CACHE_DIR", str(data / "cache" / "pdfs"))
    return str(data)


@pytest.fixture
def fonts_dir(tmp_path):
    return str(tmp_path / "fonts")


@pytest.fixture
def ttf_fonts_dir(tmp_path):
    """Real TrueType fonts under the Hebrew font file names (reportlab's bundled Vera)."""
    import reportlab
    from qbuilder.core.paths import HEBREW_FONT_BOLD, HEBREW_FONT_REGULAR

    bundled = os.path.join(os.path.dirname(reportlab.__file__), "fonts")
    target = tmp_path / "ttf_fonts"
    target.mkdir()
    shutil.copyfile(os.path.join(bundled, "Vera.ttf"), target / HEBREW_FONT_REGULAR)
    shutil.copyfile(os.path.join(bundled, "VeraBd.ttf"), target / HEBREW_FONT_BOLD)
    return str(target)


@pytest.fixture
def cache_dir(temp_data_dir):
    return os.path.join(temp_data_dir, "cache", "pdfs")


@pytest.fixture
def db_path(temp_data_dir):
    return os.path.join(temp_data_dir, "qbuilder.db")


# ── Sample documents ──────────────────────────────────────────────────────────

@pytest.fixture
def sample_business():
    return BusinessInfo(
        name='חברת הבנייה המובילה בע"מ',
        address="רחוב הרצל 123, תל אביב",
        phone="03-1234567",
        email="info@building.co.il",
    )


@pytest.fixture
def sample_client():
    return ClientInfo(
        name="משפחת כהן",
        phone="050-9876543",
        email="cohen@example.com",
        address="רחוב בן יהודה 45, ירושלים",
        contact_person="דוד כהן",
    )


@pytest.fixture
def sample_document(sample_business, sample_client):
    """Two items: 2 × 100 + 1 × 50 = 250, VAT 18% = 45, total 295."""
    return QuoteDocument(
        quote_number="Q-2024-0001",
        issue_date=date(2024, 3, 1),
        expiry_date=date(2024, 3, 31),
        business=sample_business,
        client=sample_client,
        items=(
            QuoteItem("ריצוף", 'מ"ר', Decimal("2"), Decimal("100"), Decimal("200")),
            QuoteItem("צבע", "יחידה", Decimal("1"), Decimal("50"), Decimal("50")),
        ),
        subtotal=Decimal("250"),
        vat_rate=Decimal("0.18"),
        vat_amount=Decimal("45"),
        total=Decimal("295"),
    )


@pytest.fixture
def make_document(sample_business, sample_client):
    """Factory: document with n generic items (for pagination tests)."""
    def _make(n, **overrides):
        items = tuple(
            QuoteItem(f"פריט {i + 1}", "יחידה", Decimal("1"), Decimal("10"), Decimal("10"))
            for i in range(n)
        )
        values = dict(
            quote_number="Q-2024-0042",
            issue_date=date(2024, 1, 1),
            expiry_date=date(2024, 1, 1) + timedelta(days=30),
            business=sample_business,
            client=sample_client,
            items=items,
            subtotal=Decimal(10 * n),
            vat_rate=Decimal("0.18"),
            vat_amount=Decimal(10 * n) * Decimal("0.18"),
            total=Decimal(10 * n) * Decimal("1.18"),
        )
        values.update(overrides)
        return QuoteDocument(**values)
    return _make


# ── Seeded SQLite store ───────────────────────────────────────────────────────

@pytest.fixture
def provider(db_path):
    from qbuilder.core.db import SqliteQuoteProvider
    return SqliteQuoteProvider(db_path)


@pytest.fixture
def seeded(provider):
    """One tenant, one client, one two-item quote. Returns the ids."""
    tenant = provider.create_user(
        name="Avi", email="avi@building.co.il",
        business_name='חברת הבנייה המובילה בע"מ',
        phone="03-1234567", address="רחוב הרצל 123, תל אביב")
    client = provider.create_client(
        tenant, "משפחת כהן", phone="050-9876543", email="cohen@example.com",
        address="ירושלים", contact_person="דוד כהן")
    quote = provider.create_quote(
        tenant, client, "שיפוץ מטבח", date(2024, 3, 1), date(2024, 3, 31),
        items=[
            {"description": "ריצוף", "unit": 'מ"ר', "quantity": 2, "unit_price": 100},
            {"description": "צבע", "unit": "יחידה", "quantity": 1, "unit_price": 50},
        ],
        quote_number="Q-2024-0001")
    return {"tenant_id": tenant, "client_id": client, "quote_id": quote}


# ── Flask test client ─────────────────────────────────────────────────────────

def _basic_auth_header(user=API_USER, pw=API_PASS):
    creds = base64.b64encode(f"{user}:{pw}".encode()).decode()
    return {"Authorization": f"Basic {creds}"}


class AuthenticatedClient:
    """Wraps Flask test client to add Basic Auth + tenant headers to every request."""
    def __init__(self, client, headers):
        self._client = client
        self._headers = headers

    def _with_headers(self, kwargs):
        headers = dict(self._headers)
        headers.update(kwargs.pop("headers", None) or {})
        kwargs["headers"] = headers
        return kwargs

    def get(self, *args, **kwargs):
        return self._client.get(*args, **self._with_headers(kwargs))

    def post(self, *args, **kwargs):
        return self._client.post(*args, **self._with_headers(kwargs))

    def put(self, *args, **kwargs):
        return self._client.put(*args, **self._with_headers(kwargs))

    def patch(self, *args, **kwargs):
        return self._client.patch(*args, **self._with_headers(kwargs))


@pytest.fixture
def app(temp_data_dir, fonts_dir, cache_dir, db_path):
    """Create Flask app configured for testing."""
    from app import create_app
    from qbuilder.core.config import AppConfig
    from qbuilder.core.security import _limiter

    _limiter.reset()
    config = AppConfig(db_path=db_path, pdf_cache_dir=cache_dir, fonts_dir=fonts_dir,
                       api_user=API_USER, api_pass=API_PASS, rate_limit_enabled=False)
    application = create_app(config, init_logging=False)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def app_provider(app):
    return app.extensions["qbuilder"]["provider"]


@pytest.fixture
def app_seeded(app_provider):
    tenant = app_provider.create_user("Avi", "avi@building.co.il", 'חברת הבנייה המובילה בע"מ',
                                      phone="03-1234567")
    client = app_provider.create_client(tenant, "משפחת כהן", phone="050-9876543")
    quote = app_provider.create_quote(
        tenant, client, "שיפוץ", date(2024, 3, 1), date(2024, 3, 31),
        items=[{"description": "ריצוף", "unit": 'מ"ר', "quantity": 2, "unit_price": 100}],
        quote_number="Q-2024/0007")
    return {"tenant_id": tenant, "client_id": client, "quote_id": quote}


@pytest.fixture
def client(app, app_seeded):
    """Authenticated Flask test client acting for the seeded tenant."""
    headers = _basic_auth_header()
    headers["X-Tenant-Id"] = str(app_seeded["tenant_id"])
    with app.test_client() as c:
        yield AuthenticatedClient(c, headers)


@pytest.fixture
def anon_client(app):
    """Unauthenticated test client."""
    with app.test_client() as c:
        yield c
