"""
qbuilder/core/db.py — SQLite quote store

The PDF pipeline only needs two reads (cheap metadata, full document) but the
cache also needs something to invalidate on, so the quote mutations live here
too. Every mutation bumps quotes.updated_at and calls on_change(tenant, quote)
before returning; create_app() wires that to PdfCache.invalidate_all.

TABLES:
  users        — one row per tenant: business profile + VAT rate
  clients      — tenant's customers
  quotes       — header: number, dates, status, total_amount (pre-VAT), terms
  quote_items  — ordered line items (position = render order)

Amounts are stored as REAL and read back through Decimal(str(value)).
"""

import sqlite3
import logging
import threading
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Optional

from qbuilder.core.errors import AppError, QuoteConflictError, QuoteNotFoundError
from qbuilder.core.models import (
    BusinessInfo, ClientInfo, QuoteDocument, QuoteItem, QuoteMetadata,
)
from qbuilder.forms.hebrew import to_decimal

log = logging.getLogger("qbuilder.db")

_db_lock = threading.Lock()

DEFAULT_VAT_RATE = Decimal("0.18")
VALID_STATUSES = ("draft", "sent", "accepted", "rejected", "expired")
EDITABLE_FIELDS = ("title", "client_id", "issue_date", "expiry_date", "terms")

_CENTS = Decimal("0.01")

# ── Schema ────────────────────────────────────────────────────────────────────
SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    name            TEXT NOT NULL,
    email           TEXT UNIQUE NOT NULL,
    business_name   TEXT NOT NULL,
    phone           TEXT NOT NULL DEFAULT '',
    address         TEXT NOT NULL DEFAULT '',
    logo_path       TEXT,
    vat_rate        REAL DEFAULT 0.18,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS clients (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name            TEXT NOT NULL,
    contact_person  TEXT,
    phone           TEXT NOT NULL DEFAULT '',
    email           TEXT NOT NULL DEFAULT '',
    address         TEXT NOT NULL DEFAULT '',
    notes           TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS quotes (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    client_id       INTEGER NOT NULL REFERENCES clients(id),
    quote_number    TEXT NOT NULL,
    title           TEXT NOT NULL,
    issue_date      TEXT NOT NULL,
    expiry_date     TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'draft',
    total_amount    REAL NOT NULL DEFAULT 0,
    currency        TEXT NOT NULL DEFAULT 'ILS',
    terms           TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    UNIQUE (user_id, quote_number)
);

CREATE TABLE IF NOT EXISTS quote_items (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    quote_id        INTEGER NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
    position        INTEGER NOT NULL DEFAULT 0,
    description     TEXT NOT NULL,
    unit            TEXT NOT NULL,
    quantity        REAL NOT NULL,
    unit_price      REAL NOT NULL,
    line_total      REAL NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_quotes_user ON quotes(user_id);
CREATE INDEX IF NOT EXISTS idx_clients_user ON clients(user_id);
CREATE INDEX IF NOT EXISTS idx_quote_items_quote ON quote_items(quote_id, position);
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso_date(value) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value)[:10]).isoformat()
    except ValueError:
        raise AppError(f"Invalid date: {value!r} (expected YYYY-MM-DD)", 400, "INVALID_DATE") from None


def _line_total(quantity, unit_price) -> Decimal:
    return (to_decimal(quantity) * to_decimal(unit_price)).quantize(_CENTS, rounding=ROUND_HALF_UP)


class SqliteQuoteProvider:
    """Quote data provider backed by one SQLite file."""

    def __init__(self, db_path: str, on_change: Optional[Callable] = None,
                 clock: Callable[[], datetime] = _utcnow):
        self.db_path = db_path
        self.on_change = on_change
        self._clock = clock
        self.init_db()

    # ── Connection factory ────────────────────────────────────────────────────
    @contextmanager
    def get_db(self):
        """Thread-safe SQLite connection with WAL mode."""
        with _db_lock:
            conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA foreign_keys=ON")
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    def init_db(self):
        """Create all tables if they don't exist. Safe to call multiple times."""
        with self.get_db() as conn:
            conn.executescript(SCHEMA)
        log.info("DB initialized at %s", self.db_path)

    def _now_iso(self) -> str:
        return self._clock().isoformat()

    # ── Seeding ───────────────────────────────────────────────────────────────
    def create_user(self, name: str, email: str, business_name: str, phone: str = "",
                    address: str = "", logo_path: str = None, vat_rate=None) -> int:
        now = self._now_iso()
        with self.get_db() as conn:
            cur = conn.execute("""
                INSERT INTO users (name, email, business_name, phone, address,
                                   logo_path, vat_rate, created_at, updated_at)
                VALUES (?,?,?,?,?,?,?,?,?)
            """, (name, email, business_name, phone, address, logo_path,
                  float(vat_rate) if vat_rate is not None else None, now, now))
            return cur.lastrowid

    def create_client(self, tenant_id: int, name: str, phone: str = "", email: str = "",
                      address: str = "", contact_person: str = None, notes: str = None) -> int:
        now = self._now_iso()
        with self.get_db() as conn:
            cur = conn.execute("""
                INSERT INTO clients (user_id, name, contact_person, phone, email,
                                     address, notes, created_at, updated_at)
                VALUES (?,?,?,?,?,?,?,?,?)
            """, (tenant_id, name, contact_person, phone, email, address, notes, now, now))
            return cur.lastrowid

    def _next_quote_number(self, conn, tenant_id: int, year: int) -> str:
        """Q-YYYY-NNNN, sequence per tenant per year."""
        prefix = f"Q-{year}-"
        row = conn.execute(
            "SELECT quote_number FROM quotes WHERE user_id=? AND quote_number LIKE ? "
            "ORDER BY quote_number DESC LIMIT 1", (tenant_id, prefix + "%")).fetchone()
        seq = 1
        if row:
            tail = row["quote_number"].rsplit("-", 1)[-1]
            if tail.isdigit():
                seq = int(tail) + 1
        return f"{prefix}{seq:04d}"

    def _write_items(self, conn, quote_id: int, items, now: str) -> Decimal:
        conn.execute("DELETE FROM quote_items WHERE quote_id=?", (quote_id,))
        total = Decimal(0)
        for pos, it in enumerate(items):
            lt = _line_total(it.get("quantity", 0), it.get("unit_price", 0))
            total += lt
            conn.execute("""
                INSERT INTO quote_items (quote_id, position, description, unit,
                                         quantity, unit_price, line_total, created_at)
                VALUES (?,?,?,?,?,?,?,?)
            """, (quote_id, pos, it.get("description", ""), it.get("unit", ""),
                  float(to_decimal(it.get("quantity", 0))),
                  float(to_decimal(it.get("unit_price", 0))), float(lt), now))
        return total

    def create_quote(self, tenant_id: int, client_id: int, title: str, issue_date,
                     expiry_date, items=(), terms: str = None, status: str = "draft",
                     quote_number: str = None) -> int:
        """Insert a quote with its items; total_amount = Σ quantity × unit_price."""
        now = self._now_iso()
        with self.get_db() as conn:
            if not conn.execute("SELECT 1 FROM clients WHERE id=? AND user_id=?",
                                (client_id, tenant_id)).fetchone():
                raise QuoteNotFoundError("Client not found", "CLIENT_NOT_FOUND")
            if not quote_number:
                quote_number = self._next_quote_number(conn, tenant_id, self._clock().year)
            cur = conn.execute("""
                INSERT INTO quotes (user_id, client_id, quote_number, title, issue_date,
                                    expiry_date, status, terms, created_at, updated_at)
                VALUES (?,?,?,?,?,?,?,?,?,?)
            """, (tenant_id, client_id, quote_number, title, _iso_date(issue_date),
                  _iso_date(expiry_date), status, terms, now, now))
            quote_id = cur.lastrowid
            total = self._write_items(conn, quote_id, items, now)
            conn.execute("UPDATE quotes SET total_amount=? WHERE id=?", (float(total), quote_id))
        log.info("Quote %s created (%d items, total %s)", quote_number, len(items), total,
                 extra={"tenant_id": tenant_id, "quote_id": quote_id})
        return quote_id

    # ── Reads used by the PDF pipeline ────────────────────────────────────────
    def get_metadata(self, tenant_id: int, quote_id: int) -> QuoteMetadata:
        with self.get_db() as conn:
            row = conn.execute(
                "SELECT quote_number, updated_at FROM quotes WHERE id=? AND user_id=?",
                (quote_id, tenant_id)).fetchone()
        if not row:
            return QuoteMetadata(exists=False)
        return QuoteMetadata(exists=True,
                             last_modified=datetime.fromisoformat(row["updated_at"]),
                             display_number=row["quote_number"])

    def get_full_document(self, tenant_id: int, quote_id: int) -> QuoteDocument:
        """Full rendering snapshot. Missing quote, client or business → 404."""
        with self.get_db() as conn:
            q = conn.execute("SELECT * FROM quotes WHERE id=? AND user_id=?",
                             (quote_id, tenant_id)).fetchone()
            if not q:
                raise QuoteNotFoundError()
            cl = conn.execute("SELECT * FROM clients WHERE id=?", (q["client_id"],)).fetchone()
            biz = conn.execute("SELECT * FROM users WHERE id=?", (q["user_id"],)).fetchone()
            rows = conn.execute(
                "SELECT * FROM quote_items WHERE quote_id=? ORDER BY position, id",
                (quote_id,)).fetchall()
        if not cl:
            raise QuoteNotFoundError("Quote client data not found", "CLIENT_DATA_NOT_FOUND")
        if not biz:
            raise QuoteNotFoundError("Quote user data not found", "USER_DATA_NOT_FOUND")

        vat_rate = to_decimal(biz["vat_rate"]) if biz["vat_rate"] is not None else DEFAULT_VAT_RATE
        subtotal = to_decimal(q["total_amount"])
        vat_amount = (subtotal * vat_rate).quantize(_CENTS, rounding=ROUND_HALF_UP)

        return QuoteDocument(
            quote_number=q["quote_number"],
            issue_date=date.fromisoformat(q["issue_date"]),
            expiry_date=date.fromisoformat(q["expiry_date"]),
            business=BusinessInfo(
                name=biz["business_name"] or "Business Name",
                address=biz["address"] or "",
                phone=biz["phone"] or "",
                email=biz["email"] or "",
                logo_path=biz["logo_path"],
            ),
            client=ClientInfo(
                name=cl["name"],
                phone=cl["phone"] or "",
                email=cl["email"] or "",
                address=cl["address"] or "",
                contact_person=cl["contact_person"],
            ),
            items=tuple(
                QuoteItem(r["description"], r["unit"], r["quantity"],
                          r["unit_price"], r["line_total"])
                for r in rows
            ),
            subtotal=subtotal,
            vat_rate=vat_rate,
            vat_amount=vat_amount,
            total=subtotal + vat_amount,
            terms=q["terms"] if q["terms"] and q["terms"].strip() else None,
        )

    # ── Mutations (each one invalidates cached PDFs) ──────────────────────────
    def _load_for_update(self, conn, tenant_id, quote_id):
        row = conn.execute("SELECT id, status FROM quotes WHERE id=? AND user_id=?",
                           (quote_id, tenant_id)).fetchone()
        if not row:
            raise QuoteNotFoundError()
        return row

    def _changed(self, tenant_id, quote_id):
        if self.on_change:
            self.on_change(tenant_id, quote_id)

    def update_quote(self, tenant_id: int, quote_id: int, fields: dict, items=None) -> dict:
        """Edit header fields and/or replace the items. Accepted quotes are frozen."""
        now = self._now_iso()
        updates = {k: v for k, v in (fields or {}).items() if k in EDITABLE_FIELDS}
        for k in ("issue_date", "expiry_date"):
            if k in updates:
                updates[k] = _iso_date(updates[k])

        with self.get_db() as conn:
            row = self._load_for_update(conn, tenant_id, quote_id)
            if row["status"] == "accepted":
                raise QuoteConflictError("Cannot modify accepted quote", "QUOTE_ACCEPTED")
            if "client_id" in updates and not conn.execute(
                    "SELECT 1 FROM clients WHERE id=? AND user_id=?",
                    (updates["client_id"], tenant_id)).fetchone():
                raise QuoteNotFoundError("Client not found", "CLIENT_NOT_FOUND")
            if items is not None:
                updates["total_amount"] = float(self._write_items(conn, quote_id, items, now))
            updates["updated_at"] = now
            cols = ", ".join(f"{k}=?" for k in updates)
            conn.execute(f"UPDATE quotes SET {cols} WHERE id=?", (*updates.values(), quote_id))

        self._changed(tenant_id, quote_id)
        log.info("Quote updated: %s", ", ".join(k for k in updates if k != "updated_at") or "touch",
                 extra={"tenant_id": tenant_id, "quote_id": quote_id})
        return {"ok": True, "quote_id": quote_id, "updated_at": now}

    def update_quote_status(self, tenant_id: int, quote_id: int, status: str) -> dict:
        """draft/sent/accepted/rejected/expired. Accepted is final; rejected can't be accepted."""
        if status not in VALID_STATUSES:
            raise AppError(f"Invalid status: {status}", 400, "INVALID_STATUS")
        now = self._now_iso()
        with self.get_db() as conn:
            row = self._load_for_update(conn, tenant_id, quote_id)
            current = row["status"]
            if current == "accepted" and status != "accepted":
                raise QuoteConflictError("Cannot change status of accepted quote", "QUOTE_ACCEPTED")
            if status == "accepted" and current == "rejected":
                raise QuoteConflictError("Cannot accept rejected quote", "INVALID_STATUS_TRANSITION")
            conn.execute("UPDATE quotes SET status=?, updated_at=? WHERE id=?",
                         (status, now, quote_id))

        self._changed(tenant_id, quote_id)
        log.info("Quote status %s → %s", current, status,
                 extra={"tenant_id": tenant_id, "quote_id": quote_id})
        return {"ok": True, "quote_id": quote_id, "status": status, "updated_at": now}
