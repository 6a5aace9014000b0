"""
Immutable records passed between the quote store, the PDF composer and the
orchestrator. Amounts are Decimal; lists become tuples on construction.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from qbuilder.forms.hebrew import to_decimal


@dataclass(frozen=True)
class BusinessInfo:
    name: str
    address: str = ""
    phone: str = ""
    email: str = ""
    logo_path: Optional[str] = None


@dataclass(frozen=True)
class ClientInfo:
    name: str
    phone: str = ""
    email: str = ""
    address: str = ""
    contact_person: Optional[str] = None


@dataclass(frozen=True)
class QuoteItem:
    description: str
    unit: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal

    def __post_init__(self):
        for name in ("quantity", "unit_price", "line_total"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))


@dataclass(frozen=True)
class QuoteDocument:
    """Rendering snapshot of one quote. The composer trusts the totals as given."""
    quote_number: str
    issue_date: date
    expiry_date: date
    business: BusinessInfo
    client: ClientInfo
    items: tuple = ()
    subtotal: Decimal = Decimal(0)
    vat_rate: Decimal = Decimal("0.18")
    vat_amount: Decimal = Decimal(0)
    total: Decimal = Decimal(0)
    terms: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "items", tuple(self.items))
        for name in ("subtotal", "vat_rate", "vat_amount", "total"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))

    @classmethod
    def from_dict(cls, d: dict) -> "QuoteDocument":
        """Build from a plain dict (JSON payloads, fixtures)."""
        def _date(v):
            if isinstance(v, datetime):
                return v.date()
            if isinstance(v, str):
                return date.fromisoformat(v[:10])
            return v

        return cls(
            quote_number=str(d.get("quote_number", "")),
            issue_date=_date(d["issue_date"]),
            expiry_date=_date(d["expiry_date"]),
            business=BusinessInfo(**d["business"]),
            client=ClientInfo(**d["client"]),
            items=tuple(QuoteItem(**it) for it in d.get("items", [])),
            subtotal=d.get("subtotal", 0),
            vat_rate=d.get("vat_rate", "0.18"),
            vat_amount=d.get("vat_amount", 0),
            total=d.get("total", 0),
            terms=d.get("terms"),
        )


@dataclass(frozen=True)
class QuoteMetadata:
    """Cheap lookup result: enough to key the cache without loading the quote."""
    exists: bool
    last_modified: Optional[datetime] = None
    display_number: str = ""


@dataclass(frozen=True)
class QuotePdf:
    content: bytes = field(repr=False)
    filename: str
    cached: bool = False
