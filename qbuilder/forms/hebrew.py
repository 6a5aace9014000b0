"""
Hebrew (he-IL) formatting for quote documents.

reportlab draws glyphs left to right in the order it receives them, so every
directional string goes through rtl() first: python-bidi reorders the logical
string into visual order and keeps embedded numbers/Latin runs readable.
Numbers and currency are formatted the way he-IL does it: comma thousands,
dot decimal, shekel sign in front.
"""

from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from bidi.algorithm import get_display

CURRENCY_SYMBOL = "₪"

_CENTS = Decimal("0.01")
_QTY_STEP = Decimal("0.001")


def to_decimal(value) -> Decimal:
    """Coerce int/float/str/Decimal to Decimal (floats via str to avoid binary noise)."""
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return Decimal(0)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Not a number: {value!r}") from e


def format_currency(value) -> str:
    """1234.5 → '₪1,234.50' (always two decimals, grouped thousands)."""
    amount = to_decimal(value).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return f"{CURRENCY_SYMBOL}{amount:,.2f}"


def format_number(value) -> str:
    """Locale number without forced decimals: 2 → '2', 1500 → '1,500', 2.5 → '2.5'."""
    q = to_decimal(value).quantize(_QTY_STEP, rounding=ROUND_HALF_UP)
    text = f"{q:,.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def format_date(value) -> str:
    """DD/MM/YYYY"""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        value = value.date()
    if not isinstance(value, date):
        raise ValueError(f"Not a date: {value!r}")
    return value.strftime("%d/%m/%Y")


def format_percent(rate) -> str:
    """0.18 → '18' (label only; the VAT amount itself is never rounded here)."""
    pct = (to_decimal(rate) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return str(int(pct))


def rtl(text) -> str:
    """Logical → visual order for drawing. Empty/None → ''."""
    if not text:
        return ""
    return get_display(str(text))
