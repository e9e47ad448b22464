import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

ISO_DATE_RE = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}")

CENTS = Decimal("0.01")


def is_iso_date(value: str) -> bool:
    """True for the strict YYYY-MM-DD shape; the calendar itself is not checked."""
    return bool(ISO_DATE_RE.fullmatch(value or ""))


def normalize_date_iso(value: Any) -> Optional[str]:
    """Normalize common receipt date strings to ISO YYYY-MM-DD.

    Supports:
    - YYYY-MM-DD passthrough (a trailing time part is dropped)
    - DD.MM.YYYY, D.M.YYYY, DD/MM/YYYY
    - Two-digit years map to 19xx for >=70 else 20xx
    """
    if value is None:
        return None
    v = str(value).strip()
    if not v:
        return None
    m = re.fullmatch(r"([0-9]{4}-[0-9]{2}-[0-9]{2})(?:[T ].*)?", v)
    if m:
        return m.group(1)
    m = re.fullmatch(r"([0-9]{1,2})[./]([0-9]{1,2})[./]([0-9]{2,4})", v)
    if m:
        d, mth, y = m.groups()
        if len(y) == 2:
            y = ("20" + y) if int(y) < 70 else ("19" + y)
        if not (1 <= int(mth) <= 12 and 1 <= int(d) <= 31):
            return None
        return f"{int(y):04d}-{int(mth):02d}-{int(d):02d}"
    return None


def parse_cost(value: Any) -> Optional[Decimal]:
    """Parse a cost entry into a finite Decimal, or None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        num = Decimal(value)
    elif isinstance(value, float):
        num = Decimal(str(value))
    else:
        s = str(value).strip()
        # Decimal() also reads fullwidth and other Unicode digits
        if not s or not s.isascii():
            return None
        try:
            num = Decimal(s)
        except InvalidOperation:
            return None
    return num if num.is_finite() else None


def format_cost(value: Decimal) -> str:
    """Render a cost for the wire without exponent notation."""
    return format(value, "f")


def coerce_cost(value: Any) -> Decimal:
    """Read a cost coming back from the backend; missing or broken values read as 0."""
    num = parse_cost(value)
    if num is None or num < 0:
        return Decimal("0")
    return num


def as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()
