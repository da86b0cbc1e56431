"""Shared parsing and money helpers.

parse_date:       ISO / DD.MM.YYYY / date / datetime → date (raises ValueError)
to_decimal:       request numbers → Decimal without float drift
money:            quantize to 2 places, half-up (GST invoices round this way)
to_quantity:      quantize to the 3 places quantity columns store, half-up
iso:              datetime/date → ISO string or None for to_dict()
"""
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
QUANTITY_STEP = Decimal("0.001")


def parse_date(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, YYYY-MM-DDTHH:MM:SS (→ .date()), DD.MM.YYYY,
    date and datetime objects. Empty input returns None.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValueError(
            f"Invalid date {value!r}. Use YYYY-MM-DD or DD.MM.YYYY."
        ) from exc


def to_decimal(value, field: str = "value") -> Decimal:
    """Convert an int/str/float/Decimal to Decimal.

    Floats go through ``str()`` so 0.1 stays 0.1. Raises ValueError naming
    the field on anything non-numeric.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{field} must be a number")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{field} must be a number") from exc
    if not result.is_finite():
        raise ValueError(f"{field} must be a finite number")
    return result


def _quantize(value, step, field):
    try:
        return to_decimal(value, field).quantize(step, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError(f"{field} is out of range") from exc


def money(value, field: str = "value") -> Decimal:
    return _quantize(value, CENT, field)


def to_quantity(value, field: str = "quantity") -> Decimal:
    """Round to the Numeric(12, 3) scale every quantity column stores."""
    return _quantize(value, QUANTITY_STEP, field)


def iso(value):
    return value.isoformat() if value else None


def as_float(value):
    """Decimal → float for JSON payloads (None passes through)."""
    return float(value) if value is not None else None
