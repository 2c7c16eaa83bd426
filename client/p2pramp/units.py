"""Conversion between human-readable decimal strings and integer base units."""

import re

from .errors import ValidationError

PRECISION = 10**18

_DECIMAL_RE = re.compile(r"^\d*(\.\d*)?$")


def token_units(amount: str, decimals: int) -> int:
    """Parse a decimal string like "95.238095" into base units.

    Digits beyond ``decimals`` are truncated, never rounded up.
    """
    text = str(amount).strip().replace(",", "")
    if text in ("", ".") or not _DECIMAL_RE.match(text):
        raise ValidationError(f"Invalid amount: {amount!r}", field="amount")
    if decimals < 0:
        raise ValidationError(f"Invalid decimals: {decimals}", field="decimals")

    whole, _, fraction = text.partition(".")
    fraction = fraction[:decimals].ljust(decimals, "0")
    return int(whole or "0") * 10**decimals + int(fraction or "0")


def format_units(value: int, decimals: int, display_decimals: int | None = None) -> str:
    """Render base units as a decimal string, truncating to ``display_decimals``."""
    sign = "-" if value < 0 else ""
    whole, fraction = divmod(abs(value), 10**decimals)
    digits = str(fraction).rjust(decimals, "0") if decimals else ""

    if display_decimals is None:
        digits = digits.rstrip("0")
    else:
        digits = digits[:display_decimals].ljust(display_decimals, "0")

    return f"{sign}{whole}.{digits}" if digits else f"{sign}{whole}"


def rate_to_readable(conversion_rate: int, display_decimals: int = 4) -> str:
    """Render an 18-decimal conversion rate, e.g. 1050000000000000000 -> "1.0500"."""
    return format_units(conversion_rate, 18, display_decimals)


def rate_from_readable(rate: str) -> int:
    """Parse a human rate like "1.05" into an 18-decimal fixed-point integer."""
    return token_units(rate, 18)
