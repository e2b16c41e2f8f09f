"""
Key normalization for cross-collection matching.

Item codes and names are typed by hand in several places, so the same item
shows up as "ab-12 ", "AB-12" or "AB12". Two forms are provided:
- normalize(): trimmed, uppercased
- loose(): normalize() with everything but A-Z and 0-9 removed (fallback only)
"""

import re
from decimal import Decimal

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def normalize(value) -> str:
    """
    Trim and uppercase a code or name. Never raises.

    Text is normalized as-is. Integers and Decimals are rendered first,
    since numeric codes come through JSON and spreadsheets as numbers.
    Anything else (None, bools, containers) normalizes to "".
    """
    if isinstance(value, str):
        return value.strip().upper()
    if isinstance(value, bool):
        return ""
    if isinstance(value, (int, Decimal)):
        return str(value).strip().upper()
    return ""


def loose(value) -> str:
    """Alphanumeric-only form of normalize(value)."""
    return _NON_ALNUM.sub("", normalize(value))
