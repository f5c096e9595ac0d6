"""
amounts.py
-----------
Amount and date conventions shared by the transaction and bill recognizers.

Amounts:
    - Optional currency marker in front: "Rs", "Rs.", "INR", "USD" or "₹".
    - Indian digit grouping: the last three digits, then groups of two
      ("1,25,000", "99,99,999"). Ungrouped digits are fine too.
    - Zero or exactly two decimal digits.
Anything else (western "125,000" grouping, "12.5") is not an amount.

Dates:
    Day-month-year, numeric ("14-12-24", "14/12/2024") or with an
    abbreviated English month ("05-Jan-25").
"""

import re
from datetime import date, datetime
from typing import Optional


# Regex fragments used by the message templates.
CURRENCY = r"(?:Rs\.?|INR|USD|₹)"
AMOUNT = r"\d+(?:,\d+)*(?:\.\d+)?"
DATE = r"\d{1,2}[-/](?:\d{1,2}|[A-Za-z]{3})[-/]\d{2,4}"


def amount_group(name: str = "amount") -> str:
    """Optional currency marker followed by a named amount capture."""
    return rf"(?:{CURRENCY}\s*)?(?P<{name}>{AMOUNT})"


_CURRENCY_RE = re.compile(r"^\s*(?:Rs\.?|INR|USD|₹)\s*", re.IGNORECASE)
_GROUPED_INTEGER_RE = re.compile(r"^(?:\d+|\d{1,2}(?:,\d{2})*,\d{3})$")

# Two-digit years are tried first: %Y would happily read "24" as year 24.
_DATE_FORMATS = (
    "%d-%m-%y",
    "%d-%m-%Y",
    "%d/%m/%y",
    "%d/%m/%Y",
    "%d-%b-%y",
    "%d-%b-%Y",
    "%d/%b/%y",
    "%d/%b/%Y",
)


def parse_amount(text: str | None) -> Optional[float]:
    """
    Parse a money string into a positive float.

    Returns None for anything ambiguous or non-positive, never raises.
    Handles: "1,25,000.00", "350.00", "500", "Rs.350", "INR 500".
    """
    if not text:
        return None

    cleaned = _CURRENCY_RE.sub("", text).strip()
    integer_part, _, decimals = cleaned.partition(".")

    if not _GROUPED_INTEGER_RE.match(integer_part):
        return None
    if "." in cleaned and (len(decimals) != 2 or not decimals.isdigit()):
        return None

    value = float(integer_part.replace(",", "") + ("." + decimals if decimals else ""))
    return value if value > 0 else None


def parse_date(text: str | None) -> Optional[date]:
    """Parse a day-first date; None when no supported format fits."""
    if not text:
        return None

    candidate = text.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    return None
