"""
Cell Normalization

Turns raw spreadsheet cell values into typed values for matching:
- parse_amount: signed Decimal from numbers or localized text
- parse_date: date from native dates, spreadsheet serials or text
- to_amount_key: integer minor units, the only amount equality used in matching
- extract_amount: single-column or debit/credit (debe/haber) amount reading

Amounts never go through binary floating point once parsed.
"""

import math
import re
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Optional, Union

from dateutil import parser as date_parser

from reconciliation.enums import AmountMode


SPREADSHEET_EPOCH = date(1899, 12, 30)

_DAY_FIRST_DATE = re.compile(r"^(\d{1,2})[/\-](\d{1,2})[/\-](\d{2,4})$")
_NON_NUMERIC = re.compile(r"[^0-9,.]")
_WHITESPACE = re.compile(r"\s+")

Number = Union[int, float, Decimal]


# ==================== AMOUNTS ====================

def _number_to_decimal(value: Number) -> Optional[Decimal]:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    # str() keeps the shortest repr of a float (0.1 -> "0.1")
    return Decimal(str(value))


def parse_amount(value: Any) -> Optional[Decimal]:
    """
    Parse a monetary cell value.

    Text handling:
    - "(1.234,50)" and an odd number of minus signs are negative
    - currency symbols and spaces are dropped
    - with both separators present the rightmost one is the decimal mark
    - a lone comma is the decimal mark

    Returns None for empty or unparseable input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return _number_to_decimal(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]
    minus_count = text.count("-")
    if minus_count:
        if minus_count % 2 == 1:
            negative = True
        text = text.replace("-", "")

    text = _NON_NUMERIC.sub("", text)
    if not text:
        return None

    last_comma = text.rfind(",")
    last_dot = text.rfind(".")
    if last_comma > -1 and last_dot > -1:
        if last_comma > last_dot:
            text = text.replace(".", "").replace(",", ".", 1)
        else:
            text = text.replace(",", "")
    elif last_comma > -1:
        text = text.replace(",", ".", 1)

    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return -parsed if negative else parsed


def to_amount_key(amount: Number, decimals: int = 2) -> int:
    """Amount as an integer count of minor units, rounded half away from zero."""
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    scaled = value.scaleb(decimals).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(scaled)


def extract_amount(
    row: Dict[str, Any],
    mode: Union[AmountMode, str],
    amount_col: Optional[str] = None,
    debe_col: Optional[str] = None,
    haber_col: Optional[str] = None,
) -> Optional[Decimal]:
    """
    Read the signed amount of a row.

    single: parse row[amount_col]; no column configured -> None.
    debe-haber: debit is positive, credit negative. Both columns parsing to
    exactly zero yields 0; neither parsing yields None (row is dropped).
    """
    if AmountMode(mode) == AmountMode.SINGLE:
        if not amount_col:
            return None
        return parse_amount(row.get(amount_col))

    debe = parse_amount(row.get(debe_col)) if debe_col else None
    haber = parse_amount(row.get(haber_col)) if haber_col else None
    if debe is not None and debe != 0:
        return abs(debe)
    if haber is not None and haber != 0:
        return -abs(haber)
    if debe == 0 and haber == 0:
        return Decimal("0")
    return None


# ==================== DATES ====================

def _from_serial(value: Number) -> Optional[date]:
    try:
        return SPREADSHEET_EPOCH + timedelta(days=math.floor(float(value)))
    except (OverflowError, ValueError):
        return None


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a date cell.

    Accepts date/datetime objects, spreadsheet serial numbers (days since
    1899-12-30), DD/MM/YYYY or DD-MM-YY text, and anything dateutil can read.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float, Decimal)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return _from_serial(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    match = _DAY_FIRST_DATE.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        if year < 100:
            year += 2000
        try:
            return date(year, month, day)
        except ValueError:
            return None

    try:
        return date_parser.parse(text).date()
    except (ValueError, OverflowError):
        return None


# ==================== TEXT ====================

def normalize_text(value: Any) -> Optional[str]:
    """Trimmed string form of a cell, None when empty."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_concept(value: Any) -> Optional[str]:
    """Exclusion key: trimmed, case-folded, internal whitespace collapsed."""
    text = normalize_text(value)
    if text is None:
        return None
    return _WHITESPACE.sub(" ", text.casefold())


def normalize_description(value: Any) -> Optional[str]:
    """Grouping key for many-to-one matching: trimmed and case-folded."""
    text = normalize_text(value)
    return text.casefold() if text else None
