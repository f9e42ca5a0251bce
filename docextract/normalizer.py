# SPDX-License-Identifier: AGPL-3.0-only

"""Canonical forms for parsed values: ISO dates and plain numbers."""

import re
from datetime import datetime
from typing import Any, Optional, Union

from .models import DateField, NumberField

CANONICAL_DATE_FORMAT = "%Y-%m-%d"

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%Y/%m/%d",
    "%m.%d.%Y",
    "%m/%d/%y",
    "%B %d, %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%d-%b-%Y",
)

_NUMBER_JUNK = re.compile(r"[,\s$€£]")


def normalize_date(value: Any) -> Optional[str]:
    """Return the date as YYYY-MM-DD, or the trimmed input if no known format matches."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.strftime(CANONICAL_DATE_FORMAT)
    text = str(value).strip()
    if not text:
        return None
    # Drop a time component such as 2026-12-31T00:00:00
    candidate = re.split(r"[T ](?=\d{1,2}:)", text, maxsplit=1)[0].rstrip(".")
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).strftime(CANONICAL_DATE_FORMAT)
        except ValueError:
            continue
    return text


def normalize_number(value: Any) -> Union[int, float, str, None]:
    """Strip currency symbols and thousands separators; integral values become int."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value) if float(value).is_integer() else value
    text = _NUMBER_JUNK.sub("", str(value))
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return str(value).strip()
    return int(number) if number.is_integer() else number


def normalize_value(field_def, value: Any) -> Any:
    """Canonicalize one parsed value according to its field type. Empty strings become None."""
    if value is None:
        return None
    if isinstance(field_def, DateField):
        return normalize_date(value)
    if isinstance(field_def, NumberField):
        return normalize_number(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if isinstance(value, str):
        text = " ".join(value.split())
        return text or None
    return value
