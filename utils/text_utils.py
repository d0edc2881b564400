"""
Text utilities for header and lookup-value normalization.

Used by the mapping suggester to compare column names with field labels,
and by the resolver to compare raw cell values with stored lookup keys.
"""

import re
import unicodedata
from typing import Optional

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def strip_accents(text: str) -> str:
    """
    Remove accent marks, keeping the base characters.

    "Teléfono" -> "Telefono"
    """
    # NFD decomposition separates base chars from accents
    normalized = unicodedata.normalize("NFD", text)
    return "".join(c for c in normalized if unicodedata.category(c) != "Mn")


def normalize_header(name: Optional[str]) -> str:
    """
    Normalize a column name or field label for similarity matching.

    Handles case, accents, camelCase keys and punctuation:
    - "Manager E-mail"  -> "manager e mail"
    - "managerEmail"    -> "manager email"
    - "  Hire_Date (YYYY-MM-DD) " -> "hire date yyyy mm dd"

    Args:
        name: Raw header or label (may be None)

    Returns:
        Lowercase ASCII words separated by single spaces ("" if empty)
    """
    if not name:
        return ""

    text = _CAMEL_BOUNDARY.sub(" ", str(name).strip())
    text = strip_accents(text).lower()
    return _NON_ALNUM.sub(" ", text).strip()


def normalize_lookup_value(value: Optional[str], case_insensitive: bool = True) -> str:
    """Trim (and optionally lowercase) a value used as a lookup key."""
    if value is None:
        return ""
    text = str(value).strip()
    return text.lower() if case_insensitive else text


def clean_cell(value: Optional[str]) -> str:
    """
    Clean a raw cell value for storage in a session.

    - Strips whitespace
    - Returns "" for missing values

    Long values are kept whole; the target column decides what fits.
    """
    if value is None:
        return ""

    return str(value).strip()
