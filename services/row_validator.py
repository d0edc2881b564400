"""
Row materialization and validation.

Applies a saved column mapping to raw rows and coerces each mapped value
to its field's declared type. A row either yields typed values or carries
the first validation error found; invalid rows are never written.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional, Sequence
import structlog

from models.import_field import FieldDefinition, FieldType
from services.import_profiles import ImportProfile
from utils.text_utils import strip_accents

logger = structlog.get_logger(__name__)

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%d/%m/%Y",
    "%m/%d/%Y",
    "%Y/%m/%d",
)

TRUE_VALUES = {"true", "yes", "y", "1", "si", "x"}
FALSE_VALUES = {"false", "no", "n", "0"}

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_CURRENCY_MARKS = re.compile(r"[$€£¥]|(?<![A-Za-z])(?:USD|EUR|GBP|COP|MXN)(?![A-Za-z])", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_NUMBER_SHAPE = re.compile(r"^[+-]?[0-9.,]*[0-9][0-9.,]*$")
_ENUM_SEPARATORS = re.compile(r"[\s\-]+")


@dataclass(frozen=True)
class MaterializedRow:
    """
    One data row after mapping and type coercion.

    values holds coerced non-reference fields; references holds the
    normalized raw text of reference fields, still to be resolved.
    """
    row_number: int
    values: dict[str, Any] = field(default_factory=dict)
    references: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.error is None


# ===================
# COERCION
# ===================

def parse_date(value: str) -> date:
    """Parse a date in one of the accepted formats (day-first before month-first)."""
    text = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    # ISO timestamps with fractions or offsets
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        raise ValueError(f"'{value}' is not a valid date")


def parse_number(value: str) -> float:
    """
    Parse a number, tolerating currency symbols and thousands separators.

    "$1,234.50" -> 1234.5, "1.234,50" -> 1234.5, "1,5" -> 1.5

    Only whitespace and known currency marks are discarded; any other
    character, such as a letter or an exponent, makes the value invalid.
    """
    text = _WHITESPACE.sub("", _CURRENCY_MARKS.sub("", value))
    if not _NUMBER_SHAPE.match(text):
        raise ValueError(f"'{value}' is not a valid number")

    has_comma = "," in text
    has_dot = "." in text

    if has_comma and has_dot:
        # Whichever separator comes last is the decimal mark
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif has_comma:
        head, _, tail = text.rpartition(",")
        if text.count(",") == 1 and len(tail) != 3:
            text = f"{head}.{tail}"
        else:
            text = text.replace(",", "")
    elif has_dot and text.count(".") > 1:
        text = text.replace(".", "")

    try:
        return float(text)
    except ValueError:
        raise ValueError(f"'{value}' is not a valid number")


def parse_integer(value: str) -> int:
    number = parse_number(value)
    if not number.is_integer():
        raise ValueError(f"'{value}' is not a whole number")
    return int(number)


def parse_boolean(value: str) -> bool:
    text = strip_accents(value.strip()).lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ValueError(f"'{value}' is not a valid yes/no value")


def parse_enum(value: str, f: FieldDefinition) -> str:
    """Match a choice case-insensitively, falling back to the field default."""
    candidate = _ENUM_SEPARATORS.sub("_", strip_accents(value.strip())).upper()
    if candidate in f.choices:
        return candidate
    if f.default_choice is not None:
        logger.debug("enum_value_defaulted", field=f.key, value=value, default=f.default_choice)
        return f.default_choice
    raise ValueError(
        f"'{value}' is not a valid {f.label}. Expected one of: {', '.join(f.choices)}"
    )


def parse_email(value: str) -> str:
    text = value.strip().lower()
    if not _EMAIL_PATTERN.match(text):
        raise ValueError(f"'{value}' is not a valid email address")
    return text


def coerce_value(f: FieldDefinition, raw: str) -> Any:
    """
    Coerce a non-empty raw string to the field's type.

    Raises:
        ValueError: With an operator-readable message
    """
    if f.field_type == FieldType.EMAIL:
        return parse_email(raw)
    if f.field_type == FieldType.DATE:
        return parse_date(raw)
    if f.field_type == FieldType.ENUM:
        return parse_enum(raw, f)
    if f.field_type == FieldType.NUMBER:
        return parse_number(raw)
    if f.field_type == FieldType.INTEGER:
        return parse_integer(raw)
    if f.field_type == FieldType.BOOLEAN:
        return parse_boolean(raw)
    if f.field_type == FieldType.REFERENCE:
        return f.reference.normalize(raw)
    return raw.strip()


# ===================
# MATERIALIZATION
# ===================

def materialize_row(
    profile: ImportProfile,
    raw_row: dict[str, str],
    row_number: int,
    mapping: dict[str, str],
    defaults: Optional[dict[str, str]] = None,
) -> MaterializedRow:
    """
    Apply the mapping to one raw row and coerce every field.

    Unmapped fields are absent unless a default is given for them.
    Validation stops at the first error.
    """
    defaults = defaults or {}
    values: dict[str, Any] = {}
    references: dict[str, str] = {}

    for f in profile.fields:
        column = mapping.get(f.key)
        raw = (raw_row.get(column) or "").strip() if column else ""
        if not raw and defaults.get(f.key):
            raw = defaults[f.key].strip()

        if not raw:
            if f.required:
                return MaterializedRow(row_number=row_number, error=f"Missing required field: {f.label}")
            continue

        try:
            value = coerce_value(f, raw)
        except ValueError as e:
            return MaterializedRow(row_number=row_number, error=f"{f.label}: {e}")

        if f.is_reference:
            references[f.key] = value
        else:
            values[f.key] = value

    return MaterializedRow(row_number=row_number, values=values, references=references)


def materialize_rows(
    profile: ImportProfile,
    rows: Sequence[dict[str, str]],
    row_numbers: Sequence[int],
    mapping: dict[str, str],
    defaults: Optional[dict[str, str]] = None,
) -> list[MaterializedRow]:
    """Materialize every row, preserving file order."""
    result = [
        materialize_row(profile, raw_row, row_number, mapping, defaults)
        for raw_row, row_number in zip(rows, row_numbers)
    ]
    invalid = sum(1 for r in result if not r.is_valid)

    logger.info(
        "import_rows_materialized",
        entity_type=profile.entity_type,
        total_rows=len(result),
        invalid_rows=invalid,
    )
    return result
