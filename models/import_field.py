"""
Importable field definitions.

A FieldDefinition describes one target field an uploaded column can be
mapped to: how it is labelled for the operator, which type its raw text is
coerced to, and, for reference fields, how the raw text is looked up
against another entity.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from utils.text_utils import normalize_lookup_value


class FieldType(str, Enum):
    """Declared value type of an importable field."""
    STRING = "string"
    EMAIL = "email"
    DATE = "date"
    ENUM = "enum"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    REFERENCE = "reference"


@dataclass(frozen=True)
class ReferenceLookup:
    """How a reference field's raw value is resolved to another entity's id."""
    entity: str
    table: str
    lookup_column: str
    id_column: str = "id"
    case_insensitive: bool = True

    def normalize(self, raw: Optional[str]) -> str:
        return normalize_lookup_value(raw, self.case_insensitive)


@dataclass(frozen=True)
class FieldDefinition:
    """One importable field of an entity type."""
    key: str
    label: str
    description: str = ""
    required: bool = False
    field_type: FieldType = FieldType.STRING
    choices: tuple[str, ...] = ()
    default_choice: Optional[str] = None
    reference: Optional[ReferenceLookup] = None
    column: Optional[str] = None

    def __post_init__(self):
        if self.field_type == FieldType.REFERENCE and self.reference is None:
            raise ValueError(f"Reference field '{self.key}' needs a lookup")
        if self.field_type == FieldType.ENUM and not self.choices:
            raise ValueError(f"Enum field '{self.key}' needs choices")
        if self.default_choice is not None and self.default_choice not in self.choices:
            raise ValueError(f"Default for '{self.key}' is not one of its choices")

    @property
    def storage_column(self) -> str:
        """Column the coerced value is written to."""
        return self.column or self.key

    @property
    def is_reference(self) -> bool:
        return self.field_type == FieldType.REFERENCE

    def to_metadata(self) -> dict:
        """Convert to the shape returned to the operator."""
        return {
            "key": self.key,
            "label": self.label,
            "description": self.description,
            "required": self.required,
            "field_type": self.field_type.value,
            "choices": list(self.choices),
        }
