"""
Import pipeline request/response models.

Handles the data structures exchanged with the operator across the
upload -> map -> validate -> execute workflow.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from models.base import BaseSchema


class ImportFieldMetadata(BaseModel):
    """Importable field as shown to the operator."""

    key: str
    label: str
    description: str = ""
    required: bool = False
    field_type: str = "string"
    choices: list[str] = Field(default_factory=list)


class EntityTypeInfo(BaseModel):
    """Supported import target with its fields."""

    entity_type: str
    label: str
    natural_key: list[str]
    fields: list[ImportFieldMetadata]


class SuggestedMapping(BaseModel):
    """Advisory column -> field proposal."""

    source_column: str
    target_field: str
    confidence: float = Field(ge=0.0, le=1.0, description="Similarity score 0-1")


class UploadResponse(BaseModel):
    """Response after a file is uploaded and parsed into a session."""

    import_id: str
    entity_type: str
    file_name: Optional[str] = None
    status: str
    columns: list[str]
    sample_rows: list[dict[str, str]]
    total_rows: int
    available_fields: list[ImportFieldMetadata]
    suggested_mappings: list[SuggestedMapping] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class FieldMappingEntry(BaseSchema):
    """One column -> field pair chosen by the operator."""

    source_column: str = Field(..., min_length=1, description="Column name from the uploaded file")
    target_field: str = Field(..., min_length=1, description="Target field key")


class SaveMappingRequest(BaseSchema):
    """
    Operator-confirmed mapping.

    Replaces any previously saved mapping wholesale.
    """

    mappings: list[FieldMappingEntry] = Field(..., min_length=1)
    ignored_columns: list[str] = Field(
        default_factory=list,
        description="Columns that must not be imported even if present"
    )


class SaveMappingResponse(BaseModel):
    """Saved mapping echo."""

    import_id: str
    status: str
    mapping: dict[str, str]
    ignored_columns: list[str] = Field(default_factory=list)


class ImportSessionInfo(BaseModel):
    """Current state of an import session."""

    import_id: str
    entity_type: str
    file_name: Optional[str] = None
    status: str
    columns: list[str]
    sample_rows: list[dict[str, str]]
    total_rows: int
    mapping: dict[str, str] = Field(default_factory=dict)
    ignored_columns: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class ValidateRequest(BaseModel):
    """Optional inputs for a dry-run validation."""

    defaults: dict[str, str] = Field(
        default_factory=dict,
        description="Field key -> raw value used when a row leaves the field empty"
    )
    manual_matches: dict[str, dict[str, str]] = Field(
        default_factory=dict,
        description="Field key -> {raw value: entity id} overrides"
    )


class ValidateResponse(BaseModel):
    """
    Dry-run result.

    unmatched lists, per reference field, the distinct raw values that
    could not be resolved automatically or through manual matches.
    """

    import_id: str
    total_rows: int
    valid_rows: int
    invalid_rows: int
    existing_matches: int
    unmatched: dict[str, list[str]] = Field(default_factory=dict)


class ExecuteRequest(BaseModel):
    """Execute a mapped import session."""

    update_existing: bool = Field(
        True,
        description="Update records matched by natural key (otherwise skip them)"
    )
    defaults: dict[str, str] = Field(
        default_factory=dict,
        description="Field key -> raw value used when a row leaves the field empty"
    )
    manual_matches: dict[str, dict[str, str]] = Field(
        default_factory=dict,
        description="Field key -> {raw value: entity id} overrides"
    )

    @field_validator("manual_matches")
    @classmethod
    def drop_blank_matches(cls, v: dict[str, dict[str, str]]) -> dict[str, dict[str, str]]:
        """Ignore overrides with an empty target id."""
        return {
            field: {raw: target for raw, target in matches.items() if target and target.strip()}
            for field, matches in v.items()
        }


class ImportErrorEntry(BaseModel):
    """Row-scoped error kept in an import summary."""

    row: int
    message: str


class ImportSummary(BaseModel):
    """Final result of an executed import."""

    import_id: str
    entity_type: str
    total_rows: int = Field(ge=0)
    processed_rows: int = Field(ge=0)
    created_count: int = Field(ge=0)
    updated_count: int = Field(ge=0)
    skipped_count: int = Field(ge=0)
    failed_count: int = Field(ge=0)
    errors: list[ImportErrorEntry] = Field(default_factory=list)
    errors_truncated: bool = False
    cancelled: bool = False

    @model_validator(mode="after")
    def check_counts(self) -> "ImportSummary":
        """Outcome counters must add up to the processed rows."""
        outcomes = (
            self.created_count + self.updated_count
            + self.skipped_count + self.failed_count
        )
        if outcomes != self.processed_rows:
            raise ValueError("Outcome counts do not add up to processed_rows")
        if self.processed_rows > self.total_rows:
            raise ValueError("processed_rows cannot exceed total_rows")
        return self


class ImportHistoryEntry(BaseModel):
    """Recorded import, as listed in the history view."""

    id: str
    entity_type: str
    file_name: Optional[str] = None
    status: str
    total_rows: int = 0
    created_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
