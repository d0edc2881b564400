"""
Pydantic models and field definitions for the import workflow.
"""

from models.base import BaseSchema
from models.import_field import FieldType, ReferenceLookup, FieldDefinition
from models.imports import (
    ImportFieldMetadata,
    EntityTypeInfo,
    SuggestedMapping,
    UploadResponse,
    FieldMappingEntry,
    SaveMappingRequest,
    SaveMappingResponse,
    ImportSessionInfo,
    ValidateRequest,
    ValidateResponse,
    ExecuteRequest,
    ImportErrorEntry,
    ImportSummary,
    ImportHistoryEntry,
)

__all__ = [
    "BaseSchema",
    "FieldType",
    "ReferenceLookup",
    "FieldDefinition",
    "ImportFieldMetadata",
    "EntityTypeInfo",
    "SuggestedMapping",
    "UploadResponse",
    "FieldMappingEntry",
    "SaveMappingRequest",
    "SaveMappingResponse",
    "ImportSessionInfo",
    "ValidateRequest",
    "ValidateResponse",
    "ExecuteRequest",
    "ImportErrorEntry",
    "ImportSummary",
    "ImportHistoryEntry",
]
