"""
Import API routes.

Workflow:
    1. POST /{entity_type}/upload             -> session + suggested mapping
    2. POST /sessions/{import_id}/mapping     -> confirmed mapping
    3. POST /sessions/{import_id}/validate    -> unmatched references (dry run)
    4. POST /sessions/{import_id}/execute     -> ImportSummary
"""

from fastapi import APIRouter, File, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from typing import Optional
import structlog

from exceptions import AppError
from models.imports import (
    EntityTypeInfo,
    ExecuteRequest,
    ImportFieldMetadata,
    ImportHistoryEntry,
    ImportSessionInfo,
    ImportSummary,
    SaveMappingRequest,
    SaveMappingResponse,
    UploadResponse,
    ValidateRequest,
    ValidateResponse,
)
from services.import_service import get_import_service

logger = structlog.get_logger(__name__)

router = APIRouter()


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# SCHEMA ROUTES
# ===================

@router.get("/entity-types", response_model=list[EntityTypeInfo])
async def list_entity_types():
    """List importable entity types with their fields."""
    try:
        return get_import_service().list_entity_types()
    except Exception as e:
        return handle_error(e)


@router.get("/history", response_model=list[ImportHistoryEntry])
async def list_import_history(
    entity_type: Optional[str] = Query(None, description="Filter by entity type"),
    limit: int = Query(20, ge=1, le=100, description="Max entries"),
):
    """Recent imports, newest first."""
    try:
        return get_import_service().list_history(entity_type=entity_type, limit=limit)
    except Exception as e:
        return handle_error(e)


# ===================
# SESSION ROUTES
# ===================

@router.get("/sessions/{import_id}", response_model=ImportSessionInfo)
async def get_import_session(import_id: str):
    """Get the current state of an import session."""
    try:
        return get_import_service().get_session(import_id)
    except Exception as e:
        return handle_error(e)


@router.post("/sessions/{import_id}/mapping", response_model=SaveMappingResponse)
async def save_import_mapping(import_id: str, data: SaveMappingRequest):
    """
    Save the confirmed column mapping.

    Replaces any previous mapping. Returns 422 if the mapping is invalid.
    """
    try:
        return get_import_service().save_mapping(import_id, data)
    except Exception as e:
        return handle_error(e)


@router.post("/sessions/{import_id}/validate", response_model=ValidateResponse)
async def validate_import(import_id: str, data: Optional[ValidateRequest] = None):
    """
    Dry run of a mapped session.

    Lists reference values that need a manual match before executing.
    """
    try:
        service = get_import_service()
        return await run_in_threadpool(service.validate, import_id, data or ValidateRequest())
    except Exception as e:
        return handle_error(e)


@router.post("/sessions/{import_id}/execute", response_model=ImportSummary)
async def execute_import(import_id: str, data: Optional[ExecuteRequest] = None):
    """
    Execute a mapped session.

    A session can be executed once; a second call returns 409.
    """
    try:
        service = get_import_service()
        summary = await run_in_threadpool(service.execute, import_id, data or ExecuteRequest())

        logger.info(
            "import_executed",
            import_id=import_id,
            created=summary.created_count,
            updated=summary.updated_count,
            skipped=summary.skipped_count,
            failed=summary.failed_count,
        )
        return summary
    except Exception as e:
        return handle_error(e)


@router.delete("/sessions/{import_id}", status_code=204)
async def discard_import_session(import_id: str):
    """Discard a session. Safe to call more than once."""
    try:
        get_import_service().discard(import_id)
        return Response(status_code=204)
    except Exception as e:
        return handle_error(e)


# ===================
# ENTITY ROUTES
# ===================

@router.get("/{entity_type}/fields", response_model=list[ImportFieldMetadata])
async def get_import_fields(entity_type: str):
    """Importable fields of an entity type."""
    try:
        return get_import_service().get_fields(entity_type)
    except Exception as e:
        return handle_error(e)


@router.post("/{entity_type}/upload", response_model=UploadResponse)
async def upload_import_file(entity_type: str, file: UploadFile = File(...)):
    """
    Upload a CSV or Excel file for import.

    Parses the file, stores it in a new session and returns a preview
    with suggested column mappings. Nothing is written yet.
    """
    try:
        content = await file.read()
        logger.info(
            "import_upload_received",
            entity_type=entity_type,
            filename=file.filename,
            size_bytes=len(content),
        )
        return get_import_service().upload(
            entity_type,
            content,
            file_name=file.filename,
            content_type=file.content_type,
        )
    except Exception as e:
        return handle_error(e)
