"""
Import service for the upload -> map -> validate -> execute workflow.

Orchestrates the parser, mapping suggestions, session store, row
validator, entity resolver and execution engine for every entity type
registered in services.import_profiles.
"""

import hashlib
import threading
from typing import Optional
import structlog

from config import settings as default_settings
from config.settings import Settings
from exceptions import (
    FileTooLargeError,
    InvalidMappingError,
    SessionAlreadyExecutedError,
    SessionNotFoundError,
)
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
from parsers import parse_tabular
from services.entity_resolver import EntityResolver
from services.import_execution_service import ImportExecutionEngine
from services.import_history_service import ImportHistoryService
from services.import_profiles import ImportProfile, get_import_profile, list_import_profiles
from services.import_session_store import ImportSession, SessionStatus
from services.import_summary import build_summary
from services.mapping_suggestion_service import suggest_mappings
from services.row_validator import materialize_rows

logger = structlog.get_logger(__name__)


class ImportService:
    """
    Generic import workflow over pluggable session and entity stores.

    Args:
        session_store: InMemorySessionStore or SupabaseSessionStore
        entity_store: Store with find_ids/create/update
        history: Optional ImportHistoryService
        config: Settings (defaults to the application settings)
    """

    def __init__(
        self,
        session_store,
        entity_store,
        history: Optional[ImportHistoryService] = None,
        config: Optional[Settings] = None,
    ):
        self.sessions = session_store
        self.entities = entity_store
        self.history = history
        self.config = config or default_settings
        self.resolver = EntityResolver(entity_store)
        self.engine = ImportExecutionEngine(
            entity_store,
            max_workers=self.config.import_max_workers,
            row_timeout_seconds=self.config.import_row_timeout_seconds,
        )

    # ===================
    # SCHEMA
    # ===================

    def list_entity_types(self) -> list[EntityTypeInfo]:
        return [EntityTypeInfo(**p.to_info()) for p in list_import_profiles()]

    def get_fields(self, entity_type: str) -> list[ImportFieldMetadata]:
        profile = get_import_profile(entity_type)
        return [ImportFieldMetadata(**f.to_metadata()) for f in profile.fields]

    # ===================
    # UPLOAD
    # ===================

    def upload(
        self,
        entity_type: str,
        content: bytes,
        file_name: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> UploadResponse:
        """
        Parse an uploaded file into a new session and suggest a mapping.

        Raises:
            UnknownEntityTypeError: If the entity type is not importable
            FileTooLargeError: If the file exceeds IMPORT_MAX_FILE_MB
            MalformedFileError: If the file cannot be read as a table
        """
        profile = get_import_profile(entity_type)

        max_bytes = self.config.import_max_file_bytes
        if len(content) > max_bytes:
            raise FileTooLargeError(len(content), max_bytes)

        table = parse_tabular(content, filename=file_name, content_type=content_type)
        file_hash = hashlib.sha256(content).hexdigest()

        warnings = []
        if table.total_rows == 0:
            warnings.append("The file has a header row but no data rows.")

        if self.history is not None:
            previous = self.history.check_duplicate(entity_type, file_hash)
            if previous:
                warnings.append(
                    f"This file was already imported ({previous.get('file_name') or 'unknown file'}"
                    f", completed {previous.get('completed_at') or 'earlier'})."
                )

        session = self.sessions.create(
            entity_type=entity_type,
            columns=table.columns,
            rows=table.rows,
            row_numbers=table.row_numbers,
            file_name=file_name,
            file_hash=file_hash,
        )

        if self.history is not None:
            self.history.record_upload(
                session.id, entity_type, file_name, file_hash, table.total_rows
            )

        suggestions = suggest_mappings(
            table.columns,
            profile.fields,
            threshold=self.config.import_suggestion_threshold,
        )

        logger.info(
            "import_uploaded",
            import_id=session.id,
            entity_type=entity_type,
            file_name=file_name,
            columns=len(table.columns),
            total_rows=table.total_rows,
            suggestions=len(suggestions),
        )

        return UploadResponse(
            import_id=session.id,
            entity_type=entity_type,
            file_name=file_name,
            status=session.status.value,
            columns=table.columns,
            sample_rows=table.sample(self.config.import_sample_rows),
            total_rows=table.total_rows,
            available_fields=self.get_fields(entity_type),
            suggested_mappings=suggestions,
            warnings=warnings,
        )

    # ===================
    # SESSIONS
    # ===================

    def get_session(self, import_id: str) -> ImportSessionInfo:
        session = self.sessions.get(import_id)
        return self._session_info(session)

    def save_mapping(self, import_id: str, request: SaveMappingRequest) -> SaveMappingResponse:
        """
        Validate and save the operator's mapping.

        Raises:
            SessionNotFoundError: If unknown, expired or discarded
            SessionAlreadyExecutedError: If already executed
            InvalidMappingError: If a field is unknown or mapped twice, a
                required field is unmapped, or a column is not in the file
        """
        session = self.sessions.get(import_id, include_terminal=True)
        if session.status == SessionStatus.EXECUTED:
            raise SessionAlreadyExecutedError(import_id)
        if session.status == SessionStatus.DISCARDED:
            raise SessionNotFoundError(import_id)

        profile = get_import_profile(session.entity_type)
        mapping = build_mapping(profile, request)

        saved = self.sessions.save_mapping(import_id, mapping, request.ignored_columns)
        return SaveMappingResponse(
            import_id=saved.id,
            status=saved.status.value,
            mapping=saved.mapping,
            ignored_columns=saved.ignored_columns,
        )

    def discard(self, import_id: str) -> None:
        self.sessions.discard(import_id)

    # ===================
    # VALIDATE / EXECUTE
    # ===================

    def validate(self, import_id: str, request: Optional[ValidateRequest] = None) -> ValidateResponse:
        """
        Dry run: materialize and resolve every row without writing.

        Raises:
            SessionNotFoundError, SessionAlreadyExecutedError,
            InvalidSessionStateError: If the session is not mapped
            DatabaseError: If a lookup fails
        """
        request = request or ValidateRequest()
        session = self.sessions.get_mapped(import_id)
        profile = get_import_profile(session.entity_type)

        if self.config.import_retain_manual_matches and request.manual_matches:
            session = self.sessions.save_manual_matches(import_id, request.manual_matches)

        resolution = self._resolve(profile, session, request)

        valid = sum(1 for r in resolution.rows if r.is_valid)
        return ValidateResponse(
            import_id=import_id,
            total_rows=len(resolution.rows),
            valid_rows=valid,
            invalid_rows=len(resolution.rows) - valid,
            existing_matches=sum(1 for r in resolution.rows if r.matched_id),
            unmatched=resolution.remaining_unmatched.as_dict(),
        )

    def execute(
        self,
        import_id: str,
        request: Optional[ExecuteRequest] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ImportSummary:
        """
        Execute a mapped session.

        Lookups run before the session is claimed, so a lookup failure
        leaves the session mapped and the import can be retried. If the
        mapping or stored matches changed between that read and the claim,
        rows are resolved again from the claimed session.

        Raises:
            SessionNotFoundError: If unknown, expired or discarded
            SessionAlreadyExecutedError: If already executed
            InvalidSessionStateError: If no mapping has been saved
            DatabaseError: If a batch lookup fails
        """
        request = request or ExecuteRequest()
        session = self.sessions.get_mapped(import_id)
        profile = get_import_profile(session.entity_type)
        resolution = self._resolve(profile, session, request)

        # Claim the session; a concurrent execute fails here
        claimed = self.sessions.mark_executed(import_id)

        if self.history is not None:
            self.history.mark_processing(import_id)

        try:
            if _choices_changed(session, claimed):
                logger.warning("import_mapping_changed_before_claim", import_id=import_id)
                session = claimed
                resolution = self._resolve(profile, session, request)

            result = self.engine.execute(
                profile,
                resolution.rows,
                update_existing=request.update_existing,
                cancel_event=cancel_event,
            )
        except Exception as e:
            logger.error("import_execution_crashed", import_id=import_id, error=str(e))
            if self.history is not None:
                self.history.record_failed(import_id, str(e))
            raise

        summary = build_summary(
            import_id=import_id,
            entity_type=profile.entity_type,
            total_rows=session.total_rows,
            outcomes=result.outcomes,
            error_limit=self.config.import_error_limit,
            cancelled=result.cancelled,
        )

        if self.history is not None:
            self.history.record_completed(summary)

        return summary

    # ===================
    # HISTORY
    # ===================

    def list_history(self, entity_type: Optional[str] = None, limit: int = 20) -> list[ImportHistoryEntry]:
        if entity_type:
            get_import_profile(entity_type)
        if self.history is None:
            return []
        return self.history.list_imports(entity_type=entity_type, limit=limit)

    # ===================
    # HELPERS
    # ===================

    def _resolve(self, profile: ImportProfile, session: ImportSession, request):
        """Materialize and resolve the session rows under its current mapping."""
        overrides = self._overrides(session, request.manual_matches)
        rows = materialize_rows(
            profile, session.rows, session.row_numbers, session.mapping, _known_defaults(profile, request.defaults)
        )
        return self.resolver.resolve(profile, rows, overrides)

    def _overrides(self, session: ImportSession, request_matches: dict) -> dict[str, dict[str, str]]:
        """Request matches, on top of retained session matches when enabled."""
        if not self.config.import_retain_manual_matches:
            return request_matches
        merged = {k: dict(v) for k, v in session.manual_matches.items()}
        for field_key, matches in request_matches.items():
            merged.setdefault(field_key, {}).update(matches)
        return merged

    def _session_info(self, session: ImportSession) -> ImportSessionInfo:
        return ImportSessionInfo(
            import_id=session.id,
            entity_type=session.entity_type,
            file_name=session.file_name,
            status=session.status.value,
            columns=session.columns,
            sample_rows=[dict(r) for r in session.rows[:self.config.import_sample_rows]],
            total_rows=session.total_rows,
            mapping=session.mapping,
            ignored_columns=session.ignored_columns,
            created_at=session.created_at,
            updated_at=session.updated_at,
        )


def build_mapping(profile: ImportProfile, request: SaveMappingRequest) -> dict[str, str]:
    """
    Turn mapping entries into {field key: column}, checking them against
    the profile.

    Raises:
        InvalidMappingError: If a field is unknown or mapped twice, or a
            required field is not mapped
    """
    mapping: dict[str, str] = {}
    unknown = []
    duplicated = []
    for entry in request.mappings:
        if profile.field(entry.target_field) is None:
            unknown.append(entry.target_field)
        elif entry.target_field in mapping:
            duplicated.append(entry.target_field)
        else:
            mapping[entry.target_field] = entry.source_column

    if unknown:
        raise InvalidMappingError(
            f"Unknown fields for {profile.entity_type}",
            details={"unknown_fields": sorted(set(unknown))}
        )
    if duplicated:
        raise InvalidMappingError(
            "Each field can be mapped to only one column",
            details={"duplicate_fields": sorted(set(duplicated))}
        )

    missing = [f.key for f in profile.required_fields if f.key not in mapping]
    if missing:
        raise InvalidMappingError(
            "Required fields are not mapped",
            details={"missing_fields": missing}
        )
    return mapping


def _known_defaults(profile: ImportProfile, defaults: dict[str, str]) -> dict[str, str]:
    known = {k: v for k, v in defaults.items() if profile.field(k) is not None}
    ignored = sorted(set(defaults) - set(known))
    if ignored:
        logger.warning("import_defaults_ignored", entity_type=profile.entity_type, fields=ignored)
    return known


def _choices_changed(before: ImportSession, after: ImportSession) -> bool:
    """True if the operator's mapping or stored matches differ between two reads."""
    return before.mapping != after.mapping or before.manual_matches != after.manual_matches


# Singleton instance
_import_service: Optional[ImportService] = None


def get_import_service() -> ImportService:
    """Get or create the import service singleton."""
    global _import_service
    if _import_service is None:
        from services.entity_store import get_entity_store
        from services.import_history_service import get_import_history_service
        from services.import_session_store import get_session_store

        _import_service = ImportService(
            session_store=get_session_store(),
            entity_store=get_entity_store(),
            history=get_import_history_service(),
        )
    return _import_service
