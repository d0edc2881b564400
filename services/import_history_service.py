"""
Import history.

Keeps one data_imports row per import session (pending -> processing ->
completed | failed) with its counts and the first row errors, and uses
the stored file hash to warn about re-uploads of an identical file.
Recording never breaks an import: write failures are logged only.
"""
import structlog
from datetime import datetime
from typing import Any, Optional

from config import get_supabase_client, settings
from exceptions import DatabaseError
from models.imports import ImportHistoryEntry, ImportSummary

logger = structlog.get_logger(__name__)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class ImportHistoryService:
    def __init__(self, client: Any = None):
        self.db = client or get_supabase_client()
        self.table = "data_imports"

    def check_duplicate(self, entity_type: str, file_hash: str) -> Optional[dict]:
        """Previous completed import of the same file, as {file_name, completed_at, total_rows}, or None."""
        try:
            result = (
                self.db.table(self.table)
                .select("id, file_name, completed_at, total_rows")
                .eq("entity_type", entity_type)
                .eq("file_hash", file_hash)
                .eq("status", STATUS_COMPLETED)
                .order("completed_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.warning("import_duplicate_check_failed", entity_type=entity_type, error=str(e))
            return None
        return result.data[0] if result.data else None

    def record_upload(
        self,
        import_id: str,
        entity_type: str,
        file_name: Optional[str],
        file_hash: str,
        total_rows: int,
    ) -> None:
        """Record a parsed upload as pending."""
        self._write(
            "import_upload_recorded",
            import_id,
            insert={
                "id": import_id,
                "entity_type": entity_type,
                "file_name": file_name or "unknown",
                "file_hash": file_hash,
                "status": STATUS_PENDING,
                "total_rows": total_rows,
            },
        )

    def mark_processing(self, import_id: str) -> None:
        self._write(
            "import_processing_recorded",
            import_id,
            update={"status": STATUS_PROCESSING, "started_at": datetime.utcnow().isoformat()},
        )

    def record_completed(self, summary: ImportSummary) -> None:
        """Store final counts and the kept row errors."""
        self._write(
            "import_completed_recorded",
            summary.import_id,
            update={
                "status": STATUS_COMPLETED,
                "total_rows": summary.total_rows,
                "processed_rows": summary.processed_rows,
                "created_count": summary.created_count,
                "updated_count": summary.updated_count,
                "skipped_count": summary.skipped_count,
                "failed_count": summary.failed_count,
                "errors": [e.model_dump() for e in summary.errors],
                "completed_at": datetime.utcnow().isoformat(),
            },
        )

    def record_failed(self, import_id: str, error_message: str) -> None:
        """Record an import that stopped before producing a summary."""
        # Truncate error message to prevent excessively long entries
        truncated_msg = error_message[:2000] if error_message else "Unknown error"
        self._write(
            "import_failure_recorded",
            import_id,
            update={
                "status": STATUS_FAILED,
                "errors": [{"row": 0, "message": truncated_msg}],
                "completed_at": datetime.utcnow().isoformat(),
            },
        )

    def list_imports(self, entity_type: Optional[str] = None, limit: int = 20) -> list[ImportHistoryEntry]:
        """
        Most recent imports first.

        Raises:
            DatabaseError: If the query fails
        """
        try:
            query = self.db.table(self.table).select("*")
            if entity_type:
                query = query.eq("entity_type", entity_type)
            result = query.order("created_at", desc=True).limit(limit).execute()
        except Exception as e:
            logger.error("import_history_list_failed", error=str(e))
            raise DatabaseError("select", str(e))

        return [ImportHistoryEntry.model_validate(row) for row in result.data or []]

    def _write(
        self,
        event: str,
        import_id: str,
        insert: Optional[dict] = None,
        update: Optional[dict] = None,
    ) -> None:
        try:
            if insert is not None:
                self.db.table(self.table).insert(insert).execute()
            else:
                self.db.table(self.table).update(update).eq("id", import_id).execute()
            logger.info(event, import_id=import_id)
        except Exception as e:
            # Never let history recording break the import itself
            logger.warning(
                "import_history_write_failed",
                import_id=import_id,
                event=event,
                error=str(e),
            )


_service: Optional[ImportHistoryService] = None


def get_import_history_service() -> Optional[ImportHistoryService]:
    """History service, or None when Supabase is not configured."""
    global _service
    if _service is None and settings.supabase_configured:
        _service = ImportHistoryService()
    return _service
