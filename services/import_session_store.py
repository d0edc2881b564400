"""
Import session storage.

A session holds one uploaded file between the operator's upload, mapping
and execute calls. Lifecycle:

    uploaded -> mapped -> executed
                       -> discarded   (from uploaded or mapped)

executed and discarded are terminal. Two backings share the same contract:
InMemorySessionStore (single process, TTL on inactivity) and
SupabaseSessionStore (table import_sessions).
"""

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional, Sequence
import structlog

from config import settings
from config.database import get_supabase_client
from exceptions import (
    DatabaseError,
    InvalidMappingError,
    InvalidSessionStateError,
    SessionAlreadyExecutedError,
    SessionNotFoundError,
)

logger = structlog.get_logger(__name__)


class SessionStatus(str, Enum):
    UPLOADED = "uploaded"
    MAPPED = "mapped"
    EXECUTED = "executed"
    DISCARDED = "discarded"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.EXECUTED, SessionStatus.DISCARDED)


@dataclass
class ImportSession:
    """One uploaded file and the operator's choices about it."""
    id: str
    entity_type: str
    columns: list[str]
    rows: list[dict[str, str]]
    row_numbers: list[int]
    file_name: Optional[str] = None
    file_hash: Optional[str] = None
    status: SessionStatus = SessionStatus.UPLOADED
    mapping: dict[str, str] = field(default_factory=dict)
    ignored_columns: list[str] = field(default_factory=list)
    manual_matches: dict[str, dict[str, str]] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def snapshot(self) -> "ImportSession":
        """Copy safe to hand out; rows are shared and never mutated."""
        return replace(
            self,
            columns=list(self.columns),
            mapping=dict(self.mapping),
            ignored_columns=list(self.ignored_columns),
            manual_matches={k: dict(v) for k, v in self.manual_matches.items()},
        )


def check_mapping_columns(
    session: ImportSession,
    mapping: dict[str, str],
    ignored_columns: Sequence[str],
) -> None:
    """
    Reject mappings that point at columns the file does not have.

    Raises:
        InvalidMappingError: If a mapped or ignored column is unknown, or a
            mapped column is also marked ignored
    """
    known = set(session.columns)
    unknown = sorted({c for c in mapping.values() if c not in known})
    if unknown:
        raise InvalidMappingError(
            "Mapping refers to columns that are not in the uploaded file",
            details={"unknown_columns": unknown}
        )
    unknown_ignored = sorted({c for c in ignored_columns if c not in known})
    if unknown_ignored:
        raise InvalidMappingError(
            "Ignored columns are not in the uploaded file",
            details={"unknown_columns": unknown_ignored}
        )
    clashing = sorted(set(mapping.values()) & set(ignored_columns))
    if clashing:
        raise InvalidMappingError(
            "Columns cannot be both mapped and ignored",
            details={"columns": clashing}
        )


def _require_mapped(session_id: str, status: SessionStatus) -> None:
    if status == SessionStatus.EXECUTED:
        raise SessionAlreadyExecutedError(session_id)
    if status == SessionStatus.DISCARDED:
        raise SessionNotFoundError(session_id)
    if status != SessionStatus.MAPPED:
        raise InvalidSessionStateError(session_id, status.value, SessionStatus.MAPPED.value)


# ===================
# IN-MEMORY BACKING
# ===================

class InMemorySessionStore:
    """
    Process-local session store with TTL expiry.

    Every operation runs under one lock. Terminal sessions are kept (with
    their rows dropped) until they expire, so a repeated execute still
    reports "already executed" rather than "not found".
    """

    def __init__(self, ttl_minutes: int = 120):
        self.ttl = timedelta(minutes=ttl_minutes)
        self._sessions: dict[str, tuple[datetime, ImportSession]] = {}
        self._lock = threading.Lock()

    def create(
        self,
        entity_type: str,
        columns: list[str],
        rows: list[dict[str, str]],
        row_numbers: Optional[list[int]] = None,
        file_name: Optional[str] = None,
        file_hash: Optional[str] = None,
    ) -> ImportSession:
        session = ImportSession(
            id=str(uuid.uuid4()),
            entity_type=entity_type,
            columns=list(columns),
            rows=list(rows),
            row_numbers=list(row_numbers) if row_numbers is not None else list(range(2, len(rows) + 2)),
            file_name=file_name,
            file_hash=file_hash,
        )
        with self._lock:
            self._cleanup_expired()
            self._sessions[session.id] = (self._expiry(), session)

        logger.info(
            "import_session_created",
            import_id=session.id,
            entity_type=entity_type,
            total_rows=session.total_rows,
            backend="memory",
        )
        return session.snapshot()

    def get(self, session_id: str, include_terminal: bool = False) -> ImportSession:
        """
        Get a live session.

        Args:
            session_id: Session identifier
            include_terminal: Also return executed/discarded sessions

        Raises:
            SessionNotFoundError: If unknown, expired or (unless
                include_terminal) terminal
        """
        with self._lock:
            session = self._live(session_id)
            if session.status.is_terminal and not include_terminal:
                raise SessionNotFoundError(session_id)
            return session.snapshot()

    def get_mapped(self, session_id: str) -> ImportSession:
        """
        Get a session that is ready to validate or execute.

        Raises:
            SessionNotFoundError: If unknown, expired or discarded
            SessionAlreadyExecutedError: If already executed
            InvalidSessionStateError: If no mapping has been saved
        """
        with self._lock:
            session = self._live(session_id)
            _require_mapped(session_id, session.status)
            return session.snapshot()

    def save_mapping(
        self,
        session_id: str,
        mapping: dict[str, str],
        ignored_columns: Sequence[str] = (),
    ) -> ImportSession:
        """
        Replace the session's mapping and move it to mapped.

        Nothing changes unless every check passes.
        """
        with self._lock:
            session = self._live(session_id)
            if session.status == SessionStatus.EXECUTED:
                raise SessionAlreadyExecutedError(session_id)
            if session.status == SessionStatus.DISCARDED:
                raise SessionNotFoundError(session_id)

            check_mapping_columns(session, mapping, ignored_columns)

            session.mapping = dict(mapping)
            session.ignored_columns = list(ignored_columns)
            session.status = SessionStatus.MAPPED
            session.updated_at = datetime.utcnow()
            self._touch(session)
            saved = session.snapshot()

        logger.info(
            "import_mapping_saved",
            import_id=session_id,
            mapped_fields=len(mapping),
            ignored_columns=len(ignored_columns),
        )
        return saved

    def save_manual_matches(
        self,
        session_id: str,
        manual_matches: dict[str, dict[str, str]],
    ) -> ImportSession:
        """Merge operator overrides into the session (newer values win)."""
        with self._lock:
            session = self._live(session_id)
            _require_mapped(session_id, session.status)
            for field_key, matches in manual_matches.items():
                session.manual_matches.setdefault(field_key, {}).update(matches)
            session.updated_at = datetime.utcnow()
            self._touch(session)
            return session.snapshot()

    def mark_executed(self, session_id: str) -> ImportSession:
        """
        Claim a mapped session for execution (mapped -> executed).

        Only one caller can win this transition.

        Raises:
            SessionAlreadyExecutedError: If already executed
            SessionNotFoundError: If unknown, expired or discarded
            InvalidSessionStateError: If no mapping has been saved
        """
        with self._lock:
            session = self._live(session_id)
            _require_mapped(session_id, session.status)
            claimed = session.snapshot()
            session.status = SessionStatus.EXECUTED
            session.rows = []
            session.row_numbers = []
            session.updated_at = datetime.utcnow()
            self._touch(session)

        logger.info("import_session_executed", import_id=session_id)
        return claimed

    def discard(self, session_id: str) -> None:
        """Discard a session. Unknown or already terminal sessions are ignored."""
        with self._lock:
            entry = self._sessions.get(session_id)
            if entry is None:
                return
            session = entry[1]
            if session.status.is_terminal:
                return
            session.status = SessionStatus.DISCARDED
            session.rows = []
            session.row_numbers = []
            session.updated_at = datetime.utcnow()
            self._touch(session)

        logger.info("import_session_discarded", import_id=session_id)

    def _live(self, session_id: str) -> ImportSession:
        """Caller must hold the lock."""
        entry = self._sessions.get(session_id)
        if entry is None:
            raise SessionNotFoundError(session_id)
        expires_at, session = entry
        if datetime.now() > expires_at:
            del self._sessions[session_id]
            logger.info("import_session_expired", import_id=session_id)
            raise SessionNotFoundError(session_id)
        self._touch(session)
        return session

    def _touch(self, session: ImportSession) -> None:
        self._sessions[session.id] = (self._expiry(), session)

    def _expiry(self) -> datetime:
        return datetime.now() + self.ttl

    def _cleanup_expired(self) -> None:
        now = datetime.now()
        expired = [k for k, (exp, _) in self._sessions.items() if now > exp]
        for k in expired:
            del self._sessions[k]


# ===================
# SUPABASE BACKING
# ===================

class SupabaseSessionStore:
    """
    Session store persisted in the import_sessions table.

    State transitions are conditional updates on the current status, so
    concurrent requests cannot both move a session out of the same state.
    """

    def __init__(self, client: Any = None):
        self.db = client or get_supabase_client()
        self.table = "import_sessions"

    def create(
        self,
        entity_type: str,
        columns: list[str],
        rows: list[dict[str, str]],
        row_numbers: Optional[list[int]] = None,
        file_name: Optional[str] = None,
        file_hash: Optional[str] = None,
    ) -> ImportSession:
        session = ImportSession(
            id=str(uuid.uuid4()),
            entity_type=entity_type,
            columns=list(columns),
            rows=list(rows),
            row_numbers=list(row_numbers) if row_numbers is not None else list(range(2, len(rows) + 2)),
            file_name=file_name,
            file_hash=file_hash,
        )
        try:
            self.db.table(self.table).insert(self._to_row(session)).execute()
        except Exception as e:
            logger.error("import_session_create_failed", error=str(e))
            raise DatabaseError("insert", str(e))

        logger.info(
            "import_session_created",
            import_id=session.id,
            entity_type=entity_type,
            total_rows=session.total_rows,
            backend="supabase",
        )
        return session

    def get(self, session_id: str, include_terminal: bool = False) -> ImportSession:
        session = self._fetch(session_id)
        if session.status.is_terminal and not include_terminal:
            raise SessionNotFoundError(session_id)
        return session

    def get_mapped(self, session_id: str) -> ImportSession:
        session = self._fetch(session_id)
        _require_mapped(session_id, session.status)
        return session

    def save_mapping(
        self,
        session_id: str,
        mapping: dict[str, str],
        ignored_columns: Sequence[str] = (),
    ) -> ImportSession:
        session = self._fetch(session_id)
        if session.status == SessionStatus.EXECUTED:
            raise SessionAlreadyExecutedError(session_id)
        if session.status == SessionStatus.DISCARDED:
            raise SessionNotFoundError(session_id)

        check_mapping_columns(session, mapping, ignored_columns)

        now = datetime.utcnow()
        updated = self._conditional_update(
            session_id,
            {
                "mapping": dict(mapping),
                "ignored_columns": list(ignored_columns),
                "status": SessionStatus.MAPPED.value,
                "updated_at": now.isoformat(),
            },
            allowed=[SessionStatus.UPLOADED.value, SessionStatus.MAPPED.value],
        )
        if not updated:
            # Lost a race with execute/discard
            current = self._fetch(session_id)
            if current.status == SessionStatus.EXECUTED:
                raise SessionAlreadyExecutedError(session_id)
            raise SessionNotFoundError(session_id)

        logger.info(
            "import_mapping_saved",
            import_id=session_id,
            mapped_fields=len(mapping),
            ignored_columns=len(ignored_columns),
        )
        return replace(
            session,
            mapping=dict(mapping),
            ignored_columns=list(ignored_columns),
            status=SessionStatus.MAPPED,
            updated_at=now,
        )

    def save_manual_matches(
        self,
        session_id: str,
        manual_matches: dict[str, dict[str, str]],
    ) -> ImportSession:
        session = self.get_mapped(session_id)
        merged = {k: dict(v) for k, v in session.manual_matches.items()}
        for field_key, matches in manual_matches.items():
            merged.setdefault(field_key, {}).update(matches)

        self._conditional_update(
            session_id,
            {"manual_matches": merged, "updated_at": datetime.utcnow().isoformat()},
            allowed=[SessionStatus.MAPPED.value],
        )
        return replace(session, manual_matches=merged)

    def mark_executed(self, session_id: str) -> ImportSession:
        session = self.get_mapped(session_id)
        claimed = self._conditional_update(
            session_id,
            {
                "status": SessionStatus.EXECUTED.value,
                "rows": [],
                "row_numbers": [],
                "updated_at": datetime.utcnow().isoformat(),
            },
            allowed=[SessionStatus.MAPPED.value],
        )
        if not claimed:
            # Someone else changed the status first
            current = self._fetch(session_id)
            _require_mapped(session_id, current.status)

        logger.info("import_session_executed", import_id=session_id)
        # The claimed row carries the mapping as of the claim; rows never change after upload
        current = self._from_row(claimed[0]) if claimed else session
        return replace(
            current,
            status=session.status,
            rows=session.rows,
            row_numbers=session.row_numbers,
        )

    def discard(self, session_id: str) -> None:
        try:
            result = self.db.table(self.table) \
                .update({
                    "status": SessionStatus.DISCARDED.value,
                    "updated_at": datetime.utcnow().isoformat(),
                }) \
                .eq("id", session_id) \
                .in_("status", [SessionStatus.UPLOADED.value, SessionStatus.MAPPED.value]) \
                .execute()
        except Exception as e:
            logger.error("import_session_discard_failed", import_id=session_id, error=str(e))
            raise DatabaseError("update", str(e))

        if result.data:
            logger.info("import_session_discarded", import_id=session_id)

    def _fetch(self, session_id: str) -> ImportSession:
        try:
            result = self.db.table(self.table) \
                .select("*") \
                .eq("id", session_id) \
                .execute()
        except Exception as e:
            logger.error("import_session_fetch_failed", import_id=session_id, error=str(e))
            raise DatabaseError("select", str(e))

        if not result.data:
            raise SessionNotFoundError(session_id)
        return self._from_row(result.data[0])

    def _conditional_update(self, session_id: str, data: dict, allowed: list[str]) -> list[dict]:
        try:
            result = self.db.table(self.table) \
                .update(data) \
                .eq("id", session_id) \
                .in_("status", allowed) \
                .execute()
        except Exception as e:
            logger.error("import_session_update_failed", import_id=session_id, error=str(e))
            raise DatabaseError("update", str(e))
        return result.data or []

    @staticmethod
    def _to_row(session: ImportSession) -> dict:
        return {
            "id": session.id,
            "entity_type": session.entity_type,
            "file_name": session.file_name,
            "file_hash": session.file_hash,
            "status": session.status.value,
            "columns": session.columns,
            "rows": session.rows,
            "row_numbers": session.row_numbers,
            "mapping": session.mapping,
            "ignored_columns": session.ignored_columns,
            "manual_matches": session.manual_matches,
            "created_at": session.created_at.isoformat(),
            "updated_at": session.updated_at.isoformat(),
        }

    @staticmethod
    def _from_row(row: dict) -> ImportSession:
        return ImportSession(
            id=row["id"],
            entity_type=row["entity_type"],
            columns=list(row.get("columns") or []),
            rows=list(row.get("rows") or []),
            row_numbers=list(row.get("row_numbers") or []),
            file_name=row.get("file_name"),
            file_hash=row.get("file_hash"),
            status=SessionStatus(row["status"]),
            mapping=dict(row.get("mapping") or {}),
            ignored_columns=list(row.get("ignored_columns") or []),
            manual_matches=dict(row.get("manual_matches") or {}),
            created_at=_parse_timestamp(row.get("created_at")),
            updated_at=_parse_timestamp(row.get("updated_at")),
        )


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return datetime.utcnow()
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


# Singleton instance
_session_store = None


def get_session_store():
    """Get or create the session store selected by IMPORT_SESSION_BACKEND."""
    global _session_store
    if _session_store is None:
        if settings.import_session_backend == "supabase":
            _session_store = SupabaseSessionStore()
        else:
            _session_store = InMemorySessionStore(ttl_minutes=settings.import_session_ttl_minutes)
    return _session_store
