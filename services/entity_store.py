"""
Entity lookups and writes for the import engine.

SupabaseEntityStore is the only component that talks to the target
tables. The resolver uses find_ids for batch natural-key and reference
lookups; the execution engine uses create/update, one call per row.
"""

from typing import Any, Optional, Sequence
import structlog

from config.database import get_supabase_client
from exceptions import DatabaseError

logger = structlog.get_logger(__name__)

LOOKUP_CHUNK_SIZE = 100
LOOKUP_PAGE_SIZE = 1000


def lookup_key(values: Sequence[Any], case_insensitive: bool) -> tuple[str, ...]:
    """Comparable form of a key tuple."""
    parts = tuple("" if v is None else str(v).strip() for v in values)
    if case_insensitive:
        return tuple(p.lower() for p in parts)
    return parts


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so ilike behaves as case-insensitive equality."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _quote_filter_value(value: str) -> str:
    """Double-quote a value for a PostgREST logic filter (or=...)."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class SupabaseEntityStore:
    """Target-table access over the Supabase client."""

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def db(self) -> Any:
        # Connect on first use so uploads work before Supabase is reachable
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    def find_ids(
        self,
        table: str,
        columns: Sequence[str],
        keys: Sequence[Sequence[Any]],
        case_insensitive: bool = False,
        id_column: str = "id",
    ) -> dict[tuple[str, ...], str]:
        """
        Look up ids for many key tuples at once.

        Keys are queried in chunks of LOOKUP_CHUNK_SIZE, so the number of
        requests grows with the chunk count rather than the key count.
        Returned rows are compared with the wanted keys in Python; the
        server-side filter only narrows the candidates.

        Args:
            table: Table to search
            columns: Columns forming the key, in key order
            keys: Key tuples to find
            case_insensitive: Compare text case-insensitively
            id_column: Column holding the entity id

        Returns:
            Dict of lookup_key(key) -> id for every key that exists

        Raises:
            DatabaseError: If a query fails
        """
        wanted = {lookup_key(k, case_insensitive) for k in keys}
        wanted.discard(tuple("" for _ in columns))
        if not wanted:
            return {}

        found: dict[tuple[str, ...], str] = {}
        ambiguous: set[tuple[str, ...]] = set()
        ordered = sorted(wanted)

        try:
            for start in range(0, len(ordered), LOOKUP_CHUNK_SIZE):
                chunk = ordered[start:start + LOOKUP_CHUNK_SIZE]
                for row in self._select_candidates(table, columns, chunk, case_insensitive, id_column):
                    key = lookup_key([row.get(c) for c in columns], case_insensitive)
                    if key not in wanted:
                        continue
                    entity_id = str(row[id_column])
                    if found.setdefault(key, entity_id) != entity_id:
                        ambiguous.add(key)
        except DatabaseError:
            raise
        except Exception as e:
            logger.error("entity_lookup_failed", table=table, columns=list(columns), error=str(e))
            raise DatabaseError("select", str(e), details={"table": table})

        for key in sorted(ambiguous):
            logger.warning("entity_lookup_ambiguous", table=table, key=list(key))

        logger.debug("entity_lookup_done", table=table, wanted=len(wanted), found=len(found))
        return found

    def create(self, table: str, record: dict[str, Any], id_column: str = "id") -> str:
        """
        Insert one record and return its id.

        Raises:
            DatabaseError: If the insert fails or returns no row
        """
        try:
            result = self.db.table(table).insert(record).execute()
        except Exception as e:
            logger.error("entity_create_failed", table=table, error=str(e))
            raise DatabaseError("insert", str(e), details={"table": table})

        if not result.data:
            raise DatabaseError("insert", "No data returned", details={"table": table})
        return str(result.data[0][id_column])

    def update(
        self,
        table: str,
        entity_id: str,
        record: dict[str, Any],
        id_column: str = "id",
    ) -> None:
        """
        Update one record by id.

        Raises:
            DatabaseError: If the update fails
        """
        try:
            self.db.table(table).update(record).eq(id_column, entity_id).execute()
        except Exception as e:
            logger.error("entity_update_failed", table=table, entity_id=entity_id, error=str(e))
            raise DatabaseError("update", str(e), details={"table": table, "id": entity_id})

    def _select_candidates(
        self,
        table: str,
        columns: Sequence[str],
        chunk: list[tuple[str, ...]],
        case_insensitive: bool,
        id_column: str,
    ) -> list[dict]:
        """Fetch every row that may match a key in the chunk, page by page."""
        select = ",".join(dict.fromkeys([id_column, *columns]))
        rows: list[dict] = []
        offset = 0

        while True:
            query = self.db.table(table).select(select)
            if case_insensitive:
                # One OR of ilike terms on the leading column; the rest is checked in Python
                first_values = sorted({key[0] for key in chunk})
                query = query.or_(",".join(
                    f"{columns[0]}.ilike.{_quote_filter_value(_escape_like(v))}" for v in first_values
                ))
            else:
                for position, column in enumerate(columns):
                    query = query.in_(column, sorted({key[position] for key in chunk}))

            result = query.order(id_column).range(offset, offset + LOOKUP_PAGE_SIZE - 1).execute()
            page = result.data or []
            rows.extend(page)
            if len(page) < LOOKUP_PAGE_SIZE:
                return rows
            offset += LOOKUP_PAGE_SIZE


# Singleton instance
_entity_store: Optional[SupabaseEntityStore] = None


def get_entity_store() -> SupabaseEntityStore:
    """Get or create the Supabase entity store."""
    global _entity_store
    if _entity_store is None:
        _entity_store = SupabaseEntityStore()
    return _entity_store
