"""
Import execution engine.

Turns resolved rows into create / update / skip / fail outcomes. Each
row is persisted with a single entity-store call. Rows run on a bounded
worker pool; rows sharing a natural key run one at a time in file order,
and a key created earlier in the run counts as existing for later rows.
A row that exceeds the per-row timeout is reported failed and abandoned.
Row writes run on daemon threads, so an abandoned write never holds up
interpreter exit.
"""

import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence
import structlog

from exceptions import AppError
from services.entity_resolver import ResolvedRow, natural_key_of
from services.import_profiles import ImportProfile

logger = structlog.get_logger(__name__)

POLL_INTERVAL_SECONDS = 0.05


class OutcomeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class RowOutcome:
    """Terminal result of one row."""
    kind: OutcomeKind
    row_number: int
    entity_id: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def failed(cls, row_number: int, message: str) -> "RowOutcome":
        return cls(kind=OutcomeKind.FAILED, row_number=row_number, message=message)


@dataclass
class ExecutionResult:
    """Outcomes of processed rows, in file order."""
    outcomes: list[RowOutcome] = field(default_factory=list)
    cancelled: bool = False


class _RunState:
    """Per-run bookkeeping shared with worker threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._key_locks: dict[tuple, threading.Lock] = {}
        self._created: dict[tuple, str] = {}
        self._started: dict[int, float] = {}

    def key_lock(self, key: tuple) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def created_id(self, key: Optional[tuple]) -> Optional[str]:
        if key is None:
            return None
        with self._lock:
            return self._created.get(key)

    def record_created(self, key: Optional[tuple], entity_id: str) -> None:
        if key is None:
            return
        with self._lock:
            self._created.setdefault(key, entity_id)

    def mark_started(self, index: int) -> None:
        with self._lock:
            self._started[index] = time.monotonic()

    def started_at(self, index: int) -> Optional[float]:
        with self._lock:
            return self._started.get(index)


def precheck_row(profile: ImportProfile, row: ResolvedRow) -> Optional[RowOutcome]:
    """Outcome for rows that fail before any write, else None."""
    if not row.is_valid:
        return RowOutcome.failed(row.row_number, row.error)
    if row.unresolved:
        field_key, raw = next(iter(row.unresolved.items()))
        label = profile.field(field_key).label
        return RowOutcome.failed(row.row_number, f"{label} '{raw}' not found")
    return None


class ImportExecutionEngine:
    """
    Executes resolved rows against an entity store.

    Args:
        store: Entity store with create/update
        max_workers: Rows persisted concurrently
        row_timeout_seconds: Time a row may run before it is failed
    """

    def __init__(self, store, max_workers: int = 1, row_timeout_seconds: float = 30.0):
        self.store = store
        self.max_workers = max(1, max_workers)
        self.row_timeout = row_timeout_seconds

    def execute(
        self,
        profile: ImportProfile,
        rows: Sequence[ResolvedRow],
        update_existing: bool = True,
        cancel_event: Optional[threading.Event] = None,
    ) -> ExecutionResult:
        """
        Process rows and return their outcomes.

        Rows not yet scheduled when cancel_event is set are left out of the
        result; rows already running complete. Row errors never escape.
        """
        state = _RunState()
        outcomes: dict[int, RowOutcome] = {}
        pending = deque(range(len(rows)))
        keys = {i: natural_key_of(profile, rows[i]) for i in pending}
        in_flight: dict[Future, int] = {}
        busy_keys: set[tuple] = set()
        cancelled = False

        logger.info(
            "import_execution_started",
            entity_type=profile.entity_type,
            total_rows=len(rows),
            max_workers=self.max_workers,
            update_existing=update_existing,
        )

        while pending or in_flight:
            if pending and cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "import_execution_cancelled",
                    entity_type=profile.entity_type,
                    unscheduled_rows=len(pending),
                )
                pending.clear()
                cancelled = True

            self._schedule(
                profile, rows, keys, pending, in_flight, busy_keys,
                outcomes, state, update_existing,
            )

            if not in_flight:
                continue

            done, _ = wait(list(in_flight), timeout=POLL_INTERVAL_SECONDS, return_when=FIRST_COMPLETED)
            for future in done:
                index = in_flight.pop(future)
                busy_keys.discard(keys[index])
                outcomes[index] = self._collect(future, rows[index])

            # Hung rows keep running on their own threads and stop counting against max_workers
            self._expire_timed_out(rows, keys, in_flight, busy_keys, outcomes, state)

        result = ExecutionResult(
            outcomes=[outcomes[i] for i in sorted(outcomes)],
            cancelled=cancelled,
        )

        logger.info(
            "import_execution_finished",
            entity_type=profile.entity_type,
            processed_rows=len(result.outcomes),
            cancelled=cancelled,
        )
        return result

    def _schedule(
        self,
        profile: ImportProfile,
        rows: Sequence[ResolvedRow],
        keys: dict[int, Optional[tuple]],
        pending: deque,
        in_flight: dict[Future, int],
        busy_keys: set,
        outcomes: dict[int, RowOutcome],
        state: _RunState,
        update_existing: bool,
    ) -> None:
        """Submit pending rows in file order while workers are free."""
        blocked_keys: set[tuple] = set()
        waiting = deque()

        while pending and len(in_flight) < self.max_workers:
            index = pending.popleft()
            row = rows[index]

            failed = precheck_row(profile, row)
            if failed is not None:
                outcomes[index] = failed
                _log_failed(profile, failed)
                continue

            key = keys[index]
            if key is not None and (key in busy_keys or key in blocked_keys):
                # Same-key rows stay behind the earlier one
                blocked_keys.add(key)
                waiting.append(index)
                continue

            future = _start_row(self._process_row, profile, index, row, key, update_existing, state)
            in_flight[future] = index
            if key is not None:
                busy_keys.add(key)

        pending.extendleft(reversed(waiting))

    def _process_row(
        self,
        profile: ImportProfile,
        index: int,
        row: ResolvedRow,
        key: Optional[tuple],
        update_existing: bool,
        state: _RunState,
    ) -> RowOutcome:
        state.mark_started(index)
        lock = state.key_lock(key) if key is not None else None
        if lock is not None and not lock.acquire(timeout=self.row_timeout):
            return RowOutcome.failed(row.row_number, "Timed out waiting for an earlier row with the same key")

        try:
            existing_id = row.matched_id or state.created_id(key)
            if existing_id and not update_existing:
                return RowOutcome(kind=OutcomeKind.SKIPPED, row_number=row.row_number, entity_id=existing_id)

            record = profile.build_record(row.values, row.references)
            if existing_id:
                self.store.update(profile.table, existing_id, record, id_column=profile.id_column)
                return RowOutcome(kind=OutcomeKind.UPDATED, row_number=row.row_number, entity_id=existing_id)

            entity_id = self.store.create(profile.table, record, id_column=profile.id_column)
            state.record_created(key, entity_id)
            return RowOutcome(kind=OutcomeKind.CREATED, row_number=row.row_number, entity_id=entity_id)
        finally:
            if lock is not None:
                lock.release()

    def _collect(self, future: Future, row: ResolvedRow) -> RowOutcome:
        try:
            return future.result()
        except AppError as e:
            outcome = RowOutcome.failed(row.row_number, e.message)
        except Exception as e:
            outcome = RowOutcome.failed(row.row_number, str(e) or type(e).__name__)

        logger.warning("import_row_failed", row=row.row_number, error=outcome.message)
        return outcome

    def _expire_timed_out(
        self,
        rows: Sequence[ResolvedRow],
        keys: dict[int, Optional[tuple]],
        in_flight: dict[Future, int],
        busy_keys: set,
        outcomes: dict[int, RowOutcome],
        state: _RunState,
    ) -> bool:
        """Fail and abandon rows running past the timeout. Returns True if any."""
        now = time.monotonic()
        expired = []
        for future, index in in_flight.items():
            started = state.started_at(index)
            if started is not None and now - started > self.row_timeout:
                expired.append(future)

        for future in expired:
            index = in_flight.pop(future)
            busy_keys.discard(keys[index])
            outcomes[index] = RowOutcome.failed(
                rows[index].row_number,
                f"Row timed out after {self.row_timeout:g} seconds",
            )
            logger.error("import_row_timed_out", row=rows[index].row_number, timeout_seconds=self.row_timeout)

        return bool(expired)


def _log_failed(profile: ImportProfile, outcome: RowOutcome) -> None:
    logger.debug(
        "import_row_rejected",
        entity_type=profile.entity_type,
        row=outcome.row_number,
        error=outcome.message,
    )


def _start_row(fn, *args) -> Future:
    """Run fn(*args) on a daemon thread and return a Future for its result."""
    future: Future = Future()

    def run():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(*args))
        except BaseException as e:
            future.set_exception(e)

    threading.Thread(target=run, name="import-row", daemon=True).start()
    return future
