"""
Entity resolution for materialized import rows.

Runs in two explicit passes over the whole file:

1. Collect: distinct raw values per reference field across valid rows.
2. Resolve: one batch lookup per reference field, then one batch lookup
   of natural keys against the target table.

A reference that cannot be resolved stays on the row as unresolved; it
does not fail the row here. The execution engine decides that later,
after manual matches had a chance to fill the gap.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence
import structlog

from services.entity_store import lookup_key
from services.import_profiles import ImportProfile
from services.manual_match_resolver import apply_manual_matches
from services.row_validator import MaterializedRow

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResolvedRow:
    """A materialized row with its references and natural-key match resolved."""
    row_number: int
    values: dict[str, Any] = field(default_factory=dict)
    references: dict[str, str] = field(default_factory=dict)
    unresolved: dict[str, str] = field(default_factory=dict)
    matched_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.error is None

    @classmethod
    def from_materialized(cls, row: MaterializedRow) -> "ResolvedRow":
        return cls(
            row_number=row.row_number,
            values=dict(row.values),
            unresolved=dict(row.references),
            error=row.error,
        )


@dataclass(frozen=True)
class UnmatchedReferenceSet:
    """
    Distinct reference values that could not be resolved.

    Immutable: entries is a tuple of (field key, sorted raw values), in
    profile field order.
    """
    entries: tuple[tuple[str, tuple[str, ...]], ...] = ()

    @classmethod
    def from_rows(cls, profile: ImportProfile, rows: Sequence[ResolvedRow]) -> "UnmatchedReferenceSet":
        collected: dict[str, set[str]] = {}
        for row in rows:
            if not row.is_valid:
                continue
            for field_key, raw in row.unresolved.items():
                collected.setdefault(field_key, set()).add(raw)
        return cls(tuple(
            (f.key, tuple(sorted(collected[f.key])))
            for f in profile.reference_fields
            if f.key in collected
        ))

    def get(self, field_key: str) -> tuple[str, ...]:
        for key, values in self.entries:
            if key == field_key:
                return values
        return ()

    def as_dict(self) -> dict[str, list[str]]:
        return {key: list(values) for key, values in self.entries}

    @property
    def total(self) -> int:
        return sum(len(values) for _, values in self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)


@dataclass(frozen=True)
class ResolutionResult:
    profile: ImportProfile
    rows: list[ResolvedRow]
    unmatched: UnmatchedReferenceSet

    @property
    def remaining_unmatched(self) -> UnmatchedReferenceSet:
        """What is still unresolved after manual matches were applied."""
        return UnmatchedReferenceSet.from_rows(self.profile, self.rows)


def natural_key_of(profile: ImportProfile, row: ResolvedRow) -> Optional[tuple[str, ...]]:
    """
    Natural-key tuple for a row, or None if any part is missing.

    Reference parts use the resolved entity id.
    """
    parts = []
    for key in profile.natural_key:
        f = profile.field(key)
        value = row.references.get(key) if f.is_reference else row.values.get(key)
        if value is None or value == "":
            return None
        parts.append(value.isoformat() if hasattr(value, "isoformat") else value)
    return lookup_key(parts, profile.natural_key_case_insensitive)


class EntityResolver:
    """Batch reference and natural-key resolution over an entity store."""

    def __init__(self, store):
        self.store = store

    def resolve(
        self,
        profile: ImportProfile,
        rows: Sequence[MaterializedRow],
        manual_matches: Optional[dict[str, dict[str, str]]] = None,
    ) -> ResolutionResult:
        """
        Resolve references, apply manual matches and find existing entities.

        Args:
            profile: Entity profile being imported
            rows: Materialized rows in file order
            manual_matches: Optional {field key: {raw value: entity id}}

        Returns:
            ResolutionResult with rows in file order and the set of values
            that automatic resolution could not match

        Raises:
            DatabaseError: If a batch lookup fails
        """
        # Pass 1: collect
        wanted: dict[str, set[str]] = {}
        for row in rows:
            if not row.is_valid:
                continue
            for field_key, raw in row.references.items():
                wanted.setdefault(field_key, set()).add(raw)

        # Pass 2: resolve references
        resolved_values: dict[str, dict[str, str]] = {}
        for f in profile.reference_fields:
            values = wanted.get(f.key)
            if not values:
                continue
            lookup = f.reference
            found = self.store.find_ids(
                lookup.table,
                (lookup.lookup_column,),
                [(v,) for v in sorted(values)],
                case_insensitive=lookup.case_insensitive,
                id_column=lookup.id_column,
            )
            resolved_values[f.key] = {key[0]: entity_id for key, entity_id in found.items()}

        resolved_rows = [self._resolve_row(row, resolved_values) for row in rows]
        unmatched = UnmatchedReferenceSet.from_rows(profile, resolved_rows)

        if manual_matches:
            resolved_rows = apply_manual_matches(profile, resolved_rows, manual_matches)

        resolved_rows = self.match_existing(profile, resolved_rows)

        logger.info(
            "import_rows_resolved",
            entity_type=profile.entity_type,
            total_rows=len(resolved_rows),
            unmatched_values=unmatched.total,
            existing_matches=sum(1 for r in resolved_rows if r.matched_id),
        )
        return ResolutionResult(profile=profile, rows=resolved_rows, unmatched=unmatched)

    def match_existing(self, profile: ImportProfile, rows: Sequence[ResolvedRow]) -> list[ResolvedRow]:
        """Attach the id of the existing entity sharing each row's natural key."""
        keys = {}
        for row in rows:
            if row.is_valid and row.matched_id is None:
                key = natural_key_of(profile, row)
                if key is not None:
                    keys[key] = True

        if not keys:
            return list(rows)

        found = self.store.find_ids(
            profile.table,
            profile.natural_key_columns,
            list(keys),
            case_insensitive=profile.natural_key_case_insensitive,
            id_column=profile.id_column,
        )

        result = []
        for row in rows:
            key = natural_key_of(profile, row) if row.is_valid and row.matched_id is None else None
            if key is not None and key in found:
                row = replace(row, matched_id=found[key])
            result.append(row)
        return result

    @staticmethod
    def _resolve_row(row: MaterializedRow, resolved_values: dict[str, dict[str, str]]) -> ResolvedRow:
        resolved = ResolvedRow.from_materialized(row)
        if not row.is_valid:
            return resolved

        references = {}
        unresolved = {}
        for field_key, raw in row.references.items():
            entity_id = resolved_values.get(field_key, {}).get(raw)
            if entity_id is not None:
                references[field_key] = entity_id
            else:
                unresolved[field_key] = raw
        return replace(resolved, references=references, unresolved=unresolved)
