"""
Operator-supplied matches for references the resolver could not find.
"""

from dataclasses import replace
from typing import TYPE_CHECKING, Sequence
import structlog

from services.import_profiles import ImportProfile

if TYPE_CHECKING:
    from services.entity_resolver import ResolvedRow

logger = structlog.get_logger(__name__)


def normalize_overrides(
    profile: ImportProfile,
    overrides: dict[str, dict[str, str]],
) -> dict[str, dict[str, str]]:
    """
    Key overrides the same way the rows' raw reference values are keyed.

    Fields that are not reference fields of the profile are dropped.
    """
    normalized: dict[str, dict[str, str]] = {}
    for field_key, matches in overrides.items():
        f = profile.field(field_key)
        if f is None or not f.is_reference:
            logger.warning(
                "manual_match_field_ignored",
                entity_type=profile.entity_type,
                field=field_key,
            )
            continue
        normalized[field_key] = {
            f.reference.normalize(raw): str(target).strip()
            for raw, target in matches.items()
            if target and str(target).strip()
        }
    return normalized


def apply_manual_matches(
    profile: ImportProfile,
    rows: Sequence["ResolvedRow"],
    overrides: dict[str, dict[str, str]],
) -> list["ResolvedRow"]:
    """
    Fill unresolved reference slots from operator overrides.

    Returns new rows; the input rows are not modified. Slots filled here
    are indistinguishable from automatic matches.
    """
    normalized = normalize_overrides(profile, overrides)
    if not normalized:
        return list(rows)

    applied = 0
    result = []
    for row in rows:
        if not row.unresolved:
            result.append(row)
            continue

        references = dict(row.references)
        unresolved = {}
        for field_key, raw in row.unresolved.items():
            target = normalized.get(field_key, {}).get(raw)
            if target:
                references[field_key] = target
                applied += 1
            else:
                unresolved[field_key] = raw
        result.append(replace(row, references=references, unresolved=unresolved))

    logger.info(
        "manual_matches_applied",
        entity_type=profile.entity_type,
        slots_filled=applied,
    )
    return result
