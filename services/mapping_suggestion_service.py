"""
Column -> field mapping suggestions.

Proposals are advisory: the operator confirms or edits them before a
mapping is saved. Scoring is pure string similarity on normalized names,
so the same columns and fields always produce the same suggestions.
"""

from typing import Sequence
import structlog

from rapidfuzz import fuzz

from models.import_field import FieldDefinition
from models.imports import SuggestedMapping
from utils.text_utils import normalize_header

logger = structlog.get_logger(__name__)

EXACT_SCORE = 1.0
CONTAINS_SCORE = 0.9


def score_names(column: str, name: str) -> float:
    """
    Similarity between a column header and a field label or key (0-1).

    1.0 when the normalized names are equal, 0.9 when one contains the
    other as whole words ("Work Email" vs "email"), otherwise the
    token-sorted fuzzy ratio.
    """
    a = normalize_header(column)
    b = normalize_header(name)
    if not a or not b:
        return 0.0
    if a == b:
        return EXACT_SCORE
    if f" {a} " in f" {b} " or f" {b} " in f" {a} ":
        return CONTAINS_SCORE
    return fuzz.token_sort_ratio(a, b) / 100.0


def score_field(column: str, field: FieldDefinition) -> float:
    return max(score_names(column, field.label), score_names(column, field.key))


def suggest_mappings(
    columns: Sequence[str],
    fields: Sequence[FieldDefinition],
    threshold: float = 0.7,
) -> list[SuggestedMapping]:
    """
    Propose at most one column per field and one field per column.

    Candidate pairs at or above the threshold are assigned greedily by
    descending score; ties go to the earlier field, then the earlier column.

    Args:
        columns: Column names from the uploaded file, in file order
        fields: Importable fields, in profile order
        threshold: Minimum score for a pair to be proposed

    Returns:
        Suggestions ordered by field order
    """
    candidates = []
    for field_index, f in enumerate(fields):
        for column_index, column in enumerate(columns):
            score = score_field(column, f)
            if score >= threshold:
                candidates.append((-score, field_index, column_index))

    candidates.sort()

    used_fields: set[int] = set()
    used_columns: set[int] = set()
    chosen: list[tuple[int, int, float]] = []

    for neg_score, field_index, column_index in candidates:
        if field_index in used_fields or column_index in used_columns:
            continue
        used_fields.add(field_index)
        used_columns.add(column_index)
        chosen.append((field_index, column_index, -neg_score))

    chosen.sort()
    suggestions = [
        SuggestedMapping(
            source_column=columns[column_index],
            target_field=fields[field_index].key,
            confidence=round(score, 4),
        )
        for field_index, column_index, score in chosen
    ]

    logger.debug(
        "mapping_suggestions_built",
        column_count=len(columns),
        field_count=len(fields),
        suggested=len(suggestions),
    )
    return suggestions
