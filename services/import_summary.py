"""
Import summary reporting.
"""

from typing import Sequence
import structlog

from models.imports import ImportErrorEntry, ImportSummary
from services.import_execution_service import OutcomeKind, RowOutcome

logger = structlog.get_logger(__name__)


def build_summary(
    import_id: str,
    entity_type: str,
    total_rows: int,
    outcomes: Sequence[RowOutcome],
    error_limit: int = 50,
    cancelled: bool = False,
) -> ImportSummary:
    """
    Aggregate row outcomes into an ImportSummary.

    Counts are exact; only the error list is capped, keeping the
    earliest rows.
    """
    counts = {kind: 0 for kind in OutcomeKind}
    for outcome in outcomes:
        counts[outcome.kind] += 1

    failures = sorted(
        (o for o in outcomes if o.kind == OutcomeKind.FAILED),
        key=lambda o: o.row_number,
    )
    errors = [
        ImportErrorEntry(row=o.row_number, message=o.message or "Row failed")
        for o in failures[:error_limit]
    ]

    summary = ImportSummary(
        import_id=import_id,
        entity_type=entity_type,
        total_rows=total_rows,
        processed_rows=len(outcomes),
        created_count=counts[OutcomeKind.CREATED],
        updated_count=counts[OutcomeKind.UPDATED],
        skipped_count=counts[OutcomeKind.SKIPPED],
        failed_count=counts[OutcomeKind.FAILED],
        errors=errors,
        errors_truncated=len(failures) > error_limit,
        cancelled=cancelled,
    )

    logger.info(
        "import_summary_built",
        import_id=import_id,
        entity_type=entity_type,
        processed=summary.processed_rows,
        created=summary.created_count,
        updated=summary.updated_count,
        skipped=summary.skipped_count,
        failed=summary.failed_count,
        errors_truncated=summary.errors_truncated,
    )
    return summary
