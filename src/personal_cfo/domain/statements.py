from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from personal_cfo.models import Statement, StatementStatus

COMPLETED = "completed"
FAILED = "failed"
PROCESSING = "processing"
PENDING = "pending"


class StatementBadge(str, Enum):
    COMPLETED = "Completed"
    FAILED = "Failed"
    EXTRACTING = "Extracting"
    CATEGORIZING = "Categorizing"
    PROCESSING = "Processing"
    EXTRACTED = "Extracted"
    UPLOADED = "Uploaded"
    PENDING = "Pending"

    @property
    def in_progress(self) -> bool:
        return self in _SPINNER_BADGES


_SPINNER_BADGES = frozenset({
    StatementBadge.EXTRACTING,
    StatementBadge.CATEGORIZING,
    StatementBadge.PROCESSING,
})


@dataclass(frozen=True)
class ProgressInfo:
    percentage: float
    step: str


def _statuses(record: Statement | StatementStatus) -> tuple[str, str, str]:
    return (
        (record.status or "").lower(),
        (record.extraction_status or "").lower(),
        (record.categorization_status or "").lower(),
    )


def is_terminal(record: Statement | StatementStatus) -> bool:
    status, extraction, categorization = _statuses(record)
    if status in {COMPLETED, FAILED}:
        return True
    return extraction == COMPLETED and categorization == COMPLETED


def derive_badge(record: Statement | StatementStatus) -> StatementBadge:
    """Combine the overall and per-step statuses into one display badge.

    Rules are checked in order: finished, failed, per-step spinners, the
    overall spinner, then extracted-awaiting-categorization. Per-step
    statuses win over the overall ``processing`` status so the badge names
    the step that is actually running.
    """
    status, extraction, categorization = _statuses(record)
    if getattr(record, "is_processed", False) or status == COMPLETED:
        return StatementBadge.COMPLETED
    if extraction == COMPLETED and categorization == COMPLETED:
        return StatementBadge.COMPLETED
    if FAILED in (status, extraction, categorization):
        return StatementBadge.FAILED
    if extraction == PROCESSING:
        return StatementBadge.EXTRACTING
    if categorization == PROCESSING:
        return StatementBadge.CATEGORIZING
    if status == PROCESSING:
        return StatementBadge.PROCESSING
    if extraction == COMPLETED and categorization == PENDING:
        return StatementBadge.EXTRACTED
    return StatementBadge.UPLOADED


def badge_for_sub_status(status: str) -> StatementBadge | str:
    normalized = (status or "").lower()
    if normalized == COMPLETED:
        return StatementBadge.COMPLETED
    if normalized == PROCESSING:
        return StatementBadge.PROCESSING
    if normalized == FAILED:
        return StatementBadge.FAILED
    if normalized == PENDING:
        return StatementBadge.PENDING
    return status


def progress_info(statement: Statement, live_status: StatementStatus | None = None) -> ProgressInfo:
    if live_status is not None:
        return ProgressInfo(
            percentage=live_status.progress_percentage or 0,
            step=live_status.current_step or "Processing",
        )
    _, extraction, categorization = _statuses(statement)
    if statement.is_processed:
        return ProgressInfo(percentage=100, step="Completed")
    if extraction == COMPLETED and categorization == PENDING:
        return ProgressInfo(percentage=50, step="Ready for Categorization")
    if extraction == PENDING:
        return ProgressInfo(percentage=0, step="Ready for Extraction")
    return ProgressInfo(percentage=25, step="Uploaded")


def has_active_statements(statements: list[Statement]) -> bool:
    return any(s.status in {PROCESSING, "uploaded"} for s in statements)
