import pytest

from personal_cfo.domain.statements import (
    StatementBadge,
    badge_for_sub_status,
    derive_badge,
    has_active_statements,
    is_terminal,
    progress_info,
)
from personal_cfo.models import Statement, StatementStatus


def _statement(**overrides) -> Statement:
    data = {"id": "s1", "filename": "jan.pdf"}
    data.update(overrides)
    return Statement(**data)


def _status(status: str, extraction: str = "pending", categorization: str = "pending", **extra) -> StatementStatus:
    return StatementStatus(
        statement_id="s1",
        status=status,
        extraction_status=extraction,
        categorization_status=categorization,
        **extra,
    )


@pytest.mark.parametrize(
    ("record", "expected"),
    [
        (_statement(is_processed=True, status="uploaded"), StatementBadge.COMPLETED),
        (_status("processing", "completed", "completed"), StatementBadge.COMPLETED),
        (_status("processing", "failed"), StatementBadge.FAILED),
        (_status("failed"), StatementBadge.FAILED),
        (_status("processing", "processing"), StatementBadge.EXTRACTING),
        (_status("processing", "completed", "processing"), StatementBadge.CATEGORIZING),
        (_status("processing"), StatementBadge.PROCESSING),
        (_status("uploaded", "completed", "pending"), StatementBadge.EXTRACTED),
        (_status("uploaded"), StatementBadge.UPLOADED),
    ],
)
def test_derive_badge(record, expected) -> None:
    assert derive_badge(record) is expected


def test_spinner_badges() -> None:
    assert StatementBadge.EXTRACTING.in_progress
    assert StatementBadge.PROCESSING.in_progress
    assert not StatementBadge.EXTRACTED.in_progress


def test_terminal_states() -> None:
    assert is_terminal(_status("completed"))
    assert is_terminal(_status("failed"))
    assert is_terminal(_status("processing", "completed", "completed"))
    assert not is_terminal(_status("processing", "completed", "processing"))


def test_progress_prefers_live_status() -> None:
    live = _status("processing", "processing", progress_percentage=40, current_step="Reading pages")
    info = progress_info(_statement(), live)
    assert (info.percentage, info.step) == (40, "Reading pages")


@pytest.mark.parametrize(
    ("statement", "expected"),
    [
        (_statement(is_processed=True), (100, "Completed")),
        (_statement(extraction_status="completed"), (50, "Ready for Categorization")),
        (_statement(), (0, "Ready for Extraction")),
        (_statement(extraction_status="processing"), (25, "Uploaded")),
    ],
)
def test_progress_from_stored_statuses(statement, expected) -> None:
    info = progress_info(statement)
    assert (info.percentage, info.step) == expected


def test_sub_status_badges() -> None:
    assert badge_for_sub_status("COMPLETED") is StatementBadge.COMPLETED
    assert badge_for_sub_status("pending") is StatementBadge.PENDING
    assert badge_for_sub_status("queued") == "queued"


def test_has_active_statements() -> None:
    assert has_active_statements([_statement(status="processing")])
    assert not has_active_statements([_statement(status="completed")])
