from typing import Annotated, Any

from fastapi import APIRouter, Depends, File, Form, UploadFile

from personal_cfo.api.dependencies import get_api, get_poller, get_session, get_workflow
from personal_cfo.api.schemas import (
    CategorizeOptions,
    ExtractOptions,
    ProcessOptions,
    StatementBulkDeleteRequest,
)
from personal_cfo.domain.statements import badge_for_sub_status, derive_badge, has_active_statements
from personal_cfo.domain.views import build_statement_payload
from personal_cfo.integration.api_client import APIClient
from personal_cfo.models import (
    AsyncUploadResponse,
    CategorizationResponse,
    ExtractionResponse,
    PDFAccessibility,
    PDFUnlockResponse,
    Statement,
    StatementDeleteResponse,
)
from personal_cfo.services.cache import QueryKeys, Session
from personal_cfo.services.poller import StatementPoller
from personal_cfo.services.statements import StatementWorkflow

router = APIRouter()


@router.get("/statements")
async def list_statements(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
    poller: Annotated[StatementPoller, Depends(get_poller)],
) -> dict[str, Any]:
    statements = await session.cache.fetch(QueryKeys.statements(), api.get_statements)
    return {
        "statements": [
            build_statement_payload(
                statement,
                live_status=poller.latest(statement.id) if poller.is_polling(statement.id) else None,
                polling=poller.is_polling(statement.id),
            )
            for statement in statements
        ],
        "has_active": has_active_statements(statements),
        "polling_ids": poller.polling_ids(),
    }


@router.post("/statements/upload")
async def upload_statement(
    workflow: Annotated[StatementWorkflow, Depends(get_workflow)],
    file: Annotated[UploadFile, File()],
    card_id: Annotated[str, Form()],
    password: Annotated[str | None, Form()] = None,
    background: Annotated[bool, Form()] = True,
) -> AsyncUploadResponse | Statement:
    content = await file.read()
    filename = file.filename or "statement.pdf"
    if background:
        return await workflow.upload_async(filename, content, card_id, password)
    return await workflow.upload_simple(filename, content, card_id, password)


@router.post("/statements/check-pdf", response_model=PDFAccessibility)
async def check_pdf(
    workflow: Annotated[StatementWorkflow, Depends(get_workflow)],
    file: Annotated[UploadFile, File()],
) -> PDFAccessibility:
    content = await file.read()
    return await workflow.check_pdf(file.filename or "statement.pdf", content)


@router.post("/statements/unlock", response_model=PDFUnlockResponse)
async def unlock_statement(
    workflow: Annotated[StatementWorkflow, Depends(get_workflow)],
    file: Annotated[UploadFile, File()],
    password: Annotated[str, Form()],
    card_id: Annotated[str, Form()],
) -> PDFUnlockResponse:
    content = await file.read()
    return await workflow.unlock_and_upload(file.filename or "statement.pdf", content, password, card_id)


@router.get("/statements/{statement_id}/status")
async def statement_status(
    statement_id: str,
    api: Annotated[APIClient, Depends(get_api)],
    poller: Annotated[StatementPoller, Depends(get_poller)],
) -> dict[str, Any]:
    polling = poller.is_polling(statement_id)
    status = poller.latest(statement_id)
    if status is None:
        status = await api.get_statement_status(statement_id)
    return {
        "polling": polling,
        "badge": derive_badge(status).value,
        "extraction_badge": badge_for_sub_status(status.extraction_status),
        "categorization_badge": badge_for_sub_status(status.categorization_status),
        "status": status.model_dump(mode="json"),
    }


@router.post("/statements/{statement_id}/extract", response_model=ExtractionResponse)
async def extract_statement(
    statement_id: str,
    workflow: Annotated[StatementWorkflow, Depends(get_workflow)],
    options: ExtractOptions | None = None,
) -> ExtractionResponse:
    options = options or ExtractOptions()
    return await workflow.extract(
        statement_id,
        card_id=options.card_id,
        card_name=options.card_name,
        statement_month=options.statement_month,
    )


@router.post("/statements/{statement_id}/categorize", response_model=CategorizationResponse)
async def categorize_statement(
    statement_id: str,
    workflow: Annotated[StatementWorkflow, Depends(get_workflow)],
    options: CategorizeOptions | None = None,
) -> CategorizationResponse:
    options = options or CategorizeOptions()
    return await workflow.categorize(statement_id, options.use_ai, options.use_keywords)


@router.post("/statements/{statement_id}/recategorize", response_model=CategorizationResponse)
async def recategorize_statement(
    statement_id: str,
    workflow: Annotated[StatementWorkflow, Depends(get_workflow)],
    options: CategorizeOptions | None = None,
) -> CategorizationResponse:
    options = options or CategorizeOptions()
    return await workflow.recategorize(statement_id, options.use_ai, options.use_keywords)


@router.post("/statements/{statement_id}/process")
async def process_statement(
    statement_id: str,
    workflow: Annotated[StatementWorkflow, Depends(get_workflow)],
    options: ProcessOptions | None = None,
) -> dict[str, Any]:
    options = options or ProcessOptions()
    extraction, categorization = await workflow.process_all(statement_id, card_id=options.card_id)
    return {
        "extraction": extraction.model_dump(mode="json"),
        "categorization": categorization.model_dump(mode="json"),
    }


@router.post("/statements/{statement_id}/retry")
async def retry_statement(
    statement_id: str,
    workflow: Annotated[StatementWorkflow, Depends(get_workflow)],
) -> dict[str, Any]:
    return await workflow.retry(statement_id)


@router.delete("/statements/{statement_id}", response_model=StatementDeleteResponse)
async def delete_statement(
    statement_id: str,
    workflow: Annotated[StatementWorkflow, Depends(get_workflow)],
) -> StatementDeleteResponse:
    return await workflow.delete(statement_id)


@router.post("/statements/bulk-delete")
async def bulk_delete_statements(
    req: StatementBulkDeleteRequest,
    workflow: Annotated[StatementWorkflow, Depends(get_workflow)],
) -> dict[str, Any]:
    result = await workflow.delete_many(req.statement_ids)
    return {
        "success_ids": result.success_ids,
        "failed_ids": result.failed_ids,
        "transactions_deleted": result.transactions_deleted,
    }
