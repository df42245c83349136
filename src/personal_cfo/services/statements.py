from collections.abc import Awaitable, Callable
from typing import TypeVar

from personal_cfo.core.exceptions import APIError, message_from_detail
from personal_cfo.integration.api_client import APIClient
from personal_cfo.logger import get_logger
from personal_cfo.models import (
    AsyncUploadResponse,
    CategorizationRequest,
    CategorizationResponse,
    ExtractionRequest,
    ExtractionResponse,
    PDFAccessibility,
    PDFUnlockResponse,
    Statement,
    StatementDeleteResponse,
)
from personal_cfo.services.cache import QueryCache
from personal_cfo.services.mutations import run_mutation
from personal_cfo.services.notifications import Notifier
from personal_cfo.services.poller import REFRESH_ON_FINISH, StatementPoller
from personal_cfo.services.resources import BulkResult, plural

logger = get_logger(__name__)

T = TypeVar("T")


class StatementWorkflow:
    """Upload, process and delete statements, keeping the poller in step."""

    def __init__(
        self,
        api: APIClient,
        cache: QueryCache,
        notifier: Notifier,
        poller: StatementPoller,
    ) -> None:
        self.api = api
        self.cache = cache
        self.notifier = notifier
        self.poller = poller
        self.processing_ids: set[str] = set()

    def is_processing(self, statement_id: str) -> bool:
        return statement_id in self.processing_ids or self.poller.is_polling(statement_id)

    # Upload

    async def upload(self, filename: str, content: bytes, card_id: str | None = None) -> Statement:
        return await run_mutation(
            lambda: self.api.upload_statement(filename, content, card_id),
            self.cache,
            self.notifier,
            invalidate=[("statements",)],
            success=f"Uploaded {filename}",
            error_message="Upload failed",
        )

    async def upload_simple(
        self,
        filename: str,
        content: bytes,
        card_id: str,
        password: str | None = None,
    ) -> Statement:
        return await run_mutation(
            lambda: self.api.upload_statement_simple(filename, content, card_id, password),
            self.cache,
            self.notifier,
            invalidate=[("statements",)],
            success=f"Uploaded {filename}",
            error_message="Upload failed",
        )

    async def upload_async(
        self,
        filename: str,
        content: bytes,
        card_id: str,
        password: str | None = None,
    ) -> AsyncUploadResponse:
        response = await run_mutation(
            lambda: self.api.upload_statement_async(filename, content, card_id, password),
            self.cache,
            self.notifier,
            invalidate=[("statements",)],
            success=lambda result: result.message or f"Processing {filename}",
            error_message="Upload failed",
        )
        self.poller.start(response.id)
        return response

    async def unlock_and_upload(
        self,
        filename: str,
        content: bytes,
        password: str,
        card_id: str,
    ) -> PDFUnlockResponse:
        result = await run_mutation(
            lambda: self.api.unlock_and_upload_pdf(filename, content, password, card_id),
            self.cache,
            self.notifier,
            invalidate=[("statements",)],
            error_message="Failed to unlock PDF",
        )
        # A rejected password can come back as success=false instead of an error status.
        if result.success:
            self.notifier.success(result.message or f"Unlocked and uploaded {filename}")
        else:
            self.notifier.error(result.message or "Failed to unlock PDF")
        return result

    async def check_pdf(self, filename: str, content: bytes) -> PDFAccessibility:
        return await self.api.check_pdf_accessibility(filename, content)

    # Processing steps

    async def _run_step(
        self,
        statement_id: str,
        call: Callable[[], Awaitable[T]],
        failure: str,
        success: Callable[[T], str] | None = None,
    ) -> T:
        self.processing_ids.add(statement_id)
        self.poller.start(statement_id)
        try:
            result = await call()
        except APIError as exc:
            await self.poller.stop(statement_id)
            self.notifier.error(message_from_detail(exc.detail) or f"{failure}: {exc.message}")
            raise
        finally:
            self.processing_ids.discard(statement_id)

        self.cache.invalidate_many(list(REFRESH_ON_FINISH))
        if success is not None:
            self.notifier.success(success(result))
        return result

    async def extract(
        self,
        statement_id: str,
        card_id: str | None = None,
        card_name: str | None = None,
        statement_month: str | None = None,
    ) -> ExtractionResponse:
        request = ExtractionRequest(card_id=card_id, card_name=card_name, statement_month=statement_month)
        return await self._run_step(
            statement_id,
            lambda: self.api.extract_transactions(statement_id, request),
            "Extraction failed",
            lambda result: f"Extracted {plural(result.transactions_found, 'transaction')}",
        )

    async def categorize(
        self,
        statement_id: str,
        use_ai: bool = True,
        use_keywords: bool = True,
    ) -> CategorizationResponse:
        request = CategorizationRequest(use_ai=use_ai, use_keywords=use_keywords)
        return await self._run_step(
            statement_id,
            lambda: self.api.categorize_transactions(statement_id, request),
            "Categorization failed",
            lambda result: f"Categorized {plural(result.transactions_categorized, 'transaction')}",
        )

    async def recategorize(
        self,
        statement_id: str,
        use_ai: bool = True,
        use_keywords: bool = True,
    ) -> CategorizationResponse:
        request = CategorizationRequest(use_ai=use_ai, use_keywords=use_keywords)
        return await self._run_step(
            statement_id,
            lambda: self.api.recategorize_transactions(statement_id, request),
            "Recategorization failed",
            lambda result: f"Recategorized {plural(result.transactions_categorized, 'transaction')}",
        )

    async def process_all(
        self,
        statement_id: str,
        card_id: str | None = None,
    ) -> tuple[ExtractionResponse, CategorizationResponse]:
        """Extract, then categorize. A failed extraction skips categorization."""
        extraction = await self.extract(statement_id, card_id=card_id)
        categorization = await self.categorize(statement_id)
        return extraction, categorization

    async def retry(self, statement_id: str) -> dict:
        return await self._run_step(
            statement_id,
            lambda: self.api.retry_statement(statement_id),
            "Retry failed",
            lambda result: result.get("message") or "Statement queued for retry",
        )

    # Deletion

    async def delete(self, statement_id: str) -> StatementDeleteResponse:
        await self.poller.stop(statement_id)
        return await run_mutation(
            lambda: self.api.delete_statement(statement_id),
            self.cache,
            self.notifier,
            invalidate=list(REFRESH_ON_FINISH),
            success=lambda result: (
                f"Statement deleted ({plural(result.transactions_deleted, 'transaction')} removed)"
            ),
            error_message="Failed to delete statement",
        )

    async def delete_many(self, statement_ids: list[str]) -> BulkResult:
        result = BulkResult()
        for statement_id in statement_ids:
            await self.poller.stop(statement_id)
            try:
                response = await self.api.delete_statement(statement_id)
            except APIError as exc:
                logger.warning("[BULK] Could not delete statement %s: %s", statement_id, exc.message)
                result.failed_ids.append(statement_id)
                continue
            result.success_ids.append(statement_id)
            result.transactions_deleted += response.transactions_deleted

        if result.success_ids:
            self.cache.invalidate_many(list(REFRESH_ON_FINISH))
            self.notifier.success(
                f"Deleted {plural(len(result.success_ids), 'statement')} "
                f"({plural(result.transactions_deleted, 'transaction')} removed)"
            )
        if result.failed_ids:
            self.notifier.warning(f"Failed to delete {plural(len(result.failed_ids), 'statement')}")
        return result
