from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from personal_cfo.core.exceptions import APIError
from personal_cfo.domain.selection import SelectionSet
from personal_cfo.integration.api_client import APIClient
from personal_cfo.logger import get_logger
from personal_cfo.models import ExcludedKeyword, ExcludedKeywordList
from personal_cfo.services.cache import QueryCache, QueryKey, QueryKeys
from personal_cfo.services.mutations import run_mutation
from personal_cfo.services.notifications import Notifier

logger = get_logger(__name__)

ItemT = TypeVar("ItemT")


@dataclass
class BulkResult:
    success_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)
    transactions_deleted: int = 0

    @property
    def all_succeeded(self) -> bool:
        return not self.failed_ids


def plural(count: int, noun: str) -> str:
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"


class ResourceFlows(Generic[ItemT]):
    """Create, edit and delete for one resource, with its cache keys and toasts."""

    def __init__(
        self,
        label: str,
        cache: QueryCache,
        notifier: Notifier,
        *,
        invalidate: Sequence[QueryKey],
        create: Callable[[Any], Awaitable[ItemT]],
        update: Callable[[str, Any], Awaitable[ItemT]],
        delete: Callable[[str], Awaitable[Any]],
    ) -> None:
        self.label = label
        self.cache = cache
        self.notifier = notifier
        self.invalidate = tuple(invalidate)
        self._create = create
        self._update = update
        self._delete = delete

    async def create(self, data: Any) -> ItemT:
        return await run_mutation(
            lambda: self._create(data),
            self.cache,
            self.notifier,
            invalidate=self.invalidate,
            success=f"{self.label} created successfully",
            error_message=f"Failed to create {self.label.lower()}",
        )

    async def edit(self, item_id: str, data: Any) -> ItemT:
        return await run_mutation(
            lambda: self._update(item_id, data),
            self.cache,
            self.notifier,
            invalidate=self.invalidate,
            success=f"{self.label} updated successfully",
            error_message=f"Failed to update {self.label.lower()}",
        )

    async def delete(self, item_id: str) -> None:
        await run_mutation(
            lambda: self._delete(item_id),
            self.cache,
            self.notifier,
            invalidate=self.invalidate,
            success=f"{self.label} deleted successfully",
            error_message=f"Failed to delete {self.label.lower()}",
        )


class TransactionFlows(ResourceFlows[Any]):
    async def delete_selected(self, selection: SelectionSet) -> BulkResult:
        """Delete every selected id; ids that fail stay selected for another try."""
        result = BulkResult()
        for transaction_id in selection.as_list():
            try:
                await self._delete(transaction_id)
            except APIError as exc:
                logger.warning("[BULK] Could not delete transaction %s: %s", transaction_id, exc.message)
                result.failed_ids.append(transaction_id)
            else:
                result.success_ids.append(transaction_id)

        selection.discard_many(result.success_ids)
        if result.success_ids:
            self.cache.invalidate_many(list(self.invalidate))
            self.notifier.success(f"Deleted {plural(len(result.success_ids), 'transaction')}")
        if result.failed_ids:
            self.notifier.warning(f"Failed to delete {plural(len(result.failed_ids), 'transaction')}")
        return result


class ExcludedKeywordFlows:
    """Per-user keywords whose transactions extraction skips."""

    def __init__(self, api: APIClient, cache: QueryCache, notifier: Notifier) -> None:
        self.api = api
        self.cache = cache
        self.notifier = notifier

    async def load(self) -> ExcludedKeywordList:
        return await self.cache.fetch(QueryKeys.excluded_keywords(), self.api.get_excluded_keywords)

    async def add(self, keyword: str) -> ExcludedKeyword:
        return await run_mutation(
            lambda: self.api.add_excluded_keyword(keyword),
            self.cache,
            self.notifier,
            invalidate=[QueryKeys.excluded_keywords()],
            success=lambda created: f'Excluded "{created.keyword}"',
            error_message="Failed to add excluded keyword",
        )

    async def delete(self, keyword_id: str) -> None:
        await run_mutation(
            lambda: self.api.delete_excluded_keyword(keyword_id),
            self.cache,
            self.notifier,
            invalidate=[QueryKeys.excluded_keywords()],
            error_message="Failed to delete excluded keyword",
        )

    async def reset(self) -> ExcludedKeywordList:
        keywords = await run_mutation(
            self.api.reset_excluded_keywords,
            self.cache,
            self.notifier,
            success="Excluded keywords reset to defaults",
            error_message="Failed to reset excluded keywords",
        )
        return self.cache.set(QueryKeys.excluded_keywords(), keywords)


TRANSACTION_KEYS = (QueryKeys.transactions()[:1], QueryKeys.analytics()[:1], QueryKeys.budget_alerts())


@dataclass
class Flows:
    cards: ResourceFlows[Any]
    categories: ResourceFlows[Any]
    transactions: TransactionFlows
    budgets: ResourceFlows[Any]
    recurring_services: ResourceFlows[Any]
    keywords: ResourceFlows[Any]
    excluded_keywords: ExcludedKeywordFlows


def build_flows(api: APIClient, cache: QueryCache, notifier: Notifier) -> Flows:
    return Flows(
        cards=ResourceFlows(
            "Card",
            cache,
            notifier,
            invalidate=[QueryKeys.cards()],
            create=api.create_card,
            update=api.update_card,
            delete=api.delete_card,
        ),
        categories=ResourceFlows(
            "Category",
            cache,
            notifier,
            invalidate=[("categories",)],
            create=api.create_category,
            update=api.update_category,
            delete=api.delete_category,
        ),
        transactions=TransactionFlows(
            "Transaction",
            cache,
            notifier,
            invalidate=TRANSACTION_KEYS,
            create=api.create_transaction,
            update=api.update_transaction,
            delete=api.delete_transaction,
        ),
        budgets=ResourceFlows(
            "Budget",
            cache,
            notifier,
            invalidate=[QueryKeys.budgets(), QueryKeys.budget_alerts()],
            create=api.create_budget,
            update=api.update_budget,
            delete=api.delete_budget,
        ),
        recurring_services=ResourceFlows(
            "Recurring service",
            cache,
            notifier,
            invalidate=[QueryKeys.recurring_services()],
            create=api.create_recurring_service,
            update=api.update_recurring_service,
            delete=api.delete_recurring_service,
        ),
        keywords=ResourceFlows(
            "Keyword",
            cache,
            notifier,
            invalidate=[("keywords",), ("categories",)],
            create=api.create_keyword,
            update=api.update_keyword,
            delete=api.delete_keyword,
        ),
        excluded_keywords=ExcludedKeywordFlows(api, cache, notifier),
    )
