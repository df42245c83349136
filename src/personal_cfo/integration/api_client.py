import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel

from personal_cfo.core import settings
from personal_cfo.core.exceptions import (
    DEFAULT_ERROR_MESSAGE,
    APIError,
    UnauthorizedError,
    error_detail,
    error_message,
)
from personal_cfo.integration.token_store import TokenStore
from personal_cfo.logger import get_logger
from personal_cfo.models import (
    AIInsight,
    AnalyticsDashboard,
    AnalyticsFilters,
    AsyncUploadResponse,
    BankProvider,
    BankProviderSimple,
    Budget,
    BudgetAlert,
    BudgetCreate,
    BudgetUpdate,
    BulkDeleteResponse,
    Card,
    CardCreate,
    CardUpdate,
    CategorizationRequest,
    CategorizationResponse,
    Category,
    CategoryCreate,
    CategoryKeyword,
    CategoryKeywordCreate,
    CategoryKeywordsBulkCreate,
    CategoryKeywordUpdate,
    CategoryList,
    CategoryPermissions,
    CategorySpending,
    CategoryUpdate,
    ExcludedKeyword,
    ExcludedKeywordCreate,
    ExcludedKeywordList,
    ExtractionRequest,
    ExtractionResponse,
    OTPResendRequest,
    OTPVerifyRequest,
    PDFAccessibility,
    PDFUnlockResponse,
    RecurringService,
    RecurringServiceCreate,
    RecurringServiceUpdate,
    SpendingTrend,
    Statement,
    StatementDeleteResponse,
    StatementProcess,
    StatementStatus,
    Token,
    Transaction,
    TransactionCreate,
    TransactionFilters,
    TransactionUpdate,
    User,
    UserCreate,
    UserLogin,
    UserProfileUpdate,
    YearComparison,
)

logger = get_logger(__name__)

API_PREFIX = "/api/v1"
LOGIN_PATH = "/login"
DEFAULT_TIMEOUT_SECONDS = 30.0

ModelT = TypeVar("ModelT", bound=BaseModel)

_AUTH_ENDPOINTS = (
    "/auth/login",
    "/auth/register",
    "/auth/verify-otp",
    "/auth/resend-otp",
)


class AuthRedirectPolicy:
    """Decides whether a 401 should send the user to the login page."""

    def __init__(
        self,
        *,
        development: bool | None = None,
        bypass_prefix: str | None = None,
        login_path: str = LOGIN_PATH,
    ) -> None:
        self.development = settings.is_development() if development is None else development
        self.bypass_prefix = bypass_prefix if bypass_prefix is not None else settings.get_bypass_prefix()
        self.login_path = login_path

    def is_auth_endpoint(self, request_path: str) -> bool:
        return any(endpoint in request_path for endpoint in _AUTH_ENDPOINTS)

    def is_auth_page(self, current_page: str | None) -> bool:
        page = current_page or ""
        return page == self.login_path or page.startswith("/signup")

    def is_bypassed(self, current_page: str | None) -> bool:
        return bool(
            self.development
            and self.bypass_prefix
            and (current_page or "").startswith(self.bypass_prefix)
        )

    def redirect_target(self, request_path: str, current_page: str | None) -> str | None:
        if self.is_auth_endpoint(request_path) or self.is_auth_page(current_page):
            return None
        if self.is_bypassed(current_page):
            logger.debug("[AUTH] Development bypass active for %s; not redirecting.", current_page)
            return None
        return self.login_path


def _clean_params(params: dict[str, Any] | BaseModel | None) -> dict[str, Any] | None:
    if params is None:
        return None
    if isinstance(params, BaseModel):
        params = params.model_dump(mode="json", exclude_none=True)
    return {key: value for key, value in params.items() if value is not None}


def _body(payload: BaseModel | dict[str, Any] | None) -> Any:
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json", exclude_none=True)
    return payload


def _parse(model: type[ModelT], payload: Any) -> ModelT:
    return model.model_validate(payload)


def _parse_list(model: type[ModelT], payload: Any) -> list[ModelT]:
    return [model.model_validate(item) for item in payload or []]


class APIClient:
    """Typed async client for the Personal CFO backend.

    Errors are not retried; every failure surfaces as ``APIError`` so the
    caller can turn it into a user notification.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token_store: TokenStore | None = None,
        client: httpx.AsyncClient | None = None,
        auth_policy: AuthRedirectPolicy | None = None,
        on_unauthorized: Callable[[str], None] | None = None,
        current_page: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = (base_url or settings.get_api_url()).rstrip("/")
        self.token_store = token_store or TokenStore()
        self.auth_policy = auth_policy or AuthRedirectPolicy()
        self.on_unauthorized = on_unauthorized
        self.current_page = current_page
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._client_lock = asyncio.Lock()

    async def __aenter__(self) -> "APIClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_client(self) -> httpx.AsyncClient:
        client = self._client
        if client is not None and not client.is_closed:
            return client

        async with self._client_lock:
            client = self._client
            if client is None or client.is_closed:
                client = httpx.AsyncClient(timeout=self.timeout)
                self._client = client
                self._owns_client = True
            return client

    # Token management

    def set_token(self, token: str) -> None:
        self.token_store.set(token)

    def get_token(self) -> str | None:
        return self.token_store.get()

    def remove_token(self) -> None:
        self.token_store.clear()

    def is_authenticated(self) -> bool:
        return bool(self.get_token())

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _handle_unauthorized(self, path: str, response: httpx.Response) -> UnauthorizedError:
        self.remove_token()
        target = self.auth_policy.redirect_target(path, self.current_page)
        logger.warning(
            "[AUTH] 401 from %s; token cleared%s.",
            path,
            f", redirecting to {target}" if target else "",
        )
        if target and self.on_unauthorized:
            self.on_unauthorized(target)
        return UnauthorizedError(
            error_message(response),
            detail=error_detail(response),
            redirect_to=target,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | BaseModel | None = None,
        json: Any = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> httpx.Response:
        client = await self._get_client()
        url = f"{self.base_url}{path}"
        try:
            response = await client.request(
                method,
                url,
                headers=self._headers(),
                params=_clean_params(params),
                json=_body(json),
                data=data,
                files=files,
            )
        except httpx.HTTPError as exc:
            logger.error("[API] %s %s failed: %s", method, path, exc)
            raise APIError(str(exc) or DEFAULT_ERROR_MESSAGE) from exc

        if response.status_code == 401:
            raise self._handle_unauthorized(path, response)
        if response.is_error:
            message = error_message(response)
            logger.warning("[API] %s %s -> %s: %s", method, path, response.status_code, message)
            raise APIError(message, status_code=response.status_code, detail=error_detail(response))
        return response

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._request(method, path, **kwargs)
        if not response.content:
            return None
        return response.json()

    # Authentication

    async def register(self, data: UserCreate) -> User:
        return _parse(User, await self._json("POST", f"{API_PREFIX}/auth/register", json=data))

    async def verify_otp(self, data: OTPVerifyRequest) -> dict[str, Any]:
        return await self._json("POST", f"{API_PREFIX}/auth/verify-otp", json=data)

    async def resend_otp(self, data: OTPResendRequest) -> dict[str, Any]:
        return await self._json("POST", f"{API_PREFIX}/auth/resend-otp", json=data)

    async def login(self, data: UserLogin) -> Token:
        token = _parse(Token, await self._json("POST", f"{API_PREFIX}/auth/login", json=data))
        self.set_token(token.access_token)
        logger.info("[AUTH] Logged in as %s.", data.email)
        return token

    async def refresh_token(self) -> Token:
        token = _parse(Token, await self._json("POST", f"{API_PREFIX}/auth/refresh"))
        self.set_token(token.access_token)
        return token

    def logout(self) -> None:
        self.remove_token()

    # Users

    async def get_user_profile(self) -> User:
        return _parse(User, await self._json("GET", f"{API_PREFIX}/users/profile"))

    async def update_user_profile(self, data: UserProfileUpdate) -> User:
        return _parse(User, await self._json("PUT", f"{API_PREFIX}/users/profile", json=data))

    # Cards

    async def get_cards(self) -> list[Card]:
        return _parse_list(Card, await self._json("GET", f"{API_PREFIX}/cards/"))

    async def get_card(self, card_id: str) -> Card:
        return _parse(Card, await self._json("GET", f"{API_PREFIX}/cards/{card_id}"))

    async def create_card(self, data: CardCreate) -> Card:
        return _parse(Card, await self._json("POST", f"{API_PREFIX}/cards/", json=data))

    async def update_card(self, card_id: str, data: CardUpdate) -> Card:
        return _parse(Card, await self._json("PUT", f"{API_PREFIX}/cards/{card_id}", json=data))

    async def delete_card(self, card_id: str) -> None:
        await self._request("DELETE", f"{API_PREFIX}/cards/{card_id}")

    # Providers

    async def get_bank_providers(
        self,
        country: str | None = None,
        popular_only: bool | None = None,
    ) -> list[BankProviderSimple]:
        params = {"country": country, "popular_only": popular_only}
        payload = await self._json("GET", f"{API_PREFIX}/bank-providers/", params=params)
        return _parse_list(BankProviderSimple, payload)

    async def get_bank_provider(self, bank_id: str) -> BankProvider:
        return _parse(BankProvider, await self._json("GET", f"{API_PREFIX}/bank-providers/{bank_id}"))

    async def get_network_providers(self) -> list[dict[str, Any]]:
        return await self._json("GET", f"{API_PREFIX}/network-providers/") or []

    async def get_card_types(self) -> list[dict[str, Any]]:
        return await self._json("GET", f"{API_PREFIX}/card-types/") or []

    # Categories

    async def get_categories(self, include_inactive: bool = False) -> CategoryList:
        payload = await self._json(
            "GET",
            f"{API_PREFIX}/categories/",
            params={"include_inactive": include_inactive},
        )
        return _parse(CategoryList, payload)

    async def get_category_permissions(self) -> CategoryPermissions:
        return _parse(CategoryPermissions, await self._json("GET", f"{API_PREFIX}/categories/permissions"))

    async def get_category(self, category_id: str) -> Category:
        return _parse(Category, await self._json("GET", f"{API_PREFIX}/categories/{category_id}"))

    async def create_category(self, data: CategoryCreate) -> Category:
        return _parse(Category, await self._json("POST", f"{API_PREFIX}/categories/", json=data))

    async def update_category(self, category_id: str, data: CategoryUpdate) -> Category:
        return _parse(Category, await self._json("PUT", f"{API_PREFIX}/categories/{category_id}", json=data))

    async def delete_category(self, category_id: str) -> None:
        await self._request("DELETE", f"{API_PREFIX}/categories/{category_id}")

    async def validate_categories_minimum(self) -> dict[str, Any]:
        return await self._json("GET", f"{API_PREFIX}/categories/validate-minimum")

    # Currencies

    async def get_currencies(self) -> list[str]:
        payload = await self._json("GET", f"{API_PREFIX}/currencies")
        return [str(code).upper() for code in payload or []]

    # Transactions

    async def get_transactions(self, filters: TransactionFilters | None = None) -> list[Transaction]:
        payload = await self._json("GET", f"{API_PREFIX}/transactions/", params=filters)
        return _parse_list(Transaction, payload)

    async def get_transaction(self, transaction_id: str) -> Transaction:
        return _parse(Transaction, await self._json("GET", f"{API_PREFIX}/transactions/{transaction_id}"))

    async def create_transaction(self, data: TransactionCreate) -> Transaction:
        return _parse(Transaction, await self._json("POST", f"{API_PREFIX}/transactions/", json=data))

    async def update_transaction(self, transaction_id: str, data: TransactionUpdate) -> Transaction:
        payload = await self._json("PUT", f"{API_PREFIX}/transactions/{transaction_id}", json=data)
        return _parse(Transaction, payload)

    async def delete_transaction(self, transaction_id: str) -> None:
        await self._request("DELETE", f"{API_PREFIX}/transactions/{transaction_id}")

    async def delete_transactions_bulk(self, transaction_ids: list[str]) -> BulkDeleteResponse:
        payload = await self._json(
            "DELETE",
            f"{API_PREFIX}/transactions/bulk",
            json={"transaction_ids": transaction_ids},
        )
        return _parse(BulkDeleteResponse, payload)

    # Budgets

    async def get_budgets(self) -> list[Budget]:
        return _parse_list(Budget, await self._json("GET", f"{API_PREFIX}/budgets/"))

    async def get_budget(self, budget_id: str) -> Budget:
        return _parse(Budget, await self._json("GET", f"{API_PREFIX}/budgets/{budget_id}"))

    async def create_budget(self, data: BudgetCreate) -> Budget:
        return _parse(Budget, await self._json("POST", f"{API_PREFIX}/budgets/", json=data))

    async def update_budget(self, budget_id: str, data: BudgetUpdate) -> Budget:
        return _parse(Budget, await self._json("PUT", f"{API_PREFIX}/budgets/{budget_id}", json=data))

    async def delete_budget(self, budget_id: str) -> None:
        await self._request("DELETE", f"{API_PREFIX}/budgets/{budget_id}")

    async def get_budget_alerts(self) -> list[BudgetAlert]:
        return _parse_list(BudgetAlert, await self._json("GET", f"{API_PREFIX}/budgets/alerts"))

    # Recurring services

    async def get_recurring_services(self) -> list[RecurringService]:
        return _parse_list(RecurringService, await self._json("GET", f"{API_PREFIX}/recurring-services/"))

    async def get_recurring_service(self, service_id: str) -> RecurringService:
        payload = await self._json("GET", f"{API_PREFIX}/recurring-services/{service_id}")
        return _parse(RecurringService, payload)

    async def create_recurring_service(self, data: RecurringServiceCreate) -> RecurringService:
        payload = await self._json("POST", f"{API_PREFIX}/recurring-services/", json=data)
        return _parse(RecurringService, payload)

    async def update_recurring_service(self, service_id: str, data: RecurringServiceUpdate) -> RecurringService:
        payload = await self._json("PUT", f"{API_PREFIX}/recurring-services/{service_id}", json=data)
        return _parse(RecurringService, payload)

    async def delete_recurring_service(self, service_id: str) -> None:
        await self._request("DELETE", f"{API_PREFIX}/recurring-services/{service_id}")

    # Statements

    @staticmethod
    def _pdf_files(filename: str, content: bytes) -> dict[str, Any]:
        return {"file": (filename, content, "application/pdf")}

    async def upload_statement(self, filename: str, content: bytes, card_id: str | None = None) -> Statement:
        payload = await self._json(
            "POST",
            f"{API_PREFIX}/statements/upload",
            files=self._pdf_files(filename, content),
            params={"card_id": card_id},
        )
        return _parse(Statement, payload)

    async def upload_statement_simple(
        self,
        filename: str,
        content: bytes,
        card_id: str,
        password: str | None = None,
    ) -> Statement:
        form = {"card_id": card_id}
        if password:
            form["password"] = password
        payload = await self._json(
            "POST",
            f"{API_PREFIX}/statements/upload-simple",
            files=self._pdf_files(filename, content),
            data=form,
        )
        return _parse(Statement, payload)

    async def upload_statement_async(
        self,
        filename: str,
        content: bytes,
        card_id: str,
        password: str | None = None,
    ) -> AsyncUploadResponse:
        form = {"card_id": card_id}
        if password:
            form["password"] = password
        payload = await self._json(
            "POST",
            f"{API_PREFIX}/statements/upload-simple-async",
            files=self._pdf_files(filename, content),
            data=form,
        )
        return _parse(AsyncUploadResponse, payload)

    async def check_pdf_accessibility(self, filename: str, content: bytes) -> PDFAccessibility:
        payload = await self._json(
            "POST",
            f"{API_PREFIX}/statements/check-pdf",
            files=self._pdf_files(filename, content),
        )
        return _parse(PDFAccessibility, payload)

    async def unlock_and_upload_pdf(
        self,
        filename: str,
        content: bytes,
        password: str,
        card_id: str,
    ) -> PDFUnlockResponse:
        payload = await self._json(
            "POST",
            f"{API_PREFIX}/statements/unlock-pdf",
            files=self._pdf_files(filename, content),
            data={"password": password, "card_id": card_id},
        )
        return _parse(PDFUnlockResponse, payload)

    async def get_statements(self) -> list[Statement]:
        return _parse_list(Statement, await self._json("GET", f"{API_PREFIX}/statements/"))

    async def delete_statement(self, statement_id: str) -> StatementDeleteResponse:
        payload = await self._json("DELETE", f"{API_PREFIX}/statements/{statement_id}")
        return _parse(StatementDeleteResponse, payload or {})

    async def process_statement(self, statement_id: str, card_id: str) -> StatementProcess:
        payload = await self._json(
            "POST",
            f"{API_PREFIX}/statements/{statement_id}/process",
            params={"card_id": card_id},
        )
        return _parse(StatementProcess, payload)

    async def get_statement_status(self, statement_id: str) -> StatementStatus:
        payload = await self._json("GET", f"{API_PREFIX}/statements/{statement_id}/status")
        return _parse(StatementStatus, payload)

    async def extract_transactions(self, statement_id: str, data: ExtractionRequest) -> ExtractionResponse:
        payload = await self._json("POST", f"{API_PREFIX}/statements/{statement_id}/extract", json=data)
        return _parse(ExtractionResponse, payload)

    async def categorize_transactions(
        self,
        statement_id: str,
        data: CategorizationRequest,
    ) -> CategorizationResponse:
        payload = await self._json("POST", f"{API_PREFIX}/statements/{statement_id}/categorize", json=data)
        return _parse(CategorizationResponse, payload)

    async def recategorize_transactions(
        self,
        statement_id: str,
        data: CategorizationRequest,
    ) -> CategorizationResponse:
        payload = await self._json("POST", f"{API_PREFIX}/statements/{statement_id}/recategorize", json=data)
        return _parse(CategorizationResponse, payload)

    async def retry_statement(self, statement_id: str) -> dict[str, Any]:
        return await self._json("POST", f"{API_PREFIX}/statements/{statement_id}/retry") or {}

    # Analytics

    async def get_analytics_dashboard(self) -> AnalyticsDashboard:
        return _parse(AnalyticsDashboard, await self._json("GET", f"{API_PREFIX}/analytics/"))

    async def get_category_spending(self, filters: AnalyticsFilters | None = None) -> list[CategorySpending]:
        payload = await self._json("GET", f"{API_PREFIX}/analytics/category", params=filters)
        return _parse_list(CategorySpending, payload)

    async def get_spending_trends(self, months: int | None = None) -> list[SpendingTrend]:
        payload = await self._json("GET", f"{API_PREFIX}/analytics/trends", params={"months": months})
        return _parse_list(SpendingTrend, payload)

    async def get_year_comparison(self) -> YearComparison:
        return _parse(YearComparison, await self._json("GET", f"{API_PREFIX}/analytics/comparison"))

    async def get_ai_insights(self) -> list[AIInsight]:
        return _parse_list(AIInsight, await self._json("GET", f"{API_PREFIX}/analytics/insights"))

    # Keywords

    async def get_keywords_by_category(self, category_id: str) -> list[CategoryKeyword]:
        payload = await self._json("GET", f"{API_PREFIX}/keywords/by-category/{category_id}")
        return _parse_list(CategoryKeyword, payload)

    async def create_keyword(self, data: CategoryKeywordCreate) -> CategoryKeyword:
        return _parse(CategoryKeyword, await self._json("POST", f"{API_PREFIX}/keywords/", json=data))

    async def create_keywords_bulk(self, data: CategoryKeywordsBulkCreate) -> list[CategoryKeyword]:
        return _parse_list(CategoryKeyword, await self._json("POST", f"{API_PREFIX}/keywords/bulk", json=data))

    async def update_keyword(self, keyword_id: str, data: CategoryKeywordUpdate) -> CategoryKeyword:
        payload = await self._json("PUT", f"{API_PREFIX}/keywords/{keyword_id}", json=data)
        return _parse(CategoryKeyword, payload)

    async def delete_keyword(self, keyword_id: str) -> None:
        await self._request("DELETE", f"{API_PREFIX}/keywords/{keyword_id}")

    async def seed_default_keywords(self) -> list[CategoryKeyword]:
        return _parse_list(CategoryKeyword, await self._json("POST", f"{API_PREFIX}/keywords/seed-defaults"))

    # Excluded keywords

    async def get_excluded_keywords(self) -> ExcludedKeywordList:
        payload = await self._json("GET", f"{API_PREFIX}/user-settings/excluded-keywords/")
        return _parse(ExcludedKeywordList, payload or {})

    async def add_excluded_keyword(self, keyword: str) -> ExcludedKeyword:
        payload = await self._json(
            "POST",
            f"{API_PREFIX}/user-settings/excluded-keywords/",
            json=ExcludedKeywordCreate(keyword=keyword),
        )
        return _parse(ExcludedKeyword, payload)

    async def delete_excluded_keyword(self, keyword_id: str) -> None:
        await self._request("DELETE", f"{API_PREFIX}/user-settings/excluded-keywords/{keyword_id}")

    async def reset_excluded_keywords(self) -> ExcludedKeywordList:
        payload = await self._json("POST", f"{API_PREFIX}/user-settings/excluded-keywords/reset", json={})
        return _parse(ExcludedKeywordList, payload or {})

    # Health

    async def health_check(self) -> dict[str, Any]:
        return await self._json("GET", "/health") or {}
