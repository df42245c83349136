from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints


def _money_to_str(value: Any) -> Any:
    # Amounts travel as strings; numbers go through Decimal so floats keep their repr.
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float, Decimal)):
        return str(Decimal(str(value)))
    return value


MoneyStr = Annotated[str, BeforeValidator(_money_to_str)]
NumStr = Decimal | str

PlanTier = Literal["free", "plus", "pro", "admin"]


class APIModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


# Auth / users

class UserCreate(APIModel):
    email: str
    password: str


class UserLogin(APIModel):
    email: str
    password: str


class Token(APIModel):
    access_token: str
    token_type: str = "bearer"


class User(APIModel):
    id: str
    email: str
    first_name: str | None = None
    last_name: str | None = None
    preferred_currency: str = "PEN"
    timezone: str | None = None
    is_active: bool = True
    is_admin: bool = False
    plan_tier: PlanTier = "free"
    created_at: datetime | None = None


class UserProfileUpdate(APIModel):
    first_name: str | None = None
    last_name: str | None = None
    preferred_currency: str | None = None
    timezone: str | None = None


class OTPVerifyRequest(APIModel):
    email: str
    code: str


class OTPResendRequest(APIModel):
    email: str


# Cards and providers

class BankProviderSimple(APIModel):
    id: str
    name: str
    short_name: str | None = None
    country: str
    is_popular: bool = False
    color_primary: str | None = None
    color_secondary: str | None = None


class BankProvider(BankProviderSimple):
    country_name: str | None = None
    logo_url: str | None = None
    website: str | None = None
    is_active: bool = True


class Card(APIModel):
    id: str
    user_id: str | None = None
    card_name: str
    payment_due_date: str | None = None
    bank_provider_id: str | None = None
    bank_provider: BankProviderSimple | None = None
    card_type: str | None = None
    network_provider: str | None = None
    created_at: datetime | None = None


class CardCreate(APIModel):
    card_name: str
    payment_due_date: str | None = None
    bank_provider_id: str | None = None
    card_type: str | None = None
    network_provider: str | None = None


class CardUpdate(APIModel):
    card_name: str | None = None
    payment_due_date: str | None = None
    bank_provider_id: str | None = None
    card_type: str | None = None
    network_provider: str | None = None


# Categories and keywords

class Category(APIModel):
    id: str
    name: str
    color: str | None = None
    keywords: list[str] | None = None
    is_active: bool = True
    is_default: bool = False
    can_modify: bool = True
    user_id: str | None = None
    created_at: datetime | None = None


class CategoryCreate(APIModel):
    name: str
    color: str | None = None
    keywords: list[str] | None = None
    is_active: bool = True


class CategoryUpdate(APIModel):
    name: str | None = None
    color: str | None = None
    keywords: list[str] | None = None
    is_active: bool | None = None


class CategoryPermissions(APIModel):
    can_create_categories: bool = False
    can_edit_categories: bool = False
    can_delete_categories: bool = False
    plan_tier: str | None = None
    message: str | None = None


class CategoryList(APIModel):
    categories: list[Category] = Field(default_factory=list)
    permissions: CategoryPermissions | None = None


class CategoryKeyword(APIModel):
    id: str
    category_id: str
    keyword: str
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CategoryKeywordCreate(APIModel):
    category_id: str
    keyword: str
    description: str | None = None


class CategoryKeywordUpdate(APIModel):
    keyword: str | None = None
    description: str | None = None


class CategoryKeywordsBulkCreate(APIModel):
    category_id: str
    keywords: list[str]


class ExcludedKeyword(APIModel):
    id: str
    keyword: str
    created_at: datetime | None = None


class ExcludedKeywordCreate(APIModel):
    keyword: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class ExcludedKeywordList(APIModel):
    items: list[ExcludedKeyword] = Field(default_factory=list)


# Transactions

class Transaction(APIModel):
    id: str
    merchant: str
    amount: MoneyStr
    currency: str = "PEN"
    category: str | None = None
    transaction_date: str
    card_id: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    ai_confidence: str | None = None
    created_at: datetime | None = None


class TransactionCreate(APIModel):
    merchant: str
    amount: NumStr
    currency: str = "PEN"
    category: str | None = None
    transaction_date: str
    card_id: str
    description: str | None = None
    tags: list[str] | None = None


class TransactionUpdate(APIModel):
    merchant: str | None = None
    amount: NumStr | None = None
    category: str | None = None
    transaction_date: str | None = None
    description: str | None = None
    tags: list[str] | None = None


class TransactionFilters(APIModel):
    skip: int | None = None
    limit: int | None = None
    card_id: str | None = None
    category: str | None = None
    start_date: date | None = None
    end_date: date | None = None


class BulkDeleteResponse(APIModel):
    message: str | None = None
    deleted_count: int = 0


# Budgets

class Budget(APIModel):
    id: str
    category: str
    limit_amount: MoneyStr
    currency: str = "PEN"
    month: str
    user_id: str | None = None
    created_at: datetime | None = None


class BudgetCreate(APIModel):
    category: str
    limit_amount: NumStr
    currency: str
    month: str


class BudgetUpdate(APIModel):
    category: str | None = None
    limit_amount: NumStr | None = None
    currency: str | None = None
    month: str | None = None


class BudgetAlert(APIModel):
    budget: Budget
    current_spending: MoneyStr
    percentage_used: float
    alert_type: str


# Recurring services

class RecurringService(APIModel):
    id: str
    name: str
    amount: MoneyStr
    due_date: str
    category: str | None = None
    reminder_days: int | None = None
    user_id: str | None = None
    created_at: datetime | None = None


class RecurringServiceCreate(APIModel):
    name: str
    amount: NumStr
    due_date: str
    category: str | None = None
    reminder_days: int | None = None


class RecurringServiceUpdate(APIModel):
    name: str | None = None
    amount: NumStr | None = None
    due_date: str | None = None
    category: str | None = None
    reminder_days: int | None = None


# Statements

class Statement(APIModel):
    id: str
    filename: str
    file_type: str | None = None
    card_id: str | None = None
    statement_month: str | None = None
    status: str = "uploaded"
    extraction_status: str = "pending"
    categorization_status: str = "pending"
    is_processed: bool = False
    error_message: str | None = None
    retry_count: Any = None
    created_at: datetime | None = None


class StatementStatus(APIModel):
    statement_id: str
    status: str
    extraction_status: str = "pending"
    categorization_status: str = "pending"
    retry_count: dict[str, int] = Field(default_factory=dict)
    error_message: str | None = None
    progress_percentage: float = 0
    current_step: str | None = None
    estimated_completion: str | None = None


class AsyncUploadResponse(APIModel):
    id: str
    filename: str
    status: str
    message: str | None = None
    created_at: datetime | None = None


class PDFAccessibility(APIModel):
    accessible: bool
    encrypted: bool = False
    needs_password: bool = False
    filename: str | None = None
    file_size: int | None = None
    error: str | None = None


class PDFUnlockResponse(APIModel):
    success: bool
    message: str | None = None
    statement_id: str | None = None


class StatementDeleteResponse(APIModel):
    message: str | None = None
    transactions_deleted: int = 0
    statement_id: str | None = None


class StatementProcess(APIModel):
    statement_id: str
    transactions_found: int = 0
    transactions_created: int = 0
    alerts_created: int | None = None
    ai_insights: dict[str, Any] | None = None


class ExtractionRequest(APIModel):
    card_id: str | None = None
    card_name: str | None = None
    statement_month: str | None = None


class ExtractionResponse(APIModel):
    statement_id: str
    transactions_found: int = 0
    status: str
    message: str | None = None


class CategorizationRequest(APIModel):
    use_ai: bool = True
    use_keywords: bool = True


class CategorizationResponse(APIModel):
    statement_id: str
    transactions_categorized: int = 0
    ai_categorized: int = 0
    keyword_categorized: int = 0
    uncategorized: int = 0
    status: str
    message: str | None = None


# Analytics

class CategorySpending(APIModel):
    category: str
    amount: MoneyStr
    transaction_count: int = 0
    currency: str = "PEN"


class SpendingTrend(APIModel):
    month: str
    amount: MoneyStr


class YearComparison(APIModel):
    current_year: int
    previous_year: int
    current_amount: MoneyStr
    previous_amount: MoneyStr
    percentage_change: float


class AIInsight(APIModel):
    type: str
    title: str
    description: str
    category: str | None = None
    confidence: float = 0.0


class AnalyticsDashboard(APIModel):
    category_spending: list[CategorySpending] = Field(default_factory=list)
    trends: list[SpendingTrend] = Field(default_factory=list)
    year_comparison: YearComparison | None = None
    insights: list[AIInsight] = Field(default_factory=list)


class AnalyticsFilters(APIModel):
    start_date: date | None = None
    end_date: date | None = None
    currency: str | None = None


# Exchange rates

RateSource = Literal["exchangerate-api", "exchangerate.fun", "fixed"]


class ExchangeRate(APIModel):
    pen_per_usd: float
    usd_per_pen: float
    source: RateSource
    fetched_at: float
    using_fixed_fallback: bool = False

    @property
    def rate(self) -> float:
        """PEN per USD."""
        return self.pen_per_usd
