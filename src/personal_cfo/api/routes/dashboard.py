from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from personal_cfo.api.dependencies import get_api, get_exchange_rates, get_session
from personal_cfo.core import settings
from personal_cfo.domain.analytics import (
    budget_progress,
    category_totals,
    converted_category_spending,
    monthly_spending,
    year_total,
)
from personal_cfo.domain.currency import normalize_code, summarize, try_convert_for_display
from personal_cfo.domain.views import (
    build_budget_payload,
    build_category_payload,
    build_monthly_payload,
    build_rate_payload,
    build_total_payload,
    money,
)
from personal_cfo.integration.api_client import APIClient
from personal_cfo.integration.exchange_rates import ExchangeRateProvider
from personal_cfo.services.cache import QueryKeys, Session

router = APIRouter()


@router.get("/dashboard")
async def dashboard(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
    rates: Annotated[ExchangeRateProvider, Depends(get_exchange_rates)],
    currency: str | None = None,
    months: Annotated[int, Query(ge=1, le=36)] = 6,
) -> dict[str, Any]:
    target = normalize_code(currency, settings.get_default_currency())
    cache = session.cache
    rate = await rates.get_rate()

    transactions = await cache.fetch(QueryKeys.transactions(), api.get_transactions)
    budgets = await cache.fetch(QueryKeys.budgets(), api.get_budgets)
    spending = await cache.fetch(QueryKeys.category_spending(), api.get_category_spending)
    alerts = await cache.fetch(QueryKeys.budget_alerts(), api.get_budget_alerts)

    return {
        "currency": target,
        "exchange_rate": build_rate_payload(rate),
        "total_spent": build_total_payload(summarize(transactions, target, rate, absolute=True)),
        "transaction_count": len(transactions),
        "monthly_spending": build_monthly_payload(
            monthly_spending(transactions, target, rate, months=months),
            target,
        ),
        "category_totals": build_category_payload(category_totals(transactions, target, rate), target),
        "budgets": [build_budget_payload(item) for item in budget_progress(budgets, spending)],
        "alerts": [alert.model_dump(mode="json") for alert in alerts],
    }


@router.get("/analytics")
async def analytics(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
    rates: Annotated[ExchangeRateProvider, Depends(get_exchange_rates)],
    currency: str | None = None,
) -> dict[str, Any]:
    target = normalize_code(currency, settings.get_default_currency())
    rate = await rates.get_rate()
    board = await session.cache.fetch(QueryKeys.analytics_dashboard(), api.get_analytics_dashboard)

    # Trend rows carry no currency; the backend reports them in the default currency.
    base = settings.get_default_currency()

    def display(amount: Any) -> dict[str, Any]:
        return money(try_convert_for_display(amount, base, target, rate), target)

    trends = [{"month": trend.month, **display(trend.amount)} for trend in board.trends]
    comparison = board.year_comparison.model_dump(mode="json") if board.year_comparison else None

    return {
        "currency": target,
        "exchange_rate": build_rate_payload(rate),
        "category_spending": build_category_payload(
            converted_category_spending(board.category_spending, target, rate),
            target,
        ),
        "trends": trends,
        "trend_total": display(year_total(board.trends)),
        "year_comparison": comparison,
        "insights": [insight.model_dump(mode="json") for insight in board.insights],
    }
