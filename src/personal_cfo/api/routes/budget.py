from typing import Annotated, Any

from fastapi import APIRouter, Depends

from personal_cfo.api.dependencies import get_api, get_session
from personal_cfo.domain.analytics import budget_progress
from personal_cfo.domain.views import build_budget_payload
from personal_cfo.integration.api_client import APIClient
from personal_cfo.services.cache import QueryKeys, Session

router = APIRouter()


@router.get("/budget")
async def budget_overview(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
) -> dict[str, Any]:
    cache = session.cache
    budgets = await cache.fetch(QueryKeys.budgets(), api.get_budgets)
    spending = await cache.fetch(QueryKeys.category_spending(), api.get_category_spending)
    alerts = await cache.fetch(QueryKeys.budget_alerts(), api.get_budget_alerts)
    progress = budget_progress(budgets, spending)
    return {
        "budgets": [budget.model_dump(mode="json") for budget in budgets],
        "progress": [build_budget_payload(item) for item in progress],
        "over_budget": [item.budget_id for item in progress if item.level == "over"],
        "alerts": [alert.model_dump(mode="json") for alert in alerts],
    }
