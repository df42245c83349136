from typing import Annotated, Any

from fastapi import APIRouter, Depends

from personal_cfo.api.dependencies import get_api, get_flows, get_session
from personal_cfo.integration.api_client import APIClient
from personal_cfo.models import (
    Budget,
    BudgetCreate,
    BudgetUpdate,
    Card,
    CardCreate,
    CardUpdate,
    Category,
    CategoryCreate,
    CategoryKeyword,
    CategoryKeywordCreate,
    CategoryKeywordsBulkCreate,
    CategoryKeywordUpdate,
    CategoryUpdate,
    ExcludedKeyword,
    ExcludedKeywordCreate,
    ExcludedKeywordList,
    RecurringService,
    RecurringServiceCreate,
    RecurringServiceUpdate,
)
from personal_cfo.services.cache import QueryKeys, Session
from personal_cfo.services.mutations import run_mutation
from personal_cfo.services.resources import Flows

router = APIRouter()


# Cards

@router.get("/cards", response_model=list[Card])
async def list_cards(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
) -> list[Card]:
    return await session.cache.fetch(QueryKeys.cards(), api.get_cards)


@router.post("/cards", response_model=Card)
async def create_card(data: CardCreate, flows: Annotated[Flows, Depends(get_flows)]) -> Card:
    return await flows.cards.create(data)


@router.put("/cards/{card_id}", response_model=Card)
async def update_card(card_id: str, data: CardUpdate, flows: Annotated[Flows, Depends(get_flows)]) -> Card:
    return await flows.cards.edit(card_id, data)


@router.delete("/cards/{card_id}")
async def delete_card(card_id: str, flows: Annotated[Flows, Depends(get_flows)]) -> dict[str, str]:
    await flows.cards.delete(card_id)
    return {"status": "deleted", "id": card_id}


@router.get("/bank-providers")
async def list_bank_providers(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
    country: str | None = None,
    popular_only: bool | None = None,
) -> list[dict[str, Any]]:
    providers = await session.cache.fetch(
        QueryKeys.bank_providers(country, popular_only),
        lambda: api.get_bank_providers(country, popular_only),
    )
    return [provider.model_dump(mode="json") for provider in providers]


# Categories

@router.get("/categories")
async def list_categories(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
    include_inactive: bool = False,
) -> dict[str, Any]:
    listing = await session.cache.fetch(
        QueryKeys.categories(include_inactive),
        lambda: api.get_categories(include_inactive),
    )
    return listing.model_dump(mode="json")


@router.post("/categories", response_model=Category)
async def create_category(data: CategoryCreate, flows: Annotated[Flows, Depends(get_flows)]) -> Category:
    return await flows.categories.create(data)


@router.put("/categories/{category_id}", response_model=Category)
async def update_category(
    category_id: str,
    data: CategoryUpdate,
    flows: Annotated[Flows, Depends(get_flows)],
) -> Category:
    return await flows.categories.edit(category_id, data)


@router.delete("/categories/{category_id}")
async def delete_category(category_id: str, flows: Annotated[Flows, Depends(get_flows)]) -> dict[str, str]:
    await flows.categories.delete(category_id)
    return {"status": "deleted", "id": category_id}


# Keywords

@router.get("/categories/{category_id}/keywords", response_model=list[CategoryKeyword])
async def list_keywords(
    category_id: str,
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
) -> list[CategoryKeyword]:
    return await session.cache.fetch(
        QueryKeys.keywords(category_id),
        lambda: api.get_keywords_by_category(category_id),
    )


@router.post("/keywords", response_model=CategoryKeyword)
async def create_keyword(
    data: CategoryKeywordCreate,
    flows: Annotated[Flows, Depends(get_flows)],
) -> CategoryKeyword:
    return await flows.keywords.create(data)


@router.post("/keywords/bulk", response_model=list[CategoryKeyword])
async def create_keywords_bulk(
    data: CategoryKeywordsBulkCreate,
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
) -> list[CategoryKeyword]:
    return await run_mutation(
        lambda: api.create_keywords_bulk(data),
        session.cache,
        session.notifier,
        invalidate=[("keywords",), ("categories",)],
        success=lambda created: f"Added {len(created)} keywords",
        error_message="Failed to add keywords",
    )


@router.post("/keywords/seed-defaults", response_model=list[CategoryKeyword])
async def seed_keywords(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
) -> list[CategoryKeyword]:
    return await run_mutation(
        api.seed_default_keywords,
        session.cache,
        session.notifier,
        invalidate=[("keywords",), ("categories",)],
        success="Default keywords restored",
        error_message="Failed to seed keywords",
    )


@router.put("/keywords/{keyword_id}", response_model=CategoryKeyword)
async def update_keyword(
    keyword_id: str,
    data: CategoryKeywordUpdate,
    flows: Annotated[Flows, Depends(get_flows)],
) -> CategoryKeyword:
    return await flows.keywords.edit(keyword_id, data)


@router.delete("/keywords/{keyword_id}")
async def delete_keyword(keyword_id: str, flows: Annotated[Flows, Depends(get_flows)]) -> dict[str, str]:
    await flows.keywords.delete(keyword_id)
    return {"status": "deleted", "id": keyword_id}


# Excluded keywords

@router.get("/excluded-keywords", response_model=ExcludedKeywordList)
async def list_excluded_keywords(flows: Annotated[Flows, Depends(get_flows)]) -> ExcludedKeywordList:
    return await flows.excluded_keywords.load()


@router.post("/excluded-keywords", response_model=ExcludedKeyword)
async def add_excluded_keyword(
    data: ExcludedKeywordCreate,
    flows: Annotated[Flows, Depends(get_flows)],
) -> ExcludedKeyword:
    return await flows.excluded_keywords.add(data.keyword)


@router.post("/excluded-keywords/reset", response_model=ExcludedKeywordList)
async def reset_excluded_keywords(flows: Annotated[Flows, Depends(get_flows)]) -> ExcludedKeywordList:
    return await flows.excluded_keywords.reset()


@router.delete("/excluded-keywords/{keyword_id}")
async def delete_excluded_keyword(
    keyword_id: str,
    flows: Annotated[Flows, Depends(get_flows)],
) -> dict[str, str]:
    await flows.excluded_keywords.delete(keyword_id)
    return {"status": "deleted", "id": keyword_id}


# Currencies

@router.get("/currencies", response_model=list[str])
async def list_currencies(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
) -> list[str]:
    return await session.cache.fetch(QueryKeys.currencies(), api.get_currencies)


# Budgets

@router.post("/budgets", response_model=Budget)
async def create_budget(data: BudgetCreate, flows: Annotated[Flows, Depends(get_flows)]) -> Budget:
    return await flows.budgets.create(data)


@router.put("/budgets/{budget_id}", response_model=Budget)
async def update_budget(
    budget_id: str,
    data: BudgetUpdate,
    flows: Annotated[Flows, Depends(get_flows)],
) -> Budget:
    return await flows.budgets.edit(budget_id, data)


@router.delete("/budgets/{budget_id}")
async def delete_budget(budget_id: str, flows: Annotated[Flows, Depends(get_flows)]) -> dict[str, str]:
    await flows.budgets.delete(budget_id)
    return {"status": "deleted", "id": budget_id}


# Recurring services

@router.get("/recurring-services", response_model=list[RecurringService])
async def list_recurring_services(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
) -> list[RecurringService]:
    return await session.cache.fetch(QueryKeys.recurring_services(), api.get_recurring_services)


@router.post("/recurring-services", response_model=RecurringService)
async def create_recurring_service(
    data: RecurringServiceCreate,
    flows: Annotated[Flows, Depends(get_flows)],
) -> RecurringService:
    return await flows.recurring_services.create(data)


@router.put("/recurring-services/{service_id}", response_model=RecurringService)
async def update_recurring_service(
    service_id: str,
    data: RecurringServiceUpdate,
    flows: Annotated[Flows, Depends(get_flows)],
) -> RecurringService:
    return await flows.recurring_services.edit(service_id, data)


@router.delete("/recurring-services/{service_id}")
async def delete_recurring_service(
    service_id: str,
    flows: Annotated[Flows, Depends(get_flows)],
) -> dict[str, str]:
    await flows.recurring_services.delete(service_id)
    return {"status": "deleted", "id": service_id}
