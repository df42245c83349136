from datetime import date
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from personal_cfo.api.dependencies import get_api, get_exchange_rates, get_flows, get_session
from personal_cfo.api.schemas import SelectionRequest, SelectionResult
from personal_cfo.core import settings
from personal_cfo.domain.currency import normalize_code, summarize
from personal_cfo.domain.selection import SelectionSet
from personal_cfo.domain.views import build_total_payload, build_transaction_payload
from personal_cfo.integration.api_client import APIClient
from personal_cfo.integration.exchange_rates import ExchangeRateProvider
from personal_cfo.models import Transaction, TransactionCreate, TransactionFilters, TransactionUpdate
from personal_cfo.services.cache import QueryKeys, Session
from personal_cfo.services.resources import Flows

router = APIRouter()


@router.get("/transactions")
async def list_transactions(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
    rates: Annotated[ExchangeRateProvider, Depends(get_exchange_rates)],
    currency: str | None = None,
    skip: int | None = None,
    limit: int | None = None,
    card_id: str | None = None,
    category: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[str, Any]:
    filters = TransactionFilters(
        skip=skip,
        limit=limit,
        card_id=card_id,
        category=category,
        start_date=start_date,
        end_date=end_date,
    )
    target = normalize_code(currency, settings.get_default_currency())
    rate = await rates.get_rate()
    transactions = await session.cache.fetch(
        QueryKeys.transactions(filters),
        lambda: api.get_transactions(filters),
    )
    return {
        "currency": target,
        "transactions": [build_transaction_payload(item, target, rate) for item in transactions],
        "total": build_total_payload(summarize(transactions, target, rate, absolute=True)),
    }


@router.post("/transactions", response_model=Transaction)
async def create_transaction(
    data: TransactionCreate,
    flows: Annotated[Flows, Depends(get_flows)],
) -> Transaction:
    return await flows.transactions.create(data)


@router.put("/transactions/{transaction_id}", response_model=Transaction)
async def update_transaction(
    transaction_id: str,
    data: TransactionUpdate,
    flows: Annotated[Flows, Depends(get_flows)],
) -> Transaction:
    return await flows.transactions.edit(transaction_id, data)


@router.delete("/transactions/{transaction_id}")
async def delete_transaction(
    transaction_id: str,
    flows: Annotated[Flows, Depends(get_flows)],
) -> dict[str, str]:
    await flows.transactions.delete(transaction_id)
    return {"status": "deleted", "id": transaction_id}


@router.post("/transactions/bulk-delete", response_model=SelectionResult)
async def bulk_delete_transactions(
    req: SelectionRequest,
    flows: Annotated[Flows, Depends(get_flows)],
) -> SelectionResult:
    selection = SelectionSet(req.selected_ids)
    result = await flows.transactions.delete_selected(selection)
    return SelectionResult(
        deleted_ids=result.success_ids,
        failed_ids=result.failed_ids,
        selected_ids=selection.as_list(),
    )
