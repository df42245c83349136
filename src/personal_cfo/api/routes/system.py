from dataclasses import asdict
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from personal_cfo.api.dependencies import get_api, get_exchange_rates, get_existing_session
from personal_cfo.core.exceptions import APIError
from personal_cfo.domain.views import build_rate_payload
from personal_cfo.integration.api_client import APIClient
from personal_cfo.integration.exchange_rates import ExchangeRateProvider
from personal_cfo.logger import get_logger
from personal_cfo.services.cache import Session

logger = get_logger(__name__)

router = APIRouter()


@router.get("/notifications")
async def notifications(
    session: Annotated[Session, Depends(get_existing_session)],
) -> list[dict[str, Any]]:
    return [asdict(item) for item in session.notifier.drain()]


@router.get("/exchange-rate")
async def exchange_rate(
    rates: Annotated[ExchangeRateProvider, Depends(get_exchange_rates)],
    refresh: bool = False,
) -> dict[str, Any]:
    rate = await rates.get_rate(use_cache=not refresh)
    return build_rate_payload(rate)


@router.get("/health")
async def health(api: Annotated[APIClient, Depends(get_api)]) -> dict[str, Any]:
    try:
        backend = await api.health_check()
    except APIError as exc:
        logger.warning("[HEALTH] Backend unreachable: %s", exc.message)
        return {"status": "degraded", "backend": {"status": "unreachable", "error": exc.message}}
    return {"status": "ok", "backend": backend}
