from typing import Annotated

import httpx
from fastapi import Depends, HTTPException, Request

from personal_cfo.integration.api_client import APIClient
from personal_cfo.integration.exchange_rates import ExchangeRateProvider
from personal_cfo.integration.token_store import COOKIE_POLICY, TokenStore
from personal_cfo.services.cache import Session, SessionRegistry
from personal_cfo.services.poller import PollerRegistry, StatementPoller
from personal_cfo.services.resources import Flows, build_flows
from personal_cfo.services.statements import StatementWorkflow


def get_http_client(request: Request) -> httpx.AsyncClient:
    client = getattr(request.app.state, "http_client", None)
    if not client:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return client


def get_exchange_rates(request: Request) -> ExchangeRateProvider:
    provider = getattr(request.app.state, "exchange_rates", None)
    if not provider:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return provider


def get_sessions(request: Request) -> SessionRegistry:
    sessions = getattr(request.app.state, "sessions", None)
    if sessions is None:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return sessions


def get_pollers(request: Request) -> PollerRegistry:
    pollers = getattr(request.app.state, "pollers", None)
    if pollers is None:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return pollers


def get_access_token(request: Request) -> str | None:
    return request.cookies.get(COOKIE_POLICY.name)


def get_session(
    token: Annotated[str | None, Depends(get_access_token)],
    sessions: Annotated[SessionRegistry, Depends(get_sessions)],
) -> Session:
    return sessions.get(token)


def get_existing_session(
    token: Annotated[str | None, Depends(get_access_token)],
    sessions: Annotated[SessionRegistry, Depends(get_sessions)],
) -> Session:
    return sessions.get(token, create=False)


def get_api(
    request: Request,
    token: Annotated[str | None, Depends(get_access_token)],
    client: Annotated[httpx.AsyncClient, Depends(get_http_client)],
) -> APIClient:
    return APIClient(
        base_url=getattr(request.app.state, "api_url", None),
        token_store=TokenStore(token),
        client=client,
        current_page=request.url.path,
    )


def get_poller(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
    pollers: Annotated[PollerRegistry, Depends(get_pollers)],
) -> StatementPoller:
    if not session.persistent:
        return pollers.create(api, session.cache, session.notifier)
    return pollers.get(session.key, api, session.cache, session.notifier)


def get_workflow(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
    poller: Annotated[StatementPoller, Depends(get_poller)],
) -> StatementWorkflow:
    return StatementWorkflow(api, session.cache, session.notifier, poller)


def get_flows(
    api: Annotated[APIClient, Depends(get_api)],
    session: Annotated[Session, Depends(get_session)],
) -> Flows:
    return build_flows(api, session.cache, session.notifier)
