from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

from personal_cfo.api.routes import auth, budget, dashboard, resources, statements, system, transactions
from personal_cfo.api.routes.auth import clear_auth_cookie
from personal_cfo.core import settings
from personal_cfo.core.exceptions import APIError, UnauthorizedError
from personal_cfo.integration.exchange_rates import ExchangeRateProvider
from personal_cfo.integration.token_store import COOKIE_POLICY
from personal_cfo.logger import get_logger, setup_logging
from personal_cfo.services.cache import SessionRegistry, session_key
from personal_cfo.services.poller import PollerRegistry

logger = get_logger(__name__)


async def handle_unauthorized(request: Request, exc: UnauthorizedError) -> JSONResponse | RedirectResponse:
    token = request.cookies.get(COOKIE_POLICY.name)
    if token:
        pollers: PollerRegistry | None = getattr(request.app.state, "pollers", None)
        sessions: SessionRegistry | None = getattr(request.app.state, "sessions", None)
        if pollers is not None:
            await pollers.discard(session_key(token))
        if sessions is not None:
            sessions.discard(token)

    if exc.redirect_to:
        response: JSONResponse | RedirectResponse = RedirectResponse(exc.redirect_to, status_code=303)
    else:
        response = JSONResponse(status_code=401, content={"detail": exc.message})
    clear_auth_cookie(response)
    return response


async def handle_api_error(request: Request, exc: APIError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code or 502,
        content={"detail": exc.message},
    )


def create_app(http_client: httpx.AsyncClient | None = None) -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        client = http_client or httpx.AsyncClient(timeout=30.0)
        if not settings.is_env_override("API_URL") and not settings.is_env_override("NEXT_PUBLIC_API_URL"):
            logger.info("API_URL not set in the environment. Using %s.", settings.get_api_url())

        app.state.api_url = settings.get_api_url()
        app.state.http_client = client
        app.state.exchange_rates = ExchangeRateProvider(client=client)
        app.state.pollers = PollerRegistry()
        app.state.sessions = SessionRegistry(
            stale_time=settings.QUERY_STALE_TIME_SECONDS,
            max_sessions=settings.MAX_SESSIONS,
            on_evict=app.state.pollers.forget,
        )

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        await app.state.pollers.stop_all()
        if http_client is None:
            await client.aclose()

    app = FastAPI(title="Personal CFO", lifespan=lifespan)

    app.add_exception_handler(UnauthorizedError, handle_unauthorized)
    app.add_exception_handler(APIError, handle_api_error)

    app.include_router(auth.router)
    app.include_router(dashboard.router)
    app.include_router(transactions.router)
    app.include_router(statements.router)
    app.include_router(budget.router)
    app.include_router(resources.router)
    app.include_router(system.router)

    return app


app = create_app()
