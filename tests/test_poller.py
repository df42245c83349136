import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from personal_cfo.core.exceptions import APIError, UnauthorizedError
from personal_cfo.models import StatementStatus
from personal_cfo.services.cache import QueryCache, QueryKeys
from personal_cfo.services.notifications import Notifier
from personal_cfo.services.poller import PollerRegistry, StatementPoller


def _status(status: str, extraction: str = "pending", categorization: str = "pending", **extra) -> StatementStatus:
    return StatementStatus(
        statement_id="s1",
        status=status,
        extraction_status=extraction,
        categorization_status=categorization,
        **extra,
    )


def _poller(side_effect, max_errors: int = 3) -> tuple[StatementPoller, MagicMock, QueryCache, Notifier]:
    api = MagicMock()
    api.get_statement_status = AsyncMock(side_effect=side_effect)
    cache = QueryCache(stale_time=60)
    notifier = Notifier()
    poller = StatementPoller(api, cache, notifier, interval=0, max_consecutive_errors=max_errors)
    return poller, api, cache, notifier


@pytest.mark.anyio
async def test_polls_until_completed_and_refreshes() -> None:
    poller, api, cache, notifier = _poller([
        _status("processing", "processing"),
        _status("processing", "completed", "processing"),
        _status("completed", "completed", "completed"),
    ])
    for key in (QueryKeys.statements(), QueryKeys.transactions(), QueryKeys.analytics_dashboard()):
        cache.set(key, "old")

    poller.start("s1")
    assert poller.is_polling("s1")
    final = await poller.wait("s1")

    assert final is not None and final.status == "completed"
    assert api.get_statement_status.await_count == 3
    assert not poller.is_polling("s1")
    assert poller.latest("s1") == final
    assert cache.get(QueryKeys.statement_status("s1")) == final
    assert cache.is_stale(QueryKeys.statements())
    assert cache.is_stale(QueryKeys.transactions())
    assert cache.is_stale(QueryKeys.analytics_dashboard())
    assert [(n.kind, n.message) for n in notifier.drain()] == [("success", "Statement processed successfully")]


@pytest.mark.anyio
async def test_failed_status_notifies_error() -> None:
    poller, _, _, notifier = _poller([_status("failed", error_message="Password protected PDF")])
    poller.start("s1")
    await poller.wait("s1")
    assert [(n.kind, n.message) for n in notifier.drain()] == [("error", "Password protected PDF")]


@pytest.mark.anyio
async def test_completion_through_sub_statuses_is_silent() -> None:
    poller, _, _, notifier = _poller([_status("processing", "completed", "completed")])
    poller.start("s1")
    final = await poller.wait("s1")
    assert final is not None
    assert notifier.drain() == []


@pytest.mark.anyio
async def test_gives_up_after_consecutive_errors() -> None:
    poller, api, cache, notifier = _poller([APIError("Bad gateway", 502)] * 3, max_errors=3)
    cache.set(QueryKeys.statements(), [])

    poller.start("s1")
    assert await poller.wait("s1") is None

    assert api.get_statement_status.await_count == 3
    assert not poller.is_polling("s1")
    assert cache.is_stale(QueryKeys.statements())
    messages = notifier.drain()
    assert len(messages) == 1
    assert messages[0].kind == "error"


@pytest.mark.anyio
async def test_error_count_resets_after_success() -> None:
    poller, api, _, _ = _poller(
        [
            APIError("flaky", 503),
            _status("processing"),
            APIError("flaky", 503),
            _status("completed"),
        ],
        max_errors=2,
    )
    poller.start("s1")
    final = await poller.wait("s1")
    assert final is not None and final.status == "completed"
    assert api.get_statement_status.await_count == 4


@pytest.mark.anyio
async def test_unauthorized_stops_without_retry() -> None:
    poller, api, _, notifier = _poller([UnauthorizedError("expired", redirect_to="/login")])
    poller.start("s1")
    assert await poller.wait("s1") is None
    assert api.get_statement_status.await_count == 1
    assert notifier.drain() == []


@pytest.mark.anyio
async def test_start_is_idempotent_and_ids_are_independent() -> None:
    release = asyncio.Event()

    async def fetch(statement_id: str) -> StatementStatus:
        if statement_id == "slow":
            await release.wait()
        return StatementStatus(statement_id=statement_id, status="completed")

    poller, api, _, _ = _poller(fetch)
    first = poller.start("slow")
    assert poller.start("slow") is first
    poller.start("fast")

    fast = await poller.wait("fast")
    assert fast is not None and fast.statement_id == "fast"
    assert poller.is_polling("slow")
    assert poller.polling_ids() == ["slow"]

    release.set()
    await poller.wait("slow")
    assert poller.polling_ids() == []


@pytest.mark.anyio
async def test_stop_cancels_polling() -> None:
    poller, api, _, notifier = _poller(lambda statement_id: _status("processing"))
    poller.interval = 0.01
    poller.start("s1")
    await asyncio.sleep(0.03)

    await poller.stop("s1")
    calls = api.get_statement_status.await_count
    await asyncio.sleep(0.03)

    assert not poller.is_polling("s1")
    assert api.get_statement_status.await_count == calls
    assert notifier.drain() == []


@pytest.mark.anyio
async def test_registry_reuses_poller_per_session() -> None:
    registry = PollerRegistry(interval=0)
    api_a, api_b = MagicMock(), MagicMock()
    cache, notifier = QueryCache(), Notifier()

    poller = registry.get("session", api_a, cache, notifier)
    assert registry.get("session", api_b, cache, notifier) is poller
    assert poller.api is api_b

    await registry.stop_all()
    assert registry.get("session", api_a, cache, notifier) is not poller


@pytest.mark.anyio
async def test_registry_forget_cancels_tracking() -> None:
    registry = PollerRegistry(interval=0)
    api = MagicMock()
    api.get_statement_status = AsyncMock(return_value=_status("processing", "processing"))
    poller = registry.get("session", api, QueryCache(), Notifier())
    task = poller.start("s1")
    await asyncio.sleep(0)

    registry.forget("session")

    with pytest.raises(asyncio.CancelledError):
        await task
    assert not poller.is_polling("s1")
    assert len(registry) == 0


def test_registry_create_does_not_register() -> None:
    registry = PollerRegistry(interval=0)
    poller = registry.create(MagicMock(), QueryCache(), Notifier())
    assert poller.interval == 0
    assert len(registry) == 0
