import json
from time import time

import httpx
import pytest

from personal_cfo.integration.exchange_rates import (
    CACHE_FILENAME,
    FIXED_PEN_PER_USD,
    ExchangeRateProvider,
)


def _provider(tmp_path, handler, api_key: str | None = "key", cache_ttl: float = 3600.0) -> ExchangeRateProvider:
    return ExchangeRateProvider(
        api_key=api_key,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        data_dir=str(tmp_path),
        cache_ttl=cache_ttl,
        timeout=1.0,
    )


@pytest.mark.anyio
async def test_primary_source_used_when_key_configured(tmp_path) -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.host)
        return httpx.Response(200, json={"result": "success", "conversion_rates": {"USD": 0.25}})

    provider = _provider(tmp_path, handler)
    rate = await provider.get_rate()

    assert rate.source == "exchangerate-api"
    assert rate.pen_per_usd == pytest.approx(4.0)
    assert not rate.using_fixed_fallback
    assert calls == ["v6.exchangerate-api.com"]


@pytest.mark.anyio
async def test_fallback_source_uses_bmd_when_usd_missing(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "v6.exchangerate-api.com":
            return httpx.Response(500)
        assert request.url.params["base"] == "PEN"
        return httpx.Response(200, json={"rates": {"BMD": 0.2}})

    rate = await _provider(tmp_path, handler).get_rate()

    assert rate.source == "exchangerate.fun"
    assert rate.pen_per_usd == pytest.approx(5.0)


@pytest.mark.anyio
async def test_primary_skipped_without_key(tmp_path) -> None:
    hosts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        return httpx.Response(200, json={"rates": {"USD": 0.25}})

    await _provider(tmp_path, handler, api_key="").get_rate()
    assert hosts == ["api.exchangerate.fun"]


@pytest.mark.anyio
async def test_fixed_fallback_when_all_sources_fail(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    provider = _provider(tmp_path, handler)
    rate = await provider.get_rate()

    assert rate.source == "fixed"
    assert rate.using_fixed_fallback
    assert rate.pen_per_usd == FIXED_PEN_PER_USD
    assert (tmp_path / CACHE_FILENAME).exists()


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("primary", "fallback"),
    [
        ({"result": "success", "conversion_rates": {"USD": "n/a"}}, {"rates": {"USD": "n/a"}}),
        ({"result": "success", "conversion_rates": {"USD": -1}}, {"rates": {"USD": 0, "BMD": "inf"}}),
        ({"result": "success", "conversion_rates": ["USD"]}, {"rates": "USD"}),
        (["not", "an", "object"], "plain string"),
    ],
)
async def test_malformed_rates_fall_through_to_fixed(tmp_path, primary, fallback) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "v6.exchangerate-api.com":
            return httpx.Response(200, json=primary)
        return httpx.Response(200, json=fallback)

    rate = await _provider(tmp_path, handler).get_rate()

    assert rate.using_fixed_fallback
    assert rate.pen_per_usd == FIXED_PEN_PER_USD


@pytest.mark.anyio
async def test_numeric_string_rate_is_accepted(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"result": "success", "conversion_rates": {"USD": "0.25"}})

    rate = await _provider(tmp_path, handler).get_rate()

    assert rate.source == "exchangerate-api"
    assert rate.pen_per_usd == pytest.approx(4.0)


@pytest.mark.anyio
async def test_cached_rate_is_reused_and_persisted(tmp_path) -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={"result": "success", "conversion_rates": {"USD": 0.25}})

    provider = _provider(tmp_path, handler)
    await provider.get_rate()
    await provider.get_rate()
    assert calls == 1

    # A new provider picks up the rate written to disk.
    reloaded = _provider(tmp_path, handler)
    rate = await reloaded.get_rate()
    assert calls == 1
    assert rate.source == "exchangerate-api"

    await reloaded.get_rate(use_cache=False)
    assert calls == 2


@pytest.mark.anyio
async def test_expired_cache_is_refetched(tmp_path) -> None:
    (tmp_path / CACHE_FILENAME).write_text(json.dumps({
        "pen_per_usd": 3.0,
        "usd_per_pen": 1 / 3.0,
        "source": "exchangerate.fun",
        "fetched_at": time() - 7200,
        "using_fixed_fallback": False,
    }))

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"result": "success", "conversion_rates": {"USD": 0.25}})

    provider = _provider(tmp_path, handler)
    assert provider.cached() is None
    rate = await provider.get_rate()
    assert rate.pen_per_usd == pytest.approx(4.0)


def test_unreadable_cache_is_ignored(tmp_path) -> None:
    (tmp_path / CACHE_FILENAME).write_text("{not json")
    provider = _provider(tmp_path, lambda request: httpx.Response(500))
    assert provider.cached() is None
