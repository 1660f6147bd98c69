"""
Unit tests for the CardTrader API client against an httpx mock transport.
"""
import asyncio
import json
from typing import Callable, List
from unittest.mock import AsyncMock

import httpx
import pytest

from cardsync.core.exceptions import (
    CardTraderAPIError,
    CardTraderServiceUnavailableError,
    RateLimitError,
)
from cardsync.services.cardtrader_client import CardTraderClient
from cardsync.services.cardtrader_dtos import CreateListingDTO
from cardsync.services.circuit_breaker import CardTraderCircuitBreaker, CircuitState
from cardsync.services.rate_limiter import FixedWindowRateLimiter

BASE_URL = "https://api.cardtrader.test/api/v2"


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    breaker: CardTraderCircuitBreaker = None,
    **kwargs,
) -> CardTraderClient:
    kwargs.setdefault("backoff_base_seconds", 1.0)
    kwargs.setdefault("max_retries", 3)
    return CardTraderClient(
        "secret-token",
        base_url=BASE_URL,
        rate_limiter=FixedWindowRateLimiter(permits=100, window_seconds=60, queue_limit=10),
        circuit_breaker=breaker or CardTraderCircuitBreaker(minimum_throughput=100),
        transport=httpx.MockTransport(handler),
        sleep=AsyncMock(),
        **kwargs,
    )


def scripted(responses: List[httpx.Response], seen: List[httpx.Request]):
    """Handler answering with the given responses in order."""
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return responses[min(len(seen), len(responses)) - 1]
    return handler


@pytest.mark.asyncio
async def test_get_games_sends_bearer_token_and_parses_records():
    seen: List[httpx.Request] = []
    handler = scripted([httpx.Response(200, json=[
        {"id": 1, "name": "Magic", "display_name": "mtg"},
        {"name": "no id"},
    ])], seen)

    async with make_client(handler) as client:
        games = await client.get_games()

    assert seen[0].headers["Authorization"] == "Bearer secret-token"
    assert seen[0].url.path == "/api/v2/games"
    # Malformed record is dropped, not fatal
    assert [g.id for g in games] == [1]
    assert games[0].display_name == "mtg"


@pytest.mark.asyncio
async def test_wrapped_collection_is_unwrapped():
    seen: List[httpx.Request] = []
    handler = scripted([httpx.Response(200, json={"array": [
        {"id": 5, "name": "Singles", "game_id": 1, "properties": None},
    ]})], seen)

    async with make_client(handler) as client:
        categories = await client.get_categories(game_id=1)

    assert seen[0].url.params["game_id"] == "1"
    assert categories[0].properties == []


@pytest.mark.asyncio
async def test_transient_errors_retry_with_exponential_backoff():
    seen: List[httpx.Request] = []
    handler = scripted([
        httpx.Response(503),
        httpx.Response(502),
        httpx.Response(200, json=[{"id": 10, "game_id": 1, "name": "Alpha"}]),
    ], seen)
    client = make_client(handler)

    expansions = await client.get_expansions()
    await client.close()

    assert len(seen) == 3
    assert [e.id for e in expansions] == [10]
    delays = [call.args[0] for call in client._sleep.await_args_list]
    assert delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_after_header_is_honoured():
    seen: List[httpx.Request] = []
    handler = scripted([
        httpx.Response(429, headers={"Retry-After": "7"}),
        httpx.Response(200, json=[]),
    ], seen)
    client = make_client(handler)

    await client.get_games()
    await client.close()

    client._sleep.assert_awaited_once_with(7.0)


@pytest.mark.asyncio
async def test_persistent_429_raises_rate_limit_error():
    seen: List[httpx.Request] = []
    handler = scripted([httpx.Response(429)], seen)

    async with make_client(handler) as client:
        with pytest.raises(RateLimitError):
            await client.get_games()

    assert len(seen) == 4


@pytest.mark.asyncio
async def test_persistent_5xx_raises_api_error_with_status():
    seen: List[httpx.Request] = []
    handler = scripted([httpx.Response(500)], seen)

    async with make_client(handler, max_retries=1) as client:
        with pytest.raises(CardTraderAPIError) as exc_info:
            await client.get_orders()

    assert len(seen) == 2
    assert exc_info.value.upstream_status == 500


@pytest.mark.asyncio
async def test_network_error_retries_then_fails():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler, max_retries=2) as client:
        with pytest.raises(CardTraderAPIError, match="Request error"):
            await client.get_games()

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    seen: List[httpx.Request] = []
    handler = scripted([httpx.Response(401, text="bad token")], seen)

    async with make_client(handler) as client:
        with pytest.raises(CardTraderAPIError) as exc_info:
            await client.get_games()

    assert len(seen) == 1
    assert exc_info.value.upstream_status == 401


@pytest.mark.asyncio
async def test_blueprints_of_unknown_expansion_is_empty():
    seen: List[httpx.Request] = []
    handler = scripted([httpx.Response(404)], seen)

    async with make_client(handler) as client:
        blueprints = await client.get_blueprints(999)

    assert blueprints == []
    assert seen[0].url.params["expansion_id"] == "999"


@pytest.mark.asyncio
async def test_create_listing_reads_resource_id():
    seen: List[httpx.Request] = []
    handler = scripted([httpx.Response(200, json={"resource": {"id": 4242}})], seen)
    listing = CreateListingDTO(blueprint_id=100, price=12.5, quantity=2, properties={"condition": "Near Mint"})

    async with make_client(handler) as client:
        result = await client.create_listing(listing)

    assert result.product_id == 4242
    body = json.loads(seen[0].content)
    assert body["blueprint_id"] == 100
    assert "user_data_field" not in body


@pytest.mark.asyncio
async def test_delete_listing_reports_missing_product():
    seen: List[httpx.Request] = []
    handler = scripted([httpx.Response(204), httpx.Response(404)], seen)

    async with make_client(handler) as client:
        assert await client.delete_listing(1) is True
        assert await client.delete_listing(2) is False


@pytest.mark.asyncio
async def test_open_breaker_short_circuits_requests():
    seen: List[httpx.Request] = []
    handler = scripted([httpx.Response(500)], seen)
    breaker = CardTraderCircuitBreaker(failure_ratio=0.5, minimum_throughput=2, break_seconds=30)

    async with make_client(handler, breaker=breaker, max_retries=0) as client:
        for _ in range(2):
            with pytest.raises(CardTraderAPIError):
                await client.get_games()
        assert breaker.get_state() is CircuitState.OPEN

        with pytest.raises(CardTraderServiceUnavailableError):
            await client.get_games()

    assert len(seen) == 2


@pytest.mark.asyncio
async def test_update_listing_sends_only_given_fields():
    seen: List[httpx.Request] = []
    handler = scripted([httpx.Response(200, json={"resource": {"id": 9}})], seen)

    async with make_client(handler) as client:
        await client.update_listing(9, quantity=4)

    assert seen[0].method == "PUT"
    assert seen[0].url.path == "/api/v2/products/9"
    assert json.loads(seen[0].content) == {"quantity": 4}


@pytest.mark.asyncio
async def test_open_breaker_rejects_without_waiting_for_a_permit():
    seen: List[httpx.Request] = []
    breaker = CardTraderCircuitBreaker(failure_ratio=0.5, minimum_throughput=2, break_seconds=30)
    breaker.record_failure()
    breaker.record_failure()
    limiter = FixedWindowRateLimiter(permits=1, window_seconds=60, queue_limit=10)
    await limiter.acquire()
    client = CardTraderClient(
        "secret-token",
        base_url=BASE_URL,
        rate_limiter=limiter,
        circuit_breaker=breaker,
        transport=httpx.MockTransport(scripted([httpx.Response(200, json=[])], seen)),
        sleep=AsyncMock(),
    )

    with pytest.raises(CardTraderServiceUnavailableError):
        await asyncio.wait_for(client.get_games(), timeout=1)
    await client.close()

    assert seen == []
    stats = limiter.get_statistics()
    assert (stats["used"], stats["queued"]) == (1, 0)


@pytest.mark.asyncio
async def test_full_limiter_queue_releases_half_open_trial():
    clock = [0.0]
    breaker = CardTraderCircuitBreaker(
        failure_ratio=0.5, minimum_throughput=2, break_seconds=30, clock=lambda: clock[0]
    )
    breaker.record_failure()
    breaker.record_failure()
    clock[0] = 31.0
    limiter = FixedWindowRateLimiter(permits=1, window_seconds=60, queue_limit=0)
    await limiter.acquire()
    client = CardTraderClient(
        "secret-token",
        base_url=BASE_URL,
        rate_limiter=limiter,
        circuit_breaker=breaker,
        transport=httpx.MockTransport(scripted([httpx.Response(200, json=[])], [])),
        sleep=AsyncMock(),
    )

    with pytest.raises(RateLimitError):
        await client.get_games()

    # The trial slot is free again, so the next call is admitted
    assert breaker.get_state() is CircuitState.HALF_OPEN
    breaker.before_call()
    await client.close()
