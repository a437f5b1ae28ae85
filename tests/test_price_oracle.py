"""
Unit tests for the price oracle (cache, stale cache and static fallback)
"""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from zlink.services.price_oracle import PriceFetchError, PriceOracle, UnknownCoinError


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_oracle(clock=None, **kwargs) -> PriceOracle:
    return PriceOracle(
        api_key="",
        cache_ttl=300,
        coin_ids={"ETH": "ethereum", "ZEC": "zcash"},
        fallback_prices={"ETH": Decimal("3000"), "ZEC": Decimal("40"), "USDC": Decimal("1")},
        clock=clock or FakeClock(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_price_is_cached_within_ttl():
    clock = FakeClock()
    oracle = make_oracle(clock)

    with patch.object(
        oracle, "_fetch_prices", new_callable=AsyncMock, return_value={"ethereum": {"usd": Decimal("3512.25")}}
    ) as mock_fetch:
        assert await oracle.price("eth") == Decimal("3512.25")
        clock.now += 299
        assert await oracle.price("ETH") == Decimal("3512.25")

    assert mock_fetch.await_count == 1


@pytest.mark.asyncio
async def test_expired_cache_refetches():
    clock = FakeClock()
    oracle = make_oracle(clock)

    with patch.object(oracle, "_fetch_prices", new_callable=AsyncMock) as mock_fetch:
        mock_fetch.side_effect = [
            {"ethereum": {"usd": Decimal("3500")}},
            {"ethereum": {"usd": Decimal("3600")}},
        ]
        assert await oracle.price("ETH") == Decimal("3500")
        clock.now += 301
        assert await oracle.price("ETH") == Decimal("3600")


@pytest.mark.asyncio
async def test_stale_cache_used_when_provider_fails():
    clock = FakeClock()
    oracle = make_oracle(clock)

    with patch.object(oracle, "_fetch_prices", new_callable=AsyncMock) as mock_fetch:
        mock_fetch.side_effect = [
            {"zcash": {"usd": Decimal("44.5")}},
            aiohttp.ClientError("connection reset"),
        ]
        assert await oracle.price("ZEC") == Decimal("44.5")
        clock.now += 10_000
        assert await oracle.price("ZEC") == Decimal("44.5")


@pytest.mark.asyncio
async def test_static_fallback_when_nothing_cached():
    oracle = make_oracle()

    with patch.object(
        oracle, "_fetch_prices", new_callable=AsyncMock, side_effect=PriceFetchError("HTTP 429")
    ):
        assert await oracle.price("ETH") == Decimal("3000")


@pytest.mark.asyncio
async def test_fallback_only_coin_skips_provider():
    oracle = make_oracle()

    with patch.object(oracle, "_fetch_prices", new_callable=AsyncMock) as mock_fetch:
        assert await oracle.price("usdc") == Decimal("1")

    mock_fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_coin_raises():
    oracle = make_oracle()

    with pytest.raises(UnknownCoinError):
        await oracle.price("DOGE")
    assert oracle.supports("doge") is False


@pytest.mark.asyncio
async def test_refresh_ignores_missing_and_non_positive_prices():
    oracle = make_oracle()

    with patch.object(
        oracle,
        "_fetch_prices",
        new_callable=AsyncMock,
        return_value={"ethereum": {"usd": Decimal("0")}, "zcash": {"usd": Decimal("45")}},
    ):
        result = await oracle.refresh()

    assert result == {"ZEC": Decimal("45")}
    assert oracle.cached_prices() == {"ZEC": Decimal("45")}


class FakeResponse:
    def __init__(self, body: str, status: int = 200):
        self.status = status
        self.body = body

    async def json(self, loads):
        return loads(self.body)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, body: str):
        self.body = body
        self.closed = False

    def get(self, url, **kwargs):
        return FakeResponse(self.body)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        "{not json",
        '{"ethereum": 5}',
        '{"ethereum": {"usd": "n/a"}}',
        '{"ethereum": {"usd": "NaN"}}',
        "[1, 2]",
    ],
)
async def test_malformed_provider_body_falls_back(body):
    oracle = make_oracle()

    with patch.object(oracle, "_get_session", new_callable=AsyncMock, return_value=FakeSession(body)):
        price = await oracle.price("ETH")

    assert price == Decimal("3000")
    assert oracle.cached_prices() == {}


@pytest.mark.asyncio
async def test_unreadable_body_is_a_fetch_error():
    oracle = make_oracle()

    with patch.object(oracle, "_get_session", new_callable=AsyncMock, return_value=FakeSession("{not json")):
        with pytest.raises(PriceFetchError):
            await oracle.refresh(["ETH"])


@pytest.mark.asyncio
async def test_malformed_entry_does_not_drop_other_coins():
    oracle = make_oracle()
    body = '{"ethereum": {"usd": "n/a"}, "zcash": {"usd": 45.5}}'

    with patch.object(oracle, "_get_session", new_callable=AsyncMock, return_value=FakeSession(body)):
        result = await oracle.refresh()

    assert result == {"ZEC": Decimal("45.5")}
