"""
Price Service Tests
Rate parsing, TTL caching and failure mapping of the BTC price oracle
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from caching.simple_cache import SimpleCache
from services.price_service import PriceService
from utils.error_handler import PriceUnavailable

RATES = {"USD": "50000.12", "EUR": "46000", "ZZZ": "0", "BAD": "n/a"}


class FakeTime:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def service(fake_time):
    return PriceService(
        api_url="https://prices.test/v2/exchange-rates?currency=BTC",
        cache_ttl=60,
        timeout_seconds=5,
        cache=SimpleCache(default_ttl=60, time_func=fake_time),
    )


def mock_client_session(status=200, payload=None):
    """aiohttp.ClientSession replacement returning one canned response"""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)

    session = MagicMock()
    session.get.return_value.__aenter__.return_value = response

    client_session_cls = MagicMock()
    client_session_cls.return_value.__aenter__.return_value = session
    return client_session_cls


class TestGetPrice:
    """Rate lookup and caching"""

    @pytest.mark.asyncio
    async def test_returns_decimal_rate(self, service):
        with patch.object(service, "_fetch_rates", AsyncMock(return_value=RATES)):
            price = await service.get_price("usd")

        assert price == Decimal("50000.12")
        assert isinstance(price, Decimal)

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self, service, fake_time):
        fetch = AsyncMock(return_value=RATES)
        with patch.object(service, "_fetch_rates", fetch):
            await service.get_price("USD")
            fake_time.now += 59
            await service.get_price("USD")

        assert fetch.await_count == 1
        assert service.get_cache_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_refetched_after_ttl(self, service, fake_time):
        fetch = AsyncMock(side_effect=[RATES, {**RATES, "USD": "51000"}])
        with patch.object(service, "_fetch_rates", fetch):
            await service.get_price("USD")
            fake_time.now += 61
            price = await service.get_price("USD")

        assert price == Decimal("51000")
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_cache_is_per_currency(self, service):
        fetch = AsyncMock(return_value=RATES)
        with patch.object(service, "_fetch_rates", fetch):
            assert await service.get_price("USD") == Decimal("50000.12")
            assert await service.get_price("EUR") == Decimal("46000")

        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_clear_cache(self, service):
        fetch = AsyncMock(return_value=RATES)
        with patch.object(service, "_fetch_rates", fetch):
            await service.get_price("USD")
            service.clear_cache()
            await service.get_price("USD")

        assert fetch.await_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("currency", ["GBP", "ZZZ", "BAD", ""])
    async def test_missing_or_invalid_rates(self, service, currency):
        with patch.object(service, "_fetch_rates", AsyncMock(return_value=RATES)):
            with pytest.raises(PriceUnavailable):
                await service.get_price(currency)

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, service):
        fetch = AsyncMock(side_effect=[PriceUnavailable("Price oracle timed out"), RATES])
        with patch.object(service, "_fetch_rates", fetch):
            with pytest.raises(PriceUnavailable):
                await service.get_price("USD")
            assert await service.get_price("USD") == Decimal("50000.12")


class TestFetchRates:
    """HTTP transport failures"""

    @pytest.mark.asyncio
    async def test_parses_coinbase_payload(self, service):
        session_cls = mock_client_session(payload={"data": {"currency": "BTC", "rates": RATES}})
        with patch("services.price_service.aiohttp.ClientSession", session_cls):
            assert await service._fetch_rates() == RATES

    @pytest.mark.asyncio
    async def test_non_200(self, service):
        session_cls = mock_client_session(status=503, payload={})
        with patch("services.price_service.aiohttp.ClientSession", session_cls):
            with pytest.raises(PriceUnavailable):
                await service._fetch_rates()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [None, [], {"data": None}, {"data": {"rates": "x"}}])
    async def test_unexpected_payload(self, service, payload):
        session_cls = mock_client_session(payload=payload)
        with patch("services.price_service.aiohttp.ClientSession", session_cls):
            with pytest.raises(PriceUnavailable):
                await service._fetch_rates()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        aiohttp.ClientConnectionError("connection refused"),
        asyncio.TimeoutError(),
    ])
    async def test_transport_errors(self, service, error):
        with patch("services.price_service.aiohttp.ClientSession", side_effect=error):
            with pytest.raises(PriceUnavailable):
                await service.get_price("USD")
