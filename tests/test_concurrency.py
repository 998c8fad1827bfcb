"""
Concurrency Tests
Parallel operations against a file-backed SQLite database, where each
session gets its own connection and writers really contend
"""

import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio

from database import build_async_engine, create_tables
from models import TradeStatus
from tests.fixtures import count_trades, get_balance, get_trade
from utils.error_handler import (
    DuplicateRequestId,
    InsufficientEscrowBalance,
    InvalidStateTransition,
)

PARALLEL_CALLS = 4


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = build_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'trades.db'}", echo=False)
    await create_tables(engine)
    yield engine
    await engine.dispose()


def split_outcomes(results):
    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    return successes, failures


class TestConcurrentTransitions:
    """Racing callers on one trade"""

    @pytest.mark.asyncio
    async def test_parallel_release_pays_out_once(self, manager, session_factory, buyer, seller, opened_trade):
        await manager.mark_paid(opened_trade.id, buyer.id)

        results = await asyncio.gather(
            *(manager.release_crypto(opened_trade.id, seller.id) for _ in range(5)),
            return_exceptions=True,
        )

        successes, failures = split_outcomes(results)
        assert len(successes) == 1
        assert all(isinstance(f, InvalidStateTransition) for f in failures), failures

        assert (await get_trade(session_factory, opened_trade.id)).status == TradeStatus.SUCCESSFUL.value
        assert await get_balance(session_factory, buyer.id) == Decimal("0.01900000")
        assert await get_balance(session_factory, seller.id) == Decimal("0.98100000")

    @pytest.mark.asyncio
    async def test_parallel_cancel_refunds_once(self, manager, session_factory, buyer, seller, opened_trade):
        results = await asyncio.gather(
            manager.cancel(opened_trade.id, buyer.id),
            manager.cancel(opened_trade.id, seller.id),
            return_exceptions=True,
        )

        successes, failures = split_outcomes(results)
        assert len(successes) == 1
        assert all(isinstance(f, InvalidStateTransition) for f in failures), failures
        assert await get_balance(session_factory, seller.id) == Decimal("1.00000000")


class TestConcurrentCreates:
    """Racing creates sharing a seller balance or an idempotency key"""

    @pytest.mark.asyncio
    async def test_seller_balance_never_overdrawn(self, manager, session_factory, buyer, seller, sell_offer):
        # 30,000 USD at 50,000 escrows 0.6 BTC; the seller holds 1.0
        results = await asyncio.gather(
            *(
                manager.create(buyer.id, sell_offer.id, Decimal("30000"), f"req-par-{n}")
                for n in range(PARALLEL_CALLS)
            ),
            return_exceptions=True,
        )

        successes, failures = split_outcomes(results)
        assert len(successes) == 1
        assert all(isinstance(f, InsufficientEscrowBalance) for f in failures), failures

        assert await count_trades(session_factory) == 1
        assert await get_balance(session_factory, seller.id) == Decimal("0.40000000")

    @pytest.mark.asyncio
    async def test_shared_request_id_creates_one_trade(self, manager, session_factory, buyer, seller, sell_offer):
        results = await asyncio.gather(
            *(
                manager.create(buyer.id, sell_offer.id, Decimal("1000"), "req-same")
                for _ in range(PARALLEL_CALLS)
            ),
            return_exceptions=True,
        )

        successes, failures = split_outcomes(results)
        assert len(successes) == 1
        assert all(isinstance(f, DuplicateRequestId) for f in failures), failures

        assert await count_trades(session_factory) == 1
        assert await get_balance(session_factory, seller.id) == Decimal("0.98000000")
