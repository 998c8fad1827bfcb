"""
Shared fixtures for the trade escrow engine test suite.

Every test gets a fresh in-memory SQLite database (aiosqlite, single shared
connection), a frozen clock and a stub price oracle quoting BTC at 50,000 USD.
"""

import logging
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from config import Config
from database import build_session_factory
from models import Base, UserRole
from services.trade_lifecycle import TradeLifecycleManager
from tests.fixtures import FrozenClock, StubPriceService, create_offer, create_user

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


class RefundOnExpiryConfig(Config):
    """Config variant with expiry refunds switched on"""

    REFUND_ESCROW_ON_EXPIRY = True


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def price_service():
    return StubPriceService()


@pytest.fixture
def manager(session_factory, price_service, clock):
    return TradeLifecycleManager(session_factory, price_service, clock=clock, config=Config)


@pytest.fixture
def refund_manager(session_factory, price_service, clock):
    """Manager that refunds the seller when a trade expires"""
    return TradeLifecycleManager(session_factory, price_service, clock=clock, config=RefundOnExpiryConfig)


@pytest_asyncio.fixture
async def seller(session_factory):
    return await create_user(session_factory, balance=Decimal("1.00000000"), name="Sally Seller")


@pytest_asyncio.fixture
async def buyer(session_factory):
    return await create_user(session_factory, balance=Decimal("0"), name="Bob Buyer")


@pytest_asyncio.fixture
async def moderator(session_factory):
    return await create_user(session_factory, role=UserRole.MODERATOR.value, name="Mona Moderator")


@pytest_asyncio.fixture
async def sell_offer(session_factory, seller):
    """Seller's USD offer with a 5% margin and no amount bounds"""
    return await create_offer(session_factory, seller)


@pytest_asyncio.fixture
async def opened_trade(manager, buyer, sell_offer):
    """1000 USD trade at 50,000: escrow 0.02 BTC, buyer credit 0.019 BTC"""
    return await manager.create(buyer.id, sell_offer.id, Decimal("1000"), "req-opened")
