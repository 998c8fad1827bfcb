"""Row factories and read helpers for database-backed tests"""

import itertools
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select

from models import (
    BalanceLedgerEntry,
    CountryLimitMode,
    ExpiryFlag,
    Offer,
    OfferStatus,
    OfferType,
    Trade,
    TradeStatus,
    User,
    UserHealth,
    UserRole,
)

_sequence = itertools.count(1)

BASE_TIME = datetime(2025, 1, 15, 12, 0, 0)


async def create_user(
    session_factory,
    balance: Decimal = Decimal("0"),
    health: str = UserHealth.ACTIVE.value,
    role: str = UserRole.USER.value,
    is_verified: bool = True,
    name: Optional[str] = "Test Trader",
    username: Optional[str] = None,
) -> User:
    async with session_factory() as session:
        user = User(
            username=username or f"trader_{next(_sequence)}",
            name=name,
            health=health,
            role=role,
            is_verified=is_verified,
            balance=Decimal(balance),
            created_at=BASE_TIME,
            updated_at=BASE_TIME,
        )
        session.add(user)
        await session.commit()
        return user


async def create_offer(session_factory, owner: User, **overrides) -> Offer:
    values = dict(
        user_id=owner.id,
        offer_type=OfferType.SELL.value,
        currency="USD",
        margin=Decimal("5"),
        minimum=Decimal("0"),
        maximum=Decimal("0"),
        active=True,
        status=OfferStatus.ACTIVE.value,
        deauthorized=False,
        id_verification=False,
        full_name_required=False,
        new_trader_limit=False,
        minimum_trades=0,
        vpn_blocked=False,
        limit_countries=CountryLimitMode.NONE.value,
        blocked_countries=[],
        allowed_countries=[],
        created_at=BASE_TIME,
        updated_at=BASE_TIME,
    )
    values.update(overrides)
    async with session_factory() as session:
        offer = Offer(**values)
        session.add(offer)
        await session.commit()
        return offer


async def insert_trade(
    session_factory,
    buyer: User,
    seller: User,
    offer: Offer,
    status: TradeStatus = TradeStatus.OPENED,
    **overrides,
) -> Trade:
    """Insert a trade row directly, bypassing the engine (no escrow movement)"""
    values = dict(
        request_id=f"req-{next(_sequence)}",
        buyer_id=buyer.id,
        seller_id=seller.id,
        offer_id=offer.id,
        currency="USD",
        fiat_amount_original=Decimal("1000.00"),
        fiat_amount_with_margin=Decimal("950.00"),
        btc_amount_original=Decimal("0.02000000"),
        btc_amount_with_margin=Decimal("0.01900000"),
        price=Decimal("52500.00"),
        status=status.value,
        cancelled="NA",
        escrow_return=False,
        moderator_flag="NA",
        flag_expired=ExpiryFlag.NOT_EXPIRED.value,
        dispute_started=status == TradeStatus.DISPUTED,
        award_settled=False,
        expiry_time=BASE_TIME + timedelta(hours=24),
        created_at=BASE_TIME,
        updated_at=BASE_TIME,
    )
    values.update(overrides)
    async with session_factory() as session:
        trade = Trade(**values)
        session.add(trade)
        await session.commit()
        return trade


async def get_balance(session_factory, user_id: int) -> Decimal:
    async with session_factory() as session:
        user = await session.get(User, user_id)
        return user.balance


async def get_trade(session_factory, trade_id: int) -> Optional[Trade]:
    async with session_factory() as session:
        return await session.get(Trade, trade_id)


async def get_ledger_entries(session_factory, user_id: Optional[int] = None) -> List[BalanceLedgerEntry]:
    async with session_factory() as session:
        stmt = select(BalanceLedgerEntry).order_by(BalanceLedgerEntry.id)
        if user_id is not None:
            stmt = stmt.where(BalanceLedgerEntry.user_id == user_id)
        return list((await session.execute(stmt)).scalars().all())


async def count_trades(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(Trade.id)))).scalar_one()
