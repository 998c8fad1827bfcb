"""
Trade read queries.

Thin async query helpers over the trades table. All functions take the caller's
session; the lifecycle manager decides the transaction scope.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from models import Trade, TradeStatus
from utils.datetime_helpers import ensure_naive_datetime

logger = logging.getLogger(__name__)


@dataclass
class TradeFilter:
    """Search criteria for trades; None means "any" """

    status: Optional[str] = None
    buyer_id: Optional[int] = None
    seller_id: Optional[int] = None
    offer_id: Optional[int] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    dispute_started: Optional[bool] = None
    page: int = 1
    limit: Optional[int] = None


@dataclass
class TradePage:
    """One page of filtered trades"""

    items: List[Trade]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0

    def to_meta(self) -> Dict[str, Any]:
        return {"total": self.total, "page": self.page, "limit": self.limit, "pages": self.pages}


async def get_trade(session: AsyncSession, trade_id: int, for_update: bool = False) -> Optional[Trade]:
    stmt = select(Trade).where(Trade.id == trade_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_by_request_id(session: AsyncSession, request_id: str) -> Optional[Trade]:
    stmt = select(Trade).where(Trade.request_id == request_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def list_for_user(session: AsyncSession, user_id: int) -> Sequence[Trade]:
    """Trades where the user is buyer or seller, newest first"""
    stmt = (
        select(Trade)
        .where(or_(Trade.buyer_id == user_id, Trade.seller_id == user_id))
        .order_by(Trade.created_at.desc(), Trade.id.desc())
    )
    return (await session.execute(stmt)).scalars().all()


async def list_for_offer(session: AsyncSession, offer_id: int) -> Sequence[Trade]:
    stmt = select(Trade).where(Trade.offer_id == offer_id).order_by(Trade.created_at.desc(), Trade.id.desc())
    return (await session.execute(stmt)).scalars().all()


async def find_expired(session: AsyncSession, now: datetime, limit: Optional[int] = None) -> Sequence[Trade]:
    """OPENED trades whose expiry_time has passed, oldest deadline first"""
    now = ensure_naive_datetime(now)
    stmt = (
        select(Trade)
        .where(Trade.status == TradeStatus.OPENED.value, Trade.expiry_time <= now)
        .order_by(Trade.expiry_time.asc(), Trade.id.asc())
    )
    if limit:
        stmt = stmt.limit(limit)
    return (await session.execute(stmt)).scalars().all()


async def find_disputed(session: AsyncSession) -> Sequence[Trade]:
    stmt = (
        select(Trade)
        .where(Trade.dispute_started.is_(True))
        .order_by(Trade.dispute_time.desc(), Trade.id.desc())
    )
    return (await session.execute(stmt)).scalars().all()


async def count_for_user(session: AsyncSession, user_id: int) -> int:
    stmt = select(func.count(Trade.id)).where(or_(Trade.buyer_id == user_id, Trade.seller_id == user_id))
    return (await session.execute(stmt)).scalar_one()


async def completed_trade_count(session: AsyncSession, user_id: int) -> int:
    """SUCCESSFUL trades where the user was either party"""
    stmt = select(func.count(Trade.id)).where(
        or_(Trade.buyer_id == user_id, Trade.seller_id == user_id),
        Trade.status == TradeStatus.SUCCESSFUL.value,
    )
    return (await session.execute(stmt)).scalar_one()


async def count_by_status(session: AsyncSession, status: TradeStatus) -> int:
    stmt = select(func.count(Trade.id)).where(Trade.status == status.value)
    return (await session.execute(stmt)).scalar_one()


async def disputed_count(session: AsyncSession) -> int:
    stmt = select(func.count(Trade.id)).where(Trade.dispute_started.is_(True))
    return (await session.execute(stmt)).scalar_one()


async def filter_trades(
    session: AsyncSession,
    criteria: TradeFilter,
    default_limit: int = 20,
    max_limit: int = 100,
) -> TradePage:
    conditions = []
    if criteria.status:
        conditions.append(Trade.status == criteria.status)
    if criteria.buyer_id is not None:
        conditions.append(Trade.buyer_id == criteria.buyer_id)
    if criteria.seller_id is not None:
        conditions.append(Trade.seller_id == criteria.seller_id)
    if criteria.offer_id is not None:
        conditions.append(Trade.offer_id == criteria.offer_id)
    if criteria.min_amount is not None:
        conditions.append(Trade.fiat_amount_original >= criteria.min_amount)
    if criteria.max_amount is not None:
        conditions.append(Trade.fiat_amount_original <= criteria.max_amount)
    if criteria.dispute_started is not None:
        conditions.append(Trade.dispute_started.is_(criteria.dispute_started))

    limit = criteria.limit or default_limit
    limit = max(1, min(limit, max_limit))
    page = max(1, criteria.page or 1)

    total = (await session.execute(select(func.count(Trade.id)).where(*conditions))).scalar_one()
    stmt = (
        select(Trade)
        .where(*conditions)
        .order_by(Trade.created_at.desc(), Trade.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = list((await session.execute(stmt)).scalars().all())
    return TradePage(items=items, total=total, page=page, limit=limit)
