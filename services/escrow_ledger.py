"""
Escrow balance ledger.

Lock, refund and release are read-modify-write operations on users.balance.
They never commit: each runs inside the caller's session so the balance change
and the trade status write land (or roll back) together. Every user row is
taken with SELECT ... FOR UPDATE, and multi-user operations lock in ascending
id order.
"""

import logging
from decimal import Decimal
from typing import Dict, NamedTuple, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import BalanceLedgerEntry, LedgerEntryType, User
from utils.datetime_helpers import Clock, get_naive_utc_now
from utils.decimal_precision import MonetaryDecimal
from utils.error_handler import InsufficientEscrowBalance, InvalidInput, UserNotFound

logger = logging.getLogger(__name__)


class ReleaseSplit(NamedTuple):
    """How an escrow was divided on release"""

    buyer_credit: Decimal
    seller_return: Decimal


class EscrowLedger:
    """Balance mutation primitive for trade escrow"""

    def __init__(self, clock: Clock = get_naive_utc_now):
        self._clock = clock

    async def _lock_users(self, session: AsyncSession, user_ids: Sequence[int]) -> Dict[int, User]:
        """Row-lock the given users in ascending id order"""
        ordered_ids = sorted(set(user_ids))
        stmt = (
            select(User)
            .where(User.id.in_(ordered_ids))
            .order_by(User.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        users = {user.id: user for user in (await session.execute(stmt)).scalars().all()}

        missing = [uid for uid in ordered_ids if uid not in users]
        if missing:
            logger.error(f"❌ ESCROW_USER_MISSING: users {missing} not found")
            raise UserNotFound(f"User {missing[0]} not found")
        return users

    def _apply(
        self,
        session: AsyncSession,
        user: User,
        delta: Decimal,
        entry_type: LedgerEntryType,
        trade_id: Optional[int],
    ) -> Decimal:
        balance_before = MonetaryDecimal.quantize_crypto(user.balance or 0)
        balance_after = MonetaryDecimal.quantize_crypto(balance_before + delta)
        now = self._clock()

        user.balance = balance_after
        user.updated_at = now
        session.add(
            BalanceLedgerEntry(
                user_id=user.id,
                trade_id=trade_id,
                entry_type=entry_type.value,
                amount=abs(delta),
                balance_before=balance_before,
                balance_after=balance_after,
                created_at=now,
            )
        )
        return balance_after

    @staticmethod
    def _require_positive(amount: Decimal, operation: str) -> Decimal:
        amount = MonetaryDecimal.quantize_crypto(amount)
        if amount <= 0:
            raise InvalidInput(f"{operation} amount must be positive, got {amount}")
        return amount

    async def lock(
        self,
        session: AsyncSession,
        user_id: int,
        amount: Decimal,
        trade_id: Optional[int] = None,
    ) -> Decimal:
        """Move `amount` out of the user's balance into escrow; returns the new balance"""
        amount = self._require_positive(amount, "Escrow lock")
        user = (await self._lock_users(session, [user_id]))[user_id]

        available = MonetaryDecimal.quantize_crypto(user.balance or 0)
        if not MonetaryDecimal.is_sufficient_balance(available, amount):
            logger.warning(
                f"⚠️ ESCROW_LOCK_REJECTED: user {user_id} has {available}, needs {amount} (trade {trade_id})"
            )
            raise InsufficientEscrowBalance(user_id, amount, available)

        new_balance = self._apply(session, user, -amount, LedgerEntryType.ESCROW_LOCK, trade_id)
        await session.flush()

        logger.info(
            f"🔒 ESCROW_LOCK: user {user_id} locked {MonetaryDecimal.format_crypto(amount)} "
            f"for trade {trade_id} (balance {new_balance})"
        )
        return new_balance

    async def refund(
        self,
        session: AsyncSession,
        user_id: int,
        amount: Decimal,
        trade_id: Optional[int] = None,
    ) -> Decimal:
        """Return `amount` from escrow to the user; returns the new balance"""
        amount = self._require_positive(amount, "Escrow refund")
        user = (await self._lock_users(session, [user_id]))[user_id]

        new_balance = self._apply(session, user, amount, LedgerEntryType.ESCROW_REFUND, trade_id)
        await session.flush()

        logger.info(
            f"↩️ ESCROW_REFUND: user {user_id} refunded {MonetaryDecimal.format_crypto(amount)} "
            f"from trade {trade_id} (balance {new_balance})"
        )
        return new_balance

    async def release(
        self,
        session: AsyncSession,
        escrow_amount: Decimal,
        buyer_credit_amount: Decimal,
        buyer_id: int,
        seller_id: int,
        trade_id: Optional[int] = None,
    ) -> ReleaseSplit:
        """
        Split an escrow between buyer and seller.

        The buyer receives buyer_credit_amount, capped at the escrow; whatever the
        buyer does not receive goes back to the seller. Both credits are applied in
        the same flush so they commit or roll back as one unit.
        """
        escrow_amount = self._require_positive(escrow_amount, "Escrow release")
        requested_credit = MonetaryDecimal.quantize_crypto(buyer_credit_amount)
        if requested_credit < 0:
            raise InvalidInput(f"Buyer credit cannot be negative, got {requested_credit}")

        buyer_credit = min(requested_credit, escrow_amount)
        if buyer_credit < requested_credit:
            logger.warning(
                f"⚠️ ESCROW_RELEASE_CAPPED: trade {trade_id} buyer credit {requested_credit} "
                f"exceeds escrow {escrow_amount}, capped"
            )
        seller_return = max(escrow_amount - buyer_credit, Decimal("0"))

        users = await self._lock_users(session, [buyer_id, seller_id])

        if buyer_credit > 0:
            self._apply(
                session, users[buyer_id], buyer_credit, LedgerEntryType.ESCROW_RELEASE_BUYER, trade_id
            )
        if seller_return > 0:
            self._apply(
                session, users[seller_id], seller_return, LedgerEntryType.ESCROW_RELEASE_SELLER, trade_id
            )
        await session.flush()

        logger.info(
            f"✅ ESCROW_RELEASE: trade {trade_id} buyer {buyer_id} +{buyer_credit}, "
            f"seller {seller_id} +{seller_return} (escrow {escrow_amount})"
        )
        return ReleaseSplit(buyer_credit=buyer_credit, seller_return=seller_return)
