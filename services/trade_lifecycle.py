"""
Trade Lifecycle Manager
=======================

The trade state machine. Each public operation runs in one database transaction
that row-locks the trade (and, through the escrow ledger, every user whose
balance moves), validates the transition, applies the ledger movement and writes
the new status. Any failure rolls the whole operation back.

Trade creation is split in three phases so no lock is held while the price
oracle is on the network:
  1. read-only eligibility checks
  2. price fetch and pricing (no transaction open)
  3. insert + escrow lock in a single transaction
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from decimal import Decimal
from typing import AsyncIterator, Optional, Sequence, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from config import Config
from database import async_managed_session
from models import (
    DisputeParty,
    ExpiryFlag,
    Offer,
    OfferType,
    Trade,
    TradeStatus,
    User,
)
from services import trade_repository
from services.dispute_resolution import DisputeResolver
from services.eligibility_checker import EligibilityChecker, NetworkSignal
from services.escrow_ledger import EscrowLedger
from services.price_service import PriceService
from services.pricing_engine import calculate_pricing, convert_fiat_to_btc
from services.trade_repository import TradeFilter, TradePage
from utils.datetime_helpers import Clock, ensure_naive_datetime, get_naive_utc_now
from utils.decimal_precision import MonetaryDecimal
from utils.error_handler import (
    AmountOutOfBounds,
    DuplicateRequestId,
    InvalidInput,
    InvalidStateTransition,
    NotModerator,
    NotParticipant,
    TradeEngineError,
    TradeNotFound,
    TradeServiceError,
    UserNotFound,
)
from utils.trade_state_validator import TradeStateValidator, TradeTrigger

logger = logging.getLogger(__name__)

NOT_CANCELLED = "NA"


class TradeLifecycleManager:
    """Public surface of the trade escrow engine"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        price_service: PriceService,
        clock: Clock = get_naive_utc_now,
        config=Config,
        eligibility_checker: Optional[EligibilityChecker] = None,
        ledger: Optional[EscrowLedger] = None,
        dispute_resolver: Optional[DisputeResolver] = None,
    ):
        self._session_factory = session_factory
        self._price_service = price_service
        self._clock = clock
        self._config = config
        self._eligibility = eligibility_checker or EligibilityChecker()
        self._ledger = ledger or EscrowLedger(clock=clock)
        self._disputes = dispute_resolver or DisputeResolver(
            self._ledger,
            clock=clock,
            min_explanation_length=config.MIN_DISPUTE_EXPLANATION_LENGTH,
        )

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """One managed session per operation, with database errors mapped to engine errors"""
        try:
            async with async_managed_session(self._session_factory) as session:
                yield session
        except TradeEngineError as e:
            logger.info(f"TRADE_OPERATION_REJECTED: {operation}: {e.code}: {e.message}")
            raise
        except StaleDataError as e:
            logger.warning(f"⚠️ TRADE_STALE_STATE: {operation} lost a concurrent update: {e}")
            raise InvalidStateTransition("STALE", operation, "trade was modified concurrently") from e
        except IntegrityError as e:
            logger.warning(f"⚠️ TRADE_CONSTRAINT_VIOLATION: {operation}: {e.orig}")
            raise TradeServiceError("Trade violates a database constraint") from e
        except SQLAlchemyError as e:
            logger.error(f"❌ TRADE_DATABASE_ERROR: {operation}: {e}", exc_info=True)
            raise TradeServiceError("Trade service temporarily unavailable") from e

    @staticmethod
    async def _load_for_update(session: AsyncSession, trade_id: int) -> Trade:
        trade = await trade_repository.get_trade(session, trade_id, for_update=True)
        if trade is None:
            raise TradeNotFound(f"Trade {trade_id} not found")
        return trade

    @staticmethod
    def _require_party(trade: Trade, caller_id: int) -> DisputeParty:
        party = trade.party_of(caller_id)
        if party is None:
            raise NotParticipant(f"User {caller_id} is not a party to trade {trade.id}")
        return party

    @staticmethod
    async def _require_moderator(session: AsyncSession, user_id: int) -> User:
        user = await session.get(User, user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        if not user.is_moderator:
            raise NotModerator("Only moderators can perform this action")
        return user

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(
        self,
        requester_id: int,
        offer_id: int,
        fiat_amount: Union[Decimal, int, str],
        request_id: str,
        network: Optional[NetworkSignal] = None,
    ) -> Trade:
        """Open a trade against an offer and lock the seller's escrow"""
        try:
            fiat_amount = MonetaryDecimal.quantize_fiat(fiat_amount)
        except ValueError:
            raise InvalidInput(f"Invalid fiat amount: {fiat_amount!r}")
        if fiat_amount <= 0:
            raise AmountOutOfBounds("Trade amount must be positive")
        if fiat_amount > self._config.MAX_TRADE_FIAT_AMOUNT:
            raise AmountOutOfBounds(f"Trade amount exceeds {self._config.MAX_TRADE_FIAT_AMOUNT}")

        request_id = (request_id or "").strip()
        if not request_id:
            raise InvalidInput("request_id is required")

        # Phase 1: eligibility, read-only
        async with self._transaction("create") as session:
            if await trade_repository.get_by_request_id(session, request_id) is not None:
                raise DuplicateRequestId(request_id)

            offer = await session.get(Offer, offer_id)
            requester = await session.get(User, requester_id)
            completed = await trade_repository.completed_trade_count(session, requester_id)
            self._eligibility.check(requester, offer, fiat_amount, completed, network)

        # Phase 2: price, no transaction held across the network call
        market_price = await self._price_service.get_price(offer.currency)
        pricing = calculate_pricing(offer.margin, market_price, fiat_amount)
        escrow_amount = convert_fiat_to_btc(fiat_amount, market_price)
        if escrow_amount <= 0:
            raise AmountOutOfBounds(
                f"Amount {fiat_amount} {offer.currency} is too small to escrow at {market_price}"
            )
        if (
            pricing.effective_price <= 0
            or pricing.fiat_amount_with_margin <= 0
            or pricing.btc_amount_with_margin < 0
        ):
            # A margin of 100% or more either way leaves nothing payable
            raise AmountOutOfBounds(
                f"Offer margin {offer.margin}% leaves no payable amount for {fiat_amount} {offer.currency}"
            )

        # A sell offer's owner sells; a buy offer's owner buys
        if offer.offer_type == OfferType.SELL.value:
            seller_id, buyer_id = offer.user_id, requester_id
        else:
            seller_id, buyer_id = requester_id, offer.user_id

        # Phase 3: insert + lock, one transaction
        now = self._clock()
        trade = Trade(
            request_id=request_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            offer_id=offer.id,
            currency=offer.currency,
            fiat_amount_original=fiat_amount,
            fiat_amount_with_margin=pricing.fiat_amount_with_margin,
            btc_amount_original=escrow_amount,
            btc_amount_with_margin=pricing.btc_amount_with_margin,
            price=pricing.effective_price,
            status=TradeStatus.OPENED.value,
            cancelled=NOT_CANCELLED,
            escrow_return=False,
            moderator_flag="NA",
            flag_expired=ExpiryFlag.NOT_EXPIRED.value,
            dispute_started=False,
            award_settled=False,
            expiry_time=now + timedelta(hours=self._config.TRADE_EXPIRY_HOURS),
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._transaction("create") as session:
                session.add(trade)
                await session.flush()
                await self._ledger.lock(session, seller_id, escrow_amount, trade_id=trade.id)
        except TradeServiceError as e:
            # Only a committed trade holding this key makes it a duplicate
            if isinstance(e.__cause__, IntegrityError) and await self.find_by_request_id(request_id) is not None:
                logger.info(f"TRADE_OPERATION_REJECTED: create: lost request_id race for {request_id}")
                raise DuplicateRequestId(request_id) from e.__cause__
            raise

        logger.info(
            f"✅ TRADE_CREATED: trade {trade.id} ({request_id}) offer {offer.id} "
            f"buyer {buyer_id} seller {seller_id} "
            f"{MonetaryDecimal.format_fiat(fiat_amount, offer.currency)} escrow {escrow_amount} BTC"
        )
        return trade

    # ------------------------------------------------------------------
    # Party transitions
    # ------------------------------------------------------------------

    async def mark_paid(self, trade_id: int, caller_id: int) -> Trade:
        """Buyer declares the off-platform payment sent"""
        async with self._transaction("mark_paid") as session:
            trade = await self._load_for_update(session, trade_id)
            if caller_id != trade.buyer_id:
                raise NotParticipant("Only the buyer can mark a trade as paid")

            TradeStateValidator.apply_transition(trade, TradeStatus.PAID, TradeTrigger.MARK_PAID)
            trade.updated_at = self._clock()

        logger.info(f"TRADE_PAID: trade {trade_id} marked paid by buyer {caller_id}")
        return trade

    async def cancel(self, trade_id: int, caller_id: int, reason: Optional[str] = None) -> Trade:
        """Either party cancels an OPENED trade; the full escrow returns to the seller"""
        async with self._transaction("cancel") as session:
            trade = await self._load_for_update(session, trade_id)
            party = self._require_party(trade, caller_id)

            new_status = (
                TradeStatus.CANCELLED_BUYER if party is DisputeParty.BUYER else TradeStatus.CANCELLED_SELLER
            )
            TradeStateValidator.apply_transition(trade, new_status, TradeTrigger.CANCEL)
            await self._ledger.refund(session, trade.seller_id, trade.btc_amount_original, trade_id=trade.id)

            trade.cancelled = (reason or "").strip() or self._config.DEFAULT_CANCEL_REASON
            trade.escrow_return = True
            trade.updated_at = self._clock()

        logger.info(f"TRADE_CANCELLED: trade {trade_id} by {party.value} ({trade.cancelled})")
        return trade

    async def release_crypto(self, trade_id: int, caller_id: int) -> Trade:
        """Seller confirms payment received; escrow is split to the buyer"""
        async with self._transaction("release_crypto") as session:
            trade = await self._load_for_update(session, trade_id)
            if caller_id != trade.seller_id:
                raise NotParticipant("Only the seller can release crypto")

            TradeStateValidator.apply_transition(trade, TradeStatus.SUCCESSFUL, TradeTrigger.RELEASE_CRYPTO)
            await self._ledger.release(
                session,
                escrow_amount=trade.btc_amount_original,
                buyer_credit_amount=trade.btc_amount_with_margin,
                buyer_id=trade.buyer_id,
                seller_id=trade.seller_id,
                trade_id=trade.id,
            )
            trade.escrow_return = False
            trade.updated_at = self._clock()

        logger.info(f"✅ TRADE_SUCCESSFUL: trade {trade_id} released by seller {caller_id}")
        return trade

    async def reopen(self, trade_id: int, caller_id: int) -> Trade:
        """Reopen a party-cancelled trade, re-locking the escrow"""
        async with self._transaction("reopen") as session:
            trade = await self._load_for_update(session, trade_id)
            self._require_party(trade, caller_id)

            TradeStateValidator.apply_transition(trade, TradeStatus.OPENED, TradeTrigger.REOPEN)
            await self._ledger.lock(session, trade.seller_id, trade.btc_amount_original, trade_id=trade.id)

            now = self._clock()
            trade.cancelled = NOT_CANCELLED
            trade.escrow_return = False
            trade.flag_expired = ExpiryFlag.NOT_EXPIRED.value
            trade.expiry_time = now + timedelta(hours=self._config.TRADE_EXPIRY_HOURS)
            trade.updated_at = now

        logger.info(f"TRADE_REOPENED: trade {trade_id} by user {caller_id}, expires {trade.expiry_time}")
        return trade

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def open_dispute(self, trade_id: int, caller_id: int, reason: str, explanation: str) -> Trade:
        async with self._transaction("open_dispute") as session:
            trade = await self._load_for_update(session, trade_id)
            initiator = self._require_party(trade, caller_id)
            self._disputes.open_dispute(trade, initiator, reason, explanation)
        return trade

    async def resolve_dispute(
        self,
        trade_id: int,
        moderator_id: int,
        awarded_to: DisputeParty,
        mod_notes: Optional[str] = None,
    ) -> Trade:
        async with self._transaction("resolve_dispute") as session:
            await self._require_moderator(session, moderator_id)
            trade = await self._load_for_update(session, trade_id)
            self._disputes.resolve_dispute(trade, awarded_to, mod_notes)

        logger.info(f"DISPUTE_RESOLVED_BY: trade {trade_id} moderator {moderator_id}")
        return trade

    async def settle_award(self, trade_id: int, moderator_id: int) -> Trade:
        """Move the escrow of an awarded trade to the winning side"""
        async with self._transaction("settle_award") as session:
            await self._require_moderator(session, moderator_id)
            trade = await self._load_for_update(session, trade_id)
            await self._disputes.settle_award(session, trade)
        return trade

    # ------------------------------------------------------------------
    # System expiry
    # ------------------------------------------------------------------

    async def expire(self, trade_id: int) -> Trade:
        """
        Cancel an OPENED trade whose expiry_time has passed.

        Repeat calls on an already expired trade are no-ops. Escrow is refunded only
        when REFUND_ESCROW_ON_EXPIRY is enabled.
        """
        async with self._transaction("expire") as session:
            trade = await self._load_for_update(session, trade_id)
            if trade.status == TradeStatus.CANCELLED_SYSTEM.value:
                logger.debug(f"TRADE_EXPIRE_NOOP: trade {trade_id} already expired")
                return trade

            TradeStateValidator.ensure_trigger_allowed(trade, TradeTrigger.EXPIRE)
            now = ensure_naive_datetime(self._clock())
            if trade.expiry_time > now:
                raise InvalidStateTransition(
                    trade.status, TradeStatus.CANCELLED_SYSTEM.value, "expiry time not reached"
                )

            TradeStateValidator.apply_transition(trade, TradeStatus.CANCELLED_SYSTEM, TradeTrigger.EXPIRE)
            trade.cancelled = self._config.EXPIRY_CANCEL_REASON
            trade.flag_expired = ExpiryFlag.EXPIRED.value
            trade.updated_at = now

            if self._config.REFUND_ESCROW_ON_EXPIRY:
                await self._ledger.refund(session, trade.seller_id, trade.btc_amount_original, trade_id=trade.id)
                trade.escrow_return = True
            else:
                logger.warning(
                    f"⚠️ TRADE_EXPIRED_ESCROW_HELD: trade {trade_id} expired, "
                    f"{trade.btc_amount_original} BTC stays locked for seller {trade.seller_id}"
                )

        logger.info(f"TRADE_EXPIRED: trade {trade_id}")
        return trade

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def require_moderator(self, user_id: int) -> None:
        """Raise NotModerator unless the user is a moderator or admin"""
        async with self._transaction("require_moderator") as session:
            await self._require_moderator(session, user_id)

    async def delete(self, trade_id: int, moderator_id: int) -> None:
        """Hard delete, bypassing the state machine"""
        async with self._transaction("delete") as session:
            await self._require_moderator(session, moderator_id)
            trade = await trade_repository.get_trade(session, trade_id, for_update=True)
            if trade is None:
                raise TradeNotFound(f"Trade {trade_id} not found")
            status = trade.status
            await session.delete(trade)

        logger.warning(f"⚠️ TRADE_DELETED: trade {trade_id} (status {status}) removed by moderator {moderator_id}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_by_id(self, trade_id: int) -> Optional[Trade]:
        async with self._transaction("find_by_id") as session:
            return await trade_repository.get_trade(session, trade_id)

    async def get_for_participant(self, trade_id: int, user_id: int) -> Trade:
        """Trade lookup that only succeeds for the buyer or seller"""
        trade = await self.find_by_id(trade_id)
        if trade is None:
            raise TradeNotFound(f"Trade {trade_id} not found")
        self._require_party(trade, user_id)
        return trade

    async def find_by_request_id(self, request_id: str) -> Optional[Trade]:
        async with self._transaction("find_by_request_id") as session:
            return await trade_repository.get_by_request_id(session, request_id)

    async def list_for_user(self, user_id: int) -> Sequence[Trade]:
        async with self._transaction("list_for_user") as session:
            return await trade_repository.list_for_user(session, user_id)

    async def list_for_offer(self, offer_id: int) -> Sequence[Trade]:
        async with self._transaction("list_for_offer") as session:
            return await trade_repository.list_for_offer(session, offer_id)

    async def filter(self, criteria: TradeFilter) -> TradePage:
        async with self._transaction("filter") as session:
            return await trade_repository.filter_trades(
                session,
                criteria,
                default_limit=self._config.FILTER_DEFAULT_LIMIT,
                max_limit=self._config.FILTER_MAX_LIMIT,
            )

    async def find_expired(self, limit: Optional[int] = None) -> Sequence[Trade]:
        async with self._transaction("find_expired") as session:
            return await trade_repository.find_expired(session, self._clock(), limit)

    async def find_disputed(self) -> Sequence[Trade]:
        async with self._transaction("find_disputed") as session:
            return await trade_repository.find_disputed(session)

    async def count_for_user(self, user_id: int) -> int:
        async with self._transaction("count_for_user") as session:
            return await trade_repository.count_for_user(session, user_id)

    async def completed_trade_count(self, user_id: int) -> int:
        async with self._transaction("completed_trade_count") as session:
            return await trade_repository.completed_trade_count(session, user_id)

    async def count_by_status(self, status: TradeStatus) -> int:
        async with self._transaction("count_by_status") as session:
            return await trade_repository.count_by_status(session, status)

    async def disputed_count(self) -> int:
        async with self._transaction("disputed_count") as session:
            return await trade_repository.disputed_count(session)
