"""
Dispute handling for trades.

Opening and resolving a dispute only touch status and annotation fields. Moving
the escrow after an award is a separate, explicit settle step so a moderator
decision and the money movement are two auditable actions.
"""

import logging
from decimal import Decimal
from typing import NamedTuple, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from models import DisputeParty, Trade, TradeStatus
from services.escrow_ledger import EscrowLedger
from utils.datetime_helpers import Clock, get_naive_utc_now
from utils.error_handler import (
    DisputeAlreadyOpen,
    InvalidInput,
    InvalidStateTransition,
    NoDisputeExists,
)
from utils.trade_state_validator import TradeStateValidator, TradeTrigger

logger = logging.getLogger(__name__)

AWARD_STATUS = {
    DisputeParty.BUYER: TradeStatus.AWARDED_BUYER,
    DisputeParty.SELLER: TradeStatus.AWARDED_SELLER,
}


class SettlementResult(NamedTuple):
    """Funds moved when an award was settled"""

    trade_id: int
    awarded_to: DisputeParty
    buyer_credit: Decimal
    seller_credit: Decimal


class DisputeResolver:
    """Dispute open/resolve transitions and award settlement"""

    def __init__(
        self,
        ledger: EscrowLedger,
        clock: Clock = get_naive_utc_now,
        min_explanation_length: int = 10,
    ):
        self._ledger = ledger
        self._clock = clock
        self.min_explanation_length = min_explanation_length

    def open_dispute(
        self,
        trade: Trade,
        initiator: DisputeParty,
        reason: str,
        explanation: str,
    ) -> None:
        """Flag the trade as disputed; trade must be OPENED or PAID with no dispute yet"""
        if trade.dispute_started:
            raise DisputeAlreadyOpen(trade.status, TradeTrigger.OPEN_DISPUTE.value, "dispute already started")
        TradeStateValidator.ensure_trigger_allowed(trade, TradeTrigger.OPEN_DISPUTE)

        reason = (reason or "").strip()
        explanation = (explanation or "").strip()
        if not reason:
            raise InvalidInput("Dispute reason is required")
        if len(explanation) < self.min_explanation_length:
            raise InvalidInput(
                f"Dispute explanation must be at least {self.min_explanation_length} characters"
            )

        TradeStateValidator.apply_transition(trade, TradeStatus.DISPUTED, TradeTrigger.OPEN_DISPUTE)
        now = self._clock()
        trade.dispute_started = True
        trade.dispute_time = now
        trade.dispute_reason = reason
        trade.dispute_explanation = explanation
        trade.dispute_started_by = initiator.value
        trade.updated_at = now

        logger.warning(f"⚠️ DISPUTE_OPENED: trade {trade.id} by {initiator.value}: {reason}")

    def resolve_dispute(
        self,
        trade: Trade,
        awarded_to: DisputeParty,
        mod_notes: Optional[str] = None,
    ) -> None:
        """Award a disputed trade; no escrow moves here"""
        if not trade.dispute_started:
            raise NoDisputeExists(trade.status, TradeTrigger.RESOLVE_DISPUTE.value, "no dispute exists")

        TradeStateValidator.apply_transition(trade, AWARD_STATUS[awarded_to], TradeTrigger.RESOLVE_DISPUTE)
        now = self._clock()
        trade.dispute_time_resolve = now
        trade.dispute_mod_notes = mod_notes
        trade.dispute_started = False
        trade.updated_at = now

        logger.info(f"DISPUTE_RESOLVED: trade {trade.id} awarded to {awarded_to.value}")

    async def settle_award(self, session: AsyncSession, trade: Trade) -> SettlementResult:
        """
        Move the escrow according to the award, exactly once.

        AWARDED_BUYER pays out like a normal release (buyer gets the margined amount,
        any remainder returns to the seller). AWARDED_SELLER refunds the whole escrow
        to the seller.
        """
        if trade.status == TradeStatus.AWARDED_BUYER.value:
            awarded_to = DisputeParty.BUYER
        elif trade.status == TradeStatus.AWARDED_SELLER.value:
            awarded_to = DisputeParty.SELLER
        else:
            raise InvalidStateTransition(trade.status, "settle_award", "trade has no award to settle")

        if trade.award_settled:
            raise InvalidStateTransition(trade.status, "settle_award", "award already settled")

        if awarded_to is DisputeParty.BUYER:
            split = await self._ledger.release(
                session,
                escrow_amount=trade.btc_amount_original,
                buyer_credit_amount=trade.btc_amount_with_margin,
                buyer_id=trade.buyer_id,
                seller_id=trade.seller_id,
                trade_id=trade.id,
            )
            buyer_credit, seller_credit = split.buyer_credit, split.seller_return
            trade.escrow_return = False
        else:
            await self._ledger.refund(session, trade.seller_id, trade.btc_amount_original, trade_id=trade.id)
            buyer_credit, seller_credit = Decimal("0"), trade.btc_amount_original
            trade.escrow_return = True

        trade.award_settled = True
        trade.updated_at = self._clock()

        logger.info(
            f"✅ AWARD_SETTLED: trade {trade.id} ({awarded_to.value}) "
            f"buyer +{buyer_credit} seller +{seller_credit}"
        )
        return SettlementResult(
            trade_id=trade.id,
            awarded_to=awarded_to,
            buyer_credit=buyer_credit,
            seller_credit=seller_credit,
        )
