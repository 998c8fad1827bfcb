"""
Trade State Transition Validator
================================

Single source of truth for the trade lifecycle graph. Every status write in the
lifecycle manager goes through TradeStateValidator.apply_transition, so a trade
can never move along an edge that is not listed here.
"""

import logging
from enum import Enum
from typing import Dict, Optional, Set, Tuple

from models import Trade, TradeStatus
from utils.error_handler import InvalidStateTransition

logger = logging.getLogger(__name__)


class TradeTrigger(Enum):
    """Operations that move a trade between states"""

    MARK_PAID = "mark_paid"
    CANCEL = "cancel"
    OPEN_DISPUTE = "open_dispute"
    RELEASE_CRYPTO = "release_crypto"
    RESOLVE_DISPUTE = "resolve_dispute"
    REOPEN = "reopen"
    EXPIRE = "expire"


class TradeStateValidator:
    """Validates trade state transitions"""

    VALID_TRANSITIONS: Dict[TradeStatus, Set[TradeStatus]] = {
        TradeStatus.OPENED: {
            TradeStatus.PAID,
            TradeStatus.CANCELLED_BUYER,
            TradeStatus.CANCELLED_SELLER,
            TradeStatus.CANCELLED_SYSTEM,
            TradeStatus.DISPUTED,
        },
        TradeStatus.PAID: {
            TradeStatus.SUCCESSFUL,
            TradeStatus.DISPUTED,
        },
        TradeStatus.DISPUTED: {
            TradeStatus.AWARDED_BUYER,
            TradeStatus.AWARDED_SELLER,
        },
        # Semi-terminal: a party may reopen
        TradeStatus.CANCELLED_BUYER: {TradeStatus.OPENED},
        TradeStatus.CANCELLED_SELLER: {TradeStatus.OPENED},
        TradeStatus.SUCCESSFUL: set(),
        TradeStatus.CANCELLED_SYSTEM: set(),
        TradeStatus.AWARDED_BUYER: set(),
        TradeStatus.AWARDED_SELLER: set(),
    }

    # Which source states each trigger may fire from
    TRIGGER_SOURCES: Dict[TradeTrigger, Set[TradeStatus]] = {
        TradeTrigger.MARK_PAID: {TradeStatus.OPENED},
        TradeTrigger.CANCEL: {TradeStatus.OPENED},
        TradeTrigger.OPEN_DISPUTE: {TradeStatus.OPENED, TradeStatus.PAID},
        TradeTrigger.RELEASE_CRYPTO: {TradeStatus.PAID},
        TradeTrigger.RESOLVE_DISPUTE: {TradeStatus.DISPUTED},
        TradeTrigger.REOPEN: {TradeStatus.CANCELLED_BUYER, TradeStatus.CANCELLED_SELLER},
        TradeTrigger.EXPIRE: {TradeStatus.OPENED},
    }

    # Which target states each trigger may write
    TRIGGER_TARGETS: Dict[TradeTrigger, Set[TradeStatus]] = {
        TradeTrigger.MARK_PAID: {TradeStatus.PAID},
        TradeTrigger.CANCEL: {TradeStatus.CANCELLED_BUYER, TradeStatus.CANCELLED_SELLER},
        TradeTrigger.OPEN_DISPUTE: {TradeStatus.DISPUTED},
        TradeTrigger.RELEASE_CRYPTO: {TradeStatus.SUCCESSFUL},
        TradeTrigger.RESOLVE_DISPUTE: {TradeStatus.AWARDED_BUYER, TradeStatus.AWARDED_SELLER},
        TradeTrigger.REOPEN: {TradeStatus.OPENED},
        TradeTrigger.EXPIRE: {TradeStatus.CANCELLED_SYSTEM},
    }

    TERMINAL_STATES: Set[TradeStatus] = {
        TradeStatus.SUCCESSFUL,
        TradeStatus.CANCELLED_SYSTEM,
        TradeStatus.AWARDED_BUYER,
        TradeStatus.AWARDED_SELLER,
    }

    @classmethod
    def validate_transition(
        cls,
        current_status: TradeStatus,
        new_status: TradeStatus,
        trigger: Optional[TradeTrigger] = None,
    ) -> Tuple[bool, Optional[str]]:
        """
        Check a status change against the lifecycle graph.

        Returns:
            (is_valid, reason) where reason explains a rejection
        """
        if trigger is not None and current_status not in cls.TRIGGER_SOURCES[trigger]:
            return False, f"{trigger.value} is not allowed from {current_status.value}"
        if trigger is not None and new_status not in cls.TRIGGER_TARGETS[trigger]:
            return False, f"{trigger.value} cannot move a trade to {new_status.value}"

        if new_status not in cls.VALID_TRANSITIONS.get(current_status, set()):
            return False, f"{current_status.value} -> {new_status.value} is not a lifecycle edge"

        return True, None

    @classmethod
    def ensure_trigger_allowed(cls, trade: Trade, trigger: TradeTrigger) -> TradeStatus:
        """Raise InvalidStateTransition unless the trigger may fire from the trade's status"""
        current = TradeStatus(trade.status)
        if current not in cls.TRIGGER_SOURCES[trigger]:
            logger.info(
                f"STATE_TRANSITION_REJECTED: trade {trade.id} {trigger.value} from {current.value}"
            )
            raise InvalidStateTransition(current.value, trigger.value)
        return current

    @classmethod
    def apply_transition(
        cls, trade: Trade, new_status: TradeStatus, trigger: TradeTrigger
    ) -> None:
        """Validate and write the new status on the trade"""
        current = TradeStatus(trade.status)
        is_valid, reason = cls.validate_transition(current, new_status, trigger)
        if not is_valid:
            logger.info(f"STATE_TRANSITION_REJECTED: trade {trade.id} {reason}")
            raise InvalidStateTransition(current.value, new_status.value, reason)

        trade.status = new_status.value
        logger.debug(f"STATE_TRANSITION: trade {trade.id} {current.value} -> {new_status.value}")

    @classmethod
    def is_terminal(cls, status: TradeStatus) -> bool:
        return status in cls.TERMINAL_STATES
