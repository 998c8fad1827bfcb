"""Error types and standardized responses for the trade escrow engine"""

import logging
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict
from enum import Enum

from utils.datetime_helpers import get_naive_utc_now

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Error categories for classification"""

    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    ELIGIBILITY = "eligibility"
    STATE = "state"
    BALANCE = "balance"
    EXTERNAL_API = "external_api"
    DATABASE = "database"
    NOT_FOUND = "not_found"


class ErrorCodes:
    """Centralized error codes"""

    # Eligibility
    OFFER_NOT_FOUND = "OFFER_NOT_FOUND"
    OFFER_INACTIVE = "OFFER_INACTIVE"
    SELF_TRADE = "SELF_TRADE"
    ACCOUNT_NOT_ACTIVE = "ACCOUNT_NOT_ACTIVE"
    OFFER_DEAUTHORIZED = "OFFER_DEAUTHORIZED"
    VERIFICATION_REQUIRED = "VERIFICATION_REQUIRED"
    FULL_NAME_REQUIRED = "FULL_NAME_REQUIRED"
    AMOUNT_OUT_OF_BOUNDS = "AMOUNT_OUT_OF_BOUNDS"
    INSUFFICIENT_TRADE_HISTORY = "INSUFFICIENT_TRADE_HISTORY"
    GEO_RESTRICTED = "GEO_RESTRICTED"

    # Creation / ledger
    DUPLICATE_REQUEST_ID = "DUPLICATE_REQUEST_ID"
    PRICE_UNAVAILABLE = "PRICE_UNAVAILABLE"
    INSUFFICIENT_ESCROW_BALANCE = "INSUFFICIENT_ESCROW_BALANCE"

    # Lifecycle
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    NOT_PARTICIPANT = "NOT_PARTICIPANT"
    NOT_MODERATOR = "NOT_MODERATOR"
    DISPUTE_ALREADY_OPEN = "DISPUTE_ALREADY_OPEN"
    NO_DISPUTE_EXISTS = "NO_DISPUTE_EXISTS"

    # Lookups and infrastructure
    TRADE_NOT_FOUND = "TRADE_NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    SERVICE_ERROR = "SERVICE_ERROR"


@dataclass
class StandardError:
    """Standard error response structure"""

    code: str
    message: str
    category: ErrorCategory
    details: Optional[Dict[str, Any]] = None
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = get_naive_utc_now().isoformat()

    def to_response(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        return {"success": False, "error": data.pop("code"), **data}


class TradeEngineError(Exception):
    """Base class for every caller-facing engine error"""

    code = ErrorCodes.SERVICE_ERROR
    category = ErrorCategory.VALIDATION
    http_status = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_standard_error(self) -> StandardError:
        return StandardError(
            code=self.code,
            message=self.message,
            category=self.category,
            details=self.details or None,
        )


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------


class OfferNotFound(TradeEngineError):
    code = ErrorCodes.OFFER_NOT_FOUND
    category = ErrorCategory.NOT_FOUND
    http_status = 404


class OfferInactive(TradeEngineError):
    code = ErrorCodes.OFFER_INACTIVE
    category = ErrorCategory.ELIGIBILITY


class SelfTrade(TradeEngineError):
    code = ErrorCodes.SELF_TRADE
    category = ErrorCategory.ELIGIBILITY


class AccountNotActive(TradeEngineError):
    """Requester health is anything other than active"""

    code = ErrorCodes.ACCOUNT_NOT_ACTIVE
    category = ErrorCategory.ELIGIBILITY
    http_status = 403

    def __init__(self, health: str):
        super().__init__(f"Account is {health}", {"health": health})
        self.health = health


class OfferDeauthorized(TradeEngineError):
    code = ErrorCodes.OFFER_DEAUTHORIZED
    category = ErrorCategory.ELIGIBILITY
    http_status = 403


class VerificationRequired(TradeEngineError):
    code = ErrorCodes.VERIFICATION_REQUIRED
    category = ErrorCategory.ELIGIBILITY
    http_status = 403


class FullNameRequired(TradeEngineError):
    code = ErrorCodes.FULL_NAME_REQUIRED
    category = ErrorCategory.ELIGIBILITY
    http_status = 403


class AmountOutOfBounds(TradeEngineError):
    code = ErrorCodes.AMOUNT_OUT_OF_BOUNDS
    category = ErrorCategory.VALIDATION


class InsufficientTradeHistory(TradeEngineError):
    code = ErrorCodes.INSUFFICIENT_TRADE_HISTORY
    category = ErrorCategory.ELIGIBILITY
    http_status = 403


class GeoRestricted(TradeEngineError):
    code = ErrorCodes.GEO_RESTRICTED
    category = ErrorCategory.ELIGIBILITY
    http_status = 403


# ---------------------------------------------------------------------------
# Creation and ledger
# ---------------------------------------------------------------------------


class DuplicateRequestId(TradeEngineError):
    code = ErrorCodes.DUPLICATE_REQUEST_ID
    category = ErrorCategory.VALIDATION
    http_status = 409

    def __init__(self, request_id: str):
        super().__init__(f"Trade with request_id {request_id} already exists", {"request_id": request_id})
        self.request_id = request_id


class PriceUnavailable(TradeEngineError):
    code = ErrorCodes.PRICE_UNAVAILABLE
    category = ErrorCategory.EXTERNAL_API
    http_status = 503


class InsufficientEscrowBalance(TradeEngineError):
    code = ErrorCodes.INSUFFICIENT_ESCROW_BALANCE
    category = ErrorCategory.BALANCE

    def __init__(self, user_id: int, required, available):
        super().__init__(
            f"Insufficient balance to lock escrow: required {required}, available {available}",
            {"user_id": user_id, "required": str(required), "available": str(available)},
        )
        self.user_id = user_id
        self.required = required
        self.available = available


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class InvalidStateTransition(TradeEngineError):
    """Trigger not allowed from the trade's current status"""

    code = ErrorCodes.INVALID_STATE_TRANSITION
    category = ErrorCategory.STATE
    http_status = 409

    def __init__(self, current_status: str, attempted: str, reason: Optional[str] = None):
        message = f"Cannot {attempted} a trade in status {current_status}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(
            message,
            {"current_status": current_status, "attempted": attempted, "reason": reason},
        )
        self.current_status = current_status
        self.attempted = attempted
        self.reason = reason


class NotParticipant(TradeEngineError):
    code = ErrorCodes.NOT_PARTICIPANT
    category = ErrorCategory.AUTHORIZATION
    http_status = 403


class NotModerator(TradeEngineError):
    code = ErrorCodes.NOT_MODERATOR
    category = ErrorCategory.AUTHORIZATION
    http_status = 403


class DisputeAlreadyOpen(InvalidStateTransition):
    """Dispute flag already set; a more specific invalid transition"""

    code = ErrorCodes.DISPUTE_ALREADY_OPEN


class NoDisputeExists(InvalidStateTransition):
    """Resolve attempted on a trade with no open dispute"""

    code = ErrorCodes.NO_DISPUTE_EXISTS


# ---------------------------------------------------------------------------
# Lookups and infrastructure
# ---------------------------------------------------------------------------


class TradeNotFound(TradeEngineError):
    code = ErrorCodes.TRADE_NOT_FOUND
    category = ErrorCategory.NOT_FOUND
    http_status = 404


class UserNotFound(TradeEngineError):
    code = ErrorCodes.USER_NOT_FOUND
    category = ErrorCategory.NOT_FOUND
    http_status = 404


class InvalidInput(TradeEngineError):
    code = ErrorCodes.INVALID_INPUT
    category = ErrorCategory.VALIDATION


class TradeServiceError(TradeEngineError):
    """Infrastructure failure (database, transport) surfaced generically"""

    code = ErrorCodes.SERVICE_ERROR
    category = ErrorCategory.DATABASE
    http_status = 500
