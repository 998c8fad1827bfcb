"""Request bodies and response serialization for the trade routes"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from models import Trade, TradeStatus


class CreateTradeRequest(BaseModel):
    offer_id: int = Field(gt=0)
    fiat_amount: Decimal = Field(gt=0, max_digits=20, decimal_places=2)
    # Client-supplied idempotency key
    request_id: str = Field(min_length=1, max_length=100)


class CancelTradeRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class OpenDisputeRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=255)
    explanation: str = Field(min_length=10, max_length=5000)


class ResolveDisputeRequest(BaseModel):
    awarded_to: Literal["buyer", "seller"]
    mod_notes: Optional[str] = Field(None, max_length=5000)


class TradeFilterRequest(BaseModel):
    status: Optional[TradeStatus] = None
    buyer_id: Optional[int] = None
    seller_id: Optional[int] = None
    offer_id: Optional[int] = None
    min_amount: Optional[Decimal] = Field(None, ge=0)
    max_amount: Optional[Decimal] = Field(None, ge=0)
    dispute_started: Optional[bool] = None
    page: int = Field(1, ge=1)
    limit: Optional[int] = Field(None, ge=1, le=100)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def serialize_trade(trade: Trade) -> Dict[str, Any]:
    """Trade as JSON-safe dict; money stays exact as strings"""
    return {
        "id": trade.id,
        "request_id": trade.request_id,
        "buyer_id": trade.buyer_id,
        "seller_id": trade.seller_id,
        "offer_id": trade.offer_id,
        "currency": trade.currency,
        "fiat_amount_original": _money(trade.fiat_amount_original),
        "fiat_amount_with_margin": _money(trade.fiat_amount_with_margin),
        "btc_amount_original": _money(trade.btc_amount_original),
        "btc_amount_with_margin": _money(trade.btc_amount_with_margin),
        "price": _money(trade.price),
        "status": trade.status,
        "cancelled": trade.cancelled,
        "escrow_return": trade.escrow_return,
        "moderator_flag": trade.moderator_flag,
        "flag_expired": trade.flag_expired,
        "dispute_started": trade.dispute_started,
        "dispute_time": _iso(trade.dispute_time),
        "dispute_reason": trade.dispute_reason,
        "dispute_explanation": trade.dispute_explanation,
        "dispute_started_by": trade.dispute_started_by,
        "dispute_mod_notes": trade.dispute_mod_notes,
        "dispute_time_resolve": _iso(trade.dispute_time_resolve),
        "award_settled": trade.award_settled,
        "expiry_time": _iso(trade.expiry_time),
        "created_at": _iso(trade.created_at),
        "updated_at": _iso(trade.updated_at),
    }
