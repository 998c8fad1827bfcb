"""
Trade Routes
FastAPI routes exposing the trade lifecycle to clients and moderators
"""

import logging

from fastapi import APIRouter, Depends, Request

from middleware.auth_security import get_current_user_id
from middleware.geolocation import get_network_signal
from models import DisputeParty
from routes.trade_schemas import (
    CancelTradeRequest,
    CreateTradeRequest,
    OpenDisputeRequest,
    ResolveDisputeRequest,
    TradeFilterRequest,
    serialize_trade,
)
from services.eligibility_checker import NetworkSignal
from services.trade_lifecycle import TradeLifecycleManager
from services.trade_repository import TradeFilter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/trades", tags=["trades"])


def get_trade_manager(request: Request) -> TradeLifecycleManager:
    return request.app.state.trade_manager


@router.post("", status_code=201)
async def create_trade(
    body: CreateTradeRequest,
    user_id: int = Depends(get_current_user_id),
    network: NetworkSignal = Depends(get_network_signal),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    """Open a trade; a repeated request_id is rejected with 409"""
    trade = await manager.create(
        requester_id=user_id,
        offer_id=body.offer_id,
        fiat_amount=body.fiat_amount,
        request_id=body.request_id,
        network=network,
    )
    return {"success": True, "data": serialize_trade(trade)}


@router.get("/mine")
async def list_my_trades(
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    trades = await manager.list_for_user(user_id)
    return {"success": True, "data": [serialize_trade(t) for t in trades]}


@router.post("/filter")
async def filter_trades(
    body: TradeFilterRequest,
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    await manager.require_moderator(user_id)
    criteria = TradeFilter(
        status=body.status.value if body.status else None,
        buyer_id=body.buyer_id,
        seller_id=body.seller_id,
        offer_id=body.offer_id,
        min_amount=body.min_amount,
        max_amount=body.max_amount,
        dispute_started=body.dispute_started,
        page=body.page,
        limit=body.limit,
    )
    page = await manager.filter(criteria)
    return {
        "success": True,
        "data": [serialize_trade(t) for t in page.items],
        "meta": page.to_meta(),
    }


@router.get("/expired")
async def list_expired_trades(
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    await manager.require_moderator(user_id)
    trades = await manager.find_expired()
    return {"success": True, "data": [serialize_trade(t) for t in trades]}


@router.get("/disputed")
async def list_disputed_trades(
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    await manager.require_moderator(user_id)
    trades = await manager.find_disputed()
    return {"success": True, "data": [serialize_trade(t) for t in trades]}


@router.get("/request/{request_id}")
async def get_trade_by_request_id(
    request_id: str,
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    trade = await manager.find_by_request_id(request_id)
    if trade is None or trade.party_of(user_id) is None:
        return {"success": True, "data": None}
    return {"success": True, "data": serialize_trade(trade)}


@router.get("/{trade_id}")
async def get_trade(
    trade_id: int,
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    trade = await manager.get_for_participant(trade_id, user_id)
    return {"success": True, "data": serialize_trade(trade)}


@router.post("/{trade_id}/paid")
async def mark_trade_paid(
    trade_id: int,
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    trade = await manager.mark_paid(trade_id, user_id)
    return {"success": True, "message": "Trade marked as paid", "data": serialize_trade(trade)}


@router.post("/{trade_id}/cancel")
async def cancel_trade(
    trade_id: int,
    body: CancelTradeRequest,
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    trade = await manager.cancel(trade_id, user_id, body.reason)
    return {"success": True, "message": "Trade cancelled", "data": serialize_trade(trade)}


@router.post("/{trade_id}/dispute")
async def open_dispute(
    trade_id: int,
    body: OpenDisputeRequest,
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    trade = await manager.open_dispute(trade_id, user_id, body.reason, body.explanation)
    return {"success": True, "message": "Dispute opened", "data": serialize_trade(trade)}


@router.post("/{trade_id}/resolve")
async def resolve_dispute(
    trade_id: int,
    body: ResolveDisputeRequest,
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    trade = await manager.resolve_dispute(trade_id, user_id, DisputeParty(body.awarded_to), body.mod_notes)
    return {
        "success": True,
        "message": f"Dispute resolved in favor of {body.awarded_to}",
        "data": serialize_trade(trade),
    }


@router.post("/{trade_id}/settle")
async def settle_award(
    trade_id: int,
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    trade = await manager.settle_award(trade_id, user_id)
    return {"success": True, "message": "Award settled", "data": serialize_trade(trade)}


@router.post("/{trade_id}/release")
async def release_crypto(
    trade_id: int,
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    trade = await manager.release_crypto(trade_id, user_id)
    return {"success": True, "message": "Crypto released", "data": serialize_trade(trade)}


@router.post("/{trade_id}/reopen")
async def reopen_trade(
    trade_id: int,
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    trade = await manager.reopen(trade_id, user_id)
    return {"success": True, "message": "Trade reopened", "data": serialize_trade(trade)}


@router.post("/{trade_id}/expire")
async def expire_trade(
    trade_id: int,
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    await manager.require_moderator(user_id)
    trade = await manager.expire(trade_id)
    return {"success": True, "message": "Trade expired", "data": serialize_trade(trade)}


@router.delete("/{trade_id}")
async def delete_trade(
    trade_id: int,
    user_id: int = Depends(get_current_user_id),
    manager: TradeLifecycleManager = Depends(get_trade_manager),
):
    await manager.delete(trade_id, user_id)
    return {"success": True, "message": "Trade deleted"}
