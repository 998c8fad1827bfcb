"""
Trade Expiry Service - periodic sweep of OPENED trades past their deadline.

Each due trade is expired in its own transaction through the lifecycle manager,
so one failure never blocks the rest of the batch. Re-running the sweep is safe:
expire is a no-op on trades that are already CANCELLED_SYSTEM.
"""

import logging
from typing import Any, Dict

from services.trade_lifecycle import TradeLifecycleManager
from utils.error_handler import InvalidStateTransition, TradeEngineError

logger = logging.getLogger(__name__)


class TradeExpiryService:
    """Finds due trades and hands each one to TradeLifecycleManager.expire"""

    def __init__(self, manager: TradeLifecycleManager, batch_size: int = 50):
        self.manager = manager
        self.batch_size = batch_size

    async def process_expired_trades(self) -> Dict[str, Any]:
        """
        Expire every OPENED trade whose expiry_time has passed (up to batch_size)

        Returns:
            {"processed", "expired_trades", "skipped", "errors"}
        """
        results: Dict[str, Any] = {
            "processed": 0,
            "expired_trades": [],
            "skipped": [],
            "errors": [],
        }

        try:
            due_trades = await self.manager.find_expired(limit=self.batch_size)
        except TradeEngineError as e:
            logger.error(f"❌ EXPIRY_SWEEP_ERROR: could not load due trades: {e}")
            results["errors"].append(str(e))
            return results

        logger.info(f"🔍 EXPIRY_SWEEP: found {len(due_trades)} trades past expiry")

        for due in due_trades:
            results["processed"] += 1
            try:
                trade = await self.manager.expire(due.id)
                results["expired_trades"].append(trade.id)
            except InvalidStateTransition as e:
                # Paid, cancelled or disputed between the query and the lock
                logger.info(f"EXPIRY_SWEEP_SKIPPED: trade {due.id}: {e.message}")
                results["skipped"].append(due.id)
            except TradeEngineError as e:
                logger.error(f"❌ EXPIRY_SWEEP_ERROR: trade {due.id}: {e.code}: {e.message}")
                results["errors"].append(f"{due.id}: {e.message}")

        if results["expired_trades"]:
            logger.info(f"✅ EXPIRY_SWEEP: expired {len(results['expired_trades'])} trades")
        return results
