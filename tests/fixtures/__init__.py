"""
Test Fixtures Package
Time control, price oracle stubs and database row factories
"""

from .time_control import FrozenClock
from .price_stub import StubPriceService
from .trade_factories import (
    create_user,
    create_offer,
    insert_trade,
    get_balance,
    get_trade,
    get_ledger_entries,
    count_trades,
)

__all__ = [
    'FrozenClock',
    'StubPriceService',
    'create_user',
    'create_offer',
    'insert_trade',
    'get_balance',
    'get_trade',
    'get_ledger_entries',
    'count_trades',
]
