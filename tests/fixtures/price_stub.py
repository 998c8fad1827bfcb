"""In-memory stand-in for the price oracle"""

from decimal import Decimal
from typing import Dict, Optional

from utils.error_handler import PriceUnavailable


class StubPriceService:
    """Returns fixed BTC prices per currency, or raises a configured error"""

    def __init__(self, prices: Optional[Dict[str, Decimal]] = None):
        self.prices = prices if prices is not None else {"USD": Decimal("50000")}
        self.error: Optional[Exception] = None
        self.calls = []

    async def get_price(self, currency: str) -> Decimal:
        self.calls.append(currency)
        if self.error is not None:
            raise self.error
        if currency not in self.prices:
            raise PriceUnavailable(f"No BTC rate available for {currency}")
        return self.prices[currency]
