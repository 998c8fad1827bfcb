"""
Trade pricing: derive trade amounts from a market rate and an offer margin.

All arithmetic runs on Decimal at full context precision; rounding happens once,
on the way out (fiat and price to 2 places, crypto to 8, ROUND_HALF_UP).
"""

import logging
from decimal import Decimal
from typing import NamedTuple, Union

from utils.decimal_precision import MonetaryDecimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

Amount = Union[Decimal, int, str]


class PricingResult(NamedTuple):
    """Amounts derived for a single trade"""

    effective_price: Decimal
    fiat_amount_with_margin: Decimal
    btc_amount_with_margin: Decimal


def calculate_pricing(margin: Amount, market_price: Amount, fiat_amount: Amount) -> PricingResult:
    """
    Apply an offer margin to a market price and a requested fiat amount.

    A negative margin is a discount on the unit price and a surcharge on the fiat
    the buyer pays; a positive margin is the reverse. The buyer's crypto amount is
    the margined fiat divided by the unmodified market price.

    Caller guarantees market_price > 0.
    """
    margin = MonetaryDecimal.to_decimal(margin, "margin")
    market_price = MonetaryDecimal.to_decimal(market_price, "market_price")
    fiat_amount = MonetaryDecimal.to_decimal(fiat_amount, "fiat_amount")

    if margin < 0:
        effective_price = market_price * (HUNDRED - abs(margin)) / HUNDRED
        fiat_with_margin = fiat_amount * (HUNDRED + abs(margin)) / HUNDRED
    else:
        effective_price = market_price * (HUNDRED + margin) / HUNDRED
        fiat_with_margin = fiat_amount * (HUNDRED - margin) / HUNDRED

    btc_with_margin = fiat_with_margin / market_price

    return PricingResult(
        effective_price=MonetaryDecimal.quantize_fiat(effective_price),
        fiat_amount_with_margin=MonetaryDecimal.quantize_fiat(fiat_with_margin),
        btc_amount_with_margin=MonetaryDecimal.quantize_crypto(btc_with_margin),
    )


def convert_fiat_to_btc(fiat_amount: Amount, market_price: Amount) -> Decimal:
    """Unmargined fiat to BTC conversion, rounded to 8 places (the escrow amount)"""
    fiat_amount = MonetaryDecimal.to_decimal(fiat_amount, "fiat_amount")
    market_price = MonetaryDecimal.to_decimal(market_price, "market_price")
    return MonetaryDecimal.quantize_crypto(fiat_amount / market_price)
