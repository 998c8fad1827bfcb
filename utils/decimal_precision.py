#!/usr/bin/env python3
"""
Decimal Precision Utilities for Financial Calculations
Enforces consistent Decimal usage across all monetary operations
"""

import logging
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union

logger = logging.getLogger(__name__)

# Set global decimal precision for financial calculations
getcontext().prec = 28

Numeric = Union[str, int, Decimal]


class MonetaryDecimal:
    """Enforces Decimal-only monetary operations with proper precision"""

    FIAT_PRECISION = Decimal("0.01")  # 2 decimal places for fiat amounts and prices
    CRYPTO_PRECISION = Decimal("0.00000001")  # 8 decimal places (satoshi)
    ZERO = Decimal("0")

    @classmethod
    def to_decimal(cls, value: Union[Numeric, float], context: str = "monetary") -> Decimal:
        """
        Convert a numeric value to Decimal.

        Floats are converted through their string form so 0.1 stays 0.1.
        Raises ValueError for None, NaN, infinities and unparseable input.
        """
        if isinstance(value, Decimal):
            decimal_value = value
        elif value is None or isinstance(value, bool):
            raise ValueError(f"Invalid {context} value: {value!r}")
        else:
            try:
                decimal_value = Decimal(str(value))
            except (InvalidOperation, ValueError) as e:
                logger.warning(f"Failed to convert {value!r} to Decimal in context {context}: {e}")
                raise ValueError(f"Invalid {context} value: {value!r}") from e

        if not decimal_value.is_finite():
            raise ValueError(f"Invalid {context} value: {value!r}")

        return decimal_value

    @classmethod
    def quantize_fiat(cls, amount: Union[Numeric, float]) -> Decimal:
        """Quantize amount to fiat precision (2 decimal places)"""
        decimal_amount = cls.to_decimal(amount, "fiat")
        return decimal_amount.quantize(cls.FIAT_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def quantize_crypto(cls, amount: Union[Numeric, float]) -> Decimal:
        """Quantize amount to crypto precision (8 decimal places)"""
        decimal_amount = cls.to_decimal(amount, "crypto")
        return decimal_amount.quantize(cls.CRYPTO_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def is_sufficient_balance(cls, available: Numeric, required: Numeric) -> bool:
        """Exact comparison at crypto precision, no tolerance"""
        return cls.quantize_crypto(available) >= cls.quantize_crypto(required)

    @classmethod
    def format_fiat(cls, amount: Numeric, currency: str) -> str:
        """Format amount as fiat string with proper precision"""
        return f"{cls.quantize_fiat(amount):,.2f} {currency}"

    @classmethod
    def format_crypto(cls, amount: Numeric, currency: str = "BTC") -> str:
        """Format amount as crypto string with proper precision"""
        amount_decimal = cls.quantize_crypto(amount)
        # Remove trailing zeros for crypto display
        formatted = f"{amount_decimal:f}".rstrip("0").rstrip(".")
        return f"{formatted} {currency}"
