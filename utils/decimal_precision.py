#!/usr/bin/env python3
"""
Decimal Precision Utilities for Financial Calculations
Enforces consistent Decimal usage across all saldo and escrow amounts
"""

import logging
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union, Optional

logger = logging.getLogger(__name__)

Numeric = Union[str, int, float, Decimal, None]


class MonetaryDecimal:
    """Enforces Decimal-only monetary operations with proper precision"""

    IDR_PRECISION = Decimal("0.01")  # Rupiah amounts are stored with 2 decimal places

    @classmethod
    def to_decimal(cls, value: Numeric, context: str = "monetary", default: Optional[Decimal] = None) -> Decimal:
        """
        Safely convert a stored or client-supplied amount to Decimal.

        Amounts written by older clients may be numbers, numeric strings or
        missing entirely; anything unparseable becomes ``default`` (zero).
        """
        fallback = default if default is not None else Decimal("0")
        if value is None:
            return fallback

        if isinstance(value, bool):
            logger.warning(f"Boolean passed as monetary value in context {context}: {value}")
            return fallback

        if isinstance(value, Decimal):
            return value

        try:
            # Convert to string first to avoid float precision issues
            decimal_value = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            logger.error(f"Failed to convert {value!r} to Decimal in context {context}: {e}")
            return fallback

        if not decimal_value.is_finite():
            logger.error(f"Non-finite monetary value {value!r} in context {context}")
            return fallback

        if abs(decimal_value) > Decimal("999999999999"):
            logger.warning(f"Unusually large monetary value: {decimal_value} in context: {context}")

        return decimal_value

    @classmethod
    def quantize_idr(cls, amount: Numeric) -> Decimal:
        """Quantize amount to ledger precision (2 decimal places)"""
        decimal_amount = cls.to_decimal(amount, "IDR")
        return decimal_amount.quantize(cls.IDR_PRECISION, rounding=ROUND_HALF_UP)


def as_decimal(value: Numeric, default: Optional[Decimal] = None) -> Decimal:
    """Shorthand used by the reconciliation jobs"""
    return MonetaryDecimal.to_decimal(value, default=default)
