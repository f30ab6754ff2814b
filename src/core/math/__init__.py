"""
Core math modules

Fixed-point примитивы и линейная bonding curve с гарантией отсутствия
переполнения.
"""

# Fixed-point safeguards
from src.core.math.fixed_point import (
    BPS_DENOMINATOR,
    MAX_UINT256,
    WAD,
    bps_of,
    checked_add,
    checked_div,
    checked_mul,
    checked_sub,
    ensure_uint256,
    from_wad,
    mul_div,
    to_wad,
    validate_bps,
    validate_non_negative,
    validate_positive,
)

# Bonding curve
from src.core.math.bonding_curve import (
    MAX_PURCHASE_TOKENS,
    PURCHASE_PRECISION,
    average_price,
    cost_between,
    price_at,
    purchase_return,
    sale_return,
    total_cost,
)

__all__ = [
    # Fixed-point: Constants
    "BPS_DENOMINATOR",
    "MAX_UINT256",
    "WAD",
    # Fixed-point: Checked arithmetic
    "bps_of",
    "checked_add",
    "checked_div",
    "checked_mul",
    "checked_sub",
    "ensure_uint256",
    "mul_div",
    # Fixed-point: Conversion
    "from_wad",
    "to_wad",
    # Fixed-point: Validation
    "validate_bps",
    "validate_non_negative",
    "validate_positive",
    # Bonding curve: Constants
    "MAX_PURCHASE_TOKENS",
    "PURCHASE_PRECISION",
    # Bonding curve: Functions
    "average_price",
    "cost_between",
    "price_at",
    "purchase_return",
    "sale_return",
    "total_cost",
]
