"""Markets — реестр рынков на bonding curve, торговля и graduation."""

from src.markets.factory import MarketFactory
from src.markets.ports import (
    InMemoryLiquidityPool,
    InMemoryTokenLedger,
    LiquidityPool,
    TokenLedger,
)

__all__ = [
    "MarketFactory",
    "TokenLedger",
    "LiquidityPool",
    "InMemoryTokenLedger",
    "InMemoryLiquidityPool",
]
