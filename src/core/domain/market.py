"""
Market — модель рынка на bonding curve

- CurveParameters: immutable параметры кривой (base_price, slope, target_raise)
- TokenAllocation: распределение total supply при создании (30/60/10)
- MarketSnapshot: immutable снапшот для чтения (getMarket)
- MarketRecord: изменяемая запись рынка внутри MarketFactory

Все количества — fixed-point целые (WAD = 10**18).
Совместимость снапшота с JSON Schema (contracts/schema/market.json).
"""

from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


# =============================================================================
# ENUMS
# =============================================================================


class MarketStatus(str, Enum):
    """Статус торговли по кривой."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


# =============================================================================
# VALUE OBJECTS
# =============================================================================


class CurveParameters(BaseModel):
    """
    Параметры линейной кривой. Неизменяемы после создания рынка.
    """

    base_price: int = Field(..., ge=0, description="Цена при нулевом предложении (WAD)")
    slope: int = Field(..., ge=0, description="Прирост цены на токен (WAD)")
    target_raise: int = Field(..., ge=0, description="Порог graduation по value_raised (WAD)")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _non_degenerate(self) -> "CurveParameters":
        if self.base_price == 0 and self.slope == 0:
            raise ValueError("base_price and slope cannot both be zero")
        return self


class TokenAllocation(BaseModel):
    """
    Распределение total supply при создании рынка.

    quorum + curve + treasury == total_supply (пыль от округления долей
    кворума достаётся последнему агенту).
    """

    quorum: int = Field(..., ge=0, description="Аллокация кворуму (30%)")
    curve: int = Field(..., ge=0, description="Аллокация кривой (60%)")
    treasury: int = Field(..., ge=0, description="Аллокация treasury (10%)")
    per_agent: dict[str, int] = Field(
        default_factory=dict, description="Доли кворума по агентам"
    )

    model_config = {"frozen": True}


# =============================================================================
# SNAPSHOT
# =============================================================================


class MarketSnapshot(BaseModel):
    """
    Immutable снапшот рынка (результат getMarket).
    """

    id: int = Field(..., ge=0)
    name: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    thesis: str = Field("", description="Инвестиционный тезис кворума")
    curve: CurveParameters
    total_supply: int = Field(..., gt=0)
    allocation: TokenAllocation

    tokens_sold: int = Field(..., ge=0)
    value_raised: int = Field(..., ge=0, description="Накопленный raise (не уменьшается)")
    reserve_balance: int = Field(..., ge=0, description="Value, удерживаемое кривой")
    fee_bps: int = Field(..., ge=0, le=10_000)
    current_price: int = Field(..., ge=0)

    status: MarketStatus
    graduated: bool
    created_at_ms: int = Field(..., ge=0)
    graduated_at_ms: Optional[int] = Field(None, ge=0)
    pending_pause_at_ms: Optional[int] = Field(None, ge=0)
    pool_id: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def curve_tokens_remaining(self) -> int:
        return self.allocation.curve - self.tokens_sold


# =============================================================================
# MUTABLE RECORD
# =============================================================================


@dataclass
class MarketRecord:
    """Изменяемое состояние рынка. Меняется только под блокировкой рынка."""

    id: int
    name: str
    symbol: str
    thesis: str
    curve: CurveParameters
    total_supply: int
    allocation: TokenAllocation
    fee_bps: int
    created_at_ms: int

    tokens_sold: int = 0
    value_raised: int = 0
    reserve_balance: int = 0
    status: MarketStatus = MarketStatus.ACTIVE
    graduated: bool = False
    graduated_at_ms: Optional[int] = None
    pending_pause_at_ms: Optional[int] = None
    pool_id: Optional[str] = None

    def evolve(self, **changes) -> "MarketRecord":
        """Копия записи с изменениями (compute-then-commit)."""
        return replace(self, **changes)

    def to_snapshot(self, current_price: int) -> MarketSnapshot:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        return MarketSnapshot(current_price=current_price, **data)
