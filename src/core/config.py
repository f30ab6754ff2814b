"""
Configuration — параметры рынков и governance

Все "глобальные" константы (окно голосования, порог 66.66%, комиссия,
аллокации) передаются явно при создании MarketFactory / GovernanceEngine,
поэтому несколько независимых экземпляров (и тесты) могут их варьировать.

Environment Variables (from_env):
- QM_BASE_PRICE, QM_SLOPE, QM_TARGET_RAISE, QM_TOTAL_SUPPLY (WAD integers)
- QM_FEE_BPS, QM_MAX_FEE_BPS, QM_MIN_PURCHASE, QM_GRADUATION_LIQUIDITY_BPS
- QM_PAUSE_TIMELOCK_MS
- QM_VOTING_PERIOD_MS, QM_EXECUTION_WINDOW_MS, QM_APPROVAL_THRESHOLD_BPS
- QM_MIN_QUORUM_SIZE, QM_MAX_QUORUM_SIZE
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final

from src.core.math.fixed_point import (
    BPS_DENOMINATOR,
    WAD,
    validate_bps,
    validate_non_negative,
    validate_positive,
)

# =============================================================================
# ЗНАЧЕНИЯ ПО УМОЛЧАНИЮ
# =============================================================================

DEFAULT_BASE_PRICE: Final[int] = 10**14  # 0.0001
DEFAULT_SLOPE: Final[int] = 2 * 10**9  # 0.000000002
DEFAULT_TARGET_RAISE: Final[int] = 10 * WAD
DEFAULT_TOTAL_SUPPLY: Final[int] = 1_000_000 * WAD

DEFAULT_FEE_BPS: Final[int] = 50  # 0.5%
DEFAULT_MAX_FEE_BPS: Final[int] = 500  # 5%
DEFAULT_MIN_PURCHASE: Final[int] = 10**15  # 0.001

MS_PER_HOUR: Final[int] = 60 * 60 * 1000
MS_PER_DAY: Final[int] = 24 * MS_PER_HOUR


def _get_int_env(key: str, default: int) -> int:
    """
    Целочисленная переменная окружения с fallback на default.

    Args:
        key: Имя переменной окружения
        default: Значение, если переменная не задана или некорректна

    Returns:
        Распарсенное значение или default
    """
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# =============================================================================
# MARKET CONFIG
# =============================================================================


@dataclass(frozen=True)
class MarketConfig:
    """Конфигурация MarketFactory.

    - Параметры кривой по умолчанию для рынков, создаваемых governance
    - Распределение total supply: 30% кворуму, 60% кривой, 10% treasury
    - Торговая комиссия (bps), удерживается из value_in / value_out
    - Доля резерва, передаваемая в liquidity pool при graduation
    - Границы кворума, с которыми create_market перепроверяет состав
    """

    base_price: int = DEFAULT_BASE_PRICE
    slope: int = DEFAULT_SLOPE
    target_raise: int = DEFAULT_TARGET_RAISE
    total_supply: int = DEFAULT_TOTAL_SUPPLY

    quorum_allocation_bps: int = 3_000
    curve_allocation_bps: int = 6_000
    treasury_allocation_bps: int = 1_000

    fee_bps: int = DEFAULT_FEE_BPS
    max_fee_bps: int = DEFAULT_MAX_FEE_BPS
    min_purchase: int = DEFAULT_MIN_PURCHASE
    graduation_liquidity_bps: int = BPS_DENOMINATOR

    pause_timelock_ms: int = 24 * MS_PER_HOUR

    min_quorum_size: int = 3
    max_quorum_size: int = 10
    required_weight_total: int = 100

    curve_account: str = "curve"
    treasury_account: str = "protocol-treasury"

    def __post_init__(self) -> None:
        validate_non_negative(self.base_price, "base_price")
        validate_non_negative(self.slope, "slope")
        validate_non_negative(self.target_raise, "target_raise")
        validate_positive(self.total_supply, "total_supply")
        if self.base_price == 0 and self.slope == 0:
            raise ValueError("base_price and slope cannot both be zero")

        allocation_total = (
            self.quorum_allocation_bps
            + self.curve_allocation_bps
            + self.treasury_allocation_bps
        )
        if allocation_total != BPS_DENOMINATOR:
            raise ValueError(
                f"Allocations must sum to {BPS_DENOMINATOR} bps, got {allocation_total}"
            )

        validate_bps(self.max_fee_bps, "max_fee_bps")
        validate_bps(self.fee_bps, "fee_bps", max_bps=self.max_fee_bps)
        validate_bps(self.graduation_liquidity_bps, "graduation_liquidity_bps")
        validate_non_negative(self.min_purchase, "min_purchase")
        validate_non_negative(self.pause_timelock_ms, "pause_timelock_ms")
        validate_positive(self.min_quorum_size, "min_quorum_size")
        validate_positive(self.required_weight_total, "required_weight_total")
        if self.max_quorum_size < self.min_quorum_size:
            raise ValueError(
                f"max_quorum_size ({self.max_quorum_size}) must be >= "
                f"min_quorum_size ({self.min_quorum_size})"
            )

        if self.curve_account == self.treasury_account:
            raise ValueError("curve_account and treasury_account must differ")

    @classmethod
    def from_env(cls) -> "MarketConfig":
        """Конфигурация с переопределениями из переменных окружения QM_*."""
        return cls(
            base_price=_get_int_env("QM_BASE_PRICE", DEFAULT_BASE_PRICE),
            slope=_get_int_env("QM_SLOPE", DEFAULT_SLOPE),
            target_raise=_get_int_env("QM_TARGET_RAISE", DEFAULT_TARGET_RAISE),
            total_supply=_get_int_env("QM_TOTAL_SUPPLY", DEFAULT_TOTAL_SUPPLY),
            fee_bps=_get_int_env("QM_FEE_BPS", DEFAULT_FEE_BPS),
            max_fee_bps=_get_int_env("QM_MAX_FEE_BPS", DEFAULT_MAX_FEE_BPS),
            min_purchase=_get_int_env("QM_MIN_PURCHASE", DEFAULT_MIN_PURCHASE),
            graduation_liquidity_bps=_get_int_env(
                "QM_GRADUATION_LIQUIDITY_BPS", BPS_DENOMINATOR
            ),
            pause_timelock_ms=_get_int_env("QM_PAUSE_TIMELOCK_MS", 24 * MS_PER_HOUR),
            min_quorum_size=_get_int_env("QM_MIN_QUORUM_SIZE", 3),
            max_quorum_size=_get_int_env("QM_MAX_QUORUM_SIZE", 10),
        )


# =============================================================================
# GOVERNANCE CONFIG
# =============================================================================


@dataclass(frozen=True)
class GovernanceConfig:
    """Конфигурация GovernanceEngine.

    - voting_period_ms: окно голосования от момента создания (3 дня)
    - execution_window_ms: окно исполнения после закрытия голосования (7 дней)
    - approval_threshold_bps: порог 2/3 для weighted-типов (6666 = 66.66%)
    - min/max_quorum_size: допустимый размер кворума (3-10)
    - required_weight_total: сумма весов при формировании кворума (100)
    """

    voting_period_ms: int = 3 * MS_PER_DAY
    execution_window_ms: int = 7 * MS_PER_DAY
    approval_threshold_bps: int = 6_666
    min_quorum_size: int = 3
    max_quorum_size: int = 10
    required_weight_total: int = 100

    def __post_init__(self) -> None:
        validate_positive(self.voting_period_ms, "voting_period_ms")
        validate_positive(self.execution_window_ms, "execution_window_ms")
        validate_bps(self.approval_threshold_bps, "approval_threshold_bps")
        validate_positive(self.min_quorum_size, "min_quorum_size")
        validate_positive(self.required_weight_total, "required_weight_total")
        if self.max_quorum_size < self.min_quorum_size:
            raise ValueError(
                f"max_quorum_size ({self.max_quorum_size}) must be >= "
                f"min_quorum_size ({self.min_quorum_size})"
            )

    @classmethod
    def from_env(cls) -> "GovernanceConfig":
        """Конфигурация с переопределениями из переменных окружения QM_*."""
        return cls(
            voting_period_ms=_get_int_env("QM_VOTING_PERIOD_MS", 3 * MS_PER_DAY),
            execution_window_ms=_get_int_env("QM_EXECUTION_WINDOW_MS", 7 * MS_PER_DAY),
            approval_threshold_bps=_get_int_env("QM_APPROVAL_THRESHOLD_BPS", 6_666),
            min_quorum_size=_get_int_env("QM_MIN_QUORUM_SIZE", 3),
            max_quorum_size=_get_int_env("QM_MAX_QUORUM_SIZE", 10),
        )
