"""
Linear Bonding Curve — цена, стоимость и инверсия покупки

Модуль реализует линейную bonding curve над fixed-point целыми (WAD = 10**18):

ФОРМУЛЫ:
    price(s)        = base_price + slope * s / WAD
    total_cost(n)   = base_price * n / WAD + slope * n² / (2 * WAD²)
    cost(s → s+n)   = total_cost(s + n) - total_cost(s)

- Покупка задаётся value_in, поэтому tokens_out ищется бинарным поиском:
  замкнутая формула требует sqrt и теряет детерминизм на округлениях
- Продажа задаётся tokens_in, поэтому value_out считается точно (без поиска)

КРИТИЧЕСКИЕ ИНВАРИАНТЫ:
1. price(s) не убывает по s
2. total_cost(0) == 0
3. cost(s → s + purchase_return(s, v)) <= v  (поиск возвращает нижнюю границу)
4. sale_return(s, n) == total_cost(s) - total_cost(s - n) точно
5. Переполнение → ArithmeticOverflow, никогда не wraparound
"""

import math
from typing import Final

from src.core.errors import (
    ArithmeticOverflow,
    InsufficientTokensHeld,
    InvalidCurveParameters,
)
from src.core.math.fixed_point import (
    MAX_UINT512,
    WAD,
    checked_add,
    checked_sub,
    ensure_uint256,
    mul_div,
    validate_non_negative,
)

# =============================================================================
# ПАРАМЕТРЫ ПОИСКА
# =============================================================================

# Точность бинарного поиска: 0.001 токена
PURCHASE_PRECISION: Final[int] = 10**15

# Верхняя граница интервала поиска (заведомо больше любого total supply)
MAX_PURCHASE_TOKENS: Final[int] = 2**128 - 1


# =============================================================================
# ЦЕНА И СТОИМОСТЬ
# =============================================================================


def price_at(base_price: int, slope: int, tokens_sold: int) -> int:
    """
    Мгновенная цена при текущем предложении.

    price(s) = base_price + slope * s / WAD

    Args:
        base_price: Цена при нулевом предложении (value per token, WAD)
        slope: Прирост цены на один проданный токен (WAD)
        tokens_sold: Проданные токены (WAD)

    Returns:
        Цена одного токена (WAD)
    """
    return checked_add(base_price, mul_div(slope, tokens_sold, WAD))


def _quadratic_term(slope: int, tokens: int) -> int:
    # slope * n² / (2 * WAD²) с широким промежуточным произведением
    ensure_uint256(slope, "quadratic")
    ensure_uint256(tokens, "quadratic")
    numerator = slope * tokens * tokens
    if numerator > MAX_UINT512:
        raise ArithmeticOverflow("quadratic cost term exceeds uint512 intermediate")
    return ensure_uint256(numerator // (2 * WAD * WAD), "quadratic")


def total_cost(base_price: int, slope: int, tokens: int) -> int:
    """
    Стоимость покупки первых `tokens` токенов (интеграл price от 0 до tokens).

    total_cost(n) = base_price * n / WAD + slope * n² / (2 * WAD²)

    Examples:
        >>> total_cost(10**14, 10**10, 0)
        0
    """
    linear = mul_div(base_price, tokens, WAD)
    return checked_add(linear, _quadratic_term(slope, tokens))


def cost_between(base_price: int, slope: int, start: int, end: int) -> int:
    """Стоимость перехода предложения start → end (end >= start)."""
    if end < start:
        raise ValueError(f"end ({end}) must be >= start ({start})")
    return checked_sub(
        total_cost(base_price, slope, end), total_cost(base_price, slope, start)
    )


# =============================================================================
# ПОКУПКА (ИНВЕРСИЯ)
# =============================================================================


def _purchase_upper_bound(base_price: int, slope: int, value_in: int) -> int:
    """
    Дешёвая верхняя оценка tokens_out, для которой cost >= value_in.

    - base_price > 0: линейный член уже покрывает value_in
    - base_price == 0: оценка по квадратичному члену
    """
    if base_price > 0:
        return value_in * WAD // base_price + 1

    if slope == 0:
        raise InvalidCurveParameters("base_price and slope cannot both be zero")

    # ceil(2 * v * WAD² / slope)
    squared = -(-2 * value_in * WAD * WAD // slope)
    return math.isqrt(squared) + 1


def purchase_return(
    base_price: int,
    slope: int,
    tokens_sold: int,
    value_in: int,
    precision: int = PURCHASE_PRECISION,
) -> int:
    """
    Количество токенов, покупаемых на value_in при текущем предложении.

    Решает cost(s → s + n) = value_in монотонным бинарным поиском по n
    в [0, upper_bound]. Поиск продолжается, пока ширина интервала больше
    precision, и возвращает нижнюю границу (cost(s → s + n) <= value_in).

    Args:
        base_price: Базовая цена (WAD)
        slope: Наклон кривой (WAD)
        tokens_sold: Текущее предложение (WAD)
        value_in: Вносимая стоимость (WAD), уже за вычетом комиссии
        precision: Минимальная ширина интервала поиска

    Returns:
        tokens_out (WAD), округлённый вниз до точности поиска

    Raises:
        InvalidCurveParameters: Если base_price == slope == 0
        ArithmeticOverflow: Если вычисление стоимости вышло за диапазон
    """
    validate_non_negative(tokens_sold, "tokens_sold")
    validate_non_negative(value_in, "value_in")
    if precision <= 0:
        raise ValueError(f"precision must be positive, got {precision}")

    if value_in == 0:
        return 0

    high = min(
        _purchase_upper_bound(base_price, slope, value_in),
        MAX_PURCHASE_TOKENS,
    )
    low = 0

    while high - low > precision:
        mid = (low + high) // 2
        if cost_between(base_price, slope, tokens_sold, tokens_sold + mid) <= value_in:
            low = mid
        else:
            high = mid

    return low


# =============================================================================
# ПРОДАЖА И СРЕДНЯЯ ЦЕНА
# =============================================================================


def sale_return(base_price: int, slope: int, tokens_sold: int, tokens_in: int) -> int:
    """
    Стоимость, возвращаемая кривой за tokens_in токенов.

    Точная формула: total_cost(s) - total_cost(s - n). Поиск не нужен:
    tokens_in уже является границей интегрирования.

    Raises:
        InsufficientTokensHeld: Если tokens_in > tokens_sold
    """
    validate_non_negative(tokens_sold, "tokens_sold")
    validate_non_negative(tokens_in, "tokens_in")

    if tokens_in > tokens_sold:
        raise InsufficientTokensHeld(
            f"Cannot sell {tokens_in} tokens: only {tokens_sold} sold from curve",
            details={"tokens_in": tokens_in, "tokens_sold": tokens_sold},
        )

    return cost_between(base_price, slope, tokens_sold - tokens_in, tokens_sold)


def average_price(base_price: int, slope: int, tokens_sold: int, tokens_in: int) -> int:
    """
    Средняя цена покупки tokens_in токенов начиная с tokens_sold.

    При tokens_in == 0 равна мгновенной цене price(tokens_sold).
    """
    if tokens_in == 0:
        return price_at(base_price, slope, tokens_sold)

    cost = cost_between(base_price, slope, tokens_sold, tokens_sold + tokens_in)
    return mul_div(cost, WAD, tokens_in)
