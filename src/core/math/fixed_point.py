"""
Fixed-Point Safeguards — целочисленная арифметика с контролем переполнения

Модуль обеспечивает безопасную fixed-point арифметику для всех экономических
вычислений (цена, стоимость, комиссии, аллокации):
- Все количества — неотрицательные целые, масштабированные на WAD = 10**18
- Представимый диапазон — uint256: [0, MAX_UINT256]
- Промежуточные произведения считаются в "широком" диапазоне (uint512),
  итог обязан поместиться в uint256
- Выход за диапазон → ArithmeticOverflow, никогда не wraparound

КРИТИЧЕСКИЕ ИНВАРИАНТЫ:
1. Переполнение и underflow всегда приводят к исключению
2. Деление округляет вниз (floor), детерминированно
3. Все операции воспроизводимы бит-в-бит
"""

from decimal import Decimal, localcontext
from typing import Final, Union

from src.core.errors import ArithmeticOverflow

# =============================================================================
# КОНСТАНТЫ
# =============================================================================

# Fixed-point единица (18 знаков после запятой)
WAD: Final[int] = 10**18

# Знаменатель базисных пунктов (100% = 10_000 bps)
BPS_DENOMINATOR: Final[int] = 10_000

# Верхняя граница представимых значений
MAX_UINT256: Final[int] = 2**256 - 1

# Верхняя граница промежуточных произведений в mul_div
MAX_UINT512: Final[int] = 2**512 - 1


# =============================================================================
# ПРОВЕРКИ ДИАПАЗОНА
# =============================================================================


def ensure_uint256(value: int, op: str = "value") -> int:
    """
    Проверка, что значение лежит в [0, MAX_UINT256].

    Args:
        value: Проверяемое значение
        op: Имя операции (для сообщения об ошибке)

    Returns:
        value без изменений

    Raises:
        ArithmeticOverflow: Если value < 0 или value > MAX_UINT256
    """
    if value < 0:
        raise ArithmeticOverflow(
            f"{op}: underflow ({value} < 0)", details={"op": op, "value": value}
        )
    if value > MAX_UINT256:
        raise ArithmeticOverflow(
            f"{op}: result exceeds uint256 range", details={"op": op}
        )
    return value


def _require_int(value: int, name: str) -> None:
    # bool является подклассом int, но не количеством
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be int, got {type(value).__name__}")


# =============================================================================
# CHECKED-ОПЕРАЦИИ
# =============================================================================


def checked_add(a: int, b: int) -> int:
    """a + b с проверкой диапазона uint256."""
    return ensure_uint256(a + b, "add")


def checked_sub(a: int, b: int) -> int:
    """a - b; отрицательный результат → ArithmeticOverflow (underflow)."""
    return ensure_uint256(a - b, "sub")


def checked_mul(a: int, b: int) -> int:
    """a * b с проверкой диапазона uint256."""
    return ensure_uint256(a * b, "mul")


def checked_div(a: int, b: int) -> int:
    """
    Целочисленное деление floor(a / b).

    Raises:
        ZeroDivisionError: Если b == 0
        ArithmeticOverflow: Если операнды вне диапазона
    """
    if b == 0:
        raise ZeroDivisionError("checked_div: division by zero")
    ensure_uint256(a, "div")
    ensure_uint256(b, "div")
    return a // b


def mul_div(a: int, b: int, denominator: int) -> int:
    """
    floor(a * b / denominator) с широким промежуточным произведением.

    Произведение a * b может превышать uint256 (до uint512), но итог обязан
    поместиться в uint256. Используется для квадратичного члена стоимости.

    Args:
        a: Первый множитель (uint256)
        b: Второй множитель (uint256)
        denominator: Делитель (> 0)

    Returns:
        floor(a * b / denominator)

    Raises:
        ZeroDivisionError: Если denominator == 0
        ArithmeticOverflow: Если операнды или результат вне диапазона

    Examples:
        >>> mul_div(3 * WAD, 2 * WAD, WAD) == 6 * WAD
        True
    """
    if denominator == 0:
        raise ZeroDivisionError("mul_div: division by zero")
    ensure_uint256(a, "mul_div")
    ensure_uint256(b, "mul_div")
    ensure_uint256(denominator, "mul_div")

    product = a * b
    if product > MAX_UINT512:
        raise ArithmeticOverflow("mul_div: intermediate product exceeds uint512")

    return ensure_uint256(product // denominator, "mul_div")


def bps_of(amount: int, bps: int) -> int:
    """
    Доля amount в базисных пунктах: floor(amount * bps / 10_000).

    Examples:
        >>> bps_of(10**18, 50)
        5000000000000000
    """
    validate_bps(bps, "bps")
    return mul_div(amount, bps, BPS_DENOMINATOR)


# =============================================================================
# КОНВЕРСИЯ
# =============================================================================


def to_wad(value: Union[int, str, Decimal]) -> int:
    """
    Конверсия десятичного значения в fixed-point (×10**18, floor).

    Float намеренно не принимается: двоичное представление вносит ошибку
    до масштабирования.

    Examples:
        >>> to_wad("0.0001")
        100000000000000
        >>> to_wad(3)
        3000000000000000000
    """
    if isinstance(value, float):
        raise TypeError("to_wad does not accept float, pass str or Decimal")
    with localcontext() as ctx:
        ctx.prec = 100
        scaled = int(Decimal(value) * WAD)
    return ensure_uint256(scaled, "to_wad")


def from_wad(value: int) -> Decimal:
    """Конверсия fixed-point значения в Decimal (для отображения и логов)."""
    with localcontext() as ctx:
        ctx.prec = 100
        return Decimal(value) / Decimal(WAD)


# =============================================================================
# ВАЛИДАЦИЯ
# =============================================================================


def validate_non_negative(value: int, name: str) -> None:
    """
    Валидация неотрицательного целого в диапазоне uint256.

    Raises:
        TypeError: Если value не int
        ValueError: Если value < 0 или > MAX_UINT256
    """
    _require_int(value, name)
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    if value > MAX_UINT256:
        raise ValueError(f"{name} exceeds uint256 range")


def validate_positive(value: int, name: str) -> None:
    """Валидация строго положительного целого."""
    validate_non_negative(value, name)
    if value == 0:
        raise ValueError(f"{name} must be positive, got 0")


def validate_bps(value: int, name: str, max_bps: int = BPS_DENOMINATOR) -> None:
    """
    Валидация значения в базисных пунктах: 0 <= value <= max_bps.

    Raises:
        TypeError: Если value не int
        ValueError: Если value вне диапазона
    """
    _require_int(value, name)
    if value < 0 or value > max_bps:
        raise ValueError(f"{name} must be in [0, {max_bps}] bps, got {value}")
