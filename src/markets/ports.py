"""
Ports — внешние коллабораторы MarketFactory

- TokenLedger: баланс market-токенов (mint / transfer / balance_of)
- LiquidityPool: внешний AMM, принимающий ликвидность при graduation

In-memory адаптеры используются по умолчанию и в тестах. Реальные адаптеры
(ERC20, DEX router) живут вне этого пакета и подключаются через конструктор
MarketFactory.
"""

import threading
from collections import defaultdict
from typing import Dict, Protocol, Tuple

from src.core.errors import InsufficientTokensHeld
from src.core.math.fixed_point import checked_add, checked_sub, validate_non_negative


# =============================================================================
# PROTOCOLS
# =============================================================================


class TokenLedger(Protocol):
    """Балансы токенов, по одному токену на рынок."""

    def mint(self, market_id: int, account: str, amount: int) -> None:
        ...

    def transfer(self, market_id: int, sender: str, recipient: str, amount: int) -> None:
        """
        Raises:
            InsufficientTokensHeld: Если у sender недостаточно токенов
        """
        ...

    def balance_of(self, market_id: int, account: str) -> int:
        ...


class LiquidityPool(Protocol):
    """Внешний AMM. Любое исключение трактуется как отказ в ликвидности."""

    def create_pair(self, market_id: int) -> str:
        """Создание пары token/value; возвращает идентификатор пула."""
        ...

    def add_liquidity(self, pool_id: str, token_amount: int, value_amount: int) -> None:
        ...

    def get_reserves(self, pool_id: str) -> Tuple[int, int]:
        """(token_reserve, value_reserve)"""
        ...


# =============================================================================
# IN-MEMORY ADAPTERS
# =============================================================================


class InMemoryTokenLedger:
    """Потокобезопасный in-memory ledger."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._balances: Dict[int, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._supply: Dict[int, int] = defaultdict(int)

    def mint(self, market_id: int, account: str, amount: int) -> None:
        validate_non_negative(amount, "amount")
        with self._lock:
            balances = self._balances[market_id]
            balances[account] = checked_add(balances[account], amount)
            self._supply[market_id] = checked_add(self._supply[market_id], amount)

    def transfer(self, market_id: int, sender: str, recipient: str, amount: int) -> None:
        validate_non_negative(amount, "amount")
        with self._lock:
            balances = self._balances[market_id]
            held = balances[sender]
            if held < amount:
                raise InsufficientTokensHeld(
                    f"{sender} holds {held}, cannot transfer {amount}",
                    details={"market_id": market_id, "account": sender, "held": held},
                )
            balances[sender] = checked_sub(held, amount)
            balances[recipient] = checked_add(balances[recipient], amount)

    def balance_of(self, market_id: int, account: str) -> int:
        with self._lock:
            return self._balances[market_id].get(account, 0)

    def total_supply(self, market_id: int) -> int:
        with self._lock:
            return self._supply[market_id]


class InMemoryLiquidityPool:
    """In-memory AMM: резервы по pool_id, пара создаётся идемпотентно."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reserves: Dict[str, Tuple[int, int]] = {}

    @staticmethod
    def pool_id_for(market_id: int) -> str:
        return f"pool-{market_id}"

    def create_pair(self, market_id: int) -> str:
        pool_id = self.pool_id_for(market_id)
        with self._lock:
            self._reserves.setdefault(pool_id, (0, 0))
        return pool_id

    def add_liquidity(self, pool_id: str, token_amount: int, value_amount: int) -> None:
        with self._lock:
            tokens, value = self._reserves.get(pool_id, (0, 0))
            self._reserves[pool_id] = (tokens + token_amount, value + value_amount)

    def get_reserves(self, pool_id: str) -> Tuple[int, int]:
        with self._lock:
            return self._reserves.get(pool_id, (0, 0))
