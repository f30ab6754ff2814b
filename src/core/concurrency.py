"""
Concurrency — per-entity взаимное исключение

Мутации Market / Proposal сериализуются по сущности: два параллельных buy
на одном рынке не могут перемешать read-modify-write tokens_sold, а операции
на разных рынках выполняются независимо.

Порядок захвата блокировок в системе: proposal → market. Обратный порядок
не используется, поэтому взаимоблокировки исключены.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator


class EntityLocks:
    """Реестр re-entrant блокировок по ключу сущности."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.RLock] = {}

    def lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Контекст, удерживающий блокировку сущности `key`."""
        lock = self.lock_for(key)
        with lock:
            yield

