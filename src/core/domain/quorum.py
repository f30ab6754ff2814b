"""
Quorum — снапшот состава кворума и весов агентов

Immutable Pydantic модель. Кворум никогда не изменяется на месте: AddAgent /
RemoveAgent создают новый снапшот с увеличенным version.

ИНВАРИАНТЫ ПРИ ФОРМИРОВАНИИ:
1. Размер в [min_size, max_size] (по умолчанию 3-10)
2. Агенты уникальны
3. len(agents) == len(weights)
4. sum(weights) == required_total (по умолчанию 100)
"""

from typing import Sequence

from pydantic import BaseModel, Field, model_validator

from src.core.errors import (
    DuplicateAgent,
    InvalidWeights,
    NotEligibleVoter,
    QuorumSizeOutOfRange,
)


# =============================================================================
# ВАЛИДАЦИЯ
# =============================================================================


def validate_quorum_members(
    agents: Sequence[str],
    weights: Sequence[int],
    *,
    min_size: int = 3,
    max_size: int = 10,
    required_total: int = 100,
) -> None:
    """
    Проверка инвариантов формирования кворума.

    Args:
        agents: Идентификаторы агентов (порядок значим)
        weights: Целочисленные веса, по одному на агента
        min_size: Минимальный размер кворума
        max_size: Максимальный размер кворума
        required_total: Требуемая сумма весов

    Raises:
        QuorumSizeOutOfRange: Размер вне [min_size, max_size]
        InvalidWeights: Длины не совпадают, вес отрицательный или сумма != required_total
        DuplicateAgent: Агент встречается дважды
    """
    size = len(agents)
    if size < min_size or size > max_size:
        raise QuorumSizeOutOfRange(
            f"Quorum size must be {min_size}-{max_size}, got {size}",
            details={"size": size},
        )

    if len(weights) != size:
        raise InvalidWeights(
            f"Weights mismatch: {size} agents, {len(weights)} weights",
            details={"agents": size, "weights": len(weights)},
        )

    seen: set[str] = set()
    for agent in agents:
        if agent in seen:
            raise DuplicateAgent(f"Duplicate agent: {agent}", details={"agent": agent})
        seen.add(agent)

    if any(w < 0 for w in weights):
        raise InvalidWeights("Weights must be non-negative")

    total = sum(weights)
    if total != required_total:
        raise InvalidWeights(
            f"Weights must sum to {required_total}, got {total}",
            details={"total": total},
        )


# =============================================================================
# QUORUM MODEL
# =============================================================================


class Quorum(BaseModel):
    """
    Снапшот кворума рынка.

    Веса используются governance для подсчёта порогов одобрения. После
    AddAgent / RemoveAgent сумма весов может отличаться от 100: пороги всегда
    считаются от фактической total_weight снапшота.
    """

    agents: tuple[str, ...] = Field(..., min_length=1, description="Агенты кворума")
    weights: tuple[int, ...] = Field(..., description="Веса агентов")
    version: int = Field(0, ge=0, description="Номер снапшота (0 при формировании)")

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_shape(self) -> "Quorum":
        if len(self.agents) != len(self.weights):
            raise ValueError("agents and weights must have equal length")
        if len(set(self.agents)) != len(self.agents):
            raise ValueError("agents must be unique")
        if any(w < 0 for w in self.weights):
            raise ValueError("weights must be non-negative")
        return self

    @classmethod
    def form(
        cls,
        agents: Sequence[str],
        weights: Sequence[int],
        *,
        min_size: int = 3,
        max_size: int = 10,
        required_total: int = 100,
    ) -> "Quorum":
        """Создание кворума с проверкой инвариантов формирования."""
        validate_quorum_members(
            agents,
            weights,
            min_size=min_size,
            max_size=max_size,
            required_total=required_total,
        )
        return cls(agents=tuple(agents), weights=tuple(weights), version=0)

    @property
    def size(self) -> int:
        return len(self.agents)

    @property
    def total_weight(self) -> int:
        return sum(self.weights)

    def is_member(self, agent: str) -> bool:
        return agent in self.agents

    def weight_of(self, agent: str) -> int:
        """Вес агента; 0 для не-членов."""
        try:
            return self.weights[self.agents.index(agent)]
        except ValueError:
            return 0

    def _check_size(self, size: int, min_size: int, max_size: int) -> None:
        if size < min_size or size > max_size:
            raise QuorumSizeOutOfRange(
                f"Quorum size must be {min_size}-{max_size}, got {size}",
                details={"size": size, "version": self.version},
            )

    def with_agent(
        self, agent: str, weight: int, *, min_size: int = 3, max_size: int = 10
    ) -> "Quorum":
        """
        Новый снапшот с добавленным агентом.

        Raises:
            DuplicateAgent: Агент уже в кворуме
            QuorumSizeOutOfRange: Новый размер вне [min_size, max_size]
        """
        if self.is_member(agent):
            raise DuplicateAgent(f"Agent already in quorum: {agent}", details={"agent": agent})
        self._check_size(self.size + 1, min_size, max_size)
        return Quorum(
            agents=self.agents + (agent,),
            weights=self.weights + (weight,),
            version=self.version + 1,
        )

    def without_agent(self, agent: str, *, min_size: int = 3, max_size: int = 10) -> "Quorum":
        """
        Новый снапшот без агента.

        Raises:
            NotEligibleVoter: Агент не в кворуме
            QuorumSizeOutOfRange: Новый размер вне [min_size, max_size]
        """
        if not self.is_member(agent):
            raise NotEligibleVoter(f"Agent not in quorum: {agent}", details={"agent": agent})
        self._check_size(self.size - 1, min_size, max_size)
        index = self.agents.index(agent)
        return Quorum(
            agents=self.agents[:index] + self.agents[index + 1:],
            weights=self.weights[:index] + self.weights[index + 1:],
            version=self.version + 1,
        )
