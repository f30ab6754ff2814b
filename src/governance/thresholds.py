"""Thresholds — правила разрешения governance-предложений.

Чистые функции без состояния: GovernanceEngine передаёт сюда голоса,
электорат (снапшот кворума) и текущее время и получает ResolutionResult.

Правила:
- UNANIMOUS (QUORUM_FORMATION, ADJUST_FEES, FORCE_GRADUATE):
  * первый голос "против" → REJECTED немедленно
  * все eligible агенты "за" → APPROVED немедленно
  * дедлайн без единогласия → REJECTED
- WEIGHTED (ADD_AGENT, REMOVE_AGENT, TREASURY_SPEND):
  * разрешается только после дедлайна
  * APPROVED если for_weight * 10000 >= threshold_bps * denominator
  * для REMOVE_AGENT denominator и электорат исключают удаляемого агента
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

from src.core.domain.proposal import (
    UNANIMOUS_TYPES,
    ProposalPayload,
    ProposalState,
    ProposalType,
    RemoveAgentPayload,
)
from src.core.domain.quorum import Quorum
from src.core.math.fixed_point import BPS_DENOMINATOR


@dataclass(frozen=True)
class Electorate:
    """Кто голосует по предложению и с каким весом."""

    agents: Tuple[str, ...]
    weights: Tuple[int, ...]

    @property
    def total_weight(self) -> int:
        return sum(self.weights)

    def is_eligible(self, agent: str) -> bool:
        return agent in self.agents

    def weight_of(self, agent: str) -> int:
        try:
            return self.weights[self.agents.index(agent)]
        except ValueError:
            return 0


@dataclass(frozen=True)
class ResolutionResult:
    """Результат оценки предложения."""

    state: ProposalState
    resolved: bool
    closed_at_ms: Optional[int]

    # Диагностика
    for_weight: int
    denominator: int
    reason: str


def build_electorate(
    proposal_type: ProposalType, payload: ProposalPayload, quorum: Quorum
) -> Electorate:
    """
    Электорат предложения.

    Для QUORUM_FORMATION `quorum` строится из payload (предлагаемые агенты).
    Для REMOVE_AGENT удаляемый агент исключается.
    """
    if proposal_type == ProposalType.REMOVE_AGENT and isinstance(payload, RemoveAgentPayload):
        pairs = [
            (agent, weight)
            for agent, weight in zip(quorum.agents, quorum.weights)
            if agent != payload.agent
        ]
        return Electorate(
            agents=tuple(a for a, _ in pairs),
            weights=tuple(w for _, w in pairs),
        )
    return Electorate(agents=quorum.agents, weights=quorum.weights)


def tally(votes: Mapping[str, bool], electorate: Electorate) -> Tuple[int, int]:
    """(for_weight, against_weight) по весам электората."""
    for_weight = 0
    against_weight = 0
    for agent, support in votes.items():
        if support:
            for_weight += electorate.weight_of(agent)
        else:
            against_weight += electorate.weight_of(agent)
    return for_weight, against_weight


def meets_threshold(for_weight: int, denominator: int, threshold_bps: int) -> bool:
    """for_weight / denominator >= threshold_bps / 10000 в целых числах."""
    if denominator <= 0:
        return False
    return for_weight * BPS_DENOMINATOR >= threshold_bps * denominator


def resolve(
    proposal_type: ProposalType,
    votes: Mapping[str, bool],
    electorate: Electorate,
    *,
    threshold_bps: int,
    voting_deadline_ms: int,
    now_ms: int,
) -> ResolutionResult:
    """
    Оценка PENDING предложения на момент now_ms.

    Args:
        proposal_type: Тип предложения (определяет правило)
        votes: Голоса agent → support
        electorate: Электорат предложения
        threshold_bps: Порог weighted-правила (6666 = 66.66%)
        voting_deadline_ms: Дедлайн голосования
        now_ms: Текущее время

    Returns:
        ResolutionResult; resolved=False означает, что предложение остаётся PENDING
    """
    for_weight, _ = tally(votes, electorate)
    denominator = electorate.total_weight
    deadline_passed = now_ms > voting_deadline_ms

    if proposal_type in UNANIMOUS_TYPES:
        if any(not support for support in votes.values()):
            return ResolutionResult(
                state=ProposalState.REJECTED,
                resolved=True,
                closed_at_ms=min(now_ms, voting_deadline_ms),
                for_weight=for_weight,
                denominator=denominator,
                reason="unanimity broken by a vote against",
            )

        approvals = sum(1 for agent in electorate.agents if votes.get(agent) is True)
        if approvals == len(electorate.agents):
            return ResolutionResult(
                state=ProposalState.APPROVED,
                resolved=True,
                closed_at_ms=min(now_ms, voting_deadline_ms),
                for_weight=for_weight,
                denominator=denominator,
                reason="unanimous approval",
            )

        if deadline_passed:
            return ResolutionResult(
                state=ProposalState.REJECTED,
                resolved=True,
                closed_at_ms=voting_deadline_ms,
                for_weight=for_weight,
                denominator=denominator,
                reason=f"deadline passed with {approvals}/{len(electorate.agents)} approvals",
            )

        return ResolutionResult(
            state=ProposalState.PENDING,
            resolved=False,
            closed_at_ms=None,
            for_weight=for_weight,
            denominator=denominator,
            reason="awaiting unanimous approval",
        )

    if not deadline_passed:
        return ResolutionResult(
            state=ProposalState.PENDING,
            resolved=False,
            closed_at_ms=None,
            for_weight=for_weight,
            denominator=denominator,
            reason="voting in progress",
        )

    if meets_threshold(for_weight, denominator, threshold_bps):
        return ResolutionResult(
            state=ProposalState.APPROVED,
            resolved=True,
            closed_at_ms=voting_deadline_ms,
            for_weight=for_weight,
            denominator=denominator,
            reason=f"for_weight {for_weight}/{denominator} meets {threshold_bps} bps",
        )

    return ResolutionResult(
        state=ProposalState.REJECTED,
        resolved=True,
        closed_at_ms=voting_deadline_ms,
        for_weight=for_weight,
        denominator=denominator,
        reason=f"for_weight {for_weight}/{denominator} below {threshold_bps} bps",
    )
