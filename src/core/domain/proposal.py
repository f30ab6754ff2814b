"""
Proposal — типизированные governance-предложения

- ProposalType: тип действия (определяет payload и правило одобрения)
- ProposalState: жизненный цикл PENDING → APPROVED/REJECTED → EXECUTED/EXPIRED
- *Payload: immutable payload для каждого типа
- ProposalSnapshot: immutable снапшот для чтения (getProposal)
- ProposalRecord: изменяемая запись внутри GovernanceEngine

Совместимость снапшота с JSON Schema (contracts/schema/proposal.json).
"""

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field


# =============================================================================
# ENUMS
# =============================================================================


class ProposalType(str, Enum):
    """Тип предложения."""

    QUORUM_FORMATION = "QUORUM_FORMATION"
    ADD_AGENT = "ADD_AGENT"
    REMOVE_AGENT = "REMOVE_AGENT"
    TREASURY_SPEND = "TREASURY_SPEND"
    ADJUST_FEES = "ADJUST_FEES"
    FORCE_GRADUATE = "FORCE_GRADUATE"


class ProposalState(str, Enum):
    """Состояние предложения."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXECUTED = "EXECUTED"
    EXPIRED = "EXPIRED"


# Типы, требующие единогласия (остальные: weighted 2/3)
UNANIMOUS_TYPES = frozenset(
    {
        ProposalType.QUORUM_FORMATION,
        ProposalType.ADJUST_FEES,
        ProposalType.FORCE_GRADUATE,
    }
)


# =============================================================================
# PAYLOADS
# =============================================================================


class QuorumFormationPayload(BaseModel):
    """Состав нового кворума и метаданные токена."""

    agents: tuple[str, ...] = Field(..., description="Предлагаемые агенты")
    weights: tuple[int, ...] = Field(..., description="Веса агентов (сумма 100)")
    name: str = Field(..., min_length=1, description="Имя токена")
    symbol: str = Field(..., min_length=1, description="Тикер токена")
    thesis: str = Field("", description="Инвестиционный тезис")

    model_config = {"frozen": True}


class AddAgentPayload(BaseModel):
    agent: str = Field(..., min_length=1)
    weight: int = Field(..., gt=0, description="Вес нового агента")

    model_config = {"frozen": True}


class RemoveAgentPayload(BaseModel):
    agent: str = Field(..., min_length=1)

    model_config = {"frozen": True}


class TreasurySpendPayload(BaseModel):
    amount: int = Field(..., gt=0, description="Количество treasury-токенов (WAD)")
    recipient: str = Field(..., min_length=1)

    model_config = {"frozen": True}


class AdjustFeesPayload(BaseModel):
    fee_bps: int = Field(..., ge=0, le=10_000, description="Новая торговая комиссия (bps)")

    model_config = {"frozen": True}


class ForceGraduatePayload(BaseModel):
    model_config = {"frozen": True}


ProposalPayload = Union[
    QuorumFormationPayload,
    AddAgentPayload,
    RemoveAgentPayload,
    TreasurySpendPayload,
    AdjustFeesPayload,
    ForceGraduatePayload,
]

PAYLOAD_TYPES: dict[ProposalType, type] = {
    ProposalType.QUORUM_FORMATION: QuorumFormationPayload,
    ProposalType.ADD_AGENT: AddAgentPayload,
    ProposalType.REMOVE_AGENT: RemoveAgentPayload,
    ProposalType.TREASURY_SPEND: TreasurySpendPayload,
    ProposalType.ADJUST_FEES: AdjustFeesPayload,
    ProposalType.FORCE_GRADUATE: ForceGraduatePayload,
}


# =============================================================================
# SNAPSHOT
# =============================================================================


class ProposalSnapshot(BaseModel):
    """
    Immutable снапшот предложения (результат getProposal).
    """

    id: int = Field(..., ge=0)
    proposal_type: ProposalType
    target_market_id: Optional[int] = Field(None, ge=0)
    proposer: str = Field(..., min_length=1)
    payload: ProposalPayload
    description: str = ""

    created_at_ms: int = Field(..., ge=0)
    voting_deadline_ms: int = Field(..., ge=0)
    voting_closed_at_ms: Optional[int] = Field(None, ge=0)
    executed_at_ms: Optional[int] = Field(None, ge=0)

    quorum_version: int = Field(..., ge=0)
    votes: dict[str, bool] = Field(default_factory=dict)
    for_weight: int = Field(..., ge=0)
    against_weight: int = Field(..., ge=0)

    state: ProposalState
    created_market_id: Optional[int] = Field(None, ge=0)

    model_config = {"frozen": True}

    @property
    def approval_count(self) -> int:
        return sum(1 for support in self.votes.values() if support)


# =============================================================================
# MUTABLE RECORD
# =============================================================================


@dataclass
class ProposalRecord:
    """Изменяемое состояние предложения. Меняется только под блокировкой предложения."""

    id: int
    proposal_type: ProposalType
    proposer: str
    payload: ProposalPayload
    created_at_ms: int
    voting_deadline_ms: int
    quorum_version: int
    target_market_id: Optional[int] = None
    description: str = ""

    votes: dict[str, bool] = field(default_factory=dict)
    for_weight: int = 0
    against_weight: int = 0
    state: ProposalState = ProposalState.PENDING
    voting_closed_at_ms: Optional[int] = None
    executed_at_ms: Optional[int] = None
    created_market_id: Optional[int] = None

    @property
    def is_unanimous_type(self) -> bool:
        return self.proposal_type in UNANIMOUS_TYPES

    def evolve(self, **changes) -> "ProposalRecord":
        """Копия записи с изменениями; votes копируется, чтобы не делить dict."""
        changes.setdefault("votes", dict(self.votes))
        return replace(self, **changes)

    def to_snapshot(self) -> ProposalSnapshot:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["votes"] = dict(self.votes)
        return ProposalSnapshot(**data)
