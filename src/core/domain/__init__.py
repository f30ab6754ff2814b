"""
Domain models and value objects.

Contains fundamental domain entities: Quorum, Market, Proposal.
"""

from src.core.domain.market import (
    CurveParameters,
    MarketRecord,
    MarketSnapshot,
    MarketStatus,
    TokenAllocation,
)
from src.core.domain.proposal import (
    PAYLOAD_TYPES,
    UNANIMOUS_TYPES,
    AddAgentPayload,
    AdjustFeesPayload,
    ForceGraduatePayload,
    ProposalPayload,
    ProposalRecord,
    ProposalSnapshot,
    ProposalState,
    ProposalType,
    QuorumFormationPayload,
    RemoveAgentPayload,
    TreasurySpendPayload,
)
from src.core.domain.quorum import Quorum, validate_quorum_members

__all__ = [
    # Quorum
    "Quorum",
    "validate_quorum_members",
    # Market
    "CurveParameters",
    "MarketRecord",
    "MarketSnapshot",
    "MarketStatus",
    "TokenAllocation",
    # Proposal
    "PAYLOAD_TYPES",
    "UNANIMOUS_TYPES",
    "AddAgentPayload",
    "AdjustFeesPayload",
    "ForceGraduatePayload",
    "ProposalPayload",
    "ProposalRecord",
    "ProposalSnapshot",
    "ProposalState",
    "ProposalType",
    "QuorumFormationPayload",
    "RemoveAgentPayload",
    "TreasurySpendPayload",
]
