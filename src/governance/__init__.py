"""Governance — кворумы агентов, типизированные предложения и голосование."""

from src.governance.engine import GovernanceEngine
from src.governance.ports import MarketOperations
from src.governance.thresholds import (
    Electorate,
    ResolutionResult,
    build_electorate,
    meets_threshold,
    resolve,
    tally,
)

__all__ = [
    "GovernanceEngine",
    "MarketOperations",
    "Electorate",
    "ResolutionResult",
    "build_electorate",
    "meets_threshold",
    "resolve",
    "tally",
]
