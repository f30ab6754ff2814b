"""Общие fixtures: часы, фабрика рынков, governance и сформированный рынок."""

import pytest

from src.core.config import GovernanceConfig, MarketConfig
from src.governance import GovernanceEngine
from src.markets import InMemoryTokenLedger, MarketFactory
from tests.helpers import FakeClock, FlakyLiquidityPool

AGENTS = ("alice", "bob", "carol")
WEIGHTS = (40, 35, 25)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def pool() -> FlakyLiquidityPool:
    return FlakyLiquidityPool()


@pytest.fixture
def ledger() -> InMemoryTokenLedger:
    return InMemoryTokenLedger()


@pytest.fixture
def factory(clock, pool, ledger) -> MarketFactory:
    return MarketFactory(MarketConfig(), ledger=ledger, liquidity_pool=pool, clock=clock)


@pytest.fixture
def governance(factory, clock) -> GovernanceEngine:
    return GovernanceEngine(factory, GovernanceConfig(), clock=clock)


@pytest.fixture
def governed_market(governance) -> int:
    """Рынок, созданный единогласным формированием кворума alice/bob/carol."""
    proposal_id = governance.propose_quorum(
        "alice", AGENTS, WEIGHTS, name="Quorum Token", symbol="QRM", thesis="test thesis"
    )
    governance.approve_quorum(proposal_id, "bob")
    snapshot = governance.approve_quorum(proposal_id, "carol")
    return snapshot.created_market_id
