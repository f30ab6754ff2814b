"""
Ports — возможности рынка, доступные governance

GovernanceEngine держит ссылку только на этот протокол. MarketFactory
реализует его структурно и не ссылается на governance.
"""

from typing import Optional, Protocol, Tuple

from src.core.config import MarketConfig
from src.core.domain.market import CurveParameters, MarketSnapshot
from src.core.domain.quorum import Quorum


class MarketOperations(Protocol):
    """Операции рынка, которые исполняют одобренные предложения."""

    @property
    def config(self) -> MarketConfig:
        ...

    def create_market(
        self,
        quorum: Quorum,
        *,
        name: str,
        symbol: str,
        thesis: str = "",
        curve_parameters: Optional[CurveParameters] = None,
        total_supply: Optional[int] = None,
        quorum_bounds: Optional[Tuple[int, int, int]] = None,
    ) -> int:
        ...

    def get_market(self, market_id: int) -> MarketSnapshot:
        ...

    def force_graduate(self, market_id: int) -> None:
        ...

    def set_market_fee(self, market_id: int, fee_bps: int) -> None:
        ...

    def spend_treasury(self, market_id: int, amount: int, recipient: str) -> None:
        ...
