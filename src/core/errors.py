"""
Errors — Иерархия доменных ошибок

Все пользовательские операции (buy/sell/propose/vote/execute) работают по
принципу all-or-nothing: исключение из этого модуля означает, что состояние
Market / Proposal / Quorum не изменено.

Каждая ошибка несёт стабильный машинный `code` (snake_case), который
используется в структурных логах.
"""

from typing import Optional


class QuorumMarketError(Exception):
    """Базовая ошибка домена quorum markets."""

    code: str = "quorum_market_error"

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


# =============================================================================
# QUORUM / PROPOSAL VALIDATION
# =============================================================================


class InvalidWeights(QuorumMarketError):
    """Сумма весов != 100 или длины agents/weights не совпадают."""

    code = "invalid_weights"


class DuplicateAgent(QuorumMarketError):
    code = "duplicate_agent"


class QuorumSizeOutOfRange(QuorumMarketError):
    """Размер кворума вне диапазона [min_quorum_size, max_quorum_size]."""

    code = "quorum_size_out_of_range"


class NotEligibleVoter(QuorumMarketError):
    code = "not_eligible_voter"


class AlreadyVoted(QuorumMarketError):
    code = "already_voted"


class VotingWindowClosed(QuorumMarketError):
    code = "voting_window_closed"


class VotingInProgress(QuorumMarketError):
    """Execute вызван до закрытия голосования."""

    code = "voting_in_progress"


class ExecutionWindowExpired(QuorumMarketError):
    code = "execution_window_expired"


class ProposalNotApproved(QuorumMarketError):
    code = "proposal_not_approved"


class AlreadyExecuted(QuorumMarketError):
    code = "already_executed"


class ProposalNotFound(QuorumMarketError):
    code = "proposal_not_found"


class InvalidPayload(QuorumMarketError):
    """Payload предложения не соответствует его типу."""

    code = "invalid_payload"


# =============================================================================
# MARKET / TRADING
# =============================================================================


class MarketNotFound(QuorumMarketError):
    code = "market_not_found"


class MarketNotActive(QuorumMarketError):
    """Рынок приостановлен (pause)."""

    code = "market_not_active"


class MarketGraduated(QuorumMarketError):
    """Торговля по кривой после graduation запрещена."""

    code = "market_graduated"


class BelowMinimumPurchase(QuorumMarketError):
    code = "below_minimum_purchase"


class SlippageExceeded(QuorumMarketError):
    code = "slippage_exceeded"


class InsufficientTokensHeld(QuorumMarketError):
    code = "insufficient_tokens_held"


class ZeroTokensOut(QuorumMarketError):
    code = "zero_tokens_out"


class ZeroTokensIn(QuorumMarketError):
    code = "zero_tokens_in"


class CurveSupplyExhausted(QuorumMarketError):
    """Покупка превышает остаток curve-аллокации."""

    code = "curve_supply_exhausted"


class InvalidFee(QuorumMarketError):
    code = "invalid_fee"


class InvalidCurveParameters(QuorumMarketError):
    code = "invalid_curve_parameters"


class LiquidityProvisionFailed(QuorumMarketError):
    """
    Внешний liquidity pool не принял ликвидность при graduation.

    Покупка, вызвавшая graduation, откатывается целиком.
    """

    code = "liquidity_provision_failed"


class TimelockNotExpired(QuorumMarketError):
    code = "timelock_not_expired"


class NoPendingPause(QuorumMarketError):
    code = "no_pending_pause"


# =============================================================================
# ARITHMETIC
# =============================================================================


class ArithmeticOverflow(QuorumMarketError):
    """
    Fixed-point вычисление вышло за представимый диапазон [0, MAX_UINT256].

    Никогда не маскируется wraparound: это нарушило бы монотонность цены.
    """

    code = "arithmetic_overflow"
