"""
Тесты для MarketFactory

Проверяет:
1. Создание рынка и аллокацию 30/60/10 (пыль — последнему агенту)
2. Покупку: комиссия в treasury, value_raised / reserve, ошибки валидации
3. Продажу: точная выплата, value_raised не уменьшается
4. Graduation: ровно один раз, передача ликвидности, откат при отказе пула
5. Governance-возможности: force_graduate, set_market_fee, spend_treasury
6. Паузу с timelock
"""

import pytest

from src.core.config import MarketConfig
from src.core.domain.market import CurveParameters, MarketStatus
from src.core.domain.quorum import Quorum
from src.core.errors import (
    BelowMinimumPurchase,
    CurveSupplyExhausted,
    InsufficientTokensHeld,
    InvalidCurveParameters,
    InvalidFee,
    LiquidityProvisionFailed,
    MarketGraduated,
    MarketNotActive,
    MarketNotFound,
    NoPendingPause,
    QuorumSizeOutOfRange,
    SlippageExceeded,
    TimelockNotExpired,
    ZeroTokensIn,
)
from src.core.math.bonding_curve import price_at, sale_return
from src.core.math.fixed_point import WAD, bps_of
from src.markets import InMemoryLiquidityPool, MarketFactory
from tests.helpers import FakeClock, FlakyLiquidityPool


@pytest.fixture
def quorum() -> Quorum:
    return Quorum.form(["alice", "bob", "carol"], [40, 35, 25])


@pytest.fixture
def market_id(factory: MarketFactory, quorum: Quorum) -> int:
    return factory.create_market(quorum, name="Quorum Token", symbol="QRM", thesis="t")


# =============================================================================
# СОЗДАНИЕ
# =============================================================================


class TestCreateMarket:
    """Тесты для create_market"""

    def test_ids_are_monotonic_from_zero(self, factory: MarketFactory, quorum: Quorum) -> None:
        assert factory.create_market(quorum, name="A", symbol="A") == 0
        assert factory.create_market(quorum, name="B", symbol="B") == 1
        assert factory.market_count() == 2

    def test_allocation_30_60_10(self, factory: MarketFactory, market_id: int) -> None:
        market = factory.get_market(market_id)
        supply = market.total_supply

        assert market.allocation.quorum == supply * 30 // 100
        assert market.allocation.curve == supply * 60 // 100
        assert market.allocation.treasury == supply * 10 // 100
        assert (
            market.allocation.quorum + market.allocation.curve + market.allocation.treasury
            == supply
        )

    def test_quorum_share_by_weight(self, factory: MarketFactory, market_id: int) -> None:
        quorum_total = factory.get_market(market_id).allocation.quorum
        assert factory.balance_of(market_id, "alice") == quorum_total * 40 // 100
        assert factory.balance_of(market_id, "bob") == quorum_total * 35 // 100
        assert factory.balance_of(market_id, "carol") == quorum_total * 25 // 100

    def test_rounding_dust_goes_to_last_agent(self, factory: MarketFactory) -> None:
        """Нецелые доли: сумма долей кворума всё равно равна 30%"""
        quorum = Quorum.form(["x", "y", "z"], [33, 33, 34])
        market_id = factory.create_market(quorum, name="Dust", symbol="DST", total_supply=1001)
        allocation = factory.get_market(market_id).allocation

        assert allocation.quorum == 300
        assert allocation.curve == 600
        assert allocation.treasury == 101
        assert allocation.per_agent == {"x": 99, "y": 99, "z": 102}
        assert sum(allocation.per_agent.values()) == allocation.quorum

    def test_ledger_minted(self, factory: MarketFactory, market_id: int) -> None:
        market = factory.get_market(market_id)
        config = factory.config
        assert factory.balance_of(market_id, config.curve_account) == market.allocation.curve
        assert factory.balance_of(market_id, config.treasury_account) == market.allocation.treasury
        assert factory.ledger.total_supply(market_id) == market.total_supply

    def test_initial_state(self, factory: MarketFactory, market_id: int, clock: FakeClock) -> None:
        market = factory.get_market(market_id)
        assert market.tokens_sold == 0
        assert market.value_raised == 0
        assert market.graduated is False
        assert market.status == MarketStatus.ACTIVE
        assert market.current_price == market.curve.base_price
        assert market.created_at_ms == clock.now_ms
        assert market.fee_bps == factory.config.fee_bps

    def test_custom_curve(self, factory: MarketFactory, quorum: Quorum) -> None:
        curve = CurveParameters(base_price=10**14, slope=10**10, target_raise=5 * WAD)
        market_id = factory.create_market(quorum, name="C", symbol="C", curve_parameters=curve)
        assert factory.get_market(market_id).curve == curve

    def test_invalid_supply(self, factory: MarketFactory, quorum: Quorum) -> None:
        with pytest.raises(InvalidCurveParameters):
            factory.create_market(quorum, name="C", symbol="C", total_supply=0)
        assert factory.market_count() == 0

    def test_unknown_market(self, factory: MarketFactory) -> None:
        with pytest.raises(MarketNotFound):
            factory.get_market(42)

    def test_default_parameters_apply_to_new_markets(
        self, factory: MarketFactory, quorum: Quorum, market_id: int
    ) -> None:
        factory.set_default_parameters(base_price=2 * 10**14, slope=0, target_raise=WAD)
        new_id = factory.create_market(quorum, name="N", symbol="N")

        assert factory.get_market(new_id).curve.base_price == 2 * 10**14
        assert factory.get_market(market_id).curve.base_price == MarketConfig().base_price

    def test_degenerate_default_parameters_rejected(self, factory: MarketFactory) -> None:
        with pytest.raises(InvalidCurveParameters):
            factory.set_default_parameters(base_price=0, slope=0, target_raise=WAD)

    def test_quorum_bounds_from_config(self, clock: FakeClock, pool: FlakyLiquidityPool) -> None:
        """Кворум из 11 агентов проходит только с расширенными границами"""
        agents = [f"agent-{i}" for i in range(11)]
        quorum = Quorum.form(agents, [10] * 9 + [5, 5], max_size=12)

        with pytest.raises(QuorumSizeOutOfRange):
            MarketFactory(MarketConfig(), liquidity_pool=pool, clock=clock).create_market(
                quorum, name="W", symbol="W"
            )

        wide = MarketFactory(MarketConfig(max_quorum_size=12), liquidity_pool=pool, clock=clock)
        market_id = wide.create_market(quorum, name="W", symbol="W")
        assert wide.get_market(market_id).allocation.per_agent["agent-10"] > 0

    def test_explicit_quorum_bounds(self, factory: MarketFactory) -> None:
        quorum = Quorum.form(["x", "y"], [60, 40], min_size=2)
        with pytest.raises(QuorumSizeOutOfRange):
            factory.create_market(quorum, name="D", symbol="D")

        market_id = factory.create_market(quorum, name="D", symbol="D", quorum_bounds=(2, 10, 100))
        allocation = factory.get_market(market_id).allocation
        assert allocation.per_agent["x"] == allocation.quorum * 60 // 100
        assert sum(allocation.per_agent.values()) == allocation.quorum


# =============================================================================
# ПОКУПКА
# =============================================================================


class TestBuy:
    """Тесты для buy"""

    def test_buy_updates_market(self, factory: MarketFactory, market_id: int) -> None:
        value_in = WAD
        fee = bps_of(value_in, factory.config.fee_bps)
        tokens_out = factory.buy(market_id, "dave", value_in)

        market = factory.get_market(market_id)
        assert tokens_out > 0
        assert market.tokens_sold == tokens_out
        assert market.value_raised == value_in - fee
        assert market.reserve_balance == value_in - fee
        assert factory.balance_of(market_id, "dave") == tokens_out
        assert factory.treasury_value_balance(market_id) == fee

    def test_price_increases_after_buy(self, factory: MarketFactory, market_id: int) -> None:
        before = factory.get_current_price(market_id)
        factory.buy(market_id, "dave", WAD)
        assert factory.get_current_price(market_id) > before

    def test_preview_matches_buy(self, factory: MarketFactory, market_id: int) -> None:
        expected = factory.calculate_purchase_return(market_id, 2 * WAD)
        assert factory.buy(market_id, "dave", 2 * WAD) == expected

    def test_below_minimum(self, factory: MarketFactory, market_id: int) -> None:
        with pytest.raises(BelowMinimumPurchase):
            factory.buy(market_id, "dave", factory.config.min_purchase - 1)

    def test_slippage(self, factory: MarketFactory, market_id: int) -> None:
        expected = factory.calculate_purchase_return(market_id, WAD)
        with pytest.raises(SlippageExceeded):
            factory.buy(market_id, "dave", WAD, min_tokens_out=expected + 1)
        assert factory.get_market(market_id).tokens_sold == 0

    def test_curve_supply_exhausted(self, factory: MarketFactory, quorum: Quorum) -> None:
        """Покупка больше остатка curve-аллокации отклоняется целиком"""
        market_id = factory.create_market(quorum, name="S", symbol="S", total_supply=100 * WAD)
        with pytest.raises(CurveSupplyExhausted):
            factory.buy(market_id, "dave", WAD)
        assert factory.get_market(market_id).tokens_sold == 0
        assert factory.treasury_value_balance(market_id) == 0

    def test_fee_change_applies_to_next_trade(self, factory: MarketFactory, market_id: int) -> None:
        factory.set_market_fee(market_id, 100)
        factory.buy(market_id, "dave", WAD)
        assert factory.treasury_value_balance(market_id) == bps_of(WAD, 100)


# =============================================================================
# ПРОДАЖА
# =============================================================================


class TestSell:
    """Тесты для sell"""

    def test_sell_all(self, factory: MarketFactory, market_id: int) -> None:
        tokens = factory.buy(market_id, "dave", WAD)
        raised = factory.get_market(market_id).value_raised
        curve = factory.get_market(market_id).curve

        gross = sale_return(curve.base_price, curve.slope, tokens, tokens)
        value_out = factory.sell(market_id, "dave", tokens)

        market = factory.get_market(market_id)
        assert value_out == gross - bps_of(gross, market.fee_bps)
        assert market.tokens_sold == 0
        assert market.value_raised == raised
        assert market.reserve_balance == raised - gross
        assert factory.balance_of(market_id, "dave") == 0

    def test_sale_never_exceeds_payment(self, factory: MarketFactory, market_id: int) -> None:
        tokens = factory.buy(market_id, "dave", 3 * WAD)
        assert factory.sell(market_id, "dave", tokens) <= 3 * WAD

    def test_preview_matches_sell(self, factory: MarketFactory, market_id: int) -> None:
        tokens = factory.buy(market_id, "dave", WAD)
        expected = factory.calculate_sale_return(market_id, tokens // 2)
        assert factory.sell(market_id, "dave", tokens // 2) == expected

    def test_zero_tokens(self, factory: MarketFactory, market_id: int) -> None:
        with pytest.raises(ZeroTokensIn):
            factory.sell(market_id, "dave", 0)

    def test_insufficient_balance(self, factory: MarketFactory, market_id: int) -> None:
        tokens = factory.buy(market_id, "dave", WAD)
        with pytest.raises(InsufficientTokensHeld):
            factory.sell(market_id, "erin", tokens)

    def test_quorum_tokens_exceed_curve_sold(self, factory: MarketFactory, market_id: int) -> None:
        """Агент кворума не может продать в кривую больше, чем из неё куплено"""
        with pytest.raises(InsufficientTokensHeld):
            factory.sell(market_id, "alice", WAD)

    def test_slippage(self, factory: MarketFactory, market_id: int) -> None:
        tokens = factory.buy(market_id, "dave", WAD)
        with pytest.raises(SlippageExceeded):
            factory.sell(market_id, "dave", tokens, min_value_out=WAD)


# =============================================================================
# GRADUATION
# =============================================================================


class TestGraduation:
    """Тесты graduation и передачи ликвидности"""

    def test_graduates_on_target(
        self,
        factory: MarketFactory,
        market_id: int,
        pool: FlakyLiquidityPool,
        clock: FakeClock,
    ) -> None:
        tokens = factory.buy(market_id, "dave", 11 * WAD)
        market = factory.get_market(market_id)

        assert market.graduated is True
        assert market.graduated_at_ms == clock.now_ms
        assert market.pool_id == pool.pool_id_for(market_id)
        assert market.value_raised >= market.curve.target_raise
        assert pool.calls == 1

        token_reserve, value_reserve = pool.get_reserves(market.pool_id)
        assert token_reserve == market.allocation.curve - tokens
        assert value_reserve == market.value_raised
        assert market.reserve_balance == 0
        assert factory.balance_of(market_id, market.pool_id) == token_reserve
        assert factory.balance_of(market_id, factory.config.curve_account) == 0

    def test_trading_closed_after_graduation(self, factory: MarketFactory, market_id: int) -> None:
        tokens = factory.buy(market_id, "dave", 11 * WAD)
        with pytest.raises(MarketGraduated):
            factory.buy(market_id, "erin", WAD)
        with pytest.raises(MarketGraduated):
            factory.sell(market_id, "dave", tokens)

    def test_graduates_exactly_once(
        self, factory: MarketFactory, market_id: int, pool: FlakyLiquidityPool
    ) -> None:
        factory.buy(market_id, "dave", 11 * WAD)
        assert factory.check_graduation(market_id) is True
        with pytest.raises(MarketGraduated):
            factory.force_graduate(market_id)
        assert pool.calls == 1

    def test_liquidity_failure_rolls_back_buy(
        self, factory: MarketFactory, market_id: int, pool: FlakyLiquidityPool
    ) -> None:
        """Отказ пула: покупка, вызвавшая graduation, не оставляет следов"""
        pool.fail_next = True
        with pytest.raises(LiquidityProvisionFailed):
            factory.buy(market_id, "dave", 11 * WAD)

        market = factory.get_market(market_id)
        assert market.graduated is False
        assert market.tokens_sold == 0
        assert market.value_raised == 0
        assert market.pool_id is None
        assert factory.balance_of(market_id, "dave") == 0
        assert factory.treasury_value_balance(market_id) == 0

        # Повторная попытка проходит
        factory.buy(market_id, "dave", 11 * WAD)
        assert factory.get_market(market_id).graduated is True

    def test_check_graduation_below_target(self, factory: MarketFactory, market_id: int) -> None:
        factory.buy(market_id, "dave", WAD)
        assert factory.check_graduation(market_id) is False
        assert factory.get_market(market_id).graduated is False

    def test_partial_liquidity_share(self, clock: FakeClock, quorum: Quorum) -> None:
        pool = InMemoryLiquidityPool()
        factory = MarketFactory(
            MarketConfig(graduation_liquidity_bps=8_000), liquidity_pool=pool, clock=clock
        )
        market_id = factory.create_market(quorum, name="P", symbol="P")
        factory.buy(market_id, "dave", 11 * WAD)

        market = factory.get_market(market_id)
        _, value_reserve = pool.get_reserves(market.pool_id)
        assert value_reserve == market.value_raised * 8_000 // 10_000
        assert market.reserve_balance == market.value_raised - value_reserve

    def test_force_graduate_bypasses_target(
        self, factory: MarketFactory, market_id: int
    ) -> None:
        factory.buy(market_id, "dave", WAD)
        factory.force_graduate(market_id)
        market = factory.get_market(market_id)
        assert market.graduated is True
        assert market.value_raised < market.curve.target_raise


# =============================================================================
# GOVERNANCE-ВОЗМОЖНОСТИ И ПАУЗА
# =============================================================================


class TestGovernanceCapabilities:
    def test_fee_above_maximum(self, factory: MarketFactory, market_id: int) -> None:
        with pytest.raises(InvalidFee):
            factory.set_market_fee(market_id, factory.config.max_fee_bps + 1)
        assert factory.get_market(market_id).fee_bps == factory.config.fee_bps

    def test_spend_treasury(self, factory: MarketFactory, market_id: int) -> None:
        treasury = factory.config.treasury_account
        before = factory.balance_of(market_id, treasury)
        factory.spend_treasury(market_id, 5 * WAD, "grants")
        assert factory.balance_of(market_id, "grants") == 5 * WAD
        assert factory.balance_of(market_id, treasury) == before - 5 * WAD

    def test_spend_treasury_insufficient(self, factory: MarketFactory, market_id: int) -> None:
        allocation = factory.get_market(market_id).allocation.treasury
        with pytest.raises(InsufficientTokensHeld):
            factory.spend_treasury(market_id, allocation + 1, "grants")


class TestPause:
    def test_timelocked_pause(self, factory: MarketFactory, market_id: int, clock: FakeClock) -> None:
        factory.request_pause(market_id)

        clock.advance(hours=1)
        with pytest.raises(TimelockNotExpired):
            factory.execute_pause(market_id)

        clock.advance(hours=23)
        factory.execute_pause(market_id)
        assert factory.get_market(market_id).status == MarketStatus.PAUSED

        with pytest.raises(MarketNotActive):
            factory.buy(market_id, "dave", WAD)

        factory.unpause(market_id)
        assert factory.buy(market_id, "dave", WAD) > 0

    def test_cancel_pause(self, factory: MarketFactory, market_id: int, clock: FakeClock) -> None:
        factory.request_pause(market_id)
        factory.cancel_pause(market_id)
        clock.advance(days=2)
        with pytest.raises(NoPendingPause):
            factory.execute_pause(market_id)

    def test_cancel_without_request(self, factory: MarketFactory, market_id: int) -> None:
        with pytest.raises(NoPendingPause):
            factory.cancel_pause(market_id)

    def test_paused_market_rejects_sell(
        self, factory: MarketFactory, market_id: int, clock: FakeClock
    ) -> None:
        tokens = factory.buy(market_id, "dave", WAD)
        factory.request_pause(market_id)
        clock.advance(days=1)
        factory.execute_pause(market_id)
        with pytest.raises(MarketNotActive):
            factory.sell(market_id, "dave", tokens)


class TestReads:
    def test_current_price_matches_curve(self, factory: MarketFactory, market_id: int) -> None:
        factory.buy(market_id, "dave", WAD)
        market = factory.get_market(market_id)
        assert factory.get_current_price(market_id) == price_at(
            market.curve.base_price, market.curve.slope, market.tokens_sold
        )
        assert market.current_price == factory.get_current_price(market_id)

    def test_snapshot_is_detached(self, factory: MarketFactory, market_id: int) -> None:
        snapshot = factory.get_market(market_id)
        factory.buy(market_id, "dave", WAD)
        assert snapshot.tokens_sold == 0
