"""
MarketFactory — рынки на линейной bonding curve

Отвечает за:
- Создание рынка для сформированного кворума (30% кворуму, 60% кривой, 10% treasury)
- Покупку / продажу по кривой с торговой комиссией
- Graduation при достижении target_raise с передачей ликвидности во внешний пул
- Governance-возможности: force_graduate, set_market_fee, spend_treasury
- Административную паузу с timelock

ПРАВИЛА ИЗМЕНЕНИЯ СОСТОЯНИЯ:
1. Все мутации рынка выполняются под блокировкой этого рынка
2. Compute-then-commit: новое состояние вычисляется полностью, затем выполняется
   внешний вызов liquidity pool, и только после этого состояние фиксируется
3. Любое исключение означает, что рынок, балансы токенов и treasury не изменены
4. Чтения возвращают immutable снапшоты без блокировок
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from src.core.concurrency import EntityLocks
from src.core.config import MarketConfig
from src.core.domain.market import (
    CurveParameters,
    MarketRecord,
    MarketSnapshot,
    MarketStatus,
    TokenAllocation,
)
from src.core.domain.quorum import Quorum, validate_quorum_members
from src.core.errors import (
    BelowMinimumPurchase,
    CurveSupplyExhausted,
    InsufficientTokensHeld,
    InvalidCurveParameters,
    InvalidFee,
    InvalidPayload,
    LiquidityProvisionFailed,
    MarketGraduated,
    MarketNotActive,
    MarketNotFound,
    NoPendingPause,
    SlippageExceeded,
    TimelockNotExpired,
    ZeroTokensIn,
    ZeroTokensOut,
)
from src.core.math.bonding_curve import price_at, purchase_return, sale_return
from src.core.math.fixed_point import (
    bps_of,
    checked_add,
    checked_sub,
    mul_div,
    validate_non_negative,
    validate_positive,
)
from src.core.observability import get_component_logger, log_rejections
from src.markets.ports import (
    InMemoryLiquidityPool,
    InMemoryTokenLedger,
    LiquidityPool,
    TokenLedger,
)


def _system_clock_ms() -> int:
    return int(time.time() * 1000)


class MarketFactory:
    """
    Реестр рынков и торговля по кривой.

    Не знает о governance: GovernanceEngine получает ссылку на фабрику и
    вызывает только её governance-возможности.
    """

    def __init__(
        self,
        config: Optional[MarketConfig] = None,
        ledger: Optional[TokenLedger] = None,
        liquidity_pool: Optional[LiquidityPool] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._config = config or MarketConfig()
        self._ledger = ledger or InMemoryTokenLedger()
        self._pool = liquidity_pool or InMemoryLiquidityPool()
        self._clock = clock or _system_clock_ms

        self._markets: Dict[int, MarketRecord] = {}
        self._treasury_values: Dict[int, int] = {}
        self._registry_lock = threading.Lock()
        self._locks = EntityLocks()

        self._default_curve = CurveParameters(
            base_price=self._config.base_price,
            slope=self._config.slope,
            target_raise=self._config.target_raise,
        )
        self._default_total_supply = self._config.total_supply

        self._log = get_component_logger("market_factory")

    @property
    def config(self) -> MarketConfig:
        return self._config

    @property
    def ledger(self) -> TokenLedger:
        return self._ledger

    @property
    def default_curve(self) -> CurveParameters:
        return self._default_curve

    # =========================================================================
    # СОЗДАНИЕ
    # =========================================================================

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
        """
        Создание рынка для кворума.

        Args:
            quorum: Сформированный кворум
            name: Имя токена
            symbol: Тикер токена
            thesis: Инвестиционный тезис
            curve_parameters: Параметры кривой (по умолчанию default_curve)
            total_supply: Общий выпуск (по умолчанию из конфигурации)
            quorum_bounds: (min_size, max_size, required_total), под которыми
                кворум был сформирован; по умолчанию границы из MarketConfig

        Returns:
            Идентификатор рынка (монотонно с 0)

        Raises:
            QuorumSizeOutOfRange, DuplicateAgent, InvalidWeights: Невалидный кворум
            InvalidCurveParameters: Невалидный total_supply
        """
        with log_rejections(self._log, "create_market", symbol=symbol):
            min_size, max_size, required_total = quorum_bounds or (
                self._config.min_quorum_size,
                self._config.max_quorum_size,
                self._config.required_weight_total,
            )
            validate_quorum_members(
                quorum.agents,
                quorum.weights,
                min_size=min_size,
                max_size=max_size,
                required_total=required_total,
            )
            if not name or not symbol:
                raise InvalidPayload("Market name and symbol are required")

            curve = curve_parameters or self._default_curve
            supply = self._default_total_supply if total_supply is None else total_supply
            if supply <= 0:
                raise InvalidCurveParameters(
                    f"total_supply must be positive, got {supply}",
                    details={"total_supply": supply},
                )

            allocation = self._allocate(quorum, supply)

            with self._registry_lock:
                market_id = len(self._markets)
                record = MarketRecord(
                    id=market_id,
                    name=name,
                    symbol=symbol,
                    thesis=thesis,
                    curve=curve,
                    total_supply=supply,
                    allocation=allocation,
                    fee_bps=self._config.fee_bps,
                    created_at_ms=self._clock(),
                )

                for agent, amount in allocation.per_agent.items():
                    self._ledger.mint(market_id, agent, amount)
                self._ledger.mint(market_id, self._config.curve_account, allocation.curve)
                self._ledger.mint(market_id, self._config.treasury_account, allocation.treasury)

                self._treasury_values[market_id] = 0
                self._markets[market_id] = record

        self._log.info(
            "market_created",
            market_id=market_id,
            symbol=symbol,
            agents=list(quorum.agents),
            total_supply=supply,
            base_price=curve.base_price,
            slope=curve.slope,
            target_raise=curve.target_raise,
        )
        return market_id

    def _allocate(self, quorum: Quorum, total_supply: int) -> TokenAllocation:
        quorum_total = bps_of(total_supply, self._config.quorum_allocation_bps)
        curve_total = bps_of(total_supply, self._config.curve_allocation_bps)
        treasury_total = checked_sub(checked_sub(total_supply, quorum_total), curve_total)

        total_weight = quorum.total_weight
        per_agent: Dict[str, int] = {}
        distributed = 0
        for agent, weight in zip(quorum.agents[:-1], quorum.weights[:-1]):
            share = mul_div(quorum_total, weight, total_weight)
            per_agent[agent] = share
            distributed += share
        # Пыль от округления достаётся последнему агенту
        per_agent[quorum.agents[-1]] = quorum_total - distributed

        return TokenAllocation(
            quorum=quorum_total,
            curve=curve_total,
            treasury=treasury_total,
            per_agent=per_agent,
        )

    # =========================================================================
    # ТОРГОВЛЯ
    # =========================================================================

    def buy(self, market_id: int, buyer: str, value_in: int, min_tokens_out: int = 0) -> int:
        """
        Покупка токенов по кривой.

        Комиссия (fee_bps от value_in) уходит в treasury рынка, остаток (net)
        идёт в резерв кривой и в value_raised. Если покупка пересекает
        target_raise, рынок graduates в этой же операции.

        Returns:
            Количество купленных токенов

        Raises:
            MarketNotFound, MarketNotActive, MarketGraduated
            BelowMinimumPurchase: value_in < min_purchase
            ZeroTokensOut: net value не покупает ни одного шага точности
            SlippageExceeded: tokens_out < min_tokens_out
            CurveSupplyExhausted: tokens_out больше остатка curve-аллокации
            LiquidityProvisionFailed: Пул отказал при graduation (покупка откатывается)
        """
        validate_non_negative(value_in, "value_in")
        validate_non_negative(min_tokens_out, "min_tokens_out")

        with log_rejections(self._log, "buy", market_id=market_id, buyer=buyer):
            with self._locks.hold(market_id):
                record = self._require_tradable(market_id)

                if value_in < self._config.min_purchase:
                    raise BelowMinimumPurchase(
                        f"Purchase {value_in} below minimum {self._config.min_purchase}",
                        details={"value_in": value_in, "min_purchase": self._config.min_purchase},
                    )

                fee = bps_of(value_in, record.fee_bps)
                net_value = checked_sub(value_in, fee)
                curve = record.curve
                tokens_out = purchase_return(
                    curve.base_price, curve.slope, record.tokens_sold, net_value
                )

                if tokens_out == 0:
                    raise ZeroTokensOut(
                        "Purchase amount too small for curve precision",
                        details={"net_value": net_value},
                    )
                if tokens_out < min_tokens_out:
                    raise SlippageExceeded(
                        f"tokens_out {tokens_out} < min_tokens_out {min_tokens_out}",
                        details={"tokens_out": tokens_out, "min_tokens_out": min_tokens_out},
                    )

                remaining = record.allocation.curve - record.tokens_sold
                if tokens_out > remaining:
                    raise CurveSupplyExhausted(
                        f"tokens_out {tokens_out} exceeds remaining curve supply {remaining}",
                        details={"tokens_out": tokens_out, "remaining": remaining},
                    )

                updated = record.evolve(
                    tokens_sold=record.tokens_sold + tokens_out,
                    value_raised=checked_add(record.value_raised, net_value),
                    reserve_balance=checked_add(record.reserve_balance, net_value),
                )

                handoff = None
                if updated.value_raised >= curve.target_raise:
                    updated, handoff = self._graduate(updated)

                # Commit
                self._ledger.transfer(market_id, self._config.curve_account, buyer, tokens_out)
                self._commit_handoff(market_id, handoff)
                self._treasury_values[market_id] = checked_add(
                    self._treasury_values[market_id], fee
                )
                self._markets[market_id] = updated

        self._log.info(
            "tokens_purchased",
            market_id=market_id,
            buyer=buyer,
            value_in=value_in,
            fee=fee,
            tokens_out=tokens_out,
            tokens_sold=updated.tokens_sold,
            value_raised=updated.value_raised,
        )
        if handoff is not None:
            self._log_graduation(updated, handoff, forced=False)
        return tokens_out

    def sell(self, market_id: int, seller: str, tokens_in: int, min_value_out: int = 0) -> int:
        """
        Продажа токенов обратно в кривую.

        Выплата считается точно (sale_return), комиссия удерживается из неё.
        value_raised не уменьшается: резерв уменьшается на валовую выплату.

        Returns:
            Выплата продавцу за вычетом комиссии

        Raises:
            MarketNotFound, MarketNotActive, MarketGraduated
            ZeroTokensIn: tokens_in == 0
            InsufficientTokensHeld: Баланс продавца или tokens_sold меньше tokens_in
            SlippageExceeded: Выплата < min_value_out
        """
        validate_non_negative(tokens_in, "tokens_in")
        validate_non_negative(min_value_out, "min_value_out")

        with log_rejections(self._log, "sell", market_id=market_id, seller=seller):
            with self._locks.hold(market_id):
                record = self._require_tradable(market_id)

                if tokens_in == 0:
                    raise ZeroTokensIn("Cannot sell zero tokens")

                held = self._ledger.balance_of(market_id, seller)
                if held < tokens_in:
                    raise InsufficientTokensHeld(
                        f"{seller} holds {held}, cannot sell {tokens_in}",
                        details={"held": held, "tokens_in": tokens_in},
                    )

                curve = record.curve
                gross = sale_return(curve.base_price, curve.slope, record.tokens_sold, tokens_in)
                fee = bps_of(gross, record.fee_bps)
                value_out = gross - fee

                if value_out < min_value_out:
                    raise SlippageExceeded(
                        f"value_out {value_out} < min_value_out {min_value_out}",
                        details={"value_out": value_out, "min_value_out": min_value_out},
                    )

                updated = record.evolve(
                    tokens_sold=record.tokens_sold - tokens_in,
                    reserve_balance=checked_sub(record.reserve_balance, gross),
                )

                self._ledger.transfer(market_id, seller, self._config.curve_account, tokens_in)
                self._treasury_values[market_id] = checked_add(
                    self._treasury_values[market_id], fee
                )
                self._markets[market_id] = updated

        self._log.info(
            "tokens_sold",
            market_id=market_id,
            seller=seller,
            tokens_in=tokens_in,
            fee=fee,
            value_out=value_out,
            tokens_sold=updated.tokens_sold,
        )
        return value_out

    # =========================================================================
    # GRADUATION
    # =========================================================================

    def _graduate(self, record: MarketRecord) -> Tuple[MarketRecord, Tuple[str, int, int]]:
        """
        Вычисление graduated-состояния и передача ликвидности в пул.

        Вызывается под блокировкой рынка до commit. При отказе пула поднимает
        LiquidityProvisionFailed; вызывающий ничего не фиксирует.
        """
        token_amount = record.allocation.curve - record.tokens_sold
        value_amount = bps_of(record.reserve_balance, self._config.graduation_liquidity_bps)

        try:
            pool_id = self._pool.create_pair(record.id)
            self._pool.add_liquidity(pool_id, token_amount, value_amount)
        except Exception as e:
            raise LiquidityProvisionFailed(
                f"Liquidity pool rejected graduation of market {record.id}: {e}",
                details={"market_id": record.id},
            ) from e

        graduated = record.evolve(
            graduated=True,
            graduated_at_ms=self._clock(),
            reserve_balance=record.reserve_balance - value_amount,
            pool_id=pool_id,
        )
        return graduated, (pool_id, token_amount, value_amount)

    def _commit_handoff(self, market_id: int, handoff: Optional[Tuple[str, int, int]]) -> None:
        if handoff is None:
            return
        pool_id, token_amount, _ = handoff
        self._ledger.transfer(market_id, self._config.curve_account, pool_id, token_amount)

    def _log_graduation(
        self, record: MarketRecord, handoff: Tuple[str, int, int], forced: bool
    ) -> None:
        pool_id, token_amount, value_amount = handoff
        self._log.info(
            "market_graduated",
            market_id=record.id,
            pool_id=pool_id,
            token_liquidity=token_amount,
            value_liquidity=value_amount,
            value_raised=record.value_raised,
            forced=forced,
        )

    def check_graduation(self, market_id: int) -> bool:
        """
        Graduation, если value_raised >= target_raise.

        Returns:
            True, если рынок graduated (сейчас или ранее)
        """
        with log_rejections(self._log, "check_graduation", market_id=market_id):
            with self._locks.hold(market_id):
                record = self._get_record(market_id)
                if record.graduated:
                    return True
                if record.value_raised < record.curve.target_raise:
                    return False

                updated, handoff = self._graduate(record)
                self._commit_handoff(market_id, handoff)
                self._markets[market_id] = updated

        self._log_graduation(updated, handoff, forced=False)
        return True

    def force_graduate(self, market_id: int) -> None:
        """Graduation в обход target_raise (governance FORCE_GRADUATE)."""
        with log_rejections(self._log, "force_graduate", market_id=market_id):
            with self._locks.hold(market_id):
                record = self._get_record(market_id)
                if record.graduated:
                    raise MarketGraduated(
                        f"Market {market_id} already graduated",
                        details={"market_id": market_id},
                    )

                updated, handoff = self._graduate(record)
                self._commit_handoff(market_id, handoff)
                self._markets[market_id] = updated

        self._log_graduation(updated, handoff, forced=True)

    # =========================================================================
    # GOVERNANCE-ВОЗМОЖНОСТИ
    # =========================================================================

    def set_market_fee(self, market_id: int, fee_bps: int) -> None:
        """Raises InvalidFee, если fee_bps вне [0, max_fee_bps]."""
        with log_rejections(self._log, "set_market_fee", market_id=market_id):
            if fee_bps < 0 or fee_bps > self._config.max_fee_bps:
                raise InvalidFee(
                    f"Fee {fee_bps} bps outside [0, {self._config.max_fee_bps}]",
                    details={"fee_bps": fee_bps, "max_fee_bps": self._config.max_fee_bps},
                )
            with self._locks.hold(market_id):
                record = self._get_record(market_id)
                self._markets[market_id] = record.evolve(fee_bps=fee_bps)

        self._log.info(
            "market_fee_updated",
            market_id=market_id,
            old_fee_bps=record.fee_bps,
            new_fee_bps=fee_bps,
        )

    def spend_treasury(self, market_id: int, amount: int, recipient: str) -> None:
        """
        Перевод treasury-токенов рынка получателю.

        Raises:
            InsufficientTokensHeld: В treasury меньше amount
        """
        validate_positive(amount, "amount")
        with log_rejections(
            self._log, "spend_treasury", market_id=market_id, recipient=recipient
        ):
            with self._locks.hold(market_id):
                self._get_record(market_id)
                self._ledger.transfer(
                    market_id, self._config.treasury_account, recipient, amount
                )

        self._log.info(
            "treasury_spent", market_id=market_id, amount=amount, recipient=recipient
        )

    # =========================================================================
    # АДМИНИСТРИРОВАНИЕ
    # =========================================================================

    def request_pause(self, market_id: int) -> None:
        """Запрос паузы; исполнима через pause_timelock_ms."""
        with log_rejections(self._log, "request_pause", market_id=market_id):
            with self._locks.hold(market_id):
                record = self._get_record(market_id)
                self._markets[market_id] = record.evolve(pending_pause_at_ms=self._clock())
        self._log.info("pause_requested", market_id=market_id)

    def cancel_pause(self, market_id: int) -> None:
        with log_rejections(self._log, "cancel_pause", market_id=market_id):
            with self._locks.hold(market_id):
                record = self._get_record(market_id)
                if record.pending_pause_at_ms is None:
                    raise NoPendingPause(f"No pending pause for market {market_id}")
                self._markets[market_id] = record.evolve(pending_pause_at_ms=None)
        self._log.info("pause_cancelled", market_id=market_id)

    def execute_pause(self, market_id: int) -> None:
        """
        Raises:
            NoPendingPause: Пауза не запрошена
            TimelockNotExpired: pause_timelock_ms ещё не прошёл
        """
        with log_rejections(self._log, "execute_pause", market_id=market_id):
            with self._locks.hold(market_id):
                record = self._get_record(market_id)
                if record.pending_pause_at_ms is None:
                    raise NoPendingPause(f"No pending pause for market {market_id}")

                executable_at = record.pending_pause_at_ms + self._config.pause_timelock_ms
                now = self._clock()
                if now < executable_at:
                    raise TimelockNotExpired(
                        f"Pause executable at {executable_at}, now {now}",
                        details={"executable_at_ms": executable_at, "now_ms": now},
                    )

                self._markets[market_id] = record.evolve(
                    status=MarketStatus.PAUSED, pending_pause_at_ms=None
                )
        self._log.warning("market_paused", market_id=market_id)

    def unpause(self, market_id: int) -> None:
        with log_rejections(self._log, "unpause", market_id=market_id):
            with self._locks.hold(market_id):
                record = self._get_record(market_id)
                self._markets[market_id] = record.evolve(status=MarketStatus.ACTIVE)
        self._log.info("market_unpaused", market_id=market_id)

    def set_default_parameters(
        self,
        base_price: int,
        slope: int,
        target_raise: int,
        total_supply: Optional[int] = None,
    ) -> None:
        """
        Параметры кривой для рынков, создаваемых после вызова.

        Существующие рынки не затрагиваются.

        Raises:
            InvalidCurveParameters: Отрицательные значения или base_price == slope == 0
        """
        try:
            curve = CurveParameters(
                base_price=base_price, slope=slope, target_raise=target_raise
            )
        except ValidationError as e:
            raise InvalidCurveParameters(f"Invalid curve parameters: {e}") from e

        if total_supply is not None and total_supply <= 0:
            raise InvalidCurveParameters(
                f"total_supply must be positive, got {total_supply}",
                details={"total_supply": total_supply},
            )

        with self._registry_lock:
            self._default_curve = curve
            if total_supply is not None:
                self._default_total_supply = total_supply

        self._log.info(
            "default_parameters_updated",
            base_price=base_price,
            slope=slope,
            target_raise=target_raise,
            total_supply=self._default_total_supply,
        )

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    def get_market(self, market_id: int) -> MarketSnapshot:
        record = self._get_record(market_id)
        curve = record.curve
        return record.to_snapshot(price_at(curve.base_price, curve.slope, record.tokens_sold))

    def get_current_price(self, market_id: int) -> int:
        record = self._get_record(market_id)
        return price_at(record.curve.base_price, record.curve.slope, record.tokens_sold)

    def calculate_purchase_return(self, market_id: int, value_in: int) -> int:
        """Токены, которые buy(value_in) выдал бы сейчас (комиссия учтена)."""
        record = self._get_record(market_id)
        net_value = value_in - bps_of(value_in, record.fee_bps)
        return purchase_return(
            record.curve.base_price, record.curve.slope, record.tokens_sold, net_value
        )

    def calculate_sale_return(self, market_id: int, tokens_in: int) -> int:
        """Выплата, которую sell(tokens_in) дал бы сейчас (комиссия учтена)."""
        record = self._get_record(market_id)
        gross = sale_return(
            record.curve.base_price, record.curve.slope, record.tokens_sold, tokens_in
        )
        return gross - bps_of(gross, record.fee_bps)

    def market_count(self) -> int:
        return len(self._markets)

    def treasury_value_balance(self, market_id: int) -> int:
        """Накопленные комиссии рынка (value)."""
        self._get_record(market_id)
        return self._treasury_values[market_id]

    def balance_of(self, market_id: int, account: str) -> int:
        return self._ledger.balance_of(market_id, account)

    # =========================================================================
    # ВНУТРЕННЕЕ
    # =========================================================================

    def _get_record(self, market_id: int) -> MarketRecord:
        record = self._markets.get(market_id)
        if record is None:
            raise MarketNotFound(
                f"Market {market_id} not found", details={"market_id": market_id}
            )
        return record

    def _require_tradable(self, market_id: int) -> MarketRecord:
        record = self._get_record(market_id)
        if record.graduated:
            raise MarketGraduated(
                f"Market {market_id} graduated; curve trading closed",
                details={"market_id": market_id},
            )
        if record.status != MarketStatus.ACTIVE:
            raise MarketNotActive(
                f"Market {market_id} is {record.status.value}",
                details={"market_id": market_id},
            )
        return record
