"""
GovernanceEngine — предложения, голосование и исполнение

Отвечает за:
- Формирование кворума (QUORUM_FORMATION) с автоматическим созданием рынка
- Типизированные предложения по рынку (ADD_AGENT, REMOVE_AGENT, TREASURY_SPEND,
  ADJUST_FEES, FORCE_GRADUATE)
- Голосование весами снапшота кворума, действовавшего при создании предложения
- Исполнение одобренных предложений через MarketOperations

ЖИЗНЕННЫЙ ЦИКЛ:
    PENDING → APPROVED / REJECTED (дедлайн или мгновенно для unanimous-типов)
    APPROVED → EXECUTED (в окне исполнения) / EXPIRED (окно пропущено)

Порядок блокировок: предложение → кворум рынка → рынок (внутри MarketFactory).
"""

import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ValidationError

from src.core.concurrency import EntityLocks
from src.core.config import GovernanceConfig
from src.core.domain.proposal import (
    PAYLOAD_TYPES,
    AddAgentPayload,
    AdjustFeesPayload,
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
from src.core.errors import (
    AlreadyExecuted,
    AlreadyVoted,
    ExecutionWindowExpired,
    InvalidFee,
    InvalidPayload,
    MarketGraduated,
    MarketNotFound,
    NotEligibleVoter,
    ProposalNotApproved,
    ProposalNotFound,
    VotingInProgress,
    VotingWindowClosed,
)
from src.core.observability import get_component_logger, log_rejections
from src.governance.ports import MarketOperations
from src.governance.thresholds import (
    Electorate,
    ResolutionResult,
    build_electorate,
    resolve,
    tally,
)


def _system_clock_ms() -> int:
    return int(time.time() * 1000)


class GovernanceEngine:
    """
    Governance кворумов над рынками.

    Кворумы хранятся как история снапшотов по рынку: индекс в списке равен
    Quorum.version. Предложение голосуется весами снапшота quorum_version.
    """

    def __init__(
        self,
        markets: MarketOperations,
        config: Optional[GovernanceConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._markets = markets
        self._config = config or GovernanceConfig()
        self._clock = clock or _system_clock_ms

        self._proposals: Dict[int, ProposalRecord] = {}
        self._quorums: Dict[int, List[Quorum]] = {}
        self._registry_lock = threading.Lock()
        self._locks = EntityLocks()

        self._log = get_component_logger("governance")

    @property
    def config(self) -> GovernanceConfig:
        return self._config

    # =========================================================================
    # ПРЕДЛОЖЕНИЯ
    # =========================================================================

    def propose_quorum(
        self,
        proposer: str,
        agents: Sequence[str],
        weights: Sequence[int],
        name: str,
        symbol: str,
        thesis: str = "",
        description: str = "",
    ) -> int:
        """
        Предложение сформировать кворум и рынок.

        Предлагающий должен входить в agents и автоматически голосует "за".
        Когда все предложенные агенты одобрили, рынок создаётся сразу.

        Returns:
            Идентификатор предложения

        Raises:
            InvalidWeights: Длины не совпадают или сумма весов != 100
            QuorumSizeOutOfRange: Размер вне [min_quorum_size, max_quorum_size]
            DuplicateAgent: Агент указан дважды
            NotEligibleVoter: proposer не входит в agents
            InvalidPayload: Пустые name / symbol
        """
        with log_rejections(self._log, "propose_quorum", proposer=proposer):
            validate_quorum_members(
                agents,
                weights,
                min_size=self._config.min_quorum_size,
                max_size=self._config.max_quorum_size,
                required_total=self._config.required_weight_total,
            )
            if proposer not in agents:
                raise NotEligibleVoter(
                    f"Proposer {proposer} is not among the proposed agents",
                    details={"proposer": proposer},
                )

            payload = self._coerce_payload(
                ProposalType.QUORUM_FORMATION,
                {
                    "agents": tuple(agents),
                    "weights": tuple(weights),
                    "name": name,
                    "symbol": symbol,
                    "thesis": thesis,
                },
            )
            electorate = Electorate(agents=tuple(agents), weights=tuple(weights))
            now = self._clock()

            with self._registry_lock:
                proposal_id = len(self._proposals)
                record = ProposalRecord(
                    id=proposal_id,
                    proposal_type=ProposalType.QUORUM_FORMATION,
                    proposer=proposer,
                    payload=payload,
                    created_at_ms=now,
                    voting_deadline_ms=now + self._config.voting_period_ms,
                    quorum_version=0,
                    description=description,
                    votes={proposer: True},
                    for_weight=electorate.weight_of(proposer),
                )
                self._proposals[proposal_id] = record

        self._log.info(
            "proposal_created",
            proposal_id=proposal_id,
            proposal_type=ProposalType.QUORUM_FORMATION.value,
            proposer=proposer,
            agents=list(agents),
            symbol=symbol,
        )
        return proposal_id

    def propose(
        self,
        proposer: str,
        market_id: int,
        proposal_type: ProposalType,
        payload: Union[ProposalPayload, Mapping[str, Any]],
        description: str = "",
    ) -> int:
        """
        Предложение по существующему рынку.

        Args:
            proposer: Член текущего кворума рынка
            market_id: Рынок
            proposal_type: Любой тип, кроме QUORUM_FORMATION
            payload: Payload типа (модель или dict)
            description: Описание

        Returns:
            Идентификатор предложения

        Raises:
            MarketNotFound: У рынка нет кворума
            NotEligibleVoter: proposer не член кворума
            InvalidPayload, DuplicateAgent, QuorumSizeOutOfRange, InvalidFee,
            MarketGraduated: Невалидный payload для текущего состояния
        """
        with log_rejections(
            self._log, "propose", proposer=proposer, market_id=market_id
        ):
            proposal_type = ProposalType(proposal_type)
            if proposal_type == ProposalType.QUORUM_FORMATION:
                raise InvalidPayload("Quorum formation is proposed via propose_quorum")

            quorum = self.get_quorum(market_id)
            if not quorum.is_member(proposer):
                raise NotEligibleVoter(
                    f"{proposer} is not a quorum member of market {market_id}",
                    details={"proposer": proposer, "market_id": market_id},
                )

            typed_payload = self._coerce_payload(proposal_type, payload)
            self._validate_payload(market_id, quorum, proposal_type, typed_payload)
            now = self._clock()

            with self._registry_lock:
                proposal_id = len(self._proposals)
                self._proposals[proposal_id] = ProposalRecord(
                    id=proposal_id,
                    proposal_type=proposal_type,
                    proposer=proposer,
                    payload=typed_payload,
                    created_at_ms=now,
                    voting_deadline_ms=now + self._config.voting_period_ms,
                    quorum_version=quorum.version,
                    target_market_id=market_id,
                    description=description,
                )

        self._log.info(
            "proposal_created",
            proposal_id=proposal_id,
            proposal_type=proposal_type.value,
            proposer=proposer,
            market_id=market_id,
            quorum_version=quorum.version,
        )
        return proposal_id

    def _coerce_payload(
        self, proposal_type: ProposalType, payload: Union[BaseModel, Mapping[str, Any]]
    ) -> ProposalPayload:
        payload_cls = PAYLOAD_TYPES[proposal_type]
        if isinstance(payload, payload_cls):
            return payload
        if isinstance(payload, BaseModel):
            raise InvalidPayload(
                f"{type(payload).__name__} is not a payload for {proposal_type.value}"
            )
        try:
            return payload_cls.model_validate(dict(payload))
        except ValidationError as e:
            raise InvalidPayload(
                f"Invalid {proposal_type.value} payload: {e}",
                details={"proposal_type": proposal_type.value},
            ) from e

    def _validate_payload(
        self,
        market_id: int,
        quorum: Quorum,
        proposal_type: ProposalType,
        payload: ProposalPayload,
    ) -> None:
        if isinstance(payload, (AddAgentPayload, RemoveAgentPayload)):
            # Пробное применение к текущему снапшоту
            self._apply_membership(quorum, payload)
        elif isinstance(payload, AdjustFeesPayload):
            max_fee_bps = self._markets.config.max_fee_bps
            if payload.fee_bps > max_fee_bps:
                raise InvalidFee(
                    f"Fee {payload.fee_bps} bps above maximum {max_fee_bps}",
                    details={"fee_bps": payload.fee_bps, "max_fee_bps": max_fee_bps},
                )
        elif proposal_type == ProposalType.FORCE_GRADUATE:
            if self._markets.get_market(market_id).graduated:
                raise MarketGraduated(
                    f"Market {market_id} already graduated",
                    details={"market_id": market_id},
                )

    # =========================================================================
    # ГОЛОСОВАНИЕ
    # =========================================================================

    def approve_quorum(self, proposal_id: int, agent: str) -> ProposalSnapshot:
        """Одобрение формирования кворума (голос "за")."""
        record = self._get_record(proposal_id)
        if record.proposal_type != ProposalType.QUORUM_FORMATION:
            raise InvalidPayload(
                f"Proposal {proposal_id} is not a quorum formation",
                details={"proposal_id": proposal_id},
            )
        return self.vote(proposal_id, agent, True)

    def vote(self, proposal_id: int, agent: str, support: bool) -> ProposalSnapshot:
        """
        Голос агента по предложению.

        После записи голоса предложение переоценивается: unanimous-типы могут
        разрешиться немедленно; одобренное формирование кворума исполняется
        в этом же вызове.

        Raises:
            ProposalNotFound
            VotingWindowClosed: Дедлайн прошёл или предложение уже разрешено
            NotEligibleVoter: Агент вне электората (или удаляемый агент)
            AlreadyVoted
        """
        with log_rejections(self._log, "vote", proposal_id=proposal_id, agent=agent):
            with self._locks.hold(("proposal", proposal_id)):
                record = self._get_record(proposal_id)
                now = self._clock()

                if record.state != ProposalState.PENDING or now > record.voting_deadline_ms:
                    raise VotingWindowClosed(
                        f"Voting on proposal {proposal_id} is closed",
                        details={"proposal_id": proposal_id, "state": record.state.value},
                    )

                electorate = self._electorate(record)
                if not electorate.is_eligible(agent):
                    raise NotEligibleVoter(
                        f"{agent} cannot vote on proposal {proposal_id}",
                        details={"proposal_id": proposal_id, "agent": agent},
                    )
                if agent in record.votes:
                    raise AlreadyVoted(
                        f"{agent} already voted on proposal {proposal_id}",
                        details={"proposal_id": proposal_id, "agent": agent},
                    )

                votes = dict(record.votes)
                votes[agent] = bool(support)
                for_weight, against_weight = tally(votes, electorate)
                updated = record.evolve(
                    votes=votes, for_weight=for_weight, against_weight=against_weight
                )

                result = self._resolve(updated, electorate, now)
                if result.resolved:
                    updated = self._apply_resolution(updated, result)
                if (
                    updated.state == ProposalState.APPROVED
                    and updated.proposal_type == ProposalType.QUORUM_FORMATION
                ):
                    updated = self._execute_approved(updated, now)

                self._proposals[proposal_id] = updated

        self._log.info(
            "vote_cast",
            proposal_id=proposal_id,
            agent=agent,
            support=bool(support),
            weight=electorate.weight_of(agent),
            for_weight=updated.for_weight,
            against_weight=updated.against_weight,
        )
        if result.resolved:
            self._log_resolution(updated, result)
        if updated.state == ProposalState.EXECUTED:
            self._log_execution(updated)
        return updated.to_snapshot()

    # =========================================================================
    # РАЗРЕШЕНИЕ И ИСПОЛНЕНИЕ
    # =========================================================================

    def finalize(self, proposal_id: int) -> ProposalSnapshot:
        """
        Фиксация результата PENDING предложения после дедлайна.

        До дедлайна и для уже разрешённых предложений состояние не меняется.
        """
        with self._locks.hold(("proposal", proposal_id)):
            record = self._get_record(proposal_id)
            if record.state != ProposalState.PENDING:
                return record.to_snapshot()

            result = self._resolve(record, self._electorate(record), self._clock())
            if not result.resolved:
                return record.to_snapshot()

            updated = self._apply_resolution(record, result)
            self._proposals[proposal_id] = updated

        self._log_resolution(updated, result)
        return updated.to_snapshot()

    def execute(self, proposal_id: int) -> ProposalSnapshot:
        """
        Исполнение одобренного предложения.

        Raises:
            ProposalNotFound
            VotingInProgress: Голосование ещё идёт
            ProposalNotApproved: Предложение отклонено
            AlreadyExecuted
            ExecutionWindowExpired: Окно исполнения пропущено (state → EXPIRED)
            QuorumSizeOutOfRange, DuplicateAgent, NotEligibleVoter: Payload
                несовместим с текущим снапшотом кворума (ничего не фиксируется)
        """
        with log_rejections(self._log, "execute", proposal_id=proposal_id):
            # Разрешение после дедлайна фиксируется независимо от исхода исполнения
            snapshot = self.finalize(proposal_id)

            with self._locks.hold(("proposal", proposal_id)):
                record = self._get_record(proposal_id)
                now = self._clock()

                if record.state == ProposalState.PENDING:
                    raise VotingInProgress(
                        f"Voting on proposal {proposal_id} ends at {record.voting_deadline_ms}",
                        details={"proposal_id": proposal_id, "now_ms": now},
                    )
                if record.state == ProposalState.EXECUTED:
                    raise AlreadyExecuted(
                        f"Proposal {proposal_id} already executed",
                        details={"proposal_id": proposal_id},
                    )
                if record.state == ProposalState.REJECTED:
                    raise ProposalNotApproved(
                        f"Proposal {proposal_id} was rejected",
                        details={"proposal_id": proposal_id, "for_weight": snapshot.for_weight},
                    )
                if record.state == ProposalState.EXPIRED:
                    raise ExecutionWindowExpired(
                        f"Proposal {proposal_id} expired",
                        details={"proposal_id": proposal_id},
                    )

                execution_deadline = record.voting_closed_at_ms + self._config.execution_window_ms
                if now > execution_deadline:
                    self._proposals[proposal_id] = record.evolve(state=ProposalState.EXPIRED)
                    self._log.warning(
                        "proposal_expired",
                        proposal_id=proposal_id,
                        execution_deadline_ms=execution_deadline,
                    )
                    raise ExecutionWindowExpired(
                        f"Execution window of proposal {proposal_id} closed at {execution_deadline}",
                        details={"proposal_id": proposal_id, "now_ms": now},
                    )

                updated = self._execute_approved(record, now)
                self._proposals[proposal_id] = updated

        self._log_execution(updated)
        return updated.to_snapshot()

    def _execute_approved(self, record: ProposalRecord, now: int) -> ProposalRecord:
        """
        Применение payload. Вызывается под блокировкой предложения.

        Возвращает EXECUTED-запись; при исключении ничего не зафиксировано.
        """
        payload = record.payload

        if isinstance(payload, QuorumFormationPayload):
            quorum = Quorum.form(
                payload.agents,
                payload.weights,
                min_size=self._config.min_quorum_size,
                max_size=self._config.max_quorum_size,
                required_total=self._config.required_weight_total,
            )
            with self._registry_lock:
                market_id = self._markets.create_market(
                    quorum,
                    name=payload.name,
                    symbol=payload.symbol,
                    thesis=payload.thesis,
                    quorum_bounds=(
                        self._config.min_quorum_size,
                        self._config.max_quorum_size,
                        self._config.required_weight_total,
                    ),
                )
                self._quorums[market_id] = [quorum]
            return record.evolve(
                state=ProposalState.EXECUTED,
                executed_at_ms=now,
                created_market_id=market_id,
            )

        market_id = record.target_market_id
        if isinstance(payload, (AddAgentPayload, RemoveAgentPayload)):
            # Кворум мог измениться после создания предложения
            with self._locks.hold(("market", market_id)):
                updated_quorum = self._apply_membership(self.get_quorum(market_id), payload)
                self._quorums[market_id].append(updated_quorum)
        elif isinstance(payload, TreasurySpendPayload):
            self._markets.spend_treasury(market_id, payload.amount, payload.recipient)
        elif isinstance(payload, AdjustFeesPayload):
            self._markets.set_market_fee(market_id, payload.fee_bps)
        elif record.proposal_type == ProposalType.FORCE_GRADUATE:
            self._markets.force_graduate(market_id)

        return record.evolve(state=ProposalState.EXECUTED, executed_at_ms=now)

    def _apply_membership(
        self, quorum: Quorum, payload: Union[AddAgentPayload, RemoveAgentPayload]
    ) -> Quorum:
        """Следующий снапшот кворума в границах [min_quorum_size, max_quorum_size]."""
        bounds = {
            "min_size": self._config.min_quorum_size,
            "max_size": self._config.max_quorum_size,
        }
        if isinstance(payload, AddAgentPayload):
            return quorum.with_agent(payload.agent, payload.weight, **bounds)
        return quorum.without_agent(payload.agent, **bounds)

    def _resolve(
        self, record: ProposalRecord, electorate: Electorate, now: int
    ) -> ResolutionResult:
        return resolve(
            record.proposal_type,
            record.votes,
            electorate,
            threshold_bps=self._config.approval_threshold_bps,
            voting_deadline_ms=record.voting_deadline_ms,
            now_ms=now,
        )

    @staticmethod
    def _apply_resolution(record: ProposalRecord, result: ResolutionResult) -> ProposalRecord:
        return record.evolve(state=result.state, voting_closed_at_ms=result.closed_at_ms)

    def _electorate(self, record: ProposalRecord) -> Electorate:
        if isinstance(record.payload, QuorumFormationPayload):
            return Electorate(agents=record.payload.agents, weights=record.payload.weights)
        quorum = self._quorum_at(record.target_market_id, record.quorum_version)
        return build_electorate(record.proposal_type, record.payload, quorum)

    def _log_resolution(self, record: ProposalRecord, result: ResolutionResult) -> None:
        self._log.info(
            "proposal_resolved",
            proposal_id=record.id,
            proposal_type=record.proposal_type.value,
            state=record.state.value,
            for_weight=result.for_weight,
            denominator=result.denominator,
            reason=result.reason,
        )

    def _log_execution(self, record: ProposalRecord) -> None:
        self._log.info(
            "proposal_executed",
            proposal_id=record.id,
            proposal_type=record.proposal_type.value,
            market_id=record.target_market_id,
            created_market_id=record.created_market_id,
        )

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    def get_proposal(self, proposal_id: int) -> ProposalSnapshot:
        """
        Снапшот предложения на текущий момент.

        PENDING предложение после дедлайна показывается разрешённым, но
        состояние фиксируется только finalize / execute.
        """
        record = self._get_record(proposal_id)
        if record.state == ProposalState.PENDING:
            result = self._resolve(record, self._electorate(record), self._clock())
            if result.resolved:
                record = self._apply_resolution(record, result)
        return record.to_snapshot()

    def get_quorum(self, market_id: int) -> Quorum:
        """Текущий снапшот кворума рынка."""
        history = self._quorums.get(market_id)
        if not history:
            raise MarketNotFound(
                f"No quorum governs market {market_id}", details={"market_id": market_id}
            )
        return history[-1]

    def has_voted(self, proposal_id: int, agent: str) -> bool:
        return agent in self._get_record(proposal_id).votes

    def is_quorum_member(self, market_id: int, agent: str) -> bool:
        return self.get_quorum(market_id).is_member(agent)

    def agent_weight(self, market_id: int, agent: str) -> int:
        return self.get_quorum(market_id).weight_of(agent)

    def market_total_weight(self, market_id: int) -> int:
        return self.get_quorum(market_id).total_weight

    def proposal_count(self) -> int:
        return len(self._proposals)

    def _quorum_at(self, market_id: int, version: int) -> Quorum:
        history = self._quorums.get(market_id)
        if not history:
            raise MarketNotFound(
                f"No quorum governs market {market_id}", details={"market_id": market_id}
            )
        return history[version]

    def _get_record(self, proposal_id: int) -> ProposalRecord:
        record = self._proposals.get(proposal_id)
        if record is None:
            raise ProposalNotFound(
                f"Proposal {proposal_id} not found", details={"proposal_id": proposal_id}
            )
        return record
