"""
Tests for JSON Schema Contract Validators

Тестирование контрактов снапшотов:
- Валидность самих схем
- Снапшоты MarketFactory / GovernanceEngine соответствуют схемам
- Детекция нарушений required полей, типов и enum
- Условие target_market_id для QUORUM_FORMATION
- validate_snapshot: выбор контракта по типу снапшота
"""

import json
from pathlib import Path

import pytest
from jsonschema import ValidationError

from src.core.contracts import (
    SchemaLoader,
    contract_errors,
    validate_snapshot,
    validate_market,
    validate_proposal,
    validate_quorum_snapshot,
)
from src.core.domain.proposal import ProposalType, TreasurySpendPayload
from src.core.math.fixed_point import WAD


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def market_data(factory, governed_market):
    factory.buy(governed_market, "dave", WAD)
    return factory.get_market(governed_market).model_dump(mode="json")


@pytest.fixture
def proposal_data(governance, governed_market):
    proposal_id = governance.propose(
        "alice",
        governed_market,
        ProposalType.TREASURY_SPEND,
        TreasurySpendPayload(amount=WAD, recipient="grants"),
    )
    governance.vote(proposal_id, "bob", True)
    return governance.get_proposal(proposal_id).model_dump(mode="json")


@pytest.fixture
def quorum_data(governance, governed_market):
    return governance.get_quorum(governed_market).model_dump(mode="json")


# =============================================================================
# SCHEMA LOADER
# =============================================================================


class TestSchemaLoader:
    def test_all_schemas_load(self):
        loader = SchemaLoader()
        for name in ("market", "proposal", "quorum"):
            schema = loader.load_schema(name)
            assert schema["$schema"].endswith("2020-12/schema")

    def test_schema_cached(self):
        loader = SchemaLoader()
        assert loader.load_schema("market") is loader.load_schema("market")

    def test_missing_schema(self):
        with pytest.raises(FileNotFoundError):
            SchemaLoader().load_schema("position")

    def test_missing_directory(self, tmp_path: Path):
        with pytest.raises(RuntimeError):
            SchemaLoader(tmp_path / "absent")

    def test_invalid_schema_rejected(self, tmp_path: Path):
        (tmp_path / "broken.json").write_text(json.dumps({"type": 42}), encoding="utf-8")
        with pytest.raises(ValueError, match="Invalid JSON Schema"):
            SchemaLoader(tmp_path).load_schema("broken")


# =============================================================================
# MARKET
# =============================================================================


class TestMarketContract:
    def test_snapshot_valid(self, market_data):
        validate_market(market_data)
        assert contract_errors("market", market_data) == []

    def test_graduated_snapshot_valid(self, factory, governed_market):
        factory.force_graduate(governed_market)
        validate_market(factory.get_market(governed_market).model_dump(mode="json"))

    def test_missing_required(self, market_data):
        del market_data["tokens_sold"]
        with pytest.raises(ValidationError):
            validate_market(market_data)

    def test_negative_amount(self, market_data):
        market_data["reserve_balance"] = -1
        with pytest.raises(ValidationError):
            validate_market(market_data)

    def test_unknown_status(self, market_data):
        market_data["status"] = "HALTED"
        with pytest.raises(ValidationError):
            validate_market(market_data)

    def test_additional_property(self, market_data):
        market_data["price_usd"] = 1
        errors = contract_errors("market", market_data)
        assert len(errors) == 1
        assert errors[0].startswith("$: ")
        assert "price_usd" in errors[0]


# =============================================================================
# PROPOSAL
# =============================================================================


class TestProposalContract:
    def test_snapshot_valid(self, proposal_data):
        validate_proposal(proposal_data)
        assert proposal_data["payload"] == {"amount": WAD, "recipient": "grants"}

    def test_formation_snapshot_valid(self, governance, governed_market):
        snapshot = governance.get_proposal(0).model_dump(mode="json")
        assert snapshot["state"] == "EXECUTED"
        validate_proposal(snapshot)

    def test_formation_must_not_target_market(self, governance, governed_market):
        snapshot = governance.get_proposal(0).model_dump(mode="json")
        snapshot["target_market_id"] = 3
        with pytest.raises(ValidationError):
            validate_proposal(snapshot)

    def test_market_proposal_requires_target(self, proposal_data):
        proposal_data["target_market_id"] = None
        assert contract_errors("proposal", proposal_data)

    def test_unknown_state(self, proposal_data):
        proposal_data["state"] = "VETOED"
        with pytest.raises(ValidationError):
            validate_proposal(proposal_data)

    def test_vote_must_be_boolean(self, proposal_data):
        proposal_data["votes"]["bob"] = "yes"
        with pytest.raises(ValidationError):
            validate_proposal(proposal_data)


# =============================================================================
# QUORUM
# =============================================================================


class TestQuorumContract:
    def test_snapshot_valid(self, quorum_data):
        validate_quorum_snapshot(quorum_data)
        assert quorum_data == {
            "agents": ["alice", "bob", "carol"],
            "weights": [40, 35, 25],
            "version": 0,
        }

    def test_duplicate_agents(self, quorum_data):
        quorum_data["agents"] = ["alice", "alice", "carol"]
        errors = contract_errors("quorum", quorum_data)
        assert len(errors) == 1
        assert errors[0].startswith("$.agents: ")

    def test_missing_version(self, quorum_data):
        del quorum_data["version"]
        with pytest.raises(ValidationError):
            validate_quorum_snapshot(quorum_data)


# =============================================================================
# SNAPSHOT DISPATCH
# =============================================================================


class TestValidateSnapshot:
    def test_each_snapshot_type(self, factory, governance, governed_market):
        market = factory.get_market(governed_market)
        assert validate_snapshot(market) == market.model_dump(mode="json")
        validate_snapshot(governance.get_proposal(0))
        validate_snapshot(governance.get_quorum(governed_market))

    def test_model_without_contract(self, factory, governed_market):
        with pytest.raises(TypeError, match="CurveParameters"):
            validate_snapshot(factory.get_market(governed_market).curve)

    def test_violation_raises(self, governance, governed_market):
        # Снапшот после model_construct минует pydantic-валидацию
        quorum = governance.get_quorum(governed_market)
        broken = type(quorum).model_construct(agents=quorum.agents, weights=quorum.weights, version=-1)
        with pytest.raises(ValidationError):
            validate_snapshot(broken)
