"""
Контракты снапшотов (JSON Schema)

Каждый снапшот, который MarketFactory / GovernanceEngine отдают наружу,
описан схемой Draft 2020-12 в каталоге schema/:
- market.json — MarketSnapshot
- proposal.json — ProposalSnapshot
- quorum.json — Quorum

Проверяется JSON-форма снапшота, то есть model_dump(mode="json"): именно она
сохраняется и передаётся между процессами.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

from jsonschema import Draft202012Validator, SchemaError
from jsonschema.exceptions import best_match
from pydantic import BaseModel

from src.core.domain.market import MarketSnapshot
from src.core.domain.proposal import ProposalSnapshot
from src.core.domain.quorum import Quorum

SCHEMA_DIR = Path(__file__).parent / "schema"

# Снапшот → имя схемы
SNAPSHOT_CONTRACTS: Dict[Type[BaseModel], str] = {
    MarketSnapshot: "market",
    ProposalSnapshot: "proposal",
    Quorum: "quorum",
}


# =============================================================================
# ЗАГРУЗКА СХЕМ
# =============================================================================


class SchemaLoader:
    """Чтение схем из каталога с meta-валидацией и кэшем по имени."""

    def __init__(self, schema_dir: Optional[Path] = None):
        self._schema_dir = schema_dir or SCHEMA_DIR
        if not self._schema_dir.is_dir():
            raise RuntimeError(f"Schema directory not found: {self._schema_dir}")
        self._cache: Dict[str, Dict[str, Any]] = {}

    def load_schema(self, name: str) -> Dict[str, Any]:
        """
        Схема по имени файла без .json.

        Raises:
            FileNotFoundError: Файла нет
            ValueError: Файл не является корректной Draft 2020-12 схемой
        """
        if name not in self._cache:
            path = self._schema_dir / f"{name}.json"
            if not path.is_file():
                raise FileNotFoundError(f"Schema not found: {path}")
            schema = json.loads(path.read_text(encoding="utf-8"))
            try:
                Draft202012Validator.check_schema(schema)
            except SchemaError as e:
                raise ValueError(f"Invalid JSON Schema in {path.name}: {e.message}") from e
            self._cache[name] = schema
        return self._cache[name]


_LOADER = SchemaLoader()


@lru_cache(maxsize=None)
def _validator(name: str) -> Draft202012Validator:
    return Draft202012Validator(_LOADER.load_schema(name))


# =============================================================================
# ПРОВЕРКА
# =============================================================================


def contract_errors(name: str, data: Dict[str, Any]) -> List[str]:
    """
    Все нарушения контракта в виде "json_path: сообщение".

    Пустой список означает, что запись соответствует схеме.
    """
    errors = sorted(_validator(name).iter_errors(data), key=lambda e: list(e.absolute_path))
    return [f"{error.json_path}: {error.message}" for error in errors]


def validate_contract(name: str, data: Dict[str, Any]) -> None:
    """
    Raises:
        ValidationError: Наиболее релевантное нарушение (jsonschema best_match)
    """
    error = best_match(_validator(name).iter_errors(data))
    if error is not None:
        raise error


def validate_snapshot(snapshot: BaseModel) -> Dict[str, Any]:
    """
    Проверка снапшота по контракту его типа.

    Returns:
        JSON-форма снапшота, прошедшая проверку

    Raises:
        TypeError: Для типа снапшота нет контракта
        ValidationError: Снапшот нарушает контракт
    """
    name = SNAPSHOT_CONTRACTS.get(type(snapshot))
    if name is None:
        raise TypeError(f"No contract for {type(snapshot).__name__}")
    data = snapshot.model_dump(mode="json")
    validate_contract(name, data)
    return data


def validate_market(data: Dict[str, Any]) -> None:
    validate_contract("market", data)


def validate_proposal(data: Dict[str, Any]) -> None:
    validate_contract("proposal", data)


def validate_quorum_snapshot(data: Dict[str, Any]) -> None:
    validate_contract("quorum", data)

