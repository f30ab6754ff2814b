"""
Contract Validation Module

Модуль для валидации сохраняемых записей quorum markets по JSON Schema.
"""

from .validators import (
    SCHEMA_DIR,
    SNAPSHOT_CONTRACTS,
    SchemaLoader,
    contract_errors,
    validate_contract,
    validate_market,
    validate_proposal,
    validate_quorum_snapshot,
    validate_snapshot,
)

__all__ = [
    # Schemas
    "SCHEMA_DIR",
    "SNAPSHOT_CONTRACTS",
    "SchemaLoader",
    # Functions
    "contract_errors",
    "validate_contract",
    "validate_snapshot",
    "validate_market",
    "validate_proposal",
    "validate_quorum_snapshot",
]
