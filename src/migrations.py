"""
Fee Splitter - State Migration System

Persisted splitter state carries a contract version record
``{"contract": name, "version": version}``. On upgrade, state written by
an older release is rewritten into the current shape exactly once.

Rules:
- State written by a different contract is refused (MigrationError).
- Known older versions have a registered upgrade function.
- Other versions of this contract need no shape change.
- The version record is always bumped to the current version.

Usage:
    from migrations import migrate_state
    state, report = migrate_state(raw_state)
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fee_split_errors import MigrationError

logger = logging.getLogger(__name__)

CONTRACT_NAME = "pfc-fee-split"
CONTRACT_VERSION = "0.2.0"


@dataclass(frozen=True)
class ContractVersion:
    """Identity and version of the code that last wrote the state."""

    contract: str
    version: str

    def to_dict(self) -> dict[str, str]:
        return {"contract": self.contract, "version": self.version}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContractVersion":
        return cls(contract=data["contract"], version=data["version"])

    @classmethod
    def current(cls) -> "ContractVersion":
        return cls(CONTRACT_NAME, CONTRACT_VERSION)


@dataclass
class Migration:
    """Upgrade of the persisted state written by one prior version."""

    from_version: str
    description: str
    upgrade_fn: Callable[[dict[str, Any]], dict[str, Any]]


# =============================================================================
# Registered migrations
# =============================================================================

def _upgrade_config_v011(state: dict[str, Any]) -> dict[str, Any]:
    """
    0.1.1 stored ``{"this", "gov_contract"}`` with no pending-transfer fields.
    """
    legacy = state.get("config") or {}
    if "this" not in legacy or "gov_contract" not in legacy:
        raise MigrationError(
            "Legacy 0.1.1 config is missing 'this' or 'gov_contract'",
            config=legacy,
        )
    state["config"] = {
        "self_address": legacy["this"],
        "current_controller": legacy["gov_contract"],
        "pending_controller": None,
        "activation_point": None,
    }
    return state


MIGRATIONS: dict[str, Migration] = {
    "0.1.1": Migration(
        from_version="0.1.1",
        description="Config gains pending governance transfer fields",
        upgrade_fn=_upgrade_config_v011,
    ),
}


def migrate_state(state: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Bring a persisted state dictionary up to the current version.

    Args:
        state: State as loaded from storage (modified in place)

    Returns:
        Tuple of (state, report). ``report`` names previous and new
        contract/version and whether a shape migration ran.

    Raises:
        MigrationError: state belongs to another contract or has no
            version record
    """
    record = state.get("contract_version")
    if not record:
        raise MigrationError("State has no contract version record",
                             current_name=None, current_version=None)

    previous = ContractVersion.from_dict(record)
    if previous.contract != CONTRACT_NAME:
        raise MigrationError(
            f"Cannot migrate from contract '{previous.contract}' version {previous.version}",
            current_name=previous.contract,
            current_version=previous.version,
        )

    migration = MIGRATIONS.get(previous.version)
    if migration is not None:
        logger.info("Applying migration from %s: %s", migration.from_version, migration.description)
        state = migration.upgrade_fn(state)

    current = ContractVersion.current()
    state["contract_version"] = current.to_dict()

    report = {
        "previous_contract_name": previous.contract,
        "previous_contract_version": previous.version,
        "new_contract_name": current.contract,
        "new_contract_version": current.version,
        "shape_migrated": migration is not None,
    }
    return state, report
