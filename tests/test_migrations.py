"""
Tests for state migration (src/migrations.py and FeeSplitter.load/migrate)
"""

import pytest

from conftest import ALICE, BOB, CONTRACT, GOV, env_at
from fee_split_errors import MigrationError
from fee_splitter import FeeSplitter
from migrations import CONTRACT_NAME, CONTRACT_VERSION, ContractVersion, migrate_state


def legacy_state(version="0.1.1", contract=CONTRACT_NAME):
    """State as written by the 0.1.1 release."""
    return {
        "contract_version": {"contract": contract, "version": version},
        "name": "protocol fees",
        "config": {"this": CONTRACT, "gov_contract": GOV},
        "allocations": [
            {"name": "a", "recipient": ALICE, "weight": 1,
             "threshold": {"denom": "uluna", "amount": "0"},
             "recipient_kind": "wallet", "accrued_balance": [{"denom": "uluna", "amount": "3"}]},
            {"name": "b", "recipient": BOB, "weight": 1,
             "threshold": {"denom": "uluna", "amount": "0"},
             "recipient_kind": "contract", "accrued_balance": []},
        ],
        "flush_whitelist": [],
    }


class TestMigrateState:
    """Tests for the version-record rewrite."""

    def test_upgrades_legacy_config(self):
        state, report = migrate_state(legacy_state())

        assert state["config"] == {
            "self_address": CONTRACT,
            "current_controller": GOV,
            "pending_controller": None,
            "activation_point": None,
        }
        assert state["contract_version"] == {"contract": CONTRACT_NAME, "version": CONTRACT_VERSION}
        assert report == {
            "previous_contract_name": CONTRACT_NAME,
            "previous_contract_version": "0.1.1",
            "new_contract_name": CONTRACT_NAME,
            "new_contract_version": CONTRACT_VERSION,
            "shape_migrated": True,
        }

    def test_unknown_version_only_bumps_record(self, splitter):
        state = splitter.to_dict()
        state["contract_version"]["version"] = "0.1.9"

        migrated, report = migrate_state(state)

        assert report["shape_migrated"] is False
        assert migrated["config"] == splitter.config.to_dict()

    def test_foreign_contract_refused(self):
        with pytest.raises(MigrationError) as exc_info:
            migrate_state(legacy_state(contract="other-contract"))

        assert exc_info.value.details["current_name"] == "other-contract"
        assert exc_info.value.details["current_version"] == "0.1.1"

    def test_missing_record_refused(self):
        state = legacy_state()
        del state["contract_version"]
        with pytest.raises(MigrationError):
            migrate_state(state)

    def test_malformed_legacy_config(self):
        state = legacy_state()
        state["config"] = {"gov_contract": GOV}
        with pytest.raises(MigrationError):
            migrate_state(state)


class TestSplitterMigration:
    """Tests for loading persisted state through the orchestrator."""

    def test_load_migrates_legacy_state(self):
        splitter = FeeSplitter.load(legacy_state(), env=env_at(20))

        assert splitter.query_ownership()["current_controller"] == GOV
        assert splitter.contract_version == ContractVersion.current()
        assert splitter.query_allocation("a")["accrued_balance"] == [{"denom": "uluna", "amount": "3"}]
        assert splitter.get_events()[-1]["event_type"] == "Migrated"
        assert splitter.get_events()[-1]["block_height"] == 20

    def test_migrate_does_not_mutate_input(self):
        data = legacy_state()
        FeeSplitter.migrate(data)
        assert data["contract_version"]["version"] == "0.1.1"

    def test_from_dict_requires_current_version(self):
        with pytest.raises(MigrationError):
            FeeSplitter.from_dict(legacy_state())

    def test_load_current_state_skips_migration(self, splitter):
        restored = FeeSplitter.load(splitter.to_dict())
        assert [e["event_type"] for e in restored.get_events()] == ["Instantiated"]
