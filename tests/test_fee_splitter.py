"""
Tests for the Fee Splitter orchestrator (src/fee_splitter.py)

Tests cover:
- Setup (including rejected setups and the init hook)
- Deposits with and without flush rights
- Controller-only administration
- Atomic rollback on failure
- Removal, reconciliation and events
- Persistence
"""

import pytest

import split_engine
from coins import Coin, amount_of
from conftest import (
    ALICE,
    BOB,
    CAROL,
    CONTRACT,
    GOV,
    KEEPER,
    PAYER,
    coins,
    env_at,
    make_allocation,
    sender,
)
from fee_split_errors import (
    DuplicateName,
    InvalidWeight,
    NoAllocations,
    NotFound,
    NotYetActive,
    ReconciliationDeficit,
    Unauthorized,
)
from fee_splitter import FeeSplitter
from host import BankSend, ContractExecute, LocalBank
from monitoring import metrics


def accrued(splitter, name, denom="uluna"):
    return amount_of(splitter.registry.get(name).accrued_balance, denom)


# ============================================================
# Setup
# ============================================================

class TestInstantiate:
    """Tests for splitter setup."""

    def test_instantiate(self, splitter):
        assert splitter.query_ownership()["current_controller"] == GOV
        assert splitter.query_ownership()["state"] == "stable"
        assert [a["name"] for a in splitter.query_allocations()] == ["a", "b"]
        assert splitter.query_contract_version() == {"contract": "pfc-fee-split", "version": "0.2.0"}
        assert splitter.get_events()[0]["event_type"] == "Instantiated"

    def test_duplicate_names_reject_setup(self):
        with pytest.raises(DuplicateName) as exc_info:
            FeeSplitter.instantiate(env_at(1), GOV, [
                make_allocation("a", ALICE),
                make_allocation("b", BOB),
                make_allocation("a", CAROL),
            ])
        assert exc_info.value.details["names"] == ["a"]

    def test_empty_allocations_reject_setup(self):
        with pytest.raises(NoAllocations):
            FeeSplitter.instantiate(env_at(1), GOV, [])

    def test_invalid_row_rejects_setup(self):
        with pytest.raises(InvalidWeight):
            FeeSplitter.instantiate(env_at(1), GOV, [
                make_allocation("a", ALICE),
                make_allocation("b", BOB, weight=0),
            ])

    def test_init_hook_dispatched(self):
        _, result = FeeSplitter.instantiate(
            env_at(1), GOV, [make_allocation("a", ALICE)],
            init_hook={"contract_addr": "hook_addr", "msg": {"register": {}}},
        )
        assert result.dispatches == [ContractExecute("hook_addr", {"register": {}})]


# ============================================================
# Deposit
# ============================================================

class TestDeposit:
    """Tests for deposits and flushes."""

    def test_deposit_splits_without_dispatch(self, splitter):
        result = splitter.deposit(env_at(2), sender(PAYER, coins(uluna=1001)))

        assert result.dispatches == []
        assert accrued(splitter, "a") == 500
        assert accrued(splitter, "b") == 501
        assert result.attributes["flushed"] is False
        assert metrics.get_counter("deposits_total") == 1

    def test_controller_flush(self, splitter):
        result = splitter.deposit(env_at(2), sender(GOV, coins(uluna=10)), flush=True)

        assert result.attributes["flushed"] is True
        assert result.dispatches == [
            BankSend(ALICE, (Coin("uluna", 5),)),
            BankSend(BOB, (Coin("uluna", 5),)),
        ]
        assert splitter.registry.get("a").accrued_balance == []

    def test_whitelisted_flush(self, splitter):
        splitter.add_to_flush_whitelist(env_at(2), sender(GOV), KEEPER)

        result = splitter.deposit(env_at(3), sender(KEEPER, coins(uluna=10)), flush=True)

        assert result.attributes["flushed"] is True
        assert len(result.dispatches) == 2

    def test_unauthorized_flush_is_ignored(self, splitter):
        result = splitter.deposit(env_at(2), sender(PAYER, coins(uluna=10)), flush=True)

        assert result.attributes["flush_requested"] is True
        assert result.attributes["flushed"] is False
        assert result.dispatches == []
        assert accrued(splitter, "a") == 5

    def test_flush_dispatches_earlier_accruals(self, splitter):
        splitter.deposit(env_at(2), sender(PAYER, coins(uluna=100)))

        result = splitter.deposit(env_at(3), sender(GOV, coins(uluna=2)), flush=True)

        assert result.dispatches[0].amount == (Coin("uluna", 51),)

    def test_flush_event_names_recipients(self):
        splitter, _ = FeeSplitter.instantiate(env_at(1), GOV, [
            make_allocation("a", ALICE),
            make_allocation("b", "vault_addr", kind="contract"),
        ])

        splitter.deposit(env_at(2), sender(GOV, coins(uluna=10)), flush=True)

        event = splitter.get_events()[-1]
        assert event["event_type"] == "Deposit"
        assert event["data"]["dispatched_to"] == [ALICE, "vault_addr"]

    def test_empty_deposit_rejected(self, splitter):
        from fee_split_errors import EmptyDeposit
        with pytest.raises(EmptyDeposit):
            splitter.deposit(env_at(2), sender(PAYER))
        assert metrics.get_counter(
            "commands_failed_total", labels={"action": "deposit", "error": "EmptyDeposit"}
        ) == 1


# ============================================================
# Administration
# ============================================================

class TestAdministration:
    """Tests for controller-only registry and whitelist changes."""

    def test_add_allocation(self, splitter):
        splitter.add_allocation(env_at(2), sender(GOV), "c", CAROL, 2,
                                {"denom": "uluna", "amount": "0"}, "contract")

        assert splitter.query_allocation("c")["recipient_kind"] == "contract"

    @pytest.mark.parametrize("action", [
        lambda s, info: s.add_allocation(env_at(2), info, "c", CAROL, 1, {"denom": "uluna"}, "wallet"),
        lambda s, info: s.remove_allocation(env_at(2), info, "a"),
        lambda s, info: s.modify_allocation(env_at(2), info, "a", weight=3),
        lambda s, info: s.add_to_flush_whitelist(env_at(2), info, KEEPER),
        lambda s, info: s.remove_from_flush_whitelist(env_at(2), info, KEEPER),
        lambda s, info: s.transfer_gov_contract(env_at(2), info, PAYER, 0),
        lambda s, info: s.reconcile(env_at(2), info, LocalBank()),
    ])
    def test_non_controller_rejected(self, splitter, action):
        before = splitter.to_dict()

        with pytest.raises(Unauthorized):
            action(splitter, sender(PAYER))

        assert splitter.to_dict() == before

    def test_modify_allocation(self, splitter):
        splitter.modify_allocation(env_at(2), sender(GOV), "a", weight=3)
        splitter.deposit(env_at(3), sender(PAYER, coins(uluna=8)))

        assert accrued(splitter, "a") == 6
        assert accrued(splitter, "b") == 2

    def test_modify_missing(self, splitter):
        with pytest.raises(NotFound):
            splitter.modify_allocation(env_at(2), sender(GOV), "ghost", weight=3)

    def test_whitelist_idempotent(self, splitter):
        first = splitter.add_to_flush_whitelist(env_at(2), sender(GOV), KEEPER)
        second = splitter.add_to_flush_whitelist(env_at(3), sender(GOV), KEEPER)

        assert first.attributes["changed"] is True
        assert second.attributes["changed"] is False
        assert splitter.query_flush_whitelist() == [KEEPER]
        added = [e for e in splitter.get_events() if e["event_type"] == "FlushWhitelistAdded"]
        assert [e["data"]["changed"] for e in added] == [True, False]

        splitter.remove_from_flush_whitelist(env_at(4), sender(GOV), KEEPER)
        result = splitter.remove_from_flush_whitelist(env_at(5), sender(GOV), KEEPER)
        assert result.attributes["changed"] is False
        assert splitter.query_flush_whitelist() == []
        removed = [e for e in splitter.get_events() if e["event_type"] == "FlushWhitelistRemoved"]
        assert [e["data"]["changed"] for e in removed] == [True, False]


class TestGovernanceCommands:
    """Tests for governance through the orchestrator."""

    def test_handover(self, splitter):
        splitter.transfer_gov_contract(env_at(10), sender(GOV), "new_gov", 100)

        with pytest.raises(NotYetActive):
            splitter.accept_gov_contract(env_at(109), sender("new_gov"))
        assert splitter.query_ownership()["pending_controller"] == "new_gov"

        splitter.accept_gov_contract(env_at(110), sender("new_gov"))

        assert splitter.query_ownership()["current_controller"] == "new_gov"
        with pytest.raises(Unauthorized):
            splitter.add_to_flush_whitelist(env_at(111), sender(GOV), KEEPER)


# ============================================================
# Atomicity
# ============================================================

class TestAtomicity:
    """A failing command leaves no trace."""

    def test_unexpected_failure_rolls_back(self, splitter, monkeypatch):
        def broken_flush(registry):
            raise RuntimeError("dispatch backend down")

        monkeypatch.setattr(split_engine, "flush", broken_flush)
        events_before = len(splitter.get_events())

        with pytest.raises(RuntimeError):
            splitter.deposit(env_at(2), sender(GOV, coins(uluna=10)), flush=True)

        assert splitter.registry.get("a").accrued_balance == []
        assert len(splitter.get_events()) == events_before
        assert metrics.get_counter(
            "commands_failed_total", labels={"action": "deposit", "error": "internal"}
        ) == 1


# ============================================================
# Removal and reconciliation
# ============================================================

class TestRemoveAndReconcile:
    """Tests for removing entries and reattributing inventory."""

    def test_remove_reports_discarded_balance(self, splitter):
        splitter.deposit(env_at(2), sender(PAYER, coins(uluna=1001)))

        result = splitter.remove_allocation(env_at(3), sender(GOV), "a")

        assert result.attributes["discarded_balance"] == [{"denom": "uluna", "amount": "500"}]
        assert "a" not in splitter.registry

    def test_remove_last_entry(self, splitter):
        splitter.remove_allocation(env_at(2), sender(GOV), "a")
        with pytest.raises(NoAllocations):
            splitter.remove_allocation(env_at(3), sender(GOV), "b")

    def test_reconcile_recovers_discarded_balance(self, splitter):
        bank = LocalBank()
        bank.credit(CONTRACT, coins(uluna=1001))
        splitter.deposit(env_at(2), sender(PAYER, coins(uluna=1001)))
        splitter.remove_allocation(env_at(3), sender(GOV), "a")

        result = splitter.reconcile(env_at(4), sender(GOV), bank)

        assert accrued(splitter, "b") == 1001
        assert result.attributes["adjustments"][0]["surplus"] == "500"

    def test_reconcile_credits_direct_transfers(self, splitter):
        bank = LocalBank()
        bank.credit(CONTRACT, coins(uusd=42))

        splitter.reconcile(env_at(2), sender(GOV), bank)

        assert accrued(splitter, "a", "uusd") == 42
        assert accrued(splitter, "b", "uusd") == 0

    def test_reconcile_deficit(self, splitter):
        splitter.deposit(env_at(2), sender(PAYER, coins(uluna=10)))

        with pytest.raises(ReconciliationDeficit):
            splitter.reconcile(env_at(3), sender(GOV), LocalBank())
        assert accrued(splitter, "a") == 5


# ============================================================
# Events and persistence
# ============================================================

class TestEventsAndPersistence:
    """Tests for the audit trail and state round-trips."""

    def test_events_carry_block_height(self, splitter):
        splitter.deposit(env_at(7), sender(PAYER, coins(uluna=10)))

        event = splitter.get_events()[-1]
        assert event["event_type"] == "Deposit"
        assert event["block_height"] == 7
        assert event["data"]["funds"] == [{"denom": "uluna", "amount": "10"}]

    def test_event_log_is_bounded(self, splitter, monkeypatch):
        monkeypatch.setattr(FeeSplitter, "MAX_EVENTS", 5)
        for height in range(2, 12):
            splitter.deposit(env_at(height), sender(PAYER, coins(uluna=1)))

        assert len(splitter.events) == 5
        assert splitter.events[-1]["block_height"] == 11

    def test_to_dict_round_trip(self, splitter):
        splitter.deposit(env_at(2), sender(PAYER, coins(uluna=11)))
        splitter.add_to_flush_whitelist(env_at(3), sender(GOV), KEEPER)
        splitter.transfer_gov_contract(env_at(4), sender(GOV), "new_gov", 5)

        restored = FeeSplitter.from_dict(splitter.to_dict())

        assert restored.to_dict() == splitter.to_dict()
        assert accrued(restored, "b") == 6
