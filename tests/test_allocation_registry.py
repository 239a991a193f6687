"""
Tests for the Allocation Registry (src/allocation_registry.py)

Tests cover:
- Entry creation and field validation
- Name ordering and pagination
- Removal (including the last-entry guard)
- Modification without partial writes
"""

import pytest

from allocation_registry import (
    MAX_PAGE_LIMIT,
    AllocationEntry,
    AllocationRegistry,
    RecipientKind,
    clamp_limit,
)
from coins import Coin
from fee_split_errors import (
    DuplicateName,
    InvalidAddress,
    InvalidName,
    InvalidRecipientKind,
    InvalidThresholdDenomination,
    InvalidWeight,
    NoAllocations,
    NotFound,
    ZeroAmount,
)
from host import validate_address

THRESHOLD = {"denom": "uluna", "amount": "0"}


@pytest.fixture
def registry():
    return AllocationRegistry(validate_address)


def add(registry, name, weight=1, recipient=None, kind="wallet", threshold=THRESHOLD):
    return registry.create(name, recipient or f"{name}_addr", weight, threshold, kind)


# ============================================================
# Creation
# ============================================================

class TestCreate:
    """Tests for creating entries."""

    def test_create_entry(self, registry):
        entry = add(registry, "alpha", weight=3, kind="contract")

        assert entry.name == "alpha"
        assert entry.recipient == "alpha_addr"
        assert entry.weight == 3
        assert entry.recipient_kind is RecipientKind.CONTRACT
        assert entry.threshold == Coin("uluna", 0)
        assert entry.accrued_balance == []
        assert "alpha" in registry

    def test_duplicate_name_rejected(self, registry):
        add(registry, "alpha")

        with pytest.raises(DuplicateName):
            add(registry, "alpha", weight=5)
        assert registry.get("alpha").weight == 1

    @pytest.mark.parametrize("weight", [0, -1, True, 1.5, "2"])
    def test_invalid_weight(self, registry, weight):
        with pytest.raises(InvalidWeight):
            add(registry, "alpha", weight=weight)
        assert len(registry) == 0

    @pytest.mark.parametrize("name", ["", "   ", None, 7])
    def test_invalid_name(self, registry, name):
        with pytest.raises(InvalidName):
            registry.create(name, "alpha_addr", 1, THRESHOLD, "wallet")

    def test_blank_threshold_denom(self, registry):
        with pytest.raises(InvalidThresholdDenomination):
            add(registry, "alpha", threshold={"denom": "", "amount": "5"})

    def test_negative_threshold(self, registry):
        with pytest.raises(ZeroAmount):
            add(registry, "alpha", threshold={"denom": "uluna", "amount": "-5"})

    def test_threshold_accepts_coin(self, registry):
        entry = add(registry, "alpha", threshold=Coin("uusd", 25))
        assert entry.threshold == Coin("uusd", 25)

    def test_unknown_kind_rejected(self, registry):
        with pytest.raises(InvalidRecipientKind):
            add(registry, "alpha", kind="multisig")

    def test_kind_is_case_insensitive(self, registry):
        assert add(registry, "alpha", kind="Wallet").recipient_kind is RecipientKind.WALLET
        assert add(registry, "beta", kind="CONTRACT").recipient_kind is RecipientKind.CONTRACT

    def test_invalid_recipient(self, registry):
        with pytest.raises(InvalidAddress):
            add(registry, "alpha", recipient="Not An Address")


# ============================================================
# Ordering and pagination
# ============================================================

class TestOrdering:
    """Tests for name-ordered iteration and paging."""

    def test_iterates_in_name_order(self, registry):
        for name in ["charlie", "alpha", "bravo"]:
            add(registry, name)

        assert [e.name for e in registry] == ["alpha", "bravo", "charlie"]

    def test_start_after_is_exclusive(self, registry):
        for name in ["a", "b", "c", "d"]:
            add(registry, name * 3)

        page = registry.list(start_after="bbb", limit=10)
        assert [e.name for e in page] == ["ccc", "ddd"]

    def test_start_after_unknown_name(self, registry):
        for name in ["aaa", "ccc"]:
            add(registry, name)

        assert [e.name for e in registry.list(start_after="bbb")] == ["ccc"]

    def test_default_and_max_limit(self, registry):
        for i in range(40):
            add(registry, f"entry{i:02d}")

        assert len(registry.list()) == 10
        assert len(registry.list(limit=1000)) == MAX_PAGE_LIMIT

    def test_paging_covers_everything_once(self, registry):
        for i in range(25):
            add(registry, f"entry{i:02d}")

        seen, cursor = [], None
        while True:
            page = registry.list(start_after=cursor, limit=7)
            if not page:
                break
            seen.extend(e.name for e in page)
            cursor = page[-1].name

        assert seen == sorted(f"entry{i:02d}" for i in range(25))

    @pytest.mark.parametrize("limit,expected", [(None, 10), (0, 1), (-3, 1), (5, 5), (31, 30)])
    def test_clamp_limit(self, limit, expected):
        assert clamp_limit(limit) == expected


# ============================================================
# Removal and modification
# ============================================================

class TestRemoveAndModify:
    """Tests for removing and changing entries."""

    def test_remove_returns_entry(self, registry):
        add(registry, "alpha")
        add(registry, "beta")
        registry.get("alpha").accrued_balance = [Coin("uluna", 7)]

        removed = registry.remove("alpha")

        assert removed.accrued_balance == [Coin("uluna", 7)]
        assert "alpha" not in registry

    def test_remove_missing(self, registry):
        add(registry, "alpha")
        with pytest.raises(NotFound):
            registry.remove("ghost")

    def test_remove_last_entry_rejected(self, registry):
        add(registry, "alpha")
        with pytest.raises(NoAllocations):
            registry.remove("alpha")
        assert len(registry) == 1

    def test_modify_changes_only_supplied_fields(self, registry):
        add(registry, "alpha", weight=2)

        entry = registry.modify("alpha", weight=5)

        assert entry.weight == 5
        assert entry.recipient == "alpha_addr"
        assert entry.recipient_kind is RecipientKind.WALLET

    def test_modify_keeps_accrued_balance(self, registry):
        add(registry, "alpha")
        registry.get("alpha").accrued_balance = [Coin("uluna", 3)]

        registry.modify("alpha", recipient="new_addr", recipient_kind="contract")

        assert registry.get("alpha").accrued_balance == [Coin("uluna", 3)]

    def test_modify_is_all_or_nothing(self, registry):
        add(registry, "alpha", weight=2)

        with pytest.raises(InvalidRecipientKind):
            registry.modify("alpha", weight=9, recipient_kind="bogus")

        assert registry.get("alpha").weight == 2

    def test_modify_missing(self, registry):
        with pytest.raises(NotFound):
            registry.modify("ghost", weight=1)


class TestSerialization:
    """Tests for persistence helpers."""

    def test_entry_dict_round_trip(self):
        entry = AllocationEntry("alpha", "alpha_addr", 2, Coin("uluna", 10),
                                RecipientKind.CONTRACT, [Coin("uluna", 4)])

        data = entry.to_dict()

        assert data["threshold"] == {"denom": "uluna", "amount": "10"}
        assert data["recipient_kind"] == "contract"
        assert AllocationEntry.from_dict(data) == entry

    def test_from_list_requires_entries(self):
        with pytest.raises(NoAllocations):
            AllocationRegistry.from_list([], validate_address)
