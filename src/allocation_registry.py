"""
Fee Splitter - Allocation Registry

Holds the named beneficiaries a deposit is split across.

Ordering:
    Entries are always iterated in ascending name order. That order is
    externally observable: the floor-division remainder of a split goes to
    the last entry and reconciliation surplus goes to the first one.
"""

import itertools
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from coins import Coin, amount_of, coins_to_list, parse_amount
from fee_split_errors import (
    DuplicateName,
    InvalidName,
    InvalidRecipientKind,
    InvalidThresholdDenomination,
    InvalidWeight,
    NoAllocations,
    NotFound,
    ZeroAmount,
)

DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 30


class RecipientKind(Enum):
    """How a flushed balance reaches its recipient."""
    WALLET = "wallet"        # Plain bank transfer
    CONTRACT = "contract"    # Executable message with funds attached

    @classmethod
    def parse(cls, tag: Any) -> "RecipientKind":
        """Parse a kind tag case-insensitively."""
        if isinstance(tag, RecipientKind):
            return tag
        if isinstance(tag, str):
            for kind in cls:
                if tag.strip().lower() == kind.value:
                    return kind
        raise InvalidRecipientKind(f"Unrecognized recipient kind: {tag!r}", send_type=tag)


@dataclass
class AllocationEntry:
    """One beneficiary and its distribution rules."""

    name: str
    recipient: str
    weight: int
    threshold: Coin
    recipient_kind: RecipientKind = RecipientKind.WALLET
    accrued_balance: list[Coin] = field(default_factory=list)

    def threshold_reached(self) -> bool:
        """Whether the accrued balance in the threshold denom meets the threshold."""
        return amount_of(self.accrued_balance, self.threshold.denom) >= self.threshold.amount

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "recipient": self.recipient,
            "weight": self.weight,
            "threshold": self.threshold.to_dict(),
            "recipient_kind": self.recipient_kind.value,
            "accrued_balance": coins_to_list(self.accrued_balance),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AllocationEntry":
        """Rebuild an entry from ``to_dict`` output."""
        return cls(
            name=data["name"],
            recipient=data["recipient"],
            weight=int(data["weight"]),
            threshold=Coin.from_dict(data["threshold"]),
            recipient_kind=RecipientKind.parse(data["recipient_kind"]),
            accrued_balance=[Coin.from_dict(c) for c in data.get("accrued_balance", [])],
        )


# =============================================================================
# Field validation (shared by create and modify)
# =============================================================================

def validate_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise InvalidName(f"Allocation name must be a non-empty string, got {name!r}", name=name)
    return name


def validate_weight(weight: Any) -> int:
    if isinstance(weight, bool) or not isinstance(weight, int) or weight <= 0:
        raise InvalidWeight(f"Allocation weight must be a positive integer, got {weight!r}",
                            weight=weight)
    return weight


def validate_threshold(threshold: Any) -> Coin:
    """Accept a Coin or a ``{"denom", "amount"}`` mapping."""
    if isinstance(threshold, dict):
        denom = threshold.get("denom")
        amount = threshold.get("amount", 0)
    elif isinstance(threshold, Coin):
        denom, amount = threshold.denom, threshold.amount
    else:
        raise InvalidThresholdDenomination(f"Malformed threshold: {threshold!r}",
                                           threshold=threshold)

    if not isinstance(denom, str) or not denom.strip():
        raise InvalidThresholdDenomination(f"Threshold denomination must not be empty: {denom!r}",
                                           coin=threshold)
    amount = parse_amount(amount)
    if amount < 0:
        raise ZeroAmount(f"Threshold amount must not be negative: {amount}", coin=threshold)
    return Coin(denom, amount)


# =============================================================================
# Registry
# =============================================================================

class AllocationRegistry:
    """
    Ordered map of allocation entries keyed by name.

    Authorization is not checked here; callers check the controller first.
    """

    def __init__(self, address_validator: Callable[[Any], str]):
        self._entries: dict[str, AllocationEntry] = {}
        self._validate_address = address_validator

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[AllocationEntry]:
        return self.iter_entries()

    def iter_entries(self, start_after: str | None = None) -> Iterator[AllocationEntry]:
        """Lazily yield entries in name order, strictly after ``start_after``."""
        for name in sorted(self._entries):
            if start_after is not None and name <= start_after:
                continue
            yield self._entries[name]

    def total_weight(self) -> int:
        return sum(entry.weight for entry in self._entries.values())

    def create(
        self,
        name: str,
        recipient: str,
        weight: int,
        threshold: Coin | dict,
        recipient_kind: RecipientKind | str,
    ) -> AllocationEntry:
        """
        Insert a new entry with an empty accrued balance.

        Raises:
            DuplicateName, InvalidName, InvalidWeight,
            InvalidThresholdDenomination, InvalidRecipientKind, InvalidAddress
        """
        name = validate_name(name)
        if name in self._entries:
            raise DuplicateName(f"Allocation '{name}' already exists", name=name)

        entry = AllocationEntry(
            name=name,
            recipient=self._validate_address(recipient),
            weight=validate_weight(weight),
            threshold=validate_threshold(threshold),
            recipient_kind=RecipientKind.parse(recipient_kind),
        )
        self._entries[name] = entry
        return entry

    def get(self, name: str) -> AllocationEntry:
        try:
            return self._entries[name]
        except KeyError:
            raise NotFound(f"Allocation '{name}' not found", name=name) from None

    def remove(self, name: str) -> AllocationEntry:
        """
        Delete an entry and return it.

        The entry's accrued balance is no longer tracked by any entry; it
        remains in the splitter's inventory until reconciled.

        Raises:
            NotFound: no such entry
            NoAllocations: the entry is the last one
        """
        entry = self.get(name)
        if len(self._entries) == 1:
            raise NoAllocations("Cannot remove the last allocation", name=name)
        del self._entries[name]
        return entry

    def modify(
        self,
        name: str,
        recipient: str | None = None,
        weight: int | None = None,
        threshold: Coin | dict | None = None,
        recipient_kind: RecipientKind | str | None = None,
    ) -> AllocationEntry:
        """
        Change the supplied fields of an existing entry.

        Every field is validated before any is written, so a bad value
        leaves the entry untouched.
        """
        entry = self.get(name)

        new_recipient = self._validate_address(recipient) if recipient is not None else entry.recipient
        new_weight = validate_weight(weight) if weight is not None else entry.weight
        new_threshold = validate_threshold(threshold) if threshold is not None else entry.threshold
        new_kind = (RecipientKind.parse(recipient_kind)
                    if recipient_kind is not None else entry.recipient_kind)

        entry.recipient = new_recipient
        entry.weight = new_weight
        entry.threshold = new_threshold
        entry.recipient_kind = new_kind
        return entry

    def to_list(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.iter_entries()]

    @classmethod
    def from_list(cls, items: list[dict[str, Any]],
                  address_validator: Callable[[Any], str]) -> "AllocationRegistry":
        registry = cls(address_validator)
        for item in items:
            entry = AllocationEntry.from_dict(item)
            registry._entries[entry.name] = entry
        if not registry._entries:
            raise NoAllocations("Persisted state has no allocations")
        return registry

    # Defined last: the method name shadows the builtin inside the class body
    def list(self, start_after: str | None = None, limit: int | None = None) -> list[AllocationEntry]:
        """One page of entries after the ``start_after`` cursor."""
        return [*itertools.islice(self.iter_entries(start_after), clamp_limit(limit))]


def clamp_limit(limit: int | None) -> int:
    """Bound a page size to ``[1, MAX_PAGE_LIMIT]``."""
    if limit is None:
        return DEFAULT_PAGE_LIMIT
    return max(1, min(int(limit), MAX_PAGE_LIMIT))
