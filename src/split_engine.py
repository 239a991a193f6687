"""
Fee Splitter - Split and Reconciliation engines

Pure bookkeeping over an AllocationRegistry. Nothing here checks callers
or touches storage; the orchestrator in fee_splitter.py does that and
wraps every call in an atomic section.

Split rule for one denomination with total weight W:

    share(e) = floor(amount * e.weight / W)

and the remainder ``amount - sum(shares)`` (at most ``len(entries) - 1``
units) is added to the last entry in name order, so no unit is lost.
"""

import logging
from dataclasses import dataclass
from typing import Any

from allocation_registry import AllocationEntry, AllocationRegistry, RecipientKind
from coins import Coin, add_coin, amount_of, normalize_coins, require_denom
from fee_split_errors import EmptyDeposit, EmptyRegistry, ReconciliationDeficit, ZeroAmount
from host import BankSend, ContractExecute, DispatchInstruction

logger = logging.getLogger(__name__)

# Message sent with funds to CONTRACT recipients; recipients expose the same
# deposit interface, which lets splitters be chained.
CONTRACT_DEPOSIT_MSG = {"deposit": {"flush": False}}


@dataclass(frozen=True)
class ShareAssignment:
    """Amount of one denomination credited to one entry by a deposit."""
    name: str
    denom: str
    amount: int

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "denom": self.denom, "amount": str(self.amount)}


@dataclass(frozen=True)
class ReconcileAdjustment:
    """Surplus credited to an entry by reconciliation."""
    name: str
    denom: str
    held: int
    accrued: int
    surplus: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "denom": self.denom,
            "held": str(self.held),
            "accrued": str(self.accrued),
            "surplus": str(self.surplus),
        }


def validate_deposit(funds: list[Coin]) -> list[Coin]:
    """
    Check and canonicalize deposited funds.

    Raises:
        EmptyDeposit: no coins
        InvalidDenomination: blank denom
        ZeroAmount: any amount <= 0
    """
    if not funds:
        raise EmptyDeposit("Deposit must contain at least one coin")
    for coin in funds:
        require_denom(coin.denom)
        if coin.amount <= 0:
            raise ZeroAmount(f"Deposit amount must be positive, got {coin.amount} {coin.denom}",
                             coin=coin)
    return normalize_coins(funds)


def compute_shares(entries: list[AllocationEntry], denom: str, amount: int) -> list[ShareAssignment]:
    """
    Split ``amount`` of ``denom`` across ``entries`` (already in registry order).

    Raises:
        EmptyRegistry: total weight is zero
    """
    total_weight = sum(entry.weight for entry in entries)
    if total_weight <= 0:
        raise EmptyRegistry("Cannot split a deposit across an empty registry", denom=denom)

    shares = [amount * entry.weight // total_weight for entry in entries]
    shares[-1] += amount - sum(shares)

    return [
        ShareAssignment(entry.name, denom, share)
        for entry, share in zip(entries, shares)
    ]


def apply_deposit(registry: AllocationRegistry, funds: list[Coin]) -> list[ShareAssignment]:
    """Credit every entry's accrued balance with its share of ``funds``."""
    funds = validate_deposit(funds)
    entries = list(registry.iter_entries())

    assignments: list[ShareAssignment] = []
    for coin in funds:
        for assignment in compute_shares(entries, coin.denom, coin.amount):
            entry = registry.get(assignment.name)
            entry.accrued_balance = add_coin(entry.accrued_balance, coin.denom, assignment.amount)
            assignments.append(assignment)

    return assignments


def build_dispatch(entry: AllocationEntry) -> DispatchInstruction:
    """Instruction that hands ``entry``'s full accrued balance to its recipient."""
    funds = tuple(entry.accrued_balance)
    if entry.recipient_kind is RecipientKind.CONTRACT:
        return ContractExecute(contract_addr=entry.recipient, msg=dict(CONTRACT_DEPOSIT_MSG),
                               funds=funds)
    return BankSend(to_address=entry.recipient, amount=funds)


def flush(registry: AllocationRegistry) -> list[DispatchInstruction]:
    """
    Dispatch and zero every entry that has reached its threshold.

    Entries with nothing accrued never produce an instruction, even with a
    zero threshold. Entries below threshold keep accruing.
    """
    dispatches: list[DispatchInstruction] = []
    for entry in registry.iter_entries():
        if not entry.accrued_balance or not entry.threshold_reached():
            continue
        dispatches.append(build_dispatch(entry))
        entry.accrued_balance = []
    return dispatches


def total_accrued(registry: AllocationRegistry) -> list[Coin]:
    """Sum of accrued balances across all entries."""
    return normalize_coins(coin for entry in registry.iter_entries() for coin in entry.accrued_balance)


def reconcile_balances(registry: AllocationRegistry, held: list[Coin]) -> list[ReconcileAdjustment]:
    """
    Attribute held-but-unaccounted value to the first entry.

    Deficits are checked for every denomination before any surplus is
    credited, so a failing call changes nothing.

    Raises:
        ReconciliationDeficit: some denomination has more accrued than held
        EmptyRegistry: there is no entry to credit
    """
    accrued = total_accrued(registry)
    held = normalize_coins(held)

    deficits = [
        {"denom": coin.denom, "held": str(amount_of(held, coin.denom)), "accrued": str(coin.amount)}
        for coin in accrued
        if amount_of(held, coin.denom) < coin.amount
    ]
    if deficits:
        raise ReconciliationDeficit(
            "Accrued balances exceed held inventory", deficits=deficits
        )

    first = next(registry.iter_entries(), None)
    if first is None:
        raise EmptyRegistry("Cannot reconcile an empty registry")

    adjustments = []
    for coin in held:
        booked = amount_of(accrued, coin.denom)
        surplus = coin.amount - booked
        if surplus <= 0:
            continue
        first.accrued_balance = add_coin(first.accrued_balance, coin.denom, surplus)
        adjustments.append(ReconcileAdjustment(first.name, coin.denom, coin.amount, booked, surplus))

    if adjustments:
        logger.info("Reconciliation credited %d denomination(s) to '%s'", len(adjustments), first.name)
    return adjustments
