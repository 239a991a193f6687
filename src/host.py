"""
Fee Splitter - Host collaborators

The splitter is one participant's logic inside a larger execution host.
The host owns caller authentication, the block clock, address validation
and the bank that actually holds funds. This module defines those seams
and a local in-memory host used by the API server and the tests.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field

from coins import Coin, normalize_coins, subtract_coins
from fee_split_errors import InvalidAddress, ZeroAmount

logger = logging.getLogger(__name__)

# Bech32-style bounds; addresses are canonical lowercase
ADDRESS_PATTERN = re.compile(r"^[a-z0-9_\-]{3,90}$")


def validate_address(address: object) -> str:
    """
    Validate and return a canonical address.

    Raises:
        InvalidAddress: if the address is not a non-empty canonical string
    """
    if not isinstance(address, str) or not ADDRESS_PATTERN.match(address):
        raise InvalidAddress(f"Invalid address: {address!r}", address=address)
    return address


@dataclass(frozen=True)
class Env:
    """Execution environment visible to a single call."""
    block_height: int
    contract_address: str


@dataclass(frozen=True)
class MessageInfo:
    """Authenticated caller and the funds attached to the call."""
    sender: str
    funds: tuple[Coin, ...] = ()


# =============================================================================
# Dispatch instructions
# =============================================================================

@dataclass(frozen=True)
class BankSend:
    """Plain value transfer to a wallet."""
    to_address: str
    amount: tuple[Coin, ...]

    def to_dict(self) -> dict:
        return {
            "type": "bank_send",
            "to_address": self.to_address,
            "amount": [c.to_dict() for c in self.amount],
        }


@dataclass(frozen=True)
class ContractExecute:
    """Executable message sent to a contract, optionally with funds."""
    contract_addr: str
    msg: dict = field(default_factory=dict, hash=False)
    funds: tuple[Coin, ...] = ()

    def to_dict(self) -> dict:
        return {
            "type": "contract_execute",
            "contract_addr": self.contract_addr,
            "msg": self.msg,
            "funds": [c.to_dict() for c in self.funds],
        }


DispatchInstruction = BankSend | ContractExecute


def dispatch_from_dict(data: dict) -> DispatchInstruction:
    """Inverse of ``to_dict`` for dispatch instructions."""
    if data["type"] == "bank_send":
        return BankSend(data["to_address"], tuple(Coin.from_dict(c) for c in data["amount"]))
    return ContractExecute(
        data["contract_addr"],
        data.get("msg", {}),
        tuple(Coin.from_dict(c) for c in data.get("funds", [])),
    )


# =============================================================================
# Balance source
# =============================================================================

class BalanceSource(ABC):
    """Read access to the inventory the host holds for an address."""

    @abstractmethod
    def get_all_balances(self, address: str) -> list[Coin]:
        """
        Return every coin held by ``address``.

        Returns:
            Canonical coin list (sorted by denom, no zeros)
        """


class LocalBank(BalanceSource):
    """
    In-memory bank.

    Executes the dispatch instructions the splitter emits so the inventory
    it reports stays in step with what was actually sent out.
    """

    def __init__(self):
        self._balances: dict[str, list[Coin]] = {}

    def get_all_balances(self, address: str) -> list[Coin]:
        return list(self._balances.get(address, []))

    def credit(self, address: str, coins: Iterable[Coin]) -> None:
        """Mint ``coins`` into ``address`` (genesis funding, tests)."""
        coins = _require_positive(coins)
        self._balances[address] = normalize_coins([*self._balances.get(address, []), *coins])

    def transfer(self, sender: str, recipient: str, coins: Iterable[Coin]) -> None:
        """
        Move coins between accounts.

        Raises:
            ZeroAmount: if any amount is not positive
            ValueError: if ``sender`` holds too little
        """
        coins = _require_positive(coins)
        self._balances[sender] = subtract_coins(self._balances.get(sender, []), coins)
        self.credit(recipient, coins)
        logger.debug("Bank transfer %s -> %s: %s", sender, recipient, coins)

    def apply_dispatches(self, sender: str, dispatches: Iterable[DispatchInstruction]) -> None:
        """Move the funds of every dispatch out of ``sender``."""
        for dispatch in dispatches:
            if isinstance(dispatch, BankSend):
                self.transfer(sender, dispatch.to_address, dispatch.amount)
            elif dispatch.funds:
                self.transfer(sender, dispatch.contract_addr, dispatch.funds)

    def to_dict(self) -> dict:
        return {
            address: [c.to_dict() for c in coins]
            for address, coins in sorted(self._balances.items())
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LocalBank":
        bank = cls()
        for address, coins in data.items():
            bank.credit(address, [Coin.from_dict(c) for c in coins])
        return bank


def _require_positive(coins: Iterable[Coin]) -> list[Coin]:
    coins = list(coins)
    for coin in coins:
        if coin.amount <= 0:
            raise ZeroAmount(f"Bank amounts must be positive, got {coin.amount} {coin.denom}",
                             coin=coin)
    return coins


class LocalChain:
    """Block clock plus bank for running the splitter outside a real host."""

    def __init__(self, contract_address: str, height: int = 1, bank: LocalBank | None = None):
        self.contract_address = validate_address(contract_address)
        self.height = height
        self.bank = bank or LocalBank()

    def env(self) -> Env:
        """Environment for the next call."""
        return Env(block_height=self.height, contract_address=self.contract_address)

    def advance(self, blocks: int = 1) -> int:
        """Advance the clock; the clock never moves backwards."""
        if blocks < 0:
            raise ValueError("Cannot move the block clock backwards")
        self.height += blocks
        return self.height

    def to_dict(self) -> dict:
        return {
            "contract_address": self.contract_address,
            "height": self.height,
            "bank": self.bank.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LocalChain":
        return cls(
            contract_address=data["contract_address"],
            height=data.get("height", 1),
            bank=LocalBank.from_dict(data.get("bank", {})),
        )
