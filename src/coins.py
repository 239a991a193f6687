"""
Fee Splitter - Coin arithmetic

A coin is a (denomination, amount) pair with an exact integer amount.
Coin lists are kept canonical: sorted by denomination, one coin per
denomination, no zero amounts. Every replica must agree on the order of
a balance list, so nothing here depends on dict or set iteration order.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from fee_split_errors import InvalidDenomination, ZeroAmount

# ASCII digits only
AMOUNT_PATTERN = re.compile(r"-?[0-9]+")


@dataclass(frozen=True)
class Coin:
    """A single denomination/amount pair."""

    denom: str
    amount: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary. Amounts are strings to survive JSON clients."""
        return {"denom": self.denom, "amount": str(self.amount)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Coin":
        """Build a coin from a dictionary with ``denom`` and ``amount``."""
        return cls(denom=data["denom"], amount=parse_amount(data["amount"]))


def parse_amount(value: Any) -> int:
    """
    Parse an integer amount from an int or a decimal string.

    Floats and booleans are rejected: fractional units do not exist.
    """
    if isinstance(value, bool):
        raise ZeroAmount(f"Amount must be an integer, got {value!r}", amount=value)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and AMOUNT_PATTERN.fullmatch(value.strip()):
        return int(value.strip())
    raise ZeroAmount(f"Amount must be an integer, got {value!r}", amount=value)


def require_denom(denom: Any) -> str:
    """Return ``denom`` if it is a non-blank string, otherwise raise."""
    if not isinstance(denom, str) or not denom.strip():
        raise InvalidDenomination(f"Invalid denomination: {denom!r}", denom=denom)
    return denom


def normalize_coins(coins: Iterable[Coin]) -> list[Coin]:
    """Merge duplicate denominations, drop zeros and sort by denomination."""
    totals: dict[str, int] = {}
    for coin in coins:
        totals[coin.denom] = totals.get(coin.denom, 0) + coin.amount
    return [Coin(denom, totals[denom]) for denom in sorted(totals) if totals[denom] != 0]


def amount_of(coins: Iterable[Coin], denom: str) -> int:
    """Amount held in ``denom`` (0 if absent)."""
    for coin in coins:
        if coin.denom == denom:
            return coin.amount
    return 0


def add_coin(coins: list[Coin], denom: str, amount: int) -> list[Coin]:
    """Return a new canonical list with ``amount`` added to ``denom``."""
    if amount == 0:
        return normalize_coins(coins)
    return normalize_coins([*coins, Coin(denom, amount)])


def subtract_coins(coins: Iterable[Coin], other: Iterable[Coin]) -> list[Coin]:
    """Return ``coins - other``; raises ValueError if any amount would go negative."""
    result = normalize_coins([*coins, *(Coin(c.denom, -c.amount) for c in other)])
    for coin in result:
        if coin.amount < 0:
            raise ValueError(f"Insufficient {coin.denom}: short by {-coin.amount}")
    return result


def coins_from_payload(payload: Any) -> list[Coin]:
    """
    Parse a coin list from JSON-style input.

    Accepts either ``[{"denom": "x", "amount": "10"}, ...]`` or a mapping
    ``{"x": 10}``. Order of the input does not matter.
    """
    if isinstance(payload, dict):
        items = [{"denom": denom, "amount": amount} for denom, amount in payload.items()]
    elif isinstance(payload, list):
        items = payload
    else:
        raise InvalidDenomination("Funds must be a list of coins or a denom->amount mapping")

    coins = []
    for item in items:
        if not isinstance(item, dict) or "denom" not in item or "amount" not in item:
            raise InvalidDenomination(f"Malformed coin: {item!r}", coin=item)
        coins.append(Coin(require_denom(item["denom"]), parse_amount(item["amount"])))
    return coins


def coins_to_list(coins: Iterable[Coin]) -> list[dict[str, Any]]:
    """Serialize a coin list."""
    return [coin.to_dict() for coin in coins]
