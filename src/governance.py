"""
Fee Splitter - Governance

Holds the controlling principal and the two-phase, delay-gated handover
of control:

    Stable  --initiate_transfer-->  Pending  --accept_transfer-->  Stable

A nomination only takes effect once the nominee accepts it at or after the
activation height. Re-initiating while Pending overwrites the nomination.
Nominations never expire.

Also holds the flush whitelist: principals other than the controller that
may trigger an immediate flush when they deposit.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from fee_split_errors import (
    InvalidDelay,
    NoPendingTransfer,
    NotYetActive,
    Unauthorized,
)


class GovernanceState(Enum):
    STABLE = "stable"
    PENDING = "pending"


@dataclass
class GovernanceConfig:
    """Singleton governance record, threaded explicitly through privileged operations."""

    self_address: str
    current_controller: str
    pending_controller: str | None = None
    activation_point: int | None = None

    @property
    def state(self) -> GovernanceState:
        if self.pending_controller is None:
            return GovernanceState.STABLE
        return GovernanceState.PENDING

    def is_controller(self, caller: str) -> bool:
        return caller == self.current_controller

    def require_controller(self, caller: str, action: str = "") -> None:
        """
        Raises:
            Unauthorized: if ``caller`` is not the current controller
        """
        if not self.is_controller(caller):
            raise Unauthorized(
                f"Only the controller may {action or 'perform this operation'}",
                caller=caller,
                action=action,
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "self_address": self.self_address,
            "current_controller": self.current_controller,
            "pending_controller": self.pending_controller,
            "activation_point": self.activation_point,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GovernanceConfig":
        return cls(
            self_address=data["self_address"],
            current_controller=data["current_controller"],
            pending_controller=data.get("pending_controller"),
            activation_point=data.get("activation_point"),
        )


def initiate_transfer(
    config: GovernanceConfig,
    caller: str,
    new_controller: str,
    delay: int,
    now: int,
) -> GovernanceConfig:
    """
    Nominate ``new_controller``; acceptable from height ``now + delay``.

    Raises:
        Unauthorized: caller is not the controller
        InvalidDelay: delay is not a non-negative integer
    """
    config.require_controller(caller, "transfer governance")
    if isinstance(delay, bool) or not isinstance(delay, int) or delay < 0:
        raise InvalidDelay(f"Delay must be a non-negative number of blocks, got {delay!r}",
                           blocks=delay)

    config.pending_controller = new_controller
    config.activation_point = now + delay
    return config


def accept_transfer(config: GovernanceConfig, caller: str, now: int) -> str:
    """
    Complete a pending transfer.

    Returns:
        The previous controller

    Raises:
        NoPendingTransfer: nothing was nominated
        Unauthorized: caller is not the nominee
        NotYetActive: the activation height has not been reached
    """
    if config.pending_controller is None:
        raise NoPendingTransfer("No governance transfer is pending", caller=caller)
    if caller != config.pending_controller:
        raise Unauthorized("Only the nominated controller may accept", caller=caller,
                           pending_controller=config.pending_controller)
    if now < config.activation_point:
        raise NotYetActive(
            f"Transfer activates at height {config.activation_point}, current height is {now}",
            activation_point=config.activation_point,
            block_height=now,
        )

    previous = config.current_controller
    config.current_controller = config.pending_controller
    config.pending_controller = None
    config.activation_point = None
    return previous


class FlushWhitelist:
    """Set of principals allowed to flush on deposit. Add/remove are idempotent."""

    def __init__(self, members: list[str] | None = None):
        self._members: set[str] = set(members or [])

    def __contains__(self, address: str) -> bool:
        return address in self._members

    def __len__(self) -> int:
        return len(self._members)

    def add(self, address: str) -> bool:
        """Returns True if membership changed."""
        if address in self._members:
            return False
        self._members.add(address)
        return True

    def remove(self, address: str) -> bool:
        """Returns True if membership changed."""
        if address not in self._members:
            return False
        self._members.discard(address)
        return True

    def members(self) -> list[str]:
        return sorted(self._members)


def may_flush(config: GovernanceConfig, whitelist: FlushWhitelist, caller: str) -> bool:
    return config.is_controller(caller) or caller in whitelist
