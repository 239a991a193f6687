"""
Fee Splitter - Allocation and Distribution Engine

Receives deposited value, splits it across a registry of weighted
beneficiaries, and dispatches accrued balances once thresholds are met.
Administrative control moves between principals through a two-phase,
delay-gated handover.

Core Properties:
- Deterministic: identical state and input give identical splits and
  identical dispatch lists (registry is always walked in name order)
- Conserving: floor-division remainders go to the last entry, so every
  deposited unit is either accrued or dispatched
- Atomic: every command runs against a snapshot and is rolled back on error
- Auditable: every successful command is recorded as an event

The host supplies the caller (MessageInfo), the block height (Env) and the
bank inventory (BalanceSource). Dispatch instructions are returned to the
host for execution; this module never moves funds itself.
"""

import copy
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

import split_engine
from allocation_registry import AllocationRegistry
from coins import coins_to_list
from fee_split_errors import DuplicateName, FeeSplitError, InvalidName, MigrationError, NoAllocations
from governance import (
    FlushWhitelist,
    GovernanceConfig,
    accept_transfer,
    initiate_transfer,
    may_flush,
)
from host import BalanceSource, BankSend, ContractExecute, DispatchInstruction, Env, MessageInfo, validate_address
from migrations import ContractVersion, migrate_state
from monitoring.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass
class ExecuteResult:
    """Outcome of a command: what happened plus instructions for the host."""

    action: str
    attributes: dict[str, Any] = field(default_factory=dict)
    dispatches: list[DispatchInstruction] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "attributes": self.attributes,
            "dispatches": [d.to_dict() for d in self.dispatches],
        }


class FeeSplitter:
    """
    Orchestrates registry, governance and flush whitelist.

    Authorization is checked here, before any registry logic runs.
    """

    MAX_EVENTS = 1000

    def __init__(
        self,
        config: GovernanceConfig,
        registry: AllocationRegistry,
        whitelist: FlushWhitelist | None = None,
        name: str = "",
        contract_version: ContractVersion | None = None,
        events: list[dict[str, Any]] | None = None,
        address_validator: Callable[[Any], str] = validate_address,
    ):
        self.config = config
        self.registry = registry
        self.whitelist = whitelist or FlushWhitelist()
        self.name = name
        self.contract_version = contract_version or ContractVersion.current()
        self.events: list[dict[str, Any]] = events or []
        self._validate_address = address_validator

    # ==================== SETUP ====================

    @classmethod
    def instantiate(
        cls,
        env: Env,
        gov_contract: str,
        allocations: list[dict[str, Any]],
        init_hook: dict[str, Any] | None = None,
        name: str = "",
        address_validator: Callable[[Any], str] = validate_address,
    ) -> tuple["FeeSplitter", ExecuteResult]:
        """
        Create a splitter with its initial registry.

        Args:
            env: Environment of the instantiating call
            gov_contract: Initial controller
            allocations: Rows with name, recipient, weight, threshold,
                recipient_kind
            init_hook: Optional ``{"contract_addr", "msg"}`` executed after setup
            name: Human-readable label

        Returns:
            Tuple of (splitter, result). Nothing is returned on failure, so a
            rejected setup commits no entries.

        Raises:
            NoAllocations, DuplicateName, or any registry validation error
        """
        if not allocations:
            raise NoAllocations("At least one allocation is required")
        for row in allocations:
            if not isinstance(row, dict):
                raise InvalidName(f"Malformed allocation row: {row!r}", row=row)

        names = [row.get("name") for row in allocations]
        duplicates = sorted({n for n in names if isinstance(n, str) and names.count(n) > 1})
        if duplicates:
            raise DuplicateName("Allocation names must be unique", names=duplicates)

        config = GovernanceConfig(
            self_address=address_validator(env.contract_address),
            current_controller=address_validator(gov_contract),
        )
        registry = AllocationRegistry(address_validator)
        for row in allocations:
            registry.create(
                name=row.get("name"),
                recipient=row.get("recipient"),
                weight=row.get("weight"),
                threshold=row.get("threshold"),
                recipient_kind=row.get("recipient_kind"),
            )

        splitter = cls(config, registry, name=name, address_validator=address_validator)

        dispatches: list[DispatchInstruction] = []
        if init_hook:
            dispatches.append(ContractExecute(
                contract_addr=address_validator(init_hook.get("contract_addr")),
                msg=init_hook.get("msg") or {},
            ))

        splitter._emit_event("Instantiated", env, {
            "gov_contract": config.current_controller,
            "allocations": [e.name for e in registry],
        })
        logger.info("Fee splitter instantiated with %d allocation(s)", len(registry))

        return splitter, ExecuteResult(
            action="instantiate",
            attributes={
                "contract_name": splitter.contract_version.contract,
                "contract_version": splitter.contract_version.version,
                "allocations": len(registry),
            },
            dispatches=dispatches,
        )

    # ==================== ATOMICITY ====================

    @contextmanager
    def _atomic(self, action: str) -> Iterator[None]:
        """Run a command against a snapshot; restore it if the command raises."""
        snapshot = (
            copy.deepcopy(self.config),
            copy.deepcopy(self.registry),
            copy.deepcopy(self.whitelist),
            list(self.events),
        )
        try:
            yield
        except FeeSplitError as e:
            self.config, self.registry, self.whitelist, self.events = snapshot
            metrics.increment("commands_failed_total", labels={"action": action, "error": e.kind})
            if e.retryable:
                logger.warning("%s rejected: %s", action, e)
            else:
                logger.error("%s failed on broken invariant: %s", action, e,
                             extra={"details": e.to_dict()["details"]})
            raise
        except Exception:
            self.config, self.registry, self.whitelist, self.events = snapshot
            metrics.increment("commands_failed_total", labels={"action": action, "error": "internal"})
            logger.exception("%s failed unexpectedly", action)
            raise

    # ==================== DEPOSIT ====================

    def deposit(self, env: Env, info: MessageInfo, flush: bool = False) -> ExecuteResult:
        """
        Split the attached funds and optionally flush.

        A flush request from a caller that is neither controller nor
        whitelisted is ignored rather than rejected: deposits never fail for
        lack of flush rights.
        """
        with self._atomic("deposit"):
            assignments = split_engine.apply_deposit(self.registry, list(info.funds))

            flushed = False
            dispatches: list[DispatchInstruction] = []
            if flush:
                if may_flush(self.config, self.whitelist, info.sender):
                    dispatches = split_engine.flush(self.registry)
                    flushed = True
                else:
                    logger.info("Flush requested by %s ignored: not authorized", info.sender)

            self._emit_event("Deposit", env, {
                "sender": info.sender,
                "funds": coins_to_list(split_engine.validate_deposit(list(info.funds))),
                "flush_requested": flush,
                "flushed": flushed,
                "dispatched_to": [_dispatch_target(d) for d in dispatches],
            })

        metrics.increment("deposits_total")
        if dispatches:
            metrics.increment("dispatches_total", len(dispatches))

        return ExecuteResult(
            action="deposit",
            attributes={
                "sender": info.sender,
                "flush_requested": flush,
                "flushed": flushed,
                "shares": [a.to_dict() for a in assignments],
            },
            dispatches=dispatches,
        )

    # ==================== REGISTRY ADMINISTRATION ====================

    def add_allocation(
        self,
        env: Env,
        info: MessageInfo,
        name: str,
        recipient: str,
        weight: int,
        threshold: Any,
        recipient_kind: Any,
    ) -> ExecuteResult:
        with self._atomic("add_allocation"):
            self.config.require_controller(info.sender, "add allocations")
            entry = self.registry.create(name, recipient, weight, threshold, recipient_kind)
            self._emit_event("AllocationAdded", env, entry.to_dict())
        logger.info("Allocation '%s' added", entry.name)
        return ExecuteResult("add_allocation", {"name": entry.name, "allocation": entry.to_dict()})

    def remove_allocation(self, env: Env, info: MessageInfo, name: str) -> ExecuteResult:
        """
        Remove an entry.

        Its accrued balance stays in the splitter's inventory and is reported
        as ``discarded_balance``; the next reconcile credits it to the first
        entry.
        """
        with self._atomic("remove_allocation"):
            self.config.require_controller(info.sender, "remove allocations")
            entry = self.registry.remove(name)
            discarded = coins_to_list(entry.accrued_balance)
            self._emit_event("AllocationRemoved", env, {"name": name, "discarded_balance": discarded})
        if discarded:
            logger.warning("Allocation '%s' removed with undispatched balance %s", name, discarded)
        return ExecuteResult("remove_allocation", {"name": name, "discarded_balance": discarded})

    def modify_allocation(
        self,
        env: Env,
        info: MessageInfo,
        name: str,
        recipient: str | None = None,
        weight: int | None = None,
        threshold: Any = None,
        recipient_kind: Any = None,
    ) -> ExecuteResult:
        with self._atomic("modify_allocation"):
            self.config.require_controller(info.sender, "modify allocations")
            entry = self.registry.modify(name, recipient, weight, threshold, recipient_kind)
            self._emit_event("AllocationModified", env, entry.to_dict())
        return ExecuteResult("modify_allocation", {"name": name, "allocation": entry.to_dict()})

    # ==================== FLUSH WHITELIST ====================

    def add_to_flush_whitelist(self, env: Env, info: MessageInfo, address: str) -> ExecuteResult:
        with self._atomic("add_to_flush_whitelist"):
            self.config.require_controller(info.sender, "change the flush whitelist")
            changed = self.whitelist.add(self._validate_address(address))
            self._emit_event("FlushWhitelistAdded", env, {"address": address, "changed": changed})
        return ExecuteResult("add_to_flush_whitelist", {"address": address, "changed": changed})

    def remove_from_flush_whitelist(self, env: Env, info: MessageInfo, address: str) -> ExecuteResult:
        with self._atomic("remove_from_flush_whitelist"):
            self.config.require_controller(info.sender, "change the flush whitelist")
            changed = self.whitelist.remove(self._validate_address(address))
            self._emit_event("FlushWhitelistRemoved", env, {"address": address, "changed": changed})
        return ExecuteResult("remove_from_flush_whitelist", {"address": address, "changed": changed})

    # ==================== GOVERNANCE ====================

    def transfer_gov_contract(
        self, env: Env, info: MessageInfo, gov_contract: str, blocks: int
    ) -> ExecuteResult:
        """Nominate a new controller, acceptable ``blocks`` blocks from now."""
        with self._atomic("transfer_gov_contract"):
            initiate_transfer(
                self.config,
                caller=info.sender,
                new_controller=self._validate_address(gov_contract),
                delay=blocks,
                now=env.block_height,
            )
            self._emit_event("GovernanceTransferInitiated", env, {
                "pending_controller": self.config.pending_controller,
                "activation_point": self.config.activation_point,
            })
        logger.info("Governance transfer to %s initiated, active from height %d",
                    self.config.pending_controller, self.config.activation_point)
        return ExecuteResult("transfer_gov_contract", {
            "pending_controller": self.config.pending_controller,
            "activation_point": self.config.activation_point,
        })

    def accept_gov_contract(self, env: Env, info: MessageInfo) -> ExecuteResult:
        with self._atomic("accept_gov_contract"):
            previous = accept_transfer(self.config, caller=info.sender, now=env.block_height)
            self._emit_event("GovernanceTransferAccepted", env, {
                "previous_controller": previous,
                "current_controller": self.config.current_controller,
            })
        logger.info("Governance transferred from %s to %s", previous, self.config.current_controller)
        return ExecuteResult("accept_gov_contract", {
            "previous_controller": previous,
            "current_controller": self.config.current_controller,
        })

    # ==================== RECONCILIATION ====================

    def reconcile(self, env: Env, info: MessageInfo, balances: BalanceSource) -> ExecuteResult:
        """Credit inventory held beyond the accrued total to the first entry."""
        with self._atomic("reconcile"):
            self.config.require_controller(info.sender, "reconcile")
            held = balances.get_all_balances(self.config.self_address)
            adjustments = split_engine.reconcile_balances(self.registry, held)
            self._emit_event("Reconciled", env, {"adjustments": [a.to_dict() for a in adjustments]})
        return ExecuteResult("reconcile", {"adjustments": [a.to_dict() for a in adjustments]})

    # ==================== QUERIES ====================

    def query_allocation(self, name: str) -> dict[str, Any]:
        return self.registry.get(name).to_dict()

    def query_allocations(self, start_after: str | None = None,
                          limit: int | None = None) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.registry.list(start_after, limit)]

    def query_ownership(self) -> dict[str, Any]:
        ownership = self.config.to_dict()
        ownership["state"] = self.config.state.value
        return ownership

    def query_flush_whitelist(self) -> list[str]:
        return self.whitelist.members()

    def query_contract_version(self) -> dict[str, str]:
        return self.contract_version.to_dict()

    def get_events(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent events, newest last."""
        return self.events[-limit:] if limit > 0 else []

    # ==================== PERSISTENCE ====================

    def to_dict(self) -> dict[str, Any]:
        return {
            "contract_version": self.contract_version.to_dict(),
            "name": self.name,
            "config": self.config.to_dict(),
            "allocations": self.registry.to_list(),
            "flush_whitelist": self.whitelist.members(),
            "events": self.events,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        address_validator: Callable[[Any], str] = validate_address,
    ) -> "FeeSplitter":
        """
        Rebuild a splitter from state written by the current version.

        Raises:
            MigrationError: state was written by another version; use ``migrate``
        """
        version = ContractVersion.from_dict(data["contract_version"])
        if version != ContractVersion.current():
            raise MigrationError(
                f"State was written by {version.contract} {version.version}; migrate first",
                current_name=version.contract,
                current_version=version.version,
            )
        return cls(
            config=GovernanceConfig.from_dict(data["config"]),
            registry=AllocationRegistry.from_list(data["allocations"], address_validator),
            whitelist=FlushWhitelist(data.get("flush_whitelist", [])),
            name=data.get("name", ""),
            contract_version=version,
            events=list(data.get("events", [])),
            address_validator=address_validator,
        )

    @classmethod
    def migrate(
        cls,
        data: dict[str, Any],
        env: Env | None = None,
        address_validator: Callable[[Any], str] = validate_address,
    ) -> tuple["FeeSplitter", ExecuteResult]:
        """
        Upgrade state written by an earlier release and load it.

        Raises:
            MigrationError: state belongs to another contract
        """
        state, report = migrate_state(copy.deepcopy(data))
        splitter = cls.from_dict(state, address_validator)
        splitter._emit_event("Migrated", env, report)
        logger.info("Migrated state from %s %s to %s %s",
                    report["previous_contract_name"], report["previous_contract_version"],
                    report["new_contract_name"], report["new_contract_version"])
        return splitter, ExecuteResult("migrate", report)

    @classmethod
    def load(
        cls,
        data: dict[str, Any],
        env: Env | None = None,
        address_validator: Callable[[Any], str] = validate_address,
    ) -> "FeeSplitter":
        """Load persisted state, migrating it first when the version differs."""
        record = data.get("contract_version") or {}
        if record == ContractVersion.current().to_dict():
            return cls.from_dict(data, address_validator)
        splitter, _ = cls.migrate(data, env, address_validator)
        return splitter

    # ==================== EVENTS ====================

    def _emit_event(self, event_type: str, env: Env | None, data: dict[str, Any]) -> None:
        self.events.append({
            "event_type": event_type,
            "block_height": env.block_height if env else None,
            "data": data,
        })
        if len(self.events) > self.MAX_EVENTS:
            del self.events[: len(self.events) - self.MAX_EVENTS]


def _dispatch_target(dispatch: DispatchInstruction) -> str:
    if isinstance(dispatch, BankSend):
        return dispatch.to_address
    return dispatch.contract_addr
