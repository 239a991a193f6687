"""
Shared state for the fee splitter API.

The service owns the splitter, the local host (block clock and bank) and
the storage backend. Commands are serialized by a lock, which stands in
for the host's one-call-at-a-time execution: each committed command
executes its dispatches against the bank, advances the block clock by one
and persists the state document.
"""

import copy
import json
import logging
import os
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from coins import Coin
from fee_splitter import ExecuteResult, FeeSplitter
from host import Env, LocalChain
from storage import StorageBackend, get_storage_backend

logger = logging.getLogger(__name__)

DEFAULT_CONTRACT_ADDRESS = "feesplit_contract"


class ServiceNotInitialized(Exception):
    """Raised when a splitter command arrives before instantiation."""


class SplitterService:
    """Splitter plus local host, persisted as one document."""

    def __init__(self, storage: StorageBackend, chain: LocalChain | None = None):
        self.storage = storage
        self.chain = chain or LocalChain(
            os.getenv("FEESPLIT_CONTRACT_ADDRESS", DEFAULT_CONTRACT_ADDRESS)
        )
        self.splitter: FeeSplitter | None = None
        self._lock = threading.RLock()

    @property
    def initialized(self) -> bool:
        return self.splitter is not None

    # ============================================================
    # Persistence
    # ============================================================

    def load(self) -> bool:
        """
        Load persisted state, migrating it if an older release wrote it.

        Returns:
            True if a state document was found
        """
        document = self.storage.load_state()
        if not document:
            return False

        with self._lock:
            if "chain" in document:
                self.chain = LocalChain.from_dict(document["chain"])
            if document.get("splitter"):
                self.splitter = FeeSplitter.load(document["splitter"], env=self.chain.env())
        logger.info("Loaded splitter state at height %d", self.chain.height)
        return True

    def save(self) -> None:
        self.storage.save_state({
            "chain": self.chain.to_dict(),
            "splitter": self.splitter.to_dict() if self.splitter else None,
        })

    # ============================================================
    # Execution
    # ============================================================

    def instantiate(self, message: dict[str, Any]) -> ExecuteResult:
        """
        Create the splitter from a setup message.

        Message fields: ``gov_contract``, ``allocations``, optional
        ``init_hook`` and ``name``.
        """
        with self._lock:
            if self.splitter is not None:
                raise ValueError("Splitter is already instantiated")
            splitter, result = FeeSplitter.instantiate(
                self.chain.env(),
                gov_contract=message.get("gov_contract"),
                allocations=message.get("allocations") or [],
                init_hook=message.get("init_hook"),
                name=message.get("name", ""),
            )
            with self._restore_on_failure("instantiate"):
                self.splitter = splitter
                self._commit(result)
            return result

    def execute(self, command: Callable[[FeeSplitter, Env], ExecuteResult],
                funds: list[Coin] | None = None) -> ExecuteResult:
        """
        Run ``command`` against the splitter as the next block.

        ``funds`` attached to the call are credited to the splitter only if
        the command succeeds.
        """
        with self._lock:
            if self.splitter is None:
                raise ServiceNotInitialized("Splitter has not been instantiated")
            with self._restore_on_failure("execute"):
                result = command(self.splitter, self.chain.env())
                if funds:
                    self.chain.bank.credit(self.chain.contract_address, funds)
                self._commit(result)
            return result

    def query(self, fn: Callable[[FeeSplitter], Any]) -> Any:
        with self._lock:
            if self.splitter is None:
                raise ServiceNotInitialized("Splitter has not been instantiated")
            return fn(self.splitter)

    def advance(self, blocks: int) -> int:
        with self._lock:
            height = self.chain.advance(blocks)
            self.save()
            return height

    def bank_transfer(self, sender: str, recipient: str, coins: list[Coin]) -> None:
        """
        Move funds outside the splitter's deposit path.

        Funds sent to the splitter this way are not accrued to any entry until
        the next reconcile. The sender is minted the funds first; the local
        bank does not model external accounts.
        """
        with self._lock:
            self.chain.bank.credit(sender, coins)
            self.chain.bank.transfer(sender, recipient, coins)
            self.save()

    @contextmanager
    def _restore_on_failure(self, action: str) -> Iterator[None]:
        """Put splitter and host back as they were if the block fails to commit."""
        snapshot = copy.deepcopy((self.splitter, self.chain))
        try:
            yield
        except Exception:
            self.splitter, self.chain = snapshot
            logger.debug("Rolled back service state after failed %s", action)
            raise

    def _commit(self, result: ExecuteResult) -> None:
        self.chain.bank.apply_dispatches(self.chain.contract_address, result.dispatches)
        self.chain.advance(1)
        self.save()


# ============================================================
# Module-level service
# ============================================================

_service: SplitterService | None = None


def init_service(storage: StorageBackend | None = None,
                 genesis: dict[str, Any] | None = None) -> SplitterService:
    """
    Build the shared service.

    Persisted state wins over a genesis message; the genesis message
    (argument or FEESPLIT_GENESIS_FILE) is only used for a fresh store.
    """
    global _service

    service = SplitterService(storage or get_storage_backend())
    if not service.load():
        if genesis is None:
            genesis_file = os.getenv("FEESPLIT_GENESIS_FILE")
            if genesis_file:
                with open(genesis_file, encoding="utf-8") as f:
                    genesis = json.load(f)
        if genesis is not None:
            service.instantiate(genesis)
            logger.info("Instantiated splitter from genesis message")

    _service = service
    return service


def get_service() -> SplitterService:
    if _service is None:
        return init_service()
    return _service
