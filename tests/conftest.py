"""
Pytest configuration and shared fixtures for fee splitter tests.

This module provides shared fixtures and test configuration including:
- Environment setup (authentication disabled, in-memory storage)
- A two-entry splitter instantiated by a known controller
- Flask app and client backed by in-memory storage
- Metrics reset between tests
"""

import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

# Set up test environment before any imports
os.environ["FEESPLIT_API_KEY"] = "test-api-key-12345"
os.environ["FEESPLIT_REQUIRE_AUTH"] = "false"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ.pop("FEESPLIT_GENESIS_FILE", None)

CONTRACT = "feesplit_contract"
GOV = "gov_addr"
ALICE = "alice_addr"
BOB = "bob_addr"
CAROL = "carol_addr"
KEEPER = "keeper_addr"
PAYER = "payer_addr"


def make_allocation(name, recipient, weight=1, threshold_amount=0, denom="uluna", kind="wallet"):
    """Build an allocation row as accepted by setup and add_allocation."""
    return {
        "name": name,
        "recipient": recipient,
        "weight": weight,
        "threshold": {"denom": denom, "amount": str(threshold_amount)},
        "recipient_kind": kind,
    }


def genesis_message(allocations=None, **extra):
    message = {
        "gov_contract": GOV,
        "allocations": allocations or [
            make_allocation("a", ALICE),
            make_allocation("b", BOB),
        ],
    }
    message.update(extra)
    return message


def env_at(height):
    from host import Env
    return Env(block_height=height, contract_address=CONTRACT)


def sender(address, funds=()):
    from host import MessageInfo
    return MessageInfo(sender=address, funds=tuple(funds))


def coins(**amounts):
    """coins(uluna=10, uusd=5) -> [Coin("uluna", 10), Coin("uusd", 5)]."""
    from coins import Coin
    return [Coin(denom, amount) for denom, amount in amounts.items()]


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with empty counters."""
    from monitoring import metrics
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def splitter():
    """Splitter with entries a (alice) and b (bob), weight 1 each, no thresholds."""
    from fee_splitter import FeeSplitter
    instance, _ = FeeSplitter.instantiate(
        env_at(1), gov_contract=GOV, allocations=genesis_message()["allocations"]
    )
    return instance


@pytest.fixture
def memory_storage():
    from storage import MemoryStorage
    return MemoryStorage()


@pytest.fixture
def flask_app(memory_storage):
    """Flask app with a freshly instantiated splitter in memory storage."""
    from api import create_app
    app = create_app(storage=memory_storage, genesis=genesis_message(), configure_logs=False)
    app.config['TESTING'] = True
    return app


@pytest.fixture
def flask_client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def test_auth_headers():
    return {
        "Content-Type": "application/json",
        "X-API-Key": "test-api-key-12345",
    }
