"""
Shared fixtures for CUPID client tests.
"""

import pytest

from cupid_client.config import Settings
from cupid_client.evm import MockWallet
from cupid_client.ledger import MemoryRequestStore, RequestLedger

ALICE = "0x00000000000000000000000000000000000000aa"
BOB = "0x00000000000000000000000000000000000000bb"


@pytest.fixture
def settings() -> Settings:
    """Settings pinned to defaults, ignoring any local .env."""
    return Settings(_env_file=None, private_key=None, database_url="sqlite://")


@pytest.fixture
def wallet(settings: Settings) -> MockWallet:
    """Mock wallet on the required chain with both contracts deployed."""
    w = MockWallet(chain_id=settings.chain_id, accounts=[ALICE], block_number=100)
    w.deploy(settings.registry_address)
    w.deploy(settings.payment_address)
    return w


@pytest.fixture
def ledger() -> RequestLedger:
    return RequestLedger(MemoryRequestStore())
