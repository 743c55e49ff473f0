"""
CUPID Client

Resolves human-readable CUPID IDs (@name@cupid) to chain addresses and
sends or requests payments through the CUPID registry and payment
contracts on Polygon Amoy.

Usage:
    # Send a payment
    cupid send @bob@cupid 1.5

    # Ask someone to pay one of your IDs
    cupid request @bob@cupid 0.25 --to @alice@cupid

    # Pay a pending request
    cupid requests @bob@cupid
    cupid pay-request @bob@cupid 1700000000000
"""

__version__ = "0.1.0"

from .config import Settings, get_settings
from .errors import CupidError
from .evm import EvmWallet, MockWallet
from .index import IdentityIndex, Registration
from .ledger import PaymentRequest, RequestLedger, RequestStatus, SqlRequestStore
from .network import NetworkGuard
from .orchestrator import PaymentIntent, PaymentOrchestrator, PaymentReceipt
from .scanner import EventWindowScanner, RawEvent
from .session import ClientSession, ClientState

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "CupidError",
    "EvmWallet",
    "MockWallet",
    "IdentityIndex",
    "Registration",
    "PaymentRequest",
    "RequestLedger",
    "RequestStatus",
    "SqlRequestStore",
    "NetworkGuard",
    "PaymentIntent",
    "PaymentOrchestrator",
    "PaymentReceipt",
    "EventWindowScanner",
    "RawEvent",
    "ClientSession",
    "ClientState",
]
