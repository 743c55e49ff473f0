"""
Error taxonomy for identifier resolution and payments.

Every failure surfaced to the user is a CupidError subclass carrying a
human-readable message and, where available, the raw underlying text.
"""

from typing import Any, Optional

from web3.exceptions import TimeExhausted


class CupidError(Exception):
    """Base error for the CUPID client."""

    default_message = "Operation failed"

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class NetworkMismatch(CupidError):
    default_message = "Wallet is not connected to the required network"


class WalletUnavailable(CupidError):
    default_message = "No wallet available. Configure a signer and connect first"


class Unregistered(CupidError):
    default_message = "CUPID ID is not registered"


class ContractUnavailable(CupidError):
    default_message = "No contract code found at the configured address"


class GasEstimationFailed(CupidError):
    default_message = "Gas estimation failed"


class UserRejected(CupidError):
    default_message = "Transaction was cancelled in the wallet"


class InsufficientFunds(CupidError):
    default_message = "Insufficient funds to complete the transaction"


class TransportError(CupidError):
    default_message = "Network error. Please check your connection and try again"


class UnknownError(CupidError):
    default_message = "Failed to send payment"


class InvalidInput(CupidError):
    default_message = "Invalid input"


class WalletRequestError(Exception):
    """Error payload returned by a wallet JSON-RPC request."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"Wallet error {code}: {message}")


# EIP-1193 provider error codes
USER_REJECTED_CODE = 4001
UNRECOGNIZED_CHAIN_CODE = 4902


def _error_code(exc: BaseException) -> Optional[int]:
    """Pull a JSON-RPC error code out of the various shapes web3 raises."""
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code

    payload: Any = getattr(exc, "rpc_response", None)
    if isinstance(payload, dict):
        payload = payload.get("error", payload)
    elif exc.args and isinstance(exc.args[0], dict):
        payload = exc.args[0]

    if isinstance(payload, dict) and isinstance(payload.get("code"), int):
        return payload["code"]
    return None


def error_text(exc: BaseException) -> str:
    """Most specific message available on an exception."""
    if isinstance(exc, CupidError):
        return exc.message
    if exc.args and isinstance(exc.args[0], dict):
        payload = exc.args[0]
        return str(payload.get("reason") or payload.get("message") or payload)
    for attr in ("reason", "message"):
        value = getattr(exc, attr, None)
        if isinstance(value, str) and value:
            return value
    return str(exc) or exc.__class__.__name__


def classify_error(exc: BaseException) -> CupidError:
    """
    Map a wallet/node exception onto the error taxonomy.

    Already-classified errors pass through unchanged.
    """
    if isinstance(exc, CupidError):
        return exc

    text = error_text(exc)
    lowered = text.lower()

    if _error_code(exc) == USER_REJECTED_CODE or "user rejected" in lowered or "user denied" in lowered:
        return UserRejected(detail=text)
    if "insufficient funds" in lowered:
        return InsufficientFunds(detail=text)
    if isinstance(exc, (TimeExhausted, ConnectionError, TimeoutError, OSError)):
        return TransportError(detail=text)
    return UnknownError(text, detail=text)
