"""
Payment orchestration - validate, resolve, estimate, submit, confirm.
"""

from dataclasses import dataclass, replace
from decimal import Decimal, Inexact, InvalidOperation, localcontext
from typing import Optional, Union

import structlog

from .config import Settings
from .errors import (
    ContractUnavailable,
    GasEstimationFailed,
    InvalidInput,
    Unregistered,
    UnknownError,
    WalletUnavailable,
    classify_error,
    error_text,
)
from .evm import WalletProtocol
from .index import is_unset_address
from .ledger import PaymentRequest, RequestLedger
from .network import NetworkGuard

logger = structlog.get_logger()


def native_to_wei(value: Union[int, str, Decimal], decimals: int = 18) -> int:
    """
    Convert an amount in native units to its smallest integer unit exactly.

    Uses Decimal arithmetic; floats are rejected to avoid binary rounding.

    Examples:
        >>> native_to_wei("1.5")
        1500000000000000000
        >>> native_to_wei("0.000000000000000001")
        1
    """
    if isinstance(value, float):
        raise ValueError("Amounts must be given as str, int or Decimal, not float")

    try:
        dec_value = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e

    if not dec_value.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")

    try:
        with localcontext() as ctx:
            # Enough digits for the coefficient plus the shift; rounding raises.
            ctx.prec = len(dec_value.as_tuple().digits) + decimals + 2
            ctx.traps[Inexact] = True
            wei = dec_value * (Decimal(10) ** decimals)
    except ArithmeticError as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    if wei != wei.to_integral_value():
        raise ValueError(f"Amount {value} has more than {decimals} decimal places")
    if wei < 0:
        raise ValueError(f"Amount {value} is negative")

    return int(wei)


def apply_gas_margin(estimate: int, margin_percent: int = 20) -> int:
    """Add a percentage safety margin to a gas estimate, rounding up."""
    return -(-estimate * (100 + margin_percent) // 100)


@dataclass(frozen=True)
class PaymentIntent:
    """What to pay: entered manually or taken from a PaymentRequest."""

    destination_id: str
    amount: str
    request: Optional[PaymentRequest] = None

    @classmethod
    def from_request(cls, request: PaymentRequest) -> "PaymentIntent":
        return cls(destination_id=request.to_id, amount=request.amount, request=request)


@dataclass(frozen=True)
class PaymentReceipt:
    """Confirmed payment."""

    tx_hash: str
    destination_id: str
    resolved_address: str
    value_wei: int
    gas_limit: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    request_completed: Optional[bool] = None  # None when no request was being paid


class PaymentOrchestrator:
    """
    Sends a payment to a CUPID ID.

    Each step short-circuits the rest on failure, and every failure leaves
    as a classified CupidError. Nothing is retried.
    """

    def __init__(
        self,
        wallet: WalletProtocol,
        settings: Settings,
        guard: Optional[NetworkGuard] = None,
        ledger: Optional[RequestLedger] = None,
    ):
        self.wallet = wallet
        self.settings = settings
        self.guard = guard or NetworkGuard(wallet, settings)
        self.ledger = ledger

    async def send(self, intent: PaymentIntent) -> PaymentReceipt:
        """Run the payment protocol for intent and return the confirmed receipt."""
        try:
            receipt = await self._send(intent)
        except Exception as e:
            error = classify_error(e)
            logger.warning(
                "payment_failed",
                destination_id=intent.destination_id,
                error_type=type(error).__name__,
                error=error.message,
            )
            if error is e:
                raise
            raise error from e

        if intent.request is not None and self.ledger is not None:
            receipt = replace(receipt, request_completed=self._complete_request(intent.request, receipt))

        return receipt

    def _complete_request(self, request: PaymentRequest, receipt: PaymentReceipt) -> bool:
        # Payment is confirmed at this point; ledger errors are logged, not raised.
        try:
            self.ledger.mark_completed(*request.key)
        except Exception as e:
            logger.error(
                "payment_request_complete_failed",
                tx_hash=receipt.tx_hash,
                from_id=request.from_id,
                to_id=request.to_id,
                timestamp=request.timestamp,
                error=error_text(e),
            )
            return False
        return True

    async def _send(self, intent: PaymentIntent) -> PaymentReceipt:
        destination = intent.destination_id
        if not destination:
            raise Unregistered("CUPID ID cannot be empty")

        try:
            accounts = await self.wallet.request_accounts()
        except WalletUnavailable:
            raise
        except Exception as e:
            raise WalletUnavailable(detail=error_text(e)) from e
        if not accounts:
            raise WalletUnavailable("Please connect your wallet")

        await self.guard.ensure_network()

        await self._require_code(self.settings.registry_address, "registry")

        try:
            resolved = await self.wallet.resolve(destination, self.settings.network_tag)
        except Exception as e:
            raise Unregistered(
                f"Failed to resolve CUPID ID: {error_text(e)}", detail=error_text(e)
            ) from e
        if is_unset_address(resolved):
            raise Unregistered(f"CUPID ID {destination} is not registered")

        await self._require_code(self.settings.payment_address, "payment contract")

        try:
            value = native_to_wei(intent.amount, self.settings.currency_decimals)
        except ValueError as e:
            raise InvalidInput(str(e)) from e

        try:
            estimate = await self.wallet.estimate_payment_gas(
                destination, self.settings.network_tag, value
            )
        except Exception as e:
            reason = error_text(e)
            raise GasEstimationFailed(reason, detail=reason) from e

        gas_limit = apply_gas_margin(estimate, self.settings.gas_margin_percent)

        tx_hash = await self.wallet.send_payment(
            destination, self.settings.network_tag, value, gas_limit
        )
        logger.info(
            "payment_submitted",
            tx_hash=tx_hash,
            destination_id=destination,
            resolved_address=resolved,
            value_wei=value,
            gas_estimate=estimate,
            gas_limit=gas_limit,
        )

        receipt = await self.wallet.wait_for_receipt(
            tx_hash, self.settings.confirmation_timeout_seconds
        )
        if receipt.get("status") != 1:
            raise UnknownError("Transaction reverted", detail=tx_hash)

        logger.info(
            "payment_confirmed",
            tx_hash=tx_hash,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )
        return PaymentReceipt(
            tx_hash=tx_hash,
            destination_id=destination,
            resolved_address=resolved,
            value_wei=value,
            gas_limit=gas_limit,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )

    async def _require_code(self, address: str, label: str) -> None:
        code = await self.wallet.get_code(address)
        if len(code) == 0:
            raise ContractUnavailable(f"No contract code found at {label} address {address}")
