"""
Registering CUPID IDs and updating their addresses.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from web3 import Web3

from .config import Settings
from .errors import CupidError, GasEstimationFailed, InvalidInput, UnknownError, classify_error, error_text
from .evm import WalletProtocol
from .index import IdentityIndex, is_valid_identifier
from .network import NetworkGuard
from .orchestrator import apply_gas_margin
from .scanner import EventWindowScanner

logger = structlog.get_logger()


@dataclass(frozen=True)
class RegistrationResult:
    """Confirmed registerID transaction."""

    tx_hash: str
    identifier: str
    primary_address: str
    secondary_address: str
    block_number: Optional[int] = None


class RegistrationService:
    """Submits registerID for new identifiers and address updates."""

    def __init__(
        self,
        wallet: WalletProtocol,
        settings: Settings,
        guard: Optional[NetworkGuard] = None,
        scanner: Optional[EventWindowScanner] = None,
    ):
        self.wallet = wallet
        self.settings = settings
        self.guard = guard or NetworkGuard(wallet, settings)
        self.scanner = scanner or EventWindowScanner(wallet, settings.lookback_blocks)

    async def register(self, identifier: str, ethereum: str, polygon: str) -> RegistrationResult:
        """Register a new identifier. Fails if it was seen in the lookback window."""
        if not is_valid_identifier(identifier):
            raise InvalidInput("Invalid CUPID ID format. Must be like @username@cupid")

        await self.guard.ensure_network()

        events = await self.scanner.scan(self.wallet.get_registration_logs)
        if self.scanner.last_error is not None:
            raise InvalidInput(
                "Unable to check whether this CUPID ID is already registered",
                detail=self.scanner.last_error,
            )
        if any(event.id == identifier for event in events):
            raise InvalidInput("This CUPID ID is already registered")

        return await self._submit(identifier, ethereum, polygon)

    async def update_addresses(
        self, identifier: str, ethereum: str, polygon: str, owner: str
    ) -> RegistrationResult:
        """Re-register an identifier owned by owner with new addresses."""
        await self.guard.ensure_network()

        events = await self.scanner.scan(self.wallet.get_registration_logs)
        if self.scanner.last_error is not None:
            raise InvalidInput("Failed to load your CUPID IDs", detail=self.scanner.last_error)
        index = IdentityIndex.build(events)
        if identifier not in index.owned_by(owner):
            raise InvalidInput(f"{identifier} is not owned by {owner}")

        return await self._submit(identifier, ethereum, polygon)

    async def _submit(self, identifier: str, ethereum: str, polygon: str) -> RegistrationResult:
        if not Web3.is_address(ethereum) or not Web3.is_address(polygon):
            raise InvalidInput("Invalid Ethereum or Polygon address")

        try:
            try:
                estimate = await self.wallet.estimate_register_gas(identifier, ethereum, polygon)
            except Exception as e:
                raise GasEstimationFailed(error_text(e), detail=error_text(e)) from e

            gas_limit = apply_gas_margin(estimate, self.settings.gas_margin_percent)
            tx_hash = await self.wallet.register(identifier, ethereum, polygon, gas_limit)
            receipt = await self.wallet.wait_for_receipt(
                tx_hash, self.settings.confirmation_timeout_seconds
            )
        except CupidError:
            raise
        except Exception as e:
            raise classify_error(e) from e

        if receipt.get("status") != 1:
            raise UnknownError("Transaction reverted", detail=tx_hash)

        logger.info(
            "identifier_registered",
            identifier=identifier,
            ethereum=ethereum,
            polygon=polygon,
            tx_hash=tx_hash,
        )
        return RegistrationResult(
            tx_hash=tx_hash,
            identifier=identifier,
            primary_address=ethereum,
            secondary_address=polygon,
            block_number=receipt.get("blockNumber"),
        )
