"""
Network guard - keeps the wallet on the required chain.
"""

import structlog

from .config import Settings
from .errors import UNRECOGNIZED_CHAIN_CODE, NetworkMismatch, WalletRequestError, error_text
from .evm import WalletProtocol

logger = structlog.get_logger()


class NetworkGuard:
    """
    Ensures the active chain matches the required network.

    Wallets let the user change networks at any time, so this must run
    before every operation that depends on chain identity.
    """

    def __init__(self, wallet: WalletProtocol, settings: Settings):
        self.wallet = wallet
        self.settings = settings

    async def ensure_network(self) -> None:
        """Switch (or add) the required chain. Raises NetworkMismatch on failure."""
        required = self.settings.chain_id
        try:
            current = await self.wallet.get_chain_id()
        except Exception as e:
            raise NetworkMismatch("Unable to read the active network", detail=error_text(e)) from e

        if current == required:
            return

        logger.info("network_switch_requested", current=current, required=required)
        try:
            await self.wallet.switch_chain(self.settings.chain_id_hex)
        except WalletRequestError as e:
            if e.code != UNRECOGNIZED_CHAIN_CODE:
                raise NetworkMismatch(
                    f"Please switch your wallet to {self.settings.chain_name}",
                    detail=e.message,
                ) from e
            await self._add_chain()
        except Exception as e:
            raise NetworkMismatch(
                f"Please switch your wallet to {self.settings.chain_name}",
                detail=error_text(e),
            ) from e

    async def _add_chain(self) -> None:
        # Adding the chain also makes it active, so no second switch is issued.
        logger.info("network_add_requested", chain_id=self.settings.chain_id)
        try:
            await self.wallet.add_chain(self.settings.chain_descriptor())
        except Exception as e:
            raise NetworkMismatch(
                f"Please add {self.settings.chain_name} to your wallet manually",
                detail=error_text(e),
            ) from e
