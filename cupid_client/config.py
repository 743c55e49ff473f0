"""
Configuration management for the CUPID client.
"""

from functools import lru_cache
from typing import Any, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Client configuration settings.

    All settings can be overridden via environment variables
    (prefixed with CUPID_) or a .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="CUPID_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Required network (Polygon Amoy)
    rpc_url: str = Field(
        default="https://rpc-amoy.polygon.technology",
        description="JSON-RPC endpoint of the wallet / node",
    )
    chain_id: int = Field(default=80002, description="Required EVM chain ID")
    chain_name: str = Field(default="Amoy Testnet", description="Display name used when adding the chain")
    currency_name: str = "POL"
    currency_symbol: str = "POL"
    currency_decimals: int = 18
    explorer_url: str = "https://amoy.polygonscan.com/"

    # Signer
    private_key: Optional[str] = Field(
        default=None,
        description="Private key of the signing account (never logged)",
    )

    # Contracts
    registry_address: str = Field(
        default="0x28ae9184FE0dB8043c46BABA7B0F5537Ef006936",
        description="CUPID ID registry contract address",
    )
    payment_address: str = Field(
        default="0xFFCdb0585811ac285611e78B3b4448EFf30077ab",
        description="CUPID payment contract address",
    )
    network_tag: str = Field(
        default="polygon",
        description="Network tag passed to resolve() and sendPayment()",
    )

    # Scanning / submission policy
    lookback_blocks: int = Field(default=10_000, ge=0)
    gas_margin_percent: int = Field(default=20, ge=0)
    confirmation_timeout_seconds: float = Field(default=120, gt=0)

    # Local request store
    database_url: str = "sqlite:///./cupid.db"
    storage_key: str = "paymentRequests"

    @property
    def chain_id_hex(self) -> str:
        """Chain ID in the 0x-prefixed form wallets expect."""
        return hex(self.chain_id)

    def chain_descriptor(self) -> dict[str, Any]:
        """Descriptor for wallet_addEthereumChain."""
        return {
            "chainId": self.chain_id_hex,
            "chainName": self.chain_name,
            "nativeCurrency": {
                "name": self.currency_name,
                "symbol": self.currency_symbol,
                "decimals": self.currency_decimals,
            },
            "rpcUrls": [self.rpc_url],
            "blockExplorerUrls": [self.explorer_url],
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
