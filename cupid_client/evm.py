"""
Wallet/provider access for the CUPID registry and payment contracts.

EvmWallet plays the role of a browser-injected wallet: it signs with a
local key and talks JSON-RPC to the configured endpoint. MockWallet
provides the same surface in memory for tests and offline use.
"""

from typing import Any, Callable, Optional, Protocol, Union

import structlog
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from .config import Settings
from .errors import WalletRequestError, WalletUnavailable

logger = structlog.get_logger()

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

BlockId = Union[int, str]

# CupidIDRegistry ABI (minimal)
REGISTRY_ABI = [
    {
        "inputs": [
            {"name": "id", "type": "string"},
            {"name": "ethereum", "type": "address"},
            {"name": "polygon", "type": "address"},
        ],
        "name": "registerID",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "id", "type": "string"},
            {"name": "network", "type": "string"},
        ],
        "name": "resolve",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "id", "type": "string"},
            {"indexed": False, "name": "ethereum", "type": "address"},
            {"indexed": False, "name": "polygon", "type": "address"},
        ],
        "name": "IDRegistered",
        "type": "event",
    },
]

# CupidPayment ABI (minimal)
PAYMENT_ABI = [
    {
        "inputs": [
            {"name": "id", "type": "string"},
            {"name": "network", "type": "string"},
        ],
        "name": "sendPayment",
        "outputs": [],
        "stateMutability": "payable",
        "type": "function",
    },
]


AccountsHandler = Callable[[list[str]], None]
ChainHandler = Callable[[int], None]


class WalletEvents:
    """Subscription hub for out-of-band wallet changes."""

    def __init__(self) -> None:
        self._accounts_handlers: list[AccountsHandler] = []
        self._chain_handlers: list[ChainHandler] = []

    def on_accounts_changed(self, handler: AccountsHandler) -> None:
        self._accounts_handlers.append(handler)

    def on_chain_changed(self, handler: ChainHandler) -> None:
        self._chain_handlers.append(handler)

    def emit_accounts_changed(self, accounts: list[str]) -> None:
        for handler in self._accounts_handlers:
            handler(accounts)

    def emit_chain_changed(self, chain_id: int) -> None:
        for handler in self._chain_handlers:
            handler(chain_id)


class WalletProtocol(Protocol):
    """Protocol for the wallet/provider (real or mock)."""

    events: WalletEvents

    async def request_accounts(self) -> list[str]: ...

    async def get_chain_id(self) -> int: ...

    async def switch_chain(self, chain_id_hex: str) -> None: ...

    async def add_chain(self, descriptor: dict[str, Any]) -> None: ...

    async def get_block_number(self) -> int: ...

    async def get_code(self, address: str) -> bytes: ...

    async def get_registration_logs(
        self, from_block: BlockId, to_block: BlockId = "latest"
    ) -> list[Any]: ...

    async def resolve(self, identifier: str, network_tag: str) -> str: ...

    async def estimate_payment_gas(self, identifier: str, network_tag: str, value: int) -> int: ...

    async def send_payment(
        self, identifier: str, network_tag: str, value: int, gas_limit: int
    ) -> str: ...

    async def estimate_register_gas(self, identifier: str, ethereum: str, polygon: str) -> int: ...

    async def register(
        self, identifier: str, ethereum: str, polygon: str, gas_limit: int
    ) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> dict[str, Any]: ...


class EvmWallet:
    """
    Async wallet backed by a local signing key and a JSON-RPC endpoint.
    """

    def __init__(self, settings: Settings, w3: Optional[AsyncWeb3] = None):
        self.settings = settings
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(settings.rpc_url))
        self.account = Account.from_key(settings.private_key) if settings.private_key else None
        self.events = WalletEvents()
        self.registry = self.w3.eth.contract(
            address=Web3.to_checksum_address(settings.registry_address),
            abi=REGISTRY_ABI,
        )
        self.payment = self.w3.eth.contract(
            address=Web3.to_checksum_address(settings.payment_address),
            abi=PAYMENT_ABI,
        )
        self._last_accounts: Optional[list[str]] = None
        self._last_chain_id: Optional[int] = None

        logger.info(
            "wallet_initialized",
            rpc_url=settings.rpc_url,
            registry=settings.registry_address,
            payment=settings.payment_address,
            signer=self.account.address if self.account else None,
        )

    @property
    def address(self) -> str:
        """Get signer address."""
        if not self.account:
            raise WalletUnavailable("No signing key configured")
        return self.account.address

    async def _request(self, method: str, params: list[Any]) -> Any:
        """Send a raw wallet request, raising on an error payload."""
        response = await self.w3.provider.make_request(method, params)
        error = response.get("error")
        if error:
            if isinstance(error, dict):
                raise WalletRequestError(error.get("code", -1), error.get("message", "Unknown error"))
            raise WalletRequestError(-1, str(error))
        return response.get("result")

    async def request_accounts(self) -> list[str]:
        return [self.address]

    async def get_chain_id(self) -> int:
        return await self.w3.eth.chain_id

    async def switch_chain(self, chain_id_hex: str) -> None:
        await self._request("wallet_switchEthereumChain", [{"chainId": chain_id_hex}])

    async def add_chain(self, descriptor: dict[str, Any]) -> None:
        await self._request("wallet_addEthereumChain", [descriptor])

    async def get_block_number(self) -> int:
        return await self.w3.eth.block_number

    async def get_code(self, address: str) -> bytes:
        code = await self.w3.eth.get_code(Web3.to_checksum_address(address))
        return bytes(code)

    async def get_registration_logs(
        self, from_block: BlockId, to_block: BlockId = "latest"
    ) -> list[Any]:
        return await self.registry.events.IDRegistered().get_logs(
            from_block=from_block, to_block=to_block
        )

    async def resolve(self, identifier: str, network_tag: str) -> str:
        return await self.registry.functions.resolve(identifier, network_tag).call()

    async def estimate_payment_gas(self, identifier: str, network_tag: str, value: int) -> int:
        fn = self.payment.functions.sendPayment(identifier, network_tag)
        return await fn.estimate_gas({"from": self.address, "value": value})

    async def send_payment(
        self, identifier: str, network_tag: str, value: int, gas_limit: int
    ) -> str:
        fn = self.payment.functions.sendPayment(identifier, network_tag)
        return await self._transact(fn, value=value, gas_limit=gas_limit)

    async def estimate_register_gas(self, identifier: str, ethereum: str, polygon: str) -> int:
        fn = self.registry.functions.registerID(
            identifier,
            Web3.to_checksum_address(ethereum),
            Web3.to_checksum_address(polygon),
        )
        return await fn.estimate_gas({"from": self.address})

    async def register(
        self, identifier: str, ethereum: str, polygon: str, gas_limit: int
    ) -> str:
        fn = self.registry.functions.registerID(
            identifier,
            Web3.to_checksum_address(ethereum),
            Web3.to_checksum_address(polygon),
        )
        return await self._transact(fn, value=0, gas_limit=gas_limit)

    async def _transact(self, fn: Any, value: int, gas_limit: int) -> str:
        """Build, sign and broadcast a contract call. Returns the tx hash."""
        account = self.account
        if account is None:
            raise WalletUnavailable("No signing key configured")

        nonce = await self.w3.eth.get_transaction_count(account.address)
        gas_price = await self.w3.eth.gas_price

        tx = await fn.build_transaction(
            {
                "chainId": self.settings.chain_id,
                "from": account.address,
                "nonce": nonce,
                "value": value,
                "gas": gas_limit,
                "gasPrice": gas_price,
            }
        )

        signed = account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> dict[str, Any]:
        receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        return dict(receipt)

    async def poll_changes(self) -> None:
        """Emit accountsChanged / chainChanged when they differ from the last poll."""
        accounts = [self.account.address] if self.account else []
        chain_id = await self.get_chain_id()

        if self._last_accounts is not None and accounts != self._last_accounts:
            self.events.emit_accounts_changed(accounts)
        if self._last_chain_id is not None and chain_id != self._last_chain_id:
            self.events.emit_chain_changed(chain_id)

        self._last_accounts = accounts
        self._last_chain_id = chain_id


class MockWallet:
    """
    Mock wallet for testing without a node.
    Holds an in-memory registry and records every call it receives.
    """

    def __init__(
        self,
        chain_id: int = 80002,
        accounts: Optional[list[str]] = None,
        block_number: int = 0,
    ) -> None:
        self.chain_id = chain_id
        self.accounts = accounts if accounts is not None else [
            "0x00000000000000000000000000000000000000aa"
        ]
        self.block_number = block_number
        self.events = WalletEvents()
        self.known_chains: set[int] = {chain_id}
        self.code: dict[str, bytes] = {}
        self.resolutions: dict[str, str] = {}
        self.logs: list[dict[str, Any]] = []
        self.gas_estimate = 21_000
        self.failures: dict[str, BaseException] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.sent: list[dict[str, Any]] = []
        self.receipt_status = 1

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if name in self.failures:
            raise self.failures[name]

    def deploy(self, address: str) -> None:
        """Pretend a contract is deployed at address."""
        self.code[address.lower()] = b"\x60\x80"

    def add_log(self, identifier: str, ethereum: str, polygon: str, block_number: int) -> None:
        self.logs.append(
            {
                "args": {"id": identifier, "ethereum": ethereum, "polygon": polygon},
                "blockNumber": block_number,
                "logIndex": 0,
            }
        )
        self.resolutions[identifier] = polygon
        self.block_number = max(self.block_number, block_number)

    async def request_accounts(self) -> list[str]:
        self._record("request_accounts")
        return list(self.accounts)

    async def get_chain_id(self) -> int:
        self._record("get_chain_id")
        return self.chain_id

    async def switch_chain(self, chain_id_hex: str) -> None:
        self._record("switch_chain", chain_id_hex)
        chain_id = int(chain_id_hex, 16)
        if chain_id not in self.known_chains:
            raise WalletRequestError(4902, f"Unrecognized chain ID {chain_id_hex}")
        self.chain_id = chain_id

    async def add_chain(self, descriptor: dict[str, Any]) -> None:
        self._record("add_chain", descriptor)
        chain_id = int(descriptor["chainId"], 16)
        self.known_chains.add(chain_id)
        self.chain_id = chain_id

    async def get_block_number(self) -> int:
        self._record("get_block_number")
        return self.block_number

    async def get_code(self, address: str) -> bytes:
        self._record("get_code", address)
        return self.code.get(address.lower(), b"")

    async def get_registration_logs(
        self, from_block: BlockId, to_block: BlockId = "latest"
    ) -> list[Any]:
        self._record("get_registration_logs", from_block, to_block)
        start = int(from_block)
        end = self.block_number if to_block == "latest" else int(to_block)
        return [log for log in self.logs if start <= log["blockNumber"] <= end]

    async def resolve(self, identifier: str, network_tag: str) -> str:
        self._record("resolve", identifier, network_tag)
        return self.resolutions.get(identifier, ZERO_ADDRESS)

    async def estimate_payment_gas(self, identifier: str, network_tag: str, value: int) -> int:
        self._record("estimate_payment_gas", identifier, network_tag, value)
        return self.gas_estimate

    async def send_payment(
        self, identifier: str, network_tag: str, value: int, gas_limit: int
    ) -> str:
        self._record("send_payment", identifier, network_tag, value, gas_limit)
        return self._broadcast({"to": identifier, "value": value, "gas": gas_limit})

    async def estimate_register_gas(self, identifier: str, ethereum: str, polygon: str) -> int:
        self._record("estimate_register_gas", identifier, ethereum, polygon)
        return self.gas_estimate

    async def register(
        self, identifier: str, ethereum: str, polygon: str, gas_limit: int
    ) -> str:
        self._record("register", identifier, ethereum, polygon, gas_limit)
        self.block_number += 1
        self.add_log(identifier, ethereum, polygon, self.block_number)
        return self._broadcast({"id": identifier, "gas": gas_limit})

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> dict[str, Any]:
        self._record("wait_for_receipt", tx_hash, timeout)
        return {
            "transactionHash": tx_hash,
            "status": self.receipt_status,
            "blockNumber": self.block_number,
            "gasUsed": self.gas_estimate,
        }

    def _broadcast(self, tx: dict[str, Any]) -> str:
        self.sent.append(tx)
        return "0x" + f"{len(self.sent):064x}"
