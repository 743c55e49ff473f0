"""
Client session - explicit UI state plus the actions that drive it.
"""

from dataclasses import dataclass, field
from typing import Optional

import structlog

from .config import Settings
from .errors import CupidError, InvalidInput, WalletUnavailable, error_text
from .evm import WalletProtocol
from .index import IdentityIndex, is_valid_identifier
from .ledger import PaymentRequest, RequestLedger, RequestStatus, now_ms
from .network import NetworkGuard
from .orchestrator import PaymentIntent, PaymentOrchestrator, PaymentReceipt, native_to_wei
from .registration import RegistrationResult, RegistrationService
from .scanner import EventWindowScanner

logger = structlog.get_logger()

REQUEST_NOT_COMPLETED = "Payment sent, but the payment request could not be marked completed"


@dataclass
class ClientState:
    """Everything the client shows. One active payment intent at a time."""

    account: Optional[str] = None
    chain_id: Optional[int] = None
    connected: bool = False

    destination_id: str = ""
    amount: str = ""
    selected_request: Optional[PaymentRequest] = None
    loading: bool = False
    error: str = ""

    index: IdentityIndex = field(default_factory=IdentityIndex)
    index_status: str = "idle"  # idle, loaded, failed


class ClientSession:
    """
    Wires the wallet, index, orchestrator and ledger to one ClientState.
    """

    def __init__(self, settings: Settings, wallet: WalletProtocol, ledger: RequestLedger):
        self.settings = settings
        self.wallet = wallet
        self.ledger = ledger
        self.state = ClientState()

        self.guard = NetworkGuard(wallet, settings)
        self.scanner = EventWindowScanner(wallet, settings.lookback_blocks)
        self.orchestrator = PaymentOrchestrator(wallet, settings, guard=self.guard, ledger=ledger)
        self.registration = RegistrationService(
            wallet, settings, guard=self.guard, scanner=self.scanner
        )

        wallet.events.on_accounts_changed(lambda accounts: self.reconcile(accounts=accounts))
        wallet.events.on_chain_changed(lambda chain_id: self.reconcile(chain_id=chain_id))

    # Connection

    async def connect(self) -> None:
        """Request account access and move the wallet onto the required chain."""
        try:
            accounts = await self.wallet.request_accounts()
            if not accounts:
                raise WalletUnavailable("Please connect your wallet")
            await self.guard.ensure_network()
        except CupidError as e:
            self.state.error = e.message
            raise
        except Exception as e:
            self.state.error = "Please connect your wallet"
            raise WalletUnavailable(self.state.error, detail=error_text(e)) from e

        self.state.account = accounts[0]
        self.state.chain_id = self.settings.chain_id
        self.state.connected = True
        self.state.error = ""
        logger.info("wallet_connected", account=self.state.account)

    def reconcile(
        self, accounts: Optional[list[str]] = None, chain_id: Optional[int] = None
    ) -> None:
        """
        Single reducer for accountsChanged / chainChanged.

        Any change invalidates the cached index and the active intent.
        """
        if accounts is not None:
            self.state.account = accounts[0] if accounts else None
        if chain_id is not None:
            self.state.chain_id = chain_id

        self.state.connected = (
            self.state.account is not None and self.state.chain_id == self.settings.chain_id
        )
        self.state.index = IdentityIndex()
        self.state.index_status = "idle"
        self.cancel_request()

        logger.info(
            "wallet_state_reconciled",
            account=self.state.account,
            chain_id=self.state.chain_id,
            connected=self.state.connected,
        )

    # Identity index

    async def refresh_index(self) -> IdentityIndex:
        """Rebuild the index from the lookback window, replacing the old one."""
        await self.guard.ensure_network()
        events = await self.scanner.scan(self.wallet.get_registration_logs)
        self.state.index = IdentityIndex.build(events)
        if self.scanner.last_error is not None:
            self.state.index_status = "failed"
        else:
            self.state.index_status = "loaded"
        return self.state.index

    def my_ids(self) -> list[str]:
        """Identifiers owned by the connected account, sorted."""
        if not self.state.account:
            return []
        return sorted(self.state.index.owned_by(self.state.account))

    # Payment intent

    def set_destination(self, destination_id: str) -> None:
        self._require_manual_entry()
        self.state.destination_id = destination_id

    def set_amount(self, amount: str) -> None:
        self._require_manual_entry()
        self.state.amount = amount

    def _require_manual_entry(self) -> None:
        if self.state.selected_request is not None:
            raise InvalidInput("Cancel the selected payment request to edit the payment")

    def select_request(self, request: PaymentRequest) -> None:
        """Pay a request: its destination and amount become fixed."""
        if request.status != RequestStatus.PENDING:
            raise InvalidInput("This payment request has already been completed")
        self.state.selected_request = request
        self.state.destination_id = request.to_id
        self.state.amount = request.amount

    def cancel_request(self) -> None:
        """Back to manual entry."""
        self.state.selected_request = None
        self.state.destination_id = ""
        self.state.amount = ""

    def current_intent(self) -> PaymentIntent:
        if self.state.selected_request is not None:
            return PaymentIntent.from_request(self.state.selected_request)
        return PaymentIntent(destination_id=self.state.destination_id, amount=self.state.amount)

    async def send_payment(self) -> PaymentReceipt:
        """Send the active intent. Only one payment may be in flight."""
        if self.state.loading:
            raise InvalidInput("A payment is already in progress")

        self.state.loading = True
        self.state.error = ""
        try:
            receipt = await self.orchestrator.send(self.current_intent())
        except CupidError as e:
            self.state.error = e.message
            raise
        finally:
            self.state.loading = False

        self.cancel_request()
        if receipt.request_completed is False:
            self.state.error = REQUEST_NOT_COMPLETED
        return receipt

    # Payment requests

    def pending_requests(self, identifier: str) -> list[PaymentRequest]:
        return self.ledger.list_pending_for(identifier)

    def create_request(self, from_id: str, to_id: str, amount: str) -> PaymentRequest:
        """
        Ask from_id to pay amount to to_id, one of the caller's own identifiers.

        from_id is not checked against the registry.
        """
        if not to_id:
            raise InvalidInput("Please select your CUPID ID")
        if to_id not in self.my_ids():
            raise InvalidInput(f"{to_id} is not one of your CUPID IDs")
        if not is_valid_identifier(from_id):
            raise InvalidInput("Invalid CUPID ID format. Must be like @username@cupid")
        try:
            if native_to_wei(amount, self.settings.currency_decimals) <= 0:
                raise InvalidInput("Amount must be greater than zero")
        except ValueError as e:
            raise InvalidInput(str(e)) from e

        request = PaymentRequest(
            from_id=from_id,
            to_id=to_id,
            amount=amount,
            timestamp=now_ms(),
            status=RequestStatus.PENDING,
        )
        self.ledger.create(request)
        return request

    # Registration

    async def register(self, identifier: str, ethereum: str, polygon: str) -> RegistrationResult:
        result = await self.registration.register(identifier, ethereum, polygon)
        await self.refresh_index()
        return result

    async def update_addresses(
        self, identifier: str, ethereum: str, polygon: str
    ) -> RegistrationResult:
        if not self.state.account:
            raise WalletUnavailable("Please connect your wallet")
        result = await self.registration.update_addresses(
            identifier, ethereum, polygon, owner=self.state.account
        )
        await self.refresh_index()
        return result
