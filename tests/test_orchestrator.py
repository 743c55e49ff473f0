"""
Tests for payment orchestration.
"""

from decimal import Decimal

import pytest
from web3.exceptions import TimeExhausted

from cupid_client.config import Settings
from cupid_client.errors import (
    ContractUnavailable,
    GasEstimationFailed,
    InsufficientFunds,
    InvalidInput,
    NetworkMismatch,
    TransportError,
    UnknownError,
    Unregistered,
    UserRejected,
    WalletRequestError,
    WalletUnavailable,
)
from cupid_client.evm import ZERO_ADDRESS, MockWallet
from cupid_client.ledger import MemoryRequestStore, PaymentRequest, RequestLedger, RequestStatus
from cupid_client.orchestrator import (
    PaymentIntent,
    PaymentOrchestrator,
    apply_gas_margin,
    native_to_wei,
)

BOB_POLYGON = "0x00000000000000000000000000000000000000b2"


class LockedStore(MemoryRequestStore):
    """Store that can be read but not written."""

    def save(self, records):
        raise RuntimeError("database is locked")


@pytest.fixture
def registered_wallet(wallet: MockWallet) -> MockWallet:
    wallet.add_log("@bob@cupid", "0x00000000000000000000000000000000000000b1", BOB_POLYGON, 90)
    return wallet


def _names(wallet: MockWallet) -> list[str]:
    return [name for name, _ in wallet.calls]


class TestNativeToWei:
    """Tests for native_to_wei conversion."""

    def test_one_and_a_half(self) -> None:
        assert native_to_wei("1.5") == 1_500_000_000_000_000_000

    def test_smallest_unit(self) -> None:
        assert native_to_wei("0.000000000000000001") == 1

    def test_integer_and_decimal_input(self) -> None:
        assert native_to_wei(2) == 2 * 10**18
        assert native_to_wei(Decimal("0.1")) == 10**17

    def test_classic_float_trouble_values_are_exact(self) -> None:
        assert native_to_wei("0.1") + native_to_wei("0.2") == native_to_wei("0.3")

    def test_trailing_zeros_beyond_precision_are_fine(self) -> None:
        assert native_to_wei("1.0000000000000000000") == 10**18

    def test_very_large_amounts_are_exact(self) -> None:
        digits = "9" * 70 + ".123456789012345678"
        assert native_to_wei(digits) == int("9" * 70 + "123456789012345678")

    def test_too_many_decimals_raises(self) -> None:
        with pytest.raises(ValueError, match="decimal places"):
            native_to_wei("0.0000000000000000001")

    @pytest.mark.parametrize("value", ["", "abc", "1,5", "NaN", "Infinity"])
    def test_invalid_strings_raise(self, value: str) -> None:
        with pytest.raises(ValueError):
            native_to_wei(value)

    def test_negative_raises(self) -> None:
        with pytest.raises(ValueError, match="negative"):
            native_to_wei("-1")

    def test_float_rejected(self) -> None:
        with pytest.raises(ValueError, match="float"):
            native_to_wei(1.5)  # type: ignore[arg-type]


class TestGasMargin:
    """Tests for apply_gas_margin."""

    def test_twenty_percent(self) -> None:
        assert apply_gas_margin(100_000) == 120_000

    def test_rounds_up(self) -> None:
        # 21001 * 1.2 = 25201.2
        assert apply_gas_margin(21_001) == 25_202
        assert apply_gas_margin(1) == 2

    def test_custom_margin(self) -> None:
        assert apply_gas_margin(1000, 0) == 1000
        assert apply_gas_margin(1000, 50) == 1500


class TestSend:
    """Tests for PaymentOrchestrator.send."""

    @pytest.mark.asyncio
    async def test_happy_path(self, settings: Settings, registered_wallet: MockWallet) -> None:
        registered_wallet.gas_estimate = 50_001
        orchestrator = PaymentOrchestrator(registered_wallet, settings)

        receipt = await orchestrator.send(PaymentIntent("@bob@cupid", "1.5"))

        assert receipt.tx_hash.startswith("0x")
        assert receipt.resolved_address == BOB_POLYGON
        assert receipt.value_wei == 1_500_000_000_000_000_000
        assert receipt.gas_limit == 60_002
        assert registered_wallet.sent == [
            {"to": "@bob@cupid", "value": 1_500_000_000_000_000_000, "gas": 60_002}
        ]
        assert _names(registered_wallet) == [
            "request_accounts",
            "get_chain_id",
            "get_code",
            "resolve",
            "get_code",
            "estimate_payment_gas",
            "send_payment",
            "wait_for_receipt",
        ]
        assert ("resolve", ("@bob@cupid", "polygon")) in registered_wallet.calls

    @pytest.mark.asyncio
    async def test_empty_destination_makes_no_network_call(
        self, settings: Settings, wallet: MockWallet
    ) -> None:
        with pytest.raises(Unregistered, match="cannot be empty"):
            await PaymentOrchestrator(wallet, settings).send(PaymentIntent("", "1"))

        assert wallet.calls == []

    @pytest.mark.asyncio
    async def test_no_accounts_is_wallet_unavailable(self, settings: Settings) -> None:
        wallet = MockWallet(accounts=[])

        with pytest.raises(WalletUnavailable):
            await PaymentOrchestrator(wallet, settings).send(PaymentIntent("@bob@cupid", "1"))

    @pytest.mark.asyncio
    async def test_network_mismatch_stops_before_contract_calls(
        self, settings: Settings, registered_wallet: MockWallet
    ) -> None:
        registered_wallet.chain_id = 1
        registered_wallet.known_chains = {1}
        registered_wallet.failures["add_chain"] = WalletRequestError(4001, "User rejected")

        with pytest.raises(NetworkMismatch):
            await PaymentOrchestrator(registered_wallet, settings).send(
                PaymentIntent("@bob@cupid", "1")
            )

        assert "get_code" not in _names(registered_wallet)
        assert registered_wallet.sent == []

    @pytest.mark.asyncio
    async def test_missing_registry_code(self, settings: Settings) -> None:
        wallet = MockWallet(chain_id=settings.chain_id)
        wallet.deploy(settings.payment_address)

        with pytest.raises(ContractUnavailable, match="registry"):
            await PaymentOrchestrator(wallet, settings).send(PaymentIntent("@bob@cupid", "1"))

        assert "resolve" not in _names(wallet)

    @pytest.mark.asyncio
    async def test_unregistered_destination(self, settings: Settings, wallet: MockWallet) -> None:
        with pytest.raises(Unregistered, match="@nobody@cupid is not registered"):
            await PaymentOrchestrator(wallet, settings).send(PaymentIntent("@nobody@cupid", "1"))

        assert "estimate_payment_gas" not in _names(wallet)

    @pytest.mark.asyncio
    async def test_resolve_uses_live_registry_not_cache(
        self, settings: Settings, registered_wallet: MockWallet
    ) -> None:
        registered_wallet.resolutions["@bob@cupid"] = ZERO_ADDRESS

        with pytest.raises(Unregistered):
            await PaymentOrchestrator(registered_wallet, settings).send(
                PaymentIntent("@bob@cupid", "1")
            )

    @pytest.mark.asyncio
    async def test_resolve_failure_is_unregistered(
        self, settings: Settings, registered_wallet: MockWallet
    ) -> None:
        registered_wallet.failures["resolve"] = ValueError("execution reverted")

        with pytest.raises(Unregistered, match="Failed to resolve CUPID ID: execution reverted"):
            await PaymentOrchestrator(registered_wallet, settings).send(
                PaymentIntent("@bob@cupid", "1")
            )

    @pytest.mark.asyncio
    async def test_missing_payment_code(self, settings: Settings) -> None:
        wallet = MockWallet(chain_id=settings.chain_id)
        wallet.deploy(settings.registry_address)
        wallet.add_log("@bob@cupid", BOB_POLYGON, BOB_POLYGON, 1)

        with pytest.raises(ContractUnavailable, match="payment contract"):
            await PaymentOrchestrator(wallet, settings).send(PaymentIntent("@bob@cupid", "1"))

    @pytest.mark.asyncio
    async def test_invalid_amount(self, settings: Settings, registered_wallet: MockWallet) -> None:
        with pytest.raises(InvalidInput):
            await PaymentOrchestrator(registered_wallet, settings).send(
                PaymentIntent("@bob@cupid", "lots")
            )

        assert registered_wallet.sent == []

    @pytest.mark.asyncio
    async def test_gas_estimation_failure_submits_nothing(
        self, settings: Settings, registered_wallet: MockWallet, ledger: RequestLedger
    ) -> None:
        request = PaymentRequest("@alice@cupid", "@bob@cupid", "1", 1_700_000_000_000)
        ledger.create(request)
        registered_wallet.failures["estimate_payment_gas"] = ValueError(
            {"code": 3, "message": "execution reverted: Recipient not found"}
        )
        orchestrator = PaymentOrchestrator(registered_wallet, settings, ledger=ledger)

        with pytest.raises(GasEstimationFailed) as exc_info:
            await orchestrator.send(PaymentIntent.from_request(request))

        assert exc_info.value.message == "execution reverted: Recipient not found"
        assert registered_wallet.sent == []
        assert "send_payment" not in _names(registered_wallet)
        assert ledger.all() == [request]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failure, expected",
        [
            (WalletRequestError(4001, "User rejected the request."), UserRejected),
            (ValueError({"code": -32000, "message": "insufficient funds for gas * price + value"}), InsufficientFunds),
            (ConnectionError("Connection refused"), TransportError),
            (RuntimeError("nonce too low"), UnknownError),
        ],
    )
    async def test_submission_failures_are_classified(
        self,
        settings: Settings,
        registered_wallet: MockWallet,
        failure: Exception,
        expected: type,
    ) -> None:
        registered_wallet.failures["send_payment"] = failure

        with pytest.raises(expected):
            await PaymentOrchestrator(registered_wallet, settings).send(
                PaymentIntent("@bob@cupid", "1")
            )

    @pytest.mark.asyncio
    async def test_unknown_error_keeps_raw_message(
        self, settings: Settings, registered_wallet: MockWallet
    ) -> None:
        registered_wallet.failures["send_payment"] = RuntimeError("nonce too low")

        with pytest.raises(UnknownError) as exc_info:
            await PaymentOrchestrator(registered_wallet, settings).send(
                PaymentIntent("@bob@cupid", "1")
            )

        assert exc_info.value.message == "nonce too low"

    @pytest.mark.asyncio
    async def test_confirmation_timeout_is_transport_error(
        self, settings: Settings, registered_wallet: MockWallet
    ) -> None:
        registered_wallet.failures["wait_for_receipt"] = TimeExhausted("not mined in 120 seconds")

        with pytest.raises(TransportError):
            await PaymentOrchestrator(registered_wallet, settings).send(
                PaymentIntent("@bob@cupid", "1")
            )

        name, args = registered_wallet.calls[-1]
        assert name == "wait_for_receipt"
        assert args[1] == settings.confirmation_timeout_seconds

    @pytest.mark.asyncio
    async def test_reverted_receipt(
        self, settings: Settings, registered_wallet: MockWallet, ledger: RequestLedger
    ) -> None:
        request = PaymentRequest("@alice@cupid", "@bob@cupid", "1", 1)
        ledger.create(request)
        registered_wallet.receipt_status = 0

        with pytest.raises(UnknownError, match="reverted"):
            await PaymentOrchestrator(registered_wallet, settings, ledger=ledger).send(
                PaymentIntent.from_request(request)
            )

        assert ledger.all()[0].status == RequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_request_marked_completed_on_success(
        self, settings: Settings, registered_wallet: MockWallet, ledger: RequestLedger
    ) -> None:
        request = PaymentRequest("@alice@cupid", "@bob@cupid", "0.25", 1_700_000_000_123)
        other = PaymentRequest("@alice@cupid", "@bob@cupid", "0.25", 1_700_000_000_999)
        ledger.create(request)
        ledger.create(other)

        receipt = await PaymentOrchestrator(registered_wallet, settings, ledger=ledger).send(
            PaymentIntent.from_request(request)
        )

        assert receipt.value_wei == 250_000_000_000_000_000
        assert receipt.request_completed is True
        statuses = [r.status for r in ledger.all()]
        assert statuses == [RequestStatus.COMPLETED, RequestStatus.PENDING]

    @pytest.mark.asyncio
    async def test_manual_intent_leaves_ledger_alone(
        self, settings: Settings, registered_wallet: MockWallet, ledger: RequestLedger
    ) -> None:
        request = PaymentRequest("@alice@cupid", "@bob@cupid", "1", 1)
        ledger.create(request)

        receipt = await PaymentOrchestrator(registered_wallet, settings, ledger=ledger).send(
            PaymentIntent("@bob@cupid", "1")
        )

        assert ledger.all()[0].status == RequestStatus.PENDING
        assert receipt.request_completed is None

    @pytest.mark.asyncio
    async def test_ledger_failure_after_confirmation_returns_receipt(
        self, settings: Settings, registered_wallet: MockWallet
    ) -> None:
        request = PaymentRequest("@alice@cupid", "@bob@cupid", "0.25", 1_700_000_000_123)
        ledger = RequestLedger(LockedStore([request.to_dict()]))

        receipt = await PaymentOrchestrator(registered_wallet, settings, ledger=ledger).send(
            PaymentIntent.from_request(request)
        )

        assert receipt.tx_hash.startswith("0x")
        assert receipt.request_completed is False
        assert len(registered_wallet.sent) == 1
        assert ledger.all()[0].status == RequestStatus.PENDING
