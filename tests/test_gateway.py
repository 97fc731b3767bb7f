"""Tests for the Soroban RPC client and the ledger gateway."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest
from stellar_sdk import Account, Keypair, Network, SorobanDataBuilder, TransactionEnvelope, scval

from ciphertoken.errors import (
    RpcError,
    SimulationError,
    SubmissionError,
    TransactionTimeoutError,
)
from ciphertoken.ledger import scval as ct_scval
from ciphertoken.ledger.gateway import EVENTS_PAGE_LIMIT, LedgerGateway
from ciphertoken.ledger.models import TransactionStatus
from ciphertoken.ledger.rpc import SorobanRpcClient
from ciphertoken.signing import LocalSigner
from conftest import CONTRACT_ID

RPC_URL = "https://rpc.test"


class FakeRpc:
    """JSON-RPC responder for httpx.MockTransport.

    Responses are queued per method; the last queued response repeats.
    """

    def __init__(self):
        self.responses: dict[str, list] = {}
        self.calls: list[tuple[str, dict]] = []

    def queue(self, method: str, *results) -> None:
        self.responses.setdefault(method, []).extend(results)

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method = body["method"]
        self.calls.append((method, body.get("params")))

        queued = self.responses.get(method) or [{}]
        result = queued.pop(0) if len(queued) > 1 else queued[0]
        if isinstance(result, httpx.Response):
            return result
        if isinstance(result, dict) and "__error__" in result:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": result["__error__"]})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    def params(self, method: str) -> list[dict]:
        return [params for name, params in self.calls if name == method]


@pytest.fixture
def fake_rpc():
    return FakeRpc()


@pytest.fixture
def rpc(fake_rpc):
    return SorobanRpcClient(RPC_URL, transport=httpx.MockTransport(fake_rpc.handler))


@pytest.fixture
def gateway(rpc):
    return LedgerGateway(rpc, Network.TESTNET_NETWORK_PASSPHRASE, max_attempts=3, poll_delay_ms=0)


@pytest.fixture
def signer():
    return LocalSigner(Keypair.random())


def with_account(gateway: LedgerGateway, sequence: int = 41) -> AsyncMock:
    loader = AsyncMock(side_effect=lambda address: Account(address, sequence))
    gateway.load_account = loader
    return loader


class TestRpcClient:
    """Tests for the JSON-RPC transport."""

    @pytest.mark.asyncio
    async def test_returns_result(self, rpc, fake_rpc):
        fake_rpc.queue("getLatestLedger", {"sequence": 1234, "protocolVersion": 21})

        result = await rpc.get_latest_ledger()

        assert result["sequence"] == 1234

    @pytest.mark.asyncio
    async def test_json_rpc_error(self, rpc, fake_rpc):
        fake_rpc.queue("getLatestLedger", {"__error__": {"code": -32600, "message": "invalid request"}})

        with pytest.raises(RpcError) as exc_info:
            await rpc.get_latest_ledger()

        assert exc_info.value.code == -32600
        assert "invalid request" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_http_error_status(self, rpc, fake_rpc):
        fake_rpc.queue("getLatestLedger", httpx.Response(503, text="unavailable"))

        with pytest.raises(RpcError):
            await rpc.get_latest_ledger()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = SorobanRpcClient(RPC_URL, transport=httpx.MockTransport(refuse))

        with pytest.raises(RpcError):
            await client.get_latest_ledger()

    @pytest.mark.asyncio
    async def test_get_events_params(self, rpc, fake_rpc):
        filters = [{"type": "contract", "contractIds": [CONTRACT_ID]}]

        await rpc.get_events(filters, start_ledger=10, end_ledger=20)
        await rpc.get_events(filters, cursor="abc", limit=5)

        first, second = fake_rpc.params("getEvents")
        assert first == {
            "filters": filters,
            "startLedger": 10,
            "endLedger": 20,
            "pagination": {"limit": 1000},
        }
        assert second == {"filters": filters, "pagination": {"limit": 5, "cursor": "abc"}}


class TestEvents:
    """Tests for event queries and decoding."""

    def test_filters_with_contracts(self):
        assert LedgerGateway.build_filters([CONTRACT_ID]) == [
            {"type": "contract", "contractIds": [CONTRACT_ID]}
        ]

    def test_filters_without_contracts(self):
        assert LedgerGateway.build_filters([]) == [{"type": "contract"}]

    def test_parse_event(self):
        request_id = b"\x01" * 32
        raw = {
            "id": "0000004294967296-0000000001",
            "ledger": 1001,
            "contractId": CONTRACT_ID,
            "txHash": "ab" * 32,
            "type": "contract",
            "topic": [scval.to_symbol("deposit_requested").to_xdr()],
            "value": scval.to_vec(
                [scval.to_bytes(request_id), scval.to_bytes(b"packed"), scval.to_bytes(b"idx")]
            ).to_xdr(),
        }

        event = LedgerGateway.parse_event(raw)

        assert event.id == "0000004294967296-0000000001"
        assert event.ledger == 1001
        assert event.contract_id == CONTRACT_ID
        assert event.event_type == "deposit_requested"
        assert event.payload == [request_id, b"packed", b"idx"]

    def test_parse_event_with_undecodable_value(self):
        event = LedgerGateway.parse_event(
            {"id": "1", "ledger": 5, "topic": ["not-xdr"], "value": {"xdr": "not-xdr"}}
        )

        assert event.topics == (None,)
        assert event.payload is None
        assert event.event_type == "unknown"

    @pytest.mark.asyncio
    async def test_query_events_window(self, gateway, fake_rpc):
        fake_rpc.queue("getEvents", {"events": [{"id": "1", "ledger": 4500}], "cursor": "c1"})

        events = await gateway.query_events([CONTRACT_ID], 4000, 5000)

        assert [event.id for event in events] == ["1"]
        params = fake_rpc.params("getEvents")
        assert len(params) == 1
        assert params[0]["startLedger"] == 4000
        assert params[0]["endLedger"] == 5000
        assert params[0]["filters"] == [{"type": "contract", "contractIds": [CONTRACT_ID]}]

    @pytest.mark.asyncio
    async def test_query_events_follows_cursor(self, gateway, fake_rpc):
        full_page = [{"id": str(i), "ledger": 4001} for i in range(EVENTS_PAGE_LIMIT)]
        fake_rpc.queue(
            "getEvents",
            {"events": full_page, "cursor": "page-2"},
            {"events": [{"id": "last", "ledger": 4002}], "cursor": "page-3"},
        )

        events = await gateway.query_events([], 4000, 5000)

        assert len(events) == EVENTS_PAGE_LIMIT + 1
        assert events[-1].id == "last"
        second = fake_rpc.params("getEvents")[1]
        assert second["pagination"]["cursor"] == "page-2"
        assert "startLedger" not in second


class TestTransactions:
    """Tests for simulation, submission and confirmation polling."""

    @pytest.mark.asyncio
    async def test_latest_ledger(self, gateway, fake_rpc):
        fake_rpc.queue("getLatestLedger", {"sequence": 777})
        assert await gateway.get_latest_ledger() == 777

    @pytest.mark.asyncio
    async def test_load_missing_account(self, gateway, fake_rpc):
        fake_rpc.queue("getLedgerEntries", {"entries": [], "latestLedger": 10})

        with pytest.raises(RpcError):
            await gateway.load_account(Keypair.random().public_key)

    @pytest.mark.asyncio
    async def test_simulate_returns_decoded_value(self, gateway, fake_rpc, signer):
        with_account(gateway)
        fake_rpc.queue(
            "simulateTransaction",
            {"results": [{"xdr": scval.to_bool(True).to_xdr(), "auth": []}], "latestLedger": 10},
        )

        value = await gateway.simulate(
            CONTRACT_ID, "deposit_completed", [ct_scval.to_bytes(b"\x01" * 32)], signer.public_key
        )

        assert value is True
        assert fake_rpc.params("sendTransaction") == []

    @pytest.mark.asyncio
    async def test_simulate_without_result(self, gateway, fake_rpc, signer):
        with_account(gateway)
        fake_rpc.queue("simulateTransaction", {"latestLedger": 10})

        assert await gateway.simulate(CONTRACT_ID, "encrypted_supply", [], signer.public_key) is None

    @pytest.mark.asyncio
    async def test_simulation_error(self, gateway, fake_rpc, signer):
        with_account(gateway)
        fake_rpc.queue("simulateTransaction", {"error": "HostError: Deposit already completed"})

        with pytest.raises(SimulationError):
            await gateway.simulate(CONTRACT_ID, "store_deposit", [], signer.public_key)

    @pytest.mark.asyncio
    async def test_invoke_signs_submits_and_confirms(self, gateway, fake_rpc, signer):
        with_account(gateway, sequence=41)
        fake_rpc.queue(
            "simulateTransaction",
            {
                "transactionData": SorobanDataBuilder().set_resource_fee(5000).build().to_xdr(),
                "minResourceFee": "5000",
                "results": [{"auth": [], "xdr": scval.to_void().to_xdr()}],
                "latestLedger": 10,
            },
        )
        fake_rpc.queue("sendTransaction", {"status": "PENDING", "hash": "ab" * 32})
        fake_rpc.queue(
            "getTransaction",
            {"status": "NOT_FOUND"},
            {"status": "SUCCESS", "ledger": 12, "returnValue": scval.to_uint32(3).to_xdr()},
        )

        result = await gateway.invoke(CONTRACT_ID, "store_deposit", [ct_scval.to_int128(5)], signer)

        assert result.status == TransactionStatus.SUCCESS
        assert result.successful
        assert result.ledger == 12
        assert result.return_value == 3

        submitted = fake_rpc.params("sendTransaction")[0]["transaction"]
        envelope = TransactionEnvelope.from_xdr(submitted, Network.TESTNET_NETWORK_PASSPHRASE)
        assert len(envelope.signatures) == 1
        assert envelope.transaction.sequence == 42
        # inclusion fee plus the simulated resource fee, counted once
        assert envelope.transaction.fee == 100 + 5000
        assert len(fake_rpc.params("getTransaction")) == 2

    @pytest.mark.asyncio
    async def test_min_resource_fee_sets_soroban_fee(self, gateway, fake_rpc, signer):
        with_account(gateway)
        fake_rpc.queue(
            "simulateTransaction",
            {"transactionData": SorobanDataBuilder().build().to_xdr(), "minResourceFee": "7000"},
        )
        fake_rpc.queue("sendTransaction", {"status": "PENDING", "hash": "ab" * 32})
        fake_rpc.queue("getTransaction", {"status": "SUCCESS", "ledger": 12})

        await gateway.invoke(CONTRACT_ID, "store_deposit", [], signer)

        submitted = fake_rpc.params("sendTransaction")[0]["transaction"]
        envelope = TransactionEnvelope.from_xdr(submitted, Network.TESTNET_NETWORK_PASSPHRASE)
        assert envelope.transaction.fee == 100 + 7000
        assert envelope.transaction.soroban_data.resource_fee.int64 == 7000

    @pytest.mark.asyncio
    async def test_submission_rejected(self, gateway, fake_rpc, signer):
        with_account(gateway)
        fake_rpc.queue(
            "simulateTransaction",
            {"transactionData": SorobanDataBuilder().build().to_xdr(), "minResourceFee": "0"},
        )
        fake_rpc.queue("sendTransaction", {"status": "ERROR", "hash": "cd" * 32, "errorResultXdr": "AAAA"})

        with pytest.raises(SubmissionError):
            await gateway.invoke(CONTRACT_ID, "store_deposit", [], signer)

        assert fake_rpc.params("getTransaction") == []

    @pytest.mark.asyncio
    async def test_failed_transaction_is_terminal(self, gateway, fake_rpc):
        fake_rpc.queue("getTransaction", {"status": "FAILED", "ledger": 9})

        result = await gateway.wait_for_transaction("ef" * 32)

        assert result.status == TransactionStatus.FAILED
        assert not result.successful
        assert len(fake_rpc.params("getTransaction")) == 1

    @pytest.mark.asyncio
    async def test_wait_times_out(self, gateway, fake_rpc):
        fake_rpc.queue("getTransaction", {"status": "NOT_FOUND"})

        with pytest.raises(TransactionTimeoutError) as exc_info:
            await gateway.wait_for_transaction("ef" * 32)

        assert exc_info.value.attempts == 3
        assert len(fake_rpc.params("getTransaction")) == 3

    @pytest.mark.asyncio
    async def test_wait_retries_rpc_errors(self, gateway, fake_rpc):
        fake_rpc.queue(
            "getTransaction",
            {"__error__": {"code": -32603, "message": "busy"}},
            {"status": "SUCCESS", "ledger": 20},
        )

        result = await gateway.wait_for_transaction("ef" * 32)

        assert result.successful
        assert len(fake_rpc.params("getTransaction")) == 2
