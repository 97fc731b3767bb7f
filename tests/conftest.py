"""Pytest configuration and fixtures."""

import asyncio
import hashlib
import itertools
import os
from typing import Optional

import pytest
from stellar_sdk import Keypair, StrKey

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["CONTRACT_ID"] = ""
os.environ["SOURCE_SECRET_KEY"] = ""
os.environ["DEBUG"] = "true"

from ciphertoken.crypto import create_encrypted_index
from ciphertoken.errors import SimulationError
from ciphertoken.ledger.models import ParsedEvent, TransactionResult, TransactionStatus
from ciphertoken.models import DepositRequest, EncryptedBalance
from ciphertoken.services.reconciler import BalanceReconciler
from ciphertoken.services.requests import RequestService
from ciphertoken.signing.local import LocalSigner

CONTRACT_ID = StrKey.encode_contract(bytes(32))
OTHER_CONTRACT_ID = StrKey.encode_contract(bytes([7]) * 32)


def make_event(
    event_id: str,
    ledger: int,
    topic: Optional[str] = "deposit_requested",
    payload=None,
    contract_id: str = CONTRACT_ID,
) -> ParsedEvent:
    """Build a decoded contract event."""
    return ParsedEvent(
        id=event_id,
        ledger=ledger,
        contract_id=contract_id,
        topics=(topic,) if topic is not None else (),
        payload=payload,
        tx_hash=f"tx-{event_id}",
    )


class FakeGateway:
    """In-memory ledger tip and event source for the poller."""

    def __init__(self, tip: int = 1000, events: Optional[list] = None):
        self.tip = tip
        self.events: list[ParsedEvent] = list(events or [])
        self.queries: list[tuple] = []
        self.tip_error: Optional[Exception] = None

    async def get_latest_ledger(self) -> int:
        if self.tip_error is not None:
            raise self.tip_error
        return self.tip

    async def query_events(self, contract_ids, from_ledger: int, to_ledger: int) -> list[ParsedEvent]:
        self.queries.append((list(contract_ids), from_ledger, to_ledger))
        return [e for e in self.events if from_ledger <= e.ledger <= to_ledger]


class FakeTokenContract:
    """In-memory stand-in for TokenContractClient.

    Mirrors the contract's storage and its completed-request guards, and
    records user requests as events the way the contract emits them.
    """

    def __init__(self, ledger: int = 100):
        self.ledger = ledger
        self.balances: dict[bytes, EncryptedBalance] = {}
        self.deposits: dict[bytes, DepositRequest] = {}
        self.completed_deposits: set[bytes] = set()
        self.completed_transfers: set[bytes] = set()
        self.user_indices: dict[str, bytes] = {}
        self.events: list[ParsedEvent] = []
        self.writes: list[tuple] = []
        self._ids = itertools.count(1)

    def _next_id(self) -> bytes:
        return hashlib.sha256(f"request-{next(self._ids)}".encode()).digest()

    def _result(self, return_value=None) -> TransactionResult:
        self.ledger += 1
        return TransactionResult(
            hash=f"{self.ledger:064x}",
            status=TransactionStatus.SUCCESS,
            ledger=self.ledger,
            return_value=return_value,
        )

    def _emit(self, topic: str, payload) -> None:
        self.events.append(
            make_event(f"{self.ledger:012d}-{len(self.events)}", self.ledger, topic, payload)
        )

    # Reads

    async def get_encrypted_balance(self, user_index: bytes) -> EncryptedBalance:
        return self.balances.get(user_index, EncryptedBalance())

    async def get_deposit_request(self, request_id: bytes) -> DepositRequest:
        return self.deposits.get(request_id) or DepositRequest(request_id=b"", user="", amount=0)

    async def deposit_completed(self, request_id: bytes) -> bool:
        return request_id in self.completed_deposits

    async def transfer_completed(self, transfer_id: bytes) -> bool:
        return transfer_id in self.completed_transfers

    async def get_user_index_by_address(self, address: str) -> bytes:
        return self.user_indices.get(address, b"")

    # Server writes

    async def store_deposit(
        self,
        request_id,
        user,
        amount,
        user_index,
        encrypted_amount,
        encrypted_key_user,
        encrypted_key_server,
    ) -> TransactionResult:
        await asyncio.sleep(0)
        if request_id in self.completed_deposits:
            raise SimulationError("Simulation of store_deposit failed: Deposit already completed")

        self.balances[user_index] = EncryptedBalance(
            encrypted_amount=encrypted_amount,
            encrypted_key_user=encrypted_key_user,
            encrypted_key_server=encrypted_key_server,
            timestamp=self.ledger,
            exists=True,
        )
        self.completed_deposits.add(request_id)
        self.writes.append(("store_deposit", request_id))
        result = self._result()
        self._emit("balance_stored", [user_index])
        return result

    async def process_transfer(
        self,
        transfer_id,
        sender_index,
        receiver_index,
        sender_encrypted_amount,
        sender_key_user,
        sender_key_server,
        receiver_encrypted_amount,
        receiver_key_user,
        receiver_key_server,
    ) -> TransactionResult:
        await asyncio.sleep(0)
        if transfer_id in self.completed_transfers:
            raise SimulationError("Simulation of process_transfer failed: Transfer already completed")

        self.balances[sender_index] = EncryptedBalance(
            sender_encrypted_amount, sender_key_user, sender_key_server, self.ledger, True
        )
        self.balances[receiver_index] = EncryptedBalance(
            receiver_encrypted_amount, receiver_key_user, receiver_key_server, self.ledger, True
        )
        self.completed_transfers.add(transfer_id)
        self.writes.append(("process_transfer", transfer_id))
        return self._result()

    # User writes

    async def authenticate_user(self, user, encrypted_index: bytes) -> TransactionResult:
        self.user_indices[user.public_key] = encrypted_index
        result = self._result()
        self._emit("user_authenticated", [user.public_key])
        return result

    async def request_deposit(self, user, amount: int, encrypted_index: bytes) -> TransactionResult:
        request_id = self._next_id()
        result = self._result(return_value=request_id)
        self.deposits[request_id] = DepositRequest(
            request_id=request_id,
            user=user.public_key,
            amount=amount,
            timestamp=self.ledger,
            ledger=self.ledger,
            encrypted_index=encrypted_index,
        )
        self._emit("deposit_requested", [request_id, b"packed", encrypted_index])
        return result

    async def request_transfer(
        self, sender, encrypted_receiver_index: bytes, encrypted_amount: bytes
    ) -> TransactionResult:
        transfer_id = self._next_id()
        result = self._result(return_value=transfer_id)
        self._emit(
            "transfer_requested",
            [transfer_id, sender.public_key, encrypted_receiver_index, encrypted_amount],
        )
        return result


@pytest.fixture
def server_keypair() -> Keypair:
    return Keypair.random()


@pytest.fixture
def alice() -> LocalSigner:
    return LocalSigner(Keypair.random())


@pytest.fixture
def bob() -> LocalSigner:
    return LocalSigner(Keypair.random())


@pytest.fixture
def fake_contract() -> FakeTokenContract:
    return FakeTokenContract()


@pytest.fixture
def reconciler(fake_contract, server_keypair) -> BalanceReconciler:
    return BalanceReconciler(fake_contract, server_keypair.secret)


@pytest.fixture
def request_service(fake_contract, server_keypair) -> RequestService:
    return RequestService(fake_contract, server_keypair.public_key)


def user_index_for(signature: str) -> bytes:
    """Plain user index that a wallet signature maps to."""
    return hashlib.sha256(signature.encode("utf-8")).digest()


def authenticate(contract: FakeTokenContract, user: LocalSigner, server_address: str) -> bytes:
    """Register a user's index directly and return the plain index."""
    signature = f"signature-of-{user.public_key}"
    contract.user_indices[user.public_key] = create_encrypted_index(signature, server_address)
    return user_index_for(signature)
