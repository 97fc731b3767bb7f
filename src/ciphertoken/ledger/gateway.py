"""Gateway to the Soroban ledger.

All ledger interaction goes through LedgerGateway: account loading,
read-only simulation, the build/simulate/assemble/sign/submit/confirm
cycle for state-changing calls, and event queries.
"""

import asyncio
import logging
from typing import Any, Optional, Sequence

from stellar_sdk import Account, Keypair, TransactionBuilder, TransactionEnvelope
from stellar_sdk import xdr as stellar_xdr

from ciphertoken.errors import (
    RpcError,
    SimulationError,
    SubmissionError,
    TransactionTimeoutError,
)
from ciphertoken.ledger import scval
from ciphertoken.ledger.models import ParsedEvent, TransactionResult, TransactionStatus
from ciphertoken.ledger.rpc import SorobanRpcClient
from ciphertoken.signing.base import TransactionSigner

logger = logging.getLogger(__name__)

EVENTS_PAGE_LIMIT = 1000


class LedgerGateway:
    """Abstraction over the Soroban RPC for contract calls and events."""

    def __init__(
        self,
        rpc: SorobanRpcClient,
        network_passphrase: str,
        base_fee: int = 100,
        tx_timeout: int = 30,
        max_attempts: int = 30,
        poll_delay_ms: int = 2000,
    ):
        """Initialize gateway.

        Args:
            rpc: JSON-RPC client
            network_passphrase: Passphrase of the target network
            base_fee: Inclusion fee per operation in stroops
            tx_timeout: Transaction validity window in seconds
            max_attempts: getTransaction attempts before TransactionTimeoutError
            poll_delay_ms: Delay between getTransaction attempts
        """
        self.rpc = rpc
        self.network_passphrase = network_passphrase
        self.base_fee = base_fee
        self.tx_timeout = tx_timeout
        self.max_attempts = max_attempts
        self.poll_delay_ms = poll_delay_ms

    @classmethod
    def from_settings(cls, settings) -> "LedgerGateway":
        rpc = SorobanRpcClient(settings.stellar_rpc_url, timeout=settings.rpc_timeout)
        return cls(
            rpc,
            network_passphrase=settings.stellar_network_passphrase,
            base_fee=settings.base_fee,
            tx_timeout=settings.tx_timeout_seconds,
            max_attempts=settings.tx_max_attempts,
            poll_delay_ms=settings.tx_poll_delay_ms,
        )

    # ======================
    # Ledger state
    # ======================

    async def get_latest_ledger(self) -> int:
        """Get the current ledger tip."""
        result = await self.rpc.get_latest_ledger()
        return int(result["sequence"])

    async def load_account(self, address: str) -> Account:
        """Load an account's current sequence number.

        Raises:
            RpcError: If the account does not exist on the ledger
        """
        key = stellar_xdr.LedgerKey(
            type=stellar_xdr.LedgerEntryType.ACCOUNT,
            account=stellar_xdr.LedgerKeyAccount(
                account_id=Keypair.from_public_key(address).xdr_account_id()
            ),
        )
        result = await self.rpc.get_ledger_entries([key.to_xdr()])
        entries = result.get("entries") or []
        if not entries:
            raise RpcError(f"Account not found: {address}")

        entry = stellar_xdr.LedgerEntryData.from_xdr(entries[0]["xdr"])
        return Account(address, entry.account.seq_num.sequence_number.int64)

    # ======================
    # Transactions
    # ======================

    def _build(
        self,
        source: Account,
        contract_id: str,
        method: str,
        args: Sequence[stellar_xdr.SCVal],
        auth: Optional[list] = None,
        soroban_data: Optional[stellar_xdr.SorobanTransactionData] = None,
    ) -> TransactionEnvelope:
        # build() adds soroban_data.resource_fee on top of the inclusion fee
        builder = TransactionBuilder(
            source_account=source,
            network_passphrase=self.network_passphrase,
            base_fee=self.base_fee,
        )
        builder.append_invoke_contract_function_op(
            contract_id=contract_id,
            function_name=method,
            parameters=list(args),
            auth=auth,
        )
        if soroban_data is not None:
            builder.set_soroban_data(soroban_data)
        return builder.set_timeout(self.tx_timeout).build()

    async def _simulate_envelope(self, envelope: TransactionEnvelope, method: str) -> dict:
        result = await self.rpc.simulate_transaction(envelope.to_xdr())
        if result.get("error"):
            raise SimulationError(f"Simulation of {method} failed: {result['error']}")
        return result

    async def simulate(
        self,
        contract_id: str,
        method: str,
        args: Sequence[stellar_xdr.SCVal],
        source: str,
    ) -> Any:
        """Dry-run a contract call and return its decoded return value.

        Nothing is submitted; the ledger is not mutated.

        Args:
            contract_id: Contract to call
            method: Contract method name
            args: Positional SCVal arguments
            source: Account used as transaction source

        Raises:
            SimulationError: If the ledger rejects the dry run
        """
        logger.debug(f"Reading contract {contract_id}, method: {method}")
        account = await self.load_account(source)
        envelope = self._build(account, contract_id, method, args)
        result = await self._simulate_envelope(envelope, method)

        results = result.get("results") or []
        if not results or not results[0].get("xdr"):
            return None
        return scval.decode_xdr(results[0]["xdr"])

    def _assemble(
        self,
        source: str,
        sequence: int,
        contract_id: str,
        method: str,
        args: Sequence[stellar_xdr.SCVal],
        simulation: dict,
    ) -> TransactionEnvelope:
        """Rebuild the transaction with auth, footprint and fees from a simulation."""
        results = simulation.get("results") or [{}]
        auth = [
            stellar_xdr.SorobanAuthorizationEntry.from_xdr(entry)
            for entry in results[0].get("auth") or []
        ]
        soroban_data = stellar_xdr.SorobanTransactionData.from_xdr(simulation["transactionData"])
        if simulation.get("minResourceFee") is not None:
            soroban_data.resource_fee = stellar_xdr.Int64(int(simulation["minResourceFee"]))
        resource_fee = soroban_data.resource_fee.int64

        logger.debug(f"Assembling {method}: {len(auth)} auth entries, resource fee {resource_fee}")
        return self._build(
            Account(source, sequence),
            contract_id,
            method,
            args,
            auth=auth,
            soroban_data=soroban_data,
        )

    async def invoke(
        self,
        contract_id: str,
        method: str,
        args: Sequence[stellar_xdr.SCVal],
        signer: TransactionSigner,
    ) -> TransactionResult:
        """Invoke a state-changing contract method and wait for the outcome.

        Raises:
            SimulationError: If the dry run fails
            SubmissionError: If the RPC does not accept the transaction
            TransactionTimeoutError: If confirmation polling is exhausted
        """
        logger.info(f"Invoking contract {contract_id}, method: {method}")

        account = await self.load_account(signer.public_key)
        sequence = account.sequence

        envelope = self._build(account, contract_id, method, args)
        simulation = await self._simulate_envelope(envelope, method)

        assembled = self._assemble(signer.public_key, sequence, contract_id, method, args, simulation)
        signer.sign(assembled)

        tx_hash = await self.submit(assembled)
        return await self.wait_for_transaction(tx_hash)

    async def submit(self, envelope: TransactionEnvelope) -> str:
        """Submit a signed envelope and return its hash.

        Raises:
            SubmissionError: If the status is anything but PENDING
        """
        result = await self.rpc.send_transaction(envelope.to_xdr())
        status = result.get("status")
        tx_hash = result.get("hash") or envelope.hash_hex()

        if status != TransactionStatus.PENDING.value:
            detail = result.get("errorResultXdr") or result
            raise SubmissionError(f"Transaction submission failed ({status}): {detail}")

        logger.info(f"Transaction submitted: {tx_hash}")
        return tx_hash

    async def wait_for_transaction(self, tx_hash: str) -> TransactionResult:
        """Poll getTransaction until a terminal status.

        NOT_FOUND and transient RPC errors are retried up to max_attempts
        with a fixed delay in between.

        Raises:
            TransactionTimeoutError: If the attempt budget runs out
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self.rpc.get_transaction(tx_hash)
                status = response.get("status", TransactionStatus.NOT_FOUND.value)

                if status != TransactionStatus.NOT_FOUND.value:
                    return self._parse_transaction(tx_hash, response)

                logger.debug(f"Waiting for transaction {tx_hash}... ({attempt}/{self.max_attempts})")
            except RpcError as e:
                logger.warning(f"Error checking transaction status: {e}")

            if attempt < self.max_attempts:
                await asyncio.sleep(self.poll_delay_ms / 1000)

        raise TransactionTimeoutError(tx_hash, self.max_attempts)

    @staticmethod
    def _parse_transaction(tx_hash: str, response: dict) -> TransactionResult:
        try:
            status = TransactionStatus(response["status"])
        except ValueError:
            status = TransactionStatus.FAILED

        return_value = None
        if response.get("returnValue"):
            return_value = scval.decode_xdr(response["returnValue"])

        ledger = response.get("ledger")
        return TransactionResult(
            hash=tx_hash,
            status=status,
            ledger=int(ledger) if ledger is not None else None,
            return_value=return_value,
            raw=response,
        )

    # ======================
    # Events
    # ======================

    @staticmethod
    def build_filters(contract_ids: Sequence[str]) -> list[dict]:
        """Contract event filter; no contractIds means every contract."""
        event_filter: dict[str, Any] = {"type": "contract"}
        if contract_ids:
            event_filter["contractIds"] = list(contract_ids)
        return [event_filter]

    async def query_events(
        self,
        contract_ids: Sequence[str],
        from_ledger: int,
        to_ledger: int,
    ) -> list[ParsedEvent]:
        """Fetch contract events between two ledgers, following pagination.

        Events are returned in the order the RPC reports them.
        """
        filters = self.build_filters(contract_ids)
        events: list[ParsedEvent] = []

        response = await self.rpc.get_events(
            filters, start_ledger=from_ledger, end_ledger=to_ledger, limit=EVENTS_PAGE_LIMIT
        )
        while True:
            page = response.get("events") or []
            events.extend(self.parse_event(raw) for raw in page)

            cursor = response.get("cursor")
            if len(page) < EVENTS_PAGE_LIMIT or not cursor:
                break
            response = await self.rpc.get_events(filters, cursor=cursor, limit=EVENTS_PAGE_LIMIT)

        return events

    @staticmethod
    def parse_event(raw: dict) -> ParsedEvent:
        """Decode a raw getEvents entry."""
        return ParsedEvent(
            id=raw.get("id", ""),
            ledger=int(raw.get("ledger", 0)),
            contract_id=raw.get("contractId", ""),
            topics=tuple(_decode_or_none(topic) for topic in raw.get("topic") or []),
            payload=_decode_or_none(raw.get("value")),
            tx_hash=raw.get("txHash", ""),
            type=raw.get("type", "contract"),
        )


def _decode_or_none(encoded: Any) -> Any:
    # older RPC versions wrap values as {"xdr": ...}
    if isinstance(encoded, dict):
        encoded = encoded.get("xdr")
    if not encoded:
        return None
    try:
        return scval.decode_xdr(encoded)
    except Exception as e:
        logger.debug(f"Error decoding SCVal: {e}")
        return None
