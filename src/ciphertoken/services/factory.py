"""Wiring of the service graph from settings."""

import logging
from dataclasses import dataclass
from typing import Optional

from ciphertoken.config import Settings
from ciphertoken.events.poller import EventPoller
from ciphertoken.ledger.gateway import LedgerGateway
from ciphertoken.services.reconciler import BalanceReconciler
from ciphertoken.services.requests import RequestService
from ciphertoken.services.token_contract import TokenContractClient
from ciphertoken.signing.local import LocalSigner

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the API and entry point need.

    contract, reconciler and requests are None until a contract id and a
    server secret are configured; the poller can still run without them.
    """

    settings: Settings
    gateway: LedgerGateway
    poller: EventPoller
    contract: Optional[TokenContractClient] = None
    reconciler: Optional[BalanceReconciler] = None
    requests: Optional[RequestService] = None


def build_services(settings: Settings) -> Services:
    """Build gateway, poller and (when configured) contract services."""
    gateway = LedgerGateway.from_settings(settings)
    poller = EventPoller.from_settings(gateway, settings)
    services = Services(settings=settings, gateway=gateway, poller=poller)

    if not settings.has_credentials:
        logger.warning("CONTRACT_ID or SOURCE_SECRET_KEY not set - reconciliation disabled")
        return services

    signer = LocalSigner.from_secret(settings.source_secret_key)
    contract = TokenContractClient(gateway, settings.contract_id, signer)

    services.contract = contract
    services.reconciler = BalanceReconciler(
        contract,
        signer.secret,
        allow_index_fallback=settings.allow_index_fallback,
    )
    services.requests = RequestService(contract, signer.public_key)
    logger.info(f"Server account: {signer.public_key}")
    return services


def register_handlers(services: Services) -> None:
    """Register event handlers on the poller."""
    poller = services.poller

    if services.reconciler is not None:
        poller.register_handler("deposit_requested", services.reconciler.handle_deposit_request)
        poller.register_handler("transfer_requested", services.reconciler.handle_transfer_request)

    poller.register_handler("balance_stored", _log_event)
    poller.register_handler("transfer_completed", _log_event)
    poller.register_handler("user_authenticated", _log_event)
    poller.register_wildcard_handler(_trace_event)


async def _log_event(event) -> None:
    logger.info(f"{event.event_type} at ledger {event.ledger} (tx: {event.tx_hash})")


async def _trace_event(event) -> None:
    logger.debug(f"Event {event.id}: topics={event.topics} payload={event.payload}")
