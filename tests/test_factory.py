"""Tests for service wiring and the application entry point."""

from unittest.mock import patch

import pytest
from stellar_sdk import Keypair

from ciphertoken.config import Settings
from ciphertoken.events import EventPoller
from ciphertoken.main import Application, parse_args
from ciphertoken.services import build_services, register_handlers
from ciphertoken.services.factory import Services
from conftest import CONTRACT_ID, FakeGateway, make_event


class TestBuildServices:
    def test_without_credentials(self):
        services = build_services(Settings(_env_file=None, contract_id="", source_secret_key=None))

        assert services.reconciler is None
        assert services.contract is None
        assert services.poller.contract_ids == []

    def test_with_credentials(self):
        server = Keypair.random()
        settings = Settings(
            _env_file=None,
            contract_id=CONTRACT_ID,
            source_secret_key=server.secret,
            poll_interval_ms=250,
            allow_index_fallback=True,
        )

        services = build_services(settings)

        assert services.contract.contract_id == CONTRACT_ID
        assert services.contract.signer.public_key == server.public_key
        assert services.reconciler.server_address == server.public_key
        assert services.reconciler.allow_index_fallback is True
        assert services.requests.server_address == server.public_key
        assert services.poller.contract_ids == [CONTRACT_ID]
        assert services.poller.poll_interval_ms == 250

    def test_register_handlers(self):
        server = Keypair.random()
        services = build_services(
            Settings(_env_file=None, contract_id=CONTRACT_ID, source_secret_key=server.secret)
        )

        register_handlers(services)

        handlers = services.poller.handlers
        assert handlers.handlers_for("deposit_requested")[0] == services.reconciler.handle_deposit_request
        assert handlers.handlers_for("transfer_requested")[0] == services.reconciler.handle_transfer_request
        for topic in ("balance_stored", "transfer_completed", "user_authenticated"):
            assert len(handlers.handlers_for(topic)) == 2


class TestApplication:
    def test_parse_args(self):
        assert parse_args(["--once"]).once is True
        assert parse_args([]).once is False

    @pytest.mark.asyncio
    async def test_run_once(self):
        settings = Settings(_env_file=None, contract_id=CONTRACT_ID)
        gateway = FakeGateway(tip=1000, events=[make_event("e1", 990, "balance_stored")])
        services = Services(
            settings=settings,
            gateway=gateway,
            poller=EventPoller(gateway, contract_ids=[CONTRACT_ID]),
        )

        with patch("ciphertoken.main.build_services", return_value=services):
            dispatched = await Application(settings).run_once()

        assert dispatched == 1
        assert not services.poller.running
