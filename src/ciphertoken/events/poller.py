"""Contract event poller.

Polls the ledger for contract events on a fixed interval and dispatches
them to registered handlers. Each tick re-queries a wide lookback window
because the RPC does not guarantee recent events are indexed yet; events
already seen are filtered by ledger watermark and a bounded set of ids.

Handlers run sequentially and are awaited inside the loop, so a slow
handler delays the next tick. At most one reconciliation is in flight per
poller.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from ciphertoken.ledger.gateway import LedgerGateway
from ciphertoken.ledger.models import ParsedEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[ParsedEvent], Awaitable[Any]]

WILDCARD = "*"


@dataclass
class PollerState:
    """Progress of the polling loop."""

    last_processed_ledger: Optional[int] = None
    last_processed_event_id: Optional[str] = None
    running: bool = False


class HandlerRegistry:
    """Append-only mapping from event topic to ordered handlers."""

    def __init__(self):
        self._handlers: dict[str, list[EventHandler]] = {}

    def register(self, topic: str, handler: EventHandler) -> None:
        self._handlers.setdefault(topic, []).append(handler)

    def register_wildcard(self, handler: EventHandler) -> None:
        self.register(WILDCARD, handler)

    def handlers_for(self, topic: str) -> list[EventHandler]:
        """Specific handlers for a topic followed by wildcard handlers."""
        specific = self._handlers.get(topic, []) if topic != WILDCARD else []
        return list(specific) + list(self._handlers.get(WILDCARD, []))

    def __len__(self) -> int:
        return sum(len(handlers) for handlers in self._handlers.values())


class EventPoller:
    """Polls contract events and dispatches them to handlers.

    State machine: stopped -> running -> stopped. stop() is cooperative;
    an in-flight poll or handler call is never interrupted.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        contract_ids: Sequence[str] = (),
        poll_interval_ms: int = 5000,
        start_ledger: Optional[int] = None,
        lookback: int = 1000,
        ledger_delay: int = 10,
        dedup_window_size: int = 1024,
    ):
        """Initialize poller.

        Args:
            gateway: Ledger gateway used for tip and event queries
            contract_ids: Contracts to watch; empty means all contracts
            poll_interval_ms: Sleep between poll iterations
            start_ledger: Explicit starting ledger; defaults to the tip at start()
            lookback: Number of ledgers re-queried every tick
            ledger_delay: Safety margin kept behind the tip
            dedup_window_size: Number of recent event ids remembered
        """
        self.gateway = gateway
        self.contract_ids = list(contract_ids)
        self.poll_interval_ms = poll_interval_ms
        self.start_ledger = start_ledger
        self.lookback = lookback
        self.ledger_delay = ledger_delay

        self.state = PollerState()
        self.handlers = HandlerRegistry()
        self._recent_ids: deque[str] = deque(maxlen=dedup_window_size)
        self._recent_set: set[str] = set()
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()

    @classmethod
    def from_settings(cls, gateway: LedgerGateway, settings) -> "EventPoller":
        return cls(
            gateway,
            contract_ids=settings.contract_ids,
            poll_interval_ms=settings.poll_interval_ms,
            start_ledger=settings.start_ledger,
            lookback=settings.event_lookback_ledgers,
            ledger_delay=settings.ledger_delay,
            dedup_window_size=settings.dedup_window_size,
        )

    @property
    def running(self) -> bool:
        return self.state.running

    @property
    def last_processed_ledger(self) -> Optional[int]:
        return self.state.last_processed_ledger

    # ======================
    # Handlers
    # ======================

    def register_handler(self, topic: str, handler: EventHandler) -> None:
        """Register a handler for events whose first topic equals topic."""
        self.handlers.register(topic, handler)
        logger.debug(f"Registered handler for {topic}")

    def register_wildcard_handler(self, handler: EventHandler) -> None:
        """Register a handler invoked for every event."""
        self.handlers.register_wildcard(handler)

    # ======================
    # Lifecycle
    # ======================

    async def start(self) -> None:
        """Start polling.

        No-op if already running. The starting ledger is resolved before
        the poller is marked running, so a failed tip query leaves it
        stopped and the error propagates to the caller.
        """
        if self.state.running:
            logger.info("Event poller already running")
            return

        if self._task is not None and not self._task.done():
            # stopped, but the previous loop has not exited yet
            self._wake.clear()
            self.state.running = True
            logger.info("Event poller resumed")
            return

        if self.state.last_processed_ledger is None:
            if self.start_ledger is not None:
                self.state.last_processed_ledger = self.start_ledger
            else:
                self.state.last_processed_ledger = await self.gateway.get_latest_ledger()

        self._wake.clear()
        self.state.running = True
        logger.info(
            f"Event poller started at ledger {self.state.last_processed_ledger} "
            f"(interval: {self.poll_interval_ms}ms, contracts: {self.contract_ids or 'all'})"
        )
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        """Request the loop to stop after the current iteration."""
        if not self.state.running:
            return
        self.state.running = False
        self._wake.set()
        logger.info("Event poller stopping")

    async def wait_closed(self) -> None:
        """Wait for the polling loop task to exit."""
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        while self.state.running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Error polling events: {e}")

            if not self.state.running:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval_ms / 1000)
            except asyncio.TimeoutError:
                pass

        logger.info("Event poller stopped")

    # ======================
    # Polling
    # ======================

    async def poll_once(self) -> int:
        """Run a single poll iteration.

        Events at or below the watermark (or the configured start ledger
        before start() has run) are skipped. An event whose handlers
        raised is not remembered, so it is redelivered on a later poll
        while it stays above the watermark.

        Returns:
            Number of events dispatched
        """
        tip = await self.gateway.get_latest_ledger()
        from_ledger = max(1, tip - self.lookback)
        events = await self.gateway.query_events(self.contract_ids, from_ledger, tip)

        floor = self.state.last_processed_ledger
        if floor is None:
            floor = self.start_ledger or 0
        dispatched = 0
        for event in events:
            if self.contract_ids and event.contract_id not in self.contract_ids:
                continue
            if event.ledger <= floor:
                continue
            if event.id in self._recent_set:
                continue

            if await self._dispatch(event):
                self._remember(event.id)
            dispatched += 1

        self.state.last_processed_ledger = max(floor, tip - self.ledger_delay)
        if dispatched:
            logger.info(f"Dispatched {dispatched} events (tip: {tip})")
        return dispatched

    async def _dispatch(self, event: ParsedEvent) -> bool:
        """Run every handler for an event; False if any of them raised."""
        topic = event.event_type
        logger.debug(f"Event {event.id} ({topic}) at ledger {event.ledger}")

        ok = True
        for handler in self.handlers.handlers_for(topic):
            try:
                await handler(event)
            except Exception as e:
                name = getattr(handler, "__qualname__", repr(handler))
                logger.error(f"Handler {name} failed for {topic} event {event.id}: {e}")
                ok = False
        return ok

    def _remember(self, event_id: str) -> None:
        if len(self._recent_ids) == self._recent_ids.maxlen:
            self._recent_set.discard(self._recent_ids[0])
        self._recent_ids.append(event_id)
        self._recent_set.add(event_id)
        self.state.last_processed_event_id = event_id

    def get_status(self) -> dict:
        """Current poller status."""
        return {
            "running": self.state.running,
            "last_processed_ledger": self.state.last_processed_ledger,
            "last_processed_event_id": self.state.last_processed_event_id,
            "contract_ids": list(self.contract_ids),
            "poll_interval_ms": self.poll_interval_ms,
            "handlers": len(self.handlers),
        }
