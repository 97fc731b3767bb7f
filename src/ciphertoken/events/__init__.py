"""Contract event polling and dispatch."""

from ciphertoken.events.poller import (
    WILDCARD,
    EventHandler,
    EventPoller,
    HandlerRegistry,
    PollerState,
)

__all__ = [
    "WILDCARD",
    "EventHandler",
    "EventPoller",
    "HandlerRegistry",
    "PollerState",
]
