"""Chain completion events."""

from chain_engine.messaging.events import ChainEventBus

__all__ = ["ChainEventBus"]
