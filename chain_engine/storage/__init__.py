"""Durable file storage for queued chains and task metadata."""

from chain_engine.storage.chains import ChainStore
from chain_engine.storage.files import FileStorage
from chain_engine.storage.legacy import InMemoryLegacyStore, LegacyKeyValueStore
from chain_engine.storage.metadata import MetadataStore
from chain_engine.storage.migration import Migrator
from chain_engine.storage.queue import DurableQueue

__all__ = [
    "ChainStore",
    "DurableQueue",
    "FileStorage",
    "InMemoryLegacyStore",
    "LegacyKeyValueStore",
    "MetadataStore",
    "Migrator",
]
