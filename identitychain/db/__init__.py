"""
Persistence Layer for Identity Chains

Provides:
- ChainStore abstraction (InMemory for dev, File for deployments)
- Environment-based store configuration
"""

from .store import (
    ChainStore,
    InMemoryChainStore,
    FileChainStore,
    ChainStoreError,
    AlreadyExistsError,
    NotFoundError,
    StoreIOError,
    StoreCorruptionError,
)
from .config import StoreConfig, StoreDriver, create_chain_store

__all__ = [
    "ChainStore",
    "InMemoryChainStore",
    "FileChainStore",
    "ChainStoreError",
    "AlreadyExistsError",
    "NotFoundError",
    "StoreIOError",
    "StoreCorruptionError",
    "StoreConfig",
    "StoreDriver",
    "create_chain_store",
]
