"""
Store and Server Configuration

Environment Variables:
    IDENTITY_STORE_PATH: Location of the chain document (default ./data/chains.json)
    IDENTITY_STORE_DRIVER: Which store to use
        - "file" (default)
        - "memory" (development/testing, nothing persisted)
    IDENTITY_STORE_FSYNC: fsync each commit before the rename (1/true/yes)

    IDENTITY_HTTP_ADDR: host:port or :port to listen on (takes precedence)
    IDENTITY_HTTP_HOST: Listen host (default 0.0.0.0)
    IDENTITY_HTTP_PORT: Listen port (default 8080)
"""

import os
from dataclasses import dataclass
from enum import Enum

from .store import ChainStore, FileChainStore, InMemoryChainStore


DEFAULT_STORE_PATH = "./data/chains.json"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes")


class StoreDriver(str, Enum):
    """Supported ChainStore drivers."""
    FILE = "file"
    MEMORY = "memory"


@dataclass
class StoreConfig:
    """Chain store configuration."""
    path: str = DEFAULT_STORE_PATH
    driver: StoreDriver = StoreDriver.FILE
    sync_writes: bool = False

    @classmethod
    def from_env(cls) -> "StoreConfig":
        """
        Load configuration from environment variables.

        Raises:
            ValueError: If IDENTITY_STORE_DRIVER names an unknown driver
        """
        driver = os.getenv("IDENTITY_STORE_DRIVER", "").lower() or StoreDriver.FILE.value
        try:
            store_driver = StoreDriver(driver)
        except ValueError:
            raise ValueError(
                f"Unknown IDENTITY_STORE_DRIVER: {driver}. "
                f"Valid values: file, memory"
            ) from None

        return cls(
            path=os.getenv("IDENTITY_STORE_PATH") or DEFAULT_STORE_PATH,
            driver=store_driver,
            sync_writes=_env_flag("IDENTITY_STORE_FSYNC"),
        )


@dataclass
class ServerConfig:
    """HTTP listener configuration."""
    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Load configuration from environment variables.

        IDENTITY_HTTP_ADDR accepts "host:port" or ":port".
        """
        addr = os.getenv("IDENTITY_HTTP_ADDR", "")
        if addr:
            host, _, port = addr.rpartition(":")
            return cls(host=host or "0.0.0.0", port=int(port))

        return cls(
            host=os.getenv("IDENTITY_HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("IDENTITY_HTTP_PORT", "8080")),
        )


def create_chain_store(config: StoreConfig | None = None) -> ChainStore:
    """
    Build the configured ChainStore.

    Args:
        config: Store configuration; read from the environment if None
    """
    if config is None:
        config = StoreConfig.from_env()

    if config.driver == StoreDriver.MEMORY:
        return InMemoryChainStore()
    return FileChainStore(config.path, sync_writes=config.sync_writes)
