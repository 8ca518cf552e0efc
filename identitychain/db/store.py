"""
Chain Store Abstraction

This module defines the ChainStore interface and provides two implementations:
- InMemoryChainStore: For development and testing
- FileChainStore: A single JSON document committed by atomic rename

The ChainStore is responsible for:
- Keyed persistence of whole chains by owner_id
- Exclusivity (one chain per owner)
- All-or-nothing visibility of each commit

The ChainEngine retains responsibility for:
- Hashing and signing
- Chain integrity rules

COPY DISCIPLINE:
Every chain entering or leaving the store is deep-copied. Neither the
caller nor the store can observe or cause mutation through a shared
reference. This is what makes the single-lock model safe.

CONCURRENCY:
One reader/writer lock guards the whole key space. get/list/count
share it; create/update hold it exclusively for the in-memory
mutation AND the synchronous file commit. There is no per-owner
lock and no version token: concurrent updates to the same owner
are last-writer-wins.
"""

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional, Union

from pydantic import ValidationError as SchemaValidationError

from ..core.errors import IdentityChainError, InvalidInputError
from ..observability import get_logger
from ..schemas import IdentityChain


logger = get_logger(__name__)


# ============================================================
# EXCEPTIONS
# ============================================================

class ChainStoreError(IdentityChainError):
    """Base exception for chain store errors."""
    pass


class AlreadyExistsError(ChainStoreError):
    """Raised when creating a chain for an owner that already has one."""
    pass


class NotFoundError(ChainStoreError):
    """Raised when no chain exists for an owner."""
    pass


class StoreIOError(ChainStoreError):
    """Raised when a durable commit cannot be written. State is unchanged."""
    pass


class StoreCorruptionError(ChainStoreError):
    """Raised when the persisted document cannot be parsed."""
    pass


# ============================================================
# LOCKING
# ============================================================

class ReadWriteLock:
    """
    Many readers or one writer.

    Writers are preferred: once a writer is waiting, new readers
    queue behind it so a steady stream of reads cannot starve commits.
    Not reentrant.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Generator[None, None, None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Generator[None, None, None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


# ============================================================
# ABSTRACT BASE CLASS
# ============================================================

class ChainStore(ABC):
    """
    Abstract base class for chain storage, keyed by owner_id.

    Implementations must ensure:
    1. create never overwrites an existing owner
    2. update never creates a missing owner
    3. Returned chains are independent copies
    4. A failed commit leaves the visible state unchanged
    """

    def __init__(self):
        self._chains: dict[str, IdentityChain] = {}
        self._lock = ReadWriteLock()

    @staticmethod
    def _copy(chain: IdentityChain) -> IdentityChain:
        return chain.model_copy(deep=True)

    def create(self, chain: IdentityChain) -> None:
        """
        Insert a new chain.

        Raises:
            InvalidInputError: owner_id is empty
            AlreadyExistsError: a chain exists for chain.owner_id
            StoreIOError: the commit could not be written
        """
        if not chain.owner_id:
            raise InvalidInputError("owner_id is required")

        with self._lock.write():
            if chain.owner_id in self._chains:
                raise AlreadyExistsError(
                    f"chain already exists for owner {chain.owner_id}"
                )
            updated = dict(self._chains)
            updated[chain.owner_id] = self._copy(chain)
            self._commit(updated)
            self._chains = updated

        logger.debug("Chain stored", owner_id=chain.owner_id)

    def get(self, owner_id: str) -> IdentityChain:
        """
        Fetch a copy of an owner's chain.

        Raises:
            NotFoundError: no chain for owner_id
        """
        with self._lock.read():
            chain = self._chains.get(owner_id)
            if chain is None:
                raise NotFoundError(f"chain not found for owner {owner_id}")
            return self._copy(chain)

    def update(self, chain: IdentityChain) -> None:
        """
        Replace an owner's chain wholesale (last writer wins).

        Raises:
            NotFoundError: no chain for chain.owner_id
            StoreIOError: the commit could not be written
        """
        if not chain.owner_id:
            raise InvalidInputError("owner_id is required")

        with self._lock.write():
            if chain.owner_id not in self._chains:
                raise NotFoundError(f"chain not found for owner {chain.owner_id}")
            updated = dict(self._chains)
            updated[chain.owner_id] = self._copy(chain)
            self._commit(updated)
            self._chains = updated

        logger.debug(
            "Chain replaced",
            owner_id=chain.owner_id,
            block_count=len(chain.blocks),
        )

    def list(self) -> list[IdentityChain]:
        """Copies of every stored chain. Order is unspecified."""
        with self._lock.read():
            return [self._copy(chain) for chain in self._chains.values()]

    def count(self) -> int:
        """Number of stored chains."""
        with self._lock.read():
            return len(self._chains)

    @abstractmethod
    def _commit(self, chains: dict[str, IdentityChain]) -> None:
        """
        Durably commit the complete key space.

        Called with the write lock held. Must either succeed completely
        or raise StoreIOError without changing what is persisted.
        """
        pass


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryChainStore(ChainStore):
    """
    In-memory implementation of ChainStore.

    Suitable for:
    - Development
    - Testing

    NOT suitable for:
    - Production (no durability)
    """

    def _commit(self, chains: dict[str, IdentityChain]) -> None:
        # Nothing to persist; the swap in the caller is the commit
        pass

    def clear(self) -> None:
        """Remove all chains (for testing only)."""
        with self._lock.write():
            self._chains = {}


# ============================================================
# FILE IMPLEMENTATION
# ============================================================

class FileChainStore(ChainStore):
    """
    Single-document JSON implementation of ChainStore.

    Document shape:
        {"chains": {"<owner_id>": {owner_id, root_public_key, created_at, blocks}}}

    COMMIT PROTOCOL:
    1. Serialize the whole key space
    2. Write it to a temporary file in the same directory
    3. (optional) flush + fsync the temporary file
    4. os.replace() it over the canonical path

    A crash at any point leaves either the old or the new document at
    the canonical path, never a partial one. Without sync_writes the
    rename may be acknowledged before the data reaches stable storage:
    power loss right after a commit can lose that commit while leaving
    the file structurally valid.
    """

    def __init__(self, path: Union[str, Path], sync_writes: bool = False):
        """
        Open (or start) a store at path.

        Args:
            path: Location of the JSON document
            sync_writes: fsync the temporary file before each rename

        Raises:
            StoreCorruptionError: If an existing document cannot be parsed
            StoreIOError: If an existing document cannot be read
        """
        super().__init__()
        self._path = Path(path)
        self._sync_writes = sync_writes
        self._chains = self._load()

        logger.info(
            "Chain store opened",
            path=str(self._path),
            chain_count=len(self._chains),
            sync_writes=sync_writes,
        )

    @property
    def path(self) -> Path:
        """Canonical location of the store document."""
        return self._path

    def _load(self) -> dict[str, IdentityChain]:
        if not self._path.exists():
            return {}

        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise StoreIOError(f"read store: {e}") from e

        if not raw.strip():
            return {}

        try:
            document = json.loads(raw)
            entries = document.get("chains") or {}
            return {
                owner_id: IdentityChain.model_validate(data)
                for owner_id, data in entries.items()
            }
        except (json.JSONDecodeError, AttributeError, SchemaValidationError) as e:
            raise StoreCorruptionError(f"unmarshal store {self._path}: {e}") from e

    @staticmethod
    def _serialize(chains: dict[str, IdentityChain]) -> str:
        document = {
            "chains": {
                owner_id: chain.model_dump(mode="json")
                for owner_id, chain in chains.items()
            }
        }
        return json.dumps(document, indent=2, ensure_ascii=False)

    def _commit(self, chains: dict[str, IdentityChain]) -> None:
        data = self._serialize(chains)
        directory = self._path.parent

        tmp_path: Optional[str] = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                dir=str(directory),
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(data)
                if self._sync_writes:
                    f.flush()
                    os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            # Atomic rename: this is the commit point
            os.replace(tmp_path, self._path)
            tmp_path = None
        except OSError as e:
            logger.error("Chain store commit failed", path=str(self._path), error=str(e))
            raise StoreIOError(f"commit store {self._path}: {e}") from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
