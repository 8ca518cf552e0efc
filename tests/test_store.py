"""
Tests for ChainStore implementations.

The file store is exercised against a real directory (tmp_path);
commit failures are injected by patching os.replace.
"""

import json
import os
import threading

import pytest

from identitychain.core import ChainEngine, InvalidInputError
from identitychain.db import (
    AlreadyExistsError,
    FileChainStore,
    InMemoryChainStore,
    NotFoundError,
    StoreConfig,
    StoreCorruptionError,
    StoreDriver,
    StoreIOError,
    create_chain_store,
)
from identitychain.db.config import ServerConfig
from identitychain.db.store import ReadWriteLock

from conftest import build_chain


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryChainStore()
    return FileChainStore(tmp_path / "chains.json")


class TestChainStoreContract:
    """Behaviour shared by every ChainStore."""

    def test_create_then_get(self, store, root_keys):
        chain = build_chain(root_keys, count=2)
        store.create(chain)
        assert store.get("user:alice") == chain

    def test_create_is_exclusive(self, store, root_keys):
        store.create(ChainEngine.create("user:alice", root_keys[1]))
        with pytest.raises(AlreadyExistsError):
            store.create(build_chain(root_keys, count=1))
        assert store.get("user:alice").blocks == []

    def test_get_missing(self, store):
        with pytest.raises(NotFoundError):
            store.get("user:nobody")

    def test_update_missing(self, store, root_keys):
        with pytest.raises(NotFoundError):
            store.update(ChainEngine.create("user:nobody", root_keys[1]))
        assert store.count() == 0

    def test_update_replaces(self, store, root_keys):
        store.create(ChainEngine.create("user:alice", root_keys[1]))
        longer = build_chain(root_keys, count=3)
        store.update(longer)
        assert store.get("user:alice").height == 3

    def test_empty_owner_rejected(self, store, root_keys):
        chain = ChainEngine.create("user:alice", root_keys[1]).model_copy(
            update={"owner_id": ""}
        )
        with pytest.raises(InvalidInputError):
            store.create(chain)

    def test_list_empty(self, store):
        assert store.list() == []
        assert store.count() == 0

    def test_list_all(self, store, root_keys):
        for owner in ("user:a", "user:b", "user:c"):
            store.create(ChainEngine.create(owner, root_keys[1]))
        assert sorted(c.owner_id for c in store.list()) == ["user:a", "user:b", "user:c"]
        assert store.count() == 3

    def test_returned_chain_is_a_copy(self, store, root_keys):
        store.create(build_chain(root_keys, count=1))
        fetched = store.get("user:alice")
        fetched.blocks.clear()
        assert store.get("user:alice").height == 1

    def test_stored_chain_is_a_copy(self, store, root_keys):
        chain = build_chain(root_keys, count=1)
        store.create(chain)
        chain.blocks.clear()
        assert store.get("user:alice").height == 1


class TestFileChainStore:

    def test_missing_file_opens_empty(self, store_path):
        store = FileChainStore(store_path)
        assert store.count() == 0
        assert not store_path.exists()

    def test_empty_file_opens_empty(self, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("")
        assert FileChainStore(store_path).count() == 0

    def test_survives_reopen(self, store_path, root_keys):
        chain = build_chain(root_keys, count=3)
        FileChainStore(store_path).create(chain)

        reopened = FileChainStore(store_path)
        loaded = reopened.get("user:alice")
        assert loaded == chain
        assert ChainEngine.verify(loaded).valid

    def test_document_shape(self, file_store, store_path, root_keys):
        file_store.create(build_chain(root_keys, count=1))
        document = json.loads(store_path.read_text())

        entry = document["chains"]["user:alice"]
        assert set(entry) == {"owner_id", "root_public_key", "created_at", "blocks"}
        assert entry["created_at"].endswith("Z")
        assert set(entry["blocks"][0]) == {
            "index", "prev_hash", "event_hash", "hash", "signature", "signer_public_key",
        }
        assert entry["blocks"][0]["prev_hash"] == "GENESIS"

    def test_file_permissions(self, file_store, store_path, root_keys):
        file_store.create(ChainEngine.create("user:alice", root_keys[1]))
        assert store_path.stat().st_mode & 0o777 == 0o600

    def test_no_temp_files_left_behind(self, file_store, store_path, root_keys):
        file_store.create(ChainEngine.create("user:alice", root_keys[1]))
        assert os.listdir(store_path.parent) == ["chains.json"]

    def test_failed_commit_leaves_state_unchanged(self, file_store, store_path, root_keys, monkeypatch):
        file_store.create(ChainEngine.create("user:alice", root_keys[1]))
        on_disk = store_path.read_text()

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", broken_replace)

        with pytest.raises(StoreIOError, match="disk full"):
            file_store.update(build_chain(root_keys, count=2))
        with pytest.raises(StoreIOError):
            file_store.create(ChainEngine.create("user:bob", root_keys[1]))

        assert file_store.get("user:alice").height == 0
        assert file_store.count() == 1
        assert store_path.read_text() == on_disk
        assert os.listdir(store_path.parent) == ["chains.json"]

    def test_sync_writes(self, store_path, root_keys, monkeypatch):
        synced = []
        real_fsync = os.fsync
        monkeypatch.setattr(os, "fsync", lambda fd: synced.append(fd) or real_fsync(fd))

        store = FileChainStore(store_path, sync_writes=True)
        store.create(ChainEngine.create("user:alice", root_keys[1]))
        assert len(synced) == 1

    def test_corrupt_document(self, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json")
        with pytest.raises(StoreCorruptionError):
            FileChainStore(store_path)

    def test_invalid_chain_entry(self, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text(json.dumps({"chains": {"user:alice": {"owner_id": "user:alice"}}}))
        with pytest.raises(StoreCorruptionError):
            FileChainStore(store_path)


class TestInMemoryChainStore:

    def test_clear(self, memory_store, root_keys):
        memory_store.create(ChainEngine.create("user:alice", root_keys[1]))
        memory_store.clear()
        assert memory_store.count() == 0


class TestReadWriteLock:

    def test_readers_share(self):
        lock = ReadWriteLock()
        inside = threading.Barrier(2, timeout=5)

        def reader():
            with lock.read():
                inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert not inside.broken

    def test_writer_excludes_readers(self):
        lock = ReadWriteLock()
        events = []
        writer_in = threading.Event()
        release = threading.Event()

        def writer():
            with lock.write():
                writer_in.set()
                release.wait(timeout=5)
                events.append("write-done")

        def reader():
            writer_in.wait(timeout=5)
            with lock.read():
                events.append("read")

        w = threading.Thread(target=writer)
        r = threading.Thread(target=reader)
        w.start()
        r.start()
        writer_in.wait(timeout=5)
        release.set()
        w.join(timeout=5)
        r.join(timeout=5)
        assert events == ["write-done", "read"]

    def test_concurrent_creates_are_exclusive(self, memory_store, root_keys):
        outcomes = []

        def attempt():
            try:
                memory_store.create(ChainEngine.create("user:alice", root_keys[1]))
                outcomes.append("created")
            except AlreadyExistsError:
                outcomes.append("exists")

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)
        assert sorted(outcomes) == ["created"] + ["exists"] * 7


class TestStoreConfig:

    def test_defaults(self, monkeypatch):
        for name in ("IDENTITY_STORE_PATH", "IDENTITY_STORE_DRIVER", "IDENTITY_STORE_FSYNC"):
            monkeypatch.delenv(name, raising=False)
        config = StoreConfig.from_env()
        assert config.path == "./data/chains.json"
        assert config.driver == StoreDriver.FILE
        assert config.sync_writes is False

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("IDENTITY_STORE_PATH", str(tmp_path / "c.json"))
        monkeypatch.setenv("IDENTITY_STORE_FSYNC", "true")
        config = StoreConfig.from_env()
        assert config.path == str(tmp_path / "c.json")
        assert config.sync_writes is True

        store = create_chain_store(config)
        assert isinstance(store, FileChainStore)
        assert store.path == tmp_path / "c.json"

    def test_memory_driver(self, monkeypatch):
        monkeypatch.setenv("IDENTITY_STORE_DRIVER", "memory")
        assert isinstance(create_chain_store(), InMemoryChainStore)

    def test_unknown_driver(self, monkeypatch):
        monkeypatch.setenv("IDENTITY_STORE_DRIVER", "postgres")
        with pytest.raises(ValueError, match="Unknown IDENTITY_STORE_DRIVER"):
            StoreConfig.from_env()


class TestServerConfig:

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ("IDENTITY_HTTP_ADDR", "IDENTITY_HTTP_HOST", "IDENTITY_HTTP_PORT"):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        config = ServerConfig.from_env()
        assert (config.host, config.port) == ("0.0.0.0", 8080)

    def test_addr_port_only(self, monkeypatch):
        monkeypatch.setenv("IDENTITY_HTTP_ADDR", ":9090")
        config = ServerConfig.from_env()
        assert (config.host, config.port) == ("0.0.0.0", 9090)

    def test_addr_takes_precedence(self, monkeypatch):
        monkeypatch.setenv("IDENTITY_HTTP_ADDR", "127.0.0.1:7000")
        monkeypatch.setenv("IDENTITY_HTTP_PORT", "1234")
        config = ServerConfig.from_env()
        assert (config.host, config.port) == ("127.0.0.1", 7000)

    def test_host_and_port(self, monkeypatch):
        monkeypatch.setenv("IDENTITY_HTTP_HOST", "localhost")
        monkeypatch.setenv("IDENTITY_HTTP_PORT", "8000")
        config = ServerConfig.from_env()
        assert (config.host, config.port) == ("localhost", 8000)
