"""Shared fixtures for the identity chain test suite."""

from datetime import datetime, timezone

import pytest

from identitychain.core import ChainEngine, Signer
from identitychain.db import FileChainStore, InMemoryChainStore
from identitychain.observability import reset_metrics
from identitychain.schemas import AuthContext, EventType, IdentityEvent, RiskLevel


FIXED_NOW = datetime(2024, 3, 16, 9, 0, 0, 123456, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def fresh_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def fixed_clock(monkeypatch):
    """Pin ChainEngine's clock so defaulted timestamps are predictable."""
    monkeypatch.setattr(ChainEngine, "clock", staticmethod(lambda: FIXED_NOW))
    return FIXED_NOW


@pytest.fixture
def root_keys():
    """(private_key, public_key) for a chain root."""
    return Signer.generate_keypair()


@pytest.fixture
def other_keys():
    """A keypair that is NOT the chain root."""
    return Signer.generate_keypair()


@pytest.fixture
def memory_store():
    return InMemoryChainStore()


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "data" / "chains.json"


@pytest.fixture
def file_store(store_path):
    return FileChainStore(store_path)


@pytest.fixture
def full_auth():
    """Evidence that satisfies both risk tiers."""
    return AuthContext(
        long_phrase=True,
        email_otp=True,
        totp=True,
        hardware_key=True,
        risk=RiskLevel.HIGH,
    )


def make_event(event_type=EventType.LOGIN, **overrides):
    fields = {
        "type": event_type,
        "actor_id": "user:alice",
        "timestamp": FIXED_NOW,
        "payload": {"ip": "203.0.113.7"},
    }
    fields.update(overrides)
    return IdentityEvent(**fields)


def build_chain(root_keys, count=3, owner_id="user:alice"):
    """Create a chain and append `count` events signed by the root key."""
    private_key, public_key = root_keys
    chain = ChainEngine.create(owner_id, public_key)
    for i in range(count):
        chain = ChainEngine.append(
            chain,
            make_event(id=f"evt-{i}", payload={"seq": str(i)}),
            private_key,
        )
    return chain
