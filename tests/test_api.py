"""
HTTP tests for the FastAPI app.

Run against an in-memory store injected through create_app.
"""

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from identitychain.core import Signer
from identitychain.db import InMemoryChainStore
from identitychain.main import create_app


FULL_AUTH = {
    "long_phrase": True,
    "email_otp": True,
    "totp": True,
    "hardware_key": True,
    "risk": "high",
}


@pytest.fixture
def store():
    return InMemoryChainStore()


@pytest.fixture
def client(store):
    with TestClient(create_app(store=store)) as test_client:
        yield test_client


@pytest.fixture
def alice(client):
    """Create user:alice with a server-generated key; return the private key."""
    response = client.post("/chains", json={"owner_id": "user:alice"})
    assert response.status_code == 201
    return response.json()["root_private_key"]


def _append(client, owner_id, private_key, auth=None, **event):
    body = {
        "event": {"type": "login", **event},
        "signer_private_key": private_key,
        "auth": auth if auth is not None else FULL_AUTH,
    }
    return client.post(f"/chains/{owner_id}/events", json=body)


class TestSystemEndpoints:

    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_health_reports_store(self, client, alice):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["checks"]["chain_store"]["chain_count"] == 1
        assert body["checks"]["chain_store"]["backend"] == "InMemoryChainStore"

    def test_metrics(self, client, alice):
        body = client.get("/metrics").json()
        assert body["chains_created"] == 1

    def test_request_id_echoed(self, client):
        response = client.get("/healthz", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"


class TestCreateChain:

    def test_generated_key_returned_once(self, client, alice):
        chain = client.get("/chains/user:alice").json()
        assert Signer.public_key_for(alice) == chain["root_public_key"]
        assert "root_private_key" not in chain

    def test_supplied_key_not_echoed(self, client, root_keys):
        response = client.post(
            "/chains",
            json={"owner_id": "user:bob", "root_public_key": root_keys[1]},
        )
        assert response.status_code == 201
        body = response.json()
        assert "root_private_key" not in body
        assert body["chain"]["root_public_key"] == root_keys[1]
        assert body["chain"]["blocks"] == []
        assert body["chain"]["created_at"].endswith("Z")

    def test_duplicate_is_conflict(self, client, alice):
        response = client.post("/chains", json={"owner_id": "user:alice"})
        assert response.status_code == 409

    def test_missing_owner_is_bad_request(self, client):
        assert client.post("/chains", json={}).status_code == 400

    def test_malformed_key_is_bad_request(self, client):
        response = client.post(
            "/chains",
            json={"owner_id": "user:bob", "root_public_key": "not-a-key"},
        )
        assert response.status_code == 400


class TestQueries:

    def test_get_missing(self, client):
        response = client.get("/chains/user:nobody")
        assert response.status_code == 404
        assert response.json()["detail"] == "chain not found"

    def test_list(self, client, alice):
        chains = client.get("/chains").json()["chains"]
        assert [c["owner_id"] for c in chains] == ["user:alice"]

    def test_list_empty(self, client):
        assert client.get("/chains").json() == {"chains": []}


class TestAppend:

    def test_append_and_verify(self, client, alice):
        response = _append(client, "user:alice", alice, payload={"ip": "203.0.113.7"})
        assert response.status_code == 201
        assert response.json()["blocks"][0]["prev_hash"] == "GENESIS"

        response = _append(client, "user:alice", alice)
        assert response.status_code == 201
        blocks = response.json()["blocks"]
        assert blocks[1]["prev_hash"] == blocks[0]["hash"]

        report = client.get("/chains/user:alice/verify").json()
        assert report == {
            "valid": True,
            "status": "VERIFIED",
            "owner_id": "user:alice",
            "block_count": 2,
        }

    def test_insufficient_factors_unauthorized(self, client, alice):
        response = _append(
            client, "user:alice", alice,
            auth={"long_phrase": True, "email_otp": True},
        )
        assert response.status_code == 401
        assert "insufficient secondary factors" in response.json()["detail"]

    def test_missing_long_phrase_unauthorized(self, client, alice):
        auth = dict(FULL_AUTH, long_phrase=False)
        response = _append(client, "user:alice", alice, auth=auth)
        assert response.status_code == 401

    def test_wrong_signer_unauthorized(self, client, alice, other_keys):
        response = _append(client, "user:alice", other_keys[0])
        assert response.status_code == 401
        assert client.get("/chains/user:alice").json()["blocks"] == []

    def test_missing_type_bad_request(self, client, alice):
        body = {"event": {}, "signer_private_key": alice, "auth": FULL_AUTH}
        response = client.post("/chains/user:alice/events", json=body)
        assert response.status_code == 400

    def test_unknown_owner_not_found(self, client, root_keys):
        response = _append(client, "user:nobody", root_keys[0])
        assert response.status_code == 404


class TestVerify:

    def test_verify_missing(self, client):
        assert client.get("/chains/user:nobody/verify").status_code == 404

    def test_tampered_chain_reports_block(self, client, store, alice):
        _append(client, "user:alice", alice)
        _append(client, "user:alice", alice)

        chain = store.get("user:alice")
        blocks = list(chain.blocks)
        blocks[1] = blocks[1].model_copy(update={"prev_hash": "0" * 64})
        store.update(chain.model_copy(update={"blocks": blocks}))

        response = client.get("/chains/user:alice/verify")
        assert response.status_code == 200
        report = response.json()
        assert report["valid"] is False
        assert report["status"] == "LINKAGE_ERROR"
        assert report["block_index"] == 1
        assert report["error"] == "block 1: prev hash mismatch"
