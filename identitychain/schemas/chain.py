"""
Canonical Identity Chain Schema

An identity chain is append-only, not CRUD.
Nothing is "edited". Things happen.

Each event:
- Is hashed (event_hash)
- Is wrapped in a BlockLink bound to its predecessor
- Is signed by the chain's root key
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


GENESIS_PREV_HASH = "GENESIS"


class EventType(str, Enum):
    """
    All possible identity event types.
    You can add more later, never remove.
    """
    IDENTITY_ASSERTION = "identity_assertion"
    LOGIN = "login"
    VERIFICATION = "verification"
    AUTHORIZATION = "authorization"
    RECOVERY = "recovery"


def _rfc3339(dt: datetime) -> str:
    utc_dt = dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return utc_dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_dt.microsecond:06d}Z"


class IdentityEvent(BaseModel):
    """
    One unit of user activity.

    The event itself is never stored. Only its hash is kept in the
    chain, so the caller is responsible for retaining event bodies.
    """
    id: str = Field(
        default="",
        description="Opaque identifier, unique within a chain. Empty = generate one."
    )
    type: Optional[EventType] = Field(
        default=None,
        description="Category of identity event"
    )
    timestamp: Optional[datetime] = Field(
        default=None,
        description="UTC instant. Defaulted to now at append time if absent."
    )
    actor_id: str = Field(
        default="",
        description="Acting principal. Defaulted to the chain owner if absent."
    )
    risk: str = Field(
        default="",
        description="Free-form risk tag supplied by the caller (not validated)"
    )
    payload: dict[str, str] = Field(
        default_factory=dict,
        description="Caller-defined string map"
    )

    @field_validator("payload", mode="before")
    @classmethod
    def _none_payload_is_empty(cls, value):
        return {} if value is None else value


class BlockLink(BaseModel):
    """
    One immutable, ordered, signed wrapper around an event hash.

    Frozen: build a new BlockLink with model_copy(update=...) instead
    of mutating one.
    """
    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0, description="Zero-based position in the chain")
    prev_hash: str = Field(
        ...,
        description='Hash of the preceding block, or "GENESIS" for index 0'
    )
    event_hash: str = Field(..., description="SHA-256 of the canonical event")
    hash: str = Field(..., description="SHA-256 of index|prev_hash|event_hash")
    signature: str = Field(..., description="Base64 Ed25519 signature over the raw hash bytes")
    signer_public_key: str = Field(..., description="Base64 public key that produced the signature")

    @property
    def is_genesis(self) -> bool:
        """Check if this is the first block of a chain."""
        return self.index == 0


class IdentityChain(BaseModel):
    """
    The aggregate root, one per owner.

    root_public_key is fixed at creation and is the only key ever
    allowed to sign blocks in this chain.
    """
    owner_id: str = Field(..., description="Unique owner identifier (store primary key)")
    root_public_key: str = Field(..., description="Base64 Ed25519 public key (32 raw bytes)")
    created_at: datetime = Field(..., description="UTC creation instant")
    blocks: list[BlockLink] = Field(default_factory=list)

    @field_serializer("created_at", when_used="json")
    def _serialize_created_at(self, value: datetime) -> str:
        return _rfc3339(value)

    @property
    def height(self) -> int:
        """Number of blocks in the chain."""
        return len(self.blocks)

    @property
    def head_hash(self) -> str:
        """Hash the next block must link to."""
        if not self.blocks:
            return GENESIS_PREV_HASH
        return self.blocks[-1].hash

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "owner_id": "user:alice",
                "root_public_key": "base64publickey...",
                "created_at": "2024-03-16T09:00:00.000000Z",
                "blocks": [
                    {
                        "index": 0,
                        "prev_hash": "GENESIS",
                        "event_hash": "abc123...",
                        "hash": "def456...",
                        "signature": "base64signature...",
                        "signer_public_key": "base64publickey...",
                    }
                ],
            }
        }
    )
