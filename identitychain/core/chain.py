"""
Chain Engine - The Heart of the System

An identity chain is an append-only, per-owner event log.
Nothing is "edited". Things happen.

The engine:
- Creates empty chains bound to one root key
- Appends signed, hash-linked blocks
- Verifies full-chain integrity

Rules (enforced in code):
- Only the root key may sign blocks (checked at write time AND verify time)
- Block i has index i
- Block 0 links to "GENESIS"; block i links to block i-1's hash
- hash = SHA256(index|prev_hash|event_hash)
- The signature covers the raw 32 bytes of hash
- Existing blocks are never mutated; append returns a new chain

The engine is pure. It does not persist anything (ChainStore does)
and does not evaluate auth factors (AuthPolicy does).
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional
from uuid import uuid4

from ..schemas import GENESIS_PREV_HASH, BlockLink, IdentityChain, IdentityEvent
from .errors import InvalidInputError, UnauthorizedError
from .hasher import CanonicalSerializationError, Hasher
from .signer import KeyFormatError, Signer


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VerificationStatus(str, Enum):
    VERIFIED = "VERIFIED"
    LINKAGE_ERROR = "LINKAGE_ERROR"
    INTEGRITY_ERROR = "INTEGRITY_ERROR"
    SIGNATURE_ERROR = "SIGNATURE_ERROR"
    ENCODING_ERROR = "ENCODING_ERROR"


@dataclass(frozen=True)
class VerificationReport:
    """
    Outcome of ChainEngine.verify.

    block_index and reason are set only when verification failed.
    """
    status: VerificationStatus
    owner_id: str
    block_count: int
    block_index: Optional[int] = None
    reason: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.status == VerificationStatus.VERIFIED

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        result = {
            "valid": self.valid,
            "status": self.status.value,
            "owner_id": self.owner_id,
            "block_count": self.block_count,
        }
        if not self.valid:
            result["block_index"] = self.block_index
            result["error"] = self.reason
        return result


class ChainEngine:
    """
    Constructs, extends and verifies identity chains.

    CHAIN INTEGRITY GUARANTEES:
    - Index is sequential (0, 1, 2, ...)
    - prev_hash is "GENESIS" ONLY for index 0
    - Every block is signed by the chain's root key
    - Verification re-derives every hash; nothing stored is trusted
    """

    # Clock used for defaulted timestamps. Tests may replace it.
    clock: Callable[[], datetime] = staticmethod(utc_now)

    @classmethod
    def create(cls, owner_id: str, root_public_key: str) -> IdentityChain:
        """
        Build a new, empty chain for an owner.

        Raises:
            InvalidInputError: If owner_id is empty or the public key is malformed
        """
        if not owner_id or not owner_id.strip():
            raise InvalidInputError("owner_id is required")

        if not root_public_key:
            raise InvalidInputError("root_public_key is required")
        try:
            # Stored in canonical form: append and verify compare encoded keys
            root_public_key = Signer.normalize_public_key(root_public_key)
        except KeyFormatError as e:
            raise InvalidInputError(f"invalid root_public_key: {e}") from e

        return IdentityChain(
            owner_id=owner_id,
            root_public_key=root_public_key,
            created_at=cls.clock(),
            blocks=[],
        )

    @classmethod
    def append(
        cls,
        chain: IdentityChain,
        event: IdentityEvent,
        signer_private_key: str,
    ) -> IdentityChain:
        """
        Append an event as the next signed block.

        Preconditions handled by the caller-facing layer: actor_id is
        defaulted to the owner before this is called.

        Returns:
            A new IdentityChain with one more block. The input chain
            is left untouched.

        Raises:
            UnauthorizedError: If the key is missing, malformed, or not the root key
            InvalidInputError: If event type or actor_id is missing
        """
        if not signer_private_key:
            raise UnauthorizedError("signer private key is required")

        try:
            signer_public_key = Signer.public_key_for(signer_private_key)
        except KeyFormatError as e:
            raise UnauthorizedError(f"invalid signer private key: {e}") from e

        if not Hasher.constant_time_compare(signer_public_key, chain.root_public_key):
            raise UnauthorizedError("signer is not the root owner key")

        if event.type is None:
            raise InvalidInputError("event type is required")
        if not event.actor_id:
            raise InvalidInputError("actor_id is required")

        defaults = {}
        if event.timestamp is None:
            defaults["timestamp"] = cls.clock()
        if not event.id:
            defaults["id"] = uuid4().hex
        if defaults:
            event = event.model_copy(update=defaults)

        try:
            event_hash = Hasher.hash_event(event)
        except CanonicalSerializationError as e:
            raise InvalidInputError(f"event cannot be hashed: {e}") from e

        index = len(chain.blocks)
        prev_hash = chain.head_hash
        link_hash = Hasher.hash_link(index, prev_hash, event_hash)

        signature = Signer.sign_bytes(bytes.fromhex(link_hash), signer_private_key)

        link = BlockLink(
            index=index,
            prev_hash=prev_hash,
            event_hash=event_hash,
            hash=link_hash,
            signature=signature,
            signer_public_key=signer_public_key,
        )

        return chain.model_copy(update={"blocks": [*chain.blocks, link]})

    @classmethod
    def verify(cls, chain: IdentityChain) -> VerificationReport:
        """
        Verify a complete chain, front to back.

        Stops at the first failing block: once linkage is broken every
        later prev_hash check is meaningless.

        Never raises for a bad chain; the report carries the diagnosis.
        """
        for position, block in enumerate(chain.blocks):
            failure = cls._verify_block(chain, position, block)
            if failure is not None:
                status, reason = failure
                return VerificationReport(
                    status=status,
                    owner_id=chain.owner_id,
                    block_count=len(chain.blocks),
                    block_index=position,
                    reason=f"block {position}: {reason}",
                )

        return VerificationReport(
            status=VerificationStatus.VERIFIED,
            owner_id=chain.owner_id,
            block_count=len(chain.blocks),
        )

    @staticmethod
    def _verify_block(
        chain: IdentityChain,
        position: int,
        block: BlockLink,
    ) -> Optional[tuple[VerificationStatus, str]]:
        # 1. Position
        if block.index != position:
            return (
                VerificationStatus.LINKAGE_ERROR,
                f"index {block.index} out of sequence, expected {position}",
            )

        # 2. Linkage
        expected_prev = GENESIS_PREV_HASH if position == 0 else chain.blocks[position - 1].hash
        if block.prev_hash != expected_prev:
            return VerificationStatus.LINKAGE_ERROR, "prev hash mismatch"

        # 3. Link hash
        rebuilt = Hasher.hash_link(block.index, block.prev_hash, block.event_hash)
        if not Hasher.constant_time_compare(rebuilt, block.hash):
            return VerificationStatus.INTEGRITY_ERROR, "hash mismatch"

        # 4. Encodings
        if not Hasher.is_hex_digest(block.event_hash):
            return VerificationStatus.ENCODING_ERROR, "event hash is not a hex SHA-256 digest"
        try:
            Signer.decode_public_key(block.signer_public_key)
            Signer.decode_signature(block.signature)
        except KeyFormatError as e:
            return VerificationStatus.ENCODING_ERROR, str(e)
        hash_bytes = bytes.fromhex(block.hash)

        # 5. Single-signer policy
        if block.signer_public_key != chain.root_public_key:
            return VerificationStatus.SIGNATURE_ERROR, "signer is not the chain root key"

        # 6. Signature
        if not Signer.verify_bytes(hash_bytes, block.signature, block.signer_public_key):
            return VerificationStatus.SIGNATURE_ERROR, "signature verification failed"

        return None
