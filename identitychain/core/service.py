"""
Identity Service - caller-facing layer over the chain core.

Maps 1:1 onto the operations the transport layer exposes:
- create_chain: new chain, optionally generating the root keypair
- get_chain / list_chains: reads
- append_event: AuthPolicy gate -> load -> engine append -> store update
- verify_chain: full integrity check

The service holds no chain state of its own. The store is the single
source of truth and is passed in explicitly.

CONCURRENCY NOTE:
append_event is read-modify-write without a version token. Two
concurrent appends to the SAME owner can lose one update (last
writer wins). Callers needing stronger guarantees must serialize
appends per owner externally.
"""

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from ..observability import get_logger, get_metrics
from ..schemas import AuthContext, IdentityChain, IdentityEvent
from .auth import AuthPolicy
from .chain import ChainEngine, VerificationReport
from .errors import UnauthorizedError
from .signer import Signer

if TYPE_CHECKING:
    from ..db.store import ChainStore


logger = get_logger(__name__)


@dataclass(frozen=True)
class CreatedChain:
    """
    Result of create_chain.

    root_private_key is set only when the service generated the
    keypair. It is returned exactly once and never stored.
    """
    chain: IdentityChain
    root_private_key: Optional[str] = None


class IdentityService:
    """Composes AuthPolicy, ChainEngine and a ChainStore."""

    def __init__(self, store: "ChainStore"):
        self._store = store

    @property
    def store(self) -> "ChainStore":
        """Get the underlying chain store."""
        return self._store

    def create_chain(
        self,
        owner_id: str,
        root_public_key: Optional[str] = None,
    ) -> CreatedChain:
        """
        Create and persist an empty chain for an owner.

        If no public key is supplied a fresh keypair is generated and
        its private key is handed back in the result.

        Raises:
            InvalidInputError: Missing owner or malformed public key
            AlreadyExistsError: A chain already exists for this owner
        """
        private_key = None
        if not root_public_key:
            private_key, root_public_key = Signer.generate_keypair()

        chain = ChainEngine.create(owner_id, root_public_key)
        self._store.create(chain)

        get_metrics().increment("chains_created")
        logger.info(
            "Chain created",
            owner_id=owner_id,
            generated_key=private_key is not None,
        )
        return CreatedChain(chain=chain, root_private_key=private_key)

    def get_chain(self, owner_id: str) -> IdentityChain:
        """Fetch a chain. Raises NotFoundError if absent."""
        return self._store.get(owner_id)

    def list_chains(self) -> list[IdentityChain]:
        """List every stored chain (order unspecified)."""
        return self._store.list()

    def append_event(
        self,
        owner_id: str,
        event: IdentityEvent,
        signer_private_key: str,
        auth: AuthContext,
    ) -> IdentityChain:
        """
        Append an event to an owner's chain, gated by AuthPolicy.

        Defaults applied here before the engine runs:
        - actor_id -> owner_id when empty
        - timestamp -> now (UTC) when absent

        Raises:
            InsufficientFactorsError: Auth evidence rejected
            UnauthorizedError: Signer key is not the chain's root key
            InvalidInputError: Event missing a type
            NotFoundError: No chain for owner_id
            StoreIOError: The commit could not be written
        """
        start = time.perf_counter()
        metrics = get_metrics()

        try:
            AuthPolicy.validate_root_action(auth)
        except UnauthorizedError as e:
            metrics.increment("append_rejections")
            logger.warning("Append rejected by auth policy", owner_id=owner_id, reason=str(e))
            raise

        chain = self._store.get(owner_id)

        defaults = {}
        if event.timestamp is None:
            defaults["timestamp"] = ChainEngine.clock()
        if not event.actor_id:
            defaults["actor_id"] = owner_id
        if defaults:
            event = event.model_copy(update=defaults)

        try:
            updated = ChainEngine.append(chain, event, signer_private_key)
        except UnauthorizedError as e:
            metrics.increment("append_rejections")
            logger.warning("Append rejected", owner_id=owner_id, reason=str(e))
            raise

        self._store.update(updated)

        metrics.record_append((time.perf_counter() - start) * 1000)
        head = updated.blocks[-1]
        logger.info(
            "Block appended",
            owner_id=owner_id,
            index=head.index,
            block_hash=head.hash[:16],
        )
        return updated

    def verify_chain(self, owner_id: str) -> VerificationReport:
        """Load and verify a chain. Raises NotFoundError if absent."""
        report = ChainEngine.verify(self._store.get(owner_id))

        get_metrics().record_verification(report.valid)
        if report.valid:
            logger.info("Chain verified", owner_id=owner_id, block_count=report.block_count)
        else:
            logger.error(
                "Chain verification FAILED",
                owner_id=owner_id,
                status=report.status.value,
                block_index=report.block_index,
                reason=report.reason,
            )
        return report

    def verify_all(self) -> list[VerificationReport]:
        """Verify every stored chain."""
        reports = [ChainEngine.verify(chain) for chain in self._store.list()]
        for report in reports:
            get_metrics().record_verification(report.valid)
        return reports
