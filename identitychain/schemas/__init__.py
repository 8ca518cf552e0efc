# Canonical Schemas for Identity Chains
# These define the contract that every persisted chain must obey.

from .chain import (
    GENESIS_PREV_HASH,
    BlockLink,
    EventType,
    IdentityChain,
    IdentityEvent,
)
from .auth import AuthContext, RiskLevel

__all__ = [
    # Chain
    "GENESIS_PREV_HASH",
    "BlockLink",
    "EventType",
    "IdentityChain",
    "IdentityEvent",
    # Auth
    "AuthContext",
    "RiskLevel",
]
