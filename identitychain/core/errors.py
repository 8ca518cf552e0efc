"""
Error taxonomy for identity chains.

Nothing here is retried automatically. Callers decide recovery policy.

- InvalidInputError: malformed request (missing owner, event type, actor)
- UnauthorizedError: signer key mismatch, missing key, failed auth factors
- Store errors live in identitychain.db.store and share the same base

Verification problems are NOT exceptions: ChainEngine.verify returns
a VerificationReport describing the first failing block.
"""


class IdentityChainError(Exception):
    """Base exception for identity chain errors."""
    pass


class InvalidInputError(IdentityChainError):
    """Raised when a request is missing required data."""
    pass


class UnauthorizedError(IdentityChainError):
    """Raised when the caller is not allowed to mutate a chain."""
    pass


class InsufficientFactorsError(UnauthorizedError):
    """Raised when authentication evidence does not satisfy the root-action policy."""
    pass
