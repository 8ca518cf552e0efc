# Core identity chain services
from .errors import (
    IdentityChainError,
    InvalidInputError,
    UnauthorizedError,
    InsufficientFactorsError,
)
from .hasher import Hasher, CanonicalSerializationError
from .signer import Signer, KeyFormatError
from .auth import AuthPolicy
from .chain import (
    ChainEngine,
    VerificationReport,
    VerificationStatus,
)
from .service import IdentityService, CreatedChain

__all__ = [
    "IdentityChainError",
    "InvalidInputError",
    "UnauthorizedError",
    "InsufficientFactorsError",
    "Hasher",
    "CanonicalSerializationError",
    "Signer",
    "KeyFormatError",
    "AuthPolicy",
    "ChainEngine",
    "VerificationReport",
    "VerificationStatus",
    "IdentityService",
    "CreatedChain",
]
