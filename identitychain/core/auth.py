"""
Root-Action Authorization Policy

Every mutating action on an identity chain must pass this gate first.

Rules:
- A long passphrase is always required
- Secondary factors: email OTP, TOTP, hardware key
- risk=normal needs 2 of 3 secondary factors
- risk=high needs all 3

The policy is pure: no I/O, no state. ChainEngine does not call it;
the caller-facing layer does, so both can be tested independently.
"""

from ..schemas import AuthContext, RiskLevel
from .errors import InsufficientFactorsError


class AuthPolicy:
    """Stateless predicate over an AuthContext."""

    REQUIRED_FACTORS = {
        RiskLevel.NORMAL: 2,
        RiskLevel.HIGH: 3,
    }

    @classmethod
    def required_factors(cls, risk: RiskLevel) -> int:
        """Number of secondary factors required for a risk tier."""
        return cls.REQUIRED_FACTORS[RiskLevel(risk)]

    @classmethod
    def validate_root_action(cls, context: AuthContext) -> None:
        """
        Check that the presented factors allow a root action.

        Raises:
            InsufficientFactorsError: If the long phrase is missing or
                too few secondary factors are present
        """
        if not context.long_phrase:
            raise InsufficientFactorsError("long phrase required")

        required = cls.required_factors(context.risk)
        present = context.secondary_factor_count
        if present < required:
            raise InsufficientFactorsError(
                f"insufficient secondary factors: {present} of {required} "
                f"required for risk={RiskLevel(context.risk).value}"
            )

    @classmethod
    def is_allowed(cls, context: AuthContext) -> bool:
        """Boolean form of validate_root_action."""
        try:
            cls.validate_root_action(context)
            return True
        except InsufficientFactorsError:
            return False
