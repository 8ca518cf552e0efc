"""
Authentication evidence for root actions.

The factors are attested by whatever performed the authentication
(the transport layer). This schema only carries the outcome.
"""

from enum import Enum

from pydantic import BaseModel, Field


class RiskLevel(str, Enum):
    """Caller-declared sensitivity of an action. Sizes the factor requirement."""
    NORMAL = "normal"
    HIGH = "high"


class AuthContext(BaseModel):
    """Factors presented for a root action on an identity chain."""
    long_phrase: bool = Field(default=False, description="Long passphrase verified")
    email_otp: bool = Field(default=False, description="Email one-time code verified")
    totp: bool = Field(default=False, description="Authenticator app code verified")
    hardware_key: bool = Field(default=False, description="Hardware security key verified")
    risk: RiskLevel = Field(default=RiskLevel.NORMAL)

    @property
    def secondary_factor_count(self) -> int:
        """Number of secondary factors present."""
        return sum((self.email_otp, self.totp, self.hardware_key))
