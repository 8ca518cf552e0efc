"""
IdentityChain - per-owner, append-only, signed identity event logs.
"""

__version__ = "0.1.0"
