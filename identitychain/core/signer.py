"""
Cryptographic Signing Service

Uses Ed25519 for signing identity chain links.
Every block is signed by the chain's root key over the raw
32 bytes of its link hash.

Key encoding:
- Public keys: base64 of the raw 32-byte verify key
- Private keys: base64 of the 32-byte seed (the 64-byte seed||public
  form used by other Ed25519 libraries is also accepted)
- Signatures: base64 of the raw 64-byte signature
"""

import base64
import binascii
from typing import Tuple

from nacl.signing import SigningKey, VerifyKey
from nacl.exceptions import BadSignatureError


PUBLIC_KEY_SIZE = 32
SEED_SIZE = 32
SIGNATURE_SIZE = 64


class KeyFormatError(ValueError):
    """Raised when a key or signature is not validly encoded."""
    pass


def _b64decode(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyFormatError(f"{what} is not valid base64: {e}") from e


class Signer:
    """
    Ed25519 signing for identity chains.

    All methods are static: keys travel as base64 strings and
    nothing is cached between calls.
    """

    @staticmethod
    def generate_keypair() -> Tuple[str, str]:
        """
        Generate a new Ed25519 keypair.

        Returns:
            Tuple of (private_key_b64, public_key_b64)
        """
        signing_key = SigningKey.generate()
        verify_key = signing_key.verify_key

        private_b64 = base64.b64encode(bytes(signing_key)).decode("utf-8")
        public_b64 = base64.b64encode(bytes(verify_key)).decode("utf-8")

        return private_b64, public_b64

    @staticmethod
    def load_signing_key(private_key_b64: str) -> SigningKey:
        """
        Decode a base64 private key into a SigningKey.

        Raises:
            KeyFormatError: If the key is not base64 or has the wrong length
        """
        raw = _b64decode(private_key_b64, "private key")

        if len(raw) == SEED_SIZE + PUBLIC_KEY_SIZE:
            seed, embedded_public = raw[:SEED_SIZE], raw[SEED_SIZE:]
            signing_key = SigningKey(seed)
            if bytes(signing_key.verify_key) != embedded_public:
                raise KeyFormatError(
                    "private key embeds a public key that does not match its seed"
                )
            return signing_key

        if len(raw) != SEED_SIZE:
            raise KeyFormatError(
                f"private key must be {SEED_SIZE} or {SEED_SIZE + PUBLIC_KEY_SIZE} bytes, "
                f"got {len(raw)}"
            )
        return SigningKey(raw)

    @staticmethod
    def public_key_for(private_key_b64: str) -> str:
        """Derive the base64 public key for a base64 private key."""
        signing_key = Signer.load_signing_key(private_key_b64)
        return base64.b64encode(bytes(signing_key.verify_key)).decode("utf-8")

    @staticmethod
    def decode_public_key(public_key_b64: str) -> bytes:
        """Decode a base64 public key, requiring exactly 32 raw bytes."""
        raw = _b64decode(public_key_b64, "public key")
        if len(raw) != PUBLIC_KEY_SIZE:
            raise KeyFormatError(
                f"public key must be {PUBLIC_KEY_SIZE} bytes, got {len(raw)}"
            )
        return raw

    @staticmethod
    def normalize_public_key(public_key_b64: str) -> str:
        """
        Re-encode a base64 public key in canonical form.

        base64 decoding tolerates non-zero padding bits in the final
        character, so two different strings can name the same key.
        """
        raw = Signer.decode_public_key(public_key_b64)
        return base64.b64encode(raw).decode("utf-8")

    @staticmethod
    def decode_signature(signature_b64: str) -> bytes:
        """Decode a base64 signature, requiring exactly 64 raw bytes."""
        raw = _b64decode(signature_b64, "signature")
        if len(raw) != SIGNATURE_SIZE:
            raise KeyFormatError(
                f"signature must be {SIGNATURE_SIZE} bytes, got {len(raw)}"
            )
        return raw

    @staticmethod
    def sign_bytes(data: bytes, private_key_b64: str) -> str:
        """
        Sign raw bytes with Ed25519.

        Args:
            data: The bytes to sign (a decoded link hash)
            private_key_b64: Base64-encoded private key

        Returns:
            Base64-encoded signature
        """
        signing_key = Signer.load_signing_key(private_key_b64)
        signed = signing_key.sign(data)
        return base64.b64encode(signed.signature).decode("utf-8")

    @staticmethod
    def verify_bytes(
        data: bytes,
        signature_b64: str,
        public_key_b64: str
    ) -> bool:
        """
        Verify an Ed25519 signature over raw bytes.

        Returns:
            True if signature is valid, False otherwise (including
            malformed keys or signatures)
        """
        try:
            verify_key = VerifyKey(Signer.decode_public_key(public_key_b64))
            verify_key.verify(data, Signer.decode_signature(signature_b64))
            return True
        except (BadSignatureError, KeyFormatError):
            return False
