"""
Cryptographic Hashing Service

Handles deterministic serialization and SHA-256 hashing for identity chains.
Same input → same hash. Always. Forever.

Two hashes exist in an identity chain:
- event_hash: SHA-256 of the canonical JSON of an IdentityEvent
- hash (link hash): SHA-256 of "index|prev_hash|event_hash"

If either encoding changes, every existing chain stops verifying.
Every change here must be backward-compatible or versioned.

CANONICAL SERIALIZATION RULES:
1. Version: "__canon_v" injected into every canonical output (first key when sorted)
2. Dictionary keys: sorted recursively (Unicode codepoint order)
3. Nulls: omitted entirely (not serialized as null)
4. Empty strings, lists and dicts: preserved (they are valid data)
5. Datetimes: ISO 8601 with microseconds, forced to UTC, Z suffix
6. Enums: string value (not name)
7. Floats, sets and bytes: BANNED
8. JSON output: no extra whitespace, sorted keys, ASCII only
9. Top-level: must be dict/object (not list/primitive)
"""

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class CanonicalSerializationError(Exception):
    """Raised when data cannot be canonically serialized."""
    pass


class Hasher:
    """
    Canonical serialization and hashing.

    IMMUTABLE CONTRACT:
    - Same logical input → same hash
    - Across platforms
    - Across implementations that follow the rules above
    """

    # Increment this if serialization rules change in breaking ways
    SERIALIZATION_VERSION = 1

    # Fields of an IdentityEvent that take part in event_hash
    EVENT_FIELDS = ("id", "type", "timestamp", "actor_id", "risk", "payload")

    @classmethod
    def _serialize_value(cls, value: Any, path: str = "") -> Any:
        """
        Convert Python objects to JSON-serializable canonical format.

        Raises:
            CanonicalSerializationError: If value cannot be serialized deterministically
        """
        if value is None:
            return None  # Filtered out by _to_canonical_dict

        if isinstance(value, datetime):
            return cls._serialize_datetime(value, path)

        # Enum - use value, not name
        if isinstance(value, Enum):
            return value.value

        if isinstance(value, bool):
            return value

        if isinstance(value, int):
            return value

        if isinstance(value, float):
            raise CanonicalSerializationError(
                f"Cannot serialize float at {path}. "
                "Floats are banned in canonical payloads due to platform-dependent "
                "serialization. Use a string instead."
            )

        if isinstance(value, str):
            return value

        if isinstance(value, (list, tuple)):
            return [
                cls._serialize_value(v, f"{path}[{i}]")
                for i, v in enumerate(value)
            ]

        if isinstance(value, dict):
            return cls._to_canonical_dict(value, path)

        if hasattr(value, "model_dump"):
            return cls._to_canonical_dict(value.model_dump(mode="python"), path)

        if isinstance(value, bytes):
            raise CanonicalSerializationError(
                f"Cannot serialize bytes at {path}. "
                "Convert to base64 string first."
            )

        if isinstance(value, (set, frozenset)):
            raise CanonicalSerializationError(
                f"Cannot serialize set at {path}. "
                "Sets have no stable ordering. Convert to sorted list first."
            )

        raise CanonicalSerializationError(
            f"Cannot serialize {type(value).__name__} at {path}. "
            "Only JSON-compatible types are allowed."
        )

    @classmethod
    def _serialize_datetime(cls, dt: datetime, path: str) -> str:
        """
        Serialize datetime to canonical ISO 8601 format.

        Format: YYYY-MM-DDTHH:MM:SS.ffffffZ
        """
        if dt.tzinfo is None:
            raise CanonicalSerializationError(
                f"Datetime at {path} is timezone-naive. "
                "All datetimes must be timezone-aware for deterministic serialization. "
                "Use datetime.now(timezone.utc) or attach a timezone."
            )

        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.strftime("%Y-%m-%dT%H:%M:%S.") + \
               f"{utc_dt.microsecond:06d}Z"

    @classmethod
    def _to_canonical_dict(
        cls,
        data: dict[str, Any],
        path: str = ""
    ) -> dict[str, Any]:
        """
        Convert a dict to canonical form.

        - Keys sorted (Unicode code point order)
        - None values omitted
        - Empty strings, lists, dicts preserved
        """
        result = {}

        for key in sorted(data.keys(), key=str):
            if not isinstance(key, str):
                raise CanonicalSerializationError(
                    f"Dictionary key at {path} must be string, "
                    f"got {type(key).__name__}"
                )

            key_path = f"{path}.{key}" if path else key
            serialized = cls._serialize_value(data[key], key_path)

            if serialized is not None:
                result[key] = serialized

        return result

    @classmethod
    def canonicalize(cls, data: dict[str, Any] | Any) -> str:
        """
        Convert data to canonical JSON string.

        Args:
            data: Dict or Pydantic model to serialize

        Returns:
            Canonical JSON string with version marker

        Raises:
            CanonicalSerializationError: If data cannot be deterministically serialized
        """
        if hasattr(data, "model_dump"):
            data = data.model_dump(mode="python")

        if not isinstance(data, dict):
            raise CanonicalSerializationError(
                f"Top-level canonicalization requires a dict/object, "
                f"got {type(data).__name__}. Events must be objects."
            )

        canonical_dict = cls._to_canonical_dict(data)

        # "__canon_v" sorts first due to the underscore
        canonical_dict = {"__canon_v": cls.SERIALIZATION_VERSION, **canonical_dict}

        return json.dumps(
            canonical_dict,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
            allow_nan=False,
        )

    @classmethod
    def hash_data(cls, data: dict[str, Any] | Any) -> str:
        """
        Hash data using SHA-256.

        Returns:
            Hex-encoded SHA-256 hash (64 characters, lowercase)
        """
        canonical = cls.canonicalize(data)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    @classmethod
    def hash_event(cls, event: Any) -> str:
        """
        Compute the event_hash of an IdentityEvent.

        Only the six event fields are hashed. An absent payload hashes
        the same as an empty one.
        """
        if hasattr(event, "model_dump"):
            event = event.model_dump(mode="python")

        fields = {name: event.get(name) for name in cls.EVENT_FIELDS}
        if fields["payload"] is None:
            fields["payload"] = {}

        return cls.hash_data(fields)

    @staticmethod
    def hash_link(index: int, prev_hash: str, event_hash: str) -> str:
        """
        Compute the link hash binding a block to its position and predecessor.

        FORMAT: SHA256("{index}|{prev_hash}|{event_hash}")
        """
        raw = f"{index}|{prev_hash}|{event_hash}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    @staticmethod
    def is_hex_digest(value: str) -> bool:
        """Check that value is a 64-character lowercase hex SHA-256 digest."""
        return len(value) == 64 and all(c in "0123456789abcdef" for c in value)

    @staticmethod
    def constant_time_compare(a: str, b: str) -> bool:
        """
        Compare two strings in constant time.

        Prevents timing attacks where an attacker could learn
        about the hash by measuring comparison time.
        """
        if len(a) != len(b):
            return False

        result = 0
        for x, y in zip(a, b):
            result |= ord(x) ^ ord(y)

        return result == 0
