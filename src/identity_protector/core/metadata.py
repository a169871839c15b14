"""
Algorithm identifiers and metadata.

Defines:
- AlgorithmId: stable wire identifiers written into every ciphertext frame
- ImplementationStatus: lifecycle of a registered algorithm
- AlgorithmMetadata: immutable description of a registered cipher

Wire Stability:
    An AlgorithmId value is never reassigned once shipped. New algorithms get
    new values; retired ones keep theirs so old frames stay readable.

Example:
    >>> from identity_protector.core.metadata import AlgorithmId
    >>> AlgorithmId.AES_256_GCM.value
    2
    >>> AlgorithmId.parse("chacha20-poly1305")
    <AlgorithmId.CHACHA20_POLY1305: 3>
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Union

__all__ = [
    "AlgorithmId",
    "ImplementationStatus",
    "AlgorithmMetadata",
]


# ==============================================================================
# ENUM: ALGORITHM ID
# ==============================================================================


class AlgorithmId(IntEnum):
    """
    Wire identifier of an authenticated cipher.

    Values:
        AES_256_CBC_HMAC_SHA256: encrypt-then-MAC (legacy layout, readable forever)
        AES_256_GCM: default for new ciphertexts
        CHACHA20_POLY1305: software-friendly AEAD
    """

    AES_256_CBC_HMAC_SHA256 = 1
    AES_256_GCM = 2
    CHACHA20_POLY1305 = 3

    @property
    def label(self) -> str:
        """Human readable algorithm name, e.g. 'AES-256-GCM'."""
        return _LABELS[self]

    @classmethod
    def parse(cls, value: Union[int, str, "AlgorithmId"]) -> "AlgorithmId":
        """
        Resolve an identifier from its number, enum name or label.

        Args:
            value: 2, "2", "AES_256_GCM" or "aes-256-gcm".

        Returns:
            Matching AlgorithmId.

        Raises:
            ValueError: if nothing matches.
        """
        if isinstance(value, AlgorithmId):
            return value
        if isinstance(value, int):
            return cls(value)

        text = str(value).strip()
        if text.isdigit():
            return cls(int(text))

        normalized = text.upper().replace("-", "_")
        for member in cls:
            if member.name == normalized or member.label.upper() == text.upper():
                return member
        raise ValueError(f"Unknown algorithm: {value!r}")


_LABELS: Dict[AlgorithmId, str] = {
    AlgorithmId.AES_256_CBC_HMAC_SHA256: "AES-256-CBC-HMAC-SHA256",
    AlgorithmId.AES_256_GCM: "AES-256-GCM",
    AlgorithmId.CHACHA20_POLY1305: "ChaCha20-Poly1305",
}


# ==============================================================================
# ENUM: IMPLEMENTATION STATUS
# ==============================================================================


class ImplementationStatus(str, Enum):
    """
    Lifecycle of a registered algorithm.

    STABLE algorithms may be selected as current. LEGACY algorithms stay
    registered so existing frames decrypt, but should not protect new data.
    """

    STABLE = "stable"
    LEGACY = "legacy"


# ==============================================================================
# DATACLASS: ALGORITHM METADATA
# ==============================================================================


@dataclass(frozen=True)
class AlgorithmMetadata:
    """
    Immutable description of a registered cipher.

    Attributes:
        algorithm_id: Wire identifier.
        name: Human readable name.
        library: Python library providing the primitive.
        key_size: Encryption key length in bytes.
        nonce_size: IV length in bytes.
        tag_size: Authentication tag length in bytes.
        status: Lifecycle status.
        description: Short description.
    """

    algorithm_id: int
    name: str
    library: str
    key_size: int
    nonce_size: int
    tag_size: int
    status: ImplementationStatus = ImplementationStatus.STABLE
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("name cannot be empty")
        if self.algorithm_id <= 0:
            raise ValueError("algorithm_id must be positive")
        for attr in ("key_size", "nonce_size", "tag_size"):
            if getattr(self, attr) <= 0:
                raise ValueError(f"{attr} must be positive")

    def is_safe_for_new_data(self) -> bool:
        """True if the algorithm may protect new data."""
        return self.status == ImplementationStatus.STABLE
