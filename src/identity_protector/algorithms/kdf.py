"""
Key derivation: master key → (encryption key, signing key) per role.

HKDF-SHA256 (RFC 5869) expands one high-entropy master key into two
independent subkeys for each protector role:

    encryption_key = HKDF(master, info=b"identity-protector/encryption\\x00" + role)
    signing_key    = HKDF(master, info=b"identity-protector/signing\\x00" + role)

Lengths follow the cipher in use (cipher.key_size, cipher.signing_key_size),
so the same master key serves every registered algorithm.

Security Notes:
    - Master keys are random (never passwords), so no salt and no stretching.
    - Distinct info strings give independent subkeys for the two purposes
      and for the two roles. A lookup value and a personal value protected
      under the same master key never share an encryption key.

Example:
    >>> pair = KeyDerivation().derive(master, Role.LOOKUP, AES256GCM())
    >>> len(pair.encryption_key), len(pair.signing_key)
    (32, 32)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Final, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from identity_protector.core.exceptions import KeyDerivationError
from identity_protector.core.protocols import AuthenticatedCipherProtocol

_LOGGER: Final = logging.getLogger(__name__)

ENCRYPTION_INFO_PREFIX: Final[bytes] = b"identity-protector/encryption\x00"
SIGNING_INFO_PREFIX: Final[bytes] = b"identity-protector/signing\x00"

# RFC 5869: at most 255 * HashLen output bytes
_MAX_OUTPUT: Final[int] = 255 * 32

__all__ = [
    "Role",
    "DerivedKeyPair",
    "KeyDerivation",
    "hkdf_sha256",
]


class Role(str, Enum):
    """Protector role used as HKDF context."""

    LOOKUP = "lookup"
    PERSONAL = "personal"


@dataclass(frozen=True)
class DerivedKeyPair:
    """Encryption and signing subkeys for one (master key, role, cipher)."""

    encryption_key: bytes = field(repr=False)
    signing_key: bytes = field(repr=False)

    def __repr__(self) -> str:
        return (
            f"DerivedKeyPair(encryption_key=<{len(self.encryption_key)} bytes>, "
            f"signing_key=<{len(self.signing_key)} bytes>)"
        )


def hkdf_sha256(master_key: bytes, info: bytes, length: int) -> bytes:
    """
    HKDF-SHA256 extract-and-expand without salt.

    Raises:
        KeyDerivationError: on invalid length or primitive failure.
    """
    if length <= 0 or length > _MAX_OUTPUT:
        raise KeyDerivationError(
            f"HKDF-SHA256 output length must be in 1..{_MAX_OUTPUT}, got {length}",
            algorithm="HKDF-SHA256",
        )
    try:
        hkdf = HKDF(algorithm=hashes.SHA256(), length=length, salt=None, info=info)
        return hkdf.derive(master_key)
    except Exception as exc:
        raise KeyDerivationError(
            f"HKDF-SHA256 derivation failed: {exc.__class__.__name__}",
            algorithm="HKDF-SHA256",
        ) from exc


class KeyDerivation:
    """
    Deterministic subkey derivation.

    Same inputs always give the same pair; any change to master key, role
    or cipher sizes gives unrelated keys.
    """

    def derive(
        self,
        master_key: bytes,
        role: Union[Role, str],
        cipher: AuthenticatedCipherProtocol,
    ) -> DerivedKeyPair:
        """
        Derive the encryption and signing subkeys.

        Args:
            master_key: Master key material (at least 32 bytes).
            role: Role label, e.g. Role.LOOKUP. Free-form strings are accepted
                as long as they are non-empty and contain no NUL.
            cipher: Cipher that will consume the keys; fixes their lengths.

        Raises:
            KeyDerivationError: invalid master key or role, or HKDF failure.
        """
        if not isinstance(master_key, (bytes, bytearray)) or len(master_key) < 32:
            raise KeyDerivationError(
                "Master key must be at least 32 bytes", algorithm="HKDF-SHA256"
            )

        label = role.value if isinstance(role, Role) else role
        if not isinstance(label, str) or not label or "\x00" in label:
            raise KeyDerivationError(
                "Role must be a non-empty string without NUL", algorithm="HKDF-SHA256"
            )
        role_bytes = label.encode("utf-8")

        pair = DerivedKeyPair(
            encryption_key=hkdf_sha256(
                bytes(master_key), ENCRYPTION_INFO_PREFIX + role_bytes, cipher.key_size
            ),
            signing_key=hkdf_sha256(
                bytes(master_key), SIGNING_INFO_PREFIX + role_bytes, cipher.signing_key_size
            ),
        )
        _LOGGER.debug(
            "Derived subkeys for role=%s algorithm=%s", label, cipher.algorithm_name
        )
        return pair
