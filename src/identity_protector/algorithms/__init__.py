"""Cipher and key derivation implementations."""

from identity_protector.algorithms.kdf import DerivedKeyPair, KeyDerivation, Role
from identity_protector.algorithms.symmetric import (
    AES256CBCHMACSHA256,
    AES256GCM,
    ChaCha20Poly1305,
)

__all__ = [
    "AES256CBCHMACSHA256",
    "AES256GCM",
    "ChaCha20Poly1305",
    "DerivedKeyPair",
    "KeyDerivation",
    "Role",
]
