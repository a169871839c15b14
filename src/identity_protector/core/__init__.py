"""
Core building blocks: errors, algorithm identifiers, structural interfaces,
the algorithm registry and the ciphertext frame.
"""

from identity_protector.core.exceptions import (
    AuthenticationFailedError,
    CryptoError,
    KeyPersistenceError,
    MalformedCiphertextError,
    UnknownAlgorithmError,
    UnknownKeyError,
)
from identity_protector.core.framing import CiphertextFrame, read_key_id
from identity_protector.core.metadata import AlgorithmId, AlgorithmMetadata, ImplementationStatus
from identity_protector.core.protocols import AuthenticatedCipherProtocol, KeyStoreProtocol
from identity_protector.core.registry import AlgorithmRegistry

__all__ = [
    "AlgorithmId",
    "AlgorithmMetadata",
    "AlgorithmRegistry",
    "AuthenticatedCipherProtocol",
    "AuthenticationFailedError",
    "CiphertextFrame",
    "CryptoError",
    "ImplementationStatus",
    "KeyPersistenceError",
    "KeyStoreProtocol",
    "MalformedCiphertextError",
    "UnknownAlgorithmError",
    "UnknownKeyError",
    "read_key_id",
]
