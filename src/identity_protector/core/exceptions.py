# -*- coding: utf-8 -*-
"""
RU: Централизованная иерархия исключений защитника персональных данных.

EN: Centralized exception hierarchy for the personal data protectors.

Every failure a protector can report is a distinct, inspectable subclass of
CryptoError. None of them are transient, so none of them are retried.

Hierarchy:
    CryptoError
    ├── AlgorithmError
    │   └── UnknownAlgorithmError
    ├── CryptoKeyError
    │   ├── UnknownKeyError
    │   ├── InvalidKeyError
    │   ├── KeyDerivationError
    │   └── KeyPersistenceError
    ├── EncryptionError
    │   ├── EncryptionFailedError
    │   ├── InvalidNonceError
    │   └── DecryptionError
    │       ├── AuthenticationFailedError
    │       └── MalformedCiphertextError
    ├── RegistryError
    │   ├── DuplicateRegistrationError
    │   └── ProtocolError
    ├── StorageError
    │   ├── StorageReadError
    │   └── StorageWriteError
    └── ConfigurationError

Security Note:
    Messages and context never carry keys, IVs, tags, plaintext or ciphertext.
    Key identifiers and algorithm names are not secret and may appear.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

__all__: list[str] = [
    "CryptoError",
    "AlgorithmError",
    "UnknownAlgorithmError",
    "CryptoKeyError",
    "UnknownKeyError",
    "InvalidKeyError",
    "KeyDerivationError",
    "KeyPersistenceError",
    "EncryptionError",
    "EncryptionFailedError",
    "InvalidNonceError",
    "DecryptionError",
    "AuthenticationFailedError",
    "MalformedCiphertextError",
    "RegistryError",
    "DuplicateRegistrationError",
    "ProtocolError",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    "ConfigurationError",
]


# ==============================================================================
# BASE EXCEPTION
# ==============================================================================


class CryptoError(Exception):
    """
    Base exception for every failure raised by identity_protector.

    Attributes:
        message: Human readable description.
        algorithm: Name of the algorithm involved (optional).
        context: Extra structural context for debugging (never secrets).

    Example:
        >>> try:
        ...     protector.unprotect(stored)
        ... except CryptoError as e:
        ...     logger.error("Field unreadable: %s", e)
    """

    def __init__(
        self,
        message: str,
        *,
        algorithm: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.algorithm = algorithm
        self.context = context or {}

    def __str__(self) -> str:
        parts = [self.__class__.__name__, ": ", self.message]

        if self.algorithm:
            parts.append(f" [algorithm={self.algorithm}]")

        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f" ({ctx_str})")

        return "".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"algorithm={self.algorithm!r}, "
            f"context={self.context!r})"
        )


# ==============================================================================
# ALGORITHM ERRORS
# ==============================================================================


class AlgorithmError(CryptoError):
    """Errors related to algorithm selection."""

    pass


class UnknownAlgorithmError(AlgorithmError):
    """
    A frame (or caller) references an algorithm id that is not registered.

    Either the frame is corrupt or it was written by a newer build that knows
    an algorithm this one does not.

    Attributes:
        algorithm_id: The unresolved wire identifier.
        available: Identifiers registered at the time of the lookup.
    """

    def __init__(
        self,
        algorithm_id: int,
        available: Optional[List[int]] = None,
    ) -> None:
        message = f"Algorithm id {algorithm_id} is not registered"
        if available:
            message += f". Available: {', '.join(str(a) for a in available)}"

        super().__init__(
            message,
            context={"algorithm_id": algorithm_id},
        )
        self.algorithm_id = algorithm_id
        self.available = available or []


# ==============================================================================
# KEY ERRORS
# ==============================================================================


class CryptoKeyError(CryptoError):
    """
    Base error for key operations.

    Note:
        Named CryptoKeyError so it does not shadow the builtin KeyError.
    """

    pass


class UnknownKeyError(CryptoKeyError):
    """
    The key id is not present in the key ring.

    The key was removed by an external retention policy, or the frame is corrupt.
    """

    def __init__(self, key_id: str) -> None:
        super().__init__(
            f"Key '{key_id}' is not present in the key ring",
            context={"key_id": key_id},
        )
        self.key_id = key_id


class InvalidKeyError(CryptoKeyError):
    """Key material has the wrong type or size for the requested operation."""

    pass


class KeyDerivationError(CryptoKeyError):
    """Subkey derivation from a master key failed."""

    pass


class KeyPersistenceError(CryptoKeyError):
    """
    The key store could not durably save a new key, or returned an
    inconsistent snapshot.

    When raised by KeyRing.rotate() the ring is left in its prior state.
    """

    pass


# ==============================================================================
# ENCRYPTION ERRORS
# ==============================================================================


class EncryptionError(CryptoError):
    """Base error for seal/open operations."""

    pass


class EncryptionFailedError(EncryptionError):
    """The underlying cipher failed while sealing."""

    pass


class InvalidNonceError(EncryptionError):
    """
    IV/nonce of the wrong size was supplied to a cipher.

    Attributes:
        expected_size: Size the cipher requires.
        actual_size: Size that was supplied.
    """

    def __init__(
        self,
        message: str,
        *,
        algorithm: Optional[str] = None,
        expected_size: Optional[int] = None,
        actual_size: Optional[int] = None,
    ) -> None:
        context: Dict[str, Any] = {}
        if expected_size is not None:
            context["expected_size"] = expected_size
        if actual_size is not None:
            context["actual_size"] = actual_size
        super().__init__(message, algorithm=algorithm, context=context)
        self.expected_size = expected_size
        self.actual_size = actual_size


class DecryptionError(EncryptionError):
    """Base class for failures while reading protected data."""

    pass


class AuthenticationFailedError(DecryptionError):
    """
    Tag verification failed: tampering, wrong key, or bit rot.

    Security Note:
        The reason is never narrowed further and no partial plaintext is
        ever returned.
    """

    pass


class MalformedCiphertextError(DecryptionError):
    """
    The protected string cannot be parsed as a ciphertext frame.

    Raised before any cryptographic operation is attempted.
    """

    pass


# ==============================================================================
# REGISTRY ERRORS
# ==============================================================================


class RegistryError(CryptoError):
    """Base error for the algorithm registry."""

    pass


class DuplicateRegistrationError(RegistryError):
    """
    An algorithm id is already registered.

    Wire identifiers are never reassigned once shipped.
    """

    def __init__(self, algorithm_id: int, existing_name: str) -> None:
        super().__init__(
            f"Algorithm id {algorithm_id} is already registered as '{existing_name}'",
            algorithm=existing_name,
            context={"algorithm_id": algorithm_id},
        )
        self.algorithm_id = algorithm_id
        self.existing_name = existing_name


class ProtocolError(RegistryError):
    """A registered factory does not produce an AuthenticatedCipherProtocol."""

    pass


# ==============================================================================
# STORAGE ERRORS
# ==============================================================================


class StorageError(CryptoError):
    """Base class for key store backend failures."""

    pass


class StorageReadError(StorageError):
    """Reading or parsing the key store failed."""

    pass


class StorageWriteError(StorageError):
    """Persisting to the key store failed."""

    pass


# ==============================================================================
# CONFIGURATION ERRORS
# ==============================================================================


class ConfigurationError(CryptoError):
    """Invalid protector configuration."""

    pass
