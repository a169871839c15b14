"""
Structural interfaces of the protector subsystem.

Defines two runtime-checkable Protocol classes:
- AuthenticatedCipherProtocol: an AEAD primitive selectable by wire id
- KeyStoreProtocol: the persistence collaborator consumed by KeyRing

Structural subtyping means ciphers and key stores do not inherit from
anything; isinstance() checks work thanks to @runtime_checkable.

Example:
    >>> from identity_protector.algorithms.symmetric import AES256GCM
    >>> isinstance(AES256GCM(), AuthenticatedCipherProtocol)
    True
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Mapping, Optional, Protocol, Tuple, runtime_checkable

if TYPE_CHECKING:
    from identity_protector.keyring import MasterKey

__all__ = [
    "AuthenticatedCipherProtocol",
    "KeyStoreProtocol",
]


# ==============================================================================
# AUTHENTICATED CIPHER PROTOCOL
# ==============================================================================


@runtime_checkable
class AuthenticatedCipherProtocol(Protocol):
    """
    Authenticated symmetric cipher with a fixed wire identifier.

    Attributes:
        algorithm_id: Stable wire identifier (see AlgorithmId).
        algorithm_name: Human readable name, e.g. "AES-256-GCM".
        key_size: Encryption key length in bytes.
        nonce_size: IV length in bytes.
        tag_size: Authentication tag length in bytes.
        signing_key_size: Length of the signing subkey derived alongside
            the encryption key.

    Validation Rules:
        - key: len == key_size
        - nonce: len == nonce_size, always supplied by the caller
        - tag: len == tag_size
        - plaintext: may be empty

    Example:
        >>> cipher = AES256GCM()
        >>> ct, tag = cipher.seal(key, nonce, b"data", associated_data=b"k1")
        >>> cipher.open(key, nonce, ct, tag, associated_data=b"k1")
        b'data'
    """

    algorithm_id: int
    algorithm_name: str
    key_size: int
    nonce_size: int
    tag_size: int
    signing_key_size: int

    def seal(
        self,
        key: bytes,
        nonce: bytes,
        plaintext: bytes,
        *,
        associated_data: Optional[bytes] = None,
    ) -> Tuple[bytes, bytes]:
        """
        Encrypt and authenticate.

        Returns:
            (ciphertext, tag)

        Raises:
            InvalidKeyError: wrong key size.
            InvalidNonceError: wrong nonce size.
            EncryptionFailedError: primitive failure.
        """
        ...

    def open(
        self,
        key: bytes,
        nonce: bytes,
        ciphertext: bytes,
        tag: bytes,
        *,
        associated_data: Optional[bytes] = None,
    ) -> bytes:
        """
        Verify and decrypt.

        Raises:
            InvalidKeyError: wrong key size.
            InvalidNonceError: wrong nonce size.
            AuthenticationFailedError: tag mismatch. Never returns partial data.
        """
        ...


# ==============================================================================
# KEY STORE PROTOCOL
# ==============================================================================


@runtime_checkable
class KeyStoreProtocol(Protocol):
    """
    Persistence collaborator of KeyRing.

    Format and location are up to the implementation (file, vault, database).
    The ring only needs a consistent snapshot at startup and a durable save
    on rotation.
    """

    def load_all(self) -> Mapping[str, "MasterKey"]:
        """Return a consistent snapshot of every stored key, keyed by key id."""
        ...

    def save(self, key_id: str, master_key: "MasterKey") -> None:
        """
        Durably store one key.

        Must not return before the key is stored. Raises on failure.
        """
        ...
