"""
Authenticated symmetric ciphers selectable by wire identifier.

**AEAD Ciphers (2 algorithms):**
- AES-256-GCM: default for new data (id 2)
- ChaCha20-Poly1305: software-optimized (id 3)

**Encrypt-then-MAC (1 algorithm):**
- AES-256-CBC-HMAC-SHA256: legacy layout (id 1), kept readable forever

All three implement AuthenticatedCipherProtocol: the caller always supplies
the nonce (random for personal data, derived for lookup data) and gets the
ciphertext and tag back as separate values.

Security Guidelines:
    ✅ RECOMMENDED: AES-256-GCM or ChaCha20-Poly1305
    ⚠️  LEGACY: AES-256-CBC-HMAC-SHA256 (decrypt old frames, do not select as current)

Example:
    >>> cipher = AES256GCM()
    >>> key = os.urandom(cipher.key_size)
    >>> nonce = os.urandom(cipher.nonce_size)
    >>> ct, tag = cipher.seal(key, nonce, b"Secret message")
    >>> cipher.open(key, nonce, ct, tag)
    b'Secret message'

Compliance:
    - NIST SP 800-38D (GCM mode)
    - NIST SP 800-38A (CBC mode)
    - RFC 2104 (HMAC)
    - RFC 8439 (ChaCha20-Poly1305)
"""

from __future__ import annotations

import logging
import struct
from typing import Callable, Dict, Final, Optional, Tuple

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.ciphers.aead import (
    ChaCha20Poly1305 as ChaCha20Poly1305Impl,
)

from identity_protector.core.exceptions import (
    AuthenticationFailedError,
    EncryptionFailedError,
    InvalidKeyError,
    InvalidNonceError,
)
from identity_protector.core.metadata import (
    AlgorithmId,
    AlgorithmMetadata,
    ImplementationStatus,
)

_LOGGER: Final = logging.getLogger(__name__)

__all__ = [
    "AES256GCM",
    "ChaCha20Poly1305",
    "AES256CBCHMACSHA256",
    "ALGORITHMS",
]

# Signing subkeys are HMAC-SHA256 keys for every shipped cipher.
SIGNING_KEY_SIZE: Final[int] = 32


def _validate_inputs(
    name: str,
    key: bytes,
    key_size: int,
    nonce: bytes,
    nonce_size: int,
    associated_data: Optional[bytes],
) -> None:
    if not isinstance(key, bytes):
        raise TypeError(f"Key must be bytes, got {type(key).__name__}")
    if not isinstance(nonce, bytes):
        raise TypeError(f"Nonce must be bytes, got {type(nonce).__name__}")
    if associated_data is not None and not isinstance(associated_data, bytes):
        raise TypeError(
            f"Associated data must be bytes, got {type(associated_data).__name__}"
        )
    if len(key) != key_size:
        raise InvalidKeyError(
            f"{name} requires {key_size}-byte key, got {len(key)}", algorithm=name
        )
    if len(nonce) != nonce_size:
        raise InvalidNonceError(
            f"{name} requires {nonce_size}-byte nonce",
            algorithm=name,
            expected_size=nonce_size,
            actual_size=len(nonce),
        )


# ==============================================================================
# AEAD CIPHERS
# ==============================================================================


class _AEADCipher:
    """
    Shared seal/open for primitives that return ciphertext||tag in one buffer.

    Subclasses set the size attributes and _impl.
    """

    algorithm_id: int
    algorithm_name: str
    key_size: int
    nonce_size: int
    tag_size: int
    signing_key_size = SIGNING_KEY_SIZE
    _impl: Callable[[bytes], object]

    def seal(
        self,
        key: bytes,
        nonce: bytes,
        plaintext: bytes,
        *,
        associated_data: Optional[bytes] = None,
    ) -> Tuple[bytes, bytes]:
        """Encrypt and return (ciphertext, tag)."""
        _validate_inputs(
            self.algorithm_name,
            key,
            self.key_size,
            nonce,
            self.nonce_size,
            associated_data,
        )
        if not isinstance(plaintext, bytes):
            raise TypeError(f"Plaintext must be bytes, got {type(plaintext).__name__}")

        try:
            combined = self._impl(key).encrypt(nonce, plaintext, associated_data)  # type: ignore[attr-defined]
        except Exception as exc:
            _LOGGER.error(
                "%s encryption failed: %s", self.algorithm_name, exc.__class__.__name__
            )
            raise EncryptionFailedError(
                f"{self.algorithm_name} encryption failed",
                algorithm=self.algorithm_name,
            ) from exc

        return combined[: -self.tag_size], combined[-self.tag_size :]

    def open(
        self,
        key: bytes,
        nonce: bytes,
        ciphertext: bytes,
        tag: bytes,
        *,
        associated_data: Optional[bytes] = None,
    ) -> bytes:
        """Verify the tag and decrypt."""
        _validate_inputs(
            self.algorithm_name,
            key,
            self.key_size,
            nonce,
            self.nonce_size,
            associated_data,
        )
        if not isinstance(ciphertext, bytes) or not isinstance(tag, bytes):
            raise TypeError("Ciphertext and tag must be bytes")
        if len(tag) != self.tag_size:
            raise AuthenticationFailedError(
                "Authentication failed", algorithm=self.algorithm_name
            )

        try:
            return self._impl(key).decrypt(nonce, ciphertext + tag, associated_data)  # type: ignore[attr-defined, no-any-return]
        except InvalidTag as exc:
            _LOGGER.warning("%s tag verification failed", self.algorithm_name)
            raise AuthenticationFailedError(
                "Authentication failed", algorithm=self.algorithm_name
            ) from exc


class AES256GCM(_AEADCipher):
    """
    AES-256-GCM (Galois/Counter Mode).

    Security Properties:
        - Key: 256 bits (32 bytes)
        - Nonce: 96 bits (12 bytes) - unique per (key, plaintext)
        - Tag: 128 bits (16 bytes)

    Note:
        With a plaintext-derived nonce the only repeat is the same plaintext
        under the same key, which yields the same frame and nothing more.
    """

    algorithm_id = int(AlgorithmId.AES_256_GCM)
    algorithm_name = AlgorithmId.AES_256_GCM.label
    key_size = 32
    nonce_size = 12
    tag_size = 16
    _impl = AESGCM

    metadata = AlgorithmMetadata(
        algorithm_id=int(AlgorithmId.AES_256_GCM),
        name=AlgorithmId.AES_256_GCM.label,
        library="cryptography",
        key_size=32,
        nonce_size=12,
        tag_size=16,
        description="AES-256 in Galois/Counter Mode",
    )


class ChaCha20Poly1305(_AEADCipher):
    """
    ChaCha20-Poly1305 (RFC 8439).

    Constant-time in software; preferred where AES-NI is unavailable.
    """

    algorithm_id = int(AlgorithmId.CHACHA20_POLY1305)
    algorithm_name = AlgorithmId.CHACHA20_POLY1305.label
    key_size = 32
    nonce_size = 12
    tag_size = 16
    _impl = ChaCha20Poly1305Impl

    metadata = AlgorithmMetadata(
        algorithm_id=int(AlgorithmId.CHACHA20_POLY1305),
        name=AlgorithmId.CHACHA20_POLY1305.label,
        library="cryptography",
        key_size=32,
        nonce_size=12,
        tag_size=16,
        description="ChaCha20 stream cipher with Poly1305 MAC",
    )


# ==============================================================================
# ENCRYPT-THEN-MAC
# ==============================================================================


class AES256CBCHMACSHA256:
    """
    AES-256-CBC with PKCS7 padding, authenticated by HMAC-SHA256.

    Key layout (64 bytes): MAC key (32) || encryption key (32).
    Tag: HMAC-SHA256(mac_key, AAD || IV || ciphertext || AAD bit length as u64).

    The tag is verified in constant time before any block is decrypted.
    """

    MAC_KEY_SIZE: Final[int] = 32
    ENC_KEY_SIZE: Final[int] = 32

    algorithm_id = int(AlgorithmId.AES_256_CBC_HMAC_SHA256)
    algorithm_name = AlgorithmId.AES_256_CBC_HMAC_SHA256.label
    key_size = 64
    nonce_size = 16
    tag_size = 32
    signing_key_size = SIGNING_KEY_SIZE

    metadata = AlgorithmMetadata(
        algorithm_id=int(AlgorithmId.AES_256_CBC_HMAC_SHA256),
        name=AlgorithmId.AES_256_CBC_HMAC_SHA256.label,
        library="cryptography",
        key_size=64,
        nonce_size=16,
        tag_size=32,
        status=ImplementationStatus.LEGACY,
        description="AES-256-CBC encrypt-then-MAC with HMAC-SHA256",
    )

    def _split_key(self, key: bytes) -> Tuple[bytes, bytes]:
        return key[: self.MAC_KEY_SIZE], key[self.MAC_KEY_SIZE :]

    @staticmethod
    def _mac_input(aad: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
        return aad + nonce + ciphertext + struct.pack(">Q", len(aad) * 8)

    def _compute_tag(self, mac_key: bytes, data: bytes) -> hmac.HMAC:
        h = hmac.HMAC(mac_key, hashes.SHA256())
        h.update(data)
        return h

    def seal(
        self,
        key: bytes,
        nonce: bytes,
        plaintext: bytes,
        *,
        associated_data: Optional[bytes] = None,
    ) -> Tuple[bytes, bytes]:
        """Pad, encrypt, then MAC. Returns (ciphertext, tag)."""
        _validate_inputs(
            self.algorithm_name,
            key,
            self.key_size,
            nonce,
            self.nonce_size,
            associated_data,
        )
        if not isinstance(plaintext, bytes):
            raise TypeError(f"Plaintext must be bytes, got {type(plaintext).__name__}")

        mac_key, enc_key = self._split_key(key)
        try:
            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(plaintext) + padder.finalize()
            encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(nonce)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
            tag = self._compute_tag(
                mac_key, self._mac_input(associated_data or b"", nonce, ciphertext)
            ).finalize()
        except Exception as exc:
            _LOGGER.error(
                "%s encryption failed: %s", self.algorithm_name, exc.__class__.__name__
            )
            raise EncryptionFailedError(
                f"{self.algorithm_name} encryption failed",
                algorithm=self.algorithm_name,
            ) from exc

        return ciphertext, tag

    def open(
        self,
        key: bytes,
        nonce: bytes,
        ciphertext: bytes,
        tag: bytes,
        *,
        associated_data: Optional[bytes] = None,
    ) -> bytes:
        """Verify the MAC, then decrypt and unpad."""
        _validate_inputs(
            self.algorithm_name,
            key,
            self.key_size,
            nonce,
            self.nonce_size,
            associated_data,
        )
        if not isinstance(ciphertext, bytes) or not isinstance(tag, bytes):
            raise TypeError("Ciphertext and tag must be bytes")

        mac_key, enc_key = self._split_key(key)
        try:
            self._compute_tag(
                mac_key, self._mac_input(associated_data or b"", nonce, ciphertext)
            ).verify(tag)
        except InvalidSignature as exc:
            _LOGGER.warning("%s tag verification failed", self.algorithm_name)
            raise AuthenticationFailedError(
                "Authentication failed", algorithm=self.algorithm_name
            ) from exc

        try:
            decryptor = Cipher(algorithms.AES(enc_key), modes.CBC(nonce)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            # Authentic but undecodable: written with a different key layout.
            _LOGGER.error("%s padding check failed after valid MAC", self.algorithm_name)
            raise AuthenticationFailedError(
                "Authentication failed", algorithm=self.algorithm_name
            ) from exc


# ==============================================================================
# WIRE ID TABLE
# ==============================================================================

ALGORITHMS: Dict[AlgorithmId, Callable[[], object]] = {
    AlgorithmId.AES_256_CBC_HMAC_SHA256: AES256CBCHMACSHA256,
    AlgorithmId.AES_256_GCM: AES256GCM,
    AlgorithmId.CHACHA20_POLY1305: ChaCha20Poly1305,
}
