"""
Protectors for personal data fields.

Two flavours share one frame format and one key ring:

- LookupProtector: deterministic. The IV is HMAC-SHA256(signing key,
  plaintext), so equal plaintexts under the same key give equal frames and
  an exact-match index over the protected column keeps working.
- PersonalDataProtector: randomized. The IV comes from the CSPRNG, so equal
  plaintexts give unrelated frames.

Every frame carries the id of its master key and of its algorithm, so old
frames stay readable after key rotation or algorithm change. The key id is
also the associated data of the seal: a frame re-labelled with another key
id fails authentication.

Example:
    >>> ring = KeyRing.in_memory()
    >>> lookup = LookupProtector(ring)
    >>> key_id = ring.current_key_id()
    >>> lookup.protect(key_id, "alice@example.com") == lookup.protect(key_id, "alice@example.com")
    True
    >>> personal = PersonalDataProtector(ring)
    >>> personal.unprotect(personal.protect("555-0100"))
    '555-0100'
"""

from __future__ import annotations

import logging
from typing import Dict, Final, Optional

from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from identity_protector.algorithms.kdf import KeyDerivation, Role
from identity_protector.core.exceptions import MalformedCiphertextError
from identity_protector.core.framing import CiphertextFrame
from identity_protector.core.protocols import AuthenticatedCipherProtocol
from identity_protector.core.registry import AlgorithmRegistry
from identity_protector.keyring import KeyRing
from identity_protector.utils import generate_random_bytes

_LOGGER: Final = logging.getLogger(__name__)

_IV_EXPAND_INFO: Final[bytes] = b"identity-protector/synthetic-iv"
_SHA256_SIZE: Final[int] = 32

__all__ = ["LookupProtector", "PersonalDataProtector"]


def _require_str(name: str, value: object) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be str, got {type(value).__name__}")
    return value


def _encode_text(name: str, value: object) -> bytes:
    """UTF-8 bytes of a str argument; lone surrogates are rejected."""
    text = _require_str(name, value)
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValueError(f"{name} is not encodable as UTF-8") from exc


class _BaseProtector:
    """
    Frame sealing and opening shared by both protectors.

    The registry defaults to the key ring's own, so key sizing and
    encryption follow the same current algorithm.
    """

    role: Role

    def __init__(
        self,
        key_ring: KeyRing,
        *,
        registry: Optional[AlgorithmRegistry] = None,
        key_derivation: Optional[KeyDerivation] = None,
    ) -> None:
        self._key_ring = key_ring
        self._registry = registry or key_ring.registry
        self._kdf = key_derivation or KeyDerivation()

    @property
    def key_ring(self) -> KeyRing:
        return self._key_ring

    def _synthetic_iv(
        self, signing_key: bytes, plaintext: bytes, cipher: AuthenticatedCipherProtocol
    ) -> bytes:
        h = hmac.HMAC(signing_key, hashes.SHA256())
        h.update(plaintext)
        digest = h.finalize()
        if cipher.nonce_size <= _SHA256_SIZE:
            return digest[: cipher.nonce_size]
        return HKDFExpand(
            algorithm=hashes.SHA256(), length=cipher.nonce_size, info=_IV_EXPAND_INFO
        ).derive(digest)

    def _seal(self, key_id: str, data: bytes, *, deterministic: bool) -> str:
        master_key = self._key_ring.key_for(key_id)
        cipher = self._registry.current_algorithm()
        keys = self._kdf.derive(master_key.material, self.role, cipher)

        if deterministic:
            nonce = self._synthetic_iv(keys.signing_key, data, cipher)
        else:
            nonce = generate_random_bytes(cipher.nonce_size)

        ciphertext, tag = cipher.seal(
            keys.encryption_key, nonce, data, associated_data=key_id.encode("utf-8")
        )
        return CiphertextFrame(
            algorithm_id=cipher.algorithm_id,
            key_id=key_id,
            nonce=nonce,
            tag=tag,
            ciphertext=ciphertext,
        ).encode()

    def _open(self, text: str) -> str:
        frame = CiphertextFrame.decode(text)
        cipher = self._registry.algorithm_for(frame.algorithm_id)

        if len(frame.nonce) != cipher.nonce_size:
            raise MalformedCiphertextError(
                f"IV must be {cipher.nonce_size} bytes, got {len(frame.nonce)}",
                algorithm=cipher.algorithm_name,
            )
        if len(frame.tag) != cipher.tag_size:
            raise MalformedCiphertextError(
                f"Tag must be {cipher.tag_size} bytes, got {len(frame.tag)}",
                algorithm=cipher.algorithm_name,
            )

        master_key = self._key_ring.key_for(frame.key_id)
        keys = self._kdf.derive(master_key.material, self.role, cipher)
        data = cipher.open(
            keys.encryption_key,
            frame.nonce,
            frame.ciphertext,
            frame.tag,
            associated_data=frame.key_id.encode("utf-8"),
        )
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedCiphertextError(
                "Decrypted payload is not UTF-8 text", algorithm=cipher.algorithm_name
            ) from exc

    def needs_reprotect(self, ciphertext: str) -> bool:
        """
        True if the frame was written under a retired key or algorithm.

        Raises:
            MalformedCiphertextError: the text is not a frame.
        """
        frame = CiphertextFrame.decode(_require_str("ciphertext", ciphertext))
        return (
            frame.key_id != self._key_ring.current_key_id()
            or frame.algorithm_id != self._registry.current_identifier()
        )


class LookupProtector(_BaseProtector):
    """
    Deterministic protector for values that must stay searchable.

    Equal plaintexts under the same key give byte-identical frames. This
    leaks equality of values, which is what makes exact-match lookup work.
    """

    role = Role.LOOKUP

    def protect(self, key_id: str, plaintext: str) -> str:
        """
        Protect plaintext under the given master key.

        Raises:
            TypeError: non-str arguments.
            ValueError: an argument is not encodable as UTF-8.
            UnknownKeyError: key_id is not in the ring.
        """
        _encode_text("key_id", key_id)
        data = _encode_text("plaintext", plaintext)
        return self._seal(key_id, data, deterministic=True)

    def unprotect(self, key_id: str, ciphertext: str) -> str:
        """
        Recover plaintext.

        The key id embedded in the frame is authoritative. A different
        caller-supplied key_id is logged and otherwise ignored.

        Raises:
            TypeError: non-str arguments.
            MalformedCiphertextError: the text is not a valid frame.
            UnknownAlgorithmError: the frame's algorithm is not registered.
            UnknownKeyError: the frame's key is not in the ring.
            AuthenticationFailedError: tag verification failed.
        """
        _require_str("key_id", key_id)
        _require_str("ciphertext", ciphertext)
        frame_key_id = CiphertextFrame.decode(ciphertext).key_id
        if frame_key_id != key_id:
            _LOGGER.debug(
                "Caller key id %s differs from frame key id %s, using frame key id",
                key_id,
                frame_key_id,
            )
        return self._open(ciphertext)

    def lookup_candidates(self, plaintext: str) -> Dict[str, str]:
        """
        Protected form of plaintext under every key in the ring.

        Lets a storage layer match a value across key rotations.
        """
        data = _encode_text("plaintext", plaintext)
        return {
            key_id: self._seal(key_id, data, deterministic=True)
            for key_id in self._key_ring.key_ids()
        }

    def reprotect(self, ciphertext: str) -> str:
        """Decrypt and protect again under the current key and algorithm."""
        _require_str("ciphertext", ciphertext)
        plaintext = self._open(ciphertext)
        return self._seal(
            self._key_ring.current_key_id(), plaintext.encode("utf-8"), deterministic=True
        )


class PersonalDataProtector(_BaseProtector):
    """Randomized protector for values that are never searched."""

    role = Role.PERSONAL

    def protect(self, plaintext: str) -> str:
        """
        Protect plaintext under the current master key.

        Raises:
            TypeError: plaintext is not a str.
            ValueError: plaintext is not encodable as UTF-8.
        """
        data = _encode_text("plaintext", plaintext)
        return self._seal(self._key_ring.current_key_id(), data, deterministic=False)

    def unprotect(self, ciphertext: str) -> str:
        """
        Recover plaintext using the key id embedded in the frame.

        Raises:
            TypeError: ciphertext is not a str.
            MalformedCiphertextError: the text is not a valid frame.
            UnknownAlgorithmError: the frame's algorithm is not registered.
            UnknownKeyError: the frame's key is not in the ring.
            AuthenticationFailedError: tag verification failed.
        """
        _require_str("ciphertext", ciphertext)
        return self._open(ciphertext)

    def reprotect(self, ciphertext: str) -> str:
        """Decrypt and protect again under the current key and algorithm."""
        return self.protect(self.unprotect(ciphertext))
