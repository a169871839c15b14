"""
Ciphertext frame: the self-describing text form of protected data.

Layout (five fields joined by "."):

    <algorithm id, decimal>.<b64url key id>.<b64url iv>.<b64url tag>.<b64url ciphertext>

All binary fields use base64url without padding, whose alphabet never
contains ".", so the frame splits unambiguously whatever the key id is.

Decoding is purely structural. Whether the algorithm is registered and
whether the IV and tag fit it is decided by the protector afterwards.

Example:
    >>> frame = CiphertextFrame(2, "k1", b"\\x00" * 12, b"\\x01" * 16, b"abc")
    >>> CiphertextFrame.decode(frame.encode()) == frame
    True
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final, List

from identity_protector.core.exceptions import MalformedCiphertextError
from identity_protector.utils import b64url_decode, b64url_encode

SEPARATOR: Final[str] = "."
FIELD_COUNT: Final[int] = 5
MAX_ALGORITHM_DIGITS: Final[int] = 5

__all__ = ["CiphertextFrame", "read_key_id", "SEPARATOR"]


@dataclass(frozen=True)
class CiphertextFrame:
    """
    Parsed ciphertext frame.

    Attributes:
        algorithm_id: Wire identifier of the cipher.
        key_id: Id of the master key that protected the value.
        nonce: IV used for sealing.
        tag: Authentication tag.
        ciphertext: Encrypted payload (may be empty).
    """

    algorithm_id: int
    key_id: str
    nonce: bytes = field(repr=False)
    tag: bytes = field(repr=False)
    ciphertext: bytes = field(repr=False)

    def encode(self) -> str:
        """Render the frame as text."""
        return SEPARATOR.join(
            (
                str(self.algorithm_id),
                b64url_encode(self.key_id.encode("utf-8")),
                b64url_encode(self.nonce),
                b64url_encode(self.tag),
                b64url_encode(self.ciphertext),
            )
        )

    @classmethod
    def decode(cls, text: str) -> CiphertextFrame:
        """
        Parse frame text.

        Raises:
            TypeError: text is not a str.
            MalformedCiphertextError: wrong field count, non-canonical
                decimal algorithm id, invalid base64url, empty key id/IV/tag
                or non-UTF-8 key id.
        """
        if not isinstance(text, str):
            raise TypeError(f"Ciphertext must be str, got {type(text).__name__}")

        parts: List[str] = text.split(SEPARATOR)
        if len(parts) != FIELD_COUNT:
            raise MalformedCiphertextError(
                f"Expected {FIELD_COUNT} fields, got {len(parts)}"
            )

        alg_text, key_text, nonce_text, tag_text, ct_text = parts
        if not alg_text or not alg_text.isascii() or not alg_text.isdigit():
            raise MalformedCiphertextError("Algorithm id must be a decimal number")
        if len(alg_text) > MAX_ALGORITHM_DIGITS or (len(alg_text) > 1 and alg_text[0] == "0"):
            raise MalformedCiphertextError("Algorithm id is not in canonical form")

        try:
            key_raw = b64url_decode(key_text)
            nonce = b64url_decode(nonce_text)
            tag = b64url_decode(tag_text)
            ciphertext = b64url_decode(ct_text)
        except ValueError as exc:
            raise MalformedCiphertextError("Invalid base64url field") from exc

        if not key_raw:
            raise MalformedCiphertextError("Empty key id")
        if not nonce:
            raise MalformedCiphertextError("Empty IV")
        if not tag:
            raise MalformedCiphertextError("Empty tag")

        try:
            key_id = key_raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedCiphertextError("Key id is not valid UTF-8") from exc

        return cls(
            algorithm_id=int(alg_text),
            key_id=key_id,
            nonce=nonce,
            tag=tag,
            ciphertext=ciphertext,
        )


def read_key_id(ciphertext: str) -> str:
    """
    Return the key id embedded in a frame without decrypting it.

    Raises:
        MalformedCiphertextError: the text is not a frame.
    """
    return CiphertextFrame.decode(ciphertext).key_id
