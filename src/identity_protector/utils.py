# -*- coding: utf-8 -*-
"""
RU: Криптографические утилиты: CSPRNG, проверки вырожденного вывода RNG,
кодек Base64url и строгие права на файлы.

EN: Cryptographic utilities: CSPRNG bytes with degenerate-output checks,
unpadded base64url codec, strict file permissions.
"""
from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import secrets
import stat
from collections import Counter
from typing import Final

_LOGGER: Final = logging.getLogger(__name__)

_MAX_RANDOM_BYTES: Final[int] = 1024 * 1024
_RCT_MIN_N: Final[int] = 8
_APT_MIN_N: Final[int] = 32
_B64URL_RE: Final = re.compile(r"[A-Za-z0-9_-]*")


def generate_random_bytes(n: int) -> bytes:
    """
    Generate cryptographically secure random bytes.

    Uses the operating system CSPRNG via the secrets module and applies
    repetition/proportion sanity checks on the output.

    Args:
        n: number of bytes to generate (1..1MiB).

    Returns:
        Random bytes of requested length.

    Raises:
        ValueError: if n is out of range or the output is degenerate.
    """
    if not isinstance(n, int) or isinstance(n, bool) or n <= 0 or n > _MAX_RANDOM_BYTES:
        raise ValueError("Requested random size must be in 1..1MiB")

    out = secrets.token_bytes(n)
    _rct_apt_checks(out)
    return out


def _rct_apt_checks(data: bytes) -> None:
    """
    Repetition Count Test (RCT) and Adaptive Proportion Test (APT) sanity checks.

    Short outputs (< 8 bytes) are not tested; all-equal is plausible there.

    Raises:
        ValueError: if data fails basic entropy sanity checks.
    """
    if len(data) >= _RCT_MIN_N and all(b == data[0] for b in data):
        raise ValueError("Degenerate RNG output (all bytes equal)")
    if len(data) >= _APT_MIN_N:
        freq: Counter[int] = Counter(data)
        max_prop = max(freq.values()) / float(len(data))
        if max_prop > 0.80:
            raise ValueError("RNG output fails adaptive proportion sanity check")


def b64url_encode(data: bytes) -> str:
    """
    Encode bytes to unpadded base64url text.

    The output alphabet is [A-Za-z0-9_-], so it never contains the frame
    separator.
    """
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    """
    Decode unpadded base64url text.

    Args:
        text: base64url string without '=' padding.

    Returns:
        Decoded bytes.

    Raises:
        ValueError: on characters outside the alphabet or impossible length.
    """
    if not _B64URL_RE.fullmatch(text):
        raise ValueError("Invalid base64url alphabet")
    if len(text) % 4 == 1:
        raise ValueError("Invalid base64url length")
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Invalid base64url data") from exc


def b64_encode(data: bytes) -> str:
    """Encode bytes to standard base64 ASCII string (no newlines)."""
    return base64.b64encode(data).decode("ascii")


def b64_decode(text: str) -> bytes:
    """
    Decode standard base64 ASCII string.

    Raises:
        ValueError: on invalid base64.
    """
    return base64.b64decode(text.encode("ascii"), validate=True)


def set_secure_file_permissions(filepath: str) -> None:
    """
    Set strict file permissions (0600 on POSIX, best-effort on Windows).

    Logs a warning on failure; never raises.
    """
    try:
        os.chmod(filepath, stat.S_IRUSR | stat.S_IWUSR)
        _LOGGER.debug("Applied 0600 permissions to %s", filepath)
    except OSError as e:
        _LOGGER.warning("Could not set strict permissions for %s: %s", filepath, e)


__all__ = [
    "generate_random_bytes",
    "b64url_encode",
    "b64url_decode",
    "b64_encode",
    "b64_decode",
    "set_secure_file_permissions",
]
