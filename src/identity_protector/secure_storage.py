# -*- coding: utf-8 -*-
"""
RU: Хранилища мастер-ключей: потокобезопасное в памяти и файловое JSON
с атомарной записью, строгими правами доступа и опциональной обёрткой
ключей AES-256-GCM.

EN: Master key stores: a thread-safe in-memory store and a JSON file store
with atomic writes, strict file permissions and optional AES-256-GCM key
wrapping.

Design:
- Both implement KeyStoreProtocol (load_all/save) consumed by KeyRing.
- On-disk format:
    {"version": 1,
     "keys": {"<key_id>": {"created_at": "<iso8601>", "k": "<base64 material>"}}}
  or, with a wrapping key provider,
    {"<key_id>": {"created_at": "...", "n": "<base64 nonce>", "c": "<base64 ciphertext||tag>"}}
  The key id is the associated data of the wrapping, so records cannot be
  swapped between ids.
- Atomic writes using a temp file + os.replace under an exclusive file lock.
- Strict file permission application via utils.set_secure_file_permissions after each write.
- No secrets are logged; only structural events and key ids.

Thread-safety:
- A re-entrant lock (RLock) guards read-modify-write.
- No global state; each instance isolates its own file.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Final, Mapping, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from identity_protector.core.exceptions import (
    StorageError,
    StorageReadError,
    StorageWriteError,
)
from identity_protector.keyring import MasterKey
from identity_protector.utils import (
    b64_decode,
    b64_encode,
    generate_random_bytes,
    set_secure_file_permissions,
)

_LOGGER: Final = logging.getLogger(__name__)

_FORMAT_VERSION: Final[int] = 1
_WRAP_KEY_SIZE: Final[int] = 32
_WRAP_NONCE_SIZE: Final[int] = 12

# Platform-specific file locking
if sys.platform == "win32":
    import msvcrt

    def _lock_file(fd: int) -> None:
        """Acquire exclusive lock on Windows."""
        msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)

else:
    import fcntl

    def _lock_file(fd: int) -> None:
        """Acquire exclusive lock on POSIX."""
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)


_RecordDict = Dict[str, Any]

__all__ = ["InMemoryKeyStore", "FileKeyStore"]


class InMemoryKeyStore:
    """
    Volatile key store for tests and single-process deployments.

    load_all() returns a copy, so later saves never mutate a snapshot.
    """

    def __init__(self, keys: Optional[Mapping[str, MasterKey]] = None) -> None:
        self._lock = threading.Lock()
        self._keys: Dict[str, MasterKey] = dict(keys or {})

    def load_all(self) -> Dict[str, MasterKey]:
        with self._lock:
            return dict(self._keys)

    def save(self, key_id: str, master_key: MasterKey) -> None:
        if not isinstance(master_key, MasterKey) or master_key.key_id != key_id:
            raise StorageWriteError("Key id does not match master key")
        with self._lock:
            self._keys[key_id] = master_key
        _LOGGER.debug("Stored master key %s in memory", key_id)


class FileKeyStore:
    """
    JSON file key store.

    Args:
        path: keystore file path (created on first save).
        wrapping_key_provider: optional callable returning a 32-byte AES key
            used to wrap every master key at rest. Kept outside this object.

    Raises:
        StorageError: on invalid initialization parameters.
    """

    __slots__ = ("_filepath", "_wrapping_key_provider", "_lock")

    def __init__(
        self,
        path: Union[str, os.PathLike[str]],
        *,
        wrapping_key_provider: Optional[Callable[[], bytes]] = None,
    ) -> None:
        if not path:
            raise StorageError("Invalid keystore path")
        if wrapping_key_provider is not None and not callable(wrapping_key_provider):
            raise StorageError("wrapping_key_provider must be callable")

        self._filepath: Path = Path(path).resolve()
        self._wrapping_key_provider = wrapping_key_provider
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._filepath

    # KeyStoreProtocol API

    def load_all(self) -> Dict[str, MasterKey]:
        """
        Read and unwrap every key.

        Raises:
            StorageReadError: unreadable file, invalid format or failed unwrap.
        """
        with self._lock:
            records = self._read_db_checked()
            keys: Dict[str, MasterKey] = {}
            for key_id, rec in records.items():
                keys[key_id] = self._decode_record(key_id, rec)

        _LOGGER.debug("Loaded %d master keys from %s", len(keys), self._filepath)
        return keys

    def save(self, key_id: str, master_key: MasterKey) -> None:
        """
        Add or replace one key and durably rewrite the file.

        Raises:
            StorageWriteError: when the write fails.
        """
        if not isinstance(key_id, str) or not key_id:
            raise StorageWriteError("Invalid key id")
        if not isinstance(master_key, MasterKey) or master_key.key_id != key_id:
            raise StorageWriteError("Key id does not match master key")

        with self._lock:
            try:
                records = self._read_db_checked()
            except StorageReadError as exc:
                raise StorageWriteError("Existing keystore is unreadable") from exc

            try:
                records[key_id] = self._encode_record(master_key)
                self._atomically_write_db(records)
            except Exception as exc:
                _LOGGER.error(
                    "Keystore save failed for '%s': %s", key_id, exc.__class__.__name__
                )
                raise StorageWriteError("Save operation failed") from exc

        _LOGGER.info("Keystore key '%s' saved.", key_id)

    # Internals

    def _wrapping_key(self) -> bytes:
        if self._wrapping_key_provider is None:
            raise StorageError("No wrapping key provider configured")
        key = self._wrapping_key_provider()
        if not isinstance(key, bytes) or len(key) != _WRAP_KEY_SIZE:
            raise StorageError(f"Wrapping key must be {_WRAP_KEY_SIZE} bytes")
        return key

    def _encode_record(self, master_key: MasterKey) -> _RecordDict:
        rec: _RecordDict = {"created_at": master_key.created_at.isoformat()}
        if self._wrapping_key_provider is None:
            rec["k"] = b64_encode(master_key.material)
            return rec

        nonce = generate_random_bytes(_WRAP_NONCE_SIZE)
        combined = AESGCM(self._wrapping_key()).encrypt(
            nonce, master_key.material, master_key.key_id.encode("utf-8")
        )
        rec["n"] = b64_encode(nonce)
        rec["c"] = b64_encode(combined)
        return rec

    def _decode_record(self, key_id: str, rec: _RecordDict) -> MasterKey:
        try:
            created_at = datetime.fromisoformat(rec["created_at"])
            if "k" in rec:
                material = b64_decode(rec["k"])
            else:
                if self._wrapping_key_provider is None:
                    raise StorageReadError(
                        "Key is wrapped but no wrapping key provider is configured",
                        context={"key_id": key_id},
                    )
                material = AESGCM(self._wrapping_key()).decrypt(
                    b64_decode(rec["n"]),
                    b64_decode(rec["c"]),
                    key_id.encode("utf-8"),
                )
            return MasterKey(key_id=key_id, material=material, created_at=created_at)
        except StorageReadError:
            raise
        except InvalidTag as exc:
            _LOGGER.error("Keystore unwrap failed for '%s'", key_id)
            raise StorageReadError(
                "Key unwrap failed", context={"key_id": key_id}
            ) from exc
        except Exception as exc:
            _LOGGER.error(
                "Keystore record invalid for '%s': %s", key_id, exc.__class__.__name__
            )
            raise StorageReadError(
                "Invalid key record", context={"key_id": key_id}
            ) from exc

    def _read_db_checked(self) -> Dict[str, _RecordDict]:
        """
        Read the key mapping from file or return empty dict if file does not exist.

        Raises:
            StorageReadError: if file content is invalid.
        """
        if not self._filepath.exists():
            return {}

        try:
            with self._filepath.open("r", encoding="utf-8") as f:
                content = f.read()
        except OSError as exc:
            _LOGGER.error("Keystore read error: %s", exc.__class__.__name__)
            raise StorageReadError("Failed to read keystore file") from exc

        try:
            obj = json.loads(content)
            if not isinstance(obj, dict):
                raise ValueError("Root must be a JSON object")
            if obj.get("version") != _FORMAT_VERSION:
                raise ValueError(f"Unsupported keystore version: {obj.get('version')!r}")
            keys = obj.get("keys")
            if not isinstance(keys, dict):
                raise ValueError("'keys' must be a JSON object")

            result: Dict[str, _RecordDict] = {}
            for k, v in keys.items():
                if not k or not isinstance(v, dict):
                    raise ValueError("Invalid record entry")
                if not isinstance(v.get("created_at"), str):
                    raise ValueError("Missing created_at")
                has_raw = isinstance(v.get("k"), str)
                has_wrapped = isinstance(v.get("n"), str) and isinstance(v.get("c"), str)
                if not (has_raw or has_wrapped):
                    raise ValueError("Missing key material fields")
                result[k] = v
            return result
        except ValueError as exc:
            _LOGGER.error("Keystore parse error: %s", exc.__class__.__name__)
            raise StorageReadError("Invalid keystore format") from exc

    def _atomically_write_db(self, records: Dict[str, _RecordDict]) -> None:
        """
        Write JSON to a temp file and atomically replace the target file, then harden permissions.
        """
        data = json.dumps(
            {"version": _FORMAT_VERSION, "keys": records},
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
        )

        self._filepath.parent.mkdir(parents=True, exist_ok=True)

        fd: Optional[int] = None
        tmp_path: Optional[str] = None
        try:
            fd, tmp_path = tempfile.mkstemp(
                prefix=".keystore-",
                suffix=".tmp",
                dir=str(self._filepath.parent),
                text=True,
            )
            with os.fdopen(fd, "w", encoding="utf-8") as tmp_f:
                fd = None  # fd now managed by file object

                try:
                    _lock_file(tmp_f.fileno())
                except OSError as e:
                    _LOGGER.error("Could not acquire file lock: %s", e)
                    raise StorageWriteError(f"Could not acquire file lock: {e}") from e

                tmp_f.write(data)
                tmp_f.flush()
                os.fsync(tmp_f.fileno())

            os.replace(tmp_path, self._filepath)
            tmp_path = None
            set_secure_file_permissions(str(self._filepath))
        finally:
            if fd is not None:
                os.close(fd)
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
