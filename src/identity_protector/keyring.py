# -*- coding: utf-8 -*-
"""
RU: Кольцо мастер-ключей: только добавление, один текущий ключ, ротация
с сохранением в хранилище до активации.

EN: Append-only ring of master keys with one current key. Rotation persists
the new key before it becomes visible.

Features:
- Startup from a key store snapshot (newest key becomes current)
- First key created automatically for an empty store
- All-or-nothing rotation (store failure leaves the ring unchanged)
- Lookup of retired keys by id for reading old data
"""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Final, Iterator, List, Optional

from identity_protector.core.exceptions import KeyPersistenceError, UnknownKeyError
from identity_protector.core.protocols import KeyStoreProtocol
from identity_protector.core.registry import AlgorithmRegistry
from identity_protector.utils import generate_random_bytes

_LOGGER: Final = logging.getLogger(__name__)

MIN_MASTER_KEY_SIZE: Final[int] = 32

__all__ = ["MasterKey", "KeyRing"]


@dataclass(frozen=True)
class MasterKey:
    """
    Master key owned by the key ring.

    Attributes:
        key_id: Opaque identifier embedded in every frame it protects.
        material: Secret key bytes (never shown in repr).
        created_at: Creation timestamp (UTC); the newest key is current at startup.
    """

    key_id: str
    material: bytes = field(repr=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not isinstance(self.key_id, str) or not self.key_id:
            raise ValueError("key_id must be a non-empty string")
        if not isinstance(self.material, bytes) or len(self.material) < MIN_MASTER_KEY_SIZE:
            raise ValueError(f"material must be at least {MIN_MASTER_KEY_SIZE} bytes")


class KeyRing:
    """
    Thread-safe set of master keys with a current key.

    Args:
        store: Persistence collaborator (see KeyStoreProtocol).
        registry: Algorithm registry used to size new keys; defaults to the
            shared instance.
        master_key_size: Minimum size of new keys in bytes. New keys are never
            smaller than the current cipher's key size.

    Raises:
        KeyPersistenceError: the store snapshot is unreadable or inconsistent,
            or the first key of an empty store could not be saved.

    Example:
        >>> ring = KeyRing.in_memory()
        >>> first = ring.current_key_id()
        >>> second = ring.rotate()
        >>> ring.current_key_id() == second and first in ring
        True
    """

    def __init__(
        self,
        store: KeyStoreProtocol,
        *,
        registry: Optional[AlgorithmRegistry] = None,
        master_key_size: int = MIN_MASTER_KEY_SIZE,
    ) -> None:
        self._store = store
        self._registry = registry or AlgorithmRegistry.get_instance()
        self._master_key_size = max(MIN_MASTER_KEY_SIZE, master_key_size)
        self._lock = threading.RLock()
        self._keys: Dict[str, MasterKey] = {}
        self._current: Optional[str] = None

        self._load()
        if self._current is None:
            _LOGGER.info("Key store is empty, creating first master key")
            self.rotate()

    @classmethod
    def in_memory(cls, *, registry: Optional[AlgorithmRegistry] = None) -> KeyRing:
        """Key ring backed by a fresh InMemoryKeyStore."""
        from identity_protector.secure_storage import InMemoryKeyStore

        return cls(InMemoryKeyStore(), registry=registry)

    def _load(self) -> None:
        try:
            snapshot = self._store.load_all()
        except Exception as exc:
            _LOGGER.error("Key store load failed: %s", exc.__class__.__name__)
            raise KeyPersistenceError("Could not load master keys") from exc

        for key_id, master_key in snapshot.items():
            if not isinstance(master_key, MasterKey) or master_key.key_id != key_id:
                raise KeyPersistenceError(
                    "Key store returned an inconsistent entry",
                    context={"key_id": key_id},
                )
            self._keys[key_id] = master_key

        if self._keys:
            newest = max(self._keys.values(), key=lambda k: (k.created_at, k.key_id))
            self._current = newest.key_id
            _LOGGER.info(
                "Loaded %d master keys, current=%s", len(self._keys), self._current
            )

    def rotate(self) -> str:
        """
        Create, persist and activate a new master key.

        Returns:
            The new key id.

        Raises:
            KeyPersistenceError: the store rejected the key; the ring is unchanged.
        """
        with self._lock:
            size = max(self._master_key_size, self._registry.current_algorithm().key_size)
            master_key = MasterKey(
                key_id=str(uuid.uuid4()),
                material=generate_random_bytes(size),
            )

            try:
                self._store.save(master_key.key_id, master_key)
            except Exception as exc:
                _LOGGER.error(
                    "Key rotation aborted, store save failed: %s",
                    exc.__class__.__name__,
                )
                raise KeyPersistenceError(
                    "Could not persist new master key",
                    context={"key_id": master_key.key_id},
                ) from exc

            previous = self._current
            self._keys[master_key.key_id] = master_key
            self._current = master_key.key_id

        _LOGGER.info("Rotated master key: %s -> %s", previous, master_key.key_id)
        return master_key.key_id

    @property
    def registry(self) -> AlgorithmRegistry:
        """Registry that sizes new keys; protectors built on this ring share it."""
        return self._registry

    def current_key_id(self) -> str:
        with self._lock:
            if self._current is None:
                raise KeyPersistenceError("Key ring has no current master key")
            return self._current

    def current_key(self) -> MasterKey:
        with self._lock:
            return self.key_for(self.current_key_id())

    def key_for(self, key_id: str) -> MasterKey:
        """
        Resolve a key id, current or retired.

        Raises:
            UnknownKeyError: the id is not in the ring.
        """
        with self._lock:
            master_key = self._keys.get(key_id)
        if master_key is None:
            raise UnknownKeyError(key_id)
        return master_key

    def key_ids(self) -> List[str]:
        """All known key ids, oldest first."""
        with self._lock:
            return [
                k.key_id
                for k in sorted(self._keys.values(), key=lambda k: (k.created_at, k.key_id))
            ]

    def __contains__(self, key_id: object) -> bool:
        with self._lock:
            return key_id in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def __iter__(self) -> Iterator[str]:
        return iter(self.key_ids())

    def __repr__(self) -> str:
        return f"KeyRing(keys={len(self)}, current={self._current!r})"
