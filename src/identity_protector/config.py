# -*- coding: utf-8 -*-
"""
RU: Конфигурация защитников данных: алгоритм, хранилище ключей, размер ключа.
EN: Protector configuration: algorithm, key store location, master key size.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Final, Mapping, Optional

from identity_protector.core.exceptions import ConfigurationError
from identity_protector.core.metadata import AlgorithmId
from identity_protector.core.registry import AlgorithmRegistry, register_default_algorithms
from identity_protector.keyring import KeyRing
from identity_protector.secure_storage import FileKeyStore, InMemoryKeyStore

_LOGGER: Final = logging.getLogger(__name__)

ENV_ALGORITHM: Final[str] = "IDENTITY_PROTECTOR_ALGORITHM"
ENV_KEYSTORE: Final[str] = "IDENTITY_PROTECTOR_KEYSTORE"
ENV_MASTER_KEY_SIZE: Final[str] = "IDENTITY_PROTECTOR_MASTER_KEY_SIZE"

MIN_MASTER_KEY_SIZE: Final[int] = 32
MAX_MASTER_KEY_SIZE: Final[int] = 64

__all__ = ["ProtectorConfig", "build_key_ring"]


@dataclass(frozen=True)
class ProtectorConfig:
    """
    Protector configuration.

    Attributes:
        algorithm: Algorithm for new ciphertexts.
        keystore_path: JSON key store file; None keeps keys in memory only.
        master_key_size: Minimum size of new master keys in bytes (32..64).

    Examples:
        >>> ProtectorConfig.from_mapping({"algorithm": "chacha20-poly1305"}).algorithm
        <AlgorithmId.CHACHA20_POLY1305: 3>

        >>> ProtectorConfig.from_env({"IDENTITY_PROTECTOR_MASTER_KEY_SIZE": "48"}).master_key_size
        48
    """

    algorithm: AlgorithmId = AlgorithmId.AES_256_GCM
    keystore_path: Optional[str] = None
    master_key_size: int = MIN_MASTER_KEY_SIZE

    def __post_init__(self) -> None:
        """Validate parameters."""
        if not isinstance(self.algorithm, AlgorithmId):
            raise ConfigurationError(f"algorithm must be AlgorithmId, got {self.algorithm!r}")
        if self.keystore_path is not None and not self.keystore_path.strip():
            raise ConfigurationError("keystore_path cannot be blank")
        if (
            isinstance(self.master_key_size, bool)
            or not isinstance(self.master_key_size, int)
            or not MIN_MASTER_KEY_SIZE <= self.master_key_size <= MAX_MASTER_KEY_SIZE
        ):
            raise ConfigurationError(
                f"master_key_size must be between {MIN_MASTER_KEY_SIZE} "
                f"and {MAX_MASTER_KEY_SIZE} bytes"
            )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ProtectorConfig:
        """
        Build from a plain mapping (e.g. a parsed settings file section).

        Unknown keys are rejected.

        Raises:
            ConfigurationError: invalid or unknown values.
        """
        unknown = set(data) - {"algorithm", "keystore_path", "master_key_size"}
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")

        kwargs: dict[str, Any] = {}
        if data.get("algorithm") is not None:
            try:
                kwargs["algorithm"] = AlgorithmId.parse(data["algorithm"])
            except ValueError as exc:
                raise ConfigurationError(f"Unknown algorithm: {data['algorithm']!r}") from exc
        if data.get("keystore_path") is not None:
            kwargs["keystore_path"] = os.fspath(data["keystore_path"])
        if data.get("master_key_size") is not None:
            try:
                kwargs["master_key_size"] = int(data["master_key_size"])
            except (TypeError, ValueError) as exc:
                raise ConfigurationError("master_key_size must be an integer") from exc
        return cls(**kwargs)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> ProtectorConfig:
        """
        Build from IDENTITY_PROTECTOR_* environment variables.

        Empty variables count as unset.
        """
        env = os.environ if environ is None else environ
        return cls.from_mapping(
            {
                "algorithm": env.get(ENV_ALGORITHM) or None,
                "keystore_path": env.get(ENV_KEYSTORE) or None,
                "master_key_size": env.get(ENV_MASTER_KEY_SIZE) or None,
            }
        )


def build_key_ring(
    config: ProtectorConfig,
    *,
    registry: Optional[AlgorithmRegistry] = None,
    wrapping_key_provider: Optional[Callable[[], bytes]] = None,
) -> KeyRing:
    """
    Wire registry, key store and key ring from a configuration.

    The registry's current algorithm is set to config.algorithm. Without a
    registry a fresh one holding the built-in algorithms is created, so the
    shared default instance is never changed. The ring keeps the registry,
    and protectors built on the ring use it unless given another one.
    """
    if registry is None:
        registry = AlgorithmRegistry()
        register_default_algorithms(registry)
    registry.set_current(config.algorithm)

    if config.keystore_path is not None:
        store: Any = FileKeyStore(
            config.keystore_path, wrapping_key_provider=wrapping_key_provider
        )
    else:
        if wrapping_key_provider is not None:
            _LOGGER.warning("wrapping_key_provider ignored for in-memory key store")
        store = InMemoryKeyStore()

    _LOGGER.info(
        "Building key ring: algorithm=%s store=%s",
        config.algorithm.label,
        type(store).__name__,
    )
    return KeyRing(store, registry=registry, master_key_size=config.master_key_size)
