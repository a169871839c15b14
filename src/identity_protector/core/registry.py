"""
Реестр аутентифицированных шифров по сетевому идентификатору.

Thread-safe реестр алгоритмов, доступных защитникам данных. Обеспечивает:
- Регистрацию шифров с валидацией Protocol
- Выбор текущего алгоритма для новых шифротекстов
- Поиск алгоритма по идентификатору из кадра (frame)
- Общий экземпляр по умолчанию (get_instance) и изолированные экземпляры

Example:
    >>> from identity_protector.core.registry import AlgorithmRegistry
    >>> registry = AlgorithmRegistry.get_instance()
    >>> registry.current_identifier()
    2
    >>> cipher = registry.algorithm_for(3)
    >>> cipher.algorithm_name
    'ChaCha20-Poly1305'

Thread Safety:
    Все публичные методы thread-safe благодаря RLock. Экземпляры шифров
    не имеют состояния и разделяются между потоками.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Final, List, Optional

from identity_protector.core.exceptions import (
    DuplicateRegistrationError,
    ProtocolError,
    UnknownAlgorithmError,
)
from identity_protector.core.metadata import AlgorithmId, AlgorithmMetadata
from identity_protector.core.protocols import AuthenticatedCipherProtocol

_LOGGER: Final = logging.getLogger(__name__)

DEFAULT_ALGORITHM: int = int(AlgorithmId.AES_256_GCM)


# ==============================================================================
# DATACLASSES
# ==============================================================================


@dataclass(frozen=True)
class RegistryEntry:
    """
    Запись реестра.

    Attributes:
        algorithm_id: Сетевой идентификатор
        instance: Экземпляр шифра (без состояния, разделяемый)
        metadata: Метаданные алгоритма
    """

    algorithm_id: int
    instance: AuthenticatedCipherProtocol
    metadata: AlgorithmMetadata


# ==============================================================================
# ALGORITHM REGISTRY
# ==============================================================================


class AlgorithmRegistry:
    """
    Реестр шифров с выбором текущего алгоритма.

    Идентификатор после регистрации никогда не переназначается: старые
    кадры должны расшифровываться всегда.

    Attributes:
        _entries: Словарь {algorithm_id -> RegistryEntry}
        _current: Идентификатор для новых шифротекстов (None до выбора)

    Example:
        >>> registry = AlgorithmRegistry()
        >>> registry.register(AES256GCM)
        >>> registry.set_current(2)
        >>> registry.current_algorithm().algorithm_name
        'AES-256-GCM'
    """

    _instance: Optional[AlgorithmRegistry] = None
    _instance_lock: threading.RLock = threading.RLock()

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: Dict[int, RegistryEntry] = {}
        self._current: Optional[int] = None

    @classmethod
    def get_instance(cls) -> AlgorithmRegistry:
        """
        Общий реестр со всеми встроенными шифрами; текущий: AES-256-GCM.

        Thread Safety:
            Double-checked locking.
        """
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    registry = cls()
                    register_default_algorithms(registry)
                    cls._instance = registry
                    _LOGGER.info(
                        "Default AlgorithmRegistry initialized with %d algorithms",
                        len(registry.list_algorithms()),
                    )
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Сбросить общий экземпляр (только для тестов)."""
        with cls._instance_lock:
            cls._instance = None
            _LOGGER.warning("AlgorithmRegistry instance reset (testing only!)")

    def register(
        self,
        factory: Callable[[], Any],
        metadata: Optional[AlgorithmMetadata] = None,
    ) -> None:
        """
        Зарегистрировать шифр.

        Args:
            factory: Класс или фабрика без аргументов.
            metadata: Метаданные; по умолчанию factory.metadata.

        Raises:
            TypeError: factory не callable или метаданные отсутствуют.
            ProtocolError: экземпляр не реализует AuthenticatedCipherProtocol.
            DuplicateRegistrationError: идентификатор уже занят.
        """
        if not callable(factory):
            raise TypeError(
                f"factory must be callable, got {type(factory).__name__}"
            )
        if metadata is None:
            metadata = getattr(factory, "metadata", None)
        if not isinstance(metadata, AlgorithmMetadata):
            raise TypeError("metadata must be an AlgorithmMetadata instance")

        instance = self._validate_protocol(factory, metadata)

        with self._lock:
            existing = self._entries.get(metadata.algorithm_id)
            if existing is not None:
                raise DuplicateRegistrationError(
                    metadata.algorithm_id, existing.metadata.name
                )
            self._entries[metadata.algorithm_id] = RegistryEntry(
                algorithm_id=metadata.algorithm_id,
                instance=instance,
                metadata=metadata,
            )

        _LOGGER.info(
            "Registered algorithm: %s (id=%d, status=%s)",
            metadata.name,
            metadata.algorithm_id,
            metadata.status.value,
        )

    def _validate_protocol(
        self,
        factory: Callable[[], Any],
        metadata: AlgorithmMetadata,
    ) -> AuthenticatedCipherProtocol:
        try:
            instance = factory()
        except Exception as e:
            raise ProtocolError(
                f"Could not instantiate {metadata.name}: {e}"
            ) from e

        if not isinstance(instance, AuthenticatedCipherProtocol):
            raise ProtocolError(
                f"{type(instance).__name__} does not implement "
                f"AuthenticatedCipherProtocol"
            )
        if instance.algorithm_id != metadata.algorithm_id:
            raise ProtocolError(
                f"{metadata.name}: instance id {instance.algorithm_id} "
                f"does not match metadata id {metadata.algorithm_id}"
            )

        _LOGGER.debug("Protocol validation passed: %s", metadata.name)
        return instance

    def set_current(self, algorithm_id: int) -> None:
        """
        Выбрать алгоритм для новых шифротекстов.

        Raises:
            UnknownAlgorithmError: идентификатор не зарегистрирован.
        """
        with self._lock:
            entry = self._entry(algorithm_id)
            self._current = entry.algorithm_id

        if not entry.metadata.is_safe_for_new_data():
            _LOGGER.warning(
                "Legacy algorithm %s selected for new ciphertexts",
                entry.metadata.name,
            )
        else:
            _LOGGER.info("Current algorithm set to %s", entry.metadata.name)

    def current_identifier(self) -> int:
        """
        Идентификатор текущего алгоритма.

        Raises:
            UnknownAlgorithmError: текущий алгоритм не выбран.
        """
        with self._lock:
            if self._current is None:
                raise UnknownAlgorithmError(0, available=self.list_algorithms())
            return self._current

    def current_algorithm(self) -> AuthenticatedCipherProtocol:
        """Экземпляр текущего алгоритма."""
        with self._lock:
            return self._entry(self.current_identifier()).instance

    def algorithm_for(self, algorithm_id: int) -> AuthenticatedCipherProtocol:
        """
        Шифр по идентификатору из кадра.

        Raises:
            UnknownAlgorithmError: идентификатор не зарегистрирован.
        """
        return self._entry(algorithm_id).instance

    def is_registered(self, algorithm_id: int) -> bool:
        with self._lock:
            return algorithm_id in self._entries

    def list_algorithms(self) -> List[int]:
        """Отсортированный список зарегистрированных идентификаторов."""
        with self._lock:
            return sorted(self._entries)

    def _entry(self, algorithm_id: int) -> RegistryEntry:
        with self._lock:
            entry = self._entries.get(algorithm_id)
            if entry is None:
                raise UnknownAlgorithmError(
                    algorithm_id, available=sorted(self._entries)
                )
            return entry


# ==============================================================================
# REGISTRATION FUNCTION
# ==============================================================================


def register_default_algorithms(registry: AlgorithmRegistry) -> None:
    """
    Зарегистрировать встроенные шифры и выбрать AES-256-GCM текущим.

    Example:
        >>> registry = AlgorithmRegistry()
        >>> register_default_algorithms(registry)
        >>> registry.list_algorithms()
        [1, 2, 3]
    """
    from identity_protector.algorithms.symmetric import ALGORITHMS

    for factory in ALGORITHMS.values():
        registry.register(factory)
    registry.set_current(DEFAULT_ALGORITHM)


__all__: list[str] = [
    "AlgorithmRegistry",
    "RegistryEntry",
    "DEFAULT_ALGORITHM",
    "register_default_algorithms",
]
