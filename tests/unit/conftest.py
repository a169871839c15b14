# tests/unit/conftest.py
from __future__ import annotations

import pytest

from identity_protector.core.registry import AlgorithmRegistry, register_default_algorithms
from identity_protector.keyring import KeyRing
from identity_protector.secure_storage import InMemoryKeyStore


@pytest.fixture
def registry() -> AlgorithmRegistry:
    """Isolated registry with the built-in ciphers; AES-256-GCM current."""
    reg = AlgorithmRegistry()
    register_default_algorithms(reg)
    return reg


@pytest.fixture
def store() -> InMemoryKeyStore:
    return InMemoryKeyStore()


@pytest.fixture
def key_ring(store: InMemoryKeyStore, registry: AlgorithmRegistry) -> KeyRing:
    """Key ring holding one freshly created key."""
    return KeyRing(store, registry=registry)
