# -*- coding: utf-8 -*-
"""
RU: Защита персональных данных перед сохранением: детерминированное
шифрование полей для поиска и рандомизированное для остальных данных,
со сменой алгоритмов и ротацией ключей.

EN: Protection of personal data before persistence. Deterministic
encryption for lookup fields, randomized encryption for everything else,
with algorithm agility and key rotation.

Example:
    >>> from identity_protector import KeyRing, LookupProtector, read_key_id
    >>> ring = KeyRing.in_memory()
    >>> lookup = LookupProtector(ring)
    >>> stored = lookup.protect(ring.current_key_id(), "BOB@CONTOSO.COM")
    >>> lookup.unprotect(read_key_id(stored), stored)
    'BOB@CONTOSO.COM'
"""

import logging

from identity_protector.algorithms.kdf import DerivedKeyPair, KeyDerivation, Role
from identity_protector.config import ProtectorConfig, build_key_ring
from identity_protector.core.exceptions import (
    AuthenticationFailedError,
    ConfigurationError,
    CryptoError,
    KeyPersistenceError,
    MalformedCiphertextError,
    UnknownAlgorithmError,
    UnknownKeyError,
)
from identity_protector.core.framing import CiphertextFrame, read_key_id
from identity_protector.core.metadata import AlgorithmId
from identity_protector.core.registry import AlgorithmRegistry
from identity_protector.keyring import KeyRing, MasterKey
from identity_protector.log import configure_logging, get_logger
from identity_protector.protectors import LookupProtector, PersonalDataProtector
from identity_protector.secure_storage import FileKeyStore, InMemoryKeyStore

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "AlgorithmId",
    "AlgorithmRegistry",
    "AuthenticationFailedError",
    "CiphertextFrame",
    "ConfigurationError",
    "CryptoError",
    "DerivedKeyPair",
    "FileKeyStore",
    "InMemoryKeyStore",
    "KeyDerivation",
    "KeyPersistenceError",
    "KeyRing",
    "LookupProtector",
    "MalformedCiphertextError",
    "MasterKey",
    "PersonalDataProtector",
    "ProtectorConfig",
    "Role",
    "UnknownAlgorithmError",
    "UnknownKeyError",
    "build_key_ring",
    "configure_logging",
    "get_logger",
    "read_key_id",
]
