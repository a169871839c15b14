# tests/unit/test_lookup_protector.py
"""
Тесты детерминированного защитника полей поиска.

Проверяет:
- Круговое преобразование и детерминизм
- Ротацию ключей и смену алгоритма
- Политику несовпадения key_id (кадр главнее)
- Обнаружение подделки и некорректных кадров
"""

from __future__ import annotations

import dataclasses
import logging
from types import SimpleNamespace

import pytest

from identity_protector.algorithms.kdf import KeyDerivation
from identity_protector.core.exceptions import (
    AuthenticationFailedError,
    MalformedCiphertextError,
    UnknownAlgorithmError,
    UnknownKeyError,
)
from identity_protector.core.framing import CiphertextFrame, read_key_id
from identity_protector.core.metadata import AlgorithmId
from identity_protector.core.registry import AlgorithmRegistry
from identity_protector.keyring import KeyRing
from identity_protector.protectors import LookupProtector, PersonalDataProtector
from identity_protector.utils import b64url_encode

PLAINTEXTS = ["", "a", "bob@contoso.com", "BOB@CONTOSO.COM", "Ünïcødé ✓", "x" * 5000]


@pytest.fixture
def protector(key_ring: KeyRing, registry: AlgorithmRegistry) -> LookupProtector:
    return LookupProtector(key_ring, registry=registry)


def _flip(data: bytes, index: int, bit: int = 0x01) -> bytes:
    return data[:index] + bytes([data[index] ^ bit]) + data[index + 1 :]


# ==============================================================================
# ROUND TRIP AND DETERMINISM
# ==============================================================================


@pytest.mark.parametrize("plaintext", PLAINTEXTS)
def test_round_trip(protector: LookupProtector, key_ring: KeyRing, plaintext: str) -> None:
    key_id = key_ring.current_key_id()
    assert protector.unprotect(key_id, protector.protect(key_id, plaintext)) == plaintext


@pytest.mark.parametrize("plaintext", PLAINTEXTS)
def test_deterministic(protector: LookupProtector, key_ring: KeyRing, plaintext: str) -> None:
    key_id = key_ring.current_key_id()
    assert protector.protect(key_id, plaintext) == protector.protect(key_id, plaintext)


def test_distinct_plaintexts_differ(protector: LookupProtector, key_ring: KeyRing) -> None:
    key_id = key_ring.current_key_id()
    outputs = {protector.protect(key_id, f"user{i}@contoso.com") for i in range(200)}
    assert len(outputs) == 200


def test_case_sensitive(protector: LookupProtector, key_ring: KeyRing) -> None:
    key_id = key_ring.current_key_id()
    assert protector.protect(key_id, "bob") != protector.protect(key_id, "BOB")


def test_iv_depends_on_plaintext(protector: LookupProtector, key_ring: KeyRing) -> None:
    key_id = key_ring.current_key_id()
    a = CiphertextFrame.decode(protector.protect(key_id, "alice"))
    b = CiphertextFrame.decode(protector.protect(key_id, "bob"))
    assert a.nonce != b.nonce
    assert len(a.nonce) == 12


def test_frame_contents(protector: LookupProtector, key_ring: KeyRing) -> None:
    key_id = key_ring.current_key_id()
    frame = CiphertextFrame.decode(protector.protect(key_id, "bob@contoso.com"))
    assert frame.algorithm_id == AlgorithmId.AES_256_GCM
    assert frame.key_id == key_id
    assert len(frame.tag) == 16
    assert len(frame.ciphertext) == len("bob@contoso.com")


def test_separate_protectors_agree(key_ring: KeyRing, registry: AlgorithmRegistry) -> None:
    key_id = key_ring.current_key_id()
    first = LookupProtector(key_ring, registry=registry).protect(key_id, "bob")
    second = LookupProtector(key_ring, registry=registry).protect(key_id, "bob")
    assert first == second


def test_different_keys_differ(protector: LookupProtector, key_ring: KeyRing) -> None:
    k1 = key_ring.current_key_id()
    k2 = key_ring.rotate()
    assert protector.protect(k1, "bob") != protector.protect(k2, "bob")


# ==============================================================================
# ROTATION
# ==============================================================================


def test_example_scenario(protector: LookupProtector, key_ring: KeyRing) -> None:
    k1 = key_ring.current_key_id()
    c = protector.protect(k1, "bob@contoso.com")
    assert protector.protect(k1, "bob@contoso.com") == c
    assert protector.unprotect(k1, c) == "bob@contoso.com"

    k2 = key_ring.rotate()
    assert key_ring.current_key_id() == k2
    assert protector.unprotect(k1, c) == "bob@contoso.com"

    c2 = protector.protect(k2, "bob@contoso.com")
    assert c2 != c
    assert read_key_id(c2) == k2
    assert protector.unprotect(k2, c2) == "bob@contoso.com"


def test_protect_with_retired_key_still_works(protector: LookupProtector, key_ring: KeyRing) -> None:
    k1 = key_ring.current_key_id()
    before = protector.protect(k1, "bob")
    key_ring.rotate()
    assert protector.protect(k1, "bob") == before


def test_lookup_candidates(protector: LookupProtector, key_ring: KeyRing) -> None:
    k1 = key_ring.current_key_id()
    c1 = protector.protect(k1, "bob@contoso.com")
    k2 = key_ring.rotate()

    candidates = protector.lookup_candidates("bob@contoso.com")
    assert set(candidates) == {k1, k2}
    assert candidates[k1] == c1
    assert candidates[k2] == protector.protect(k2, "bob@contoso.com")


def test_needs_reprotect_and_reprotect(protector: LookupProtector, key_ring: KeyRing) -> None:
    k1 = key_ring.current_key_id()
    c1 = protector.protect(k1, "bob")
    assert not protector.needs_reprotect(c1)

    k2 = key_ring.rotate()
    assert protector.needs_reprotect(c1)

    c2 = protector.reprotect(c1)
    assert read_key_id(c2) == k2
    assert c2 == protector.protect(k2, "bob")
    assert not protector.needs_reprotect(c2)


def test_algorithm_change(
    protector: LookupProtector, key_ring: KeyRing, registry: AlgorithmRegistry
) -> None:
    key_id = key_ring.current_key_id()
    gcm = protector.protect(key_id, "bob")

    registry.set_current(AlgorithmId.CHACHA20_POLY1305)
    chacha = protector.protect(key_id, "bob")

    assert CiphertextFrame.decode(chacha).algorithm_id == AlgorithmId.CHACHA20_POLY1305
    assert chacha != gcm
    assert protector.needs_reprotect(gcm)
    assert not protector.needs_reprotect(chacha)
    assert protector.unprotect(key_id, gcm) == "bob"
    assert protector.unprotect(key_id, chacha) == "bob"
    assert protector.reprotect(gcm) == chacha


def test_legacy_algorithm_round_trip(
    protector: LookupProtector, key_ring: KeyRing, registry: AlgorithmRegistry
) -> None:
    registry.set_current(AlgorithmId.AES_256_CBC_HMAC_SHA256)
    key_id = key_ring.current_key_id()
    c = protector.protect(key_id, "bob@contoso.com")
    frame = CiphertextFrame.decode(c)
    assert frame.algorithm_id == AlgorithmId.AES_256_CBC_HMAC_SHA256
    assert len(frame.nonce) == 16
    assert len(frame.tag) == 32
    assert protector.protect(key_id, "bob@contoso.com") == c
    assert protector.unprotect(key_id, c) == "bob@contoso.com"


def test_synthetic_iv_expands_long_nonces(protector: LookupProtector) -> None:
    long_cipher = SimpleNamespace(nonce_size=48)
    iv = protector._synthetic_iv(b"s" * 32, b"bob", long_cipher)  # type: ignore[arg-type]
    assert len(iv) == 48
    assert iv == protector._synthetic_iv(b"s" * 32, b"bob", long_cipher)  # type: ignore[arg-type]
    assert iv != protector._synthetic_iv(b"s" * 32, b"alice", long_cipher)  # type: ignore[arg-type]


# ==============================================================================
# KEY ID POLICY
# ==============================================================================


def test_frame_key_id_is_authoritative(
    protector: LookupProtector, key_ring: KeyRing, caplog: pytest.LogCaptureFixture
) -> None:
    k1 = key_ring.current_key_id()
    c = protector.protect(k1, "bob")
    k2 = key_ring.rotate()

    with caplog.at_level(logging.DEBUG, logger="identity_protector.protectors"):
        assert protector.unprotect(k2, c) == "bob"
    assert any("differs from frame key id" in r.getMessage() for r in caplog.records)


def test_caller_key_id_need_not_exist(protector: LookupProtector, key_ring: KeyRing) -> None:
    c = protector.protect(key_ring.current_key_id(), "bob")
    assert protector.unprotect("no-such-key", c) == "bob"


def test_matching_key_id_not_logged(
    protector: LookupProtector, key_ring: KeyRing, caplog: pytest.LogCaptureFixture
) -> None:
    key_id = key_ring.current_key_id()
    c = protector.protect(key_id, "bob")
    with caplog.at_level(logging.DEBUG, logger="identity_protector.protectors"):
        protector.unprotect(key_id, c)
    assert not any("differs" in r.getMessage() for r in caplog.records)


# ==============================================================================
# FAILURES
# ==============================================================================


def test_protect_unknown_key(protector: LookupProtector) -> None:
    with pytest.raises(UnknownKeyError):
        protector.protect("no-such-key", "bob")


def test_unprotect_unknown_key(protector: LookupProtector, key_ring: KeyRing) -> None:
    frame = CiphertextFrame.decode(protector.protect(key_ring.current_key_id(), "bob"))
    forged = dataclasses.replace(frame, key_id="deleted-key").encode()
    with pytest.raises(UnknownKeyError) as exc_info:
        protector.unprotect("deleted-key", forged)
    assert exc_info.value.key_id == "deleted-key"


def test_unprotect_unknown_algorithm(protector: LookupProtector, key_ring: KeyRing) -> None:
    key_id = key_ring.current_key_id()
    frame = CiphertextFrame.decode(protector.protect(key_id, "bob"))
    forged = dataclasses.replace(frame, algorithm_id=99).encode()
    with pytest.raises(UnknownAlgorithmError) as exc_info:
        protector.unprotect(key_id, forged)
    assert exc_info.value.algorithm_id == 99


def test_unknown_algorithm_checked_before_key(protector: LookupProtector, key_ring: KeyRing) -> None:
    frame = CiphertextFrame.decode(protector.protect(key_ring.current_key_id(), "bob"))
    forged = dataclasses.replace(frame, algorithm_id=99, key_id="deleted-key").encode()
    with pytest.raises(UnknownAlgorithmError):
        protector.unprotect("deleted-key", forged)


def test_tag_bit_flips_detected(protector: LookupProtector, key_ring: KeyRing) -> None:
    key_id = key_ring.current_key_id()
    frame = CiphertextFrame.decode(protector.protect(key_id, "bob@contoso.com"))
    for index in range(len(frame.tag)):
        for bit in (0x01, 0x80):
            forged = dataclasses.replace(frame, tag=_flip(frame.tag, index, bit)).encode()
            with pytest.raises(AuthenticationFailedError):
                protector.unprotect(key_id, forged)


def test_ciphertext_bit_flips_detected(protector: LookupProtector, key_ring: KeyRing) -> None:
    key_id = key_ring.current_key_id()
    frame = CiphertextFrame.decode(protector.protect(key_id, "bob@contoso.com"))
    for index in range(len(frame.ciphertext)):
        forged = dataclasses.replace(
            frame, ciphertext=_flip(frame.ciphertext, index)
        ).encode()
        with pytest.raises(AuthenticationFailedError):
            protector.unprotect(key_id, forged)


def test_iv_bit_flip_detected(protector: LookupProtector, key_ring: KeyRing) -> None:
    key_id = key_ring.current_key_id()
    frame = CiphertextFrame.decode(protector.protect(key_id, "bob"))
    forged = dataclasses.replace(frame, nonce=_flip(frame.nonce, 0)).encode()
    with pytest.raises(AuthenticationFailedError):
        protector.unprotect(key_id, forged)


def test_relabelled_key_id_fails(protector: LookupProtector, key_ring: KeyRing) -> None:
    k1 = key_ring.current_key_id()
    k2 = key_ring.rotate()
    frame = CiphertextFrame.decode(protector.protect(k1, "bob"))
    forged = dataclasses.replace(frame, key_id=k2).encode()
    with pytest.raises(AuthenticationFailedError):
        protector.unprotect(k2, forged)


def test_personal_protector_cannot_open_lookup_frame(
    protector: LookupProtector, key_ring: KeyRing, registry: AlgorithmRegistry
) -> None:
    c = protector.protect(key_ring.current_key_id(), "bob")
    with pytest.raises(AuthenticationFailedError):
        PersonalDataProtector(key_ring, registry=registry).unprotect(c)


@pytest.mark.parametrize(
    "text",
    [
        "",
        "garbage",
        "2.a.b.c",
        "2.azE.AAAA.AAAA.AAAA.AAAA",
        "two.azE.AAAAAAAAAAAAAAAA.AAAAAAAAAAAAAAAAAAAAAA.AAAA",
        "2.azE.AAAAAAAAAAAAAAAA.AAAAAAAAAAAAAAAAAAAAAA.A",
    ],
)
def test_malformed_frames(protector: LookupProtector, key_ring: KeyRing, text: str) -> None:
    with pytest.raises(MalformedCiphertextError):
        protector.unprotect(key_ring.current_key_id(), text)


def test_wrong_iv_length_is_malformed(protector: LookupProtector, key_ring: KeyRing) -> None:
    key_id = key_ring.current_key_id()
    frame = CiphertextFrame.decode(protector.protect(key_id, "bob"))
    forged = dataclasses.replace(frame, nonce=frame.nonce[:-1]).encode()
    with pytest.raises(MalformedCiphertextError):
        protector.unprotect(key_id, forged)


def test_wrong_tag_length_is_malformed(protector: LookupProtector, key_ring: KeyRing) -> None:
    key_id = key_ring.current_key_id()
    frame = CiphertextFrame.decode(protector.protect(key_id, "bob"))
    text = ".".join(
        [str(frame.algorithm_id), b64url_encode(key_id.encode()), b64url_encode(frame.nonce),
         b64url_encode(frame.tag + b"\x00"), b64url_encode(frame.ciphertext)]
    )
    with pytest.raises(MalformedCiphertextError):
        protector.unprotect(key_id, text)


@pytest.mark.parametrize(
    "key_id, value",
    [(None, "bob"), ("k", None), ("k", b"bob"), (1, "bob")],
)
def test_type_errors(protector: LookupProtector, key_id: object, value: object) -> None:
    with pytest.raises(TypeError):
        protector.protect(key_id, value)  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        protector.unprotect(key_id, value)  # type: ignore[arg-type]


class RecordingKeyDerivation(KeyDerivation):
    def __init__(self) -> None:
        self.calls = 0

    def derive(self, master_key, role, cipher):  # type: ignore[no-untyped-def]
        self.calls += 1
        return super().derive(master_key, role, cipher)


def test_unencodable_text_rejected_before_derivation(
    key_ring: KeyRing, registry: AlgorithmRegistry
) -> None:
    kdf = RecordingKeyDerivation()
    protector = LookupProtector(key_ring, registry=registry, key_derivation=kdf)
    key_id = key_ring.current_key_id()

    with pytest.raises(ValueError, match="plaintext"):
        protector.protect(key_id, "bob\ud800")
    with pytest.raises(ValueError, match="key_id"):
        protector.protect("\udfff", "bob")
    with pytest.raises(ValueError, match="plaintext"):
        protector.lookup_candidates("\ud800")
    assert kdf.calls == 0
