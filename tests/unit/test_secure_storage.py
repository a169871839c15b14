# tests/unit/test_secure_storage.py
from __future__ import annotations

import base64
import json
import os
import stat
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest

from identity_protector.core.exceptions import (
    KeyPersistenceError,
    StorageError,
    StorageReadError,
    StorageWriteError,
)
from identity_protector.core.registry import AlgorithmRegistry
from identity_protector.keyring import KeyRing, MasterKey
from identity_protector.protectors import LookupProtector, PersonalDataProtector
from identity_protector.secure_storage import FileKeyStore, InMemoryKeyStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
WRAP_KEY = b"W" * 32


def _key(key_id: str, fill: int = 7) -> MasterKey:
    return MasterKey(key_id=key_id, material=bytes([fill]) * 32, created_at=T0)


def _provider(key: bytes = WRAP_KEY) -> Callable[[], bytes]:
    return lambda: key


@pytest.fixture
def ks_path(tmp_path: Path) -> Path:
    return tmp_path / "keys" / "keystore.json"


# ==============================================================================
# IN-MEMORY
# ==============================================================================


def test_in_memory_snapshot_is_a_copy() -> None:
    store = InMemoryKeyStore()
    store.save("a", _key("a"))
    snapshot = store.load_all()
    store.save("b", _key("b"))
    assert set(snapshot) == {"a"}
    assert set(store.load_all()) == {"a", "b"}


def test_in_memory_rejects_mismatched_id() -> None:
    with pytest.raises(StorageWriteError):
        InMemoryKeyStore().save("a", _key("b"))


# ==============================================================================
# FILE STORE: PLAIN
# ==============================================================================


def test_missing_file_is_empty(ks_path: Path) -> None:
    assert FileKeyStore(ks_path).load_all() == {}
    assert not ks_path.exists()


def test_save_and_reload(ks_path: Path) -> None:
    FileKeyStore(ks_path).save("k1", _key("k1"))
    FileKeyStore(str(ks_path)).save("k2", _key("k2", fill=9))

    loaded = FileKeyStore(ks_path).load_all()
    assert loaded == {"k1": _key("k1"), "k2": _key("k2", fill=9)}
    assert loaded["k1"].created_at == T0


def test_file_layout(ks_path: Path) -> None:
    FileKeyStore(ks_path).save("k1", _key("k1"))
    doc = json.loads(ks_path.read_text(encoding="utf-8"))
    assert doc["version"] == 1
    rec = doc["keys"]["k1"]
    assert set(rec) == {"created_at", "k"}
    assert base64.b64decode(rec["k"]) == bytes([7]) * 32
    assert datetime.fromisoformat(rec["created_at"]) == T0


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
def test_file_permissions(ks_path: Path) -> None:
    FileKeyStore(ks_path).save("k1", _key("k1"))
    assert stat.S_IMODE(os.stat(ks_path).st_mode) == 0o600


def test_no_temp_files_left(ks_path: Path) -> None:
    store = FileKeyStore(ks_path)
    for i in range(3):
        store.save(f"k{i}", _key(f"k{i}"))
    assert [p.name for p in ks_path.parent.iterdir()] == ["keystore.json"]


def test_save_rejects_mismatched_id(ks_path: Path) -> None:
    with pytest.raises(StorageWriteError):
        FileKeyStore(ks_path).save("k1", _key("k2"))
    with pytest.raises(StorageWriteError):
        FileKeyStore(ks_path).save("", _key("k1"))


def test_invalid_path() -> None:
    with pytest.raises(StorageError):
        FileKeyStore("")


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        "[]",
        '{"version": 2, "keys": {}}',
        '{"version": 1}',
        '{"version": 1, "keys": []}',
        '{"version": 1, "keys": {"k1": "x"}}',
        '{"version": 1, "keys": {"k1": {"k": "AAAA"}}}',
        '{"version": 1, "keys": {"k1": {"created_at": "2026-01-01T00:00:00+00:00"}}}',
    ],
)
def test_invalid_format(ks_path: Path, content: str) -> None:
    ks_path.parent.mkdir(parents=True)
    ks_path.write_text(content, encoding="utf-8")
    with pytest.raises(StorageReadError):
        FileKeyStore(ks_path).load_all()


@pytest.mark.parametrize(
    "record",
    [
        {"created_at": "yesterday", "k": "AAAA"},
        {"created_at": "2026-01-01T00:00:00+00:00", "k": "!!!!"},
        {"created_at": "2026-01-01T00:00:00+00:00", "k": "AAAA"},
    ],
)
def test_invalid_record(ks_path: Path, record: dict) -> None:
    ks_path.parent.mkdir(parents=True)
    ks_path.write_text(json.dumps({"version": 1, "keys": {"k1": record}}), encoding="utf-8")
    with pytest.raises(StorageReadError):
        FileKeyStore(ks_path).load_all()


def test_save_over_corrupt_file(ks_path: Path) -> None:
    ks_path.parent.mkdir(parents=True)
    ks_path.write_text("garbage", encoding="utf-8")
    with pytest.raises(StorageWriteError):
        FileKeyStore(ks_path).save("k1", _key("k1"))
    assert ks_path.read_text(encoding="utf-8") == "garbage"


def test_replace_failure(ks_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = FileKeyStore(ks_path)
    store.save("k1", _key("k1"))

    def boom(src: str, dst: object) -> None:
        raise OSError("read-only filesystem")

    monkeypatch.setattr(os, "replace", boom)
    with pytest.raises(StorageWriteError):
        store.save("k2", _key("k2"))
    monkeypatch.undo()

    assert set(FileKeyStore(ks_path).load_all()) == {"k1"}
    assert [p.name for p in ks_path.parent.iterdir()] == ["keystore.json"]


# ==============================================================================
# FILE STORE: WRAPPED
# ==============================================================================


def test_wrapped_round_trip(ks_path: Path) -> None:
    FileKeyStore(ks_path, wrapping_key_provider=_provider()).save("k1", _key("k1"))

    doc = json.loads(ks_path.read_text(encoding="utf-8"))
    rec = doc["keys"]["k1"]
    assert set(rec) == {"created_at", "n", "c"}
    assert base64.b64encode(bytes([7]) * 32).decode() not in ks_path.read_text(encoding="utf-8")

    loaded = FileKeyStore(ks_path, wrapping_key_provider=_provider()).load_all()
    assert loaded == {"k1": _key("k1")}


def test_wrapped_wrong_key(ks_path: Path) -> None:
    FileKeyStore(ks_path, wrapping_key_provider=_provider()).save("k1", _key("k1"))
    with pytest.raises(StorageReadError):
        FileKeyStore(ks_path, wrapping_key_provider=_provider(b"X" * 32)).load_all()


def test_wrapped_without_provider(ks_path: Path) -> None:
    FileKeyStore(ks_path, wrapping_key_provider=_provider()).save("k1", _key("k1"))
    with pytest.raises(StorageReadError):
        FileKeyStore(ks_path).load_all()


def test_wrapped_records_bound_to_key_id(ks_path: Path) -> None:
    store = FileKeyStore(ks_path, wrapping_key_provider=_provider())
    store.save("k1", _key("k1", fill=1))
    store.save("k2", _key("k2", fill=2))

    doc = json.loads(ks_path.read_text(encoding="utf-8"))
    doc["keys"]["k1"], doc["keys"]["k2"] = doc["keys"]["k2"], doc["keys"]["k1"]
    ks_path.write_text(json.dumps(doc), encoding="utf-8")

    with pytest.raises(StorageReadError):
        store.load_all()


def test_wrapping_key_size_checked(ks_path: Path) -> None:
    store = FileKeyStore(ks_path, wrapping_key_provider=_provider(b"short"))
    with pytest.raises(StorageWriteError):
        store.save("k1", _key("k1"))


def test_provider_must_be_callable(ks_path: Path) -> None:
    with pytest.raises(StorageError):
        FileKeyStore(ks_path, wrapping_key_provider=WRAP_KEY)  # type: ignore[arg-type]


# ==============================================================================
# KEY RING INTEGRATION
# ==============================================================================


def test_key_ring_survives_restart(ks_path: Path, registry: AlgorithmRegistry) -> None:
    ring = KeyRing(FileKeyStore(ks_path, wrapping_key_provider=_provider()), registry=registry)
    old_id = ring.current_key_id()
    lookup = LookupProtector(ring, registry=registry)
    personal = PersonalDataProtector(ring, registry=registry)
    c_lookup = lookup.protect(old_id, "bob@contoso.com")
    c_personal = personal.protect("555-0100")
    new_id = ring.rotate()

    restarted = KeyRing(
        FileKeyStore(ks_path, wrapping_key_provider=_provider()), registry=registry
    )
    assert restarted.current_key_id() == new_id
    assert set(restarted.key_ids()) == {old_id, new_id}
    assert LookupProtector(restarted, registry=registry).unprotect(old_id, c_lookup) == "bob@contoso.com"
    assert PersonalDataProtector(restarted, registry=registry).unprotect(c_personal) == "555-0100"


def test_key_ring_rotation_rollback_on_write_failure(
    ks_path: Path, registry: AlgorithmRegistry, monkeypatch: pytest.MonkeyPatch
) -> None:
    ring = KeyRing(FileKeyStore(ks_path), registry=registry)
    before = ring.current_key_id()

    def boom(src: str, dst: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", boom)
    with pytest.raises(KeyPersistenceError) as exc_info:
        ring.rotate()
    monkeypatch.undo()

    assert isinstance(exc_info.value.__cause__, StorageWriteError)
    assert ring.current_key_id() == before
    assert set(FileKeyStore(ks_path).load_all()) == {before}


def test_key_ring_rejects_unreadable_store(ks_path: Path, registry: AlgorithmRegistry) -> None:
    ks_path.parent.mkdir(parents=True)
    ks_path.write_text("{", encoding="utf-8")
    with pytest.raises(KeyPersistenceError):
        KeyRing(FileKeyStore(ks_path), registry=registry)


def test_wrapping_key_requires_provider(tmp_path: Path) -> None:
    with pytest.raises(StorageError):
        FileKeyStore(tmp_path / "keys.json")._wrapping_key()
