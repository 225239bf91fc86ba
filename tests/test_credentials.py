from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from tachobridge._constants import BRIDGE_IDENTIFIER_PATTERN
from tachobridge.credentials import CredentialSet, CredentialStore, normalize_bridge_identifier, storage_key
from tachobridge.storage import JsonFileStorage, MemoryStorage


@pytest.mark.parametrize("stored", [None, "", "garbage", "TBA-no-digits"])
def test_normalize_generates_identifier_without_digits(stored: str | None) -> None:
    identifier = normalize_bridge_identifier(stored)
    assert BRIDGE_IDENTIFIER_PATTERN.fullmatch(identifier)


def test_normalize_keeps_well_formed_identifier() -> None:
    assert normalize_bridge_identifier("TBA0000000000123") == "TBA0000000000123"


def test_normalize_pads_and_truncates_foreign_digits() -> None:
    assert normalize_bridge_identifier("ABC-12345") == "TBA0000000012345"
    assert normalize_bridge_identifier("XYZ12345678901234567") == "TBA5678901234567"


def test_normalize_rejects_trailing_newline() -> None:
    assert normalize_bridge_identifier("TBA1234567890123\n") == "TBA1234567890123"


def test_normalize_ignores_non_ascii_digits() -> None:
    identifier = normalize_bridge_identifier("TBA" + "١" * 13)

    assert BRIDGE_IDENTIFIER_PATTERN.fullmatch(identifier)
    assert identifier.isascii()


def test_store_normalizes_stored_identifier_with_newline() -> None:
    storage = MemoryStorage({storage_key("bridge_client_identifier"): "TBA1234567890123\n"})

    assert CredentialStore(storage).bridge_client_identifier == "TBA1234567890123"
    assert storage.get(storage_key("bridge_client_identifier")) == "TBA1234567890123"


def test_store_generates_and_persists_identifier() -> None:
    storage = MemoryStorage()
    store = CredentialStore(storage)

    identifier = store.bridge_client_identifier
    assert BRIDGE_IDENTIFIER_PATTERN.fullmatch(identifier)
    assert storage.get(storage_key("bridge_client_identifier")) == identifier

    # A second store over the same storage sees the same identifier.
    assert CredentialStore(storage).bridge_client_identifier == identifier


def test_store_normalizes_foreign_identifier_on_load() -> None:
    storage = MemoryStorage({storage_key("bridge_client_identifier"): "legacy-42"})
    store = CredentialStore(storage)

    assert store.bridge_client_identifier == "TBA0000000000042"
    assert storage.get(storage_key("bridge_client_identifier")) == "TBA0000000000042"


def test_save_merges_and_ignores_empty_values(store: CredentialStore) -> None:
    store.save(device_token="device-1")
    store.save(session_token="session-1", device_token="")
    store.save(CredentialSet(fleet_token="fleet-1", fleet_company_id="42", device_token=None))

    current = store.current
    assert current.device_token == "device-1"
    assert current.session_token == "session-1"
    assert current.fleet_token == "fleet-1"
    assert current.has_fleet_token


def test_save_rejects_unknown_fields(store: CredentialStore) -> None:
    with pytest.raises(TypeError):
        store.save(password="secret")


def test_clear_keeps_bridge_client_identifier(storage: MemoryStorage, store: CredentialStore) -> None:
    identifier = store.bridge_client_identifier
    store.save(
        device_token="device-1",
        session_token="session-1",
        fleet_token="fleet-1",
        fleet_company_id="42",
        bridge_device_id="dev-1",
        pending_authorization_token="pending-1",
    )

    cleared = store.clear()

    assert cleared.populated() == {"bridge_client_identifier": identifier}
    assert storage.snapshot() == {storage_key("bridge_client_identifier"): identifier}


def test_forget_never_removes_identifier(store: CredentialStore) -> None:
    identifier = store.bridge_client_identifier
    store.forget("bridge_client_identifier")
    assert store.current.bridge_client_identifier == identifier


def test_json_file_storage_round_trips_through_disk(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "credentials.json"
    store = CredentialStore(JsonFileStorage(path))
    store.save(device_token="device-1", bridge_device_id="dev-1")

    on_disk = json.loads(path.read_text(encoding="utf-8"))
    assert on_disk[storage_key("device_token")] == "device-1"
    assert not (tmp_path / "nested" / "credentials.json.tmp").exists()

    reloaded = CredentialStore(JsonFileStorage(path))
    assert reloaded.current.device_token == "device-1"
    assert reloaded.current.bridge_device_id == "dev-1"
    assert reloaded.bridge_client_identifier == store.bridge_client_identifier


def test_json_file_storage_starts_empty_on_invalid_json(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "credentials.json"
    path.write_text("{not json", encoding="utf-8")

    with caplog.at_level(logging.WARNING, logger="tachobridge.storage"):
        storage = JsonFileStorage(path)

    assert storage.get(storage_key("device_token")) is None
    assert "not valid JSON" in caplog.text


def test_json_file_storage_delete_is_persisted(tmp_path: Path) -> None:
    path = tmp_path / "credentials.json"
    storage = JsonFileStorage(path)
    storage.set("a", "1")
    storage.set("b", "2")
    storage.delete("a")
    storage.delete("missing")

    assert json.loads(path.read_text(encoding="utf-8")) == {"b": "2"}
