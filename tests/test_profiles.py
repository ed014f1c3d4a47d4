"""Tests for the profile store."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from aemenv.errors import ProfileNotFoundError
from aemenv.locking import LockManager
from aemenv.profiles import EXPORT_FORMAT, ProfileStore
from aemenv.state import StateRegistry


def _store(tmp_path: Path, locks: LockManager) -> ProfileStore:
    return ProfileStore(StateRegistry(tmp_path / "state"), locks)


def test_create_and_get(tmp_path: Path, locks: LockManager) -> None:
    """Created profiles are persisted with a generated id and are inactive."""
    store = _store(tmp_path, locks)

    profile = store.create("Client A", java_version="17", env_vars={"MAVEN_OPTS": "-Xmx2g"})

    loaded = store.get(profile.id)
    assert loaded.name == "Client A"
    assert loaded.java_version == "17"
    assert loaded.env_vars == {"MAVEN_OPTS": "-Xmx2g"}
    assert loaded.is_active is False
    entries = store.registry.read_profiles()
    assert "is_active" not in entries[0]


def test_create_rejects_unknown_fields(tmp_path: Path, locks: LockManager) -> None:
    """Unknown keyword fields are rejected."""
    with pytest.raises(ValueError, match="Unknown profile fields: colour"):
        _store(tmp_path, locks).create("X", colour="blue")


def test_update_protects_identity(tmp_path: Path, locks: LockManager) -> None:
    """Editable fields change; id and active flag cannot be edited."""
    store = _store(tmp_path, locks)
    profile = store.create("Client A")

    updated = store.update(profile.id, node_version="18.17.0", description="Frontend")

    assert updated.node_version == "18.17.0"
    assert store.get(profile.id).description == "Frontend"
    with pytest.raises(ValueError, match="cannot be edited: is_active"):
        store.update(profile.id, is_active=True)
    with pytest.raises(ProfileNotFoundError):
        store.update("missing", name="X")


def test_find_by_id_or_unique_name(tmp_path: Path, locks: LockManager) -> None:
    """References resolve by id first, then by unique name."""
    store = _store(tmp_path, locks)
    first = store.create("Client A")
    store.create("Twin")
    store.create("Twin")

    assert store.find(first.id).id == first.id
    assert store.find("Client A").id == first.id
    with pytest.raises(ValueError, match="ambiguous"):
        store.find("Twin")
    with pytest.raises(ProfileNotFoundError):
        store.find("Nobody")


def test_mark_active_moves_single_pointer(tmp_path: Path, locks: LockManager) -> None:
    """Only one profile is ever reported active."""
    store = _store(tmp_path, locks)
    first = store.create("A")
    second = store.create("B")

    store.mark_active(first.id)
    activated = store.mark_active(second.id)

    assert activated.is_active is True
    assert activated.last_used_at is not None
    assert [profile.name for profile in store.list_profiles() if profile.is_active] == ["B"]
    active = store.get_active()
    assert active is not None
    assert active.id == second.id


def test_delete_clears_active_pointer(tmp_path: Path, locks: LockManager) -> None:
    """Deleting the active profile leaves no active profile."""
    store = _store(tmp_path, locks)
    profile = store.create("A")
    store.mark_active(profile.id)

    assert store.delete(profile.id) is True
    assert store.get_active() is None
    assert store.registry.get_active_profile_id() is None
    with pytest.raises(ProfileNotFoundError):
        store.delete(profile.id)


def test_duplicate_is_inactive_copy(tmp_path: Path, locks: LockManager) -> None:
    """Duplicates get a new id and default name and never inherit the active flag."""
    store = _store(tmp_path, locks)
    source = store.create("A", java_version="11", maven_config_id="client-a")
    store.mark_active(source.id)

    copy = store.duplicate(source.id)
    named = store.duplicate(source.id, "Renamed")

    assert copy.id != source.id
    assert copy.name == "A (copy)"
    assert copy.java_version == "11"
    assert copy.maven_config_id == "client-a"
    assert copy.is_active is False
    assert named.name == "Renamed"
    assert store.get_active().id == source.id  # type: ignore[union-attr]


def test_export_then_import_creates_inactive_profile(tmp_path: Path, locks: LockManager) -> None:
    """Exports omit activity state and imports always create a new profile."""
    store = _store(tmp_path, locks)
    source = store.create("A", node_version="18.17.0", env_vars={"K": "V"})
    store.mark_active(source.id)

    document = store.export_profile(source.id)
    payload = json.loads(document)
    assert payload["format"] == EXPORT_FORMAT
    assert "is_active" not in payload["profile"]

    imported = store.import_profile(document)

    assert imported.id != source.id
    assert imported.node_version == "18.17.0"
    assert imported.env_vars == {"K": "V"}
    assert store.get(imported.id).is_active is False
    assert len(store.list_profiles()) == 2


def test_import_accepts_bare_profile_object(tmp_path: Path, locks: LockManager) -> None:
    """A plain profile mapping without the export envelope is accepted."""
    store = _store(tmp_path, locks)

    document = json.dumps({"id": "ignored", "name": "Bare", "is_active": True})

    imported = store.import_profile(document)

    assert imported.name == "Bare"
    assert imported.id != "ignored"
    assert imported.is_active is False


@pytest.mark.parametrize(
    ("document", "message"),
    [
        ("{not json", "not valid JSON"),
        ("[1, 2]", "must be a JSON object"),
        ('{"profile": {"name": "  "}}', "non-empty 'name'"),
    ],
)
def test_import_rejects_invalid_documents(
    tmp_path: Path, locks: LockManager, document: str, message: str
) -> None:
    """Malformed import documents raise ValueError."""
    with pytest.raises(ValueError, match=message):
        _store(tmp_path, locks).import_profile(document)
