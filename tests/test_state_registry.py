"""State registry helpers tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from aemenv.state import StateRegistry, StateRegistryError


def test_read_missing_files_returns_default(tmp_path: Path) -> None:
    """Missing files return the provided default structure."""
    registry = StateRegistry(tmp_path)

    result = registry.read("instances.yml", default={"instances": []})

    assert result == {"instances": []}


def test_write_and_read_roundtrip(tmp_path: Path) -> None:
    """Writing a registry file and reading it back succeeds."""
    registry = StateRegistry(tmp_path / "registry")
    payload = {"instances": [{"id": "a1", "name": "author"}]}

    registry.write("instances.yml", payload)

    path = tmp_path / "registry" / "instances.yml"
    assert path.exists()
    assert (path.stat().st_mode & 0o777) == 0o640
    assert registry.read("instances.yml") == payload
    assert not list(path.parent.glob(".instances.yml.*"))


def test_read_helpers_normalise_missing_files(tmp_path: Path) -> None:
    """List helpers return empty lists and the active id is ``None`` by default."""
    registry = StateRegistry(tmp_path)

    assert registry.read_profiles() == []
    assert registry.read_instances() == []
    assert registry.read_state() == {}
    assert registry.get_active_profile_id() is None


def test_active_profile_pointer(tmp_path: Path) -> None:
    """The active profile id is stored in ``state.yml`` and can be cleared."""
    registry = StateRegistry(tmp_path)

    registry.set_active_profile_id("p1")
    assert registry.get_active_profile_id() == "p1"

    registry.set_active_profile_id(None)
    assert registry.get_active_profile_id() is None


def test_invalid_yaml_raises(tmp_path: Path) -> None:
    """Invalid YAML raises a StateRegistryError."""
    registry = StateRegistry(tmp_path)
    (tmp_path / "profiles.yml").write_text("profiles: [\n", encoding="utf-8")

    with pytest.raises(StateRegistryError, match="Failed to parse"):
        registry.read_profiles()


def test_entries_must_be_mappings(tmp_path: Path) -> None:
    """Non-mapping entries in a list file are rejected."""
    registry = StateRegistry(tmp_path)
    (tmp_path / "instances.yml").write_text("instances:\n  - just-a-string\n", encoding="utf-8")

    with pytest.raises(StateRegistryError, match=r"instances\[0\] must be a mapping"):
        registry.read_instances()


def test_write_failure_is_wrapped(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """OS errors while replacing the file surface as StateRegistryError."""
    registry = StateRegistry(tmp_path)

    def fail_replace(src: object, dst: object) -> None:
        raise OSError("read-only filesystem")

    monkeypatch.setattr("aemenv.state.registry.os.replace", fail_replace)

    with pytest.raises(StateRegistryError, match="read-only filesystem"):
        registry.write_profiles([{"id": "p1", "name": "One"}])
    assert not list(tmp_path.glob(".profiles.yml.*"))
