"""Helpers for interacting with the aemenv state registry.

The registry directory (``~/.local/share/aem-env-manager/registry`` by default)
stores YAML artifacts: ``profiles.yml``, ``instances.yml`` and ``state.yml``
(the active profile pointer). Files are written atomically so a crash never
leaves a half-written registry behind.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

PROFILES_FILE = "profiles.yml"
INSTANCES_FILE = "instances.yml"
STATE_FILE = "state.yml"


class StateRegistryError(RuntimeError):
    """Raised when state registry operations fail."""


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML registry."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", Path(self.root).expanduser())

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named registry file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a registry file, returning *default* when missing."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given registry file."""
        try:
            self.ensure_root()
        except OSError as exc:
            raise StateRegistryError(
                f"Cannot create registry directory {self.root}: {exc}"
            ) from exc
        path = self.path_for(name)

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        except OSError as exc:
            raise StateRegistryError(f"Failed to write registry file {path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    # Convenience wrappers -------------------------------------------------
    def read_profiles(self) -> list[dict[str, Any]]:
        """Return the profile entries stored in ``profiles.yml``."""
        return _load_entries(self.read(PROFILES_FILE, default={"profiles": []}), "profiles")

    def write_profiles(self, profiles: Iterable[Mapping[str, object]]) -> None:
        """Persist profile entries to ``profiles.yml``."""
        self.write(PROFILES_FILE, {"profiles": [dict(entry) for entry in profiles]})

    def read_instances(self) -> list[dict[str, Any]]:
        """Return the instance entries stored in ``instances.yml``."""
        return _load_entries(self.read(INSTANCES_FILE, default={"instances": []}), "instances")

    def write_instances(self, instances: Iterable[Mapping[str, object]]) -> None:
        """Persist instance entries to ``instances.yml``."""
        self.write(INSTANCES_FILE, {"instances": [dict(entry) for entry in instances]})

    def read_state(self) -> dict[str, Any]:
        """Return the contents of ``state.yml`` (empty mapping if missing)."""
        value = self.read(STATE_FILE, default={})
        if not isinstance(value, Mapping):
            raise StateRegistryError(f"{self.path_for(STATE_FILE)} must contain a mapping.")
        return dict(value)

    def get_active_profile_id(self) -> str | None:
        """Return the id of the profile recorded as active, if any."""
        value = self.read_state().get("active_profile_id")
        return value if isinstance(value, str) and value else None

    def set_active_profile_id(self, profile_id: str | None) -> None:
        """Record *profile_id* as the active profile (``None`` clears it)."""
        state = self.read_state()
        state["active_profile_id"] = profile_id
        self.write(STATE_FILE, state)


def _load_entries(raw: object, key: str) -> list[dict[str, Any]]:
    if raw is None:
        return []
    if not isinstance(raw, Mapping):
        raise StateRegistryError(f"Registry file for {key} must contain a mapping.")
    entries = raw.get(key, [])
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise StateRegistryError(f"Registry key '{key}' must contain a list.")
    result: list[dict[str, Any]] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise StateRegistryError(f"Registry entry {key}[{index}] must be a mapping.")
        result.append(dict(entry))
    return result


__all__ = ["StateRegistry", "StateRegistryError"]
