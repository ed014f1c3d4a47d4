"""Persistence for environment profiles.

Profiles live in ``profiles.yml``; which profile is active is recorded
separately in ``state.yml`` so that at most one profile can ever be flagged
active. Only :class:`~aemenv.switching.ProfileSwitchCoordinator` moves the
active pointer.
"""
from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from dataclasses import fields
from typing import Any

from .errors import ProfileNotFoundError
from .locking import LockManager
from .models import EnvironmentProfile, utc_now
from .state import StateRegistry

_IMMUTABLE_FIELDS = {"id", "is_active", "created_at"}
_EDITABLE_FIELDS = {item.name for item in fields(EnvironmentProfile)} - _IMMUTABLE_FIELDS
EXPORT_FORMAT = "aemenv-profile/1"


class ProfileStore:
    """CRUD access to the profile registry."""

    def __init__(self, registry: StateRegistry, locks: LockManager) -> None:
        """Bind the store to the registry and its lock."""
        self.registry = registry
        self.locks = locks

    # Reads ----------------------------------------------------------------
    def list_profiles(self) -> list[EnvironmentProfile]:
        """Return every profile with ``is_active`` derived from the state file."""
        active_id = self.registry.get_active_profile_id()
        profiles = [
            EnvironmentProfile.from_mapping(entry) for entry in self.registry.read_profiles()
        ]
        for profile in profiles:
            profile.is_active = profile.id == active_id
        return profiles

    def get(self, profile_id: str) -> EnvironmentProfile:
        """Return the profile *profile_id*."""
        for profile in self.list_profiles():
            if profile.id == profile_id:
                return profile
        raise ProfileNotFoundError(f"Profile '{profile_id}' not found.")

    def find(self, reference: str) -> EnvironmentProfile:
        """Return the profile whose id, or failing that whose unique name, is *reference*."""
        profiles = self.list_profiles()
        for profile in profiles:
            if profile.id == reference:
                return profile
        named = [profile for profile in profiles if profile.name == reference]
        if len(named) == 1:
            return named[0]
        if named:
            raise ValueError(f"Profile name '{reference}' is ambiguous; use the profile id.")
        raise ProfileNotFoundError(f"Profile '{reference}' not found.")

    def get_active(self) -> EnvironmentProfile | None:
        """Return the active profile or ``None``."""
        return next((profile for profile in self.list_profiles() if profile.is_active), None)

    # Writes ---------------------------------------------------------------
    def create(self, name: str, **values: Any) -> EnvironmentProfile:
        """Create a profile named *name* with optional field values."""
        unknown = set(values) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {', '.join(sorted(unknown))}.")
        payload: dict[str, Any] = {"id": str(uuid.uuid4()), "name": name, **values}
        profile = EnvironmentProfile.from_mapping(payload)
        profile.is_active = False
        with self.locks.registry_lock():
            entries = self.registry.read_profiles()
            entries.append(_persisted(profile))
            self.registry.write_profiles(entries)
        return profile

    def update(self, profile_id: str, **changes: Any) -> EnvironmentProfile:
        """Apply *changes* to a profile; identity and active flag are immutable."""
        forbidden = set(changes) & _IMMUTABLE_FIELDS
        if forbidden:
            raise ValueError(f"Profile fields cannot be edited: {', '.join(sorted(forbidden))}.")
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {', '.join(sorted(unknown))}.")
        with self.locks.registry_lock():
            entries = self.registry.read_profiles()
            index = _index_of(entries, profile_id)
            merged = {**entries[index], **changes, "updated_at": utc_now()}
            profile = EnvironmentProfile.from_mapping(merged)
            entries[index] = _persisted(profile)
            self.registry.write_profiles(entries)
        profile.is_active = self.registry.get_active_profile_id() == profile.id
        return profile

    def delete(self, profile_id: str) -> bool:
        """Remove a profile, clearing the active pointer if it referenced it."""
        with self.locks.registry_lock():
            entries = self.registry.read_profiles()
            index = _index_of(entries, profile_id)
            del entries[index]
            self.registry.write_profiles(entries)
            if self.registry.get_active_profile_id() == profile_id:
                self.registry.set_active_profile_id(None)
        return True

    def duplicate(self, profile_id: str, new_name: str | None = None) -> EnvironmentProfile:
        """Copy a profile under a new id; the copy is never active."""
        source = self.get(profile_id)
        values = {
            key: value
            for key, value in source.to_dict().items()
            if key in _EDITABLE_FIELDS and key not in {"name", "updated_at", "last_used_at"}
        }
        return self.create(new_name or f"{source.name} (copy)", **values)

    def mark_active(self, profile_id: str) -> EnvironmentProfile:
        """Point the active flag at *profile_id* and stamp its usage time."""
        with self.locks.registry_lock():
            entries = self.registry.read_profiles()
            index = _index_of(entries, profile_id)
            now = utc_now()
            entries[index] = {**entries[index], "last_used_at": now, "updated_at": now}
            self.registry.write_profiles(entries)
            self.registry.set_active_profile_id(profile_id)
        profile = EnvironmentProfile.from_mapping(entries[index])
        profile.is_active = True
        return profile

    # Import / export ------------------------------------------------------
    def export_profile(self, profile_id: str) -> str:
        """Return a JSON document describing the profile."""
        profile = self.get(profile_id).to_dict()
        for key in ("is_active", "last_used_at"):
            profile.pop(key, None)
        return json.dumps({"format": EXPORT_FORMAT, "profile": profile}, indent=2)

    def import_profile(self, document: str) -> EnvironmentProfile:
        """Create a profile from an exported JSON document (always inactive)."""
        try:
            payload = json.loads(document)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Profile import is not valid JSON: {exc}") from exc
        if isinstance(payload, Mapping) and "profile" in payload:
            payload = payload["profile"]
        if not isinstance(payload, Mapping):
            raise ValueError("Profile import must be a JSON object.")
        name = payload.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Imported profile requires a non-empty 'name'.")
        values = {
            key: value
            for key, value in payload.items()
            if key in _EDITABLE_FIELDS and key not in {"name", "updated_at", "last_used_at"}
        }
        return self.create(name, **values)


def _persisted(profile: EnvironmentProfile) -> dict[str, object]:
    payload = profile.to_dict()
    payload.pop("is_active", None)
    return payload


def _index_of(entries: list[dict[str, Any]], profile_id: str) -> int:
    for index, entry in enumerate(entries):
        if entry.get("id") == profile_id:
            return index
    raise ProfileNotFoundError(f"Profile '{profile_id}' not found.")


__all__ = ["EXPORT_FORMAT", "ProfileStore"]
