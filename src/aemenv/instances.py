"""Persistence and helpers for configured AEM instances."""
from __future__ import annotations

import uuid
from dataclasses import fields
from pathlib import Path
from typing import Any

from .errors import InstanceNotFoundError
from .locking import LockManager
from .models import AemInstance, utc_now
from .state import StateRegistry

_IMMUTABLE_FIELDS = {"id", "created_at", "status"}
_EDITABLE_FIELDS = {item.name for item in fields(AemInstance)} - _IMMUTABLE_FIELDS

INSTANCE_URL_PATHS: dict[str, str] = {
    "home": "/aem/start.html",
    "crxde": "/crx/de/index.jsp",
    "package_manager": "/crx/packmgr/index.jsp",
    "console": "/system/console",
    "sites": "/sites.html/content",
    "assets": "/assets.html/content/dam",
    "users": "/security/users.html",
    "workflow": "/libs/cq/workflow/admin/console/content/instances.html",
}


def instance_urls(instance: AemInstance) -> dict[str, str]:
    """Return the well-known console URLs of *instance*."""
    return {key: f"{instance.base_url}{path}" for key, path in INSTANCE_URL_PATHS.items()}


def find_quickstart_jar(directory: Path) -> Path | None:
    """Return the quickstart JAR inside *directory* (``aem-*``, ``cq-*``, ``*quickstart*``)."""
    try:
        jars = sorted(path for path in directory.iterdir() if path.suffix == ".jar")
    except OSError:
        return None
    for predicate in (
        lambda name: name.startswith("aem-"),
        lambda name: name.startswith("cq-"),
        lambda name: "quickstart" in name,
    ):
        for jar in jars:
            if predicate(jar.name.lower()):
                return jar
    return None


class InstanceStore:
    """CRUD access to ``instances.yml``."""

    def __init__(self, registry: StateRegistry, locks: LockManager) -> None:
        """Bind the store to the registry and its lock."""
        self.registry = registry
        self.locks = locks

    def list_instances(self) -> list[AemInstance]:
        """Return every configured instance (status is always ``unknown``)."""
        return [AemInstance.from_mapping(entry) for entry in self.registry.read_instances()]

    def get(self, instance_id: str) -> AemInstance:
        """Return the instance *instance_id*."""
        for instance in self.list_instances():
            if instance.id == instance_id:
                return instance
        raise InstanceNotFoundError(f"Instance '{instance_id}' not found.")

    def find(self, reference: str) -> AemInstance:
        """Return the instance whose id, or failing that whose unique name, is *reference*."""
        instances = self.list_instances()
        for instance in instances:
            if instance.id == reference:
                return instance
        named = [instance for instance in instances if instance.name == reference]
        if len(named) == 1:
            return named[0]
        if named:
            raise ValueError(f"Instance name '{reference}' is ambiguous; use the instance id.")
        raise InstanceNotFoundError(f"Instance '{reference}' not found.")

    def exists(self, instance_id: str) -> bool:
        """Return ``True`` when *instance_id* is configured."""
        return any(entry.get("id") == instance_id for entry in self.registry.read_instances())

    def create(self, name: str, instance_type: str, **values: Any) -> AemInstance:
        """Register a new instance."""
        unknown = set(values) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown instance fields: {', '.join(sorted(unknown))}.")
        payload: dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "name": name,
            "instance_type": instance_type,
            **values,
        }
        instance = AemInstance.from_mapping(payload)
        with self.locks.registry_lock():
            entries = self.registry.read_instances()
            entries.append(instance.to_registry())
            self.registry.write_instances(entries)
        return instance

    def update(self, instance_id: str, **changes: Any) -> AemInstance:
        """Apply *changes* to an instance."""
        forbidden = set(changes) & _IMMUTABLE_FIELDS
        if forbidden:
            raise ValueError(f"Instance fields cannot be edited: {', '.join(sorted(forbidden))}.")
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown instance fields: {', '.join(sorted(unknown))}.")
        with self.locks.registry_lock():
            entries = self.registry.read_instances()
            index = _index_of(entries, instance_id)
            instance = AemInstance.from_mapping(
                {**entries[index], **changes, "updated_at": utc_now()}
            )
            entries[index] = instance.to_registry()
            self.registry.write_instances(entries)
        return instance

    def delete(self, instance_id: str) -> bool:
        """Remove an instance."""
        with self.locks.registry_lock():
            entries = self.registry.read_instances()
            del entries[_index_of(entries, instance_id)]
            self.registry.write_instances(entries)
        return True


def _index_of(entries: list[dict[str, Any]], instance_id: str) -> int:
    for index, entry in enumerate(entries):
        if entry.get("id") == instance_id:
            return index
    raise InstanceNotFoundError(f"Instance '{instance_id}' not found.")


__all__ = ["INSTANCE_URL_PATHS", "InstanceStore", "find_quickstart_jar", "instance_urls"]
