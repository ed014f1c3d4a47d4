"""Discovery of installed version managers and resolution of runtime paths."""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from ..config import AppConfig
from ..errors import NotFoundError, VersionNotFoundError
from ..models import InstalledVersion, ManagerType, ToolType, VersionManager
from .version_managers import (
    MANAGER_REGISTRY,
    ProbeEnvironment,
    VersionManagerBackend,
    describe_jdk,
    describe_node,
)

LOGGER = logging.getLogger(__name__)

JAVA_LINK_NAME = "current-java"
NODE_LINK_NAME = "current-node"


def coerce_tool_type(value: ToolType | str) -> ToolType:
    """Return *value* as a :class:`ToolType`, raising ``NotFoundError`` if unknown."""
    if isinstance(value, ToolType):
        return value
    try:
        return ToolType(str(value).strip().lower())
    except ValueError:
        raise NotFoundError(f"Unknown tool type '{value}'. Expected 'java' or 'node'.") from None


class VersionManagerProbe:
    """Read-only view over the version managers present on this host."""

    def __init__(
        self,
        environment: ProbeEnvironment,
        *,
        env_dir: Path,
        registry: Mapping[ManagerType, type[VersionManagerBackend]] | None = None,
    ) -> None:
        """Create backends for every registered manager type."""
        self.environment = environment
        self.env_dir = Path(env_dir).expanduser()
        source = MANAGER_REGISTRY if registry is None else registry
        self._backends: dict[ManagerType, VersionManagerBackend] = {
            manager_type: backend_cls(environment) for manager_type, backend_cls in source.items()
        }

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        environ: Mapping[str, str] | None = None,
        user_home: Path | None = None,
    ) -> VersionManagerProbe:
        """Build a probe from resolved configuration."""
        environment = ProbeEnvironment(
            user_home=user_home or Path.home(),
            environ=dict(os.environ if environ is None else environ),
            java_scan_paths=config.java_scan_paths,
            node_scan_paths=config.node_scan_paths,
        )
        return cls(environment, env_dir=config.env_dir)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def backend(self, manager_id: str | ManagerType) -> VersionManagerBackend:
        """Return the backend registered for *manager_id*."""
        try:
            manager_type = ManagerType(manager_id)
        except ValueError:
            raise NotFoundError(f"Unknown version manager '{manager_id}'.") from None
        backend = self._backends.get(manager_type)
        if backend is None:
            raise NotFoundError(f"Version manager '{manager_id}' is not registered.")
        return backend

    def link_path(self, tool_type: ToolType) -> Path:
        """Return the managed symlink location for *tool_type*."""
        name = JAVA_LINK_NAME if tool_type is ToolType.JAVA else NODE_LINK_NAME
        return self.env_dir / name

    def current_target(self, tool_type: ToolType) -> Path | None:
        """Return the resolved directory the managed symlink points at."""
        link = self.link_path(tool_type)
        if not link.is_symlink():
            return None
        try:
            return link.resolve(strict=True)
        except OSError:
            return None

    def current_version(self, tool_type: ToolType) -> str | None:
        """Describe the runtime currently selected through the managed symlink."""
        target = self.current_target(tool_type)
        if target is None:
            return None
        if tool_type is ToolType.JAVA:
            entry = describe_jdk(target)
        else:
            entry = describe_node(target)
        return entry.version if entry else None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def detect_managers(self) -> list[VersionManager]:
        """Probe every registered manager; failures become ``is_installed=False``."""
        managers: list[VersionManager] = []
        targets = {tool: self.current_target(tool) for tool in ToolType}
        claimed: set[ToolType] = set()
        for backend in self._backends.values():
            try:
                installed = backend.is_installed()
                home = backend.home()
            except Exception as exc:  # noqa: BLE001 - one manager must not break the probe
                LOGGER.debug("Probe for %s failed: %s", backend.id, exc)
                installed = False
                home = None
            active = False
            if installed and home is not None and backend.tool_type is not None:
                target = targets[backend.tool_type]
                active = target is not None and _is_within(target, home)
                if active:
                    claimed.add(backend.tool_type)
            managers.append(
                VersionManager(
                    id=backend.id,
                    name=backend.display_name,
                    type=backend.manager_type,
                    tool_type=backend.tool_type,
                    is_installed=installed,
                    is_active=active,
                    path=str(home) if home is not None else None,
                )
            )
        for manager in managers:
            if manager.type is ManagerType.MANUAL:
                manager.is_active = any(
                    targets[tool] is not None and tool not in claimed for tool in ToolType
                )
        return managers

    def list_versions(
        self,
        manager_id: str | ManagerType,
        tool_type: ToolType | str,
    ) -> list[InstalledVersion]:
        """Enumerate versions exposed by *manager_id* for *tool_type*."""
        tool = coerce_tool_type(tool_type)
        backend = self.backend(manager_id)
        if not backend.manages(tool):
            raise NotFoundError(f"Version manager '{backend.id}' does not manage {tool.value}.")
        if not backend.is_installed():
            return []
        return backend.list_versions(tool)

    def resolve(
        self,
        tool_type: ToolType | str,
        version: str,
        manager_id: str | None = None,
    ) -> InstalledVersion:
        """Return the installation matching *version* exactly.

        With *manager_id* only that manager is consulted. Without it, the
        manual scan roots are searched first, then every installed manager
        for the tool.
        """
        tool = coerce_tool_type(tool_type)
        if manager_id:
            candidates = self.list_versions(manager_id, tool)
        else:
            candidates = []
            ordered = sorted(
                self._backends.values(),
                key=lambda backend: backend.manager_type is not ManagerType.MANUAL,
            )
            for backend in ordered:
                if not backend.manages(tool):
                    continue
                try:
                    if backend.is_installed():
                        candidates.extend(backend.list_versions(tool))
                except OSError as exc:
                    LOGGER.debug("Skipping %s during resolve: %s", backend.id, exc)
        for entry in candidates:
            if entry.matches(version):
                return entry
        where = f" via {manager_id}" if manager_id else ""
        raise VersionNotFoundError(f"{tool.value.capitalize()} version {version}{where} not found.")


def _is_within(path: Path, root: Path) -> bool:
    try:
        resolved_root = root.resolve()
    except OSError:
        return False
    return path == resolved_root or resolved_root in path.parents


__all__ = [
    "JAVA_LINK_NAME",
    "NODE_LINK_NAME",
    "VersionManagerProbe",
    "coerce_tool_type",
]
