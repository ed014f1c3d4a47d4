"""Records shared by the switching and detection engines."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat(timespec="seconds")


class ToolType(str, Enum):
    """Runtimes whose active version aemenv controls."""

    JAVA = "java"
    NODE = "node"


class ManagerType(str, Enum):
    """Closed set of supported version managers."""

    SDKMAN = "sdkman"
    JENV = "jenv"
    JABBA = "jabba"
    NVM = "nvm"
    FNM = "fnm"
    VOLTA = "volta"
    NVM_WINDOWS = "nvm-windows"
    MANUAL = "manual"


class InstanceType(str, Enum):
    """Role of an AEM instance."""

    AUTHOR = "author"
    PUBLISH = "publish"
    DISPATCHER = "dispatcher"


class InstanceStatus(str, Enum):
    """Liveness classification produced by the status detector."""

    RUNNING = "running"
    STARTING = "starting"
    STOPPING = "stopping"
    STOPPED = "stopped"
    PORT_CONFLICT = "port_conflict"
    ERROR = "error"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class VersionManager:
    """A version manager discovered on the host."""

    id: str
    name: str
    type: ManagerType
    tool_type: ToolType | None
    is_installed: bool
    is_active: bool = False
    path: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "tool_type": self.tool_type.value if self.tool_type else None,
            "is_installed": self.is_installed,
            "is_active": self.is_active,
            "path": self.path,
        }


@dataclass(slots=True, frozen=True)
class InstalledVersion:
    """Snapshot of one installed runtime version."""

    version: str
    path: str
    is_default: bool = False
    vendor: str | None = None
    full_version: str | None = None

    def matches(self, requested: str) -> bool:
        """Return ``True`` when *requested* names this version exactly."""
        wanted = requested.strip().lstrip("v")
        candidates = {self.version.lstrip("v")}
        if self.full_version:
            candidates.add(self.full_version.lstrip("v"))
        return bool(wanted) and wanted in candidates

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "version": self.version,
            "path": self.path,
            "is_default": self.is_default,
            "vendor": self.vendor,
            "full_version": self.full_version,
        }


_PROFILE_OPTIONAL_FIELDS = (
    "description",
    "java_version",
    "java_manager_id",
    "java_path",
    "node_version",
    "node_manager_id",
    "node_path",
    "maven_config_id",
    "author_instance_id",
    "publish_instance_id",
    "last_used_at",
)


@dataclass(slots=True)
class EnvironmentProfile:
    """A named combination of Java, Node, Maven and instance bindings."""

    id: str
    name: str
    description: str | None = None
    java_version: str | None = None
    java_manager_id: str | None = None
    java_path: str | None = None
    node_version: str | None = None
    node_manager_id: str | None = None
    node_path: str | None = None
    maven_config_id: str | None = None
    author_instance_id: str | None = None
    publish_instance_id: str | None = None
    env_vars: dict[str, str] = field(default_factory=dict)
    is_active: bool = False
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)
    last_used_at: str | None = None

    @property
    def wants_java(self) -> bool:
        """Return ``True`` when the profile requests a Java runtime."""
        return bool(self.java_path or self.java_version)

    @property
    def wants_node(self) -> bool:
        """Return ``True`` when the profile requests a Node runtime."""
        return bool(self.node_path or self.node_version)

    @property
    def wants_maven(self) -> bool:
        """Return ``True`` when the profile requests a Maven configuration."""
        return bool(self.maven_config_id)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {item.name: _plain(getattr(self, item.name)) for item in fields(self)}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> EnvironmentProfile:
        """Build a profile from a registry or import mapping."""
        profile_id = data.get("id")
        name = data.get("name")
        if not isinstance(profile_id, str) or not profile_id.strip():
            raise ValueError("Profile entries require a non-empty 'id'.")
        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"Profile '{profile_id}' requires a non-empty 'name'.")
        env_vars = data.get("env_vars") or {}
        if not isinstance(env_vars, Mapping):
            raise ValueError(f"Profile '{profile_id}' env_vars must be a mapping.")
        optional = {key: _optional_str(data.get(key)) for key in _PROFILE_OPTIONAL_FIELDS}
        profile = cls(
            id=profile_id.strip(),
            name=name.strip(),
            env_vars={str(key): str(value) for key, value in env_vars.items()},
            is_active=bool(data.get("is_active", False)),
            **optional,
        )
        for stamp in ("created_at", "updated_at"):
            value = _optional_str(data.get(stamp))
            if value:
                setattr(profile, stamp, value)
        return profile


@dataclass(slots=True)
class AemInstance:
    """A configured AEM server instance."""

    id: str
    name: str
    instance_type: InstanceType
    host: str = "localhost"
    port: int = 4502
    path: str = ""
    java_opts: str | None = None
    run_modes: list[str] = field(default_factory=list)
    status: InstanceStatus = InstanceStatus.UNKNOWN
    profile_id: str | None = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    @property
    def address(self) -> str:
        """Return the host as sockets expect it, without IPv6 literal brackets."""
        return self.host.strip().strip("[]")

    @property
    def base_url(self) -> str:
        """Return the HTTP origin of the instance."""
        host = self.address
        if ":" in host:
            host = f"[{host}]"
        return f"http://{host}:{self.port}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {item.name: _plain(getattr(self, item.name)) for item in fields(self)}

    def to_registry(self) -> dict[str, object]:
        """Return the persisted form; detected status is never stored."""
        payload = self.to_dict()
        payload.pop("status", None)
        return payload

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> AemInstance:
        """Build an instance from a registry mapping."""
        instance_id = data.get("id")
        name = data.get("name")
        if not isinstance(instance_id, str) or not instance_id.strip():
            raise ValueError("Instance entries require a non-empty 'id'.")
        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"Instance '{instance_id}' requires a non-empty 'name'.")
        try:
            instance_type = InstanceType(str(data.get("instance_type", "author")))
        except ValueError as exc:
            raise ValueError(
                f"Instance '{instance_id}' has unsupported type {data.get('instance_type')!r}."
            ) from exc
        port = data.get("port", 4502)
        if isinstance(port, bool) or not isinstance(port, (int, str)):
            raise ValueError(f"Instance '{instance_id}' port must be an integer.")
        try:
            port_number = int(port)
        except ValueError as exc:
            raise ValueError(f"Instance '{instance_id}' port must be an integer.") from exc
        if not 0 < port_number < 65536:
            raise ValueError(f"Instance '{instance_id}' port {port_number} is out of range.")
        run_modes = data.get("run_modes") or []
        if not isinstance(run_modes, list):
            raise ValueError(f"Instance '{instance_id}' run_modes must be a list.")
        instance = cls(
            id=instance_id.strip(),
            name=name.strip(),
            instance_type=instance_type,
            host=str(data.get("host") or "localhost"),
            port=port_number,
            path=str(data.get("path") or ""),
            java_opts=_optional_str(data.get("java_opts")),
            run_modes=[str(mode) for mode in run_modes],
            profile_id=_optional_str(data.get("profile_id")),
        )
        for stamp in ("created_at", "updated_at"):
            value = _optional_str(data.get(stamp))
            if value:
                setattr(instance, stamp, value)
        return instance


@dataclass(slots=True, frozen=True)
class InstanceStatusResult:
    """Outcome of one status detection run."""

    instance_id: str
    status: InstanceStatus
    checked_at: str
    duration_ms: int
    process_id: int | None = None
    process_name: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "instance_id": self.instance_id,
            "status": self.status.value,
            "checked_at": self.checked_at,
            "duration_ms": self.duration_ms,
            "process_id": self.process_id,
            "process_name": self.process_name,
            "error": self.error,
        }


@dataclass(slots=True)
class SwitchResult:
    """Aggregated outcome of a profile switch."""

    success: bool = False
    java_switched: bool = False
    node_switched: bool = False
    maven_switched: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "success": self.success,
            "java_switched": self.java_switched,
            "node_switched": self.node_switched,
            "maven_switched": self.maven_switched,
            "errors": list(self.errors),
        }


@dataclass(slots=True, frozen=True)
class VersionSwitchResult:
    """Outcome of switching a single runtime."""

    success: bool
    current_version: str
    previous_version: str | None = None
    message: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "success": self.success,
            "previous_version": self.previous_version,
            "current_version": self.current_version,
            "message": self.message,
            "error": self.error,
        }


@dataclass(slots=True, frozen=True)
class EnvironmentStatus:
    """Snapshot of the managed symlink directory and shell integration."""

    is_initialized: bool
    java_symlink_exists: bool
    node_symlink_exists: bool
    shell_configured: bool
    env_dir: str
    current_java_path: str | None = None
    current_node_path: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass(slots=True, frozen=True)
class InitResult:
    """Outcome of initialising the managed environment."""

    success: bool
    message: str
    env_dir: str
    shell_config_updated: bool

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass(slots=True, frozen=True)
class SymlinkResult:
    """Outcome of repointing a managed symlink."""

    success: bool
    current_target: str
    previous_target: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass(slots=True, frozen=True)
class MavenConfig:
    """A saved Maven ``settings.xml`` variant."""

    id: str
    name: str
    path: str
    is_active: bool = False
    local_repository: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass(slots=True)
class ProfileValidation:
    """Problems found when checking a profile against the host."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        """Return ``True`` when no errors were recorded."""
        return not self.errors

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"valid": self.valid, "errors": list(self.errors), "warnings": list(self.warnings)}


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _plain(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, list):
        return list(value)
    return value


__all__ = [
    "AemInstance",
    "EnvironmentProfile",
    "EnvironmentStatus",
    "InitResult",
    "InstalledVersion",
    "InstanceStatus",
    "InstanceStatusResult",
    "InstanceType",
    "ManagerType",
    "MavenConfig",
    "ProfileValidation",
    "SwitchResult",
    "SymlinkResult",
    "ToolType",
    "VersionManager",
    "VersionSwitchResult",
    "utc_now",
]
