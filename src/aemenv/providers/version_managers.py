"""Backends for the Java and Node version managers aemenv understands.

Each manager type has one backend class registered in :data:`MANAGER_REGISTRY`.
Backends only read the manager's on-disk layout; they never invoke the
manager itself and never install anything.
"""
from __future__ import annotations

import logging
import re
import shutil
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from packaging.version import InvalidVersion, Version

from ..models import InstalledVersion, ManagerType, ToolType

LOGGER = logging.getLogger(__name__)

_VERSION_DIGITS = re.compile(r"\d+(?:[._]\d+)*")

_VENDOR_HINTS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("temurin", "adoptium", "-tem"), "Eclipse Adoptium"),
    (("zulu", "-zulu"), "Azul Zulu"),
    (("corretto", "-amzn"), "Amazon Corretto"),
    (("graalvm", "-graal"), "GraalVM"),
    (("openjdk", "-open"), "OpenJDK"),
    (("oracle", "-oracle"), "Oracle"),
)


@dataclass(slots=True)
class ProbeEnvironment:
    """Host facts the backends consult; injectable for tests."""

    user_home: Path
    environ: Mapping[str, str] = field(default_factory=dict)
    java_scan_paths: tuple[Path, ...] = ()
    node_scan_paths: tuple[Path, ...] = ()
    which: Callable[[str], str | None] = shutil.which

    def env_path(self, name: str) -> Path | None:
        """Return the environment variable *name* as a path, if set."""
        value = self.environ.get(name, "").strip()
        return Path(value).expanduser() if value else None


# ---------------------------------------------------------------------------
# Version metadata helpers
# ---------------------------------------------------------------------------
def java_major_version(version: str) -> str:
    """Collapse a Java version string to its major number (``1.8.0_301`` -> ``8``)."""
    text = version.strip().strip('"')
    if text.startswith("1."):
        return text.split(".")[1].split("_")[0]
    return text.split(".")[0].split("+")[0].split("-")[0]


def version_from_name(name: str) -> str | None:
    """Return the first version-looking token in a directory name."""
    match = _VERSION_DIGITS.search(name)
    return match.group(0) if match else None


def vendor_from_name(name: str) -> str | None:
    """Guess the JDK vendor from a directory name."""
    lowered = name.lower()
    for hints, vendor in _VENDOR_HINTS:
        if any(hint in lowered for hint in hints):
            return vendor
    if lowered.startswith("jdk"):
        return "Oracle"
    return None


def read_java_release(java_home: Path) -> tuple[str, str | None] | None:
    """Return ``(JAVA_VERSION, IMPLEMENTOR)`` from a JDK ``release`` file."""
    release = java_home / "release"
    try:
        content = release.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    version: str | None = None
    vendor: str | None = None
    for line in content.splitlines():
        key, _, value = line.partition("=")
        if key == "JAVA_VERSION":
            version = value.strip().strip('"')
        elif key == "IMPLEMENTOR":
            vendor = value.strip().strip('"') or None
    if not version:
        return None
    return version, vendor


def java_home_for(candidate: Path) -> Path | None:
    """Return the JAVA_HOME inside *candidate* (handles macOS bundles)."""
    for home in (candidate / "Contents" / "Home", candidate):
        if (home / "bin" / "java").exists() or (home / "bin" / "java.exe").exists():
            return home
    return None


def node_binary_exists(candidate: Path) -> bool:
    """Return ``True`` when *candidate* looks like a Node installation."""
    return any(
        path.exists()
        for path in (
            candidate / "bin" / "node",
            candidate / "node",
            candidate / "node.exe",
        )
    )


def describe_jdk(
    candidate: Path,
    *,
    label: str | None = None,
    is_default: bool = False,
) -> InstalledVersion | None:
    """Build an :class:`InstalledVersion` for a JDK directory.

    *label* is the identifier a manager uses for the install (for example
    ``17.0.9-tem``); when omitted the major version is used, matching the way
    JDKs found by a plain directory scan are named.
    """
    home = java_home_for(candidate)
    if home is None:
        return None
    release = read_java_release(home)
    full_version: str | None = None
    vendor = vendor_from_name(candidate.name)
    if release is not None:
        full_version, release_vendor = release
        vendor = release_vendor or vendor
        major = java_major_version(full_version)
    else:
        parsed = version_from_name(candidate.name)
        if parsed is None and label is None:
            return None
        major = java_major_version(parsed) if parsed else label or ""
        full_version = parsed
    return InstalledVersion(
        version=label or major,
        path=str(home),
        is_default=is_default,
        vendor=vendor,
        full_version=full_version,
    )


def node_version_from_name(name: str) -> str | None:
    """Normalise ``node-v18.17.0-linux-x64`` / ``18.17.0`` to ``v18.17.0``."""
    text = name
    if text.startswith("node-"):
        text = text[len("node-") :]
    text = text.lstrip("v")
    match = re.match(r"\d+(?:\.\d+)*", text)
    if not match:
        return None
    return f"v{match.group(0)}"


def describe_node(
    candidate: Path,
    *,
    name: str | None = None,
    is_default: bool = False,
) -> InstalledVersion | None:
    """Build an :class:`InstalledVersion` for a Node directory."""
    if not node_binary_exists(candidate):
        return None
    version = node_version_from_name(name or candidate.name)
    if version is None:
        return None
    return InstalledVersion(version=version, path=str(candidate), is_default=is_default)


def sort_key(version: str) -> tuple[int, Version | tuple[int, ...]]:
    """Sort key placing PEP 440 parseable versions by value, others numerically."""
    text = version.lstrip("v")
    try:
        return (1, Version(text))
    except InvalidVersion:
        digits = tuple(int(part) for part in re.findall(r"\d+", text)[:4])
        return (0, digits)


def newest_first(versions: Iterable[InstalledVersion]) -> list[InstalledVersion]:
    """Return *versions* sorted newest first, de-duplicated by path."""
    unique: dict[str, InstalledVersion] = {}
    for entry in versions:
        unique.setdefault(entry.path, entry)
    candidates = list(unique.values())
    parseable = [entry for entry in candidates if sort_key(entry.version)[0] == 1]
    others = [entry for entry in candidates if sort_key(entry.version)[0] == 0]
    parseable.sort(key=lambda entry: sort_key(entry.version)[1], reverse=True)
    others.sort(key=lambda entry: sort_key(entry.version)[1], reverse=True)
    return parseable + others


def _child_dirs(root: Path | None) -> list[Path]:
    if root is None:
        return []
    try:
        return sorted(child for child in root.iterdir() if child.is_dir())
    except OSError:
        return []


def _read_first_line(path: Path) -> str | None:
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return text.splitlines()[0].strip() if text else None


def _resolved(path: Path) -> Path | None:
    try:
        return path.resolve(strict=True)
    except OSError:
        return None


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------
class VersionManagerBackend:
    """Base class for one version manager type."""

    manager_type: ClassVar[ManagerType]
    display_name: ClassVar[str]
    tool_type: ClassVar[ToolType | None]

    def __init__(self, environment: ProbeEnvironment) -> None:
        """Bind the backend to the host facts it should inspect."""
        self.environment = environment

    @property
    def id(self) -> str:
        """Stable identifier used by profiles and the CLI."""
        return self.manager_type.value

    def manages(self, tool_type: ToolType) -> bool:
        """Return ``True`` when this manager provides *tool_type* runtimes."""
        return self.tool_type is None or self.tool_type is tool_type

    def home(self) -> Path | None:
        """Return the manager's home directory, if it has one."""
        return None

    def is_installed(self) -> bool:
        """Return ``True`` when the manager is present on the host."""
        raise NotImplementedError

    def list_versions(self, tool_type: ToolType) -> list[InstalledVersion]:
        """Enumerate the versions this manager exposes for *tool_type*."""
        raise NotImplementedError


MANAGER_REGISTRY: dict[ManagerType, type[VersionManagerBackend]] = {}


def register(cls: type[VersionManagerBackend]) -> type[VersionManagerBackend]:
    """Class decorator adding a backend to :data:`MANAGER_REGISTRY`."""
    MANAGER_REGISTRY[cls.manager_type] = cls
    return cls


@register
class SdkmanBackend(VersionManagerBackend):
    """SDKMAN! Java candidates under ``~/.sdkman/candidates/java``."""

    manager_type = ManagerType.SDKMAN
    display_name = "SDKMAN"
    tool_type = ToolType.JAVA

    def home(self) -> Path:
        return self.environment.env_path("SDKMAN_DIR") or self.environment.user_home / ".sdkman"

    def is_installed(self) -> bool:
        return (self.home() / "bin" / "sdkman-init.sh").exists()

    def list_versions(self, tool_type: ToolType) -> list[InstalledVersion]:
        candidates = self.home() / "candidates" / "java"
        default_target = _resolved(candidates / "current")
        versions: list[InstalledVersion] = []
        for child in _child_dirs(candidates):
            if child.name == "current":
                continue
            entry = describe_jdk(
                child,
                label=child.name,
                is_default=default_target is not None and _resolved(child) == default_target,
            )
            if entry is not None:
                versions.append(entry)
        return newest_first(versions)


@register
class JenvBackend(VersionManagerBackend):
    """jEnv registered JDKs under ``~/.jenv/versions``."""

    manager_type = ManagerType.JENV
    display_name = "jEnv"
    tool_type = ToolType.JAVA

    def home(self) -> Path:
        return self.environment.env_path("JENV_ROOT") or self.environment.user_home / ".jenv"

    def is_installed(self) -> bool:
        return (self.home() / "bin" / "jenv").exists() or self.environment.which("jenv") is not None

    def list_versions(self, tool_type: ToolType) -> list[InstalledVersion]:
        default_name = _read_first_line(self.home() / "version")
        versions: list[InstalledVersion] = []
        for child in _child_dirs(self.home() / "versions"):
            target = _resolved(child) or child
            entry = describe_jdk(target, label=child.name, is_default=child.name == default_name)
            if entry is not None:
                versions.append(entry)
        return newest_first(versions)


@register
class JabbaBackend(VersionManagerBackend):
    """Jabba JDKs under ``~/.jabba/jdk``."""

    manager_type = ManagerType.JABBA
    display_name = "Jabba"
    tool_type = ToolType.JAVA

    def home(self) -> Path:
        return self.environment.env_path("JABBA_HOME") or self.environment.user_home / ".jabba"

    def is_installed(self) -> bool:
        return (self.home() / "jdk").is_dir() or self.environment.which("jabba") is not None

    def list_versions(self, tool_type: ToolType) -> list[InstalledVersion]:
        default_name = _read_first_line(self.home() / "default.alias")
        versions: list[InstalledVersion] = []
        for child in _child_dirs(self.home() / "jdk"):
            entry = describe_jdk(child, label=child.name, is_default=child.name == default_name)
            if entry is not None:
                versions.append(entry)
        return newest_first(versions)


@register
class NvmBackend(VersionManagerBackend):
    """nvm Node installs under ``$NVM_DIR/versions/node``."""

    manager_type = ManagerType.NVM
    display_name = "NVM"
    tool_type = ToolType.NODE

    def home(self) -> Path:
        return self.environment.env_path("NVM_DIR") or self.environment.user_home / ".nvm"

    def is_installed(self) -> bool:
        return (self.home() / "nvm.sh").exists()

    def list_versions(self, tool_type: ToolType) -> list[InstalledVersion]:
        alias = _read_first_line(self.home() / "alias" / "default")
        wanted = alias.lstrip("v") if alias else None
        versions: list[InstalledVersion] = []
        for child in _child_dirs(self.home() / "versions" / "node"):
            entry = describe_node(child)
            if entry is None:
                continue
            bare = entry.version.lstrip("v")
            if wanted and (bare == wanted or bare.startswith(f"{wanted}.")):
                entry = InstalledVersion(version=entry.version, path=entry.path, is_default=True)
            versions.append(entry)
        return newest_first(versions)


@register
class FnmBackend(VersionManagerBackend):
    """fnm Node installs under ``<fnm dir>/node-versions/<v>/installation``."""

    manager_type = ManagerType.FNM
    display_name = "fnm"
    tool_type = ToolType.NODE

    def home(self) -> Path:
        explicit = self.environment.env_path("FNM_DIR")
        if explicit is not None:
            return explicit
        home = self.environment.user_home
        for candidate in (
            home / ".fnm",
            home / ".local" / "share" / "fnm",
            home / "Library" / "Application Support" / "fnm",
        ):
            if (candidate / "node-versions").is_dir():
                return candidate
        return home / ".fnm"

    def is_installed(self) -> bool:
        return (
            self.environment.which("fnm") is not None
            or (self.home() / "node-versions").is_dir()
        )

    def list_versions(self, tool_type: ToolType) -> list[InstalledVersion]:
        default_target = _resolved(self.home() / "aliases" / "default")
        versions: list[InstalledVersion] = []
        for child in _child_dirs(self.home() / "node-versions"):
            installation = child / "installation"
            entry = describe_node(
                installation,
                name=child.name,
                is_default=default_target is not None
                and default_target in {_resolved(installation), _resolved(child)},
            )
            if entry is not None:
                versions.append(entry)
        return newest_first(versions)


@register
class VoltaBackend(VersionManagerBackend):
    """Volta Node images under ``~/.volta/tools/image/node``."""

    manager_type = ManagerType.VOLTA
    display_name = "Volta"
    tool_type = ToolType.NODE

    def home(self) -> Path:
        return self.environment.env_path("VOLTA_HOME") or self.environment.user_home / ".volta"

    def is_installed(self) -> bool:
        home = self.home()
        return (
            (home / "bin" / "volta").exists()
            or (home / "tools" / "image" / "node").is_dir()
            or self.environment.which("volta") is not None
        )

    def list_versions(self, tool_type: ToolType) -> list[InstalledVersion]:
        versions: list[InstalledVersion] = []
        for child in _child_dirs(self.home() / "tools" / "image" / "node"):
            entry = describe_node(child)
            if entry is not None:
                versions.append(entry)
        return newest_first(versions)


@register
class NvmWindowsBackend(VersionManagerBackend):
    """nvm-windows installs under ``%NVM_HOME%``."""

    manager_type = ManagerType.NVM_WINDOWS
    display_name = "nvm-windows"
    tool_type = ToolType.NODE

    def home(self) -> Path | None:
        return self.environment.env_path("NVM_HOME")

    def is_installed(self) -> bool:
        home = self.home()
        return home is not None and home.is_dir()

    def list_versions(self, tool_type: ToolType) -> list[InstalledVersion]:
        versions: list[InstalledVersion] = []
        for child in _child_dirs(self.home()):
            if not child.name.startswith("v"):
                continue
            entry = describe_node(child)
            if entry is not None:
                versions.append(entry)
        return newest_first(versions)


@register
class ManualBackend(VersionManagerBackend):
    """Runtimes installed outside any manager, found by scanning known roots."""

    manager_type = ManagerType.MANUAL
    display_name = "Manual"
    tool_type = None

    def is_installed(self) -> bool:
        return True

    def list_versions(self, tool_type: ToolType) -> list[InstalledVersion]:
        versions: list[InstalledVersion] = []
        if tool_type is ToolType.JAVA:
            for root in self.environment.java_scan_paths:
                for child in _child_dirs(root):
                    entry = describe_jdk(child)
                    if entry is not None:
                        versions.append(entry)
        else:
            for root in self.environment.node_scan_paths:
                for child in _child_dirs(root):
                    entry = describe_node(child)
                    if entry is not None:
                        versions.append(entry)
        return newest_first(versions)


__all__ = [
    "MANAGER_REGISTRY",
    "ProbeEnvironment",
    "VersionManagerBackend",
    "describe_jdk",
    "describe_node",
    "java_major_version",
    "newest_first",
    "node_version_from_name",
    "read_java_release",
    "register",
    "vendor_from_name",
    "version_from_name",
]
