"""Managed runtime symlinks and the shell integration that consumes them.

The managed directory (``~/.aem-env-manager`` by default) holds exactly two
entries, ``current-java`` and ``current-node``. A delimited block appended to
the user's shell configuration exports ``JAVA_HOME`` and ``PATH`` entries that
point at these fixed locations, so switching a runtime only ever repoints a
symlink and never edits the shell configuration again.
"""
from __future__ import annotations

import logging
import os
import shutil
import sys
import uuid
from collections.abc import Mapping
from pathlib import Path

from .errors import ConfigWriteError, PathNotFoundError, SymlinkError
from .locking import LockManager
from .models import EnvironmentStatus, InitResult, SymlinkResult
from .providers.version_probe import JAVA_LINK_NAME, NODE_LINK_NAME

LOGGER = logging.getLogger(__name__)

SHELL_BLOCK_START = "# AEM Environment Manager - Managed Block"
SHELL_BLOCK_END = "# End AEM Environment Manager Block"


def detect_shell_config(
    user_home: Path,
    environ: Mapping[str, str],
    *,
    platform: str | None = None,
) -> Path:
    """Pick the shell startup file that should carry the managed block."""
    shell = Path(environ.get("SHELL", "")).name
    if shell == "zsh":
        return user_home / ".zshrc"
    if shell == "bash":
        current = platform or sys.platform
        return user_home / (".bash_profile" if current == "darwin" else ".bashrc")
    return user_home / ".profile"


def render_shell_block(env_dir: Path, user_home: Path) -> str:
    """Return the managed block referencing the fixed symlink locations."""
    try:
        relative = env_dir.relative_to(user_home)
        base = f"$HOME/{relative.as_posix()}"
    except ValueError:
        base = env_dir.as_posix()
    java_link = f"{base}/{JAVA_LINK_NAME}"
    node_link = f"{base}/{NODE_LINK_NAME}"
    lines = [
        SHELL_BLOCK_START,
        "# Do not edit this block manually - it is managed by aemenv",
        f'if [ -L "{java_link}" ]; then',
        f'  export JAVA_HOME="{java_link}"',
        '  export PATH="$JAVA_HOME/bin:$PATH"',
        "fi",
        f'if [ -L "{node_link}" ]; then',
        f'  export PATH="{node_link}/bin:$PATH"',
        "fi",
        SHELL_BLOCK_END,
    ]
    return "\n".join(lines) + "\n"


def strip_shell_block(content: str) -> tuple[str, bool]:
    """Remove the managed block from *content*, returning ``(text, removed)``."""
    start = content.find(SHELL_BLOCK_START)
    if start == -1:
        return content, False
    end = content.find(SHELL_BLOCK_END, start)
    if end == -1:
        return content, False
    end += len(SHELL_BLOCK_END)
    before = content[:start].rstrip("\n")
    after = content[end:].lstrip("\n")
    if before and after:
        return f"{before}\n{after}", True
    if before:
        return f"{before}\n", True
    return after, True


class SymlinkEnvironment:
    """Owner of the managed symlink directory and the shell block."""

    def __init__(
        self,
        env_dir: Path,
        *,
        locks: LockManager,
        shell_config: Path | None = None,
        user_home: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Bind the environment to its directory and shell configuration."""
        self.env_dir = Path(env_dir).expanduser()
        self.locks = locks
        self.user_home = user_home or Path.home()
        self._environ = dict(os.environ if environ is None else environ)
        self.shell_config = (
            Path(shell_config).expanduser()
            if shell_config is not None
            else detect_shell_config(self.user_home, self._environ)
        )

    @property
    def java_link(self) -> Path:
        """Location of the ``current-java`` symlink."""
        return self.env_dir / JAVA_LINK_NAME

    @property
    def node_link(self) -> Path:
        """Location of the ``current-node`` symlink."""
        return self.env_dir / NODE_LINK_NAME

    # ------------------------------------------------------------------
    # Setup and teardown
    # ------------------------------------------------------------------
    def initialize(self) -> InitResult:
        """Create the managed directory and install the shell block once."""
        with self.locks.environment_lock():
            created = not self.env_dir.exists()
            try:
                self.env_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise ConfigWriteError(f"Cannot create {self.env_dir}: {exc}") from exc
            try:
                updated = self._install_shell_block()
            except ConfigWriteError:
                if created:
                    shutil.rmtree(self.env_dir, ignore_errors=True)
                raise
        if updated:
            message = f"Environment initialized; restart your shell or source {self.shell_config}."
        else:
            message = "Environment already initialized."
        LOGGER.debug("initialize: created=%s shell_updated=%s", created, updated)
        return InitResult(
            success=True,
            message=message,
            env_dir=str(self.env_dir),
            shell_config_updated=updated,
        )

    def remove_shell_config(self) -> bool:
        """Remove the managed block, leaving the rest of the file untouched."""
        with self.locks.environment_lock():
            if not self.shell_config.exists():
                return False
            try:
                content = self.shell_config.read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigWriteError(f"Cannot read {self.shell_config}: {exc}") from exc
            stripped, removed = strip_shell_block(content)
            if not removed:
                return False
            try:
                self.shell_config.write_text(stripped, encoding="utf-8")
            except OSError as exc:
                raise ConfigWriteError(f"Cannot write {self.shell_config}: {exc}") from exc
            return True

    def is_shell_configured(self) -> bool:
        """Return ``True`` when the shell config carries the managed block."""
        try:
            content = self.shell_config.read_text(encoding="utf-8")
        except OSError:
            return False
        return SHELL_BLOCK_START in content

    def _install_shell_block(self) -> bool:
        if self.is_shell_configured():
            return False
        block = render_shell_block(self.env_dir, self.user_home)
        try:
            existing = self.shell_config.read_text(encoding="utf-8")
        except FileNotFoundError:
            existing = ""
        except OSError as exc:
            raise ConfigWriteError(f"Cannot read {self.shell_config}: {exc}") from exc
        prefix = "\n" if existing and not existing.endswith("\n") else ""
        try:
            self.shell_config.parent.mkdir(parents=True, exist_ok=True)
            with self.shell_config.open("a", encoding="utf-8") as handle:
                handle.write(f"{prefix}\n{block}" if existing else block)
        except OSError as exc:
            raise ConfigWriteError(f"Cannot write {self.shell_config}: {exc}") from exc
        return True

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    def status(self) -> EnvironmentStatus:
        """Report the directory, symlinks and shell block without locking."""
        return EnvironmentStatus(
            is_initialized=self.env_dir.is_dir(),
            java_symlink_exists=_resolves(self.java_link),
            node_symlink_exists=_resolves(self.node_link),
            shell_configured=self.is_shell_configured(),
            env_dir=str(self.env_dir),
            current_java_path=_raw_target(self.java_link),
            current_node_path=_raw_target(self.node_link),
        )

    # ------------------------------------------------------------------
    # Symlink mutation
    # ------------------------------------------------------------------
    def set_java_symlink(self, java_home: str | os.PathLike[str]) -> SymlinkResult:
        """Point ``current-java`` at *java_home*."""
        target = _existing_dir(java_home)
        if not any((target / "bin" / name).exists() for name in ("java", "java.exe")):
            raise SymlinkError(f"Invalid Java installation (no bin/java): {target}")
        return self._swap(self.java_link, target, "Java")

    def set_node_symlink(self, node_path: str | os.PathLike[str]) -> SymlinkResult:
        """Point ``current-node`` at *node_path*."""
        target = _existing_dir(node_path)
        candidates = (target / "bin" / "node", target / "node", target / "node.exe")
        if not any(path.exists() for path in candidates):
            raise SymlinkError(f"Invalid Node installation (no node binary): {target}")
        return self._swap(self.node_link, target, "Node")

    def remove_java_symlink(self) -> bool:
        """Delete ``current-java``; succeeds when already absent."""
        return self._remove(self.java_link)

    def remove_node_symlink(self) -> bool:
        """Delete ``current-node``; succeeds when already absent."""
        return self._remove(self.node_link)

    def _swap(self, link: Path, target: Path, label: str) -> SymlinkResult:
        with self.locks.environment_lock():
            try:
                self.env_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise SymlinkError(f"Cannot create {self.env_dir}: {exc}") from exc
            previous = _raw_target(link)
            temp_link = self.env_dir / f".{link.name}.{uuid.uuid4().hex[:8]}.tmp"
            try:
                os.symlink(target, temp_link, target_is_directory=True)
                os.replace(temp_link, link)
            except OSError as exc:
                raise SymlinkError(f"Failed to update {link}: {exc}") from exc
            finally:
                if temp_link.is_symlink():
                    temp_link.unlink()
        LOGGER.debug("%s symlink %s: %s -> %s", label, link, previous, target)
        return SymlinkResult(
            success=True,
            previous_target=previous,
            current_target=str(target),
            message=f"{label} symlink updated.",
        )

    def _remove(self, link: Path) -> bool:
        with self.locks.environment_lock():
            if not link.is_symlink():
                if link.exists():
                    raise SymlinkError(f"{link} exists but is not a symlink; refusing to remove.")
                return True
            try:
                link.unlink()
            except FileNotFoundError:
                return True
            except OSError as exc:
                raise SymlinkError(f"Failed to remove {link}: {exc}") from exc
        return True

    # ------------------------------------------------------------------
    # Child process environment
    # ------------------------------------------------------------------
    def get_profile_environment(
        self,
        java_path: str | None = None,
        node_path: str | None = None,
        *,
        extra: Mapping[str, str] | None = None,
    ) -> list[tuple[str, str]]:
        """Compute the variables a child process needs for the given runtimes.

        Global symlinks are not touched. ``extra`` (a profile's ``env_vars``)
        is appended after the runtime variables.
        """
        variables: list[tuple[str, str]] = []
        path_entries: list[str] = []
        if java_path:
            variables.append(("JAVA_HOME", java_path))
            path_entries.append(str(Path(java_path) / "bin"))
        if node_path:
            node_bin = Path(node_path) / "bin"
            path_entries.append(str(node_bin) if node_bin.is_dir() else node_path)
        if path_entries:
            inherited = self._environ.get("PATH", "")
            if inherited:
                path_entries.append(inherited)
            variables.append(("PATH", os.pathsep.join(path_entries)))
        for key, value in (extra or {}).items():
            variables.append((key, value))
        return variables


def _existing_dir(value: str | os.PathLike[str]) -> Path:
    target = Path(value).expanduser()
    if not target.exists():
        raise PathNotFoundError(f"Path not found: {target}")
    if not target.is_dir():
        raise PathNotFoundError(f"Path is not a directory: {target}")
    return target.absolute()


def _raw_target(link: Path) -> str | None:
    if not link.is_symlink():
        return None
    try:
        return os.readlink(link)
    except OSError:
        return None


def _resolves(link: Path) -> bool:
    return link.is_symlink() and link.exists()


__all__ = [
    "SHELL_BLOCK_END",
    "SHELL_BLOCK_START",
    "SymlinkEnvironment",
    "detect_shell_config",
    "render_shell_block",
    "strip_shell_block",
]
