"""Saved Maven ``settings.xml`` variants and switching between them."""
from __future__ import annotations

import filecmp
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path

from .errors import AemEnvError, MavenConfigNotFoundError
from .locking import LockManager
from .models import MavenConfig

LOGGER = logging.getLogger(__name__)

_CONFIG_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_COMMENT = re.compile(r"<!--.*?(-->|\Z)", re.DOTALL)
_LOCAL_REPOSITORY = re.compile(r"<localRepository>(.*?)</localRepository>", re.DOTALL)
_PLACEHOLDER_MARKERS = ("/path/to/", "\\path\\to\\", "/your/", "${")


class MavenConfigError(AemEnvError):
    """Raised when a Maven configuration cannot be imported, removed or applied."""


def parse_local_repository(settings_path: Path, *, user_home: Path | None = None) -> str:
    """Return the local repository a ``settings.xml`` points Maven at.

    Commented-out examples and obvious placeholders are ignored, in which case
    Maven's default ``~/.m2/repository`` is returned.
    """
    home = user_home or Path.home()
    default = str(home / ".m2" / "repository")
    try:
        content = settings_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return default
    match = _LOCAL_REPOSITORY.search(_COMMENT.sub("", content))
    if not match:
        return default
    value = match.group(1).strip()
    lowered = value.lower()
    if (
        not value
        or any(marker in lowered for marker in _PLACEHOLDER_MARKERS)
        or lowered.startswith("path/")
        or lowered == "path"
    ):
        return default
    if value.startswith(("~/", "~\\")):
        return str(home / value[2:])
    return value


class MavenConfigManager:
    """Store of named ``settings.xml`` files applied to ``~/.m2``."""

    def __init__(
        self,
        configs_dir: Path,
        maven_home: Path,
        *,
        locks: LockManager,
        user_home: Path | None = None,
    ) -> None:
        """Bind the manager to its storage and the live Maven directory."""
        self.configs_dir = Path(configs_dir).expanduser()
        self.maven_home = Path(maven_home).expanduser()
        self.locks = locks
        self.user_home = user_home or Path.home()

    @property
    def settings_path(self) -> Path:
        """The ``settings.xml`` Maven actually reads."""
        return self.maven_home / "settings.xml"

    @property
    def backup_path(self) -> Path:
        """Where the previous ``settings.xml`` is kept on switch."""
        return self.maven_home / "settings.xml.backup"

    def path_for(self, config_id: str) -> Path:
        """Return the storage path for *config_id*."""
        if not _CONFIG_ID.match(config_id):
            raise MavenConfigError(
                f"Invalid Maven config id '{config_id}'. Use letters, digits, '.', '_' or '-'."
            )
        return self.configs_dir / f"{config_id}.xml"

    def exists(self, config_id: str) -> bool:
        """Return ``True`` when *config_id* is saved."""
        try:
            return self.path_for(config_id).is_file()
        except MavenConfigError:
            return False

    def list_configs(self) -> list[MavenConfig]:
        """Return every saved configuration, sorted by id."""
        if not self.configs_dir.is_dir():
            return []
        return [self._describe(path) for path in sorted(self.configs_dir.glob("*.xml"))]

    def get(self, config_id: str) -> MavenConfig:
        """Return the saved configuration *config_id*."""
        path = self.path_for(config_id)
        if not path.is_file():
            raise MavenConfigNotFoundError(f"Maven config '{config_id}' not found.")
        return self._describe(path)

    def read_config(self, config_id: str) -> str:
        """Return the XML text of *config_id*."""
        path = self.get(config_id).path
        return Path(path).read_text(encoding="utf-8")

    def current_config(self) -> MavenConfig | None:
        """Describe the live ``settings.xml``, if any."""
        if not self.settings_path.is_file():
            return None
        active_id = next((config.id for config in self.list_configs() if config.is_active), None)
        return MavenConfig(
            id=active_id or "current",
            name=active_id or "Current settings.xml",
            path=str(self.settings_path),
            is_active=True,
            local_repository=parse_local_repository(self.settings_path, user_home=self.user_home),
        )

    def import_config(self, name: str, source: Path) -> MavenConfig:
        """Copy *source* into the store under *name*."""
        target = self.path_for(name)
        source = Path(source).expanduser()
        if not source.is_file():
            raise MavenConfigNotFoundError(f"Source file not found: {source}")
        try:
            self.configs_dir.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        except OSError as exc:
            raise MavenConfigError(f"Failed to import Maven config '{name}': {exc}") from exc
        return self._describe(target)

    def delete_config(self, config_id: str) -> bool:
        """Remove a saved configuration; the active one cannot be deleted."""
        config = self.get(config_id)
        if config.is_active:
            raise MavenConfigError("Cannot delete the currently active Maven configuration.")
        try:
            Path(config.path).unlink()
        except OSError as exc:
            raise MavenConfigError(f"Failed to delete Maven config '{config_id}': {exc}") from exc
        return True

    def switch(self, config_id: str) -> MavenConfig:
        """Make *config_id* the live ``settings.xml``, keeping a backup."""
        source = self.path_for(config_id)
        if not source.is_file():
            raise MavenConfigNotFoundError(f"Maven config '{config_id}' not found.")
        with self.locks.maven_lock():
            try:
                self.maven_home.mkdir(parents=True, exist_ok=True)
                if self.settings_path.is_file():
                    shutil.copyfile(self.settings_path, self.backup_path)
                tmp_fd, tmp_name = tempfile.mkstemp(
                    dir=str(self.maven_home), prefix=".settings.xml."
                )
                os.close(tmp_fd)
                tmp_path = Path(tmp_name)
                try:
                    shutil.copyfile(source, tmp_path)
                    os.replace(tmp_path, self.settings_path)
                finally:
                    tmp_path.unlink(missing_ok=True)
            except OSError as exc:
                raise MavenConfigError(
                    f"Failed to switch Maven config to '{config_id}': {exc}"
                ) from exc
        LOGGER.debug("Maven settings switched to %s", config_id)
        return self._describe(source)

    def _describe(self, path: Path) -> MavenConfig:
        return MavenConfig(
            id=path.stem,
            name=path.stem,
            path=str(path),
            is_active=self._is_live(path),
            local_repository=parse_local_repository(path, user_home=self.user_home),
        )

    def _is_live(self, path: Path) -> bool:
        if not self.settings_path.is_file():
            return False
        try:
            return filecmp.cmp(path, self.settings_path, shallow=False)
        except OSError:
            return False


__all__ = ["MavenConfigError", "MavenConfigManager", "parse_local_repository"]
