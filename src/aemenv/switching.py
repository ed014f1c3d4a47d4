"""Profile switching across Java, Node and Maven.

A switch applies each dimension the profile requests independently and
collects failures instead of stopping at the first one. The active profile
pointer only moves when every requested dimension succeeded.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from .environment import SymlinkEnvironment
from .errors import AemEnvError
from .instances import InstanceStore
from .locking import LockManager, LockTimeoutError
from .logging import OperationScope, StructuredLogger
from .maven import MavenConfigManager
from .models import (
    EnvironmentProfile,
    ProfileValidation,
    SwitchResult,
    SymlinkResult,
    ToolType,
    VersionSwitchResult,
)
from .profiles import ProfileStore
from .providers.version_probe import VersionManagerProbe
from .state import StateRegistryError

LOGGER = logging.getLogger(__name__)

_STEP_ERRORS = (AemEnvError, LockTimeoutError, StateRegistryError, OSError, ValueError)


class ProfileSwitchCoordinator:
    """Apply profiles and individual runtime versions to the managed environment."""

    def __init__(
        self,
        profiles: ProfileStore,
        probe: VersionManagerProbe,
        environment: SymlinkEnvironment,
        maven: MavenConfigManager,
        instances: InstanceStore,
        locks: LockManager,
        *,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Wire the coordinator to the stores and providers it drives."""
        self.profiles = profiles
        self.probe = probe
        self.environment = environment
        self.maven = maven
        self.instances = instances
        self.locks = locks
        self.logger = logger

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------
    def get_active_profile(self) -> EnvironmentProfile | None:
        """Return the profile flagged active, or ``None`` if none was ever applied."""
        return self.profiles.get_active()

    def switch(self, profile_id: str) -> SwitchResult:
        """Apply *profile_id*; raises ``ProfileNotFoundError`` before touching anything."""
        with self._operation("profile switch", args={"profile_id": profile_id}) as op:
            with self.locks.switch_lock() as handle:
                op.set_lock_wait_ms(handle.wait_ms)
                profile = self.profiles.get(profile_id)
                op.target = {"profile": profile.name}
                result = SwitchResult()

                if profile.wants_java:
                    result.java_switched = self._attempt(
                        "Java", op, result, lambda: self._apply_runtime(ToolType.JAVA, profile)
                    )
                if profile.wants_node:
                    result.node_switched = self._attempt(
                        "Node", op, result, lambda: self._apply_runtime(ToolType.NODE, profile)
                    )
                if profile.wants_maven:
                    result.maven_switched = self._attempt(
                        "Maven", op, result, lambda: self.maven.switch(profile.maven_config_id)
                    )

                if not result.errors:
                    self._attempt(
                        "Profile", op, result, lambda: self.profiles.mark_active(profile.id)
                    )
                result.success = not result.errors

            changed = sum((result.java_switched, result.node_switched, result.maven_switched))
            if result.success:
                op.success(f"Switched to profile {profile.name}.", changed=changed)
            else:
                op.warning(
                    f"Profile {profile.name} applied with errors; active profile unchanged.",
                    errors=result.errors,
                    changed=changed,
                )
        return result

    def _apply_runtime(self, tool: ToolType, profile: EnvironmentProfile) -> SymlinkResult:
        if tool is ToolType.JAVA:
            path, version = profile.java_path, profile.java_version
            manager = profile.java_manager_id
            apply = self.environment.set_java_symlink
        else:
            path, version = profile.node_path, profile.node_version
            manager = profile.node_manager_id
            apply = self.environment.set_node_symlink
        if not path:
            path = self.probe.resolve(tool, version or "", manager).path
        return apply(path)

    def _attempt(
        self,
        label: str,
        op: OperationScope,
        result: SwitchResult,
        step: Callable[[], object],
    ) -> bool:
        try:
            outcome = step()
        except _STEP_ERRORS as exc:
            message = f"{label}: {exc}"
            LOGGER.debug("Switch step failed: %s", message)
            result.errors.append(message)
            op.add_step(label.lower(), status="error", detail=str(exc))
            return False
        detail = outcome.to_dict() if hasattr(outcome, "to_dict") else None
        op.add_step(label.lower(), detail=detail)
        return True

    # ------------------------------------------------------------------
    # Single runtimes
    # ------------------------------------------------------------------
    def switch_java_version(
        self, version: str, manager_id: str | None = None
    ) -> VersionSwitchResult:
        """Resolve *version* and point ``current-java`` at it."""
        return self._switch_version(ToolType.JAVA, version, manager_id)

    def switch_node_version(
        self, version: str, manager_id: str | None = None
    ) -> VersionSwitchResult:
        """Resolve *version* and point ``current-node`` at it."""
        return self._switch_version(ToolType.NODE, version, manager_id)

    def _switch_version(
        self, tool: ToolType, version: str, manager_id: str | None
    ) -> VersionSwitchResult:
        label = tool.value.capitalize()
        previous = self.probe.current_version(tool)
        with self._operation(
            f"{tool.value} use", args={"version": version, "manager": manager_id}
        ) as op:
            try:
                entry = self.probe.resolve(tool, version, manager_id)
                op.add_step("resolve", detail=entry.path)
                if tool is ToolType.JAVA:
                    self.environment.set_java_symlink(entry.path)
                else:
                    self.environment.set_node_symlink(entry.path)
                op.add_step("symlink")
            except _STEP_ERRORS as exc:
                op.error(str(exc))
                return VersionSwitchResult(
                    success=False,
                    current_version=previous or "",
                    previous_version=previous,
                    error=str(exc),
                )
            op.success(f"{label} {entry.version} selected.", changed=1)
        return VersionSwitchResult(
            success=True,
            current_version=entry.version,
            previous_version=previous,
            message=f"{label} switched to {entry.version}.",
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate_profile(self, profile_id: str) -> ProfileValidation:
        """Check a profile against the host without changing anything."""
        profile = self.profiles.get(profile_id)
        report = ProfileValidation()
        if not (profile.wants_java or profile.wants_node or profile.wants_maven):
            report.warnings.append("Profile does not select Java, Node or Maven.")
        self._validate_runtime(
            report, ToolType.JAVA, profile.java_path, profile.java_version, profile.java_manager_id
        )
        self._validate_runtime(
            report, ToolType.NODE, profile.node_path, profile.node_version, profile.node_manager_id
        )
        if profile.maven_config_id and not self.maven.exists(profile.maven_config_id):
            report.errors.append(f"Maven: config '{profile.maven_config_id}' not found.")
        for role, instance_id in (
            ("Author", profile.author_instance_id),
            ("Publish", profile.publish_instance_id),
        ):
            if instance_id and not self.instances.exists(instance_id):
                report.warnings.append(f"{role} instance '{instance_id}' is not configured.")
        return report

    def _validate_runtime(
        self,
        report: ProfileValidation,
        tool: ToolType,
        path: str | None,
        version: str | None,
        manager_id: str | None,
    ) -> None:
        label = tool.value.capitalize()
        if path:
            if not Path(path).expanduser().is_dir():
                report.errors.append(f"{label}: path {path} does not exist.")
            return
        if not version:
            return
        try:
            self.probe.resolve(tool, version, manager_id)
        except AemEnvError as exc:
            report.errors.append(f"{label}: {exc}")

    # ------------------------------------------------------------------
    @contextmanager
    def _operation(self, name: str, *, args: dict[str, object]) -> Iterator[OperationScope]:
        if self.logger is None:
            yield OperationScope(name=name, args=args, target={})
            return
        with self.logger.operation(name, args=args) as op:
            yield op


__all__ = ["ProfileSwitchCoordinator"]
