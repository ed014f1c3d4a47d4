"""Starting and stopping local AEM instances.

An instance is launched as ``java <opts> -Dsling.run.modes=... -Dhttp.port=...
-jar <quickstart>`` from the JAR's directory, with the runtimes of its profile
injected into the child environment only. Stopping asks the Felix console to
shut the instance down and, when that is refused or unreachable, terminates
the Java process that owns the instance port.
"""
from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field, fields
from pathlib import Path

import psutil
import requests

from .credentials import CredentialVault
from .environment import SymlinkEnvironment
from .errors import InstanceLifecycleError, PathNotFoundError
from .instances import find_quickstart_jar
from .models import AemInstance, EnvironmentProfile, InstanceStatus, ToolType
from .profiles import ProfileStore
from .providers.instance_status import InstanceStatusDetector, direct_session, is_local_host
from .providers.process_inspector import ProcessInspector
from .providers.version_probe import VersionManagerProbe

LOGGER = logging.getLogger(__name__)

DEFAULT_JAVA_OPTS = ("-Xmx1024m",)
DEFAULT_CREDENTIALS = ("admin", "admin")
SHUTDOWN_PATH = "/system/console/vmstat"


@dataclass(slots=True, frozen=True)
class LaunchResult:
    """A started instance process."""

    instance_id: str
    pid: int
    command: list[str]
    working_dir: str
    log_path: str
    java_home: str | None = None
    profile_id: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass(slots=True, frozen=True)
class StopResult:
    """How an instance was asked to stop."""

    instance_id: str
    status: InstanceStatus
    method: str
    message: str
    process_id: int | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        payload = {item.name: getattr(self, item.name) for item in fields(self)}
        payload["status"] = self.status.value
        return payload


def resolve_quickstart_jar(instance: AemInstance) -> Path:
    """Return the JAR to launch for *instance* (a JAR path or its directory)."""
    if not instance.path.strip():
        raise ValueError(f"Instance '{instance.name}' has no path configured.")
    target = Path(instance.path).expanduser()
    if target.is_dir():
        jar = find_quickstart_jar(target)
        if jar is None:
            raise PathNotFoundError(f"No quickstart JAR found in {target}")
        return jar
    if not target.is_file():
        raise PathNotFoundError(f"Quickstart JAR not found: {target}")
    return target


def java_arguments(instance: AemInstance) -> list[str]:
    """Return the JVM options, run modes and port flags for *instance*."""
    if instance.java_opts:
        options = [
            item
            for item in shlex.split(instance.java_opts)
            if item != "java" and not item.endswith("/java")
        ]
    else:
        options = list(DEFAULT_JAVA_OPTS)
    run_modes = instance.run_modes or [instance.instance_type.value, "local"]
    options.append(f"-Dsling.run.modes={','.join(run_modes)}")
    options.append(f"-Dhttp.port={instance.port}")
    return options


@dataclass
class InstanceLifecycle:
    """Launch instances under their profile and stop them again."""

    environment: SymlinkEnvironment
    profiles: ProfileStore
    probe: VersionManagerProbe
    logs_dir: Path
    inspector: ProcessInspector = field(default_factory=ProcessInspector)
    vault: CredentialVault | None = None
    session: requests.Session = field(default_factory=direct_session)
    stop_timeout: float = 10.0

    # Start ----------------------------------------------------------------
    def start(
        self, instance: AemInstance, profile: EnvironmentProfile | None = None
    ) -> LaunchResult:
        """Launch *instance* in the background; its output goes to a log file."""
        jar = resolve_quickstart_jar(instance)
        if InstanceStatusDetector.port_open(instance.address, instance.port, 0.5):
            raise InstanceLifecycleError(
                f"Port {instance.port} is already in use; is '{instance.name}' running?"
            )
        profile = profile or self._profile_for(instance)
        java_home = self._runtime_path(ToolType.JAVA, profile)
        node_path = self._runtime_path(ToolType.NODE, profile)
        overlay = self.environment.get_profile_environment(
            java_home, node_path, extra=profile.env_vars if profile else None
        )
        child_env = dict(os.environ)
        child_env.update(overlay)

        java = "java"
        if java_home and (Path(java_home) / "bin" / "java").exists():
            java = str(Path(java_home) / "bin" / "java")
        command = [java, *java_arguments(instance), "-jar", str(jar)]

        self.logs_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.logs_dir / f"instance-{instance.id}.log"
        with log_path.open("ab") as log:
            try:
                process = subprocess.Popen(  # noqa: S603
                    command,
                    cwd=jar.parent,
                    env=child_env,
                    stdin=subprocess.DEVNULL,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
            except OSError as exc:
                raise InstanceLifecycleError(f"Failed to launch {command[0]}: {exc}") from exc
        LOGGER.debug("Started %s as pid %s: %s", instance.id, process.pid, command)
        return LaunchResult(
            instance_id=instance.id,
            pid=process.pid,
            command=command,
            working_dir=str(jar.parent),
            log_path=str(log_path),
            java_home=java_home,
            profile_id=profile.id if profile else None,
        )

    def _profile_for(self, instance: AemInstance) -> EnvironmentProfile | None:
        if instance.profile_id:
            return self.profiles.get(instance.profile_id)
        return self.profiles.get_active()

    def _runtime_path(self, tool: ToolType, profile: EnvironmentProfile | None) -> str | None:
        if profile is None:
            return None
        if tool is ToolType.JAVA:
            path, version, manager = (
                profile.java_path,
                profile.java_version,
                profile.java_manager_id,
            )
        else:
            path, version, manager = (
                profile.node_path,
                profile.node_version,
                profile.node_manager_id,
            )
        if path:
            return path
        if version:
            return self.probe.resolve(tool, version, manager).path
        return None

    # Stop -----------------------------------------------------------------
    def stop(self, instance: AemInstance) -> StopResult:
        """Ask *instance* to shut down, terminating its JVM as a fallback."""
        if self._request_shutdown(instance):
            return StopResult(
                instance_id=instance.id,
                status=InstanceStatus.STOPPING,
                method="http",
                message=f"Shutdown requested for '{instance.name}'.",
            )
        if not is_local_host(instance.address):
            raise InstanceLifecycleError(
                f"'{instance.name}' did not accept the shutdown request and runs on "
                f"remote host {instance.address}."
            )
        owner = self.inspector.owner_of(instance.port)
        if owner is None or owner.pid is None:
            raise InstanceLifecycleError(
                f"Could not stop '{instance.name}': no process found on port {instance.port}."
            )
        if not owner.is_java:
            raise InstanceLifecycleError(
                f"Port {instance.port} is held by {owner.name or 'an unknown process'} "
                f"(pid {owner.pid}), not a Java process; refusing to stop it."
            )
        self._terminate(owner.pid)
        return StopResult(
            instance_id=instance.id,
            status=InstanceStatus.STOPPED,
            method="signal",
            message=f"Terminated process {owner.pid} for '{instance.name}'.",
            process_id=owner.pid,
        )

    def _request_shutdown(self, instance: AemInstance) -> bool:
        credentials = self.vault.get(instance.id) if self.vault is not None else None
        auth = (credentials.username, credentials.password) if credentials else DEFAULT_CREDENTIALS
        try:
            with self.session.post(
                f"{instance.base_url}{SHUTDOWN_PATH}",
                params={"shutdown_type": "Stop"},
                auth=auth,
                timeout=self.stop_timeout,
                allow_redirects=False,
            ) as response:
                accepted = response.status_code < 400
        except requests.RequestException as exc:
            LOGGER.debug("Shutdown request to %s failed: %s", instance.base_url, exc)
            return False
        if not accepted:
            LOGGER.debug(
                "Shutdown request to %s refused with HTTP %s",
                instance.base_url,
                response.status_code,
            )
        return accepted

    def _terminate(self, pid: int) -> None:
        try:
            process = psutil.Process(pid)
            process.terminate()
            try:
                process.wait(timeout=self.stop_timeout)
            except psutil.TimeoutExpired:
                process.kill()
                process.wait(timeout=self.stop_timeout)
        except psutil.NoSuchProcess:
            return
        except (psutil.AccessDenied, psutil.TimeoutExpired) as exc:
            raise InstanceLifecycleError(f"Failed to terminate process {pid}: {exc}") from exc


__all__ = [
    "InstanceLifecycle",
    "LaunchResult",
    "StopResult",
    "java_arguments",
    "resolve_quickstart_jar",
]
