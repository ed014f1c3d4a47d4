"""Typer-powered command line for ``aemenv``.

Every command builds on a shared :class:`RuntimeContext` created by the root
callback, wraps its work in a structured operation record and renders either
a Rich table or JSON (``--json``). Domain failures are mapped onto the exit
codes in :mod:`aemenv.exit_codes`.
"""
from __future__ import annotations

import shlex
import textwrap
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .credentials import CredentialVault
from .discovery import DEFAULT_PORTS, discover_instances
from .environment import SymlinkEnvironment
from .errors import (
    AemEnvError,
    ConfigWriteError,
    CredentialError,
    NotFoundError,
    PathNotFoundError,
    ProcessDetectionError,
    SymlinkError,
    VersionNotFoundError,
)
from .exit_codes import ExitCode
from .instances import InstanceStore, instance_urls
from .lifecycle import InstanceLifecycle
from .locking import LockManager, LockTimeoutError
from .logging import OperationScope, StructuredLogger
from .maven import MavenConfigError, MavenConfigManager
from .models import EnvironmentProfile, InstanceStatus, InstanceType, SwitchResult, ToolType
from .profiles import ProfileStore
from .providers.instance_status import InstanceStatusDetector
from .providers.process_inspector import ProcessInspector
from .providers.version_probe import VersionManagerProbe
from .state import StateRegistry, StateRegistryError
from .switching import ProfileSwitchCoordinator

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to aemenv's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of a table.",
)

MANAGER_OPTION = typer.Option(
    None,
    "--manager",
    "-m",
    help="Resolve the version through this manager only (e.g. sdkman, nvm).",
)

STATUS_STYLES = {
    InstanceStatus.RUNNING: "green",
    InstanceStatus.STARTING: "yellow",
    InstanceStatus.STOPPING: "yellow",
    InstanceStatus.STOPPED: "dim",
    InstanceStatus.PORT_CONFLICT: "red",
    InstanceStatus.ERROR: "bold red",
    InstanceStatus.UNKNOWN: "dim",
}

_VALIDATION_ERRORS = (
    NotFoundError,
    VersionNotFoundError,
    PathNotFoundError,
    MavenConfigError,
    ValueError,
)
_ENVIRONMENT_ERRORS = (
    ConfigWriteError,
    SymlinkError,
    LockTimeoutError,
    StateRegistryError,
    ConfigError,
    OSError,
)
_PROVIDER_ERRORS = (CredentialError, ProcessDetectionError)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        AEM developer environment manager.

        Switch Java, Node and Maven settings per profile through stable
        symlinks, and check which local AEM instances are up.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    registry: StateRegistry
    locks: LockManager
    logger: StructuredLogger
    probe: VersionManagerProbe
    environment: SymlinkEnvironment
    maven: MavenConfigManager
    profiles: ProfileStore
    instances: InstanceStore
    coordinator: ProfileSwitchCoordinator
    detector: InstanceStatusDetector
    vault: CredentialVault
    lifecycle: InstanceLifecycle


def _build_runtime(config: AppConfig) -> RuntimeContext:
    registry = StateRegistry(config.registry_dir)
    registry.ensure_root()
    locks = LockManager(config.runtime_dir, config.lock_timeout)
    logger = StructuredLogger(config.logs_dir)
    probe = VersionManagerProbe.from_config(config)
    environment = SymlinkEnvironment(
        config.env_dir,
        locks=locks,
        shell_config=config.shell_config,
    )
    maven = MavenConfigManager(config.maven_configs_dir, config.maven_home, locks=locks)
    profiles = ProfileStore(registry, locks)
    instances = InstanceStore(registry, locks)
    coordinator = ProfileSwitchCoordinator(
        profiles,
        probe,
        environment,
        maven,
        instances,
        locks,
        logger=logger,
    )
    inspector = ProcessInspector(timeout=config.detection.process_timeout)
    detector = InstanceStatusDetector(instances, options=config.detection, inspector=inspector)
    vault = CredentialVault(config.credentials.service)
    lifecycle = InstanceLifecycle(
        environment,
        profiles,
        probe,
        config.logs_dir / "instances",
        inspector=inspector,
        vault=vault,
    )
    return RuntimeContext(
        config=config,
        registry=registry,
        locks=locks,
        logger=logger,
        probe=probe,
        environment=environment,
        maven=maven,
        profiles=profiles,
        instances=instances,
        coordinator=coordinator,
        detector=detector,
        vault=vault,
        lifecycle=lifecycle,
    )


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    try:
        config = load_config(config_file=config_file, overrides=overrides)
        runtime = _build_runtime(config)
    except (ConfigError, StateRegistryError, OSError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT) from exc
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    root = ctx.find_root()
    if isinstance(root.obj, RuntimeContext):
        return root.obj
    return _ensure_runtime(ctx, None, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the aemenv version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override lock acquisition timeout in seconds.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file, lock_timeout)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"aemenv {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file, lock_timeout)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------
def _exit_code_for(exc: Exception) -> ExitCode:
    if isinstance(exc, _PROVIDER_ERRORS):
        return ExitCode.PROVIDER
    if isinstance(exc, _VALIDATION_ERRORS):
        return ExitCode.VALIDATION
    return ExitCode.ENVIRONMENT


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), context={"rc": int(rc)})
    raise typer.Exit(code=rc)


@contextmanager
def _domain_errors(op: OperationScope) -> Iterator[None]:
    """Translate domain exceptions raised in the block into CLI exits."""
    try:
        yield
    except (AemEnvError, *_ENVIRONMENT_ERRORS, ValueError) as exc:
        _command_error(op, str(exc) or exc.__class__.__name__, rc=_exit_code_for(exc))


def _parse_env_pairs(pairs: Sequence[str] | None) -> dict[str, str]:
    values: dict[str, str] = {}
    for pair in pairs or ():
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Environment variable '{pair}' must use KEY=VALUE form.")
        values[key.strip()] = value
    return values


def _print_mapping(data: Mapping[str, object], *, title: str | None = None) -> None:
    table = Table(show_header=True, header_style="bold magenta", title=title)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        if isinstance(value, Mapping):
            rendered = ", ".join(f"{k}={v}" for k, v in value.items())
        elif isinstance(value, list):
            rendered = ", ".join(str(item) for item in value)
        else:
            rendered = "" if value is None else str(value)
        table.add_row(key, rendered)
    console.print(table)


def _flag(value: bool) -> str:
    return "[green]yes[/green]" if value else "[dim]no[/dim]"


manager_app = typer.Typer(help="Inspect installed Java and Node version managers.")
java_app = typer.Typer(help="Select the active Java runtime.")
node_app = typer.Typer(help="Select the active Node runtime.")
profile_app = typer.Typer(help="Manage and switch environment profiles.")
env_app = typer.Typer(help="Set up and inspect the managed symlink environment.")
instance_app = typer.Typer(help="Manage AEM instances and detect their status.")
maven_app = typer.Typer(help="Manage saved Maven settings.xml variants.")
credentials_app = typer.Typer(help="Store AEM instance credentials in the OS keyring.")
config_app = typer.Typer(help="Inspect the resolved configuration.")

app.add_typer(manager_app, name="manager")
app.add_typer(java_app, name="java")
app.add_typer(node_app, name="node")
app.add_typer(profile_app, name="profile")
app.add_typer(env_app, name="env")
app.add_typer(instance_app, name="instance")
app.add_typer(maven_app, name="maven")
app.add_typer(credentials_app, name="credentials")
app.add_typer(config_app, name="config")


# ---------------------------------------------------------------------------
# Version managers
# ---------------------------------------------------------------------------
@manager_app.command("list")
def manager_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List every supported version manager and whether it is installed."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "manager list",
        args={"json": json_output},
        target={"kind": "manager", "scope": "host"},
    ) as op:
        managers = runtime.probe.detect_managers()
        if json_output:
            console.print_json(data={"managers": [manager.to_dict() for manager in managers]})
            op.success("Reported version managers as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Manager", style="bold")
        table.add_column("Tool")
        table.add_column("Installed")
        table.add_column("Active")
        table.add_column("Path")
        for manager in managers:
            table.add_row(
                manager.id,
                manager.tool_type.value if manager.tool_type else "java/node",
                _flag(manager.is_installed),
                _flag(manager.is_active),
                manager.path or "",
            )
        console.print(table)
        installed = sum(1 for manager in managers if manager.is_installed)
        op.success(f"Detected {installed} installed version managers.", changed=0)


@manager_app.command("versions")
def manager_versions(
    ctx: typer.Context,
    manager_id: str = typer.Argument(..., help="Manager id (sdkman, jenv, nvm, manual, ...)."),
    tool: str = typer.Option("java", "--tool", "-t", help="Runtime to list: java or node."),
    json_output: bool = JSON_OPTION,
) -> None:
    """List the versions a manager exposes for a runtime."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "manager versions",
        args={"manager": manager_id, "tool": tool, "json": json_output},
        target={"kind": "manager", "name": manager_id},
    ) as op:
        with _domain_errors(op):
            versions = runtime.probe.list_versions(manager_id, tool)
        if json_output:
            console.print_json(data={"versions": [entry.to_dict() for entry in versions]})
            op.success("Reported versions as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Version", style="bold")
        table.add_column("Vendor")
        table.add_column("Default")
        table.add_column("Path")
        if not versions:
            table.add_row("(none)", "", "", "")
        for entry in versions:
            table.add_row(entry.version, entry.vendor or "", _flag(entry.is_default), entry.path)
        console.print(table)
        op.success(f"Listed {len(versions)} versions.", changed=0)


# ---------------------------------------------------------------------------
# Java / Node runtime selection
# ---------------------------------------------------------------------------
def _runtime_use(
    ctx: typer.Context,
    tool: ToolType,
    version: str,
    manager: str | None,
    json_output: bool,
) -> None:
    runtime = _get_runtime(ctx)
    if tool is ToolType.JAVA:
        result = runtime.coordinator.switch_java_version(version, manager)
    else:
        result = runtime.coordinator.switch_node_version(version, manager)
    if json_output:
        console.print_json(data=result.to_dict())
    elif result.success:
        console.print(f"[green]{result.message}[/green]")
    else:
        console.print(f"[red]{result.error}[/red]")
    if not result.success:
        raise typer.Exit(code=ExitCode.VALIDATION)


def _runtime_link(ctx: typer.Context, tool: ToolType, path: Path, json_output: bool) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        f"{tool.value} link",
        args={"path": str(path)},
        target={"kind": "symlink", "name": tool.value},
    ) as op:
        with _domain_errors(op):
            if tool is ToolType.JAVA:
                result = runtime.environment.set_java_symlink(path)
            else:
                result = runtime.environment.set_node_symlink(path)
        if json_output:
            console.print_json(data=result.to_dict())
        else:
            previous = result.previous_target or "(none)"
            console.print(f"[green]{result.message}[/green] {previous} -> {result.current_target}")
        op.success(result.message or "Symlink updated.", changed=1, context=result.to_dict())


def _runtime_unlink(ctx: typer.Context, tool: ToolType) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        f"{tool.value} unlink",
        target={"kind": "symlink", "name": tool.value},
    ) as op:
        with _domain_errors(op):
            if tool is ToolType.JAVA:
                runtime.environment.remove_java_symlink()
            else:
                runtime.environment.remove_node_symlink()
        console.print(f"{tool.value.capitalize()} symlink removed.")
        op.success("Symlink removed.", changed=1)


@java_app.command("use")
def java_use(
    ctx: typer.Context,
    version: str = typer.Argument(..., help="Exact Java version, e.g. 17 or 11.0.21."),
    manager: str | None = MANAGER_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Resolve a Java version and point current-java at it."""
    _runtime_use(ctx, ToolType.JAVA, version, manager, json_output)


@java_app.command("link")
def java_link(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="JAVA_HOME directory to activate."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Point current-java at an explicit JAVA_HOME."""
    _runtime_link(ctx, ToolType.JAVA, path, json_output)


@java_app.command("unlink")
def java_unlink(ctx: typer.Context) -> None:
    """Remove the current-java symlink."""
    _runtime_unlink(ctx, ToolType.JAVA)


@node_app.command("use")
def node_use(
    ctx: typer.Context,
    version: str = typer.Argument(..., help="Exact Node version, e.g. 18.17.0."),
    manager: str | None = MANAGER_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Resolve a Node version and point current-node at it."""
    _runtime_use(ctx, ToolType.NODE, version, manager, json_output)


@node_app.command("link")
def node_link(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Node installation directory to activate."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Point current-node at an explicit Node installation."""
    _runtime_link(ctx, ToolType.NODE, path, json_output)


@node_app.command("unlink")
def node_unlink(ctx: typer.Context) -> None:
    """Remove the current-node symlink."""
    _runtime_unlink(ctx, ToolType.NODE)


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------
def _profile_row(profile: EnvironmentProfile) -> tuple[str, ...]:
    java = profile.java_version or profile.java_path or ""
    if profile.java_version and profile.java_manager_id:
        java = f"{java} ({profile.java_manager_id})"
    node = profile.node_version or profile.node_path or ""
    if profile.node_version and profile.node_manager_id:
        node = f"{node} ({profile.node_manager_id})"
    return (
        ("* " if profile.is_active else "") + profile.name,
        profile.id,
        java,
        node,
        profile.maven_config_id or "",
    )


@profile_app.command("list")
def profile_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List profiles; the active one is marked with an asterisk."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "profile list",
        args={"json": json_output},
        target={"kind": "profile", "scope": "registry"},
    ) as op:
        with _domain_errors(op):
            profiles = runtime.profiles.list_profiles()
        if json_output:
            console.print_json(data={"profiles": [profile.to_dict() for profile in profiles]})
            op.success("Reported profiles as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Name", style="bold")
        table.add_column("Id")
        table.add_column("Java")
        table.add_column("Node")
        table.add_column("Maven")
        if not profiles:
            table.add_row("(none)", "", "", "", "")
        for profile in profiles:
            table.add_row(*_profile_row(profile))
        console.print(table)
        op.success("Reported profile list.", changed=0)


@profile_app.command("show")
def profile_show(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Profile id or name."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show every field of a profile."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "profile show",
        args={"profile": reference, "json": json_output},
        target={"kind": "profile", "name": reference},
    ) as op:
        with _domain_errors(op):
            profile = runtime.profiles.find(reference)
        if json_output:
            console.print_json(data=profile.to_dict())
        else:
            _print_mapping(profile.to_dict(), title=profile.name)
        op.success("Reported profile.", changed=0)


@profile_app.command("active")
def profile_active(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show the active profile, if any."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "profile active",
        args={"json": json_output},
        target={"kind": "profile", "scope": "active"},
    ) as op:
        with _domain_errors(op):
            profile = runtime.coordinator.get_active_profile()
        if json_output:
            console.print_json(data={"profile": profile.to_dict() if profile else None})
        elif profile is None:
            console.print("No profile has been activated yet.")
        else:
            console.print(f"Active profile: [bold]{profile.name}[/bold] ({profile.id})")
        op.success("Reported active profile.", changed=0)


@profile_app.command("create")
def profile_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Display name of the new profile."),
    description: str | None = typer.Option(None, "--description", help="Free-form notes."),
    java_version: str | None = typer.Option(None, "--java", help="Java version to select."),
    java_manager: str | None = typer.Option(None, "--java-manager", help="Java manager id."),
    java_path: str | None = typer.Option(None, "--java-path", help="Explicit JAVA_HOME."),
    node_version: str | None = typer.Option(None, "--node", help="Node version to select."),
    node_manager: str | None = typer.Option(None, "--node-manager", help="Node manager id."),
    node_path: str | None = typer.Option(None, "--node-path", help="Explicit Node directory."),
    maven_config: str | None = typer.Option(None, "--maven", help="Saved Maven config id."),
    author: str | None = typer.Option(None, "--author", help="Author instance id."),
    publish: str | None = typer.Option(None, "--publish", help="Publish instance id."),
    env: list[str] | None = typer.Option(None, "--env", help="Extra KEY=VALUE variable."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Create a profile."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "profile create",
        args={"name": name, "java": java_version, "node": node_version, "maven": maven_config},
        target={"kind": "profile", "name": name},
    ) as op:
        with _domain_errors(op):
            profile = runtime.profiles.create(
                name,
                description=description,
                java_version=java_version,
                java_manager_id=java_manager,
                java_path=java_path,
                node_version=node_version,
                node_manager_id=node_manager,
                node_path=node_path,
                maven_config_id=maven_config,
                author_instance_id=author,
                publish_instance_id=publish,
                env_vars=_parse_env_pairs(env),
            )
        if json_output:
            console.print_json(data=profile.to_dict())
        else:
            console.print(f"[green]Created profile[/green] {profile.name} ({profile.id})")
        op.success("Profile created.", changed=1, context={"id": profile.id})


@profile_app.command("update")
def profile_update(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Profile id or name."),
    name: str | None = typer.Option(None, "--name", help="New display name."),
    description: str | None = typer.Option(None, "--description", help="Free-form notes."),
    java_version: str | None = typer.Option(None, "--java", help="Java version to select."),
    java_manager: str | None = typer.Option(None, "--java-manager", help="Java manager id."),
    java_path: str | None = typer.Option(None, "--java-path", help="Explicit JAVA_HOME."),
    node_version: str | None = typer.Option(None, "--node", help="Node version to select."),
    node_manager: str | None = typer.Option(None, "--node-manager", help="Node manager id."),
    node_path: str | None = typer.Option(None, "--node-path", help="Explicit Node directory."),
    maven_config: str | None = typer.Option(None, "--maven", help="Saved Maven config id."),
    author: str | None = typer.Option(None, "--author", help="Author instance id."),
    publish: str | None = typer.Option(None, "--publish", help="Publish instance id."),
    env: list[str] | None = typer.Option(
        None, "--env", help="Extra KEY=VALUE variable; replaces the existing set."
    ),
    clear: list[str] | None = typer.Option(
        None, "--clear", help="Field to unset, e.g. java_version or maven_config_id."
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Edit a profile; only the given options change."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "profile update",
        args={"profile": reference, "clear": list(clear or [])},
        target={"kind": "profile", "name": reference},
    ) as op:
        with _domain_errors(op):
            current = runtime.profiles.find(reference)
            changes: dict[str, object] = {
                key: value
                for key, value in (
                    ("name", name),
                    ("description", description),
                    ("java_version", java_version),
                    ("java_manager_id", java_manager),
                    ("java_path", java_path),
                    ("node_version", node_version),
                    ("node_manager_id", node_manager),
                    ("node_path", node_path),
                    ("maven_config_id", maven_config),
                    ("author_instance_id", author),
                    ("publish_instance_id", publish),
                )
                if value is not None
            }
            if env:
                changes["env_vars"] = _parse_env_pairs(env)
            for key in clear or ():
                if key in changes:
                    raise ValueError(f"Field '{key}' cannot be both set and cleared.")
                changes[key] = {} if key == "env_vars" else None
            if not changes:
                raise ValueError("Nothing to update; pass at least one option.")
            profile = runtime.profiles.update(current.id, **changes)
        if json_output:
            console.print_json(data=profile.to_dict())
        else:
            console.print(f"[green]Updated profile[/green] {profile.name} ({profile.id})")
        op.success("Profile updated.", changed=1, context={"fields": sorted(changes)})


@profile_app.command("delete")
def profile_delete(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Profile id or name."),
) -> None:
    """Delete a profile."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "profile delete",
        args={"profile": reference},
        target={"kind": "profile", "name": reference},
    ) as op:
        with _domain_errors(op):
            profile = runtime.profiles.find(reference)
            runtime.profiles.delete(profile.id)
        console.print(f"Deleted profile {profile.name}.")
        op.success("Profile deleted.", changed=1)


@profile_app.command("duplicate")
def profile_duplicate(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Profile id or name to copy."),
    new_name: str | None = typer.Option(None, "--name", help="Name of the copy."),
) -> None:
    """Copy a profile under a new id."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "profile duplicate",
        args={"profile": reference, "name": new_name},
        target={"kind": "profile", "name": reference},
    ) as op:
        with _domain_errors(op):
            source = runtime.profiles.find(reference)
            copy = runtime.profiles.duplicate(source.id, new_name)
        console.print(f"[green]Created profile[/green] {copy.name} ({copy.id})")
        op.success("Profile duplicated.", changed=1, context={"id": copy.id})


@profile_app.command("export")
def profile_export(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Profile id or name."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to this file."),
) -> None:
    """Export a profile as JSON."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "profile export",
        args={"profile": reference, "output": str(output) if output else None},
        target={"kind": "profile", "name": reference},
    ) as op:
        with _domain_errors(op):
            profile = runtime.profiles.find(reference)
            document = runtime.profiles.export_profile(profile.id)
            if output is not None:
                output.write_text(document + "\n", encoding="utf-8")
        if output is None:
            console.print(document, markup=False, highlight=False, soft_wrap=True)
        else:
            console.print(f"Exported {profile.name} to {output}.")
        op.success("Profile exported.", changed=0)


@profile_app.command("import")
def profile_import(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help="JSON file produced by 'profile export'."),
) -> None:
    """Import a profile; it is never activated automatically."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "profile import",
        args={"source": str(source)},
        target={"kind": "profile", "scope": "import"},
    ) as op:
        with _domain_errors(op):
            profile = runtime.profiles.import_profile(source.read_text(encoding="utf-8"))
        console.print(f"[green]Imported profile[/green] {profile.name} ({profile.id})")
        op.success("Profile imported.", changed=1, context={"id": profile.id})


@profile_app.command("validate")
def profile_validate(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Profile id or name."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Check that a profile's runtimes, Maven config and instances exist."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "profile validate",
        args={"profile": reference, "json": json_output},
        target={"kind": "profile", "name": reference},
    ) as op:
        with _domain_errors(op):
            profile = runtime.profiles.find(reference)
            report = runtime.coordinator.validate_profile(profile.id)
        if json_output:
            console.print_json(data=report.to_dict())
        else:
            for error in report.errors:
                console.print(f"[red]error[/red] {error}")
            for warning in report.warnings:
                console.print(f"[yellow]warning[/yellow] {warning}")
            if report.valid:
                console.print(f"[green]Profile {profile.name} is valid.[/green]")
        if not report.valid:
            op.error("Profile is invalid.", errors=report.errors, warnings=report.warnings)
        else:
            op.success("Profile is valid.", changed=0, warnings=report.warnings)
    if not report.valid:
        raise typer.Exit(code=ExitCode.VALIDATION)


def _render_switch(profile: EnvironmentProfile, result: SwitchResult) -> None:
    table = Table(show_header=True, header_style="bold magenta", title=profile.name)
    table.add_column("Dimension", style="bold")
    table.add_column("Requested")
    table.add_column("Switched")
    for label, requested, switched in (
        ("Java", profile.wants_java, result.java_switched),
        ("Node", profile.wants_node, result.node_switched),
        ("Maven", profile.wants_maven, result.maven_switched),
    ):
        table.add_row(label, _flag(requested), _flag(switched) if requested else "")
    console.print(table)
    for error in result.errors:
        console.print(f"[red]{error}[/red]")
    if result.success:
        console.print(f"[green]Profile {profile.name} is now active.[/green]")
    else:
        console.print("[yellow]The previously active profile remains active.[/yellow]")


@profile_app.command("switch")
def profile_switch(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Profile id or name."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Apply a profile's Java, Node and Maven settings."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "profile switch-request",
        args={"profile": reference, "json": json_output},
        target={"kind": "profile", "name": reference},
    ) as op:
        with _domain_errors(op):
            profile = runtime.profiles.find(reference)
            result = runtime.coordinator.switch(profile.id)
        if json_output:
            console.print_json(data=result.to_dict())
        else:
            _render_switch(profile, result)
        if result.success:
            op.success("Profile switched.", changed=1)
        else:
            op.warning("Profile switch incomplete.", errors=result.errors)
    if not result.success:
        raise typer.Exit(code=ExitCode.PARTIAL)


# ---------------------------------------------------------------------------
# Managed environment
# ---------------------------------------------------------------------------
@env_app.command("status")
def env_status(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Report the managed directory, symlinks and shell integration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "env status",
        args={"json": json_output},
        target={"kind": "environment", "path": str(runtime.environment.env_dir)},
    ) as op:
        status = runtime.environment.status()
        if json_output:
            console.print_json(data=status.to_dict())
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Check", style="bold")
            table.add_column("State")
            table.add_column("Detail")
            table.add_row("Directory", _flag(status.is_initialized), status.env_dir)
            table.add_row(
                "current-java", _flag(status.java_symlink_exists), status.current_java_path or ""
            )
            table.add_row(
                "current-node", _flag(status.node_symlink_exists), status.current_node_path or ""
            )
            table.add_row(
                "Shell config",
                _flag(status.shell_configured),
                str(runtime.environment.shell_config),
            )
            console.print(table)
        op.success("Reported environment status.", changed=0)


@env_app.command("init")
def env_init(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Create the managed directory and add the shell block."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "env init",
        target={"kind": "environment", "path": str(runtime.environment.env_dir)},
    ) as op:
        with _domain_errors(op):
            result = runtime.environment.initialize()
        if json_output:
            console.print_json(data=result.to_dict())
        else:
            console.print(f"[green]{result.message}[/green]")
        op.success(result.message, changed=int(result.shell_config_updated))


@env_app.command("teardown")
def env_teardown(ctx: typer.Context) -> None:
    """Remove the managed block from the shell configuration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "env teardown",
        target={"kind": "shell", "path": str(runtime.environment.shell_config)},
    ) as op:
        with _domain_errors(op):
            removed = runtime.environment.remove_shell_config()
        if removed:
            console.print(f"Removed aemenv block from {runtime.environment.shell_config}.")
        else:
            console.print("No aemenv block was present.")
        op.success("Shell configuration cleaned.", changed=int(removed))


@env_app.command("show")
def env_show(
    ctx: typer.Context,
    java_path: str | None = typer.Option(None, "--java", help="JAVA_HOME for the child."),
    node_path: str | None = typer.Option(None, "--node", help="Node directory for the child."),
    profile_ref: str | None = typer.Option(
        None, "--profile", help="Take paths and variables from this profile."
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Print the variables a process needs to run under the given runtimes."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "env show",
        args={"java": java_path, "node": node_path, "profile": profile_ref},
        target={"kind": "environment", "scope": "overlay"},
    ) as op:
        extra: dict[str, str] = {}
        with _domain_errors(op):
            if profile_ref:
                profile = runtime.profiles.find(profile_ref)
                java_path = java_path or profile.java_path or _resolved_path(
                    runtime, ToolType.JAVA, profile.java_version, profile.java_manager_id
                )
                node_path = node_path or profile.node_path or _resolved_path(
                    runtime, ToolType.NODE, profile.node_version, profile.node_manager_id
                )
                extra = dict(profile.env_vars)
        variables = runtime.environment.get_profile_environment(
            java_path, node_path, extra=extra
        )
        if json_output:
            console.print_json(data={"variables": [list(pair) for pair in variables]})
        else:
            for name, value in variables:
                line = f"export {name}={shlex.quote(value)}"
                console.print(line, markup=False, highlight=False, soft_wrap=True)
        op.success("Reported environment overlay.", changed=0)


def _resolved_path(
    runtime: RuntimeContext, tool: ToolType, version: str | None, manager: str | None
) -> str | None:
    if not version:
        return None
    return runtime.probe.resolve(tool, version, manager).path


# ---------------------------------------------------------------------------
# Instances
# ---------------------------------------------------------------------------
@instance_app.command("list")
def instance_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List configured instances."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance list",
        args={"json": json_output},
        target={"kind": "instance", "scope": "registry"},
    ) as op:
        with _domain_errors(op):
            instances = runtime.instances.list_instances()
        if json_output:
            console.print_json(data={"instances": [item.to_dict() for item in instances]})
            op.success("Reported instance list as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Name", style="bold")
        table.add_column("Id")
        table.add_column("Type")
        table.add_column("URL")
        table.add_column("Path")
        if not instances:
            table.add_row("(none)", "", "", "", "")
        for item in instances:
            table.add_row(item.name, item.id, item.instance_type.value, item.base_url, item.path)
        console.print(table)
        op.success("Reported instance list.", changed=0)


@instance_app.command("status")
def instance_status(
    ctx: typer.Context,
    reference: str | None = typer.Argument(None, help="Instance id or name (default: all)."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Detect whether instances are running, starting, stopped or conflicting."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance status",
        args={"instance": reference, "json": json_output},
        target={"kind": "instance", "name": reference or "*"},
    ) as op:
        with _domain_errors(op):
            if reference:
                targets = [runtime.instances.find(reference)]
            else:
                targets = runtime.instances.list_instances()
        results = runtime.detector.detect_all(instances=targets)
        if json_output:
            console.print_json(data={"results": [result.to_dict() for result in results]})
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Name", style="bold")
            table.add_column("URL")
            table.add_column("Status")
            table.add_column("Process")
            table.add_column("Time")
            table.add_column("Detail")
            if not results:
                table.add_row("(none)", "", "", "", "", "")
            for item, result in zip(targets, results, strict=True):
                style = STATUS_STYLES.get(result.status, "")
                process = ""
                if result.process_name or result.process_id:
                    process = f"{result.process_name or '?'} ({result.process_id or '?'})"
                table.add_row(
                    item.name,
                    item.base_url,
                    f"[{style}]{result.status.value}[/{style}]" if style else result.status.value,
                    process,
                    f"{result.duration_ms} ms",
                    result.error or "",
                )
            console.print(table)
        summary = {status.value: 0 for status in InstanceStatus}
        for result in results:
            summary[result.status.value] += 1
        op.success(
            f"Detected status for {len(results)} instances.",
            changed=0,
            context={"summary": {key: value for key, value in summary.items() if value}},
        )


@instance_app.command("add")
def instance_add(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Display name of the instance."),
    instance_type: str = typer.Option(
        "author", "--type", help="author, publish or dispatcher."
    ),
    host: str = typer.Option("localhost", "--host", help="Hostname the instance listens on."),
    port: int | None = typer.Option(None, "--port", help="HTTP port (default by type)."),
    path: str = typer.Option("", "--path", help="Working directory or quickstart JAR."),
    java_opts: str | None = typer.Option(None, "--java-opts", help="JVM options."),
    run_modes: list[str] | None = typer.Option(None, "--run-mode", help="Sling run mode."),
    profile: str | None = typer.Option(None, "--profile", help="Profile id to start with."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Register an AEM instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance add",
        args={"name": name, "type": instance_type, "host": host, "port": port},
        target={"kind": "instance", "name": name},
    ) as op:
        with _domain_errors(op):
            default_port = DEFAULT_PORTS[InstanceType(instance_type)]
            instance = runtime.instances.create(
                name,
                instance_type,
                host=host,
                port=port or default_port,
                path=path,
                java_opts=java_opts,
                run_modes=list(run_modes or []),
                profile_id=profile,
            )
        if json_output:
            console.print_json(data=instance.to_dict())
        else:
            console.print(f"[green]Added instance[/green] {instance.name} ({instance.id})")
        op.success("Instance added.", changed=1, context={"id": instance.id})


@instance_app.command("remove")
def instance_remove(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Instance id or name."),
) -> None:
    """Remove an instance from the registry (files on disk are kept)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance remove",
        args={"instance": reference},
        target={"kind": "instance", "name": reference},
    ) as op:
        with _domain_errors(op):
            instance = runtime.instances.find(reference)
            runtime.instances.delete(instance.id)
        console.print(f"Removed instance {instance.name}.")
        op.success("Instance removed.", changed=1)


@instance_app.command("update")
def instance_update(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Instance id or name."),
    name: str | None = typer.Option(None, "--name", help="New display name."),
    instance_type: str | None = typer.Option(
        None, "--type", help="author, publish or dispatcher."
    ),
    host: str | None = typer.Option(None, "--host", help="Hostname the instance listens on."),
    port: int | None = typer.Option(None, "--port", help="HTTP port."),
    path: str | None = typer.Option(None, "--path", help="Working directory or quickstart JAR."),
    java_opts: str | None = typer.Option(None, "--java-opts", help="JVM options."),
    run_modes: list[str] | None = typer.Option(
        None, "--run-mode", help="Sling run mode; replaces the existing list."
    ),
    profile: str | None = typer.Option(None, "--profile", help="Profile id to start with."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Edit an instance; only the given options change."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance update",
        args={"instance": reference, "host": host, "port": port},
        target={"kind": "instance", "name": reference},
    ) as op:
        with _domain_errors(op):
            current = runtime.instances.find(reference)
            changes: dict[str, object] = {
                key: value
                for key, value in (
                    ("name", name),
                    ("instance_type", instance_type),
                    ("host", host),
                    ("port", port),
                    ("path", path),
                    ("java_opts", java_opts),
                    ("profile_id", profile),
                )
                if value is not None
            }
            if run_modes:
                changes["run_modes"] = list(run_modes)
            if not changes:
                raise ValueError("Nothing to update; pass at least one option.")
            instance = runtime.instances.update(current.id, **changes)
        if json_output:
            console.print_json(data=instance.to_dict())
        else:
            console.print(f"[green]Updated instance[/green] {instance.name} ({instance.id})")
        op.success("Instance updated.", changed=1, context={"fields": sorted(changes)})


@instance_app.command("start")
def instance_start(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Instance id or name."),
    profile_ref: str | None = typer.Option(
        None, "--profile", help="Run under this profile instead of the instance's own."
    ),
    json_output: bool = JSON_OPTION,
) -> None:
    """Launch an instance's quickstart JAR in the background."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance start",
        args={"instance": reference, "profile": profile_ref},
        target={"kind": "instance", "name": reference},
    ) as op:
        with _domain_errors(op):
            instance = runtime.instances.find(reference)
            profile = runtime.profiles.find(profile_ref) if profile_ref else None
            launched = runtime.lifecycle.start(instance, profile)
        op.add_step("launch", detail={"pid": launched.pid, "command": launched.command})
        if json_output:
            console.print_json(data=launched.to_dict())
        else:
            console.print(
                f"[green]Started[/green] {instance.name} (pid {launched.pid}); "
                f"output in {launched.log_path}",
                soft_wrap=True,
            )
        op.success("Instance started.", changed=1, context={"pid": launched.pid})


@instance_app.command("stop")
def instance_stop(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Instance id or name."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Shut an instance down through its console, or terminate its JVM."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance stop",
        args={"instance": reference},
        target={"kind": "instance", "name": reference},
    ) as op:
        with _domain_errors(op):
            instance = runtime.instances.find(reference)
            stopped = runtime.lifecycle.stop(instance)
        op.add_step(stopped.method, detail={"pid": stopped.process_id})
        if json_output:
            console.print_json(data=stopped.to_dict())
        else:
            style = STATUS_STYLES[stopped.status]
            console.print(f"[{style}]{stopped.status.value}[/{style}] {stopped.message}")
        op.success(stopped.message, changed=1, context={"status": stopped.status.value})


@instance_app.command("urls")
def instance_urls_command(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Instance id or name."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Print the console URLs of an instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance urls",
        args={"instance": reference, "json": json_output},
        target={"kind": "instance", "name": reference},
    ) as op:
        with _domain_errors(op):
            instance = runtime.instances.find(reference)
        urls = instance_urls(instance)
        if json_output:
            console.print_json(data=urls)
        else:
            _print_mapping(urls, title=instance.name)
        op.success("Reported instance URLs.", changed=0)


@instance_app.command("discover")
def instance_discover(
    ctx: typer.Context,
    roots: list[Path] = typer.Argument(..., help="Directories to scan for quickstart JARs."),
    depth: int = typer.Option(2, "--depth", min=0, help="How many levels to descend."),
    register: bool = typer.Option(False, "--register", help="Add new finds to the registry."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Find AEM quickstart JARs on disk."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "instance discover",
        args={"roots": [str(root) for root in roots], "depth": depth, "register": register},
        target={"kind": "instance", "scope": "discovery"},
    ) as op:
        report = discover_instances(roots, max_depth=depth)
        added: list[str] = []
        if register:
            with _domain_errors(op):
                known = {
                    (item.path, item.port) for item in runtime.instances.list_instances()
                }
                for found in report.instances:
                    if (str(found.path), found.port) in known:
                        continue
                    instance = runtime.instances.create(
                        found.name,
                        found.instance_type.value,
                        port=found.port,
                        path=str(found.path),
                    )
                    added.append(instance.id)
        if json_output:
            console.print_json(
                data={
                    "instances": [item.to_dict() for item in report.instances],
                    "warnings": report.warnings,
                    "registered": added,
                }
            )
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Name", style="bold")
            table.add_column("Type")
            table.add_column("Port")
            table.add_column("JAR")
            table.add_column("License")
            for found in report.instances:
                table.add_row(
                    found.name,
                    found.instance_type.value,
                    str(found.port),
                    str(found.jar_path),
                    _flag(found.license_file is not None),
                )
            console.print(table)
            for warning in report.warnings:
                console.print(f"[yellow]{warning}[/yellow]")
            if added:
                console.print(f"Registered {len(added)} new instances.")
        op.success(
            f"Discovered {len(report.instances)} instances.",
            changed=len(added),
            warnings=report.warnings,
        )


# ---------------------------------------------------------------------------
# Maven
# ---------------------------------------------------------------------------
@maven_app.command("list")
def maven_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List saved Maven configurations."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "maven list",
        args={"json": json_output},
        target={"kind": "maven", "path": str(runtime.config.maven_configs_dir)},
    ) as op:
        configs = runtime.maven.list_configs()
        if json_output:
            console.print_json(data={"configs": [config.to_dict() for config in configs]})
            op.success("Reported Maven configs as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Id", style="bold")
        table.add_column("Active")
        table.add_column("Local repository")
        if not configs:
            table.add_row("(none)", "", "")
        for config in configs:
            table.add_row(config.id, _flag(config.is_active), config.local_repository or "")
        console.print(table)
        op.success("Reported Maven configs.", changed=0)


@maven_app.command("import")
def maven_import(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Id to save the configuration under."),
    source: Path = typer.Argument(..., help="settings.xml file to import."),
) -> None:
    """Save a copy of a settings.xml under a name."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "maven import",
        args={"name": name, "source": str(source)},
        target={"kind": "maven", "name": name},
    ) as op:
        with _domain_errors(op):
            config = runtime.maven.import_config(name, source)
        console.print(f"[green]Imported Maven config[/green] {config.id}")
        op.success("Maven config imported.", changed=1)


@maven_app.command("delete")
def maven_delete(
    ctx: typer.Context,
    config_id: str = typer.Argument(..., help="Saved configuration id."),
) -> None:
    """Delete a saved configuration (the active one is protected)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "maven delete",
        args={"id": config_id},
        target={"kind": "maven", "name": config_id},
    ) as op:
        with _domain_errors(op):
            runtime.maven.delete_config(config_id)
        console.print(f"Deleted Maven config {config_id}.")
        op.success("Maven config deleted.", changed=1)


@maven_app.command("use")
def maven_use(
    ctx: typer.Context,
    config_id: str = typer.Argument(..., help="Saved configuration id."),
) -> None:
    """Make a saved configuration the live ~/.m2/settings.xml."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "maven use",
        args={"id": config_id},
        target={"kind": "maven", "path": str(runtime.maven.settings_path)},
    ) as op:
        with _domain_errors(op):
            config = runtime.maven.switch(config_id)
        console.print(f"[green]Maven now uses[/green] {config.id}")
        op.success("Maven config switched.", changed=1, backups=[str(runtime.maven.backup_path)])


@maven_app.command("current")
def maven_current(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Describe the live settings.xml."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "maven current",
        args={"json": json_output},
        target={"kind": "maven", "path": str(runtime.maven.settings_path)},
    ) as op:
        current = runtime.maven.current_config()
        if json_output:
            console.print_json(data={"config": current.to_dict() if current else None})
        elif current is None:
            console.print(f"No settings.xml at {runtime.maven.settings_path}.")
        else:
            _print_mapping(current.to_dict(), title="settings.xml")
        op.success("Reported current Maven config.", changed=0)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------
@credentials_app.command("set")
def credentials_set(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Instance id or name."),
    username: str = typer.Option("admin", "--username", "-u", help="AEM user name."),
    password: str = typer.Option(
        ..., "--password", "-p", prompt=True, hide_input=True, help="AEM password."
    ),
) -> None:
    """Store credentials for an instance in the OS keyring."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "credentials set",
        args={"instance": reference, "username": username},
        target={"kind": "credentials", "name": reference},
    ) as op:
        with _domain_errors(op):
            instance = runtime.instances.find(reference)
            runtime.vault.store(instance.id, username, password)
        console.print(f"Stored credentials for {instance.name}.")
        op.success("Credentials stored.", changed=1)


@credentials_app.command("show")
def credentials_show(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Instance id or name."),
    reveal: bool = typer.Option(False, "--reveal", help="Print the password in clear text."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the stored credentials for an instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "credentials show",
        args={"instance": reference, "reveal": reveal},
        target={"kind": "credentials", "name": reference},
    ) as op:
        with _domain_errors(op):
            instance = runtime.instances.find(reference)
            credentials = runtime.vault.get(instance.id)
        if credentials is None:
            _command_error(
                op, f"No credentials stored for {instance.name}.", rc=ExitCode.VALIDATION
            )
        payload = credentials.to_dict(reveal=reveal)
        if json_output:
            console.print_json(data=payload)
        else:
            _print_mapping(payload, title=instance.name)
        op.success("Reported credentials.", changed=0)


@credentials_app.command("delete")
def credentials_delete(
    ctx: typer.Context,
    reference: str = typer.Argument(..., help="Instance id or name."),
) -> None:
    """Forget the stored credentials for an instance."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "credentials delete",
        args={"instance": reference},
        target={"kind": "credentials", "name": reference},
    ) as op:
        with _domain_errors(op):
            instance = runtime.instances.find(reference)
            removed = runtime.vault.delete(instance.id)
        if removed:
            console.print(f"Deleted credentials for {instance.name}.")
        else:
            console.print(f"No credentials were stored for {instance.name}.")
        op.success("Credentials deleted.", changed=int(removed))


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the resolved configuration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config", "path": str(runtime.config.config_file)},
    ) as op:
        data = runtime.config.to_dict()
        if json_output:
            console.print_json(data=data)
        else:
            _print_mapping(data, title="aemenv configuration")
        op.success("Reported configuration.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
