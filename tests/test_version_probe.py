"""Tests for version manager discovery and version resolution."""
from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from aemenv.errors import NotFoundError, VersionNotFoundError
from aemenv.models import ManagerType, ToolType
from aemenv.providers.version_managers import (
    MANAGER_REGISTRY,
    ProbeEnvironment,
    VersionManagerBackend,
    java_major_version,
    node_version_from_name,
)
from aemenv.providers.version_probe import VersionManagerProbe


def _probe(
    home: Path,
    *,
    environ: dict[str, str] | None = None,
    java_roots: tuple[Path, ...] = (),
    node_roots: tuple[Path, ...] = (),
) -> VersionManagerProbe:
    environment = ProbeEnvironment(
        user_home=home,
        environ=environ or {},
        java_scan_paths=java_roots,
        node_scan_paths=node_roots,
        which=lambda _name: None,
    )
    return VersionManagerProbe(environment, env_dir=home / ".aem-env-manager")


def _install_sdkman(home: Path, make_jdk: Callable[..., Path]) -> Path:
    sdkman = home / ".sdkman"
    (sdkman / "bin").mkdir(parents=True)
    (sdkman / "bin" / "sdkman-init.sh").write_text("", encoding="utf-8")
    candidates = sdkman / "candidates" / "java"
    make_jdk(candidates, "11.0.21-tem", "11.0.21", "Eclipse Adoptium")
    default = make_jdk(candidates, "17.0.9-tem", "17.0.9", "Eclipse Adoptium")
    os.symlink(default, candidates / "current")
    return sdkman


def test_every_manager_type_has_a_backend() -> None:
    """The registry covers the closed set of manager types."""
    assert set(MANAGER_REGISTRY) == set(ManagerType)


def test_detect_managers_reports_installed_and_missing(
    tmp_path: Path, make_jdk: Callable[..., Path]
) -> None:
    """Installed managers are flagged; absent ones are reported as not installed."""
    _install_sdkman(tmp_path, make_jdk)
    (tmp_path / ".nvm").mkdir()
    (tmp_path / ".nvm" / "nvm.sh").write_text("", encoding="utf-8")

    managers = {manager.id: manager for manager in _probe(tmp_path).detect_managers()}

    assert managers["sdkman"].is_installed is True
    assert managers["sdkman"].path == str(tmp_path / ".sdkman")
    assert managers["nvm"].is_installed is True
    assert managers["jenv"].is_installed is False
    assert managers["jabba"].is_installed is False
    assert managers["nvm-windows"].is_installed is False
    assert managers["manual"].is_installed is True
    assert not any(manager.is_active for manager in managers.values())


def test_active_manager_follows_symlink(tmp_path: Path, make_jdk: Callable[..., Path]) -> None:
    """The manager owning the current-java target is reported active."""
    sdkman = _install_sdkman(tmp_path, make_jdk)
    env_dir = tmp_path / ".aem-env-manager"
    env_dir.mkdir()
    os.symlink(sdkman / "candidates" / "java" / "11.0.21-tem", env_dir / "current-java")

    managers = {manager.id: manager for manager in _probe(tmp_path).detect_managers()}

    assert managers["sdkman"].is_active is True
    assert managers["manual"].is_active is False


def test_manual_is_active_for_unmanaged_target(
    tmp_path: Path, make_jdk: Callable[..., Path]
) -> None:
    """A symlink into a directory no manager owns marks the manual backend active."""
    jdk = make_jdk(tmp_path / "opt", "jdk-17", "17.0.2")
    env_dir = tmp_path / ".aem-env-manager"
    env_dir.mkdir()
    os.symlink(jdk, env_dir / "current-java")

    managers = {manager.id: manager for manager in _probe(tmp_path).detect_managers()}

    assert managers["manual"].is_active is True


def test_failing_backend_is_reported_not_installed(tmp_path: Path) -> None:
    """One backend raising does not prevent the others from being probed."""

    class ExplodingBackend(VersionManagerBackend):
        manager_type = ManagerType.JENV
        display_name = "jEnv"
        tool_type = ToolType.JAVA

        def is_installed(self) -> bool:
            raise PermissionError("denied")

        def list_versions(self, tool_type: ToolType) -> list:  # type: ignore[type-arg]
            return []

    registry = dict(MANAGER_REGISTRY)
    registry[ManagerType.JENV] = ExplodingBackend
    environment = ProbeEnvironment(user_home=tmp_path, which=lambda _name: None)
    probe = VersionManagerProbe(environment, env_dir=tmp_path / "env", registry=registry)

    managers = {manager.id: manager for manager in probe.detect_managers()}

    assert managers["jenv"].is_installed is False
    assert managers["manual"].is_installed is True


def test_list_versions_sdkman(tmp_path: Path, make_jdk: Callable[..., Path]) -> None:
    """SDKMAN candidates are listed newest first with the default flagged."""
    _install_sdkman(tmp_path, make_jdk)

    versions = _probe(tmp_path).list_versions("sdkman", "java")

    assert [entry.version for entry in versions] == ["17.0.9-tem", "11.0.21-tem"]
    assert versions[0].is_default is True
    assert versions[1].is_default is False
    assert versions[0].vendor == "Eclipse Adoptium"
    assert versions[0].full_version == "17.0.9"


def test_list_versions_nvm(tmp_path: Path, make_node: Callable[..., Path]) -> None:
    """nvm versions are read from ``versions/node`` and the default alias is honoured."""
    nvm = tmp_path / ".nvm"
    nvm.mkdir()
    (nvm / "nvm.sh").write_text("", encoding="utf-8")
    (nvm / "alias").mkdir()
    (nvm / "alias" / "default").write_text("18\n", encoding="utf-8")
    make_node(nvm / "versions" / "node", "v16.20.2")
    make_node(nvm / "versions" / "node", "v18.17.0")

    versions = _probe(tmp_path).list_versions("nvm", ToolType.NODE)

    assert [entry.version for entry in versions] == ["v18.17.0", "v16.20.2"]
    assert versions[0].is_default is True


def test_list_versions_fnm_uses_installation_dir(
    tmp_path: Path, make_node: Callable[..., Path]
) -> None:
    """fnm exposes ``node-versions/<v>/installation`` as the install path."""
    fnm = tmp_path / "fnm"
    installation = make_node(fnm / "node-versions" / "v20.9.0", "installation")

    versions = _probe(tmp_path, environ={"FNM_DIR": str(fnm)}).list_versions("fnm", "node")

    assert [entry.version for entry in versions] == ["v20.9.0"]
    assert versions[0].path == str(installation)


def test_list_versions_unknown_manager(tmp_path: Path) -> None:
    """Unknown manager ids raise NotFoundError."""
    with pytest.raises(NotFoundError):
        _probe(tmp_path).list_versions("asdf", "java")


def test_list_versions_wrong_tool(tmp_path: Path) -> None:
    """Asking a Java manager for Node versions raises NotFoundError."""
    with pytest.raises(NotFoundError, match="does not manage node"):
        _probe(tmp_path).list_versions("sdkman", "node")


def test_list_versions_not_installed_is_empty(tmp_path: Path) -> None:
    """A known manager that is absent simply has no versions."""
    assert _probe(tmp_path).list_versions("jabba", "java") == []


def test_manual_scan_finds_jdks_and_node(
    tmp_path: Path,
    make_jdk: Callable[..., Path],
    make_node: Callable[..., Path],
) -> None:
    """The manual backend scans configured roots for both runtimes."""
    jvm = tmp_path / "jvm"
    make_jdk(jvm, "temurin-17-jdk", "17.0.9")
    make_jdk(jvm, "java-8-openjdk", "1.8.0_392")
    (jvm / "not-a-jdk").mkdir()
    nodes = tmp_path / "nodes"
    make_node(nodes, "node-v18.17.0-linux-x64")

    probe = _probe(tmp_path, java_roots=(jvm,), node_roots=(nodes,))

    assert [entry.version for entry in probe.list_versions("manual", "java")] == ["17", "8"]
    assert [entry.version for entry in probe.list_versions("manual", "node")] == ["v18.17.0"]


def test_resolve_prefers_manual_then_managers(
    tmp_path: Path,
    make_jdk: Callable[..., Path],
) -> None:
    """Resolution matches exact versions across manual roots and managers."""
    _install_sdkman(tmp_path, make_jdk)
    jvm = tmp_path / "jvm"
    manual = make_jdk(jvm, "jdk-17", "17.0.9")

    probe = _probe(tmp_path, java_roots=(jvm,))

    assert probe.resolve("java", "17").path == str(manual)
    sdk = probe.resolve("java", "11.0.21-tem")
    assert sdk.path == str(tmp_path / ".sdkman" / "candidates" / "java" / "11.0.21-tem")
    scoped = probe.resolve("java", "17.0.9-tem", "sdkman")
    assert scoped.version == "17.0.9-tem"


def test_resolve_missing_version_raises(tmp_path: Path, make_jdk: Callable[..., Path]) -> None:
    """An unknown version raises VersionNotFoundError."""
    make_jdk(tmp_path / "jvm", "jdk-17", "17.0.9")

    with pytest.raises(VersionNotFoundError, match="Java version 99 not found"):
        _probe(tmp_path, java_roots=(tmp_path / "jvm",)).resolve("java", "99")


def test_current_version_reads_symlink(tmp_path: Path, make_node: Callable[..., Path]) -> None:
    """The current version is derived from the managed symlink target."""
    node = make_node(tmp_path / "nodes", "node-v18.17.0-linux-x64")
    env_dir = tmp_path / ".aem-env-manager"
    env_dir.mkdir()
    probe = _probe(tmp_path)

    assert probe.current_version(ToolType.NODE) is None
    os.symlink(node, env_dir / "current-node")
    assert probe.current_version(ToolType.NODE) == "v18.17.0"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1.8.0_392", "8"), ("17.0.9", "17"), ("21", "21"), ("11.0.2+9", "11")],
)
def test_java_major_version(raw: str, expected: str) -> None:
    """Java version strings collapse to their major number."""
    assert java_major_version(raw) == expected


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("node-v18.17.0-linux-x64", "v18.17.0"),
        ("v20.9.0", "v20.9.0"),
        ("16.20.2", "v16.20.2"),
        ("installation", None),
    ],
)
def test_node_version_from_name(name: str, expected: str | None) -> None:
    """Node directory names are normalised to ``v``-prefixed versions."""
    assert node_version_from_name(name) == expected
