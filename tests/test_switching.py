"""Tests for profile switching and single-runtime switches."""
from __future__ import annotations

import json
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import pytest

from aemenv.environment import SymlinkEnvironment
from aemenv.errors import ProfileNotFoundError
from aemenv.instances import InstanceStore
from aemenv.locking import LockManager
from aemenv.logging import StructuredLogger
from aemenv.maven import MavenConfigManager
from aemenv.profiles import ProfileStore
from aemenv.providers.version_managers import ProbeEnvironment
from aemenv.providers.version_probe import VersionManagerProbe
from aemenv.state import StateRegistry
from aemenv.switching import ProfileSwitchCoordinator


@dataclass
class Harness:
    """Coordinator wired to temporary directories with one JDK and one Node."""

    coordinator: ProfileSwitchCoordinator
    profiles: ProfileStore
    environment: SymlinkEnvironment
    maven: MavenConfigManager
    instances: InstanceStore
    logger: StructuredLogger
    jdk17: Path
    node18: Path


@pytest.fixture
def harness(
    tmp_path: Path,
    locks: LockManager,
    make_jdk: Callable[..., Path],
    make_node: Callable[..., Path],
) -> Harness:
    """Build a coordinator over temporary state with manual runtimes."""
    home = tmp_path / "home"
    home.mkdir()
    jdk17 = make_jdk(tmp_path / "jvm", "temurin-17", "17.0.9", "Eclipse Adoptium")
    node18 = make_node(tmp_path / "nodes", "node-v18.17.0-linux-x64")
    env_dir = home / ".aem-env-manager"
    probe = VersionManagerProbe(
        ProbeEnvironment(
            user_home=home,
            java_scan_paths=(tmp_path / "jvm",),
            node_scan_paths=(tmp_path / "nodes",),
            which=lambda _name: None,
        ),
        env_dir=env_dir,
    )
    environment = SymlinkEnvironment(
        env_dir, locks=locks, shell_config=home / ".zshrc", user_home=home, environ={}
    )
    maven = MavenConfigManager(
        tmp_path / "maven-configs", home / ".m2", locks=locks, user_home=home
    )
    registry = StateRegistry(tmp_path / "state")
    profiles = ProfileStore(registry, locks)
    instances = InstanceStore(registry, locks)
    logger = StructuredLogger(tmp_path / "logs")
    coordinator = ProfileSwitchCoordinator(
        profiles, probe, environment, maven, instances, locks, logger=logger
    )
    return Harness(coordinator, profiles, environment, maven, instances, logger, jdk17, node18)


def _log_records(logger: StructuredLogger) -> list[dict[str, object]]:
    return [json.loads(line) for line in logger.path.read_text(encoding="utf-8").splitlines()]


def _import_maven(harness: Harness, tmp_path: Path, name: str) -> None:
    source = tmp_path / f"{name}.xml"
    source.write_text(
        f"<settings><localRepository>/srv/{name}</localRepository></settings>\n",
        encoding="utf-8",
    )
    harness.maven.import_config(name, source)


def test_switch_applies_every_dimension(harness: Harness, tmp_path: Path) -> None:
    """A fully resolvable profile switches all runtimes and becomes active."""
    _import_maven(harness, tmp_path, "client-a")
    profile = harness.profiles.create(
        "Client A", java_version="17", node_version="18.17.0", maven_config_id="client-a"
    )

    result = harness.coordinator.switch(profile.id)

    assert result.success is True
    assert result.java_switched and result.node_switched and result.maven_switched
    assert result.errors == []
    assert os.readlink(harness.environment.java_link) == str(harness.jdk17)
    assert os.readlink(harness.environment.node_link) == str(harness.node18)
    assert "/srv/client-a" in harness.maven.settings_path.read_text(encoding="utf-8")
    active = harness.coordinator.get_active_profile()
    assert active is not None
    assert active.id == profile.id
    assert active.last_used_at is not None

    [record] = _log_records(harness.logger)
    assert record["op"] == "profile switch"
    assert record["result"]["status"] == "success"  # type: ignore[index]
    assert [step["name"] for step in record["steps"]] == [  # type: ignore[union-attr]
        "java",
        "node",
        "maven",
        "profile",
    ]


def test_partial_failure_keeps_previous_active_profile(harness: Harness) -> None:
    """A failing dimension is reported while the others still apply."""
    good = harness.profiles.create("Good", java_version="17")
    harness.coordinator.switch(good.id)
    broken = harness.profiles.create("Broken", java_version="99", node_version="18.17.0")

    result = harness.coordinator.switch(broken.id)

    assert result.success is False
    assert result.java_switched is False
    assert result.node_switched is True
    assert result.errors == ["Java: Java version 99 not found."]
    assert os.readlink(harness.environment.java_link) == str(harness.jdk17)
    assert os.readlink(harness.environment.node_link) == str(harness.node18)
    active = harness.coordinator.get_active_profile()
    assert active is not None
    assert active.id == good.id

    record = _log_records(harness.logger)[-1]
    assert record["result"]["status"] == "warning"  # type: ignore[index]
    assert record["result"]["errors"] == ["Java: Java version 99 not found."]  # type: ignore[index]


def test_switch_only_touches_requested_dimensions(harness: Harness) -> None:
    """Profiles that omit a runtime leave its symlink alone."""
    harness.environment.set_java_symlink(harness.jdk17)
    profile = harness.profiles.create("Frontend", node_path=str(harness.node18))

    result = harness.coordinator.switch(profile.id)

    assert result.success is True
    assert result.java_switched is False
    assert result.node_switched is True
    assert result.maven_switched is False
    assert os.readlink(harness.environment.java_link) == str(harness.jdk17)


def test_explicit_missing_path_fails(harness: Harness, tmp_path: Path) -> None:
    """An explicit path that no longer exists is a per-dimension failure."""
    profile = harness.profiles.create("Stale", java_path=str(tmp_path / "gone"))

    result = harness.coordinator.switch(profile.id)

    assert result.success is False
    assert result.errors == [f"Java: Path not found: {tmp_path / 'gone'}"]
    assert harness.coordinator.get_active_profile() is None


def test_missing_maven_config_fails(harness: Harness) -> None:
    """An unknown Maven configuration is reported under its label."""
    profile = harness.profiles.create("Maven", maven_config_id="absent")

    result = harness.coordinator.switch(profile.id)

    assert result.success is False
    assert result.errors == ["Maven: Maven config 'absent' not found."]


def test_switch_unknown_profile_raises(harness: Harness) -> None:
    """Unknown profile ids raise before any change is made."""
    with pytest.raises(ProfileNotFoundError):
        harness.coordinator.switch("missing")
    assert not harness.environment.java_link.is_symlink()


def test_empty_profile_becomes_active(harness: Harness) -> None:
    """A profile that selects nothing still becomes the active one."""
    profile = harness.profiles.create("Empty")

    result = harness.coordinator.switch(profile.id)

    assert result.success is True
    assert harness.coordinator.get_active_profile().id == profile.id  # type: ignore[union-attr]


def test_switch_java_version(harness: Harness) -> None:
    """Single Java switches report previous and current versions."""
    first = harness.coordinator.switch_java_version("17")
    again = harness.coordinator.switch_java_version("17.0.9")

    assert first.success is True
    assert first.previous_version is None
    assert first.current_version == "17"
    assert again.previous_version == "17"
    assert again.message == "Java switched to 17."


def test_switch_node_version_failure_keeps_previous(harness: Harness) -> None:
    """A failed Node switch reports the unchanged current version."""
    harness.coordinator.switch_node_version("v18.17.0")

    result = harness.coordinator.switch_node_version("20.0.0")

    assert result.success is False
    assert result.current_version == "v18.17.0"
    assert result.error == "Node version 20.0.0 not found."
    assert os.readlink(harness.environment.node_link) == str(harness.node18)


def test_validate_profile(harness: Harness, tmp_path: Path) -> None:
    """Validation reports unresolved runtimes as errors and dangling instances as warnings."""
    profile = harness.profiles.create(
        "Mixed",
        java_version="99",
        node_path=str(tmp_path / "missing-node"),
        maven_config_id="absent",
        author_instance_id="ghost",
    )

    report = harness.coordinator.validate_profile(profile.id)

    assert report.valid is False
    assert report.errors == [
        "Java: Java version 99 not found.",
        f"Node: path {tmp_path / 'missing-node'} does not exist.",
        "Maven: config 'absent' not found.",
    ]
    assert report.warnings == ["Author instance 'ghost' is not configured."]
    assert harness.coordinator.get_active_profile() is None


def test_validate_good_and_empty_profiles(harness: Harness) -> None:
    """Resolvable profiles validate cleanly and empty ones only warn."""
    good = harness.profiles.create("Good", java_version="17", node_version="18.17.0")
    empty = harness.profiles.create("Empty")

    assert harness.coordinator.validate_profile(good.id).to_dict() == {
        "valid": True,
        "errors": [],
        "warnings": [],
    }
    empty_report = harness.coordinator.validate_profile(empty.id)
    assert empty_report.valid is True
    assert empty_report.warnings == ["Profile does not select Java, Node or Maven."]
