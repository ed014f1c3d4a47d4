"""Tests for starting and stopping instances."""
from __future__ import annotations

import base64
import os
import socket
import subprocess
import sys
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

from aemenv.credentials import CredentialVault
from aemenv.environment import SymlinkEnvironment
from aemenv.errors import InstanceLifecycleError, PathNotFoundError
from aemenv.instances import InstanceStore
from aemenv.lifecycle import InstanceLifecycle, java_arguments
from aemenv.locking import LockManager
from aemenv.models import AemInstance, InstanceStatus, InstanceType
from aemenv.profiles import ProfileStore
from aemenv.providers.process_inspector import ProcessOwner
from aemenv.providers.version_managers import ProbeEnvironment
from aemenv.providers.version_probe import VersionManagerProbe
from aemenv.state import StateRegistry
from tests.test_credentials import MemoryKeyring

MODULE = "aemenv.lifecycle"


class _StaticInspector:
    def __init__(self) -> None:
        self.owner: ProcessOwner | None = None
        self.calls: list[int] = []

    def owner_of(self, port: int, *, timeout: float | None = None) -> ProcessOwner | None:
        self.calls.append(port)
        return self.owner


@dataclass
class Setup:
    """Lifecycle wired to temporary stores, one JDK and an in-memory keyring."""

    lifecycle: InstanceLifecycle
    profiles: ProfileStore
    instances: InstanceStore
    inspector: _StaticInspector
    vault: CredentialVault
    jdk: Path


@pytest.fixture
def setup(tmp_path: Path, locks: LockManager, make_jdk: Callable[..., Path]) -> Setup:
    """Build a lifecycle manager over temporary state."""
    home = tmp_path / "home"
    home.mkdir()
    jdk = make_jdk(tmp_path / "jvm", "temurin-17", "17.0.9")
    env_dir = home / ".aem-env-manager"
    registry = StateRegistry(tmp_path / "state")
    profiles = ProfileStore(registry, locks)
    instances = InstanceStore(registry, locks)
    environment = SymlinkEnvironment(
        env_dir,
        locks=locks,
        shell_config=home / ".zshrc",
        user_home=home,
        environ={"PATH": "/usr/bin"},
    )
    probe = VersionManagerProbe(
        ProbeEnvironment(
            user_home=home,
            java_scan_paths=(tmp_path / "jvm",),
            node_scan_paths=(),
            which=lambda _name: None,
        ),
        env_dir=env_dir,
    )
    inspector = _StaticInspector()
    vault = CredentialVault("aem-test", backend=MemoryKeyring())
    lifecycle = InstanceLifecycle(
        environment,
        profiles,
        probe,
        tmp_path / "logs",
        inspector=inspector,  # type: ignore[arg-type]
        vault=vault,
        stop_timeout=2.0,
    )
    return Setup(lifecycle, profiles, instances, inspector, vault, jdk)


@pytest.fixture
def launches(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, object]]:
    """Record process launches instead of starting a JVM."""
    recorded: list[dict[str, object]] = []

    class FakePopen:
        def __init__(self, args: list[str], **kwargs: object) -> None:
            self.pid = 4321
            recorded.append({"args": list(args), **kwargs})

    monkeypatch.setattr(f"{MODULE}.subprocess.Popen", FakePopen)
    return recorded


def _quickstart(tmp_path: Path) -> Path:
    directory = tmp_path / "aem" / "author"
    directory.mkdir(parents=True)
    (directory / "license.properties").write_text("", encoding="utf-8")
    jar = directory / "aem-author-p4502.jar"
    jar.write_bytes(b"PK\x03\x04")
    return jar


class _ConsoleHandler(BaseHTTPRequestHandler):
    status = 200
    received: list[tuple[str, str | None]] = []

    def do_POST(self) -> None:  # noqa: N802
        self.received.append((self.path, self.headers.get("Authorization")))
        self.send_response(self.status)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        return


@contextmanager
def shutdown_console(status: int) -> Iterator[tuple[int, list[tuple[str, str | None]]]]:
    received: list[tuple[str, str | None]] = []
    handler = type("Handler", (_ConsoleHandler,), {"status": status, "received": received})
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield int(server.server_address[1]), received
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=2.0)


@contextmanager
def _sleeper() -> Iterator[subprocess.Popen[bytes]]:
    child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    try:
        yield child
    finally:
        if child.poll() is None:
            child.kill()
        child.wait(timeout=5)


@pytest.mark.parametrize(
    ("java_opts", "run_modes", "expected"),
    [
        (None, [], ["-Xmx1024m", "-Dsling.run.modes=publish,local", "-Dhttp.port=4503"]),
        (
            "java -Xmx4g -Dfoo='a b'",
            ["publish", "prod"],
            ["-Xmx4g", "-Dfoo=a b", "-Dsling.run.modes=publish,prod", "-Dhttp.port=4503"],
        ),
        (
            "/usr/bin/java -Xmx2g",
            [],
            ["-Xmx2g", "-Dsling.run.modes=publish,local", "-Dhttp.port=4503"],
        ),
    ],
)
def test_java_arguments(java_opts: str | None, run_modes: list[str], expected: list[str]) -> None:
    """JVM options drop a stray java binary and always carry run modes and port."""
    instance = AemInstance(
        id="p",
        name="publish",
        instance_type=InstanceType.PUBLISH,
        port=4503,
        java_opts=java_opts,
        run_modes=run_modes,
    )

    assert java_arguments(instance) == expected


def test_start_runs_under_instance_profile(
    setup: Setup, tmp_path: Path, closed_port: int, launches: list[dict[str, object]]
) -> None:
    """The quickstart JAR is launched with the profile's JDK and variables."""
    jar = _quickstart(tmp_path)
    profile = setup.profiles.create(
        "Client A", java_path=str(setup.jdk), env_vars={"AEM_ENV": "dev"}
    )
    instance = setup.instances.create(
        "Author",
        "author",
        host="127.0.0.1",
        port=closed_port,
        path=str(jar.parent),
        java_opts="-Xmx2g",
        profile_id=profile.id,
    )

    result = setup.lifecycle.start(instance)

    [launch] = launches
    assert launch["args"] == [
        str(setup.jdk / "bin" / "java"),
        "-Xmx2g",
        "-Dsling.run.modes=author,local",
        f"-Dhttp.port={closed_port}",
        "-jar",
        str(jar),
    ]
    assert launch["cwd"] == jar.parent
    assert launch["start_new_session"] is True
    env = launch["env"]
    assert isinstance(env, dict)
    assert env["JAVA_HOME"] == str(setup.jdk)
    assert env["PATH"] == f"{setup.jdk / 'bin'}{os.pathsep}/usr/bin"
    assert env["AEM_ENV"] == "dev"
    assert result.pid == 4321
    assert result.profile_id == profile.id
    assert Path(result.log_path).is_file()


def test_start_uses_active_profile_version(
    setup: Setup, tmp_path: Path, closed_port: int, launches: list[dict[str, object]]
) -> None:
    """Without a bound profile the active one is used and its version resolved."""
    jar = _quickstart(tmp_path)
    profile = setup.profiles.create("Active", java_version="17")
    setup.profiles.mark_active(profile.id)
    instance = setup.instances.create(
        "Author", "author", host="127.0.0.1", port=closed_port, path=str(jar)
    )

    result = setup.lifecycle.start(instance)

    assert result.java_home is not None
    assert Path(result.java_home) == setup.jdk
    assert launches[0]["args"][1] == "-Xmx1024m"  # type: ignore[index]


def test_start_without_profile_uses_java_on_path(
    setup: Setup, tmp_path: Path, closed_port: int, launches: list[dict[str, object]]
) -> None:
    """With no profile at all the ``java`` on PATH is used."""
    jar = _quickstart(tmp_path)
    instance = setup.instances.create(
        "Author", "author", host="127.0.0.1", port=closed_port, path=str(jar)
    )

    result = setup.lifecycle.start(instance)

    assert result.java_home is None
    assert result.command[0] == "java"


@pytest.mark.parametrize(
    ("relative", "error"),
    [("", ValueError), ("empty-dir", PathNotFoundError), ("missing.jar", PathNotFoundError)],
)
def test_start_rejects_missing_jar(
    setup: Setup,
    tmp_path: Path,
    launches: list[dict[str, object]],
    relative: str,
    error: type[Exception],
) -> None:
    """Instances without a launchable JAR are rejected before anything starts."""
    (tmp_path / "empty-dir").mkdir()
    path = str(tmp_path / relative) if relative else ""
    instance = setup.instances.create("Author", "author", path=path)

    with pytest.raises(error):
        setup.lifecycle.start(instance)
    assert launches == []


def test_start_refuses_busy_port(
    setup: Setup, tmp_path: Path, launches: list[dict[str, object]]
) -> None:
    """A port that already accepts connections is not started on twice."""
    jar = _quickstart(tmp_path)
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen(1)
        port = int(sock.getsockname()[1])
        instance = setup.instances.create(
            "Author", "author", host="127.0.0.1", port=port, path=str(jar)
        )

        with pytest.raises(InstanceLifecycleError, match="already in use"):
            setup.lifecycle.start(instance)
    assert launches == []


def test_stop_through_console(setup: Setup) -> None:
    """An accepted console shutdown leaves the instance stopping."""
    with shutdown_console(200) as (port, received):
        instance = setup.instances.create("Author", "author", host="127.0.0.1", port=port)
        setup.vault.store(instance.id, "deployer", "s3cret")

        result = setup.lifecycle.stop(instance)

    assert result.status is InstanceStatus.STOPPING
    assert result.method == "http"
    token = base64.b64encode(b"deployer:s3cret").decode("ascii")
    assert received == [("/system/console/vmstat?shutdown_type=Stop", f"Basic {token}")]
    assert setup.inspector.calls == []
    assert result.to_dict()["status"] == "stopping"


def test_stop_terminates_java_owner(setup: Setup, closed_port: int) -> None:
    """An unreachable console falls back to terminating the JVM on the port."""
    instance = setup.instances.create("Author", "author", host="127.0.0.1", port=closed_port)
    with _sleeper() as child:
        setup.inspector.owner = ProcessOwner(pid=child.pid, name="java")

        result = setup.lifecycle.stop(instance)

        assert child.wait(timeout=5) is not None
    assert result.status is InstanceStatus.STOPPED
    assert result.method == "signal"
    assert result.process_id == child.pid


def test_stop_refuses_foreign_process(setup: Setup, closed_port: int) -> None:
    """A port held by something other than a JVM is left alone."""
    instance = setup.instances.create("Author", "author", host="127.0.0.1", port=closed_port)
    with _sleeper() as child:
        setup.inspector.owner = ProcessOwner(pid=child.pid, name="nginx")

        with pytest.raises(InstanceLifecycleError, match="not a Java process"):
            setup.lifecycle.stop(instance)
        assert child.poll() is None


def test_stop_rejected_console_without_process(setup: Setup) -> None:
    """A refused shutdown with nothing to terminate is an error."""
    with shutdown_console(401) as (port, received):
        instance = setup.instances.create("Author", "author", host="127.0.0.1", port=port)

        with pytest.raises(InstanceLifecycleError, match="no process found"):
            setup.lifecycle.stop(instance)

    assert len(received) == 1
    assert setup.inspector.calls == [port]
