"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
import socket
from collections.abc import Callable
from pathlib import Path

import pytest

from aemenv.locking import LockManager


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "mutation_timeout: slow test skipped in mutation runs")


def _write_jdk(
    root: Path, name: str, version: str | None = None, vendor: str | None = None
) -> Path:
    home = root / name
    (home / "bin").mkdir(parents=True, exist_ok=True)
    (home / "bin" / "java").write_text("#!/bin/sh\n", encoding="utf-8")
    if version is not None:
        lines = [f'JAVA_VERSION="{version}"']
        if vendor:
            lines.append(f'IMPLEMENTOR="{vendor}"')
        (home / "release").write_text("\n".join(lines) + "\n", encoding="utf-8")
    return home


def _write_node(root: Path, name: str, *, flat: bool = False) -> Path:
    home = root / name
    if flat:
        home.mkdir(parents=True, exist_ok=True)
        (home / "node.exe").write_text("", encoding="utf-8")
    else:
        (home / "bin").mkdir(parents=True, exist_ok=True)
        (home / "bin" / "node").write_text("#!/bin/sh\n", encoding="utf-8")
    return home


@pytest.fixture
def make_jdk() -> Callable[..., Path]:
    """Factory creating a fake JDK directory with ``bin/java`` and a ``release`` file."""
    return _write_jdk


@pytest.fixture
def make_node() -> Callable[..., Path]:
    """Factory creating a fake Node installation with a ``node`` binary."""
    return _write_node


@pytest.fixture
def locks(tmp_path: Path) -> LockManager:
    """Lock manager rooted in a temporary runtime directory."""
    return LockManager(tmp_path / "run", default_timeout=2.0)


@pytest.fixture
def closed_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])
