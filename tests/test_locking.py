"""Tests for the locking primitives."""
from __future__ import annotations

import json
import os
import threading
import time
from pathlib import Path

import pytest

from aemenv.locking import LockManager, LockTimeoutError


def test_lock_creates_metadata(tmp_path: Path) -> None:
    """Acquiring a lock writes metadata and releases cleanly."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    lock_path = tmp_path / "run" / "environment.lock"
    with manager.environment_lock() as handle:
        assert handle.wait_ms >= 0
        assert handle.path == lock_path
        data = json.loads(lock_path.read_text(encoding="utf-8"))
        assert data["pid"] == os.getpid()
        assert data["path"] == str(lock_path)

    # Lockfile persists for diagnostics but no longer holds the lock.
    with manager.environment_lock(timeout=0.2):
        pass


def test_lock_timeout(tmp_path: Path) -> None:
    """Second acquisition times out while the first lock is held."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.switch_lock():
        with pytest.raises(LockTimeoutError):
            with manager.switch_lock(timeout=0.1):
                pass


def test_named_locks_are_independent(tmp_path: Path) -> None:
    """Holding one named lock does not block another."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.switch_lock(), manager.maven_lock(timeout=0.1), manager.registry_lock(
        timeout=0.1
    ):
        assert (tmp_path / "run" / "switch.lock").exists()
        assert (tmp_path / "run" / "maven.lock").exists()
        assert (tmp_path / "run" / "registry.lock").exists()


def test_lock_serialises_threads(tmp_path: Path) -> None:
    """A waiting thread acquires the lock once the holder releases it."""
    manager = LockManager(tmp_path / "run", default_timeout=2.0)
    acquired = threading.Event()
    waits: list[int] = []

    def contender() -> None:
        with manager.environment_lock() as handle:
            waits.append(handle.wait_ms)
            acquired.set()

    with manager.environment_lock():
        thread = threading.Thread(target=contender)
        thread.start()
        time.sleep(0.2)
        assert not acquired.is_set()

    thread.join(timeout=2.0)
    assert acquired.is_set()
    assert waits and waits[0] >= 100


def test_path_for_sanitises_names(tmp_path: Path) -> None:
    """Unsafe characters in lock names are replaced."""
    manager = LockManager(tmp_path / "run")

    assert manager.path_for("profile/../x y") == tmp_path / "run" / "profile_.._x_y.lock"
