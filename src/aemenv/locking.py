"""File-based locks guarding shared aemenv state.

Locks are advisory ``flock`` locks on small JSON files under the runtime
directory. Every acquisition opens its own file description, so the same lock
serialises threads within one process as well as separate processes.
"""
from __future__ import annotations

import fcntl
import json
import logging
import os
import re
import time
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from pathlib import Path

LOGGER = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05
_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


class LockTimeoutError(RuntimeError):
    """Raised when a lock cannot be acquired within the allotted time."""


@dataclass(slots=True)
class LockHandle:
    """Information about a held lock."""

    name: str
    path: Path
    wait_ms: int


class LockManager:
    """Hand out named locks rooted in *runtime_dir*."""

    def __init__(self, runtime_dir: Path, default_timeout: float = 30.0) -> None:
        """Store the lock directory and default wait."""
        self.runtime_dir = Path(runtime_dir).expanduser()
        self.default_timeout = default_timeout

    def path_for(self, name: str) -> Path:
        """Return the lock file path for *name*."""
        safe = _SAFE_NAME.sub("_", name).strip("._") or "lock"
        return self.runtime_dir / f"{safe}.lock"

    @contextmanager
    def lock(self, name: str, *, timeout: float | None = None) -> Iterator[LockHandle]:
        """Hold the named lock for the duration of the block."""
        path = self.path_for(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        wait = self.default_timeout if timeout is None else timeout
        start = time.monotonic()
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= wait:
                        raise LockTimeoutError(
                            f"Timed out after {wait:.1f}s waiting for lock {path}."
                        ) from None
                    time.sleep(_POLL_INTERVAL)
            wait_ms = int((time.monotonic() - start) * 1000)
            payload = json.dumps({"pid": os.getpid(), "path": str(path), "name": name})
            os.ftruncate(fd, 0)
            os.lseek(fd, 0, os.SEEK_SET)
            os.write(fd, payload.encode("utf-8"))
            LOGGER.debug("Acquired lock %s after %d ms", path, wait_ms)
            try:
                yield LockHandle(name=name, path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    # Named locks ----------------------------------------------------------
    def switch_lock(
        self, *, timeout: float | None = None
    ) -> AbstractContextManager[LockHandle]:
        """Serialise whole profile switches."""
        return self.lock("switch", timeout=timeout)

    def environment_lock(
        self, *, timeout: float | None = None
    ) -> AbstractContextManager[LockHandle]:
        """Serialise mutations of the managed symlink directory and shell block."""
        return self.lock("environment", timeout=timeout)

    def maven_lock(
        self, *, timeout: float | None = None
    ) -> AbstractContextManager[LockHandle]:
        """Serialise writes to the Maven ``settings.xml``."""
        return self.lock("maven", timeout=timeout)

    def registry_lock(
        self, *, timeout: float | None = None
    ) -> AbstractContextManager[LockHandle]:
        """Serialise read-modify-write cycles on the YAML registry."""
        return self.lock("registry", timeout=timeout)


__all__ = ["LockHandle", "LockManager", "LockTimeoutError"]
