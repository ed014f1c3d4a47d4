"""Identify the process that owns a listening TCP port."""
from __future__ import annotations

import logging
import re
import subprocess
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from time import monotonic

import psutil

from ..errors import ProcessDetectionError

LOGGER = logging.getLogger(__name__)

_JAVA_MARKERS = ("java", "jdk", "jre")
_SS_USERS = re.compile(r'users:\(\("(?P<name>[^"]+)",pid=(?P<pid>\d+)')


def is_java_process(name: str | None) -> bool:
    """Return ``True`` when a process name looks like a JVM."""
    if not name:
        return False
    lowered = name.lower()
    return any(marker in lowered for marker in _JAVA_MARKERS)


@dataclass(slots=True, frozen=True)
class ProcessOwner:
    """The process listening on a port; either field may be unknown."""

    pid: int | None
    name: str | None

    @property
    def is_java(self) -> bool:
        """Return ``True`` when the owner is a Java process."""
        return is_java_process(self.name)


class ProcessInspector:
    """Look up listening-socket owners via psutil with command-line fallbacks.

    ``psutil.net_connections`` is tried first. On macOS it needs elevated
    privileges for other users' sockets, and on Linux it reports no PID for
    them, so ``lsof`` (and ``ss`` on Linux, ``netstat`` on Windows) are used as
    fallbacks.
    """

    def __init__(self, *, timeout: float = 2.0, platform: str | None = None) -> None:
        """Configure the per-command timeout and target platform."""
        self.timeout = timeout
        self.platform = platform or sys.platform

    def owner_of(self, port: int, *, timeout: float | None = None) -> ProcessOwner | None:
        """Return the owner of the LISTEN socket on *port*, or ``None`` if unknown."""
        budget = self.timeout if timeout is None else min(timeout, self.timeout)
        started = monotonic()
        owner = self._from_psutil(port)
        if owner is not None and owner.pid is not None:
            return owner
        for lookup in self._fallbacks():
            remaining = budget - (monotonic() - started)
            if remaining <= 0:
                raise ProcessDetectionError(
                    f"Port owner lookup exceeded {budget:.1f}s before {lookup.__name__[6:]} ran."
                )
            found = lookup(port, remaining)
            if found is not None:
                return found
        return owner

    def _fallbacks(self) -> list:
        if self.platform.startswith("win"):
            return [self._from_netstat]
        lookups = [self._from_lsof]
        if self.platform.startswith("linux"):
            lookups.append(self._from_ss)
        return lookups

    # psutil ------------------------------------------------------------------
    def _from_psutil(self, port: int) -> ProcessOwner | None:
        try:
            connections = psutil.net_connections(kind="inet")
        except (psutil.AccessDenied, PermissionError) as exc:
            LOGGER.debug("psutil.net_connections denied: %s", exc)
            return None
        for conn in connections:
            if conn.status != psutil.CONN_LISTEN or not conn.laddr:
                continue
            if conn.laddr.port != port:
                continue
            if conn.pid is None:
                return ProcessOwner(pid=None, name=None)
            return ProcessOwner(pid=conn.pid, name=self._process_name(conn.pid))
        return None

    def _process_name(self, pid: int) -> str | None:
        try:
            return psutil.Process(pid).name()
        except psutil.NoSuchProcess:
            return None
        except psutil.AccessDenied:
            if self.platform.startswith("win"):
                return None
            result = self._run(["ps", "-p", str(pid), "-o", "comm="], self.timeout)
            if result is None or result.returncode != 0:
                return None
            name = result.stdout.strip()
            return name.rsplit("/", 1)[-1] if name else None

    # command fallbacks -------------------------------------------------------
    def _from_lsof(self, port: int, timeout: float) -> ProcessOwner | None:
        result = self._run(
            ["lsof", "-nP", f"-iTCP:{port}", "-sTCP:LISTEN", "-t"],
            timeout,
        )
        if result is None or result.returncode != 0:
            return None
        for line in result.stdout.splitlines():
            line = line.strip()
            if line.isdigit():
                pid = int(line)
                return ProcessOwner(pid=pid, name=self._process_name(pid))
        return None

    def _from_ss(self, port: int, timeout: float) -> ProcessOwner | None:
        result = self._run(["ss", "-ltnpH", f"sport = :{port}"], timeout)
        if result is None or result.returncode != 0:
            return None
        for line in result.stdout.splitlines():
            match = _SS_USERS.search(line)
            if match:
                return ProcessOwner(pid=int(match.group("pid")), name=match.group("name"))
        return None

    def _from_netstat(self, port: int, timeout: float) -> ProcessOwner | None:
        result = self._run(["netstat", "-ano", "-p", "TCP"], timeout)
        if result is None or result.returncode != 0:
            return None
        suffix = f":{port}"
        for line in result.stdout.splitlines():
            parts = line.split()
            if len(parts) < 5 or parts[0].upper() != "TCP":
                continue
            if parts[1].endswith(suffix) and parts[3].upper() == "LISTENING" and parts[4].isdigit():
                pid = int(parts[4])
                return ProcessOwner(pid=pid, name=self._process_name(pid))
        return None

    def _run(
        self,
        args: Sequence[str],
        timeout: float,
    ) -> subprocess.CompletedProcess[str] | None:
        try:
            return subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
            )
        except FileNotFoundError:
            LOGGER.debug("%s not available for process lookup", args[0])
            return None
        except subprocess.TimeoutExpired as exc:
            raise ProcessDetectionError(
                f"{args[0]} did not answer within {timeout:.1f}s while looking up the port owner."
            ) from exc
        except OSError as exc:
            raise ProcessDetectionError(f"{args[0]} failed: {exc}") from exc


__all__ = ["ProcessInspector", "ProcessOwner", "is_java_process"]
