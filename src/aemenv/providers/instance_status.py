"""Layered liveness detection for configured AEM instances.

Each probe walks three layers and stops at the first conclusive answer:

* TCP: nothing accepting connections means ``stopped``.
* Process: the listening socket must belong to a JVM, otherwise the port is
  taken by something else (``port_conflict``). Skipped for remote hosts.
* HTTP: any answer from the login page means ``running``; an open port that
  never answers means the instance is still ``starting``.

Every layer timeout is clipped to what remains of the overall budget.
"""
from __future__ import annotations

import logging
import socket
import threading
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

import requests

from ..config import DetectionConfig
from ..errors import DetectionTimeoutError, ProcessDetectionError
from ..instances import InstanceStore
from ..models import AemInstance, InstanceStatus, InstanceStatusResult, utc_now
from .process_inspector import ProcessInspector, ProcessOwner

LOGGER = logging.getLogger(__name__)

MAX_WORKERS = 32
CANCELLED_MESSAGE = "Detection cancelled"
_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0", "::"}


class _Cancelled(Exception):
    """Internal signal raised at a layer boundary once cancellation is requested."""


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def is_local_host(host: str) -> bool:
    """Return ``True`` when *host* refers to this machine."""
    lowered = host.strip().lower().strip("[]")
    if lowered in _LOCAL_HOSTS or lowered.startswith("127."):
        return True
    try:
        return lowered in {socket.gethostname().lower(), socket.getfqdn().lower()}
    except OSError:
        return False


@dataclass(slots=True)
class _Deadline:
    """Remaining share of the overall detection budget."""

    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> _Deadline:
        return cls(time.monotonic() + seconds)

    def remaining(self) -> float:
        return self.expires_at - time.monotonic()

    def clip(self, timeout: float, layer: str) -> float:
        """Return *timeout* clipped to the budget or raise when it is spent."""
        remaining = self.remaining()
        if remaining <= 0:
            raise DetectionTimeoutError(
                f"Detection timed out before the {layer} check could run."
            )
        return min(timeout, remaining)


class InstanceStatusDetector:
    """Classify instance liveness, one instance or all of them concurrently."""

    def __init__(
        self,
        instances: InstanceStore,
        *,
        options: DetectionConfig | None = None,
        inspector: ProcessInspector | None = None,
        session: requests.Session | None = None,
    ) -> None:
        """Bind the detector to the instance registry and its probe settings."""
        self.instances = instances
        self.options = options or DetectionConfig()
        self.inspector = inspector or ProcessInspector(timeout=self.options.process_timeout)
        self.session = session or direct_session()

    # Public API -----------------------------------------------------------
    def detect_one(
        self, instance_id: str, cancel: threading.Event | None = None
    ) -> InstanceStatusResult:
        """Detect the status of *instance_id* (raises ``InstanceNotFoundError``)."""
        return self.detect_instance(self.instances.get(instance_id), cancel)

    def detect_all(
        self,
        cancel: threading.Event | None = None,
        *,
        instances: Sequence[AemInstance] | None = None,
    ) -> list[InstanceStatusResult]:
        """Probe every configured instance concurrently, preserving order."""
        targets = list(self.instances.list_instances() if instances is None else instances)
        if not targets:
            return []
        workers = self.options.max_concurrency or min(len(targets), MAX_WORKERS)
        workers = max(1, min(workers, len(targets)))
        results: list[InstanceStatusResult | None] = [None] * len(targets)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_index = {
                executor.submit(self.detect_instance, instance, cancel): index
                for index, instance in enumerate(targets)
            }
            for future in as_completed(future_to_index):
                index = future_to_index[future]
                instance = targets[index]
                try:
                    results[index] = future.result()
                except Exception as exc:  # noqa: BLE001
                    LOGGER.debug("Status probe for %s crashed: %s", instance.id, exc)
                    results[index] = _result(
                        instance, InstanceStatus.ERROR, time.perf_counter(), error=str(exc)
                    )
        return [result for result in results if result is not None]

    def detect_instance(
        self, instance: AemInstance, cancel: threading.Event | None = None
    ) -> InstanceStatusResult:
        """Run the layered probe against *instance*; never raises."""
        start = time.perf_counter()
        deadline = _Deadline.after(self.options.overall_timeout)
        try:
            return self._probe(instance, deadline, cancel, start)
        except _Cancelled:
            return _result(instance, InstanceStatus.UNKNOWN, start, error=CANCELLED_MESSAGE)
        except DetectionTimeoutError as exc:
            return _result(instance, InstanceStatus.ERROR, start, error=str(exc))
        except ProcessDetectionError as exc:
            return _result(
                instance, InstanceStatus.ERROR, start, error=f"Process lookup failed: {exc}"
            )
        except OSError as exc:
            return _result(
                instance,
                InstanceStatus.ERROR,
                start,
                error=f"Cannot connect to {instance.address}:{instance.port}: {exc}",
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.debug("Unexpected failure probing %s", instance.id, exc_info=True)
            return _result(instance, InstanceStatus.ERROR, start, error=str(exc) or repr(exc))

    # Layers ---------------------------------------------------------------
    def _probe(
        self,
        instance: AemInstance,
        deadline: _Deadline,
        cancel: threading.Event | None,
        start: float,
    ) -> InstanceStatusResult:
        _check_cancel(cancel)
        if not self.port_open(
            instance.address, instance.port, deadline.clip(self.options.tcp_timeout, "TCP")
        ):
            return _result(instance, InstanceStatus.STOPPED, start)

        owner: ProcessOwner | None = None
        if is_local_host(instance.address):
            _check_cancel(cancel)
            owner = self.inspector.owner_of(
                instance.port,
                timeout=deadline.clip(self.options.process_timeout, "process"),
            )
            if deadline.remaining() <= 0:
                raise DetectionTimeoutError("Detection timed out during the process check.")
            if owner is None or not owner.is_java:
                return _result(
                    instance,
                    InstanceStatus.PORT_CONFLICT,
                    start,
                    owner=owner,
                    error=_conflict_message(instance.port, owner),
                )

        _check_cancel(cancel)
        responding = self.http_responds(
            instance, deadline.clip(self.options.http_timeout, "HTTP")
        )
        _check_cancel(cancel)
        if not responding and deadline.remaining() <= 0:
            raise DetectionTimeoutError("Detection timed out during the HTTP check.")
        status = InstanceStatus.RUNNING if responding else InstanceStatus.STARTING
        return _result(instance, status, start, owner=owner)

    @staticmethod
    def port_open(host: str, port: int, timeout: float) -> bool:
        """Return ``True`` when any resolved address of *host* accepts on *port*.

        Refused and timed-out connections mean nothing is listening. Any other
        failure, name resolution included, is raised once every address failed.
        """
        addresses = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        closed = False
        failure: OSError | None = None
        for family, kind, proto, _canon, sockaddr in addresses:
            try:
                with socket.socket(family, kind, proto) as sock:
                    sock.settimeout(timeout)
                    sock.connect(sockaddr)
                    return True
            except (ConnectionRefusedError, TimeoutError):
                closed = True
            except OSError as exc:
                failure = exc
        if closed or failure is None:
            return False
        raise failure

    def http_responds(self, instance: AemInstance, timeout: float) -> bool:
        """Return ``True`` when the instance answers HTTP at all, any status code."""
        path = self.options.http_path
        if not path.startswith("/"):
            path = f"/{path}"
        url = f"{instance.base_url}{path}"
        try:
            with self.session.get(url, timeout=timeout, allow_redirects=False, stream=True):
                return True
        except requests.RequestException as exc:
            LOGGER.debug("No HTTP answer from %s: %s", url, exc)
            return False


def direct_session() -> requests.Session:
    """Return a session that ignores proxy settings from the environment."""
    session = requests.Session()
    session.trust_env = False
    return session


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise _Cancelled


def _conflict_message(port: int, owner: ProcessOwner | None) -> str:
    if owner is None or (owner.pid is None and owner.name is None):
        return f"Port {port} is in use by an unidentified process."
    label = owner.name or "unknown process"
    if owner.pid is not None:
        label = f"{label} (pid {owner.pid})"
    return f"Port {port} is in use by {label}, not a Java process."


def _result(
    instance: AemInstance,
    status: InstanceStatus,
    start: float,
    *,
    owner: ProcessOwner | None = None,
    error: str | None = None,
) -> InstanceStatusResult:
    return InstanceStatusResult(
        instance_id=instance.id,
        status=status,
        checked_at=utc_now(),
        duration_ms=_duration_ms(start),
        process_id=owner.pid if owner else None,
        process_name=owner.name if owner else None,
        error=error,
    )


__all__ = ["CANCELLED_MESSAGE", "InstanceStatusDetector", "direct_session", "is_local_host"]
