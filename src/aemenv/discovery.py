"""Discovery of AEM quickstart JARs on disk."""
from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .models import InstanceType

_TYPE_PORT_JAR = re.compile(r"^(?:aem|cq)-?(author|publish)-?p(\d+)\.jar$")
_SDK_JAR = re.compile(r"^aem-sdk-quickstart.*\.jar$")
_CQ_JAR = re.compile(r"^cq-?quickstart.*\.jar$")

LICENSE_FILE_NAMES = (
    "license.properties",
    "License.properties",
    "LICENSE.properties",
    "license-key.txt",
    "aem-license.properties",
)

DEFAULT_PORTS = {
    InstanceType.AUTHOR: 4502,
    InstanceType.PUBLISH: 4503,
    InstanceType.DISPATCHER: 80,
}


@dataclass(slots=True)
class DiscoveredInstance:
    """An AEM installation inferred from a JAR file name."""

    name: str
    path: Path
    jar_path: Path
    instance_type: InstanceType
    port: int
    license_file: Path | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "path": str(self.path),
            "jar_path": str(self.jar_path),
            "instance_type": self.instance_type.value,
            "port": self.port,
            "license_file": str(self.license_file) if self.license_file else None,
        }


@dataclass(slots=True)
class DiscoveryReport:
    """Aggregated report describing discovery results."""

    instances: list[DiscoveredInstance] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def classify_jar(file_name: str) -> tuple[InstanceType, int] | None:
    """Infer ``(type, port)`` from a quickstart JAR name, or ``None``."""
    lowered = file_name.lower()
    match = _TYPE_PORT_JAR.match(lowered)
    if match:
        instance_type = InstanceType.PUBLISH if match.group(1) == "publish" else InstanceType.AUTHOR
        return instance_type, int(match.group(2))
    if _SDK_JAR.match(lowered) or _CQ_JAR.match(lowered):
        return InstanceType.AUTHOR, DEFAULT_PORTS[InstanceType.AUTHOR]
    return None


def discover_instances(roots: Iterable[Path], *, max_depth: int = 2) -> DiscoveryReport:
    """Scan *roots* (up to *max_depth* levels) for AEM quickstart JARs."""
    report = DiscoveryReport()
    seen: set[Path] = set()
    for root in roots:
        if not root.is_dir():
            report.warnings.append(f"Scan root {root} does not exist.")
            continue
        for jar in _iter_jars(root, max_depth):
            canonical = jar.resolve()
            if canonical in seen:
                continue
            seen.add(canonical)
            classified = classify_jar(jar.name)
            if classified is None:
                continue
            instance_type, port = classified
            report.instances.append(
                DiscoveredInstance(
                    name=jar.name[: -len(".jar")],
                    path=jar.parent,
                    jar_path=jar,
                    instance_type=instance_type,
                    port=port,
                    license_file=_license_file(jar.parent),
                )
            )
    if not report.instances:
        report.warnings.append("No AEM quickstart JARs found.")
    return report


def _iter_jars(root: Path, depth: int) -> Iterable[Path]:
    try:
        children = sorted(root.iterdir())
    except OSError:
        return
    for child in children:
        if child.is_file() and child.suffix.lower() == ".jar":
            yield child
        elif child.is_dir() and depth > 0 and not child.name.startswith("."):
            yield from _iter_jars(child, depth - 1)


def _license_file(directory: Path) -> Path | None:
    for name in LICENSE_FILE_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


__all__ = ["DiscoveredInstance", "DiscoveryReport", "classify_jar", "discover_instances"]
