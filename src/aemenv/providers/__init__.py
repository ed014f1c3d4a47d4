"""Host-facing providers used by aemenv."""
from __future__ import annotations

from .instance_status import InstanceStatusDetector
from .process_inspector import ProcessInspector, ProcessOwner
from .version_probe import VersionManagerProbe

__all__ = [
    "InstanceStatusDetector",
    "ProcessInspector",
    "ProcessOwner",
    "VersionManagerProbe",
]
