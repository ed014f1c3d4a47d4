"""Exit codes returned by the aemenv CLI."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes shared by every command."""

    OK = 0
    VALIDATION = 2
    ENVIRONMENT = 3
    PROVIDER = 4
    PARTIAL = 5


__all__ = ["ExitCode"]
