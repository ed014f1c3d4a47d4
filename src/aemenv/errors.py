"""Exception hierarchy shared by the environment and detection engines."""
from __future__ import annotations


class AemEnvError(RuntimeError):
    """Base class for aemenv domain failures."""


class NotFoundError(AemEnvError, LookupError):
    """Raised when a referenced entity (manager, profile, instance) is unknown."""


class ProfileNotFoundError(NotFoundError):
    """Raised when a profile id does not exist in the registry."""


class InstanceNotFoundError(NotFoundError):
    """Raised when an instance id does not exist in the registry."""


class MavenConfigNotFoundError(NotFoundError):
    """Raised when a saved Maven configuration cannot be located."""


class VersionNotFoundError(AemEnvError):
    """Raised when a version/manager combination cannot be resolved to a path."""


class PathNotFoundError(AemEnvError):
    """Raised when a symlink target does not exist or is not a directory."""


class SymlinkError(AemEnvError):
    """Raised when the operating system refuses a symlink operation."""


class ConfigWriteError(AemEnvError):
    """Raised when the shell configuration file cannot be written."""


class ProcessDetectionError(AemEnvError):
    """Raised when the platform process lookup fails outright."""


class DetectionTimeoutError(AemEnvError, TimeoutError):
    """Raised when a probe layer exhausts its time budget."""


class CredentialError(AemEnvError):
    """Raised when the OS secret store rejects an operation."""


class InstanceLifecycleError(AemEnvError):
    """Raised when an instance cannot be started or stopped."""


__all__ = [
    "AemEnvError",
    "ConfigWriteError",
    "CredentialError",
    "DetectionTimeoutError",
    "InstanceLifecycleError",
    "InstanceNotFoundError",
    "MavenConfigNotFoundError",
    "NotFoundError",
    "PathNotFoundError",
    "ProcessDetectionError",
    "ProfileNotFoundError",
    "SymlinkError",
    "VersionNotFoundError",
]
