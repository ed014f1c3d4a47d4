"""Configuration loader for aemenv.

Values are read from several sources, later ones winning:

1. Built-in defaults.
2. ``~/.config/aem-env-manager/config.yml`` (or an override path).
3. Environment variables prefixed with ``AEMENV_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export AEMENV_DETECTION__HTTP_TIMEOUT=1.5
    export AEMENV_ENV_DIR=/tmp/aem-env

Values are coerced via PyYAML's ``safe_load`` so that booleans, numbers and
lists are parsed naturally. The resulting configuration is exposed as
immutable ``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "AEMENV_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class DetectionConfig:
    """Timeouts and fan-out limits for instance status detection."""

    tcp_timeout: float = 0.5
    process_timeout: float = 2.0
    http_timeout: float = 3.0
    overall_timeout: float = 5.0
    max_concurrency: int | None = None
    http_path: str = "/libs/granite/core/content/login.html"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "tcp_timeout": self.tcp_timeout,
            "process_timeout": self.process_timeout,
            "http_timeout": self.http_timeout,
            "overall_timeout": self.overall_timeout,
            "max_concurrency": self.max_concurrency,
            "http_path": self.http_path,
        }


@dataclass(frozen=True)
class CredentialsConfig:
    """Secret store settings."""

    service: str = "aem-env-manager"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"service": self.service}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for aemenv."""

    config_file: Path
    env_dir: Path
    data_dir: Path
    registry_dir: Path
    logs_dir: Path
    runtime_dir: Path
    shell_config: Path | None
    maven_home: Path
    lock_timeout: float
    java_scan_paths: tuple[Path, ...]
    node_scan_paths: tuple[Path, ...]
    detection: DetectionConfig
    credentials: CredentialsConfig

    @property
    def maven_configs_dir(self) -> Path:
        """Directory holding saved Maven ``settings.xml`` variants."""
        return self.data_dir / "maven-configs"

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "env_dir": str(self.env_dir),
            "data_dir": str(self.data_dir),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "shell_config": str(self.shell_config) if self.shell_config else None,
            "maven_home": str(self.maven_home),
            "lock_timeout": self.lock_timeout,
            "java_scan_paths": [str(path) for path in self.java_scan_paths],
            "node_scan_paths": [str(path) for path in self.node_scan_paths],
            "detection": self.detection.to_dict(),
            "credentials": self.credentials.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "~/.config/aem-env-manager/config.yml",
    "env_dir": "~/.aem-env-manager",
    "data_dir": "~/.local/share/aem-env-manager",
    "registry_dir": None,  # derived from data_dir when absent
    "logs_dir": None,  # derived from data_dir when absent
    "runtime_dir": None,  # derived from data_dir when absent
    "shell_config": None,  # detected from $SHELL when absent
    "maven_home": "~/.m2",
    "lock_timeout": 30.0,
    "java_scan_paths": [
        "/usr/lib/jvm",
        "/usr/java",
        "/opt/java",
        "/Library/Java/JavaVirtualMachines",
        "~/Library/Java/JavaVirtualMachines",
    ],
    "node_scan_paths": [
        "/usr/local/lib/nodejs",
        "/opt/node",
        "~/.local/share/nodejs",
    ],
    "detection": {
        "tcp_timeout": 0.5,
        "process_timeout": 2.0,
        "http_timeout": 3.0,
        "overall_timeout": 5.0,
        "max_concurrency": None,
        "http_path": "/libs/granite/core/content/login.html",
    },
    "credentials": {
        "service": "aem-env-manager",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
DETECTION_KEYS = {
    "tcp_timeout",
    "process_timeout",
    "http_timeout",
    "overall_timeout",
    "max_concurrency",
    "http_path",
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override).expanduser()
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR]).expanduser()
    return Path(default_path).expanduser()


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    lock_timeout = raw.get("lock_timeout")
    if lock_timeout is not None:
        _expect_positive_float(lock_timeout, "lock_timeout", default=30.0)

    for key in ("java_scan_paths", "node_scan_paths"):
        value = raw.get(key)
        if value is not None:
            for index, entry in enumerate(_as_sequence(value, key)):
                if not isinstance(entry, str):
                    raise ConfigError(f"{key}[{index}] must be a string path.")

    detection = raw.get("detection")
    if detection is not None:
        detection_map = _as_dict(detection, "detection")
        unknown = set(detection_map.keys()) - DETECTION_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown detection configuration keys: {joined}.")
        http_path = detection_map.get("http_path")
        if http_path is not None and not str(http_path).startswith("/"):
            raise ConfigError("detection.http_path must start with '/'.")

    credentials = raw.get("credentials")
    if credentials is not None:
        credentials_map = _as_dict(credentials, "credentials")
        unknown = set(credentials_map.keys()) - {"service"}
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown credentials configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    env_dir = _to_path(raw.get("env_dir"))
    data_dir = _to_path(raw.get("data_dir"))
    maven_home = _to_path(raw.get("maven_home"))
    lock_timeout = _expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0)

    registry_dir_value = raw.get("registry_dir")
    registry_dir = _to_path(registry_dir_value) if registry_dir_value else data_dir / "registry"
    logs_dir_value = raw.get("logs_dir")
    logs_dir = _to_path(logs_dir_value) if logs_dir_value else data_dir / "logs"
    runtime_dir_value = raw.get("runtime_dir")
    runtime_dir = _to_path(runtime_dir_value) if runtime_dir_value else data_dir / "run"

    shell_config_value = raw.get("shell_config")
    shell_config: Path | None = None
    if isinstance(shell_config_value, (str, Path)):
        if str(shell_config_value).strip():
            shell_config = _to_path(shell_config_value)
    elif shell_config_value is not None:
        raise ConfigError("shell_config must be a string, Path, or null.")

    java_scan_paths = tuple(
        _to_path(entry)
        for entry in _as_sequence(raw.get("java_scan_paths") or [], "java_scan_paths")
    )
    node_scan_paths = tuple(
        _to_path(entry)
        for entry in _as_sequence(raw.get("node_scan_paths") or [], "node_scan_paths")
    )

    detection_mapping = _as_dict(raw.get("detection"), "detection")
    max_concurrency_value = detection_mapping.get("max_concurrency")
    max_concurrency: int | None = None
    if max_concurrency_value is not None:
        max_concurrency = _expect_int(
            max_concurrency_value, "detection.max_concurrency", default=1
        )
        if max_concurrency < 1:
            raise ConfigError("detection.max_concurrency must be at least 1.")
    detection = DetectionConfig(
        tcp_timeout=_expect_positive_float(
            detection_mapping.get("tcp_timeout"), "detection.tcp_timeout", default=0.5
        ),
        process_timeout=_expect_positive_float(
            detection_mapping.get("process_timeout"), "detection.process_timeout", default=2.0
        ),
        http_timeout=_expect_positive_float(
            detection_mapping.get("http_timeout"), "detection.http_timeout", default=3.0
        ),
        overall_timeout=_expect_positive_float(
            detection_mapping.get("overall_timeout"), "detection.overall_timeout", default=5.0
        ),
        max_concurrency=max_concurrency,
        http_path=str(
            detection_mapping.get("http_path", "/libs/granite/core/content/login.html")
        ),
    )

    credentials_mapping = _as_dict(raw.get("credentials"), "credentials")
    service = str(credentials_mapping.get("service", "aem-env-manager")).strip()
    if not service:
        raise ConfigError("credentials.service must be a non-empty string.")

    return AppConfig(
        config_file=config_file,
        env_dir=env_dir,
        data_dir=data_dir,
        registry_dir=registry_dir,
        logs_dir=logs_dir,
        runtime_dir=runtime_dir,
        shell_config=shell_config,
        maven_home=maven_home,
        lock_timeout=lock_timeout,
        java_scan_paths=java_scan_paths,
        node_scan_paths=node_scan_paths,
        detection=detection,
        credentials=CredentialsConfig(service=service),
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "CredentialsConfig",
    "DetectionConfig",
    "load_config",
]
