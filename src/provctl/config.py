"""Configuration loader for provctl.

Values are resolved from several layers, later layers winning:

1. Built-in defaults.
2. ``/etc/provctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``PROVCTL_``.
4. Explicit overrides supplied programmatically (CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export PROVCTL_FOLDERS__BASE_PATH=/srv/shares/home
    export PROVCTL_INSTANCES__REGION=eu-west-1

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "PROVCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

ALLOWED_PRINCIPAL_TYPES = {"user", "group"}
ALLOWED_VOLUME_TYPES = {"gp2", "gp3", "io1", "io2", "st1", "sc1", "standard"}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class FoldersConfig:
    """Defaults for the folder provisioner."""

    base_path: Path = Path("/srv/shares/home")
    accounts_file: Path = Path("/etc/provctl/accounts.txt")
    principal_type: str = "user"
    getfacl_bin: str = "getfacl"
    setfacl_bin: str = "setfacl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "base_path": str(self.base_path),
            "accounts_file": str(self.accounts_file),
            "principal_type": self.principal_type,
            "getfacl_bin": self.getfacl_bin,
            "setfacl_bin": self.setfacl_bin,
        }


@dataclass(frozen=True)
class InstancesConfig:
    """Defaults for the instance provisioner."""

    region: str | None = None
    profile: str | None = None
    instance_type: str = "t3.micro"
    volume_size: int = 20
    volume_type: str = "gp3"
    device_name: str = "/dev/sdf"
    running_timeout: float = 300.0
    poll_interval: float = 2.0

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "region": self.region,
            "profile": self.profile,
            "instance_type": self.instance_type,
            "volume_size": self.volume_size,
            "volume_type": self.volume_type,
            "device_name": self.device_name,
            "running_timeout": self.running_timeout,
            "poll_interval": self.poll_interval,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for provctl."""

    config_file: Path
    logs_dir: Path
    folders: FoldersConfig
    instances: InstancesConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "folders": self.folders.to_dict(),
            "instances": self.instances.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/provctl/config.yml",
    "logs_dir": "/var/log/provctl",
    "folders": {
        "base_path": "/srv/shares/home",
        "accounts_file": "/etc/provctl/accounts.txt",
        "principal_type": "user",
        "getfacl_bin": "getfacl",
        "setfacl_bin": "setfacl",
    },
    "instances": {
        "region": None,
        "profile": None,
        "instance_type": "t3.micro",
        "volume_size": 20,
        "volume_type": "gp3",
        "device_name": "/dev/sdf",
        "running_timeout": 300.0,
        "poll_interval": 2.0,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_FOLDER_KEYS = set(cast(Mapping[str, object], DEFAULTS["folders"]).keys())
_INSTANCE_KEYS = set(cast(Mapping[str, object], DEFAULTS["instances"]).keys())


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
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


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

    folders_map = _as_dict(raw.get("folders"), "folders")
    unknown = set(folders_map.keys()) - _FOLDER_KEYS
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown folders configuration keys: {joined}.")
    principal_type = folders_map.get("principal_type")
    if principal_type is not None and str(principal_type) not in ALLOWED_PRINCIPAL_TYPES:
        allowed = ", ".join(sorted(ALLOWED_PRINCIPAL_TYPES))
        raise ConfigError(
            f"Unsupported principal type '{principal_type}'. Allowed: {allowed}."
        )

    instances_map = _as_dict(raw.get("instances"), "instances")
    unknown = set(instances_map.keys()) - _INSTANCE_KEYS
    if unknown:
        joined = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown instances configuration keys: {joined}.")
    volume_type = instances_map.get("volume_type")
    if volume_type is not None and str(volume_type) not in ALLOWED_VOLUME_TYPES:
        allowed = ", ".join(sorted(ALLOWED_VOLUME_TYPES))
        raise ConfigError(f"Unsupported volume type '{volume_type}'. Allowed: {allowed}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    logs_dir = _to_path(raw.get("logs_dir"))

    folders_mapping = _as_dict(raw.get("folders"), "folders")
    folders = FoldersConfig(
        base_path=_to_path(folders_mapping.get("base_path", "/srv/shares/home")),
        accounts_file=_to_path(
            folders_mapping.get("accounts_file", "/etc/provctl/accounts.txt")
        ),
        principal_type=str(folders_mapping.get("principal_type", "user")),
        getfacl_bin=str(folders_mapping.get("getfacl_bin", "getfacl")),
        setfacl_bin=str(folders_mapping.get("setfacl_bin", "setfacl")),
    )

    instances_mapping = _as_dict(raw.get("instances"), "instances")
    volume_size = _expect_int(
        instances_mapping.get("volume_size"), "instances.volume_size", default=20
    )
    if volume_size <= 0:
        raise ConfigError("instances.volume_size must be greater than zero.")
    instances = InstancesConfig(
        region=_optional_str(instances_mapping.get("region")),
        profile=_optional_str(instances_mapping.get("profile")),
        instance_type=str(instances_mapping.get("instance_type", "t3.micro")),
        volume_size=volume_size,
        volume_type=str(instances_mapping.get("volume_type", "gp3")),
        device_name=str(instances_mapping.get("device_name", "/dev/sdf")),
        running_timeout=_expect_positive_float(
            instances_mapping.get("running_timeout"),
            "instances.running_timeout",
            default=300.0,
        ),
        poll_interval=_expect_positive_float(
            instances_mapping.get("poll_interval"),
            "instances.poll_interval",
            default=2.0,
        ),
    )

    return AppConfig(
        config_file=config_file,
        logs_dir=logs_dir,
        folders=folders,
        instances=instances,
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
        else:
            result[key] = value
    return result


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


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


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
    "FoldersConfig",
    "InstancesConfig",
    "load_config",
]
