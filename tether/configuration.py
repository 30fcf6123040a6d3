"""Data-directory-aware configuration loading for Tether."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional, Tuple

import yaml

REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = REPO_ROOT / "config"
DATA_DIR_ENV = "TETHER_DATA_DIR"

DiagnosticLevel = Literal["info", "warning", "error"]
ConfigurationStatus = Literal["ready", "missing", "invalid"]


SchemaSpec = Dict[str, Any]


CONFIG_SCHEMA: SchemaSpec = {
    "runtime": {
        "type": dict,
        "schema": {
            "name": {"type": str, "default": "Tether"},
        },
        "default": {},
    },
    "logging": {
        "type": dict,
        "schema": {
            "level": {"type": str, "default": "INFO"},
            "structured": {"type": bool, "default": True},
        },
        "default": {},
    },
    "store": {
        "type": dict,
        "schema": {
            "backend": {"type": str, "default": "sqlite", "choices": ("memory", "sqlite")},
            "path": {"type": str, "default": "state/tether.db"},
        },
        "default": {},
    },
    "sync": {
        "type": dict,
        "schema": {
            "queue_capacity": {"type": int, "default": 1000, "minimum": 1},
            "batch_size": {"type": int, "default": 50, "minimum": 1},
            "max_retries": {"type": int, "default": 3, "minimum": 1},
            "max_batch_enqueue": {"type": int, "default": 50, "minimum": 1},
            "max_collection_length": {"type": int, "default": 100, "minimum": 1},
            "max_device_id_length": {"type": int, "default": 200, "minimum": 1},
            "claim_timeout": {"type": int, "default": 300, "minimum": 1},
        },
        "default": {},
    },
    "api": {
        "type": dict,
        "schema": {
            "host": {"type": str, "default": "127.0.0.1"},
            "port": {"type": int, "default": 8000, "minimum": 1},
            "cors_origins": {"type": list, "item_type": str, "default_factory": list},
        },
        "default": {},
    },
}


@dataclass
class Diagnostic:
    """Represents a configuration validation or loading issue."""

    level: DiagnosticLevel
    message: str
    source: Optional[Path] = None


@dataclass
class ConfigurationBundle:
    """All configuration data Tether needs at runtime."""

    data_dir: Path
    status: ConfigurationStatus
    merged: Dict[str, Any] = field(default_factory=dict)
    repo_defaults: Dict[str, Any] = field(default_factory=dict)
    data_overrides: Dict[str, Any] = field(default_factory=dict)
    files_loaded: List[Path] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    log_path: Optional[Path] = None

    def section(self, name: str) -> Dict[str, Any]:
        """Return one merged section, or an empty mapping."""
        value = (self.merged or {}).get(name)
        return value if isinstance(value, dict) else {}


def resolve_data_dir(
    env: Optional[Mapping[str, str]] = None,
    default: str = "./data",
) -> Path:
    """Resolve the data directory from the environment."""

    env_source = env if env is not None else os.environ
    raw = env_source.get(DATA_DIR_ENV, default)
    return Path(raw).expanduser()


def load_runtime_configuration(data_dir: Optional[Path] = None) -> ConfigurationBundle:
    """Load configuration defaults and data-directory overrides."""

    resolved_dir = data_dir or resolve_data_dir()
    diagnostics: List[Diagnostic] = []
    files_loaded: List[Path] = []

    repo_defaults, repo_files = _load_directory_configs(
        DEFAULT_CONFIG_DIR,
        diagnostics,
        label="repo defaults",
    )
    files_loaded.extend(repo_files)

    status: ConfigurationStatus = "ready"
    data_overrides: Dict[str, Any] = {}

    if not resolved_dir.exists():
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Data directory '{resolved_dir}' does not exist.",
            )
        )
        status = "missing"
    elif not resolved_dir.is_dir():
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Data path '{resolved_dir}' is not a directory.",
            )
        )
        status = "invalid"
    else:
        data_overrides, override_files = _load_directory_configs(
            resolved_dir / "config",
            diagnostics,
            label="data overrides",
        )
        files_loaded.extend(override_files)

    merged = deepcopy(repo_defaults)
    _deep_merge_dicts(merged, data_overrides)

    _validate_schema(merged, diagnostics)

    if status == "ready" and any(diag.level == "error" for diag in diagnostics):
        status = "invalid"

    return ConfigurationBundle(
        data_dir=resolved_dir,
        status=status,
        merged=merged,
        repo_defaults=repo_defaults,
        data_overrides=data_overrides,
        files_loaded=files_loaded,
        diagnostics=diagnostics,
    )


def _load_directory_configs(
    directory: Path,
    diagnostics: List[Diagnostic],
    label: str,
) -> Tuple[Dict[str, Any], List[Path]]:
    """Load all YAML files from a directory, merging them in order."""

    data: Dict[str, Any] = {}
    loaded_files: List[Path] = []

    if not directory.exists():
        diagnostics.append(
            Diagnostic(
                level="warning",
                message=f"No configuration directory found at '{directory}' ({label}).",
                source=directory,
            )
        )
        return data, loaded_files

    if not directory.is_dir():
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Configuration path '{directory}' ({label}) is not a directory.",
                source=directory,
            )
        )
        return data, loaded_files

    yaml_files = sorted(directory.glob("*.yml")) + sorted(directory.glob("*.yaml"))

    for yaml_file in yaml_files:
        try:
            content = yaml.safe_load(yaml_file.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"Failed to parse '{yaml_file}': {exc}",
                    source=yaml_file,
                )
            )
            continue

        if content is None:
            loaded_files.append(yaml_file)
            continue

        if not isinstance(content, MutableMapping):
            diagnostics.append(
                Diagnostic(
                    level="warning",
                    message=f"Ignoring '{yaml_file}' because it does not contain a mapping.",
                    source=yaml_file,
                )
            )
            continue

        _deep_merge_dicts(data, dict(content))
        loaded_files.append(yaml_file)

    return data, loaded_files


def _deep_merge_dicts(dest: MutableMapping[str, Any], source: Mapping[str, Any]) -> None:
    """Recursively merge mapping values."""

    for key, value in source.items():
        if (
            key in dest
            and isinstance(dest[key], MutableMapping)
            and isinstance(value, Mapping)
        ):
            _deep_merge_dicts(dest[key], value)
        else:
            dest[key] = deepcopy(value)


def _default_from_spec(spec: SchemaSpec) -> Any:
    if "default_factory" in spec and callable(spec["default_factory"]):
        return spec["default_factory"]()
    return deepcopy(spec.get("default"))


def _validate_schema(config: Dict[str, Any], diagnostics: List[Diagnostic]) -> None:
    _validate_section(config, CONFIG_SCHEMA, "config", diagnostics)


def _validate_section(
    target: Dict[str, Any],
    schema: SchemaSpec,
    path: str,
    diagnostics: List[Diagnostic],
) -> None:
    if not isinstance(target, dict):
        diagnostics.append(
            Diagnostic(
                level="error",
                message=f"Configuration section '{path}' must be a mapping.",
            )
        )
        return

    for key in list(target.keys()):
        if key not in schema:
            diagnostics.append(
                Diagnostic(
                    level="warning",
                    message=f"Unknown configuration key '{path}.{key}'.",
                )
            )

    for key, spec in schema.items():
        child_path = f"{path}.{key}"
        if key not in target:
            if "default" in spec or "default_factory" in spec:
                target[key] = _default_from_spec(spec)
            continue

        value = target[key]
        expected_type = spec.get("type")

        if expected_type is dict:
            if not isinstance(value, dict):
                diagnostics.append(
                    Diagnostic(
                        level="error",
                        message=f"'{child_path}' must be a mapping.",
                    )
                )
                target[key] = _default_from_spec(spec) or {}
                continue
            _validate_section(value, spec.get("schema", {}), child_path, diagnostics)
        elif expected_type is list:
            if not isinstance(value, list):
                diagnostics.append(
                    Diagnostic(
                        level="error",
                        message=f"'{child_path}' must be a list.",
                    )
                )
                target[key] = _default_from_spec(spec) or []
                continue
            item_type = spec.get("item_type")
            if item_type is not None:
                filtered: List[Any] = []
                for idx, item in enumerate(value):
                    if isinstance(item, item_type):
                        filtered.append(item)
                    else:
                        diagnostics.append(
                            Diagnostic(
                                level="error",
                                message=(
                                    f"'{child_path}[{idx}]' must be of type "
                                    f"{item_type.__name__}."
                                ),
                            )
                        )
                target[key] = filtered
        elif expected_type and (
            not isinstance(value, expected_type)
            or (expected_type is int and isinstance(value, bool))
        ):
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"'{child_path}' must be of type {expected_type.__name__}.",
                )
            )
            target[key] = _default_from_spec(spec)
        elif "choices" in spec and value not in spec["choices"]:
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=(
                        f"'{child_path}' must be one of: {', '.join(spec['choices'])}."
                    ),
                )
            )
            target[key] = _default_from_spec(spec)
        elif "minimum" in spec and value < spec["minimum"]:
            diagnostics.append(
                Diagnostic(
                    level="error",
                    message=f"'{child_path}' must be at least {spec['minimum']}.",
                )
            )
            target[key] = _default_from_spec(spec)


__all__ = [
    "CONFIG_SCHEMA",
    "ConfigurationBundle",
    "ConfigurationStatus",
    "DATA_DIR_ENV",
    "DEFAULT_CONFIG_DIR",
    "Diagnostic",
    "load_runtime_configuration",
    "resolve_data_dir",
]
