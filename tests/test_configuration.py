"""Tests for the data-directory-aware configuration loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from tether import configuration
from tether.sync import SyncSettings


def _prepare_repo_defaults(tmp_path: Path, content: str = "runtime:\n  name: Tether\n") -> Path:
    config_dir = tmp_path / "repo-config"
    config_dir.mkdir()
    (config_dir / "10-defaults.yml").write_text(content, encoding="utf-8")
    return config_dir


def _write_override(data_dir: Path, content: str) -> None:
    cfg_dir = data_dir / "config"
    cfg_dir.mkdir(parents=True, exist_ok=True)
    (cfg_dir / "local.yml").write_text(content, encoding="utf-8")


@pytest.fixture
def repo_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    repo_dir = _prepare_repo_defaults(tmp_path)
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)
    return repo_dir


def test_resolve_data_dir_uses_env_expansion(tmp_path: Path):
    env = {"TETHER_DATA_DIR": str(tmp_path / "data")}

    assert configuration.resolve_data_dir(env=env) == tmp_path / "data"
    assert configuration.resolve_data_dir(env={}) == Path("./data")


def test_merges_repo_defaults_and_data_overrides(tmp_path: Path, repo_defaults: Path):
    data_dir = tmp_path / "data"
    _write_override(data_dir, "runtime:\n  name: Field Kit\nsync:\n  batch_size: 10\n")

    bundle = configuration.load_runtime_configuration(data_dir)

    assert bundle.status == "ready"
    assert bundle.merged["runtime"]["name"] == "Field Kit"
    assert bundle.merged["sync"]["batch_size"] == 10
    assert len(bundle.files_loaded) == 2


def test_schema_fills_defaults(tmp_path: Path, repo_defaults: Path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()

    bundle = configuration.load_runtime_configuration(data_dir)

    assert bundle.merged["sync"]["queue_capacity"] == 1000
    assert bundle.merged["sync"]["max_retries"] == 3
    assert bundle.merged["sync"]["claim_timeout"] == 300
    assert bundle.merged["store"] == {"backend": "sqlite", "path": "state/tether.db"}
    assert bundle.merged["api"]["cors_origins"] == []
    assert bundle.section("logging")["structured"] is True
    assert bundle.section("nope") == {}


def test_missing_data_dir_is_reported(tmp_path: Path, repo_defaults: Path):
    bundle = configuration.load_runtime_configuration(tmp_path / "missing")

    assert bundle.status == "missing"
    assert any(diag.level == "error" for diag in bundle.diagnostics)


def test_bad_yaml_marks_bundle_invalid(tmp_path: Path, repo_defaults: Path):
    data_dir = tmp_path / "data"
    _write_override(data_dir, "runtime: [\n")

    bundle = configuration.load_runtime_configuration(data_dir)

    assert bundle.status == "invalid"
    assert any("Failed to parse" in diag.message for diag in bundle.diagnostics)


@pytest.mark.parametrize(
    "content, key",
    [
        ("sync:\n  batch_size: lots\n", "sync.batch_size"),
        ("sync:\n  max_retries: true\n", "sync.max_retries"),
        ("sync:\n  queue_capacity: 0\n", "sync.queue_capacity"),
        ("store:\n  backend: redis\n", "store.backend"),
        ("api:\n  cors_origins: '*'\n", "api.cors_origins"),
    ],
)
def test_invalid_values_raise_diagnostics_and_fall_back(tmp_path: Path, repo_defaults: Path, content, key):
    data_dir = tmp_path / "data"
    _write_override(data_dir, content)

    bundle = configuration.load_runtime_configuration(data_dir)

    assert bundle.status == "invalid"
    assert any(key in diag.message for diag in bundle.diagnostics)
    section, name = key.split(".")
    default = configuration.CONFIG_SCHEMA[section]["schema"][name]
    expected = default["default_factory"]() if "default_factory" in default else default["default"]
    assert bundle.merged[section][name] == expected


def test_unknown_keys_warn(tmp_path: Path, repo_defaults: Path):
    data_dir = tmp_path / "data"
    _write_override(data_dir, "mystery:\n  value: 1\n")

    bundle = configuration.load_runtime_configuration(data_dir)

    assert bundle.status == "ready"
    assert any("Unknown configuration key" in diag.message for diag in bundle.diagnostics)


def test_repo_defaults_file_is_valid(tmp_path: Path):
    data_dir = tmp_path / "data"
    data_dir.mkdir()

    bundle = configuration.load_runtime_configuration(data_dir)

    assert bundle.status == "ready"
    assert configuration.DEFAULT_CONFIG_DIR / "10-defaults.yml" in bundle.files_loaded


def test_sync_settings_from_config():
    settings = SyncSettings.from_config({"sync": {"queue_capacity": 5, "batch_size": 2}})

    assert settings.queue_capacity == 5
    assert settings.batch_size == 2
    assert settings.max_retries == 3
    assert settings.claim_timeout == 300
    assert SyncSettings.from_config({}) == SyncSettings()
