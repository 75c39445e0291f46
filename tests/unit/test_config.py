"""
Unit tests for configuration loading.
"""

import pytest
import yaml

from codeweave.config.loader import (
    build_config,
    generate_default_config,
    load_config_from_yaml,
    validate_stack,
)
from codeweave.config.models import CodeweaveConfig, LLMProvider, StorageBackend
from codeweave.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("CODEWEAVE_STACK", "CODEWEAVE_LLM_PROVIDER", "CODEWEAVE_STORAGE_BACKEND"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = CodeweaveConfig()

    assert config.assembly.max_fix_attempts == 3
    assert config.assembly.preview_fix_attempts == 2
    assert config.assembly.toolchain_fix_attempts == 2
    assert config.project.stack is None
    assert config.storage.backend == StorageBackend.FILE


def test_generated_config_round_trips(tmp_dir):
    path = tmp_dir / "codeweave.yaml"
    generate_default_config(path)

    config = load_config_from_yaml(path)
    assert config.project.stack == "nextjs-mongodb"
    assert config.llm.provider == LLMProvider.OPENROUTER


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CODEWEAVE_STACK", "express-postgres")
    monkeypatch.setenv("CODEWEAVE_STORAGE_BACKEND", "memory")

    config = build_config({"project": {"name": "shop", "stack": "nextjs-mongodb"}})

    assert config.project.name == "shop"
    assert config.project.stack == "express-postgres"
    assert config.storage.backend == StorageBackend.MEMORY


def test_invalid_values(tmp_dir):
    path = tmp_dir / "bad.yaml"
    path.write_text(yaml.dump({"assembly": {"max_fix_attempts": -1}}))

    with pytest.raises(ConfigurationError):
        load_config_from_yaml(path)


def test_missing_and_empty_files(tmp_dir):
    with pytest.raises(ConfigurationError):
        load_config_from_yaml(tmp_dir / "missing.yaml")

    empty = tmp_dir / "empty.yaml"
    empty.write_text("")
    with pytest.raises(ConfigurationError):
        load_config_from_yaml(empty)


def test_validate_stack():
    config = CodeweaveConfig()
    assert validate_stack(config, ["nextjs-mongodb"]) is None

    config.project.stack = "cobol-db2"
    with pytest.raises(ConfigurationError):
        validate_stack(config, ["nextjs-mongodb"])
