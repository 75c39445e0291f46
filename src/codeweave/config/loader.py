"""
Configuration loader for codeweave.

Handles loading configuration from YAML files and environment variables.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from codeweave.errors import ConfigurationError

from .models import CodeweaveConfig, LLMProvider

ENV_PREFIX = "CODEWEAVE_"

# Environment variable -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "STACK": ("project", "stack"),
    "ASSEMBLED_DIR": ("project", "assembled_dir"),
    "PREVIEW_DIR": ("project", "preview_dir"),
    "STATE_DIR": ("project", "state_dir"),
    "LLM_PROVIDER": ("llm", "provider"),
    "LLM_MODEL": ("llm", "model"),
    "LLM_HOST": ("llm", "host"),
    "LLM_API_KEY": ("llm", "api_key"),
    "STORAGE_BACKEND": ("storage", "backend"),
}


def apply_env_overrides(raw_config: dict[str, Any]) -> dict[str, Any]:
    """Overlay CODEWEAVE_* environment variables onto a raw config dict."""
    load_dotenv()
    for suffix, (section, field) in ENV_OVERRIDES.items():
        value = os.environ.get(ENV_PREFIX + suffix)
        if value:
            raw_config.setdefault(section, {})[field] = value
    return raw_config


def validate_stack(config: CodeweaveConfig, known_stacks: list[str]) -> str | None:
    """Check that the configured stack id is one of ``known_stacks``."""
    stack = config.project.stack
    if stack is not None and stack not in known_stacks:
        raise ConfigurationError(
            f"Unknown stack '{stack}'. Available stacks: {known_stacks}"
        )
    return stack


def build_config(raw_config: dict[str, Any] | None = None) -> CodeweaveConfig:
    """Build a validated config from a raw dict plus environment overrides."""
    raw = apply_env_overrides(dict(raw_config or {}))
    try:
        config = CodeweaveConfig(**raw)
    except ValidationError as e:
        raise ConfigurationError(f"Configuration validation failed:\n{e}")

    if config.llm.provider in (LLMProvider.OPENROUTER, LLMProvider.OPENAI) and not config.llm.api_key:
        config.llm.api_key = os.environ.get("OPENROUTER_API_KEY") or os.environ.get("OPENAI_API_KEY")

    return config


def load_config_from_yaml(config_path: Path) -> CodeweaveConfig:
    """Load configuration from a YAML file."""
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in configuration file: {e}")

    if raw_config is None:
        raise ConfigurationError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ConfigurationError("Configuration file must contain a mapping at the top level")

    return build_config(raw_config)


def generate_default_config(output_path: Path) -> None:
    """Generate a default configuration file."""
    default_config = {
        "project": {
            "name": "my_project",
            "stack": "nextjs-mongodb",
            "tech_stack": ["Next.js 14", "MongoDB", "tRPC", "Tailwind CSS"],
            "state_dir": ".codeweave",
            "assembled_dir": "./assembled",
            "preview_dir": "./.assembled-preview",
        },
        "llm": {
            "provider": "openrouter",
            "model": "anthropic/claude-sonnet-4",
            "temperature": 0.2,
            "max_tokens": 32768,
            "timeout": 300,
        },
        "assembly": {
            "max_validation_passes": 3,
            "max_fix_attempts": 3,
            "preview_fix_attempts": 2,
            "toolchain_fix_attempts": 2,
            "max_missing_per_pass": 20,
            "synthesis_batch_size": 5,
            "run_toolchain": True,
            "run_lint": False,
        },
        "toolchain": {
            "install_timeout": 180,
            "type_check_timeout": 120,
            "lint_timeout": 60,
        },
        "storage": {
            "backend": "file",
        },
    }

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
