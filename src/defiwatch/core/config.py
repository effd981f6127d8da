"""3-layer configuration system for DeFi Watch.

Loads and merges configuration from:
1. Default settings (built-in)
2. Project config (.defiwatch/config.yaml, or an explicit file)
3. CLI parameters (override)
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Optional

import yaml

from ..errors import ConfigError

DEFAULT_CONFIG: dict = {
    "ai": {
        "provider": "openrouter",
        "temperature": 0.1,
        "retry_attempts": 2,
        "retry_delay_seconds": 2,
        "openrouter": {
            "endpoint": "https://openrouter.ai/api/v1/chat/completions",
            "api_key_env": "OPENROUTER_API_KEY",
            "referer": "http://localhost:3000",
            "title": "DeFi Watch Security Audit",
            "max_tokens": 4000,
        },
        "ollama": {
            "endpoint": "http://localhost:11434",
            "max_tokens": 4000,
        },
    },
    "agents": {
        "deepseek-r1": {
            "name": "DeepSeek R1",
            "specialty": "advanced-reasoning",
            "model": "deepseek/deepseek-r1:free",
        },
        "deepseek-chat": {
            "name": "DeepSeek Chat",
            "specialty": "security",
            "model": "deepseek/deepseek-chat:free",
        },
        "qwen-72b": {
            "name": "Qwen 2.5 72B",
            "specialty": "comprehensive",
            "model": "qwen/qwen-2.5-72b-instruct:free",
        },
        "llama-70b": {
            "name": "Llama 3.1 70B",
            "specialty": "defi",
            "model": "meta-llama/llama-3.1-70b-instruct:free",
        },
        "wizardlm-2": {
            "name": "WizardLM 2",
            "specialty": "gas",
            "model": "microsoft/wizardlm-2-8x22b:free",
        },
        "claude-haiku": {
            "name": "Claude 3 Haiku",
            "specialty": "quality",
            "model": "anthropic/claude-3-haiku:beta",
        },
        "gemini-flash": {
            "name": "Gemini 2.0 Flash",
            "specialty": "comprehensive",
            "model": "google/gemini-2.0-flash-001",
        },
    },
    "tiers": {
        "free": {
            "agents": ["deepseek-chat", "qwen-72b", "llama-70b"],
            "supervisor": "deepseek-r1",
            "deadline_seconds": 90,
            "supervisor_deadline_seconds": 120,
            "token_budget": 28000,
            "depth": "standard",
        },
        "premium": {
            "agents": [
                "deepseek-r1",
                "deepseek-chat",
                "qwen-72b",
                "llama-70b",
                "wizardlm-2",
                "claude-haiku",
            ],
            "supervisor": "gemini-flash",
            "deadline_seconds": 180,
            "supervisor_deadline_seconds": 240,
            "token_budget": 28000,
            "depth": "deep",
        },
    },
    "explorer": {
        "timeout_seconds": 30,
        "networks": {
            "mainnet": {
                "api_url": "https://api.etherscan.io/api",
                "site_url": "https://etherscan.io",
                "api_key_env": "ETHERSCAN_API_KEY",
            },
            "sonic": {
                "api_url": "https://api.sonicscan.org/api",
                "site_url": "https://sonicscan.org",
                "api_key_env": "SONICSCAN_API_KEY",
            },
            "linea": {
                "api_url": "https://api.lineascan.build/api",
                "site_url": "https://lineascan.build",
                "api_key_env": "LINEASCAN_API_KEY",
                "fallback_key_env": "ETHERSCAN_API_KEY",
            },
            "linea-testnet": {
                "api_url": "https://api-testnet.lineascan.build/api",
                "site_url": "https://sepolia.lineascan.build",
                "api_key_env": "LINEASCAN_API_KEY",
                "fallback_key_env": "ETHERSCAN_API_KEY",
            },
        },
    },
    "dispatch": {
        "max_concurrency": 8,
    },
    "scoring": {
        "baseline": 100,
        "floor": 10,
        "default_score": 75,
        "penalties": {"CRITICAL": 30, "HIGH": 20, "MEDIUM": 10},
        "heuristic_baseline": 85,
        "heuristic_unparseable_score": 50,
    },
    "output": {
        "directory": ".defiwatch/reports",
        "formats": ["json", "markdown"],
    },
}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts. Arrays are replaced, not merged."""
    result = {}
    for key in base:
        result[key] = base[key]
    for key, value in override.items():
        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            result[key] = deep_merge(base_value, value)
        else:
            result[key] = value
    return result


def load_project_config(project_path: Path) -> dict:
    """Load project configuration from .defiwatch/config.yaml."""
    return load_config_file(project_path / ".defiwatch" / "config.yaml")


def load_config_file(config_path: Path) -> dict:
    """Load a YAML config file. Missing or empty files yield {}."""
    if not config_path.exists():
        return {}
    try:
        content = config_path.read_text(encoding="utf-8-sig")  # utf-8-sig strips BOM
        data = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return data


def get_effective_config(
    project_path: Optional[Path] = None,
    config_file: Optional[Path] = None,
    cli_overrides: Optional[dict] = None,
) -> dict:
    """Get the fully resolved configuration for an audit."""
    config = copy.deepcopy(DEFAULT_CONFIG)

    if project_path is not None:
        project_config = load_project_config(project_path)
        if project_config:
            config = deep_merge(config, project_config)

    if config_file is not None:
        file_config = load_config_file(config_file)
        if file_config:
            config = deep_merge(config, file_config)

    if cli_overrides:
        config = deep_merge(config, cli_overrides)

    return config
