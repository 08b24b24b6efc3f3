"""Agent configuration loader.

Built-in defaults can be overridden by a JSON file, passed explicitly or
named by the STUDYSETUP_CONFIG environment variable. Secrets (API keys,
database URLs) are read from the environment where they are used, never
from this file.
"""

from __future__ import annotations

import copy
import json
import os


class ConfigError(Exception):
    """Raised when an agent configuration cannot be loaded or is invalid."""


_REQUIRED_SECTIONS = ("llm", "resilience", "interview")

DEFAULT_CONFIG = {
    "llm": {
        "model": "gpt-4o-mini",
        "temperature": 0.7,
        "max_tokens": 500,
    },
    "resilience": {
        "timeout_seconds": 120,
        "max_attempts": 3,
        "initial_delay": 1.0,
        "max_delay": 10.0,
        "jitter": 1.0,
    },
    "guide": {
        "model": "gpt-4o-mini",
        "temperature": 0.7,
        "max_tokens": 2000,
    },
    "interview": {
        "model": "gpt-4o",
        "temperature": 0.7,
        "max_tokens": 500,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_agent_config(path: str | None = None) -> dict:
    """Load the agent configuration.

    Args:
        path: JSON file whose values override the defaults.
              Defaults to $STUDYSETUP_CONFIG, or no file at all.

    Returns:
        Configuration dict with llm, resilience, guide and interview sections.

    Raises:
        ConfigError: If the config file is missing, invalid, or
                     lacks required sections.
    """
    if path is None:
        path = os.environ.get("STUDYSETUP_CONFIG")
    if not path:
        return copy.deepcopy(DEFAULT_CONFIG)

    if not os.path.isfile(path):
        raise ConfigError(f"Agent configuration not found: {path}")

    try:
        with open(path, "r") as f:
            overrides = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(
            f"Agent configuration has invalid JSON: {path}: {e}"
        ) from e

    if not isinstance(overrides, dict):
        raise ConfigError(f"Agent configuration must be a JSON object: {path}")

    config = _deep_merge(DEFAULT_CONFIG, overrides)

    # Validate required sections
    for section in _REQUIRED_SECTIONS:
        if not isinstance(config.get(section), dict):
            raise ConfigError(
                f"Agent configuration missing required section '{section}': {path}"
            )

    return config


def resilience_options(config: dict) -> dict:
    """Keyword arguments for call_with_resilience from a config dict."""
    r = config["resilience"]
    return {
        "timeout": float(r["timeout_seconds"]),
        "max_attempts": int(r["max_attempts"]),
        "initial_delay": float(r["initial_delay"]),
        "max_delay": float(r["max_delay"]),
        "jitter": float(r["jitter"]),
    }
