"""
OpenClaw Admin - Configuration Manager
========================================
Handles the two configuration sources of the admin panel:

1. admin.yaml - Panel settings (web binding, docker service names,
                health-poll budget, log tail length)
2. .env       - The gateway's environment file (AI keys, bot tokens),
                accessed through provisioner.store.ConfigStore

The REST API uses this manager to show and edit both from the browser.

Usage:
    config = ConfigManager(project_dir="/path/to/openclaw")
    settings = config.load()                          # merged admin.yaml
    config.update({"install": {"health_attempts": 45}})
    config.set_api_keys({"OPENAI_API_KEY": "sk-xxx"})  # writes .env
"""

import os
import re
import yaml
from typing import Any

from provisioner.store import ConfigStore, ProjectLayout


# Default settings used when admin.yaml is missing or incomplete.
DEFAULTS = {
    "web": {
        "host": None,          # None -> 0.0.0.0 in Docker, 127.0.0.1 locally
        "port": None,          # None -> ADMIN_PORT or 3000
        "static_dir": "",      # "" -> <repo>/dist
        "state_dir": "admin-data",
    },
    "docker": {
        "binary": "docker",
        "gateway_service": "openclaw-gateway",
        "cli_service": "openclaw-cli",
        "cli_profile": "cli",
    },
    "gateway": {
        "health_url": "",
    },
    "install": {
        "health_attempts": 30,
        "health_interval": 2,
        "health_timeout": 3,
    },
    "logs": {
        "tail": 100,
    },
}

SECTIONS = tuple(DEFAULTS)

# Credentials the panel lets the admin manage in the gateway .env.
KNOWN_API_KEYS = [
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GEMINI_API_KEY",
    "TELEGRAM_BOT_TOKEN",
    "DISCORD_BOT_TOKEN",
    "SLACK_BOT_TOKEN",
    "SLACK_APP_TOKEN",
]

_ENV_KEY_RE = re.compile(r"^[A-Z_][A-Z0-9_]*$")


class ConfigManager:
    """
    Unified configuration manager for the admin panel.

    Attributes:
        layout:      ProjectLayout of the managed compose project.
        store:       ConfigStore for the gateway .env.
        config_path: Full path to admin.yaml.
    """

    def __init__(self, project_dir: str | None = None, layout: ProjectLayout | None = None):
        """
        Args:
            project_dir: Compose project root (ignored when layout is given).
            layout:      Pre-resolved layout, e.g. from the environment.
        """
        self.layout = layout or ProjectLayout(project_dir or os.getcwd())
        self.store = ConfigStore(self.layout)
        self.config_path = self.layout.path("admin.yaml")

    @property
    def project_dir(self) -> str:
        return self.layout.project_dir

    def load(self) -> dict:
        """
        Load admin.yaml merged over DEFAULTS.

        A corrupted file falls back to defaults and the parse error is
        reported under the '_config_error' key.
        """
        config = _deep_copy(DEFAULTS)

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    user_config = yaml.safe_load(f) or {}
                if isinstance(user_config, dict):
                    _deep_merge(config, user_config)
            except (yaml.YAMLError, OSError) as e:
                config["_config_error"] = str(e)

        return config

    def save(self, config: dict) -> None:
        """Write the known sections back to admin.yaml."""
        clean = {section: config[section] for section in SECTIONS if section in config}

        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.dump(
                clean,
                f,
                default_flow_style=False,
                allow_unicode=True,
                sort_keys=False,
            )

    def update(self, updates: dict) -> dict:
        """
        Partially update settings and save.

        Raises:
            ValueError: If an unknown section is given.
        """
        unknown = [key for key in updates if key not in SECTIONS]
        if unknown:
            raise ValueError(f"Unknown config section(s): {', '.join(unknown)}")

        config = self.load()
        config.pop("_config_error", None)
        _deep_merge(config, updates)
        self.save(config)
        return config

    def state_dir(self, config: dict | None = None) -> str:
        """Absolute directory for panel-owned state (auth, operation logs)."""
        config = config or self.load()
        state_dir = config["web"].get("state_dir") or DEFAULTS["web"]["state_dir"]
        return state_dir if os.path.isabs(state_dir) else self.layout.path(state_dir)

    # -- Credential management ------------------------------------------------

    def get_api_keys(self) -> dict:
        """
        Return known credentials from .env, masked.

        Unknown keys ending in _API_KEY / _TOKEN are included too, except
        the gateway token, which /api/meta already exposes.

        Returns:
            {"keys": {"OPENAI_API_KEY": "sk-41****270b", ...}}
        """
        env_values = self.store.read_environment()

        result = {}
        for key_name in KNOWN_API_KEYS:
            value = env_values.get(key_name, "")
            result[key_name] = _mask_key(value) if value else ""

        for key_name, value in env_values.items():
            if key_name in result or key_name == "OPENCLAW_GATEWAY_TOKEN":
                continue
            if key_name.endswith("_API_KEY") or key_name.endswith("_TOKEN"):
                result[key_name] = _mask_key(value) if value else ""

        return {"keys": result}

    def has_any_api_key(self) -> bool:
        """True if at least one AI provider key is set."""
        env_values = self.store.read_environment()
        return any(env_values.get(k) for k in KNOWN_API_KEYS if k.endswith("_API_KEY"))

    def set_api_keys(self, keys: dict[str, Any]) -> None:
        """
        Upsert several credentials into .env; empty values are skipped.

        Raises:
            ValueError: If a key name is not an upper-case env identifier,
                        or a value spans more than one line.
            OSError:    If the .env file could not be written.
        """
        for key_name, value in keys.items():
            if not _ENV_KEY_RE.match(str(key_name)):
                raise ValueError(f"Invalid key name: '{key_name}'")
            text = str(value or "").strip()
            if "\n" in text or "\r" in text:
                raise ValueError(f"Value for '{key_name}' must be a single line")

        for key_name, value in keys.items():
            if not value:
                continue
            if not self.store.upsert_environment_value(key_name, str(value).strip()):
                raise OSError(f"Failed to write {key_name} to {self.layout.env_file}")

    def delete_api_key(self, key_name: str) -> None:
        """
        Remove a credential from .env.

        Raises:
            KeyError: If the key is not present.
        """
        if not self.store.remove_environment_value(key_name):
            raise KeyError(f"Key '{key_name}' not found")


# -- Helper Functions ---------------------------------------------------------

def _deep_copy(d: dict) -> dict:
    """Create a deep copy of a nested dictionary."""
    result = {}
    for key, value in d.items():
        if isinstance(value, dict):
            result[key] = _deep_copy(value)
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _deep_merge(base: dict, override: dict) -> None:
    """Recursively merge 'override' into 'base' (in-place)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _mask_key(value: str) -> str:
    """
    Mask a secret for display: first 6 and last 4 characters kept.
    Values shorter than 12 characters are fully masked.
    """
    if not value or len(value) < 12:
        return "****" if value else ""
    return f"{value[:6]}****{value[-4:]}"
