"""Configuration Management for CLI Settings"""

import os
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console

console = Console()


class ConfigManager:
    """Manage CLI configuration settings"""

    def __init__(self, config_dir: Path | None = None):
        self.config_dir = config_dir or Path(
            os.getenv("JOBSCTL_HOME", str(Path.home() / ".jobsctl"))
        )
        self.config_file = self.config_dir / "config.yaml"

    def load_config(self) -> dict[str, Any]:
        """Load configuration from file, environment overriding file values"""
        config = self.get_default_config()

        if self.config_file.exists():
            try:
                with open(self.config_file) as f:
                    stored = yaml.safe_load(f) or {}
                _deep_update(config, stored)
            except (OSError, yaml.YAMLError) as e:
                console.print(f"[red]Error loading config: {e}[/red]")

        if os.getenv("JOBSCTL_API_URL"):
            config["api"]["base_url"] = os.environ["JOBSCTL_API_URL"]
        if os.getenv("JOBSCTL_TOKEN"):
            config["api"]["token"] = os.environ["JOBSCTL_TOKEN"]
        return config

    def save_config(self, config: dict[str, Any]):
        """Save configuration to file"""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w") as f:
            yaml.safe_dump(config, f, default_flow_style=False)

    def get_default_config(self) -> dict[str, Any]:
        """Get default configuration"""
        return {
            "api": {
                "base_url": "http://localhost:8000",
                "timeout": 30,
                "token": None,
                "user_id": None,
            },
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'api.base_url')"""
        config = self.load_config()

        for k in key.split("."):
            if isinstance(config, dict) and k in config:
                config = config[k]
            else:
                return default

        return config

    def set(self, key: str, value: Any):
        """Set configuration value using dot notation"""
        config = {}
        if self.config_file.exists():
            with open(self.config_file) as f:
                config = yaml.safe_load(f) or {}

        keys = key.split(".")
        current = config
        for k in keys[:-1]:
            current = current.setdefault(k, {})
        current[keys[-1]] = value

        self.save_config(config)

    def show_all(self):
        """Display all configuration settings"""
        config = self.load_config()
        if config["api"].get("token"):
            config["api"]["token"] = "***"
        console.print(yaml.safe_dump(config, default_flow_style=False))


def _deep_update(base: dict[str, Any], updates: dict[str, Any]) -> None:
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_update(base[key], value)
        else:
            base[key] = value


# Global config manager instance
config = ConfigManager()
