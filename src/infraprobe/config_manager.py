"""Configuration management module.

This module handles persistent configuration storage using TOML format.
Stores scenario defaults like AWS region, SSH user and the text the remote
echo checks expect back.

Security:
- Config file permissions: 0600 (owner read/write only)
- Atomic writes through a temp file
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import tomli
import tomlkit

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass
class HarnessConfig:
    """infraprobe configuration data."""

    aws_region: str = "us-east-1"
    name_prefix: str = "terratest-example"
    terraform_dir: str = "terraform"
    public_ip_output: str = "public_instance_ip"
    ssh_user: str = "centos"
    expected_text: str = "Hello, World"
    ansible_user: str = "centos"
    ansible_interpreter: str = "/usr/libexec/platform-python"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HarnessConfig":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})


class ConfigManager:
    """Manage infraprobe configuration file.

    Configuration is stored at ~/.infraprobe/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".infraprobe"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Raises:
            ConfigError: If a custom path was given and does not exist
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> HarnessConfig:
        """Load configuration from file, or defaults when there is none.

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return HarnessConfig()

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:
                logger.warning(
                    f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600..."
                )
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomli.load(f)

            logger.debug(f"Loaded config from: {config_path}")
            return HarnessConfig.from_dict(data)

        except (OSError, tomli.TOMLDecodeError, TypeError) as e:
            raise ConfigError(f"Failed to load config: {e}") from e

    @classmethod
    def save_config(cls, config: HarnessConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file, preserving comments in an existing file.

        Returns:
            Path the config was written to

        Raises:
            ConfigError: If saving fails
        """
        if custom_path:
            config_path = Path(custom_path).expanduser().resolve()
        else:
            config_path = cls.DEFAULT_CONFIG_FILE

        temp_path = config_path.with_suffix(".tmp")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

            logger.debug(f"Saved config to: {config_path}")
            return config_path

        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e


__all__ = ["ConfigError", "ConfigManager", "HarnessConfig"]
