"""Configuration management module.

This module handles persistent configuration storage using TOML format.
Stores where provisioning data lives, where assets are fetched from and how
downloads behave.

Security:
- Config file permissions: 0600 (owner read/write only)
- Path validation
- Input sanitization
"""

import logging
import os
import tempfile
import tomllib  # Python 3.11+ (requires-python >= 3.11)
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import tomlkit

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "ROOTFSPREP_HOME"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


def default_data_dir() -> Path:
    """Data directory: $ROOTFSPREP_HOME when set, else ~/.rootfsprep."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".rootfsprep"


@dataclass
class ProvisionerConfig:
    """rootfsprep configuration data."""

    data_dir: str | None = None  # None -> default_data_dir()
    assets_base_url: str = "https://github.com/CypherpunkArmory"
    download_workers: int = 4
    request_timeout: int = 30
    log_level: str = "INFO"
    auto_approve_large_downloads: bool = False

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser() if self.data_dir else default_data_dir()

    @property
    def files_dir(self) -> Path:
        """Root of relocated assets and filesystem directories."""
        return self.data_path / "files"

    @property
    def downloads_dir(self) -> Path:
        return self.data_path / "downloads"

    @property
    def store_path(self) -> Path:
        return self.data_path / "store.toml"

    @property
    def preferences_path(self) -> Path:
        return self.data_path / "assets.toml"

    def validate(self) -> None:
        """Reject values the provisioner cannot run with.

        Raises:
            ConfigError: If any value is out of range
        """
        if not self.assets_base_url.startswith("https://"):
            raise ConfigError(f"assets_base_url must use HTTPS: {self.assets_base_url}")
        if self.download_workers < 1:
            raise ConfigError(f"download_workers must be at least 1, got {self.download_workers}")
        if self.request_timeout < 1:
            raise ConfigError(f"request_timeout must be at least 1, got {self.request_timeout}")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level}")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # Filter out None values as TOML doesn't support them
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProvisionerConfig":
        """Create from dictionary."""
        defaults = cls()
        try:
            return cls(
                data_dir=data.get("data_dir"),
                assets_base_url=str(data.get("assets_base_url", defaults.assets_base_url)),
                download_workers=int(data.get("download_workers", defaults.download_workers)),
                request_timeout=int(data.get("request_timeout", defaults.request_timeout)),
                log_level=str(data.get("log_level", defaults.log_level)).upper(),
                auto_approve_large_downloads=bool(
                    data.get("auto_approve_large_downloads", defaults.auto_approve_large_downloads)
                ),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid config value: {e}") from e


class ConfigManager:
    """Manage rootfsprep configuration file.

    Configuration is stored at <data dir>/config.toml with secure permissions.
    """

    CONFIG_FILENAME = "config.toml"

    @classmethod
    def default_config_file(cls) -> Path:
        return default_data_dir() / cls.CONFIG_FILENAME

    @classmethod
    def _validate_config_path(cls, path: Path) -> Path:
        """Validate configuration file path for security.

        Ensures the path is within allowed directories to prevent path traversal attacks.

        Args:
            path: Path to validate (must be resolved)

        Returns:
            Validated path

        Raises:
            ConfigError: If path is outside allowed directories

        Security:
            - Resolves symlinks to prevent symlink attacks
            - Validates path is within the data directory, the current working
              directory or the system temporary directory
            - Prevents path traversal (../../etc/passwd)
        """
        resolved_path = path.resolve()

        allowed_dirs = [
            default_data_dir().resolve(),
            Path.cwd().resolve(),
            Path(tempfile.gettempdir()).resolve(),  # Allow pytest tmp_path
        ]

        for allowed_dir in allowed_dirs:
            try:
                resolved_path.relative_to(allowed_dir)
                return resolved_path
            except ValueError:
                continue

        raise ConfigError(
            f"Config path outside allowed directories: {resolved_path}\n"
            f"Allowed directories:\n"
            f"  - {default_data_dir()}\n"
            f"  - {Path.cwd()}\n"
            "This restriction prevents path traversal attacks."
        )

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            Path to config file

        Raises:
            ConfigError: If path is invalid or outside allowed directories
        """
        if custom_path:
            path = cls._validate_config_path(Path(custom_path).expanduser())
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.default_config_file()

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> ProvisionerConfig:
        """Load configuration from file.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            ProvisionerConfig object (defaults when no file exists)

        Raises:
            ConfigError: If loading or validation fails
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return ProvisionerConfig()

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:  # Check if group/other have any permissions
                logger.warning(f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600...")
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to load config: {e}") from e

        logger.debug(f"Loaded config from: {config_path}")
        config = ProvisionerConfig.from_dict(data)
        config.validate()
        return config

    @classmethod
    def save_config(cls, config: ProvisionerConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file.

        Args:
            config: Configuration to save
            custom_path: Custom config file path (optional)

        Returns:
            Path the configuration was written to

        Raises:
            ConfigError: If saving fails or path is outside allowed directories
        """
        config.validate()
        if custom_path:
            config_path = cls._validate_config_path(Path(custom_path).expanduser())
        else:
            config_path = cls.default_config_file()

        temp_path = config_path.with_suffix(".tmp")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)

            # Load existing file if it exists (preserves comments/formatting)
            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()
            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            # Set secure permissions before moving
            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)
        except (OSError, tomlkit.exceptions.TOMLKitError) as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

        logger.debug(f"Saved config to: {config_path}")
        return config_path

    @classmethod
    def update_config(cls, custom_path: str | None = None, **updates: Any) -> ProvisionerConfig:
        """Update configuration values.

        Args:
            custom_path: Custom config file path (optional)
            **updates: Configuration values to update

        Returns:
            Updated ProvisionerConfig

        Raises:
            ConfigError: If update fails
        """
        config = cls.load_config(custom_path)

        for key, value in updates.items():
            if hasattr(config, key):
                setattr(config, key, value)
            else:
                logger.warning(f"Unknown config key: {key}")

        cls.save_config(config, custom_path)
        return config


__all__ = ["HOME_ENV_VAR", "ConfigError", "ConfigManager", "ProvisionerConfig", "default_data_dir"]
