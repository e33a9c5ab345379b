"""Configuration Manager - Two-Tier Configuration System.

This module implements the configuration management system for homelab-monitor:
1. Static configuration loading from TOML files and environment variables
2. Dynamic configuration loading from the same TOML file (seed values)
3. Hot-reload event system for runtime configuration updates

Design:
- Static Config: Loaded at startup from default.toml + env overrides (restart required)
- Dynamic Config: Loaded from TOML, then updated in memory via update_dynamic_config
- Event System: Subscribers listen for config updates to apply changes
"""

import os
from pathlib import Path
from typing import Any, Optional
import asyncio
from collections.abc import Callable

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # type: ignore

from dotenv import load_dotenv
import structlog

from .registry import (
    get_config_key,
    validate_config_value,
    get_default_values,
    get_static_keys,
    get_dynamic_keys,
)

logger = structlog.get_logger()

ENV_PREFIX = "HOMELAB_"


class ConfigManager:
    """Manages two-tier configuration system with hot-reload support.

    Attributes:
        static_config: Static configuration (restart required)
        dynamic_config: Dynamic configuration (hot-reloadable)
        _subscribers: Event subscribers for config updates
    """

    def __init__(self, config_file: Optional[Path] = None, env_file: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file (default: config/default.toml)
            env_file: Path to .env file (default: .env in project root)
        """
        self.static_config: dict[str, Any] = {}
        self.dynamic_config: dict[str, Any] = {}
        self._subscribers: list[Callable[[str, Any], None]] = []

        if config_file is None:
            config_file = Path("config/default.toml")
        if env_file is None:
            env_file = Path(".env")

        self.config_file = config_file
        self.env_file = env_file

        logger.info("config_manager_initialized",
                   config_file=str(config_file),
                   env_file=str(env_file))

    def _read_toml(self) -> Optional[dict[str, Any]]:
        if not self.config_file.exists():
            return None
        with open(self.config_file, "rb") as f:
            return self._flatten_toml(tomllib.load(f))

    def load_static_config(self) -> dict[str, Any]:
        """Load static configuration from TOML and environment variables.

        Precedence: code defaults < TOML file < environment variables

        Returns:
            Dictionary of static configuration key-value pairs

        Raises:
            ValueError: If configuration validation fails

        Note:
            If config file doesn't exist, defaults are used with a warning.
        """
        logger.info("loading_static_config", config_file=str(self.config_file))

        if self.env_file.exists():
            load_dotenv(self.env_file)
            logger.info("env_file_loaded", env_file=str(self.env_file))

        # Step 1: Start with defaults for static keys
        static_keys = get_static_keys()
        defaults = get_default_values()
        config = {key: defaults[key] for key in static_keys}

        # Step 2: Load from TOML file
        flattened = self._read_toml()
        if flattened is not None:
            for key in static_keys:
                if key in flattened:
                    config[key] = flattened[key]
            logger.info("toml_config_loaded", keys_count=len(flattened))
        else:
            logger.warning("config_file_not_found",
                          config_file=str(self.config_file),
                          using_defaults=True)

        # Step 3: Apply environment variable overrides
        # Example: HOMELAB_EVENTLOG_PATH overrides eventlog.path
        self._apply_env_overrides(config, static_keys)

        # Step 4: Validate all static config values
        for key, value in config.items():
            is_valid, error_msg = validate_config_value(key, value)
            if not is_valid:
                logger.error("static_config_validation_failed", key=key, error=error_msg)
                raise ValueError(f"Static config validation failed for '{key}': {error_msg}")

        self.static_config = config
        logger.info("static_config_loaded", keys_count=len(config))
        return config

    def load_dynamic_config_defaults(self) -> dict[str, Any]:
        """Load dynamic configuration from TOML (seed values) and environment.

        Returns:
            Dictionary of dynamic configuration key-value pairs

        Raises:
            ValueError: If configuration validation fails
        """
        logger.info("loading_dynamic_config_defaults")

        dynamic_keys = get_dynamic_keys()
        defaults = get_default_values()
        config = {key: defaults[key] for key in dynamic_keys}

        flattened = self._read_toml()
        if flattened is not None:
            for key in dynamic_keys:
                if key in flattened:
                    config[key] = flattened[key]

        self._apply_env_overrides(config, dynamic_keys)

        for key, value in config.items():
            is_valid, error_msg = validate_config_value(key, value)
            if not is_valid:
                logger.error("dynamic_config_validation_failed", key=key, error=error_msg)
                raise ValueError(f"Dynamic config validation failed for '{key}': {error_msg}")

        self.dynamic_config = config
        logger.info("dynamic_config_defaults_loaded", keys_count=len(config))
        return config

    def _apply_env_overrides(self, config: dict[str, Any], keys: list[str]) -> None:
        for key in keys:
            env_key = ENV_PREFIX + key.replace(".", "_").upper()
            env_value = os.getenv(env_key)
            if env_value is None:
                continue
            config_key_def = get_config_key(key)
            try:
                config[key] = self._parse_env_value(env_value, config_key_def.value_type)
                logger.info("env_override_applied", key=key, env_key=env_key)
            except ValueError as e:
                logger.error("env_parse_error", key=key, env_key=env_key, error=str(e))
                raise ValueError(f"Failed to parse env var {env_key}: {e}")

    async def update_dynamic_config(self, key: str, value: Any) -> None:
        """Update a dynamic configuration value and notify subscribers.

        Args:
            key: Configuration key path
            value: New value

        Raises:
            KeyError: If key is not a dynamic config key
            ValueError: If value validation fails
        """
        config_key_def = get_config_key(key)

        if config_key_def.tier != "dynamic":
            raise KeyError(f"Cannot hot-update static config key '{key}' - restart required")

        is_valid, error_msg = validate_config_value(key, value)
        if not is_valid:
            raise ValueError(f"Config validation failed for '{key}': {error_msg}")

        old_value = self.dynamic_config.get(key)
        self.dynamic_config[key] = value

        logger.info("dynamic_config_updated",
                   key=key,
                   old_value=old_value,
                   new_value=value)

        await self._notify_subscribers(key, value)

    async def _notify_subscribers(self, key: str, value: Any) -> None:
        """Notify all subscribers of configuration update.

        Args:
            key: Configuration key that was updated
            value: New value
        """
        for subscriber in self._subscribers:
            try:
                # Call subscriber (can be sync or async)
                result = subscriber(key, value)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("subscriber_notification_failed",
                           key=key,
                           subscriber=getattr(subscriber, "__name__", repr(subscriber)),
                           error=str(e))

    def subscribe(self, callback: Callable[[str, Any], None]) -> None:
        """Subscribe to configuration update events.

        Args:
            callback: Function called when config is updated
                     Signature: (key: str, value: Any) -> None
        """
        self._subscribers.append(callback)
        logger.info("config_subscriber_added",
                   callback=getattr(callback, "__name__", repr(callback)))

    def get(self, key: str) -> Any:
        """Get configuration value (static or dynamic).

        Raises:
            KeyError: If key not found
        """
        config_key_def = get_config_key(key)

        if config_key_def.tier == "static":
            return self.static_config.get(key, config_key_def.default)
        else:
            return self.dynamic_config.get(key, config_key_def.default)

    def _flatten_toml(self, data: dict) -> dict[str, Any]:
        """Flatten nested TOML structure to dotted keys.

        Example: {"eventlog": {"path": "..."}} -> {"eventlog.path": "..."}
        """
        result = {}

        def _flatten(d: dict, prefix: str = ""):
            for key, value in d.items():
                full_key = f"{prefix}.{key}" if prefix else key
                if isinstance(value, dict):
                    _flatten(value, full_key)
                else:
                    result[full_key] = value

        _flatten(data)
        return result

    def _parse_env_value(self, value: str, target_type: type) -> Any:
        """Parse environment variable string to target type.

        Raises:
            ValueError: If parsing fails
        """
        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")
        elif target_type == int:
            return int(value)
        elif target_type == float:
            return float(value)
        elif target_type == str:
            return value
        else:
            raise ValueError(f"Unsupported type for env parsing: {target_type}")


def resolve_event_log_path(config: ConfigManager) -> Path:
    """Choose where the event log lives.

    ``<external_volume>/homelab/events.jsonl`` when an external volume is
    configured and mounted, otherwise ``eventlog.path`` (``~`` expanded).
    """
    volume = config.get("eventlog.external_volume")
    if volume:
        mount = Path(volume).expanduser()
        if mount.is_dir():
            return mount / "homelab" / "events.jsonl"
        logger.warning("external_volume_not_mounted", volume=str(mount))
    return Path(config.get("eventlog.path")).expanduser()


# Global instance (initialized by initialize_config)
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get global config manager instance.

    Raises:
        RuntimeError: If config manager not initialized
    """
    if _config_manager is None:
        raise RuntimeError("ConfigManager not initialized. Call initialize_config() first.")
    return _config_manager


def initialize_config(config_file: Optional[Path] = None,
                     env_file: Optional[Path] = None) -> ConfigManager:
    """Initialize global configuration manager.

    Args:
        config_file: Path to TOML config file
        env_file: Path to .env file

    Returns:
        Initialized ConfigManager instance
    """
    global _config_manager
    _config_manager = ConfigManager(config_file, env_file)
    _config_manager.load_static_config()
    _config_manager.load_dynamic_config_defaults()
    return _config_manager
