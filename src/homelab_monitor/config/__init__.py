# Configuration - two-tier registry and TOML/env manager

from .manager import ConfigManager, get_config_manager, initialize_config, resolve_event_log_path
from .registry import REGISTRY, ConfigKey, validate_config_value

__all__ = [
    "ConfigManager",
    "get_config_manager",
    "initialize_config",
    "resolve_event_log_path",
    "REGISTRY",
    "ConfigKey",
    "validate_config_value",
]
