"""Configuration Registry - Defines all configuration keys with tier classification.

This module provides the ConfigKey dataclass and REGISTRY dictionary that defines
all configuration options available in homelab-monitor.

Two-Tier System:
- Static Config (tier="static"): Requires restart to apply changes
  Examples: event log path, external volume, scanned network range
- Dynamic Config (tier="dynamic"): Can be hot-reloaded without restart
  Examples: detection thresholds, timeouts, retention periods, log level
"""

from dataclasses import dataclass
from typing import Any, Callable, Literal, Optional


@dataclass
class ConfigKey:
    """Defines a single configuration key with validation and tier classification.

    Attributes:
        tier: "static" (restart required) or "dynamic" (hot-reloadable)
        value_type: Expected Python type (str, int, float, bool, list, dict)
        default: Default value if not specified in config files
        min_value: Minimum value for numeric types (optional)
        max_value: Maximum value for numeric types (optional)
        restart_required: Auto-derived from tier (True for static, False for dynamic)
        validator: Custom validation function (optional)
    """
    tier: Literal["static", "dynamic"]
    value_type: type
    default: Any
    min_value: Optional[Any] = None
    max_value: Optional[Any] = None
    restart_required: bool = False
    validator: Optional[Callable[[Any], bool]] = None

    def __post_init__(self):
        """Auto-derive restart_required from tier."""
        self.restart_required = (self.tier == "static")


# Configuration Registry
# =======================
# All configuration keys must be registered here with their tier classification.

REGISTRY: dict[str, ConfigKey] = {
    # ===== EVENT LOG (Static location, Dynamic retention) =====
    "eventlog.path": ConfigKey(
        tier="static",
        value_type=str,
        default="~/.homelab/events.jsonl",
        validator=lambda v: v.endswith(".jsonl"),
    ),
    "eventlog.external_volume": ConfigKey(
        tier="static",
        value_type=str,
        default="",  # e.g. "/Volumes/T9"; empty = home directory only
    ),
    "eventlog.retention_days": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=7,
        min_value=1,
        max_value=365,
    ),

    # ===== LOGGING (Dynamic verbosity) =====
    "logging.level": ConfigKey(
        tier="dynamic",
        value_type=str,
        default="INFO",
        validator=lambda v: v in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
    ),

    # ===== COLLECTOR (Static scan target, Dynamic timing) =====
    "collector.network_range": ConfigKey(
        tier="static",
        value_type=str,
        default="192.168.1.0/24",
        validator=lambda v: "/" in v,
    ),
    "collector.interval_seconds": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=300,
        min_value=30,
        max_value=3600,
    ),
    "collector.probe_timeout_seconds": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=10,
        min_value=1,
        max_value=120,
    ),
    "collector.quick_scan": ConfigKey(
        tier="dynamic",
        value_type=bool,
        default=True,
    ),
    "collector.power_lookback_minutes": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=10,
        min_value=1,
        max_value=1440,
    ),

    # ===== ANOMALY DETECTOR (Dynamic - Threshold tuning) =====
    "detector.trailing_window": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=6,
        min_value=2,
        max_value=100,
    ),
    "detector.spike_multiplier": ConfigKey(
        tier="dynamic",
        value_type=float,
        default=3.0,
        min_value=1.0,
        max_value=100.0,
    ),
    "detector.traffic_min_samples": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=2,
        min_value=1,
        max_value=100,
    ),
    "detector.device_count_tolerance": ConfigKey(
        tier="dynamic",
        value_type=float,
        default=0.30,
        min_value=0.01,
        max_value=10.0,
    ),
    "detector.device_count_min_samples": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=3,
        min_value=1,
        max_value=100,
    ),
    "detector.hysteresis_window": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=4,
        min_value=1,
        max_value=50,
    ),
    "detector.hysteresis_min_sightings": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=3,
        min_value=1,
        max_value=50,
    ),

    # ===== HISTORY NARRATOR (Dynamic - Output tuning) =====
    "narrator.gap_threshold_minutes": ConfigKey(
        tier="dynamic",
        value_type=float,
        default=10.0,
        min_value=1.0,
        max_value=1440.0,
    ),
    "narrator.power_event_limit": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=20,
        min_value=1,
        max_value=200,
    ),
    "narrator.security_top_alerts": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=3,
        min_value=1,
        max_value=20,
    ),
    "narrator.prose_item_limit": ConfigKey(
        tier="dynamic",
        value_type=int,
        default=15,
        min_value=10,
        max_value=20,
    ),
}


def get_config_key(key: str) -> ConfigKey:
    """Get configuration key definition from registry.

    Args:
        key: Configuration key path (e.g., "eventlog.path")

    Returns:
        ConfigKey definition

    Raises:
        KeyError: If key not found in registry
    """
    if key not in REGISTRY:
        raise KeyError(f"Configuration key '{key}' not found in registry")
    return REGISTRY[key]


def validate_config_value(key: str, value: Any) -> tuple[bool, Optional[str]]:
    """Validate a configuration value against its registered definition.

    Args:
        key: Configuration key path
        value: Value to validate

    Returns:
        Tuple of (is_valid, error_message)
        error_message is None if valid
    """
    try:
        config_key = get_config_key(key)
    except KeyError as e:
        return False, str(e)

    # Type validation (TOML writes whole numbers as int, accept them for floats)
    is_int_for_float = (
        config_key.value_type is float
        and isinstance(value, int)
        and not isinstance(value, bool)
    )
    if not isinstance(value, config_key.value_type) and not is_int_for_float:
        return False, f"Expected type {config_key.value_type.__name__}, got {type(value).__name__}"

    # Range validation for numeric types
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if config_key.min_value is not None and value < config_key.min_value:
            return False, f"Value {value} below minimum {config_key.min_value}"
        if config_key.max_value is not None and value > config_key.max_value:
            return False, f"Value {value} above maximum {config_key.max_value}"

    # Custom validator
    if config_key.validator is not None:
        try:
            if not config_key.validator(value):
                return False, f"Custom validation failed for value: {value}"
        except Exception as e:
            return False, f"Validator error: {str(e)}"

    return True, None


def get_default_values() -> dict[str, Any]:
    """Get default values for all configuration keys.

    Returns:
        Dictionary of key -> default_value
    """
    return {key: config_key.default for key, config_key in REGISTRY.items()}


def get_static_keys() -> list[str]:
    """Get list of all static configuration keys (restart required)."""
    return [key for key, config_key in REGISTRY.items() if config_key.tier == "static"]


def get_dynamic_keys() -> list[str]:
    """Get list of all dynamic configuration keys (hot-reloadable)."""
    return [key for key, config_key in REGISTRY.items() if config_key.tier == "dynamic"]
