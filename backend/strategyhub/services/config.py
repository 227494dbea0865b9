"""Configuration management and validation service."""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..models.schema import ConfigValidationError, validate_against_schema

logger = logging.getLogger(__name__)


class ConfigValidationException(Exception):
    """Raised when config validation fails."""

    def __init__(self, errors: List[ConfigValidationError]):
        self.errors = errors
        messages = [f"{e.path}: {e.message}" for e in errors]
        super().__init__("Configuration validation failed:\n" + "\n".join(messages))


# Configuration schema definition
CONFIG_SCHEMA = {
    "server": {
        "type": "dict",
        "required": False,
        "properties": {
            "host": {"type": "str", "required": False},
            "port": {"type": "int", "required": False, "min": 1, "max": 65535},
            "debug": {"type": "bool", "required": False},
        }
    },
    "trading": {
        "type": "dict",
        "required": False,
        "properties": {
            "poll_interval_seconds": {"type": "float", "required": False, "exclusive_min": 0},
            "error_backoff_seconds": {"type": "float", "required": False, "min": 0},
            "swap_timeout_seconds": {"type": "float", "required": False, "exclusive_min": 0},
            "stop_timeout_seconds": {"type": "float", "required": False, "exclusive_min": 0},
            "approval_timeout_seconds": {"type": "float", "required": False, "exclusive_min": 0},
            "max_active_sessions": {"type": "int", "required": False, "min": 0},
            "max_consecutive_failures": {"type": "int", "required": False, "min": 0},
            "serialize_executions": {"type": "bool", "required": False},
        }
    },
    "executor": {
        "type": "dict",
        "required": False,
        "properties": {
            "mode": {"type": "str", "required": False, "options": ["simulated", "gateway"]},
            "gateway_url": {"type": "str", "required": False},
            "signer_address": {"type": "str", "required": False},
            "retry_count": {"type": "int", "required": False, "min": 1, "max": 10},
            "retry_delay_seconds": {"type": "float", "required": False, "min": 0},
        }
    },
    "ledger": {
        "type": "dict",
        "required": False,
        "properties": {
            "log_dir": {"type": "str", "required": False},
            "restore_on_startup": {"type": "bool", "required": False},
        }
    },
    "oracle": {
        "type": "dict",
        "required": False,
        "properties": {
            "enabled": {"type": "bool", "required": False},
            "update_interval_seconds": {"type": "float", "required": False, "exclusive_min": 0},
            "transmission_interval_seconds": {"type": "float", "required": False, "exclusive_min": 0},
        }
    },
    "logging": {
        "type": "dict",
        "required": False,
        "properties": {
            "level": {"type": "str", "required": False, "options": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
            "format": {"type": "str", "required": False},
        }
    },
}

DEFAULTS: Dict[str, Any] = {
    "trading.poll_interval_seconds": 30,
    "trading.error_backoff_seconds": 60,
    "trading.swap_timeout_seconds": 30,
    "trading.stop_timeout_seconds": 45,
    "trading.approval_timeout_seconds": 120,
    "trading.max_active_sessions": 0,
    "trading.max_consecutive_failures": 0,
    "trading.serialize_executions": False,
    "executor.mode": "simulated",
    "executor.signer_address": "client|strategyhub-signer",
    "executor.retry_count": 3,
    "executor.retry_delay_seconds": 1.0,
    "ledger.log_dir": str(Path(__file__).parent.parent.parent / "logs" / "multi-user"),
    "ledger.restore_on_startup": False,
    "oracle.enabled": True,
    "oracle.update_interval_seconds": 30,
    "oracle.transmission_interval_seconds": 7200,
    "logging.level": "INFO",
    "logging.format": "%(asctime)s %(levelname)s [%(name)s] %(message)s",
}


def validate_timeouts(config: Dict[str, Any]) -> List[ConfigValidationError]:
    """Check that a stop outlasts an in-flight swap.

    Stopping a session waits for a running swap to settle, so the stop
    timeout must be longer than the swap timeout.
    """
    trading = config.get("trading") or {}
    swap_timeout = trading.get("swap_timeout_seconds", DEFAULTS["trading.swap_timeout_seconds"])
    stop_timeout = trading.get("stop_timeout_seconds", DEFAULTS["trading.stop_timeout_seconds"])
    if stop_timeout <= swap_timeout:
        return [ConfigValidationError(
            path="trading.stop_timeout_seconds",
            message=f"Value {stop_timeout} must be greater than swap_timeout_seconds ({swap_timeout})"
        )]
    return []


class ConfigService:
    """Service for loading and validating configuration."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize config service.

        Args:
            config_path: Path to config file. If None, uses STRATEGYHUB_CONFIG
                or the default location.
        """
        if config_path is None:
            config_path = os.environ.get("STRATEGYHUB_CONFIG")
        if config_path is None:
            # Default config path relative to backend directory
            backend_dir = Path(__file__).parent.parent.parent
            config_path = str(backend_dir / "config.yaml")

        self.config_path = config_path
        self._config: Dict[str, Any] = {}

    def load_and_validate(self) -> Dict[str, Any]:
        """Load and validate the configuration file.

        Returns:
            Validated configuration dictionary.

        Raises:
            ConfigValidationException: If validation fails.
        """
        errors: List[ConfigValidationError] = []

        if not os.path.exists(self.config_path):
            logger.warning(f"Config file not found at {self.config_path}, using defaults")
            self._config = {}
            return self._config

        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            errors.append(ConfigValidationError(
                path="",
                message=f"Invalid YAML syntax: {str(e)}"
            ))
            raise ConfigValidationException(errors)

        if config is None:
            config = {}

        if not isinstance(config, dict):
            errors.append(ConfigValidationError(
                path="",
                message=f"Config must be a dictionary, got {type(config).__name__}"
            ))
            raise ConfigValidationException(errors)

        errors.extend(validate_against_schema(config, CONFIG_SCHEMA))
        if not errors:
            errors.extend(validate_timeouts(config))

        if errors:
            raise ConfigValidationException(errors)

        self._config = config
        logger.info(f"Configuration loaded and validated from {self.config_path}")
        return config

    def load_dict(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and install an in-memory configuration."""
        errors = validate_against_schema(config, CONFIG_SCHEMA)
        if not errors:
            errors = validate_timeouts(config)
        if errors:
            raise ConfigValidationException(errors)
        self._config = config
        return config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Falls back to the built-in default for the key when neither the
        file nor the caller supplies one.

        Args:
            key: Dot-notation key (e.g., "trading.poll_interval_seconds")
            default: Default value if not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default if default is not None else DEFAULTS.get(key)

        return value


def configure_logging(config: ConfigService) -> None:
    """Apply the logging section to the root logger."""
    logging.basicConfig(
        level=getattr(logging, config.get("logging.level"), logging.INFO),
        format=config.get("logging.format"),
    )


# Global config service instance
config_service = ConfigService()
