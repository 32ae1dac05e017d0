"""
Configuration Loader - Loads and validates the portal configuration

Usage:
    from config.loader import get_config

    config = get_config()
    print(config.api_base_url)
    print(config.password_policy.lockout_threshold)

The file is config/portal.yaml unless PORTAL_CONFIG names another one.
String values may reference the environment as ${VAR} or ${VAR:-default}.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from jsonschema import ValidationError, validate

from rental_portal.utils.password_policy import PasswordPolicy

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).parent
DEFAULT_CONFIG_PATH = CONFIG_DIR / "portal.yaml"
SCHEMA_PATH = CONFIG_DIR / "schema.json"

_ENV_PATTERN = re.compile(r'\$\{([A-Z0-9_]+)(?::-([^}]*))?\}')


def substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in config values

    Supports: ${VAR_NAME} or ${VAR_NAME:-default_value}
    """
    if isinstance(obj, dict):
        return {k: substitute_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replacer(match):
            return os.getenv(match.group(1), match.group(2) or '')

        return _ENV_PATTERN.sub(replacer, obj)
    else:
        return obj


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class PortalConfig:
    """Load and validate the portal configuration from YAML"""

    def __init__(self, config_path: Optional[str] = None, schema_path: Optional[str] = None):
        """
        Args:
            config_path: YAML file (defaults to $PORTAL_CONFIG, then config/portal.yaml)
            schema_path: JSON schema (defaults to config/schema.json)
        """
        self.config_path = Path(config_path or os.getenv("PORTAL_CONFIG") or DEFAULT_CONFIG_PATH)
        self.schema_path = Path(schema_path) if schema_path else SCHEMA_PATH

        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        self.config = self._load_config()
        self._validate_config()

    def _load_config(self) -> Dict[str, Any]:
        with open(self.config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        return substitute_env_vars(config)

    def _validate_config(self):
        """Validate configuration against JSON schema"""
        if not self.schema_path.exists():
            logger.warning(f"Schema file not found: {self.schema_path}, skipping validation")
            return

        with open(self.schema_path, 'r') as f:
            schema = json.load(f)

        try:
            validate(instance=self.config, schema=schema)
        except ValidationError as e:
            raise ValueError(f"Configuration validation failed: {e.message}")

    def _section(self, name: str) -> Dict[str, Any]:
        return self.config.get(name) or {}

    # ==================== Remote API ====================

    @property
    def api_base_url(self) -> str:
        return self._section('api').get('base_url') or "http://localhost:3000"

    @property
    def api_timeout(self) -> Optional[float]:
        """Seconds, or None for no client-side timeout"""
        value = self._section('api').get('timeout')
        if value is None or value == '':
            return None
        return float(value)

    # ==================== Storage ====================

    @property
    def storage_backend(self) -> str:
        """'file' or 'memory'"""
        return self._section('storage').get('backend', 'file')

    @property
    def storage_path(self) -> str:
        return self._section('storage').get('path') or "data/portal_storage.json"

    # ==================== Security ====================

    @property
    def password_policy(self) -> PasswordPolicy:
        return PasswordPolicy.from_dict(self._section('security').get('policy'))

    @property
    def session_timeout_ms(self) -> int:
        return int(self._section('security').get('session_timeout_minutes', 30)) * 60 * 1000

    @property
    def warning_window_ms(self) -> int:
        return int(self._section('security').get('warning_window_minutes', 5)) * 60 * 1000

    @property
    def ticker_interval(self) -> float:
        return float(self._section('security').get('ticker_interval_seconds', 30))

    @property
    def debug_endpoint_enabled(self) -> bool:
        return _as_bool(self._section('security').get('debug_endpoint', False))

    # ==================== Logging ====================

    @property
    def log_level(self) -> str:
        return str(self._section('logging').get('level') or 'INFO').upper()

    @property
    def log_json(self) -> bool:
        return _as_bool(self._section('logging').get('json', False))

    @property
    def service_name(self) -> str:
        return self._section('logging').get('service_name') or 'rental-portal'

    # ==================== HTTP ====================

    @property
    def cors_origins(self) -> List[str]:
        origins = self._section('http').get('cors_origins') or []
        if isinstance(origins, str):
            origins = origins.split(',')
        return [origin.strip() for origin in origins if origin and origin.strip()]

    @property
    def cookie_secure(self) -> bool:
        return _as_bool(self._section('http').get('cookie_secure', False))

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.config)


_config: Optional[PortalConfig] = None


def get_config() -> PortalConfig:
    """Get the portal configuration (cached)"""
    global _config
    if _config is None:
        _config = PortalConfig()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() reloads it"""
    global _config
    _config = None
