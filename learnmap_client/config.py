"""
Configuration management for the LearnMap client.

This module handles client configuration including the backend URL, the
login surface and credential storage, with support for configuration files
and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser, Error as ConfigParserError

from learnmap_shared.exceptions import ConfigurationError, ErrorCode
from learnmap_shared.logging_config import LogFormat, LogLevel
from learnmap_shared.models import StorageKind

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_TEMPLATE = """# LearnMap client configuration
# Configuration file: {config_path}

[server]
# Backend base URL
url = http://localhost:8000

# Request timeout in seconds
timeout = 30

# Credential refresh endpoint
refresh_path = /api/auth/refresh

[auth]
# Where users are sent when their session cannot be renewed
login_url = http://localhost:8000/login

# Credential storage: auto, keyring, file or memory
storage = auto

[logging]
# Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
level = INFO

# Log format: standard, json or detailed
format = standard
"""


class ClientConfiguration:
    """
    Configuration manager for the LearnMap client.

    Supports configuration from:
    1. Overrides, usually from command line arguments (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    ENV_MAPPINGS = {
        'LEARNMAP_API_BASE_URL': ('server', 'url'),
        'LEARNMAP_TIMEOUT': ('server', 'timeout'),
        'LEARNMAP_LOGIN_URL': ('auth', 'login_url'),
        'LEARNMAP_TOKEN_STORAGE': ('auth', 'storage'),
        'LEARNMAP_TOKEN_FILE': ('auth', 'token_file'),
        'LEARNMAP_LOG_LEVEL': ('logging', 'level'),
        'LEARNMAP_LOG_FILE': ('logging', 'file'),
    }

    def __init__(self, config_file: Optional[str] = None, create_default: bool = True):
        self._config_file = config_file or self._get_default_config_path(create_default)
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _get_default_config_path(self, create_default: bool) -> str:
        """Get default configuration file path, creating a template if missing."""
        config_path = Path.home() / '.learnmap' / 'client.conf'

        if create_default and not config_path.exists():
            try:
                config_path.parent.mkdir(parents=True, exist_ok=True)
                config_path.write_text(DEFAULT_CONFIG_TEMPLATE.format(config_path=config_path))
                logger.info(f"Created default configuration file: {config_path}")
            except OSError as e:
                logger.warning(f"Failed to create default configuration: {e}")

        return str(config_path)

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            self._load_from_file()
            logger.debug(f"Configuration loaded from: {self._config_file}")
        else:
            logger.debug(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        try:
            config.read(self._config_file)
        except ConfigParserError as e:
            raise ConfigurationError(
                f"Invalid configuration file {self._config_file}: {e}",
                error_code=ErrorCode.CONFIG_INVALID_FORMAT,
                cause=e
            )

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Try to parse as JSON for numbers and booleans
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        for env_var, (section, key) in self.ENV_MAPPINGS.items():
            value = os.environ.get(env_var)
            if value is None:
                continue

            section_data = self._config_data.setdefault(section, {})
            if value.lower() in ('true', 'false'):
                section_data[key] = value.lower() == 'true'
            elif value.isdigit():
                section_data[key] = int(value)
            else:
                section_data[key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'server': {
                'url': 'http://localhost:8000',
                'timeout': 30.0,
                'refresh_path': '/api/auth/refresh'
            },
            'auth': {
                'login_url': None,
                'service_name': 'learnmap-client',
                'storage': StorageKind.AUTO.value,
                'token_file': None
            },
            'logging': {
                'level': LogLevel.INFO.value,
                'format': LogFormat.STANDARD.value,
                'file': None,
                'audit_file': None
            }
        }

        for section, section_defaults in defaults.items():
            section_data = self._config_data.setdefault(section, {})
            for key, default_value in section_defaults.items():
                section_data.setdefault(key, default_value)

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if key in self._overrides:
            return self._overrides[key]

        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        value = self._config_data.get(section, {}).get(config_key)
        return default if value is None else value

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key in format 'section.key'
            value: Override value
        """
        self._overrides[key] = value

    def get_config_file_path(self) -> str:
        return self._config_file

    def reload_configuration(self) -> None:
        """Reload configuration from file and environment."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    # Typed accessors

    def get_server_url(self) -> str:
        url = self.get_config('server.url')
        if not isinstance(url, str) or not url.startswith(('http://', 'https://')):
            raise ConfigurationError(f"Invalid server URL: {url!r}", config_key='server.url')
        return url.rstrip('/')

    def get_server_timeout(self) -> float:
        """Get server request timeout in seconds."""
        timeout = self.get_config('server.timeout', 30.0)
        try:
            timeout = float(timeout)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid timeout: {timeout!r}", config_key='server.timeout')
        if timeout <= 0:
            raise ConfigurationError(f"Timeout must be positive, got {timeout}", config_key='server.timeout')
        return timeout

    def get_refresh_path(self) -> str:
        return self.get_config('server.refresh_path', '/api/auth/refresh')

    def get_login_url(self) -> str:
        """Get login surface URL; defaults to /login on the backend."""
        return self.get_config('auth.login_url') or f"{self.get_server_url()}/login"

    def get_storage_kind(self) -> StorageKind:
        value = self.get_config('auth.storage', StorageKind.AUTO.value)
        try:
            return StorageKind(str(value).lower())
        except ValueError:
            raise ConfigurationError(f"Unknown credential storage: {value!r}", config_key='auth.storage')

    def get_service_name(self) -> str:
        return self.get_config('auth.service_name', 'learnmap-client')

    def get_token_file(self) -> Optional[str]:
        return self.get_config('auth.token_file')

    def get_log_level(self) -> LogLevel:
        value = self.get_config('logging.level', LogLevel.INFO.value)
        try:
            return LogLevel(str(value).upper())
        except ValueError:
            raise ConfigurationError(f"Unknown log level: {value!r}", config_key='logging.level')

    def get_log_format(self) -> LogFormat:
        value = self.get_config('logging.format', LogFormat.STANDARD.value)
        try:
            return LogFormat(str(value).lower())
        except ValueError:
            raise ConfigurationError(f"Unknown log format: {value!r}", config_key='logging.format')

    def get_log_file(self) -> Optional[str]:
        return self.get_config('logging.file')

    def get_audit_file(self) -> Optional[str]:
        return self.get_config('logging.audit_file')
