"""
Configuration Management for the Loyalty Dashboard client.

This module handles client configuration including the API URL, session
storage backend, refresh timeout and logging, with support for configuration
files and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List
from configparser import ConfigParser

from loyalty_shared.exceptions import ConfigurationError, ErrorCode
from loyalty_shared.interfaces import IConfigurationManager
from loyalty_shared.logging_config import AuditLogger
from loyalty_client.api_client import DEFAULT_PUBLIC_PATHS

logger = logging.getLogger(__name__)

SESSION_BACKENDS = ('keyring', 'file', 'memory')

DEFAULT_CONFIG_TEMPLATE = """# Loyalty Dashboard Client Configuration
# Configuration file: {config_path}

[api]
# Dashboard API base URL
base_url = http://localhost:8000

# Request timeout in seconds
timeout = 30

# Upper bound for a token refresh in seconds
refresh_timeout = 15

[session]
# Where the session is kept: keyring, file or memory
backend = file

# Keyring service name
service_name = loyalty-dashboard

# Encrypted session file (defaults to $XDG_CONFIG_HOME/loyalty-dashboard/session.enc)
# storage_path =

[auth]
# Login entry point reported when the session cannot be recovered
login_path = /login

[logging]
# Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
level = INFO

# Log format: standard, json or detailed
format = standard

# Rotate log files at this size in bytes, keeping backup_count old files
max_size = 10485760
backup_count = 3
"""


class ClientConfiguration(IConfigurationManager):
    """
    Configuration manager for the Loyalty Dashboard client.

    Supports configuration from:
    1. Command line arguments (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}
        self.audit = AuditLogger()

        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path, creating it from the template if missing."""
        config_dir = Path.home() / '.loyalty-dashboard'
        config_dir.mkdir(parents=True, exist_ok=True)
        user_config_path = str(config_dir / 'client.conf')

        if not os.path.exists(user_config_path):
            self._create_default_config(user_config_path)

        return user_config_path

    def _create_default_config(self, config_path: str) -> None:
        """Create a commented default configuration file."""
        try:
            with open(config_path, 'w') as f:
                f.write(DEFAULT_CONFIG_TEMPLATE.format(config_path=config_path))
            logger.info(f"Created default configuration file: {config_path}")
        except OSError as e:
            logger.error(f"Failed to create default configuration: {e}")
            raise

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            try:
                self._load_from_file()
                logger.info(f"Configuration loaded from: {self._config_file}")
            except Exception as e:
                logger.warning(f"Failed to load configuration file: {e}")
        else:
            logger.info(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        config.read(self._config_file)

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # JSON for lists and numbers, plain string otherwise
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        env_mappings = {
            'LOYALTY_API_URL': ('api', 'base_url'),
            'LOYALTY_API_TIMEOUT': ('api', 'timeout'),
            'LOYALTY_REFRESH_TIMEOUT': ('api', 'refresh_timeout'),
            'LOYALTY_SESSION_BACKEND': ('session', 'backend'),
            'LOYALTY_SESSION_PATH': ('session', 'storage_path'),
            'LOYALTY_LOGIN_PATH': ('auth', 'login_path'),
            'LOYALTY_LOG_LEVEL': ('logging', 'level'),
            'LOYALTY_LOG_FILE': ('logging', 'file'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                if section not in self._config_data:
                    self._config_data[section] = {}

                if value.isdigit():
                    self._config_data[section][key] = int(value)
                else:
                    self._config_data[section][key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'api': {
                'base_url': 'http://localhost:8000',
                'timeout': 30.0,
                'refresh_timeout': 15.0
            },
            'session': {
                'backend': 'file',
                'service_name': 'loyalty-dashboard',
                'storage_path': None
            },
            'auth': {
                'login_path': '/login',
                'public_paths': list(DEFAULT_PUBLIC_PATHS)
            },
            'logging': {
                'level': 'INFO',
                'format': 'standard',
                'file': None,
                'audit_file': None,
                'max_size': 10485760,  # 10MB
                'backup_count': 3
            }
        }

        for section, section_defaults in defaults.items():
            if section not in self._config_data:
                self._config_data[section] = {}

            for key, default_value in section_defaults.items():
                if key not in self._config_data[section]:
                    self._config_data[section][key] = default_value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def set_config(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            value: Value to set
        """
        if '.' not in key:
            self._config_data[key] = value
            return

        section, config_key = key.split('.', 1)
        self._config_data.setdefault(section, {})[config_key] = value

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key in format 'section.key'
            value: Override value
        """
        self._overrides[key] = value

    def _get(self, key: str, default: Any = None) -> Any:
        if self._overrides.get(key) is not None:
            return self._overrides[key]
        return self.get_config(key, default)

    def _get_positive_number(self, key: str, default: float) -> float:
        value = self._get(key, default)
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Invalid value for {key}: {value!r} is not a number",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key=key
            )
        if number <= 0:
            raise ConfigurationError(
                f"Invalid value for {key}: must be greater than zero",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key=key
            )
        return number

    def save_configuration(self) -> None:
        """Save current configuration to file."""
        config = ConfigParser()

        for section_name, section_data in self._config_data.items():
            if not isinstance(section_data, dict):
                continue
            config.add_section(section_name)
            for key, value in section_data.items():
                if value is None:
                    continue
                if isinstance(value, (dict, list)):
                    config.set(section_name, key, json.dumps(value))
                else:
                    config.set(section_name, key, str(value))

        try:
            config_path = Path(self._config_file)
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._config_file, 'w') as f:
                config.write(f)
        except OSError as e:
            logger.error(f"Failed to save configuration: {e}")
            self.audit.log_configuration_change(self._config_file, success=False, failure_reason=str(e))
            raise

        logger.info(f"Configuration saved to: {self._config_file}")
        self.audit.log_configuration_change(self._config_file)

    def get_config_file_path(self) -> str:
        """Get configuration file path."""
        return self._config_file

    def reload_configuration(self) -> None:
        """Reload configuration from file and environment."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    # Convenience methods for common configuration values

    def get_api_url(self) -> str:
        """Get dashboard API base URL."""
        return str(self._get('api.base_url')).rstrip('/')

    def get_timeout(self) -> float:
        """Get request timeout in seconds."""
        return self._get_positive_number('api.timeout', 30.0)

    def get_refresh_timeout(self) -> float:
        """Get token refresh timeout in seconds."""
        return self._get_positive_number('api.refresh_timeout', 15.0)

    def get_session_backend(self) -> str:
        """Get session storage backend."""
        backend = str(self._get('session.backend', 'file')).lower()
        if backend not in SESSION_BACKENDS:
            raise ConfigurationError(
                f"Unknown session backend: {backend} (expected one of {', '.join(SESSION_BACKENDS)})",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key='session.backend'
            )
        return backend

    def get_session_service_name(self) -> str:
        """Get keyring service name."""
        return self._get('session.service_name', 'loyalty-dashboard')

    def get_session_storage_path(self) -> Optional[str]:
        """Get encrypted session file path, None for the default location."""
        return self._get('session.storage_path') or None

    def get_login_path(self) -> str:
        """Get login entry point."""
        return self._get('auth.login_path', '/login')

    def get_public_paths(self) -> List[str]:
        """Get path prefixes sent without session handling."""
        paths = self._get('auth.public_paths', list(DEFAULT_PUBLIC_PATHS))
        if isinstance(paths, str):
            paths = [path.strip() for path in paths.split(',') if path.strip()]
        if not isinstance(paths, list):
            raise ConfigurationError(
                "auth.public_paths must be a list of path prefixes",
                error_code=ErrorCode.CONFIG_INVALID_FORMAT,
                config_key='auth.public_paths'
            )
        return paths

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self._get('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        """Get logging format."""
        return str(self._get('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        """Get log file path."""
        return self._get('logging.file') or None

    def get_audit_log_file(self) -> Optional[str]:
        """Get audit log file path."""
        return self._get('logging.audit_file') or None

    def get_log_max_size(self) -> int:
        """Get log file size in bytes that triggers rotation."""
        return int(self._get_positive_number('logging.max_size', 10485760))

    def get_log_backup_count(self) -> int:
        """Get number of rotated log files to keep."""
        return int(self._get_positive_number('logging.backup_count', 3))
