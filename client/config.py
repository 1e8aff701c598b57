"""
Configuration Management for the GPT Toolkit Client.

This module handles client configuration including the backend URL, request
timeout, credential storage location and logging settings, with support for
configuration files and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser, Error as ConfigParserError
from urllib.parse import urlparse

from shared.exceptions import ConfigurationError, ErrorCode
from shared.interfaces import IConfigurationManager, CredentialKey

logger = logging.getLogger(__name__)

APP_DIR_NAME = 'gpt-toolkit'


def get_user_config_dir() -> Path:
    """Get the per-user configuration directory (XDG aware)."""
    xdg_config = os.environ.get('XDG_CONFIG_HOME')
    if xdg_config:
        return Path(xdg_config) / APP_DIR_NAME
    return Path.home() / '.config' / APP_DIR_NAME


class ClientConfiguration(IConfigurationManager):
    """
    Configuration manager for the GPT Toolkit client.

    Supports configuration from:
    1. Overrides, e.g. command line arguments (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    ENV_MAPPINGS = {
        'GPT_TOOLKIT_SERVER_URL': ('server', 'url'),
        'GPT_TOOLKIT_TIMEOUT': ('server', 'timeout'),
        'GPT_TOOLKIT_KEYRING_SERVICE': ('credentials', 'service'),
        'GPT_TOOLKIT_CREDENTIALS_FILE': ('credentials', 'file'),
        'GPT_TOOLKIT_USE_KEYRING': ('credentials', 'use_keyring'),
        'GPT_TOOLKIT_LOG_LEVEL': ('logging', 'level'),
        'GPT_TOOLKIT_LOG_FILE': ('logging', 'file'),
    }

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path, creating a default file on first run."""
        config_dir = get_user_config_dir()
        config_path = config_dir / 'client.conf'

        if not config_path.exists():
            try:
                config_dir.mkdir(parents=True, exist_ok=True)
                self._create_default_config(str(config_path))
            except OSError as e:
                logger.warning(f"Could not create default configuration: {e}")

        return str(config_path)

    def _create_default_config(self, config_path: str) -> None:
        """Create a minimal default configuration file."""
        default_config = """# GPT Toolkit Client Configuration
# Configuration file: {config_path}

[server]
# Backend base URL (required)
url = https://api.example.com

# Request timeout in seconds
timeout = 30

[credentials]
# Keyring service and account the refresh token is stored under
service = GPTToolkitMacApp
# account = refreshToken

# Use the system keyring when available
use_keyring = true

# Encrypted file used when no keyring is available
# file = {credentials_file}

[logging]
# Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
level = INFO

# Log format: standard, detailed, json
format = standard

# Optional log file, rotated at max_size bytes keeping backup_count files
# file = /path/to/client.log
# max_size = 10485760
# backup_count = 3
""".format(
            config_path=config_path,
            credentials_file=get_user_config_dir() / 'credentials.enc'
        )

        with open(config_path, 'w') as f:
            f.write(default_config)

        logger.info(f"Created default configuration file: {config_path}")

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            try:
                self._load_from_file()
                logger.info(f"Configuration loaded from: {self._config_file}")
            except (ConfigParserError, OSError) as e:
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
                # JSON literals cover numbers, booleans and lists
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
                'url': 'https://api.example.com',
                'timeout': 30.0,
            },
            'credentials': {
                'service': 'GPTToolkitMacApp',
                'account': 'refreshToken',
                'use_keyring': True,
                'file': str(get_user_config_dir() / 'credentials.enc'),
            },
            'logging': {
                'level': 'INFO',
                'format': 'standard',
                'file': None,
                'max_size': 10485760,  # 10MB
                'backup_count': 3
            },
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

    def get_config_file_path(self) -> str:
        """Get configuration file path."""
        return self._config_file

    def reload_configuration(self) -> None:
        """Reload configuration from file and environment."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    def validate(self) -> None:
        """
        Check the values the session layer depends on.

        Raises:
            ConfigurationError: If a value is missing or malformed
        """
        url = self.get_server_url()
        parsed = urlparse(url or '')
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ConfigurationError(
                f"Invalid server URL: {url!r}",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key='server.url'
            )

        try:
            timeout = float(self.get_config('server.timeout'))
        except (TypeError, ValueError):
            timeout = 0
        if timeout <= 0:
            raise ConfigurationError(
                f"Invalid server timeout: {self.get_config('server.timeout')!r}",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key='server.timeout'
            )

        if not self.get_config('credentials.service') or not self.get_config('credentials.account'):
            raise ConfigurationError(
                "Credential service and account must not be empty",
                error_code=ErrorCode.CONFIG_INVALID_VALUE,
                config_key='credentials.service'
            )

    # Convenience methods for common configuration values

    def get_server_url(self) -> str:
        """Get backend base URL."""
        return self.get_config('server.url')

    def get_server_timeout(self) -> float:
        """Get request timeout in seconds."""
        return float(self.get_config('server.timeout', 30.0))

    def get_credential_key(self) -> CredentialKey:
        """Get the (service, account) pair the refresh token is stored under."""
        return CredentialKey(
            service=self.get_config('credentials.service'),
            account=self.get_config('credentials.account'),
        )

    def get_credentials_file(self) -> str:
        """Get the encrypted fallback credential file path."""
        return self.get_config('credentials.file')

    def use_keyring(self) -> bool:
        return bool(self.get_config('credentials.use_keyring', True))

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.get_config('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        return str(self.get_config('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        """Get log file path."""
        return self.get_config('logging.file')
