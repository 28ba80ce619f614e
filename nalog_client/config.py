"""
Configuration Management for the tax service client.

This module handles the service URL, device descriptor, locale headers and
session settings with support for configuration files and environment variables.
"""

import os
import json
import logging
from datetime import tzinfo
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from nalog_shared.exceptions import ConfigurationError
from nalog_shared.logging_config import LogFormat, LogLevel, setup_logging

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 11_2_2) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/88.0.4324.192 Safari/537.36'
)


class ClientConfiguration:
    """
    Configuration for the tax service client.

    Supports configuration from:
    1. Explicit overrides (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    ENV_MAPPINGS = {
        'NALOG_API_URL': ('api', 'url'),
        'NALOG_TIMEOUT': ('api', 'timeout'),
        'NALOG_APP_VERSION': ('device', 'app_version'),
        'NALOG_USER_AGENT': ('device', 'user_agent'),
        'NALOG_TIMEZONE': ('locale', 'timezone'),
        'NALOG_LOG_LEVEL': ('logging', 'level'),
    }

    DEFAULTS: Dict[str, Dict[str, Any]] = {
        'api': {
            'url': 'https://lknpd.nalog.ru/api/v1',
            'timeout': None,
            'referrer': 'https://lknpd.nalog.ru/',
            'token_referrer': 'https://lknpd.nalog.ru/sales',
            'call_referrer': 'https://lknpd.nalog.ru/sales/create',
        },
        'device': {
            'source_type': 'WEB',
            'app_version': '1.0.0',
            'user_agent': DEFAULT_USER_AGENT,
        },
        'locale': {
            'accept_language': 'ru-RU,ru;q=0.9,en-US;q=0.8,en;q=0.7',
            'timezone': None,
        },
        'session': {
            'token_refresh_margin': 60,
        },
        'logging': {
            'level': 'INFO',
            'format': 'standard',
            'file': None,
        },
    }

    def __init__(self, config_file: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        self._config_file = config_file or self._get_default_config_path()
        self._config_data: Dict[str, Dict[str, Any]] = {}
        self._overrides: Dict[str, Any] = dict(overrides or {})

        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path: ~/.nalog/client.conf"""
        return str(Path.home() / '.nalog' / 'client.conf')

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            self._load_from_file()
            logger.info(f"Configuration loaded from: {self._config_file}")
        else:
            logger.debug(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        config.read(self._config_file, encoding='utf-8')

        for section_name in config.sections():
            section_data = self._config_data.setdefault(section_name, {})
            for key, value in config[section_name].items():
                # Numbers and booleans are written as JSON literals
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

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
        """Fill in default values for missing keys."""
        for section, section_defaults in self.DEFAULTS.items():
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

    def get_all_config(self) -> Dict[str, Any]:
        return {section: dict(values) for section, values in self._config_data.items()}

    # Convenience accessors

    def get_api_url(self) -> str:
        """Get service API base URL without trailing slash."""
        return str(self.get_config('api.url')).rstrip('/')

    def get_timeout(self) -> Optional[float]:
        """Get total request timeout in seconds, None for no timeout."""
        value = self.get_config('api.timeout')
        if value in (None, '', 'none', 'None'):
            return None
        try:
            timeout = float(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid timeout: {value!r}", config_key='api.timeout', cause=e)
        if timeout <= 0:
            raise ConfigurationError(f"Timeout must be positive: {timeout}", config_key='api.timeout')
        return timeout

    def get_referrer(self) -> str:
        return self.get_config('api.referrer')

    def get_token_referrer(self) -> str:
        return self.get_config('api.token_referrer')

    def get_call_referrer(self) -> str:
        return self.get_config('api.call_referrer')

    def get_source_type(self) -> str:
        return self.get_config('device.source_type')

    def get_app_version(self) -> str:
        return str(self.get_config('device.app_version'))

    def get_user_agent(self) -> str:
        return self.get_config('device.user_agent')

    def get_accept_language(self) -> str:
        return self.get_config('locale.accept_language')

    def get_timezone(self) -> Optional[tzinfo]:
        """
        Get timezone used to render operation timestamps.

        Returns:
            Configured zone, or None to use the system local timezone
        """
        name = self.get_config('locale.timezone')
        if not name:
            return None
        try:
            return ZoneInfo(str(name))
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown timezone: {name}", config_key='locale.timezone', cause=e)

    def get_token_refresh_margin(self) -> float:
        """Get how many seconds before expiry a token is considered stale."""
        value = self.get_config('session.token_refresh_margin', 60)
        try:
            margin = float(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid token refresh margin: {value!r}",
                config_key='session.token_refresh_margin',
                cause=e
            )
        if margin < 0:
            raise ConfigurationError(
                f"Token refresh margin cannot be negative: {margin}",
                config_key='session.token_refresh_margin'
            )
        return margin

    def get_log_level(self) -> LogLevel:
        value = str(self.get_config('logging.level', 'INFO')).upper()
        try:
            return LogLevel(value)
        except ValueError as e:
            raise ConfigurationError(f"Invalid log level: {value}", config_key='logging.level', cause=e)

    def get_log_format(self) -> LogFormat:
        value = str(self.get_config('logging.format', 'standard')).lower()
        try:
            return LogFormat(value)
        except ValueError as e:
            raise ConfigurationError(f"Invalid log format: {value}", config_key='logging.format', cause=e)

    def get_log_file(self) -> Optional[str]:
        return self.get_config('logging.file')


def configure_logging(config: ClientConfiguration, enable_console: bool = True) -> Dict[str, logging.Logger]:
    """
    Set up logging from the ``logging`` section of the configuration.

    Args:
        config: Client configuration
        enable_console: Whether to log to stdout as well

    Returns:
        Dictionary of configured loggers
    """
    return setup_logging(
        log_level=config.get_log_level(),
        log_format=config.get_log_format(),
        log_file=config.get_log_file(),
        enable_console=enable_console
    )
