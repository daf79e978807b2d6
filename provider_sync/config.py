"""
Configuration loading and management for Provider Sync.

This module handles loading configuration from YAML files and environment variables,
with validation and defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

from provider_sync.models import Company

logger = logging.getLogger(__name__)

KNOWN_PROVIDER_TYPES = ('github', 'gsuite', 'okta', 'ramp')

# Provider types and the company field that scopes their API calls.
REQUIRED_COMPANY_FIELDS = {
    'github': 'github_org',
    'gsuite': 'gsuite_domain',
}


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'notifications.smtp_password': 'SMTP_PASSWORD',
    }

    # Per-provider environment variable suffixes and the auth field they set
    PROVIDER_ENV_OVERRIDES = {
        'TOKEN': 'token',
        'CLIENT_SECRET': 'client_secret',
        'PASSWORD': 'password',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self.config_path}")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

        for i, provider in enumerate(self.config.get('providers') or []):
            provider_name = provider.get('name', f'provider_{i}')
            prefix = provider_name.upper().replace('-', '_')
            for suffix, auth_field in self.PROVIDER_ENV_OVERRIDES.items():
                env_value = os.getenv(f"{prefix}_{suffix}")
                if env_value:
                    provider.setdefault('auth', {})[auth_field] = env_value
                    logger.debug(f"Applied environment override for {provider_name} {auth_field}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if key not in current or current[key] is None:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        company = self.config.get('company') or {}
        if not company.get('name'):
            errors.append("Missing required company field: name")

        if not self.config.get('directory_file'):
            errors.append("Missing required field: directory_file")

        providers = self.config.get('providers') or []
        if not providers:
            errors.append("At least one provider must be configured")

        seen = set()
        for i, provider in enumerate(providers):
            prefix = f"providers[{i}]"
            for field in ('name', 'type', 'base_url'):
                if not provider.get(field):
                    errors.append(f"Missing required field {prefix}.{field}")

            name = provider.get('name')
            if name in seen:
                errors.append(f"Duplicate provider name '{name}'")
            seen.add(name)

            provider_type = (provider.get('type') or '').lower()
            if provider_type and provider_type not in KNOWN_PROVIDER_TYPES:
                errors.append(f"Unknown provider type '{provider_type}' for {prefix}")

            company_field = REQUIRED_COMPANY_FIELDS.get(provider_type)
            if company_field and not company.get(company_field):
                errors.append(f"company.{company_field} is required by {provider_type} provider {prefix}")

            auth = provider.get('auth') or {}
            if auth and not auth.get('method'):
                errors.append(f"Missing auth method for {prefix}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        error_config = self.config.setdefault('error_handling', {})
        error_config.setdefault('max_errors_per_provider', 5)

        notification_defaults = {
            'enable_email': True,
            'email_on_failure': True,
            'email_on_success': False,
            'email_new_accounts': True,
            'smtp_port': 587,
            'smtp_tls': True
        }
        notification_config = self.config.setdefault('notifications', {})
        for key, value in notification_defaults.items():
            notification_config.setdefault(key, value)

        for provider in self.config.get('providers', []):
            provider.setdefault('verify_ssl', True)
            provider.setdefault('timeout', 30)
            provider.setdefault('auth', {})


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()


def company_from_config(config: Dict[str, Any]) -> Company:
    """Build the account scope from the ``company`` section."""
    company = config.get('company') or {}
    return Company(
        name=company.get('name', ''),
        github_org=company.get('github_org', ''),
        gsuite_domain=company.get('gsuite_domain', ''),
        gsuite_account_id=company.get('gsuite_account_id', ''),
    )
