"""
Provider adapters.

Maps the ``type`` of a configured provider to the module that implements it.
"""

import importlib
import logging
from typing import Dict, Any, Optional, Callable

from provider_sync.providers.base import ProviderAdapter, ReconciliationError
from provider_sync.providers.client import (
    ProviderClient, ProviderAPIError, ProviderAuthenticationError, NotFoundError
)

logger = logging.getLogger(__name__)

PROVIDER_TYPES = {
    'github': 'provider_sync.providers.github',
    'gsuite': 'provider_sync.providers.gsuite',
    'okta': 'provider_sync.providers.okta',
    'ramp': 'provider_sync.providers.ramp',
}

# Providers that create accounts with a generated password and need to tell
# the new user about it.
NOTIFYING_TYPES = {'gsuite'}


class UnknownProviderError(Exception):
    """Raised when a provider type has no adapter."""
    pass


def create_provider(config: Dict[str, Any], notifier: Optional[Callable] = None) -> ProviderAdapter:
    """
    Create the adapter for a configured provider.

    Args:
        config: Provider configuration dictionary (must contain ``type``)
        notifier: New-account notifier for providers that send one

    Returns:
        ProviderAdapter instance
    """
    provider_type = (config.get('type') or '').lower()
    module_name = PROVIDER_TYPES.get(provider_type)
    if module_name is None:
        raise UnknownProviderError(f"Unknown provider type '{provider_type}' for {config.get('name', 'unknown')}")

    module = importlib.import_module(module_name)

    if provider_type in NOTIFYING_TYPES:
        adapter = module.create_provider(config, notifier=notifier)
    else:
        adapter = module.create_provider(config)

    logger.info(f"Initialized {provider_type} provider {adapter.name}")
    return adapter


__all__ = [
    'PROVIDER_TYPES',
    'NotFoundError',
    'ProviderAPIError',
    'ProviderAdapter',
    'ProviderAuthenticationError',
    'ProviderClient',
    'ReconciliationError',
    'UnknownProviderError',
    'create_provider',
]
