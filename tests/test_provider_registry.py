#!/usr/bin/env python3
"""
Unit tests for provider creation by configured type.
"""

import os
import sys
import unittest
from unittest.mock import Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from provider_sync.providers import PROVIDER_TYPES, UnknownProviderError, create_provider
from provider_sync.providers.github import GitHubProvider
from provider_sync.providers.gsuite import GSuiteProvider
from provider_sync.providers.okta import OktaProvider
from provider_sync.providers.ramp import RampProvider


def provider_config(provider_type, **extra):
    config = {
        'name': provider_type,
        'type': provider_type,
        'base_url': f'https://{provider_type}.example.com/api',
        'auth': {'method': 'token', 'token': 'abc'},
    }
    config.update(extra)
    return config


class TestCreateProvider(unittest.TestCase):

    def test_every_type_has_an_adapter(self):
        expected = {
            'github': GitHubProvider,
            'gsuite': GSuiteProvider,
            'okta': OktaProvider,
            'ramp': RampProvider,
        }
        self.assertEqual(sorted(PROVIDER_TYPES), sorted(expected))

        for provider_type, cls in expected.items():
            adapter = create_provider(provider_config(provider_type))
            self.assertIsInstance(adapter, cls)
            self.assertEqual(adapter.name, provider_type)

    def test_type_is_case_insensitive(self):
        self.assertIsInstance(create_provider(provider_config('GitHub')), GitHubProvider)

    def test_notifier_reaches_gsuite_only(self):
        notifier = Mock()

        gsuite = create_provider(provider_config('gsuite'), notifier=notifier)
        okta = create_provider(provider_config('okta', auth={'method': 'ssws', 'token': 'abc'}), notifier=notifier)

        self.assertIs(gsuite.notifier, notifier)
        self.assertFalse(hasattr(okta, 'notifier'))

    def test_unknown_type(self):
        with self.assertRaises(UnknownProviderError):
            create_provider(provider_config('jira'))


if __name__ == '__main__':
    unittest.main()
