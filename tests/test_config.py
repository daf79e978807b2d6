#!/usr/bin/env python3
"""
Unit tests for configuration loading.
"""

import os
import sys
import shutil
import tempfile
import unittest
from unittest.mock import patch

import yaml

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from provider_sync.config import ConfigLoader, ConfigurationError, company_from_config, load_config


def base_config():
    return {
        'company': {'name': 'Acme', 'github_org': 'acme', 'gsuite_domain': 'acme.com'},
        'directory_file': 'directory.yaml',
        'providers': [
            {
                'name': 'github',
                'type': 'github',
                'base_url': 'https://api.github.com',
                'auth': {'method': 'token'},
            },
            {
                'name': 'gsuite',
                'type': 'gsuite',
                'base_url': 'https://admin.googleapis.com/admin/directory/v1',
                'auth': {'method': 'oauth2', 'client_id': 'id', 'token_url': 'https://oauth2.googleapis.com/token'},
            },
        ],
    }


class TestConfigLoader(unittest.TestCase):
    """Test cases for ConfigLoader."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, 'config.yaml')

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_config(self, config):
        with open(self.config_path, 'w') as f:
            yaml.dump(config, f)

    def test_load_valid_config_applies_defaults(self):
        self.write_config(base_config())

        config = load_config(self.config_path)

        self.assertEqual(config['logging']['level'], 'INFO')
        self.assertEqual(config['logging']['retention_days'], 7)
        self.assertEqual(config['error_handling']['max_errors_per_provider'], 5)
        self.assertTrue(config['notifications']['email_new_accounts'])
        self.assertEqual(config['providers'][0]['timeout'], 30)
        self.assertTrue(config['providers'][0]['verify_ssl'])

    def test_explicit_values_are_kept(self):
        config = base_config()
        config['error_handling'] = {'max_errors_per_provider': 2}
        config['logging'] = {'level': 'DEBUG'}
        self.write_config(config)

        loaded = load_config(self.config_path)

        self.assertEqual(loaded['error_handling']['max_errors_per_provider'], 2)
        self.assertEqual(loaded['logging']['level'], 'DEBUG')

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError) as ctx:
            load_config(os.path.join(self.temp_dir, 'missing.yaml'))
        self.assertIn('not found', str(ctx.exception))

    def test_invalid_yaml(self):
        with open(self.config_path, 'w') as f:
            f.write("company: [unclosed\n")

        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    def test_validation_collects_all_errors(self):
        self.write_config({'providers': [{'name': 'x', 'type': 'jira'}]})

        with self.assertRaises(ConfigurationError) as ctx:
            load_config(self.config_path)

        message = str(ctx.exception)
        self.assertIn('company field: name', message)
        self.assertIn('directory_file', message)
        self.assertIn('providers[0].base_url', message)
        self.assertIn("Unknown provider type 'jira'", message)

    def test_provider_requires_company_scope(self):
        config = base_config()
        config['company'] = {'name': 'Acme'}
        self.write_config(config)

        with self.assertRaises(ConfigurationError) as ctx:
            load_config(self.config_path)

        self.assertIn('company.github_org', str(ctx.exception))
        self.assertIn('company.gsuite_domain', str(ctx.exception))

    def test_duplicate_provider_names(self):
        config = base_config()
        config['providers'][1]['name'] = 'github'
        self.write_config(config)

        with self.assertRaises(ConfigurationError) as ctx:
            load_config(self.config_path)
        self.assertIn("Duplicate provider name 'github'", str(ctx.exception))

    @patch.dict(os.environ, {
        'GITHUB_TOKEN': 'gh-secret',
        'GSUITE_CLIENT_SECRET': 'google-secret',
        'SMTP_PASSWORD': 'smtp-secret',
    })
    def test_environment_overrides(self):
        self.write_config(base_config())

        config = load_config(self.config_path)

        self.assertEqual(config['providers'][0]['auth']['token'], 'gh-secret')
        self.assertEqual(config['providers'][1]['auth']['client_secret'], 'google-secret')
        self.assertEqual(config['notifications']['smtp_password'], 'smtp-secret')

    @patch.dict(os.environ, {'CONFIG_PATH': '/etc/provider-sync/config.yaml'})
    def test_config_path_from_environment(self):
        self.assertEqual(ConfigLoader().config_path, '/etc/provider-sync/config.yaml')

    def test_company_from_config(self):
        company = company_from_config(base_config())

        self.assertEqual(company.name, 'Acme')
        self.assertEqual(company.github_org, 'acme')
        self.assertEqual(company.gsuite_account_id, '')


if __name__ == '__main__':
    unittest.main()
