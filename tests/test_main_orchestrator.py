#!/usr/bin/env python3
"""
Unit tests for the main sync orchestrator.

Runs the orchestrator against real configuration and directory files with the
provider adapters replaced by mocks.
"""

import os
import sys
import shutil
import tempfile
import unittest
from unittest.mock import MagicMock, patch

import yaml

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from provider_sync.main import SyncOrchestrator, main
from provider_sync.notifications import NewAccountNotifier
from provider_sync.providers.base import ReconciliationError
from provider_sync.providers.client import ProviderAPIError

DIRECTORY = {
    'users': {
        'alice': {'email': 'alice@acme.com', 'groups': ['eng']},
        'bob': {'email': 'bob@acme.com', 'groups': ['eng', 'ops']},
    },
    'groups': {
        'eng': {'description': 'Engineering'},
        'ops': {'description': 'Operations'},
    },
    'removed_users': {
        'carol': {'email': 'carol@acme.com'},
    },
    'removed_groups': {
        'oldteam': {},
    },
}


def make_adapter():
    adapter = MagicMock()
    adapter.__enter__.return_value = adapter
    adapter.authenticate.return_value = True
    return adapter


def failure(entity='x'):
    return ReconciliationError('github', entity, 'ensure_user', ProviderAPIError('boom', status=500))


class TestSyncOrchestrator(unittest.TestCase):
    """Test cases for SyncOrchestrator."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, 'config.yaml')
        self.config = {
            'company': {'name': 'Acme', 'github_org': 'acme'},
            'directory_file': 'directory.yaml',
            'providers': [
                {'name': 'github', 'type': 'github', 'base_url': 'https://api.github.com',
                 'auth': {'method': 'token', 'token': 'abc'}},
                {'name': 'ramp', 'type': 'ramp', 'base_url': 'https://api.ramp.com/developer/v1',
                 'auth': {'method': 'token', 'token': 'def'}},
            ],
            'error_handling': {'max_errors_per_provider': 3},
            'notifications': {'enable_email': False},
        }
        self.write_files()

        patcher = patch('provider_sync.main.setup_logging')
        patcher.start()
        self.addCleanup(patcher.stop)

        patcher = patch('provider_sync.main.create_provider')
        self.mock_create = patcher.start()
        self.addCleanup(patcher.stop)

        self.adapters = {'github': make_adapter(), 'ramp': make_adapter()}
        self.mock_create.side_effect = lambda config, notifier=None: self.adapters[config['name']]

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def write_files(self, directory=None):
        with open(self.config_path, 'w') as f:
            yaml.dump(self.config, f)
        with open(os.path.join(self.temp_dir, 'directory.yaml'), 'w') as f:
            yaml.dump(directory or DIRECTORY, f)

    def test_successful_run(self):
        orchestrator = SyncOrchestrator(self.config_path)

        self.assertEqual(orchestrator.run(), 0)

        github = self.adapters['github']
        self.assertEqual([c[0][2].name for c in github.ensure_group.call_args_list], ['eng', 'ops'])
        self.assertEqual([c[0][2].username for c in github.ensure_user.call_args_list], ['alice', 'bob'])
        self.assertEqual([c[0][1].username for c in github.delete_user.call_args_list], ['carol'])
        self.assertEqual([c[0][1].name for c in github.delete_group.call_args_list], ['oldteam'])
        github.__exit__.assert_called_once()

        stats = orchestrator.sync_stats
        self.assertEqual(stats['providers_processed'], 2)
        self.assertEqual(stats['providers_failed'], 0)
        details = stats['provider_details']['github']
        self.assertEqual((details['groups_ensured'], details['users_ensured'],
                          details['users_deleted'], details['groups_deleted']), (2, 2, 1, 1))

    def test_groups_are_ensured_before_users(self):
        order = []
        github = self.adapters['github']
        github.ensure_group.side_effect = lambda *a: order.append('group')
        github.ensure_user.side_effect = lambda *a: order.append('user')
        github.delete_user.side_effect = lambda *a: order.append('delete_user')

        SyncOrchestrator(self.config_path).run()

        self.assertEqual(order, ['group', 'group', 'user', 'user', 'delete_user'])

    def test_adapter_receives_company_and_notifier(self):
        orchestrator = SyncOrchestrator(self.config_path)
        orchestrator.run()

        config, = self.mock_create.call_args_list[0][0]
        self.assertEqual(config['name'], 'github')
        self.assertIsInstance(self.mock_create.call_args_list[0][1]['notifier'], NewAccountNotifier)

        company = self.adapters['github'].ensure_user.call_args[0][1]
        self.assertEqual(company.github_org, 'acme')

    def test_entity_error_continues_pass(self):
        github = self.adapters['github']
        github.ensure_user.side_effect = [failure('alice'), 'ok']

        orchestrator = SyncOrchestrator(self.config_path)

        self.assertEqual(orchestrator.run(), 1)
        self.assertEqual(github.ensure_user.call_count, 2)
        github.delete_user.assert_called_once()
        details = orchestrator.sync_stats['provider_details']['github']
        self.assertEqual(details['errors'], 1)
        self.assertEqual(details['users_ensured'], 1)
        self.assertEqual(orchestrator.sync_stats['providers_failed'], 0)

    @patch('provider_sync.main.send_provider_error_notification')
    def test_provider_aborted_after_max_errors(self, mock_notify):
        github = self.adapters['github']
        github.ensure_group.side_effect = [failure('eng'), failure('ops')]
        github.ensure_user.side_effect = [failure('alice'), failure('bob')]

        orchestrator = SyncOrchestrator(self.config_path)

        self.assertEqual(orchestrator.run(), 1)
        self.assertEqual(github.ensure_group.call_count + github.ensure_user.call_count, 3)
        github.delete_user.assert_not_called()
        mock_notify.assert_called_once()
        self.assertEqual(mock_notify.call_args[0][:2], ('github', 3))
        self.assertEqual(orchestrator.sync_stats['providers_failed'], 1)
        # The next provider still runs.
        self.assertEqual(self.adapters['ramp'].ensure_user.call_count, 2)

    def test_authentication_failure_fails_provider(self):
        self.adapters['github'].authenticate.return_value = False

        orchestrator = SyncOrchestrator(self.config_path)

        self.assertEqual(orchestrator.run(), 1)
        self.adapters['github'].ensure_group.assert_not_called()
        self.assertEqual(orchestrator.sync_stats['providers_failed'], 1)

    def test_provider_filter(self):
        orchestrator = SyncOrchestrator(self.config_path, provider_names=['ramp'])

        self.assertEqual(orchestrator.run(), 0)
        self.adapters['github'].ensure_user.assert_not_called()
        self.assertEqual(self.adapters['ramp'].ensure_user.call_count, 2)

    def test_unknown_provider_filter_is_configuration_error(self):
        self.assertEqual(SyncOrchestrator(self.config_path, provider_names=['jira']).run(), 2)

    def test_configuration_error(self):
        self.assertEqual(SyncOrchestrator(os.path.join(self.temp_dir, 'missing.yaml')).run(), 2)

    def test_missing_directory_is_configuration_error(self):
        os.remove(os.path.join(self.temp_dir, 'directory.yaml'))
        self.assertEqual(SyncOrchestrator(self.config_path).run(), 2)

    @patch('provider_sync.main.SyncOrchestrator._process_providers')
    def test_unexpected_error(self, mock_process):
        mock_process.side_effect = RuntimeError('unexpected')
        self.assertEqual(SyncOrchestrator(self.config_path).run(), 4)

    def test_health_check(self):
        health = SyncOrchestrator(self.config_path).health_check()

        self.assertEqual(health['status'], 'healthy')
        self.assertEqual(health['checks']['configuration']['status'], 'pass')
        self.assertEqual(health['checks']['directory']['status'], 'pass')
        self.assertEqual(sorted(health['checks']['providers']), ['github', 'ramp'])
        self.assertEqual(health['checks']['notifications']['status'], 'skip')
        self.adapters['github'].close.assert_called_once()

    def test_health_check_reports_adapter_failure(self):
        self.mock_create.side_effect = ValueError('bad config')

        health = SyncOrchestrator(self.config_path).health_check()

        self.assertEqual(health['status'], 'unhealthy')
        self.assertEqual(health['checks']['providers']['github']['status'], 'fail')

    def test_main_exits_with_run_code(self):
        with patch.object(sys, 'argv', ['provider-sync', '--config', self.config_path, '--provider', 'ramp']):
            with self.assertRaises(SystemExit) as ctx:
                main()

        self.assertEqual(ctx.exception.code, 0)
        self.adapters['github'].ensure_user.assert_not_called()


if __name__ == '__main__':
    unittest.main()
