#!/usr/bin/env python3
"""
Unit tests for logging setup and the sensitive data filter.
"""

import os
import sys
import time
import shutil
import logging
import tempfile
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from provider_sync.logging_setup import LOG_FILE_NAME, LoggingManager, SensitiveDataFilter


def make_record(msg, *args):
    return logging.LogRecord('test', logging.INFO, __file__, 1, msg, args, None)


class TestSensitiveDataFilter(unittest.TestCase):
    """Test cases for SensitiveDataFilter."""

    def setUp(self):
        self.filter = SensitiveDataFilter()

    def scrub(self, msg, *args):
        record = make_record(msg, *args)
        self.assertTrue(self.filter.filter(record))
        return record.getMessage()

    def test_key_value_password(self):
        result = self.scrub('connecting with password=hunter2 to smtp')
        self.assertNotIn('hunter2', result)
        self.assertIn('password=****', result)

    def test_json_token(self):
        result = self.scrub('{"access_token": "ya29.secret", "expires_in": 3600}')
        self.assertNotIn('ya29.secret', result)
        self.assertIn('3600', result)

    def test_authorization_schemes(self):
        for header in ('Authorization: Bearer abc.def', 'Authorization: SSWS 00abcdef', 'Authorization: Basic dXNlcg=='):
            result = self.scrub(header)
            self.assertTrue(result.endswith('****'), result)

    def test_percent_args_are_scrubbed(self):
        result = self.scrub('config: %s', "{'client_secret': 'shh'}")
        self.assertNotIn('shh', result)

    def test_plain_messages_untouched(self):
        msg = 'created user `alice@acme.com` in github'
        self.assertEqual(self.scrub(msg), msg)


class TestLoggingManager(unittest.TestCase):
    """Test cases for LoggingManager."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix='provider_sync_logs_')
        self.root_handlers = list(logging.getLogger().handlers)
        self.root_level = logging.getLogger().level

    def tearDown(self):
        root = logging.getLogger()
        for handler in root.handlers:
            if handler not in self.root_handlers:
                handler.close()
        root.handlers[:] = self.root_handlers
        root.setLevel(self.root_level)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_setup_creates_log_file(self):
        log_dir = os.path.join(self.temp_dir, 'logs')
        manager = LoggingManager()

        manager.setup_logging({'level': 'DEBUG', 'log_dir': log_dir, 'console_output': False})
        logging.getLogger('provider_sync.test').info('hello')

        self.assertTrue(manager.configured)
        self.assertTrue(os.path.exists(os.path.join(log_dir, LOG_FILE_NAME)))
        self.assertEqual(len(logging.getLogger().handlers), 1)
        self.assertEqual(manager.get_log_stats()['log_files_count'], 1)

    def test_setup_is_idempotent(self):
        manager = LoggingManager()
        config = {'log_dir': self.temp_dir, 'console_output': True}

        manager.setup_logging(config)
        manager.setup_logging(config)

        self.assertEqual(len(logging.getLogger().handlers), 2)

    def test_old_rotated_logs_are_removed(self):
        old_file = os.path.join(self.temp_dir, f'{LOG_FILE_NAME}.2020-01-01')
        recent_file = os.path.join(self.temp_dir, f'{LOG_FILE_NAME}.2099-01-01')
        for path in (old_file, recent_file):
            with open(path, 'w') as f:
                f.write('old entries\n')
        ten_days_ago = time.time() - 10 * 86400
        os.utime(old_file, (ten_days_ago, ten_days_ago))

        manager = LoggingManager()
        manager.setup_logging({'log_dir': self.temp_dir, 'retention_days': 7, 'console_output': False})

        self.assertFalse(os.path.exists(old_file))
        self.assertTrue(os.path.exists(recent_file))


if __name__ == '__main__':
    unittest.main()
