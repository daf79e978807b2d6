#!/usr/bin/env python3
"""
Unit tests for the canonical directory records.
"""

import os
import sys
import tempfile
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from provider_sync.models import Directory, DirectoryError, Group, User, load_directory

DIRECTORY_YAML = """
users:
  alice:
    email: alice@acme.com
    first_name: Alice
    last_name: Smith
    manager: bob
    groups: [eng]
    github: alice-gh
  bob:
    email: bob@acme.com
    first_name: Bob
    is_group_admin: true
    groups: [eng, ops]
groups:
  eng:
    description: Engineering
    aliases: [engineering]
    repos: [api]
  ops: {}
removed_users:
  carol:
    email: carol@acme.com
removed_groups:
  oldteam: {}
"""


class TestDirectory(unittest.TestCase):
    """Test cases for Directory loading and lookups."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = os.path.join(self.temp_dir, 'directory.yaml')
        with open(self.path, 'w') as f:
            f.write(DIRECTORY_YAML)

    def tearDown(self):
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_load_directory(self):
        directory = load_directory(self.path)

        self.assertEqual(sorted(directory.users), ['alice', 'bob'])
        self.assertEqual(directory.users['alice'].username, 'alice')
        self.assertEqual(directory.users['alice'].groups, ['eng'])
        self.assertTrue(directory.users['bob'].is_group_admin)
        self.assertEqual(directory.groups['eng'].repos, ['api'])
        self.assertEqual(directory.groups['ops'].name, 'ops')
        self.assertEqual([u.email for u in directory.removed_users], ['carol@acme.com'])
        self.assertEqual([g.name for g in directory.removed_groups], ['oldteam'])

    def test_manager_resolution(self):
        directory = load_directory(self.path)

        self.assertEqual(directory.manager_of(directory.users['alice']).email, 'bob@acme.com')
        self.assertIsNone(directory.manager_of(directory.users['bob']))

    def test_unresolved_manager_logs_warning(self):
        directory = Directory(users=[User(username='alice', email='alice@acme.com', manager='ghost')])

        with self.assertLogs('provider_sync.models', level='WARNING'):
            self.assertIsNone(directory.manager_of(directory.users['alice']))

    def test_unknown_fields_are_ignored(self):
        with self.assertLogs('provider_sync.models', level='WARNING') as logs:
            directory = Directory.from_dict({'users': {'alice': {'email': 'a@acme.com', 'shoe_size': 9}}})

        self.assertEqual(directory.users['alice'].email, 'a@acme.com')
        self.assertIn('shoe_size', logs.output[0])

    def test_missing_required_field(self):
        with self.assertRaises(DirectoryError):
            Directory.from_dict({'users': {'alice': {'first_name': 'Alice'}}})

    def test_missing_file(self):
        with self.assertRaises(DirectoryError):
            load_directory(os.path.join(self.temp_dir, 'nope.yaml'))

    def test_invalid_yaml(self):
        with open(self.path, 'w') as f:
            f.write("users: [unclosed\n")

        with self.assertRaises(DirectoryError):
            load_directory(self.path)

    def test_group_settings_defaults(self):
        group = Group(name='eng')
        self.assertFalse(group.allow_external_members)
        self.assertEqual(group.who_can_post_message, 'ALL_IN_DOMAIN_CAN_POST')

    def test_full_name(self):
        self.assertEqual(User(username='a', email='a@x', first_name='Ann').full_name(), 'Ann')
        self.assertEqual(User(username='a', email='a@x', first_name='Ann', last_name='Lee').full_name(), 'Ann Lee')


if __name__ == '__main__':
    unittest.main()
