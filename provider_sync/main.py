"""
Main orchestrator for Provider Sync.

This module drives every configured provider toward the canonical directory:
groups are ensured first, then users (with their memberships), then retired
users and groups are deleted.
"""

import os
import sys
import logging
from datetime import datetime
from typing import Dict, Any, List, Optional

from provider_sync.config import load_config, company_from_config, ConfigurationError
from provider_sync.logging_setup import setup_logging
from provider_sync.models import Company, Directory, DirectoryError, load_directory
from provider_sync.notifications import (
    NewAccountNotifier,
    send_failure_notification,
    send_provider_error_notification,
    send_success_summary
)
from provider_sync.providers import ProviderAdapter, ReconciliationError, create_provider

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_PROVIDER_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_UNEXPECTED_ERROR = 4


class SyncError(Exception):
    """Base exception for sync errors."""
    pass


class SyncOrchestrator:
    """
    Main orchestrator for directory to provider synchronization.

    Coordinates the sync process across providers. A failing entity is logged and
    counted and the pass moves on; a provider is only abandoned once it reaches
    ``max_errors_per_provider`` errors.
    """

    def __init__(self, config_path: Optional[str] = None, provider_names: Optional[List[str]] = None):
        """
        Initialize sync orchestrator.

        Args:
            config_path: Path to configuration file
            provider_names: Only sync the providers with these names (all when None)
        """
        self.config = None
        self.config_path = config_path
        self.provider_names = provider_names
        self.directory: Optional[Directory] = None
        self.company: Optional[Company] = None

        self.sync_stats = {
            'providers_processed': 0,
            'providers_failed': 0,
            'total_errors': 0,
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0,
            'provider_details': {}
        }

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        try:
            self.sync_stats['start_time'] = datetime.now()

            self._load_configuration()
            setup_logging(self.config.get('logging', {}))

            logger.info("Starting Provider Sync")

            self._load_directory()
            self._process_providers()

            self.sync_stats['end_time'] = datetime.now()
            self.sync_stats['runtime_seconds'] = (
                self.sync_stats['end_time'] - self.sync_stats['start_time']
            ).total_seconds()

            self._log_sync_summary()

            if self.sync_stats['providers_failed'] > 0 or self.sync_stats['total_errors'] > 0:
                logger.warning(f"Sync completed with {self.sync_stats['providers_failed']} provider failures "
                               f"and {self.sync_stats['total_errors']} errors")
                return EXIT_PROVIDER_FAILURE

            self._send_success_notification()
            logger.info("Sync completed successfully")
            return EXIT_SUCCESS

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIG_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            self._send_failure_notification("Sync Failed", f"Unexpected error: {e}")
            return EXIT_UNEXPECTED_ERROR

    def _load_configuration(self):
        """Load and validate configuration."""
        self.config = load_config(self.config_path)
        self.company = company_from_config(self.config)

        if self.provider_names:
            configured = {p['name'] for p in self.config['providers']}
            unknown = sorted(set(self.provider_names) - configured)
            if unknown:
                raise ConfigurationError(f"Unknown provider(s) requested: {', '.join(unknown)}")

    def _directory_path(self) -> str:
        """Resolve ``directory_file`` relative to the configuration file."""
        path = self.config['directory_file']
        if os.path.isabs(path) or not self.config_path:
            return path
        return os.path.join(os.path.dirname(os.path.abspath(self.config_path)), path)

    def _load_directory(self):
        """Load the canonical directory."""
        try:
            self.directory = load_directory(self._directory_path())
        except DirectoryError as e:
            raise ConfigurationError(str(e))

    def _selected_providers(self) -> List[Dict[str, Any]]:
        providers = self.config.get('providers', [])
        if not self.provider_names:
            return providers
        return [p for p in providers if p['name'] in self.provider_names]

    def _create_adapter(self, provider_config: Dict[str, Any]) -> ProviderAdapter:
        notifier = NewAccountNotifier(self.config.get('notifications', {}))
        return create_provider(provider_config, notifier=notifier)

    def _process_providers(self):
        """Process synchronization for each selected provider."""
        for provider_config in self._selected_providers():
            provider_name = provider_config.get('name', 'unknown')
            try:
                self._process_provider(provider_config)
                self.sync_stats['providers_processed'] += 1

            except Exception as e:
                logger.error(f"Failed to process provider {provider_name}: {e}")
                self.sync_stats['providers_failed'] += 1
                self._send_failure_notification(f"Provider Sync Failed: {provider_name}", str(e))

    def _process_provider(self, provider_config: Dict[str, Any]):
        """Reconcile a single provider against the directory."""
        provider_name = provider_config['name']
        provider_start_time = datetime.now()
        logger.info(f"Processing provider: {provider_name}")

        provider_stats = {
            'start_time': provider_start_time,
            'groups_ensured': 0,
            'users_ensured': 0,
            'groups_deleted': 0,
            'users_deleted': 0,
            'errors': 0,
            'runtime_seconds': 0
        }
        error_messages = []
        max_errors = self.config.get('error_handling', {}).get('max_errors_per_provider', 5)

        def run_step(stat: str, step, *args):
            try:
                step(*args)
                provider_stats[stat] += 1
            except ReconciliationError as e:
                provider_stats['errors'] += 1
                self.sync_stats['total_errors'] += 1
                error_messages.append(str(e))
                logger.error(f"{provider_name}: {e}")

                if provider_stats['errors'] >= max_errors:
                    logger.error(f"Aborting provider {provider_name} due to too many errors ({provider_stats['errors']})")
                    self._send_provider_error_notification(provider_name, provider_stats['errors'], error_messages)
                    raise SyncError(f"Too many errors for provider {provider_name}")

        directory = self.directory
        company = self.company

        try:
            with self._create_adapter(provider_config) as adapter:
                if not adapter.authenticate():
                    raise SyncError(f"Authentication failed for provider {provider_name}")

                for group in directory.groups.values():
                    run_step('groups_ensured', adapter.ensure_group, directory, company, group)

                for user in directory.users.values():
                    run_step('users_ensured', adapter.ensure_user, directory, company, user)

                for user in directory.removed_users:
                    run_step('users_deleted', adapter.delete_user, company, user)

                for group in directory.removed_groups:
                    run_step('groups_deleted', adapter.delete_group, company, group)

        finally:
            provider_end_time = datetime.now()
            provider_stats['end_time'] = provider_end_time
            provider_stats['runtime_seconds'] = (provider_end_time - provider_start_time).total_seconds()

            self.sync_stats['provider_details'][provider_name] = provider_stats

            logger.info(f"Completed provider: {provider_name} in {provider_stats['runtime_seconds']:.2f} seconds")

    def _send_failure_notification(self, title: str, error_message: str):
        """Send email notification for failures."""
        notifications_config = (self.config or {}).get('notifications', {})
        send_failure_notification(title, error_message, notifications_config)

    def _send_provider_error_notification(self, provider_name: str, error_count: int, errors: List[str]):
        """Send email notification for a provider aborted on errors."""
        notifications_config = self.config.get('notifications', {})
        send_provider_error_notification(provider_name, error_count, errors, notifications_config)

    def _send_success_notification(self):
        """Send email notification for successful sync."""
        notifications_config = self.config.get('notifications', {})
        send_success_summary(self.sync_stats, notifications_config)

    def _log_sync_summary(self):
        """Log final synchronization statistics."""
        stats = self.sync_stats

        runtime_str = f"{stats['runtime_seconds']:.2f} seconds"
        if stats['runtime_seconds'] > 60:
            minutes = int(stats['runtime_seconds'] // 60)
            seconds = stats['runtime_seconds'] % 60
            runtime_str = f"{minutes}m {seconds:.1f}s"

        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {runtime_str}")
        logger.info(f"Providers processed: {stats['providers_processed']}")
        logger.info(f"Providers failed: {stats['providers_failed']}")
        logger.info(f"Total errors: {stats['total_errors']}")

        for provider_name, provider_stats in stats.get('provider_details', {}).items():
            logger.info(f"--- {provider_name} Details ---")
            logger.info(f"  Runtime: {provider_stats['runtime_seconds']:.2f}s")
            logger.info(f"  Groups ensured: {provider_stats['groups_ensured']}")
            logger.info(f"  Users ensured: {provider_stats['users_ensured']}")
            logger.info(f"  Groups deleted: {provider_stats['groups_deleted']}")
            logger.info(f"  Users deleted: {provider_stats['users_deleted']}")
            logger.info(f"  Errors: {provider_stats['errors']}")

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the sync system.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        try:
            self._load_directory()
            health_status['checks']['directory'] = {
                'status': 'pass',
                'message': f'{len(self.directory.users)} users, {len(self.directory.groups)} groups'
            }
        except ConfigurationError as e:
            health_status['checks']['directory'] = {
                'status': 'fail',
                'message': f'Directory error: {e}'
            }
            health_status['status'] = 'unhealthy'

        provider_checks = {}
        for provider_config in self._selected_providers():
            provider_name = provider_config['name']
            try:
                adapter = self._create_adapter(provider_config)
                adapter.close()
                provider_checks[provider_name] = {
                    'status': 'pass',
                    'message': 'Adapter created successfully'
                }
            except Exception as e:
                provider_checks[provider_name] = {
                    'status': 'fail',
                    'message': f'Adapter creation failed: {e}'
                }
                health_status['status'] = 'unhealthy'

        health_status['checks']['providers'] = provider_checks

        notifications_config = self.config.get('notifications', {})
        if notifications_config.get('enable_email', False):
            required_fields = ['smtp_server', 'email_from', 'email_to']
            missing_fields = [f for f in required_fields if not notifications_config.get(f)]

            if missing_fields:
                health_status['checks']['notifications'] = {
                    'status': 'fail',
                    'message': f'Missing notification config: {missing_fields}'
                }
                health_status['status'] = 'unhealthy'
            else:
                health_status['checks']['notifications'] = {
                    'status': 'pass',
                    'message': 'Email notification configuration valid'
                }
        else:
            health_status['checks']['notifications'] = {
                'status': 'skip',
                'message': 'Email notifications disabled'
            }

        return health_status


def main():
    """Main entry point for the application."""
    import argparse
    import json

    parser = argparse.ArgumentParser(description='Reconcile provider accounts against the canonical directory')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--provider', '-p', action='append', dest='providers', metavar='NAME',
                        help='Only sync the named provider (may be repeated)')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')
    parser.add_argument('--test-email', action='store_true',
                        help='Send test email notification')

    args = parser.parse_args()

    orchestrator = SyncOrchestrator(config_path=args.config, provider_names=args.providers)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    elif args.test_email:
        from provider_sync.notifications import send_test_notification
        try:
            orchestrator._load_configuration()
        except ConfigurationError as e:
            print(f"Error testing email: {e}")
            sys.exit(EXIT_CONFIG_ERROR)

        if send_test_notification(orchestrator.config.get('notifications', {})):
            print("Test email sent successfully")
            sys.exit(0)
        print("Failed to send test email")
        sys.exit(1)

    else:
        sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
