"""
Ramp provider integration module.

Ramp is a spend-management platform with users but no group concept, so every
group operation of the adapter contract is a no-op.
"""

import logging
from typing import Dict, List, Any, Optional

from provider_sync.models import Company, Directory, Group, User
from provider_sync.providers.base import ProviderAdapter
from provider_sync.providers.client import ProviderClient

logger = logging.getLogger(__name__)

BUSINESS_USER_ROLE = 'BUSINESS_USER'


class RampProvider(ProviderAdapter):
    """Ramp adapter: invites users, ignores groups."""

    def _get_all(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Collect a Ramp listing by following page.next."""
        items = []
        response = self.client.request('GET', path, params=params)
        while True:
            items.extend(response.get('data', []))
            next_url = (response.get('page') or {}).get('next')
            if not next_url:
                return items
            response = self.client.request('GET', next_url)

    def _find_user(self, company: Company, email: str) -> Optional[Dict[str, Any]]:
        # No lookup-by-email endpoint; scan the listing.
        for ramp_user in self._get_all('/users', params={'page_size': 100}):
            if ramp_user.get('email', '').lower() == email.lower():
                return ramp_user
        return None

    def _department_id(self, department: str) -> str:
        if not department:
            return ''

        for dept in self._get_all('/departments', params={'page_size': 100}):
            if dept.get('name') == department:
                return dept.get('id', '')

        logger.warning(f"Department `{department}` does not exist in {self.name}")
        return ''

    def ensure_user(self, directory: Directory, company: Company, user: User) -> str:
        with self.operation('ensure_user', user.email):
            existing = self._find_user(company, user.email)
            if existing:
                logger.info(f"user `{user.email}` already exists in {self.name}")
                return existing.get('id', '')

            ramp_user = {
                'email': user.email,
                'first_name': user.first_name,
                'last_name': user.last_name,
                'phone': user.recovery_phone,
                'role': BUSINESS_USER_ROLE,
            }

            department_id = self._department_id(user.department)
            if department_id:
                ramp_user['department_id'] = department_id

            manager = directory.manager_of(user)
            if manager and manager.ramp_id:
                ramp_user['direct_manager_id'] = manager.ramp_id

            response = self.client.request('POST', '/users/deferred', body=ramp_user)

            logger.info(f"invited user `{user.email}` to {self.name}")
            return response.get('id', '')

    # Ramp does not have groups so the group operations are no-ops.

    def ensure_group(self, directory: Directory, company: Company, group: Group) -> None:
        return None

    def check_membership(self, company: Company, user: User, group: str) -> bool:
        return False

    def add_to_group(self, company: Company, user: User, group: str) -> None:
        return None

    def remove_from_group(self, company: Company, user: User, group: str) -> None:
        return None

    def list_provider_users(self, company: Company) -> List[Dict[str, Any]]:
        with self.operation('list_provider_users', company.name):
            return self._get_all('/users', params={'page_size': 100})

    def list_provider_groups(self, company: Company) -> List[Dict[str, Any]]:
        return []

    def delete_user(self, company: Company, user: User) -> None:
        # TODO: suspend the user in Ramp instead of leaving the account active.
        logger.info(f"not removing user `{user.email}` from {self.name}: suspension is not supported yet")

    def delete_group(self, company: Company, group: Group) -> None:
        return None


def create_provider(config: Dict[str, Any]) -> RampProvider:
    """
    Factory function to create a RampProvider.

    Args:
        config: Provider configuration dictionary

    Returns:
        RampProvider instance
    """
    return RampProvider(ProviderClient(config))
