"""
Okta provider integration module.

Okta has no endpoint to fetch a group by name, so every group operation resolves
the canonical name to an Okta id by scanning the search results for the first
exact profile name match. Memberships are addressed by Okta ids only and carry
no role.
"""

import logging
from typing import Dict, List, Any, Optional

from provider_sync.models import Company, Directory, Group, User
from provider_sync.providers.base import ProviderAdapter, ReconciliationError
from provider_sync.providers.client import ProviderClient

logger = logging.getLogger(__name__)

OKTA_GROUP_TYPE = 'OKTA_GROUP'
PAGE_LIMIT = 200
DEPROVISIONED = 'DEPROVISIONED'


class OktaProvider(ProviderAdapter):
    """Okta adapter."""

    def build_profile(self, directory: Directory, company: Company, user: User) -> Dict[str, Any]:
        manager = directory.manager_of(user)
        street = f"{user.home_address_street_1}\n{user.home_address_street_2}".strip()

        return {
            'login': user.email,
            'email': user.email,
            'firstName': user.first_name,
            'lastName': user.last_name,
            'displayName': user.full_name(),
            'department': user.department,
            'manager': manager.email if manager else '',
            'mobilePhone': user.recovery_phone,
            'primaryPhone': user.recovery_phone,
            'secondEmail': user.recovery_email,
            'organization': company.name,
            'streetAddress': street,
            'city': user.home_address_city,
            'state': user.home_address_state,
            'zipCode': user.home_address_zipcode,
            'countryCode': user.home_address_country_code,
            'postalAddress': user.home_address_formatted,
        }

    def _get_user(self, user: User) -> Optional[Dict[str, Any]]:
        return self.lookup(f"/api/v1/users/{user.email.replace('@', '%40')}")

    def _find_group(self, name: str) -> Optional[Dict[str, Any]]:
        """Linear scan of the group search results; first exact name match wins."""
        results = self.client.get_all_pages('/api/v1/groups', params={'q': name, 'limit': PAGE_LIMIT})
        for result in results:
            if (result.get('profile') or {}).get('name') == name:
                return result
        return None

    def ensure_user(self, directory: Directory, company: Company, user: User) -> str:
        profile = self.build_profile(directory, company, user)

        with self.operation('ensure_user', user.email):
            okta_user = self._get_user(user)

            if okta_user is not None:
                user_id = okta_user.get('id', '')
                current = okta_user.get('profile') or {}
                if any((current.get(k) or '') != v for k, v in profile.items()):
                    self.client.request('PUT', f'/api/v1/users/{user_id}', body={'profile': profile},
                                        params={'strict': 'false'})
                    logger.info(f"updated user `{user.email}` in {self.name}")
                else:
                    logger.info(f"existing user `{user.email}` in {self.name} is up to date")

                if okta_user.get('status') == DEPROVISIONED:
                    self.client.request('POST', f'/api/v1/users/{user_id}/lifecycle/activate',
                                        params={'sendEmail': 'false'})
                    logger.info(f"reactivated user `{user.email}` in {self.name}")
            else:
                created = self.client.request('POST', '/api/v1/users', body={'profile': profile}, params={
                    'activate': 'true',
                    'provider': 'false',
                    'nextLogin': 'changePassword',
                })
                user_id = created.get('id', '')
                logger.info(f"created user `{user.email}` in {self.name}")

            self.reconcile_groups(company, user)

        return user_id

    def ensure_group(self, directory: Directory, company: Company, group: Group) -> None:
        with self.operation('ensure_group', group.name):
            result = self._find_group(group.name)

            if result is not None:
                profile = dict(result.get('profile') or {})
                if (profile.get('description') or '') != group.description:
                    profile['description'] = group.description
                    self.client.request('PUT', f"/api/v1/groups/{result['id']}", body={'profile': profile})
                    logger.info(f"updated group `{group.name}` in {self.name}")
                else:
                    logger.info(f"existing group `{group.name}` in {self.name} is up to date")
                return

            self.client.request('POST', '/api/v1/groups', body={
                'profile': {'name': group.name, 'description': group.description},
            })
            logger.info(f"created group `{group.name}` in {self.name}")

    def check_membership(self, company: Company, user: User, group: str) -> bool:
        # Okta group memberships have no role, so the admin flag is not consulted.
        with self.operation('check_membership', f"{user.email} in {group}"):
            okta_user = self._get_user(user)
            result = self._find_group(group)
            if okta_user is None or result is None:
                return False

            user_groups = self.client.get_all_pages(f"/api/v1/users/{okta_user['id']}/groups")

        return any(g.get('id') == result['id'] for g in user_groups)

    def add_to_group(self, company: Company, user: User, group: str) -> None:
        with self.operation('add_to_group', f"{user.email} to {group}"):
            okta_user = self.client.request('GET', f"/api/v1/users/{user.email.replace('@', '%40')}")
            result = self._find_group(group)
            if result is None:
                raise ReconciliationError(self.name, f"{user.email} to {group}", 'add_to_group',
                                          LookupError(f"group `{group}` does not exist"))

            self.client.request('PUT', f"/api/v1/groups/{result['id']}/users/{okta_user['id']}")
        logger.info(f"added user `{user.email}` to Okta group `{group}`")

    def remove_from_group(self, company: Company, user: User, group: str) -> None:
        with self.operation('remove_from_group', f"{user.email} from {group}"):
            okta_user = self._get_user(user)
            result = self._find_group(group)
            if okta_user is None or result is None:
                logger.debug(f"nothing to remove for `{user.email}` in Okta group `{group}`")
                return

            self.client.request('DELETE', f"/api/v1/groups/{result['id']}/users/{okta_user['id']}")
        logger.info(f"removed user `{user.email}` from Okta group `{group}`")

    def list_provider_users(self, company: Company) -> List[Dict[str, Any]]:
        with self.operation('list_provider_users', company.name):
            return self.client.get_all_pages('/api/v1/users', params={'limit': PAGE_LIMIT})

    def list_provider_groups(self, company: Company) -> List[Dict[str, Any]]:
        with self.operation('list_provider_groups', company.name):
            return self.client.get_all_pages('/api/v1/groups', params={'limit': PAGE_LIMIT})

    def provider_group_name(self, record: Dict[str, Any]) -> Optional[str]:
        # Built-in and application groups are managed by Okta itself.
        if record.get('type') != OKTA_GROUP_TYPE:
            return None
        return (record.get('profile') or {}).get('name')

    def delete_user(self, company: Company, user: User) -> None:
        with self.operation('delete_user', user.email):
            okta_user = self._get_user(user)
            if okta_user is None:
                logger.info(f"user `{user.email}` does not exist in {self.name}")
                return
            if okta_user.get('status') == DEPROVISIONED:
                logger.info(f"user `{user.email}` is already deactivated in {self.name}")
                return

            self.client.request('POST', f"/api/v1/users/{okta_user['id']}/lifecycle/deactivate")
        logger.info(f"deactivated user `{user.email}` in {self.name}")

    def delete_group(self, company: Company, group: Group) -> None:
        with self.operation('delete_group', group.name):
            result = self._find_group(group.name)
            if result is None:
                logger.info(f"group `{group.name}` does not exist in {self.name}, nothing to delete")
                return

            self.client.request('DELETE', f"/api/v1/groups/{result['id']}")
        logger.info(f"deleted group `{group.name}` in {self.name}")


def create_provider(config: Dict[str, Any]) -> OktaProvider:
    """
    Factory function to create an OktaProvider.

    Args:
        config: Provider configuration dictionary (auth method is normally ``ssws``)

    Returns:
        OktaProvider instance
    """
    return OktaProvider(ProviderClient(config))
