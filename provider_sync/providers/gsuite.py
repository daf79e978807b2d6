"""
Google Workspace (GSuite) provider integration module.

Implements the adapter contract on top of the Admin SDK Directory API. Groups
are addressed as ``name@domain`` and members by the user's primary email. Alias
lists on users and groups, and the Groups Settings API, are synchronized as
secondary steps after the primary record is in place.
"""

import logging
import secrets
from typing import Dict, List, Any, Optional, Callable

from provider_sync.models import Company, Directory, Group, User
from provider_sync.providers.base import ProviderAdapter
from provider_sync.providers.client import ProviderClient

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_BASE_URL = 'https://www.googleapis.com/groups/v1'
SUSPENSION_REASON = 'No longer in config file.'
MAX_RESULTS = 500


def member_role(user: User) -> str:
    return 'OWNER' if user.is_group_admin else 'MEMBER'


def qualify(address: str, domain: str) -> str:
    """Append the domain to a bare local part."""
    return address if '@' in address else f"{address}@{domain}"


def differs(existing: Any, desired: Any) -> bool:
    """
    Return True if ``desired`` is not already reflected in ``existing``.

    Dicts are compared as subsets so that read-only fields the API adds to a
    resource (etag, id, kind, ...) never count as drift.
    """
    if isinstance(desired, dict):
        if not isinstance(existing, dict):
            return True
        return any(differs(existing.get(k), v) for k, v in desired.items())

    if isinstance(desired, list):
        if not isinstance(existing, list) or len(existing) != len(desired):
            return True
        return any(differs(e, d) for e, d in zip(existing, desired))

    return existing != desired


def _settings_value(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def group_settings(group: Group) -> Dict[str, str]:
    """Groups Settings API body for a canonical group."""
    return {
        'allowExternalMembers': _settings_value(group.allow_external_members),
        'allowWebPosting': _settings_value(group.allow_web_posting),
        'isArchived': _settings_value(group.is_archived),
        'whoCanDiscoverGroup': group.who_can_discover_group,
        'whoCanJoin': group.who_can_join,
        'whoCanModerateMembers': group.who_can_moderate_members,
        'whoCanPostMessage': group.who_can_post_message,
        'whoCanViewGroup': group.who_can_view_group,
        'whoCanViewMembership': group.who_can_view_membership,
        'enableCollaborativeInbox': _settings_value(group.enable_collaborative_inbox),
    }


class GSuiteProvider(ProviderAdapter):
    """
    GSuite adapter.

    Holds two clients: the Directory API client for users, groups, members and
    aliases, and the Groups Settings API client.
    """

    def __init__(self, client: ProviderClient, settings_client: ProviderClient,
                 notifier: Optional[Callable[[User, str, str], None]] = None):
        """
        Initialize GSuite adapter.

        Args:
            client: Directory API client
            settings_client: Groups Settings API client
            notifier: Called as notifier(user, password, login) after a user is
                created; its errors abort ensure_user
        """
        super().__init__(client)
        self.settings_client = settings_client
        self.notifier = notifier

    def close(self):
        super().close()
        self.settings_client.close_connection()

    def authenticate(self) -> bool:
        return self.client.authenticate() and self.settings_client.authenticate()

    def build_user(self, directory: Directory, company: Company, user: User) -> Dict[str, Any]:
        """
        Build the Directory API user fields that mirror the canonical user.

        Only fields owned by the directory are included; the update call has
        patch semantics so anything else on the account is left alone.
        """
        record = {
            'primaryEmail': user.email,
            'name': {
                'givenName': user.first_name,
                'familyName': user.last_name,
                'fullName': user.full_name(),
            },
            'suspended': False,
        }

        if user.recovery_email:
            record['recoveryEmail'] = user.recovery_email
        if user.recovery_phone:
            record['recoveryPhone'] = user.recovery_phone

        if user.department:
            record['organizations'] = [{'department': user.department, 'primary': True}]

        manager = directory.manager_of(user)
        if manager:
            record['relations'] = [{'type': 'manager', 'value': manager.email}]

        if user.home_address_formatted:
            street = f"{user.home_address_street_1}\n{user.home_address_street_2}".strip()
            record['addresses'] = [{
                'type': 'home',
                'primary': True,
                'formatted': user.home_address_formatted,
                'streetAddress': street,
                'locality': user.home_address_city,
                'region': user.home_address_state,
                'postalCode': user.home_address_zipcode,
                'countryCode': user.home_address_country_code,
            }]

        return record

    def ensure_user(self, directory: Directory, company: Company, user: User) -> str:
        record = self.build_user(directory, company, user)

        with self.operation('ensure_user', user.email):
            existing = self.lookup(f'/users/{user.email}',
                                   params={'projection': 'full', 'viewType': 'admin_view'})

            if existing is not None:
                user_id = existing.get('id', '')
                if differs(existing, record):
                    self.client.request('PUT', f'/users/{user_id}', body=record)
                    logger.info(f"updated user `{user.email}` in {self.name}")
                else:
                    logger.info(f"existing user `{user.email}` in {self.name} is up to date")
            else:
                password = secrets.token_urlsafe(18)
                record['password'] = password
                record['changePasswordAtNextLogin'] = True

                created = self.client.request('POST', '/users', body=record)
                user_id = created.get('id', '')
                logger.info(f"created user `{user.email}` in {self.name}")

                # Only after the create succeeded; a failure here aborts the call.
                if self.notifier is not None:
                    self.notifier(user, password, user.email)

            self.update_user_aliases(company, user)
            self.reconcile_groups(company, user)

        return user_id

    def _sync_aliases(self, path: str, desired: List[str]):
        """Add missing and remove extraneous aliases under a users/groups path."""
        response = self.client.request('GET', f'{path}/aliases')
        current = {a.get('alias', '').lower(): a.get('alias') for a in response.get('aliases', [])}
        wanted = {a.lower(): a for a in desired}

        for key, alias in wanted.items():
            if key not in current:
                self.client.request('POST', f'{path}/aliases', body={'alias': alias})
                logger.info(f"added alias `{alias}` to {path} in {self.name}")

        for key, alias in current.items():
            if key not in wanted:
                self.client.request('DELETE', f'{path}/aliases/{alias}')
                logger.info(f"removed alias `{alias}` from {path} in {self.name}")

    def update_user_aliases(self, company: Company, user: User):
        desired = [qualify(a, company.gsuite_domain) for a in user.aliases]
        self._sync_aliases(f'/users/{user.email}', desired)

    def update_group_aliases(self, company: Company, group: Group):
        desired = [qualify(a, company.gsuite_domain) for a in group.aliases]
        self._sync_aliases(f'/groups/{self.group_address(company, group.name)}', desired)

    def update_group_settings(self, company: Company, group: Group):
        address = self.group_address(company, group.name)
        desired = group_settings(group)

        current = self.settings_client.request('GET', f'/groups/{address}', params={'alt': 'json'})
        if not differs(current, desired):
            logger.debug(f"settings for group `{group.name}` in {self.name} are up to date")
            return

        self.settings_client.request('PUT', f'/groups/{address}', body=desired, params={'alt': 'json'})
        logger.info(f"updated settings for group `{group.name}` in {self.name}")

    @staticmethod
    def group_address(company: Company, group: str) -> str:
        return f"{group}@{company.gsuite_domain}"

    def ensure_group(self, directory: Directory, company: Company, group: Group) -> None:
        address = self.group_address(company, group.name)
        record = {
            'name': group.name,
            'email': address,
            'description': group.description,
        }

        with self.operation('ensure_group', group.name):
            existing = self.lookup(f'/groups/{address}')

            if existing is not None:
                if differs(existing, record):
                    self.client.request('PUT', f'/groups/{address}', body=record)
                    logger.info(f"updated group `{group.name}` in {self.name}")
                else:
                    logger.info(f"existing group `{group.name}` in {self.name} is up to date")
            else:
                self.client.request('POST', '/groups', body=record)
                logger.info(f"created group `{group.name}` in {self.name}")

            self.update_group_aliases(company, group)
            self.update_group_settings(company, group)

    def _get_member(self, company: Company, user: User, group: str) -> Optional[Dict[str, Any]]:
        return self.lookup(f'/groups/{self.group_address(company, group)}/members/{user.email}')

    def check_membership(self, company: Company, user: User, group: str) -> bool:
        role = member_role(user)
        with self.operation('check_membership', f"{user.email} in {group}"):
            member = self._get_member(company, user, group)

        if member is not None and member.get('role') == role:
            logger.info(f"user `{user.email}` is already a member of the GSuite group `{group}` with role `{role}`")
            return True
        return False

    def is_member(self, company: Company, user: User, group: str) -> bool:
        with self.operation('is_member', f"{user.email} in {group}"):
            return self._get_member(company, user, group) is not None

    def add_to_group(self, company: Company, user: User, group: str) -> None:
        role = member_role(user)
        address = self.group_address(company, group)

        with self.operation('add_to_group', f"{user.email} to {group}"):
            member = self._get_member(company, user, group)

            if member is None:
                self.client.request('POST', f'/groups/{address}/members', body={
                    'email': user.email,
                    'role': role,
                    'delivery_settings': 'ALL_MAIL',
                })
                logger.info(f"created user `{user.email}` membership to GSuite group `{group}` with role `{role}`")
            elif member.get('role') != role:
                self.client.request('PUT', f'/groups/{address}/members/{user.email}', body={
                    'email': user.email,
                    'role': role,
                })
                logger.info(f"updated user `{user.email}` membership to GSuite group `{group}` with role `{role}`")

    def remove_from_group(self, company: Company, user: User, group: str) -> None:
        with self.operation('remove_from_group', f"{user.email} from {group}"):
            self.client.request('DELETE', f'/groups/{self.group_address(company, group)}/members/{user.email}')
        logger.info(f"removed user `{user.email}` from GSuite group `{group}`")

    def _list_all(self, path: str, key: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Collect a Directory API listing by following nextPageToken."""
        items = []
        page_params = dict(params)
        while True:
            response = self.client.request('GET', path, params=page_params)
            items.extend(response.get(key, []))
            token = response.get('nextPageToken')
            if not token:
                return items
            page_params['pageToken'] = token

    def list_provider_users(self, company: Company) -> List[Dict[str, Any]]:
        with self.operation('list_provider_users', company.gsuite_domain):
            return self._list_all('/users', 'users', {
                'customer': company.gsuite_account_id,
                'domain': company.gsuite_domain,
                'orderBy': 'email',
                'projection': 'full',
                'viewType': 'admin_view',
                'maxResults': MAX_RESULTS,
            })

    def list_provider_groups(self, company: Company) -> List[Dict[str, Any]]:
        with self.operation('list_provider_groups', company.gsuite_domain):
            return self._list_all('/groups', 'groups', {
                'customer': company.gsuite_account_id,
                'domain': company.gsuite_domain,
                'orderBy': 'email',
                'maxResults': 200,
            })

    def provider_group_name(self, record: Dict[str, Any]) -> Optional[str]:
        email = record.get('email', '')
        return email.split('@', 1)[0] if email else record.get('name')

    def delete_user(self, company: Company, user: User) -> None:
        with self.operation('delete_user', user.email):
            gsuite_user = self.client.request('GET', f'/users/{user.email}',
                                              params={'projection': 'full', 'viewType': 'admin_view'})
            if gsuite_user.get('suspended'):
                logger.info(f"user `{user.email}` is already suspended in {self.name}")
                return

            self.client.request('PUT', f'/users/{user.email}', body={
                'suspended': True,
                'suspensionReason': SUSPENSION_REASON,
            })
        logger.info(f"suspended user `{user.email}` from {self.name}")

    def delete_group(self, company: Company, group: Group) -> None:
        with self.operation('delete_group', group.name):
            self.client.request('DELETE', f'/groups/{self.group_address(company, group.name)}')
        logger.info(f"deleted group `{group.name}` from {self.name}")


def create_provider(config: Dict[str, Any], notifier: Optional[Callable] = None) -> GSuiteProvider:
    """
    Factory function to create a GSuiteProvider.

    Args:
        config: Provider configuration dictionary
        notifier: New-account notifier

    Returns:
        GSuiteProvider instance
    """
    settings_config = dict(config)
    settings_config['name'] = f"{config['name']}-settings"
    settings_config['base_url'] = config.get('settings_base_url', DEFAULT_SETTINGS_BASE_URL)

    return GSuiteProvider(ProviderClient(config), ProviderClient(settings_config), notifier=notifier)
