"""
Provider adapter contract and shared reconciliation logic.

This module defines the abstract base class that every provider integration must
implement, the error raised when a reconciliation step fails, and the
group-membership diff algorithm shared by the providers that have groups.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, List, Any, Optional, Iterable

from provider_sync.models import Company, Directory, Group, User
from provider_sync.notifications import NotificationError
from provider_sync.providers.client import ProviderAPIError, ProviderClient, NotFoundError

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """
    Raised when a reconciliation step fails.

    Carries the provider name, the canonical entity and the operation so the
    caller can log the failure and move on to the next entity.
    """

    def __init__(self, provider: str, entity: str, operation: str, cause: Exception):
        self.provider = provider
        self.entity = entity
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} `{entity}` on {provider} failed: {cause}")


class ProviderAdapter(ABC):
    """
    Abstract base class for provider adapters.

    An adapter owns an authenticated ProviderClient for one provider account and
    translates "ensure this user/group exists with this membership" into that
    provider's API calls.
    """

    def __init__(self, client: ProviderClient):
        """
        Initialize provider adapter.

        Args:
            client: Authenticated client for the provider account
        """
        self.client = client
        self.name = client.name

    def authenticate(self) -> bool:
        return self.client.authenticate()

    def close(self):
        self.client.close_connection()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @contextmanager
    def operation(self, name: str, entity: str):
        """
        Attribute any failure inside the block to an operation on an entity.

        Errors already attributed by a nested operation pass through unchanged.
        """
        try:
            yield
        except ReconciliationError:
            raise
        except (ProviderAPIError, NotificationError) as e:
            logger.error(f"{name} `{entity}` on {self.name} failed: {e}")
            raise ReconciliationError(self.name, entity, name, e) from e

    def lookup(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """
        Fetch a resource whose absence is a normal state.

        Returns:
            Decoded resource, or None when the provider answers 404
        """
        try:
            return self.client.request('GET', path, params=params)
        except NotFoundError:
            logger.debug(f"{path} not found on {self.name}")
            return None

    def reconcile_groups(self, company: Company, user: User,
                         provider_groups: Optional[List[Dict[str, Any]]] = None):
        """
        Converge the user's remote group memberships onto ``user.groups``.

        Adds the user to every canonical group they are missing from (or hold the
        wrong role in), then removes them from every remote group that is not
        canonical, whatever role they hold there.

        Args:
            company: Account scope
            user: Canonical user
            provider_groups: Pre-fetched list_provider_groups() result; fetched
                here when omitted
        """
        desired = set(user.groups)

        for group in user.groups:
            if not self.check_membership(company, user, group):
                self.add_to_group(company, user, group)

        if provider_groups is None:
            provider_groups = self.list_provider_groups(company)

        for name in self._group_names(provider_groups):
            if name in desired:
                continue

            if self.is_member(company, user, name):
                self.remove_from_group(company, user, name)

    def _group_names(self, provider_groups: Iterable[Dict[str, Any]]) -> List[str]:
        names = []
        for record in provider_groups:
            name = self.provider_group_name(record)
            if name:
                names.append(name)
        return names

    def provider_group_name(self, record: Dict[str, Any]) -> Optional[str]:
        """
        Map a listed remote group to its canonical name.

        Returns None for groups that membership reconciliation must not touch.
        """
        return record.get('name')

    def is_member(self, company: Company, user: User, group: str) -> bool:
        """
        Return True if the user is in the named group with any role.

        Providers whose memberships carry no role can rely on check_membership.
        """
        return self.check_membership(company, user, group)

    # Abstract methods that provider modules must implement

    @abstractmethod
    def ensure_user(self, directory: Directory, company: Company, user: User) -> str:
        """
        Create or update the remote user, then reconcile their group memberships.

        Returns:
            Provider-native user id, or '' when the provider has no user concept
            for this account
        """
        pass

    @abstractmethod
    def ensure_group(self, directory: Directory, company: Company, group: Group) -> None:
        """Create or update the remote group."""
        pass

    @abstractmethod
    def check_membership(self, company: Company, user: User, group: str) -> bool:
        """Return True iff the user holds the correct role in the named group."""
        pass

    @abstractmethod
    def add_to_group(self, company: Company, user: User, group: str) -> None:
        """Add the user to the group, or correct their role."""
        pass

    @abstractmethod
    def remove_from_group(self, company: Company, user: User, group: str) -> None:
        """Remove the user from the group."""
        pass

    @abstractmethod
    def list_provider_users(self, company: Company) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_provider_groups(self, company: Company) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def delete_user(self, company: Company, user: User) -> None:
        pass

    @abstractmethod
    def delete_group(self, company: Company, group: Group) -> None:
        pass
