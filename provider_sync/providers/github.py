"""
GitHub provider integration module.

Users are organization members addressed by their GitHub handle; groups are
teams inside the organization. Both levels carry a role chosen by the user's
group-admin flag.
"""

import logging
from typing import Dict, List, Any, Optional

from provider_sync.models import Company, Directory, Group, User
from provider_sync.providers.base import ProviderAdapter
from provider_sync.providers.client import ProviderClient

logger = logging.getLogger(__name__)

PER_PAGE = 100


def org_role(user: User) -> str:
    return 'admin' if user.is_group_admin else 'member'


def team_role(user: User) -> str:
    return 'maintainer' if user.is_group_admin else 'member'


class GitHubProvider(ProviderAdapter):
    """
    GitHub adapter.

    Users without a GitHub handle are not provisioned on GitHub: every user
    operation returns early for them without calling the API.
    """

    def ensure_user(self, directory: Directory, company: Company, user: User) -> str:
        if not user.github:
            logger.debug(f"user `{user.username}` has no github handle, skipping {self.name}")
            return ''

        org = company.github_org
        role = org_role(user)

        with self.operation('ensure_user', user.github):
            membership = self.lookup(f'/orgs/{org}/memberships/{user.github}')

            if membership is not None and membership.get('role') == role:
                logger.info(f"user `{user.github}` is already a member of the github org `{org}` with role `{role}`")
            else:
                # Add the user to the org or update their role.
                self.client.request('PUT', f'/orgs/{org}/memberships/{user.github}', body={'role': role})
                logger.info(f"updated user `{user.github}` as a member of the github org `{org}` with role `{role}`")

            self.reconcile_groups(company, user)

        # GitHub ids are not tracked.
        return ''

    def ensure_group(self, directory: Directory, company: Company, group: Group) -> None:
        org = company.github_org

        with self.operation('ensure_group', group.name):
            team = self.lookup(f'/orgs/{org}/teams/{group.name}')

            if team is not None:
                if (team.get('name') == group.name
                        and (team.get('description') or '') == group.description
                        and team.get('privacy') == 'closed'):
                    logger.info(f"existing group `{group.name}` in github org `{org}` is up to date")
                    return

                parent = team.get('parent') or {}
                update = {
                    'name': group.name,
                    'description': group.description,
                    'privacy': 'closed',
                }
                if parent.get('id'):
                    update['parent_team_id'] = parent['id']

                self.client.request('PATCH', f'/orgs/{org}/teams/{group.name}', body=update)
                logger.info(f"updated group `{group.name}` in github org `{org}`")
                return

            # Repositories are only attached when the team is created.
            self.client.request('POST', f'/orgs/{org}/teams', body={
                'name': group.name,
                'description': group.description,
                'privacy': 'closed',
                'repo_names': list(group.repos),
            })
            logger.info(f"created group `{group.name}` in github org `{org}`")

    def check_membership(self, company: Company, user: User, group: str) -> bool:
        if not user.github:
            return False

        role = team_role(user)
        with self.operation('check_membership', f"{user.github} in {group}"):
            membership = self.lookup(f'/orgs/{company.github_org}/teams/{group}/memberships/{user.github}')

        if membership is not None and membership.get('role') == role:
            logger.info(f"user `{user.github}` is already a member of the github team `{group}` with role `{role}`")
            return True
        return False

    def is_member(self, company: Company, user: User, group: str) -> bool:
        if not user.github:
            return False

        with self.operation('is_member', f"{user.github} in {group}"):
            membership = self.lookup(f'/orgs/{company.github_org}/teams/{group}/memberships/{user.github}')
        return membership is not None

    def add_to_group(self, company: Company, user: User, group: str) -> None:
        if not user.github:
            return

        role = team_role(user)
        with self.operation('add_to_group', f"{user.github} to {group}"):
            # Add-or-update: the same call corrects a divergent role.
            self.client.request('PUT', f'/orgs/{company.github_org}/teams/{group}/memberships/{user.github}',
                                body={'role': role})
        logger.info(f"updated user `{user.github}` as a member of the github team `{group}` with role `{role}`")

    def remove_from_group(self, company: Company, user: User, group: str) -> None:
        if not user.github:
            return

        with self.operation('remove_from_group', f"{user.github} from {group}"):
            self.client.request('DELETE', f'/orgs/{company.github_org}/teams/{group}/memberships/{user.github}')
        logger.info(f"removed `{user.github}` from github team `{group}`")

    def list_provider_users(self, company: Company) -> List[Dict[str, Any]]:
        with self.operation('list_provider_users', company.github_org):
            return self.client.get_all_pages(f'/orgs/{company.github_org}/members',
                                             params={'filter': 'all', 'role': 'all', 'per_page': PER_PAGE})

    def list_provider_groups(self, company: Company) -> List[Dict[str, Any]]:
        with self.operation('list_provider_groups', company.github_org):
            return self.client.get_all_pages(f'/orgs/{company.github_org}/teams', params={'per_page': PER_PAGE})

    def provider_group_name(self, record: Dict[str, Any]) -> Optional[str]:
        return record.get('slug')

    def delete_user(self, company: Company, user: User) -> None:
        if not user.github:
            return

        # Removing the org membership also removes the user from every team.
        with self.operation('delete_user', user.github):
            self.client.request('DELETE', f'/orgs/{company.github_org}/members/{user.github}')
        logger.info(f"deleted user `{user.github}` from github org `{company.github_org}`")

    def delete_group(self, company: Company, group: Group) -> None:
        with self.operation('delete_group', group.name):
            self.client.request('DELETE', f'/orgs/{company.github_org}/teams/{group.name}')
        logger.info(f"deleted group `{group.name}` in github org `{company.github_org}`")


def create_provider(config: Dict[str, Any]) -> GitHubProvider:
    """
    Factory function to create a GitHubProvider.

    Args:
        config: Provider configuration dictionary

    Returns:
        GitHubProvider instance
    """
    return GitHubProvider(ProviderClient(config))
