"""
Canonical directory records.

The directory is the single source of truth for users and groups. Provider
adapters read these records and drive remote state toward them; nothing in this
package writes back to the directory.
"""

import logging
from dataclasses import dataclass, field, fields
from typing import Dict, List, Any, Optional

import yaml

logger = logging.getLogger(__name__)


class DirectoryError(Exception):
    """Raised when the canonical directory cannot be loaded."""
    pass


@dataclass
class Company:
    """Account scope passed to every adapter call."""

    name: str
    github_org: str = ''
    gsuite_domain: str = ''
    gsuite_account_id: str = ''


@dataclass
class User:
    """A canonical user."""

    username: str
    email: str
    first_name: str = ''
    last_name: str = ''
    recovery_phone: str = ''
    recovery_email: str = ''
    department: str = ''
    # Username of the manager, resolved through the Directory.
    manager: str = ''
    groups: List[str] = field(default_factory=list)
    is_group_admin: bool = False
    github: str = ''
    ramp_id: str = ''
    aliases: List[str] = field(default_factory=list)
    home_address_street_1: str = ''
    home_address_street_2: str = ''
    home_address_city: str = ''
    home_address_state: str = ''
    home_address_zipcode: str = ''
    home_address_country_code: str = ''
    home_address_formatted: str = ''

    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class Group:
    """A canonical group."""

    name: str
    description: str = ''
    aliases: List[str] = field(default_factory=list)
    repos: List[str] = field(default_factory=list)

    # Google Groups settings.
    allow_external_members: bool = False
    allow_web_posting: bool = True
    is_archived: bool = False
    who_can_discover_group: str = 'ALL_IN_DOMAIN_CAN_DISCOVER'
    who_can_join: str = 'CAN_REQUEST_TO_JOIN'
    who_can_moderate_members: str = 'ALL_MANAGERS_CAN_MODERATE'
    who_can_post_message: str = 'ALL_IN_DOMAIN_CAN_POST'
    who_can_view_group: str = 'ALL_IN_DOMAIN_CAN_VIEW'
    who_can_view_membership: str = 'ALL_IN_DOMAIN_CAN_VIEW'
    enable_collaborative_inbox: bool = False


def _build(cls, key_field: str, key: str, data: Optional[Dict[str, Any]]):
    """Build a dataclass record from a mapping, ignoring unknown keys."""
    data = dict(data or {})
    data.setdefault(key_field, key)

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__.lower()} fields for '{key}': {', '.join(unknown)}")

    return cls(**{k: v for k, v in data.items() if k in known})


class Directory:
    """
    In-memory view of the canonical users and groups.

    Retired records live in ``removed_users`` / ``removed_groups`` so that the
    orchestrator can hand them to the adapters' delete operations.
    """

    def __init__(self, users: Optional[List[User]] = None, groups: Optional[List[Group]] = None,
                 removed_users: Optional[List[User]] = None, removed_groups: Optional[List[Group]] = None):
        self.users: Dict[str, User] = {u.username: u for u in (users or [])}
        self.groups: Dict[str, Group] = {g.name: g for g in (groups or [])}
        self.removed_users: List[User] = list(removed_users or [])
        self.removed_groups: List[Group] = list(removed_groups or [])

    def get_user(self, username: str) -> Optional[User]:
        return self.users.get(username)

    def manager_of(self, user: User) -> Optional[User]:
        """
        Resolve the user's manager.

        Args:
            user: Canonical user

        Returns:
            The manager's record, or None if the user has no manager or the
            reference does not resolve
        """
        if not user.manager:
            return None

        manager = self.users.get(user.manager)
        if manager is None:
            logger.warning(f"Manager '{user.manager}' of user '{user.username}' not found in directory")
        return manager

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Directory':
        """
        Build a directory from a mapping.

        Expected layout::

            users:
              jdoe: {email: jdoe@example.com, groups: [eng]}
            groups:
              eng: {description: Engineering}
            removed_users:
              olduser: {email: olduser@example.com}
            removed_groups:
              oldteam: {}
        """
        data = data or {}
        try:
            users = [_build(User, 'username', k, v) for k, v in (data.get('users') or {}).items()]
            groups = [_build(Group, 'name', k, v) for k, v in (data.get('groups') or {}).items()]
            removed_users = [_build(User, 'username', k, v) for k, v in (data.get('removed_users') or {}).items()]
            removed_groups = [_build(Group, 'name', k, v) for k, v in (data.get('removed_groups') or {}).items()]
        except TypeError as e:
            raise DirectoryError(f"Invalid directory record: {e}")

        return cls(users, groups, removed_users, removed_groups)


def load_directory(path: str) -> Directory:
    """
    Load the canonical directory from a YAML file.

    Args:
        path: Path to the directory file

    Returns:
        Loaded Directory

    Raises:
        DirectoryError: If the file is missing or invalid
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise DirectoryError(f"Directory file not found: {path}")
    except yaml.YAMLError as e:
        raise DirectoryError(f"Invalid YAML in directory file: {e}")

    directory = Directory.from_dict(data)
    logger.info(f"Loaded directory from {path}: {len(directory.users)} users, {len(directory.groups)} groups")
    return directory
