"""
In-memory access directory for local runs and tests.
"""

from typing import Dict, Iterable, Optional, Set

from shared.logging import get_logger
from ..domain.models import ApiKey, Site, User


class InMemoryAccessDirectory:
    """Dictionary-backed implementation of ``AccessDirectory``."""

    def __init__(self, super_admin_user_ids: Iterable[str] = ()):
        self.logger = get_logger("gateway.memory_directory")
        self._api_keys: Dict[str, ApiKey] = {}
        self._sites: Dict[str, Site] = {}
        self._users: Dict[str, User] = {}
        self._super_admins: Set[str] = set(super_admin_user_ids)

    def add_user(self, user: User, super_admin: bool = False) -> User:
        self._users[user.id] = user
        if super_admin:
            self._super_admins.add(user.id)
        return user

    def add_api_key(self, token: str, api_key: ApiKey) -> ApiKey:
        self._users.setdefault(api_key.user.id, api_key.user)
        self._api_keys[token] = api_key
        return api_key

    def add_site(self, site: Site) -> Site:
        self._sites[site.id] = site
        return site

    async def find_api_key(self, token: str) -> Optional[ApiKey]:
        return self._api_keys.get(token)

    async def find_site_by_domain_or_alias(self, identifier: str) -> Optional[Site]:
        # Current domains win over aliases left behind by a rename
        for site in self._sites.values():
            if site.domain == identifier:
                return site
        for site in self._sites.values():
            if site.answers_to(identifier):
                return site
        return None

    async def is_member(self, user_id: str, site: Site) -> bool:
        return user_id in site.member_ids

    async def is_locked(self, site: Site) -> bool:
        return site.locked

    async def has_feature(self, user: User, feature: str) -> bool:
        known = self._users.get(user.id, user)
        return feature in known.features

    async def is_super_admin(self, user_id: str) -> bool:
        return user_id in self._super_admins
