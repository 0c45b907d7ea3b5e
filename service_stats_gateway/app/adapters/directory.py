"""
Lookup contract the gate requires from the account datastore.
"""

from typing import Optional, Protocol

from ..domain.models import ApiKey, Site, User


class AccessDirectory(Protocol):
    """Read-only view of API keys, sites and users.

    Implementations raise ``CollaboratorUnavailableError`` when the backing
    store cannot answer; a missing record is ``None``/``False``, never an
    exception.
    """

    async def find_api_key(self, token: str) -> Optional[ApiKey]:
        ...

    async def find_site_by_domain_or_alias(self, identifier: str) -> Optional[Site]:
        ...

    async def is_member(self, user_id: str, site: Site) -> bool:
        ...

    async def is_locked(self, site: Site) -> bool:
        ...

    async def has_feature(self, user: User, feature: str) -> bool:
        ...

    async def is_super_admin(self, user_id: str) -> bool:
        ...
