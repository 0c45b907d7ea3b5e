"""
PostgreSQL-backed access directory.

Reads API keys, users, sites and memberships from the account database.
The gate never writes to these tables.
"""

import asyncio
import hashlib
from typing import Any, Iterable, Optional

import asyncpg

from shared.logging import get_logger
from shared.errors import CollaboratorUnavailableError
from ..domain.models import ApiKey, Site, User

_API_KEY_QUERY = """
    SELECT k.id, k.user_id, k.hourly_request_limit, u.features
    FROM api_keys k
    JOIN users u ON u.id = k.user_id
    WHERE k.key_hash = $1
"""

# Prefer a site currently using the domain over one that used to
_SITE_QUERY = """
    SELECT id, domain, domain_changed_from, locked
    FROM sites
    WHERE domain = $1 OR domain_changed_from = $1
    ORDER BY (domain = $1) DESC
    LIMIT 1
"""

_MEMBERSHIP_QUERY = """
    SELECT EXISTS(
        SELECT 1 FROM site_memberships WHERE site_id = $1 AND user_id = $2
    )
"""


def hash_api_key(token: str, secret: str = "") -> str:
    """Hash a raw API key the way it is stored in ``api_keys.key_hash``."""
    return hashlib.sha256(f"{secret}{token}".encode("utf-8")).hexdigest()


class PostgresAccessDirectory:
    """asyncpg implementation of ``AccessDirectory``."""

    def __init__(self, dsn: str, api_key_secret: str = "",
                 super_admin_user_ids: Iterable[str] = (), pool: Optional[asyncpg.Pool] = None):
        self.dsn = dsn
        self.api_key_secret = api_key_secret
        self.super_admin_user_ids = frozenset(str(user_id) for user_id in super_admin_user_ids)
        self.logger = get_logger("gateway.postgres_directory")
        self.pool: Optional[asyncpg.Pool] = pool

    async def start(self):
        """Open the connection pool."""
        if self.pool is not None:
            return
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=2,
                max_size=10,
                command_timeout=5
            )
            self.logger.info("PostgreSQL directory started")
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Failed to start PostgreSQL directory", error=str(e))
            raise CollaboratorUnavailableError("directory", str(e)) from e

    async def stop(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL directory stopped")

    async def _run(self, method: str, query: str, *args) -> Any:
        if self.pool is None:
            raise CollaboratorUnavailableError("directory", "connection pool not started")
        try:
            async with self.pool.acquire() as conn:
                return await getattr(conn, method)(query, *args)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            self.logger.error("Directory query failed", error=str(e))
            raise CollaboratorUnavailableError("directory", str(e)) from e

    async def ping(self) -> bool:
        """Run a trivial query through the pool."""
        return await self._run("fetchval", "SELECT 1") == 1

    async def find_api_key(self, token: str) -> Optional[ApiKey]:
        row = await self._run("fetchrow", _API_KEY_QUERY, hash_api_key(token, self.api_key_secret))
        if row is None:
            return None

        user = User(id=str(row["user_id"]), features=frozenset(row["features"] or ()))
        return ApiKey(
            id=str(row["id"]),
            user=user,
            hourly_request_limit=row["hourly_request_limit"]
        )

    async def find_site_by_domain_or_alias(self, identifier: str) -> Optional[Site]:
        row = await self._run("fetchrow", _SITE_QUERY, identifier)
        if row is None:
            return None

        return Site(
            id=str(row["id"]),
            domain=row["domain"],
            domain_changed_from=row["domain_changed_from"],
            locked=bool(row["locked"])
        )

    async def is_member(self, user_id: str, site: Site) -> bool:
        return bool(await self._run("fetchval", _MEMBERSHIP_QUERY, site.id, user_id))

    async def is_locked(self, site: Site) -> bool:
        return site.locked

    async def has_feature(self, user: User, feature: str) -> bool:
        return feature in user.features

    async def is_super_admin(self, user_id: str) -> bool:
        return str(user_id) in self.super_admin_user_ids
