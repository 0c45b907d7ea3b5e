"""
Site access policy for Stats API keys.

After the requested site is resolved, an ordered list of guards is walked and
the first guard that applies decides the outcome:

1. super-admin owners are always let through
2. a locked site rejects everyone else
3. owners without the Stats API feature get an upgrade prompt
4. site members are let through

Anything else falls through to ``invalid_api_key``. An unknown site also
yields ``invalid_api_key`` so callers cannot learn which domains exist.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple

from shared.logging import get_logger
from ..adapters.directory import AccessDirectory
from .models import ApiKey, Authorized, AuthorizationResult, Denied, DenialReason, Site

STATS_API_FEATURE = "stats_api"


@dataclass(frozen=True)
class AccessGuard:
    """One step of the policy: when ``applies`` holds, allow or deny with ``reason``."""
    name: str
    applies: Callable[[ApiKey, Site], Awaitable[bool]]
    reason: Optional[DenialReason] = None

    def outcome(self, site: Site) -> AuthorizationResult:
        if self.reason is None:
            return Authorized(site)
        return Denied(self.reason)


class AccessEvaluator:
    """Decides whether an API key may read stats for a site."""

    def __init__(self, directory: AccessDirectory, feature: str = STATS_API_FEATURE):
        self.directory = directory
        self.feature = feature
        self.logger = get_logger("gateway.access_evaluator")
        self.guards: Tuple[AccessGuard, ...] = (
            AccessGuard("super_admin", self._is_super_admin),
            AccessGuard("site_locked", self._is_locked, DenialReason.SITE_LOCKED),
            AccessGuard("feature_missing", self._lacks_feature, DenialReason.UPGRADE_REQUIRED),
            AccessGuard("member", self._is_member),
        )

    async def _is_super_admin(self, api_key: ApiKey, site: Site) -> bool:
        return await self.directory.is_super_admin(api_key.user_id)

    async def _is_locked(self, api_key: ApiKey, site: Site) -> bool:
        return await self.directory.is_locked(site)

    async def _lacks_feature(self, api_key: ApiKey, site: Site) -> bool:
        return not await self.directory.has_feature(api_key.user, self.feature)

    async def _is_member(self, api_key: ApiKey, site: Site) -> bool:
        return await self.directory.is_member(api_key.user_id, site)

    async def evaluate(self, api_key: ApiKey, site_id: Optional[str]) -> AuthorizationResult:
        """Resolve ``site_id`` and apply the guards in order."""
        if not site_id:
            return Denied(DenialReason.MISSING_SITE_ID)

        site = await self.directory.find_site_by_domain_or_alias(site_id)
        if site is None:
            return Denied(DenialReason.INVALID_API_KEY)

        for guard in self.guards:
            if await guard.applies(api_key, site):
                result = guard.outcome(site)
                self.logger.debug(
                    "Access guard matched",
                    guard=guard.name,
                    api_key_id=api_key.id,
                    site_id=site.id,
                    allowed=result.allowed
                )
                return result

        return Denied(DenialReason.INVALID_API_KEY)
