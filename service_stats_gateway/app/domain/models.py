"""
Domain models for Stats API authorization.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional, Union


class DenialReason(str, Enum):
    """Closed set of reasons a Stats API request can be rejected for."""
    MISSING_API_KEY = "missing_api_key"
    MISSING_SITE_ID = "missing_site_id"
    INVALID_API_KEY = "invalid_api_key"
    RATE_LIMIT = "rate_limit"
    UPGRADE_REQUIRED = "upgrade_required"
    SITE_LOCKED = "site_locked"


@dataclass(frozen=True)
class User:
    """Owner of an API key."""
    id: str
    features: FrozenSet[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class ApiKey:
    """Resolved API key record."""
    id: str
    user: User
    hourly_request_limit: int

    def __post_init__(self):
        if self.hourly_request_limit <= 0:
            raise ValueError("hourly_request_limit must be a positive integer")

    @property
    def user_id(self) -> str:
        return self.user.id


@dataclass(frozen=True)
class Site:
    """A tracked site, addressable by its domain or its previous domain."""
    id: str
    domain: str
    domain_changed_from: Optional[str] = None
    locked: bool = False
    member_ids: FrozenSet[str] = field(default_factory=frozenset)

    def answers_to(self, identifier: str) -> bool:
        return identifier == self.domain or (
            self.domain_changed_from is not None and identifier == self.domain_changed_from
        )


@dataclass(frozen=True)
class Authorized:
    """The request may proceed against ``site``."""
    site: Site

    @property
    def allowed(self) -> bool:
        return True


@dataclass(frozen=True)
class Denied:
    """The request is rejected for exactly one ``reason``.

    ``limit`` is only set for ``DenialReason.RATE_LIMIT`` and carries the
    hourly ceiling that was exceeded.
    """
    reason: DenialReason
    limit: Optional[int] = None

    def __post_init__(self):
        if (self.limit is not None) != (self.reason is DenialReason.RATE_LIMIT):
            raise ValueError("limit must be set for rate_limit denials only")

    @property
    def allowed(self) -> bool:
        return False


AuthorizationResult = Union[Authorized, Denied]
