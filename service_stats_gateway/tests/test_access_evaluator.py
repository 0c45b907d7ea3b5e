"""
Unit tests for the site access policy.
"""

import pytest
from unittest.mock import AsyncMock, patch

from service_stats_gateway.app.adapters.memory_directory import InMemoryAccessDirectory
from service_stats_gateway.app.domain.access_evaluator import STATS_API_FEATURE, AccessEvaluator
from service_stats_gateway.app.domain.models import ApiKey, Authorized, Denied, DenialReason, Site, User


def _api_key(user: User, key_id: str = "key-1") -> ApiKey:
    return ApiKey(id=key_id, user=user, hourly_request_limit=600)


class TestAccessEvaluator:
    """Test cases for AccessEvaluator."""

    @pytest.fixture
    def entitled_member(self):
        return User(id="member", features=frozenset({STATS_API_FEATURE}))

    @pytest.fixture
    def unentitled_member(self):
        return User(id="free-member")

    @pytest.fixture
    def entitled_outsider(self):
        return User(id="outsider", features=frozenset({STATS_API_FEATURE}))

    @pytest.fixture
    def unentitled_outsider(self):
        return User(id="free-outsider")

    @pytest.fixture
    def super_admin(self):
        return User(id="admin")

    @pytest.fixture
    def renamed_site(self):
        return Site(
            id="site-1",
            domain="new.example",
            domain_changed_from="old.example",
            member_ids=frozenset({"member", "free-member"}),
        )

    @pytest.fixture
    def locked_site(self):
        return Site(
            id="site-2",
            domain="locked.example",
            locked=True,
            member_ids=frozenset({"member", "free-member"}),
        )

    @pytest.fixture
    def directory(self, entitled_member, unentitled_member, entitled_outsider,
                  unentitled_outsider, super_admin, renamed_site, locked_site):
        directory = InMemoryAccessDirectory()
        for user in (entitled_member, unentitled_member, entitled_outsider, unentitled_outsider):
            directory.add_user(user)
        directory.add_user(super_admin, super_admin=True)
        directory.add_site(renamed_site)
        directory.add_site(locked_site)
        return directory

    @pytest.fixture
    def evaluator(self, directory):
        return AccessEvaluator(directory)

    def test_guard_order(self, evaluator):
        assert [guard.name for guard in evaluator.guards] == [
            "super_admin", "site_locked", "feature_missing", "member",
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("site_id", [None, ""])
    async def test_missing_site_id_checked_before_lookup(self, evaluator, directory, entitled_member, site_id):
        with patch.object(directory, "find_site_by_domain_or_alias", new_callable=AsyncMock) as mock_find:
            result = await evaluator.evaluate(_api_key(entitled_member), site_id)

        assert result == Denied(DenialReason.MISSING_SITE_ID)
        mock_find.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_site_is_reported_as_invalid_api_key(self, evaluator, entitled_member):
        result = await evaluator.evaluate(_api_key(entitled_member), "nowhere.example")
        assert result == Denied(DenialReason.INVALID_API_KEY)

    @pytest.mark.asyncio
    async def test_member_with_feature_is_authorized(self, evaluator, entitled_member, renamed_site):
        result = await evaluator.evaluate(_api_key(entitled_member), "new.example")
        assert result == Authorized(renamed_site)

    @pytest.mark.asyncio
    async def test_previous_domain_resolves_to_same_site(self, evaluator, entitled_member):
        by_new = await evaluator.evaluate(_api_key(entitled_member), "new.example")
        by_old = await evaluator.evaluate(_api_key(entitled_member), "old.example")

        assert isinstance(by_old, Authorized)
        assert by_old.site == by_new.site

    @pytest.mark.asyncio
    @pytest.mark.parametrize("site_id", ["new.example", "locked.example"])
    async def test_super_admin_bypasses_lock_and_entitlement(self, evaluator, super_admin, site_id):
        result = await evaluator.evaluate(_api_key(super_admin), site_id)

        assert isinstance(result, Authorized)
        assert result.site.domain == site_id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_fixture", ["entitled_member", "unentitled_member", "entitled_outsider"])
    async def test_locked_site_denies_everyone_but_super_admins(self, evaluator, request, user_fixture):
        user = request.getfixturevalue(user_fixture)
        result = await evaluator.evaluate(_api_key(user), "locked.example")
        assert result == Denied(DenialReason.SITE_LOCKED)

    @pytest.mark.asyncio
    async def test_member_without_feature_gets_upgrade_prompt(self, evaluator, unentitled_member):
        result = await evaluator.evaluate(_api_key(unentitled_member), "new.example")
        assert result == Denied(DenialReason.UPGRADE_REQUIRED)

    @pytest.mark.asyncio
    async def test_non_member_without_feature_gets_upgrade_prompt(self, evaluator, unentitled_outsider):
        result = await evaluator.evaluate(_api_key(unentitled_outsider), "new.example")
        assert result == Denied(DenialReason.UPGRADE_REQUIRED)

    @pytest.mark.asyncio
    async def test_entitled_non_member_falls_through_to_invalid_api_key(self, evaluator, entitled_outsider):
        result = await evaluator.evaluate(_api_key(entitled_outsider), "new.example")
        assert result == Denied(DenialReason.INVALID_API_KEY)

    @pytest.mark.asyncio
    async def test_later_guards_are_not_consulted_after_a_match(self, evaluator, directory, super_admin):
        with patch.object(directory, "is_locked", new_callable=AsyncMock) as mock_locked, \
                patch.object(directory, "is_member", new_callable=AsyncMock) as mock_member:
            result = await evaluator.evaluate(_api_key(super_admin), "locked.example")

        assert isinstance(result, Authorized)
        mock_locked.assert_not_called()
        mock_member.assert_not_called()

    @pytest.mark.asyncio
    async def test_feature_name_is_configurable(self, directory, entitled_member):
        evaluator = AccessEvaluator(directory, feature="premium_stats")
        result = await evaluator.evaluate(_api_key(entitled_member), "new.example")
        assert result == Denied(DenialReason.UPGRADE_REQUIRED)
