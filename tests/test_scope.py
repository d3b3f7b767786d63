"""Tests for access scope resolution."""

import pytest

from taskboard.domain import Role
from taskboard.services.scope import AccessScope, AccessScopeResolver


class TestAccessScopeResolver:
    """Role and membership based project visibility"""

    @pytest.fixture
    def resolver(self, repository):
        return AccessScopeResolver(repository)

    async def test_admin_sees_every_project(self, resolver):
        scope = await resolver.resolve(1, Role.ADMIN)
        assert scope.project_ids == frozenset({10, 11, 12, 13})

    async def test_manager_requested_project_without_membership(self, resolver):
        scope = await resolver.resolve(2, Role.MANAGER, requested_project_id=12)
        assert scope.project_ids == frozenset({12})
        assert scope.requested_project_id == 12

    async def test_developer_sees_memberships_only(self, resolver):
        scope = await resolver.resolve(3, Role.DEVELOPER)
        assert scope.project_ids == frozenset({10, 11})

    async def test_developer_requested_project_is_intersected(self, resolver):
        scope = await resolver.resolve(3, Role.DEVELOPER, requested_project_id=11)
        assert scope.project_ids == frozenset({11})

    async def test_non_member_request_gives_empty_scope(self, resolver):
        scope = await resolver.resolve(3, Role.DEVELOPER, requested_project_id=12)
        assert scope.is_empty
        assert 12 not in scope

    async def test_user_without_memberships(self, resolver):
        scope = await resolver.resolve(6, Role.DEVELOPER)
        assert scope.is_empty

    @pytest.mark.parametrize("user_id,role", [
        (3, Role.DEVELOPER),
        (4, Role.TESTER),
        (5, Role.DESIGNER),
        (6, Role.DEVELOPER),
    ])
    async def test_restricted_scope_is_subset_of_memberships(self, repository, resolver, user_id, role):
        memberships = await repository.list_project_memberships(user_id)
        member_of = {m.project_id for m in memberships}

        for requested in (None, 10, 11, 12, 13, 99):
            scope = await resolver.resolve(user_id, role, requested_project_id=requested)
            assert scope.project_ids <= member_of


class TestAccessScope:
    def test_contains(self):
        scope = AccessScope(caller_id=1, role=Role.ADMIN, project_ids=frozenset({1, 2}))
        assert 1 in scope
        assert 3 not in scope
        assert not scope.is_empty
