"""Tests for RBAC permission checking logic."""

import pytest

from core.rbac import _check_permission, _get_user_permissions


@pytest.mark.unit
class TestCheckPermission:
    """Test permission matching including wildcards."""

    def test_exact_match(self):
        perms = {"workflows.manage", "directory.manage"}
        assert _check_permission(perms, "workflows.manage") is True
        assert _check_permission(perms, "directory.manage") is True

    def test_no_match(self):
        perms = {"workflows.manage"}
        assert _check_permission(perms, "directory.manage") is False
        assert _check_permission(perms, "workflows") is False

    def test_wildcard_match(self):
        perms = {"directory.*"}
        assert _check_permission(perms, "directory.manage") is True
        assert _check_permission(perms, "directory.read") is True

    def test_wildcard_no_cross_resource(self):
        perms = {"directory.*"}
        assert _check_permission(perms, "workflows.manage") is False
        assert _check_permission(perms, "directoryx.manage") is False

    def test_global_wildcard(self):
        perms = {"*"}
        assert _check_permission(perms, "workflows.manage") is True
        assert _check_permission(perms, "anything.anything") is True

    def test_empty_permissions(self):
        perms: set[str] = set()
        assert _check_permission(perms, "workflows.manage") is False


@pytest.mark.integration
class TestUserPermissions:

    async def test_permissions_collected_through_roles(self, db_session, org):
        assert await _get_user_permissions(org.admin.id, db_session) == {"*"}
        assert await _get_user_permissions(org.designer.id, db_session) == {"workflows.manage"}
        assert await _get_user_permissions(org.u1.id, db_session) == set()

    async def test_unknown_user(self, db_session, org):
        assert await _get_user_permissions("ghost", db_session) == set()
