"""Integration tests for role deletion."""

import pytest

from warden.core.errors import ErrorKind, InvalidHierarchy, RoleInUse
from warden.core.rbac.audit import AuditAction, AuditFilter
from tests.factories import create_chain, create_permissions

pytestmark = pytest.mark.integration


class TestDeleteRole:
    """Test blocking and cascading deletion."""

    def test_delete_unused_role(self, provider):
        """Test deleting a role with no dependents."""
        role = provider.create_role("temp")
        assert provider.delete_role(role.id) == [role.id]
        assert provider.hierarchy.get_role(role.id) is None

    def test_delete_unknown_role(self, provider):
        """Test deleting a missing role."""
        with pytest.raises(InvalidHierarchy):
            provider.delete_role("missing")

    def test_role_with_children_blocked(self, provider):
        """Test that a role with children is refused without cascade."""
        admin, editor = create_chain(provider, "admin", "editor")
        with pytest.raises(RoleInUse) as exc_info:
            provider.delete_role(admin.id)

        assert exc_info.value.kind == ErrorKind.ROLE_IN_USE
        assert exc_info.value.children == 1
        assert provider.hierarchy.get_role(admin.id) is not None

    def test_role_with_users_and_grants_blocked(self, provider):
        """Test that assignments and grants block deletion."""
        create_permissions(provider, "files:read")
        viewer = provider.create_role("viewer")
        provider.grant_role_to_user("u1", viewer.id)
        provider.grant_permission_to_role(viewer.id, "files:read")

        with pytest.raises(RoleInUse) as exc_info:
            provider.delete_role(viewer.id)
        assert exc_info.value.users == 1
        assert exc_info.value.permissions == 1
        assert provider.authorize("u1", "files:read")

    def test_cascade_removes_subtree(self, provider):
        """Test cascade deletes descendants and their relations."""
        create_permissions(provider, "files:read", "files:write", "reports:export")
        admin, editor, viewer = create_chain(provider, "admin", "editor", "viewer")
        other = provider.create_role("other")
        provider.grant_permission_to_role(editor.id, "files:write")
        provider.grant_permission_to_role(viewer.id, "files:read")
        provider.grant_permission_to_role(other.id, "reports:export")
        provider.grant_role_to_user("u1", viewer.id)
        provider.grant_role_to_user("u1", other.id)
        assert provider.resolve("u1").permissions == frozenset(
            {"files:read", "files:write", "reports:export"}
        )

        removed = provider.delete_role(editor.id, cascade=True, actor="root")

        assert removed == [viewer.id, editor.id]
        assert provider.hierarchy.get_role(viewer.id) is None
        assert provider.hierarchy.get_role(admin.id) is not None
        assert provider.assignments.roles_of_user("u1") == [other.id]
        assert provider.resolve("u1").permissions == frozenset({"reports:export"})

    def test_cascade_is_audited_per_role(self, provider):
        """Test one entry per removed role."""
        admin, editor = create_chain(provider, "admin", "editor")
        provider.delete_role(admin.id, cascade=True)

        entries = provider.query_audit(AuditFilter(action=AuditAction.ROLE_DELETE)).all()
        assert [e.target_id for e in entries] == [editor.id, admin.id]
        assert all(e.details == {"cascade": True} for e in entries)
        assert entries[0].related_id == admin.id
