"""Integration tests for the audit trail."""

import threading
from datetime import timedelta

import pytest

from warden.core.rbac.audit import (
    AuditAction, AuditEntry, AuditFilter, AuditSink, MemoryAuditSink,
    SQLAlchemyAuditSink, TargetType,
)
from warden.core.rbac.provider import RBACProvider
from warden.db.base import utcnow
from warden.db.models import AuditLog, AuditLogImmutableError
from warden.db.session import session_scope
from tests.conftest import make_settings
from tests.factories import create_permissions

pytestmark = pytest.mark.integration


class FailingAuditSink(AuditSink):
    """Sink whose writes always fail."""

    def append(self, entry):
        raise RuntimeError("audit store unavailable")

    def iter_entries(self, audit_filter):
        return iter(())


class TestAuditTrail:
    """Test recording and querying."""

    def test_mutations_are_recorded(self, provider):
        """Test every mutation appends an entry."""
        create_permissions(provider, "files:read")
        viewer = provider.create_role("viewer", actor="root")
        provider.grant_permission_to_role(viewer.id, "files:read", actor="root")
        provider.grant_role_to_user("u1", viewer.id, actor="root")
        provider.revoke_role_from_user("u1", viewer.id, actor="root")

        actions = [e.action for e in provider.query_audit()]
        assert actions == [
            AuditAction.PERMISSION_CREATE,
            AuditAction.ROLE_CREATE,
            AuditAction.GRANT,
            AuditAction.GRANT,
            AuditAction.REVOKE,
        ]

    def test_query_is_restartable(self, provider):
        """Test iterating a query twice yields the same entries."""
        provider.create_role("a")
        provider.create_role("b")
        query = provider.query_audit()

        first = [e.id for e in query]
        second = [e.id for e in query]
        assert first == second
        assert len(first) == 2

    def test_query_is_lazy(self, provider):
        """Test entries written after the query was built are seen."""
        query = provider.query_audit()
        provider.create_role("a")
        assert query.count() == 1

    def test_filters(self, provider):
        """Test actor, target and limit filters."""
        create_permissions(provider, "files:read")
        provider.grant_permission_to_user("u1", "files:read", actor="alice")
        provider.grant_permission_to_user("u2", "files:read", actor="bob")

        by_actor = provider.query_audit(AuditFilter(actor="bob")).all()
        assert [e.target_id for e in by_actor] == ["u2"]

        by_target = provider.query_audit(
            AuditFilter(target_type=TargetType.USER, target_id="u1")
        ).all()
        assert [e.actor for e in by_target] == ["alice"]

        assert provider.query_audit(AuditFilter(limit=2)).count() == 2

    def test_time_window(self):
        """Test since/until bounds."""
        sink = MemoryAuditSink()
        now = utcnow()
        sink.append(AuditEntry(AuditAction.GRANT, TargetType.USER, "old", timestamp=now - timedelta(days=2)))
        sink.append(AuditEntry(AuditAction.GRANT, TargetType.USER, "new", timestamp=now))

        recent = list(sink.iter_entries(AuditFilter(since=now - timedelta(days=1))))
        assert [e.target_id for e in recent] == ["new"]
        older = list(sink.iter_entries(AuditFilter(until=now - timedelta(days=1))))
        assert [e.target_id for e in older] == ["old"]

    def test_failed_write_does_not_fail_mutation(self, session_factory):
        """Test audit failures are reported but the mutation stands."""
        provider = RBACProvider(
            session_factory, settings=make_settings(), audit_sink=FailingAuditSink()
        )
        failures = []
        provider.audit.add_failure_listener(lambda entry, error: failures.append((entry, error)))

        role = provider.create_role("viewer")

        assert provider.hierarchy.get_role(role.id) is not None
        assert provider.audit.failed_writes == 1
        [(entry, error)] = failures
        assert entry.action == AuditAction.ROLE_CREATE
        assert isinstance(error, RuntimeError)


class TestSQLAlchemyAuditSink:
    """Test the database-backed sink."""

    @pytest.fixture
    def db_provider(self, session_factory):
        return RBACProvider(session_factory, settings=make_settings())

    def test_entries_persisted(self, db_provider, session_factory):
        """Test entries are written to audit_logs."""
        role = db_provider.create_role("viewer", actor="root")

        with session_scope(session_factory) as db:
            rows = db.query(AuditLog).all()
            assert len(rows) == 1
            assert rows[0].action == "role_create"
            assert rows[0].target_id == role.id
            assert rows[0].actor == "root"

        [entry] = db_provider.query_audit().all()
        assert entry.id == rows[0].id
        assert entry.action == AuditAction.ROLE_CREATE
        assert entry.details == {"name": "viewer", "parent_id": None}

    def test_sql_filters(self, db_provider):
        """Test filters are applied in the query."""
        create_permissions(db_provider, "files:read")
        db_provider.grant_permission_to_user("u1", "files:read", actor="alice")
        db_provider.grant_permission_to_user("u2", "files:read", actor="bob")

        grants = db_provider.query_audit(AuditFilter(action=AuditAction.GRANT)).all()
        assert [e.target_id for e in grants] == ["u1", "u2"]
        assert db_provider.query_audit(AuditFilter(actor="bob")).count() == 1
        assert db_provider.query_audit(AuditFilter(limit=1)).count() == 1

    def test_rows_are_immutable(self, db_provider, session_factory):
        """Test audit rows cannot be updated or deleted through the ORM."""
        db_provider.create_role("viewer")

        db = session_factory()
        try:
            row = db.query(AuditLog).first()
            row.actor = "someone-else"
            with pytest.raises(AuditLogImmutableError):
                db.flush()
            db.rollback()

            row = db.query(AuditLog).first()
            db.delete(row)
            with pytest.raises(AuditLogImmutableError):
                db.flush()
            db.rollback()
        finally:
            db.close()

    def test_sink_directly(self, session_factory):
        """Test append returns the stored sequence id."""
        sink = SQLAlchemyAuditSink(session_factory)
        first = sink.append(AuditEntry(AuditAction.GRANT, TargetType.USER, "u1"))
        second = sink.append(AuditEntry(AuditAction.REVOKE, TargetType.USER, "u1"))
        assert second.id > first.id


class TestMemoryAuditSink:
    """Test the in-memory sink under concurrent writers."""

    def test_sequence_ids_unique(self):
        """Test concurrent appends never share a sequence id."""
        sink = MemoryAuditSink()
        barrier = threading.Barrier(8)

        def write():
            barrier.wait(timeout=5)
            for _ in range(200):
                sink.append(AuditEntry(AuditAction.GRANT, TargetType.USER, "u1"))

        threads = [threading.Thread(target=write) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        ids = [e.id for e in sink.iter_entries(AuditFilter())]
        assert len(ids) == 1600
        assert sorted(ids) == list(range(1, 1601))
