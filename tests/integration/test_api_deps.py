"""Integration tests for the FastAPI permission dependencies."""

import threading

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient

from warden.api.deps import PermissionDependency, require_permission
from warden.core.errors import ResolutionFailed
from warden.core.rbac.permissions import ResolvedPermissionSet
from warden.core.rbac.provider import AuthorizationProvider
from tests.factories import create_permissions

pytestmark = pytest.mark.integration


class UnavailableProvider(AuthorizationProvider):
    """Provider whose storage is down."""

    @property
    def provider_name(self) -> str:
        return "rbac"

    def resolve(self, user_id: str) -> ResolvedPermissionSet:
        raise ResolutionFailed("database unreachable", user_id=user_id)

    def authorize(self, user_id: str, permission) -> bool:
        return self.check(user_id, [permission])

    def check(self, user_id: str, permissions, require_all: bool = False) -> bool:
        self.resolve(user_id)
        return False


class RecordingProvider(AuthorizationProvider):
    """Provider that grants everything and remembers where it was asked."""

    def __init__(self):
        self.threads = []
        self.checks = []

    @property
    def provider_name(self) -> str:
        return "rbac"

    def resolve(self, user_id: str) -> ResolvedPermissionSet:
        return ResolvedPermissionSet(user_id, frozenset())

    def authorize(self, user_id: str, permission) -> bool:
        return self.check(user_id, [permission])

    def check(self, user_id: str, permissions, require_all: bool = False) -> bool:
        self.threads.append(threading.get_ident())
        self.checks.append((user_id, list(permissions), require_all))
        return True


@pytest.fixture
def app():
    app = FastAPI()

    @app.middleware("http")
    async def identify(request: Request, call_next):
        request.state.user_id = request.headers.get("X-User-Id")
        return await call_next(request)

    @app.get("/files", dependencies=[Depends(PermissionDependency("files:read"))])
    async def list_files():
        return {"files": []}

    @app.get("/admin", dependencies=[Depends(PermissionDependency("files:write", "files:delete", require_all=True))])
    async def admin():
        return {"ok": True}

    @app.delete("/files/{name}")
    @require_permission("files:delete")
    async def delete_file(name: str, request: Request):
        return {"deleted": name}

    @app.get("/thread")
    @require_permission("files:read", "files:list", require_all=True)
    async def loop_thread(request: Request):
        return {"thread": threading.get_ident()}

    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def active_provider(registry, provider):
    create_permissions(provider, "files:read", "files:write", "files:delete")
    provider.grant_permission_to_user("reader", "files:read")
    provider.grant_permission_to_user("writer", "files:write")
    provider.grant_permission_to_user("writer", "files:delete")
    registry.register(provider)
    registry.set_active("rbac")
    return provider


class TestPermissionDependency:
    """Test the dependency class."""

    def test_allowed(self, client, active_provider):
        """Test a user holding the permission passes."""
        response = client.get("/files", headers={"X-User-Id": "reader"})
        assert response.status_code == 200
        assert response.json() == {"files": []}

    def test_forbidden(self, client, active_provider):
        """Test a user without the permission is refused."""
        response = client.get("/files", headers={"X-User-Id": "writer"})
        assert response.status_code == 403
        assert "files:read" in response.json()["detail"]

    def test_unauthenticated(self, client, active_provider):
        """Test requests without a user are rejected."""
        assert client.get("/files").status_code == 401

    def test_require_all(self, client, active_provider):
        """Test every listed permission is needed when require_all is set."""
        assert client.get("/admin", headers={"X-User-Id": "writer"}).status_code == 200
        assert client.get("/admin", headers={"X-User-Id": "reader"}).status_code == 403

    def test_no_active_provider(self, client, registry):
        """Test 503 when nothing is registered."""
        assert client.get("/files", headers={"X-User-Id": "reader"}).status_code == 503

    def test_resolution_failure_is_not_denial(self, client, registry):
        """Test storage failures map to 503, not 403."""
        registry.register(UnavailableProvider())
        registry.set_active("rbac")
        assert client.get("/files", headers={"X-User-Id": "reader"}).status_code == 503


class TestRequirePermission:
    """Test the decorator form."""

    def test_allowed(self, client, active_provider):
        """Test the endpoint runs when the user is permitted."""
        response = client.delete("/files/report.txt", headers={"X-User-Id": "writer"})
        assert response.status_code == 200
        assert response.json() == {"deleted": "report.txt"}

    def test_forbidden(self, client, active_provider):
        """Test the endpoint is not reached when the user is not permitted."""
        response = client.delete("/files/report.txt", headers={"X-User-Id": "reader"})
        assert response.status_code == 403

    def test_check_runs_off_event_loop(self, client, registry):
        """Test blocking authorization does not run on the event loop thread."""
        recorder = RecordingProvider()
        registry.register(recorder)
        registry.set_active("rbac")

        response = client.get("/thread", headers={"X-User-Id": "u1"})

        assert response.status_code == 200
        loop_thread = response.json()["thread"]
        assert recorder.threads and loop_thread not in recorder.threads

    def test_single_check_per_request(self, client, registry):
        """Test all required permissions are checked together."""
        recorder = RecordingProvider()
        registry.register(recorder)
        registry.set_active("rbac")

        client.get("/thread", headers={"X-User-Id": "u1"})
        assert recorder.checks == [("u1", ["files:read", "files:list"], True)]


class TestDependencyChecksOnce:
    """Test PermissionDependency asks once per request."""

    def test_single_check(self, client, registry):
        """Test require_all dependencies issue one check."""
        recorder = RecordingProvider()
        registry.register(recorder)
        registry.set_active("rbac")

        assert client.get("/admin", headers={"X-User-Id": "u1"}).status_code == 200
        assert recorder.checks == [("u1", ["files:write", "files:delete"], True)]
