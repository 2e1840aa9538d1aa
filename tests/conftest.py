"""Pytest configuration and shared fixtures."""

import pytest

from warden.core.config import RBACSettings
from warden.core.rbac.audit import MemoryAuditSink
from warden.core.rbac.cache import MemoryCacheBackend, ResolutionCache
from warden.core.rbac.provider import RBACProvider
from warden.core.registry import get_registry
from warden.db.session import create_db_engine, create_schema, create_session_factory


def make_settings(**overrides) -> RBACSettings:
    """Settings isolated from the environment and any .env file."""
    values = {"database_url": "sqlite://"}
    values.update(overrides)
    return RBACSettings(_env_file=None, **values)


@pytest.fixture
def settings():
    """Default engine settings."""
    return make_settings()


@pytest.fixture
def engine():
    """In-memory SQLite engine with the RBAC schema."""
    engine = create_db_engine("sqlite://", timeout=1.0)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine=engine)


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def provider_factory(session_factory, audit_sink):
    """Build providers over the shared database with setting overrides."""

    def build(**overrides) -> RBACProvider:
        provider_settings = make_settings(**overrides)
        cache = ResolutionCache(
            MemoryCacheBackend(),
            enabled=provider_settings.cache_enabled,
            ttl=provider_settings.cache_ttl,
            prefix=provider_settings.cache_prefix,
        )
        return RBACProvider(
            session_factory,
            settings=provider_settings,
            cache=cache,
            audit_sink=audit_sink,
        )

    return build


@pytest.fixture
def provider(provider_factory):
    """Provider with default settings (cache and inheritance on)."""
    return provider_factory()


@pytest.fixture
def registry():
    """The global provider registry, emptied around each test."""
    reg = get_registry()
    reg.clear()
    yield reg
    reg.clear()
