"""Integration tests for provider setup."""

import pytest

from warden.core.bootstrap import PROVIDER_NAME, setup
from warden.core.rbac.provider import RBACProvider
from warden.db.session import create_db_engine, create_session_factory
from tests.conftest import make_settings

pytestmark = pytest.mark.integration


class TestSetup:
    """Test wiring the provider into a registry."""

    def test_registers_active_provider(self, registry, session_factory):
        """Test successful setup registers and activates the provider."""
        provider = setup(registry, make_settings(), session_factory)

        assert isinstance(provider, RBACProvider)
        assert registry.get(PROVIDER_NAME) is provider
        assert registry.get_active() is provider
        assert provider.provider_name == "rbac"

    def test_missing_tables(self, registry):
        """Test setup declines when the schema is absent."""
        engine = create_db_engine("sqlite://")
        try:
            provider = setup(registry, make_settings(), create_session_factory(engine=engine))
        finally:
            engine.dispose()

        assert provider is None
        assert registry.get_active() is None

    def test_registered_provider_works(self, registry, session_factory):
        """Test the active provider answers questions."""
        setup(registry, make_settings(), session_factory)
        provider = registry.get_active()

        provider.create_permission("files", "read")
        provider.grant_permission_to_user("u1", "files:read")
        assert provider.authorize("u1", "files:read")
