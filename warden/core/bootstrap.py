"""Setup step wiring the RBAC provider into a host process.

The host owns routing, migrations and its own bootstrap; this step only
checks that the RBAC tables exist, builds the provider from settings and
registers it as the active authorization provider.
"""

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from warden.common.logger import get_logger, setup_logger
from warden.core.config import RBACSettings, get_settings
from warden.core.rbac.provider import RBACProvider
from warden.core.registry import ProviderRegistry, get_registry
from warden.db.session import create_session_factory, tables_exist

logger = get_logger("bootstrap")

PROVIDER_NAME = "rbac"


def setup(
    registry: Optional[ProviderRegistry] = None,
    settings: Optional[RBACSettings] = None,
    session_factory: Optional[sessionmaker] = None,
    *,
    configure_logging: bool = False,
) -> Optional[RBACProvider]:
    """
    Build the RBAC provider and register it as the active provider.

    Args:
        registry: Registry to register with, the global one by default
        settings: Engine settings, environment-derived by default
        session_factory: Session factory, built from settings by default
        configure_logging: Attach handlers to the ``warden`` logger

    Returns:
        The registered provider, or None when the RBAC tables are missing
        or the database is unreachable (the host keeps running without it)
    """
    settings = settings or get_settings()
    if configure_logging:
        setup_logger(level=settings.log_level, log_dir=settings.log_dir)

    registry = registry or get_registry()
    session_factory = session_factory or create_session_factory(settings)

    try:
        ready = tables_exist(session_factory.kw["bind"])
    except SQLAlchemyError as e:
        logger.error(f"Cannot inspect RBAC tables, provider not registered: {e}")
        return None

    if not ready:
        logger.warning("RBAC tables not found; run migrations before enabling the provider")
        return None

    provider = RBACProvider(session_factory, settings=settings)
    registry.register(provider, PROVIDER_NAME)
    registry.set_active(PROVIDER_NAME)
    logger.info(
        f"RBAC provider active (cache={'on' if settings.cache_enabled else 'off'}, "
        f"inheritance={'on' if settings.inheritance_active else 'off'}, "
        f"max_depth={settings.max_hierarchy_depth})"
    )
    return provider
