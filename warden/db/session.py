"""Engine and session management.

Every engine carries a storage timeout so no query blocks indefinitely:
SQLite uses its busy timeout, PostgreSQL a per-connection
``statement_timeout``. Pool checkout waits are bounded by the same value.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from warden.core.config import RBACSettings, get_settings
from warden.db.base import Base

RBAC_TABLES = ("roles", "permissions", "role_permissions", "user_roles", "user_permissions")


def create_db_engine(database_url: str, timeout: float = 5.0) -> Engine:
    """Create an engine with storage timeouts applied."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"timeout": timeout, "check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise each checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    connect_args = {}
    if database_url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_timeout=timeout,
        pool_pre_ping=True,
    )


def create_session_factory(
    settings: Optional[RBACSettings] = None,
    engine: Optional[Engine] = None,
) -> sessionmaker:
    """Build a session factory from settings or an existing engine."""
    if engine is None:
        settings = settings or get_settings()
        engine = create_db_engine(settings.database_url, settings.storage_timeout)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()


def create_schema(engine: Engine) -> None:
    """Create all warden tables (tests and embedded hosts; production uses migrations)."""
    # Import models so they register on Base.metadata
    import warden.db.models  # noqa: F401

    Base.metadata.create_all(engine)


def tables_exist(engine: Engine) -> bool:
    """Check that the RBAC relations are present in the database."""
    names = set(inspect(engine).get_table_names())
    return all(table in names for table in RBAC_TABLES)
