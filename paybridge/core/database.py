import logging
from urllib.parse import urlparse

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from paybridge.core.config import Settings, get_settings


class Base(DeclarativeBase):
    pass


logger = logging.getLogger(__name__)

# Click retries prepare/complete within seconds, so a redelivery burst needs
# enough connections to answer before Click's own timeout.
MIN_POOL_SIZE = 5
MIN_MAX_OVERFLOW = 5
MAX_POOL_TIMEOUT = 15
LOCAL_DB_HOSTS = {"localhost", "127.0.0.1", "db"}


def _sqlite_options(url: str) -> dict:
    options = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, or each session would see its own empty database.
        options["poolclass"] = StaticPool
    return options


def _postgres_options(settings: Settings, host: str | None) -> dict:
    pool_size = max(MIN_POOL_SIZE, int(settings.db_pool_size))
    max_overflow = max(MIN_MAX_OVERFLOW, int(settings.db_max_overflow))
    # A callback waiting longer than this for a connection has already lost.
    pool_timeout = min(MAX_POOL_TIMEOUT, max(1, int(settings.db_pool_timeout)))
    if (pool_size, max_overflow, pool_timeout) != (settings.db_pool_size, settings.db_max_overflow, settings.db_pool_timeout):
        logger.warning(
            "DB pool settings out of range for callback traffic, using pool_size=%s max_overflow=%s pool_timeout=%s",
            pool_size,
            max_overflow,
            pool_timeout,
        )

    connect_args = {
        "keepalives": 1,
        "keepalives_idle": 30,
        "keepalives_interval": 10,
        "keepalives_count": 5,
    }
    if host not in LOCAL_DB_HOSTS:
        connect_args["sslmode"] = "require"
    return {
        "connect_args": connect_args,
        "pool_pre_ping": settings.db_pool_pre_ping,
        "pool_recycle": settings.db_pool_recycle,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_timeout": pool_timeout,
        "pool_use_lifo": True,
    }


def engine_options(settings: Settings) -> dict:
    """Keyword arguments for ``create_engine`` matching the configured backend."""
    url = str(settings.database_url)
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        return _sqlite_options(url)
    if parsed.scheme.startswith("postgresql"):
        return _postgres_options(settings, parsed.hostname)
    return {}


settings = get_settings()
engine = create_engine(str(settings.database_url), **engine_options(settings))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
