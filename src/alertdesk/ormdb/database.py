"""SQLAlchemy engine, session factory and schema helpers."""

from typing import Optional

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config.logging import get_logger
from ..config.settings import get_settings

logger = get_logger(__name__)

Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA foreign_keys=ON",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA temp_store=MEMORY",
)


def _apply_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    try:
        for pragma in _SQLITE_PRAGMAS:
            cursor.execute(pragma)
    finally:
        cursor.close()


def _is_in_memory(database_url: str) -> bool:
    return ":memory:" in database_url or database_url.rstrip("/") == "sqlite:"


def create_engine_from_url(database_url: str, echo: bool = False, **kwargs) -> Engine:
    """
    Build an engine for ``database_url``.

    SQLite connections may be used from the repository worker threads and
    get the WAL pragmas on connect. An in-memory SQLite database is pinned
    to a single connection so every session sees the same schema.
    """
    options = {"echo": echo, **kwargs}
    sqlite = database_url.startswith("sqlite")

    if not sqlite:
        options.setdefault("pool_size", 5)
        options.setdefault("max_overflow", 10)
    else:
        options["connect_args"] = {"check_same_thread": False, "timeout": 30}
        if _is_in_memory(database_url):
            options["poolclass"] = StaticPool

    engine = create_engine(database_url, **options)
    if sqlite:
        event.listen(engine, "connect", _apply_sqlite_pragmas)
    return engine


def get_engine() -> Engine:
    """Process-wide engine built from ``Settings`` on first use."""
    global _engine

    if _engine is None:
        settings = get_settings()
        url = settings.get_database_url()
        _engine = create_engine_from_url(
            url,
            echo=settings.database_echo_sql,
            pool_pre_ping=settings.database_pool_pre_ping,
            pool_recycle=settings.database_pool_recycle,
        )
        logger.info(
            "Database engine ready",
            backend=_engine.dialect.name,
            echo_sql=settings.database_echo_sql,
        )

    return _engine


def get_session_factory() -> sessionmaker:
    """Process-wide ``sessionmaker`` bound to ``get_engine()``."""
    global _session_factory

    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(), autoflush=False, expire_on_commit=False
        )

    return _session_factory


def get_session_sync() -> Session:
    """Open a session on the shared factory; the caller closes it."""
    return get_session_factory()()


def create_tables(engine: Optional[Engine] = None) -> None:
    # Importing models registers their tables on Base.metadata
    from . import models  # noqa: F401

    target = engine or get_engine()
    Base.metadata.create_all(bind=target)
    logger.info("Schema created", tables=sorted(Base.metadata.tables))


def drop_tables(engine: Optional[Engine] = None) -> None:
    from . import models  # noqa: F401

    Base.metadata.drop_all(bind=engine or get_engine())
    logger.warning("Schema dropped", tables=sorted(Base.metadata.tables))


def check_database_health() -> dict:
    """
    Probe the configured database with ``SELECT 1``.

    Never raises: a failure is reported as ``status == "unhealthy"`` with
    the error text, which is what ``main.py -health`` prints.
    """
    try:
        engine = get_engine()
        with engine.connect() as connection:
            probe = connection.execute(text("SELECT 1")).scalar()
    except Exception as e:
        logger.error("Database health check failed", error=str(e), exc_info=True)
        return {"status": "unhealthy", "error": str(e), "connectivity": False}

    pool = engine.pool
    pool_info = {
        "pool_class": type(pool).__name__,
        "checked_out": pool.checkedout() if hasattr(pool, "checkedout") else "N/A",
    }
    url = get_settings().get_database_url()
    # Everything after the credentials separator is hidden
    masked_url = url.split("@")[0] + "@***" if "@" in url else url
    logger.info("Database health check passed", pool_info=pool_info)

    return {
        "status": "healthy",
        "connectivity": probe == 1,
        "pool_info": pool_info,
        "database_url": masked_url,
    }
