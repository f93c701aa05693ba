"""
Database session configuration.

Async engine and session factory for the billing ledger. PostgreSQL
(asyncpg) in deployment; SQLite (aiosqlite) is accepted for local runs and
tests and is configured so savepoints and foreign keys behave like they do
on PostgreSQL.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool
from rental_backend.app.core.config import settings


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine for database_url.

    SQLite gets a single shared connection, enforced foreign keys and
    SQLAlchemy-driven BEGIN so nested transactions (begin_nested) work.
    """
    if not database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=echo,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )

    sqlite_engine = create_async_engine(
        database_url,
        echo=echo,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(sqlite_engine.sync_engine, "connect")
    def _sqlite_on_connect(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sqlite_engine.sync_engine, "begin")
    def _sqlite_on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    # Services flush, endpoints commit; nothing is flushed implicitly
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url, echo=settings.db_echo)
AsyncSessionLocal = build_session_factory(engine)

Base = declarative_base()


async def get_db():
    """
    FastAPI dependency for database sessions.

    Endpoints commit explicitly; anything left uncommitted when the request
    fails (a rejected batch, a duplicate adjustment) is rolled back.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
