from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool, StaticPool
from costscope.shared.core.config import get_settings, Settings
from costscope.shared.db.base import Base
import structlog
import time

logger = structlog.get_logger()
settings = get_settings()

SLOW_QUERY_THRESHOLD_SECONDS = 0.2


def build_engine(url: Optional[str] = None, config: Optional[Settings] = None) -> AsyncEngine:
    """
    Creates the async engine and attaches the slow-query listeners.

    Pool configuration:
    - in-memory sqlite: StaticPool, so every session sees the same database
    - file sqlite / TESTING: NullPool to avoid connection leaks across event loops
    - anything else: sized pool from settings
    """
    config = config or settings
    url = url or config.DATABASE_URL

    pool_args = {}
    if ":memory:" in url:
        pool_args["poolclass"] = StaticPool
    elif config.TESTING or "sqlite" in url:
        pool_args["poolclass"] = NullPool
    else:
        pool_args["pool_size"] = config.DB_POOL_SIZE
        pool_args["max_overflow"] = config.DB_MAX_OVERFLOW
        pool_args["pool_pre_ping"] = True
        pool_args["pool_recycle"] = 300

    new_engine = create_async_engine(url, echo=config.DB_ECHO, **pool_args)

    @event.listens_for(new_engine.sync_engine, "before_cursor_execute")
    def before_cursor_execute(conn, _cursor, _statement, _parameters, _context, _executemany):
        """Record query start time."""
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())

    @event.listens_for(new_engine.sync_engine, "after_cursor_execute")
    def after_cursor_execute(conn, _cursor, statement, parameters, _context, _executemany):
        """Log slow queries."""
        total = time.perf_counter() - conn.info["query_start_time"].pop(-1)
        if total > SLOW_QUERY_THRESHOLD_SECONDS:
            logger.warning(
                "slow_query_detected",
                duration_seconds=round(total, 3),
                statement=statement[:200] + "..." if len(statement) > 200 else statement,
                parameters=str(parameters)[:100] if parameters else None
            )

    return new_engine


engine = build_engine()

# expire_on_commit=False: rows stay readable after the unit of work commits
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_models(bind: Optional[AsyncEngine] = None) -> None:
    """Creates all tables. Schema migrations are handled outside this package."""
    # Register every mapped class on Base.metadata
    import costscope.models.cloud  # noqa: F401
    import costscope.models.findings  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_schema_ready")


@asynccontextmanager
async def store_session(session_factory: Optional[async_sessionmaker] = None) -> AsyncIterator["SQLAlchemyTimeSeriesStore"]:
    """Request-scoped store: one session, closed when the request ends."""
    from costscope.shared.db.store import SQLAlchemyTimeSeriesStore

    async with (session_factory or async_session_maker)() as session:
        yield SQLAlchemyTimeSeriesStore(session)
