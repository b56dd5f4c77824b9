"""Database engine and session factory for generation history."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def setup_db_session(
    db_url: str, pool_size: int = 20, max_overflow: int = 10
) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    Every execution task step opens its own short transaction, so the pool is
    sized for concurrent jobs rather than for HTTP requests.

    Args:
        db_url: PostgreSQL connection URL (postgresql+psycopg://...)
        pool_size: Persistent connections kept in the pool (default: 20)
        max_overflow: Extra connections allowed while many jobs finish at once

    Returns:
        Async session factory for creating database sessions
    """
    engine = create_async_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        echo=False,
    )

    # Read models are built after commit
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def dispose_db_session(session_factory: async_sessionmaker[AsyncSession]) -> None:
    """Close every pooled connection held by the factory's engine."""
    engine = session_factory.kw.get("bind")
    if engine is not None:
        await engine.dispose()
