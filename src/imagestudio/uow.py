"""Transaction boundary for generation history.

One UnitOfWork wraps one session: it commits when the block exits cleanly,
rolls back when it raises, and always returns the connection to the pool.
"""

from typing import Awaitable, Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imagestudio.repositories.image_generation import ImageGenerationRepository
from imagestudio.repositories.image_output import ImageGenerationOutputRepository

logger = structlog.get_logger()


class UnitOfWork:
    """Session-scoped access to the generation and output repositories.

    Example:
        async with await uow_factory() as uow:
            generation = await uow.generations.get_by_id(generation_id)
            generation.mark_status(GenerationStatus.IN_PROGRESS)
            await uow.generations.save(generation)
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.generations = ImageGenerationRepository(session)
        self.outputs = ImageGenerationOutputRepository(session)

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Commit or roll back, then close the session.

        Exceptions raised inside the block always propagate.
        """
        try:
            if exc_type is None:
                await self.session.commit()
                logger.debug("transaction.committed")
            else:
                await self.session.rollback()
                logger.debug("transaction.rolled_back", exc_type=exc_type.__name__)
        finally:
            await self.session.close()

        return False


UowFactory = Callable[[], Awaitable[UnitOfWork]]


def create_uow_factory(session_factory: async_sessionmaker[AsyncSession]) -> UowFactory:
    """Bind a session factory into a callable that opens fresh units of work.

    Args:
        session_factory: Factory returned by setup_db_session

    Returns:
        Coroutine function; each await yields a UnitOfWork on a new session
    """

    async def _open_uow() -> UnitOfWork:
        return UnitOfWork(session_factory())

    return _open_uow
