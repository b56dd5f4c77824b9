"""ImageGeneration repository.

Provides data access methods for ImageGeneration entities.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from imagestudio.models.image_generation import (
    TERMINAL_STATUSES,
    GenerationStatus,
    ImageGeneration,
    ImageGenerationOutput,
)

DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 200


def clamp_pagination(limit: Optional[int], offset: Optional[int]) -> tuple[int, int]:
    """Clamp history pagination to [1, MAX_LIST_LIMIT] and a non-negative offset.

    Args:
        limit: Requested page size (None uses DEFAULT_LIST_LIMIT)
        offset: Requested number of rows to skip (None means 0)

    Returns:
        Tuple of (limit, offset) safe to pass to the query
    """
    if limit is None:
        clamped_limit = DEFAULT_LIST_LIMIT
    else:
        clamped_limit = min(MAX_LIST_LIMIT, max(1, round(limit)))
    clamped_offset = 0 if offset is None else max(0, round(offset))
    return clamped_limit, clamped_offset


class ImageGenerationRepository:
    """Repository for ImageGeneration entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, generation: ImageGeneration) -> ImageGeneration:
        """Persist new generation to database.

        Args:
            generation: ImageGeneration entity to persist

        Returns:
            Persisted generation
        """
        self.session.add(generation)
        await self.session.flush()
        return generation

    async def get_by_id(self, generation_id: UUID) -> ImageGeneration | None:
        """Retrieve generation by UUID.

        Args:
            generation_id: Generation's unique identifier

        Returns:
            ImageGeneration if found, None otherwise
        """
        result = await self.session.execute(
            select(ImageGeneration).where(ImageGeneration.id == generation_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_history(
        self,
        status: GenerationStatus | None = None,
        provider_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ImageGeneration]:
        """Retrieve generations newest first with optional filters.

        Args:
            status: Only generations in this status (None for all)
            provider_id: Only generations submitted to this provider
            limit: Page size, clamped to [1, 200] (default: 100)
            offset: Rows to skip, negative values are treated as 0

        Returns:
            List of generations ordered by created_at (newest first)
        """
        limit, offset = clamp_pagination(limit, offset)

        stmt = select(ImageGeneration)
        if status is not None:
            stmt = stmt.where(ImageGeneration.status == status)  # type: ignore[arg-type]
        if provider_id:
            stmt = stmt.where(ImageGeneration.provider_id == provider_id)  # type: ignore[arg-type]

        result = await self.session.execute(
            stmt.order_by(ImageGeneration.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def get_non_terminal(self) -> list[ImageGeneration]:
        """Retrieve generations that have not reached a terminal status.

        Returns:
            List of queued / in-progress generations (oldest first)
        """
        result = await self.session.execute(
            select(ImageGeneration)
            .where(ImageGeneration.status.notin_(list(TERMINAL_STATUSES)))  # type: ignore[attr-defined]
            .order_by(ImageGeneration.created_at.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def save(self, generation: ImageGeneration) -> ImageGeneration:
        """Flush in-place changes made through the entity's lifecycle methods."""
        self.session.add(generation)
        await self.session.flush()
        await self.session.refresh(generation)
        return generation

    async def delete(self, generation_id: UUID) -> None:
        """Delete generation and its output rows.

        Args:
            generation_id: Generation's unique identifier
        """
        await self.session.execute(
            delete(ImageGenerationOutput).where(
                ImageGenerationOutput.generation_id == generation_id  # type: ignore[arg-type]
            )
        )
        await self.session.execute(
            delete(ImageGeneration).where(ImageGeneration.id == generation_id)  # type: ignore[arg-type]
        )
        await self.session.flush()
