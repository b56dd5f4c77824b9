"""ImageGenerationOutput repository.

Provides data access methods for generated image rows.
"""

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from imagestudio.models.image_generation import ImageGenerationOutput


class ImageGenerationOutputRepository:
    """Repository for ImageGenerationOutput entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add_batch(self, outputs: list[ImageGenerationOutput]) -> list[ImageGenerationOutput]:
        """Persist a batch of outputs in one flush.

        Args:
            outputs: Output rows for a single generation

        Returns:
            Persisted outputs
        """
        self.session.add_all(outputs)
        await self.session.flush()
        return outputs

    async def get_by_id(self, output_id: UUID) -> ImageGenerationOutput | None:
        """Retrieve output by UUID.

        Args:
            output_id: Output's unique identifier

        Returns:
            ImageGenerationOutput if found, None otherwise
        """
        result = await self.session.execute(
            select(ImageGenerationOutput).where(ImageGenerationOutput.id == output_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def list_by_generation(self, generation_id: UUID) -> list[ImageGenerationOutput]:
        """Retrieve all outputs of a generation ordered by output_index.

        Args:
            generation_id: Owning generation's identifier

        Returns:
            List of outputs in display order
        """
        result = await self.session.execute(
            select(ImageGenerationOutput)
            .where(ImageGenerationOutput.generation_id == generation_id)  # type: ignore[arg-type]
            .order_by(ImageGenerationOutput.output_index.asc())  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

    async def list_by_generations(
        self, generation_ids: list[UUID]
    ) -> dict[UUID, list[ImageGenerationOutput]]:
        """Retrieve outputs for several generations in one query.

        Args:
            generation_ids: Generation identifiers (e.g. one history page)

        Returns:
            Mapping of generation id to its ordered outputs
        """
        grouped: dict[UUID, list[ImageGenerationOutput]] = {}
        if not generation_ids:
            return grouped

        result = await self.session.execute(
            select(ImageGenerationOutput)
            .where(ImageGenerationOutput.generation_id.in_(generation_ids))  # type: ignore[attr-defined]
            .order_by(
                ImageGenerationOutput.generation_id.asc(),  # type: ignore[attr-defined]
                ImageGenerationOutput.output_index.asc(),  # type: ignore[attr-defined]
            )
        )
        for output in result.scalars().all():
            grouped.setdefault(output.generation_id, []).append(output)
        return grouped

    async def delete(self, output_id: UUID) -> None:
        """Delete a single output row.

        Args:
            output_id: Output's unique identifier
        """
        await self.session.execute(
            delete(ImageGenerationOutput).where(ImageGenerationOutput.id == output_id)  # type: ignore[arg-type]
        )
        await self.session.flush()
