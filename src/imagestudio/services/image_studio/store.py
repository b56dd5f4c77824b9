"""Generation store: transactional access to generation history.

Every method opens its own unit of work and returns detached read models,
so callers never hold a session across provider calls.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from imagestudio.models.image_generation import (
    GenerationStatus,
    ImageGeneration,
    ImageGenerationOutput,
    ImageGenerationOutputRead,
    ImageGenerationRead,
)
from imagestudio.services.exceptions import StoreError
from imagestudio.services.providers.types import QueueHandle
from imagestudio.uow import UnitOfWork, UowFactory

logger = structlog.get_logger(__name__)


class GenerationStore:
    """Persistence operations used by the orchestrator."""

    def __init__(self, uow_factory: UowFactory):
        self.uow_factory = uow_factory

    @asynccontextmanager
    async def _uow(self, operation: str) -> AsyncIterator[UnitOfWork]:
        try:
            async with await self.uow_factory() as uow:
                yield uow
        except SQLAlchemyError as e:
            logger.error(
                "store.operation_failed",
                operation=operation,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            raise StoreError(f"Store {operation} failed: {e}") from e

    @staticmethod
    async def _read(uow: UnitOfWork, generation: ImageGeneration) -> ImageGenerationRead:
        outputs = await uow.outputs.list_by_generation(generation.id)
        return ImageGenerationRead.from_rows(generation, outputs)

    async def create_generation(self, generation: ImageGeneration) -> ImageGenerationRead:
        async with self._uow("create") as uow:
            await uow.generations.add(generation)
            return ImageGenerationRead.from_rows(generation, [])

    async def get_generation(self, generation_id: UUID) -> Optional[ImageGenerationRead]:
        async with self._uow("get") as uow:
            generation = await uow.generations.get_by_id(generation_id)
            if generation is None:
                return None
            return await self._read(uow, generation)

    async def update_status(
        self,
        generation_id: UUID,
        status: GenerationStatus,
        error_message: Optional[str] = None,
    ) -> Optional[ImageGenerationRead]:
        """Move a generation to `status`.

        Returns:
            Updated generation, or None if the row no longer exists

        Raises:
            InvalidStateTransition: If the generation is already terminal
        """
        async with self._uow("update_status") as uow:
            generation = await uow.generations.get_by_id(generation_id)
            if generation is None:
                return None
            generation.mark_status(status, error_message)
            await uow.generations.save(generation)
            return await self._read(uow, generation)

    async def attach_queue_handle(
        self, generation_id: UUID, handle: QueueHandle
    ) -> Optional[ImageGenerationRead]:
        async with self._uow("attach_queue_handle") as uow:
            generation = await uow.generations.get_by_id(generation_id)
            if generation is None:
                return None
            generation.attach_queue_handle(
                queue_request_id=handle.queue_request_id,
                status_url=handle.status_url,
                response_url=handle.response_url,
                cancel_url=handle.cancel_url,
            )
            await uow.generations.save(generation)
            return await self._read(uow, generation)

    async def append_log(self, generation_id: UUID, message: str) -> Optional[ImageGenerationRead]:
        async with self._uow("append_log") as uow:
            generation = await uow.generations.get_by_id(generation_id)
            if generation is None:
                return None
            generation.append_log(message)
            await uow.generations.save(generation)
            return await self._read(uow, generation)

    async def list_generations(
        self,
        status: Optional[GenerationStatus] = None,
        provider_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[ImageGenerationRead]:
        async with self._uow("list") as uow:
            generations = await uow.generations.list_history(
                status=status, provider_id=provider_id, limit=limit, offset=offset
            )
            outputs = await uow.outputs.list_by_generations([g.id for g in generations])
            return [ImageGenerationRead.from_rows(g, outputs.get(g.id, [])) for g in generations]

    async def delete_generation(self, generation_id: UUID) -> None:
        async with self._uow("delete") as uow:
            await uow.generations.delete(generation_id)

    async def add_outputs(
        self, outputs: list[ImageGenerationOutput]
    ) -> list[ImageGenerationOutputRead]:
        async with self._uow("add_outputs") as uow:
            await uow.outputs.add_batch(outputs)
            return [ImageGenerationOutputRead.model_validate(o) for o in outputs]

    async def get_output(self, output_id: UUID) -> Optional[ImageGenerationOutputRead]:
        async with self._uow("get_output") as uow:
            output = await uow.outputs.get_by_id(output_id)
            return None if output is None else ImageGenerationOutputRead.model_validate(output)

    async def delete_output(self, output_id: UUID) -> None:
        async with self._uow("delete_output") as uow:
            await uow.outputs.delete(output_id)

    async def fail_orphaned_generations(
        self, message: str, exclude: Optional[set[UUID]] = None, dry_run: bool = False
    ) -> list[UUID]:
        """Mark every non-terminal generation failed.

        Args:
            message: Error message and log line recorded on each row
            exclude: Ids still owned by a running task
            dry_run: Only report affected ids without changing rows

        Returns:
            Ids of the affected generations
        """
        async with self._uow("fail_orphaned") as uow:
            orphans = [
                generation
                for generation in await uow.generations.get_non_terminal()
                if generation.id not in (exclude or set())
            ]
            if not dry_run:
                for generation in orphans:
                    generation.append_log(message)
                    generation.mark_status(GenerationStatus.FAILED, message)
                    await uow.generations.save(generation)
            return [generation.id for generation in orphans]
