"""Image generation API endpoints.

- POST /api/generations - Submit a generation (returns the queued job immediately)
- GET /api/generations - List history, newest first
- GET /api/generations/{generation_id} - Get one generation with its outputs
- POST /api/generations/{generation_id}/cancel - Cancel a running generation
- POST /api/generations/{generation_id}/retry - Submit a historical generation again
- DELETE /api/generations/{generation_id} - Delete a generation (optionally its files)
- DELETE /api/generations/outputs/{output_id} - Delete a single output
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from imagestudio.api.dependencies import get_orchestrator
from imagestudio.models.image_generation import GenerationStatus, ImageGenerationRead
from imagestudio.services.image_studio.orchestrator import (
    OUTPUT_NOT_FOUND,
    GenerationOrchestrator,
)
from imagestudio.services.image_studio.schemas import OperationResult, SubmitRequest

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/generations", tags=["generations"])


async def _require_generation(
    orchestrator: GenerationOrchestrator, generation_id: UUID
) -> ImageGenerationRead:
    result = await orchestrator.get_history(generation_id)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error)
    if result.job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation not found")
    return result.job


@router.post("", response_model=ImageGenerationRead, status_code=status.HTTP_201_CREATED)
async def submit_generation(
    request: SubmitRequest,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ImageGenerationRead:
    """Validate and queue a generation.

    Returns:
        201: Queued generation
        400: Validation or provider configuration error
    """
    result = await orchestrator.submit(request)
    if not result.success or result.job is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result.job


@router.get("", response_model=list[ImageGenerationRead])
async def list_generations(
    status_filter: Optional[GenerationStatus] = Query(default=None, alias="status"),
    provider_id: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, description="Clamped to [1, 200]"),
    offset: Optional[int] = Query(default=None, description="Negative values are treated as 0"),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> list[ImageGenerationRead]:
    result = await orchestrator.list_history(
        status=status_filter, provider_id=provider_id, limit=limit, offset=offset
    )
    if not result.success:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error)
    return result.jobs


@router.get("/{generation_id}", response_model=ImageGenerationRead)
async def get_generation(
    generation_id: UUID,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ImageGenerationRead:
    return await _require_generation(orchestrator, generation_id)


@router.post("/{generation_id}/cancel", response_model=OperationResult)
async def cancel_generation(
    generation_id: UUID,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> OperationResult:
    """Cancel a generation. Already finished generations are reported as success."""
    await _require_generation(orchestrator, generation_id)

    result = await orchestrator.cancel(generation_id)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result


@router.post(
    "/{generation_id}/retry",
    response_model=ImageGenerationRead,
    status_code=status.HTTP_201_CREATED,
)
async def retry_generation(
    generation_id: UUID,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> ImageGenerationRead:
    await _require_generation(orchestrator, generation_id)

    result = await orchestrator.retry(generation_id)
    if not result.success or result.job is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result.job


@router.delete("/outputs/{output_id}", response_model=Optional[ImageGenerationRead])
async def delete_output(
    output_id: UUID,
    delete_file: bool = Query(default=False),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> Optional[ImageGenerationRead]:
    """Delete one output and return its generation with the remaining outputs."""
    result = await orchestrator.delete_output(output_id, delete_file=delete_file)
    if not result.success:
        if result.error == OUTPUT_NOT_FOUND:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.error)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result.job


@router.delete("/{generation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_generation(
    generation_id: UUID,
    delete_files: bool = Query(default=False),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
) -> Response:
    await _require_generation(orchestrator, generation_id)

    result = await orchestrator.delete_history(generation_id, delete_files=delete_files)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)

    logger.info("api.generation_deleted", generation_id=str(generation_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
