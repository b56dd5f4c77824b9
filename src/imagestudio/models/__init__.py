"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from imagestudio.models.image_generation import (
    TERMINAL_STATUSES,
    GenerationStatus,
    ImageGeneration,
    ImageGenerationOutput,
    ImageGenerationOutputRead,
    ImageGenerationRead,
    InvalidStateTransition,
)

__all__ = [
    "GenerationStatus",
    "TERMINAL_STATUSES",
    "InvalidStateTransition",
    "ImageGeneration",
    "ImageGenerationOutput",
    "ImageGenerationRead",
    "ImageGenerationOutputRead",
]
