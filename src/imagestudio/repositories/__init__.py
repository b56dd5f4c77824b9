"""Repository layer.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from imagestudio.repositories.image_generation import ImageGenerationRepository
from imagestudio.repositories.image_output import ImageGenerationOutputRepository

__all__ = [
    "ImageGenerationRepository",
    "ImageGenerationOutputRepository",
]
