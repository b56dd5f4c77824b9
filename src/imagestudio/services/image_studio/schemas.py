"""Request and result shapes for orchestrator operations."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from imagestudio.models.image_generation import ImageGenerationRead
from imagestudio.services.image_studio.inputs import InputSource


class SubmitRequest(BaseModel):
    provider_id: str
    prompt: str
    inputs: list[InputSource] = Field(default_factory=list)
    options: Optional[dict[str, Any]] = None
    api_key: Optional[str] = Field(
        default=None, description="Request-scoped key; an empty value keeps the stored key"
    )


class GenerationResult(BaseModel):
    success: bool
    job: Optional[ImageGenerationRead] = None
    error: Optional[str] = None


class GenerationListResult(BaseModel):
    success: bool
    jobs: list[ImageGenerationRead] = Field(default_factory=list)
    error: Optional[str] = None


class OperationResult(BaseModel):
    success: bool
    error: Optional[str] = None
