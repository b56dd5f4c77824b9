"""Adapter registry keyed by provider type."""

from typing import Optional

import httpx

from imagestudio.core.config import Settings
from imagestudio.services.providers.fal_queue import FalQueueAdapter
from imagestudio.services.providers.placeholder import PlaceholderAdapter
from imagestudio.services.providers.replicate_queue import ReplicatePredictionAdapter
from imagestudio.services.providers.types import ProviderAdapter, ProviderType


def build_default_adapters(
    settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None
) -> dict[ProviderType, ProviderAdapter]:
    """Create one adapter per provider type."""
    return {
        ProviderType.FAL_SEEDREAM_EDIT: FalQueueAdapter(
            timeout=settings.provider_timeout_seconds, transport=transport
        ),
        ProviderType.REPLICATE_PREDICTION: ReplicatePredictionAdapter(
            model=settings.replicate_model,
            image_input_key=settings.replicate_image_input_key,
        ),
        ProviderType.OPENROUTER_SEEDREAM_PLACEHOLDER: PlaceholderAdapter(),
    }
