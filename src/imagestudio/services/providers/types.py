"""Provider adapter contract shared by every queue backend."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional, Protocol

from pydantic import BaseModel

from imagestudio.models.image_generation import GenerationStatus

if TYPE_CHECKING:
    from imagestudio.services.image_studio.cancellation import CancellationToken
    from imagestudio.services.image_studio.options import GenerationOptions


class ProviderType(str, Enum):
    """Backend protocol implemented by a provider entry."""

    FAL_SEEDREAM_EDIT = "fal_seedream_edit"
    REPLICATE_PREDICTION = "replicate_prediction"
    OPENROUTER_SEEDREAM_PLACEHOLDER = "openrouter_seedream_placeholder"


class ProviderConfig(BaseModel):
    """Resolved provider entry: enablement, endpoint and stored credential."""

    id: str
    name: str
    type: ProviderType
    enabled: bool = True
    api_key: str = ""
    base_url: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class QueueHandle:
    """Identifiers returned by a provider once it accepts a submission."""

    queue_request_id: str
    status_url: str
    response_url: str
    cancel_url: str


@dataclass
class StatusResult:
    """Provider status mapped onto the canonical generation statuses."""

    raw_status: str
    status: GenerationStatus
    done: bool
    logs: list[str] = field(default_factory=list)
    error_message: Optional[str] = None


@dataclass
class ProviderImage:
    url: str
    content_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass
class ProviderResult:
    images: list[ProviderImage]


class ProviderAdapter(Protocol):
    """Queue protocol every backend implements.

    Every call accepts the job's cancellation token so in-flight requests are
    abandoned as soon as the caller cancels.
    """

    async def submit(
        self,
        *,
        prompt: str,
        input_refs: list[str],
        options: "GenerationOptions",
        credential: str,
        endpoint: Optional[str],
        token: Optional["CancellationToken"] = None,
    ) -> QueueHandle: ...

    async def poll_status(
        self,
        *,
        credential: str,
        status_url: str,
        token: Optional["CancellationToken"] = None,
    ) -> StatusResult: ...

    async def get_result(
        self,
        *,
        credential: str,
        response_url: str,
        token: Optional["CancellationToken"] = None,
    ) -> ProviderResult: ...

    async def cancel(
        self,
        *,
        credential: str,
        cancel_url: str,
        token: Optional["CancellationToken"] = None,
    ) -> None: ...
