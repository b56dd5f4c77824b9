"""Progress events and best-effort fan-out to observers."""

from datetime import datetime
from enum import Enum
from typing import Callable, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from imagestudio.models.image_generation import (
    GenerationStatus,
    ImageGenerationOutputRead,
    ImageGenerationRead,
)

logger = structlog.get_logger(__name__)


class GenerationEventType(str, Enum):
    STATUS = "status"
    LOG = "log"
    OUTPUTS = "outputs"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class GenerationEvent(BaseModel):
    """Progress notification for one generation."""

    type: GenerationEventType
    generation_id: UUID
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    status: Optional[GenerationStatus] = None
    message: Optional[str] = None
    outputs: Optional[list[ImageGenerationOutputRead]] = None
    job: Optional[ImageGenerationRead] = None


EventSink = Callable[[GenerationEvent], None]


class EventBroadcaster:
    """Publishes events to every registered sink.

    Delivery is fire-and-forget: sinks must not block, and a sink that raises
    is logged and skipped so the orchestrator is never affected.
    """

    def __init__(self, sinks: Optional[list[EventSink]] = None):
        self._sinks: list[EventSink] = list(sinks or [])

    def subscribe(self, sink: EventSink) -> Callable[[], None]:
        """Register a sink.

        Returns:
            Callable that removes the sink again
        """
        self._sinks.append(sink)

        def _unsubscribe() -> None:
            if sink in self._sinks:
                self._sinks.remove(sink)

        return _unsubscribe

    def emit(self, event: GenerationEvent) -> None:
        for sink in list(self._sinks):
            try:
                sink(event)
            except Exception as e:
                logger.warning(
                    "event.sink_failed",
                    generation_id=str(event.generation_id),
                    event_type=event.type.value,
                    error_type=type(e).__name__,
                    error_message=str(e),
                )


def log_event_sink(event: GenerationEvent) -> None:
    """Sink that records every event in the application log."""
    logger.debug(
        "generation.event",
        generation_id=str(event.generation_id),
        event_type=event.type.value,
        status=event.status.value if event.status else None,
        message=event.message,
    )
