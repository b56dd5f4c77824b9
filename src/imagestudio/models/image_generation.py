"""ImageGeneration entities - one row per generation attempt plus its outputs."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class GenerationStatus(str, Enum):
    """Generation lifecycle status."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {GenerationStatus.COMPLETED, GenerationStatus.FAILED, GenerationStatus.CANCELLED}
)


class InvalidStateTransition(Exception):
    """Raised when attempting to change the status of a terminal generation."""

    pass


class ImageGeneration(SQLModel, table=True):
    """ImageGeneration tracks one submission to a provider queue.

    Rows are mutated only by the owning execution task until they reach a
    terminal status. Retries create new rows.
    """

    __tablename__ = "image_generations"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    provider_id: str = Field(max_length=100, index=True)
    provider_type: str = Field(max_length=50)
    status: GenerationStatus = Field(default=GenerationStatus.QUEUED, index=True)
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    input_sources: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    request_options: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    # Queue handle (set once the provider accepts the submission)
    queue_request_id: Optional[str] = Field(default=None, max_length=255)
    status_url: Optional[str] = Field(default=None)
    response_url: Optional[str] = Field(default=None)
    cancel_url: Optional[str] = Field(default=None)

    logs: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = Field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def mark_status(self, status: GenerationStatus, error_message: Optional[str] = None) -> None:
        """Move the generation to a new status.

        finished_at is set when the new status is terminal and cleared otherwise.

        Args:
            status: Target status
            error_message: Error description (only kept for failed generations)

        Raises:
            InvalidStateTransition: If the generation is already terminal
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark {status.value} from terminal state {self.status.value}."
            )
        now = datetime.utcnow()
        self.status = status
        self.error_message = error_message
        self.finished_at = now if status in TERMINAL_STATUSES else None
        self.updated_at = now

    def attach_queue_handle(
        self, queue_request_id: str, status_url: str, response_url: str, cancel_url: str
    ) -> None:
        """Record the provider queue handle returned on acceptance."""
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot attach a queue handle to terminal state {self.status.value}."
            )
        self.queue_request_id = queue_request_id
        self.status_url = status_url
        self.response_url = response_url
        self.cancel_url = cancel_url
        self.updated_at = datetime.utcnow()

    def append_log(self, message: str) -> None:
        # Reassign so SQLAlchemy detects the JSON change
        self.logs = [*self.logs, message]
        self.updated_at = datetime.utcnow()


class ImageGenerationOutput(SQLModel, table=True):
    """One generated image. local_path is None when the download failed."""

    __tablename__ = "image_generation_outputs"  # type: ignore[assignment]
    __table_args__ = (
        UniqueConstraint("generation_id", "output_index", name="uq_generation_output_index"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    generation_id: UUID = Field(
        foreign_key="image_generations.id", ondelete="CASCADE", index=True
    )
    output_index: int = Field(ge=0)
    remote_url: Optional[str] = Field(default=None)
    local_path: Optional[str] = Field(default=None)
    content_type: Optional[str] = Field(default=None, max_length=100)
    width: Optional[int] = Field(default=None)
    height: Optional[int] = Field(default=None)
    file_size: Optional[int] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ImageGenerationOutputRead(SQLModel):
    """Detached output snapshot returned to callers and observers."""

    id: UUID
    generation_id: UUID
    output_index: int
    remote_url: Optional[str] = None
    local_path: Optional[str] = None
    content_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None
    created_at: datetime


class ImageGenerationRead(SQLModel):
    """Detached generation snapshot with its outputs ordered by output_index."""

    id: UUID
    provider_id: str
    provider_type: str
    status: GenerationStatus
    prompt: str
    input_sources: list = []
    request_options: dict = {}
    queue_request_id: Optional[str] = None
    status_url: Optional[str] = None
    response_url: Optional[str] = None
    cancel_url: Optional[str] = None
    logs: list[str] = []
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    finished_at: Optional[datetime] = None
    outputs: list[ImageGenerationOutputRead] = []

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_rows(
        cls, generation: ImageGeneration, outputs: list[ImageGenerationOutput]
    ) -> "ImageGenerationRead":
        ordered = sorted(outputs, key=lambda output: output.output_index)
        return cls.model_validate(
            generation,
            update={
                "outputs": [ImageGenerationOutputRead.model_validate(o) for o in ordered],
            },
        )
