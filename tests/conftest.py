"""pytest fixtures for imagestudio tests.

Provides:
- postgres_container: Session-scoped testcontainer PostgreSQL instance with migrations
- utc_timezone: Autouse fixture enforcing UTC timezone
- session: Function-scoped database session with table cleanup
- uow_factory: Function-scoped UnitOfWork factory
- settings: Test settings (tiny poll interval, tmp output dir)
- fake_store: In-memory GenerationStore using the model lifecycle methods
- ScriptedAdapter / make_orchestrator: Orchestrator wired to a scripted provider
"""

import os
import subprocess
import sys
from pathlib import Path
from typing import AsyncGenerator, Optional
from uuid import UUID

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from testcontainers.postgres import PostgresContainer

from imagestudio.core.config import Settings
from imagestudio.core.database import setup_db_session
from imagestudio.models.image_generation import (
    GenerationStatus,
    ImageGeneration,
    ImageGenerationOutput,
    ImageGenerationOutputRead,
    ImageGenerationRead,
)
from imagestudio.repositories.image_generation import clamp_pagination
from imagestudio.services.image_studio.events import EventBroadcaster, GenerationEvent
from imagestudio.services.image_studio.orchestrator import GenerationOrchestrator
from imagestudio.services.providers.placeholder import PlaceholderAdapter
from imagestudio.services.providers.types import (
    ProviderImage,
    ProviderResult,
    ProviderType,
    QueueHandle,
    StatusResult,
)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container with migrations applied.

    Migrations are applied using subprocess to avoid asyncio event loop conflicts.
    """
    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_imagestudio",
    ) as container:
        db_url = container.get_connection_url(driver="psycopg")

        env = os.environ.copy()
        env["DATABASE_URL"] = db_url
        env["APP_ENV"] = "test"

        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )

        yield container


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session(postgres_container) -> AsyncGenerator[AsyncSession, None]:
    """Provide function-scoped database session with table cleanup."""
    db_url = postgres_container.get_connection_url(driver="psycopg")
    session_factory = setup_db_session(db_url, pool_size=5)

    async with session_factory() as session:
        yield session

        await session.rollback()

        # Outputs first (FK to image_generations)
        await session.execute(text("DELETE FROM image_generation_outputs"))
        await session.execute(text("DELETE FROM image_generations"))
        await session.commit()


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session: AsyncSession):
    """Provide function-scoped UnitOfWork factory bound to the test database."""
    from sqlalchemy.ext.asyncio import async_sessionmaker

    from imagestudio.uow import create_uow_factory

    session_factory = async_sessionmaker(
        bind=session.bind,
        expire_on_commit=False,
    )
    return create_uow_factory(session_factory)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings for orchestrator tests: stored fal key, no Replicate token."""
    return Settings(  # type: ignore[call-arg]
        APP_ENV="test",
        POLL_INTERVAL_SECONDS=0.01,
        OUTPUT_DIR=str(tmp_path / "generated"),
        FAL_API_KEY="fal-stored-key",
        REPLICATE_API_TOKEN="",
        OPENROUTER_API_KEY="or-stored-key",
    )


class FakeGenerationStore:
    """In-memory GenerationStore.

    Rows are real ImageGeneration entities, so status changes go through the
    same lifecycle methods (and terminal-state guard) as the database store.
    """

    def __init__(self):
        self.generations: dict[UUID, ImageGeneration] = {}
        self.outputs: dict[UUID, ImageGenerationOutput] = {}

    def _read(self, generation: ImageGeneration) -> ImageGenerationRead:
        outputs = [o for o in self.outputs.values() if o.generation_id == generation.id]
        return ImageGenerationRead.from_rows(generation, outputs)

    async def create_generation(self, generation: ImageGeneration) -> ImageGenerationRead:
        self.generations[generation.id] = generation
        return self._read(generation)

    async def get_generation(self, generation_id: UUID) -> Optional[ImageGenerationRead]:
        generation = self.generations.get(generation_id)
        return None if generation is None else self._read(generation)

    async def update_status(self, generation_id, status, error_message=None):
        generation = self.generations.get(generation_id)
        if generation is None:
            return None
        generation.mark_status(status, error_message)
        return self._read(generation)

    async def attach_queue_handle(self, generation_id, handle: QueueHandle):
        generation = self.generations.get(generation_id)
        if generation is None:
            return None
        generation.attach_queue_handle(
            queue_request_id=handle.queue_request_id,
            status_url=handle.status_url,
            response_url=handle.response_url,
            cancel_url=handle.cancel_url,
        )
        return self._read(generation)

    async def append_log(self, generation_id, message):
        generation = self.generations.get(generation_id)
        if generation is None:
            return None
        generation.append_log(message)
        return self._read(generation)

    async def list_generations(self, status=None, provider_id=None, limit=None, offset=None):
        limit, offset = clamp_pagination(limit, offset)
        rows = [
            g
            for g in self.generations.values()
            if (status is None or g.status == status)
            and (not provider_id or g.provider_id == provider_id)
        ]
        rows.sort(key=lambda g: g.created_at, reverse=True)
        return [self._read(g) for g in rows[offset : offset + limit]]

    async def delete_generation(self, generation_id):
        self.generations.pop(generation_id, None)
        for output_id in [k for k, o in self.outputs.items() if o.generation_id == generation_id]:
            del self.outputs[output_id]

    async def add_outputs(self, outputs):
        for output in outputs:
            self.outputs[output.id] = output
        return [ImageGenerationOutputRead.model_validate(o) for o in outputs]

    async def get_output(self, output_id):
        output = self.outputs.get(output_id)
        return None if output is None else ImageGenerationOutputRead.model_validate(output)

    async def delete_output(self, output_id):
        self.outputs.pop(output_id, None)

    async def fail_orphaned_generations(self, message, exclude=None, dry_run=False):
        orphans = [
            g
            for g in self.generations.values()
            if not g.is_terminal and g.id not in (exclude or set())
        ]
        if not dry_run:
            for generation in orphans:
                generation.append_log(message)
                generation.mark_status(GenerationStatus.FAILED, message)
        return [g.id for g in orphans]


def status_result(status: GenerationStatus, logs=None, error_message=None) -> StatusResult:
    done = status in (
        GenerationStatus.COMPLETED,
        GenerationStatus.FAILED,
        GenerationStatus.CANCELLED,
    )
    return StatusResult(
        raw_status=status.value.upper(),
        status=status,
        done=done,
        logs=list(logs or []),
        error_message=error_message,
    )


class ScriptedAdapter:
    """Provider adapter that replays a fixed sequence of poll results.

    The last status is repeated once the script runs out, so a script ending
    in IN_PROGRESS keeps the job running until it is cancelled.
    """

    def __init__(
        self,
        statuses: Optional[list[StatusResult]] = None,
        images: Optional[list[ProviderImage]] = None,
        submit_error: Optional[Exception] = None,
        poll_error: Optional[Exception] = None,
    ):
        self.statuses = list(statuses or [status_result(GenerationStatus.COMPLETED)])
        self.images = (
            images
            if images is not None
            else [ProviderImage(url="https://cdn.example.com/out-0.png", content_type="image/png")]
        )
        self.submit_error = submit_error
        self.poll_error = poll_error
        self.calls: list[str] = []
        self.credentials: list[str] = []

    async def submit(self, *, prompt, input_refs, options, credential, endpoint, token=None):
        self.calls.append("submit")
        self.credentials.append(credential)
        if self.submit_error is not None:
            raise self.submit_error
        return QueueHandle(
            queue_request_id="req-1",
            status_url="https://queue.example.com/requests/req-1/status",
            response_url="https://queue.example.com/requests/req-1",
            cancel_url="https://queue.example.com/requests/req-1/cancel",
        )

    async def poll_status(self, *, credential, status_url, token=None):
        self.calls.append("poll")
        if self.poll_error is not None:
            raise self.poll_error
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def get_result(self, *, credential, response_url, token=None):
        self.calls.append("result")
        return ProviderResult(images=self.images)

    async def cancel(self, *, credential, cancel_url, token=None):
        self.calls.append("cancel")


class EventCollector:
    """Sink that records every emitted event."""

    def __init__(self):
        self.events: list[GenerationEvent] = []

    def __call__(self, event: GenerationEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type) -> list[GenerationEvent]:
        return [event for event in self.events if event.type == event_type]


def image_handler(request: httpx.Request) -> httpx.Response:
    """Serve PNG bytes for any URL except those containing 'missing'."""
    if "missing" in request.url.path:
        return httpx.Response(404, text="not found")
    return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})


@pytest.fixture
def fake_store() -> FakeGenerationStore:
    return FakeGenerationStore()


@pytest.fixture
def events() -> EventCollector:
    return EventCollector()


@pytest_asyncio.fixture
async def make_orchestrator(settings, fake_store, events):
    """Build an orchestrator around a scripted adapter for fal and Replicate.

    Tasks still running when the test ends are cancelled.
    """
    created: list[GenerationOrchestrator] = []

    def _make(adapter: ScriptedAdapter, transport: Optional[httpx.MockTransport] = None):
        orchestrator = GenerationOrchestrator(
            fake_store,
            EventBroadcaster([events]),
            settings,
            adapters={
                ProviderType.FAL_SEEDREAM_EDIT: adapter,
                ProviderType.REPLICATE_PREDICTION: adapter,
                ProviderType.OPENROUTER_SEEDREAM_PLACEHOLDER: PlaceholderAdapter(),
            },
            transport=transport or httpx.MockTransport(image_handler),
        )
        created.append(orchestrator)
        return orchestrator

    yield _make

    for orchestrator in created:
        await orchestrator.shutdown()
