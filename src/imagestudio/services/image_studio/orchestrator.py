"""Generation orchestrator.

Owns the table of active jobs and drives one asyncio task per generation:
submit to the provider queue, poll until a terminal status, fetch and store
the outputs. Every user-facing operation returns a result object instead of
raising.

Cancellation is cooperative. Each job carries a CancellationToken that wakes
the poll sleep and aborts in-flight provider calls; only an abort requested
through cancel() ends the job as cancelled, anything else ends it as failed.
"""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

import httpx
import structlog

from imagestudio.core.config import Settings
from imagestudio.models.image_generation import (
    TERMINAL_STATUSES,
    GenerationStatus,
    ImageGeneration,
    ImageGenerationRead,
    InvalidStateTransition,
)
from imagestudio.services.exceptions import (
    GenerationValidationError,
    JobAbortedError,
    ProviderConfigError,
    ProviderError,
)
from imagestudio.services.image_studio.cancellation import CancellationToken
from imagestudio.services.image_studio.events import (
    EventBroadcaster,
    GenerationEvent,
    GenerationEventType,
)
from imagestudio.services.image_studio.inputs import InputSource, resolve_input_references
from imagestudio.services.image_studio.options import (
    GenerationOptions,
    default_options,
    merge_options,
)
from imagestudio.services.image_studio.output_persister import OutputPersister
from imagestudio.services.image_studio.provider_config import (
    ProviderConfigResolver,
    select_api_key,
)
from imagestudio.services.image_studio.schemas import (
    GenerationListResult,
    GenerationResult,
    OperationResult,
    SubmitRequest,
)
from imagestudio.services.image_studio.store import GenerationStore
from imagestudio.services.image_studio.validation import (
    GenerationLimits,
    validate_custom_image_size,
    validate_image_budget,
    validate_input_count,
    validate_prompt,
)
from imagestudio.services.providers.registry import build_default_adapters
from imagestudio.services.providers.types import ProviderAdapter, ProviderConfig, ProviderType

logger = structlog.get_logger(__name__)

CREATED_LOG = "Generation created, waiting for queue submission."
FETCHING_RESULT_LOG = "Queue finished, fetching result."
CANCELLED_BY_USER_LOG = "Generation cancelled by user."
INTERRUPTED_MESSAGE = "Interrupted by application restart"
GENERATION_NOT_FOUND = "Generation not found."
OUTPUT_NOT_FOUND = "Output not found."

_FINISH_EVENTS = {
    GenerationStatus.COMPLETED: GenerationEventType.COMPLETED,
    GenerationStatus.FAILED: GenerationEventType.FAILED,
    GenerationStatus.CANCELLED: GenerationEventType.CANCELLED,
}


def _error_text(error: BaseException) -> str:
    return str(error) or type(error).__name__


@dataclass
class ActiveJobContext:
    """In-memory state of a running generation."""

    generation_id: UUID
    provider: ProviderConfig
    adapter: ProviderAdapter
    api_key: str
    token: CancellationToken = field(default_factory=CancellationToken)
    cancel_requested: bool = False
    seen_logs: set[str] = field(default_factory=set)
    task: Optional[asyncio.Task] = None


class GenerationOrchestrator:
    """Runs generations against provider queues and records their history."""

    def __init__(
        self,
        store: GenerationStore,
        broadcaster: EventBroadcaster,
        settings: Settings,
        adapters: Optional[dict[ProviderType, ProviderAdapter]] = None,
        persister: Optional[OutputPersister] = None,
        resolver: Optional[ProviderConfigResolver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.settings = settings
        self.adapters = adapters or build_default_adapters(settings, transport=transport)
        self.persister = persister or OutputPersister(
            store,
            broadcaster,
            settings.output_dir,
            timeout=settings.download_timeout_seconds,
            transport=transport,
        )
        self.resolver = resolver or ProviderConfigResolver(settings)
        self.limits = GenerationLimits.from_settings(settings)
        self.default_options = default_options(settings)
        self.poll_interval = settings.poll_interval_seconds
        self._active: dict[UUID, ActiveJobContext] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _adapter_for(self, provider: ProviderConfig) -> ProviderAdapter:
        adapter = self.adapters.get(provider.type)
        if adapter is None:
            raise ProviderConfigError(
                f"No adapter registered for provider type: {provider.type.value}"
            )
        return adapter

    def _emit(self, event_type: GenerationEventType, generation_id: UUID, **payload) -> None:
        self.broadcaster.emit(
            GenerationEvent(type=event_type, generation_id=generation_id, **payload)
        )

    async def _append_log(self, generation_id: UUID, message: str) -> None:
        job = await self.store.append_log(generation_id, message)
        if job is not None:
            self._emit(GenerationEventType.LOG, generation_id, message=message)

    async def _set_status(self, generation_id: UUID, status: GenerationStatus) -> None:
        job = await self.store.update_status(generation_id, status)
        if job is not None:
            self._emit(GenerationEventType.STATUS, generation_id, status=status, job=job)

    async def _finish(
        self,
        generation_id: UUID,
        status: GenerationStatus,
        error_message: Optional[str] = None,
    ) -> Optional[ImageGenerationRead]:
        """Move a job to a terminal status and emit the matching event.

        A job that is already terminal is left untouched and no event is emitted.
        """
        try:
            job = await self.store.update_status(generation_id, status, error_message)
        except InvalidStateTransition:
            logger.debug(
                "generation.already_terminal",
                generation_id=str(generation_id),
                status=status.value,
            )
            return None
        if job is None:
            return None

        self._emit(
            _FINISH_EVENTS[status],
            generation_id,
            status=status,
            message=error_message,
            job=job,
        )
        logger.info(
            "generation.finished",
            generation_id=str(generation_id),
            provider_id=job.provider_id,
            status=status.value,
            error_message=error_message,
        )
        return job

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "generation.task_crashed",
                task_name=task.get_name(),
                error_type=type(error).__name__,
                error_message=str(error),
            )

    # ------------------------------------------------------------------
    # Submit / execution task
    # ------------------------------------------------------------------

    async def submit(self, request: SubmitRequest) -> GenerationResult:
        """Validate a request, create its job and start the execution task.

        Returns immediately with the queued job; progress is reported through
        the broadcaster.
        """
        try:
            job = await self._submit(request)
        except Exception as e:
            logger.warning(
                "generation.submit_rejected",
                provider_id=request.provider_id,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return GenerationResult(success=False, error=_error_text(e))
        return GenerationResult(success=True, job=job)

    async def _submit(self, request: SubmitRequest) -> ImageGenerationRead:
        prompt = validate_prompt(request.prompt)
        validate_input_count(len(request.inputs), self.limits)
        input_refs = await resolve_input_references(request.inputs)
        options = merge_options(self.default_options, request.options)
        validate_image_budget(len(request.inputs), options, self.limits)
        validate_custom_image_size(options, self.limits)

        provider = self.resolver.resolve(request.provider_id)
        api_key = select_api_key(request.api_key, provider.api_key)
        if not api_key:
            raise GenerationValidationError(f"Please set an API key for {provider.name} first.")
        adapter = self._adapter_for(provider)

        created = await self.store.create_generation(
            ImageGeneration(
                provider_id=provider.id,
                provider_type=provider.type.value,
                status=GenerationStatus.QUEUED,
                prompt=prompt,
                input_sources=[source.for_storage() for source in request.inputs],
                request_options=options.model_dump(mode="json"),
                logs=[CREATED_LOG],
            )
        )
        self._emit(
            GenerationEventType.STATUS, created.id, status=GenerationStatus.QUEUED, job=created
        )

        if created.id in self._active:
            raise RuntimeError(f"Generation {created.id} already has an active task")
        context = ActiveJobContext(
            generation_id=created.id,
            provider=provider,
            adapter=adapter,
            api_key=api_key,
            seen_logs=set(created.logs),
        )
        self._active[created.id] = context
        context.task = asyncio.create_task(
            self._run_job(context, prompt, input_refs, options),
            name=f"generation-{created.id}",
        )
        context.task.add_done_callback(self._on_task_done)

        logger.info(
            "generation.created",
            generation_id=str(created.id),
            provider_id=provider.id,
            input_count=len(input_refs),
        )
        return created

    async def _run_job(
        self,
        context: ActiveJobContext,
        prompt: str,
        input_refs: list[str],
        options: GenerationOptions,
    ) -> None:
        generation_id = context.generation_id
        token = context.token

        try:
            await self._append_log(generation_id, f"Submitting to {context.provider.name}")
            handle = await context.adapter.submit(
                prompt=prompt,
                input_refs=input_refs,
                options=options,
                credential=context.api_key,
                endpoint=context.provider.base_url,
                token=token,
            )

            job = await self.store.attach_queue_handle(generation_id, handle)
            if job is None:
                return
            self._emit(GenerationEventType.STATUS, generation_id, status=job.status, job=job)
            logger.info(
                "generation.submitted",
                generation_id=str(generation_id),
                provider_id=context.provider.id,
                queue_request_id=handle.queue_request_id,
            )

            while True:
                await token.sleep(self.poll_interval)

                current = await self.store.get_generation(generation_id)
                if current is None:
                    logger.info(
                        "generation.deleted_while_running", generation_id=str(generation_id)
                    )
                    return
                if current.is_terminal:
                    return
                if not current.status_url or not current.response_url:
                    raise ProviderError("Queue URLs are missing, cannot continue polling.")

                result = await context.adapter.poll_status(
                    credential=context.api_key, status_url=current.status_url, token=token
                )

                for line in result.logs:
                    if line in context.seen_logs:
                        continue
                    context.seen_logs.add(line)
                    await self._append_log(generation_id, line)

                if not result.done:
                    if result.status != current.status and result.status not in TERMINAL_STATUSES:
                        await self._set_status(generation_id, result.status)
                    continue

                if result.status == GenerationStatus.COMPLETED:
                    await self._append_log(generation_id, FETCHING_RESULT_LOG)
                    provider_result = await context.adapter.get_result(
                        credential=context.api_key, response_url=current.response_url, token=token
                    )
                    await self.persister.persist_outputs(
                        generation_id, provider_result.images, token=token
                    )
                    await self._finish(generation_id, GenerationStatus.COMPLETED)
                    return

                if result.status == GenerationStatus.CANCELLED:
                    await self._finish(generation_id, GenerationStatus.CANCELLED)
                    return

                error_message = result.error_message or "Generation failed."
                await self._append_log(generation_id, error_message)
                await self._finish(generation_id, GenerationStatus.FAILED, error_message)
                return

        except InvalidStateTransition:
            # Finished elsewhere (cancel, orphan recovery) while this step ran
            logger.debug("generation.finished_elsewhere", generation_id=str(generation_id))
        except Exception as e:
            try:
                if isinstance(e, JobAbortedError) and context.cancel_requested:
                    await self._finish(generation_id, GenerationStatus.CANCELLED)
                    return

                error_message = _error_text(e)
                logger.error(
                    "generation.failed",
                    generation_id=str(generation_id),
                    provider_id=context.provider.id,
                    error_type=type(e).__name__,
                    error_message=error_message,
                )
                await self._append_log(generation_id, f"Generation failed: {error_message}")
                await self._finish(generation_id, GenerationStatus.FAILED, error_message)
            except Exception as finalize_error:
                logger.error(
                    "generation.finalize_failed",
                    generation_id=str(generation_id),
                    error_type=type(finalize_error).__name__,
                    error_message=str(finalize_error),
                )
        finally:
            self._active.pop(generation_id, None)

    # ------------------------------------------------------------------
    # Cancel / retry
    # ------------------------------------------------------------------

    async def cancel(self, generation_id: UUID) -> OperationResult:
        """Cancel a generation. Cancelling a finished generation is a no-op."""
        try:
            job = await self.store.get_generation(generation_id)
            if job is None:
                return OperationResult(success=False, error=GENERATION_NOT_FOUND)
            if job.is_terminal:
                return OperationResult(success=True)

            context = self._active.get(generation_id)
            if job.cancel_url:
                if context is not None:
                    adapter, api_key = context.adapter, context.api_key
                else:
                    provider = self.resolver.resolve(job.provider_id)
                    adapter = self._adapter_for(provider)
                    api_key = select_api_key(None, provider.api_key)
                if not api_key:
                    raise GenerationValidationError(
                        "The provider has no API key, cannot request cancellation."
                    )
                await adapter.cancel(credential=api_key, cancel_url=job.cancel_url)

            if context is not None:
                context.cancel_requested = True
                context.token.cancel()

            await self._append_log(generation_id, CANCELLED_BY_USER_LOG)
            await self._finish(generation_id, GenerationStatus.CANCELLED)
            return OperationResult(success=True)
        except Exception as e:
            logger.warning(
                "generation.cancel_failed",
                generation_id=str(generation_id),
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return OperationResult(success=False, error=_error_text(e))

    async def retry(self, generation_id: UUID) -> GenerationResult:
        """Submit a historical generation again as a new job."""
        try:
            history = await self.store.get_generation(generation_id)
        except Exception as e:
            return GenerationResult(success=False, error=_error_text(e))
        if history is None:
            return GenerationResult(success=False, error="Generation to retry not found.")

        try:
            inputs = [InputSource.model_validate(source) for source in history.input_sources]
        except ValueError as e:
            return GenerationResult(success=False, error=f"Stored inputs are invalid: {e}")

        return await self.submit(
            SubmitRequest(
                provider_id=history.provider_id,
                prompt=history.prompt,
                inputs=inputs,
                options=history.request_options,
            )
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def list_history(
        self,
        status: Optional[GenerationStatus] = None,
        provider_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> GenerationListResult:
        try:
            jobs = await self.store.list_generations(
                status=status, provider_id=provider_id, limit=limit, offset=offset
            )
        except Exception as e:
            return GenerationListResult(success=False, error=_error_text(e))
        return GenerationListResult(success=True, jobs=jobs)

    async def get_history(self, generation_id: UUID) -> GenerationResult:
        try:
            job = await self.store.get_generation(generation_id)
        except Exception as e:
            return GenerationResult(success=False, error=_error_text(e))
        return GenerationResult(success=True, job=job)

    async def delete_history(
        self, generation_id: UUID, delete_files: bool = False
    ) -> OperationResult:
        """Delete a generation, optionally removing its files from disk first."""
        try:
            job = await self.store.get_generation(generation_id)
            if job is None:
                return OperationResult(success=False, error=GENERATION_NOT_FOUND)

            if delete_files:
                for output in job.outputs:
                    if output.local_path:
                        await _remove_file(output.local_path)

            await self.store.delete_generation(generation_id)
            logger.info(
                "generation.deleted",
                generation_id=str(generation_id),
                delete_files=delete_files,
            )
            return OperationResult(success=True)
        except Exception as e:
            return OperationResult(success=False, error=_error_text(e))

    async def delete_output(self, output_id: UUID, delete_file: bool = False) -> GenerationResult:
        """Delete one output and republish the remaining outputs of its generation."""
        try:
            output = await self.store.get_output(output_id)
            if output is None:
                return GenerationResult(success=False, error=OUTPUT_NOT_FOUND)

            if delete_file and output.local_path:
                await _remove_file(output.local_path)

            await self.store.delete_output(output_id)

            job = await self.store.get_generation(output.generation_id)
            if job is not None:
                self._emit(GenerationEventType.OUTPUTS, job.id, outputs=job.outputs)
            return GenerationResult(success=True, job=job)
        except Exception as e:
            return GenerationResult(success=False, error=_error_text(e))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def recover_orphaned_generations(self, dry_run: bool = False) -> list[UUID]:
        """Fail non-terminal generations that no task in this process owns.

        Returns:
            Ids of the orphaned generations
        """
        orphan_ids = await self.store.fail_orphaned_generations(
            INTERRUPTED_MESSAGE, exclude=set(self._active), dry_run=dry_run
        )
        if orphan_ids:
            logger.warning(
                "generation.orphans_recovered",
                count=len(orphan_ids),
                dry_run=dry_run,
                generation_ids=[str(generation_id) for generation_id in orphan_ids],
            )
        return orphan_ids

    @property
    def active_count(self) -> int:
        return len(self._active)

    def is_active(self, generation_id: UUID) -> bool:
        return generation_id in self._active

    async def wait_for(self, generation_id: UUID) -> None:
        """Wait until the generation's execution task has exited."""
        context = self._active.get(generation_id)
        if context is None or context.task is None:
            return
        await asyncio.gather(context.task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel every running execution task, then release adapter connections."""
        tasks = [context.task for context in self._active.values() if context.task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("orchestrator.shutdown", cancelled_tasks=len(tasks))

        for adapter in self.adapters.values():
            aclose = getattr(adapter, "aclose", None)
            if aclose is not None:
                await aclose()


async def _remove_file(path: str) -> None:
    def _unlink() -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    await asyncio.to_thread(_unlink)
