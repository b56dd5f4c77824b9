"""Downloads provider results to local storage and records output rows."""

import asyncio
import base64
import os
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib.parse import unquote_to_bytes, urlparse
from uuid import UUID

import httpx
import structlog

from imagestudio.models.image_generation import ImageGenerationOutput, ImageGenerationRead
from imagestudio.services.exceptions import DownloadError, StoreError
from imagestudio.services.image_studio.cancellation import CancellationToken
from imagestudio.services.image_studio.events import (
    EventBroadcaster,
    GenerationEvent,
    GenerationEventType,
)
from imagestudio.services.image_studio.inputs import is_data_url
from imagestudio.services.image_studio.store import GenerationStore
from imagestudio.services.providers.types import ProviderImage

logger = structlog.get_logger(__name__)

_CONTENT_TYPE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}
_KNOWN_EXTENSIONS = {"png", "jpg", "jpeg", "webp", "gif"}


def extension_from_content_type(content_type: Optional[str], fallback_url: str) -> str:
    """Pick a file extension for a downloaded image.

    Uses the content type first, then the URL's extension, then png.
    """
    if content_type:
        mime = content_type.split(";")[0].strip().lower()
        if mime in _CONTENT_TYPE_EXTENSIONS:
            return _CONTENT_TYPE_EXTENSIONS[mime]

    suffix = Path(urlparse(fallback_url).path).suffix.lstrip(".").lower()
    if suffix in _KNOWN_EXTENSIONS:
        return "jpg" if suffix == "jpeg" else suffix
    return "png"


def _url_basename(url: str) -> str:
    if is_data_url(url):
        return "inline image"
    return os.path.basename(urlparse(url).path) or url


def _write_file(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def decode_data_url(url: str) -> tuple[bytes, Optional[str]]:
    """Decode an inline `data:` result into (bytes, mime type).

    Raises:
        DownloadError: If the URL is malformed or its payload cannot be decoded
    """
    header, sep, payload = url[len("data:") :].partition(",")
    if not sep:
        raise DownloadError("invalid data URL: missing payload")

    params = header.split(";")
    mime = params[0].strip() or None
    try:
        if "base64" in (p.strip().lower() for p in params[1:]):
            data = base64.b64decode("".join(payload.split()), validate=True)
        else:
            data = unquote_to_bytes(payload)
    except ValueError as e:
        raise DownloadError(f"invalid data URL: {e}") from e

    if not data:
        raise DownloadError("invalid data URL: empty payload")
    return data, mime


class OutputPersister:
    """Stores every image of a finished generation.

    Image failures are isolated: a failed download still produces an output
    row (with no local path) so output indexes match the provider result.
    """

    def __init__(
        self,
        store: GenerationStore,
        broadcaster: EventBroadcaster,
        output_dir: str | Path,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.output_dir = Path(output_dir)
        self.timeout = timeout
        self.transport = transport

    async def _download(
        self, url: str, token: Optional[CancellationToken]
    ) -> tuple[bytes, Optional[str]]:
        if is_data_url(url):
            return decode_data_url(url)

        async def _fetch() -> httpx.Response:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport, follow_redirects=True
            ) as client:
                return await client.get(url)

        try:
            response = await (token.run(_fetch()) if token is not None else _fetch())
        except httpx.TimeoutException as e:
            raise DownloadError(f"timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise DownloadError(f"network error: {e}") from e

        if not response.is_success:
            raise DownloadError(f"download failed ({response.status_code})")
        return response.content, response.headers.get("content-type")

    async def _append_log(self, generation_id: UUID, message: str) -> None:
        await self.store.append_log(generation_id, message)
        self.broadcaster.emit(
            GenerationEvent(
                type=GenerationEventType.LOG, generation_id=generation_id, message=message
            )
        )

    async def persist_outputs(
        self,
        generation_id: UUID,
        images: list[ProviderImage],
        token: Optional[CancellationToken] = None,
    ) -> ImageGenerationRead:
        """Download all images and insert their output rows in one batch.

        Args:
            generation_id: Owning generation
            images: Images returned by the provider, in result order
            token: Cancellation token of the owning job

        Returns:
            Generation snapshot including the new outputs

        Raises:
            DownloadError: If every image failed (no rows are inserted)
            JobAbortedError: If the job is cancelled mid-download
        """
        day_dir = self.output_dir / datetime.now().strftime("%Y-%m-%d")
        outputs: list[ImageGenerationOutput] = []
        saved_count = 0

        for index, image in enumerate(images):
            # Inline payloads live in the file, not in the row
            remote_url = None if is_data_url(image.url) else image.url
            try:
                data, header_type = await self._download(image.url, token)
                content_type = image.content_type or header_type or "image/png"
                extension = extension_from_content_type(content_type, image.url)
                file_path = day_dir / f"{generation_id}_{index}.{extension}"
                try:
                    await asyncio.to_thread(_write_file, file_path, data)
                except OSError as e:
                    raise DownloadError(f"write failed: {e}") from e
            except DownloadError as e:
                logger.warning(
                    "output.download_failed",
                    generation_id=str(generation_id),
                    output_index=index,
                    error_message=str(e),
                )
                await self._append_log(
                    generation_id,
                    f"Output download failed: {_url_basename(image.url)}, reason: {e}",
                )
                outputs.append(
                    ImageGenerationOutput(
                        generation_id=generation_id,
                        output_index=index,
                        remote_url=remote_url,
                        local_path=None,
                        content_type=image.content_type,
                        width=image.width,
                        height=image.height,
                        file_size=None,
                    )
                )
                continue

            outputs.append(
                ImageGenerationOutput(
                    generation_id=generation_id,
                    output_index=index,
                    remote_url=remote_url,
                    local_path=str(file_path),
                    content_type=content_type,
                    width=image.width,
                    height=image.height,
                    file_size=len(data),
                )
            )
            saved_count += 1
            logger.info(
                "output.saved",
                generation_id=str(generation_id),
                output_index=index,
                local_path=str(file_path),
                file_size=len(data),
            )

        if saved_count == 0:
            raise DownloadError("The provider returned results but every image download failed.")

        await self.store.add_outputs(outputs)
        job = await self.store.get_generation(generation_id)
        if job is None:
            raise StoreError("Generation disappeared after saving outputs.")

        self.broadcaster.emit(
            GenerationEvent(
                type=GenerationEventType.OUTPUTS,
                generation_id=generation_id,
                outputs=job.outputs,
            )
        )
        return job
