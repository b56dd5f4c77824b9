"""Replicate predictions client for Seedream-style image models."""

from typing import TYPE_CHECKING, Any, Callable, Optional
from urllib.parse import urlparse

import httpx
import replicate
from replicate.exceptions import ReplicateError as ReplicateAPIError

from imagestudio.models.image_generation import GenerationStatus
from imagestudio.services.exceptions import ProviderError
from imagestudio.services.image_studio.options import CustomImageSize, ImageSizePreset
from imagestudio.services.providers.types import (
    ProviderImage,
    ProviderResult,
    QueueHandle,
    StatusResult,
)

if TYPE_CHECKING:
    from imagestudio.services.image_studio.cancellation import CancellationToken
    from imagestudio.services.image_studio.options import GenerationOptions

_STATUS_MAP: dict[str, tuple[GenerationStatus, bool]] = {
    "starting": (GenerationStatus.QUEUED, False),
    "processing": (GenerationStatus.IN_PROGRESS, False),
    "succeeded": (GenerationStatus.COMPLETED, True),
    "failed": (GenerationStatus.FAILED, True),
    "canceled": (GenerationStatus.CANCELLED, True),
}

# Preset -> (size, aspect_ratio) understood by bytedance/seedream-4
_PRESET_INPUT: dict[ImageSizePreset, tuple[str, str]] = {
    ImageSizePreset.SQUARE_HD: ("2K", "1:1"),
    ImageSizePreset.SQUARE: ("1K", "1:1"),
    ImageSizePreset.PORTRAIT_4_3: ("2K", "3:4"),
    ImageSizePreset.PORTRAIT_16_9: ("2K", "9:16"),
    ImageSizePreset.LANDSCAPE_4_3: ("2K", "4:3"),
    ImageSizePreset.LANDSCAPE_16_9: ("2K", "16:9"),
    ImageSizePreset.AUTO_2K: ("2K", "match_input_image"),
    ImageSizePreset.AUTO_4K: ("4K", "match_input_image"),
}


def map_replicate_status(
    raw_status: Optional[str], error_message: Optional[str] = None
) -> StatusResult:
    """Map a prediction status onto the canonical status set."""
    raw = raw_status or "processing"
    status, done = _STATUS_MAP.get(raw.lower(), (GenerationStatus.IN_PROGRESS, False))
    result = StatusResult(raw_status=raw, status=status, done=done)
    if status == GenerationStatus.FAILED:
        result.error_message = error_message or "Replicate prediction failed"
    return result


def prediction_id_from_url(url: str) -> str:
    """Extract the prediction id from a predictions API URL.

    Handles both `/v1/predictions/{id}` and `/v1/predictions/{id}/cancel`.
    """
    segments = [part for part in urlparse(url).path.split("/") if part]
    if segments and segments[-1] == "cancel":
        segments = segments[:-1]
    if not segments:
        raise ProviderError(f"Cannot derive prediction id from URL: {url}")
    return segments[-1]


def build_prediction_input(
    prompt: str, input_refs: list[str], options: "GenerationOptions", image_input_key: str
) -> dict[str, Any]:
    """Translate normalized options into the model's input schema.

    The model returns up to max_images images per prediction, so num_images
    has no equivalent and is not sent.
    """
    payload: dict[str, Any] = {"prompt": prompt, "max_images": options.max_images}
    if input_refs:
        payload[image_input_key] = input_refs

    size = options.image_size
    if isinstance(size, CustomImageSize):
        payload.update({"size": "custom", "width": size.width, "height": size.height})
    else:
        preset_size, aspect_ratio = _PRESET_INPUT[size]
        if aspect_ratio == "match_input_image" and not input_refs:
            aspect_ratio = "1:1"
        payload.update({"size": preset_size, "aspect_ratio": aspect_ratio})

    if options.max_images > 1:
        payload["sequential_image_generation"] = "auto"
    return payload


def _output_urls(output: Any) -> list[str]:
    if isinstance(output, str):
        return [output]
    if isinstance(output, list):
        return [str(item) for item in output if item]
    return []


class ReplicatePredictionAdapter:
    """Runs generations as Replicate predictions.

    One SDK client is kept per credential, so request-scoped keys never leak
    into process-wide state. Each client runs on a transport owned by the
    adapter; aclose() releases their connection pools.
    """

    def __init__(
        self,
        model: str = "bytedance/seedream-4",
        image_input_key: str = "image_input",
        client_factory: Callable[..., Any] = replicate.Client,
    ):
        self.model = model
        self.image_input_key = image_input_key
        self.client_factory = client_factory
        self._clients: dict[str, Any] = {}
        self._transports: list[httpx.AsyncHTTPTransport] = []

    def _client(self, credential: str) -> Any:
        client = self._clients.get(credential)
        if client is None:
            transport = httpx.AsyncHTTPTransport()
            client = self.client_factory(api_token=credential, transport=transport)
            self._clients[credential] = client
            self._transports.append(transport)
        return client

    async def aclose(self) -> None:
        """Close the connection pools of every cached client."""
        transports, self._transports = self._transports, []
        self._clients.clear()
        for transport in transports:
            await transport.aclose()

    async def _call(self, awaitable, token: Optional["CancellationToken"], action: str):
        try:
            if token is not None:
                return await token.run(awaitable)
            return await awaitable
        except ReplicateAPIError as e:
            raise ProviderError(
                f"Replicate {action} failed: {e}", status_code=getattr(e, "status", None)
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Replicate {action} network error: {e}") from e

    async def submit(
        self,
        *,
        prompt: str,
        input_refs: list[str],
        options: "GenerationOptions",
        credential: str,
        endpoint: Optional[str],
        token: Optional["CancellationToken"] = None,
    ) -> QueueHandle:
        client = self._client(credential)
        prediction = await self._call(
            client.predictions.async_create(
                model=endpoint or self.model,
                input=build_prediction_input(prompt, input_refs, options, self.image_input_key),
            ),
            token,
            "submit",
        )

        urls = getattr(prediction, "urls", None) or {}
        get_url = urls.get("get")
        cancel_url = urls.get("cancel")
        if not prediction.id or not get_url or not cancel_url:
            raise ProviderError("Replicate submit response is missing prediction URLs")

        return QueueHandle(
            queue_request_id=prediction.id,
            status_url=get_url,
            response_url=get_url,
            cancel_url=cancel_url,
        )

    async def poll_status(
        self,
        *,
        credential: str,
        status_url: str,
        token: Optional["CancellationToken"] = None,
    ) -> StatusResult:
        client = self._client(credential)
        prediction = await self._call(
            client.predictions.async_get(prediction_id_from_url(status_url)), token, "status"
        )

        error = prediction.error if isinstance(prediction.error, str) else None
        result = map_replicate_status(prediction.status, error)
        raw_logs = prediction.logs or ""
        result.logs = [line.strip() for line in raw_logs.splitlines() if line.strip()]
        return result

    async def get_result(
        self,
        *,
        credential: str,
        response_url: str,
        token: Optional["CancellationToken"] = None,
    ) -> ProviderResult:
        client = self._client(credential)
        prediction = await self._call(
            client.predictions.async_get(prediction_id_from_url(response_url)), token, "result"
        )

        images = [ProviderImage(url=url) for url in _output_urls(prediction.output)]
        if not images:
            raise ProviderError("Replicate prediction returned no images")
        return ProviderResult(images=images)

    async def cancel(
        self,
        *,
        credential: str,
        cancel_url: str,
        token: Optional["CancellationToken"] = None,
    ) -> None:
        client = self._client(credential)
        try:
            await self._call(
                client.predictions.async_cancel(prediction_id_from_url(cancel_url)),
                token,
                "cancel",
            )
        except ProviderError as e:
            if e.status_code in (404, 409):
                return
            raise
