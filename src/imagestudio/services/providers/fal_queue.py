"""fal.ai queue client (submit / status / result / cancel)."""

from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import urlparse

import httpx

from imagestudio.models.image_generation import GenerationStatus
from imagestudio.services.exceptions import ProviderError
from imagestudio.services.providers.types import (
    ProviderImage,
    ProviderResult,
    QueueHandle,
    StatusResult,
)

if TYPE_CHECKING:
    from imagestudio.services.image_studio.cancellation import CancellationToken
    from imagestudio.services.image_studio.options import GenerationOptions

SNIPPET_LIMIT = 400

_STATUS_MAP: dict[str, tuple[GenerationStatus, bool]] = {
    "IN_QUEUE": (GenerationStatus.QUEUED, False),
    "QUEUED": (GenerationStatus.QUEUED, False),
    "IN_PROGRESS": (GenerationStatus.IN_PROGRESS, False),
    "RUNNING": (GenerationStatus.IN_PROGRESS, False),
    "CANCELLATION_REQUESTED": (GenerationStatus.IN_PROGRESS, False),
    "COMPLETED": (GenerationStatus.COMPLETED, True),
    "CANCELLED": (GenerationStatus.CANCELLED, True),
    "CANCELED": (GenerationStatus.CANCELLED, True),
    "FAILED": (GenerationStatus.FAILED, True),
    "ERROR": (GenerationStatus.FAILED, True),
}


def map_fal_status(raw_status: str, error_message: Optional[str] = None) -> StatusResult:
    """Map a fal queue status onto the canonical status set.

    Unknown statuses are treated as still running.
    """
    status, done = _STATUS_MAP.get(raw_status.upper(), (GenerationStatus.IN_PROGRESS, False))
    result = StatusResult(raw_status=raw_status, status=status, done=done)
    if status == GenerationStatus.FAILED:
        result.error_message = error_message or "fal job failed"
    return result


def parse_status_logs(raw_logs: Any) -> list[str]:
    """Normalize fal log entries (plain strings or {message|log, level} objects)."""
    if not isinstance(raw_logs, list):
        return []

    logs = []
    for item in raw_logs:
        if isinstance(item, str):
            if item.strip():
                logs.append(item.strip())
            continue
        if isinstance(item, dict):
            message = str(item.get("message") or item.get("log") or "").strip()
            if not message:
                continue
            level = item.get("level")
            logs.append(f"[{level}] {message}" if level else message)
    return logs


def parse_result_images(payload: Any) -> list[ProviderImage]:
    if not isinstance(payload, dict) or not isinstance(payload.get("images"), list):
        return []

    images = []
    for item in payload["images"]:
        if not isinstance(item, dict) or not isinstance(item.get("url"), str):
            continue
        width = item.get("width")
        height = item.get("height")
        images.append(
            ProviderImage(
                url=item["url"],
                content_type=item.get("content_type"),
                width=round(width) if isinstance(width, (int, float)) else None,
                height=round(height) if isinstance(height, (int, float)) else None,
            )
        )
    return images


def extract_queue_request_id(payload: dict, status_url: str) -> str:
    direct = payload.get("request_id") or payload.get("requestId")
    if isinstance(direct, str) and direct.strip():
        return direct.strip()
    segments = [part for part in urlparse(status_url).path.split("/") if part]
    return segments[-1] if segments else status_url


def _snippet(text: str) -> str:
    text = text.strip()
    return f"{text[:SNIPPET_LIMIT]}…" if len(text) > SNIPPET_LIMIT else text


def _json_payload(response: httpx.Response, action: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        message = f"fal {action} returned non-JSON"
        snippet = _snippet(response.text)
        if snippet:
            message += f": {snippet}"
        raise ProviderError(message, status_code=response.status_code) from e


class FalQueueAdapter:
    """Client for the fal.ai queue protocol.

    The submit endpoint returns status/response/cancel URLs; every later call
    targets those URLs directly.
    """

    def __init__(self, timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        """Initialize fal client.

        Args:
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests inject httpx.MockTransport)
        """
        self.timeout = timeout
        self.transport = transport

    @staticmethod
    def _headers(credential: str) -> dict[str, str]:
        return {
            "Authorization": f"Key {credential}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        url: str,
        credential: str,
        token: Optional["CancellationToken"],
        json: Optional[dict] = None,
    ) -> httpx.Response:
        async def _send() -> httpx.Response:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                return await client.request(
                    method, url, headers=self._headers(credential), json=json
                )

        try:
            if token is not None:
                return await token.run(_send())
            return await _send()
        except httpx.TimeoutException as e:
            raise ProviderError(f"fal request timeout after {self.timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"fal network error: {e}") from e

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
        """Submit a generation to the fal queue.

        Raises:
            ProviderError: Non-2xx response, non-JSON body or missing queue URLs
        """
        if not endpoint:
            raise ProviderError("fal base URL is not configured")

        dumped = options.model_dump(mode="json")
        body = {
            "prompt": prompt,
            "image_urls": input_refs,
            "image_size": dumped["image_size"],
            "num_images": options.num_images,
            "max_images": options.max_images,
            "seed": options.seed,
            "sync_mode": options.sync_mode,
            "enable_safety_checker": options.enable_safety_checker,
            "enhance_prompt_mode": options.enhance_prompt_mode,
        }

        response = await self._request("POST", endpoint.rstrip("/"), credential, token, json=body)
        if not response.is_success:
            raise ProviderError(
                f"fal submit failed ({response.status_code}) {response.text}".strip(),
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "").lower()
        if "application/json" not in content_type:
            snippet = _snippet(response.text)
            message = (
                f"fal submit returned non-JSON (content-type={content_type or 'unknown'}). "
                "The base URL must be a queue endpoint (e.g. https://queue.fal.run/fal-ai/...), "
                "not a fal.ai/models page link."
            )
            if snippet:
                message += f" Response snippet: {snippet}"
            raise ProviderError(message, status_code=response.status_code)

        payload = _json_payload(response, "submit")
        if not isinstance(payload, dict):
            raise ProviderError("fal submit returned an unexpected payload")

        status_url = payload.get("status_url")
        response_url = payload.get("response_url")
        cancel_url = payload.get("cancel_url")
        if not status_url or not response_url or not cancel_url:
            raise ProviderError("fal submit response is missing queue URLs")

        return QueueHandle(
            queue_request_id=extract_queue_request_id(payload, status_url),
            status_url=status_url,
            response_url=response_url,
            cancel_url=cancel_url,
        )

    async def poll_status(
        self,
        *,
        credential: str,
        status_url: str,
        token: Optional["CancellationToken"] = None,
    ) -> StatusResult:
        response = await self._request("GET", status_url, credential, token)
        if not response.is_success:
            raise ProviderError(
                f"fal status request failed ({response.status_code}) {response.text}".strip(),
                status_code=response.status_code,
            )

        payload = _json_payload(response, "status")
        if not isinstance(payload, dict):
            payload = {}
        raw_status = payload.get("status")
        if not isinstance(raw_status, str):
            raw_status = "IN_PROGRESS"

        result = map_fal_status(raw_status, payload.get("error") or payload.get("message"))
        result.logs = parse_status_logs(payload.get("logs"))
        return result

    async def get_result(
        self,
        *,
        credential: str,
        response_url: str,
        token: Optional["CancellationToken"] = None,
    ) -> ProviderResult:
        response = await self._request("GET", response_url, credential, token)
        if not response.is_success:
            raise ProviderError(
                f"fal result request failed ({response.status_code}) {response.text}".strip(),
                status_code=response.status_code,
            )

        images = parse_result_images(_json_payload(response, "result"))
        if not images:
            raise ProviderError("fal result contained no images")
        return ProviderResult(images=images)

    async def cancel(
        self,
        *,
        credential: str,
        cancel_url: str,
        token: Optional["CancellationToken"] = None,
    ) -> None:
        """Request cancellation. 404 and 409 mean the job is already gone or finished."""
        response = await self._request("PUT", cancel_url, credential, token)
        if response.is_success or response.status_code in (404, 409):
            return
        raise ProviderError(
            f"fal cancel failed ({response.status_code}) {response.text}".strip(),
            status_code=response.status_code,
        )

