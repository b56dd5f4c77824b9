"""Input image sources and their resolution into provider references.

A reference is something a provider can fetch or decode directly: an
absolute http(s) URL or a base64 data URL.
"""

import asyncio
import base64
import mimetypes
from enum import Enum
from pathlib import Path
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from imagestudio.services.exceptions import GenerationValidationError


class InputSourceType(str, Enum):
    URL = "url"
    LOCAL_PATH = "local_path"


class InputSource(BaseModel):
    """One input image as supplied by the caller."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: InputSourceType
    value: str
    file_name: Optional[str] = None
    prepared_data_url: Optional[str] = Field(
        default=None, description="Pre-encoded data URL for a local file (never persisted)"
    )

    def for_storage(self) -> dict:
        """Serializable form kept on the generation row, without encoded payloads."""
        stored = {"id": self.id, "type": self.type.value, "value": self.value.strip()}
        if self.file_name:
            stored["file_name"] = self.file_name
        return stored


def is_http_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def is_data_url(value: str) -> bool:
    return value.startswith("data:")


def _encode_file_as_data_url(path: Path) -> str:
    mime, _ = mimetypes.guess_type(path.name)
    payload = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime or 'application/octet-stream'};base64,{payload}"


async def resolve_input_reference(source: InputSource) -> str:
    """Resolve one input source into a provider reference.

    Raises:
        GenerationValidationError: If the source cannot be resolved
    """
    raw_value = source.value.strip()
    label = source.file_name or raw_value

    if not raw_value:
        raise GenerationValidationError("Input resolution failed: empty input value.")

    if source.type == InputSourceType.URL:
        if not is_http_url(raw_value) and not is_data_url(raw_value):
            raise GenerationValidationError(
                f"Input resolution failed: invalid image URL {raw_value}"
            )
        return raw_value

    prepared = (source.prepared_data_url or "").strip()
    if prepared:
        if not is_data_url(prepared):
            raise GenerationValidationError(
                f"Input resolution failed: local image could not be encoded ({label})"
            )
        return prepared

    if is_data_url(raw_value) or is_http_url(raw_value):
        return raw_value

    try:
        return await asyncio.to_thread(_encode_file_as_data_url, Path(raw_value))
    except OSError as e:
        raise GenerationValidationError(
            f"Input resolution failed: cannot read local image {label}: {e}"
        ) from e


async def resolve_input_references(sources: list[InputSource]) -> list[str]:
    """Resolve every input source in order; any failure rejects the whole request."""
    return [await resolve_input_reference(source) for source in sources]
