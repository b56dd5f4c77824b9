"""Output persister tests.

Downloads are served by httpx.MockTransport and written under tmp_path.
"""

import base64
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from conftest import PNG_BYTES, FakeGenerationStore, image_handler

from imagestudio.models.image_generation import ImageGeneration
from imagestudio.services.exceptions import DownloadError
from imagestudio.services.image_studio.events import EventBroadcaster, GenerationEventType
from imagestudio.services.image_studio.output_persister import (
    OutputPersister,
    decode_data_url,
    extension_from_content_type,
)
from imagestudio.services.providers.types import ProviderImage


@pytest_asyncio.fixture
async def generation(fake_store: FakeGenerationStore):
    created = await fake_store.create_generation(
        ImageGeneration(
            provider_id="fal_seedream", provider_type="fal_seedream_edit", prompt="a cat"
        )
    )
    return created


@pytest.fixture
def persister(fake_store, events, tmp_path):
    return OutputPersister(
        fake_store,
        EventBroadcaster([events]),
        tmp_path,
        transport=httpx.MockTransport(image_handler),
    )


@pytest.mark.parametrize(
    "content_type,url,expected",
    [
        ("image/jpeg", "https://cdn.example.com/x", "jpg"),
        ("image/webp; charset=binary", "https://cdn.example.com/x.png", "webp"),
        (None, "https://cdn.example.com/x.JPEG?sig=1", "jpg"),
        ("application/octet-stream", "https://cdn.example.com/x.gif", "gif"),
        (None, "https://cdn.example.com/x", "png"),
    ],
)
def test_extension_from_content_type(content_type, url, expected):
    assert extension_from_content_type(content_type, url) == expected


@pytest.mark.asyncio
async def test_partial_failure_keeps_index_alignment(persister, generation, fake_store, events):
    images = [
        ProviderImage(url="https://cdn.example.com/a.png", width=2048, height=2048),
        ProviderImage(url="https://cdn.example.com/missing.png"),
        ProviderImage(url="https://cdn.example.com/c.webp", content_type="image/webp"),
    ]

    job = await persister.persist_outputs(generation.id, images)

    assert [output.output_index for output in job.outputs] == [0, 1, 2]
    saved, failed, webp = job.outputs
    assert saved.local_path.endswith(f"{generation.id}_0.png")
    assert Path(saved.local_path).read_bytes() == PNG_BYTES
    assert saved.file_size == len(PNG_BYTES)
    assert saved.content_type == "image/png"
    assert saved.width == 2048
    assert failed.local_path is None
    assert failed.remote_url == "https://cdn.example.com/missing.png"
    assert failed.file_size is None
    assert webp.local_path.endswith(".webp")
    assert Path(saved.local_path).parent.parent == persister.output_dir

    outputs_events = events.of_type(GenerationEventType.OUTPUTS)
    assert len(outputs_events) == 1
    assert len(outputs_events[0].outputs) == 3
    assert "Output download failed: missing.png, reason: download failed (404)" in job.logs


@pytest.mark.asyncio
async def test_all_failures_raise_and_insert_nothing(persister, generation, fake_store, events):
    images = [
        ProviderImage(url="https://cdn.example.com/missing-a.png"),
        ProviderImage(url="https://cdn.example.com/missing-b.png"),
        ProviderImage(url="https://cdn.example.com/missing-c.png"),
    ]

    with pytest.raises(DownloadError):
        await persister.persist_outputs(generation.id, images)

    assert fake_store.outputs == {}
    assert events.of_type(GenerationEventType.OUTPUTS) == []
    assert len(events.of_type(GenerationEventType.LOG)) == 3


@pytest.mark.asyncio
async def test_network_error_is_isolated(fake_store, events, generation, tmp_path):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("broken.png"):
            raise httpx.ConnectError("connection refused", request=request)
        return image_handler(request)

    persister = OutputPersister(
        fake_store, EventBroadcaster([events]), tmp_path, transport=httpx.MockTransport(handler)
    )

    job = await persister.persist_outputs(
        generation.id,
        [
            ProviderImage(url="https://cdn.example.com/broken.png"),
            ProviderImage(url="https://cdn.example.com/ok.png"),
        ],
    )

    assert job.outputs[0].local_path is None
    assert job.outputs[1].local_path is not None
    assert any("network error" in log for log in job.logs)


JPEG_BYTES = b"\xff\xd8\xff\xe0 inline jpeg"


@pytest.mark.asyncio
async def test_inline_data_url_saved_alongside_download(persister, generation):
    """Sync-mode results arrive as data URLs and are decoded without a request."""
    inline = "data:image/jpeg;base64," + base64.b64encode(JPEG_BYTES).decode("ascii")

    job = await persister.persist_outputs(
        generation.id,
        [
            ProviderImage(url=inline),
            ProviderImage(url="https://cdn.example.com/remote.png"),
        ],
    )

    first, second = job.outputs
    assert first.local_path.endswith(f"{generation.id}_0.jpg")
    assert Path(first.local_path).read_bytes() == JPEG_BYTES
    assert first.content_type == "image/jpeg"
    assert first.file_size == len(JPEG_BYTES)
    assert first.remote_url is None
    assert Path(second.local_path).read_bytes() == PNG_BYTES
    assert second.remote_url == "https://cdn.example.com/remote.png"


@pytest.mark.asyncio
async def test_malformed_data_url_is_isolated(persister, generation):
    job = await persister.persist_outputs(
        generation.id,
        [
            ProviderImage(url="data:image/png;base64,@@not-base64@@"),
            ProviderImage(url="https://cdn.example.com/ok.png"),
        ],
    )

    assert job.outputs[0].local_path is None
    assert job.outputs[1].local_path is not None
    assert any(
        log.startswith("Output download failed: inline image, reason: invalid data URL")
        for log in job.logs
    )


def test_decode_data_url_variants():
    assert decode_data_url("data:image/png;base64,iVBO Rw==") == (b"\x89PNG\x47", "image/png")
    assert decode_data_url("data:text/plain,hello%20world") == (b"hello world", "text/plain")
    with pytest.raises(DownloadError, match="missing payload"):
        decode_data_url("data:image/png;base64")
