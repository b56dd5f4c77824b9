"""Input source resolution tests."""

import base64

import pytest

from imagestudio.services.exceptions import GenerationValidationError
from imagestudio.services.image_studio.inputs import (
    InputSource,
    InputSourceType,
    resolve_input_reference,
    resolve_input_references,
)


@pytest.mark.asyncio
async def test_http_url_passes_through():
    source = InputSource(type=InputSourceType.URL, value=" https://example.com/a.png ")

    assert await resolve_input_reference(source) == "https://example.com/a.png"


@pytest.mark.asyncio
async def test_invalid_url_rejected():
    source = InputSource(type=InputSourceType.URL, value="example.com/a.png")

    with pytest.raises(GenerationValidationError, match="Input resolution failed"):
        await resolve_input_reference(source)


@pytest.mark.asyncio
async def test_local_file_is_encoded_as_data_url(tmp_path):
    image = tmp_path / "input.png"
    image.write_bytes(b"\x89PNG fake")

    reference = await resolve_input_reference(
        InputSource(type=InputSourceType.LOCAL_PATH, value=str(image))
    )

    assert reference.startswith("data:image/png;base64,")
    assert base64.b64decode(reference.split(",", 1)[1]) == b"\x89PNG fake"


@pytest.mark.asyncio
async def test_prepared_payload_wins_over_file(tmp_path):
    source = InputSource(
        type=InputSourceType.LOCAL_PATH,
        value=str(tmp_path / "does-not-exist.png"),
        prepared_data_url="data:image/png;base64,AAAA",
    )

    assert await resolve_input_reference(source) == "data:image/png;base64,AAAA"


@pytest.mark.asyncio
async def test_missing_local_file_rejected(tmp_path):
    source = InputSource(
        type=InputSourceType.LOCAL_PATH,
        value=str(tmp_path / "missing.png"),
        file_name="missing.png",
    )

    with pytest.raises(GenerationValidationError, match="cannot read local image missing.png"):
        await resolve_input_reference(source)


@pytest.mark.asyncio
async def test_one_bad_source_rejects_all():
    sources = [
        InputSource(type=InputSourceType.URL, value="https://example.com/a.png"),
        InputSource(type=InputSourceType.URL, value=""),
    ]

    with pytest.raises(GenerationValidationError, match="empty input value"):
        await resolve_input_references(sources)


def test_storage_form_drops_prepared_payload():
    source = InputSource(
        id="in-1",
        type=InputSourceType.LOCAL_PATH,
        value=" /tmp/a.png ",
        file_name="a.png",
        prepared_data_url="data:image/png;base64,AAAA",
    )

    assert source.for_storage() == {
        "id": "in-1",
        "type": "local_path",
        "value": "/tmp/a.png",
        "file_name": "a.png",
    }
