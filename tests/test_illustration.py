"""Tests for illustration generation."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from storyteller.openrouter import OpenRouterError
from storyteller.services.illustration import (
    IllustrationError,
    generate_illustration,
    run_illustration,
)
from storyteller.services.multiplexer import OutputMultiplexer


class ImageClient:
    def __init__(self, message: Any = None, error: Exception | None = None) -> None:
        self.message = message
        self.error = error
        self.payloads: list[dict[str, Any]] = []

    async def create_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return self.message


@pytest.mark.asyncio
async def test_generate_illustration_reads_data_url(settings):
    client = ImageClient(
        {
            "content": "Here is your picture",
            "images": [
                {"type": "image_url", "image_url": {"url": "data:image/png;base64,iVBOR"}}
            ],
        }
    )

    assert await generate_illustration(client, settings, "a lighthouse") == "iVBOR"

    payload = client.payloads[0]
    assert payload["model"] == settings.image_model
    assert payload["modalities"] == ["image", "text"]
    assert "a story about: a lighthouse" in payload["messages"][0]["content"]


@pytest.mark.asyncio
async def test_generate_illustration_reads_content_parts(settings):
    client = ImageClient(
        {
            "content": [
                {"type": "text", "text": "caption"},
                {"type": "image", "b64_json": "QUJD"},
            ]
        }
    )
    assert await generate_illustration(client, settings, "owls") == "QUJD"


@pytest.mark.asyncio
async def test_generate_illustration_without_candidates(settings):
    client = ImageClient({"content": "only words"})
    with pytest.raises(IllustrationError, match="no content generated"):
        await generate_illustration(client, settings, "owls")


@pytest.mark.asyncio
async def test_generate_illustration_without_image_data(settings):
    client = ImageClient({"content": [{"type": "text", "text": "no picture"}]})
    with pytest.raises(IllustrationError, match="no inline image data"):
        await generate_illustration(client, settings, "owls")


@pytest.mark.asyncio
async def test_run_illustration_sends_one_image_event(settings, websocket):
    client = ImageClient({"images": [{"image_url": "data:image/jpeg;base64,Zm9v"}]})

    await run_illustration(client, settings, OutputMultiplexer(websocket), "foxes")

    assert websocket.events == [{"type": "image", "content": "Zm9v"}]


@pytest.mark.asyncio
async def test_run_illustration_swallows_failures(settings, websocket, caplog):
    client = ImageClient(error=OpenRouterError(400, "model does not support images"))

    with caplog.at_level("WARNING"):
        await run_illustration(client, settings, OutputMultiplexer(websocket), "foxes")

    assert websocket.events == []
    assert "Image generation failed" in caplog.text


@pytest.mark.asyncio
async def test_run_illustration_propagates_cancellation(settings, websocket):
    class HangingClient:
        async def create_completion(self, payload):
            await asyncio.Event().wait()

    task = asyncio.create_task(
        run_illustration(HangingClient(), settings, OutputMultiplexer(websocket), "x")
    )
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
