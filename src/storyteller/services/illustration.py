"""Single-shot illustration generation for a story topic."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Sequence

from ..config import Settings
from ..openrouter import OpenRouterClient
from ..schemas.story import StoryEvent
from .multiplexer import OutputMultiplexer

logger = logging.getLogger(__name__)

IMAGE_PROMPT_TEMPLATE = (
    "A cinematic, storybook illustration for a story about: {topic}. "
    "High contrast, magical atmosphere."
)


class IllustrationError(Exception):
    """The image model returned no usable image."""


def _image_payload(fragment: Any) -> str | None:
    """Return the base64 payload of an image fragment, if it has one."""

    if not isinstance(fragment, Mapping):
        return None
    for key in ("image_url", "image"):
        value = fragment.get(key)
        if isinstance(value, Mapping):
            value = value.get("url")
        if isinstance(value, str) and value:
            if value.startswith("data:"):
                _, _, encoded = value.partition("base64,")
                return encoded or None
            return value
    for key in ("b64_json", "image_base64", "image_b64"):
        value = fragment.get(key)
        if isinstance(value, str) and value:
            return value
    return None


async def generate_illustration(
    client: OpenRouterClient, settings: Settings, topic: str
) -> str:
    """Generate one illustration and return it base64-encoded."""

    prompt = IMAGE_PROMPT_TEMPLATE.format(topic=topic)
    logger.info(
        "Generating image with model %s for prompt: %s", settings.image_model, prompt
    )
    payload = {
        "model": settings.image_model,
        "modalities": ["image", "text"],
        "messages": [{"role": "user", "content": prompt}],
    }
    message = await client.create_completion(payload)

    images = message.get("images")
    content = message.get("content")
    candidates: list[Any] = []
    if isinstance(images, Sequence) and not isinstance(images, str):
        candidates.extend(images)
    if isinstance(content, Sequence) and not isinstance(content, str):
        candidates.extend(content)
    if not candidates:
        raise IllustrationError("no content generated")

    for fragment in candidates:
        encoded = _image_payload(fragment)
        if encoded:
            logger.info("Image generated successfully (%d base64 chars)", len(encoded))
            return encoded

    raise IllustrationError("no inline image data found")


async def run_illustration(
    client: OpenRouterClient,
    settings: Settings,
    multiplexer: OutputMultiplexer,
    topic: str,
) -> None:
    """Emit at most one image event; never raises except on cancellation."""

    try:
        b64_image = await generate_illustration(client, settings, topic)
        await multiplexer.send_event(StoryEvent.image(b64_image))
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("Image generation failed: %s", exc)


__all__ = [
    "IMAGE_PROMPT_TEMPLATE",
    "IllustrationError",
    "generate_illustration",
    "run_illustration",
]
