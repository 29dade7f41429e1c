"""Running story summary and suggested continuations."""

from __future__ import annotations

import logging

from pydantic import TypeAdapter, ValidationError

from ..config import Settings
from ..openrouter import OpenRouterClient
from ..schemas.story import StoryEvent
from .multiplexer import OutputMultiplexer

logger = logging.getLogger(__name__)

DEFAULT_SUGGESTION = "Continue..."

SUMMARY_PROMPT_TEMPLATE = """
Summarize the following story segment, merging it with the previous context.
Keep key characters, current location, and plot points concise (max 100 words).
Previous Context: {previous}
New Segment: {segment}
"""

SUGGESTIONS_PROMPT_TEMPLATE = """
Based on this story summary: "{summary}", suggest 3 short, intriguing plot continuations or user actions.
Keep them under 10 words each.
Format: JSON list of strings. Example: ["Open the door", "Run away"]
"""

_suggestions_adapter = TypeAdapter(list[str])


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` marker and a trailing ``` marker."""

    text = text.strip()
    text = text.removeprefix("```json")
    text = text.removeprefix("```")
    text = text.removesuffix("```")
    return text.strip()


def parse_suggestions(text: str) -> list[str]:
    """Parse the model's JSON list, falling back to the default suggestion."""

    cleaned = strip_code_fences(text)
    try:
        return _suggestions_adapter.validate_json(cleaned)
    except ValidationError:
        logger.warning("Failed to parse suggestions JSON: %s", cleaned)
        return [DEFAULT_SUGGESTION]


async def summarize_story(
    client: OpenRouterClient,
    settings: Settings,
    previous: str | None,
    new_segment: str,
) -> str:
    """Merge the previous summary with a new story segment.

    Raises ``OpenRouterError`` when the call fails or returns no text.
    """

    logger.info("Summarizing story with model: %s", settings.summary_model)
    prompt = SUMMARY_PROMPT_TEMPLATE.format(
        previous=previous or "", segment=new_segment
    )
    payload = {
        "model": settings.summary_model,
        "messages": [{"role": "user", "content": prompt}],
    }
    summary = await client.complete_text(payload)
    return summary.strip()


async def generate_suggestions(
    client: OpenRouterClient, settings: Settings, summary: str
) -> list[str]:
    """Ask for three short continuations; never raises on bad output."""

    logger.info("Generating suggestions with model: %s", settings.summary_model)
    payload = {
        "model": settings.summary_model,
        "messages": [
            {
                "role": "user",
                "content": SUGGESTIONS_PROMPT_TEMPLATE.format(summary=summary),
            }
        ],
    }
    try:
        text = await client.complete_text(payload)
    except Exception as exc:
        logger.warning("Suggestion request failed: %s", exc)
        return [DEFAULT_SUGGESTION]
    return parse_suggestions(text)


async def update_story_context(
    client: OpenRouterClient,
    settings: Settings,
    multiplexer: OutputMultiplexer,
    previous: str | None,
    full_story: str,
) -> None:
    """Summarize, then suggest; emits a context event and a suggestions event.

    A failed summary ends the stage silently. Write failures propagate.
    """

    try:
        summary = await summarize_story(client, settings, previous, full_story)
    except Exception as exc:
        logger.warning("Summarize error: %s", exc)
        return

    logger.info("New summary: %s", summary)
    await multiplexer.send_event(StoryEvent.context(summary))

    suggestions = await generate_suggestions(client, settings, summary)
    logger.info("Suggestions: %s", suggestions)
    await multiplexer.send_event(StoryEvent.suggestions(suggestions))


__all__ = [
    "DEFAULT_SUGGESTION",
    "generate_suggestions",
    "parse_suggestions",
    "strip_code_fences",
    "summarize_story",
    "update_story_context",
]
