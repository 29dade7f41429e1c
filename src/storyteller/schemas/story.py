"""Websocket message schemas for story requests and streamed events."""

from __future__ import annotations

import json
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

EventType = Literal["title", "sentence", "image", "context", "suggestions"]


class StoryRequest(BaseModel):
    """A single story prompt received over the websocket."""

    model_config = ConfigDict(frozen=True)

    topic: str = Field(..., description="What the story should be about")
    voice: str = Field(..., description="Text-to-speech voice name")
    tts_model: str = Field(..., description="Text-to-speech model name")
    context: Optional[str] = Field(
        default=None,
        description="Summary of the story so far, returned by a previous context event",
    )


class StoryEvent(BaseModel):
    """Outbound JSON event; audio is sent separately as binary frames."""

    type: EventType
    content: Optional[str] = None
    data: Optional[list[str]] = None

    @classmethod
    def title(cls, text: str) -> "StoryEvent":
        return cls(type="title", content=text)

    @classmethod
    def sentence(cls, text: str) -> "StoryEvent":
        return cls(type="sentence", content=text)

    @classmethod
    def image(cls, b64_image: str) -> "StoryEvent":
        return cls(type="image", content=b64_image)

    @classmethod
    def context(cls, summary: str) -> "StoryEvent":
        return cls(type="context", content=summary)

    @classmethod
    def suggestions(cls, items: list[str]) -> "StoryEvent":
        return cls(type="suggestions", data=list(items))

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)


def parse_story_request(
    message: str | bytes,
    *,
    default_voice: str,
    default_tts_model: str,
) -> StoryRequest:
    """Parse an inbound message as JSON, falling back to a raw-text topic.

    A JSON object with a non-empty ``topic`` is honoured; empty ``voice`` and
    ``tts_model`` values keep the defaults. Anything else (invalid JSON, a
    non-object, a missing topic) is treated as the topic itself.
    """

    raw = (
        message.decode("utf-8", errors="replace")
        if isinstance(message, bytes)
        else message
    )

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        payload = None

    if isinstance(payload, dict):
        topic = payload.get("topic")
        if isinstance(topic, str) and topic:
            voice = payload.get("voice")
            tts_model = payload.get("tts_model")
            context = payload.get("context")
            return StoryRequest(
                topic=topic,
                voice=voice if isinstance(voice, str) and voice else default_voice,
                tts_model=(
                    tts_model
                    if isinstance(tts_model, str) and tts_model
                    else default_tts_model
                ),
                context=context if isinstance(context, str) and context else None,
            )

    return StoryRequest(topic=raw, voice=default_voice, tts_model=default_tts_model)


__all__ = ["EventType", "StoryEvent", "StoryRequest", "parse_story_request"]
