"""
Story Pipeline: narrative generation fanned out to subtitles and speech.

Architecture:

    ┌─────────────┐     ┌──────────────────┐     ┌────────────┐     ┌───────────────┐
    │ LLM Stream  │────▶│ SentenceSegmenter│────▶│ unit_queue │────▶│ TTS sessions  │
    └─────────────┘     └──────────────────┘     │ (max 5)    │     │ (sequential)  │
                                 │               └────────────┘     └───────────────┘
                                 ▼                                          │
                          title / sentence                                  ▼
                               events ─────────▶ OutputMultiplexer ◀── audio frames
                                                   ▲        ▲
                         illustration task ────────┘        └──── context task
                         (parallel, best effort)             (after the stream)

One request runs as follows:
1. The illustration task starts in the background; it emits at most one image.
2. The narrative producer streams the story, feeds the segmenter, sends each
   title/sentence event and pushes sentences onto the bounded queue. A full
   queue blocks the producer.
3. The synthesis consumer drains the queue on the caller's coroutine, one
   synthesis session per sentence, forwarding audio in sentence order.
4. When the stream ends, the producer closes the queue and returns the full
   story text.
5. Once the queue is drained and the producer's outcome (the single error
   slot) has been checked, the summary/suggestions stage runs. A failed
   synthesis session therefore never produces context events.
"""

import asyncio
import logging
from contextlib import aclosing
from typing import Optional

from storyteller.config import Settings
from storyteller.openrouter import OpenRouterClient
from storyteller.schemas.story import StoryEvent, StoryRequest
from storyteller.services.illustration import run_illustration
from storyteller.services.multiplexer import OutputMultiplexer
from storyteller.services.story_context import update_story_context
from storyteller.services.text_segmenter import SentenceSegmenter, StoryUnit
from storyteller.services.tts_service import TTSService

logger = logging.getLogger(__name__)

STORY_PROMPT_TEMPLATE = """
You are a master storyteller.
Your audience is listening to this story, so use evocative language, clear imagery, and a natural rhythm.
Topic: {topic}
{context_block}

Instructions:
1. First, provide a creative Title for the story in the format: "Title: [Your Title]".
2. Then, tell the story (approx. 150 words).
3. Focus on sensory details (sight, sound, smell).
4. Ensure a clear narrative arc with a satisfying conclusion.
5. Avoid markdown formatting (like bold or italics) as this is for TTS.
"""

CONTEXT_BLOCK_TEMPLATE = (
    "Previous Story Context: {context}\n"
    "Continue the story naturally from this context."
)


def build_story_prompt(topic: str, context: Optional[str] = None) -> str:
    context_block = CONTEXT_BLOCK_TEMPLATE.format(context=context) if context else ""
    return STORY_PROMPT_TEMPLATE.format(topic=topic, context_block=context_block)


class StoryPipeline:
    """
    Runs story requests for a single websocket connection.

    Attributes:
        settings: Application settings (models, queue size, split threshold)
        multiplexer: Serialized writer shared by every task of a run
        tts_service: Speech synthesis sessions
        client: OpenRouter client, or None in echo mode
    """

    def __init__(
        self,
        settings: Settings,
        multiplexer: OutputMultiplexer,
        tts_service: TTSService,
        client: Optional[OpenRouterClient] = None,
    ):
        self.settings = settings
        self.multiplexer = multiplexer
        self.tts_service = tts_service
        self.client = client
        self._background: set[asyncio.Task] = set()

    def _new_segmenter(self) -> SentenceSegmenter:
        return SentenceSegmenter(max_buffer_chars=self.settings.sentence_max_chars)

    def _new_queue(self) -> "asyncio.Queue[Optional[str]]":
        return asyncio.Queue(maxsize=self.settings.unit_queue_size)

    async def run(self, request: StoryRequest) -> None:
        """
        Generate, display and narrate one story.

        Raises:
            OpenRouterError: the narrative stream failed
            SynthesisError: a synthesis session failed
            TransportError: the websocket can no longer be written
        """
        if self.client is None:
            raise RuntimeError("Story generation is not configured")

        logger.info(
            f"Starting story for topic: {request.topic} "
            f"(Voice: {request.voice}, TTS Model: {request.tts_model})"
        )
        self._start_illustration(request.topic)

        unit_queue = self._new_queue()
        producer = asyncio.create_task(self._produce(request, unit_queue))
        story_text = await self._drain(request, unit_queue, producer)
        logger.info("Story narration finished successfully.")

        await update_story_context(
            self.client,
            self.settings,
            self.multiplexer,
            request.context,
            story_text or "",
        )

    async def echo(self, request: StoryRequest) -> None:
        """Speak the message back without generation (no API key configured)."""
        unit_queue = self._new_queue()
        producer = asyncio.create_task(self._produce_echo(request, unit_queue))
        await self._drain(request, unit_queue, producer)

    @property
    def pending_background(self) -> tuple[asyncio.Task, ...]:
        """Illustration tasks of this connection that have not finished."""
        return tuple(task for task in self._background if not task.done())

    async def aclose(self) -> None:
        """Cancel background work still tied to this connection."""
        tasks = self.pending_background
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} pending illustration task(s)")
        self._background.clear()

    def _start_illustration(self, topic: str) -> None:
        assert self.client is not None
        task = asyncio.create_task(
            run_illustration(self.client, self.settings, self.multiplexer, topic)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _drain(
        self,
        request: StoryRequest,
        unit_queue: "asyncio.Queue[Optional[str]]",
        producer: asyncio.Task,
    ) -> Optional[str]:
        try:
            await self._consume(request, unit_queue)
        except BaseException:
            # Stop generation: no further units, no context events
            producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)
            raise

        # Queue closed; the producer's outcome is the run's error slot
        return await producer

    async def _consume(
        self,
        request: StoryRequest,
        unit_queue: "asyncio.Queue[Optional[str]]",
    ) -> None:
        while True:
            sentence = await unit_queue.get()
            if sentence is None:
                break
            session = self.tts_service.stream_synthesize(
                sentence, voice=request.voice, model=request.tts_model
            )
            async with aclosing(session) as audio_chunks:
                async for audio_chunk in audio_chunks:
                    await self.multiplexer.send_audio(audio_chunk)

    async def _produce(
        self,
        request: StoryRequest,
        unit_queue: "asyncio.Queue[Optional[str]]",
    ) -> str:
        assert self.client is not None
        prompt = build_story_prompt(request.topic, request.context)
        logger.debug(f"Story prompt: {prompt}")
        payload = {
            "model": self.settings.story_model,
            "messages": [{"role": "user", "content": prompt}],
        }

        segmenter = self._new_segmenter()
        story_parts: list[str] = []

        try:
            async with aclosing(self.client.stream_text(payload)) as fragments:
                async for fragment in fragments:
                    story_parts.append(fragment)
                    for unit in segmenter.feed(fragment):
                        await self._dispatch(unit, unit_queue)

            for unit in segmenter.flush():
                await self._dispatch(unit, unit_queue)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(f"Story stream error: {exc}")
            await unit_queue.put(None)
            raise

        await unit_queue.put(None)
        logger.info("Story stream finished (producer).")
        return "".join(story_parts)

    async def _produce_echo(
        self,
        request: StoryRequest,
        unit_queue: "asyncio.Queue[Optional[str]]",
    ) -> None:
        segmenter = self._new_segmenter()
        try:
            for unit in [*segmenter.feed(request.topic), *segmenter.flush()]:
                await self._dispatch(unit, unit_queue)
        except asyncio.CancelledError:
            raise
        except Exception:
            await unit_queue.put(None)
            raise
        await unit_queue.put(None)

    async def _dispatch(
        self, unit: StoryUnit, unit_queue: "asyncio.Queue[Optional[str]]"
    ) -> None:
        if unit.kind == "title":
            logger.info(f"Generated title: {unit.text}")
            await self.multiplexer.send_event(StoryEvent.title(unit.text))
            return

        logger.info(f"Generated sentence: {unit.text}")
        await self.multiplexer.send_event(StoryEvent.sentence(unit.text))
        await unit_queue.put(unit.text)


__all__ = ["StoryPipeline", "build_story_prompt"]
