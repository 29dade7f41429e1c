import logging
from typing import AsyncIterator, Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import texttospeech

from storyteller.config import Settings

logger = logging.getLogger(__name__)


class SynthesisError(Exception):
    """A speech synthesis session failed."""


class TTSService:
    """
    Service for streaming Text-to-Speech via Google Cloud.

    Each call to stream_synthesize() is one synthesis session: a
    bidirectional stream that receives a voice configuration, then the text
    of exactly one unit, then end-of-input, and answers with an ordered
    sequence of raw audio chunks.

    The async gRPC client is created lazily and shared across sessions.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[texttospeech.TextToSpeechAsyncClient] = None,
    ):
        self._language_code = settings.tts_language_code
        self._timeout = settings.synthesis_timeout
        self._client = client

    def get_client(self) -> texttospeech.TextToSpeechAsyncClient:
        """Get the shared TTS client, creating it on first use."""
        if self._client is None:
            self._client = texttospeech.TextToSpeechAsyncClient()
            logger.info("Created Google Cloud TextToSpeechAsyncClient")
        return self._client

    async def close(self) -> None:
        """Close the shared TTS client. Call on app shutdown."""
        if self._client is not None:
            await self._client.transport.close()
            self._client = None
            logger.info("Closed TTS client")

    def build_config_request(
        self, voice: str, model: str
    ) -> texttospeech.StreamingSynthesizeRequest:
        return texttospeech.StreamingSynthesizeRequest(
            streaming_config=texttospeech.StreamingSynthesizeConfig(
                voice=texttospeech.VoiceSelectionParams(
                    name=voice,
                    language_code=self._language_code,
                    model_name=model,
                )
            )
        )

    @staticmethod
    def build_input_request(text: str) -> texttospeech.StreamingSynthesizeRequest:
        return texttospeech.StreamingSynthesizeRequest(
            input=texttospeech.StreamingSynthesisInput(text=text)
        )

    async def stream_synthesize(
        self, text: str, *, voice: str, model: str
    ) -> AsyncIterator[bytes]:
        """
        Run one synthesis session and yield its audio chunks in order.

        Raises:
            SynthesisError: if the session cannot be opened or fails mid-stream
        """
        logger.info(f"Speaking sentence ({len(text)} chars): {text[:50]}...")

        config_request = self.build_config_request(voice, model)
        input_request = self.build_input_request(text)

        async def _requests():
            yield config_request
            yield input_request
            # Exhausting the iterator half-closes the stream (end of input)

        try:
            stream = await self.get_client().streaming_synthesize(
                requests=_requests(),
                timeout=self._timeout,
            )
            async for response in stream:
                if response.audio_content:
                    yield response.audio_content
        except google_exceptions.GoogleAPIError as exc:
            logger.error(f"TTS session failed: {exc}")
            raise SynthesisError(str(exc)) from exc


__all__ = ["SynthesisError", "TTSService"]
