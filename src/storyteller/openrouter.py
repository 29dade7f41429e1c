"""OpenRouter streaming client utilities."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Iterable, Mapping, Optional, Sequence

import httpx
from fastapi import status

from .config import Settings

logger = logging.getLogger(__name__)


class OpenRouterError(Exception):
    """Wrap transport or API failures when communicating with OpenRouter."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


@dataclass
class ServerSentEvent:
    """Represents a parsed Server-Sent Event."""

    data: str
    event: str = "message"
    event_id: Optional[str] = None


class OpenRouterClient:
    """Client for streamed and single-shot chat completions on OpenRouter."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(self, settings: Settings):
        if settings.openrouter_api_key is None:
            raise ValueError("OPENROUTER_API_KEY is required for story generation")
        self._settings = settings

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    async def _get_http_client(self) -> httpx.AsyncClient:
        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    @property
    def _headers(self) -> dict[str, str]:
        api_key = self._settings.openrouter_api_key
        assert api_key is not None
        headers = {
            "Authorization": f"Bearer {api_key.get_secret_value()}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._settings.openrouter_app_url:
            referer = str(self._settings.openrouter_app_url)
            headers["HTTP-Referer"] = referer
            headers["Referer"] = referer
        if self._settings.openrouter_app_name:
            headers["X-Title"] = self._settings.openrouter_app_name
        return headers

    @property
    def _base_url(self) -> str:
        """Return the OpenRouter API base URL without a trailing slash."""

        return str(self._settings.openrouter_base_url).rstrip("/")

    async def stream_text(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[str, None]:
        """Stream a chat completion and yield its text deltas in order.

        Closing the generator early closes the underlying HTTP response.
        """

        body = dict(payload)
        body["stream"] = True
        async for event in self.stream_chat_raw(body):
            data = event.data
            if not data:
                continue
            if data == "[DONE]":
                break
            try:
                chunk = json.loads(data)
            except json.JSONDecodeError:
                logger.debug("Skipping non-JSON stream event: %s", data[:80])
                continue
            if not isinstance(chunk, Mapping):
                continue

            if error := chunk.get("error"):
                code = status.HTTP_502_BAD_GATEWAY
                if isinstance(error, Mapping) and isinstance(error.get("code"), int):
                    code = error["code"]
                raise OpenRouterError(code, error)

            choices = chunk.get("choices")
            if not isinstance(choices, Sequence) or not choices:
                continue
            choice = choices[0]
            if not isinstance(choice, Mapping):
                continue
            delta = choice.get("delta")
            if not isinstance(delta, Mapping):
                continue
            text = _content_text(delta.get("content"))
            if text:
                yield text

    async def stream_chat_raw(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[ServerSentEvent, None]:
        """Low-level streaming helper accepting a prebuilt payload."""

        url = f"{self._base_url}/chat/completions"

        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST",
                url,
                headers=self._headers,
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    detail = self._extract_error_detail(body)
                    raise OpenRouterError(response.status_code, detail)

                async for event in self._iter_events(response):
                    yield event
        except httpx.HTTPError as exc:
            raise OpenRouterError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

    async def create_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Run a non-streaming chat completion and return the first message."""

        body = dict(payload)
        body["stream"] = False
        headers = dict(self._headers)
        headers["Accept"] = "application/json"

        client = await self._get_http_client()
        try:
            response = await client.post(
                f"{self._base_url}/chat/completions",
                headers=headers,
                json=body,
            )
        except httpx.HTTPError as exc:
            raise OpenRouterError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            detail = self._extract_error_detail(response.content)
            raise OpenRouterError(response.status_code, detail)

        try:
            data = response.json()
        except ValueError as exc:
            raise OpenRouterError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        return self._extract_message(data)

    async def complete_text(self, payload: dict[str, Any]) -> str:
        """Return the text content of a non-streaming completion."""

        message = await self.create_completion(payload)
        text = _content_text(message.get("content"))
        if not text or not text.strip():
            raise OpenRouterError(
                status.HTTP_502_BAD_GATEWAY, "Completion response missing content"
            )
        return text

    async def aclose(self) -> None:
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                logger.debug("Error closing pooled httpx client", exc_info=True)

    @staticmethod
    def _extract_message(payload: Mapping[str, Any]) -> dict[str, Any]:
        choices = payload.get("choices")
        if not isinstance(choices, Sequence) or not choices:
            raise OpenRouterError(
                status.HTTP_502_BAD_GATEWAY, "Completion response missing choices"
            )
        container = choices[0]
        message = container.get("message") if isinstance(container, Mapping) else None
        if not isinstance(message, Mapping):
            raise OpenRouterError(
                status.HTTP_502_BAD_GATEWAY, "Completion response missing message"
            )
        return dict(message)

    async def _iter_events(
        self, response: httpx.Response
    ) -> AsyncGenerator[ServerSentEvent, None]:
        buffer: list[str] = []
        async for line in response.aiter_lines():
            if not line:
                if buffer:
                    yield self._parse_event(buffer)
                    buffer.clear()
                continue
            if line.startswith(":"):
                continue
            buffer.append(line)
        if buffer:
            yield self._parse_event(buffer)

    def _parse_event(self, lines: Iterable[str]) -> ServerSentEvent:
        event_name: Optional[str] = None
        event_id: Optional[str] = None
        data_lines: list[str] = []

        for line in lines:
            field, _, value = line.partition(":")
            value = value.lstrip(" ")
            if field == "event":
                event_name = value or None
            elif field == "data":
                data_lines.append(value)
            elif field == "id":
                event_id = value or None

        data = "\n".join(data_lines)
        return ServerSentEvent(
            data=data, event=event_name or "message", event_id=event_id
        )

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "OpenRouter returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload
        return payload


def _content_text(content: Any) -> str:
    """Flatten string or structured text content into plain text."""

    if isinstance(content, str):
        return content
    if isinstance(content, Sequence):
        fragments: list[str] = []
        for item in content:
            if not isinstance(item, Mapping):
                continue
            if item.get("type") == "text" and isinstance(item.get("text"), str):
                fragments.append(item["text"])
        return "".join(fragments)
    return ""


__all__ = ["OpenRouterClient", "OpenRouterError", "ServerSentEvent"]
