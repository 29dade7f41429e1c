"""End-to-end tests for the /ws story endpoint."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

from storyteller.app import create_app
from storyteller.openrouter import OpenRouterError


class StubOpenRouterClient:
    def __init__(self) -> None:
        self.topics: list[str] = []

    async def stream_text(self, payload: dict[str, Any]):
        prompt = payload["messages"][0]["content"]
        self.topics.append(prompt)
        if "Topic: explode" in prompt:
            raise OpenRouterError(500, "model unavailable")
        for fragment in ("Title: Night\nStars ", "rose. The end."):
            await asyncio.sleep(0)
            yield fragment

    async def create_completion(self, payload: dict[str, Any]) -> dict[str, Any]:
        raise OpenRouterError(400, "images disabled in tests")

    async def complete_text(self, payload: dict[str, Any]) -> str:
        if "Summarize" in payload["messages"][0]["content"]:
            return "Stars rose."
        return '["Look up", "Sleep"]'


class StubTTSService:
    def __init__(self) -> None:
        self.spoken: list[tuple[str, str, str]] = []

    async def stream_synthesize(self, text: str, *, voice: str, model: str):
        self.spoken.append((text, voice, model))
        yield f"audio:{text}".encode()


@pytest.fixture(autouse=True)
def _no_log_files(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOG_DIR", raising=False)


@pytest.fixture
def stub_client(monkeypatch: pytest.MonkeyPatch) -> StubOpenRouterClient:
    stub = StubOpenRouterClient()
    monkeypatch.setattr(
        "storyteller.routers.story.OpenRouterClient", lambda settings: stub
    )
    return stub


def _make_test_client(settings) -> tuple[TestClient, StubTTSService]:
    app = create_app(settings)
    tts = StubTTSService()
    app.state.tts_service = tts
    return TestClient(app), tts


def _receive_until_suggestions(ws) -> list[tuple[str, Any]]:
    frames: list[tuple[str, Any]] = []
    while True:
        message = ws.receive()
        if message.get("text") is not None:
            event = json.loads(message["text"])
            frames.append(("event", event))
            if event["type"] == "suggestions":
                return frames
        else:
            frames.append(("audio", message["bytes"]))


def test_story_request_streams_events_and_audio(settings, stub_client) -> None:
    client, tts = _make_test_client(settings)

    with client, client.websocket_connect("/ws") as ws:
        ws.send_text(json.dumps({"topic": "stars", "voice": "Kore"}))
        frames = _receive_until_suggestions(ws)

    events = [payload for kind, payload in frames if kind == "event"]
    assert events == [
        {"type": "title", "content": "Night"},
        {"type": "sentence", "content": "Stars rose."},
        {"type": "sentence", "content": "The end."},
        {"type": "context", "content": "Stars rose."},
        {"type": "suggestions", "data": ["Look up", "Sleep"]},
    ]
    audio = [payload for kind, payload in frames if kind == "audio"]
    assert audio == [b"audio:Stars rose.", b"audio:The end."]

    # Each sentence is announced before its audio
    first_audio = frames.index(("audio", b"audio:Stars rose."))
    assert frames.index(("event", events[1])) < first_audio
    assert tts.spoken == [
        ("Stars rose.", "Kore", settings.default_tts_model),
        ("The end.", "Kore", settings.default_tts_model),
    ]


def test_failed_story_keeps_connection_open(settings, stub_client) -> None:
    client, tts = _make_test_client(settings)

    with client, client.websocket_connect("/ws") as ws:
        ws.send_text("explode")
        ws.send_text("   ")
        ws.send_text("stars")
        frames = _receive_until_suggestions(ws)

    assert frames[0] == ("event", {"type": "title", "content": "Night"})
    assert [text for text, _, _ in tts.spoken] == ["Stars rose.", "The end."]
    assert len(stub_client.topics) == 2
    assert "Topic: explode" in stub_client.topics[0]
    assert "Topic: stars" in stub_client.topics[1]


def test_echo_mode_speaks_raw_text(echo_settings) -> None:
    client, tts = _make_test_client(echo_settings)

    with client, client.websocket_connect("/ws") as ws:
        ws.send_text("Hello there.")
        first = ws.receive()
        second = ws.receive()

    assert json.loads(first["text"]) == {"type": "sentence", "content": "Hello there."}
    assert second["bytes"] == b"audio:Hello there."
    assert tts.spoken == [
        ("Hello there.", echo_settings.default_voice, echo_settings.default_tts_model)
    ]


def test_blank_messages_are_not_requests(echo_settings) -> None:
    client, tts = _make_test_client(echo_settings)

    with client, client.websocket_connect("/ws") as ws:
        ws.send_text("")
        ws.send_text(" \n\t ")
        ws.send_bytes(b"  ")
        ws.send_text("Still here.")
        first = ws.receive()
        second = ws.receive()

    # Nothing was sent for the blank frames; the next real message is answered
    assert json.loads(first["text"]) == {"type": "sentence", "content": "Still here."}
    assert second["bytes"] == b"audio:Still here."
    assert [text for text, _, _ in tts.spoken] == ["Still here."]


def test_binary_message_is_accepted(echo_settings) -> None:
    client, tts = _make_test_client(echo_settings)

    with client, client.websocket_connect("/ws") as ws:
        ws.send_bytes(b'{"topic": "Bytes work."}')
        event = json.loads(ws.receive()["text"])

    assert event == {"type": "sentence", "content": "Bytes work."}


def test_health_reports_generation_mode(settings, echo_settings) -> None:
    client, _ = _make_test_client(settings)
    with client:
        response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "story_model": settings.story_model,
        "story_generation": True,
    }

    echo_client, _ = _make_test_client(echo_settings)
    with echo_client:
        assert echo_client.get("/health").json()["story_generation"] is False
