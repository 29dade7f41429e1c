import json
import pathlib
import sys

import pytest
from pydantic import SecretStr

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from storyteller.config import Settings  # noqa: E402


class RecordingWebSocket:
    """Stands in for a FastAPI WebSocket; records every frame written."""

    def __init__(self, fail_on_bytes: bool = False) -> None:
        self.frames: list[tuple[str, object]] = []
        self.fail_on_bytes = fail_on_bytes

    async def send_text(self, text: str) -> None:
        self.frames.append(("text", json.loads(text)))

    async def send_bytes(self, data: bytes) -> None:
        if self.fail_on_bytes:
            raise RuntimeError("Cannot call 'send' once a close message has been sent.")
        self.frames.append(("bytes", data))

    @property
    def events(self) -> list[dict]:
        return [payload for kind, payload in self.frames if kind == "text"]

    @property
    def audio(self) -> list[bytes]:
        return [payload for kind, payload in self.frames if kind == "bytes"]

    def events_of(self, event_type: str) -> list[dict]:
        return [event for event in self.events if event["type"] == event_type]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        openrouter_api_key=SecretStr("test-key"),
        unit_queue_size=5,
        sentence_max_chars=200,
    )


@pytest.fixture
def echo_settings() -> Settings:
    return Settings(_env_file=None, openrouter_api_key=None)


@pytest.fixture
def websocket() -> RecordingWebSocket:
    return RecordingWebSocket()


@pytest.fixture
def failing_websocket() -> RecordingWebSocket:
    return RecordingWebSocket(fail_on_bytes=True)
