import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from storyteller.config import Settings
from storyteller.openrouter import OpenRouterClient, OpenRouterError
from storyteller.schemas.story import parse_story_request
from storyteller.services.multiplexer import OutputMultiplexer, TransportError
from storyteller.services.story_pipeline import StoryPipeline
from storyteller.services.tts_service import SynthesisError, TTSService

router = APIRouter(tags=["Story"])
logger = logging.getLogger(__name__)


async def handle_connection(
    websocket: WebSocket,
    settings: Settings,
    tts_service: TTSService,
    client: Optional[OpenRouterClient],
):
    """
    Main loop for a single client's story websocket.

    Each inbound message is one story request; requests on a connection run
    one after another. A failed story is logged and the connection stays
    open for the next request. A failed write ends the connection.
    """
    await websocket.accept()
    multiplexer = OutputMultiplexer(websocket)
    pipeline = StoryPipeline(settings, multiplexer, tts_service, client)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("Client disconnected")
                break

            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if not raw or not raw.strip():
                logger.warning("Ignoring empty story request")
                continue

            request = parse_story_request(
                raw,
                default_voice=settings.default_voice,
                default_tts_model=settings.default_tts_model,
            )
            logger.info(
                f"Topic: {request.topic} | Voice: {request.voice} | "
                f"TTS Model: {request.tts_model}"
            )

            try:
                if client is not None:
                    await pipeline.run(request)
                else:
                    await pipeline.echo(request)
            except TransportError as e:
                logger.error(f"Websocket write failed, closing connection: {e}")
                break
            except OpenRouterError as e:
                logger.error(f"Story error ({e.status_code}): {e.detail}")
            except SynthesisError as e:
                logger.error(f"Speak error: {e}")
            except Exception as e:
                logger.error(f"Unexpected story error: {e}", exc_info=True)

    except WebSocketDisconnect:
        logger.info("Client disconnected")
    except RuntimeError as e:
        # Starlette raises once the socket is no longer readable
        logger.info(f"Websocket closed: {e}")
    finally:
        await pipeline.aclose()


@router.websocket("/ws")
async def story_socket(websocket: WebSocket):
    app_state = websocket.app.state
    settings: Settings = app_state.settings
    tts_service: TTSService = app_state.tts_service

    client: Optional[OpenRouterClient] = None
    if settings.story_generation_enabled:
        client = OpenRouterClient(settings)
    else:
        logger.warning(
            "OPENROUTER_API_KEY not set. Story generation disabled, echoing input."
        )

    await handle_connection(websocket, settings, tts_service, client)
