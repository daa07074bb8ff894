"""
FastAPI server exposing the device relay endpoint.

Edge devices connect to the WebSocket path (``/ws`` by default), stream
PCM audio as binary frames and send plain-text STREAM_STARTED /
STREAM_STOPPED signals. Each connection is relayed to its own upstream
realtime session by the SessionRegistry.

Run with:

    python -m edgerelay.main
"""

import asyncio

import websockets
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from edgerelay.config import get_config, print_configuration_summary
from edgerelay.config.env_loader import load_env_file
from edgerelay.config.logging_config import configure_logging
from edgerelay.handlers.error_handler import get_error_handler
from edgerelay.session_registry import SessionRegistry

# Load environment variables before accessing configuration
load_env_file()

config = get_config()

logger = configure_logging("main", config.logging)

PORT = config.server.port
HOST = config.server.host
WS_PATH = config.server.ws_path

app = FastAPI(
    title="Edge Audio Relay",
    description="Relays edge-device audio streams to the OpenAI Realtime API",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.security.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "WEBSOCKET"],
    allow_headers=["*"],
)

registry = SessionRegistry(config)


@app.websocket(WS_PATH)
async def device_endpoint(websocket: WebSocket):
    """WebSocket endpoint for edge devices.

    Args:
        websocket (WebSocket): The WebSocket connection from the device
    """
    await websocket.accept()
    logger.info(f"Device connection accepted from {websocket.client}")

    try:
        final_state = await registry.handle_connection(websocket)
        if final_state is not None:
            logger.info(f"Device session ended in {final_state.value}")
    except WebSocketDisconnect:
        logger.info("Device disconnected")
    except websockets.exceptions.ConnectionClosed as e:
        logger.error(f"Upstream connection closed: {e}")
    except asyncio.CancelledError:
        logger.info("Device session was cancelled")
    except Exception as e:
        logger.error(f"Unexpected error in device_endpoint: {e}")
        logger.exception("Full traceback:")


@app.get("/")
async def root():
    return {
        "service": "edge-audio-relay",
        "websocket_path": WS_PATH,
        "endpoints": ["/health", "/stats", "/config"],
    }


@app.get("/stats")
async def get_stats():
    """Get relay session statistics.

    Returns:
        dict: Registry counters and per-session status
    """
    return registry.get_stats()


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring service health.

    Returns:
        dict: Health status information
    """
    stats = registry.get_stats()
    at_capacity = stats["active_sessions"] >= stats["max_sessions"]

    return {
        "status": "degraded" if at_capacity else "healthy",
        "sessions": {
            "active": stats["active_sessions"],
            "max": stats["max_sessions"],
        },
        "errors": get_error_handler().get_error_stats(),
        "message": (
            "Relay at capacity" if at_capacity else "Service is operational"
        ),
    }


@app.get("/config")
async def get_app_config():
    """Get current application configuration, without secrets.

    Returns:
        dict: Current configuration settings
    """
    return {
        "server": {
            "host": config.server.host,
            "port": config.server.port,
            "ws_path": config.server.ws_path,
            "environment": config.server.environment.value,
            "max_sessions": config.server.max_sessions,
        },
        "openai": {
            "model": config.openai.model,
            "voice": config.openai.voice,
            "base_url": config.openai.base_url,
            "api_key_configured": bool(config.openai.api_key),
            "send_timeout": config.openai.send_timeout,
        },
        "audio": {
            "sample_rate": config.audio.sample_rate,
            "channels": config.audio.channels,
            "bits_per_sample": config.audio.bits_per_sample,
        },
        "flush": {
            "max_chunks_per_batch": config.flush.max_chunks_per_batch,
            "max_bytes_per_batch": config.flush.max_bytes_per_batch,
            "max_idle_ms": config.flush.max_idle_ms,
        },
        "sequencer": {
            "settle_delay_ms": config.sequencer.settle_delay_ms,
            "pre_ready_queue_limit": config.sequencer.pre_ready_queue_limit,
            "pre_ready_policy": config.sequencer.pre_ready_policy,
            "commit_on_idle": config.sequencer.commit_on_idle,
            "response_modalities": config.sequencer.response_modalities,
        },
        "recording": {
            "enabled": config.recording.enabled,
            "output_dir": str(config.recording.output_dir),
            "transcode_configured": bool(config.recording.transcode_command),
        },
    }


@app.on_event("shutdown")
async def shutdown_event():
    """Finish every live session on application shutdown."""
    logger.info("Application shutting down, closing relay sessions...")
    try:
        await registry.shutdown()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


if __name__ == "__main__":
    import uvicorn

    print_configuration_summary()
    logger.info(f"Starting relay on ws://{HOST}:{PORT}{WS_PATH}")
    uvicorn.run(
        app,
        host=HOST,
        port=PORT,
        http=config.server.http_protocol,
        loop="asyncio",
        timeout_keep_alive=config.server.timeout_keep_alive,
        access_log=config.server.access_log,
        ws_ping_interval=config.server.ws_ping_interval,
        ws_ping_timeout=config.server.ws_ping_timeout,
        ws_max_size=config.server.ws_max_size,
    )
